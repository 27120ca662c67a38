import enum
import re
from dataclasses import dataclass
from typing import BinaryIO, Optional, Tuple

from .errors import InvalidCommandError, ProtocolError

CRLF = b"\r\n"

# Longest reply line accepted before the stream is considered garbage
MAXLINE = 8192

# "227 Entering Passive Mode (h1,h2,h3,h4,p1,p2)"
_227 = re.compile(r"(\d+),(\d+),(\d+),(\d+),(\d+),(\d+)")

# "150 Opening BINARY mode data connection for x.bin (1024 bytes)"
_150 = re.compile(r"\((\d+) bytes\)", re.IGNORECASE)

# Verbs are short alphabetic words (RETR, STOR, EPSV...)
_VERB = re.compile(r"^[A-Za-z]{3,4}$")

# FTP response codes - what the server is trying to tell you
codes = {
    # 1xx - "Hold on, I'm working on it"
    110: "Restart marker reply",
    120: "Service ready in n minutes",
    125: "Data connection already open; transfer starting",
    150: "File status okay; about to open data connection",
    # 2xx - "Success! Everything went great"
    200: "Command okay",
    202: "Command not implemented, superfluous at this site",
    211: "System status, or system help reply",
    212: "Directory status",
    213: "File status",
    214: "Help message",
    215: "NAME system type",
    220: "Service ready for new user",
    221: "Service closing control connection",
    225: "Data connection open; no transfer in progress",
    226: "Closing data connection",
    227: "Entering Passive Mode",
    229: "Entering Extended Passive Mode",
    230: "User logged in, proceed",
    250: "Requested file action okay, completed",
    257: "PATHNAME created",
    # 3xx - "I need more info from you"
    331: "User name okay, need password",
    332: "Need account for login",
    350: "Requested file action pending further information",
    # 4xx - "Something's wrong, but we can try again"
    421: "Service not available, closing control connection",
    425: "Can't open data connection",
    426: "Connection closed; transfer aborted",
    450: "Requested file action not taken",
    451: "Requested action aborted: local error in processing",
    452: "Requested action not taken; insufficient storage space",
    # 5xx - "Nope, that's not going to work"
    500: "Syntax error, command unrecognized",
    501: "Syntax error in parameters or arguments",
    502: "Command not implemented",
    503: "Bad sequence of commands",
    504: "Command not implemented for that parameter",
    530: "Not logged in",
    532: "Need account for storing files",
    550: "Requested action not taken; file unavailable",
    551: "Requested action aborted: page type unknown",
    552: "Requested file action aborted; exceeded storage allocation",
    553: "Requested action not taken; file name not allowed",
}


class Category(enum.IntEnum):
    """Reply classification taken from the first digit of the code."""

    PRELIMINARY = 1  # Positive Preliminary: more replies will follow
    COMPLETION = 2  # Positive Completion: the command is done
    INTERMEDIATE = 3  # Positive Intermediate: send the next command in sequence
    TRANSIENT = 4  # Transient Negative: try again later
    PERMANENT = 5  # Permanent Negative: do not retry as-is


@dataclass(frozen=True)
class Reply:
    """
    One parsed server response.

    Multi-line replies keep every line of text; the code prefixes of the first
    and last lines are stripped and the lines are joined with newlines.

    Attributes:
        code: Three digit status code.
        message: Reply text without the leading code.
    """

    code: int
    message: str

    @property
    def category(self) -> Category:
        return Category(self.code // 100)

    @property
    def preliminary(self) -> bool:
        return self.category is Category.PRELIMINARY

    @property
    def completion(self) -> bool:
        return self.category is Category.COMPLETION

    @property
    def intermediate(self) -> bool:
        return self.category is Category.INTERMEDIATE

    @property
    def negative(self) -> bool:
        return self.category in (Category.TRANSIENT, Category.PERMANENT)

    @property
    def meaning(self) -> str:
        """Standard description of the code, falling back to its category."""
        return codes.get(self.code, self.category.name.capitalize())

    def __str__(self) -> str:
        return f"{self.code} {self.message}"


def encode_command(verb: str, *args: str, encoding: str = "utf-8") -> bytes:
    """Build the CRLF-terminated wire form of ``VERB arg1 arg2...``.

    Args:
        verb: FTP command verb such as ``RETR``.
        *args: Arguments appended after the verb, separated by single spaces.
        encoding: Character encoding used on the control connection.

    Returns:
        bytes: The encoded command line, CRLF included.

    Raises:
        InvalidCommandError: If the verb is malformed or any part contains CR or LF.
    """
    if not isinstance(verb, str) or not _VERB.fullmatch(verb):
        raise InvalidCommandError(f"Invalid command verb: {verb!r}")

    parts = [verb.upper()]
    for arg in args:
        arg = str(arg)
        if "\r" in arg or "\n" in arg:
            raise InvalidCommandError(f"Command argument contains CR or LF: {arg!r}")
        parts.append(arg)

    return " ".join(parts).encode(encoding) + CRLF


def _readline(stream: BinaryIO, encoding: str) -> Optional[str]:
    """Read one reply line without its line ending, or None at end of stream."""
    line = stream.readline(MAXLINE + 1)
    if len(line) > MAXLINE:
        raise ProtocolError(f"Reply line exceeds {MAXLINE} bytes")
    if not line:
        return None
    return line.decode(encoding, errors="replace").rstrip("\r\n")


def decode_reply(stream: BinaryIO, encoding: str = "utf-8") -> Reply:
    """Read one complete reply (single or multi-line) from a byte stream.

    A single-line reply is ``CODE text``. A multi-line reply starts with
    ``CODE-text`` and runs until a line starting with the same code followed
    by a space. Lines in between are free-form text.

    Args:
        stream: Readable binary stream supporting ``readline``.
        encoding: Character encoding used on the control connection.

    Returns:
        Reply: The parsed reply.

    Raises:
        ProtocolError: On a malformed first line, or when the stream ends
                       before the reply is complete.
    """
    first = _readline(stream, encoding)
    if first is None:
        raise ProtocolError("Connection closed while waiting for a reply")

    code, separator, text = first[:3], first[3:4], first[4:]
    if len(code) != 3 or not code.isdigit() or code[0] not in "12345" or separator not in ("", " ", "-"):
        raise ProtocolError(f"Malformed reply line: {first!r}")

    if separator != "-":
        return Reply(int(code), text)

    lines = [text]
    while True:
        line = _readline(stream, encoding)
        if line is None:
            raise ProtocolError(f"Connection closed inside multi-line {code} reply")
        if line[:3] == code and line[3:4] in (" ", ""):
            lines.append(line[4:])
            return Reply(int(code), "\n".join(lines))
        lines.append(line)


def parse_pasv(message: str) -> Tuple[str, int]:
    """Extract the data address from a 227 reply text.

    Raises:
        ProtocolError: If no ``h1,h2,h3,h4,p1,p2`` group is present.
    """
    match = _227.search(message)
    if not match:
        raise ProtocolError(f"Cannot parse PASV reply: {message!r}")
    numbers = [int(group) for group in match.groups()]
    if any(number > 255 for number in numbers):
        raise ProtocolError(f"PASV reply out of range: {message!r}")
    host = ".".join(str(number) for number in numbers[:4])
    port = (numbers[4] << 8) + numbers[5]
    return host, port


def parse_epsv(message: str) -> int:
    """Extract the data port from a 229 reply text such as ``(|||6446|)``.

    Raises:
        ProtocolError: If the delimited group is missing or malformed.
    """
    left, right = message.find("("), message.rfind(")")
    if left < 0 or right < left + 2:
        raise ProtocolError(f"Cannot parse EPSV reply: {message!r}")
    body = message[left + 1 : right]
    delimiter = body[0]
    parts = body.split(delimiter)
    if body[-1] != delimiter or len(parts) != 5 or not parts[3].isdigit():
        raise ProtocolError(f"Cannot parse EPSV reply: {message!r}")
    return int(parts[3])


def parse_size(message: str) -> Optional[int]:
    """Expected transfer size announced in a 150 reply, if any."""
    match = _150.search(message)
    return int(match.group(1)) if match else None


def parse_pwd(message: str) -> str:
    """Directory name from a 257 reply text; embedded quotes are doubled.

    Servers that do not quote the name get the whole text back.
    """
    if not message.startswith('"'):
        return message.strip()

    name = []
    index, length = 1, len(message)
    while index < length:
        char = message[index]
        index += 1
        if char == '"':
            if index >= length or message[index] != '"':
                break
            index += 1
        name.append(char)
    return "".join(name)
