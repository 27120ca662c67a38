import enum
import logging
import socket
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import IO, TYPE_CHECKING, Iterator, Optional, Union

from .codec import Reply, parse_epsv, parse_pasv, parse_size
from .config import Mode
from .errors import (
    BusyError,
    CommandError,
    DataChannelError,
    FtpTimeoutError,
    ProtocolError,
    TransferIncompleteError,
)

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)

# A local path, or an already open binary file object
Local = Union[str, Path, IO[bytes]]


class Direction(enum.Enum):
    """Which way the bytes move; the value is the control verb."""

    RETRIEVE = "RETR"
    STORE = "STOR"


@dataclass
class DataChannelDescriptor:
    """
    Where and what one data transfer moves.

    Lives only for the duration of a single get/put call.

    Attributes:
        host: Address the data socket connects to.
        port: Port the server opened for this transfer.
        direction: RETRIEVE for get, STORE for put.
        remote: Path on the server.
        local: Local path, or a description of the file object.
    """

    host: str
    port: int
    direction: Direction
    remote: str
    local: str


def describe(local: Local) -> str:
    if isinstance(local, (str, Path)):
        return str(local)
    return getattr(local, "name", None) or repr(local)


class DataChannelManager:
    """
    Runs one passive-mode data transfer at a time for a session.

    A transfer always follows the same order on the control connection:
    TYPE (when the mode changes), PASV or EPSV, optional REST, RETR or STOR,
    then the completion reply once the data socket is done. The completion
    reply is read even when the byte copy fails, so the control stream stays
    aligned for the next command.
    """

    def __init__(self, session: "Session") -> None:
        self.session = session
        self.lock = threading.Lock()
        self.channel: Optional[socket.socket] = None
        self.descriptor: Optional[DataChannelDescriptor] = None

    @property
    def active(self) -> bool:
        """True while a transfer holds the channel."""
        return self.lock.locked()

    def retrieve(
        self,
        remote: str,
        local: Local,
        mode: Optional[Union[Mode, str]] = None,
        rest: Optional[int] = None,
    ) -> int:
        """Download ``remote`` into ``local``.

        Args:
            remote: Path on the server.
            local: Local path (created or truncated) or a writable binary file.
            mode: Transfer mode; defaults to the configured mode.
            rest: Byte offset to restart from (sent as REST).

        Returns:
            int: Number of bytes received on the data channel.

        Raises:
            BusyError: If another transfer is running on this session.
            DataChannelError: If negotiation or opening the data socket fails.
            CommandError: If the server refuses the transfer.
            TransferIncompleteError: If the data socket breaks mid-transfer, or
                                     the completion reply or announced size
                                     disagree with what was received.
            FtpTimeoutError: If the control or data socket times out.
        """
        return self.run(Direction.RETRIEVE, remote, local, mode, rest)

    def store(
        self,
        local: Local,
        remote: str,
        mode: Optional[Union[Mode, str]] = None,
        rest: Optional[int] = None,
    ) -> int:
        """Upload ``local`` to ``remote``. Mirrors retrieve(), with STOR.

        Returns:
            int: Number of bytes sent on the data channel.
        """
        return self.run(Direction.STORE, remote, local, mode, rest)

    def run(
        self,
        direction: Direction,
        remote: str,
        local: Local,
        mode: Optional[Union[Mode, str]],
        rest: Optional[int],
    ) -> int:
        if not self.lock.acquire(blocking=False):
            raise BusyError(f"A transfer is already in progress ({self.descriptor})")
        try:
            return self.transfer(direction, remote, local, mode, rest)
        finally:
            self.descriptor = None
            self.lock.release()

    def transfer(
        self,
        direction: Direction,
        remote: str,
        local: Local,
        mode: Optional[Union[Mode, str]],
        rest: Optional[int],
    ) -> int:
        session = self.session
        mode = Mode.parse(mode) if mode is not None else session.config.mode

        if not session.passive:
            raise DataChannelError("Active mode is not supported; enable passive mode")

        # A local source has to exist before the server is asked for anything
        if direction is Direction.STORE and isinstance(local, (str, Path)):
            if not Path(local).is_file():
                raise FileNotFoundError(f"Local file not found: {local}")

        session.set_type(mode)
        self.descriptor = self.negotiate(direction, remote, describe(local))
        self.channel = self.connect(self.descriptor)

        try:
            if rest is not None:
                reply = session.command("REST", str(int(rest)))
                if not reply.intermediate:
                    raise CommandError(f"Server refused REST {rest}: {reply}", reply)

            reply = session.command(direction.value, remote)
            # Some servers answer 2xx first and only then the preliminary reply
            if reply.completion:
                reply = session.read_reply()
            if not reply.preliminary:
                if reply.code == 425:
                    raise DataChannelError(f"Server could not open the data connection: {reply}")
                raise CommandError(f"{direction.value} {remote} refused: {reply}", reply)
        except Exception:
            self.close_channel()
            raise

        expected = parse_size(reply.message) if direction is Direction.RETRIEVE else None

        count = 0
        failure: Optional[Exception] = None
        try:
            with self.open_local(local, direction, rest) as fileobj:
                if direction is Direction.RETRIEVE:
                    count = self.download(self.channel, fileobj, mode)
                else:
                    count = self.upload(self.channel, fileobj, mode)
        except FtpTimeoutError:
            raise
        except Exception as error:
            # Local sink or source errors too: the completion reply is still owed
            failure = error
        finally:
            self.close_channel()

        final = session.read_reply()

        if failure is not None:
            logger.error(f"{direction.value} {remote} failed after {count} bytes: {failure}")
            if isinstance(failure, DataChannelError):
                # The data socket broke, whatever the control reply claims
                raise TransferIncompleteError(
                    f"{direction.value} {remote} interrupted ({final}): {failure}",
                    final,
                    count,
                ) from failure
            raise failure

        if not final.completion:
            raise TransferIncompleteError(
                f"{direction.value} {remote} ended with {final} after {count} bytes",
                final,
                count,
            )

        # ASCII translation makes sizes inexact, but nothing at all is still short
        short = count != expected if mode is Mode.BINARY else count == 0
        if expected and rest is None and short:
            raise TransferIncompleteError(
                f"{direction.value} {remote} received {count} of {expected} bytes",
                final,
                count,
            )

        logger.info(f"{direction.value} {remote}: {count} bytes ({final.code})")
        return count

    def negotiate(self, direction: Direction, remote: str, local: str) -> DataChannelDescriptor:
        """Ask the server for a passive data port.

        EPSV is used when configured, or when the control connection runs over
        IPv6 where PASV cannot express the address.

        Raises:
            DataChannelError: If the server refuses or the reply can't be parsed.
        """
        session = self.session
        control = session.control
        peer = control.peer[0]

        extended = session.config.epsv or control.family == socket.AF_INET6
        reply: Reply = session.command("EPSV" if extended else "PASV")

        try:
            if extended and reply.code == 229:
                host, port = peer, parse_epsv(reply.message)
            elif not extended and reply.code == 227:
                host, port = parse_pasv(reply.message)
                # Servers behind NAT sometimes advertise the wildcard address
                if host == "0.0.0.0":
                    host = peer
            else:
                raise DataChannelError(f"Passive mode refused: {reply}")
        except ProtocolError as error:
            raise DataChannelError(str(error)) from error

        logger.debug(f"Data channel for {direction.value} {remote} at {host}:{port}")
        return DataChannelDescriptor(host, port, direction, remote, local)

    def connect(self, descriptor: DataChannelDescriptor) -> socket.socket:
        """Open the data socket. The control connection stays usable on failure."""
        timeout = self.session.config.timeout
        try:
            sock = self.session.factory((descriptor.host, descriptor.port), timeout.connect)
        except OSError as error:
            raise DataChannelError(
                f"Cannot open data connection to {descriptor.host}:{descriptor.port} - {error}"
            ) from error
        sock.settimeout(timeout.read)
        return sock

    def close_channel(self) -> None:
        """Release the data socket, if one is open."""
        sock, self.channel = self.channel, None
        if sock is None:
            return
        try:
            sock.close()
        except OSError:
            pass

    def cancel(self) -> None:
        """Shut the data socket down so a blocked transfer fails promptly."""
        sock = self.channel
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass

    @contextmanager
    def open_local(self, local: Local, direction: Direction, rest: Optional[int]) -> Iterator[IO[bytes]]:
        """Yield a binary file object for the local end of the transfer.

        Paths are opened here and closed afterwards; file objects passed in by
        the caller are left open.
        """
        if not isinstance(local, (str, Path)):
            yield local
            return

        if direction is Direction.STORE:
            with open(local, "rb") as fileobj:
                if rest:
                    fileobj.seek(rest)
                yield fileobj
        else:
            with open(local, "r+b" if rest else "wb") as fileobj:
                if rest:
                    fileobj.seek(rest)
                    fileobj.truncate()
                yield fileobj

    def download(self, sock: socket.socket, fileobj: IO[bytes], mode: Mode) -> int:
        """Copy the data channel into ``fileobj`` until the server closes it."""
        blocksize = self.session.config.blocksize
        count = 0
        pending = b""
        while True:
            try:
                data = sock.recv(blocksize)
            except socket.timeout as error:
                raise FtpTimeoutError("Timed out reading the data connection") from error
            except OSError as error:
                raise DataChannelError(f"Data connection failed: {error}") from error
            if not data:
                break
            count += len(data)
            if mode is Mode.ASCII:
                data, pending = crlf_to_lf(pending + data)
            fileobj.write(data)
        if pending:
            fileobj.write(pending)
        return count

    def upload(self, sock: socket.socket, fileobj: IO[bytes], mode: Mode) -> int:
        """Copy ``fileobj`` to the data channel; closing the socket ends the file."""
        blocksize = self.session.config.blocksize
        count = 0
        pending = b""
        while True:
            data = fileobj.read(blocksize)
            if not data:
                data, pending = pending, b""
                if not data:
                    break
            elif mode is Mode.ASCII:
                data, pending = lf_to_crlf(pending + data)
            try:
                sock.sendall(data)
            except socket.timeout as error:
                raise FtpTimeoutError("Timed out writing the data connection") from error
            except OSError as error:
                raise DataChannelError(f"Data connection failed: {error}") from error
            count += len(data)
        return count


def _hold_cr(data: bytes):
    # A CR at the end of a chunk may be the first half of a CRLF pair
    if data.endswith(b"\r"):
        return data[:-1], b"\r"
    return data, b""


def crlf_to_lf(data: bytes):
    """Translate wire line endings to local ones; returns (converted, carry)."""
    data, carry = _hold_cr(data)
    return data.replace(b"\r\n", b"\n"), carry


def lf_to_crlf(data: bytes):
    """Translate local line endings to CRLF; returns (converted, carry)."""
    data, carry = _hold_cr(data)
    return data.replace(b"\r\n", b"\n").replace(b"\n", b"\r\n"), carry
