import enum
import warnings
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union
from urllib.parse import unquote, urlparse

from .auth import Basic, Guest

# Values that a configuration file may use to switch a flag on
TRUTHY = {"1", "true", "yes", "on"}


class Mode(enum.Enum):
    """
    Transfer representation type for data transfers.

    BINARY moves bytes untouched (wire ``TYPE I``). ASCII lets the server
    translate line endings to CRLF on the wire (wire ``TYPE A``); the client
    translates them back to local newlines.
    """

    BINARY = "I"
    ASCII = "A"

    @classmethod
    def parse(cls, value: Union["Mode", str]) -> "Mode":
        """Accept a Mode, its wire letter, or a friendly name like "binary"."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        if text in ("i", "binary", "bin", "image"):
            return cls.BINARY
        if text in ("a", "ascii", "text"):
            return cls.ASCII
        raise ValueError(f"Unknown transfer mode: {value!r}")


@dataclass
class Timeout:
    """
    Timeout configuration for FTP sockets.

    Every socket operation in the core is blocking, so each one is bounded
    by one of these values. A timeout during a control exchange or transfer
    leaves the control stream in an unknown state, which is why the session
    gives up on the connection when one fires.

    Attributes:
        connect: Seconds to wait while opening the control or a data socket.
        read: Seconds to wait for any single read or write once connected.
    """

    connect: float = 90.0  # Time to wait for a socket to be established
    read: float = 90.0  # Time to wait for each read/write after that

    def __post_init__(self) -> None:
        """
        Validate timeout configuration after initialization.

        Raises:
            ValueError: If a timeout is not a positive number.
        """
        if self.connect <= 0:
            raise ValueError("Connect timeout must be positive")
        if self.read <= 0:
            raise ValueError("Read timeout must be positive")


def flag(value: Any) -> bool:
    """Interpret a configuration value as a boolean ("1", "yes", True...)."""
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY
    return bool(value)


@dataclass
class Config:
    """
    Everything a session needs to reach and talk to one FTP server.

    This is the record handed to the core by whatever loads configuration.
    Unset fields take the documented defaults, so a config with only a host
    is enough for an anonymous-capable connection.

    Attributes:
        host: Server name or address.
        port: Control port.
        auth: Credentials; None means no login is attempted by ensure_ready().
        timeout: Socket timeouts.
        mode: Default transfer mode for get/put.
        passive: Use passive mode for transfers (the only supported mode).
        stay: Keep the control connection open after a failed login.
        epsv: Prefer EPSV over PASV when negotiating data channels.
        encoding: Character encoding of the control connection.
        blocksize: Chunk size for data channel reads and writes.
    """

    host: str
    port: int = 21
    auth: Optional[Union[Basic, Guest]] = None
    timeout: Timeout = field(default_factory=Timeout)
    mode: Mode = Mode.BINARY
    passive: bool = True
    stay: bool = False
    epsv: bool = False
    encoding: str = "utf-8"
    blocksize: int = 8192

    def __post_init__(self) -> None:
        """
        Normalize and validate the configuration.

        Raises:
            ValueError: If the host is missing or a numeric field is out of range.
        """
        if not self.host or not str(self.host).strip():
            raise ValueError("Host is required")

        self.port = int(self.port)
        if not (0 < self.port < 65536):
            raise ValueError(f"Invalid port: {self.port}")

        self.mode = Mode.parse(self.mode)

        if self.blocksize <= 0:
            raise ValueError("Block size must be positive")

        if not self.passive:
            warnings.warn(
                "Active mode is not supported; transfers will fail until "
                "passive mode is enabled."
            )

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "Config":
        """Build a config from a flat key/value mapping.

        Any Mapping works, including a ``configparser`` section, so values may
        arrive as strings. Recognized keys are ``host``, ``user``,
        ``password`` (or ``pass``), ``port``, ``timeout``, ``mode``, ``pasv``
        (or ``passive``), ``stay`` and ``epsv``; anything missing takes its
        default.

        Args:
            mapping: The associative configuration array.

        Returns:
            Config: The validated configuration.

        Raises:
            ValueError: If a value cannot be interpreted.
        """

        def value(key: str, default: Any = None) -> Any:
            found = mapping.get(key)
            return default if found is None or found == "" else found

        user = value("user")
        password = value("password", value("pass", ""))
        auth: Optional[Union[Basic, Guest]] = None
        if user and str(user).lower() in Guest.NAMES:
            auth = Guest(password or Guest.email)
        elif user:
            auth = Basic(str(user), str(password))

        seconds = float(value("timeout", 90.0))

        return cls(
            host=value("host", ""),
            port=int(value("port", 21)),
            auth=auth,
            timeout=Timeout(connect=seconds, read=seconds),
            mode=Mode.parse(value("mode", Mode.BINARY)),
            passive=flag(value("pasv", value("passive", True))),
            stay=flag(value("stay", False)),
            epsv=flag(value("epsv", False)),
        )

    @classmethod
    def from_endpoint(cls, endpoint: str, **kwargs: Any) -> "Config":
        """Build a config from an ``ftp://[user[:password]@]host[:port]`` URL.

        Credentials embedded in the URL are used unless ``auth`` is passed
        explicitly.

        Raises:
            TypeError: If endpoint isn't a string.
            ValueError: If the scheme is not ``ftp`` or the host is missing.
        """
        if not isinstance(endpoint, str):
            raise TypeError("Endpoint must be a string.")

        url = urlparse(endpoint)
        if url.scheme != "ftp":
            raise ValueError("Endpoint must start with 'ftp://'.")

        if "auth" not in kwargs and url.username:
            user = unquote(url.username)
            password = unquote(url.password or "")
            if user.lower() in Guest.NAMES:
                kwargs["auth"] = Guest(password or Guest.email)
            else:
                kwargs["auth"] = Basic(user, password)

        return cls(host=url.hostname or "", port=url.port or 21, **kwargs)
