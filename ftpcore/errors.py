import builtins
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class FtpError(Exception):
    """Base class for everything the FTP core reports."""


class ConnectError(FtpError, ConnectionError):
    """The server could not be reached, or the control connection dropped."""


class ProtocolError(FtpError):
    """A reply did not follow FTP reply framing."""


class AuthenticationError(FtpError):
    """The server rejected the login sequence."""

    def __init__(self, message: str, reply=None) -> None:
        super().__init__(message)
        self.reply = reply


class NotConnectedError(FtpError):
    """The operation needs an open control connection."""


class NotAuthenticatedError(FtpError):
    """The operation needs a logged-in session."""


class DataChannelError(FtpError):
    """Passive negotiation or the data socket failed."""


class TransferIncompleteError(FtpError):
    """The control and data channels disagree about how a transfer ended."""

    def __init__(self, message: str, reply=None, transferred: int = 0) -> None:
        super().__init__(message)
        self.reply = reply
        self.transferred = transferred


class FtpTimeoutError(FtpError, builtins.TimeoutError):
    """A blocking socket operation exceeded its deadline."""


class BusyError(FtpError):
    """A transfer is already running on this session."""


class CommandError(FtpError):
    """The server answered a command with a negative reply.

    Attributes:
        reply: The 4xx/5xx reply that was received.
    """

    def __init__(self, message: str, reply=None) -> None:
        super().__init__(message)
        self.reply = reply


class InvalidCommandError(FtpError, ValueError):
    """A command verb or argument cannot be put on the wire (CR/LF, empty verb)."""


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Outcome of a facade operation.

    Facade calls never raise FTP errors; they hand back a Result instead.
    A Result is truthy when the operation succeeded, so the common pattern
    ``if client.ensure_ready(): ...`` reads naturally.

    Attributes:
        value: What the operation produced (path, byte count, reply...).
        error: The exception that ended the operation, None on success.
    """

    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def __bool__(self) -> bool:
        return self.ok

    def unwrap(self) -> T:
        """Return the value, or raise the stored error."""
        if self.error is not None:
            raise self.error
        return self.value
