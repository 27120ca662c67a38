import enum
import logging
import socket
from contextlib import contextmanager
from typing import Iterator, Optional, Union

from .auth import Guest
from .codec import Reply, parse_pwd
from .config import Config, Mode
from .connection import ControlConnection, SocketFactory
from .errors import (
    AuthenticationError,
    BusyError,
    CommandError,
    ConnectError,
    FtpTimeoutError,
    NotAuthenticatedError,
    NotConnectedError,
    ProtocolError,
)
from .transfer import DataChannelManager, Local

logger = logging.getLogger(__name__)


class State(enum.Enum):
    """Lifecycle of a session."""

    DISCONNECTED = "disconnected"  # No control connection yet
    CONNECTED = "connected"  # Greeted, not logged in
    AUTHENTICATED = "authenticated"  # Logged in, ready for file commands
    CLOSED = "closed"  # Terminal


class Session:
    """
    One logical FTP client conversation with one server.

    The session owns at most one control connection and decides which
    commands are legal in which state. Commands that need a login are refused
    locally, before anything is written to the socket. When the control
    connection breaks (timeout, reset, malformed reply, 421) the session gives
    up on it and moves to CLOSED, since the command/reply stream can no longer
    be trusted.

    A session is not thread-safe: callers that share one must serialize their
    calls. The one exception is close(), which may be used from another thread
    to cancel a transfer in progress.
    """

    def __init__(self, config: Config, factory: SocketFactory = socket.create_connection) -> None:
        """Prepare a session; nothing touches the network until connect().

        Args:
            config: Server address, credentials and transfer settings.
            factory: Socket factory for control and data connections.
        """
        self.config = config
        self.factory = factory
        self.state = State.DISCONNECTED
        self.control: Optional[ControlConnection] = None
        self.passive: bool = config.passive
        self.mode: Optional[Mode] = None  # Last TYPE acknowledged by the server
        self.reply: Optional[Reply] = None  # Last reply received
        self.welcome: Optional[Reply] = None
        self.transfers = DataChannelManager(self)

    def __repr__(self) -> str:
        return f"<Session {self.config.host}:{self.config.port} {self.state.value}>"

    @property
    def host(self) -> str:
        return self.config.host

    @property
    def port(self) -> int:
        return self.config.port

    @property
    def timeout(self) -> float:
        return self.config.timeout.read

    @property
    def connection(self) -> Optional[ControlConnection]:
        """The live control connection, or None."""
        if self.state in (State.CONNECTED, State.AUTHENTICATED):
            return self.control
        return None

    def connect(self) -> Reply:
        """Open the control connection and read the server greeting.

        Calling connect() on a session that is already connected returns the
        original greeting; a session never holds two control connections.

        Returns:
            Reply: The 220 greeting.

        Raises:
            NotConnectedError: If the session has been closed.
            ConnectError: If the socket can't be opened or the greeting isn't 220.
            FtpTimeoutError: If the greeting doesn't arrive in time.
        """
        if self.state in (State.CONNECTED, State.AUTHENTICATED):
            return self.welcome
        if self.state is State.CLOSED:
            raise NotConnectedError("Session is closed; create a new one to reconnect")

        timeout = self.config.timeout
        control = ControlConnection.open(
            self.config.host,
            self.config.port,
            timeout.connect,
            self.factory,
            self.config.encoding,
        )

        try:
            control.settimeout(timeout.read)
            reply = control.read_reply()
            # 120 means "ready in a few minutes"; the real greeting follows
            while reply.preliminary:
                reply = control.read_reply()
        except FtpTimeoutError:
            control.release()
            raise
        except (OSError, ProtocolError) as error:
            control.release()
            raise ConnectError(f"No greeting from {self.host}:{self.port} - {error}") from error

        self.reply = reply
        if reply.code != 220:
            control.release()
            raise ConnectError(f"Unexpected greeting from {self.host}:{self.port}: {reply}")

        self.control = control
        self.welcome = reply
        self.mode = None
        self.state = State.CONNECTED
        logger.info(f"Connected to {self.host}:{self.port}")
        return reply

    def login(self) -> Reply:
        """Run the USER/PASS sequence with the configured credentials.

        Without credentials an anonymous login is attempted. On failure the
        session closes itself unless the ``stay`` flag is set, in which case it
        stays CONNECTED and login() may be tried again.

        Returns:
            Reply: The final 2xx reply.

        Raises:
            NotConnectedError: If there is no control connection.
            AuthenticationError: If the server rejects the login.
        """
        if self.state is State.AUTHENTICATED:
            return self.reply
        if self.state is not State.CONNECTED:
            raise NotConnectedError("Login requires a connected session")

        user, password = (self.config.auth or Guest()).sequence()

        with self.guard():
            reply = self.command("USER", user)
            if reply.intermediate:
                reply = self.command("PASS", password)

        if reply.completion:
            self.state = State.AUTHENTICATED
            logger.info(f"Logged in to {self.host} as {user}")
            return reply

        if reply.intermediate:
            message = f"Login as {user} needs an account, which is not supported: {reply}"
        else:
            message = f"Login as {user} rejected: {reply}"

        if not self.config.stay:
            self.close()
        raise AuthenticationError(message, reply)

    def set_passive(self, enabled: bool = True) -> None:
        """Choose passive mode for the next transfers. Sends nothing.

        Raises:
            NotConnectedError: If there is no control connection.
        """
        if self.state not in (State.CONNECTED, State.AUTHENTICATED):
            raise NotConnectedError("Passive mode can only be set on a connected session")
        self.passive = bool(enabled)

    def pwd(self) -> str:
        """Return the server's current working directory.

        Raises:
            NotAuthenticatedError: If the session is not logged in.
            CommandError: If the server does not answer 257.
        """
        self.require_authenticated("PWD")
        with self.guard():
            reply = self.command("PWD")
        if reply.code != 257:
            raise CommandError(f"PWD failed: {reply}", reply)
        return parse_pwd(reply.message)

    def get(
        self,
        remote: str,
        local: Local,
        mode: Optional[Union[Mode, str]] = None,
        rest: Optional[int] = None,
    ) -> int:
        """Download a file; see DataChannelManager.retrieve().

        Raises:
            NotAuthenticatedError: If the session is not logged in.
        """
        self.require_authenticated("RETR", busy=False)
        with self.guard():
            return self.transfers.retrieve(remote, local, mode, rest)

    def put(
        self,
        local: Local,
        remote: str,
        mode: Optional[Union[Mode, str]] = None,
        rest: Optional[int] = None,
    ) -> int:
        """Upload a file; see DataChannelManager.store().

        Raises:
            NotAuthenticatedError: If the session is not logged in.
        """
        self.require_authenticated("STOR", busy=False)
        with self.guard():
            return self.transfers.store(local, remote, mode, rest)

    def close(self) -> None:
        """Close the session. Closing a closed session does nothing.

        With a transfer in flight, the QUIT exchange is skipped and both
        sockets are shut down, which makes the transfer fail promptly.
        """
        if self.state is State.CLOSED:
            return

        control, self.control = self.control, None
        self.state = State.CLOSED

        if self.transfers.active:
            self.transfers.cancel()
            if control is not None:
                control.release()
        elif control is not None:
            control.close()
        logger.info(f"Session to {self.host}:{self.port} closed")

    quit = close

    def ensure_ready(self) -> bool:
        """Connect, log in and apply the passive setting in one step.

        Idempotent: once authenticated, it returns immediately without
        sending anything. Login only happens when credentials are
        configured. If that login fails the connection is closed, whatever
        the ``stay`` flag says.

        Returns:
            bool: True when the session is connected (and logged in when
                  credentials are configured).

        Raises:
            Whatever connect() or login() raise.
        """
        if self.state is State.AUTHENTICATED:
            return True

        self.connect()

        if self.config.auth is not None:
            try:
                self.login()
            except AuthenticationError:
                self.close()
                raise

        if self.config.passive:
            self.set_passive(True)
        return True

    def set_type(self, mode: Mode) -> None:
        """Send TYPE when ``mode`` differs from what the server last accepted."""
        if self.mode is mode:
            return
        reply = self.command("TYPE", mode.value)
        if not reply.completion:
            raise CommandError(f"TYPE {mode.value} refused: {reply}", reply)
        self.mode = mode

    def command(self, verb: str, *args: str) -> Reply:
        """One control exchange; a 421 reply ends the session."""
        if self.control is None:
            raise NotConnectedError(f"{verb} requires a connected session")
        return self.check(self.control.send_command(verb, *args))

    def read_reply(self) -> Reply:
        """Read a further reply for the last command (transfer replies)."""
        if self.control is None:
            raise ConnectError("Control connection was closed during the transfer")
        return self.check(self.control.read_reply())

    def check(self, reply: Reply) -> Reply:
        self.reply = reply
        if reply.code == 421:
            self.abandon()
            raise ConnectError(f"{reply.meaning}: {reply}")
        return reply

    def require_authenticated(self, verb: str, busy: bool = True) -> None:
        if self.state is not State.AUTHENTICATED:
            raise NotAuthenticatedError(f"{verb} requires a live, logged-in connection")
        if busy and self.transfers.active:
            raise BusyError(f"{verb} cannot run while a transfer is in progress")

    @contextmanager
    def guard(self) -> Iterator[None]:
        """Drop the control connection when it fails underneath an exchange."""
        try:
            yield
        except (FtpTimeoutError, ConnectError, ProtocolError) as error:
            if self.state is not State.CLOSED:
                logger.error(f"Control connection to {self.host} unusable: {error}")
                self.abandon()
            raise

    def abandon(self) -> None:
        """Release every socket without a QUIT and mark the session CLOSED."""
        control, self.control = self.control, None
        self.state = State.CLOSED
        self.transfers.cancel()
        if control is not None:
            control.release()
