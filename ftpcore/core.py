import socket
import warnings
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar, Union
from urllib.parse import urlparse

import aioftp

from .auth import Basic, Guest
from .codec import Reply
from .config import Config, Mode, Timeout
from .connection import ControlConnection, SocketFactory
from .errors import NotConnectedError, Result
from .session import Session, State
from .transfer import Local

# Enhanced type definitions for improved type safety and clarity
T = TypeVar("T")
HookType = Callable[..., Any]
Address = Tuple[str, int]


class FtpClient:
    """
    Blocking FTP client with a small, predictable operation set.

    Every operation returns a Result instead of raising: check it for truth,
    or call ``unwrap()`` when an exception is preferred. Failures are also
    reported through ``warnings.warn`` and the optional ``"error"`` hook, so
    nothing goes unnoticed when a Result is ignored.

    The client owns one Session at a time. Once a session is closed, the next
    connect() or ensure_ready() starts a fresh one, so the same client object
    can be reused across connections.
    """

    def __init__(
        self,
        config: Config,
        hooks: Optional[Dict[str, HookType]] = None,
        factory: SocketFactory = socket.create_connection,
    ) -> None:
        """Set up the client; nothing is sent until an operation is called.

        Args:
            config: Where to connect and how to transfer.
            hooks: Callables run after "connect", "login", "download",
                   "upload" and "close", and on every "error".
            factory: Socket factory, mainly useful for tests.
        """
        self.config = config
        self.hooks: Dict[str, HookType] = hooks or {}
        self.factory = factory
        self.session: Optional[Session] = None

    @classmethod
    def from_mapping(cls, mapping, **kwargs: Any) -> "FtpClient":
        """Create a client from a flat key/value configuration (see Config.from_mapping)."""
        return cls(Config.from_mapping(mapping), **kwargs)

    def __enter__(self) -> "FtpClient":
        self.ensure_ready()
        return self

    def __exit__(self, type, value, trace) -> None:
        self.close()

    def hook(self, name: str, *args: Any) -> None:
        """Run a hook; a failing hook is reported but never breaks the operation."""
        if name in self.hooks:
            try:
                self.hooks[name](*args)
            except Exception as error:
                warnings.warn(f"{name.capitalize()} hook failed: {error}")

    def call(self, name: str, operation: Callable[..., T], *args: Any) -> Result[T]:
        """Run a session operation and turn its outcome into a Result."""
        try:
            value = operation(*args)
        except Exception as error:
            warnings.warn(f"{name} failed: {error}")
            self.hook("error", error)
            return Result(error=error)
        return Result(value)

    def current(self) -> Session:
        """The session to run commands on; a closed one is replaced."""
        if self.session is None or self.session.state is State.CLOSED:
            self.session = Session(self.config, self.factory)
        return self.session

    def connected(self) -> Session:
        if self.session is None:
            raise NotConnectedError("Not connected")
        return self.session

    def connection(self) -> Optional[ControlConnection]:
        """The live control connection, or None when not connected."""
        if self.session is None:
            return None
        return self.session.connection

    def connect(self) -> Result[Reply]:
        """Open the control connection. The value is the server greeting."""
        result = self.call("Connect", lambda: self.current().connect())
        if result:
            self.hook("connect", self.session)
        return result

    def login(self) -> Result[Reply]:
        """Log in with the configured credentials (anonymous when none are set)."""
        result = self.call("Login", lambda: self.connected().login())
        if result:
            self.hook("login", self.session)
        return result

    def set_passive(self, enabled: Optional[bool] = None) -> Result[bool]:
        """Turn passive mode on or off; defaults to the configured value."""
        if enabled is None:
            enabled = self.config.passive

        def operation() -> bool:
            self.connected().set_passive(enabled)
            return enabled

        return self.call("Passive", operation)

    pasv = set_passive

    def pwd(self) -> Result[str]:
        """Current remote directory."""
        return self.call("PWD", lambda: self.connected().pwd())

    def get(
        self,
        remote: str,
        local: Local,
        mode: Optional[Union[Mode, str]] = None,
        rest: Optional[int] = None,
    ) -> Result[int]:
        """Download ``remote`` to ``local``; the value is the byte count."""
        result = self.call("Download", lambda: self.connected().get(remote, local, mode, rest))
        if result:
            self.hook("download", remote, local, result.value)
        return result

    def put(
        self,
        local: Local,
        remote: str,
        mode: Optional[Union[Mode, str]] = None,
        rest: Optional[int] = None,
    ) -> Result[int]:
        """Upload ``local`` to ``remote``; the value is the byte count."""
        result = self.call("Upload", lambda: self.connected().put(local, remote, mode, rest))
        if result:
            self.hook("upload", local, remote, result.value)
        return result

    def close(self) -> Result[None]:
        """Close the connection. Safe to call any number of times."""
        if self.session is None or self.session.state is State.CLOSED:
            return Result()
        result = self.call("Close", self.session.close)
        self.hook("close", self.session)
        return result

    quit = close

    def ensure_ready(self) -> Result[bool]:
        """Connect and log in if needed; a no-op when already logged in."""
        session = self.current()
        fresh = session.state is State.DISCONNECTED
        result = self.call("Connect", session.ensure_ready)
        if result and fresh:
            self.hook("connect", session)
            if session.state is State.AUTHENTICATED:
                self.hook("login", session)
        return result

    def stats(self) -> Dict[str, Union[str, int, bool, None]]:
        """Get status info about the client and its session.

        Returns:
            Dict with connection state and configuration details
        """
        session = self.session
        reply = session.reply if session else None
        return {
            "state": session.state.value if session else State.DISCONNECTED.value,
            "host": self.config.host,
            "port": self.config.port,
            "passive": session.passive if session else self.config.passive,
            "mode": self.config.mode.name.lower(),
            "busy": bool(session and session.transfers.active),
            "reply": str(reply) if reply else None,
            "encoding": self.config.encoding,
        }


class FtpServer:
    """
    A small FTP server for local development and tests.

    Serves one directory through aioftp, either to a single user with a
    password or anonymously. Only meant to give the client something real to
    talk to: no TLS, no web interface, no user database.
    """

    def __init__(
        self,
        endpoint: str = "ftp://127.0.0.1:0",
        root: Optional[Union[str, Path]] = None,
        auth: Optional[Union[Basic, Guest]] = None,
        timeout: Optional[Timeout] = None,
        hooks: Optional[Dict[str, HookType]] = None,
        encoding: str = "utf-8",
    ) -> None:
        """Initialize the server without binding anything yet.

        Args:
            endpoint: Where to listen, like "ftp://127.0.0.1:2121"; port 0
                      picks a free port (see ``address`` after start()).
            root: Directory to serve, the current directory by default.
            auth: Basic for one named user (read/write), Guest or None for
                  anonymous read-only access.
            timeout: Idle and socket timeouts.
            hooks: Callables run on "start" and "stop".
            encoding: Text encoding of the control connection.
        """
        url = urlparse(endpoint)
        if url.scheme != "ftp":
            raise ValueError("Endpoint must start with 'ftp://'.")

        self.host: str = url.hostname or "127.0.0.1"
        self.port: int = url.port if url.port is not None else 21
        self.root: Path = Path(root) if root is not None else Path.cwd()
        self.auth = auth
        self.timeout: Timeout = timeout or Timeout()
        self.hooks: Dict[str, HookType] = hooks or {}
        self.encoding = encoding
        self.server: Optional[aioftp.Server] = None

    @property
    def address(self) -> Address:
        """Host and port the server is listening on."""
        if self.server is None:
            raise RuntimeError("Server is not running")
        return self.server.server.sockets[0].getsockname()[:2]

    async def start(self) -> aioftp.Server:
        """Bind and start serving.

        Returns:
            aioftp.Server: The server instance

        Raises:
            RuntimeError: When the server can't start (usually port conflicts)
        """
        named = isinstance(self.auth, Basic)
        user = aioftp.User(
            login=self.auth.user if named else None,
            password=self.auth.password if named else None,
            base_path=self.root,
            home_path="/",
            permissions=[aioftp.Permission("/", readable=True, writable=named)],
        )

        self.server = aioftp.Server(
            [user],
            path_io_factory=aioftp.PathIO,
            idle_timeout=self.timeout.read,
            socket_timeout=self.timeout.read,
            encoding=self.encoding,
        )

        try:
            await self.server.start(host=self.host, port=self.port)
        except OSError as error:
            self.server = None
            if "Address already in use" in str(error):
                raise RuntimeError(f"Port {self.port} is already in use")
            raise RuntimeError(f"Failed to bind to port {self.port}: {error}")

        if "start" in self.hooks:
            try:
                self.hooks["start"](self.address)
            except Exception as error:
                warnings.warn(f"Start hook failed: {error}")

        return self.server

    async def stop(self) -> None:
        """Shut the server down; does nothing when it isn't running."""
        if self.server is None:
            return
        try:
            await self.server.close()
        finally:
            self.server = None

        if "stop" in self.hooks:
            try:
                self.hooks["stop"]()
            except Exception as error:
                warnings.warn(f"Stop hook failed: {error}")

    async def __aenter__(self) -> "FtpServer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
