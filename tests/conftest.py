import asyncio
import socket
import threading
from typing import Dict, List, Optional, Union

import pytest

from ftpcore import Basic, Config, FtpServer, Session

USER = "user"
PASSWORD = "secret-password"
DATA_PORT = 30000


class FakeReader:
    """What ``makefile("rb")`` returns: hands out queued reply lines."""

    def __init__(self, sock: "FakeControl") -> None:
        self.sock = sock

    def readline(self, limit: int = -1) -> bytes:
        buffer = self.sock.incoming
        if not buffer and self.sock.server.stall:
            raise socket.timeout("timed out")
        index = buffer.find(b"\n")
        end = len(buffer) if index < 0 else index + 1
        line = bytes(buffer[:end])
        del buffer[:end]
        return line

    def close(self) -> None:
        pass


class FakeControl:
    """Control socket: every command written is answered immediately."""

    family = socket.AF_INET

    def __init__(self, server: "FakeServer") -> None:
        self.server = server
        self.incoming = bytearray()
        self.closed = False
        self.timeout: Optional[float] = None

    def makefile(self, mode: str) -> FakeReader:
        return FakeReader(self)

    def settimeout(self, timeout: Optional[float]) -> None:
        self.timeout = timeout

    def getpeername(self):
        return (self.server.peer, 21)

    def queue(self, *lines: str) -> None:
        for line in lines:
            self.incoming.extend(line.encode() + b"\r\n")

    def sendall(self, data: bytes) -> None:
        if self.closed or self.server.broken:
            raise ConnectionResetError("connection reset by peer")
        for line in bytes(data).split(b"\r\n")[:-1]:
            self.queue(*self.server.handle(line.decode()))

    def shutdown(self, how: int) -> None:
        pass

    def close(self) -> None:
        self.closed = True


class FakeData:
    """Data socket for one transfer."""

    def __init__(self, server: "FakeServer") -> None:
        self.server = server
        self.payload = b""
        self.received = bytearray()
        self.target: Optional[str] = None
        self.offset = 0
        self.closed = False

    def settimeout(self, timeout: Optional[float]) -> None:
        pass

    def recv(self, size: int) -> bytes:
        self.server.streaming.set()
        if self.server.hold is not None:
            self.server.hold.wait(5)
        if self.server.data_error is not None:
            raise self.server.data_error
        if self.closed:
            raise OSError("data socket closed")
        chunk, self.payload = self.payload[:size], self.payload[size:]
        return chunk

    def sendall(self, data: bytes) -> None:
        if self.server.data_error is not None:
            raise self.server.data_error
        self.received.extend(data)

    def shutdown(self, how: int) -> None:
        self.closed = True

    def close(self) -> None:
        if self.target is not None:
            existing = self.server.files.get(self.target, b"")[: self.offset]
            self.server.files[self.target] = existing + bytes(self.received)
            self.target = None
        self.closed = True


class FakeServer:
    """
    An FTP server that lives in memory and answers like a real one.

    Pass ``server.factory`` wherever a socket factory is accepted. Everything
    the client writes is recorded in ``commands``.
    """

    def __init__(self, greeting: str = "220 Fake FTP ready") -> None:
        self.greeting = greeting
        self.files: Dict[str, bytes] = {}
        self.commands: List[str] = []
        self.connections: List[tuple] = []
        self.cwd = "/home/user"
        self.peer = "127.0.0.1"
        self.pasv = f"227 Entering Passive Mode (127,0,0,1,{DATA_PORT >> 8},{DATA_PORT & 255})"
        self.announce = True  # put "(N bytes)" in the 150 reply
        self.sizes: Dict[str, int] = {}  # announced size overrides
        self.served: Dict[str, bytes] = {}  # what the data socket really sends
        self.final = "226 Transfer complete"
        self.overrides: Dict[str, Union[str, List[str]]] = {}
        self.refuse_data = False
        self.stall = False
        self.broken = False
        self.data_error: Optional[Exception] = None
        self.hold: Optional[threading.Event] = None
        self.streaming = threading.Event()
        self.control: Optional[FakeControl] = None
        self.data: Optional[FakeData] = None
        self.login = None
        self.rest = 0

    @property
    def verbs(self) -> List[str]:
        return [line.split(" ")[0] for line in self.commands]

    def factory(self, address, timeout=None):
        self.connections.append(tuple(address))
        host, port = address
        if port == DATA_PORT:
            if self.refuse_data:
                raise ConnectionRefusedError("connection refused")
            self.data = FakeData(self)
            return self.data
        self.control = FakeControl(self)
        self.control.queue(self.greeting)
        return self.control

    def handle(self, line: str) -> List[str]:
        self.commands.append(line)
        verb, _, arg = line.partition(" ")

        if verb in self.overrides:
            reply = self.overrides[verb]
            return [reply] if isinstance(reply, str) else list(reply)

        if verb == "USER":
            self.login = arg
            if arg == "anonymous":
                return ["230 Anonymous access granted"]
            return ["331 Password required"]
        if verb == "PASS":
            if self.login == USER and arg == PASSWORD:
                return ["230 Login successful"]
            return ["530 Login incorrect"]
        if verb == "PWD":
            return [f'257 "{self.cwd}" is the current directory']
        if verb == "TYPE":
            return [f"200 Switching to {arg} mode"]
        if verb == "PASV":
            return [self.pasv]
        if verb == "EPSV":
            return [f"229 Entering Extended Passive Mode (|||{DATA_PORT}|)"]
        if verb == "REST":
            self.rest = int(arg)
            return [f"350 Restart position accepted ({arg})"]
        if verb == "RETR":
            rest, self.rest = self.rest, 0
            if arg not in self.files:
                return ["550 Failed to open file"]
            content = self.files[arg][rest:]
            self.data.payload = self.served.get(arg, content)
            size = self.sizes.get(arg, len(content))
            opening = f"150 Opening BINARY mode data connection for {arg}"
            if self.announce:
                opening += f" ({size} bytes)"
            return [opening, self.final]
        if verb == "STOR":
            self.data.target = arg
            self.data.offset, self.rest = self.rest, 0
            return ["150 Ok to send data", self.final]
        if verb == "QUIT":
            return ["221 Goodbye"]
        return ["502 Command not implemented"]


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def config() -> Config:
    return Config(host="ftp.example.com", auth=Basic(USER, PASSWORD))


@pytest.fixture
def session(server, config) -> Session:
    return Session(config, factory=server.factory)


@pytest.fixture
def ready(session, server) -> Session:
    """A logged-in session with the login exchange cleared from the record."""
    session.connect()
    session.login()
    server.commands.clear()
    return session


@pytest.fixture
def loop():
    """An event loop running in a background thread."""
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()
    yield loop
    loop.call_soon_threadsafe(loop.stop)
    thread.join(5)
    loop.close()


@pytest.fixture
def ftp_server(loop, tmp_path):
    """A real FTP server on a free local port, serving ``tmp_path / "root"``."""
    root = tmp_path / "root"
    root.mkdir()
    server = FtpServer(root=root, auth=Basic(USER, PASSWORD))
    asyncio.run_coroutine_threadsafe(server.start(), loop).result(10)
    yield server
    asyncio.run_coroutine_threadsafe(server.stop(), loop).result(10)
