import logging
import socket
from typing import Any, BinaryIO, Callable, Optional, Tuple

from .codec import Reply, decode_reply, encode_command
from .errors import ConnectError, FtpTimeoutError, ProtocolError

logger = logging.getLogger(__name__)

# Same signature as socket.create_connection; tests inject fakes here
SocketFactory = Callable[..., Any]


class ControlConnection:
    """
    The command/reply socket to an FTP server.

    Exchanges are strictly sequential: a command is written, then the reply
    is read to completion before anything else happens. Nothing is retried;
    a failed exchange is reported and the caller decides what to do next.
    """

    def __init__(self, sock: socket.socket, encoding: str = "utf-8") -> None:
        self.sock = sock
        self.file: BinaryIO = sock.makefile("rb")
        self.encoding = encoding
        self.closed = False

    @classmethod
    def open(
        cls,
        host: str,
        port: int = 21,
        timeout: Optional[float] = None,
        factory: SocketFactory = socket.create_connection,
        encoding: str = "utf-8",
    ) -> "ControlConnection":
        """Connect a stream socket to the server's control port.

        The greeting is not read here; that belongs to the session.

        Args:
            host: Server name or address.
            port: Control port.
            timeout: Seconds for the connect and for every later socket call.
            factory: Callable with the signature of ``socket.create_connection``.
            encoding: Character encoding of the control connection.

        Returns:
            ControlConnection: The open connection.

        Raises:
            ConnectError: When the server refuses, cannot be resolved, or the
                          connect times out.
        """
        logger.info(f"Connecting to {host}:{port} (timeout={timeout}s)")
        try:
            sock = factory((host, port), timeout)
        except OSError as error:
            logger.error(f"Failed to connect to {host}:{port} - {error}")
            raise ConnectError(f"Failed to connect to {host}:{port} - {error}") from error
        return cls(sock, encoding)

    @property
    def peer(self) -> Tuple[str, int]:
        """Address of the server end of the control socket."""
        return self.sock.getpeername()[:2]

    @property
    def family(self) -> int:
        return getattr(self.sock, "family", socket.AF_INET)

    def settimeout(self, timeout: Optional[float]) -> None:
        self.sock.settimeout(timeout)

    def send(self, verb: str, *args: str) -> None:
        """Write one command without waiting for the reply."""
        if self.closed:
            raise ConnectError("Control connection is closed")

        line = encode_command(verb, *args, encoding=self.encoding)
        if verb.upper() == "PASS":
            logger.debug("-> PASS ****")
        else:
            logger.debug(f"-> {line.decode(self.encoding).strip()}")

        try:
            self.sock.sendall(line)
        except socket.timeout as error:
            raise FtpTimeoutError(f"Timed out sending {verb.upper()}") from error
        except OSError as error:
            raise ConnectError(f"Control connection lost while sending {verb.upper()}: {error}") from error

    def read_reply(self) -> Reply:
        """Block until one complete reply has been decoded.

        Raises:
            FtpTimeoutError: If the server stays silent past the read timeout.
            ConnectError: If the socket fails underneath the read.
            ProtocolError: If the reply is malformed or cut short.
        """
        if self.closed:
            raise ConnectError("Control connection is closed")

        try:
            reply = decode_reply(self.file, self.encoding)
        except socket.timeout as error:
            raise FtpTimeoutError("Timed out waiting for a reply") from error
        except OSError as error:
            raise ConnectError(f"Control connection lost: {error}") from error

        logger.debug(f"<- {reply}")
        return reply

    def send_command(self, verb: str, *args: str) -> Reply:
        """Write a command and return its reply."""
        self.send(verb, *args)
        return self.read_reply()

    def close(self) -> None:
        """Say QUIT, then release the socket whatever happens.

        QUIT is best effort: a dead peer or a garbled answer must not stop the
        socket from being released.
        """
        if self.closed:
            return
        try:
            self.send_command("QUIT")
        except (OSError, ProtocolError) as error:
            logger.debug(f"QUIT failed, closing anyway: {error}")
        finally:
            self.release()

    def release(self) -> None:
        """Close the socket without talking to the server.

        Safe to call from another thread: shutting the socket down unblocks a
        pending read, which then fails in the thread that was waiting.
        """
        if self.closed:
            return
        self.closed = True
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self.file.close()
        finally:
            self.sock.close()
        logger.info("Control connection closed")
