__version__ = "1.0.0"
__author__ = "Andrew Hernandez"
__email__ = "andromedeyz@hotmail.com"
__license__ = "MIT"
__description__ = "A small blocking FTP client core: control-connection state machine, reply codec and passive-mode transfers."
__url__ = "http://github.com/ApaxPhoenix/FtpCore"

# The main FtpCore class - builds clients and servers from one configuration
from .ftp import FtpCore

# The facade you call, and a local server to point it at
from .core import (
    FtpClient,  # connect/login/pwd/get/put/close, every call returns a Result
    FtpServer,  # Serve a directory over FTP for development and tests
)

# The engine underneath the facade
from .session import Session, State
from .connection import ControlConnection
from .transfer import DataChannelDescriptor, DataChannelManager, Direction
from .codec import Category, Reply, decode_reply, encode_command

# Fine-tune how your FTP connections behave
from .config import (
    Config,  # Host, port, credentials, flags - the whole record
    Mode,  # Binary or ASCII transfers
    Timeout,  # Set how long to wait for connections and transfers
)

# Different ways to log in
from .auth import (
    Basic,  # Classic username and password login
    Guest,  # Anonymous access for public servers
)

# Everything that can go wrong, and how the facade reports it
from .errors import (
    AuthenticationError,
    BusyError,
    CommandError,
    ConnectError,
    DataChannelError,
    FtpError,
    FtpTimeoutError,
    InvalidCommandError,
    NotAuthenticatedError,
    NotConnectedError,
    ProtocolError,
    Result,
    TransferIncompleteError,
)

# Everything you can import and use
__all__ = [
    # The main class you'll work with
    "FtpCore",
    # Facade and server
    "FtpClient",
    "FtpServer",
    # Engine
    "Session",
    "State",
    "ControlConnection",
    "DataChannelDescriptor",
    "DataChannelManager",
    "Direction",
    "Category",
    "Reply",
    "decode_reply",
    "encode_command",
    # Configuration options
    "Config",
    "Mode",
    "Timeout",
    # Authentication types
    "Basic",
    "Guest",
    # Errors and results
    "AuthenticationError",
    "BusyError",
    "CommandError",
    "ConnectError",
    "DataChannelError",
    "FtpError",
    "FtpTimeoutError",
    "InvalidCommandError",
    "NotAuthenticatedError",
    "NotConnectedError",
    "ProtocolError",
    "Result",
    "TransferIncompleteError",
    # Package info
    "__version__",
    "__author__",
    "__email__",
    "__license__",
    "__description__",
    "__url__",
]

# FTP response codes - what the server is trying to tell you
from .codec import codes

# Make sure you're running a modern Python version
import sys

if sys.version_info < (3, 9):
    raise RuntimeError("FtpCore needs Python 3.9 or newer to work properly")
