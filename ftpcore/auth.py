import warnings
from dataclasses import dataclass
from typing import ClassVar, FrozenSet, Tuple

Username = str
Password = str
Email = str


@dataclass(frozen=True)
class Basic:
    """
    Username and password login for an FTP server.

    FTP sends both values in clear text over the control connection
    (``USER`` then ``PASS``), so these credentials should only be used on
    networks you trust. They are read-only to the core: a session never
    changes them.

    Attributes:
        user: Account name sent with USER.
        password: Secret sent with PASS when the server asks for one.
    """

    user: Username
    password: Password

    def __post_init__(self) -> None:
        """
        Validate the credentials.

        Raises:
            ValueError: If the user is empty, or either value contains CR/LF
                        which would break the command line on the wire.
        """
        if not self.user.strip():
            raise ValueError("Username cannot be empty or whitespace")

        for value in (self.user, self.password):
            if "\r" in value or "\n" in value:
                raise ValueError("Credentials cannot contain line breaks")

        # Security warnings for potentially weak credentials
        if not self.password:
            warnings.warn(
                "Password is empty. "
                "Some servers accept this, most will reject the login."
            )
        elif len(self.password) < 8:
            warnings.warn(
                "Password is shorter than 8 characters. "
                "Consider using a stronger password for better security."
            )

        if self.password.lower() in ["password", "123456", "admin", "root"]:
            warnings.warn(
                "Password appears to be a common weak password. "
                "Use a strong, unique password for better security."
            )

    def sequence(self) -> Tuple[Username, Password]:
        """Values sent for USER and PASS."""
        return self.user, self.password


@dataclass(frozen=True)
class Guest:
    """
    Anonymous FTP login.

    Public servers accept the user ``anonymous`` with an e-mail address as
    the password. The address is informational only.

    Attributes:
        email: Sent as the PASS value.
    """

    NAMES: ClassVar[FrozenSet[str]] = frozenset({"anonymous", "ftp"})

    email: Email = "anonymous@"

    def __post_init__(self) -> None:
        if "\r" in self.email or "\n" in self.email:
            raise ValueError("Guest e-mail cannot contain line breaks")

        if "@" not in self.email:
            warnings.warn(
                "Guest e-mail has no '@'. "
                "Some servers reject anonymous logins without an address."
            )

    @property
    def user(self) -> Username:
        return "anonymous"

    def sequence(self) -> Tuple[Username, Password]:
        """Values sent for USER and PASS."""
        return self.user, self.email
