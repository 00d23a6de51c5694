"""Error taxonomy shared by the parser, the auth chain and the session."""

from __future__ import annotations


class SSHPickError(Exception):
    """Base class for every fatal sshpick failure."""


class HomeDirectoryError(SSHPickError):
    """Raised when the user's home directory cannot be resolved."""


class ConfigIOError(SSHPickError, OSError):
    """Raised when the SSH client configuration cannot be read."""


class ConfigEmptyError(SSHPickError):
    """Raised when the configuration declares no selectable hosts."""


class DialError(SSHPickError):
    """Raised when the transport cannot be established."""


class AuthExhaustedError(DialError):
    """Raised when every credential candidate was unavailable or rejected."""


class PTYError(SSHPickError):
    """Raised when raw mode or the remote pseudo-terminal cannot be set up."""


class SessionRuntimeError(SSHPickError):
    """Raised when the channel fails while the remote shell is running."""


__all__ = [
    "AuthExhaustedError",
    "ConfigEmptyError",
    "ConfigIOError",
    "DialError",
    "HomeDirectoryError",
    "PTYError",
    "SSHPickError",
    "SessionRuntimeError",
]
