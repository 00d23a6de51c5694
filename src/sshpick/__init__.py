"""sshpick - pick a host from ~/.ssh/config and open an interactive shell."""

__version__ = "0.1.0"

from .errors import SSHPickError
from .ssh_config import HostRecord, parse_ssh_config

__all__ = ["HostRecord", "SSHPickError", "__version__", "parse_ssh_config"]
