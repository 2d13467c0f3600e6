"""SSH utilities for pg-deployer."""

from .credentials import SSHCredentials
from .session import SSHCommandResult, SSHConnectionError, SSHSession
from .executor import RemoteExecutor
from .probe import RemoteProbe

__all__ = [
    "SSHCredentials",
    "SSHCommandResult",
    "SSHConnectionError",
    "SSHSession",
    "RemoteExecutor",
    "RemoteProbe",
]
