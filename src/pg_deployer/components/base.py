"""Component lifecycle base class."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Sequence

from ..config import ClusterConfig
from ..errors import ConfigurationError
from ..postgres import PostgresOps
from ..secrets import Secrets
from ..ssh.executor import RemoteExecutor


class Component(ABC):
    """One installable subsystem of the cluster.

    Components hold no state between operations; every lifecycle call takes
    the hosts it may touch and must not change any other host.
    """

    name: str = ""
    package: str = ""

    def __init__(self, config: ClusterConfig, executor: RemoteExecutor, secrets: Secrets) -> None:
        self.config = config
        self.executor = executor
        self.secrets = secrets
        self.postgres = PostgresOps(config, executor)

    @property
    def settings(self) -> dict:
        return self.config.component_settings(self.name)

    def prepare(self, hosts: Sequence[str]) -> None:
        """Read-only checks and lookups before anything is changed."""

    @abstractmethod
    def install(self, hosts: Sequence[str]) -> None:
        ...

    @abstractmethod
    def uninstall(self, hosts: Sequence[str]) -> None:
        ...

    @abstractmethod
    def restart(self, hosts: Sequence[str]) -> None:
        ...

    def _primary_host(self) -> str:
        host = self.config.primary_host
        if host is None:
            raise ConfigurationError("No primary host is configured")
        return host

    def _ordered(self, hosts: Sequence[str]) -> List[str]:
        """``hosts`` in cluster order: primary first, then standbys as configured."""
        wanted = set(hosts)
        return [host for host in self.config.all_hosts if host in wanted]

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
