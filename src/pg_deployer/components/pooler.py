"""PgBouncer connection pooler."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from ..pooling import pooler_settings, render_pgbouncer_ini
from ..utils.logging import get_logger
from .base import Component

logger = get_logger(__name__)

PGBOUNCER_INI = "/etc/pgbouncer/pgbouncer.ini"
USERLIST = "/etc/pgbouncer/userlist.txt"


class PoolerComponent(Component):
    name = "pooler"
    package = "pgbouncer"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._max_connections: Dict[str, Optional[int]] = {}

    def prepare(self, hosts: Sequence[str]) -> None:
        """Read ``max_connections`` from the engine each pool will front."""
        for host in self._ordered(hosts):
            output = self.postgres.query(host, "SHOW max_connections;")
            try:
                self._max_connections[host] = int(output)
            except ValueError:
                logger.warning("Unexpected max_connections on %s: %r", host, output)
                self._max_connections[host] = self._configured_max_connections()

    def _configured_max_connections(self) -> Optional[int]:
        value = (self.config.component_settings("core").get("postgresql") or {}).get("max_connections")
        return int(value) if value else None

    def install(self, hosts: Sequence[str]) -> None:
        logger.info("Installing PgBouncer for connection pooling...")
        missing = [host for host in hosts if host not in self._max_connections]
        if missing:
            self.prepare(missing)
        for host in self._ordered(hosts):
            self.install_on_host(host)

    def install_on_host(self, host: str) -> None:
        max_connections = self._max_connections.get(host)
        settings = pooler_settings(max_connections, self.settings)
        logger.info(
            "Calculated pool settings on %s for max_connections=%s: default_pool_size=%s",
            host,
            max_connections,
            settings["default_pool_size"],
        )
        self.postgres.install_package(host, self.package)
        ini = render_pgbouncer_ini(settings, {"*": "host=127.0.0.1 port=5432"})
        self.executor.upload(host, ini, PGBOUNCER_INI, mode="640", owner="postgres:postgres")
        self._write_userlist(host)
        self.executor.run_on_host(host, "sudo systemctl enable pgbouncer")
        self.executor.run_on_host(host, "sudo systemctl restart pgbouncer")

    def _write_userlist(self, host: str) -> None:
        users: List[str] = [self.config.postgres_user]
        if self.config.app_user and self.config.app_user != self.config.postgres_user:
            users.append(self.config.app_user)
        entries = []
        for user in users:
            row = self.postgres.query(
                host,
                "SELECT concat('\\\"', rolname, '\\\" \\\"', rolpassword, '\\\"') "
                f"FROM pg_authid WHERE rolname = '{user}' AND rolpassword IS NOT NULL;",
            )
            if row:
                entries.append(row)
        if not entries:
            logger.warning("No password hashes found on %s; pooler logins may fail", host)
        self.executor.upload(host, "\n".join(entries) + "\n", USERLIST, mode="640", owner="postgres:postgres")

    def uninstall(self, hosts: Sequence[str]) -> None:
        for host in hosts:
            self.executor.run_on_host(host, "sudo systemctl stop pgbouncer || true")
            self.executor.run_on_host(host, f"sudo apt-get remove -y -qq {self.package}")

    def restart(self, hosts: Sequence[str]) -> None:
        for host in self._ordered(hosts):
            self.executor.run_on_host(host, "sudo systemctl restart pgbouncer")
