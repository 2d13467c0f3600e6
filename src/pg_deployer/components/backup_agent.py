"""pgBackRest backup agent."""

from __future__ import annotations

from typing import Sequence

from ..errors import ConfigurationError
from ..utils.logging import get_logger
from .base import Component

logger = get_logger(__name__)

STANZA = "main"
BACKUP_TYPES = {"full": "full", "incremental": "incr", "incr": "incr", "diff": "diff"}
DIRECTORIES = ("/var/lib/pgbackrest", "/var/log/pgbackrest", "/var/spool/pgbackrest")


class BackupAgentComponent(Component):
    name = "backup-agent"
    package = "pgbackrest"

    def _pgbackrest(self, args: str) -> str:
        return f"sudo -u {self.config.postgres_user} pgbackrest --stanza={STANZA} {args}"

    def install(self, hosts: Sequence[str]) -> None:
        logger.info("Installing pgBackRest for backups...")
        for host in self._ordered(hosts):
            # standbys share the primary's repository, only the primary creates the stanza
            self.install_on_host(host, create_stanza=host == self.config.primary_host)

    def install_on_host(self, host: str, create_stanza: bool) -> None:
        user = self.config.postgres_user
        self.postgres.install_package(host, self.package)
        self.executor.upload(host, self.render_config(), "/etc/pgbackrest.conf", mode="640", owner=f"{user}:{user}")
        for directory in DIRECTORIES:
            self.executor.run_on_host(host, f"sudo mkdir -p {directory}")
            self.executor.run_on_host(host, f"sudo chown {user}:{user} {directory}")
        self.executor.run_on_host(host, "sudo chmod 750 /var/lib/pgbackrest")
        if create_stanza:
            self.executor.run_on_host(host, self._pgbackrest("stanza-create"))

    def render_config(self) -> str:
        settings = self.settings
        lines = [
            "[global]",
            f"repo1-path={settings.get('repo_path', '/var/lib/pgbackrest')}",
            f"repo1-retention-full={settings.get('retention_full', 2)}",
            "log-level-console=info",
            "log-level-file=detail",
            "start-fast=y",
        ]
        cipher_pass = self.secrets.resolve("pgbackrest_cipher_pass")
        if cipher_pass:
            lines.append("repo1-cipher-type=aes-256-cbc")
            lines.append(f"repo1-cipher-pass={cipher_pass}")
        lines.extend(
            [
                "",
                f"[{STANZA}]",
                f"pg1-path={self.config.data_directory}",
                "",
            ]
        )
        return "\n".join(lines)

    def uninstall(self, hosts: Sequence[str]) -> None:
        for host in hosts:
            self.executor.run_on_host(host, f"sudo apt-get remove -y -qq {self.package}")

    def restart(self, hosts: Sequence[str]) -> None:
        logger.info("pgBackRest is a backup tool and does not run as a service")

    def run_backup(self, backup_type: str = "full") -> str:
        kind = BACKUP_TYPES.get(backup_type)
        if kind is None:
            raise ConfigurationError(
                f"Unknown backup type: {backup_type} (expected one of full, incremental, diff)"
            )
        primary_host = self._primary_host()
        logger.info("Running %s backup on %s...", backup_type, primary_host)
        return self.executor.run_on_host(primary_host, self._pgbackrest(f"--type={kind} backup"))

    def run_restore(self, backup_id: str) -> None:
        primary_host = self._primary_host()
        logger.info("Restoring %s from backup %s...", primary_host, backup_id)
        self.executor.run_on_host(primary_host, "sudo systemctl stop postgresql")
        self.executor.run_on_host(primary_host, self._pgbackrest(f"--set={backup_id} --delta restore"))
        self.executor.run_on_host(primary_host, "sudo systemctl start postgresql")

    def list_backups(self) -> str:
        primary_host = self._primary_host()
        return self.executor.run_on_host(primary_host, self._pgbackrest("info"))
