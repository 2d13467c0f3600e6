"""PostgreSQL engine component."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from ..config import Node
from ..errors import ConfigurationError, ExecutionError
from ..postgres import escape_literal, render_settings
from ..ssh.probe import RemoteProbe
from ..tuning import DEFAULT_WORKLOAD, WORKLOAD_PROFILES, HardwareProfile, tuned_settings
from ..utils.logging import get_logger
from .backup_agent import STANZA
from .base import Component

logger = get_logger(__name__)

MANAGED_CONF = "conf.d/00-pg-deployer.conf"
TLS_DIRECTORY = "/etc/ssl/pg-deployer"

REPLICATION_SETTINGS = {
    "wal_level": "replica",
    "max_wal_senders": 10,
    "max_replication_slots": 10,
    "hot_standby": True,
    "wal_log_hints": True,
    "shared_preload_libraries": "repmgr",
}

ARCHIVE_SETTINGS = {
    "wal_level": "replica",
    "archive_mode": True,
    "archive_command": f"pgbackrest --stanza={STANZA} archive-push %p",
}


class CoreComponent(Component):
    name = "core"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._hardware: Dict[str, Optional[HardwareProfile]] = {}

    @property
    def replicated(self) -> bool:
        return self.config.component_enabled("replication-manager") and bool(self.config.standbys)

    def prepare(self, hosts: Sequence[str]) -> None:
        """Probe the hardware of every host whose configuration this component writes."""
        self.workload()
        for host in self._ordered(hosts):
            if not self._cloned(host):
                self.hardware(host)

    def install(self, hosts: Sequence[str]) -> None:
        logger.info("Installing PostgreSQL %s core...", self.config.version)
        for host in self._ordered(hosts):
            if self._cloned(host):
                # the replication manager clones this cluster from the primary
                self.install_packages_only(host)
            else:
                self.install_on_host(host)

    def _cloned(self, host: str) -> bool:
        node = self.config.node_for(host)
        return node is not None and node.role == "standby" and self.replicated

    def uninstall(self, hosts: Sequence[str]) -> None:
        for host in hosts:
            logger.warning(
                "Removing managed settings on %s; the PostgreSQL installation itself must be removed manually",
                host,
            )
            self.executor.run_on_host(host, f"sudo rm -f {self.config.config_directory}/{MANAGED_CONF}")

    def restart(self, hosts: Sequence[str]) -> None:
        for host in self._ordered(hosts):
            self.postgres.restart(host)

    def install_packages_only(self, host: str) -> None:
        logger.info("Installing packages on %s (cluster will be cloned by the replication manager)", host)
        self.postgres.install_packages(host)

    def install_on_host(self, host: str) -> None:
        logger.info("Installing on %s...", host)
        self.postgres.install_packages(host)
        self.postgres.ensure_cluster(host)
        self.write_configuration(host)
        self.postgres.restart(host)

    def write_configuration(self, host: str) -> None:
        """Upload the managed postgresql.conf drop-in and pg_hba.conf."""
        self.executor.run_on_host(host, f"sudo mkdir -p {self.config.config_directory}/conf.d")
        self.postgres.write_config(host, MANAGED_CONF, render_settings(self.server_settings(host)))
        self.postgres.write_config(host, "pg_hba.conf", self.render_hba())

    def workload(self) -> Optional[str]:
        """The tuning workload, or None when tuning is switched off."""
        tuning = self.settings.get("tuning", True)
        if tuning is False:
            return None
        workload = tuning.get("workload", DEFAULT_WORKLOAD) if isinstance(tuning, dict) else DEFAULT_WORKLOAD
        if workload not in WORKLOAD_PROFILES:
            raise ConfigurationError(
                f"Unknown tuning workload: {workload} (expected one of {', '.join(WORKLOAD_PROFILES)})"
            )
        return workload

    def hardware(self, host: str) -> Optional[HardwareProfile]:
        if host not in self._hardware:
            self._hardware[host] = RemoteProbe(self.executor).hardware(host)
        return self._hardware[host]

    def tuned_for(self, host: str) -> Dict[str, object]:
        workload = self.workload()
        if workload is None:
            return {}
        hardware = self.hardware(host)
        if hardware is None:
            logger.warning("Could not read CPU and memory of %s, keeping PostgreSQL defaults", host)
            return {}
        logger.info(
            "Tuning %s for a %s workload: %d cores, %.1f GB RAM, %s storage",
            host,
            workload,
            hardware.cpu_cores,
            hardware.memory_bytes / 1024 ** 3,
            hardware.storage,
        )
        return tuned_settings(hardware, workload)

    def server_settings(self, host: Optional[str] = None) -> Dict[str, object]:
        """Settings for the managed drop-in, tuned for ``host`` when one is given.

        Operator values under ``postgresql`` win over everything derived here.
        """
        settings: Dict[str, object] = {"listen_addresses": "*", "port": 5432}
        if host is not None:
            settings.update(self.tuned_for(host))
        if self.replicated:
            settings.update(REPLICATION_SETTINGS)
        if self.config.component_enabled("tls"):
            settings.update(
                {
                    "ssl": True,
                    "ssl_cert_file": f"{TLS_DIRECTORY}/server.crt",
                    "ssl_key_file": f"{TLS_DIRECTORY}/server.key",
                }
            )
        if self.config.component_enabled("backup-agent"):
            settings.update(ARCHIVE_SETTINGS)
        settings.update(self.settings.get("postgresql") or {})
        return settings

    def render_hba(self) -> str:
        lines: List[str] = [
            "# Managed by pg-deployer",
            "local   all             postgres                                peer",
            "local   all             all                                     peer",
            "host    all             all             127.0.0.1/32            scram-sha-256",
            "host    all             all             ::1/128                 scram-sha-256",
        ]
        if self.replicated:
            user = self.config.repmgr_user
            database = self.config.repmgr_database
            for node in self.config.nodes:
                address = f"{node.replication_address}/32"
                lines.append(f"host    replication     {user:<15} {address:<23} scram-sha-256")
                lines.append(f"host    {database:<15} {user:<15} {address:<23} scram-sha-256")
        for network in self.settings.get("allowed_networks") or ["0.0.0.0/0"]:
            lines.append(f"host    all             all             {network:<23} scram-sha-256")
        return "\n".join(lines) + "\n"

    def provision_application_user(self) -> bool:
        """Create or update the application role and database on the primary.

        Returns whether anything was provisioned.
        """
        primary: Node = self.config.primary  # type: ignore[assignment]
        app_user = self.config.app_user
        app_database = self.config.app_database
        if not (app_user and app_database):
            logger.info("No application user configured, skipping")
            return False
        password = self.secrets.resolve("app_password")
        if not password:
            logger.warning("app_password secret is not set, skipping application user '%s'", app_user)
            return False

        escaped = escape_literal(password)
        sql = "\n".join(
            [
                "DO $$",
                "BEGIN",
                f"  IF NOT EXISTS (SELECT FROM pg_roles WHERE rolname = '{app_user}') THEN",
                f"    CREATE ROLE {app_user} WITH LOGIN PASSWORD '{escaped}';",
                "  ELSE",
                f"    ALTER ROLE {app_user} WITH LOGIN PASSWORD '{escaped}';",
                "  END IF;",
                "END $$;",
                f"SELECT 'CREATE DATABASE {app_database} OWNER {app_user}'",
                f"WHERE NOT EXISTS (SELECT FROM pg_database WHERE datname = '{app_database}')\\gexec",
                f"GRANT ALL PRIVILEGES ON DATABASE {app_database} TO {app_user};",
                f"\\c {app_database}",
                f"GRANT ALL ON SCHEMA public TO {app_user};",
            ]
        )
        logger.info("Creating application user '%s' and database '%s'...", app_user, app_database)
        try:
            self.postgres.run_sql(primary.host, sql)
        except ExecutionError as exc:
            raise ExecutionError(
                f"Could not provision application user '{app_user}': {exc}",
                host=primary.host,
                exit_status=exc.exit_status,
                stderr=exc.stderr,
            ) from exc
        return True
