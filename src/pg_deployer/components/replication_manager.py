"""repmgr-based replication manager."""

from __future__ import annotations

from typing import Sequence

from ..config import Node
from ..errors import ConfigurationError, ExecutionError
from ..postgres import escape_literal
from ..ssh.probe import RemoteProbe
from ..utils.logging import get_logger
from ..utils.retry import retry_with_backoff, wait_for
from .base import Component
from .core import CoreComponent

logger = get_logger(__name__)

REPMGR_CONF = "/etc/repmgr.conf"
CLONE_CONF = "/etc/repmgr_clone.conf"
PGPASS = "/var/lib/postgresql/.pgpass"


class ReplicationManagerComponent(Component):
    name = "replication-manager"

    @property
    def package(self) -> str:  # type: ignore[override]
        return f"postgresql-{self.config.version}-repmgr"

    def _repmgr(self, args: str) -> str:
        return (
            f"sudo -u {self.config.postgres_user} env HOME=/var/lib/postgresql "
            f"repmgr -f {REPMGR_CONF} {args}"
        )

    def install(self, hosts: Sequence[str]) -> None:
        logger.info("Installing repmgr for high availability...")
        ordered = self._ordered(hosts)
        for host in ordered:
            self.postgres.install_package(host, self.package)

        if self.config.primary_host in ordered:
            self.setup_primary()
        for node in self.config.standbys:
            if node.host in ordered:
                self.setup_standby(node)

    def uninstall(self, hosts: Sequence[str]) -> None:
        for host in hosts:
            logger.info("Removing repmgr from %s", host)
            self.executor.run_on_host(host, "sudo systemctl stop repmgrd || true")
            self.executor.run_on_host(host, f"sudo apt-get remove -y -qq {self.package}")
            self.executor.run_on_host(host, f"sudo rm -f {REPMGR_CONF} {CLONE_CONF}")

    def restart(self, hosts: Sequence[str]) -> None:
        for host in self._ordered(hosts):
            if self.executor.test(host, "systemctl is-active repmgrd"):
                self.executor.run_on_host(host, "sudo systemctl restart repmgrd")

    def setup_standby_only(self, host: str) -> None:
        """Clone and register one standby without changing the primary."""
        node = self.config.node_for(host)
        if node is None or node.role != "standby":
            raise ConfigurationError(f"{host} is not configured as a standby")
        logger.info("Setting up standby %s (primary will not be touched)...", host)
        self.postgres.install_package(host, self.package)
        self.setup_standby(node)

    def setup_primary(self) -> None:
        primary: Node = self.config.primary  # type: ignore[assignment]
        host = primary.host
        password = self._password()
        logger.info("Setting up primary %s with repmgr...", host)

        self.postgres.recreate_cluster(host)
        CoreComponent(self.config, self.executor, self.secrets).write_configuration(host)
        self.postgres.restart(host)
        if not wait_for(lambda: self.postgres.is_running(host), timeout=30, interval=2,
                        description=f"PostgreSQL on {host}"):
            raise ExecutionError(f"PostgreSQL cluster {self.config.version}/main failed to start on {host}", host=host)

        user = self.config.repmgr_user
        database = self.config.repmgr_database
        self.postgres.run_sql(
            host,
            "; ".join(
                [
                    f"DROP DATABASE IF EXISTS {database}",
                    f"DROP USER IF EXISTS {user}",
                    f"CREATE USER {user} WITH SUPERUSER REPLICATION PASSWORD '{escape_literal(password)}'",
                    f"CREATE DATABASE {database} OWNER {user}",
                    "",
                ]
            ),
        )
        self.postgres.reload(host)

        self._write_pgpass(host, password)
        self._write_repmgr_conf(primary)
        self.executor.run_on_host(host, self._repmgr("primary register --force"))
        if not wait_for(lambda: self._registered_as(host, "primary"), timeout=20, interval=2,
                        description="primary registration"):
            raise ExecutionError(f"Primary registration failed on {host}", host=host)
        logger.info("Primary %s registered with repmgr", host)

    def setup_standby(self, node: Node) -> None:
        host = node.host
        primary: Node = self.config.primary  # type: ignore[assignment]
        password = self._password()
        logger.info("Setting up standby %s (node_id=%d)...", host, node.cluster_node_id)

        self._check_node_identity(node)
        self.ensure_primary_registered()

        self._write_pgpass(host, password)
        self.postgres.drop_cluster(host)

        clone_conf = "\n".join(
            [
                f"node_id={node.cluster_node_id}",
                f"node_name='{node.name}'",
                f"conninfo='host={primary.replication_address} user={self.config.repmgr_user} "
                f"dbname={self.config.repmgr_database} connect_timeout=10'",
                f"data_directory='{self.config.data_directory}'",
                "",
            ]
        )
        self.executor.upload(host, clone_conf, CLONE_CONF, mode="644", owner="postgres:postgres")

        clone = (
            f"sudo -u {self.config.postgres_user} env HOME=/var/lib/postgresql "
            f"repmgr -h {primary.replication_address} -U {self.config.repmgr_user} "
            f"-d {self.config.repmgr_database} -f {CLONE_CONF} standby clone --force"
        )
        logger.info("Cloning %s from primary %s over the replication network...", host, primary.replication_address)
        retry_with_backoff(
            lambda: self.executor.run_on_host(host, clone),
            max_attempts=3,
            initial_delay=5.0,
            retry_on=(ExecutionError,),
        )

        self._write_repmgr_conf(node)
        self.executor.run_on_host(host, f"sudo pg_ctlcluster {self.config.version} main start")
        if not wait_for(lambda: self.postgres.is_running(host), timeout=60, interval=3,
                        description=f"standby PostgreSQL on {host}"):
            raise ExecutionError(f"Standby PostgreSQL failed to start on {host}", host=host)

        self.executor.run_on_host(host, self._repmgr("standby register --force"))
        if not wait_for(lambda: self._registered_as(host, "standby"), timeout=30, interval=3,
                        description=f"standby registration of {host}"):
            raise ExecutionError(f"Standby register failed for {host} (node_id={node.cluster_node_id})", host=host)
        logger.info("Standby %s registered with repmgr", host)

    def ensure_primary_registered(self) -> None:
        """Read-only check that the primary is a registered, running member."""
        primary_host = self._primary_host()
        if not self._registered_as(primary_host, "primary"):
            raise ExecutionError(
                f"Primary {primary_host} is not registered with repmgr; register the primary first",
                host=primary_host,
            )

    def verify_cluster_health(self) -> bool:
        primary_host = self._primary_host()
        result = self.executor.execute(primary_host, self._repmgr("cluster show"))
        if not result.ok:
            logger.warning("Could not read cluster state from %s: %s", primary_host, result.stderr)
            return False
        rows = [line for line in result.stdout.splitlines() if "|" in line and ("primary" in line or "standby" in line)]
        expected = 1 + len(self.config.standbys)
        healthy = len(rows) >= expected and all("running" in row for row in rows)
        if not healthy:
            logger.warning("repmgr reports an unhealthy cluster:\n%s", result.stdout)
        return healthy

    def _registered_as(self, host: str, role: str) -> bool:
        result = self.executor.execute(host, self._repmgr("cluster show"))
        if not result.ok:
            return False
        node = self.config.node_for(host)
        name = node.name if node else host
        for line in result.stdout.splitlines():
            if name in line and role in line and "running" in line:
                return True
        return False

    def _check_node_identity(self, node: Node) -> None:
        recorded = RemoteProbe(self.executor).recorded_node_id(node.host)
        if recorded is not None and recorded != node.cluster_node_id:
            raise ConfigurationError(
                f"{node.host} is registered as node_id {recorded} but its position in the "
                f"standby list gives node_id {node.cluster_node_id}; restore the original "
                "standby order or unregister the node first"
            )

    def _password(self) -> str:
        return self.secrets.require("repmgr_password").strip()

    def _write_pgpass(self, host: str, password: str) -> None:
        user = self.config.repmgr_user
        content = "\n".join(
            [
                f"*:*:{self.config.repmgr_database}:{user}:{password}",
                f"*:*:replication:{user}:{password}",
                "",
            ]
        )
        self.executor.upload(host, content, PGPASS, mode="600", owner="postgres:postgres")

    def _write_repmgr_conf(self, node: Node) -> None:
        settings = self.settings
        lines = [
            f"node_id={node.cluster_node_id}",
            f"node_name='{node.name}'",
            f"conninfo='host={node.replication_address} user={self.config.repmgr_user} "
            f"dbname={self.config.repmgr_database} connect_timeout=2'",
            f"data_directory='{self.config.data_directory}'",
            f"pg_bindir='/usr/lib/postgresql/{self.config.version}/bin'",
            "use_replication_slots=yes",
            f"failover='{settings.get('failover', 'manual')}'",
            f"service_start_command='sudo pg_ctlcluster {self.config.version} main start'",
            f"service_stop_command='sudo pg_ctlcluster {self.config.version} main stop'",
            f"service_restart_command='sudo pg_ctlcluster {self.config.version} main restart'",
            f"service_reload_command='sudo pg_ctlcluster {self.config.version} main reload'",
            f"service_promote_command='sudo pg_ctlcluster {self.config.version} main promote'",
            "",
        ]
        self.executor.upload(node.host, "\n".join(lines), REPMGR_CONF, mode="644", owner="postgres:postgres")
