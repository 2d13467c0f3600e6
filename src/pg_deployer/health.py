"""Cluster health reporting."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from rich.console import Console
from rich.table import Table

from .config import ClusterConfig, Node
from .errors import ExecutionError
from .postgres import PostgresOps
from .ssh.executor import RemoteExecutor
from .utils.logging import get_logger

logger = get_logger(__name__)

_UNITS = (("GB", 1024 ** 3), ("MB", 1024 ** 2), ("KB", 1024))

REPLICATION_VIEW_SQL = (
    "SELECT application_name, client_addr, "
    "pg_wal_lsn_diff(pg_current_wal_lsn(), replay_lsn) FROM pg_stat_replication;"
)
RECEIVE_REPLAY_SQL = "SELECT pg_wal_lsn_diff(pg_last_wal_receive_lsn(), pg_last_wal_replay_lsn());"


def format_lag(lag_bytes: Optional[int]) -> str:
    """Human-readable replication lag; zero is ``synced``."""
    if lag_bytes is None:
        return "unknown"
    if lag_bytes <= 0:
        return "synced"
    for unit, size in _UNITS:
        if lag_bytes >= size:
            return f"{lag_bytes / size:.1f} {unit}"
    return f"{lag_bytes} B"


@dataclass
class NodeHealth:
    host: str
    role: str
    running: bool
    connections: Optional[int] = None
    in_recovery: Optional[bool] = None
    lag_bytes: Optional[int] = None

    @property
    def lag(self) -> str:
        if self.role == "primary":
            return "-"
        return format_lag(self.lag_bytes)

    @property
    def healthy(self) -> bool:
        if not self.running:
            return False
        if self.role == "standby":
            return self.in_recovery is True
        return self.in_recovery is not True


@dataclass
class ClusterHealthReport:
    nodes: List[NodeHealth] = field(default_factory=list)

    @property
    def all_healthy(self) -> bool:
        return bool(self.nodes) and all(node.healthy for node in self.nodes)

    @property
    def primary(self) -> Optional[NodeHealth]:
        for node in self.nodes:
            if node.role == "primary":
                return node
        return None

    @property
    def standbys(self) -> List[NodeHealth]:
        return [node for node in self.nodes if node.role == "standby"]


class HealthChecker:
    """Read-only health checks over every configured node."""

    def __init__(
        self,
        config: ClusterConfig,
        executor: RemoteExecutor,
        console: Optional[Console] = None,
    ) -> None:
        self.config = config
        self.executor = executor
        self.postgres = PostgresOps(config, executor)
        self.console = console or Console()

    def cluster_report(self) -> ClusterHealthReport:
        report = ClusterHealthReport()
        primary = self.config.primary
        replication_view: Dict[str, int] = {}

        if primary is not None:
            primary_health = self._node_health(primary)
            report.nodes.append(primary_health)
            if primary_health.running:
                replication_view = self._replication_view(primary.host)

        for node in self.config.standbys:
            health = self._node_health(node)
            if health.running:
                health.lag_bytes = self._standby_lag(node, replication_view)
            report.nodes.append(health)
        return report

    def show_status(self) -> ClusterHealthReport:
        report = self.cluster_report()
        table = Table(title=f"PostgreSQL Cluster Status ({self.config.environment})")
        table.add_column("Host")
        table.add_column("Role")
        table.add_column("Status")
        table.add_column("Connections", justify="right")
        table.add_column("In Recovery")
        table.add_column("Lag", justify="right")
        for node in report.nodes:
            table.add_row(
                node.host,
                node.role,
                "[green]running[/green]" if node.running else "[red]down[/red]",
                "-" if node.connections is None else str(node.connections),
                "-" if node.in_recovery is None else ("yes" if node.in_recovery else "no"),
                node.lag,
            )
        self.console.print(table)
        return report

    def run_health_checks(self) -> bool:
        self.console.print("==> Running health checks...")
        report = self.cluster_report()
        for node in report.nodes:
            mark = "[green]✓[/green]" if node.healthy else "[red]✗[/red]"
            detail = f" lag {node.lag}" if node.role == "standby" and node.running else ""
            self.console.print(f"{node.role.capitalize()} ({node.host})... {mark}{detail}")
        if report.all_healthy:
            self.console.print("[green]✓ All checks passed[/green]")
        else:
            self.console.print("[red]✗ Some checks failed[/red]")
        return report.all_healthy

    def _node_health(self, node: Node) -> NodeHealth:
        host = node.host
        try:
            running = self.postgres.is_running(host)
        except ExecutionError as exc:
            logger.warning("Could not reach %s: %s", host, exc)
            running = False
        health = NodeHealth(host=host, role=node.role, running=running)
        if not running:
            return health
        health.connections = self._int_query(host, "SELECT count(*) FROM pg_stat_activity;")
        recovery = self._query(host, "SELECT pg_is_in_recovery();")
        if recovery is not None:
            health.in_recovery = recovery.strip() == "t"
        return health

    def _replication_view(self, primary_host: str) -> Dict[str, int]:
        """Map application_name and client address to lag as seen by the primary."""
        output = self._query(primary_host, REPLICATION_VIEW_SQL)
        view: Dict[str, int] = {}
        for line in (output or "").splitlines():
            parts = line.split("|")
            if len(parts) != 3 or not parts[2].strip():
                continue
            try:
                lag = int(float(parts[2]))
            except ValueError:
                continue
            if parts[0]:
                view[parts[0]] = lag
            if parts[1]:
                view[parts[1]] = lag
        return view

    def _standby_lag(self, node: Node, replication_view: Dict[str, int]) -> Optional[int]:
        for key in (node.name, node.replication_address, node.host):
            if key in replication_view:
                return replication_view[key]
        return self._int_query(node.host, RECEIVE_REPLAY_SQL)

    def _query(self, host: str, sql: str) -> Optional[str]:
        try:
            return self.postgres.query(host, sql)
        except ExecutionError as exc:
            logger.debug("Health query failed on %s: %s", host, exc)
            return None

    def _int_query(self, host: str, sql: str) -> Optional[int]:
        output = self._query(host, sql)
        if not output:
            return None
        try:
            return int(float(output.split()[0]))
        except ValueError:
            return None
