"""Preflight validation of the cluster definition and its hosts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .config import ClusterConfig
from .errors import ExecutionError
from .ssh.executor import RemoteExecutor
from .ssh.probe import RemoteProbe
from .utils.logging import get_logger

logger = get_logger(__name__)

MINIMUM_VERSION = 12
MINIMUM_FREE_DISK_GB = 10


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.errors

    def extend(self, other: "ValidationResult") -> None:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)


def structural_errors(config: ClusterConfig, allow_primary_only: bool = False) -> ValidationResult:
    """Checks that need no remote access.

    With ``allow_primary_only`` a replication manager enabled on a cluster
    without standbys is a warning instead of an error; the cluster is then
    deployed as a lone primary.
    """
    result = ValidationResult()

    if config.primary is None:
        result.errors.append("Primary host not configured")

    if config.version < MINIMUM_VERSION:
        result.errors.append(
            f"PostgreSQL version must be {MINIMUM_VERSION} or higher (got: {config.version})"
        )

    if config.component_enabled("replication-manager"):
        if not config.standbys:
            message = "replication-manager enabled but no standby hosts configured"
            if allow_primary_only:
                result.warnings.append(f"{message} - replication setup will be skipped")
            else:
                result.errors.append(message)

        if config.primary is not None and config.primary.private_ip is None:
            result.warnings.append(
                f"Primary is using '{config.primary.host}' for replication traffic. "
                "Set private_ip for isolated networks."
            )
        for node in config.standbys:
            if node.private_ip is None:
                result.warnings.append(
                    f"Standby {node.host} is using its SSH host for replication. "
                    "Provide private_ip if it differs."
                )

    if config.component_enabled("tls"):
        if config.component_settings("tls").get("certificate_mode") == "custom":
            result.warnings.append("Custom TLS certificates configured - ensure they are available")

    seen = set()
    for host in config.all_hosts:
        if host in seen:
            result.errors.append(f"Host {host} is listed more than once")
        seen.add(host)

    return result


class Validator:
    """Runs the preflight battery against the hosts a deployment will touch.

    Every remote check here is read-only.
    """

    def __init__(
        self,
        config: ClusterConfig,
        executor: RemoteExecutor,
        hosts: Optional[Sequence[str]] = None,
        allow_primary_only: bool = False,
    ) -> None:
        self.config = config
        self.executor = executor
        self.hosts = list(hosts) if hosts is not None else config.all_hosts
        self.allow_primary_only = allow_primary_only
        self.probe = RemoteProbe(executor)
        self.result = ValidationResult()

    @property
    def errors(self) -> List[str]:
        return self.result.errors

    @property
    def warnings(self) -> List[str]:
        return self.result.warnings

    def validate_all(self) -> bool:
        logger.info("Running pre-flight validation checks...")
        self.result = ValidationResult()

        self.validate_configuration()
        reachable = self.validate_ssh_connectivity()
        self.validate_network_connectivity(reachable)
        self.validate_system_requirements(reachable)
        self.validate_node_identity(reachable)

        if self.errors:
            logger.error("Validation failed with %d error(s):", len(self.errors))
            for error in self.errors:
                logger.error("  - %s", error)
            return False

        if self.warnings:
            logger.warning("Found %d warning(s):", len(self.warnings))
            for warning in self.warnings:
                logger.warning("  - %s", warning)

        logger.info("All validation checks passed")
        return True

    def validate_configuration(self) -> None:
        logger.info("  Checking configuration...")
        self.result.extend(structural_errors(self.config, self.allow_primary_only))

    def validate_ssh_connectivity(self) -> List[str]:
        logger.info("  Checking SSH connectivity...")
        reachable = []
        for host in self.hosts:
            try:
                result = self.executor.execute(host, "echo 'SSH connection test'")
            except ExecutionError as exc:
                self.errors.append(f"Cannot connect to {host} via SSH: {exc}")
                continue
            if result.ok:
                reachable.append(host)
            else:
                self.errors.append(f"Cannot run commands on {host} via SSH: {result.stderr}")
        return reachable

    def validate_network_connectivity(self, reachable: Sequence[str]) -> None:
        if not self.config.component_enabled("replication-manager"):
            return
        target = self.config.primary_replication_host
        if not target:
            return
        logger.info("  Checking replication network connectivity...")
        for node in self.config.standbys:
            if node.host not in reachable:
                continue
            try:
                result = self.executor.execute(node.host, self.probe.ping_command(target))
            except ExecutionError as exc:
                self.warnings.append(f"Could not test private network connectivity from {node.host}: {exc}")
                continue
            if not result.ok:
                self.errors.append(f"Standby {node.host} cannot reach the primary over {target}")

    def validate_system_requirements(self, reachable: Sequence[str]) -> None:
        logger.info("  Checking system requirements...")
        postgres_user = self.config.postgres_user
        for host in reachable:
            try:
                if not self.probe.is_debian(host):
                    self.errors.append(f"{host} is not running Debian/Ubuntu")
                    continue
                free_gb = self.probe.free_disk_gb(host)
                if free_gb is not None and free_gb < MINIMUM_FREE_DISK_GB:
                    self.warnings.append(
                        f"{host} has less than {MINIMUM_FREE_DISK_GB}GB free disk space ({free_gb}GB available)"
                    )
                if self.probe.has_account(host, postgres_user):
                    self.warnings.append(
                        f"{host} already has a '{postgres_user}' user - this is expected if "
                        "PostgreSQL was previously installed"
                    )
            except ExecutionError as exc:
                self.warnings.append(f"Could not check system requirements on {host}: {exc}")

    def validate_node_identity(self, reachable: Sequence[str]) -> None:
        if not self.config.component_enabled("replication-manager"):
            return
        for node in self.config.standbys:
            if node.host not in reachable:
                continue
            try:
                recorded = self.probe.recorded_node_id(node.host)
            except ExecutionError as exc:
                self.warnings.append(f"Could not read repmgr identity on {node.host}: {exc}")
                continue
            if recorded is not None and recorded != node.cluster_node_id:
                self.errors.append(
                    f"Standby {node.host} is registered as node_id {recorded} but its position "
                    f"in the standby list gives node_id {node.cluster_node_id}"
                )
