"""Full cluster deployment."""

from __future__ import annotations

from typing import List, Optional

from ..components import CoreComponent, resolve_component
from ..errors import ConfigurationError, ExecutionError
from ..health import HealthChecker
from .base import DeploymentContext, DeploymentFlow

# Installed after core and replication, in this order.
ADDON_COMPONENTS = ("pooler", "backup-agent", "monitoring", "extensions")


class ClusterDeploymentFlow(DeploymentFlow):
    """Deploys every enabled component across the configured topology.

    With no standbys the cluster is a lone primary and the replication
    manager is skipped even when enabled. ``only`` restricts the run to one
    component.
    """

    allow_primary_only = True

    def __init__(self, context: DeploymentContext, only: Optional[str] = None) -> None:
        super().__init__(context)
        self.only = resolve_component(only).name if only else None

    @property
    def operation_name(self) -> str:
        if self.only:
            return f"PostgreSQL {self.only} Deployment"
        return "PostgreSQL Cluster Deployment"

    @property
    def has_standbys(self) -> bool:
        return bool(self.config.standbys)

    @property
    def replication_enabled(self) -> bool:
        return self.config.component_enabled("replication-manager") and self.has_standbys

    def target_hosts(self) -> List[str]:
        if self.has_standbys:
            return self.config.all_hosts
        return [self.config.primary_host] if self.config.primary_host else []

    def validate_specific_requirements(self) -> None:
        if self.only and not self.config.component_enabled(self.only):
            raise ConfigurationError(f"Component '{self.only}' is not enabled in this environment")

    def planned_components(self) -> List[str]:
        """Component names in deployment order."""
        names: List[str] = []
        if self.config.component_enabled("tls"):
            names.append("tls")
        names.append("core")
        if self.replication_enabled:
            names.append("replication-manager")
        names.extend(name for name in ADDON_COMPONENTS if self.config.component_enabled(name))
        if self.only:
            return [name for name in names if name == self.only]
        return names

    def hosts_for(self, name: str) -> List[str]:
        if name == "pooler":
            return [self.config.primary_host]  # type: ignore[list-item]
        return self.target_hosts()

    def list_deployment_steps(self) -> List[str]:
        steps = []
        for name in self.planned_components():
            steps.append(f"Install {name} on {', '.join(self.hosts_for(name))}")
        if not self.only:
            steps.append("Create application user and database on the primary")
        return steps

    def deploy_components(self) -> None:
        for name in self.planned_components():
            self.setup_component(name, self.hosts_for(name))
            if name == "replication-manager":
                self.bounded(self.report_cluster_health)

        if not self.only:
            with self.logger.task("Provisioning application user"):
                core = CoreComponent(self.config, self.executor, self.context.secrets)
                self.bounded(core.provision_application_user)

    def report_cluster_health(self) -> None:
        """Advisory only; a failed check never rolls back the deployment."""
        checker = HealthChecker(self.config, self.executor)
        try:
            report = checker.cluster_report()
        except ExecutionError as exc:
            self.logger.warning(f"Cluster health check could not run: {exc}")
            return
        for node in report.nodes:
            status = "ok" if node.healthy else "unhealthy"
            self.logger.info(f"  {node.role} {node.host}: {status} (lag {node.lag})")
        if not report.all_healthy:
            self.logger.warning("Cluster health check reported problems; inspect with 'pg-deployer status'")

    def list_next_steps(self) -> List[str]:
        steps = ["Check cluster status: pg-deployer status"]
        if self.config.component_enabled("backup-agent"):
            steps.append("Take a first full backup: pg-deployer backup --type full")
        if self.config.component_enabled("monitoring"):
            steps.append("Add the exporter endpoints to your Prometheus scrape config")
        if self.has_standbys:
            steps.append("Verify replication: pg-deployer health")
        return steps
