"""Single-component operations and backup commands."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

from .components import BackupAgentComponent, Component, create_component
from .errors import ConfigurationError
from .flows.base import DeploymentContext
from .utils.logging import get_logger

logger = get_logger(__name__)


class ComponentInstaller:
    """Install, uninstall or restart one component outside a full deployment.

    ``install`` runs under the context's rollback manager, so a failure
    compensates the hosts the component was registered for.
    """

    def __init__(self, context: DeploymentContext) -> None:
        self.context = context
        self.config = context.config

    def component(self, name: str) -> Component:
        return create_component(name, self.config, self.context.executor, self.context.secrets)

    def hosts_for(self, component: Component) -> List[str]:
        if component.name == "pooler":
            return [self.config.primary_host]  # type: ignore[list-item]
        return self.config.all_hosts

    def _require_enabled(self, component: Component) -> None:
        if not self.config.component_enabled(component.name):
            raise ConfigurationError(
                f"Component '{component.name}' is not enabled in environment '{self.config.environment}'"
            )

    def install(self, name: str) -> List[str]:
        component = self.component(name)
        self._require_enabled(component)
        hosts = self.hosts_for(component)
        rollback = self.context.rollback
        if rollback is None:
            raise ConfigurationError("Deployment context has no rollback manager")

        def body() -> None:
            component.prepare(hosts)
            for host in hosts:
                rollback.register(
                    f"Uninstall {component.name} on {host}",
                    lambda host=host: component.uninstall([host]),
                    host=host,
                )
            component.install(hosts)

        with self.context.logger.task(f"Installing {component.name}"):
            rollback.with_rollback(f"install {component.name}", body)
        return hosts

    def uninstall(self, name: str) -> List[str]:
        component = self.component(name)
        hosts = self.hosts_for(component)
        with self.context.logger.task(f"Uninstalling {component.name}"):
            component.uninstall(hosts)
        return hosts

    def restart(self, name: str) -> List[str]:
        component = self.component(name)
        self._require_enabled(component)
        hosts = self.hosts_for(component)
        with self.context.logger.task(f"Restarting {component.name}"):
            component.restart(hosts)
        return hosts

    def backup_agent(self) -> BackupAgentComponent:
        component = self.component("backup-agent")
        self._require_enabled(component)
        return component  # type: ignore[return-value]

    def backup(self, backup_type: str = "full") -> str:
        return self.backup_agent().run_backup(backup_type)

    def restore(self, backup_id: str) -> None:
        self.backup_agent().run_restore(backup_id)

    def list_backups(self) -> str:
        return self.backup_agent().list_backups()

    def cache_secrets(self, directory: Optional[str] = None) -> Dict[str, Path]:
        written = self.context.secrets.cache_to_files(directory or ".secrets")
        logger.info("Cached %d secret(s)", len(written))
        return written
