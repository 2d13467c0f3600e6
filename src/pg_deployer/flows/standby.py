"""Add or rebuild a single standby without touching the primary."""

from __future__ import annotations

from functools import partial
from typing import Callable, List

from ..components import Component, create_component
from ..errors import ConfigurationError
from ..ssh.probe import RemoteProbe
from .base import DeploymentContext, DeploymentFlow


class StandbyDeploymentFlow(DeploymentFlow):
    """Clone and register one configured standby.

    Only read-only commands reach the primary: the reachability probe, host
    facts and the registration check made before cloning.
    """

    def __init__(self, context: DeploymentContext, standby_host: str) -> None:
        super().__init__(context)
        self.standby_host = standby_host

    @property
    def operation_name(self) -> str:
        return f"Standby Deployment ({self.standby_host})"

    def target_hosts(self) -> List[str]:
        return [self.standby_host]

    def print_targets(self) -> None:
        self.logger.info(f"Standby: {self.standby_host}")
        self.logger.info(f"Primary: {self.config.primary_host} (read-only)")

    def validate_specific_requirements(self) -> None:
        if self.standby_host not in self.config.standby_hosts:
            raise ConfigurationError(f"Host {self.standby_host} is not configured as a standby")
        if not self.config.component_enabled("replication-manager"):
            raise ConfigurationError("replication-manager must be enabled to set up a standby")

    def build_validator(self):
        validator = super().build_validator()
        validator.hosts = [self.config.primary_host, self.standby_host]
        return validator

    def run_preflight_checks(self) -> None:
        super().run_preflight_checks()
        if RemoteProbe(self.executor).postgres_running(self.standby_host):
            self.validation_result.warnings.append(
                f"PostgreSQL is already running on {self.standby_host}; its data will be replaced by a fresh clone"
            )

    def list_deployment_steps(self) -> List[str]:
        steps = []
        if self.config.component_enabled("tls"):
            steps.append(f"Install TLS certificates on {self.standby_host}")
        steps.append(f"Install PostgreSQL {self.config.version} packages on {self.standby_host}")
        steps.append(f"Clone {self.standby_host} from {self.config.primary_host} and register it with repmgr")
        for name in ("pooler", "monitoring"):
            if self.config.component_enabled(name):
                steps.append(f"Install {name} on {self.standby_host}")
        return steps

    def deploy_components(self) -> None:
        host = self.standby_host
        if self.config.component_enabled("tls"):
            self.setup_standby_component("tls", lambda tls: tls.install_on_standby(host))
        self.setup_standby_component("core", lambda core: core.install_packages_only(host))
        self.setup_standby_component(
            "replication-manager", lambda repmgr: repmgr.setup_standby_only(host)
        )
        for name in ("pooler", "monitoring"):
            if self.config.component_enabled(name):
                self.setup_component(name, [host])

    def setup_standby_component(self, name: str, install: Callable[[Component], None]) -> Component:
        host = self.standby_host
        with self.logger.task(f"Setting up {name} on {host}"):
            component = create_component(name, self.config, self.executor, self.context.secrets)
            self.bounded(lambda: component.prepare([host]))
            self.rollback.register(
                f"Uninstall {name} on {host}", partial(component.uninstall, [host]), host=host
            )
            self.bounded(lambda: install(component))
        return component

    def list_next_steps(self) -> List[str]:
        return [
            "Verify replication: pg-deployer health",
            "Check cluster status: pg-deployer status",
        ]
