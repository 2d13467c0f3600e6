"""postgres_exporter metrics."""

from __future__ import annotations

from typing import Sequence

from ..utils.logging import get_logger
from .base import Component

logger = get_logger(__name__)

SERVICE = "prometheus-postgres-exporter"


class MonitoringComponent(Component):
    name = "monitoring"
    package = SERVICE

    def install(self, hosts: Sequence[str]) -> None:
        logger.info("Installing postgres_exporter for monitoring...")
        port = self.settings.get("exporter_port", 9187)
        for host in self._ordered(hosts):
            self.postgres.install_package(host, self.package)
            self.executor.run_on_host(host, f"sudo systemctl enable {SERVICE}")
            self.executor.run_on_host(host, f"sudo systemctl restart {SERVICE}")
            logger.info("Metrics available at http://%s:%s/metrics", host, port)

    def uninstall(self, hosts: Sequence[str]) -> None:
        for host in hosts:
            self.executor.run_on_host(host, f"sudo systemctl stop {SERVICE} || true")
            self.executor.run_on_host(host, f"sudo systemctl disable {SERVICE} || true")

    def restart(self, hosts: Sequence[str]) -> None:
        for host in self._ordered(hosts):
            self.executor.run_on_host(host, f"sudo systemctl restart {SERVICE}")
