"""TLS certificates for client and replication connections."""

from __future__ import annotations

from typing import Sequence

from ..utils.logging import get_logger
from .base import Component
from .core import TLS_DIRECTORY

logger = get_logger(__name__)


class TLSComponent(Component):
    name = "tls"

    def install(self, hosts: Sequence[str]) -> None:
        logger.info("Installing TLS certificates...")
        for host in self._ordered(hosts):
            self.configure_host(host)

    def install_on_standby(self, host: str) -> None:
        logger.info("Installing TLS on standby %s...", host)
        self.configure_host(host)

    def uninstall(self, hosts: Sequence[str]) -> None:
        for host in hosts:
            self.executor.run_on_host(host, f"sudo rm -rf {TLS_DIRECTORY}")

    def restart(self, hosts: Sequence[str]) -> None:
        # no service of its own; the engine picks certificates up on restart
        for host in self._ordered(hosts):
            self.postgres.restart(host)

    def configure_host(self, host: str) -> None:
        self._ensure_postgres_account(host)
        self.executor.run_on_host(host, f"sudo mkdir -p {TLS_DIRECTORY}")
        self.executor.run_on_host(host, f"sudo chown postgres:postgres {TLS_DIRECTORY}")
        self.executor.run_on_host(host, f"sudo chmod 700 {TLS_DIRECTORY}")

        cert = self.secrets.resolve("ssl_cert")
        key = self.secrets.resolve("ssl_key")
        if cert and key:
            logger.info("Using TLS certificates from secrets on %s", host)
            self.executor.upload(host, cert, f"{TLS_DIRECTORY}/server.crt", mode="644", owner="postgres:postgres")
            self.executor.upload(host, key, f"{TLS_DIRECTORY}/server.key", mode="600", owner="postgres:postgres")
        else:
            self._generate_self_signed(host)

    def _generate_self_signed(self, host: str) -> None:
        days = self.settings.get("cert_days", 3650)
        common_name = self.settings.get("common_name") or host
        cert_path = f"{TLS_DIRECTORY}/server.crt"
        key_path = f"{TLS_DIRECTORY}/server.key"
        logger.info("Generating self-signed certificate on %s (CN=%s, %s days)", host, common_name, days)
        self.executor.run_on_host(
            host,
            f"sudo openssl req -new -x509 -days {days} -nodes -text "
            f"-out {cert_path} -keyout {key_path} -subj /CN={common_name}",
        )
        self.executor.run_on_host(host, f"sudo chown postgres:postgres {cert_path} {key_path}")
        self.executor.run_on_host(host, f"sudo chmod 644 {cert_path}")
        self.executor.run_on_host(host, f"sudo chmod 600 {key_path}")

    def _ensure_postgres_account(self, host: str) -> None:
        user = self.config.postgres_user
        if not self.executor.test(host, f"getent group {user}"):
            self.executor.run_on_host(host, f"sudo groupadd --system {user}")
        if not self.executor.test(host, f"id {user}"):
            self.executor.run_on_host(
                host,
                f"sudo useradd --system --home /var/lib/postgresql --shell /bin/bash "
                f"--gid {user} --create-home {user}",
            )
