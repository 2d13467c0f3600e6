"""Database extensions."""

from __future__ import annotations

from typing import List, Sequence

from ..utils.logging import get_logger
from .base import Component

logger = get_logger(__name__)

# None means the extension ships with the server packages.
EXTENSION_PACKAGES = {
    "pgvector": "postgresql-{version}-pgvector",
    "postgis": "postgresql-{version}-postgis-3",
    "timescaledb": "timescaledb-2-postgresql-{version}",
    "citus": "postgresql-{version}-citus-12.1",
    "pg_partman": "postgresql-{version}-partman",
    "pg_trgm": None,
    "hstore": None,
    "uuid-ossp": None,
    "ltree": None,
    "citext": None,
    "unaccent": None,
    "pg_stat_statements": None,
}

# Package name differs from the name used in CREATE EXTENSION.
SQL_NAMES = {"pgvector": "vector"}


class ExtensionsComponent(Component):
    name = "extensions"

    @property
    def extensions(self) -> List[str]:
        return list(self.settings.get("list") or [])

    def packages(self) -> List[str]:
        packages = []
        for extension in self.extensions:
            template = EXTENSION_PACKAGES.get(extension)
            if template:
                packages.append(template.format(version=self.config.version))
        return packages

    def install(self, hosts: Sequence[str]) -> None:
        if not self.extensions:
            logger.info("No extensions listed, nothing to install")
            return
        logger.info("Installing PostgreSQL extensions: %s", ", ".join(self.extensions))
        packages = self.packages()
        for host in self._ordered(hosts):
            if packages:
                self.executor.run_on_host(host, "sudo apt-get update -qq")
                self.postgres.install_package(host, *packages)

        # standbys receive the catalog changes through replication; template1
        # makes the extensions available to databases created afterwards
        primary_host = self.config.primary_host
        if primary_host in hosts:
            database = self.settings.get("database") or "template1"
            for extension in self.extensions:
                sql_name = SQL_NAMES.get(extension, extension)
                self.postgres.query(primary_host, f'CREATE EXTENSION IF NOT EXISTS \\"{sql_name}\\";', database)

    def uninstall(self, hosts: Sequence[str]) -> None:
        logger.info("Extensions remain installed in the database on %s", ", ".join(hosts))

    def restart(self, hosts: Sequence[str]) -> None:
        logger.info("Extensions have no service to restart")
