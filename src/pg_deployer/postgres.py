"""PostgreSQL engine operations on a remote host."""

from __future__ import annotations

import secrets as token_source
from typing import Optional

from .config import ClusterConfig
from .ssh.executor import RemoteExecutor
from .utils.logging import get_logger

logger = get_logger(__name__)

PGDG_KEY_URL = "https://www.postgresql.org/media/keys/ACCC4CF8.asc"
PGDG_KEYRING = "/usr/share/keyrings/postgresql-archive-keyring.gpg"
PGDG_LIST = "/etc/apt/sources.list.d/pgdg.list"


def escape_literal(value: str) -> str:
    """Escape a value for use inside a single-quoted SQL literal."""
    return value.replace("'", "''")


class PostgresOps:
    """Package, cluster and SQL helpers shared by the components."""

    def __init__(self, config: ClusterConfig, executor: RemoteExecutor) -> None:
        self.config = config
        self.executor = executor

    @property
    def version(self) -> int:
        return self.config.version

    def install_packages(self, host: str) -> None:
        """Install the engine and client from the PGDG apt repository."""
        run = self.executor.run_on_host
        version = self.version
        logger.info("Installing PostgreSQL %s on %s", version, host)
        run(host, "sudo apt-get update -qq")
        run(host, "sudo DEBIAN_FRONTEND=noninteractive apt-get install -y -qq gnupg wget lsb-release locales")
        run(host, "sudo locale-gen en_US.UTF-8")
        run(host, f"wget --quiet -O /tmp/pgdg.asc {PGDG_KEY_URL}")
        run(host, f"sudo gpg --dearmor --yes -o {PGDG_KEYRING} /tmp/pgdg.asc")
        run(host, "rm -f /tmp/pgdg.asc")
        run(
            host,
            "sudo sh -c 'echo \"deb [signed-by="
            f"{PGDG_KEYRING}] http://apt.postgresql.org/pub/repos/apt "
            f"$(lsb_release -cs)-pgdg main\" > {PGDG_LIST}'",
        )
        run(host, "sudo apt-get update -qq")
        run(
            host,
            f"sudo DEBIAN_FRONTEND=noninteractive apt-get install -y -qq "
            f"postgresql-{version} postgresql-client-{version}",
        )
        run(host, "sudo systemctl enable postgresql")

    def install_package(self, host: str, *packages: str) -> None:
        names = " ".join(packages)
        self.executor.run_on_host(
            host, f"sudo DEBIAN_FRONTEND=noninteractive apt-get install -y -qq {names}"
        )

    def data_directory_exists(self, host: str) -> bool:
        return self.executor.test(host, f"sudo test -d {self.config.data_directory}")

    def ensure_cluster(self, host: str) -> bool:
        """Create the main cluster unless its data directory exists.

        Returns whether a cluster was created.
        """
        if self.data_directory_exists(host):
            logger.info("PostgreSQL %s/main already exists on %s, skipping creation", self.version, host)
            return False
        self.executor.run_on_host(host, f"sudo pg_createcluster {self.version} main --start")
        return True

    def drop_cluster(self, host: str) -> None:
        """Stop and remove the main cluster and its directories."""
        run = self.executor.run_on_host
        run(host, "sudo systemctl stop postgresql || true")
        run(host, f"sudo pg_dropcluster --stop {self.version} main || true")
        run(host, f"sudo rm -rf {self.config.config_directory}")
        run(host, f"sudo rm -rf {self.config.data_directory}")

    def recreate_cluster(self, host: str) -> None:
        self.drop_cluster(host)
        self.executor.run_on_host(host, f"sudo pg_createcluster {self.version} main")
        self.executor.run_on_host(host, "sudo systemctl start postgresql")

    def restart(self, host: str) -> None:
        self.executor.run_on_host(host, f"sudo pg_ctlcluster {self.version} main restart")

    def reload(self, host: str) -> None:
        self.executor.run_on_host(host, f"sudo pg_ctlcluster {self.version} main reload")

    def is_running(self, host: str) -> bool:
        result = self.executor.execute(host, "sudo pg_lsclusters -h 2>/dev/null")
        if not result.ok:
            return False
        for line in result.stdout.splitlines():
            fields = line.split()
            if len(fields) >= 4 and fields[0] == str(self.version) and fields[1] == "main":
                return "online" in fields[3]
        return "online" in result.stdout

    def query(self, host: str, sql: str, database: Optional[str] = None) -> str:
        """Run a single read-only statement and return unaligned tuples."""
        target = f" -d {database}" if database else ""
        return self.executor.run_on_host(
            host, f'sudo -u {self.config.postgres_user} psql{target} -tAc "{sql}"'
        ).strip()

    def run_sql(self, host: str, sql: str, database: Optional[str] = None) -> str:
        """Run a multi-statement script through a temporary file."""
        temp_file = f"/tmp/query_{token_source.token_hex(8)}.sql"
        target = f" -d {database}" if database else ""
        self.executor.upload(host, sql, temp_file, mode="644")
        try:
            return self.executor.run_on_host(
                host, f"sudo -u {self.config.postgres_user} psql{target} -v ON_ERROR_STOP=1 -t -f {temp_file}"
            )
        finally:
            self.executor.run_on_host(host, f"sudo rm -f {temp_file}")

    def write_config(self, host: str, name: str, content: str) -> None:
        self.executor.upload(
            host,
            content,
            f"{self.config.config_directory}/{name}",
            mode="644",
            owner="postgres:postgres",
        )


def render_settings(settings: dict) -> str:
    """Render ``key = value`` lines for a PostgreSQL-style config file."""
    lines = []
    for key, value in settings.items():
        if isinstance(value, bool):
            rendered = "on" if value else "off"
        elif isinstance(value, (int, float)):
            rendered = str(value)
        else:
            rendered = f"'{value}'"
        lines.append(f"{key} = {rendered}")
    return "\n".join(lines) + "\n"
