"""Compensating rollback for multi-step deployments."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, TypeVar

from .config import ClusterConfig
from .errors import CompensationFailure
from .ssh.executor import RemoteExecutor
from .utils.logging import DeployLogger

T = TypeVar("T")


@dataclass
class RollbackAction:
    description: str
    action: Callable[[], object]
    host: Optional[str] = None


class RollbackManager:
    """LIFO stack of compensations for the deployment in progress.

    Actions run in reverse registration order regardless of host. A failing
    action is reported as a :class:`CompensationFailure` and the remaining
    actions still run; the stack is empty afterwards either way.
    """

    def __init__(
        self,
        config: ClusterConfig,
        executor: RemoteExecutor,
        logger: Optional[DeployLogger] = None,
    ) -> None:
        self.config = config
        self.executor = executor
        self.logger = logger or DeployLogger()
        self._stack: List[RollbackAction] = []

    @property
    def pending(self) -> List[RollbackAction]:
        return list(self._stack)

    def register(
        self,
        description: str,
        action: Callable[[], object],
        host: Optional[str] = None,
    ) -> None:
        self._stack.append(RollbackAction(description=description, action=action, host=host))

    def clear(self) -> None:
        self._stack.clear()

    def execute_all(self) -> List[CompensationFailure]:
        """Run every pending action newest first; return the failures."""
        if not self._stack:
            return []

        actions = list(reversed(self._stack))
        self.logger.warning(f"Executing rollback ({len(actions)} actions)...")
        failures: List[CompensationFailure] = []
        try:
            for rollback in actions:
                self.logger.info(f"  Rolling back: {rollback.description}")
                try:
                    if rollback.host:
                        self.executor.on_host(rollback.host, rollback.action)
                    else:
                        rollback.action()
                except Exception as exc:
                    failures.append(CompensationFailure(rollback.description, rollback.host, exc))
                    self.logger.error(f"    Failed: {exc}")
                    continue
                self.logger.info("    Completed")
        finally:
            self.clear()

        if failures:
            self.logger.warning(f"Rollback finished with {len(failures)} failed action(s)")
        else:
            self.logger.success("Rollback completed")
        return failures

    def with_rollback(self, description: str, body: Callable[[], T]) -> T:
        """Run ``body``; on failure compensate and re-raise the original error."""
        try:
            result = body()
        except Exception as exc:
            self.logger.error(f"{description} failed: {exc}")
            self.execute_all()
            raise
        self.clear()
        return result

    # Common compensations for PostgreSQL hosts

    def register_postgres_cluster_removal(self, host: str, version: Optional[int] = None) -> None:
        version = version or self.config.version

        def remove_cluster() -> None:
            self.executor.run_on_host(host, "sudo systemctl stop postgresql || true")
            self.executor.run_on_host(host, f"sudo pg_dropcluster --stop {version} main")

        self.register(f"Remove PostgreSQL cluster on {host}", remove_cluster, host=host)

    def register_package_removal(self, host: str, packages: List[str]) -> None:
        names = " ".join(packages)
        self.register(
            f"Remove packages on {host}: {', '.join(packages)}",
            lambda: self.executor.run_on_host(host, f"sudo apt-get remove -y -qq {names}"),
            host=host,
        )

    def register_file_removal(self, host: str, file_path: str) -> None:
        self.register(
            f"Remove file {file_path} on {host}",
            lambda: self.executor.run_on_host(host, f"sudo rm -f {file_path}"),
            host=host,
        )

    def register_directory_removal(self, host: str, dir_path: str) -> None:
        self.register(
            f"Remove directory {dir_path} on {host}",
            lambda: self.executor.run_on_host(host, f"sudo rm -rf {dir_path}"),
            host=host,
        )

