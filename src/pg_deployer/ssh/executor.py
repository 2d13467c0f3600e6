"""Remote command execution across the cluster's hosts."""

from __future__ import annotations

import posixpath
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional, TypeVar

from ..config import ClusterConfig
from ..errors import ExecutionError
from ..utils.logging import get_logger
from ..utils.retry import CancellationToken
from ..utils.sanitizer import sanitize
from .credentials import SSHCredentials
from .session import SSHCommandResult, SSHConnectionError, SSHSession

T = TypeVar("T")

logger = get_logger(__name__)

MAX_PARALLEL_HOSTS = 10


class RemoteExecutor:
    """Runs commands on cluster hosts over lazily opened SSH sessions.

    Every command checks the bound :class:`CancellationToken` first, so a body
    running under :func:`with_timeout` stops issuing commands once its deadline
    has fired.
    """

    def __init__(
        self,
        config: ClusterConfig,
        *,
        session_factory: Optional[Callable[[str], SSHSession]] = None,
        token: Optional[CancellationToken] = None,
        command_timeout: int = 600,
    ) -> None:
        self.config = config
        self._session_factory = session_factory or self._default_session
        self._sessions: Dict[str, SSHSession] = {}
        self._lock = threading.Lock()
        self._local = threading.local()
        self._default_token = token
        self.command_timeout = command_timeout

    def _default_session(self, host: str) -> SSHSession:
        credentials = SSHCredentials.for_host(
            host, self.config.user, self.config.ssh_port, self.config.ssh_key
        )
        return SSHSession(credentials)

    @property
    def token(self) -> Optional[CancellationToken]:
        return getattr(self._local, "token", None) or self._default_token

    def bind_token(self, token: Optional[CancellationToken]) -> None:
        """Bind ``token`` for commands issued from the calling thread."""
        self._local.token = token

    def check_cancelled(self) -> None:
        token = self.token
        if token is not None:
            token.check()

    def session(self, host: str) -> SSHSession:
        with self._lock:
            session = self._sessions.get(host)
            if session is None:
                session = self._session_factory(host)
                self._sessions[host] = session
            return session

    def execute(self, host: str, command: str) -> SSHCommandResult:
        self.check_cancelled()
        logger.debug("[%s] $ %s", host, sanitize(command))
        try:
            return self.session(host).run(command, timeout=self.command_timeout)
        except SSHConnectionError as exc:
            raise ExecutionError(
                f"SSH connection to {host} failed: {exc}",
                host=host,
                command=command,
            ) from exc

    def run_on_host(self, host: str, command: str) -> str:
        """Run ``command`` on ``host`` and return its stdout; raise on failure."""
        result = self.execute(host, command)
        if not result.ok:
            detail = f": {result.stderr}" if result.stderr else ""
            raise ExecutionError(
                f"Command failed on {host} (exit {result.exit_status}): {sanitize(command)}{sanitize(detail)}",
                host=host,
                command=command,
                exit_status=result.exit_status,
                stderr=sanitize(result.stderr),
            )
        return result.stdout

    def test(self, host: str, command: str) -> bool:
        """Return whether ``command`` exits 0 on ``host``; never raises on failure."""
        try:
            return self.execute(host, command).ok
        except ExecutionError as exc:
            logger.debug("[%s] test failed: %s", host, exc)
            return False

    def run_on_hosts(
        self,
        hosts: Iterable[str],
        command: str,
        parallel: bool = True,
    ) -> Dict[str, str]:
        """Run ``command`` on every host and wait for all of them.

        Failures do not stop the other hosts; afterwards a single
        :class:`ExecutionError` names every host that failed.
        """
        targets = list(hosts)
        results: Dict[str, str] = {}
        failures: List[ExecutionError] = []

        if parallel and len(targets) > 1:
            workers = min(len(targets), MAX_PARALLEL_HOSTS)
            with ThreadPoolExecutor(max_workers=workers) as pool:
                token = self.token
                futures = {
                    host: pool.submit(self._run_with_token, token, host, command) for host in targets
                }
                for host, future in futures.items():
                    try:
                        results[host] = future.result()
                    except ExecutionError as exc:
                        failures.append(exc)
        else:
            for host in targets:
                try:
                    results[host] = self.run_on_host(host, command)
                except ExecutionError as exc:
                    failures.append(exc)

        if failures:
            failed_hosts = ", ".join(str(failure.host) for failure in failures)
            raise ExecutionError(
                f"Command failed on {len(failures)} host(s): {failed_hosts}",
                command=command,
                failures=failures,
            )
        return results

    def upload(
        self,
        host: str,
        content: str,
        path: str,
        mode: str = "644",
        owner: Optional[str] = None,
    ) -> None:
        """Place ``content`` at ``path`` with the given mode and owner."""
        self.check_cancelled()
        temp_path = f"/tmp/{posixpath.basename(path)}"
        logger.debug("[%s] upload %s", host, path)
        try:
            self.session(host).upload(content, temp_path)
        except SSHConnectionError as exc:
            raise ExecutionError(f"SSH connection to {host} failed: {exc}", host=host) from exc
        self.run_on_host(host, f"sudo mv {temp_path} {path}")
        if owner:
            self.run_on_host(host, f"sudo chown {owner} {path}")
        self.run_on_host(host, f"sudo chmod {mode} {path}")

    def on_host(self, host: str, action: Callable[[], T]) -> T:
        """Run a host-scoped action once a session to ``host`` is open."""
        self.check_cancelled()
        try:
            self.session(host).connect()
        except SSHConnectionError as exc:
            raise ExecutionError(f"SSH connection to {host} failed: {exc}", host=host) from exc
        return action()

    def close(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()

    def _run_with_token(self, token: Optional[CancellationToken], host: str, command: str) -> str:
        self.bind_token(token)
        try:
            return self.run_on_host(host, command)
        finally:
            self.bind_token(None)
