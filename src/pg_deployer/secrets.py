"""Secret reference resolution."""

from __future__ import annotations

import os
import re
import subprocess
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional

from .errors import SecretResolutionError
from .utils.logging import get_logger
from .utils.sanitizer import register_secret

logger = get_logger(__name__)

_COMMAND_PATTERN = re.compile(r"^\$\((.+)\)$")
_ENV_PATTERN = re.compile(r"^\$([A-Z_][A-Z0-9_]*)$")
_EXPLICIT_ENV_PATTERN = re.compile(r"^env:(.+)$")


def _run_command(command: str) -> str:
    completed = subprocess.run(
        command,
        shell=True,
        capture_output=True,
        text=True,
    )
    if completed.returncode != 0:
        raise SecretResolutionError(
            f"Failed to execute secret command: {command} (exit status: {completed.returncode})"
        )
    return completed.stdout.strip()


class Secrets:
    """Resolves named secret references, memoizing each result.

    Supported reference formats:
    - ``$(command)``: stdout of a local shell command
    - ``$VAR``: environment variable
    - ``env:VAR``: environment variable
    - anything else: the literal value
    """

    def __init__(
        self,
        references: Mapping[str, str],
        *,
        command_runner: Callable[[str], str] = _run_command,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._references = dict(references)
        self._command_runner = command_runner
        self._environ = environ if environ is not None else os.environ
        self._cache: Dict[str, Optional[str]] = {}

    def resolve(self, name: str) -> Optional[str]:
        if name in self._cache:
            return self._cache[name]
        reference = self._references.get(name)
        if reference is None:
            return None
        resolved = self._resolve_value(reference)
        if resolved:
            register_secret(resolved)
        self._cache[name] = resolved
        return resolved

    def require(self, name: str) -> str:
        value = self.resolve(name)
        if not value:
            raise SecretResolutionError(f"Secret '{name}' is not configured or resolved to nothing")
        return value

    def resolve_all(self) -> Dict[str, Optional[str]]:
        return {name: self.resolve(name) for name in self._references}

    def cache_to_files(self, directory: str = ".secrets") -> Dict[str, Path]:
        """Write every resolved secret to ``directory/<name>`` with mode 600."""
        target = Path(directory)
        target.mkdir(parents=True, exist_ok=True)
        written: Dict[str, Path] = {}
        for name, value in self.resolve_all().items():
            if value is None:
                logger.warning("Secret %s resolved to nothing, not cached", name)
                continue
            path = target / name
            path.write_text(value, encoding="utf-8")
            path.chmod(0o600)
            written[name] = path
            logger.info("Cached %s to %s", name, path)
        return written

    def _resolve_value(self, reference: str) -> Optional[str]:
        match = _COMMAND_PATTERN.match(reference)
        if match:
            return self._command_runner(match.group(1))
        match = _ENV_PATTERN.match(reference)
        if match:
            return self._environ.get(match.group(1))
        match = _EXPLICIT_ENV_PATTERN.match(reference)
        if match:
            return self._environ.get(match.group(1))
        return reference
