"""Logging helpers."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from .sanitizer import sanitize

_LOGGING_CONFIGURED = False


class RedactingFilter(logging.Filter):
    """Scrub secrets from every record before a handler formats it."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = sanitize(record.getMessage())
        record.args = None
        return True


def configure_logging(verbose: bool = False) -> None:
    global _LOGGING_CONFIGURED
    if not _LOGGING_CONFIGURED:
        logging.basicConfig(
            level=logging.INFO,
            format="[%(asctime)s] %(levelname)s %(name)s - %(message)s",
        )
        for handler in logging.getLogger().handlers:
            handler.addFilter(RedactingFilter())
        _LOGGING_CONFIGURED = True
    logging.getLogger("pg_deployer").setLevel(logging.DEBUG if verbose else logging.INFO)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if not _LOGGING_CONFIGURED:
        configure_logging()
    return logging.getLogger(name)


class DeployLogger:
    """Operator-facing log with numbered tasks and section headers."""

    def __init__(self, name: str = "pg_deployer.deploy") -> None:
        self._logger = get_logger(name)
        self._step_number = 0

    @property
    def step_number(self) -> int:
        return self._step_number

    def debug(self, message: str) -> None:
        self._logger.debug(sanitize(message))

    def info(self, message: str) -> None:
        self._logger.info(sanitize(message))

    def warning(self, message: str) -> None:
        self._logger.warning(sanitize(message))

    def error(self, message: str) -> None:
        self._logger.error(sanitize(message))

    def success(self, message: str) -> None:
        self._logger.info(sanitize(f"✅ {message}"))

    def section(self, title: str) -> None:
        self._logger.info("=" * 60)
        self._logger.info(sanitize(title.center(60)))
        self._logger.info("=" * 60)

    @contextmanager
    def task(self, description: str) -> Iterator[None]:
        """Log entry, duration and failure of a unit of work."""
        self._step_number += 1
        self._logger.info(sanitize(f"{self._step_number}. {description}"))
        start = time.monotonic()
        try:
            yield
        except Exception as exc:
            self._logger.error(sanitize(f"  Failed: {exc}"))
            raise
        self._logger.debug(f"  Completed in {time.monotonic() - start:.2f}s")
