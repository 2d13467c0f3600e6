"""Retry, polling and deadline primitives."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, Optional, Tuple, Type, TypeVar

from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import OperationCancelled, OperationTimeoutError, RetryExhausted
from .logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


def retry_with_backoff(
    body: Callable[[], T],
    *,
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    backoff_factor: float = 2.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """Call ``body`` until it succeeds, sleeping with exponential backoff.

    Only exceptions matching ``retry_on`` consume an attempt; anything else
    propagates immediately. After ``max_attempts`` failures a
    :class:`RetryExhausted` wrapping the last error is raised.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    options: Dict[str, Any] = {
        "stop": stop_after_attempt(max_attempts),
        "wait": wait_exponential(multiplier=initial_delay, exp_base=backoff_factor, max=max_delay),
        "retry": retry_if_exception_type(retry_on),
        "before_sleep": before_sleep_log(logger, logging.INFO),
    }
    if sleep is not None:
        options["sleep"] = sleep

    try:
        return Retrying(**options)(body)
    except RetryError as exc:
        last_error = exc.last_attempt.exception()
        logger.warning("All %d attempts failed", max_attempts)
        raise RetryExhausted(max_attempts, last_error) from last_error


def wait_for(
    predicate: Callable[[], bool],
    *,
    timeout: float = 60.0,
    interval: float = 3.0,
    description: str = "condition",
    sleep: Optional[Callable[[float], None]] = None,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Poll ``predicate`` until it returns true or ``timeout`` elapses.

    Returns ``False`` on timeout instead of raising. Exceptions from the
    predicate count as "not yet" and are logged every tenth attempt.
    """
    sleep = sleep or time.sleep
    deadline = clock() + timeout
    attempts = 0

    while clock() < deadline:
        attempts += 1
        try:
            if predicate():
                return True
        except Exception as exc:
            if attempts % 10 == 0:
                logger.warning("Check %d for %s raised: %s", attempts, description, exc)

        if attempts % 5 == 0:
            remaining = max(0, int(deadline - clock()))
            logger.info("Waiting for %s... (%ds remaining)", description, remaining)
        sleep(interval)

    logger.warning("Timeout waiting for %s after %ss", description, timeout)
    return False


class CancellationToken:
    """Cooperative cancellation flag shared between a deadline and its body."""

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def check(self) -> None:
        """Raise :class:`OperationCancelled` once the token has fired."""
        if self._event.is_set():
            raise OperationCancelled("operation was cancelled after its deadline")

    def sleep(self, seconds: float) -> None:
        """Sleep that wakes early and raises when cancelled."""
        if self._event.wait(seconds):
            self.check()


def with_timeout(
    body: Callable[[CancellationToken], T],
    timeout: float,
    description: str = "operation",
    grace: float = 30.0,
) -> T:
    """Run ``body(token)`` with a deadline.

    When the deadline fires the token is cancelled and the body gets up to
    ``grace`` seconds to reach its next ``token.check()``. Only then is
    :class:`OperationTimeoutError` raised, so the caller's cleanup never
    overlaps a command the body already started. Any late result is
    discarded. A ``RemoteExecutor`` bound to the token checks it before
    every command.
    """
    token = CancellationToken()
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pg-deployer-deadline")
    try:
        future = pool.submit(body, token)
        done, _ = wait([future], timeout=timeout)
        if not done:
            token.cancel()
            future.cancel()
            logger.warning("%s timed out after %ss, cancelling", description, timeout)
            stopped, _ = wait([future], timeout=grace)
            if not stopped:
                logger.error(
                    "%s still running %ss after cancellation, giving up on it", description, grace
                )
            raise OperationTimeoutError(description, timeout)
        return future.result()
    finally:
        pool.shutdown(wait=False)
