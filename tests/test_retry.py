"""Tests for retry, polling and deadline primitives."""

import threading
import time

import pytest

from pg_deployer.errors import OperationCancelled, OperationTimeoutError, RetryExhausted
from pg_deployer.utils.retry import CancellationToken, retry_with_backoff, wait_for, with_timeout


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestRetryWithBackoff:
    def test_returns_first_success(self):
        attempts = []

        def body():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("flaky")
            return "done"

        delays = []
        assert retry_with_backoff(body, sleep=delays.append) == "done"
        assert delays == [1.0, 2.0]

    def test_delays_are_capped(self):
        delays = []

        def body():
            raise ValueError("always")

        with pytest.raises(RetryExhausted) as excinfo:
            retry_with_backoff(
                body, max_attempts=5, initial_delay=4.0, max_delay=10.0, sleep=delays.append
            )
        assert delays == [4.0, 8.0, 10.0, 10.0]
        assert excinfo.value.attempts == 5
        assert isinstance(excinfo.value.last_error, ValueError)
        assert excinfo.value.__cause__ is excinfo.value.last_error

    def test_unmatched_errors_propagate_immediately(self):
        delays = []
        calls = []

        def body():
            calls.append(1)
            raise KeyError("fatal")

        with pytest.raises(KeyError):
            retry_with_backoff(body, retry_on=(ConnectionError,), sleep=delays.append)
        assert calls == [1]
        assert delays == []

    def test_default_sleep_goes_through_time_sleep(self, monkeypatch):
        delays = []
        monkeypatch.setattr("pg_deployer.utils.retry.time.sleep", delays.append)

        with pytest.raises(RetryExhausted):
            retry_with_backoff(lambda: 1 / 0, max_attempts=2, initial_delay=0.5)
        assert delays == [0.5]

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            retry_with_backoff(lambda: None, max_attempts=0)


class TestWaitFor:
    def test_true_without_sleeping_when_condition_holds(self):
        clock = FakeClock()
        assert wait_for(lambda: True, timeout=10, interval=1, sleep=clock.sleep, clock=clock)
        assert clock.sleeps == []

    def test_times_out(self):
        clock = FakeClock()
        assert not wait_for(lambda: False, timeout=10, interval=3, sleep=clock.sleep, clock=clock)
        assert clock.sleeps == [3, 3, 3, 3]

    def test_exceptions_count_as_not_yet(self):
        clock = FakeClock()
        results = iter([RuntimeError("down"), False, True])

        def predicate():
            value = next(results)
            if isinstance(value, Exception):
                raise value
            return value

        assert wait_for(predicate, timeout=60, interval=2, sleep=clock.sleep, clock=clock)
        assert clock.sleeps == [2, 2]


class TestWithTimeout:
    def test_returns_result_before_deadline(self):
        assert with_timeout(lambda token: "ok", timeout=5) == "ok"

    def test_deadline_cancels_token(self):
        started = threading.Event()
        seen = {}

        def body(token):
            seen["token"] = token
            started.set()
            token.sleep(5)
            return "late"

        with pytest.raises(OperationTimeoutError) as excinfo:
            with_timeout(body, timeout=0.2, description="slow step")
        assert started.is_set()
        assert seen["token"].cancelled
        assert isinstance(excinfo.value, TimeoutError)
        assert "slow step" in str(excinfo.value)

    def test_waits_for_body_to_stop_before_raising(self):
        finished = threading.Event()

        def body(token):
            time.sleep(0.3)
            finished.set()
            token.check()

        with pytest.raises(OperationTimeoutError):
            with_timeout(body, timeout=0.1)
        assert finished.is_set()

    def test_gives_up_on_body_after_grace(self):
        release = threading.Event()
        try:
            with pytest.raises(OperationTimeoutError):
                with_timeout(lambda token: release.wait(5), timeout=0.1, grace=0.1)
        finally:
            release.set()

    def test_body_errors_propagate(self):
        def body(token):
            raise RuntimeError("broken")

        with pytest.raises(RuntimeError):
            with_timeout(body, timeout=5)


class TestCancellationToken:
    def test_check_raises_once_cancelled(self):
        token = CancellationToken()
        token.check()
        token.cancel()
        assert token.cancelled
        with pytest.raises(OperationCancelled):
            token.check()

    def test_sleep_wakes_early_when_cancelled(self):
        token = CancellationToken()
        threading.Timer(0.05, token.cancel).start()
        with pytest.raises(OperationCancelled):
            token.sleep(5)
