"""
Tests for RetryExecutor and RetryPolicy.

Covers:
- Backoff formula with and without jitter
- Default predicate classification
- Exhaustion, non-retryable errors, per-attempt timeout, cancellation
- on_retry callback and the with_retry decorator
"""

import random
import threading
import time

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from inventory_kernel.exceptions import (
    AttemptTimeoutError,
    IdempotencyConflictError,
    InsufficientCapitalError,
    InsufficientStockError,
    InvalidEventError,
    LockContentionError,
    OperationCancelledError,
)
from inventory_kernel.services.retry_executor import (
    RetryExecutor,
    RetryPolicy,
    RetryResult,
    is_transient_error,
    with_retry,
)


class FlakyOperation:
    """Fails with ``error`` for the first ``failures`` calls, then returns ``value``."""

    def __init__(self, failures: int, error: BaseException | None = None, value="ok"):
        self.failures = failures
        self.error = error or ConnectionError("connection reset")
        self.value = value
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.value


class _HTTPError(Exception):
    def __init__(self, status_code):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}")


class TestBackoff:
    def test_exponential_without_jitter(self):
        policy = RetryPolicy(base_delay=0.1, backoff_factor=2.0, max_delay=30.0, jitter=False)
        assert policy.backoff_delay(1) == pytest.approx(0.1)
        assert policy.backoff_delay(2) == pytest.approx(0.2)
        assert policy.backoff_delay(3) == pytest.approx(0.4)

    def test_capped_at_max_delay(self):
        policy = RetryPolicy(base_delay=1.0, backoff_factor=10.0, max_delay=5.0, jitter=False)
        assert policy.backoff_delay(4) == 5.0

    def test_jitter_stays_within_half_to_full(self):
        policy = RetryPolicy(base_delay=1.0, backoff_factor=2.0, max_delay=30.0, jitter=True)
        rng = random.Random(42)
        for attempt in range(1, 6):
            full = min(30.0, 2.0 ** (attempt - 1))
            delay = policy.backoff_delay(attempt, rng)
            assert 0.5 * full <= delay <= full

    def test_invalid_policy_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError):
            RetryPolicy(backoff_factor=0.5)
        with pytest.raises(ValueError):
            RetryPolicy(timeout_per_attempt=0)

    def test_presets(self):
        assert RetryPolicy.for_database().max_attempts == 5
        assert RetryPolicy.for_critical_operation().base_delay == 2.0


class TestDefaultPredicate:
    @pytest.mark.parametrize(
        "error",
        [
            ConnectionError("reset"),
            TimeoutError("slow"),
            OperationalError("SELECT 1", {}, Exception("database is locked")),
            AttemptTimeoutError(1.0, 1),
            LockContentionError("P1:company:None", 1.0),
            _HTTPError(503),
            _HTTPError(429),
        ],
    )
    def test_transient(self, error):
        assert is_transient_error(error)

    @pytest.mark.parametrize(
        "error",
        [
            InsufficientStockError("P1", "company", None, 1, 2),
            InsufficientCapitalError("INV-1", 0, 10),
            InvalidEventError("sale", "S-1", "bad"),
            IdempotencyConflictError("sale:S-1:0", "a", "b"),
            OperationCancelledError(1),
            IntegrityError("INSERT", {}, Exception("unique")),
            _HTTPError(404),
            ValueError("nope"),
        ],
    )
    def test_not_transient(self, error):
        assert not is_transient_error(error)

    def test_transient_attribute(self):
        error = RuntimeError("tagged")
        error.transient = True
        assert is_transient_error(error)


class TestExecute:
    def test_transient_twice_then_success(self, sleeps):
        """Three attempts, base 100ms, factor 2, no jitter."""
        policy = RetryPolicy(
            max_attempts=3, base_delay=0.1, backoff_factor=2.0, max_delay=30.0,
            jitter=False, timeout_per_attempt=None,
        )
        operation = FlakyOperation(failures=2)

        result = RetryExecutor(policy, sleep=sleeps.append).execute(operation)

        assert result.success
        assert result.value == "ok"
        assert result.attempts == 3
        assert operation.calls == 3
        assert result.delays == pytest.approx((0.1, 0.2))
        assert 0.2 <= result.delays[1] <= policy.max_delay
        assert sleeps == pytest.approx([0.1, 0.2])

    def test_exhaustion_reports_last_error(self, executor):
        error = ConnectionError("still down")
        operation = FlakyOperation(failures=10, error=error)

        result = executor.execute(operation)

        assert not result.success
        assert result.error is error
        assert result.attempts == 3
        assert len(result.delays) == 2
        with pytest.raises(ConnectionError):
            result.unwrap()

    def test_refusal_not_retried(self, executor):
        operation = FlakyOperation(
            failures=10, error=InsufficientStockError("P1", "company", None, 0, 1)
        )

        result = executor.execute(operation)

        assert not result.success
        assert result.attempts == 1
        assert operation.calls == 1
        assert isinstance(result.error, InsufficientStockError)

    def test_custom_predicate(self, sleeps):
        policy = RetryPolicy(
            max_attempts=4, base_delay=0.0, jitter=False, timeout_per_attempt=None,
            retry_predicate=lambda error, attempt: isinstance(error, KeyError),
        )
        operation = FlakyOperation(failures=2, error=KeyError("x"))

        result = RetryExecutor(policy, sleep=sleeps.append).execute(operation)

        assert result.success
        assert result.attempts == 3

    def test_policy_argument_overrides_default(self, executor):
        operation = FlakyOperation(failures=4)
        policy = RetryPolicy(max_attempts=5, base_delay=0.0, jitter=False, timeout_per_attempt=None)

        result = executor.execute(operation, policy)

        assert result.success
        assert result.attempts == 5

    def test_on_retry_callback(self, sleeps):
        seen = []
        policy = RetryPolicy(
            max_attempts=3, base_delay=0.5, jitter=False, timeout_per_attempt=None,
            on_retry=lambda error, attempt, delay: seen.append((type(error), attempt, delay)),
        )

        RetryExecutor(policy, sleep=sleeps.append).execute(FlakyOperation(failures=2))

        assert seen == [(ConnectionError, 1, 0.5), (ConnectionError, 2, 1.0)]

    def test_logs_retry_events(self, executor, captured_logs):
        executor.execute(FlakyOperation(failures=1), operation_name="append:sale:S-1:0")

        messages = [r["message"] for r in captured_logs()]
        assert "retry_scheduled" in messages
        assert "retry_succeeded" in messages
        scheduled = next(r for r in captured_logs() if r["message"] == "retry_scheduled")
        assert scheduled["operation"] == "append:sale:S-1:0"
        assert scheduled["error_type"] == "ConnectionError"


class TestRetryResult:
    def test_unwrap_success(self):
        assert RetryResult(success=True, value=7, attempts=1).unwrap() == 7

    def test_unwrap_raises_recorded_error(self):
        result = RetryResult(success=False, error=TimeoutError("slow"), attempts=3)

        with pytest.raises(TimeoutError, match="slow"):
            result.unwrap()

    def test_unwrap_failure_without_error(self):
        with pytest.raises(RuntimeError, match="without recording an error"):
            RetryResult(success=False).unwrap()


class TestTimeout:
    def test_slow_attempt_times_out(self, sleeps):
        release = threading.Event()

        def slow():
            release.wait(5)
            return "late"

        policy = RetryPolicy(
            max_attempts=2, base_delay=0.0, jitter=False, timeout_per_attempt=0.05
        )
        try:
            result = RetryExecutor(policy, sleep=sleeps.append).execute(slow)
        finally:
            release.set()

        assert not result.success
        assert isinstance(result.error, AttemptTimeoutError)
        assert result.attempts == 2

    def test_fast_attempt_within_timeout(self):
        policy = RetryPolicy(max_attempts=1, timeout_per_attempt=5.0)
        result = RetryExecutor(policy).execute(lambda: 42)
        assert result.success
        assert result.value == 42


class TestCancellation:
    def test_cancel_before_first_attempt(self, executor):
        cancel = threading.Event()
        cancel.set()
        operation = FlakyOperation(failures=0)

        result = executor.execute(operation, cancel=cancel)

        assert not result.success
        assert result.cancelled
        assert operation.calls == 0

    def test_cancel_during_backoff(self):
        cancel = threading.Event()
        policy = RetryPolicy(
            max_attempts=5, base_delay=10.0, jitter=False, timeout_per_attempt=None
        )
        operation = FlakyOperation(failures=10)
        timer = threading.Timer(0.05, cancel.set)
        timer.start()
        started = time.monotonic()
        try:
            result = RetryExecutor(policy).execute(operation, cancel=cancel)
        finally:
            timer.cancel()

        assert result.cancelled
        assert isinstance(result.error, OperationCancelledError)
        assert operation.calls == 1
        assert time.monotonic() - started < 5.0

    def test_cancel_while_attempt_running(self):
        cancel = threading.Event()
        release = threading.Event()

        def stuck():
            release.wait(5)
            return "done"

        timer = threading.Timer(0.05, cancel.set)
        timer.start()
        try:
            result = RetryExecutor(
                RetryPolicy(max_attempts=1, timeout_per_attempt=None)
            ).execute(stuck, cancel=cancel)
        finally:
            release.set()
            timer.cancel()

        assert result.cancelled
        assert result.attempts == 1


class TestWithRetryDecorator:
    def test_returns_value_after_retries(self):
        operation = FlakyOperation(failures=1, value=7)
        executor = RetryExecutor(sleep=lambda _: None)

        @with_retry(RetryPolicy(max_attempts=2, jitter=False, timeout_per_attempt=None), executor)
        def load():
            return operation()

        assert load() == 7
        assert operation.calls == 2

    def test_raises_final_error(self):
        executor = RetryExecutor(sleep=lambda _: None)

        @with_retry(RetryPolicy(max_attempts=2, jitter=False, timeout_per_attempt=None), executor)
        def load():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            load()
