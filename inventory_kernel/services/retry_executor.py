"""
RetryExecutor -- bounded retry of transient failures.

Responsibility:
    Runs an operation up to ``max_attempts`` times, sleeping with capped
    exponential backoff (optionally jittered) between attempts, bounding
    each attempt by a timeout, and reporting the outcome as a RetryResult
    instead of a callback.

Architecture position:
    Kernel > Services -- leaf dependency.  Used by the integration
    orchestrator around every ledger append; knows nothing about inventory.

Invariants enforced:
    - Never more than ``max_attempts`` attempts.
    - Delay before attempt n+1 is ``min(max_delay, base_delay * factor**(n-1))``,
      multiplied by a uniform factor in [0.5, 1.0] when jitter is on.
    - Errors the predicate rejects are returned after one attempt.  Domain
      refusals, validation errors and idempotency conflicts are never retried
      by the default predicate.
    - The final error is always reported, never swallowed.

Failure modes:
    - AttemptTimeoutError (transient) when one attempt exceeds
      ``timeout_per_attempt``.  The abandoned attempt keeps running in its
      worker thread and is not rolled back; operations passed here must be
      idempotent.
    - OperationCancelledError when the caller's cancel event is set while
      the executor waits on an attempt or a backoff sleep.

Usage:
    executor = RetryExecutor()
    result = executor.execute(lambda: ledger.append(draft), RetryPolicy.for_database())
    if not result.success:
        raise result.error
"""

from __future__ import annotations

import contextvars
import functools
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import wait as futures_wait
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Generic, TypeVar

from sqlalchemy import exc as sa_exc
from tenacity import RetryCallState, Retrying, retry_base, stop_after_attempt

from inventory_kernel.exceptions import (
    AttemptTimeoutError,
    ConflictError,
    DomainRefusalError,
    ImmutabilityError,
    OperationCancelledError,
    TransientInfraError,
    ValidationError,
)
from inventory_kernel.logging_config import get_logger

logger = get_logger("services.retry_executor")

T = TypeVar("T")

RetryPredicate = Callable[[BaseException, int], bool]
RetryCallback = Callable[[BaseException, int, float], None]

_CANCEL_POLL_INTERVAL = 0.05

_NEVER_RETRY = (
    ValidationError,
    DomainRefusalError,
    ConflictError,
    ImmutabilityError,
    OperationCancelledError,
)

_TRANSIENT_DB_ERRORS = (
    sa_exc.OperationalError,
    sa_exc.DisconnectionError,
    sa_exc.TimeoutError,
)


def _http_status(error: BaseException) -> int | None:
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def is_transient_error(error: BaseException, attempt_number: int = 1) -> bool:
    """
    Default retry predicate.

    Retries connection and timeout errors, SQLAlchemy operational and
    disconnect errors, HTTP 429 and 5xx, and anything tagged transient
    (a TransientInfraError, or any exception with ``transient = True``).
    Everything else fails fast.
    """
    if isinstance(error, _NEVER_RETRY):
        return False
    if isinstance(error, TransientInfraError):
        return True
    if isinstance(error, sa_exc.IntegrityError):
        return False
    if isinstance(error, _TRANSIENT_DB_ERRORS):
        return True
    status = _http_status(error)
    if status is not None:
        return status == 429 or 500 <= status <= 599
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True
    return getattr(error, "transient", False) is True


@dataclass(frozen=True)
class RetryPolicy:
    """
    How many times, and how patiently, to retry.

    Delays and timeouts are in seconds.  ``timeout_per_attempt=None``
    disables the per-attempt bound.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    jitter: bool = True
    timeout_per_attempt: float | None = 60.0
    retry_predicate: RetryPredicate = is_transient_error
    on_retry: RetryCallback | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1")
        if self.timeout_per_attempt is not None and self.timeout_per_attempt <= 0:
            raise ValueError("timeout_per_attempt must be positive or None")

    @classmethod
    def for_database(cls) -> RetryPolicy:
        """Short, frequent retries for database writes."""
        return cls(max_attempts=5, base_delay=0.5, max_delay=5.0, timeout_per_attempt=30.0)

    @classmethod
    def for_critical_operation(cls) -> RetryPolicy:
        """Fewer, slower retries for operations that must not hammer a peer."""
        return cls(max_attempts=5, base_delay=2.0, max_delay=10.0, timeout_per_attempt=60.0)

    def with_overrides(self, **changes: Any) -> RetryPolicy:
        return replace(self, **changes)

    def backoff_delay(self, attempt_number: int, rng: random.Random | None = None) -> float:
        """Delay to wait after failed attempt ``attempt_number`` (1-based)."""
        delay = min(self.max_delay, self.base_delay * self.backoff_factor ** (attempt_number - 1))
        if self.jitter:
            delay *= (rng or random).uniform(0.5, 1.0)
        return delay


@dataclass(frozen=True)
class RetryResult(Generic[T]):
    """Outcome of RetryExecutor.execute."""

    success: bool
    value: T | None = None
    error: BaseException | None = None
    attempts: int = 0
    total_elapsed: float = 0.0
    delays: tuple[float, ...] = field(default_factory=tuple)

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, OperationCancelledError)

    def unwrap(self) -> T:
        """Return the value, or raise the final error."""
        if not self.success:
            if self.error is None:
                raise RuntimeError("RetryResult failed without recording an error")
            raise self.error
        return self.value  # type: ignore[return-value]


class _RetryIfPredicate(retry_base):
    """tenacity retry strategy that defers to a RetryPolicy predicate."""

    def __init__(self, predicate: RetryPredicate):
        self._predicate = predicate

    def __call__(self, retry_state: RetryCallState) -> bool:
        outcome = retry_state.outcome
        if outcome is None or not outcome.failed:
            return False
        error = outcome.exception()
        if isinstance(error, OperationCancelledError):
            return False
        return bool(self._predicate(error, retry_state.attempt_number))


class RetryExecutor:
    """
    Executes operations under a RetryPolicy.

    Contract:
        ``execute`` never raises for a failed operation; it returns a
        RetryResult carrying the final error.  ``sleep`` and ``rng`` are
        injectable so tests can run without wall-clock delays.

    Guarantees:
        - ``result.attempts`` is the number of times the operation started.
        - ``result.delays`` lists every backoff delay actually scheduled.

    Non-goals:
        - Does NOT roll back an attempt abandoned on timeout.
        - Does NOT decide whether an operation is safe to repeat; callers
          pass idempotent operations.
    """

    def __init__(
        self,
        default_policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], None] | None = None,
        rng: random.Random | None = None,
    ):
        self._default_policy = default_policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng or random.Random()

    @property
    def default_policy(self) -> RetryPolicy:
        return self._default_policy

    def execute(
        self,
        operation: Callable[[], T],
        policy: RetryPolicy | None = None,
        cancel: threading.Event | None = None,
        operation_name: str | None = None,
    ) -> RetryResult[T]:
        policy = policy or self._default_policy
        name = operation_name or getattr(operation, "__name__", "operation")
        attempts = 0
        delays: list[float] = []
        started = time.monotonic()

        def attempt() -> T:
            nonlocal attempts
            if cancel is not None and cancel.is_set():
                raise OperationCancelledError(attempts)
            attempts += 1
            return self._run_attempt(operation, policy, attempts, cancel)

        def before_sleep(retry_state: RetryCallState) -> None:
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delays.append(delay)
            logger.warning(
                "retry_scheduled",
                extra={
                    "operation": name,
                    "attempt": retry_state.attempt_number,
                    "max_attempts": policy.max_attempts,
                    "delay_seconds": round(delay, 4),
                    "error_type": type(error).__name__ if error else None,
                    "error": str(error) if error else None,
                },
            )
            if policy.on_retry is not None and error is not None:
                policy.on_retry(error, retry_state.attempt_number, delay)

        def sleep(delay: float) -> None:
            if cancel is None:
                (self._sleep or time.sleep)(delay)
                return
            if self._sleep is None:
                interrupted = cancel.wait(delay)
            else:
                self._sleep(delay)
                interrupted = cancel.is_set()
            if interrupted:
                raise OperationCancelledError(attempts)

        retrying = Retrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=lambda retry_state: policy.backoff_delay(retry_state.attempt_number, self._rng),
            retry=_RetryIfPredicate(policy.retry_predicate),
            sleep=sleep,
            before_sleep=before_sleep,
            reraise=True,
        )

        try:
            value = retrying(attempt)
        except OperationCancelledError as exc:
            elapsed = time.monotonic() - started
            logger.info(
                "retry_cancelled",
                extra={"operation": name, "attempts": attempts, "elapsed_seconds": round(elapsed, 4)},
            )
            return RetryResult(
                success=False, error=exc, attempts=attempts,
                total_elapsed=elapsed, delays=tuple(delays),
            )
        except Exception as exc:
            elapsed = time.monotonic() - started
            retryable = policy.retry_predicate(exc, attempts)
            logger.warning(
                "retry_exhausted" if retryable else "retry_not_retryable",
                extra={
                    "operation": name,
                    "attempts": attempts,
                    "max_attempts": policy.max_attempts,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "elapsed_seconds": round(elapsed, 4),
                },
            )
            return RetryResult(
                success=False, error=exc, attempts=attempts,
                total_elapsed=elapsed, delays=tuple(delays),
            )

        elapsed = time.monotonic() - started
        if attempts > 1:
            logger.info(
                "retry_succeeded",
                extra={"operation": name, "attempts": attempts, "elapsed_seconds": round(elapsed, 4)},
            )
        return RetryResult(
            success=True, value=value, attempts=attempts,
            total_elapsed=elapsed, delays=tuple(delays),
        )

    def _run_attempt(
        self,
        operation: Callable[[], T],
        policy: RetryPolicy,
        attempt_number: int,
        cancel: threading.Event | None,
    ) -> T:
        timeout = policy.timeout_per_attempt
        if timeout is None and cancel is None:
            return operation()

        # The worker thread is never joined: a timed-out or cancelled
        # attempt is abandoned, not interrupted.
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="retry-attempt")
        try:
            future = pool.submit(contextvars.copy_context().run, operation)
            deadline = None if timeout is None else time.monotonic() + timeout
            while True:
                wait_for = _CANCEL_POLL_INTERVAL if cancel is not None else None
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise AttemptTimeoutError(timeout, attempt_number)
                    wait_for = remaining if wait_for is None else min(wait_for, remaining)
                done, _ = futures_wait([future], timeout=wait_for)
                if done:
                    return future.result()
                if cancel is not None and cancel.is_set():
                    raise OperationCancelledError(attempt_number)
        finally:
            pool.shutdown(wait=False)


def with_retry(
    policy: RetryPolicy | None = None,
    executor: RetryExecutor | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator form: retry the wrapped function, raise the final error.

    Usage:
        @with_retry(RetryPolicy.for_database())
        def load_snapshot(): ...
    """

    def decorator(fn: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            runner = executor or RetryExecutor()
            result = runner.execute(
                lambda: fn(*args, **kwargs), policy, operation_name=fn.__name__
            )
            return result.unwrap()

        return wrapper

    return decorator
