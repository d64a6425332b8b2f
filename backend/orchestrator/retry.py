"""
Retry-with-backoff executor and retryable-error classification.

Purpose:
- One uniform resilience policy for every external-service call
  (source reads, recognition, translation, synthesis, playback)
- Deterministic backoff schedule; optional jitter never exceeds it
- Cooperative cancellation: delays are asyncio sleeps, never blocking

Semantics:
- Attempts are strictly sequential (no overlap).
- Delay before attempt n (n >= 2) is
      min(initial_delay * multiplier ** (n - 2), max_delay)
- Only errors the classifier marks retryable trigger another attempt.
- A non-retryable error, or exhausting max_attempts, raises RetryError
  chained from the last error immediately. Nothing is swallowed.
- Cancellation (asyncio.CancelledError) is NOT a failure: it propagates
  at once, including from inside a backoff delay.
"""
from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Generic, TypeVar

from constants import (
    RETRY_BACKOFF_MULTIPLIER,
    RETRY_INITIAL_DELAY_MS,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_DELAY_MS,
)
from observability.logger import log_event
from orchestrator.errors import ErrorKind, StageError

T = TypeVar("T")

Classifier = Callable[[BaseException], bool]
SleepFn = Callable[[float], Awaitable[None]]


# =============================================================================
# Attempt Outcomes
# =============================================================================

class AttemptOutcome(str, Enum):
    """
    Classified result of one attempt.

    SUCCESS:
        Operation returned a value.

    RETRYABLE_FAILURE:
        Operation raised and the classifier allows another attempt
        (subject to max_attempts).

    TERMINAL_FAILURE:
        Operation raised and the classifier forbids retrying.
    """

    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    TERMINAL_FAILURE = "terminal_failure"


@dataclass(frozen=True)
class RetryAttempt:
    """
    Immutable record of one attempt.

    Semantics:
    - index is 1-based (1 = the initial attempt).
    - delay_s is the backoff slept BEFORE this attempt (0.0 for index 1).
    - Records live only for one execute_with_retry() invocation.
    """
    index: int
    delay_s: float
    outcome: AttemptOutcome


# =============================================================================
# Policy
# =============================================================================

@dataclass(frozen=True)
class RetryPolicy:
    """Backoff schedule for one external-calling stage."""

    max_attempts: int = RETRY_MAX_ATTEMPTS
    initial_delay_s: float = RETRY_INITIAL_DELAY_MS / 1000.0
    multiplier: float = RETRY_BACKOFF_MULTIPLIER
    max_delay_s: float = RETRY_MAX_DELAY_MS / 1000.0
    jitter: bool = False
    attempt_timeout_s: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay_s < 0 or self.max_delay_s < 0:
            raise ValueError("delays must be >= 0")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")

    def delay_before(self, attempt: int) -> float:
        """
        Backoff (seconds) slept before attempt N.

        Attempt 1 never waits.
        """
        if attempt <= 1:
            return 0.0
        delay = self.initial_delay_s * (self.multiplier ** (attempt - 2))
        return min(delay, self.max_delay_s)


NO_RETRY = RetryPolicy(max_attempts=1)


# =============================================================================
# Classification
# =============================================================================

def is_http_retryable(status: int) -> bool:
    """Server errors (5xx), rate limiting (429) and request timeout (408)."""
    return status in (408, 429) or 500 <= status <= 599


def is_retryable(exc: BaseException) -> bool:
    """
    Default classifier.

    - StageError: retryable iff kind is TRANSIENT
    - Timeouts and connection errors: retryable
    - HTTP-shaped errors (int `status_code` attribute): is_http_retryable
    - Everything else: terminal
    """
    if isinstance(exc, StageError):
        return exc.kind is ErrorKind.TRANSIENT

    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return True

    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return is_http_retryable(status)

    return False


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class RetryResult(Generic[T]):
    value: T
    attempts: tuple[RetryAttempt, ...] = field(default_factory=tuple)

    @property
    def attempts_used(self) -> int:
        return len(self.attempts)

    @property
    def delays_s(self) -> list[float]:
        return [a.delay_s for a in self.attempts if a.index > 1]


class RetryError(Exception):
    """
    Raised when the operation fails terminally or exhausts its attempts.

    The last underlying error is both `last_error` and `__cause__`.
    """

    def __init__(self, last_error: BaseException, attempts: tuple[RetryAttempt, ...]) -> None:
        super().__init__(
            f"failed after {len(attempts)} attempt(s): "
            f"{type(last_error).__name__}: {last_error}"
        )
        self.last_error = last_error
        self.attempts = attempts

    @property
    def attempts_used(self) -> int:
        return len(self.attempts)

    @property
    def retryable(self) -> bool:
        """True if the final failure was retryable (i.e. attempts ran out)."""
        return bool(self.attempts) and (
            self.attempts[-1].outcome is AttemptOutcome.RETRYABLE_FAILURE
        )


# =============================================================================
# Executor
# =============================================================================

async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    classify: Classifier = is_retryable,
    sleep: SleepFn = asyncio.sleep,
    label: str = "",
    rng: Callable[[], float] = random.random,
) -> RetryResult[T]:
    """
    Run `operation` under `policy`.

    Args:
        operation: zero-arg coroutine factory; called once per attempt.
        policy: backoff schedule and attempt ceiling.
        classify: decides whether an error allows another attempt.
        sleep: delay primitive (injectable for tests); must be cancellable.
        label: free-form tag for RETRY_SCHEDULED log events.
        rng: jitter source in [0, 1).

    Returns:
        RetryResult with the value and the attempt records.

    Raises:
        RetryError: terminal failure or attempts exhausted.
        asyncio.CancelledError: cancelled during an attempt or a delay.
    """
    attempts: list[RetryAttempt] = []
    delay = 0.0

    for attempt in range(1, policy.max_attempts + 1):
        if attempt > 1:
            delay = policy.delay_before(attempt)
            if policy.jitter:
                delay = rng() * delay
            log_event({
                "event_type": "RETRY_SCHEDULED",
                "label": label,
                "attempt": attempt,
                "max_attempts": policy.max_attempts,
                "delay_ms": int(delay * 1000),
            })
            await sleep(delay)

        try:
            if policy.attempt_timeout_s is not None:
                value = await asyncio.wait_for(operation(), policy.attempt_timeout_s)
            else:
                value = await operation()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            retryable = classify(exc)
            attempts.append(RetryAttempt(
                index=attempt,
                delay_s=delay,
                outcome=(
                    AttemptOutcome.RETRYABLE_FAILURE if retryable
                    else AttemptOutcome.TERMINAL_FAILURE
                ),
            ))
            if not retryable or attempt >= policy.max_attempts:
                raise RetryError(exc, tuple(attempts)) from exc
            continue

        attempts.append(RetryAttempt(index=attempt, delay_s=delay, outcome=AttemptOutcome.SUCCESS))
        return RetryResult(value=value, attempts=tuple(attempts))

    # Unreachable: the loop either returns or raises
    raise AssertionError("retry loop exited without result")
