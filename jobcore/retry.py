"""
Retry/backoff decisions for failed job executions.

Pure functions only: nothing here touches storage. The worker feeds the
decision into JobRepository.schedule_retry or JobRepository.fail_job.
"""

import random
from dataclasses import dataclass
from enum import StrEnum
from typing import Callable

from jobcore.config import Settings
from jobcore.constants import (
    DEFAULT_RETRY_BASE_DELAY_SECONDS,
    RETRY_JITTER_RANGE,
    OutcomeKind,
)

MAX_BACKOFF_EXPONENT = 64


class ErrorClass(StrEnum):
    """Failure classes a handler can report."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"

    @classmethod
    def from_outcome(cls, kind: OutcomeKind) -> "ErrorClass":
        if kind == OutcomeKind.PERMANENT_FAILURE:
            return cls.PERMANENT
        if kind == OutcomeKind.RETRYABLE_FAILURE:
            return cls.TRANSIENT
        raise ValueError(f"Outcome {kind} is not a failure")


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Exponential backoff: base_delay * multiplier ** attempts, jittered, then capped.

    With multiplier 2 and jitter in [0.75, 1.25] the jittered delay never
    shrinks from one attempt to the next (1.25 * 2**n < 0.75 * 2**(n+1)).
    The cap is applied last, so it cannot reorder two delays.
    """

    base_delay_seconds: float = DEFAULT_RETRY_BASE_DELAY_SECONDS
    multiplier: float = 2.0
    max_delay_seconds: float = 86400.0
    jitter: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackoffPolicy":
        return cls(
            base_delay_seconds=settings.retry_base_delay_seconds,
            max_delay_seconds=settings.retry_max_delay_seconds,
            jitter=settings.retry_jitter,
        )

    def base_delay_for(self, attempts: int) -> float:
        """Un-jittered, uncapped delay after the given number of attempts."""
        # Bounded exponent keeps the float finite; far past any sane cap.
        exponent = min(max(attempts, 0), MAX_BACKOFF_EXPONENT)
        return self.base_delay_seconds * (self.multiplier ** exponent)

    def delay_for(
        self,
        attempts: int,
        rng: Callable[[], float] = random.random,
    ) -> float:
        """
        Delay before the next attempt.

        Args:
            attempts: Attempts made so far (1 after the first failure).
            rng: Source of uniform [0, 1) values, injectable for tests.

        Returns:
            Delay in seconds.
        """
        delay = self.base_delay_for(attempts)
        if self.jitter:
            low, high = RETRY_JITTER_RANGE
            delay *= low + rng() * (high - low)
        return min(delay, self.max_delay_seconds)


@dataclass(frozen=True)
class RetryDecision:
    """Either retry after delay_seconds or fail for good."""

    should_retry: bool
    delay_seconds: float = 0.0

    @classmethod
    def retry(cls, delay_seconds: float) -> "RetryDecision":
        return cls(should_retry=True, delay_seconds=delay_seconds)

    @classmethod
    def fail(cls) -> "RetryDecision":
        return cls(should_retry=False)


def decide(
    attempts: int,
    max_attempts: int,
    error_class: ErrorClass,
    policy: BackoffPolicy | None = None,
) -> RetryDecision:
    """
    Decide what happens to a job after a failed attempt.

    Permanent failures always fail. Transient failures retry while
    attempts < max_attempts, then fail.

    Args:
        attempts: Attempts made so far, including the one that just failed.
        max_attempts: Ceiling configured on the job.
        error_class: Transient or permanent.
        policy: Backoff policy. Defaults to BackoffPolicy().

    Returns:
        RetryDecision.
    """
    if error_class == ErrorClass.PERMANENT:
        return RetryDecision.fail()
    if attempts >= max_attempts:
        return RetryDecision.fail()
    return RetryDecision.retry((policy or BackoffPolicy()).delay_for(attempts))
