"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from jobcore.constants import OutcomeKind


class Outcome(BaseModel):
    """
    Result of one handler execution.

    Handlers return one of Outcome.success(), Outcome.retryable(reason) or
    Outcome.permanent(reason); the dispatcher fills in duration_ms.
    """

    kind: OutcomeKind
    reason: str | None = None
    duration_ms: float | None = None

    @classmethod
    def success(cls) -> "Outcome":
        return cls(kind=OutcomeKind.SUCCESS)

    @classmethod
    def retryable(cls, reason: str) -> "Outcome":
        return cls(kind=OutcomeKind.RETRYABLE_FAILURE, reason=reason)

    @classmethod
    def permanent(cls, reason: str) -> "Outcome":
        return cls(kind=OutcomeKind.PERMANENT_FAILURE, reason=reason)

    @property
    def succeeded(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS

    @property
    def is_permanent(self) -> bool:
        return self.kind == OutcomeKind.PERMANENT_FAILURE


@dataclass(frozen=True)
class LeasedJob:
    """
    Snapshot of a job at the moment a worker claimed it.

    The (lease_owner, attempt) pair identifies the lease generation: every
    write-back is conditioned on it, so a worker whose lease went stale and
    was reclaimed cannot overwrite the new owner's state.
    """

    job_id: UUID
    job_type: str
    queue: str
    payload: dict[str, Any]
    attempt: int
    max_attempts: int
    lease_owner: str
    leased_at: datetime
    reclaimed: bool = False

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last retry attempt."""
        return self.attempt >= self.max_attempts

    @property
    def remaining_attempts(self) -> int:
        """Get remaining retry attempts."""
        return max(0, self.max_attempts - self.attempt)
