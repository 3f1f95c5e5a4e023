"""
SQLAlchemy database models.
Defines the delayed_jobs table.
"""

from datetime import datetime, timezone
from uuid import UUID as PyUUID
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jobcore.constants import DEFAULT_MAX_ATTEMPTS, JobStatus
from jobcore.queues import JobQueue


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing a unit of work in the queue.

    This is the authoritative source of truth for job state. Workers
    coordinate only through conditional updates against this table.

    Key constraints:
    - queue and priority are written once at enqueue time
    - status = processing implies lease_owner and leased_at are set
    - status = pending implies both lease fields are null
    - payload is stored as json (not jsonb) so key order survives
    """

    __tablename__ = "delayed_jobs"

    id: Mapped[PyUUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
        nullable=False,
    )

    job_type: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )
    queue: Mapped[JobQueue] = mapped_column(
        Enum(JobQueue, name="job_queue", create_constraint=True, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    payload: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="job_status", create_constraint=True, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=JobStatus.PENDING,
        index=True,
    )

    # Retry tracking
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_ATTEMPTS,
    )

    # Scheduling
    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # Lease management
    lease_owner: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    leased_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Terminal bookkeeping
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    failed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        # Index for queue polling
        Index(
            "ix_delayed_jobs_ready",
            "queue",
            "priority",
            "scheduled_at",
            postgresql_where=(Column("status") == JobStatus.PENDING.value),
        ),
        # Index for stale lease checks and concurrency counts
        Index(
            "ix_delayed_jobs_processing",
            "queue",
            "leased_at",
            postgresql_where=(Column("status") == JobStatus.PROCESSING.value),
        ),
        Index("ix_delayed_jobs_failed_at", "failed_at"),
    )

    @property
    def is_retryable(self) -> bool:
        """Check if the job has attempts left."""
        return self.attempts < self.max_attempts

    def is_lease_stale(self, stale_lease_timeout: int, now: datetime | None = None) -> bool:
        """Check if the job's lease is at least stale_lease_timeout seconds old."""
        if self.leased_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return (now - self.leased_at).total_seconds() >= stale_lease_timeout

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, type={self.job_type}, queue={self.queue}, "
            f"status={self.status}, attempts={self.attempts}/{self.max_attempts})"
        )
