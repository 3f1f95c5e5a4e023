"""
Admin API response type definitions.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from jobcore.constants import JobStatus
from jobcore.queues import JobQueue


class JobResponse(BaseModel):
    """Full job details response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_type: str
    queue: JobQueue
    priority: int
    payload: dict[str, Any]
    status: JobStatus
    attempts: int
    max_attempts: int
    scheduled_at: datetime
    lease_owner: str | None
    leased_at: datetime | None
    completed_at: datetime | None
    failed_at: datetime | None
    last_error: str | None
    created_at: datetime
    updated_at: datetime


class JobListResponse(BaseModel):
    """Paginated list of jobs."""

    jobs: list[JobResponse]
    total: int
    page: int
    page_size: int
    has_next: bool


class JobStatsResponse(BaseModel):
    """Job counts by status."""

    queue: JobQueue | None = None
    stats: dict[str, int]
    queue_depth: int


class QueueResponse(BaseModel):
    """Policy and live occupancy of one queue family."""

    queue: JobQueue
    description: str
    base_priority: int
    max_concurrency: int | None
    stale_lease_timeout_seconds: int
    pending: int
    processing: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    timestamp: datetime
