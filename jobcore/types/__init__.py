"""
Type definitions for the job core.
Contains the admin API models and the worker-side job types.
"""

from jobcore.types.api import (
    HealthResponse,
    JobListResponse,
    JobResponse,
    JobStatsResponse,
    QueueResponse,
)
from jobcore.types.job import LeasedJob, Outcome

__all__ = [
    # API types
    "JobResponse",
    "JobListResponse",
    "JobStatsResponse",
    "QueueResponse",
    "HealthResponse",
    # Job types
    "LeasedJob",
    "Outcome",
]
