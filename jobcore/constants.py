"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> PROCESSING (lease claimed)
    - PROCESSING -> COMPLETED (handler succeeded)
    - PROCESSING -> PENDING (retryable failure, attempts < max_attempts)
    - PROCESSING -> FAILED (permanent failure or attempts exhausted)

    A PROCESSING row whose lease is older than the queue's stale-lease
    timeout is claimable again as if it were PENDING.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"



class OutcomeKind(StrEnum):
    """What a handler reported for one execution."""

    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    PERMANENT_FAILURE = "permanent_failure"


# Default values
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_STALE_LEASE_SECONDS = 300
DEFAULT_RETRY_BASE_DELAY_SECONDS = 30.0
RETRY_JITTER_RANGE = (0.75, 1.25)

EXHAUSTED_LEASE_ERROR = "Lease expired on final attempt"

# API constants
API_V1_PREFIX = "/v1"

# Metrics names
METRIC_QUEUE_DEPTH = "job_queue_depth"
METRIC_PROCESSING_JOBS = "job_processing_jobs"
METRIC_JOBS_ENQUEUED = "jobs_enqueued_total"
METRIC_JOBS_FINISHED = "jobs_finished_total"
METRIC_JOB_RETRIES = "job_retries_total"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_LEASE_ACQUIRED = "lease_acquired_total"
METRIC_LEASE_RACE_LOST = "lease_race_lost_total"
METRIC_LEASE_RECLAIMED = "lease_reclaimed_total"
METRIC_LEASE_LOST = "lease_lost_total"
METRIC_POLL_ERRORS = "poll_errors_total"
METRIC_API_REQUESTS = "api_requests_total"
METRIC_API_LATENCY = "api_request_latency_seconds"

# Trace span names
SPAN_ENQUEUE_JOB = "job.enqueue"
SPAN_CLAIM_JOB = "job.claim"
SPAN_EXECUTE_JOB = "job.execute"
