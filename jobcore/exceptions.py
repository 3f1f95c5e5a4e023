"""
Exception types raised by the job core and by job handlers.
"""


class JobCoreError(Exception):
    """Base exception for job core operations."""

    pass


class UnknownJobTypeError(JobCoreError, ValueError):
    """Raised when a job type has no declared queue mapping."""

    def __init__(self, job_type: object):
        self.job_type = job_type
        super().__init__(f"Unknown job type: {job_type!r}")


class HandlerRegistrationError(JobCoreError):
    """Raised when a second handler is registered for the same job type."""

    pass


class RetryableJobError(JobCoreError):
    """
    Raised by a handler for a transient failure (network, rate limit, timeout).

    Any exception other than PermanentJobError is treated as retryable, so
    raising this is only needed to make the intent explicit.
    """

    pass


class PermanentJobError(JobCoreError):
    """
    Raised by a handler when retrying cannot help (bad payload, rejected by
    a business rule). The job fails immediately regardless of attempts left.
    """

    pass
