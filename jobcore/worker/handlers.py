"""
Job handler registry and dispatch.

Job handlers must be idempotent - a job whose lease goes stale is run again
by another worker, so the same payload may be processed more than once.

A handler is a coroutine taking the job payload and returning an Outcome,
or None for success:

    @register_handler(JobType.RSS_FEED_REFRESH)
    async def refresh_feed(payload: dict) -> Outcome | None:
        ...
"""

import logging
import time
from typing import Any, Awaitable, Callable

from jobcore.exceptions import HandlerRegistrationError, PermanentJobError
from jobcore.queues import JobType, to_job_type
from jobcore.types.job import Outcome

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[dict[str, Any]], Awaitable[Outcome | None]]

# Handler registry
_handlers: dict[JobType, JobHandler] = {}


def register(job_type: JobType | str, handler: JobHandler) -> JobHandler:
    """
    Register a handler for a job type.

    Args:
        job_type: The job type this handler processes.
        handler: The handler coroutine function.

    Returns:
        The handler, unchanged.

    Raises:
        UnknownJobTypeError: If the job type is not declared.
        HandlerRegistrationError: If the type already has a handler.
    """
    job_type = to_job_type(job_type)
    if job_type in _handlers:
        raise HandlerRegistrationError(
            f"A handler is already registered for job type {job_type.value!r}"
        )
    _handlers[job_type] = handler
    logger.info(f"Registered handler for job type: {job_type.value}")
    return handler


def register_handler(job_type: JobType | str) -> Callable[[JobHandler], JobHandler]:
    """
    Decorator to register a job handler.

    Args:
        job_type: The job type this handler processes.

    Returns:
        Decorator function.

    Example:
        @register_handler("send_email")
        async def handle_send_email(payload: dict) -> Outcome | None:
            ...
    """
    def decorator(handler: JobHandler) -> JobHandler:
        return register(job_type, handler)
    return decorator


def get_handler(job_type: JobType | str) -> JobHandler | None:
    """
    Get the handler for a job type.

    Args:
        job_type: The job type.

    Returns:
        The handler function or None if none is registered.
    """
    try:
        return _handlers.get(to_job_type(job_type))
    except ValueError:
        return None


def list_handlers() -> list[str]:
    """List all job types that have a handler."""
    return [job_type.value for job_type in _handlers]


def unregister(job_type: JobType | str) -> None:
    """Remove a handler registration, if any."""
    _handlers.pop(to_job_type(job_type), None)


def clear_handlers() -> None:
    """Remove every handler registration."""
    _handlers.clear()


async def execute_job(job_type: JobType | str, payload: dict[str, Any]) -> Outcome:
    """
    Execute a job using the appropriate handler.

    Never raises for handler behaviour: a PermanentJobError becomes a
    permanent failure, any other exception a retryable failure. A job type
    with no handler in this process is a retryable failure so the attempt
    ceiling still bounds it.

    Args:
        job_type: The job type.
        payload: The stored payload, passed through untouched.

    Returns:
        Outcome with duration_ms filled in.
    """
    handler = get_handler(job_type)
    if handler is None:
        logger.error(f"No handler registered for job type: {job_type}")
        return Outcome.retryable(f"No handler registered for job type: {job_type}")

    start = time.monotonic()
    try:
        outcome = await handler(payload)
        if outcome is None:
            outcome = Outcome.success()
    except PermanentJobError as e:
        outcome = Outcome.permanent(str(e) or type(e).__name__)
    except Exception as e:
        logger.exception(
            "Job handler raised",
            extra={"job_type": str(job_type)},
        )
        outcome = Outcome.retryable(f"{type(e).__name__}: {e}")

    outcome.duration_ms = (time.monotonic() - start) * 1000
    return outcome
