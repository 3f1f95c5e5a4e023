"""
Queue families and the job type classifier.

Every job type maps to exactly one queue family. The family decides the
base priority a job is stored with, how many of its jobs may hold a lease
at the same time across all workers, and how long a lease may go without a
completion signal before another worker is allowed to reclaim it.

The mapping is static. ``queue`` and ``priority`` are written onto the job
row at enqueue time, so changing a mapping only affects jobs enqueued
afterwards.
"""

from dataclasses import dataclass
from enum import StrEnum
from functools import lru_cache
from types import MappingProxyType
from typing import Mapping

from jobcore.config import Settings, get_settings
from jobcore.exceptions import UnknownJobTypeError


class JobQueue(StrEnum):
    """Queue families. Each one gets its own poller loop in a worker."""

    DEFAULT = "default"
    HIGH = "high"
    LOW = "low"
    BULK = "bulk"
    SCREENSHOT = "screenshot"


# Base priority per family (higher = processed first)
QUEUE_BASE_PRIORITIES: dict[JobQueue, int] = {
    JobQueue.HIGH: 10,
    JobQueue.DEFAULT: 5,
    JobQueue.SCREENSHOT: 4,
    JobQueue.LOW: 3,
    JobQueue.BULK: 2,
}

QUEUE_DESCRIPTIONS: dict[JobQueue, str] = {
    JobQueue.DEFAULT: "Standard priority for periodic maintenance tasks",
    JobQueue.HIGH: "Time-sensitive operations (stock quotes, message relay, email)",
    JobQueue.LOW: "Background cleanup and non-urgent aggregations",
    JobQueue.BULK: "Resource-intensive batch work with cost controls",
    JobQueue.SCREENSHOT: "Headless-browser captures with limited concurrency",
}


class JobType(StrEnum):
    """Handler contracts known to the queue."""

    # Default queue
    RSS_FEED_REFRESH = "rss_feed_refresh"
    WEATHER_REFRESH = "weather_refresh"
    LISTING_EXPIRATION = "listing_expiration"
    LISTING_REMINDER = "listing_reminder"
    PROMOTION_EXPIRATION = "promotion_expiration"
    RANK_RECALCULATION = "rank_recalculation"
    INBOUND_EMAIL = "inbound_email"
    ACCOUNT_MERGE_CLEANUP = "account_merge_cleanup"
    GDPR_EXPORT = "gdpr_export"
    OAUTH_TOKEN_REFRESH = "oauth_token_refresh"
    PROFILE_METADATA_REFRESH = "profile_metadata_refresh"

    # High queue
    STOCK_REFRESH = "stock_refresh"
    MESSAGE_RELAY = "message_relay"
    SEND_EMAIL = "send_email"
    GDPR_DELETION = "gdpr_deletion"

    # Low queue
    SOCIAL_REFRESH = "social_refresh"
    LINK_HEALTH_CHECK = "link_health_check"
    SITEMAP_GENERATION = "sitemap_generation"
    CLICK_ROLLUP = "click_rollup"

    # Bulk queue
    AI_TAGGING = "ai_tagging"
    AI_CATEGORIZATION = "ai_categorization"
    FRAUD_DETECTION = "fraud_detection"
    DIRECTORY_BULK_IMPORT = "directory_bulk_import"
    LISTING_IMAGE_PROCESSING = "listing_image_processing"
    LISTING_IMAGE_CLEANUP = "listing_image_cleanup"

    # Screenshot queue
    SCREENSHOT_CAPTURE = "screenshot_capture"


JOB_TYPE_QUEUES: dict[JobType, JobQueue] = {
    JobType.RSS_FEED_REFRESH: JobQueue.DEFAULT,
    JobType.WEATHER_REFRESH: JobQueue.DEFAULT,
    JobType.LISTING_EXPIRATION: JobQueue.DEFAULT,
    JobType.LISTING_REMINDER: JobQueue.DEFAULT,
    JobType.PROMOTION_EXPIRATION: JobQueue.DEFAULT,
    JobType.RANK_RECALCULATION: JobQueue.DEFAULT,
    JobType.INBOUND_EMAIL: JobQueue.DEFAULT,
    JobType.ACCOUNT_MERGE_CLEANUP: JobQueue.DEFAULT,
    JobType.GDPR_EXPORT: JobQueue.DEFAULT,
    JobType.OAUTH_TOKEN_REFRESH: JobQueue.DEFAULT,
    JobType.PROFILE_METADATA_REFRESH: JobQueue.DEFAULT,
    JobType.STOCK_REFRESH: JobQueue.HIGH,
    JobType.MESSAGE_RELAY: JobQueue.HIGH,
    JobType.SEND_EMAIL: JobQueue.HIGH,
    JobType.GDPR_DELETION: JobQueue.HIGH,
    JobType.SOCIAL_REFRESH: JobQueue.LOW,
    JobType.LINK_HEALTH_CHECK: JobQueue.LOW,
    JobType.SITEMAP_GENERATION: JobQueue.LOW,
    JobType.CLICK_ROLLUP: JobQueue.LOW,
    JobType.AI_TAGGING: JobQueue.BULK,
    JobType.AI_CATEGORIZATION: JobQueue.BULK,
    JobType.FRAUD_DETECTION: JobQueue.BULK,
    JobType.DIRECTORY_BULK_IMPORT: JobQueue.BULK,
    JobType.LISTING_IMAGE_PROCESSING: JobQueue.BULK,
    JobType.LISTING_IMAGE_CLEANUP: JobQueue.BULK,
    JobType.SCREENSHOT_CAPTURE: JobQueue.SCREENSHOT,
}

_unmapped = set(JobType) - set(JOB_TYPE_QUEUES)
if _unmapped:
    raise RuntimeError(f"Job types without a queue family: {sorted(_unmapped)}")


@dataclass(frozen=True)
class QueueFamily:
    """
    Policy for one queue family.

    Attributes:
        queue: The family name.
        base_priority: Priority stored on new jobs unless the producer overrides it.
        max_concurrency: Cap on simultaneously processing jobs system-wide,
            or None for no cap.
        stale_lease_timeout: Seconds after which an unfinished lease may be reclaimed.
        description: Human-readable purpose.
    """

    queue: JobQueue
    base_priority: int
    max_concurrency: int | None
    stale_lease_timeout: int
    description: str = ""

    @property
    def is_capped(self) -> bool:
        return self.max_concurrency is not None


def to_job_type(job_type: JobType | str) -> JobType:
    """Coerce a job type value, raising UnknownJobTypeError for unknown names."""
    if isinstance(job_type, JobType):
        return job_type
    try:
        return JobType(job_type)
    except ValueError:
        raise UnknownJobTypeError(job_type) from None


def classify(job_type: JobType | str) -> tuple[JobQueue, int]:
    """
    Resolve a job type to its queue family and base priority.

    Args:
        job_type: A JobType or its string value.

    Returns:
        Tuple of (queue, base_priority).

    Raises:
        UnknownJobTypeError: If the job type is not declared.
    """
    queue = JOB_TYPE_QUEUES[to_job_type(job_type)]
    return queue, QUEUE_BASE_PRIORITIES[queue]


def _parse_queue_keys(values: Mapping[str, int], setting: str) -> dict[JobQueue, int]:
    parsed: dict[JobQueue, int] = {}
    for name, value in values.items():
        try:
            queue = JobQueue(name.lower())
        except ValueError:
            raise ValueError(f"Unknown queue {name!r} in {setting}") from None
        if value < 0:
            raise ValueError(f"{setting}[{name!r}] must not be negative")
        parsed[queue] = value
    return parsed


def build_queue_table(settings: Settings) -> Mapping[JobQueue, QueueFamily]:
    """
    Build the read-only queue policy table from settings.

    A concurrency limit of 0 means uncapped.
    """
    caps = _parse_queue_keys(settings.queue_concurrency_limits, "queue_concurrency_limits")
    timeouts = _parse_queue_keys(settings.queue_stale_lease_timeouts, "queue_stale_lease_timeouts")

    table = {
        queue: QueueFamily(
            queue=queue,
            base_priority=QUEUE_BASE_PRIORITIES[queue],
            max_concurrency=caps.get(queue) or None,
            stale_lease_timeout=timeouts.get(queue, settings.stale_lease_timeout_seconds),
            description=QUEUE_DESCRIPTIONS[queue],
        )
        for queue in JobQueue
    }
    return MappingProxyType(table)


@lru_cache
def get_queue_table() -> Mapping[JobQueue, QueueFamily]:
    """Get the process-wide queue table, built once from settings."""
    return build_queue_table(get_settings())


def get_queue_family(queue: JobQueue | str) -> QueueFamily:
    """Look up the policy for a queue family."""
    return get_queue_table()[JobQueue(queue)]
