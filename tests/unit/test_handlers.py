"""
Unit tests for the handler registry and dispatch.
"""

import asyncio

import pytest

from jobcore.constants import OutcomeKind
from jobcore.exceptions import (
    HandlerRegistrationError,
    PermanentJobError,
    RetryableJobError,
    UnknownJobTypeError,
)
from jobcore.queues import JobType
from jobcore.types.job import Outcome
from jobcore.worker.handlers import (
    execute_job,
    get_handler,
    list_handlers,
    register,
    register_handler,
    unregister,
)

pytestmark = pytest.mark.usefixtures("clean_handlers")


class TestHandlerRegistry:
    """Tests for handler registration."""

    def test_register_handler_decorator(self):
        """The decorator registers and returns the function unchanged."""

        @register_handler(JobType.SEND_EMAIL)
        async def send_email(payload: dict) -> None:
            return None

        assert get_handler(JobType.SEND_EMAIL) is send_email
        assert get_handler("send_email") is send_email
        assert list_handlers() == ["send_email"]

    def test_duplicate_registration_rejected(self):
        """A second handler for the same type raises."""

        async def first(payload: dict) -> None:
            return None

        async def second(payload: dict) -> None:
            return None

        register("rss_feed_refresh", first)

        with pytest.raises(HandlerRegistrationError):
            register(JobType.RSS_FEED_REFRESH, second)
        assert get_handler(JobType.RSS_FEED_REFRESH) is first

    def test_unknown_job_type_rejected(self):
        """Handlers can only be registered for declared job types."""

        async def handler(payload: dict) -> None:
            return None

        with pytest.raises(UnknownJobTypeError):
            register("not_a_job", handler)

    def test_get_handler_not_registered(self):
        """Missing or unknown types have no handler."""
        assert get_handler(JobType.CLICK_ROLLUP) is None
        assert get_handler("nonexistent") is None

    def test_unregister(self):
        async def handler(payload: dict) -> None:
            return None

        register(JobType.CLICK_ROLLUP, handler)
        unregister(JobType.CLICK_ROLLUP)

        assert get_handler(JobType.CLICK_ROLLUP) is None


class TestExecuteJob:
    """Tests for converting handler behaviour into outcomes."""

    async def test_none_means_success(self):
        seen = {}

        @register_handler(JobType.WEATHER_REFRESH)
        async def refresh(payload: dict) -> None:
            seen.update(payload)

        outcome = await execute_job("weather_refresh", {"city": "Oslo"})

        assert outcome.kind == OutcomeKind.SUCCESS
        assert outcome.duration_ms is not None
        assert seen == {"city": "Oslo"}

    async def test_returned_outcome_is_kept(self):
        @register_handler(JobType.STOCK_REFRESH)
        async def refresh(payload: dict) -> Outcome:
            return Outcome.retryable("rate limited")

        outcome = await execute_job(JobType.STOCK_REFRESH, {})

        assert outcome.kind == OutcomeKind.RETRYABLE_FAILURE
        assert outcome.reason == "rate limited"

    async def test_permanent_error_becomes_permanent_failure(self):
        @register_handler(JobType.GDPR_EXPORT)
        async def export(payload: dict) -> None:
            raise PermanentJobError("user no longer exists")

        outcome = await execute_job(JobType.GDPR_EXPORT, {})

        assert outcome.is_permanent
        assert outcome.reason == "user no longer exists"

    @pytest.mark.parametrize(
        "error",
        [RetryableJobError("flaky"), ConnectionError("reset"), KeyError("missing")],
    )
    async def test_other_exceptions_become_retryable(self, error):
        @register_handler(JobType.MESSAGE_RELAY)
        async def relay(payload: dict) -> None:
            raise error

        outcome = await execute_job(JobType.MESSAGE_RELAY, {})

        assert outcome.kind == OutcomeKind.RETRYABLE_FAILURE
        assert type(error).__name__ in outcome.reason

    async def test_missing_handler_is_retryable(self):
        outcome = await execute_job(JobType.SITEMAP_GENERATION, {})

        assert outcome.kind == OutcomeKind.RETRYABLE_FAILURE
        assert "No handler registered" in outcome.reason

    async def test_duration_is_measured(self):
        @register_handler(JobType.LINK_HEALTH_CHECK)
        async def check(payload: dict) -> None:
            await asyncio.sleep(0.02)

        outcome = await execute_job(JobType.LINK_HEALTH_CHECK, {})

        assert outcome.duration_ms >= 15


class TestOutcome:
    """Tests for the Outcome model."""

    def test_constructors(self):
        assert Outcome.success().succeeded
        assert not Outcome.retryable("x").succeeded
        assert not Outcome.retryable("x").is_permanent
        assert Outcome.permanent("x").is_permanent
