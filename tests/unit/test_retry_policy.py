"""
Unit tests for DatabaseRetryPolicy and BaseService's version-retry helper.

Tests cover:
- Retries on stale data and operational errors
- Immediate propagation of domain errors
- Exhaustion after the configured attempts
- Conversion of exhausted version conflicts to ConcurrencyConflictError
- BaseService config and event helpers
"""

import logging

import pytest
from sqlalchemy.orm.exc import StaleDataError

from tinglebot.core.database.retry_policy import DatabaseRetryConfig, DatabaseRetryPolicy
from tinglebot.core.exceptions import ConfigurationError
from tinglebot.domain.models.base import AggregateRoot
from tinglebot.modules.shared.base_service import BaseService
from tinglebot.modules.shared.exceptions import (
    ConcurrencyConflictError,
    InvalidOperationError,
    ValidationError,
)

NO_BACKOFF = DatabaseRetryConfig(max_attempts=3, initial_backoff_ms=0, max_backoff_ms=0, jitter_ms=0)


def flaky(failures: int, error: Exception, result="ok"):
    """Async operation failing `failures` times before returning `result`."""
    calls = {"count": 0}

    async def operation():
        calls["count"] += 1
        if calls["count"] <= failures:
            raise error
        return result

    return operation, calls


# ============================================================================
# DatabaseRetryPolicy
# ============================================================================


@pytest.mark.unit
class TestDatabaseRetryPolicy:
    """Test retry semantics."""

    async def test_success_after_stale_data(self):
        # Arrange
        policy = DatabaseRetryPolicy(NO_BACKOFF)
        operation, calls = flaky(2, StaleDataError("version mismatch"))

        # Act
        result = await policy.execute(operation, operation_name="test.stale")

        # Assert
        assert result == "ok"
        assert calls["count"] == 3

    async def test_exhaustion_raises_last_error(self):
        policy = DatabaseRetryPolicy(NO_BACKOFF)
        operation, calls = flaky(5, StaleDataError("version mismatch"))

        with pytest.raises(StaleDataError):
            await policy.execute(operation, operation_name="test.exhausted")
        assert calls["count"] == 3

    async def test_domain_errors_are_not_retried(self):
        policy = DatabaseRetryPolicy(NO_BACKOFF)
        operation, calls = flaky(5, InvalidOperationError("join_raid", "nope"))

        with pytest.raises(InvalidOperationError):
            await policy.execute(operation, operation_name="test.domain")
        assert calls["count"] == 1

    def test_backoff_is_exponential_and_capped(self):
        policy = DatabaseRetryPolicy(
            DatabaseRetryConfig(max_attempts=5, initial_backoff_ms=50, max_backoff_ms=150, jitter_ms=0)
        )

        assert policy._compute_backoff_ms(1) == 50
        assert policy._compute_backoff_ms(2) == 100
        assert policy._compute_backoff_ms(3) == 150
        assert policy._compute_backoff_ms(4) == 150

    def test_from_config_overrides_attempts(self):
        assert DatabaseRetryPolicy.from_config(max_attempts=7).max_attempts == 7


# ============================================================================
# BaseService
# ============================================================================


class Counter(AggregateRoot):
    pass


@pytest.fixture
def base_service(mock_config_manager, mock_event_bus):
    return BaseService(mock_config_manager, mock_event_bus, logging.getLogger("tests.base_service"))


@pytest.mark.unit
class TestBaseService:
    """Test shared service helpers."""

    async def test_version_retry_gives_up_with_conflict(self, base_service):
        # Arrange
        operation, calls = flaky(10, StaleDataError("version mismatch"))

        # Act
        with pytest.raises(ConcurrencyConflictError) as excinfo:
            await base_service.run_with_version_retry(
                operation, operation_name="raid.turn", resource_type="Raid", identifier="R1"
            )

        # Assert
        assert excinfo.value.attempts == 3
        assert excinfo.value.identifier == "R1"
        assert calls["count"] == 3

    async def test_version_retry_recovers(self, base_service):
        operation, calls = flaky(1, StaleDataError("version mismatch"), result=42)

        result = await base_service.run_with_version_retry(
            operation, operation_name="raid.turn", resource_type="Raid", identifier="R1"
        )

        assert result == 42
        assert calls["count"] == 2

    async def test_version_retry_honours_max_attempts(self, base_service):
        operation, calls = flaky(10, StaleDataError("version mismatch"))

        with pytest.raises(ConcurrencyConflictError):
            await base_service.run_with_version_retry(
                operation,
                operation_name="raid.turn",
                resource_type="Raid",
                identifier="R1",
                max_attempts=5,
            )
        assert calls["count"] == 5

    def test_required_config_missing(self, base_service):
        with pytest.raises(ConfigurationError):
            base_service.get_config("raid.missing", required=True)

        assert base_service.get_config("raid.missing", 10) == 10

    async def test_emit_event_merges_context(self, base_service, mock_event_bus):
        await base_service.emit_event("raid.started", {"raid_id": "R1"}, {"guild_id": 5})

        mock_event_bus.publish.assert_awaited_once_with(
            "raid.started", {"raid_id": "R1", "guild_id": 5}
        )

    async def test_publish_domain_events_clears_aggregate(self, base_service, mock_event_bus):
        # Arrange
        aggregate = Counter("c1")
        aggregate.add_domain_event("counter.bumped", {"value": 1})
        aggregate.add_domain_event("counter.bumped", {"value": 2})

        # Act
        published = await base_service.publish_domain_events(aggregate)

        # Assert
        assert published == 2
        assert aggregate.get_pending_events() == []
        assert mock_event_bus.publish.await_count == 2

    def test_validators(self, base_service):
        with pytest.raises(ValidationError):
            base_service.validate_positive_int(0, "hearts")
        with pytest.raises(ValidationError):
            base_service.validate_range(11, "tier", 1, 10)
        with pytest.raises(ValidationError):
            base_service.validate_non_empty("   ", "name")
        assert base_service.validate_non_empty("  Link ", "name") == "Link"


@pytest.mark.unit
async def test_mock_operation_is_awaited_once_on_success(mocker):
    policy = DatabaseRetryPolicy(NO_BACKOFF)
    operation = mocker.AsyncMock(return_value="done")

    assert await policy.execute(operation, operation_name="test.once") == "done"
    operation.assert_awaited_once()
