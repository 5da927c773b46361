"""
Integration tests for StealService protection windows.
"""

from datetime import timedelta

import pytest

from tests.conftest import FIXED_NOW, published_payloads
from tinglebot.modules.shared.exceptions import (
    CooldownActiveError,
    InvalidOperationError,
    ValidationError,
)


@pytest.fixture
async def thief_and_target(services):
    thief = await services.character.create_character("1", "Link", "Vhintl")
    target = await services.character.create_character("2", "Beedle", "Vhintl")
    return thief, target


@pytest.mark.integration
class TestStealService:
    """Test steal attempts and protection."""

    async def test_success_protects_target(self, services, thief_and_target, mock_event_bus):
        # Arrange
        thief, target = thief_and_target

        # Act
        result = await services.steal.steal(
            thief["id"], target["id"], "common", roll=50, now=FIXED_NOW
        )

        # Assert
        assert result["success"] is True
        assert result["failure_threshold"] == 10
        assert result["protected_until"] == FIXED_NOW + timedelta(minutes=30)
        assert await services.steal.get_time_left(target["id"], FIXED_NOW) == 1800
        assert published_payloads(mock_event_bus, "steal.attempted") == [
            {"thief_id": thief["id"], "target_id": target["id"], "rarity": "common", "success": True}
        ]

    async def test_failed_attempt_still_protects(self, services, thief_and_target):
        thief, target = thief_and_target

        result = await services.steal.steal(
            thief["id"], target["id"], "uncommon", roll=50, now=FIXED_NOW
        )

        assert result["success"] is False
        assert await services.steal.is_protected(target["id"], FIXED_NOW)

    async def test_protected_target_rejected(self, services, thief_and_target):
        # Arrange
        thief, target = thief_and_target
        await services.steal.steal(thief["id"], target["id"], roll=50, now=FIXED_NOW)

        # Act
        with pytest.raises(CooldownActiveError) as excinfo:
            await services.steal.steal(
                thief["id"], target["id"], roll=50, now=FIXED_NOW + timedelta(minutes=10)
            )

        # Assert
        assert excinfo.value.remaining_seconds == 1200

    async def test_protection_expires(self, services, thief_and_target):
        thief, target = thief_and_target
        await services.steal.steal(thief["id"], target["id"], roll=50, now=FIXED_NOW)

        later = FIXED_NOW + timedelta(minutes=31)
        result = await services.steal.steal(thief["id"], target["id"], roll=50, now=later)

        assert result["success"] is True

    async def test_cleanup_clears_expired_windows(self, services, thief_and_target):
        # Arrange
        thief, target = thief_and_target
        await services.steal.set_protection(target["id"], now=FIXED_NOW)
        await services.steal.set_protection(thief["id"], seconds=7200, now=FIXED_NOW)

        # Act
        cleared = await services.steal.cleanup_expired(FIXED_NOW + timedelta(minutes=31))

        # Assert
        assert cleared == 1
        target_row = await services.character.get_character(target["id"])
        assert target_row["steal_protection_expires_at"] is None
        assert await services.steal.is_protected(thief["id"], FIXED_NOW + timedelta(minutes=31))

    async def test_clear_protection(self, services, thief_and_target):
        _, target = thief_and_target
        await services.steal.set_protection(target["id"], now=FIXED_NOW)

        await services.steal.clear_protection(target["id"])

        assert await services.steal.get_time_left(target["id"], FIXED_NOW) == 0

    async def test_invalid_attempts(self, services, thief_and_target):
        thief, target = thief_and_target
        riju = await services.character.create_character("3", "Riju", "Rudania")

        with pytest.raises(InvalidOperationError):
            await services.steal.steal(thief["id"], thief["id"], roll=50)
        with pytest.raises(InvalidOperationError):
            await services.steal.steal(thief["id"], riju["id"], roll=50)
        with pytest.raises(ValidationError):
            await services.steal.steal(thief["id"], target["id"], "legendary", roll=50)
