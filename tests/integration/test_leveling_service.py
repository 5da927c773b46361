"""
Integration tests for LevelingService: XP, tokens, exchange, birthdays and boosts.
"""

import random
from datetime import date, timedelta

import pytest

from tests.conftest import FIXED_NOW, published_event_names
from tinglebot.core.database.service import DatabaseService
from tinglebot.modules.shared.exceptions import (
    InsufficientResourcesError,
    InvalidOperationError,
    NotFoundError,
)


@pytest.mark.integration
class TestMessageXP:
    """Test XP for chat messages."""

    async def test_message_grants_xp_then_cooldown(self, services):
        # Act
        first = await services.leveling.record_message("1", now=FIXED_NOW, rng=random.Random(3))
        cooled = await services.leveling.record_message("1", now=FIXED_NOW + timedelta(seconds=30))
        later = await services.leveling.record_message("1", now=FIXED_NOW + timedelta(seconds=61))

        # Assert
        assert 15 <= first["xp_gained"] <= 25
        assert cooled["xp_gained"] == 0
        assert later["xp_gained"] > 0
        rank = await services.leveling.get_rank("1")
        assert rank["xp"] == first["xp_gained"] + later["xp_gained"]
        assert rank["total_messages"] == 2

    async def test_rank_and_leaderboard(self, services):
        await services.leveling.record_message("1", now=FIXED_NOW)
        await services.leveling.record_message("1", now=FIXED_NOW + timedelta(minutes=2))
        await services.leveling.record_message("2", now=FIXED_NOW)

        leaderboard = await services.leveling.get_leaderboard()

        assert [entry["discord_id"] for entry in leaderboard] == ["1", "2"]
        assert (await services.leveling.get_rank("2"))["rank"] == 2

    async def test_unknown_user_rank(self, services):
        with pytest.raises(NotFoundError):
            await services.leveling.get_rank("404")


@pytest.mark.integration
class TestTokens:
    """Test token credits and debits inside caller transactions."""

    async def test_add_and_spend(self, services):
        async with DatabaseService.get_transaction() as session:
            await services.leveling.add_tokens(session, "1", 600, reason="test")
        async with DatabaseService.get_transaction() as session:
            balance = await services.leveling.spend_tokens(session, "1", 250, reason="test")

        assert balance == 350
        assert await services.leveling.get_balance("1") == 350

    async def test_overspend_rolls_back(self, services):
        async with DatabaseService.get_transaction() as session:
            await services.leveling.add_tokens(session, "1", 100, reason="test")

        with pytest.raises(InsufficientResourcesError):
            async with DatabaseService.get_transaction() as session:
                await services.leveling.spend_tokens(session, "1", 500, reason="test")

        assert await services.leveling.get_balance("1") == 100

    async def test_exchange_levels(self, services, mock_event_bus):
        result = await services.leveling.exchange_levels("1")

        assert result["levels_exchanged"] == 1
        assert result["tokens_received"] == 100
        assert "user.levels_exchanged" in published_event_names(mock_event_bus)
        with pytest.raises(InvalidOperationError):
            await services.leveling.exchange_levels("1")


@pytest.mark.integration
class TestBirthdayAndBoost:
    """Test yearly and monthly rewards."""

    async def test_birthday_reward_on_the_day(self, services):
        # Arrange
        formatted = await services.leveling.set_birthday("1", 4, 21)
        due = await services.leveling.list_birthdays(date(2026, 4, 21))

        # Act
        result = await services.leveling.give_birthday_reward("1", "tokens", now=FIXED_NOW)

        # Assert
        assert formatted == "April 21"
        assert due == ["1"]
        assert result["reward_amount"] == 1500
        assert await services.leveling.get_balance("1") == 1500
        assert await services.leveling.list_birthdays(date(2026, 4, 21)) == []
        with pytest.raises(InvalidOperationError):
            await services.leveling.give_birthday_reward("1", "tokens", now=FIXED_NOW)

    async def test_birthday_reward_on_another_day(self, services):
        await services.leveling.set_birthday("1", 12, 25)

        with pytest.raises(InvalidOperationError):
            await services.leveling.give_birthday_reward("1", "tokens", now=FIXED_NOW)
        assert await services.leveling.get_balance("1") == 0

    async def test_boost_once_per_month(self, services):
        result = await services.leveling.give_boost_reward("1", now=FIXED_NOW)

        assert result["month"] == "2026-04"
        assert result["new_token_balance"] == 1000
        with pytest.raises(InvalidOperationError):
            await services.leveling.give_boost_reward("1", now=FIXED_NOW)
