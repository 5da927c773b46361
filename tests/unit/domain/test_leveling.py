"""
Unit tests for user leveling, level exchange, birthday and boost rewards.
"""

import random
from datetime import date, datetime, timedelta, timezone

import pytest

from tests.conftest import assert_domain_event_emitted
from tinglebot.domain.models.base import DomainValidationError
from tinglebot.domain.models.leveling import (
    UserProfile,
    format_birthday,
    is_valid_birthday,
    level_for_xp,
    xp_for_level,
)
from tinglebot.modules.shared.exceptions import InvalidOperationError

NOW = datetime(2026, 4, 21, 15, 30, tzinfo=timezone.utc)


@pytest.mark.domain
class TestXPCurve:
    """Test the XP curve helpers."""

    def test_xp_for_level(self):
        assert xp_for_level(1) == 0
        assert xp_for_level(2) == 220
        assert xp_for_level(10) == 1100

    @pytest.mark.parametrize("xp, level", [(0, 1), (219, 1), (220, 2), (1099, 9), (1100, 10)])
    def test_level_for_xp(self, xp, level):
        assert level_for_xp(xp) == level

    def test_birthday_validation(self):
        assert is_valid_birthday(2, 29)
        assert not is_valid_birthday(2, 30)
        assert not is_valid_birthday(13, 1)
        assert format_birthday(4, 21) == "April 21"


@pytest.mark.domain
class TestUserXP:
    """Test XP gain and the message cooldown."""

    def test_message_cooldown(self):
        profile = UserProfile("1")
        profile.record_message(NOW)

        assert not profile.can_gain_xp(NOW + timedelta(seconds=59))
        assert profile.can_gain_xp(NOW + timedelta(seconds=60))

    def test_add_xp_levels_up(self):
        # Arrange
        profile = UserProfile("1", xp=210)

        # Act
        result = profile.add_xp(20, now=NOW)

        # Assert
        assert result == {"leveled_up": True, "old_level": 1, "new_level": 2}
        assert_domain_event_emitted(profile, "user.leveled_up")

    def test_negative_xp_rejected(self):
        with pytest.raises(DomainValidationError):
            UserProfile("1").add_xp(-5)

    def test_progress_to_next_level(self):
        profile = UserProfile("1", xp=250, level=2)

        progress = profile.progress_to_next_level()

        assert progress == {"current": 30, "needed": 75, "percentage": 40}


@pytest.mark.domain
class TestLevelExchange:
    """Test trading levels for tokens."""

    def test_exchange_gained_levels(self):
        # Arrange
        profile = UserProfile("1", level=5, last_exchanged_level=2, tokens=50)

        # Act
        result = profile.exchange_levels(NOW)

        # Assert
        assert result == {"levels_exchanged": 3, "tokens_received": 300, "new_token_balance": 350}
        assert profile.exchangeable_levels == 0

    def test_nothing_to_exchange(self):
        profile = UserProfile("1", level=3, last_exchanged_level=3)

        with pytest.raises(InvalidOperationError):
            profile.exchange_levels(NOW)


@pytest.mark.domain
class TestBirthdayRewards:
    """Test yearly birthday rewards."""

    def test_leap_day_birthday_on_non_leap_year(self):
        profile = UserProfile("1")
        profile.set_birthday(2, 29)

        assert profile.is_birthday(date(2027, 2, 28))
        assert not profile.is_birthday(date(2028, 2, 28))
        assert profile.is_birthday(date(2028, 2, 29))

    def test_invalid_birthday_rejected(self):
        with pytest.raises(DomainValidationError):
            UserProfile("1").set_birthday(4, 31)

    def test_token_reward_once_per_year(self):
        # Arrange
        profile = UserProfile("1", tokens=10)
        profile.set_birthday(4, 21)

        # Act
        result = profile.give_birthday_reward(NOW, "tokens")

        # Assert
        assert result["reward_amount"] == 1500
        assert result["new_token_balance"] == 1510
        with pytest.raises(InvalidOperationError):
            profile.give_birthday_reward(NOW, "tokens")

    def test_discount_reward_lasts_until_end_of_day(self):
        profile = UserProfile("1")
        profile.set_birthday(4, 21)

        result = profile.give_birthday_reward(NOW, "discount")

        assert result["reward_type"] == "discount"
        assert profile.has_birthday_discount(NOW.replace(hour=23, minute=59))
        assert not profile.has_birthday_discount(NOW + timedelta(days=1))

    def test_random_reward_uses_rng(self):
        class Always(random.Random):
            def random(self):
                return 0.1

        profile = UserProfile("1")
        profile.set_birthday(4, 21)

        assert profile.give_birthday_reward(NOW, "random", Always())["reward_type"] == "tokens"

    def test_reward_without_birthday(self):
        with pytest.raises(InvalidOperationError):
            UserProfile("1").give_birthday_reward(NOW)


@pytest.mark.domain
class TestBoostRewards:
    """Test monthly server boost rewards."""

    def test_once_per_month(self):
        # Arrange
        profile = UserProfile("1")

        # Act
        result = profile.give_boost_reward("2026-04", NOW)

        # Assert
        assert result == {"tokens_received": 1000, "new_token_balance": 1000, "month": "2026-04"}
        with pytest.raises(InvalidOperationError):
            profile.give_boost_reward("2026-04", NOW)
        assert profile.give_boost_reward("2026-05", NOW)["new_token_balance"] == 2000

    def test_bad_month_key(self):
        with pytest.raises(DomainValidationError):
            UserProfile("1").give_boost_reward("April")
