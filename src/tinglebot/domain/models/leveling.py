"""
User leveling, birthday and server boost rewards.

Purpose
-------
Pure rules for the per-user progression kept on the ``users`` table:

- XP and levels (MEE6-style curve: ``5L² + 50L + 100`` XP per level)
- Exchanging gained levels for tokens
- Yearly birthday rewards
- Monthly server boost rewards

Services load a ``UserProfile`` from its row, call these methods and write
``to_db_updates()`` back.
"""

from __future__ import annotations

import calendar
import math
import random
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from tinglebot.domain.models.base import AggregateRoot, DomainValidationError, ensure_aware, utc_now
from tinglebot.modules.shared.exceptions import InvalidOperationError

XP_COOLDOWN = timedelta(seconds=60)
XP_HISTORY_LIMIT = 50
EXCHANGE_HISTORY_LIMIT = 20
BIRTHDAY_HISTORY_LIMIT = 10
BOOST_HISTORY_LIMIT = 12

TOKENS_PER_LEVEL = 100
BIRTHDAY_TOKENS = 1500
BIRTHDAY_DISCOUNT_PERCENT = 75
BOOST_TOKENS = 1000

BIRTHDAY_REWARD_TYPES = ("tokens", "discount", "random")

# Leap-year maximums; Feb 29 birthdays are allowed.
_DAYS_IN_MONTH = (31, 29, 31, 30, 31, 30, 31, 31, 30, 31, 30, 31)


# ============================================================================
# XP CURVE
# ============================================================================


def xp_for_level(level: int) -> int:
    """XP threshold for ``level``. Level 1 and below need nothing."""
    if level <= 1:
        return 0
    return 5 * level * level + 50 * level + 100


def level_for_xp(xp: int) -> int:
    if xp <= 0:
        return 1
    discriminant = 50 * 50 - 4 * 5 * (100 - xp)
    if discriminant < 0:
        return 1
    level = (-50 + math.sqrt(discriminant)) / (2 * 5)
    return max(1, math.floor(level))


def is_valid_birthday(month: int, day: int) -> bool:
    if not month or not day or not 1 <= month <= 12 or day < 1:
        return False
    return day <= _DAYS_IN_MONTH[month - 1]


def format_birthday(month: Optional[int], day: Optional[int]) -> Optional[str]:
    if not month or not day:
        return None
    return f"{calendar.month_name[month]} {day}"


def _trim(history: List[Dict[str, Any]], limit: int) -> List[Dict[str, Any]]:
    return history[-limit:]


# ============================================================================
# USER PROFILE
# ============================================================================


class UserProfile(AggregateRoot):
    """Progression state of one Discord user."""

    def __init__(
        self,
        discord_id: str,
        *,
        tokens: int = 0,
        xp: int = 0,
        level: int = 1,
        last_message_at: Optional[datetime] = None,
        total_messages: int = 0,
        xp_history: Optional[List[Dict[str, Any]]] = None,
        last_exchanged_level: int = 0,
        total_levels_exchanged: int = 0,
        exchange_history: Optional[List[Dict[str, Any]]] = None,
        birthday_month: Optional[int] = None,
        birthday_day: Optional[int] = None,
        last_birthday_reward: Optional[str] = None,
        birthday_discount_expires_at: Optional[datetime] = None,
        birthday_rewards: Optional[List[Dict[str, Any]]] = None,
        last_boost_reward_month: Optional[str] = None,
        total_boost_rewards: int = 0,
        boost_reward_history: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        super().__init__(str(discord_id))
        self.tokens = tokens
        self.xp = xp
        self.level = level
        self.last_message_at = ensure_aware(last_message_at)
        self.total_messages = total_messages
        self.xp_history = list(xp_history or [])
        self.last_exchanged_level = last_exchanged_level
        self.total_levels_exchanged = total_levels_exchanged
        self.exchange_history = list(exchange_history or [])
        self.birthday_month = birthday_month
        self.birthday_day = birthday_day
        self.last_birthday_reward = last_birthday_reward
        self.birthday_discount_expires_at = ensure_aware(birthday_discount_expires_at)
        self.birthday_rewards = list(birthday_rewards or [])
        self.last_boost_reward_month = last_boost_reward_month
        self.total_boost_rewards = total_boost_rewards
        self.boost_reward_history = list(boost_reward_history or [])

    @property
    def discord_id(self) -> str:
        return self.id

    # ------------------------------------------------------------------
    # XP
    # ------------------------------------------------------------------

    def can_gain_xp(self, now: Optional[datetime] = None) -> bool:
        if self.last_message_at is None:
            return True
        now = now or utc_now()
        return now - self.last_message_at >= XP_COOLDOWN

    def record_message(self, now: Optional[datetime] = None) -> None:
        self.last_message_at = now or utc_now()
        self.total_messages += 1

    def add_xp(self, amount: int, source: str = "message", now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Add XP and recompute the level.

        Returns ``{"leveled_up", "old_level", "new_level"}``. A
        ``user.leveled_up`` event is recorded on level-up.
        """
        if amount < 0:
            raise DomainValidationError("amount", "XP amount cannot be negative")
        now = now or utc_now()
        old_level = self.level
        self.xp += amount
        self.xp_history = _trim(
            self.xp_history + [{"amount": amount, "source": source, "timestamp": now.isoformat()}],
            XP_HISTORY_LIMIT,
        )
        self.level = level_for_xp(self.xp)
        leveled_up = self.level > old_level
        if leveled_up:
            self.add_domain_event(
                "user.leveled_up",
                {"discord_id": self.discord_id, "old_level": old_level, "new_level": self.level},
            )
        return {"leveled_up": leveled_up, "old_level": old_level, "new_level": self.level}

    def progress_to_next_level(self) -> Dict[str, int]:
        current_threshold = xp_for_level(self.level)
        next_threshold = xp_for_level(self.level + 1)
        needed = next_threshold - current_threshold
        progress = max(0, self.xp - current_threshold)
        percentage = min(100, max(0, round(progress / needed * 100))) if needed else 0
        return {"current": progress, "needed": needed, "percentage": percentage}

    # ------------------------------------------------------------------
    # Level exchange
    # ------------------------------------------------------------------

    @property
    def exchangeable_levels(self) -> int:
        return max(0, self.level - self.last_exchanged_level)

    def exchange_levels(self, now: Optional[datetime] = None) -> Dict[str, int]:
        levels = self.exchangeable_levels
        if levels <= 0:
            raise InvalidOperationError(
                "exchange_levels", "No new levels to exchange! You need to level up more."
            )
        tokens = levels * TOKENS_PER_LEVEL
        now = now or utc_now()

        self.last_exchanged_level = self.level
        self.total_levels_exchanged += levels
        self.tokens += tokens
        self.exchange_history = _trim(
            self.exchange_history
            + [{"levels": levels, "tokens": tokens, "timestamp": now.isoformat()}],
            EXCHANGE_HISTORY_LIMIT,
        )
        return {
            "levels_exchanged": levels,
            "tokens_received": tokens,
            "new_token_balance": self.tokens,
        }

    # ------------------------------------------------------------------
    # Birthday
    # ------------------------------------------------------------------

    def set_birthday(self, month: int, day: int) -> str:
        if not is_valid_birthday(month, day):
            raise DomainValidationError(
                "birthday", "Invalid birthday date. Please check the month and day."
            )
        self.birthday_month = month
        self.birthday_day = day
        return format_birthday(month, day)

    @property
    def birthday(self) -> Optional[str]:
        return format_birthday(self.birthday_month, self.birthday_day)

    def is_birthday(self, today: date) -> bool:
        if not self.birthday_month or not self.birthday_day:
            return False
        if (self.birthday_month, self.birthday_day) == (2, 29) and not calendar.isleap(today.year):
            return (today.month, today.day) == (2, 28)
        return (today.month, today.day) == (self.birthday_month, self.birthday_day)

    def has_birthday_discount(self, now: Optional[datetime] = None) -> bool:
        if self.birthday_discount_expires_at is None:
            return False
        return (now or utc_now()) < self.birthday_discount_expires_at

    def give_birthday_reward(
        self,
        now: Optional[datetime] = None,
        reward_type: str = "random",
        rng: Optional[random.Random] = None,
    ) -> Dict[str, Any]:
        """
        Grant this year's birthday reward.

        ``reward_type`` is ``tokens`` (1500 tokens), ``discount`` (75% shop
        discount until the end of the day) or ``random``.

        Raises
        ------
        InvalidOperationError
            If no birthday is set or this year's reward was already given
        """
        if not self.birthday_month or not self.birthday_day:
            raise InvalidOperationError("birthday_reward", "No birthday set")
        if reward_type not in BIRTHDAY_REWARD_TYPES:
            raise DomainValidationError(
                "reward_type", f"reward_type must be one of {', '.join(BIRTHDAY_REWARD_TYPES)}"
            )
        now = now or utc_now()
        year = str(now.year)
        if self.last_birthday_reward == year:
            raise InvalidOperationError("birthday_reward", "Birthday rewards already given this year")

        if reward_type == "random":
            reward_type = "tokens" if (rng or random).random() < 0.5 else "discount"

        if reward_type == "tokens":
            amount = BIRTHDAY_TOKENS
            self.tokens += amount
            description = f"{BIRTHDAY_TOKENS} tokens"
        else:
            amount = BIRTHDAY_DISCOUNT_PERCENT
            self.birthday_discount_expires_at = now.replace(
                hour=23, minute=59, second=59, microsecond=999000
            )
            description = (
                f"{BIRTHDAY_DISCOUNT_PERCENT}% discount in village shops "
                "(active until end of your birthday)"
            )

        self.last_birthday_reward = year
        self.birthday_rewards = _trim(
            self.birthday_rewards
            + [{"year": year, "reward_type": reward_type, "amount": amount, "timestamp": now.isoformat()}],
            BIRTHDAY_HISTORY_LIMIT,
        )
        return {
            "reward_type": reward_type,
            "reward_amount": amount,
            "reward_description": description,
            "new_token_balance": self.tokens,
        }

    # ------------------------------------------------------------------
    # Server boost
    # ------------------------------------------------------------------

    def give_boost_reward(self, month_key: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        if len(month_key) != 7 or month_key[4] != "-":
            raise DomainValidationError("month_key", f"Expected 'YYYY-MM', got '{month_key}'")
        if self.last_boost_reward_month == month_key:
            raise InvalidOperationError(
                "boost_reward", f"Boost reward already received for {month_key}"
            )
        now = now or utc_now()
        self.tokens += BOOST_TOKENS
        self.last_boost_reward_month = month_key
        self.total_boost_rewards += BOOST_TOKENS
        self.boost_reward_history = _trim(
            self.boost_reward_history
            + [{"month": month_key, "tokens_received": BOOST_TOKENS, "timestamp": now.isoformat()}],
            BOOST_HISTORY_LIMIT,
        )
        return {"tokens_received": BOOST_TOKENS, "new_token_balance": self.tokens, "month": month_key}

    # ------------------------------------------------------------------
    # Persistence mapping
    # ------------------------------------------------------------------

    @classmethod
    def from_db(cls, row: Any) -> UserProfile:
        return cls(
            row.discord_id,
            tokens=row.tokens or 0,
            xp=row.xp or 0,
            level=row.level or 1,
            last_message_at=row.last_message_at,
            total_messages=row.total_messages or 0,
            xp_history=row.xp_history,
            last_exchanged_level=row.last_exchanged_level or 0,
            total_levels_exchanged=row.total_levels_exchanged or 0,
            exchange_history=row.exchange_history,
            birthday_month=row.birthday_month,
            birthday_day=row.birthday_day,
            last_birthday_reward=row.last_birthday_reward,
            birthday_discount_expires_at=row.birthday_discount_expires_at,
            birthday_rewards=row.birthday_rewards,
            last_boost_reward_month=row.last_boost_reward_month,
            total_boost_rewards=row.total_boost_rewards or 0,
            boost_reward_history=row.boost_reward_history,
        )

    def to_db_updates(self) -> Dict[str, Any]:
        return {
            "tokens": self.tokens,
            "xp": self.xp,
            "level": self.level,
            "last_message_at": self.last_message_at,
            "total_messages": self.total_messages,
            "xp_history": list(self.xp_history),
            "last_exchanged_level": self.last_exchanged_level,
            "total_levels_exchanged": self.total_levels_exchanged,
            "exchange_history": list(self.exchange_history),
            "birthday_month": self.birthday_month,
            "birthday_day": self.birthday_day,
            "last_birthday_reward": self.last_birthday_reward,
            "birthday_discount_expires_at": self.birthday_discount_expires_at,
            "birthday_rewards": list(self.birthday_rewards),
            "last_boost_reward_month": self.last_boost_reward_month,
            "total_boost_rewards": self.total_boost_rewards,
            "boost_reward_history": list(self.boost_reward_history),
        }
