"""
Leveling Service
================

Purpose
-------
Owns User rows: message XP and levels, level-to-token exchange, birthday
rewards, server boost rewards and the token balance other modules pay into
or charge.

Domain
------
- 15-25 XP per message, at most once every 60 seconds
- XP for level L: 5L^2 + 50L + 100
- Each level since the last exchange pays 100 tokens
- Birthday reward once per year: 1500 tokens or a 75% shop discount
- Boost reward once per month: 1000 tokens
"""

from __future__ import annotations

import random
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import desc

from tinglebot.core.database.service import DatabaseService
from tinglebot.core.logging.logger import get_logger, safe_extra
from tinglebot.domain.models.base import utc_now
from tinglebot.domain.models.leveling import UserProfile
from tinglebot.modules.shared.base_repository import BaseRepository
from tinglebot.modules.shared.base_service import BaseService
from tinglebot.modules.shared.exceptions import (
    InsufficientResourcesError,
    InvalidOperationError,
    NotFoundError,
)

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from tinglebot.core.config.manager import ConfigManager
    from tinglebot.core.event.bus import EventBus
    from tinglebot.database.models.core.user import User


class UserRepository(BaseRepository["User"]):
    """Repository for User model."""

    pass


class LevelingService(BaseService):
    """
    Service for user progression and token balances.

    Public Methods
    --------------
    - record_message() -> Grant message XP (cooldown-gated)
    - get_rank() -> Level, XP, progress and leaderboard position
    - exchange_levels() -> Convert new levels into tokens
    - get_leaderboard() -> Top users by level and XP
    - set_birthday() -> Store MM-DD
    - give_birthday_reward() -> Yearly birthday reward
    - give_boost_reward() -> Monthly boost reward
    - add_tokens() / spend_tokens() -> Balance changes inside a caller's transaction
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)

        from tinglebot.database.models.core.user import User

        self._user_repo = UserRepository(
            model_class=User,
            logger=get_logger(f"{__name__}.UserRepository"),
        )

    # ========================================================================
    # USER ROWS
    # ========================================================================

    async def get_or_create_user(
        self, session: AsyncSession, discord_id: str, for_update: bool = False
    ) -> User:
        User = self._user_repo.model_class
        user = await self._user_repo.find_one_where(
            session, User.discord_id == str(discord_id), for_update=for_update
        )
        if user is None:
            user = User(discord_id=str(discord_id))
            self._user_repo.add(session, user)
            await session.flush()
            self.log.info(f"Created user {discord_id}", extra={"discord_id": str(discord_id)})
        return user

    async def add_tokens(
        self, session: AsyncSession, discord_id: str, amount: int, reason: str
    ) -> int:
        """Credit tokens inside the caller's transaction; returns the new balance."""
        user = await self.get_or_create_user(session, discord_id, for_update=True)
        user.tokens = (user.tokens or 0) + int(amount)
        self.log.info(
            f"Tokens credited: {discord_id} +{amount} ({reason})",
            extra={"discord_id": str(discord_id), "amount": amount, "reason": reason},
        )
        return user.tokens

    async def spend_tokens(
        self, session: AsyncSession, discord_id: str, amount: int, reason: str
    ) -> int:
        """
        Debit tokens inside the caller's transaction.

        Raises:
            InsufficientResourcesError: If the balance is too low
        """
        user = await self.get_or_create_user(session, discord_id, for_update=True)
        if (user.tokens or 0) < amount:
            raise InsufficientResourcesError("tokens", amount, user.tokens or 0)
        user.tokens -= int(amount)
        self.log.info(
            f"Tokens debited: {discord_id} -{amount} ({reason})",
            extra={"discord_id": str(discord_id), "amount": amount, "reason": reason},
        )
        return user.tokens

    async def get_balance(self, discord_id: str) -> int:
        User = self._user_repo.model_class
        async with DatabaseService.get_session() as session:
            user = await self._user_repo.find_one_where(session, User.discord_id == str(discord_id))
            return user.tokens if user else 0

    # ========================================================================
    # XP
    # ========================================================================

    async def record_message(
        self,
        discord_id: str,
        *,
        now: Optional[datetime] = None,
        rng: Optional[random.Random] = None,
    ) -> Dict[str, Any]:
        """
        Grant XP for a chat message unless the user is still on cooldown.

        Returns ``{"xp_gained", "leveled_up", "old_level", "new_level"}``;
        ``xp_gained`` is 0 while on cooldown.
        """
        now = now or utc_now()
        xp_min = int(self.get_config("leveling.message_xp_min", 15))
        xp_max = int(self.get_config("leveling.message_xp_max", 25))

        async with DatabaseService.get_transaction() as session:
            row = await self.get_or_create_user(session, discord_id, for_update=True)
            profile = UserProfile.from_db(row)
            if not profile.can_gain_xp(now):
                return {
                    "xp_gained": 0,
                    "leveled_up": False,
                    "old_level": profile.level,
                    "new_level": profile.level,
                }

            amount = (rng or random).randint(xp_min, xp_max)
            profile.record_message(now)
            outcome = profile.add_xp(amount, source="message", now=now)
            self._user_repo.apply_updates(row, profile.to_db_updates())

        await self.publish_domain_events(profile)
        if outcome["leveled_up"]:
            self.log.info(
                f"User leveled up: {discord_id} {outcome['old_level']} -> {outcome['new_level']}",
                extra=safe_extra({"discord_id": str(discord_id), **outcome}),
            )
        return {"xp_gained": amount, **outcome}

    async def get_rank(self, discord_id: str) -> Dict[str, Any]:
        User = self._user_repo.model_class
        async with DatabaseService.get_session() as session:
            row = await self._user_repo.find_one_where(session, User.discord_id == str(discord_id))
            if row is None:
                raise NotFoundError("User", discord_id)
            profile = UserProfile.from_db(row)
            ahead = await self._user_repo.count(
                session,
                (User.level > row.level) | ((User.level == row.level) & (User.xp > row.xp)),
            )
            return {
                "discord_id": profile.discord_id,
                "level": profile.level,
                "xp": profile.xp,
                "rank": ahead + 1,
                "progress": profile.progress_to_next_level(),
                "exchangeable_levels": profile.exchangeable_levels,
                "total_messages": profile.total_messages,
                "tokens": profile.tokens,
            }

    async def get_leaderboard(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        limit = limit or int(self.get_config("leveling.leaderboard_size", 10))
        User = self._user_repo.model_class
        async with DatabaseService.get_session() as session:
            rows = await self._user_repo.find_many_where(
                session,
                User.xp > 0,
                order_by=[desc(User.level), desc(User.xp)],
                limit=limit,
            )
            return [
                {"rank": index, "discord_id": row.discord_id, "level": row.level, "xp": row.xp}
                for index, row in enumerate(rows, start=1)
            ]

    # ========================================================================
    # EXCHANGE / BIRTHDAY / BOOST
    # ========================================================================

    async def exchange_levels(self, discord_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        self.log_operation("exchange_levels", discord_id=str(discord_id))
        async with DatabaseService.get_transaction() as session:
            row = await self.get_or_create_user(session, discord_id, for_update=True)
            profile = UserProfile.from_db(row)
            result = profile.exchange_levels(now)
            self._user_repo.apply_updates(row, profile.to_db_updates())

        await self.emit_event("user.levels_exchanged", {"discord_id": str(discord_id), **result})
        return result

    async def set_birthday(self, discord_id: str, month: int, day: int) -> str:
        async with DatabaseService.get_transaction() as session:
            row = await self.get_or_create_user(session, discord_id, for_update=True)
            profile = UserProfile.from_db(row)
            formatted = profile.set_birthday(month, day)
            self._user_repo.apply_updates(row, profile.to_db_updates())
        self.log_operation("set_birthday", discord_id=str(discord_id), birthday=formatted)
        return formatted

    async def give_birthday_reward(
        self,
        discord_id: str,
        reward_type: str = "random",
        *,
        now: Optional[datetime] = None,
        rng: Optional[random.Random] = None,
    ) -> Dict[str, Any]:
        """
        Grant the yearly birthday reward; only valid on the user's birthday.

        Raises:
            InvalidOperationError: Not their birthday, no birthday set, or
                already rewarded this year
        """
        now = now or utc_now()
        async with DatabaseService.get_transaction() as session:
            row = await self.get_or_create_user(session, discord_id, for_update=True)
            profile = UserProfile.from_db(row)
            if profile.birthday and not profile.is_birthday(now.date()):
                raise InvalidOperationError("birthday_reward", "Today is not your birthday")
            result = profile.give_birthday_reward(now, reward_type, rng=rng)
            self._user_repo.apply_updates(row, profile.to_db_updates())

        await self.emit_event("user.birthday_rewarded", {"discord_id": str(discord_id), **result})
        return result

    async def list_birthdays(self, today: Optional[date] = None) -> List[str]:
        """Discord ids whose birthday is ``today`` and who have not been rewarded this year."""
        today = today or utc_now().date()
        User = self._user_repo.model_class
        async with DatabaseService.get_session() as session:
            rows = await self._user_repo.find_many_where(
                session, User.birthday_month.is_not(None), User.birthday_day.is_not(None)
            )
            return [
                row.discord_id
                for row in rows
                if UserProfile.from_db(row).is_birthday(today)
                and row.last_birthday_reward != str(today.year)
            ]

    async def give_boost_reward(
        self, discord_id: str, month_key: Optional[str] = None, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        now = now or utc_now()
        month_key = month_key or now.strftime("%Y-%m")
        async with DatabaseService.get_transaction() as session:
            row = await self.get_or_create_user(session, discord_id, for_update=True)
            profile = UserProfile.from_db(row)
            result = profile.give_boost_reward(month_key, now)
            self._user_repo.apply_updates(row, profile.to_db_updates())

        self.log_operation("give_boost_reward", discord_id=str(discord_id), month=month_key)
        return result

