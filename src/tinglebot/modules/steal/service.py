"""
Steal Service
=============

Purpose
-------
Resolves steal attempts between characters and keeps the protection window
that stops the same target being hit again straight away.

Domain
------
- Roll 1-99; the attempt succeeds when the roll beats the failure
  threshold for the item rarity (common 10, uncommon 50)
- Every attempt, successful or not, protects the target for 30 minutes
- Attempts on a protected target raise ``CooldownActiveError``
- Expired windows are cleared in bulk by a background loop
"""

from __future__ import annotations

import random
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Optional

from sqlalchemy import update

from tinglebot.core.config.config import Config
from tinglebot.core.database.service import DatabaseService
from tinglebot.domain.models import steal_protection
from tinglebot.domain.models.base import utc_now
from tinglebot.modules.shared.base_service import BaseService
from tinglebot.modules.shared.exceptions import (
    CooldownActiveError,
    InvalidOperationError,
    ValidationError,
)

if TYPE_CHECKING:
    from logging import Logger

    from tinglebot.core.config.manager import ConfigManager
    from tinglebot.core.event.bus import EventBus
    from tinglebot.modules.character.service import CharacterService

DEFAULT_FAILURE_CHANCES = {"common": 10, "uncommon": 50}


class StealService(BaseService):
    """
    Service for steal attempts and steal protection.

    Public Methods
    --------------
    - steal() -> Attempt a steal against another character
    - set_protection() / clear_protection() -> Manage a window directly
    - is_protected() / get_time_left() -> Query a window
    - cleanup_expired() -> Clear every expired window
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        character_service: CharacterService,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._characters = character_service

    @property
    def protection_seconds(self) -> int:
        return int(self.get_config("steal.protection_seconds", Config.STEAL_PROTECTION_SECONDS))

    def failure_threshold(self, rarity: str) -> int:
        chances = self.get_config("steal.failure_chances", DEFAULT_FAILURE_CHANCES)
        if rarity not in chances:
            raise ValidationError(
                "rarity", f"Unknown rarity '{rarity}'. Expected one of: {', '.join(chances)}"
            )
        return int(chances[rarity])

    # ========================================================================
    # PROTECTION WINDOWS
    # ========================================================================

    async def set_protection(
        self, character_id: int, seconds: Optional[int] = None, now: Optional[datetime] = None
    ) -> datetime:
        expires_at = steal_protection.protection_expiry(now, seconds or self.protection_seconds)
        async with DatabaseService.get_transaction() as session:
            character = await self._characters.load(session, character_id, for_update=True)
            character.steal_protection_expires_at = expires_at
        return expires_at

    async def clear_protection(self, character_id: int) -> None:
        async with DatabaseService.get_transaction() as session:
            character = await self._characters.load(session, character_id, for_update=True)
            character.steal_protection_expires_at = None

    async def is_protected(self, character_id: int, now: Optional[datetime] = None) -> bool:
        return await self.get_time_left(character_id, now) > 0

    async def get_time_left(self, character_id: int, now: Optional[datetime] = None) -> float:
        """Seconds of protection remaining, 0 when unprotected."""
        async with DatabaseService.get_session() as session:
            character = await self._characters.load(session, character_id)
            return steal_protection.time_left(character.steal_protection_expires_at, now)

    async def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        now = now or utc_now()
        Character = self._characters.repository.model_class
        async with DatabaseService.get_transaction() as session:
            result = await session.execute(
                update(Character)
                .where(Character.steal_protection_expires_at.is_not(None))
                .where(Character.steal_protection_expires_at <= now)
                .values(steal_protection_expires_at=None)
                .execution_options(synchronize_session=False)
            )
            cleared = int(result.rowcount or 0)

        if cleared:
            self.log.info(
                f"Cleared {cleared} expired steal protection windows",
                extra={"cleared": cleared},
            )
        return cleared

    # ========================================================================
    # STEAL
    # ========================================================================

    async def steal(
        self,
        thief_id: int,
        target_id: int,
        rarity: str = "common",
        *,
        roll: Optional[int] = None,
        rng: Optional[random.Random] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Attempt a steal.

        Returns ``{"success", "roll", "failure_threshold", "protected_until"}``.

        Raises:
            CooldownActiveError: Target is under steal protection
            InvalidOperationError: Thief targets themselves, is KO'd, or the
                characters are in different villages
        """
        if thief_id == target_id:
            raise InvalidOperationError("steal", "You cannot steal from yourself")
        now = now or utc_now()
        threshold = self.failure_threshold(rarity)
        roll = roll if roll is not None else (rng or random).randint(1, 99)

        async with DatabaseService.get_transaction() as session:
            thief = await self._characters.load(session, thief_id)
            target = await self._characters.load(session, target_id, for_update=True)

            if thief.ko:
                raise InvalidOperationError("steal", f"{thief.name} is KO'd and cannot steal")
            if (thief.current_village or "").lower() != (target.current_village or "").lower():
                raise InvalidOperationError(
                    "steal", f"{target.name} is not in {thief.current_village}"
                )

            remaining = steal_protection.time_left(target.steal_protection_expires_at, now)
            if remaining > 0:
                raise CooldownActiveError("steal", remaining)

            success = roll > threshold
            target.steal_protection_expires_at = steal_protection.protection_expiry(
                now, self.protection_seconds
            )
            protected_until = target.steal_protection_expires_at
            thief_name, target_name = thief.name, target.name

        self.log.info(
            f"Steal attempt: {thief_name} -> {target_name} ({'success' if success else 'failure'})",
            extra={
                "thief_id": thief_id,
                "target_id": target_id,
                "roll": roll,
                "failure_threshold": threshold,
                "success": success,
            },
        )
        await self.emit_event(
            "steal.attempted",
            {"thief_id": thief_id, "target_id": target_id, "rarity": rarity, "success": success},
        )
        return {
            "success": success,
            "roll": roll,
            "failure_threshold": threshold,
            "protected_until": protected_until,
        }
