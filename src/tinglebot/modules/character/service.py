"""
Character Service
=================

Purpose
-------
Owns roleplay characters: creation, lookup, travel between villages and the
heart/stamina bookkeeping that raids, relic appraisal and healing rely on.

Domain
------
- Create characters in one of the three villages
- Look characters up by id or by (case-insensitive) name
- Move characters between villages
- Apply raid damage and knock characters out at 0 hearts
- Heal and revive
- Spend stamina for village jobs

Methods that other services compose into their own transaction take an
optional ``session`` argument.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from sqlalchemy import func, update

from tinglebot.core.database.service import DatabaseService
from tinglebot.core.logging.logger import get_logger
from tinglebot.domain.models.raid import normalize_village
from tinglebot.modules.shared.base_repository import BaseRepository
from tinglebot.modules.shared.base_service import BaseService
from tinglebot.modules.shared.exceptions import (
    InsufficientResourcesError,
    InvalidOperationError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from tinglebot.core.config.manager import ConfigManager
    from tinglebot.core.event.bus import EventBus
    from tinglebot.database.models.core.character import Character


# ============================================================================
# Repository
# ============================================================================


class CharacterRepository(BaseRepository["Character"]):
    """Repository for Character model."""

    pass


def character_to_dict(character: Character) -> Dict[str, Any]:
    return {
        "id": character.id,
        "user_id": character.user_id,
        "name": character.name,
        "job": character.job,
        "home_village": character.home_village,
        "current_village": character.current_village,
        "current_hearts": character.current_hearts,
        "max_hearts": character.max_hearts,
        "current_stamina": character.current_stamina,
        "max_stamina": character.max_stamina,
        "ko": character.ko,
        "blighted": character.blighted,
        "blight_stage": character.blight_stage,
        "is_mod_character": character.is_mod_character,
        "steal_protection_expires_at": character.steal_protection_expires_at,
    }


# ============================================================================
# CharacterService
# ============================================================================


class CharacterService(BaseService):
    """
    Service for character state.

    Public Methods
    --------------
    - create_character() -> Register a new character
    - get_character() -> Fetch by id
    - get_character_by_name() -> Fetch by name, optionally scoped to an owner
    - list_characters() -> All characters owned by a user
    - move_to_village() -> Travel to another village
    - heal() -> Restore hearts
    - revive() -> Clear KO and restore hearts
    - apply_damage() -> Remove hearts, KO at zero (raid turns)
    - knock_out() -> KO a batch of characters (failed raids)
    - spend_stamina() -> Pay stamina for a job action
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)

        from tinglebot.database.models.core.character import Character

        self._character_repo = CharacterRepository(
            model_class=Character,
            logger=get_logger(f"{__name__}.CharacterRepository"),
        )

    @property
    def repository(self) -> CharacterRepository:
        return self._character_repo

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def load(
        self, session: AsyncSession, character_id: int, for_update: bool = False
    ) -> Character:
        """Load the row inside a caller's session; raises NotFoundError."""
        Character = self._character_repo.model_class
        character = await self._character_repo.find_one_where(
            session, Character.id == character_id, for_update=for_update
        )
        if character is None:
            raise NotFoundError("Character", character_id)
        return character

    async def get_character(self, character_id: int) -> Dict[str, Any]:
        async with DatabaseService.get_session() as session:
            return character_to_dict(await self.load(session, character_id))

    async def get_character_by_name(
        self, name: str, user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Find a character by name, case-insensitively.

        Args:
            name: Character name
            user_id: Restrict the search to this owner

        Raises:
            NotFoundError: If no character matches
        """
        name = self.validate_non_empty(name, "name")
        Character = self._character_repo.model_class
        conditions = [func.lower(Character.name) == name.lower()]
        if user_id is not None:
            conditions.append(Character.user_id == str(user_id))

        async with DatabaseService.get_session() as session:
            character = await self._character_repo.find_one_where(session, *conditions)
            if character is None:
                raise NotFoundError("Character", name)
            return character_to_dict(character)

    async def list_characters(self, user_id: str) -> List[Dict[str, Any]]:
        Character = self._character_repo.model_class
        async with DatabaseService.get_session() as session:
            rows = await self._character_repo.find_many_where(
                session, Character.user_id == str(user_id), order_by=[Character.name]
            )
            return [character_to_dict(row) for row in rows]

    async def get_current_villages(self, names: Iterable[str]) -> Dict[str, str]:
        """Map lower-cased character names to their current village."""
        wanted = {n.lower() for n in names}
        if not wanted:
            return {}
        Character = self._character_repo.model_class
        async with DatabaseService.get_session() as session:
            rows = await self._character_repo.find_many_where(
                session, func.lower(Character.name).in_(wanted)
            )
            return {row.name.lower(): row.current_village for row in rows}

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def create_character(
        self,
        user_id: str,
        name: str,
        home_village: str,
        *,
        job: Optional[str] = None,
        max_hearts: int = 3,
        max_stamina: int = 3,
        is_mod_character: bool = False,
    ) -> Dict[str, Any]:
        """
        Register a character in its home village.

        Raises:
            ValidationError: If the name is blank or already used by this owner
            DomainValidationError: If the village is unknown
        """
        name = self.validate_non_empty(name, "name")
        village = normalize_village(home_village)
        self.validate_positive_int(max_hearts, "max_hearts")
        self.validate_positive_int(max_stamina, "max_stamina")

        self.log_operation("create_character", user_id=user_id, character_name=name, village=village)

        Character = self._character_repo.model_class
        async with DatabaseService.get_transaction() as session:
            if await self._character_repo.exists(
                session,
                Character.user_id == str(user_id),
                func.lower(Character.name) == name.lower(),
            ):
                raise ValidationError("name", f"You already have a character named {name}")

            character = Character(
                user_id=str(user_id),
                name=name,
                job=job,
                home_village=village,
                current_village=village,
                current_hearts=max_hearts,
                max_hearts=max_hearts,
                current_stamina=max_stamina,
                max_stamina=max_stamina,
                is_mod_character=is_mod_character,
            )
            self._character_repo.add(session, character)
            await session.flush()
            result = character_to_dict(character)

        await self.emit_event(
            "character.created",
            {"character_id": result["id"], "user_id": str(user_id), "name": name},
        )
        return result

    async def move_to_village(self, character_id: int, village: str) -> Dict[str, Any]:
        village = normalize_village(village)
        async with DatabaseService.get_transaction() as session:
            character = await self.load(session, character_id, for_update=True)
            if character.ko:
                raise InvalidOperationError("travel", f"{character.name} is KO'd and cannot travel")
            previous = character.current_village
            character.current_village = village
            result = character_to_dict(character)

        self.log.info(
            f"Character travelled: {result['name']} {previous} -> {village}",
            extra={"character_id": character_id, "from": previous, "to": village},
        )
        await self.emit_event(
            "character.travelled",
            {"character_id": character_id, "from_village": previous, "to_village": village},
        )
        return result

    async def heal(
        self, character_id: int, hearts: int, *, session: Optional[AsyncSession] = None
    ) -> Dict[str, Any]:
        """Restore hearts up to the maximum. KO'd characters must be revived instead."""
        self.validate_positive_int(hearts, "hearts")

        async def _do_heal(db: AsyncSession) -> Dict[str, Any]:
            character = await self.load(db, character_id, for_update=True)
            if character.ko:
                raise InvalidOperationError("heal", f"{character.name} is KO'd; revive them first")
            character.current_hearts = min(character.max_hearts, character.current_hearts + hearts)
            return character_to_dict(character)

        if session is not None:
            return await _do_heal(session)
        async with DatabaseService.get_transaction() as tx_session:
            return await _do_heal(tx_session)

    async def revive(
        self, character_id: int, hearts: Optional[int] = None, *, session: Optional[AsyncSession] = None
    ) -> Dict[str, Any]:
        async def _do_revive(db: AsyncSession) -> Dict[str, Any]:
            character = await self.load(db, character_id, for_update=True)
            if not character.ko:
                raise InvalidOperationError("revive", f"{character.name} is not KO'd")
            character.ko = False
            character.current_hearts = min(character.max_hearts, hearts or character.max_hearts)
            return character_to_dict(character)

        if session is not None:
            result = await _do_revive(session)
        else:
            async with DatabaseService.get_transaction() as tx_session:
                result = await _do_revive(tx_session)

        await self.emit_event("character.revived", {"character_id": character_id})
        return result

    async def apply_damage(
        self, session: AsyncSession, character_id: int, hearts_lost: int
    ) -> Dict[str, Any]:
        """
        Remove hearts inside the caller's transaction.

        Returns ``{"current_hearts", "ko", "knocked_out"}`` where
        ``knocked_out`` is True only when this hit caused the KO.
        """
        character = await self.load(session, character_id, for_update=True)
        was_ko = character.ko
        character.current_hearts = max(0, character.current_hearts - max(0, hearts_lost))
        if character.current_hearts == 0:
            character.ko = True
        return {
            "current_hearts": character.current_hearts,
            "ko": character.ko,
            "knocked_out": character.ko and not was_ko,
        }

    async def knock_out(self, session: AsyncSession, character_ids: Iterable[int]) -> int:
        ids = list(character_ids)
        if not ids:
            return 0
        Character = self._character_repo.model_class
        result = await session.execute(
            update(Character)
            .where(Character.id.in_(ids))
            .values(current_hearts=0, ko=True)
            .execution_options(synchronize_session=False)
        )
        self.log.info(
            f"Knocked out {result.rowcount} characters",
            extra={"character_ids": ids, "count": result.rowcount},
        )
        return int(result.rowcount or 0)

    async def spend_stamina(
        self, session: AsyncSession, character_id: int, amount: int
    ) -> Dict[str, Any]:
        self.validate_positive_int(amount, "amount")
        character = await self.load(session, character_id, for_update=True)
        if character.current_stamina < amount:
            raise InsufficientResourcesError("stamina", amount, character.current_stamina)
        character.current_stamina -= amount
        return character_to_dict(character)
