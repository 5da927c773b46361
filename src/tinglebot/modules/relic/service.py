"""
Relic Service
=============

Purpose
-------
Tracks relics from discovery through appraisal to the village archive.

Domain
------
- Relic ids are "R" followed by digits
- The finder cannot appraise their own relic
- Appraisers are Artists or Researchers standing in Inariko, and pay
  3 stamina per appraisal
- The NPC appraiser costs the requester 500 tokens instead
- Appraised relics may be archived with an image, then placed on the map
- Deteriorated relics cannot be appraised or archived
"""

from __future__ import annotations

import random
import secrets
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from sqlalchemy import func

from tinglebot.core.database.service import DatabaseService
from tinglebot.core.logging.logger import get_logger
from tinglebot.domain.models.base import utc_now
from tinglebot.domain.models.relic import (
    APPRAISAL_OUTCOMES,
    APPRAISAL_VILLAGE,
    APPRAISER_JOBS,
    NPC_APPRAISER,
    Relic,
    is_npc_appraiser,
)
from tinglebot.modules.shared.base_repository import BaseRepository
from tinglebot.modules.shared.base_service import BaseService
from tinglebot.modules.shared.exceptions import InvalidOperationError, NotFoundError

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from tinglebot.core.config.manager import ConfigManager
    from tinglebot.core.event.bus import EventBus
    from tinglebot.database.models.exploration.relic import Relic as RelicRow
    from tinglebot.modules.character.service import CharacterService
    from tinglebot.modules.leveling.service import LevelingService


class RelicRepository(BaseRepository["RelicRow"]):
    """Repository for Relic model."""

    pass


def relic_to_dict(relic: Relic) -> Dict[str, Any]:
    return {
        "relic_id": relic.relic_id,
        "name": relic.name,
        "status": relic.status,
        "discovered_by": relic.discovered_by,
        "discovered_at": relic.discovered_at,
        "location_found": relic.location_found,
        "requested_appraiser": relic.requested_appraiser,
        "artist_fee": relic.artist_fee,
        "appraised_by": relic.appraised_by,
        "appraisal_date": relic.appraisal_date,
        "appraisal_description": relic.appraisal_description,
        "archived_at": relic.archived_at,
        "image_url": relic.image_url,
        "map_x": relic.map_x,
        "map_y": relic.map_y,
    }


class RelicService(BaseService):
    """
    Service for the relic lifecycle.

    Public Methods
    --------------
    - discover() -> Register a newly found relic
    - request_appraisal() -> Ask a character (or the NPC) to appraise
    - appraise() -> Appraise as the requested appraiser
    - archive() -> Add an appraised relic to the archive
    - place() -> Pin an archived relic on the map
    - mark_deteriorated() -> Relic was never appraised in time
    - get_relic() / list_archived() / list_for_character() -> Reads
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        character_service: CharacterService,
        leveling_service: LevelingService,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)

        from tinglebot.database.models.exploration.relic import Relic as RelicRow

        self._relic_repo = RelicRepository(
            model_class=RelicRow,
            logger=get_logger(f"{__name__}.RelicRepository"),
        )
        self._characters = character_service
        self._leveling = leveling_service

    @staticmethod
    def generate_relic_id() -> str:
        return f"R{secrets.randbelow(900_000) + 100_000}"

    async def _load(
        self, session: AsyncSession, relic_id: str, for_update: bool = False
    ) -> Tuple[RelicRow, Relic]:
        RelicRow = self._relic_repo.model_class
        row = await self._relic_repo.find_one_where(
            session, RelicRow.relic_id == relic_id.upper(), for_update=for_update
        )
        if row is None:
            raise NotFoundError("Relic", relic_id)
        return row, Relic.from_db(row)

    async def _find_appraiser(self, session: AsyncSession, name: str):
        Character = self._characters.repository.model_class
        character = await self._characters.repository.find_one_where(
            session, func.lower(Character.name) == name.strip().lower(), for_update=True
        )
        if character is None:
            raise NotFoundError("Character", name)
        return character

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def get_relic(self, relic_id: str) -> Dict[str, Any]:
        async with DatabaseService.get_session() as session:
            _, relic = await self._load(session, relic_id)
            return relic_to_dict(relic)

    async def list_archived(self) -> List[Dict[str, Any]]:
        RelicRow = self._relic_repo.model_class
        async with DatabaseService.get_session() as session:
            rows = await self._relic_repo.find_many_where(
                session, RelicRow.archived.is_(True), order_by=[RelicRow.archived_at]
            )
            return [relic_to_dict(Relic.from_db(row)) for row in rows]

    async def list_for_character(self, character_name: str) -> List[Dict[str, Any]]:
        RelicRow = self._relic_repo.model_class
        async with DatabaseService.get_session() as session:
            rows = await self._relic_repo.find_many_where(
                session,
                func.lower(RelicRow.discovered_by) == character_name.lower(),
                order_by=[RelicRow.discovered_at],
            )
            return [relic_to_dict(Relic.from_db(row)) for row in rows]

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def discover(
        self,
        name: str,
        discovered_by: str,
        location_found: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        relic = Relic(
            self.generate_relic_id(),
            self.validate_non_empty(name, "name"),
            self.validate_non_empty(discovered_by, "discovered_by"),
            location_found,
            discovered_at=now or utc_now(),
        )
        RelicRow = self._relic_repo.model_class
        async with DatabaseService.get_transaction() as session:
            self._relic_repo.add(
                session,
                RelicRow(
                    relic_id=relic.relic_id,
                    name=relic.name,
                    discovered_by=relic.discovered_by,
                    discovered_at=relic.discovered_at,
                    location_found=location_found,
                    **relic.to_db_updates(),
                ),
            )

        self.log_operation("discover_relic", relic_id=relic.relic_id, discovered_by=discovered_by)
        await self.emit_event(
            "relic.discovered",
            {"relic_id": relic.relic_id, "name": relic.name, "discovered_by": discovered_by},
        )
        return relic_to_dict(relic)

    async def request_appraisal(
        self,
        relic_id: str,
        appraiser: str,
        requester_user_id: str,
        payment: int = 0,
    ) -> Dict[str, Any]:
        """
        Ask ``appraiser`` (a character name, or "NPC") to appraise a relic.

        The NPC charges the requester ``relic.npc_appraisal_cost`` tokens up
        front. A character appraiser is paid ``payment`` as the artist fee.

        Raises:
            InvalidOperationError: Relic deteriorated, appraised or already requested,
                or the finder asked themselves
            InsufficientResourcesError: Requester cannot pay the NPC
        """
        npc = is_npc_appraiser(appraiser)
        async with DatabaseService.get_transaction() as session:
            row, relic = await self._load(session, relic_id, for_update=True)
            if npc:
                cost = int(self.get_config("relic.npc_appraisal_cost", 500))
                relic.request_appraisal(NPC_APPRAISER, payment=cost)
                await self._leveling.spend_tokens(
                    session, requester_user_id, cost, reason=f"relic_appraisal:{relic.relic_id}"
                )
            else:
                relic.request_appraisal(appraiser, payment=payment)
            self._relic_repo.apply_updates(row, relic.to_db_updates())

        self.log_operation(
            "request_appraisal",
            relic_id=relic.relic_id,
            appraiser=relic.requested_appraiser,
            requester=str(requester_user_id),
        )
        return relic_to_dict(relic)

    async def appraise(
        self,
        relic_id: str,
        appraiser: str,
        outcome: Optional[str] = None,
        *,
        rng: Optional[random.Random] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Appraise a relic as the requested appraiser.

        Character appraisers must be an Artist or Researcher in Inariko and
        spend stamina. The outcome is drawn at random when not given.

        Raises:
            InvalidOperationError: Wrong appraiser, wrong job or village, or
                the relic cannot be appraised
            InsufficientResourcesError: Not enough stamina
        """
        outcome = outcome or (rng or random).choice(APPRAISAL_OUTCOMES)
        jobs = [j.lower() for j in self.get_config("relic.appraiser_jobs", list(APPRAISER_JOBS))]
        village = self.get_config("relic.appraisal_village", APPRAISAL_VILLAGE)
        stamina_cost = int(self.get_config("relic.appraiser_stamina_cost", 3))

        async with DatabaseService.get_transaction() as session:
            row, relic = await self._load(session, relic_id, for_update=True)

            if not is_npc_appraiser(appraiser):
                character = await self._find_appraiser(session, appraiser)
                if (character.job or "").lower() not in jobs:
                    raise InvalidOperationError(
                        "appraise", f"{character.name} must be an Artist or Researcher to appraise relics"
                    )
                if (character.current_village or "").lower() != village.lower():
                    raise InvalidOperationError(
                        "appraise", f"{character.name} must be in {village} to appraise relics"
                    )
                description = relic.appraise(character.name, outcome, now)
                await self._characters.spend_stamina(session, character.id, stamina_cost)
            else:
                description = relic.appraise(NPC_APPRAISER, outcome, now)

            self._relic_repo.apply_updates(row, relic.to_db_updates())

        await self.publish_domain_events(relic)
        return {**relic_to_dict(relic), "outcome": outcome, "description": description}

    async def archive(
        self, relic_id: str, image_url: str, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        async with DatabaseService.get_transaction() as session:
            row, relic = await self._load(session, relic_id, for_update=True)
            relic.archive(image_url, now)
            self._relic_repo.apply_updates(row, relic.to_db_updates())

        await self.publish_domain_events(relic)
        return relic_to_dict(relic)

    async def place(self, relic_id: str, x: float, y: float) -> Dict[str, Any]:
        async with DatabaseService.get_transaction() as session:
            row, relic = await self._load(session, relic_id, for_update=True)
            relic.place(x, y)
            self._relic_repo.apply_updates(row, relic.to_db_updates())
        return relic_to_dict(relic)

    async def mark_deteriorated(self, relic_id: str) -> Dict[str, Any]:
        async with DatabaseService.get_transaction() as session:
            row, relic = await self._load(session, relic_id, for_update=True)
            relic.mark_deteriorated()
            self._relic_repo.apply_updates(row, relic.to_db_updates())

        self.log.info(f"Relic deteriorated: {relic.relic_id}", extra={"relic_id": relic.relic_id})
        return relic_to_dict(relic)
