"""
Service container: builds every domain service once and wires them together.

Every service takes ``(config_manager, event_bus, logger)`` plus the services
it composes. Leaf services (character, leveling, table roll) are built first.

    container = ServiceContainer(ConfigManager, event_bus, logger)
    await container.initialize()
    await container.raid.join_raid(raid_id, character_id)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional, Type, TypeVar

from tinglebot.core.logging.logger import get_logger
from tinglebot.modules.character import CharacterService
from tinglebot.modules.leveling import LevelingService
from tinglebot.modules.quest import QuestService
from tinglebot.modules.raid import RaidService
from tinglebot.modules.relic import RelicService
from tinglebot.modules.steal import StealService
from tinglebot.modules.tableroll import TableRollService

if TYPE_CHECKING:
    from logging import Logger

    from tinglebot.core.config.manager import ConfigManager
    from tinglebot.core.event.bus import EventBus

S = TypeVar("S")


class ServiceContainer:
    def __init__(self, config_manager: ConfigManager, event_bus: EventBus, logger: Logger) -> None:
        self._config_manager = config_manager
        self._event_bus = event_bus
        self._logger = logger
        self._services: dict[str, Any] = {}

    @property
    def initialized(self) -> bool:
        return bool(self._services)

    async def initialize(self) -> None:
        if self.initialized:
            return

        character = self._build(CharacterService)
        leveling = self._build(LevelingService)
        table_roll = self._build(TableRollService)

        self._services = {
            "character": character,
            "leveling": leveling,
            "table_roll": table_roll,
            "raid": self._build(RaidService, character_service=character),
            "quest": self._build(
                QuestService,
                character_service=character,
                table_roll_service=table_roll,
                leveling_service=leveling,
            ),
            "relic": self._build(
                RelicService, character_service=character, leveling_service=leveling
            ),
            "steal": self._build(StealService, character_service=character),
        }
        self._logger.info("Services ready", extra={"services": sorted(self._services)})

    def _build(self, cls: Type[S], **dependencies: Any) -> S:
        return cls(
            config_manager=self._config_manager,
            event_bus=self._event_bus,
            logger=get_logger(f"{cls.__module__}.{cls.__name__}"),
            **dependencies,
        )

    async def shutdown(self) -> None:
        """Let background event listeners finish, then drop the services."""
        if not self.initialized:
            return
        await self._event_bus.drain()
        self._services = {}
        self._logger.info("Services shut down")

    def _get(self, name: str) -> Any:
        service: Optional[Any] = self._services.get(name)
        if service is None:
            raise RuntimeError("ServiceContainer.initialize() has not been awaited")
        return service

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def character(self) -> CharacterService:
        return self._get("character")

    @property
    def leveling(self) -> LevelingService:
        return self._get("leveling")

    @property
    def table_roll(self) -> TableRollService:
        return self._get("table_roll")

    @property
    def raid(self) -> RaidService:
        return self._get("raid")

    @property
    def quest(self) -> QuestService:
        return self._get("quest")

    @property
    def relic(self) -> RelicService:
        return self._get("relic")

    @property
    def steal(self) -> StealService:
        return self._get("steal")
