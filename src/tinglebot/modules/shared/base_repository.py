"""
Generic async repository over SQLAlchemy 2.0 sessions.

Repositories only query and stage rows; the caller owns the session and
its transaction (``DatabaseService.get_transaction()``). Versioned rows
(raids, quests, table rolls, characters) use ``version_id_col``, so a
stale write raises ``StaleDataError`` on flush rather than here.

    class RaidRepository(BaseRepository["RaidRow"]):
        pass

    repo = RaidRepository(RaidRow, logger)
    raid = await repo.find_one_where(session, RaidRow.raid_id == raid_id)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.orm.attributes import flag_modified

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    def __init__(self, model_class: Type[T], logger: Logger) -> None:
        self.model_class = model_class
        self.log = logger

    @property
    def _name(self) -> str:
        return self.model_class.__name__

    async def find_one_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        for_update: bool = False,
    ) -> Optional[T]:
        """First row matching ``conditions``; ``for_update`` adds ``FOR UPDATE``."""
        stmt = select(self.model_class).where(*conditions)
        if for_update:
            stmt = stmt.with_for_update()

        row = (await session.execute(stmt)).scalars().first()
        self.log.debug(f"{self._name} lookup", extra={"found": row is not None})
        return row

    async def find_many_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        order_by: Optional[Sequence[Any]] = None,
        limit: Optional[int] = None,
    ) -> List[T]:
        stmt = select(self.model_class).where(*conditions)
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)

        rows = list((await session.execute(stmt)).scalars().all())
        self.log.debug(f"{self._name} query", extra={"count": len(rows), "limit": limit})
        return rows

    async def count(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> int:
        stmt = select(func.count()).select_from(self.model_class).where(*conditions)
        return int((await session.execute(stmt)).scalar_one())

    async def exists(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> bool:
        return await self.count(session, *conditions) > 0

    def add(self, session: AsyncSession, instance: T) -> T:
        session.add(instance)
        return instance

    def apply_updates(self, instance: T, updates: Dict[str, Any]) -> T:
        """
        Copy a domain model's ``to_db_updates()`` onto a row.

        Lists and dicts are flagged modified so JSON columns are written even
        when the same object was mutated in place.
        """
        for column, value in updates.items():
            setattr(instance, column, value)
            if isinstance(value, (dict, list)):
                flag_modified(instance, column)
        return instance
