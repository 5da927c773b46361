"""
Table Roll Service
==================

Purpose
-------
Manages named weighted tables: creating them from entries or a CSV upload,
rolling them, and retiring them.

Domain
------
- Table names are unique (1-100 chars of letters, numbers, space, '_', '-')
- Rolls are weighted by entry weight
- Optional daily roll cap per table (0 = unlimited)
- Roll counters live on a versioned row, so concurrent rolls retry
"""

from __future__ import annotations

import random
from datetime import date
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Union

from tinglebot.core.database.service import DatabaseService
from tinglebot.core.logging.logger import get_logger
from tinglebot.domain.models.base import utc_now
from tinglebot.domain.models.table_roll import (
    TableEntry,
    TableRoll,
    parse_csv,
    validate_table_name,
)
from tinglebot.modules.shared.base_repository import BaseRepository
from tinglebot.modules.shared.base_service import BaseService
from tinglebot.modules.shared.exceptions import NotFoundError, ValidationError

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from tinglebot.core.config.manager import ConfigManager
    from tinglebot.core.event.bus import EventBus
    from tinglebot.database.models.exploration.table_roll import TableRoll as TableRollRow


class TableRollRepository(BaseRepository["TableRollRow"]):
    """Repository for TableRoll model."""

    pass


def _coerce_entries(entries: Iterable[Union[TableEntry, Dict[str, Any]]]) -> List[TableEntry]:
    return [e if isinstance(e, TableEntry) else TableEntry.from_dict(e) for e in entries]


class TableRollService(BaseService):
    """
    Service for weighted roll tables.

    Public Methods
    --------------
    - create_table() -> Create a table from entries
    - import_csv() -> Create or replace a table from CSV text
    - roll() -> Roll a table (respects the daily cap)
    - get_table() -> Table details and statistics
    - list_tables() -> All (active) tables
    - deactivate_table() -> Stop a table from being rolled
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)

        from tinglebot.database.models.exploration.table_roll import TableRoll as TableRollRow

        self._table_repo = TableRollRepository(
            model_class=TableRollRow,
            logger=get_logger(f"{__name__}.TableRollRepository"),
        )

    async def _find(self, session: AsyncSession, name: str) -> Optional[TableRollRow]:
        TableRollRow = self._table_repo.model_class
        return await self._table_repo.find_one_where(session, TableRollRow.name == name)

    async def _load(self, session: AsyncSession, name: str) -> TableRollRow:
        row = await self._find(session, validate_table_name(name))
        if row is None:
            raise NotFoundError("Table roll", name)
        return row

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def get_table(self, name: str) -> Dict[str, Any]:
        async with DatabaseService.get_session() as session:
            row = await self._load(session, name)
            table = TableRoll.from_db(row)
            return {
                **table.statistics(),
                "is_active": table.is_active,
                "created_by": table.created_by,
                "tags": list(table.tags),
                "entries": [entry.to_dict() for entry in table.entries],
                "last_roll_date": table.last_roll_date,
            }

    async def list_tables(self, active_only: bool = True) -> List[Dict[str, Any]]:
        TableRollRow = self._table_repo.model_class
        conditions = [TableRollRow.is_active.is_(True)] if active_only else []
        async with DatabaseService.get_session() as session:
            rows = await self._table_repo.find_many_where(
                session, *conditions, order_by=[TableRollRow.name]
            )
            return [
                {
                    "name": row.name,
                    "entry_count": len(row.entries or []),
                    "roll_count": row.roll_count,
                    "is_active": row.is_active,
                }
                for row in rows
            ]

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def create_table(
        self,
        name: str,
        entries: Iterable[Union[TableEntry, Dict[str, Any]]],
        *,
        created_by: Optional[str] = None,
        max_rolls_per_day: int = 0,
        tags: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Create a new table.

        Raises:
            DomainValidationError: Bad name, no entries or bad entry
            ValidationError: A table with this name already exists
        """
        table = TableRoll(
            name,
            _coerce_entries(entries),
            created_by=created_by,
            max_rolls_per_day=max_rolls_per_day,
            tags=tags,
        )
        self.log_operation("create_table", table_name=table.name, entry_count=len(table.entries))

        TableRollRow = self._table_repo.model_class
        async with DatabaseService.get_transaction() as session:
            if await self._find(session, table.name) is not None:
                raise ValidationError("name", f"A table named '{table.name}' already exists")
            row = TableRollRow(name=table.name, created_by=created_by, **table.to_db_updates())
            self._table_repo.add(session, row)

        await self.emit_event(
            "tableroll.created", {"name": table.name, "entry_count": len(table.entries)}
        )
        return table.statistics()

    async def import_csv(
        self,
        name: str,
        csv_text: str,
        *,
        created_by: Optional[str] = None,
        replace: bool = True,
    ) -> Dict[str, Any]:
        """
        Create a table from CSV text, or replace the entries of an existing one.

        Rows with problems are skipped and reported in ``errors``; the import
        fails only when no valid row remains.

        Raises:
            ValidationError: No valid entries, or the table exists and
                ``replace`` is False
        """
        name = validate_table_name(name)
        entries, errors = parse_csv(csv_text)
        if not entries:
            raise ValidationError(
                "csv", "No valid entries found. " + "; ".join(errors[:5])
            )

        async def _attempt() -> Dict[str, Any]:
            async with DatabaseService.get_transaction() as session:
                row = await self._find(session, name)
                if row is None:
                    table = TableRoll(name, entries, created_by=created_by)
                    TableRollRow = self._table_repo.model_class
                    self._table_repo.add(
                        session,
                        TableRollRow(name=name, created_by=created_by, **table.to_db_updates()),
                    )
                    created = True
                else:
                    if not replace:
                        raise ValidationError("name", f"A table named '{name}' already exists")
                    table = TableRoll.from_db(row)
                    table.entries = list(entries)
                    table.is_active = True
                    self._table_repo.apply_updates(row, table.to_db_updates())
                    created = False
            return {**table.statistics(), "created": created, "errors": errors}

        result = await self.run_with_version_retry(
            _attempt, operation_name="tableroll.import_csv", resource_type="TableRoll", identifier=name
        )
        self.log.info(
            f"Table imported: {name} ({result['entry_count']} entries, {len(errors)} errors)",
            extra={"table": name, "entry_count": result["entry_count"], "error_count": len(errors)},
        )
        return result

    async def roll(
        self,
        name: str,
        *,
        rng: Optional[random.Random] = None,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Roll a table and persist its counters.

        Raises:
            NotFoundError: Unknown table
            DomainValidationError: Table inactive or daily cap reached
        """
        rng = rng or random.Random()
        state = rng.getstate()

        async def _attempt() -> Dict[str, Any]:
            # Replay the same draw on every retry.
            rng.setstate(state)
            async with DatabaseService.get_transaction() as session:
                return await self.roll_in_session(session, name, rng=rng, today=today)

        result = await self.run_with_version_retry(
            _attempt, operation_name="tableroll.roll", resource_type="TableRoll", identifier=name
        )
        await self.announce_roll(result)
        return result

    async def roll_in_session(
        self,
        session: AsyncSession,
        name: str,
        *,
        rng: random.Random,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Roll inside the caller's transaction.

        The caller owns the version retry and must call ``announce_roll``
        once its transaction has committed.
        """
        row = await self._load(session, name)
        table = TableRoll.from_db(row)
        result = table.roll(today or utc_now().date(), rng)
        self._table_repo.apply_updates(row, table.to_db_updates())
        return {**result, "table": table.name, "roll_count": table.roll_count}

    async def announce_roll(self, result: Dict[str, Any]) -> None:
        await self.emit_event(
            "tableroll.rolled", {"name": result["table"], "index": result["index"], "item": result["item"]}
        )

    async def deactivate_table(self, name: str) -> Dict[str, Any]:
        async def _attempt() -> TableRoll:
            async with DatabaseService.get_transaction() as session:
                row = await self._load(session, name)
                table = TableRoll.from_db(row)
                table.is_active = False
                self._table_repo.apply_updates(row, table.to_db_updates())
            return table

        table = await self.run_with_version_retry(
            _attempt, operation_name="tableroll.deactivate", resource_type="TableRoll", identifier=name
        )
        self.log_operation("deactivate_table", table_name=table.name)
        return {"name": table.name, "is_active": table.is_active}
