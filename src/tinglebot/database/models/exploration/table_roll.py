"""
TableRoll — a named weighted loot table.
Schema only.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, Date, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from tinglebot.core.database.base import Base, IdMixin, JSONType, TimestampMixin


class TableRoll(Base, IdMixin, TimestampMixin):
    __tablename__ = "table_rolls"

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    entries: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    roll_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    daily_roll_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_rolls_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_roll_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    tags: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)

    version: Mapped[int] = mapped_column(Integer, nullable=False, doc="Optimistic locking version")

    __mapper_args__ = {"version_id_col": version}
