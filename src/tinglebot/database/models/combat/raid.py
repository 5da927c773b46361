"""
Raid — a timed village raid against one monster.
Schema only. Turn and damage rules live in ``tinglebot.domain.models.raid``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from tinglebot.core.database.base import Base, IdMixin, JSONType, TimestampMixin, UTCDateTime


class Raid(Base, IdMixin, TimestampMixin):
    """
    Raid state, including the embedded participant list.

    Participants live in a JSON list so the whole turn order is updated in
    one row write. Concurrent turn processing is detected through ``version``:
    a writer holding a stale copy fails with ``StaleDataError`` on flush.
    """

    __tablename__ = "raids"
    __table_args__ = (Index("ix_raids_status_expires", "status", "expires_at"),)

    raid_id: Mapped[str] = mapped_column(String(16), unique=True, nullable=False, index=True)
    village: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    result: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    monster: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)
    participants: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    current_turn: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    loot_eligible_removed: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )

    start_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    analytics: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    thread_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    channel_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    message_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, doc="Optimistic locking version")

    __mapper_args__ = {"version_id_col": version}
