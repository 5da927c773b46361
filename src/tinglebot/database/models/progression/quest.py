"""
Quest — a posted community quest and its participants.
Schema only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tinglebot.core.database.base import Base, IdMixin, JSONType, TimestampMixin, UTCDateTime


class Quest(Base, IdMixin, TimestampMixin):
    """
    Quest row.

    ``participants`` maps Discord user id to the participant record.
    ``token_reward`` stays free text ("N/A", "500") and is normalized by
    the domain layer.
    """

    __tablename__ = "quests"
    __table_args__ = (Index("ix_quests_status_type", "status", "quest_type"),)

    quest_id: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    quest_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", index=True)
    location: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    required_village: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    time_limit: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    posted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    completion_reason: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    token_reward: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    item_reward: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    item_reward_qty: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    items: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)

    post_requirement: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    table_roll_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    required_rolls: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    success_criteria: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    participants: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    left_participants: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, doc="Optimistic locking version")

    __mapper_args__ = {"version_id_col": version}
