"""
Relic — an ancient item found while exploring.
Schema only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from tinglebot.core.database.base import Base, IdMixin, TimestampMixin, UTCDateTime


class Relic(Base, IdMixin, TimestampMixin):
    __tablename__ = "relics"

    relic_id: Mapped[str] = mapped_column(String(16), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    discovered_by: Mapped[str] = mapped_column(String(100), nullable=False)
    discovered_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    location_found: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    appraisal_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    requested_appraiser: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    artist_fee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    appraised: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    appraised_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    appraisal_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    appraisal_description: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    deteriorated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    map_x: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    map_y: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
