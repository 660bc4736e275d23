"""PositionRecord entity: append-only position history.

Rows are never updated. Queries order by the report ``timestamp``; retention
decides by ``created_at`` (server time) so a feed with skewed clocks cannot
keep rows alive or expire them early.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Integer, Float, String, DateTime, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column
from vesselstream.models.base import Base, utcnow


class PositionRecord(Base):
    __tablename__ = "position_history"
    __table_args__ = (
        CheckConstraint("latitude >= -90 AND latitude <= 90", name="ck_position_lat_bounds"),
        CheckConstraint("longitude >= -180 AND longitude <= 180", name="ck_position_lon_bounds"),
        Index("ix_position_history_mmsi", "mmsi"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mmsi: Mapped[str] = mapped_column(String(20), nullable=False)
    vessel_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    speed: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    heading: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    course: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    nav_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    message_type: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


# Newest-first access paths for retention and history queries
Index("ix_position_history_created_at", PositionRecord.created_at.desc())
Index("ix_position_history_timestamp", PositionRecord.timestamp.desc())
