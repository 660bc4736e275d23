"""Vessel entity: latest known state, one row per MMSI."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Float, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from vesselstream.models.base import Base, utcnow


# Columns a position report may overwrite
POSITION_FIELDS: tuple[str, ...] = (
    "latitude", "longitude", "speed", "heading", "course", "last_position_at",
)

# Columns a static report may overwrite (only when the report carries a value)
IDENTITY_FIELDS: tuple[str, ...] = (
    "name", "ship_type", "call_sign", "imo", "flag", "length", "width",
    "destination", "draught",
)


class Vessel(Base):
    __tablename__ = "vessels"

    # Opaque identifier: numeric-looking, never used arithmetically
    mmsi: Mapped[str] = mapped_column(String(20), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ship_type: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    call_sign: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    imo: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    flag: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    length: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    width: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    destination: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    draught: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    speed: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    heading: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    course: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    last_position_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
