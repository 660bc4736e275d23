"""Shared declarative base and enums for all models."""
from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class MessageKindEnum(str, enum.Enum):
    POSITION_REPORT = "PositionReport"
    CLASS_B_POSITION_REPORT = "StandardClassBPositionReport"
    EXTENDED_CLASS_B_POSITION_REPORT = "ExtendedClassBPositionReport"
    SHIP_STATIC_DATA = "ShipStaticData"


POSITION_KINDS: frozenset[str] = frozenset({
    MessageKindEnum.POSITION_REPORT.value,
    MessageKindEnum.CLASS_B_POSITION_REPORT.value,
    MessageKindEnum.EXTENDED_CLASS_B_POSITION_REPORT.value,
})

STATIC_KINDS: frozenset[str] = frozenset({MessageKindEnum.SHIP_STATIC_DATA.value})


def utcnow() -> datetime:
    """Server time as naive UTC, the convention for every stored timestamp."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
