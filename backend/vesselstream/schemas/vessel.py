"""Pydantic schemas for the query surface: used by FastAPI for response typing."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, computed_field

from vesselstream.modules.classifier import ship_type_label


class VesselRead(BaseModel):
    mmsi: str
    name: Optional[str] = None
    ship_type: Optional[int] = None
    call_sign: Optional[str] = None
    imo: Optional[str] = None
    flag: Optional[str] = None
    length: Optional[float] = None
    width: Optional[float] = None
    destination: Optional[str] = None
    draught: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None
    course: Optional[float] = None
    last_position_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @computed_field
    @property
    def ship_type_name(self) -> Optional[str]:
        return ship_type_label(self.ship_type)


class PositionRecordRead(BaseModel):
    id: int
    mmsi: str
    vessel_name: Optional[str] = None
    latitude: float
    longitude: float
    speed: Optional[float] = None
    heading: Optional[float] = None
    course: Optional[float] = None
    nav_status: Optional[str] = None
    timestamp: datetime
    message_type: str
    created_at: datetime

    model_config = {"from_attributes": True}
