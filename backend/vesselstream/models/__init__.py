"""Import all models to register them with SQLAlchemy metadata."""
from vesselstream.models.base import Base
from vesselstream.models.vessel import Vessel
from vesselstream.models.position_record import PositionRecord

__all__ = [
    "Base",
    "Vessel",
    "PositionRecord",
]
