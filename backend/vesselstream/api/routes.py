from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from vesselstream.config import settings
from vesselstream.database import get_db
from vesselstream.models.position_record import PositionRecord
from vesselstream.models.vessel import Vessel
from vesselstream.schemas.error import ErrorResponse
from vesselstream.schemas.vessel import PositionRecordRead, VesselRead

logger = logging.getLogger(__name__)

router = APIRouter(responses={500: {"model": ErrorResponse}})


def _naive_utc(ts: datetime) -> datetime:
    """Stored timestamps are naive UTC; convert aware query params to match."""
    if ts.tzinfo is not None:
        return ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


# ---------------------------------------------------------------------------
# Vessels (latest known state)
# ---------------------------------------------------------------------------

@router.get("/vessels", tags=["vessels"], response_model=list[VesselRead])
def list_vessels(db: Session = Depends(get_db)):
    """All vessels, most recently updated first."""
    return db.query(Vessel).order_by(Vessel.updated_at.desc()).all()


@router.get("/vessels/{mmsi}", tags=["vessels"], response_model=VesselRead)
def get_vessel(mmsi: str, db: Session = Depends(get_db)):
    vessel = db.query(Vessel).filter(Vessel.mmsi == mmsi).first()
    if not vessel:
        raise HTTPException(status_code=404, detail="Vessel not found")
    return vessel


# ---------------------------------------------------------------------------
# Position history
# ---------------------------------------------------------------------------

@router.get("/history", tags=["history"], response_model=list[PositionRecordRead])
def list_history(
    mmsi: Optional[str] = Query(None, description="Restrict to one vessel"),
    limit: int = Query(settings.DEFAULT_HISTORY_LIMIT, ge=1),
    db: Session = Depends(get_db),
):
    """Most recent history rows by report timestamp, newest first."""
    limit = min(limit, settings.MAX_QUERY_LIMIT)
    q = db.query(PositionRecord)
    if mmsi:
        q = q.filter(PositionRecord.mmsi == mmsi)
    return (
        q.order_by(PositionRecord.timestamp.desc(), PositionRecord.id.desc())
        .limit(limit)
        .all()
    )


@router.get("/history/since", tags=["history"], response_model=list[PositionRecordRead])
def list_history_since(
    since: datetime = Query(..., description="Ingestion timestamp (ISO 8601); naive values are UTC"),
    db: Session = Depends(get_db),
):
    """Every history row ingested at or after *since*, newest first."""
    return (
        db.query(PositionRecord)
        .filter(PositionRecord.created_at >= _naive_utc(since))
        .order_by(PositionRecord.created_at.desc(), PositionRecord.id.desc())
        .all()
    )
