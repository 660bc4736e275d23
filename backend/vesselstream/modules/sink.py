"""Dual-write sink: append position history and upsert the vessel row.

For a position event the sink performs two independent operations:

1. append one ``PositionRecord`` row;
2. upsert the ``Vessel`` row, overwriting only the position columns.

A static event performs only the upsert, overwriting only the identity
columns it carries. The upsert is a single ``INSERT ... ON CONFLICT DO
UPDATE`` statement so concurrent writers for the same MMSI never interleave
a read-modify-write.

Each operation opens its own short-lived session and commits on its own; a
failure in one is logged and reported in the result, never raised, and does
not prevent the other.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from vesselstream.models.base import utcnow
from vesselstream.models.position_record import PositionRecord
from vesselstream.models.vessel import Vessel
from vesselstream.modules.classifier import AISEvent, PositionEvent, StaticEvent

logger = logging.getLogger(__name__)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def synthesize_vessel_name(mmsi: str) -> str:
    return f"Vessel {mmsi}"


@dataclass
class WriteResult:
    history_appended: bool = False
    vessel_upserted: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def append_history(db: Session, event: PositionEvent) -> PositionRecord:
    """Add one history row for *event*. Does NOT commit."""
    record = PositionRecord(
        mmsi=event.mmsi,
        vessel_name=event.vessel_name,
        latitude=event.latitude,
        longitude=event.longitude,
        speed=event.speed,
        heading=event.heading,
        course=event.course,
        nav_status=event.nav_status,
        timestamp=event.timestamp,
        message_type=event.message_type,
        created_at=utcnow(),
    )
    db.add(record)
    return record


def upsert_vessel(db: Session, mmsi: str, fields: dict[str, Any], name: str | None = None) -> None:
    """Insert or merge the vessel row for *mmsi* in one statement. Does NOT commit.

    On insert the row receives *fields* plus a display name (*name*, or one
    synthesised from the MMSI). On conflict exactly the keys of *fields* and
    ``updated_at`` are overwritten; every other column keeps its value.
    """
    dialect = db.get_bind().dialect.name
    insert = _INSERT_BY_DIALECT.get(dialect)
    if insert is None:
        raise NotImplementedError(f"Vessel upsert not supported on dialect {dialect!r}")

    now = utcnow()
    values = dict(fields)
    values["mmsi"] = mmsi
    values["updated_at"] = now
    values.setdefault("name", name or synthesize_vessel_name(mmsi))

    stmt = insert(Vessel).values(**values)
    update_cols = {key: stmt.excluded[key] for key in fields}
    update_cols["updated_at"] = stmt.excluded.updated_at
    stmt = stmt.on_conflict_do_update(index_elements=[Vessel.mmsi], set_=update_cols)
    db.execute(stmt)


class DualWriteSink:
    """Persist normalized events. Safe to call from a worker thread."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def write(self, event: AISEvent) -> WriteResult:
        result = WriteResult()
        if isinstance(event, PositionEvent):
            result.history_appended = self._run(
                "history append", event.mmsi, result,
                lambda db: append_history(db, event),
            )
            result.vessel_upserted = self._run(
                "vessel position upsert", event.mmsi, result,
                lambda db: upsert_vessel(db, event.mmsi, event.vessel_fields(), name=event.vessel_name),
            )
        elif isinstance(event, StaticEvent):
            result.vessel_upserted = self._run(
                "vessel static upsert", event.mmsi, result,
                lambda db: upsert_vessel(db, event.mmsi, event.vessel_fields()),
            )
        return result

    def _run(self, op: str, mmsi: str, result: WriteResult, fn: Callable[[Session], Any]) -> bool:
        db = self._session_factory()
        try:
            fn(db)
            db.commit()
            return True
        except (SQLAlchemyError, NotImplementedError) as exc:
            db.rollback()
            logger.error("%s failed for MMSI %s: %s", op, mmsi, exc)
            result.errors.append(f"{op}: {exc}")
            return False
        finally:
            db.close()
