"""Storage-bounded retention for the position history.

Two best-effort steps run on a fixed timer (and once at startup):

1. Age: delete history rows whose ingestion time (``created_at``) is older
   than the retention window.
2. Size: if the measured storage still exceeds the ceiling, delete the
   oldest ``purge_fraction`` of the remaining rows by ingestion time.

A failing step is logged and rolled back; the next scheduled run retries.
"""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable

from sqlalchemy import delete, func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from vesselstream.models.base import utcnow
from vesselstream.models.position_record import PositionRecord

logger = logging.getLogger(__name__)

SIZE_SCOPES = ("database", "history")


def purge_expired(db: Session, hours: float = 48) -> int:
    """Delete history rows ingested more than *hours* ago. Returns count deleted.

    Note: Does NOT commit the transaction. The caller is responsible
    for calling db.commit() when ready.
    """
    cutoff = utcnow() - timedelta(hours=hours)
    result = db.execute(
        delete(PositionRecord)
        .where(PositionRecord.created_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def measure_storage_bytes(db: Session, scope: str = "database") -> int | None:
    """Return the store size in bytes, or None when the dialect cannot report it.

    ``scope="database"`` measures the whole database (all tables and indexes);
    ``scope="history"`` measures only the position history table and its indexes.
    """
    if scope not in SIZE_SCOPES:
        raise ValueError(f"Unknown size scope {scope!r}; expected one of {SIZE_SCOPES}")

    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        if scope == "history":
            sql = text("SELECT pg_total_relation_size('position_history')")
        else:
            sql = text("SELECT pg_database_size(current_database())")
        return int(db.execute(sql).scalar() or 0)
    if dialect == "sqlite":
        # SQLite keeps every table in one file; per-table size needs dbstat, which
        # is not compiled into every build, so both scopes report the file size.
        page_count = db.execute(text("PRAGMA page_count")).scalar() or 0
        page_size = db.execute(text("PRAGMA page_size")).scalar() or 0
        return int(page_count) * int(page_size)
    return None


def purge_oldest_fraction(db: Session, fraction: float = 0.1) -> int:
    """Delete the oldest ceil(fraction × remaining) history rows. Returns count deleted.

    Oldest means earliest ``created_at``, ties broken by ``id``. Does NOT commit.
    """
    remaining = db.execute(select(func.count(PositionRecord.id))).scalar() or 0
    to_delete = math.ceil(fraction * remaining)
    if to_delete <= 0:
        return 0

    oldest_ids = (
        select(PositionRecord.id)
        .order_by(PositionRecord.created_at.asc(), PositionRecord.id.asc())
        .limit(to_delete)
        .scalar_subquery()
    )
    result = db.execute(
        delete(PositionRecord)
        .where(PositionRecord.id.in_(oldest_ids))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


@dataclass
class RetentionReport:
    expired_deleted: int = 0
    storage_bytes: int | None = None
    size_deleted: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "expired_deleted": self.expired_deleted,
            "storage_bytes": self.storage_bytes,
            "size_deleted": self.size_deleted,
            "errors": list(self.errors),
        }


class RetentionManager:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        retention_hours: float = 48,
        max_storage_bytes: int = 70 * 1024 ** 3,
        purge_fraction: float = 0.1,
        size_scope: str = "database",
        measure_size: Callable[[Session], int | None] | None = None,
    ):
        if not 0 < purge_fraction <= 1:
            raise ValueError("purge_fraction must be in (0, 1]")
        if size_scope not in SIZE_SCOPES:
            raise ValueError(f"Unknown size scope {size_scope!r}; expected one of {SIZE_SCOPES}")
        self._session_factory = session_factory
        self.retention_hours = retention_hours
        self.max_storage_bytes = max_storage_bytes
        self.purge_fraction = purge_fraction
        self.size_scope = size_scope
        self._measure_size = measure_size or (lambda db: measure_storage_bytes(db, self.size_scope))
        self.last_report: RetentionReport | None = None

    @classmethod
    def from_settings(cls, settings, session_factory: Callable[[], Session]) -> "RetentionManager":
        return cls(
            session_factory,
            retention_hours=settings.RETENTION_HOURS,
            max_storage_bytes=settings.max_storage_bytes,
            purge_fraction=settings.RETENTION_PURGE_FRACTION,
            size_scope=settings.RETENTION_SIZE_SCOPE,
        )

    def run_once(self) -> RetentionReport:
        report = RetentionReport()
        self._expire_by_age(report)
        self._enforce_size_ceiling(report)
        self.last_report = report
        return report

    def _expire_by_age(self, report: RetentionReport) -> None:
        db = self._session_factory()
        try:
            report.expired_deleted = purge_expired(db, self.retention_hours)
            db.commit()
            logger.info(
                "Retention: deleted %d history rows older than %sh",
                report.expired_deleted, self.retention_hours,
            )
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Retention age cleanup failed: %s", exc)
            report.errors.append(f"age: {exc}")
        finally:
            db.close()

    def _enforce_size_ceiling(self, report: RetentionReport) -> None:
        db = self._session_factory()
        try:
            size = self._measure_size(db)
            report.storage_bytes = size
            if size is None:
                logger.debug("Retention: storage size unavailable on this store, skipping size check")
                return
            if size <= self.max_storage_bytes:
                return

            logger.warning(
                "Retention: storage %.2f GiB exceeds ceiling %.2f GiB, deleting oldest %.0f%% of history",
                size / 1024 ** 3, self.max_storage_bytes / 1024 ** 3, self.purge_fraction * 100,
            )
            report.size_deleted = purge_oldest_fraction(db, self.purge_fraction)
            db.commit()
            logger.warning("Retention: size valve deleted %d history rows", report.size_deleted)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Retention size cleanup failed: %s", exc)
            report.errors.append(f"size: {exc}")
        finally:
            db.close()

    async def run_forever(self, interval_seconds: float) -> None:
        """Run immediately, then every *interval_seconds*, until cancelled."""
        while True:
            try:
                await asyncio.to_thread(self.run_once)
            except Exception as exc:
                logger.error("Retention run failed unexpectedly: %s", exc)
            await asyncio.sleep(interval_seconds)
