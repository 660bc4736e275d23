"""Tests for history retention: age window and the storage size valve."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from vesselstream.models.base import utcnow
from vesselstream.models.position_record import PositionRecord
from vesselstream.models.vessel import Vessel
from vesselstream.modules.retention import (
    RetentionManager,
    measure_storage_bytes,
    purge_expired,
    purge_oldest_fraction,
)


def _add_rows(db, created_ats, mmsi="X1"):
    for created_at in created_ats:
        db.add(PositionRecord(
            mmsi=mmsi, latitude=10.0, longitude=20.0,
            timestamp=datetime(2025, 6, 1), message_type="PositionReport",
            created_at=created_at,
        ))
    db.commit()


def _created_ats(db):
    db.expire_all()
    return sorted(r.created_at for r in db.query(PositionRecord).all())


class TestPurgeExpired:
    def test_deletes_only_rows_outside_window(self, db):
        now = utcnow()
        _add_rows(db, [now - timedelta(hours=72), now - timedelta(hours=1)])

        deleted = purge_expired(db, hours=48)
        db.commit()

        assert deleted == 1
        remaining = _created_ats(db)
        assert len(remaining) == 1
        assert remaining[0] > now - timedelta(hours=2)

    def test_nothing_to_delete(self, db):
        _add_rows(db, [utcnow()])
        assert purge_expired(db, hours=48) == 0

    def test_does_not_touch_vessels(self, db):
        db.add(Vessel(mmsi="X1", name="Vessel X1", updated_at=utcnow() - timedelta(days=30)))
        _add_rows(db, [utcnow() - timedelta(hours=100)])

        purge_expired(db, hours=48)
        db.commit()

        assert db.query(Vessel).count() == 1


class TestPurgeOldestFraction:
    def test_deletes_ceiling_of_fraction(self, db):
        base = utcnow() - timedelta(hours=10)
        _add_rows(db, [base + timedelta(minutes=i) for i in range(25)])

        deleted = purge_oldest_fraction(db, 0.1)
        db.commit()

        assert deleted == 3
        remaining = _created_ats(db)
        assert len(remaining) == 22
        assert remaining[0] == base + timedelta(minutes=3)

    def test_single_row_is_deleted(self, db):
        _add_rows(db, [utcnow()])
        assert purge_oldest_fraction(db, 0.1) == 1

    def test_empty_history(self, db):
        assert purge_oldest_fraction(db, 0.1) == 0


class TestMeasureStorage:
    def test_sqlite_reports_page_bytes(self, db):
        assert measure_storage_bytes(db) > 0
        assert measure_storage_bytes(db, "history") > 0

    def test_unknown_scope(self, db):
        with pytest.raises(ValueError):
            measure_storage_bytes(db, "tables")

    def test_unknown_dialect_reports_none(self):
        session = MagicMock()
        session.get_bind.return_value.dialect.name = "mysql"
        assert measure_storage_bytes(session) is None


class TestRetentionManager:
    def test_rejects_bad_arguments(self, session_factory):
        with pytest.raises(ValueError):
            RetentionManager(session_factory, purge_fraction=0)
        with pytest.raises(ValueError):
            RetentionManager(session_factory, size_scope="everything")

    def test_age_step_only_when_under_ceiling(self, session_factory, db):
        now = utcnow()
        _add_rows(db, [now - timedelta(hours=72), now - timedelta(hours=1)])
        manager = RetentionManager(session_factory, retention_hours=48, measure_size=lambda _db: 1024)

        report = manager.run_once()

        assert report.expired_deleted == 1
        assert report.size_deleted == 0
        assert report.storage_bytes == 1024
        assert report.errors == []
        assert manager.last_report is report
        assert len(_created_ats(db)) == 1

    def test_size_valve_runs_after_age_step(self, session_factory, db):
        now = utcnow()
        _add_rows(db, [now - timedelta(hours=100)] * 5)
        _add_rows(db, [now - timedelta(minutes=30 - i) for i in range(25)])
        manager = RetentionManager(
            session_factory, retention_hours=48, max_storage_bytes=100,
            purge_fraction=0.1, measure_size=lambda _db: 101,
        )

        report = manager.run_once()

        assert report.expired_deleted == 5
        assert report.size_deleted == 3
        assert len(_created_ats(db)) == 22

    def test_size_at_ceiling_is_not_over(self, session_factory, db):
        _add_rows(db, [utcnow()] * 10)
        manager = RetentionManager(session_factory, max_storage_bytes=100, measure_size=lambda _db: 100)
        assert manager.run_once().size_deleted == 0

    def test_unmeasurable_store_skips_size_step(self, session_factory, db):
        _add_rows(db, [utcnow()] * 10)
        manager = RetentionManager(session_factory, max_storage_bytes=0, measure_size=lambda _db: None)

        report = manager.run_once()

        assert report.storage_bytes is None
        assert report.size_deleted == 0
        assert report.errors == []

    def test_failed_age_step_still_checks_size(self, session_factory, db):
        _add_rows(db, [utcnow()] * 10)
        calls = {"n": 0}

        def flaky_factory():
            session = session_factory()
            calls["n"] += 1
            if calls["n"] == 1:
                session.execute = MagicMock(side_effect=OperationalError("DELETE", {}, Exception("locked")))
            return session

        manager = RetentionManager(flaky_factory, max_storage_bytes=0, measure_size=lambda _db: 1)
        report = manager.run_once()

        assert len(report.errors) == 1
        assert report.errors[0].startswith("age:")
        assert report.size_deleted == 1

    def test_from_settings(self, session_factory):
        settings = MagicMock(
            RETENTION_HOURS=12, max_storage_bytes=5000,
            RETENTION_PURGE_FRACTION=0.25, RETENTION_SIZE_SCOPE="history",
        )
        manager = RetentionManager.from_settings(settings, session_factory)
        assert manager.retention_hours == 12
        assert manager.max_storage_bytes == 5000
        assert manager.purge_fraction == 0.25
        assert manager.size_scope == "history"

    def test_run_forever_runs_immediately_and_survives_errors(self, session_factory):
        manager = RetentionManager(session_factory)
        calls = []

        def run_once():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")

        manager.run_once = run_once

        async def scenario():
            task = asyncio.create_task(manager.run_forever(0))
            while len(calls) < 2:
                await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())
        assert len(calls) >= 2
