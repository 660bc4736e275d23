"""Shared test fixtures: in-memory SQLite store, AIS frame builders, API client."""
import json
import os

# Must be set before vesselstream.config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["INGEST_ON_STARTUP"] = "false"
os.environ["DB_BOOTSTRAP_DELAY_SECONDS"] = "0"
os.environ["RATE_LIMIT"] = "30/minute"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vesselstream.models import Base  # noqa: F401 -- registers all models


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Rate-limit counters are process-wide; start every test with a clean slate."""
    from vesselstream.main import limiter

    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def api_client(session_factory):
    """TestClient with the DB dependency pointed at the per-test SQLite store."""
    from vesselstream.database import get_db
    from vesselstream.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def position_frame():
    """Build an aisstream.io PositionReport frame as a JSON string."""
    def _build(
        mmsi="241234567",
        lat=55.0,
        lon=12.0,
        kind="PositionReport",
        ship_name="NORDIC STAR",
        time_utc="2025-06-01 12:00:00.123456789 +0000 UTC",
        **report_fields,
    ):
        meta = {"time_utc": time_utc, "ShipName": ship_name}
        if mmsi is not None:
            meta["MMSI"] = mmsi
        if lat is not None:
            meta["latitude"] = lat
        if lon is not None:
            meta["longitude"] = lon
        report = {"Sog": 10.5, "Cog": 180.0, "TrueHeading": 179, "NavigationalStatus": 0}
        report.update(report_fields)
        return json.dumps({"MessageType": kind, "MetaData": meta, "Message": {kind: report}})
    return _build


@pytest.fixture
def static_frame():
    """Build an aisstream.io ShipStaticData frame as a JSON string."""
    def _build(mmsi="241234567", **static_fields):
        static = {
            "Name": "NORDIC STAR         ",
            "CallSign": "SVAB1",
            "ImoNumber": 9321483,
            "Type": 80,
            "Dimension": {"A": 150, "B": 33, "C": 16, "D": 16},
            "Destination": "ROTTERDAM",
            "MaximumStaticDraught": 11.2,
        }
        static.update(static_fields)
        meta = {"time_utc": "2025-06-01 12:00:00 +0000 UTC", "ShipName": "NORDIC STAR"}
        if mmsi is not None:
            meta["MMSI"] = mmsi
        return json.dumps({"MessageType": "ShipStaticData", "MetaData": meta, "Message": {"ShipStaticData": static}})
    return _build
