import logging
import time
from typing import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from vesselstream.config import settings
from vesselstream.exceptions import StoreBootstrapError

logger = logging.getLogger(__name__)

_engine_kwargs: dict = {"pool_pre_ping": True}
if "sqlite" in settings.DATABASE_URL:
    _engine_kwargs["connect_args"] = {"check_same_thread": False}
    if ":memory:" in settings.DATABASE_URL or settings.DATABASE_URL == "sqlite://":
        # One shared connection so worker threads see the same in-memory database
        _engine_kwargs["poolclass"] = StaticPool
else:
    _engine_kwargs["pool_size"] = settings.DB_POOL_SIZE
    _engine_kwargs["max_overflow"] = settings.DB_MAX_OVERFLOW
engine = create_engine(settings.DATABASE_URL, **_engine_kwargs)

if "sqlite" in settings.DATABASE_URL:
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(attempts: int | None = None, delay_seconds: float | None = None) -> None:
    """Create all tables, retrying while the store is unreachable.

    Raises StoreBootstrapError once *attempts* connection attempts have failed.
    Table creation is idempotent, so this is safe on every process start.
    """
    from vesselstream.models import Base  # noqa: F401 -- ensure all models are registered

    if attempts is None:
        attempts = settings.DB_BOOTSTRAP_ATTEMPTS
    if delay_seconds is None:
        delay_seconds = settings.DB_BOOTSTRAP_DELAY_SECONDS

    last_exc: Exception | None = None
    for attempt in range(1, max(attempts, 1) + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            Base.metadata.create_all(bind=engine)
            logger.info("Database schema ready (%s)", engine.dialect.name)
            return
        except OperationalError as exc:
            last_exc = exc
            logger.warning(
                "Database unreachable (attempt %d/%d): %s", attempt, attempts, exc.orig or exc,
            )
            if attempt < attempts:
                time.sleep(delay_seconds)

    raise StoreBootstrapError(f"Database unreachable after {attempts} attempts: {last_exc}")
