import logging
import sys
import time
import traceback
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from vesselstream.api.routes import router
from vesselstream.config import settings
from vesselstream.database import SessionLocal, get_db, init_db
from vesselstream.exceptions import MissingCredentialsError, StoreBootstrapError

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Bootstrap the schema, then run ingestion and retention in-process."""
    from vesselstream.modules.runner import build_service, start_background, stop_background

    try:
        init_db()
    except StoreBootstrapError as exc:
        logger.critical("FATAL: %s", exc)
        sys.exit(1)

    app.state.ingest = None
    tasks = []
    if settings.INGEST_ON_STARTUP:
        try:
            service = build_service(settings, SessionLocal)
        except (MissingCredentialsError, ValueError) as exc:
            logger.critical("FATAL: cannot start ingestion: %s", exc)
            sys.exit(1)
        app.state.ingest = service
        tasks = start_background(service)
        logger.info("Ingestion and retention started")
    else:
        logger.info("INGEST_ON_STARTUP disabled: serving queries only")

    yield

    if app.state.ingest is not None:
        logger.info("Shutting down ingestion...")
        await stop_background(app.state.ingest, tasks)


app = FastAPI(
    title="vesselstream",
    description="Live AIS vessel positions and history, ingested from a streaming feed.",
    version=VERSION,
    lifespan=lifespan,
)

# CORS: origins from settings (supports comma-separated env var)
cors_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)

# Rate limiting: applied to every route by the middleware
limiter = Limiter(key_func=get_remote_address, default_limits=[settings.RATE_LIMIT])
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.include_router(router, prefix="/api/v1")


# ── Structured error handlers ─────────────────────────────────────────────────

@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=422, content={"error": "Validation error", "detail": str(exc)})


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Store error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": f"Database error: {type(exc).__name__}"},
    )


@app.exception_handler(Exception)
async def general_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception on %s %s:\n%s", request.method, request.url.path, traceback.format_exc())
    return JSONResponse(status_code=500, content={"error": "Internal server error", "detail": "An unexpected error occurred."})


@app.get("/health", tags=["system"])
def health(request: Request, db: Session = Depends(get_db)) -> dict:
    """Feed connectivity plus database reachability and latency."""
    service = getattr(request.app.state, "ingest", None)
    if service is not None:
        feed = service.feed.snapshot()
        feed["pipeline"] = dict(service.pipeline.stats)
        last = service.retention.last_report
        feed["retention"] = last.as_dict() if last else None
    else:
        feed = {"state": "disabled", "connected": False}

    t0 = time.time()
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except SQLAlchemyError as e:
        db_status = f"error: {type(e).__name__}"
    latency_ms = round((time.time() - t0) * 1000, 1)

    healthy = db_status == "ok" and (service is None or feed["connected"])
    return {
        "status": "ok" if healthy else "degraded",
        "version": VERSION,
        "feed": feed,
        "database": {"status": db_status, "latency_ms": latency_ms},
    }
