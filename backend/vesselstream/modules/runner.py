"""Wiring for the long-running ingestion and retention activities.

Shared by the FastAPI lifespan (in-process ingestion) and the ``stream`` CLI
command. Startup problems (missing API key, bad subscription file, unknown
reconnect mode) raise here; everything after startup is logged and absorbed.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy.orm import Session

from vesselstream.exceptions import FeedUnavailableError
from vesselstream.modules.feed_client import FeedClient, ReconnectPolicy
from vesselstream.modules.ingest import IngestPipeline
from vesselstream.modules.retention import RetentionManager
from vesselstream.modules.sink import DualWriteSink
from vesselstream.modules.subscription import build_subscription
from vesselstream.utils.vessel_filter import VesselFilter

logger = logging.getLogger(__name__)


@dataclass
class IngestService:
    feed: FeedClient
    pipeline: IngestPipeline
    retention: RetentionManager
    retention_interval_seconds: float


def build_service(
    settings: Any,
    session_factory: Callable[[], Session],
    connect: Callable[..., Any] | None = None,
) -> IngestService:
    subscription = build_subscription(settings)
    feed = FeedClient(
        settings.AISSTREAM_WS_URL,
        subscription,
        ReconnectPolicy.from_settings(settings),
        connect=connect,
    )
    vessel_filter = VesselFilter(subscription.ship_types)
    if vessel_filter.active:
        logger.info("Persisting only ship types %s", sorted(vessel_filter.allowed_types))
    pipeline = IngestPipeline(DualWriteSink(session_factory), vessel_filter)
    retention = RetentionManager.from_settings(settings, session_factory)
    return IngestService(
        feed=feed,
        pipeline=pipeline,
        retention=retention,
        retention_interval_seconds=settings.RETENTION_INTERVAL_MINUTES * 60,
    )


async def run_ingestion(service: IngestService, duration_seconds: float | None = None) -> dict:
    """Run the pipeline; a terminal feed failure is reported, not raised."""
    try:
        return await service.pipeline.run(service.feed, duration_seconds=duration_seconds)
    except FeedUnavailableError as exc:
        logger.error("Ingestion stopped: %s", exc)
        return dict(service.pipeline.stats, error=str(exc))


def start_background(service: IngestService) -> list[asyncio.Task]:
    """Start retention (runs immediately) and ingestion as background tasks."""
    return [
        asyncio.create_task(
            service.retention.run_forever(service.retention_interval_seconds), name="retention",
        ),
        asyncio.create_task(run_ingestion(service), name="ingestion"),
    ]


async def stop_background(service: IngestService, tasks: list[asyncio.Task]) -> None:
    """Stop the feed and cancel tasks; an in-flight write completes first."""
    service.feed.stop()
    for task in tasks:
        task.cancel()
    results = await asyncio.gather(*tasks, return_exceptions=True)
    for task, result in zip(tasks, results):
        if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
            logger.error("Background task %s ended with error: %s", task.get_name(), result)


async def run_service(service: IngestService, duration_seconds: float | None = None) -> dict:
    """Foreground mode: ingest until the feed ends, with retention alongside."""
    retention_task = asyncio.create_task(
        service.retention.run_forever(service.retention_interval_seconds), name="retention",
    )
    try:
        return await run_ingestion(service, duration_seconds=duration_seconds)
    finally:
        retention_task.cancel()
        await asyncio.gather(retention_task, return_exceptions=True)
