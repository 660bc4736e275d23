"""Ingestion pipeline: feed frames -> classifier -> dual-write sink.

Frames are processed strictly one at a time: a message is classified and both
writes are attempted before the next frame is taken off the feed, which keeps
per-MMSI write order without any locking. Blocking store calls run in a worker
thread so the event loop keeps serving the feed and the query surface.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from vesselstream.modules.classifier import PositionEvent, StaticEvent, Unrecognized, classify
from vesselstream.modules.feed_client import FeedClient
from vesselstream.modules.sink import DualWriteSink, WriteResult
from vesselstream.utils.vessel_filter import VesselFilter

logger = logging.getLogger(__name__)

# Log a throughput line every N frames
_PROGRESS_EVERY = 10_000


class IngestPipeline:
    def __init__(self, sink: DualWriteSink, vessel_filter: VesselFilter | None = None):
        self.sink = sink
        self.vessel_filter = vessel_filter or VesselFilter()
        self.stats: dict[str, int] = {
            "messages_received": 0,
            "position_reports": 0,
            "static_reports": 0,
            "dropped": 0,
            "filtered": 0,
            "history_appended": 0,
            "vessels_upserted": 0,
            "write_errors": 0,
        }

    async def process(self, raw: Any) -> WriteResult | None:
        """Classify and persist one frame. Returns None when the frame is dropped."""
        self.stats["messages_received"] += 1
        event = classify(raw)

        if isinstance(event, Unrecognized):
            self.stats["dropped"] += 1
            logger.debug("Dropped %s frame: %s", event.kind or "unknown", event.reason)
            return None
        if not self.vessel_filter.admits(event):
            self.stats["filtered"] += 1
            return None

        if isinstance(event, PositionEvent):
            self.stats["position_reports"] += 1
        elif isinstance(event, StaticEvent):
            self.stats["static_reports"] += 1

        write = asyncio.ensure_future(asyncio.to_thread(self.sink.write, event))
        try:
            result = await asyncio.shield(write)
        except asyncio.CancelledError:
            # Let the in-flight write land before honouring shutdown
            await write
            raise
        except Exception as exc:
            logger.error("Unexpected error persisting %s for MMSI %s: %s", type(event).__name__, event.mmsi, exc)
            self.stats["write_errors"] += 1
            return WriteResult(errors=[str(exc)])

        self.stats["history_appended"] += int(result.history_appended)
        self.stats["vessels_upserted"] += int(result.vessel_upserted)
        self.stats["write_errors"] += len(result.errors)
        return result

    async def run(self, feed: FeedClient, duration_seconds: float | None = None) -> dict[str, int]:
        """Consume *feed* until it ends, is stopped, or *duration_seconds* elapse.

        The duration is enforced even while the feed is down or silent. Only
        FeedUnavailableError (bounded reconnection exhausted) escapes.
        """
        if duration_seconds:
            try:
                await asyncio.wait_for(self._consume(feed), timeout=duration_seconds)
            except asyncio.TimeoutError:
                feed.stop()
                logger.info("Ingestion duration of %ss reached", duration_seconds)
        else:
            await self._consume(feed)

        logger.info("Ingestion finished: %s", self.stats)
        return self.stats

    async def _consume(self, feed: FeedClient) -> None:
        async for raw in feed.messages():
            await self.process(raw)
            if self.stats["messages_received"] % _PROGRESS_EVERY == 0:
                logger.info(
                    "Ingested %d frames: %d positions, %d static, %d dropped, %d write errors",
                    self.stats["messages_received"],
                    self.stats["position_reports"],
                    self.stats["static_reports"],
                    self.stats["dropped"],
                    self.stats["write_errors"],
                )
