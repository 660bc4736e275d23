"""aisstream.io WebSocket feed client with an explicit reconnection state machine.

States move Disconnected -> Connecting -> Subscribed -> Streaming. Any
transport close or error returns to Disconnected and schedules exactly one
reconnection attempt according to the ``ReconnectPolicy``. Frames in flight
at disconnect are lost; nothing is buffered across connections.

Usage:
    feed = FeedClient(settings.AISSTREAM_WS_URL, subscription, ReconnectPolicy.from_settings(settings))
    async for raw in feed.messages():
        ...
"""
from __future__ import annotations

import asyncio
import enum
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Callable

import websockets

from vesselstream.exceptions import FeedUnavailableError
from vesselstream.models.base import utcnow
from vesselstream.modules.subscription import Subscription

logger = logging.getLogger(__name__)

# Transport-level failures that trigger reconnection. asyncio.TimeoutError is
# only an OSError from Python 3.11 on; websockets raises it for handshake timeouts.
TRANSPORT_ERRORS = (
    websockets.ConnectionClosed,
    websockets.WebSocketException,
    OSError,
    asyncio.TimeoutError,
)


def rejection_reason(raw: Any) -> str | None:
    """Return the server's error text if *raw* is an error frame, else None.

    aisstream.io answers a bad API key or malformed subscription with
    ``{"error": "..."}`` and then closes the connection.
    """
    if isinstance(raw, bytes):
        if b'"error"' not in raw:
            return None
    elif not isinstance(raw, str) or '"error"' not in raw:
        return None
    try:
        msg = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if isinstance(msg, dict) and "error" in msg and "MessageType" not in msg:
        return str(msg["error"])
    return None


class FeedState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    STREAMING = "streaming"


@dataclass(frozen=True)
class ReconnectPolicy:
    """When to retry after the feed drops.

    ``max_attempts=None`` retries forever. With a cap, the delay before
    attempt N is ``delay_seconds * backoff_factor ** (N - 1)`` (bounded by
    ``max_delay_seconds``) and exhaustion is terminal.
    """
    delay_seconds: float = 5.0
    max_attempts: int | None = None
    backoff_factor: float = 1.0
    max_delay_seconds: float = 300.0

    def delay_for(self, attempt: int) -> float | None:
        """Delay before reconnection attempt *attempt* (1-based), or None if exhausted."""
        if self.max_attempts is not None and attempt > self.max_attempts:
            return None
        delay = self.delay_seconds * self.backoff_factor ** max(attempt - 1, 0)
        return max(0.0, min(delay, self.max_delay_seconds))

    @classmethod
    def immediate(cls) -> "ReconnectPolicy":
        return cls(delay_seconds=0.0)

    @classmethod
    def bounded(cls, delay_seconds: float, max_attempts: int, backoff_factor: float = 1.0) -> "ReconnectPolicy":
        return cls(delay_seconds=delay_seconds, max_attempts=max_attempts, backoff_factor=backoff_factor)

    @classmethod
    def from_settings(cls, settings: Any) -> "ReconnectPolicy":
        mode = settings.RECONNECT_MODE.strip().lower()
        if mode == "immediate":
            return cls.immediate()
        if mode == "fixed":
            return cls(delay_seconds=settings.RECONNECT_DELAY_SECONDS)
        if mode == "bounded":
            return cls.bounded(
                settings.RECONNECT_DELAY_SECONDS,
                settings.RECONNECT_MAX_ATTEMPTS,
                settings.RECONNECT_BACKOFF_FACTOR,
            )
        raise ValueError(f"Unknown RECONNECT_MODE {settings.RECONNECT_MODE!r} (immediate, fixed, bounded)")


StateListener = Callable[[FeedState, FeedState], None]


class FeedClient:
    """Owns the feed connection, its state and its reconnection schedule."""

    def __init__(
        self,
        url: str,
        subscription: Subscription,
        policy: ReconnectPolicy | None = None,
        connect: Callable[..., Any] | None = None,
        on_state_change: StateListener | None = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.url = url
        self.subscription = subscription
        self.policy = policy or ReconnectPolicy()
        self._connect = connect or websockets.connect
        self._listeners: list[StateListener] = [on_state_change] if on_state_change else []
        self._sleep = sleep
        self._state = FeedState.DISCONNECTED
        self._stopping = False
        self.reconnect_attempts = 0
        self.connections = 0
        self.messages_received = 0
        self.last_message_at: datetime | None = None
        self.last_error: str | None = None
        self.state_changed_at = time.monotonic()

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state in (FeedState.SUBSCRIBED, FeedState.STREAMING)

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def stop(self) -> None:
        """Finish the message stream after the frame currently being handled."""
        self._stopping = True

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "connected": self.connected,
            "reconnect_attempts": self.reconnect_attempts,
            "connections": self.connections,
            "messages_received": self.messages_received,
            "last_message_at": self.last_message_at.isoformat() if self.last_message_at else None,
            "last_error": self.last_error,
        }

    def _transition(self, new: FeedState) -> None:
        old = self._state
        if old is new:
            return
        self._state = new
        self.state_changed_at = time.monotonic()
        logger.info("Feed %s -> %s", old.value, new.value)
        for listener in self._listeners:
            try:
                listener(old, new)
            except Exception as exc:
                logger.warning("Feed state listener failed: %s", exc)

    async def messages(self) -> AsyncIterator[str | bytes]:
        """Yield raw frames forever, reconnecting per the policy.

        Raises FeedUnavailableError once a bounded policy is exhausted.
        """
        self._stopping = False
        while not self._stopping:
            self._transition(FeedState.CONNECTING)
            rejected = False
            try:
                async with self._connect(self.url) as ws:
                    await ws.send(json.dumps(self.subscription.to_wire()))
                    self.connections += 1
                    self._transition(FeedState.SUBSCRIBED)
                    logger.info(
                        "Subscribed to %s: %d bounding boxes, types %s",
                        self.url,
                        len(self.subscription.bounding_boxes),
                        ",".join(self.subscription.message_types),
                    )

                    async for raw in ws:
                        reason = rejection_reason(raw)
                        if reason is not None:
                            rejected = True
                            self.last_error = f"subscription rejected: {reason}"
                            logger.error("Feed %s", self.last_error)
                            break
                        # Only a delivered report proves the subscription works
                        self.reconnect_attempts = 0
                        self._transition(FeedState.STREAMING)
                        self.messages_received += 1
                        self.last_message_at = utcnow()
                        yield raw
                        if self._stopping:
                            break
                if not self._stopping and not rejected:
                    self.last_error = "connection closed by server"
                    logger.warning("Feed connection closed by server")
            except TRANSPORT_ERRORS as exc:
                self.last_error = f"{type(exc).__name__}: {exc}"
                logger.warning("Feed connection lost: %s", self.last_error)

            self._transition(FeedState.DISCONNECTED)
            if self._stopping:
                break

            self.reconnect_attempts += 1
            delay = self.policy.delay_for(self.reconnect_attempts)
            if delay is None:
                attempts = self.reconnect_attempts - 1
                logger.error(
                    "Feed unavailable: giving up after %d reconnection attempts (%s)",
                    attempts, self.last_error,
                )
                raise FeedUnavailableError(attempts, self.last_error)

            limit = self.policy.max_attempts
            logger.warning(
                "Reconnecting to feed in %.1fs (attempt %d/%s)",
                delay, self.reconnect_attempts, limit if limit is not None else "unlimited",
            )
            await self._sleep(delay)
