"""Subscription directive sent as the first frame of every feed connection.

The aisstream.io subscription carries the API key, the bounding regions and
optional message-type / ship-type / MMSI filters. Defaults subscribe to the
whole world for every position and static message kind we classify.

Usage:
    from vesselstream.modules.subscription import build_subscription
    subscription = build_subscription(settings)
    await ws.send(json.dumps(subscription.to_wire()))
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from vesselstream.exceptions import MissingCredentialsError
from vesselstream.models.base import MessageKindEnum

logger = logging.getLogger(__name__)

WORLD_BOUNDING_BOX: list[list[float]] = [[-90.0, -180.0], [90.0, 180.0]]

DEFAULT_MESSAGE_TYPES: list[str] = [kind.value for kind in MessageKindEnum]

# The free tier silently throttles PositionReport delivery when too many
# bounding boxes are subscribed.
MAX_BOUNDING_BOXES = 10


@dataclass
class Subscription:
    api_key: str
    bounding_boxes: list[list[list[float]]] = field(default_factory=lambda: [WORLD_BOUNDING_BOX])
    message_types: list[str] = field(default_factory=lambda: list(DEFAULT_MESSAGE_TYPES))
    ship_types: list[int] = field(default_factory=list)
    mmsi_filter: list[str] = field(default_factory=list)

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON-ready subscription frame."""
        frame: dict[str, Any] = {
            "APIKey": self.api_key,
            "BoundingBoxes": self.bounding_boxes,
            "FilterMessageTypes": self.message_types,
        }
        if self.mmsi_filter:
            frame["FiltersShipMMSI"] = self.mmsi_filter
        if self.ship_types:
            frame["FilterShipTypes"] = self.ship_types
        return frame


def validate_bounding_box(box: Any) -> list[list[float]]:
    """Validate one ``[[lat, lon], [lat, lon]]`` box and return it as floats."""
    try:
        (lat1, lon1), (lat2, lon2) = box
        coords = [[float(lat1), float(lon1)], [float(lat2), float(lon2)]]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Bounding box must be [[lat, lon], [lat, lon]], got {box!r}") from exc
    for lat, lon in coords:
        if not (-90 <= lat <= 90) or not (-180 <= lon <= 180):
            raise ValueError(f"Bounding box corner out of range: {[lat, lon]}")
    return coords


def _box_area(box: list[list[float]]) -> float:
    """Return the approximate area of a bounding box in square degrees."""
    return abs(box[1][0] - box[0][0]) * abs(box[1][1] - box[0][1])


def _union(a: list[list[float]], b: list[list[float]]) -> list[list[float]]:
    return [
        [min(a[0][0], b[0][0]), min(a[0][1], b[0][1])],
        [max(a[1][0], b[1][0]), max(a[1][1], b[1][1])],
    ]


def _center(box: list[list[float]]) -> tuple[float, float]:
    return (box[0][0] + box[1][0]) / 2, (box[0][1] + box[1][1]) / 2


def merge_bounding_boxes(
    boxes: list[list[list[float]]],
    max_boxes: int = MAX_BOUNDING_BOXES,
) -> list[list[list[float]]]:
    """Merge boxes into at most *max_boxes* by repeatedly unioning the closest pair.

    Boxes are normalised to [[lat_min, lon_min], [lat_max, lon_max]] first.
    """
    merged = [
        [[min(b[0][0], b[1][0]), min(b[0][1], b[1][1])],
         [max(b[0][0], b[1][0]), max(b[0][1], b[1][1])]]
        for b in boxes
    ]
    if len(merged) <= max_boxes:
        return merged

    while len(merged) > max_boxes:
        best_i, best_j = -1, -1
        best_dist = float("inf")
        for i in range(len(merged)):
            ci_lat, ci_lon = _center(merged[i])
            for j in range(i + 1, len(merged)):
                cj_lat, cj_lon = _center(merged[j])
                d = (ci_lat - cj_lat) ** 2 + (ci_lon - cj_lon) ** 2
                if d < best_dist:
                    best_dist = d
                    best_i, best_j = i, j

        merged[best_i] = _union(merged[best_i], merged[best_j])
        merged.pop(best_j)

    logger.info(
        "Merged %d bounding boxes into %d regional boxes (%.0f sq deg total)",
        len(boxes), len(merged), sum(_box_area(b) for b in merged),
    )
    return merged


def load_subscription_file(path: str | Path) -> dict[str, Any]:
    """Load the optional YAML subscription overrides. Missing file -> {}."""
    config_path = Path(path)
    if not config_path.exists():
        logger.debug("Subscription config %s not found, using defaults", config_path)
        return {}
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{config_path} must contain a mapping, got {type(data).__name__}")
    return data


def build_subscription(settings: Any, overrides: dict[str, Any] | None = None) -> Subscription:
    """Build the subscription directive from settings and the optional YAML file.

    Raises MissingCredentialsError when no API key is configured, ValueError on
    malformed bounding boxes.
    """
    if not settings.AISSTREAM_API_KEY:
        raise MissingCredentialsError("AISSTREAM_API_KEY is required to subscribe to the feed")

    if overrides is None:
        overrides = load_subscription_file(settings.SUBSCRIPTION_CONFIG)

    raw_boxes = overrides.get("bounding_boxes") or [WORLD_BOUNDING_BOX]
    boxes = merge_bounding_boxes([validate_bounding_box(b) for b in raw_boxes])

    message_types = overrides.get("message_types") or list(DEFAULT_MESSAGE_TYPES)
    ship_types = sorted(
        {int(c) for c in overrides.get("ship_types") or []} | settings.ship_type_codes
    )
    mmsi_filter = [str(m) for m in overrides.get("mmsi") or []]

    return Subscription(
        api_key=settings.AISSTREAM_API_KEY,
        bounding_boxes=boxes,
        message_types=[str(t) for t in message_types],
        ship_types=ship_types,
        mmsi_filter=mmsi_filter,
    )
