"""AIS message classification and normalization.

Every raw frame from the feed decodes into exactly one of three variants:

- ``PositionEvent``: a valid position report (Class A or Class B);
- ``StaticEvent``: a valid ShipStaticData identity report;
- ``Unrecognized``: anything else (bad JSON, unknown kind, missing MMSI or
  coordinates). These are dropped by the pipeline.

``classify`` never raises; a malformed frame must not abort the stream.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

from vesselstream.models.base import POSITION_KINDS, STATIC_KINDS, utcnow

logger = logging.getLogger(__name__)

# AIS navigational status 15 = "not defined"
NAV_STATUS_UNKNOWN = "15"

# aisstream.io time_utc: "2024-05-01 12:34:56.123456789 +0000 UTC"
_AISSTREAM_TS = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[ T](\d{2}:\d{2}:\d{2})(?:\.(\d+))?\s*([+-]\d{4})?(?:\s+UTC)?$"
)


@dataclass(frozen=True)
class PositionEvent:
    """Normalized position report: one history row plus a vessel position update."""
    mmsi: str
    latitude: float
    longitude: float
    timestamp: datetime
    message_type: str
    vessel_name: str | None = None
    speed: float = 0.0
    heading: float = 0.0
    course: float = 0.0
    nav_status: str = NAV_STATUS_UNKNOWN

    def vessel_fields(self) -> dict[str, Any]:
        """Projection onto the vessels table (position columns only)."""
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "speed": self.speed,
            "heading": self.heading,
            "course": self.course,
            "last_position_at": self.timestamp,
        }


@dataclass(frozen=True)
class StaticEvent:
    """Normalized static/identity report. ``None`` means "not carried"."""
    mmsi: str
    name: str | None = None
    call_sign: str | None = None
    imo: str | None = None
    ship_type: int | None = None
    length: float | None = None
    width: float | None = None
    destination: str | None = None
    draught: float | None = None
    flag: str | None = None

    def vessel_fields(self) -> dict[str, Any]:
        """Projection onto the vessels table: only the identity fields present."""
        fields = {
            "name": self.name,
            "call_sign": self.call_sign,
            "imo": self.imo,
            "ship_type": self.ship_type,
            "length": self.length,
            "width": self.width,
            "destination": self.destination,
            "draught": self.draught,
            "flag": self.flag,
        }
        return {k: v for k, v in fields.items() if v is not None}


@dataclass(frozen=True)
class Unrecognized:
    kind: str | None
    reason: str
    detail: dict[str, Any] = field(default_factory=dict, compare=False)


AISEvent = Union[PositionEvent, StaticEvent, Unrecognized]


def classify(raw: str | bytes | dict) -> AISEvent:
    """Decode one raw feed frame into a PositionEvent, StaticEvent or Unrecognized."""
    if isinstance(raw, dict):
        msg = raw
    else:
        try:
            msg = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as exc:
            return Unrecognized(None, f"invalid JSON: {exc}")

    if not isinstance(msg, dict):
        return Unrecognized(None, "frame is not a JSON object")

    kind = msg.get("MessageType")
    if not isinstance(kind, str):
        return Unrecognized(None, "missing MessageType")

    try:
        if kind in POSITION_KINDS:
            return _normalize_position(msg, kind)
        if kind in STATIC_KINDS:
            return _normalize_static(msg, kind)
    except (TypeError, ValueError, AttributeError, OverflowError) as exc:
        logger.debug("Failed to normalize %s: %s", kind, exc)
        return Unrecognized(kind, f"malformed payload: {exc}")
    return Unrecognized(kind, "unsupported message type")


def _payload(msg: dict, kind: str) -> dict:
    message = msg.get("Message") or {}
    body = message.get(kind) if isinstance(message, dict) else None
    return body if isinstance(body, dict) else {}


def _metadata(msg: dict) -> dict:
    meta = msg.get("MetaData") or {}
    return meta if isinstance(meta, dict) else {}


def _mmsi(meta: dict, payload: dict) -> str | None:
    raw = meta.get("MMSI")
    if raw is None:
        raw = payload.get("UserID")
    if raw is None:
        return None
    mmsi = str(raw).strip()
    return mmsi or None


def _first_present(*values: Any) -> Any:
    for v in values:
        if v is not None:
            return v
    return None


def _number(value: Any, default: float | None = None) -> float | None:
    if value is None or isinstance(value, bool):
        return default
    return float(value)


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip().strip("@").strip()
    return text or None


def _normalize_position(msg: dict, kind: str) -> AISEvent:
    meta = _metadata(msg)
    report = _payload(msg, kind)

    mmsi = _mmsi(meta, report)
    if mmsi is None:
        logger.debug("Dropping %s without MMSI", kind)
        return Unrecognized(kind, "missing MMSI")

    lat = _number(_first_present(meta.get("latitude"), report.get("Latitude")))
    lon = _number(_first_present(meta.get("longitude"), report.get("Longitude")))
    if lat is None or lon is None:
        logger.debug("Dropping %s for %s without coordinates", kind, mmsi)
        return Unrecognized(kind, "missing coordinates", {"mmsi": mmsi})
    # 91 / 181 are the AIS "not available" markers
    if not (-90 <= lat <= 90) or not (-180 <= lon <= 180):
        logger.debug("Dropping %s for %s with out-of-range position %s,%s", kind, mmsi, lat, lon)
        return Unrecognized(kind, "coordinates out of range", {"mmsi": mmsi})

    nav_status = report.get("NavigationalStatus")

    return PositionEvent(
        mmsi=mmsi,
        latitude=lat,
        longitude=lon,
        timestamp=parse_report_timestamp(meta.get("time_utc")) or utcnow(),
        message_type=kind,
        vessel_name=_text(meta.get("ShipName")),
        speed=_number(report.get("Sog"), 0.0),
        heading=_number(report.get("TrueHeading"), 0.0),
        course=_number(report.get("Cog"), 0.0),
        nav_status=str(nav_status) if nav_status is not None else NAV_STATUS_UNKNOWN,
    )


def _normalize_static(msg: dict, kind: str) -> AISEvent:
    meta = _metadata(msg)
    static = _payload(msg, kind)

    mmsi = _mmsi(meta, static)
    if mmsi is None:
        logger.debug("Dropping %s without MMSI", kind)
        return Unrecognized(kind, "missing MMSI")

    length, width = dimensions_from_offsets(static.get("Dimension"))

    imo = static.get("ImoNumber")
    ship_type = static.get("Type")
    draught = _number(static.get("MaximumStaticDraught"))

    return StaticEvent(
        mmsi=mmsi,
        name=_text(static.get("Name")) or _text(meta.get("ShipName")),
        call_sign=_text(static.get("CallSign")),
        imo=str(imo) if imo else None,
        ship_type=int(ship_type) if ship_type else None,
        length=length,
        width=width,
        destination=_text(static.get("Destination")),
        draught=draught if draught else None,
    )


def dimensions_from_offsets(dim: Any) -> tuple[float | None, float | None]:
    """Return (length, width) from the AIS A/B/C/D antenna offsets.

    length = bow (A) + stern (B), width = port (C) + starboard (D). A zero
    sum means the transponder did not report it.
    """
    if not isinstance(dim, dict) or not dim:
        return None, None
    a = dim.get("A", 0) or 0
    b = dim.get("B", 0) or 0
    c = dim.get("C", 0) or 0
    d = dim.get("D", 0) or 0
    length = float(a + b) if (a + b) > 0 else None
    width = float(c + d) if (c + d) > 0 else None
    return length, width


def parse_report_timestamp(ts: Any) -> datetime | None:
    """Parse a report timestamp into naive UTC. Returns None if unparseable.

    Accepts the aisstream.io ``time_utc`` format (nanosecond fraction, offset
    and trailing ``UTC``), ISO 8601 and Unix epoch seconds.
    """
    if isinstance(ts, datetime):
        parsed = ts
    elif isinstance(ts, (int, float)) and not isinstance(ts, bool) and ts > 1_000_000_000:
        try:
            parsed = datetime.fromtimestamp(ts, tz=timezone.utc)
        except (OSError, ValueError, OverflowError):
            return None
    elif isinstance(ts, str) and ts.strip():
        parsed = _parse_timestamp_str(ts.strip())
        if parsed is None:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _parse_timestamp_str(ts: str) -> datetime | None:
    m = _AISSTREAM_TS.match(ts)
    if m:
        date_part, time_part, fraction, offset = m.groups()
        # datetime only carries microseconds
        micro = (fraction or "0")[:6].ljust(6, "0")
        try:
            return datetime.strptime(
                f"{date_part} {time_part}.{micro} {offset or '+0000'}",
                "%Y-%m-%d %H:%M:%S.%f %z",
            )
        except ValueError:
            return None
    try:
        return datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except ValueError:
        return None


def ship_type_label(type_code: int | None) -> str | None:
    """Convert AIS ship type code to a human-readable category."""
    if not type_code:
        return None
    if 80 <= type_code <= 89:
        return "Tanker"
    if 70 <= type_code <= 79:
        return "Cargo"
    if 60 <= type_code <= 69:
        return "Passenger"
    if 50 <= type_code <= 59:
        return "Special Craft"
    if 40 <= type_code <= 49:
        return "High Speed Craft"
    if 36 <= type_code <= 37:
        return "Pleasure Craft"
    if 30 <= type_code <= 35:
        return "Fishing" if type_code == 30 else "Special Operations"
    if 20 <= type_code <= 29:
        return "Wing in Ground"
    return f"Type {type_code}"
