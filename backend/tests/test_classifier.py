"""Tests for AIS frame classification and normalization."""
from __future__ import annotations

import json
from datetime import datetime

import pytest

from vesselstream.models.base import utcnow
from vesselstream.modules.classifier import (
    NAV_STATUS_UNKNOWN,
    PositionEvent,
    StaticEvent,
    Unrecognized,
    classify,
    dimensions_from_offsets,
    parse_report_timestamp,
    ship_type_label,
)


class TestPositionReports:
    def test_valid_position_report(self, position_frame):
        event = classify(position_frame())
        assert isinstance(event, PositionEvent)
        assert event.mmsi == "241234567"
        assert event.latitude == 55.0
        assert event.longitude == 12.0
        assert event.speed == 10.5
        assert event.course == 180.0
        assert event.heading == 179
        assert event.nav_status == "0"
        assert event.message_type == "PositionReport"
        assert event.vessel_name == "NORDIC STAR"
        assert event.timestamp == datetime(2025, 6, 1, 12, 0, 0, 123456)

    @pytest.mark.parametrize("kind", ["StandardClassBPositionReport", "ExtendedClassBPositionReport"])
    def test_class_b_reports_are_positions(self, position_frame, kind):
        event = classify(position_frame(kind=kind))
        assert isinstance(event, PositionEvent)
        assert event.message_type == kind

    def test_mmsi_is_kept_as_string(self, position_frame):
        event = classify(position_frame(mmsi=2579999))
        assert event.mmsi == "2579999"

    def test_missing_mmsi_is_dropped(self, position_frame):
        event = classify(position_frame(mmsi=None))
        assert isinstance(event, Unrecognized)
        assert event.reason == "missing MMSI"

    def test_blank_mmsi_is_dropped(self, position_frame):
        assert isinstance(classify(position_frame(mmsi="  ")), Unrecognized)

    def test_missing_latitude_is_dropped(self, position_frame):
        event = classify(position_frame(lat=None))
        assert isinstance(event, Unrecognized)
        assert event.reason == "missing coordinates"

    def test_missing_longitude_is_dropped(self, position_frame):
        assert isinstance(classify(position_frame(lon=None)), Unrecognized)

    def test_coordinates_fall_back_to_payload(self, position_frame):
        event = classify(position_frame(lat=None, lon=None, Latitude=10.0, Longitude=20.0))
        assert isinstance(event, PositionEvent)
        assert (event.latitude, event.longitude) == (10.0, 20.0)

    def test_zero_coordinates_are_valid(self, position_frame):
        event = classify(position_frame(lat=0.0, lon=0.0))
        assert isinstance(event, PositionEvent)
        assert (event.latitude, event.longitude) == (0.0, 0.0)

    def test_not_available_coordinates_are_dropped(self, position_frame):
        """91/181 are the AIS 'position not available' values."""
        event = classify(position_frame(lat=91.0, lon=181.0))
        assert isinstance(event, Unrecognized)
        assert event.reason == "coordinates out of range"

    def test_absent_motion_fields_default(self):
        frame = {
            "MessageType": "PositionReport",
            "MetaData": {"MMSI": 241234567, "latitude": 1.0, "longitude": 2.0},
            "Message": {"PositionReport": {}},
        }
        event = classify(frame)
        assert isinstance(event, PositionEvent)
        assert event.speed == 0.0
        assert event.heading == 0.0
        assert event.course == 0.0
        assert event.nav_status == NAV_STATUS_UNKNOWN
        assert event.vessel_name is None

    def test_unparseable_timestamp_falls_back_to_now(self, position_frame):
        before = utcnow()
        event = classify(position_frame(time_utc="not-a-date"))
        assert isinstance(event, PositionEvent)
        assert event.timestamp >= before.replace(microsecond=0)

    def test_position_projection_has_only_position_fields(self, position_frame):
        fields = classify(position_frame()).vessel_fields()
        assert set(fields) == {"latitude", "longitude", "speed", "heading", "course", "last_position_at"}

    def test_non_numeric_coordinates_do_not_raise(self, position_frame):
        event = classify(position_frame(lat="north", lon=12.0))
        assert isinstance(event, Unrecognized)
        assert "malformed" in event.reason


class TestStaticReports:
    def test_valid_static_report(self, static_frame):
        event = classify(static_frame())
        assert isinstance(event, StaticEvent)
        assert event.mmsi == "241234567"
        assert event.name == "NORDIC STAR"
        assert event.call_sign == "SVAB1"
        assert event.imo == "9321483"
        assert event.ship_type == 80
        assert event.length == 183.0
        assert event.width == 32.0
        assert event.destination == "ROTTERDAM"
        assert event.draught == 11.2

    def test_missing_mmsi_is_dropped(self, static_frame):
        assert isinstance(classify(static_frame(mmsi=None)), Unrecognized)

    def test_zero_dimensions_become_unknown(self, static_frame):
        event = classify(static_frame(Dimension={"A": 0, "B": 0, "C": 0, "D": 0}))
        assert event.length is None
        assert event.width is None

    def test_zero_imo_and_type_are_absent(self, static_frame):
        event = classify(static_frame(ImoNumber=0, Type=0))
        assert event.imo is None
        assert event.ship_type is None

    def test_name_falls_back_to_metadata(self, static_frame):
        event = classify(static_frame(Name="@@@@@@@@"))
        assert event.name == "NORDIC STAR"

    def test_static_projection_skips_absent_fields(self, static_frame):
        event = classify(static_frame(CallSign="", Dimension={}, Destination=None))
        fields = event.vessel_fields()
        assert "call_sign" not in fields
        assert "length" not in fields
        assert "destination" not in fields
        assert "latitude" not in fields
        assert fields["name"] == "NORDIC STAR"


class TestUnrecognized:
    def test_invalid_json(self):
        event = classify("{not json")
        assert isinstance(event, Unrecognized)
        assert event.kind is None

    def test_non_object_frame(self):
        assert isinstance(classify("[1, 2, 3]"), Unrecognized)

    def test_unknown_message_type(self):
        event = classify(json.dumps({"MessageType": "BaseStationReport", "MetaData": {"MMSI": 1}}))
        assert isinstance(event, Unrecognized)
        assert event.kind == "BaseStationReport"

    def test_missing_message_type(self):
        assert isinstance(classify(json.dumps({"MetaData": {"MMSI": 1}})), Unrecognized)

    def test_bytes_frame_is_decoded(self, position_frame):
        assert isinstance(classify(position_frame().encode()), PositionEvent)


class TestHelpers:
    def test_dimensions_sum_offsets(self):
        assert dimensions_from_offsets({"A": 100, "B": 20, "C": 5, "D": 7}) == (120.0, 12.0)

    def test_dimensions_partial(self):
        assert dimensions_from_offsets({"A": 100, "B": 20}) == (120.0, None)

    def test_dimensions_missing(self):
        assert dimensions_from_offsets(None) == (None, None)

    def test_parse_aisstream_timestamp_with_nanoseconds(self):
        ts = parse_report_timestamp("2024-01-02 03:04:05.987654321 +0000 UTC")
        assert ts == datetime(2024, 1, 2, 3, 4, 5, 987654)

    def test_parse_timestamp_converts_offset_to_utc(self):
        ts = parse_report_timestamp("2024-01-02 05:04:05 +0200 UTC")
        assert ts == datetime(2024, 1, 2, 3, 4, 5)

    def test_parse_iso_timestamp(self):
        assert parse_report_timestamp("2025-06-01T00:00:00Z") == datetime(2025, 6, 1)

    def test_parse_epoch(self):
        assert parse_report_timestamp(1_700_000_000) == datetime(2023, 11, 14, 22, 13, 20)

    def test_parse_garbage(self):
        assert parse_report_timestamp("yesterday") is None
        assert parse_report_timestamp(None) is None

    def test_ship_type_labels(self):
        assert ship_type_label(84) == "Tanker"
        assert ship_type_label(70) == "Cargo"
        assert ship_type_label(30) == "Fishing"
        assert ship_type_label(None) is None
        assert ship_type_label(99) == "Type 99"
