"""
Tests for UPS status mapping and activity timestamps.
"""
from datetime import datetime, timezone

import pytest

from smartship.models.shipment import ShipmentStatus, TERMINAL_STATUSES
from smartship.services.tracking_status import map_ups_status, parse_activity_timestamp


class TestMapUpsStatus:

    @pytest.mark.parametrize("status_type,expected", [
        ("D", ShipmentStatus.DELIVERED),
        ("I", ShipmentStatus.IN_TRANSIT),
        ("P", ShipmentStatus.IN_TRANSIT),
        ("M", ShipmentStatus.CREATED),
        ("X", ShipmentStatus.EXCEPTION),
        ("RS", ShipmentStatus.RETURNED),
        ("O", ShipmentStatus.OUT_FOR_DELIVERY),
    ])
    def test_known_types(self, status_type, expected):
        assert map_ups_status(status_type) == expected

    def test_unknown_type_is_in_transit(self):
        assert map_ups_status("ZZ") == ShipmentStatus.IN_TRANSIT

    @pytest.mark.parametrize("status_type", [None, ""])
    def test_missing_type(self, status_type):
        """A missing type carries no status information."""
        assert map_ups_status(status_type) is None

    def test_terminal_statuses(self):
        assert ShipmentStatus.DELIVERED in TERMINAL_STATUSES
        assert ShipmentStatus.VOIDED in TERMINAL_STATUSES
        assert ShipmentStatus.EXCEPTION not in TERMINAL_STATUSES
        assert ShipmentStatus.IN_TRANSIT not in TERMINAL_STATUSES


class TestParseActivityTimestamp:

    def test_date_and_time(self):
        assert parse_activity_timestamp("20260105", "143015") == datetime(
            2026, 1, 5, 14, 30, 15, tzinfo=timezone.utc
        )

    def test_missing_time_is_midnight(self):
        assert parse_activity_timestamp("20260105") == datetime(2026, 1, 5, tzinfo=timezone.utc)

    @pytest.mark.parametrize("date,time", [
        (None, "120000"),
        ("", None),
        ("2026-01-05", None),
        ("20261305", None),
        ("20260105", "99"),
        ("20260105", "1015"),
        ("20260105", "14301500"),
        ("2026015", "143015"),
    ])
    def test_invalid(self, date, time):
        assert parse_activity_timestamp(date, time) is None

    def test_numeric_fields(self):
        assert parse_activity_timestamp(20260105, 143015) == datetime(
            2026, 1, 5, 14, 30, 15, tzinfo=timezone.utc
        )
