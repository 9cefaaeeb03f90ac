"""
UPS activity -> internal shipment status mapping, and carrier timestamp parsing.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Optional

from smartship.models.shipment import ShipmentStatus

logger = logging.getLogger(__name__)

DATE_PATTERN = re.compile(r"\d{8}")
TIME_PATTERN = re.compile(r"\d{6}")

# UPS activity status.type -> internal status
UPS_STATUS_MAP = {
    "D": ShipmentStatus.DELIVERED,
    "I": ShipmentStatus.IN_TRANSIT,
    "P": ShipmentStatus.IN_TRANSIT,  # Picked up
    "M": ShipmentStatus.CREATED,  # Manifest only, label printed
    "X": ShipmentStatus.EXCEPTION,
    "RS": ShipmentStatus.RETURNED,
    "O": ShipmentStatus.OUT_FOR_DELIVERY,
}


def map_ups_status(status_type: Optional[str]) -> Optional[ShipmentStatus]:
    """
    Map a UPS status type to a ShipmentStatus.

    Unknown types count as in transit. A missing type maps to None, meaning
    the activity says nothing about the shipment's state.
    """
    if not status_type:
        return None
    return UPS_STATUS_MAP.get(status_type, ShipmentStatus.IN_TRANSIT)


def parse_activity_timestamp(date: Optional[str], time: Optional[str] = None) -> Optional[datetime]:
    """
    Combine UPS "YYYYMMDD" and "HHMMSS" fields into a UTC datetime.

    A missing time means midnight. Returns None when the date is missing or
    either field is not exactly eight and six digits.
    """
    if not date:
        return None

    date = str(date)
    time = str(time or "000000")
    if not DATE_PATTERN.fullmatch(date) or not TIME_PATTERN.fullmatch(time):
        logger.debug(f"Malformed UPS activity timestamp: date={date!r} time={time!r}")
        return None

    try:
        return datetime.strptime(f"{date} {time}", "%Y%m%d %H%M%S").replace(tzinfo=timezone.utc)
    except ValueError:
        logger.debug(f"Unparseable UPS activity timestamp: date={date!r} time={time!r}")
        return None
