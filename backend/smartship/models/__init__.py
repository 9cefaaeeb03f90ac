from smartship.models.shipment import Shipment, ShipmentStatus, TrackingEvent, TERMINAL_STATUSES
from smartship.models.rate_quote import RateQuoteLog
from smartship.models.shipment_void import ShipmentVoid
