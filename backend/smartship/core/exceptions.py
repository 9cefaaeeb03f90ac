"""
SmartShip Exception Hierarchy

Structured exception classes for quoting, label purchase and tracking.
All exceptions include code, message, and details for logging and API
error bodies.

Exception Hierarchy:
    SmartShipError
    ├── InputValidationError
    ├── ShippingError
    │   ├── RateLookupError
    │   ├── ShipmentNotFoundError
    │   ├── LabelPurchaseError
    │   └── VoidError
    └── PollInProgressError
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class SmartShipError(Exception):
    """
    Base exception for all SmartShip custom errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging
        severity: P0-P3 severity level
    """

    default_code: str = "SMARTSHIP_ERROR"
    default_severity: str = "P2"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class InputValidationError(SmartShipError):
    """Malformed address, size token or item input. Rejects the whole request."""
    default_code = "INVALID_INPUT"
    default_severity = "P3"
    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None, **kwargs):
        details = kwargs.pop("details", {})
        if field is not None:
            details["field"] = field
        if value is not None:
            details["value"] = value
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# SHIPPING ERRORS
# =============================================================================

class ShippingError(SmartShipError):
    """Base exception for shipping errors."""
    default_code = "SHIPPING_ERROR"
    default_severity = "P2"
    http_status = 400


class RateLookupError(ShippingError):
    """The carrier returned no usable rate for a box."""
    default_code = "RATE_LOOKUP_FAILED"
    http_status = 502


class ShipmentNotFoundError(ShippingError):
    """No persisted shipment matches the tracking number."""
    default_code = "SHIPMENT_NOT_FOUND"
    default_severity = "P3"
    http_status = 404

    def __init__(self, tracking_number: str, **kwargs):
        details = kwargs.pop("details", {})
        details["tracking_number"] = tracking_number
        super().__init__(f"Shipment {tracking_number} not found", details=details, **kwargs)


class LabelPurchaseError(ShippingError):
    """Label purchase failed at the carrier."""
    default_code = "LABEL_PURCHASE_FAILED"
    default_severity = "P1"
    http_status = 502


class VoidError(ShippingError):
    """Voiding a shipment failed."""
    default_code = "VOID_FAILED"
    default_severity = "P1"
    http_status = 502


class PollInProgressError(SmartShipError):
    """A tracking poll batch is already in flight."""
    default_code = "POLL_IN_PROGRESS"
    default_severity = "P3"
    http_status = 409
