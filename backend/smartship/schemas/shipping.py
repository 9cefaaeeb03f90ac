"""
Shipping Schemas

Pydantic models for the UPS and shipment API requests and responses.
"""
from datetime import datetime, date
from typing import Optional, List, Dict, Any, Union
from pydantic import BaseModel, Field, field_validator

from smartship.services.ups_client import LABEL_FORMATS, SERVICE_CODES


# ==================== Single-package Rate Schemas ====================


class PackageRateRequest(BaseModel):
    """Rate one package between two postal codes."""
    ship_from_postal_code: str = Field(..., min_length=3, max_length=20)
    ship_to_postal_code: str = Field(..., min_length=3, max_length=20)
    ship_from_state: Optional[str] = Field(None, max_length=5)
    ship_to_state: Optional[str] = Field(None, max_length=5)
    weight: float = Field(..., gt=0, le=150, description="Weight in LBS")
    length: float = Field(..., gt=0, le=108, description="Length in inches")
    width: float = Field(..., gt=0, le=108, description="Width in inches")
    height: float = Field(..., gt=0, le=108, description="Height in inches")
    service_code: str = Field("03", description="UPS service code, Ground by default")


class RateResponse(BaseModel):
    """A single UPS rate."""
    service: str
    service_code: str
    total_charges: float
    published_charges: Optional[float] = None
    negotiated_charges: Optional[float] = None
    currency: str
    billing_weight: Optional[float] = None
    guaranteed_days: Optional[int] = None


class ShopResponse(BaseModel):
    ship_from: str
    ship_to: str
    package: Dict[str, float]
    rates: List[RateResponse]
    rate_count: int


# ==================== Multi-address Schemas ====================


class StructuredShipment(BaseModel):
    """One destination with its items ("16x20x1" or {length, width, depth, quantity})."""
    address: str = Field(..., min_length=1)
    items: List[Union[str, Dict[str, Any]]] = Field(..., min_length=1)


class MultiAddressInput(BaseModel):
    """
    Items and destinations, in exactly one of three shapes:
    `items` string, `addresses` + `sizes`, or `shipments`.
    """
    items: Optional[str] = None
    addresses: Optional[Union[str, List[str]]] = None
    sizes: Optional[Union[str, List[str]]] = None
    shipments: Optional[List[StructuredShipment]] = None
    order_reference: Optional[str] = Field(None, max_length=255)

    def structured(self) -> Optional[List[Dict[str, Any]]]:
        if self.shipments is None:
            return None
        return [shipment.model_dump() for shipment in self.shipments]


class QuoteRequest(MultiAddressInput):
    reject_oversized: bool = False


class ShipRequest(MultiAddressInput):
    ship_to_name: str = Field(..., min_length=1, max_length=200)
    ship_to_phone: Optional[str] = Field(None, max_length=30)
    service_code: str = "03"
    label_format: str = "GIF"

    @field_validator("service_code")
    @classmethod
    def validate_service_code(cls, v):
        if v not in SERVICE_CODES:
            raise ValueError(f"Unknown UPS service code {v}")
        return v

    @field_validator("label_format")
    @classmethod
    def validate_label_format(cls, v):
        v = v.upper()
        if v not in LABEL_FORMATS:
            raise ValueError(f"label_format must be one of {', '.join(LABEL_FORMATS)}")
        return v


# ==================== Shipment Schemas ====================


class ShipmentResponse(BaseModel):
    id: int
    tracking_number: str
    service_code: str
    service_name: str
    order_reference: Optional[str] = None
    ship_to_name: str
    ship_to_city: str
    ship_to_state: str
    ship_to_postal_code: str
    ship_to_country_code: Optional[str] = "US"
    box_length: Optional[float] = None
    box_width: Optional[float] = None
    box_height: Optional[float] = None
    box_weight: Optional[float] = None
    item_count: int
    charges_amount: Optional[float] = None
    charges_currency: Optional[str] = "USD"
    status: str
    estimated_delivery_date: Optional[date] = None
    delivered_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def status_value(cls, v):
        return getattr(v, "value", v)

    class Config:
        from_attributes = True


class ShipmentListResponse(BaseModel):
    shipments: List[ShipmentResponse]
    count: int
    limit: int
    offset: int


class TrackingEventResponse(BaseModel):
    id: int
    tracking_number: str
    status_code: Optional[str] = None
    status_type: Optional[str] = None
    status_description: Optional[str] = None
    location_city: Optional[str] = None
    location_state: Optional[str] = None
    location_country: Optional[str] = None
    activity_timestamp: Optional[datetime] = None
    polled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RecentTrackingEventResponse(TrackingEventResponse):
    ship_to_name: Optional[str] = None
    ship_to_city: Optional[str] = None
    ship_to_state: Optional[str] = None
    shipment_status: Optional[str] = None


class TrackingResponse(BaseModel):
    shipment: ShipmentResponse
    events: List[TrackingEventResponse]


class VoidRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class RateQuoteLogResponse(BaseModel):
    id: int
    quote_type: str
    order_reference: Optional[str] = None
    ship_from_postal: Optional[str] = None
    ship_to_postal: Optional[str] = None
    ship_to_state: Optional[str] = None
    item_count: Optional[int] = None
    box_count: Optional[int] = None
    service_code: Optional[str] = None
    total_charges: Optional[float] = None
    currency: Optional[str] = "USD"
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
