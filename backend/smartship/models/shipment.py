"""
Shipment and TrackingEvent models

A Shipment row is created per purchased label (one per packed box) and is
moved through its status lifecycle by the tracking poller. TrackingEvent
rows are the carrier activity history, written once and never updated.
"""
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, DateTime, Date,
    Float, Text, ForeignKey, Index, UniqueConstraint, Enum as SQLEnum
)
from sqlalchemy.orm import relationship
import enum

from smartship.core.database import Base


class ShipmentStatus(str, enum.Enum):
    """Shipment lifecycle status"""
    CREATED = "created"  # Label purchased, carrier has a manifest only
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    EXCEPTION = "exception"  # Delivery issue
    RETURNED = "returned"
    VOIDED = "voided"  # Label voided before pickup
    EXCEPTION_RESOLVED = "exception_resolved"


# No further polling once a shipment reaches one of these
TERMINAL_STATUSES = frozenset({
    ShipmentStatus.DELIVERED,
    ShipmentStatus.VOIDED,
    ShipmentStatus.RETURNED,
    ShipmentStatus.EXCEPTION_RESOLVED,
})


def _status_column_type():
    return SQLEnum(
        ShipmentStatus,
        native_enum=False,
        length=30,
        values_callable=lambda members: [m.value for m in members],
    )


class Shipment(Base):
    """
    One purchased label, tracked from creation through delivery.
    """
    __tablename__ = "shipments"
    __table_args__ = (
        Index("ix_shipments_status", "status"),
        Index("ix_shipments_created_at", "created_at"),
        Index("ix_shipments_order_reference", "order_reference"),
    )

    id = Column(Integer, primary_key=True, index=True)

    tracking_number = Column(String(50), unique=True, nullable=False, index=True)
    service_code = Column(String(10), nullable=False)
    service_name = Column(String(50), nullable=False)
    order_reference = Column(String(255), nullable=True)  # Caller's order id

    # Destination
    ship_to_name = Column(String(200), nullable=False)
    ship_to_phone = Column(String(30), nullable=True)
    ship_to_address = Column(Text, nullable=False)
    ship_to_city = Column(String(100), nullable=False)
    ship_to_state = Column(String(10), nullable=False)
    ship_to_postal_code = Column(String(20), nullable=False)
    ship_to_country_code = Column(String(5), default="US")
    ship_from_postal_code = Column(String(20), nullable=False)

    # Packed box
    box_length = Column(Float, nullable=True)
    box_width = Column(Float, nullable=True)
    box_height = Column(Float, nullable=True)
    box_weight = Column(Float, nullable=True)
    item_count = Column(Integer, nullable=False, default=1)
    item_sizes = Column(Text, nullable=True)  # comma-separated LxWxD tokens

    # Costs
    charges_amount = Column(Float, nullable=True)
    charges_currency = Column(String(5), default="USD")
    label_format = Column(String(10), nullable=True)
    shipment_id_number = Column(String(100), nullable=True)  # UPS shipment ID, needed to void

    status = Column(_status_column_type(), default=ShipmentStatus.CREATED, nullable=False)

    estimated_delivery_date = Column(Date, nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    voided_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    tracking_events = relationship(
        "TrackingEvent",
        back_populates="shipment",
        cascade="all, delete-orphan",
        order_by="TrackingEvent.activity_timestamp.desc()",
    )

    def __repr__(self):
        return f"<Shipment(id={self.id}, tracking={self.tracking_number}, status={self.status})>"


class TrackingEvent(Base):
    """
    One carrier activity record.

    (tracking_number, activity_timestamp, status_code) is unique: the carrier
    repeats its full history on every poll.
    """
    __tablename__ = "tracking_events"
    __table_args__ = (
        UniqueConstraint(
            "tracking_number", "activity_timestamp", "status_code",
            name="uq_tracking_events_activity",
        ),
        Index("ix_tracking_events_shipment_id", "shipment_id"),
        Index("ix_tracking_events_activity_timestamp", "activity_timestamp"),
    )

    id = Column(Integer, primary_key=True, index=True)
    shipment_id = Column(Integer, ForeignKey("shipments.id", ondelete="CASCADE"), nullable=True)
    tracking_number = Column(String(50), nullable=False, index=True)

    status_code = Column(String(10), nullable=True)
    status_type = Column(String(30), nullable=True)
    status_description = Column(Text, nullable=True)

    location_city = Column(String(100), nullable=True)
    location_state = Column(String(100), nullable=True)
    location_country = Column(String(10), nullable=True)

    activity_timestamp = Column(DateTime(timezone=True), nullable=True)
    polled_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    shipment = relationship("Shipment", back_populates="tracking_events")

    def __repr__(self):
        return f"<TrackingEvent(tracking={self.tracking_number}, code={self.status_code}, at={self.activity_timestamp})>"
