"""Void attempt log, one row per attempt whether or not UPS accepted it."""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, JSON, ForeignKey

from smartship.core.database import Base


class ShipmentVoid(Base):
    __tablename__ = "shipment_voids"

    id = Column(Integer, primary_key=True, index=True)
    shipment_id = Column(Integer, ForeignKey("shipments.id", ondelete="SET NULL"), nullable=True)
    tracking_number = Column(String(50), nullable=False, index=True)
    success = Column(Boolean, nullable=False)
    reason = Column(Text, nullable=True)
    ups_response = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<ShipmentVoid(tracking={self.tracking_number}, success={self.success})>"
