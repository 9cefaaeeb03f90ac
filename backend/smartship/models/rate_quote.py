"""
Rate quote log

One row per quoted destination (quote flow) or per purchased label
(ship flow); used for quote volume and spend statistics.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, Float, JSON, Index

from smartship.core.database import Base


class RateQuoteLog(Base):
    __tablename__ = "rate_quotes"
    __table_args__ = (
        Index("ix_rate_quotes_created_at", "created_at"),
        Index("ix_rate_quotes_quote_type", "quote_type"),
    )

    id = Column(Integer, primary_key=True, index=True)
    quote_type = Column(String(20), nullable=False)  # "quote" | "ship" | "rate" | "shop"
    order_reference = Column(String(255), nullable=True)

    ship_from_postal = Column(String(20), nullable=True)
    ship_from_state = Column(String(10), nullable=True)
    ship_to_postal = Column(String(20), nullable=True)
    ship_to_state = Column(String(10), nullable=True)

    item_count = Column(Integer, nullable=True)
    box_count = Column(Integer, nullable=True)
    service_code = Column(String(10), nullable=True)
    total_charges = Column(Float, nullable=True)
    currency = Column(String(5), default="USD")

    request_summary = Column(JSON, nullable=True)
    response_summary = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<RateQuoteLog(id={self.id}, type={self.quote_type}, to={self.ship_to_postal}, total={self.total_charges})>"
