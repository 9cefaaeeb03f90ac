"""
Shipment, tracking event, rate quote and void persistence

Every write opens its own short session and commits at once, so one failed
write never rolls back rows already committed for other shipments.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, func, and_
from sqlalchemy.dialects.postgresql import insert as pg_insert

from smartship.core.database import AsyncSessionLocal
from smartship.core.utils import utcnow
from smartship.models.shipment import Shipment, ShipmentStatus, TrackingEvent, TERMINAL_STATUSES
from smartship.models.rate_quote import RateQuoteLog
from smartship.models.shipment_void import ShipmentVoid

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _clamp_limit(limit: int) -> int:
    return max(1, min(int(limit), MAX_PAGE_SIZE))


class ShipmentStore:
    """Shipment rows keyed by tracking number."""

    def __init__(self, session_factory=AsyncSessionLocal):
        self._session_factory = session_factory

    async def get_active_shipments(self) -> List[Shipment]:
        """All shipments not in a terminal status, newest first."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(Shipment)
                .where(Shipment.status.notin_(list(TERMINAL_STATUSES)))
                .order_by(Shipment.created_at.desc())
            )
            return list(result.scalars().all())

    async def get_by_tracking_number(self, tracking_number: str) -> Optional[Shipment]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Shipment).where(Shipment.tracking_number == tracking_number)
            )
            return result.scalar_one_or_none()

    async def update_status(
        self,
        tracking_number: str,
        status: ShipmentStatus,
        delivered_at: Optional[datetime] = None,
        voided_at: Optional[datetime] = None,
    ) -> bool:
        """Single-row status update. Returns False if no row matched."""
        values: Dict[str, Any] = {"status": status, "updated_at": utcnow()}
        if delivered_at is not None:
            values["delivered_at"] = delivered_at
        if voided_at is not None:
            values["voided_at"] = voided_at

        async with self._session_factory() as db:
            result = await db.execute(
                update(Shipment)
                .where(Shipment.tracking_number == tracking_number)
                .values(**values)
            )
            await db.commit()
            return result.rowcount > 0

    async def insert_shipment(self, **fields) -> Shipment:
        shipment = Shipment(**fields)
        async with self._session_factory() as db:
            db.add(shipment)
            await db.commit()
            await db.refresh(shipment)
        logger.info(f"Saved shipment {shipment.tracking_number}")
        return shipment

    async def list_shipments(
        self,
        status: Optional[str] = None,
        order_reference: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Shipment]:
        query = select(Shipment)
        if status:
            query = query.where(Shipment.status == ShipmentStatus(status))
        if order_reference:
            query = query.where(Shipment.order_reference == order_reference)

        query = query.order_by(Shipment.created_at.desc()).limit(_clamp_limit(limit)).offset(max(0, offset))

        async with self._session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def get_stats(self) -> Dict[str, Any]:
        """Counts by status, label spend, and recent activity."""
        now = utcnow()
        day_ago = now - timedelta(hours=24)
        month_ago = now - timedelta(days=30)

        async with self._session_factory() as db:
            by_status = await db.execute(
                select(Shipment.status, func.count(Shipment.id)).group_by(Shipment.status)
            )
            counts = {
                (status.value if isinstance(status, ShipmentStatus) else status): count
                for status, count in by_status.all()
            }

            totals = await db.execute(
                select(
                    func.count(Shipment.id),
                    func.coalesce(func.sum(Shipment.charges_amount), 0),
                    func.count(Shipment.id).filter(Shipment.created_at >= day_ago),
                    func.count(Shipment.id).filter(Shipment.delivered_at >= day_ago),
                    func.coalesce(
                        func.sum(Shipment.charges_amount).filter(Shipment.created_at >= month_ago), 0
                    ),
                )
            )
            total, total_charges, created_24h, delivered_24h, charges_30d = totals.one()

        return {
            "total": total,
            "by_status": counts,
            "total_charges": float(total_charges or 0),
            "created_last_24h": created_24h,
            "delivered_last_24h": delivered_24h,
            "charges_last_30d": float(charges_30d or 0),
        }


class TrackingEventStore:
    """Append-only carrier activity history."""

    def __init__(self, session_factory=AsyncSessionLocal):
        self._session_factory = session_factory

    @staticmethod
    def _activity_filter(tracking_number: str, activity_timestamp: datetime, status_code: Optional[str]):
        code_clause = (
            TrackingEvent.status_code.is_(None) if status_code is None
            else TrackingEvent.status_code == status_code
        )
        return and_(
            TrackingEvent.tracking_number == tracking_number,
            TrackingEvent.activity_timestamp == activity_timestamp,
            code_clause,
        )

    async def exists_event(
        self,
        tracking_number: str,
        activity_timestamp: datetime,
        status_code: Optional[str],
    ) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                select(TrackingEvent.id)
                .where(self._activity_filter(tracking_number, activity_timestamp, status_code))
                .limit(1)
            )
            return result.scalar_one_or_none() is not None

    async def insert_event(self, **fields) -> Optional[int]:
        """
        Insert one event unless the activity triple is already stored.

        Returns the new id, or None when a concurrent writer got there first.
        """
        stmt = (
            pg_insert(TrackingEvent)
            .values(polled_at=utcnow(), **fields)
            .on_conflict_do_nothing(constraint="uq_tracking_events_activity")
            .returning(TrackingEvent.id)
        )
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            await db.commit()
            return result.scalar_one_or_none()

    async def get_by_tracking_number(self, tracking_number: str) -> List[TrackingEvent]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(TrackingEvent)
                .where(TrackingEvent.tracking_number == tracking_number)
                .order_by(TrackingEvent.activity_timestamp.desc())
            )
            return list(result.scalars().all())

    async def get_recent(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Latest events across all shipments, with destination details."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(
                    TrackingEvent,
                    Shipment.ship_to_name,
                    Shipment.ship_to_city,
                    Shipment.ship_to_state,
                    Shipment.status,
                )
                .outerjoin(Shipment, Shipment.id == TrackingEvent.shipment_id)
                .order_by(TrackingEvent.activity_timestamp.desc())
                .limit(_clamp_limit(limit))
            )
            rows = result.all()

        return [
            {
                "event": event,
                "ship_to_name": ship_to_name,
                "ship_to_city": ship_to_city,
                "ship_to_state": ship_to_state,
                "shipment_status": status.value if isinstance(status, ShipmentStatus) else status,
            }
            for event, ship_to_name, ship_to_city, ship_to_state, status in rows
        ]


class RateQuoteStore:
    """Log of quotes handed out, for volume and spend statistics."""

    def __init__(self, session_factory=AsyncSessionLocal):
        self._session_factory = session_factory

    async def insert_quote(self, **fields) -> RateQuoteLog:
        quote = RateQuoteLog(**fields)
        async with self._session_factory() as db:
            db.add(quote)
            await db.commit()
        return quote

    async def get_recent(self, limit: int = 50, quote_type: Optional[str] = None) -> List[RateQuoteLog]:
        query = select(RateQuoteLog)
        if quote_type:
            query = query.where(RateQuoteLog.quote_type == quote_type)
        query = query.order_by(RateQuoteLog.created_at.desc()).limit(_clamp_limit(limit))

        async with self._session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def get_quote_stats(self, days: int = 30) -> List[Dict[str, Any]]:
        since = utcnow() - timedelta(days=days)

        async with self._session_factory() as db:
            result = await db.execute(
                select(
                    RateQuoteLog.quote_type,
                    func.count(RateQuoteLog.id),
                    func.coalesce(func.sum(RateQuoteLog.total_charges), 0),
                    func.avg(RateQuoteLog.total_charges),
                    func.coalesce(func.sum(RateQuoteLog.box_count), 0),
                )
                .where(RateQuoteLog.created_at >= since)
                .group_by(RateQuoteLog.quote_type)
                .order_by(RateQuoteLog.quote_type)
            )
            rows = result.all()

        return [
            {
                "quote_type": quote_type,
                "count": count,
                "total_charges": float(total or 0),
                "average_charges": round(float(average), 2) if average is not None else None,
                "box_count": int(boxes or 0),
            }
            for quote_type, count, total, average, boxes in rows
        ]


class VoidStore:
    """Void attempts, successful or not."""

    def __init__(self, session_factory=AsyncSessionLocal):
        self._session_factory = session_factory

    async def insert_void(self, **fields) -> ShipmentVoid:
        void = ShipmentVoid(**fields)
        async with self._session_factory() as db:
            db.add(void)
            await db.commit()
        return void

    async def get_by_tracking_number(self, tracking_number: str) -> List[ShipmentVoid]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ShipmentVoid)
                .where(ShipmentVoid.tracking_number == tracking_number)
                .order_by(ShipmentVoid.created_at.desc())
            )
            return list(result.scalars().all())
