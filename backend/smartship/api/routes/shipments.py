"""
Shipment API Routes

Provides endpoints for:
- Shipment history and statistics
- Tracking (stored events, on-demand poll for one shipment)
- Voiding labels
- Rate quote log
- Manual trigger of a full tracking poll batch
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from smartship.api.deps import (
    get_event_store,
    get_quote_store,
    get_reconciler,
    get_shipment_store,
    get_shipping_service,
    get_tracking_poll_runner,
)
from smartship.core.exceptions import PollInProgressError, ShipmentNotFoundError
from smartship.models.shipment import ShipmentStatus
from smartship.schemas.shipping import (
    RateQuoteLogResponse,
    RecentTrackingEventResponse,
    ShipmentListResponse,
    ShipmentResponse,
    TrackingEventResponse,
    TrackingResponse,
    VoidRequest,
)
from smartship.services.shipment_store import (
    MAX_PAGE_SIZE,
    RateQuoteStore,
    ShipmentStore,
    TrackingEventStore,
)
from smartship.services.shipping_jobs import TrackingPollRunner
from smartship.services.shipping_service import ShippingService
from smartship.services.tracking_poller import TrackingReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shipments", tags=["shipments"])


# ==================== Shipments ====================


@router.get("", response_model=ShipmentListResponse)
async def list_shipments(
    status: Optional[ShipmentStatus] = None,
    order_reference: Optional[str] = None,
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    shipments: ShipmentStore = Depends(get_shipment_store),
):
    rows = await shipments.list_shipments(
        status=status.value if status else None,
        order_reference=order_reference,
        limit=limit,
        offset=offset,
    )
    return ShipmentListResponse(
        shipments=[ShipmentResponse.model_validate(row) for row in rows],
        count=len(rows),
        limit=limit,
        offset=offset,
    )


@router.get("/stats")
async def shipment_stats(shipments: ShipmentStore = Depends(get_shipment_store)):
    """Counts by status, label spend and last-24h activity."""
    return await shipments.get_stats()


# ==================== Tracking ====================


@router.get("/tracking/{tracking_number}", response_model=TrackingResponse)
async def get_tracking(
    tracking_number: str,
    shipments: ShipmentStore = Depends(get_shipment_store),
    events: TrackingEventStore = Depends(get_event_store),
):
    """Stored shipment with its tracking history, most recent first."""
    shipment = await shipments.get_by_tracking_number(tracking_number)
    if shipment is None:
        raise ShipmentNotFoundError(tracking_number)

    history = await events.get_by_tracking_number(tracking_number)
    return TrackingResponse(
        shipment=ShipmentResponse.model_validate(shipment),
        events=[TrackingEventResponse.model_validate(event) for event in history],
    )


@router.post("/tracking/{tracking_number}/poll")
async def poll_tracking(
    tracking_number: str,
    shipments: ShipmentStore = Depends(get_shipment_store),
    reconciler: TrackingReconciler = Depends(get_reconciler),
):
    """Poll UPS for one shipment right now."""
    shipment = await shipments.get_by_tracking_number(tracking_number)
    if shipment is None:
        raise ShipmentNotFoundError(tracking_number)

    result = await reconciler.poll_shipment(shipment)
    return result.to_dict()


@router.post("/tracking/{tracking_number}/void", response_model=ShipmentResponse)
async def void_shipment(
    tracking_number: str,
    data: Optional[VoidRequest] = None,
    shipping_service: ShippingService = Depends(get_shipping_service),
):
    shipment = await shipping_service.void(tracking_number, reason=data.reason if data else None)
    return ShipmentResponse.model_validate(shipment)


@router.get("/tracking-events/recent")
async def recent_tracking_events(
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    events: TrackingEventStore = Depends(get_event_store),
):
    rows = await events.get_recent(limit)
    return [
        RecentTrackingEventResponse(
            **TrackingEventResponse.model_validate(row["event"]).model_dump(),
            ship_to_name=row["ship_to_name"],
            ship_to_city=row["ship_to_city"],
            ship_to_state=row["ship_to_state"],
            shipment_status=row["shipment_status"],
        )
        for row in rows
    ]


# ==================== Quotes ====================


@router.get("/quotes")
async def recent_quotes(
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    quote_type: Optional[str] = Query(None, pattern="^(quote|ship)$"),
    quotes: RateQuoteStore = Depends(get_quote_store),
):
    rows = await quotes.get_recent(limit=limit, quote_type=quote_type)
    return [RateQuoteLogResponse.model_validate(row) for row in rows]


@router.get("/quotes/stats")
async def quote_stats(
    days: int = Query(30, ge=1, le=365),
    quotes: RateQuoteStore = Depends(get_quote_store),
):
    return {"days": days, "by_type": await quotes.get_quote_stats(days=days)}


# ==================== Poll Batch ====================


@router.post("/poll")
async def run_poll_batch(runner: TrackingPollRunner = Depends(get_tracking_poll_runner)):
    """
    Run one tracking poll batch over every active shipment.

    Returns 409 if a batch is already running.
    """
    summary = await runner.run_batch()
    if summary is None:
        raise PollInProgressError("A tracking poll is already in progress")
    return summary.to_dict()
