"""
API dependencies

One UPS client per process, shared by all requests and closed on shutdown.
"""
from typing import Optional

from fastapi import Depends

from smartship.services.quote_service import QuoteService
from smartship.services.shipment_store import (
    RateQuoteStore,
    ShipmentStore,
    TrackingEventStore,
    VoidStore,
)
from smartship.services.shipping_jobs import TrackingPollRunner, get_poll_runner
from smartship.services.shipping_service import ShippingService
from smartship.services.tracking_poller import TrackingReconciler
from smartship.services.ups_client import (
    UPSAddress,
    UPSClient,
    create_ups_client_from_settings,
    make_rate_lookup,
    origin_from_settings,
)
from smartship.services.workflow_notifier import WorkflowNotifier, create_notifier_from_settings

_ups_client: Optional[UPSClient] = None
_notifier: Optional[WorkflowNotifier] = None


def get_ups_client() -> UPSClient:
    global _ups_client

    if _ups_client is None:
        _ups_client = create_ups_client_from_settings()
    return _ups_client


def get_notifier() -> WorkflowNotifier:
    global _notifier

    if _notifier is None:
        _notifier = create_notifier_from_settings()
    return _notifier


async def close_clients():
    global _ups_client, _notifier

    if _ups_client:
        await _ups_client.close()
        _ups_client = None
    if _notifier:
        await _notifier.close()
        _notifier = None


def get_origin() -> UPSAddress:
    return origin_from_settings()


def get_shipment_store() -> ShipmentStore:
    return ShipmentStore()


def get_event_store() -> TrackingEventStore:
    return TrackingEventStore()


def get_quote_store() -> RateQuoteStore:
    return RateQuoteStore()


def get_void_store() -> VoidStore:
    return VoidStore()


def get_quote_service(
    ups_client: UPSClient = Depends(get_ups_client),
    quotes: RateQuoteStore = Depends(get_quote_store),
    origin: UPSAddress = Depends(get_origin),
) -> QuoteService:
    return QuoteService(make_rate_lookup(ups_client, origin), quotes, origin)


def get_shipping_service(
    ups_client: UPSClient = Depends(get_ups_client),
    shipments: ShipmentStore = Depends(get_shipment_store),
    voids: VoidStore = Depends(get_void_store),
    quotes: RateQuoteStore = Depends(get_quote_store),
    origin: UPSAddress = Depends(get_origin),
) -> ShippingService:
    return ShippingService(ups_client, shipments, voids, quotes, origin)


def get_reconciler(
    ups_client: UPSClient = Depends(get_ups_client),
    shipments: ShipmentStore = Depends(get_shipment_store),
    events: TrackingEventStore = Depends(get_event_store),
    notifier: WorkflowNotifier = Depends(get_notifier),
) -> TrackingReconciler:
    return TrackingReconciler(ups_client, shipments, events, notifier)


def get_tracking_poll_runner() -> TrackingPollRunner:
    return get_poll_runner()
