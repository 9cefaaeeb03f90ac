"""
UPS API Routes

- POST /ups/rate      one package, one service (Ground by default)
- POST /ups/shop      one package, every service, cheapest first
- GET  /ups/services  service code table
- POST /ups/quote     multi-address packing quote
- POST /ups/ship      multi-address label purchase
"""
import logging

from fastapi import APIRouter, Depends, Request

from smartship.core.config import settings
from smartship.core.rate_limit import limiter
from smartship.api.deps import get_quote_service, get_shipping_service, get_ups_client
from smartship.schemas.shipping import (
    PackageRateRequest,
    QuoteRequest,
    RateResponse,
    ShipRequest,
    ShopResponse,
)
from smartship.services.address_parser import QUOTE_MODE, SHIP_MODE, parse_address_groups
from smartship.services.quote_service import QuoteService
from smartship.services.shipping_service import ShippingService
from smartship.services.ups_client import (
    SERVICE_CODES,
    UPSAddress,
    UPSClient,
    UPSPackage,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ups", tags=["UPS"])


def _package_addresses(data: PackageRateRequest):
    ship_from = UPSAddress(postal_code=data.ship_from_postal_code, state_province=data.ship_from_state or "")
    ship_to = UPSAddress(postal_code=data.ship_to_postal_code, state_province=data.ship_to_state or "")
    package = UPSPackage(weight=data.weight, length=data.length, width=data.width, height=data.height)
    return ship_from, ship_to, package


# ==================== Single Package ====================


@router.post("/rate", response_model=RateResponse)
async def get_rate(
    data: PackageRateRequest,
    ups_client: UPSClient = Depends(get_ups_client),
):
    """Rate one package for a single service."""
    ship_from, ship_to, package = _package_addresses(data)
    rate = await ups_client.get_rate(ship_from, ship_to, package, service_code=data.service_code)
    return rate.to_dict()


@router.post("/shop", response_model=ShopResponse)
async def shop_rates(
    data: PackageRateRequest,
    ups_client: UPSClient = Depends(get_ups_client),
):
    """Rate one package for every available service."""
    ship_from, ship_to, package = _package_addresses(data)
    rates = await ups_client.shop_rates(ship_from, ship_to, package)

    return {
        "ship_from": data.ship_from_postal_code,
        "ship_to": data.ship_to_postal_code,
        "package": {
            "weight": data.weight,
            "length": data.length,
            "width": data.width,
            "height": data.height,
        },
        "rates": [rate.to_dict() for rate in rates],
        "rate_count": len(rates),
    }


@router.get("/services")
async def list_services():
    return SERVICE_CODES


# ==================== Multi-address ====================


@router.post("/quote")
@limiter.limit(settings.RATE_LIMIT_QUOTE)
async def quote_multi_address(
    request: Request,
    data: QuoteRequest,
    quote_service: QuoteService = Depends(get_quote_service),
):
    """
    Pack items per destination and price every box.

    Boxes UPS could not rate carry an `error` and are left out of totals.
    """
    groups = parse_address_groups(
        item_string=data.items,
        addresses=data.addresses,
        sizes=data.sizes,
        shipments=data.structured(),
        mode=QUOTE_MODE,
    )
    result = await quote_service.quote(
        groups,
        order_reference=data.order_reference,
        reject_oversized=data.reject_oversized,
    )
    return result.to_dict()


@router.post("/ship")
@limiter.limit(settings.RATE_LIMIT_QUOTE)
async def ship_multi_address(
    request: Request,
    data: ShipRequest,
    shipping_service: ShippingService = Depends(get_shipping_service),
):
    """Buy one label per packed box and start tracking each shipment."""
    groups = parse_address_groups(
        item_string=data.items,
        addresses=data.addresses,
        sizes=data.sizes,
        shipments=data.structured(),
        mode=SHIP_MODE,
    )
    result = await shipping_service.ship(
        groups,
        ship_to_name=data.ship_to_name,
        ship_to_phone=data.ship_to_phone,
        service_code=data.service_code,
        label_format=data.label_format,
        order_reference=data.order_reference,
    )
    return result.to_dict()
