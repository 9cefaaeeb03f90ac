"""
Multi-address quoting

Packs and rates every address group, then writes one rate_quotes row per
address. The log is best-effort; a database hiccup never fails a quote.
"""
import logging
from typing import List, Optional, Sequence

from smartship.core.exceptions import InputValidationError
from smartship.services.address_parser import AddressGroup
from smartship.services.packing import MAX_DEPTH
from smartship.services.rate_aggregator import (
    AddressQuote,
    MultiAddressQuote,
    RateLookup,
    quote_addresses,
)
from smartship.services.shipment_store import RateQuoteStore
from smartship.services.ups_client import UPSAddress

logger = logging.getLogger(__name__)


def reject_oversized_items(groups: Sequence[AddressGroup]) -> None:
    """Raise if any item is deeper than a box can hold."""
    for group in groups:
        for item in group.items:
            if item.depth > MAX_DEPTH:
                raise InputValidationError(
                    f"Item {item.size_token} is deeper than the {MAX_DEPTH:g} inch box limit",
                    field="size",
                    value=item.size_token,
                )


class QuoteService:
    def __init__(self, rate_lookup: RateLookup, quotes: RateQuoteStore, origin: UPSAddress):
        self.rate_lookup = rate_lookup
        self.quotes = quotes
        self.origin = origin

    async def quote(
        self,
        groups: List[AddressGroup],
        order_reference: Optional[str] = None,
        reject_oversized: bool = False,
    ) -> MultiAddressQuote:
        if reject_oversized:
            reject_oversized_items(groups)

        result = await quote_addresses(groups, self.rate_lookup)

        for address_quote in result.addresses:
            await self._log_quote(address_quote, order_reference)

        return result

    async def _log_quote(self, address_quote: AddressQuote, order_reference: Optional[str]) -> None:
        cheapest = min(
            address_quote.rates_by_service.values(),
            key=lambda rate: rate.cost,
            default=None,
        )

        try:
            await self.quotes.insert_quote(
                quote_type="quote",
                order_reference=order_reference,
                ship_from_postal=self.origin.postal_code,
                ship_from_state=self.origin.state_province,
                ship_to_postal=address_quote.address.postal_code,
                ship_to_state=address_quote.address.state,
                item_count=address_quote.item_count,
                box_count=len(address_quote.boxes),
                service_code=cheapest.service_code if cheapest else None,
                total_charges=cheapest.cost if cheapest else None,
                currency=cheapest.currency if cheapest else "USD",
                request_summary={
                    "address": address_quote.address.raw,
                    "items": [item.size_token for quote in address_quote.boxes for item in quote.box.items],
                },
                response_summary={
                    name: rate.to_dict() for name, rate in address_quote.rates_by_service.items()
                },
            )
        except Exception as e:
            logger.warning(f"Failed to log rate quote for {address_quote.address.postal_code}: {e}")
