"""
Rate Aggregator

Quotes every packed box for an address through an injected rate lookup and
sums per-service costs:

- per address: sum each service across that address's boxes, then round
- grand total: sum the already-rounded per-address totals, then round again

Both rounding stages are kept as-is so totals match previously issued quotes
to the cent. A box whose lookup fails is kept in the result with an error
and left out of every total.
"""
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from smartship.core.exceptions import ShippingError
from smartship.core.utils import round2
from smartship.services.address_parser import AddressGroup, ParsedAddress
from smartship.services.packing import Box, Item, pack

logger = logging.getLogger(__name__)


@dataclass
class RateQuote:
    """Cost of one service, for one box or summed over several."""
    service_code: str
    service_name: str
    cost: float
    currency: str = "USD"

    def to_dict(self) -> dict:
        return {
            "service_code": self.service_code,
            "service_name": self.service_name,
            "cost": self.cost,
            "currency": self.currency,
        }


# (box, destination) -> {service name: RateQuote}; empty mapping means no rates
RateLookup = Callable[[Box, ParsedAddress], Awaitable[Mapping[str, RateQuote]]]


@dataclass
class BoxQuote:
    box: Box
    rates: Dict[str, RateQuote] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        data = self.box.to_dict()
        data["rates"] = {name: rate.to_dict() for name, rate in self.rates.items()}
        data["error"] = self.error
        return data


@dataclass
class AddressQuote:
    address: ParsedAddress
    boxes: List[BoxQuote] = field(default_factory=list)
    rates_by_service: Dict[str, RateQuote] = field(default_factory=dict)

    @property
    def item_count(self) -> int:
        return sum(quote.box.item_count for quote in self.boxes)

    @property
    def failed_boxes(self) -> int:
        return sum(1 for quote in self.boxes if not quote.ok)

    def to_dict(self) -> dict:
        return {
            "address": self.address.raw,
            "state": self.address.state,
            "postal_code": self.address.postal_code,
            "item_count": self.item_count,
            "box_count": len(self.boxes),
            "boxes": [quote.to_dict() for quote in self.boxes],
            "rates_by_service": {name: rate.to_dict() for name, rate in self.rates_by_service.items()},
        }


@dataclass
class MultiAddressQuote:
    addresses: List[AddressQuote] = field(default_factory=list)
    grand_totals: Dict[str, RateQuote] = field(default_factory=dict)

    @property
    def box_count(self) -> int:
        return sum(len(quote.boxes) for quote in self.addresses)

    @property
    def item_count(self) -> int:
        return sum(quote.item_count for quote in self.addresses)

    @property
    def failed_boxes(self) -> int:
        return sum(quote.failed_boxes for quote in self.addresses)

    def to_dict(self) -> dict:
        return {
            "address_count": len(self.addresses),
            "item_count": self.item_count,
            "box_count": self.box_count,
            "failed_boxes": self.failed_boxes,
            "addresses": [quote.to_dict() for quote in self.addresses],
            "grand_totals": {name: rate.to_dict() for name, rate in self.grand_totals.items()},
        }


def _sum_rates(rate_sets: Sequence[Mapping[str, RateQuote]]) -> Dict[str, RateQuote]:
    """Sum costs per service name, then round each total once."""
    totals: Dict[str, RateQuote] = {}
    for rates in rate_sets:
        for name, rate in rates.items():
            if name in totals:
                totals[name].cost += rate.cost
            else:
                totals[name] = RateQuote(
                    service_code=rate.service_code,
                    service_name=rate.service_name,
                    cost=rate.cost,
                    currency=rate.currency,
                )

    for total in totals.values():
        total.cost = round2(total.cost)
    return totals


async def quote_address(
    address: ParsedAddress,
    items: Sequence[Item],
    rate_lookup: RateLookup,
) -> AddressQuote:
    """Pack the items for one destination and rate every box."""
    result = AddressQuote(address=address)

    for box in pack(items):
        try:
            rates = await rate_lookup(box, address)
        except ShippingError as e:
            logger.warning(f"Rate lookup failed for box to {address.postal_code}: {e.message}")
            result.boxes.append(BoxQuote(box=box, error=e.message))
            continue

        if not rates:
            logger.warning(f"No rates returned for box to {address.postal_code}")
            result.boxes.append(BoxQuote(box=box, error="No rates returned"))
            continue

        result.boxes.append(BoxQuote(box=box, rates=dict(rates)))

    result.rates_by_service = _sum_rates([quote.rates for quote in result.boxes if quote.ok])
    return result


async def quote_addresses(
    groups: Sequence[AddressGroup],
    rate_lookup: RateLookup,
) -> MultiAddressQuote:
    """Quote every address group and total the rounded per-address sums."""
    result = MultiAddressQuote()

    for group in groups:
        result.addresses.append(await quote_address(group.address, group.items, rate_lookup))

    result.grand_totals = _sum_rates([quote.rates_by_service for quote in result.addresses])

    logger.info(
        f"Quoted {len(result.addresses)} addresses, {result.box_count} boxes "
        f"({result.failed_boxes} without rates)"
    )
    return result
