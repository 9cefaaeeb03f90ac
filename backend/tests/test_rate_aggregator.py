"""
Tests for multi-address rate aggregation.
"""
import httpx
import pytest

from smartship.core.exceptions import RateLookupError
from smartship.services.address_parser import AddressGroup, ParsedAddress
from smartship.services.packing import Item
from smartship.services.rate_aggregator import RateQuote, quote_address, quote_addresses
from smartship.services.ups_client import (
    OAUTH_TOKEN_PATH,
    UPSAddress,
    UPSClient,
    UPSCredentials,
    make_rate_lookup,
)

AUSTIN = ParsedAddress(raw="12 Oak St, Austin, TX 78701", state="TX", postal_code="78701")
RENO = ParsedAddress(raw="9 Elm Rd, Reno, NV 89501", state="NV", postal_code="89501")


def ground(cost):
    return RateQuote(service_code="03", service_name="Ground", cost=cost)


def air(cost):
    return RateQuote(service_code="02", service_name="2nd Day Air", cost=cost)


def lookup_from(costs):
    """Rate lookup returning queued per-box results in call order."""
    queue = list(costs)
    calls = []

    async def rate_lookup(box, address):
        calls.append((box, address))
        result = queue.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    rate_lookup.calls = calls
    return rate_lookup


class TestQuoteAddress:
    """Test per-address aggregation."""

    @pytest.mark.asyncio
    async def test_sums_per_service_across_boxes(self):
        """Each service is summed over every box, then rounded."""
        lookup = lookup_from([
            {"Ground": ground(10.111), "2nd Day Air": air(20.25)},
            {"Ground": ground(5.111), "2nd Day Air": air(9.5)},
        ])
        items = [Item(16, 20, 3), Item(16, 20, 1), Item(16, 20, 1)]

        result = await quote_address(AUSTIN, items, lookup)

        assert len(result.boxes) == 2
        assert len(lookup.calls) == 2
        assert result.rates_by_service["Ground"].cost == pytest.approx(15.22)
        assert result.rates_by_service["2nd Day Air"].cost == pytest.approx(29.75)

    @pytest.mark.asyncio
    async def test_rounds_after_summation(self):
        """Rounding happens once on the sum, not per box."""
        lookup = lookup_from([{"Ground": ground(1.004)}, {"Ground": ground(1.004)}])
        items = [Item(10, 10, 4), Item(10, 10, 4)]

        result = await quote_address(AUSTIN, items, lookup)

        assert result.rates_by_service["Ground"].cost == pytest.approx(2.01)

    @pytest.mark.asyncio
    async def test_failed_box_excluded(self):
        """A box whose lookup fails is kept with an error and left out of totals."""
        lookup = lookup_from([
            {"Ground": ground(12.0)},
            RateLookupError("Service unavailable"),
        ])
        items = [Item(10, 10, 4), Item(10, 10, 4)]

        result = await quote_address(AUSTIN, items, lookup)

        assert len(result.boxes) == 2
        assert result.failed_boxes == 1
        assert result.boxes[1].error == "Service unavailable"
        assert result.rates_by_service["Ground"].cost == pytest.approx(12.0)

    @pytest.mark.asyncio
    async def test_empty_rates_marked_failed(self):
        """An empty rate mapping counts as a failure."""
        lookup = lookup_from([{}])

        result = await quote_address(AUSTIN, [Item(10, 10, 1)], lookup)

        assert result.boxes[0].error == "No rates returned"
        assert result.rates_by_service == {}

    @pytest.mark.asyncio
    async def test_unexpected_error_propagates(self):
        """Non-shipping errors are not swallowed."""
        lookup = lookup_from([RuntimeError("boom")])

        with pytest.raises(RuntimeError):
            await quote_address(AUSTIN, [Item(10, 10, 1)], lookup)


class TestQuoteAddresses:
    """Test grand totals across addresses."""

    @pytest.mark.asyncio
    async def test_grand_total(self):
        """12.34 + 7.66 gives 20.00."""
        lookup = lookup_from([{"Ground": ground(12.34)}, {"Ground": ground(7.66)}])
        groups = [
            AddressGroup(address=AUSTIN, items=[Item(16, 20, 1)]),
            AddressGroup(address=RENO, items=[Item(16, 20, 1)]),
        ]

        result = await quote_addresses(groups, lookup)

        assert result.grand_totals["Ground"].cost == pytest.approx(20.00)
        assert result.addresses[0].rates_by_service["Ground"].cost == pytest.approx(12.34)
        assert result.addresses[1].rates_by_service["Ground"].cost == pytest.approx(7.66)

    @pytest.mark.asyncio
    async def test_service_missing_for_one_address(self):
        """A service offered to only one address still appears in the grand total."""
        lookup = lookup_from([
            {"Ground": ground(8.0), "2nd Day Air": air(18.5)},
            {"Ground": ground(9.25)},
        ])
        groups = [
            AddressGroup(address=AUSTIN, items=[Item(16, 20, 1)]),
            AddressGroup(address=RENO, items=[Item(16, 20, 1)]),
        ]

        result = await quote_addresses(groups, lookup)

        assert result.grand_totals["Ground"].cost == pytest.approx(17.25)
        assert result.grand_totals["2nd Day Air"].cost == pytest.approx(18.5)

    @pytest.mark.asyncio
    async def test_to_dict_counts(self):
        """Serialized quote carries item, box and failure counts."""
        lookup = lookup_from([{"Ground": ground(5.0)}, RateLookupError("nope")])
        groups = [
            AddressGroup(address=AUSTIN, items=[Item(16, 20, 1)]),
            AddressGroup(address=RENO, items=[Item(16, 20, 1), Item(16, 20, 1)]),
        ]

        data = (await quote_addresses(groups, lookup)).to_dict()

        assert data["address_count"] == 2
        assert data["item_count"] == 3
        assert data["box_count"] == 2
        assert data["failed_boxes"] == 1
        assert data["grand_totals"]["Ground"]["cost"] == 5.0


class TestCarrierReplies:
    """Aggregation over the real UPS client with canned HTTP replies."""

    @pytest.mark.asyncio
    async def test_malformed_reply_fails_only_its_box(self):
        replies = [
            httpx.Response(200, text="<html>gateway hiccup</html>"),
            httpx.Response(200, json={"RateResponse": {"RatedShipment": {
                "Service": {"Code": "03"},
                "TotalCharges": {"CurrencyCode": "USD", "MonetaryValue": "10.00"},
            }}}),
        ]

        def handler(request):
            if request.url.path == OAUTH_TOKEN_PATH:
                return httpx.Response(200, json={"access_token": "tok", "expires_in": "3600"})
            return replies.pop(0)

        client = UPSClient(UPSCredentials(client_id="id", client_secret="secret", account_number="A1"))
        client._http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        origin = UPSAddress(postal_code="30301", state_province="GA")
        groups = [
            AddressGroup(address=AUSTIN, items=[Item(16, 20, 1)]),
            AddressGroup(address=RENO, items=[Item(16, 20, 1)]),
        ]

        result = await quote_addresses(groups, make_rate_lookup(client, origin))
        data = result.to_dict()

        assert data["failed_boxes"] == 1
        assert data["grand_totals"]["Ground"]["cost"] == 10.0
        assert result.addresses[0].boxes[0].error
        await client.close()
