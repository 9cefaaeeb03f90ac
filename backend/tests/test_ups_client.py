"""
Tests for the UPS API client.

HTTP is served by httpx.MockTransport; nothing leaves the process.
"""
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from smartship.core.exceptions import RateLookupError
from smartship.services.address_parser import ParsedAddress
from smartship.services.packing import Item, pack
from smartship.services.ups_client import (
    OAUTH_TOKEN_PATH,
    SHOP_PATH,
    UPS_PRODUCTION_URL,
    UPS_SANDBOX_URL,
    TokenCache,
    UPSAddress,
    UPSAPIError,
    UPSClient,
    UPSCredentials,
    UPSPackage,
    make_rate_lookup,
    service_name,
)

ORIGIN = UPSAddress(postal_code="30301", state_province="GA", city="Atlanta", address_line1="1 Dock Way")
DESTINATION = UPSAddress(postal_code="78701", state_province="TX")
PACKAGE = UPSPackage(weight=3.66, length=16, width=20, height=4)


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def token_response():
    return httpx.Response(200, json={"access_token": "tok-1", "expires_in": "3600"})


def rated_shipment(code, published, negotiated=None):
    shipment = {
        "Service": {"Code": code},
        "TotalCharges": {"CurrencyCode": "USD", "MonetaryValue": published},
        "BillingWeight": {"Weight": "4.0"},
    }
    if negotiated is not None:
        shipment["NegotiatedRateCharges"] = {"TotalCharge": {"MonetaryValue": negotiated}}
    return shipment


def make_client(handler, clock=None):
    client = UPSClient(
        UPSCredentials(client_id="id", client_secret="secret", account_number="A1B2C3"),
        clock=clock or FakeClock(),
    )
    client._http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


class Recorder:
    """MockTransport handler that serves OAuth and routes everything else to a callback."""

    def __init__(self, respond):
        self.respond = respond
        self.requests = []
        self.token_requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == OAUTH_TOKEN_PATH:
            self.token_requests += 1
            return token_response()
        self.requests.append(request)
        return self.respond(request)


class TestTokenCache:

    def test_empty(self):
        assert TokenCache().get() is None

    def test_valid_until_refresh_buffer(self):
        """Token is reused until five minutes before expiry."""
        clock = FakeClock()
        cache = TokenCache(clock)
        cache.store("tok", 3600)

        clock.advance(minutes=54)
        assert cache.get() == "tok"

        clock.advance(minutes=2)
        assert cache.get() is None

    def test_clear(self):
        cache = TokenCache()
        cache.store("tok", 3600)
        cache.clear()

        assert cache.get() is None
        assert cache.expires_at is None


class TestAuthentication:

    @pytest.mark.asyncio
    async def test_token_reused(self):
        recorder = Recorder(lambda request: httpx.Response(200, json={"RateResponse": {"RatedShipment": []}}))
        client = make_client(recorder)

        await client.shop_rates(ORIGIN, DESTINATION, PACKAGE)
        await client.shop_rates(ORIGIN, DESTINATION, PACKAGE)

        assert recorder.token_requests == 1
        assert recorder.requests[0].headers["Authorization"] == "Bearer tok-1"
        assert recorder.requests[0].headers["transactionSrc"] == "SmartShip"
        await client.close()

    @pytest.mark.asyncio
    async def test_token_refreshed_after_expiry(self):
        clock = FakeClock()
        recorder = Recorder(lambda request: httpx.Response(200, json={"RateResponse": {}}))
        client = make_client(recorder, clock)

        await client.shop_rates(ORIGIN, DESTINATION, PACKAGE)
        clock.advance(hours=1)
        await client.shop_rates(ORIGIN, DESTINATION, PACKAGE)

        assert recorder.token_requests == 2
        await client.close()

    @pytest.mark.asyncio
    async def test_auth_failure(self):
        client = make_client(lambda request: httpx.Response(401, text="bad creds"))

        with pytest.raises(UPSAPIError) as exc_info:
            await client.shop_rates(ORIGIN, DESTINATION, PACKAGE)

        assert exc_info.value.code == "AUTH_FAILED"
        await client.close()

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        client = UPSClient(UPSCredentials(client_id="", client_secret="", account_number=""))

        with pytest.raises(UPSAPIError) as exc_info:
            await client.get_tracking_activity("1Z1")

        assert exc_info.value.code == "AUTH_NOT_CONFIGURED"

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)

        with pytest.raises(UPSAPIError) as exc_info:
            await client.shop_rates(ORIGIN, DESTINATION, PACKAGE)

        assert exc_info.value.code == "NETWORK_ERROR"
        await client.close()

    @pytest.mark.asyncio
    async def test_token_missing_from_reply(self):
        def handler(request):
            if request.url.path == OAUTH_TOKEN_PATH:
                return httpx.Response(200, json={"error": "nope"})
            return httpx.Response(200, json={"RateResponse": {}})

        client = make_client(handler)

        with pytest.raises(UPSAPIError) as exc_info:
            await client.shop_rates(ORIGIN, DESTINATION, PACKAGE)

        assert exc_info.value.code == "INVALID_RESPONSE"
        await client.close()

    @pytest.mark.asyncio
    async def test_token_reply_not_json(self):
        def handler(request):
            return httpx.Response(200, text="<html>login</html>")

        client = make_client(handler)

        with pytest.raises(UPSAPIError) as exc_info:
            await client.shop_rates(ORIGIN, DESTINATION, PACKAGE)

        assert exc_info.value.code == "INVALID_RESPONSE"
        await client.close()

    def test_base_url(self):
        assert UPSCredentials("a", "b", "c", "production").base_url == UPS_PRODUCTION_URL
        assert UPSCredentials("a", "b", "c").base_url == UPS_SANDBOX_URL


class TestRating:

    @pytest.mark.asyncio
    async def test_shop_rates_sorted_and_negotiated(self):
        recorder = Recorder(lambda request: httpx.Response(200, json={
            "RateResponse": {"RatedShipment": [
                rated_shipment("02", "31.10"),
                rated_shipment("03", "14.20", negotiated="11.05"),
            ]},
        }))
        client = make_client(recorder)

        rates = await client.shop_rates(ORIGIN, DESTINATION, PACKAGE)

        assert [r.service_code for r in rates] == ["03", "02"]
        assert rates[0].total_charges == 11.05
        assert rates[0].published_charges == 14.20
        assert rates[0].service_name == "Ground"
        assert recorder.requests[0].url.path == SHOP_PATH

        body = json.loads(recorder.requests[0].content)
        shipment = body["RateRequest"]["Shipment"]
        assert body["RateRequest"]["Request"]["RequestOption"] == "Shop"
        assert shipment["Shipper"]["ShipperNumber"] == "A1B2C3"
        assert shipment["Package"]["Dimensions"]["Height"] == "4"
        assert shipment["Package"]["PackageWeight"]["Weight"] == "3.66"
        await client.close()

    @pytest.mark.asyncio
    async def test_single_rated_shipment_object(self):
        """UPS returns a bare object, not a list, when only one service rates."""
        client = make_client(Recorder(lambda request: httpx.Response(200, json={
            "RateResponse": {"RatedShipment": rated_shipment("03", "12.00")},
        })))

        rate = await client.get_rate(ORIGIN, DESTINATION, PACKAGE)

        assert rate.total_charges == 12.0
        assert rate.billing_weight == 4.0
        await client.close()

    @pytest.mark.asyncio
    async def test_get_rate_no_rates(self):
        client = make_client(Recorder(lambda request: httpx.Response(200, json={"RateResponse": {}})))

        with pytest.raises(UPSAPIError) as exc_info:
            await client.get_rate(ORIGIN, DESTINATION, PACKAGE)

        assert exc_info.value.code == "NO_RATES"
        await client.close()

    @pytest.mark.asyncio
    async def test_api_error_parsed(self):
        client = make_client(Recorder(lambda request: httpx.Response(400, json={
            "response": {"errors": [{"code": "111210", "message": "The requested service is unavailable"}]},
        })))

        with pytest.raises(UPSAPIError) as exc_info:
            await client.shop_rates(ORIGIN, DESTINATION, PACKAGE)

        assert exc_info.value.code == "111210"
        assert "unavailable" in exc_info.value.message
        await client.close()

    @pytest.mark.asyncio
    async def test_non_json_success_body(self):
        """A 2xx reply that is not JSON is a carrier error, not a crash."""
        client = make_client(Recorder(lambda request: httpx.Response(200, text="<html>gateway hiccup</html>")))

        with pytest.raises(UPSAPIError) as exc_info:
            await client.shop_rates(ORIGIN, DESTINATION, PACKAGE)

        assert exc_info.value.code == "INVALID_RESPONSE"
        assert "gateway hiccup" in exc_info.value.details["raw"]
        await client.close()

    @pytest.mark.asyncio
    async def test_json_array_body(self):
        client = make_client(Recorder(lambda request: httpx.Response(200, json=["unexpected"])))

        with pytest.raises(UPSAPIError) as exc_info:
            await client.get_rate(ORIGIN, DESTINATION, PACKAGE)

        assert exc_info.value.code == "INVALID_RESPONSE"
        await client.close()


class TestRateLookup:

    @pytest.mark.asyncio
    async def test_maps_rates_by_service_name(self):
        recorder = Recorder(lambda request: httpx.Response(200, json={
            "RateResponse": {"RatedShipment": [rated_shipment("03", "9.99"), rated_shipment("01", "45.00")]},
        }))
        client = make_client(recorder)
        lookup = make_rate_lookup(client, ORIGIN)
        box = pack([Item(16, 20, 1)])[0]
        address = ParsedAddress(raw="12 Oak St, Austin, TX 78701", state="TX", postal_code="78701")

        rates = await lookup(box, address)

        assert set(rates) == {"Ground", "Next Day Air"}
        assert rates["Ground"].cost == 9.99
        assert rates["Ground"].service_code == "03"
        ship_to = json.loads(recorder.requests[0].content)["RateRequest"]["Shipment"]["ShipTo"]
        assert ship_to["Address"]["PostalCode"] == "78701"
        await client.close()

    @pytest.mark.asyncio
    async def test_carrier_error_becomes_rate_lookup_error(self):
        client = make_client(Recorder(lambda request: httpx.Response(503, text="down")))
        lookup = make_rate_lookup(client, ORIGIN)
        box = pack([Item(16, 20, 1)])[0]
        address = ParsedAddress(raw="x, TX 78701", state="TX", postal_code="78701")

        with pytest.raises(RateLookupError):
            await lookup(box, address)
        await client.close()



    @pytest.mark.asyncio
    async def test_malformed_reply_becomes_rate_lookup_error(self):
        client = make_client(Recorder(lambda request: httpx.Response(200, text="<html>gateway hiccup</html>")))
        lookup = make_rate_lookup(client, ORIGIN)
        box = pack([Item(16, 20, 1)])[0]
        address = ParsedAddress(raw="x, TX 78701", state="TX", postal_code="78701")

        with pytest.raises(RateLookupError) as exc_info:
            await lookup(box, address)

        assert exc_info.value.code == "INVALID_RESPONSE"
        await client.close()


class TestShipping:

    @pytest.mark.asyncio
    async def test_create_shipment(self):
        recorder = Recorder(lambda request: httpx.Response(200, json={
            "ShipmentResponse": {"ShipmentResults": {
                "ShipmentIdentificationNumber": "1ZSHIP",
                "ShipmentCharges": {"TotalCharges": {"CurrencyCode": "USD", "MonetaryValue": "15.00"}},
                "NegotiatedRateCharges": {"TotalCharge": {"MonetaryValue": "12.50"}},
                "PackageResults": {
                    "TrackingNumber": "1Z999AA10123456784",
                    "ShippingLabel": {"GraphicImage": "R0lGOD=="},
                },
            }},
        }))
        client = make_client(recorder)
        destination = UPSAddress(postal_code="78701", state_province="TX", name="Jane Doe",
                                 address_line1="12 Oak St", city="Austin")

        result = await client.create_shipment(ORIGIN, destination, PACKAGE, label_format="zpl", reference="order-42")

        assert result.tracking_number == "1Z999AA10123456784"
        assert result.shipment_id == "1ZSHIP"
        assert result.total_charges == 12.5
        assert result.label_format == "ZPL"

        body = json.loads(recorder.requests[0].content)["ShipmentRequest"]
        assert body["Shipment"]["Package"]["Packaging"]["Code"] == "02"
        assert "PackagingType" not in body["Shipment"]["Package"]
        assert body["Shipment"]["ReferenceNumber"]["Value"] == "order-42"
        assert body["Shipment"]["ShipTo"]["AttentionName"] == "Jane Doe"
        await client.close()

    @pytest.mark.asyncio
    async def test_no_tracking_number(self):
        client = make_client(Recorder(lambda request: httpx.Response(200, json={"ShipmentResponse": {}})))

        with pytest.raises(UPSAPIError) as exc_info:
            await client.create_shipment(ORIGIN, DESTINATION, PACKAGE)

        assert exc_info.value.code == "SHIP_ERROR"
        await client.close()

    @pytest.mark.asyncio
    async def test_void(self):
        recorder = Recorder(lambda request: httpx.Response(200, json={
            "VoidShipmentResponse": {"SummaryResult": {"Status": {"Code": "1", "Description": "Success"}}},
        }))
        client = make_client(recorder)

        await client.void_shipment("1ZSHIP")

        assert recorder.requests[0].method == "DELETE"
        assert recorder.requests[0].url.path.endswith("/1ZSHIP")
        await client.close()

    @pytest.mark.asyncio
    async def test_void_rejected(self):
        client = make_client(Recorder(lambda request: httpx.Response(200, json={
            "VoidShipmentResponse": {"SummaryResult": {"Status": {"Code": "0"}}},
        })))

        with pytest.raises(UPSAPIError) as exc_info:
            await client.void_shipment("1ZSHIP")

        assert exc_info.value.code == "VOID_REJECTED"
        await client.close()


class TestTracking:

    @pytest.mark.asyncio
    async def test_activity_parsed(self):
        recorder = Recorder(lambda request: httpx.Response(200, json={
            "trackResponse": {"shipment": [{"package": [{"activity": [
                {
                    "status": {"type": "D", "code": "08", "description": "DELIVERED"},
                    "location": {"address": {"city": "AUSTIN", "stateProvince": "TX", "countryCode": "US"}},
                    "date": "20260107",
                    "time": "101500",
                },
                {"status": {"type": "", "code": ""}, "date": "20260106"},
            ]}]}]},
        }))
        client = make_client(recorder)

        activities = await client.get_tracking_activity("1Z999AA10123456784")

        assert len(activities) == 2
        assert activities[0].status_type == "D"
        assert activities[0].status_code == "08"
        assert activities[0].country == "US"
        assert activities[0].timestamp == datetime(2026, 1, 7, 10, 15, tzinfo=timezone.utc)
        assert activities[1].status_type is None
        assert recorder.requests[0].url.params["locale"] == "en_US"
        await client.close()

    @pytest.mark.asyncio
    async def test_no_shipment_data(self):
        client = make_client(Recorder(lambda request: httpx.Response(200, json={"trackResponse": {"shipment": []}})))

        assert await client.get_tracking_activity("1Z1") == []
        await client.close()


def test_service_name_fallback():
    assert service_name("03") == "Ground"
    assert service_name("99") == "Service 99"
