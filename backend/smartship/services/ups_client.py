"""
UPS API Client

Implements UPS OAuth 2.0 authentication and the shipping APIs used here:
- Rating (single service and Shop for all services)
- Shipping (create labels)
- Tracking (activity history)
- Void

All external API calls are logged and every failure surfaces as UPSAPIError.
"""
import base64
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Any
from dataclasses import dataclass, field

import httpx

from smartship.core.config import settings
from smartship.core.exceptions import RateLookupError
from smartship.core.utils import round2, utcnow
from smartship.services.address_parser import ParsedAddress
from smartship.services.packing import Box
from smartship.services.rate_aggregator import RateQuote
from smartship.services.tracking_status import parse_activity_timestamp

logger = logging.getLogger(__name__)

# UPS API URLs
UPS_PRODUCTION_URL = "https://onlinetools.ups.com"
UPS_SANDBOX_URL = "https://wwwcie.ups.com"

OAUTH_TOKEN_PATH = "/security/v1/oauth/token"

RATING_PATH = "/api/rating/v2409/Rate"
SHOP_PATH = "/api/rating/v2409/Shop"
SHIPPING_PATH = "/api/shipments/v2409/ship"
TRACKING_PATH = "/api/track/v1/details"
VOID_PATH = "/api/shipments/v2409/void/cancel"

# Refresh this long before the token actually expires
TOKEN_REFRESH_BUFFER = timedelta(minutes=5)

DEFAULT_SERVICE_CODE = "03"

SERVICE_CODES = {
    "01": "Next Day Air",
    "02": "2nd Day Air",
    "03": "Ground",
    "12": "3 Day Select",
    "13": "Next Day Air Saver",
    "14": "UPS Next Day Air Early",
    "59": "2nd Day Air A.M.",
    "65": "UPS Saver",
}

LABEL_FORMATS = ("GIF", "PNG", "PDF", "ZPL")


def service_name(code: Optional[str]) -> str:
    return SERVICE_CODES.get(code or "", f"Service {code}")


@dataclass
class UPSCredentials:
    """UPS API credentials."""
    client_id: str
    client_secret: str
    account_number: str
    environment: str = "sandbox"

    @property
    def base_url(self) -> str:
        return UPS_PRODUCTION_URL if self.environment == "production" else UPS_SANDBOX_URL


@dataclass
class UPSAddress:
    """Address structure for UPS APIs. Rating only needs postal/state/country."""
    postal_code: str
    state_province: str = ""
    country_code: str = "US"
    name: Optional[str] = None
    company_name: Optional[str] = None
    phone: Optional[str] = None
    address_line1: Optional[str] = None
    city: Optional[str] = None

    def to_ups_format(self) -> Dict:
        """Convert to UPS API format."""
        address = {
            "Address": {
                "PostalCode": self.postal_code,
                "StateProvinceCode": self.state_province[:5] if self.state_province else "",
                "CountryCode": self.country_code,
            },
        }

        if self.address_line1:
            address["Address"]["AddressLine"] = [self.address_line1]
        if self.city:
            address["Address"]["City"] = self.city
        if self.name or self.company_name:
            address["Name"] = (self.company_name or self.name)[:35]
        if self.name:
            address["AttentionName"] = self.name[:35]
        if self.phone:
            address["Phone"] = {"Number": self.phone[:15]}

        return address


@dataclass
class UPSPackage:
    """Package details for UPS APIs."""
    weight: float
    length: float
    width: float
    height: float
    weight_unit: str = "LBS"
    dimension_unit: str = "IN"
    package_type: str = "02"  # Customer Supplied Package

    def to_ups_format(self) -> Dict:
        """Convert to UPS API format."""
        return {
            "PackagingType": {"Code": self.package_type, "Description": "Package"},
            "Dimensions": {
                "UnitOfMeasurement": {"Code": self.dimension_unit},
                "Length": f"{self.length:g}",
                "Width": f"{self.width:g}",
                "Height": f"{self.height:g}",
            },
            "PackageWeight": {
                "UnitOfMeasurement": {"Code": self.weight_unit},
                "Weight": f"{round2(self.weight):g}",
            },
        }


@dataclass
class UPSRate:
    """Shipping rate from UPS. total_charges is negotiated when available."""
    service_code: str
    service_name: str
    total_charges: float
    currency: str
    published_charges: Optional[float] = None
    negotiated_charges: Optional[float] = None
    billing_weight: Optional[float] = None
    guaranteed_days: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service": self.service_name,
            "service_code": self.service_code,
            "total_charges": self.total_charges,
            "published_charges": self.published_charges,
            "negotiated_charges": self.negotiated_charges,
            "currency": self.currency,
            "billing_weight": self.billing_weight,
            "guaranteed_days": self.guaranteed_days,
        }


@dataclass
class UPSShipmentResult:
    """Result of creating a shipment."""
    shipment_id: str
    tracking_number: str
    label_data: str  # Base64 encoded
    label_format: str
    total_charges: float
    currency: str
    raw_response: Dict = field(default_factory=dict)


@dataclass
class TrackingActivity:
    """One UPS activity entry, most recent first in a tracking response."""
    status_type: Optional[str] = None
    status_code: Optional[str] = None
    description: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    date: Optional[str] = None  # YYYYMMDD
    time: Optional[str] = None  # HHMMSS

    @property
    def timestamp(self) -> Optional[datetime]:
        return parse_activity_timestamp(self.date, self.time)


class UPSAPIError(Exception):
    """UPS API error with details."""

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)


class TokenCache:
    """
    OAuth access token with an explicit expiry.

    The clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: Optional[datetime] = None

    @property
    def expires_at(self) -> Optional[datetime]:
        return self._expires_at

    def get(self) -> Optional[str]:
        if self._token and self._expires_at:
            if self._clock() < self._expires_at - TOKEN_REFRESH_BUFFER:
                return self._token
        return None

    def store(self, token: str, expires_in: int) -> None:
        self._token = token
        self._expires_at = self._clock() + timedelta(seconds=expires_in)

    def clear(self) -> None:
        self._token = None
        self._expires_at = None


def _as_list(value: Any) -> List:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _to_float(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class UPSClient:
    """
    UPS API Client with OAuth 2.0 authentication.

    Handles token refresh and provides methods for all shipping operations.
    """

    def __init__(
        self,
        credentials: UPSCredentials,
        timeout: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
        transaction_source: str = "SmartShip",
    ):
        self.credentials = credentials
        self.timeout = timeout
        self.transaction_source = transaction_source
        self._clock = clock
        self._token_cache = TokenCache(clock)
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _ensure_token(self) -> str:
        """Ensure we have a valid OAuth token."""
        token = self._token_cache.get()
        if token:
            return token

        if not self.credentials.client_id or not self.credentials.client_secret:
            raise UPSAPIError(message="UPS credentials not configured", code="AUTH_NOT_CONFIGURED")

        client = await self._get_http_client()
        url = f"{self.credentials.base_url}{OAUTH_TOKEN_PATH}"

        auth_string = f"{self.credentials.client_id}:{self.credentials.client_secret}"
        auth_header = base64.b64encode(auth_string.encode()).decode()

        try:
            response = await client.post(
                url,
                headers={
                    "Authorization": f"Basic {auth_header}",
                    "Content-Type": "application/x-www-form-urlencoded",
                },
                data={"grant_type": "client_credentials"},
            )
        except httpx.RequestError as e:
            logger.error(f"UPS OAuth request failed: {e}")
            raise UPSAPIError(message=f"Network error during authentication: {e}", code="NETWORK_ERROR")

        if response.status_code != 200:
            logger.error(f"UPS OAuth failed: {response.status_code} - {response.text[:500]}")
            raise UPSAPIError(
                message="Failed to authenticate with UPS",
                code="AUTH_FAILED",
                details={"status": response.status_code},
            )

        try:
            data = response.json()
            access_token = data["access_token"]
            expires_in = int(data.get("expires_in", 3600))
        except (ValueError, KeyError, TypeError, AttributeError):
            logger.error(f"UPS OAuth returned no usable token: {response.text[:500]}")
            raise UPSAPIError(
                message="UPS OAuth response did not contain an access token",
                code="INVALID_RESPONSE",
                details={"status": response.status_code},
            )

        self._token_cache.store(access_token, expires_in)

        logger.info(f"UPS OAuth token obtained, expires in {expires_in}s")
        return access_token

    async def _make_request(
        self,
        method: str,
        path: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
    ) -> Dict:
        """Make authenticated API request."""
        token = await self._ensure_token()
        client = await self._get_http_client()
        url = f"{self.credentials.base_url}{path}"

        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "transId": f"smartship_{self._clock().strftime('%Y%m%d%H%M%S%f')}",
            "transactionSrc": self.transaction_source,
        }

        try:
            if method.upper() == "GET":
                response = await client.get(url, headers=headers, params=params)
            elif method.upper() == "POST":
                response = await client.post(url, headers=headers, json=data)
            elif method.upper() == "DELETE":
                response = await client.delete(url, headers=headers)
            else:
                raise ValueError(f"Unsupported HTTP method: {method}")
        except httpx.RequestError as e:
            logger.error(f"UPS API request failed: {method} {path}: {e}")
            raise UPSAPIError(message=f"Network error: {e}", code="NETWORK_ERROR")

        logger.debug(f"UPS API {method} {path} -> {response.status_code}")

        if response.status_code >= 400:
            try:
                error_data = response.json()
            except ValueError:
                error_data = {"raw": response.text[:500]}

            error_msg = "UPS API error"
            error_code = str(response.status_code)

            if isinstance(error_data, dict) and "response" in error_data:
                errors = error_data.get("response", {}).get("errors", [])
                if errors:
                    error_msg = errors[0].get("message", error_msg)
                    error_code = errors[0].get("code", error_code)

            logger.error(f"UPS API error: {method} {path} {error_code} - {error_msg}")
            raise UPSAPIError(message=error_msg, code=error_code, details=error_data)

        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict):
            return body

        logger.error(f"UPS API returned a malformed body: {method} {path} {response.status_code}")
        raise UPSAPIError(
            message="UPS returned a malformed response",
            code="INVALID_RESPONSE",
            details={"status": response.status_code, "raw": response.text[:500]},
        )

    # ==================== Rating ====================

    def _build_rate_request(
        self,
        origin: UPSAddress,
        destination: UPSAddress,
        package: UPSPackage,
        service_code: Optional[str] = None,
    ) -> Dict:
        shipper = origin.to_ups_format()
        shipper["ShipperNumber"] = self.credentials.account_number

        request_data = {
            "RateRequest": {
                "Request": {
                    "SubVersion": "2403",
                    "TransactionReference": {
                        "CustomerContext": f"Rate-{self._clock().strftime('%Y%m%d%H%M%S')}",
                    },
                },
                "Shipment": {
                    "ShipmentRatingOptions": {"NegotiatedRatesIndicator": ""},
                    "Shipper": shipper,
                    "ShipTo": destination.to_ups_format(),
                    "ShipFrom": origin.to_ups_format(),
                    "Package": package.to_ups_format(),
                },
            }
        }

        if service_code:
            request_data["RateRequest"]["Shipment"]["Service"] = {"Code": service_code}
        else:
            request_data["RateRequest"]["Request"]["RequestOption"] = "Shop"

        return request_data

    @staticmethod
    def _parse_rated_shipment(rs: Dict) -> UPSRate:
        code = rs.get("Service", {}).get("Code", "")
        published = _to_float(rs.get("TotalCharges", {}).get("MonetaryValue"))
        negotiated = _to_float(
            rs.get("NegotiatedRateCharges", {}).get("TotalCharge", {}).get("MonetaryValue")
        )
        guaranteed = rs.get("GuaranteedDelivery", {}).get("BusinessDaysInTransit")

        return UPSRate(
            service_code=code,
            service_name=service_name(code),
            total_charges=negotiated if negotiated is not None else (published or 0.0),
            currency=rs.get("TotalCharges", {}).get("CurrencyCode", "USD"),
            published_charges=published,
            negotiated_charges=negotiated,
            billing_weight=_to_float(rs.get("BillingWeight", {}).get("Weight")),
            guaranteed_days=int(guaranteed) if guaranteed else None,
        )

    async def shop_rates(
        self,
        origin: UPSAddress,
        destination: UPSAddress,
        package: UPSPackage,
    ) -> List[UPSRate]:
        """
        Get rates for every available service, cheapest first.

        Returns an empty list when UPS returns no rated shipments.
        """
        request_data = self._build_rate_request(origin, destination, package)
        response = await self._make_request("POST", SHOP_PATH, data=request_data)

        rated = _as_list(response.get("RateResponse", {}).get("RatedShipment"))
        rates = [self._parse_rated_shipment(rs) for rs in rated]
        return sorted(rates, key=lambda r: r.total_charges)

    async def get_rate(
        self,
        origin: UPSAddress,
        destination: UPSAddress,
        package: UPSPackage,
        service_code: str = DEFAULT_SERVICE_CODE,
    ) -> UPSRate:
        """Get the rate for one service."""
        request_data = self._build_rate_request(origin, destination, package, service_code)
        response = await self._make_request("POST", RATING_PATH, data=request_data)

        rated = _as_list(response.get("RateResponse", {}).get("RatedShipment"))
        if not rated:
            raise UPSAPIError(message="No rates returned", code="NO_RATES", details=response)
        return self._parse_rated_shipment(rated[0])

    # ==================== Shipping (Label Creation) ====================

    async def create_shipment(
        self,
        origin: UPSAddress,
        destination: UPSAddress,
        package: UPSPackage,
        service_code: str = DEFAULT_SERVICE_CODE,
        label_format: str = "GIF",
        reference: Optional[str] = None,
        description: str = "Merchandise",
    ) -> UPSShipmentResult:
        """
        Create a shipment and get its label.

        Args:
            origin: Ship-from address (also the shipper)
            destination: Ship-to address
            package: One packed box
            service_code: UPS service code
            label_format: GIF, PNG, PDF or ZPL
            reference: Optional customer reference printed on the label

        Returns:
            Shipment result with tracking number and label
        """
        label_format = label_format.upper() if label_format.upper() in LABEL_FORMATS else "GIF"

        shipper = origin.to_ups_format()
        shipper["ShipperNumber"] = self.credentials.account_number

        package_data = package.to_ups_format()
        package_data["Description"] = description
        # Ship API names the packaging field differently from Rate
        package_data["Packaging"] = package_data.pop("PackagingType")

        request_data = {
            "ShipmentRequest": {
                "Request": {
                    "SubVersion": "2403",
                    "RequestOption": "nonvalidate",
                    "TransactionReference": {
                        "CustomerContext": reference or f"Ship-{self._clock().strftime('%Y%m%d%H%M%S')}",
                    },
                },
                "Shipment": {
                    "Description": description,
                    "Shipper": shipper,
                    "ShipTo": destination.to_ups_format(),
                    "ShipFrom": origin.to_ups_format(),
                    "PaymentInformation": {
                        "ShipmentCharge": {
                            "Type": "01",  # Transportation
                            "BillShipper": {
                                "AccountNumber": self.credentials.account_number,
                            },
                        },
                    },
                    "Service": {"Code": service_code, "Description": service_name(service_code)},
                    "Package": package_data,
                },
                "LabelSpecification": {
                    "LabelImageFormat": {"Code": label_format},
                    "LabelStockSize": {"Height": "6", "Width": "4"},
                },
            }
        }

        if reference:
            request_data["ShipmentRequest"]["Shipment"]["ReferenceNumber"] = {
                "Code": "01",  # Customer Reference
                "Value": reference[:35],
            }

        response = await self._make_request("POST", SHIPPING_PATH, data=request_data)

        shipment_results = response.get("ShipmentResponse", {}).get("ShipmentResults", {})
        package_results = _as_list(shipment_results.get("PackageResults"))
        package_result = package_results[0] if package_results else {}

        tracking_number = package_result.get("TrackingNumber", "")
        if not tracking_number:
            raise UPSAPIError(message="UPS returned no tracking number", code="SHIP_ERROR", details=response)

        label_data = package_result.get("ShippingLabel", {}).get("GraphicImage", "")

        charges = shipment_results.get("ShipmentCharges", {}).get("TotalCharges", {})
        negotiated = shipment_results.get("NegotiatedRateCharges", {}).get("TotalCharge", {})
        total = _to_float(negotiated.get("MonetaryValue"))
        if total is None:
            total = _to_float(charges.get("MonetaryValue")) or 0.0

        return UPSShipmentResult(
            shipment_id=shipment_results.get("ShipmentIdentificationNumber", tracking_number),
            tracking_number=tracking_number,
            label_data=label_data,
            label_format=label_format,
            total_charges=total,
            currency=charges.get("CurrencyCode", "USD"),
            raw_response=response,
        )

    # ==================== Tracking ====================

    async def get_tracking_activity(self, tracking_number: str) -> List[TrackingActivity]:
        """
        Get the activity history for a tracking number, most recent first.

        Returns an empty list when UPS has no shipment or package data yet.
        """
        response = await self._make_request(
            "GET",
            f"{TRACKING_PATH}/{tracking_number}",
            params={"locale": "en_US", "returnSignature": "false"},
        )

        shipments = _as_list(response.get("trackResponse", {}).get("shipment"))
        if not shipments:
            logger.info(f"No tracking data for {tracking_number}")
            return []

        packages = _as_list(shipments[0].get("package"))
        if not packages:
            return []

        activities = []
        for activity in _as_list(packages[0].get("activity")):
            status = activity.get("status") or {}
            location = (activity.get("location") or {}).get("address") or {}
            activities.append(TrackingActivity(
                status_type=status.get("type") or None,
                status_code=status.get("code") or None,
                description=status.get("description"),
                city=location.get("city"),
                state=location.get("stateProvince"),
                country=location.get("country") or location.get("countryCode"),
                date=activity.get("date"),
                time=activity.get("time"),
            ))

        return activities

    # ==================== Void Shipment ====================

    async def void_shipment(self, shipment_id: str) -> Dict:
        """
        Void a shipment (before pickup).

        Returns the UPS response; raises UPSAPIError if UPS refuses the void.
        """
        response = await self._make_request("DELETE", f"{VOID_PATH}/{shipment_id}")

        summary = response.get("VoidShipmentResponse", {}).get("SummaryResult", {})
        if summary.get("Status", {}).get("Code") != "1":
            logger.warning(f"Void shipment {shipment_id} returned non-success: {summary}")
            raise UPSAPIError(message="UPS did not confirm the void", code="VOID_REJECTED", details=response)

        logger.info(f"Shipment {shipment_id} voided successfully")
        return response


# ==================== Factories ====================


def origin_from_settings() -> UPSAddress:
    """Ship-from address configured for this warehouse."""
    return UPSAddress(
        postal_code=settings.SHIP_FROM_POSTAL_CODE,
        state_province=settings.SHIP_FROM_STATE,
        country_code=settings.SHIP_FROM_COUNTRY_CODE,
        name=settings.SHIP_FROM_NAME or None,
        company_name=settings.SHIP_FROM_COMPANY or None,
        phone=settings.SHIP_FROM_PHONE or None,
        address_line1=settings.SHIP_FROM_ADDRESS or None,
        city=settings.SHIP_FROM_CITY or None,
    )


def create_ups_client_from_settings() -> UPSClient:
    """Create UPS client from environment settings."""
    credentials = UPSCredentials(
        client_id=settings.UPS_CLIENT_ID,
        client_secret=settings.UPS_CLIENT_SECRET,
        account_number=settings.UPS_ACCOUNT_NUMBER,
        environment=settings.UPS_ENVIRONMENT,
    )
    return UPSClient(
        credentials,
        timeout=settings.UPS_TIMEOUT_SECONDS,
        transaction_source=settings.UPS_TRANSACTION_SOURCE,
    )


def make_rate_lookup(client: UPSClient, origin: UPSAddress):
    """
    Adapt the client into the rate lookup the aggregator calls per box.

    Returns {service name: RateQuote}; an empty mapping means UPS offered no
    rates. Carrier failures become RateLookupError so they are recorded
    against the box instead of failing the quote.
    """
    async def rate_lookup(box: Box, address: ParsedAddress) -> Dict[str, RateQuote]:
        destination = UPSAddress(
            postal_code=address.postal_code,
            state_province=address.state,
            country_code=address.country_code,
        )
        package = UPSPackage(
            weight=box.weight,
            length=box.length,
            width=box.width,
            height=box.current_depth,
        )

        try:
            rates = await client.shop_rates(origin, destination, package)
        except UPSAPIError as e:
            raise RateLookupError(e.message, code=e.code or "RATE_LOOKUP_FAILED")

        return {
            rate.service_name: RateQuote(
                service_code=rate.service_code,
                service_name=rate.service_name,
                cost=rate.total_charges,
                currency=rate.currency,
            )
            for rate in rates
        }

    return rate_lookup
