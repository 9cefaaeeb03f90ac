"""
Workflow platform notifier

Posts shipment status transitions to a backend-workflow endpoint on the
order platform (e.g. https://yourapp.example.com/api/1.1/wf/tracking-update).

Best-effort: post_tracking_update never raises. Failures come back as a
NotificationResult and are logged; the caller's state changes stand.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Optional

import httpx

from smartship.core.config import settings
from smartship.core.utils import utcnow
from smartship.models.shipment import ShipmentStatus

logger = logging.getLogger(__name__)


@dataclass
class NotificationResult:
    success: bool
    status_code: Optional[int] = None
    body: Any = None
    error: Optional[str] = None


def _iso(value: Any) -> Optional[str]:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value or None


def _status_value(status: Any) -> Optional[str]:
    if isinstance(status, ShipmentStatus):
        return status.value
    return status


class WorkflowNotifier:
    """Sends tracking updates to the workflow endpoint with bearer auth."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        webhook_path: str = "tracking-update",
        timeout: float = 15.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url or ""
        self.api_key = api_key or ""
        self.webhook_path = webhook_path or "tracking-update"
        self.timeout = timeout
        self._http_client = http_client

    @property
    def is_configured(self) -> bool:
        return bool(self.api_url and self.api_key)

    @property
    def endpoint(self) -> str:
        return f"{self.api_url.rstrip('/')}/{self.webhook_path}"

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self):
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def build_payload(
        self,
        shipment: Any,
        new_status: Any,
        previous_status: Any,
        latest_event: Any = None,
    ) -> Dict[str, Any]:
        new_status = _status_value(new_status)

        if new_status == ShipmentStatus.DELIVERED.value:
            delivered_at = utcnow().isoformat()
        else:
            delivered_at = _iso(shipment.delivered_at)

        payload = {
            "tracking_number": shipment.tracking_number,
            "status": new_status,
            "previous_status": _status_value(previous_status),
            "order_reference": shipment.order_reference or None,
            "service_name": shipment.service_name,
            "ship_to_name": shipment.ship_to_name,
            "ship_to_city": shipment.ship_to_city,
            "ship_to_state": shipment.ship_to_state,
            "estimated_delivery_date": _iso(shipment.estimated_delivery_date),
            "delivered_at": delivered_at,
        }

        if latest_event is not None:
            payload["latest_event"] = {
                "description": latest_event.description or None,
                "location_city": latest_event.city or None,
                "location_state": latest_event.state or None,
                "location_country": latest_event.country or None,
                "timestamp": _iso(latest_event.timestamp),
            }

        return payload

    async def post_tracking_update(
        self,
        shipment: Any,
        new_status: Any,
        previous_status: Any,
        latest_event: Any = None,
    ) -> NotificationResult:
        """Post one status transition. Never raises."""
        if not self.is_configured:
            logger.info("Workflow notifier not configured, skipping status post")
            return NotificationResult(success=False, error="Workflow notifier not configured")

        tracking_number = getattr(shipment, "tracking_number", None)

        try:
            payload = self.build_payload(shipment, new_status, previous_status, latest_event)
            client = await self._get_http_client()

            logger.info(f"Posting status update: {tracking_number} -> {payload['status']}")
            response = await client.post(
                self.endpoint,
                json=payload,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                },
                timeout=self.timeout,
            )
        except Exception as e:
            logger.error(f"Workflow notification error for {tracking_number}: {e}")
            return NotificationResult(success=False, error=str(e) or type(e).__name__)

        try:
            body = response.json()
        except ValueError:
            body = response.text

        if response.is_success:
            logger.info(f"Workflow notified: {tracking_number} ({response.status_code})")
            return NotificationResult(success=True, status_code=response.status_code, body=body)

        logger.error(
            f"Workflow notification failed: {tracking_number} - "
            f"{response.status_code}: {response.text[:500]}"
        )
        return NotificationResult(success=False, status_code=response.status_code, body=body)


def create_notifier_from_settings() -> WorkflowNotifier:
    return WorkflowNotifier(
        api_url=settings.WORKFLOW_API_URL,
        api_key=settings.WORKFLOW_API_KEY,
        webhook_path=settings.WORKFLOW_WEBHOOK_PATH,
        timeout=settings.WORKFLOW_TIMEOUT_SECONDS,
    )
