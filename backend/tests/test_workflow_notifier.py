"""
Tests for the workflow platform notifier.
"""
import json
from datetime import date

import httpx
import pytest

from smartship.models.shipment import ShipmentStatus
from smartship.services.ups_client import TrackingActivity
from smartship.services.workflow_notifier import WorkflowNotifier


def make_notifier(handler, **kwargs):
    return WorkflowNotifier(
        api_url=kwargs.pop("api_url", "https://orders.example.com/api/1.1/wf/"),
        api_key=kwargs.pop("api_key", "wf-key"),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


LATEST = TrackingActivity(
    status_type="D",
    status_code="08",
    description="DELIVERED",
    city="AUSTIN",
    state="TX",
    country="US",
    date="20260107",
    time="101500",
)


class TestWorkflowNotifier:

    @pytest.mark.asyncio
    async def test_posts_transition(self, make_shipment):
        """Delivered transition is posted with bearer auth and the previous status."""
        captured = []

        def handler(request):
            captured.append(request)
            return httpx.Response(200, json={"status": "success"})

        notifier = make_notifier(handler)

        result = await notifier.post_tracking_update(
            make_shipment(estimated_delivery_date=date(2026, 1, 8)),
            ShipmentStatus.DELIVERED,
            ShipmentStatus.IN_TRANSIT,
            LATEST,
        )

        assert result.success
        assert result.status_code == 200
        request = captured[0]
        assert str(request.url) == "https://orders.example.com/api/1.1/wf/tracking-update"
        assert request.headers["Authorization"] == "Bearer wf-key"

        payload = json.loads(request.content)
        assert payload["status"] == "delivered"
        assert payload["previous_status"] == "in_transit"
        assert payload["order_reference"] == "order-42"
        assert payload["estimated_delivery_date"] == "2026-01-08"
        assert payload["delivered_at"] is not None
        assert payload["latest_event"]["description"] == "DELIVERED"
        assert payload["latest_event"]["timestamp"] == "2026-01-07T10:15:00+00:00"
        await notifier.close()

    @pytest.mark.asyncio
    async def test_not_configured(self, make_shipment):
        notifier = WorkflowNotifier(api_url="", api_key="")

        result = await notifier.post_tracking_update(
            make_shipment(), ShipmentStatus.DELIVERED, ShipmentStatus.IN_TRANSIT,
        )

        assert not result.success
        assert "not configured" in result.error

    @pytest.mark.asyncio
    async def test_http_error_returned_not_raised(self, make_shipment):
        notifier = make_notifier(lambda request: httpx.Response(500, text="workflow crashed"))

        result = await notifier.post_tracking_update(
            make_shipment(), ShipmentStatus.EXCEPTION, ShipmentStatus.IN_TRANSIT,
        )

        assert not result.success
        assert result.status_code == 500
        assert result.body == "workflow crashed"
        await notifier.close()

    @pytest.mark.asyncio
    async def test_network_error_returned_not_raised(self, make_shipment):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        notifier = make_notifier(handler)

        result = await notifier.post_tracking_update(
            make_shipment(), ShipmentStatus.DELIVERED, ShipmentStatus.IN_TRANSIT,
        )

        assert not result.success
        assert "timed out" in result.error
        await notifier.close()

    def test_payload_without_event(self, make_shipment):
        """Non-delivered transitions keep the stored delivered_at and omit latest_event."""
        notifier = WorkflowNotifier(api_url="https://x", api_key="k")

        payload = notifier.build_payload(make_shipment(order_reference=""), "out_for_delivery", None)

        assert payload["status"] == "out_for_delivery"
        assert payload["previous_status"] is None
        assert payload["order_reference"] is None
        assert payload["delivered_at"] is None
        assert "latest_event" not in payload

    def test_custom_webhook_path(self):
        notifier = WorkflowNotifier(api_url="https://x/wf", api_key="k", webhook_path="ship-status")

        assert notifier.endpoint == "https://x/wf/ship-status"
