"""
Tracking reconciliation for a single shipment

One poll:
1. fetch the UPS activity list (most recent first)
2. record every activity not already stored
3. map the most recent activity to a status
4. if that differs from the stored status, update the shipment and notify
   the workflow platform

Carrier and store errors propagate to the caller. Notification problems
never do: the status change is already committed by then.
"""
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from smartship.core.utils import utcnow
from smartship.models.shipment import ShipmentStatus
from smartship.services.shipment_store import ShipmentStore, TrackingEventStore
from smartship.services.tracking_status import map_ups_status
from smartship.services.ups_client import TrackingActivity, UPSClient
from smartship.services.workflow_notifier import WorkflowNotifier

logger = logging.getLogger(__name__)


@dataclass
class PollResult:
    tracking_number: str
    activities: int = 0
    events_recorded: int = 0
    previous_status: Optional[ShipmentStatus] = None
    new_status: Optional[ShipmentStatus] = None
    notified: bool = False

    @property
    def transitioned(self) -> bool:
        return self.new_status is not None

    def to_dict(self) -> dict:
        return {
            "tracking_number": self.tracking_number,
            "activities": self.activities,
            "events_recorded": self.events_recorded,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "new_status": self.new_status.value if self.new_status else None,
            "transitioned": self.transitioned,
            "notified": self.notified,
        }


def _current_status(shipment: Any) -> Optional[ShipmentStatus]:
    status = shipment.status
    if status is None or isinstance(status, ShipmentStatus):
        return status
    return ShipmentStatus(status)


class TrackingReconciler:
    """Brings one shipment's stored state in line with what UPS reports."""

    def __init__(
        self,
        ups_client: UPSClient,
        shipments: ShipmentStore,
        events: TrackingEventStore,
        notifier: WorkflowNotifier,
    ):
        self.ups_client = ups_client
        self.shipments = shipments
        self.events = events
        self.notifier = notifier

    async def record_activities(self, shipment: Any, activities: List[TrackingActivity]) -> int:
        """Store activities not seen before. Returns how many were inserted."""
        recorded = 0

        for activity in activities:
            timestamp = activity.timestamp
            if timestamp is None:
                # Nothing to dedupe on; the carrier resends it every poll
                logger.debug(f"{shipment.tracking_number}: skipping activity without timestamp")
                continue

            if await self.events.exists_event(shipment.tracking_number, timestamp, activity.status_code):
                continue

            inserted = await self.events.insert_event(
                shipment_id=shipment.id,
                tracking_number=shipment.tracking_number,
                status_code=activity.status_code,
                status_type=activity.status_type,
                status_description=activity.description,
                location_city=activity.city,
                location_state=activity.state,
                location_country=activity.country,
                activity_timestamp=timestamp,
            )
            if inserted is not None:
                recorded += 1

        return recorded

    async def poll_shipment(self, shipment: Any) -> PollResult:
        tracking_number = shipment.tracking_number
        current = _current_status(shipment)
        result = PollResult(tracking_number=tracking_number, previous_status=current)

        activities = await self.ups_client.get_tracking_activity(tracking_number)
        result.activities = len(activities)
        if not activities:
            return result

        result.events_recorded = await self.record_activities(shipment, activities)

        latest = activities[0]
        new_status = map_ups_status(latest.status_type)
        if new_status is None or new_status == current:
            return result

        delivered_at = utcnow() if new_status == ShipmentStatus.DELIVERED else None
        await self.shipments.update_status(tracking_number, new_status, delivered_at=delivered_at)
        result.new_status = new_status
        logger.info(f"{tracking_number}: {current.value if current else None} -> {new_status.value}")

        try:
            notification = await self.notifier.post_tracking_update(shipment, new_status, current, latest)
            result.notified = notification.success
        except Exception as e:
            logger.error(f"Workflow notification failed for {tracking_number}: {e}")

        return result
