"""
Background Jobs for tracking reconciliation

Polls UPS for every shipment that is not yet in a terminal status:
- once immediately at start, then every TRACKING_POLL_INTERVAL_SECONDS
- shipments strictly one after another, with a short pause between carrier
  calls to stay under the UPS rate limit
- at most one batch in flight; an overlapping trigger is skipped

Stopping is cooperative: the stop flag is checked between shipments, so
a running batch finishes the shipment in hand and then returns.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, asdict
from typing import Optional

from smartship.core.config import settings
from smartship.core.utils import utcnow
from smartship.services.shipment_store import ShipmentStore, TrackingEventStore
from smartship.services.tracking_poller import PollResult, TrackingReconciler
from smartship.services.ups_client import create_ups_client_from_settings
from smartship.services.workflow_notifier import create_notifier_from_settings

logger = logging.getLogger(__name__)


@dataclass
class BatchSummary:
    checked: int = 0
    updated: int = 0  # polled without error
    transitioned: int = 0
    notified: int = 0
    errors: int = 0
    cancelled: bool = False
    duration_ms: int = 0
    started_at: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class TrackingPollRunner:
    """
    Runs tracking poll batches on a timer.
    """

    def __init__(
        self,
        reconciler: TrackingReconciler,
        shipments: ShipmentStore,
        interval_seconds: float = 4 * 60 * 60,
        delay_seconds: float = 0.5,
    ):
        self.reconciler = reconciler
        self.shipments = shipments
        self.interval_seconds = interval_seconds
        self.delay_seconds = delay_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._batch_lock = asyncio.Lock()
        self._wake = asyncio.Event()
        self.last_summary: Optional[BatchSummary] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def batch_in_flight(self) -> bool:
        return self._batch_lock.locked()

    async def start(self):
        """Start the poll loop."""
        if self._running:
            logger.warning("Tracking poller already running")
            return

        self._running = True
        self._wake.clear()
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"Tracking poller started (every {self.interval_seconds / 3600:g}h)")

    async def stop(self):
        """Stop the poll loop, letting an in-flight batch finish its current shipment."""
        if not self._task:
            self._running = False
            return

        self._running = False
        self._wake.set()

        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Tracking poller stopped")

    async def _poll_loop(self):
        while self._running:
            try:
                await self.run_batch()
            except Exception as e:
                logger.error(f"Tracking poll failed: {e}")

            if not self._running:
                break

            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    def _should_stop(self) -> bool:
        return self._task is not None and not self._running

    async def run_batch(self) -> Optional[BatchSummary]:
        """
        Poll every active shipment once.

        Returns None without polling if another batch is already running.
        """
        if self._batch_lock.locked():
            logger.warning("Tracking poll already in progress, skipping this trigger")
            return None

        async with self._batch_lock:
            summary = await self._run_batch()
            self.last_summary = summary
            return summary

    async def _run_batch(self) -> BatchSummary:
        logger.info("Starting tracking poll...")
        summary = BatchSummary(started_at=utcnow().isoformat())
        start = time.monotonic()

        shipments = await self.shipments.get_active_shipments()
        logger.info(f"{len(shipments)} active shipment(s) to check")

        for index, shipment in enumerate(shipments):
            if self._should_stop():
                summary.cancelled = True
                logger.info(f"Tracking poll cancelled after {summary.checked} shipment(s)")
                break

            summary.checked += 1
            try:
                result: PollResult = await self.reconciler.poll_shipment(shipment)
                summary.updated += 1
                if result.transitioned:
                    summary.transitioned += 1
                if result.notified:
                    summary.notified += 1
            except Exception as e:
                summary.errors += 1
                logger.error(f"Error polling {shipment.tracking_number}: {e}")

            if len(shipments) > 1 and index < len(shipments) - 1:
                await asyncio.sleep(self.delay_seconds)

        summary.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            f"Poll complete: {summary.updated} updated, {summary.transitioned} changed, "
            f"{summary.notified} notified, {summary.errors} errors, {summary.duration_ms}ms"
        )
        return summary


# ==================== Factory ====================


def create_poll_runner() -> TrackingPollRunner:
    """Build a runner wired to UPS, the database and the workflow notifier."""
    shipments = ShipmentStore()
    reconciler = TrackingReconciler(
        ups_client=create_ups_client_from_settings(),
        shipments=shipments,
        events=TrackingEventStore(),
        notifier=create_notifier_from_settings(),
    )
    return TrackingPollRunner(
        reconciler,
        shipments,
        interval_seconds=settings.TRACKING_POLL_INTERVAL_SECONDS,
        delay_seconds=settings.TRACKING_POLL_DELAY_SECONDS,
    )


async def close_poll_runner(runner: TrackingPollRunner):
    await runner.reconciler.ups_client.close()
    await runner.reconciler.notifier.close()


# ==================== Job Scheduler Integration ====================


_poll_runner: Optional[TrackingPollRunner] = None


def get_poll_runner() -> TrackingPollRunner:
    """Process-wide runner shared by the scheduler and the API."""
    global _poll_runner

    if _poll_runner is None:
        _poll_runner = create_poll_runner()
    return _poll_runner


async def start_tracking_poller():
    """Start the tracking poll loop."""
    await get_poll_runner().start()


async def stop_tracking_poller():
    """Stop the tracking poll loop and release its HTTP clients."""
    global _poll_runner

    if _poll_runner:
        await _poll_runner.stop()
        await close_poll_runner(_poll_runner)
        _poll_runner = None


async def sync_all_active_tracking() -> Optional[BatchSummary]:
    """Manually trigger one poll batch on the shared runner."""
    return await get_poll_runner().run_batch()


def get_poller_status() -> dict:
    """Heartbeat for /health. Never creates a runner."""
    if _poll_runner is None:
        return {"running": False, "batch_in_flight": False, "last_summary": None}

    summary = _poll_runner.last_summary
    return {
        "running": _poll_runner.is_running,
        "batch_in_flight": _poll_runner.batch_in_flight,
        "interval_seconds": _poll_runner.interval_seconds,
        "last_summary": summary.to_dict() if summary else None,
    }
