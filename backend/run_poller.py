#!/usr/bin/env python3
"""
SmartShip - Standalone Tracking Poller

Runs the tracking reconciliation loop as its own process, for deployments
where the API runs with TRACKING_POLL_ENABLED=false.

- polls every non-terminal shipment once at start, then every
  TRACKING_POLL_INTERVAL_SECONDS
- notifies the workflow platform on each status change

Requires DATABASE_URL, UPS_CLIENT_ID and UPS_CLIENT_SECRET.
"""
import asyncio
import logging
import os
import signal
import sys
from datetime import datetime, timezone

# Setup logging first
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

# Validate required environment variables
REQUIRED_VARS = ["DATABASE_URL", "UPS_CLIENT_ID", "UPS_CLIENT_SECRET"]
missing = [var for var in REQUIRED_VARS if not os.getenv(var)]
if missing:
    logger.error(f"Missing required environment variables: {missing}")
    sys.exit(1)

# Import after env validation
from smartship.core.database import engine
from smartship.migrations import migrate_shipping_tables
from smartship.services.shipping_jobs import close_poll_runner, create_poll_runner

# Graceful shutdown flag
_shutdown = False


def handle_shutdown(signum, frame):
    """Handle shutdown signals gracefully."""
    global _shutdown
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")
    _shutdown = True


async def main():
    """Main entry point for the poller service."""
    global _shutdown

    logger.info("=" * 60)
    logger.info("SmartShip Tracking Poller")
    logger.info("=" * 60)
    logger.info(f"Started at: {datetime.now(timezone.utc).isoformat()}")
    logger.info(f"WORKFLOW_API_URL: {'set' if os.getenv('WORKFLOW_API_URL') else 'NOT SET'}")

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    await migrate_shipping_tables(engine)

    runner = create_poll_runner()
    try:
        await runner.start()

        logger.info("Tracking poller running. Press Ctrl+C to stop.")
        while not _shutdown:
            await asyncio.sleep(1)

    except Exception as e:
        logger.error(f"Tracking poller error: {e}")
        raise
    finally:
        logger.info("Stopping tracking poller...")
        await runner.stop()
        await close_poll_runner(runner)
        await engine.dispose()
        logger.info("Tracking poller stopped.")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)
