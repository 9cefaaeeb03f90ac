"""
Database migration for the shipping tables

Creates:
- shipments: one row per purchased label
- tracking_events: carrier activity history, one row per (tracking number, timestamp, status code)
- shipment_voids: void attempts
- rate_quotes: quote and label purchase log

Idempotent; runs at application startup and from run_poller.py.
"""
import logging
from sqlalchemy import text

logger = logging.getLogger(__name__)


async def migrate_shipping_tables(engine):
    """Create shipping tables and indexes if they don't exist."""
    logger.info("Starting shipping tables migration...")

    async with engine.begin() as conn:
        # ==================== shipments table ====================
        await conn.execute(text("""
            CREATE TABLE IF NOT EXISTS shipments (
                id SERIAL PRIMARY KEY,
                tracking_number VARCHAR(50) NOT NULL UNIQUE,
                service_code VARCHAR(10) NOT NULL,
                service_name VARCHAR(50) NOT NULL,
                order_reference VARCHAR(255),
                ship_to_name VARCHAR(200) NOT NULL,
                ship_to_phone VARCHAR(30),
                ship_to_address TEXT NOT NULL,
                ship_to_city VARCHAR(100) NOT NULL,
                ship_to_state VARCHAR(10) NOT NULL,
                ship_to_postal_code VARCHAR(20) NOT NULL,
                ship_to_country_code VARCHAR(5) DEFAULT 'US',
                ship_from_postal_code VARCHAR(20) NOT NULL,
                box_length DOUBLE PRECISION,
                box_width DOUBLE PRECISION,
                box_height DOUBLE PRECISION,
                box_weight DOUBLE PRECISION,
                item_count INTEGER NOT NULL DEFAULT 1,
                item_sizes TEXT,
                charges_amount DOUBLE PRECISION,
                charges_currency VARCHAR(5) DEFAULT 'USD',
                label_format VARCHAR(10),
                shipment_id_number VARCHAR(100),
                status VARCHAR(30) NOT NULL DEFAULT 'created',
                estimated_delivery_date DATE,
                delivered_at TIMESTAMP WITH TIME ZONE,
                voided_at TIMESTAMP WITH TIME ZONE,
                created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
                updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
            )
        """))
        logger.info("Created/verified shipments table")

        for idx_sql in [
            "CREATE INDEX IF NOT EXISTS ix_shipments_tracking_number ON shipments(tracking_number)",
            "CREATE INDEX IF NOT EXISTS ix_shipments_status ON shipments(status)",
            "CREATE INDEX IF NOT EXISTS ix_shipments_created_at ON shipments(created_at)",
            "CREATE INDEX IF NOT EXISTS ix_shipments_order_reference ON shipments(order_reference)",
        ]:
            await conn.execute(text(idx_sql))

        # ==================== tracking_events table ====================
        await conn.execute(text("""
            CREATE TABLE IF NOT EXISTS tracking_events (
                id SERIAL PRIMARY KEY,
                shipment_id INTEGER REFERENCES shipments(id) ON DELETE CASCADE,
                tracking_number VARCHAR(50) NOT NULL,
                status_code VARCHAR(10),
                status_type VARCHAR(30),
                status_description TEXT,
                location_city VARCHAR(100),
                location_state VARCHAR(100),
                location_country VARCHAR(10),
                activity_timestamp TIMESTAMP WITH TIME ZONE,
                polled_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
                created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
                CONSTRAINT uq_tracking_events_activity
                    UNIQUE (tracking_number, activity_timestamp, status_code)
            )
        """))
        logger.info("Created/verified tracking_events table")

        for idx_sql in [
            "CREATE INDEX IF NOT EXISTS ix_tracking_events_tracking_number ON tracking_events(tracking_number)",
            "CREATE INDEX IF NOT EXISTS ix_tracking_events_shipment_id ON tracking_events(shipment_id)",
            "CREATE INDEX IF NOT EXISTS ix_tracking_events_activity_timestamp ON tracking_events(activity_timestamp)",
        ]:
            await conn.execute(text(idx_sql))

        # ==================== shipment_voids table ====================
        await conn.execute(text("""
            CREATE TABLE IF NOT EXISTS shipment_voids (
                id SERIAL PRIMARY KEY,
                shipment_id INTEGER REFERENCES shipments(id) ON DELETE SET NULL,
                tracking_number VARCHAR(50) NOT NULL,
                success BOOLEAN NOT NULL,
                reason TEXT,
                ups_response JSON,
                created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
            )
        """))
        await conn.execute(text(
            "CREATE INDEX IF NOT EXISTS ix_shipment_voids_tracking_number ON shipment_voids(tracking_number)"
        ))
        logger.info("Created/verified shipment_voids table")

        # ==================== rate_quotes table ====================
        await conn.execute(text("""
            CREATE TABLE IF NOT EXISTS rate_quotes (
                id SERIAL PRIMARY KEY,
                quote_type VARCHAR(20) NOT NULL,
                order_reference VARCHAR(255),
                ship_from_postal VARCHAR(20),
                ship_from_state VARCHAR(10),
                ship_to_postal VARCHAR(20),
                ship_to_state VARCHAR(10),
                item_count INTEGER,
                box_count INTEGER,
                service_code VARCHAR(10),
                total_charges DOUBLE PRECISION,
                currency VARCHAR(5) DEFAULT 'USD',
                request_summary JSON,
                response_summary JSON,
                created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
            )
        """))

        for idx_sql in [
            "CREATE INDEX IF NOT EXISTS ix_rate_quotes_created_at ON rate_quotes(created_at)",
            "CREATE INDEX IF NOT EXISTS ix_rate_quotes_quote_type ON rate_quotes(quote_type)",
        ]:
            await conn.execute(text(idx_sql))
        logger.info("Created/verified rate_quotes table")

    logger.info("Shipping tables migration complete")
