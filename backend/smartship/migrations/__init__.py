from smartship.migrations.shipping_tables import migrate_shipping_tables

__all__ = ["migrate_shipping_tables"]
