"""
Storage adapters for LicenseIQ.
"""

from licenseiq.storage.postgres import PostgresAdapter, get_postgres_adapter

__all__ = [
    "PostgresAdapter",
    "get_postgres_adapter",
]
