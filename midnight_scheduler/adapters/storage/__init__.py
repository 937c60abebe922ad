"""
Storage adapters for the local-midnight trigger service.

This module contains SQLite-backed adapters for the entity timezone
registry and the (entity_id, local_date) dedupe ledger.
"""

from .sqlite_ledger import SQLiteDedupeLedger
from .sqlite_registry import SQLiteEntityRegistry

__all__ = ["SQLiteDedupeLedger", "SQLiteEntityRegistry"]
