"""
Adapters for the local-midnight trigger service.

This module contains the concrete implementations of port interfaces
that handle external I/O and infrastructure concerns.
"""

from .storage import SQLiteDedupeLedger, SQLiteEntityRegistry
from .sessionizer import HttpSessionizer, CallableSessionizer

__all__ = ["SQLiteDedupeLedger", "SQLiteEntityRegistry", "HttpSessionizer", "CallableSessionizer"]
