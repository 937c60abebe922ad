"""
Port interfaces for the local-midnight trigger service.

This module defines the port interfaces (Protocols) that define
the contracts between the core domain and external adapters.
"""

from .registry import EntityRegistryPort
from .ledger import DedupeLedgerPort
from .processor import SessionizerPort

__all__ = ["EntityRegistryPort", "DedupeLedgerPort", "SessionizerPort"]
