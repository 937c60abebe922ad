"""
Shared utilities for the local-midnight trigger service.

This module re-exports the error hierarchy and the retry helpers
used by adapters and orchestrators.
"""

from .errors import (
    MidnightError,
    InvalidTimezoneError,
    StorageError,
    DownstreamError,
    CadenceError,
)
from .retry import retry_with_backoff

__all__ = [
    "MidnightError",
    "InvalidTimezoneError",
    "StorageError",
    "DownstreamError",
    "CadenceError",
    "retry_with_backoff",
]
