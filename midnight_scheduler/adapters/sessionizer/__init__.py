"""
Downstream sessionizer adapters for the local-midnight trigger service.

This module contains the clients that invoke the external
sessionization service once an entity's local date flips.
"""

from .http_client import HttpSessionizer
from .callable import CallableSessionizer

__all__ = ["HttpSessionizer", "CallableSessionizer"]
