"""
Core domain models and pure functions for the local-midnight trigger service.

This module contains the domain models and pure business logic
that are independent of external I/O and infrastructure concerns.
"""

from .models import Entity, TickWindow, TriggerCandidate, UpcomingCrossing, ClaimRecord, TickResult
from .detector import resolve_zone, local_date, detect, find_crossings, upcoming_crossings
from .cadence import (
    validate_cron, max_tick_interval, ensure_window_covers, next_fire,
    retention_floor, ensure_retention_covers,
)

__all__ = [
    "Entity", "TickWindow", "TriggerCandidate", "UpcomingCrossing", "ClaimRecord", "TickResult",
    "resolve_zone", "local_date", "detect", "find_crossings", "upcoming_crossings",
    "validate_cron", "max_tick_interval", "ensure_window_covers", "next_fire",
    "retention_floor", "ensure_retention_covers",
]
