"""
Orchestrators for the local-midnight trigger service.

This module contains the orchestrators that coordinate
the flow between ports and adapters.
"""
from .trigger_driver import TriggerDriver
from .scheduler import TickScheduler

__all__ = ["TriggerDriver", "TickScheduler"]
