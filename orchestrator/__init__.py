"""
Orchestrator Package - Node Runtime Layer.

============================================================
PACKAGE OVERVIEW
============================================================
Runs one blotter coordinator node: configuration, logging,
the asyncio host and the command-line interface.

============================================================
ARCHITECTURE
============================================================

    +-----------------------------------------------------+
    |                  CoordinatorNode                    |
    |-----------------------------------------------------|
    |  PresenceService      |  heartbeat loop             |
    |  ElectionCoordinator  |  election loop              |
    |  IngestionSupervisor  |  ingestors while master     |
    |  BookingStateMachine  |  guarded transitions        |
    +-----------------------------------------------------+

============================================================
"""

from .models import CoordinatorConfig
from .core import CoordinatorNode, setup_logging

__all__ = [
    "CoordinatorConfig",
    "CoordinatorNode",
    "setup_logging",
]
