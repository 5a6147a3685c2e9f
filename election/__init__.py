"""
Election Package.

Lease-based master election among blotter instances sharing one
database.

Modules:
- presence: Heartbeat loop and online users
- coordinator: Election tick, lease operations, MastershipChanged
"""

from election.presence import PresenceService, make_node_id
from election.coordinator import (
    DEFAULT_LOCK_NAME,
    ElectionCoordinator,
    LeaseHolder,
    MastershipChanged,
    TickOutcome,
    TickResult,
)

__all__ = [
    "PresenceService",
    "make_node_id",
    "DEFAULT_LOCK_NAME",
    "ElectionCoordinator",
    "LeaseHolder",
    "MastershipChanged",
    "TickOutcome",
    "TickResult",
]
