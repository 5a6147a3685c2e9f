"""
Storage Models Package.

This package contains all ORM models for the coordination database.
Models are organized by domain for clarity and maintainability.

============================================================
MODEL ORGANIZATION
============================================================

Domain 1: Coordination (coordination.py)
- PresenceRecord
- PriorityEntry
- LeaseRecord

Domain 2: Booking (booking.py)
- TradeSystemLink
- TradeWorkflowEvent

============================================================
"""

from storage.models.base import Base, UtcDateTime
from storage.models.coordination import LeaseRecord, PresenceRecord, PriorityEntry
from storage.models.booking import TradeSystemLink, TradeWorkflowEvent

__all__ = [
    # Base
    "Base",
    "UtcDateTime",
    # Coordination
    "PresenceRecord",
    "PriorityEntry",
    "LeaseRecord",
    # Booking
    "TradeSystemLink",
    "TradeWorkflowEvent",
]
