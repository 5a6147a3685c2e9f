"""
Storage Repositories Package.

============================================================
PURPOSE
============================================================
Data access layer for the coordination database. Repositories
take an injected Session and never commit on their own; the
caller owns the transaction.

============================================================
REPOSITORIES
============================================================

Coordination:
- PresenceRepository: heartbeats
- PriorityRepository: master candidates
- LeaseRepository: master lease (conditional update)

Booking:
- TradeSystemLinkRepository: per-system booking status
- WorkflowEventRepository: append-only audit trail

============================================================
"""

from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import (
    ConnectionError,
    DuplicateRecordError,
    IntegrityError,
    QueryError,
    RecordNotFoundError,
    RepositoryException,
    TransactionError,
)

# Coordination
from storage.repositories.presence import PresenceRepository
from storage.repositories.priority import PriorityRepository
from storage.repositories.lease import LeaseRepository

# Booking
from storage.repositories.links import TradeSystemLinkRepository
from storage.repositories.workflow import WorkflowEventRepository

__all__ = [
    # Base
    "BaseRepository",
    # Exceptions
    "RepositoryException",
    "RecordNotFoundError",
    "DuplicateRecordError",
    "IntegrityError",
    "ConnectionError",
    "QueryError",
    "TransactionError",
    # Coordination
    "PresenceRepository",
    "PriorityRepository",
    "LeaseRepository",
    # Booking
    "TradeSystemLinkRepository",
    "WorkflowEventRepository",
]
