"""
Coordination Domain ORM Models.

============================================================
PURPOSE
============================================================
Models for leader election among blotter instances: presence
heartbeats, the master priority list, and the master lease.

============================================================
DATA LIFECYCLE ROLE
============================================================
- Stage: OPERATIONAL (coordination)
- Mutability: MUTABLE (upserted heartbeats, CAS-updated lease)
- Source: PresenceService, ElectionCoordinator, operators
- Consumers: ElectionCoordinator, status CLI

============================================================
MODELS
============================================================
- PresenceRecord: Last heartbeat per user@machine
- PriorityEntry: Ordered master candidates
- LeaseRecord: One row per lock name

============================================================
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base


class PresenceRecord(Base):
    """
    Heartbeat of one blotter instance.

    A node is online while now - last_seen_utc < presence TTL.
    One row per node_id; rows are upserted, never accumulated.
    """

    __tablename__ = "presence"

    node_id: Mapped[str] = mapped_column(
        String(200),
        primary_key=True,
        comment="user@machine"
    )

    user_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Operating system user of the instance"
    )

    machine_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Host name of the instance"
    )

    last_seen_utc: Mapped[datetime] = mapped_column(
        nullable=False,
        comment="Last heartbeat (UTC)"
    )

    __table_args__ = (
        Index("ix_presence_last_seen", "last_seen_utc"),
    )

    def __repr__(self) -> str:
        return f"<PresenceRecord {self.node_id} last_seen={self.last_seen_utc}>"


class PriorityEntry(Base):
    """
    Master candidate ranking.

    Lowest order_no among online users is the preferred master.
    Maintained by operators; read on every election tick.
    """

    __tablename__ = "master_priority"

    user_name: Mapped[str] = mapped_column(
        String(100),
        primary_key=True,
    )

    order_no: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Ascending rank, 1 = most preferred"
    )

    def __repr__(self) -> str:
        return f"<PriorityEntry {self.order_no}:{self.user_name}>"


class LeaseRecord(Base):
    """
    Master lease for one named lock.

    The holder is the (held_by_user, held_by_machine) pair. The lease
    is valid while now < expires_at_utc. Mutated only by conditional
    updates in LeaseRepository.
    """

    __tablename__ = "master_lock"

    lock_name: Mapped[str] = mapped_column(
        String(100),
        primary_key=True,
    )

    held_by_user: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )

    held_by_machine: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )

    last_heartbeat_utc: Mapped[datetime] = mapped_column(
        nullable=False,
        comment="Last successful acquire or renew (UTC)"
    )

    expires_at_utc: Mapped[datetime] = mapped_column(
        nullable=False,
        comment="Lease expiry (UTC)"
    )

    def __repr__(self) -> str:
        return (
            f"<LeaseRecord {self.lock_name} holder={self.held_by_user}@"
            f"{self.held_by_machine} expires={self.expires_at_utc}>"
        )
