"""
Booking Domain ORM Models.

============================================================
PURPOSE
============================================================
Models for per-trade booking status in each downstream system
and the audit trail of workflow events.

============================================================
DATA LIFECYCLE ROLE
============================================================
- Stage: OPERATIONAL (booking)
- Mutability: TradeSystemLink MUTABLE through guarded transitions,
  never physically deleted; TradeWorkflowEvent APPEND-ONLY
- Source: Inbound message pipeline (link creation), booking
  commands, response ingestion, acknowledgement dispatch
- Consumers: Blotter grid, audit

============================================================
MODELS
============================================================
- TradeSystemLink: Status of one trade in one booking system
- TradeWorkflowEvent: Workflow audit entries

============================================================
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Index, Integer, String, Text, false
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base


class TradeSystemLink(Base):
    """
    Booking status of a trade in one system.

    ============================================================
    INVARIANTS
    ============================================================
    - At most one non-deleted row per (trade_id, system_code)
    - status and system_code hold enum codes, parsed strictly
    - first_booked_utc is written once, last_booked_utc on every
      confirmed booking

    ============================================================
    """

    __tablename__ = "trade_system_link"

    link_id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    trade_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    system_code: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="MX3, CALYPSO, VOLBROKER_STP, RTNS"
    )

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )

    external_trade_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Id assigned by the booking system or venue"
    )

    last_status_utc: Mapped[datetime] = mapped_column(
        nullable=False,
    )

    last_error: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    book_flag: Mapped[Optional[bool]] = mapped_column(
        Boolean,
        nullable=True,
        comment="Whether the trade should be booked in this system"
    )

    stp_mode: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment="MANUAL or AUTO"
    )

    booked_by: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )

    first_booked_utc: Mapped[Optional[datetime]] = mapped_column(
        nullable=True,
    )

    last_booked_utc: Mapped[Optional[datetime]] = mapped_column(
        nullable=True,
    )

    is_deleted: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )

    __table_args__ = (
        Index("ix_trade_system_link_status", "system_code", "status"),
    )

    def __repr__(self) -> str:
        return f"<TradeSystemLink {self.trade_id}/{self.system_code} {self.status}>"


# Soft-deleted rows may repeat a (trade_id, system_code) pair
Index(
    "ux_trade_system_link_live",
    TradeSystemLink.trade_id,
    TradeSystemLink.system_code,
    unique=True,
    sqlite_where=TradeSystemLink.is_deleted == false(),
    postgresql_where=TradeSystemLink.is_deleted == false(),
)


class TradeWorkflowEvent(Base):
    """
    Append-only workflow audit entry.

    trade_id is NULL for system-level events such as mastership
    changes. Ordered by (trade_id, timestamp_utc, event_id).
    """

    __tablename__ = "trade_workflow_event"

    event_id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    trade_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
    )

    timestamp_utc: Mapped[datetime] = mapped_column(
        nullable=False,
    )

    event_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    system_code: Mapped[Optional[str]] = mapped_column(
        String(30),
        nullable=True,
    )

    user_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    details: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    __table_args__ = (
        Index("ix_trade_workflow_event_order", "trade_id", "timestamp_utc", "event_id"),
    )

    def __repr__(self) -> str:
        return f"<TradeWorkflowEvent {self.event_id} {self.event_type} trade={self.trade_id}>"
