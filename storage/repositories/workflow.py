"""
Workflow Event Repository.

============================================================
PURPOSE
============================================================
Append-only audit trail of booking and mastership events.
No update or delete operation exists.

============================================================
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from storage.models.booking import TradeWorkflowEvent
from storage.repositories.base import BaseRepository


class WorkflowEventRepository(BaseRepository[TradeWorkflowEvent]):
    """Repository for TradeWorkflowEvent rows."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, TradeWorkflowEvent, "WorkflowEventRepository")

    def append(
        self,
        trade_id: Optional[int],
        event_type: str,
        user_id: str,
        now: datetime,
        system_code: Optional[str] = None,
        details: Optional[str] = None,
    ) -> TradeWorkflowEvent:
        """
        Append one event.

        Args:
            trade_id: Trade id, None for system-level events
            event_type: Event type name
            user_id: Acting user
            now: Event time (UTC)
            system_code: Booking system, if any
            details: Free text

        Returns:
            The stored event with event_id populated
        """
        event = TradeWorkflowEvent(
            trade_id=trade_id,
            timestamp_utc=now,
            event_type=event_type,
            system_code=system_code,
            user_id=user_id,
            details=details,
        )
        return self._add(event, "append")

    def list_for_trade(self, trade_id: int, max_rows: int = 200) -> List[TradeWorkflowEvent]:
        """Get events of a trade in (timestamp_utc, event_id) order."""
        stmt = (
            select(TradeWorkflowEvent)
            .where(TradeWorkflowEvent.trade_id == trade_id)
            .order_by(TradeWorkflowEvent.timestamp_utc, TradeWorkflowEvent.event_id)
            .limit(max_rows)
        )
        return self._execute_query(stmt, "list_for_trade")

    def list_system_events(self, max_rows: int = 200) -> List[TradeWorkflowEvent]:
        """Get events without a trade id, most recent first."""
        stmt = (
            select(TradeWorkflowEvent)
            .where(TradeWorkflowEvent.trade_id.is_(None))
            .order_by(TradeWorkflowEvent.timestamp_utc.desc(), TradeWorkflowEvent.event_id.desc())
            .limit(max_rows)
        )
        return self._execute_query(stmt, "list_system_events")
