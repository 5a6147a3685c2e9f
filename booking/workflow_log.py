"""
Workflow Event Log.

Append-only audit sink for booking transitions and mastership
changes. Each append is its own transaction, independent of the
status update it describes.
"""

import logging
from typing import List, Optional, Union

from sqlalchemy.orm import sessionmaker

from booking.types import SystemCode, WorkflowEventType
from core.clock import ClockProtocol, SystemClock
from storage.database import session_scope
from storage.models.booking import TradeWorkflowEvent
from storage.repositories import WorkflowEventRepository


logger = logging.getLogger(__name__)


class WorkflowEventLog:
    """Writes and reads TradeWorkflowEvent rows."""

    def __init__(self, session_factory: sessionmaker, clock: Optional[ClockProtocol] = None):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def append(
        self,
        trade_id: Optional[int],
        event_type: Union[WorkflowEventType, str],
        user_id: str,
        system_code: Optional[Union[SystemCode, str]] = None,
        details: Optional[str] = None,
    ) -> int:
        """
        Append one event.

        Returns:
            The new event_id

        Raises:
            RepositoryException: The event could not be written
        """
        event_type = WorkflowEventType(event_type)
        code = SystemCode.parse(system_code).value if system_code is not None else None

        with session_scope(self._session_factory) as session:
            event = WorkflowEventRepository(session).append(
                trade_id=trade_id,
                event_type=event_type.value,
                user_id=user_id,
                now=self._clock.now(),
                system_code=code,
                details=details,
            )
            event_id = event.event_id

        logger.debug(
            f"Workflow event {event_type.value} trade={trade_id} system={code} id={event_id}"
        )
        return event_id

    def list_for_trade(self, trade_id: int, max_rows: int = 200) -> List[TradeWorkflowEvent]:
        """Get events of a trade in (timestamp_utc, event_id) order."""
        with session_scope(self._session_factory) as session:
            return WorkflowEventRepository(session).list_for_trade(trade_id, max_rows)

    def list_system_events(self, max_rows: int = 200) -> List[TradeWorkflowEvent]:
        """Get events without a trade id, most recent first."""
        with session_scope(self._session_factory) as session:
            return WorkflowEventRepository(session).list_system_events(max_rows)
