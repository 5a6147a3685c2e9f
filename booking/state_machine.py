"""
Booking State Machine.

============================================================
RESPONSIBILITY
============================================================
Advances the status of a TradeSystemLink. Every transition is a
single conditional UPDATE filtered on the allowed origin statuses;
the database decides, the process never trusts a previous read.

============================================================
TRANSITIONS
============================================================
NEW, ERROR           -> PENDING       booking command (any instance)
PENDING, BOOKED      -> BOOKED        success response (leader)
PENDING              -> ERROR         failure response (leader)
NEW                  -> READY_TO_ACK  ack-capable venue, fields present
READY_TO_ACK, ACK_ERROR -> ACK_SENT   ack transmitted (leader)
READY_TO_ACK, ACK_ERROR -> ACK_ERROR  transport failure (leader)
READY_TO_ACK, ACK_ERROR -> REJECTED   business rejection (leader)

ACK_SENT and REJECTED are terminal.

============================================================
ZERO ROWS
============================================================
The link is re-read to classify the failure:
- no live link        -> LinkNotFoundError
- terminal status     -> TerminalStateError
- any other status    -> TransitionConflictError

============================================================
"""

import logging
import threading
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

from sqlalchemy import func, literal
from sqlalchemy.orm import sessionmaker

from booking.types import (
    ACK_REQUIRED_FIELDS,
    LinkSnapshot,
    SystemCode,
    TradeSystemStatus,
    WorkflowEventType,
    allowed_origins,
)
from booking.workflow_log import WorkflowEventLog
from core.clock import ClockProtocol, SystemClock
from core.exceptions import (
    AckPreconditionError,
    InvalidTransitionError,
    LinkNotFoundError,
    NotLeaderError,
    StoreUnavailableError,
    TerminalStateError,
    TransitionConflictError,
)
from storage.database import session_scope
from storage.models.base import UtcDateTime
from storage.models.booking import TradeSystemLink
from storage.repositories import RepositoryException, TradeSystemLinkRepository


logger = logging.getLogger(__name__)


class BookingStateMachine:
    """
    Guarded status transitions for trade system links.

    Leader-only transitions consult the leadership guard (any object
    with a confirm_leadership() -> bool method) before touching the
    database. Without a guard they are unguarded, which is only
    meant for tests and single-instance tools.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Optional[ClockProtocol] = None,
        event_log: Optional[WorkflowEventLog] = None,
        leadership: Optional[Any] = None,
        actor: str = "system",
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._event_log = event_log or WorkflowEventLog(session_factory, self._clock)
        self._leadership = leadership
        self._actor = actor

        # Local serialization only; other processes are settled by the guarded update
        self._link_locks: Dict[Tuple[int, str], threading.Lock] = defaultdict(threading.Lock)
        self._link_locks_guard = threading.Lock()

    @property
    def event_log(self) -> WorkflowEventLog:
        return self._event_log

    # =========================================================
    # QUERIES
    # =========================================================

    def get_link(
        self, trade_id: int, system_code: Union[SystemCode, str]
    ) -> Optional[LinkSnapshot]:
        """Read the live link, strictly parsed."""
        code = SystemCode.parse(system_code)
        try:
            with session_scope(self._session_factory) as session:
                record = TradeSystemLinkRepository(session).get_link(trade_id, code.value)
                return LinkSnapshot.from_record(record) if record is not None else None
        except RepositoryException as e:
            raise StoreUnavailableError(str(e), operation="get_link", cause=e) from e

    def list_links(
        self,
        system_code: Union[SystemCode, str],
        status: Union[TradeSystemStatus, str],
    ) -> List[LinkSnapshot]:
        """Get live links of one system in one status."""
        code = SystemCode.parse(system_code)
        state = TradeSystemStatus.parse(status)
        try:
            with session_scope(self._session_factory) as session:
                records = TradeSystemLinkRepository(session).list_by_status(code.value, state.value)
                return [LinkSnapshot.from_record(record) for record in records]
        except RepositoryException as e:
            raise StoreUnavailableError(str(e), operation="list_links", cause=e) from e

    # =========================================================
    # BOOKING TRANSITIONS
    # =========================================================

    def request_booking(
        self,
        trade_id: int,
        system_code: Union[SystemCode, str],
        user_id: str,
        details: Optional[str] = None,
    ) -> LinkSnapshot:
        """
        NEW/ERROR -> PENDING after the booking file was exported.

        Raises:
            TransitionConflictError: Link was not NEW or ERROR
        """
        code = SystemCode.parse(system_code)
        if code.supports_acknowledgement:
            raise InvalidTransitionError(
                f"{code.value} links are acknowledged, not booked",
                trade_id=trade_id,
                system_code=code.value,
            )
        return self._transition(
            trade_id,
            code,
            TradeSystemStatus.PENDING,
            values={"booked_by": user_id, "last_error": None},
            event_type=WorkflowEventType.BOOKING_REQUESTED,
            user_id=user_id,
            details=details or f"Booking requested in {code.value}",
            leader_only=False,
        )

    def confirm_booking(
        self,
        trade_id: int,
        system_code: Union[SystemCode, str],
        external_trade_id: str,
        details: Optional[str] = None,
    ) -> LinkSnapshot:
        """
        PENDING/BOOKED -> BOOKED from a success response.

        first_booked_utc is only written when still empty, so a
        replayed success leaves it unchanged.
        """
        code = SystemCode.parse(system_code)
        now = self._clock.now()
        return self._transition(
            trade_id,
            code,
            TradeSystemStatus.BOOKED,
            values={
                "external_trade_id": external_trade_id,
                "last_error": None,
                "first_booked_utc": func.coalesce(
                    TradeSystemLink.first_booked_utc, literal(now, UtcDateTime())
                ),
                "last_booked_utc": now,
            },
            event_type=WorkflowEventType.BOOKING_CONFIRMED,
            user_id=self._actor,
            details=details or f"Booked in {code.value} as {external_trade_id}",
            leader_only=True,
            now=now,
        )

    def fail_booking(
        self,
        trade_id: int,
        system_code: Union[SystemCode, str],
        error_text: str,
    ) -> LinkSnapshot:
        """PENDING -> ERROR from a failure response."""
        code = SystemCode.parse(system_code)
        return self._transition(
            trade_id,
            code,
            TradeSystemStatus.ERROR,
            values={"last_error": error_text},
            event_type=WorkflowEventType.BOOKING_REJECTED,
            user_id=self._actor,
            details=error_text,
            leader_only=True,
        )

    # =========================================================
    # ACKNOWLEDGEMENT TRANSITIONS
    # =========================================================

    def mark_ready_to_ack(
        self,
        trade_id: int,
        ack_fields: Mapping[str, Any],
        user_id: str,
        system_code: Union[SystemCode, str] = SystemCode.VOLBROKER_STP,
    ) -> LinkSnapshot:
        """
        NEW -> READY_TO_ACK once the internal booking is complete.

        ack_fields carries the trade data the acknowledgement needs;
        external_trade_id falls back to the value stored on the link.

        Raises:
            AckPreconditionError: A required field is missing; no update
        """
        code = self._require_ack_capable(trade_id, system_code)

        fields = dict(ack_fields)
        if not fields.get("external_trade_id"):
            link = self.get_link(trade_id, code)
            if link is None:
                raise LinkNotFoundError(trade_id, code.value)
            fields["external_trade_id"] = link.external_trade_id

        missing = [name for name in ACK_REQUIRED_FIELDS if _is_blank(fields.get(name))]
        if missing:
            logger.warning(f"Trade {trade_id} not ready to ack, missing: {', '.join(missing)}")
            raise AckPreconditionError(trade_id, missing)

        return self._transition(
            trade_id,
            code,
            TradeSystemStatus.READY_TO_ACK,
            values={"external_trade_id": fields["external_trade_id"], "last_error": None},
            event_type=WorkflowEventType.READY_TO_ACK,
            user_id=user_id,
            details=f"Ready to acknowledge {fields['external_trade_id']}",
            leader_only=False,
        )

    def mark_ack_sent(
        self,
        trade_id: int,
        system_code: Union[SystemCode, str] = SystemCode.VOLBROKER_STP,
        details: Optional[str] = None,
    ) -> LinkSnapshot:
        """READY_TO_ACK/ACK_ERROR -> ACK_SENT."""
        code = self._require_ack_capable(trade_id, system_code)
        return self._transition(
            trade_id,
            code,
            TradeSystemStatus.ACK_SENT,
            values={"last_error": None},
            event_type=WorkflowEventType.ACK_SENT,
            user_id=self._actor,
            details=details or "Acknowledgement sent",
            leader_only=True,
        )

    def mark_ack_failed(
        self,
        trade_id: int,
        error_text: str,
        system_code: Union[SystemCode, str] = SystemCode.VOLBROKER_STP,
    ) -> LinkSnapshot:
        """READY_TO_ACK/ACK_ERROR -> ACK_ERROR after a transport failure."""
        code = self._require_ack_capable(trade_id, system_code)
        return self._transition(
            trade_id,
            code,
            TradeSystemStatus.ACK_ERROR,
            values={"last_error": error_text},
            event_type=WorkflowEventType.ACK_FAILED,
            user_id=self._actor,
            details=error_text,
            leader_only=True,
        )

    def mark_rejected(
        self,
        trade_id: int,
        reason: str,
        user_id: Optional[str] = None,
        system_code: Union[SystemCode, str] = SystemCode.VOLBROKER_STP,
    ) -> LinkSnapshot:
        """READY_TO_ACK/ACK_ERROR -> REJECTED on a business decision."""
        code = self._require_ack_capable(trade_id, system_code)
        return self._transition(
            trade_id,
            code,
            TradeSystemStatus.REJECTED,
            values={"last_error": reason},
            event_type=WorkflowEventType.ACK_REJECTED,
            user_id=user_id or self._actor,
            details=reason,
            leader_only=True,
        )

    # =========================================================
    # INTERNALS
    # =========================================================

    def _require_ack_capable(
        self, trade_id: int, system_code: Union[SystemCode, str]
    ) -> SystemCode:
        code = SystemCode.parse(system_code)
        if not code.supports_acknowledgement:
            raise InvalidTransitionError(
                f"{code.value} does not take acknowledgements",
                trade_id=trade_id,
                system_code=code.value,
            )
        return code

    def _lock_for(self, trade_id: int, system_code: SystemCode) -> threading.Lock:
        with self._link_locks_guard:
            return self._link_locks[(trade_id, system_code.value)]

    def _require_leadership(self, action: str) -> None:
        if self._leadership is None:
            return
        if not self._leadership.confirm_leadership():
            raise NotLeaderError(action, user_name=self._actor)

    def _transition(
        self,
        trade_id: int,
        system_code: SystemCode,
        target: TradeSystemStatus,
        values: Dict[str, Any],
        event_type: WorkflowEventType,
        user_id: str,
        details: Optional[str],
        leader_only: bool,
        now: Optional[datetime] = None,
    ) -> LinkSnapshot:
        origins = allowed_origins(target)

        with self._lock_for(trade_id, system_code):
            if leader_only:
                self._require_leadership(f"{target.value.lower()} {trade_id}/{system_code.value}")

            now = now or self._clock.now()
            assignments = dict(values)
            assignments["status"] = target.value
            assignments["last_status_utc"] = now

            try:
                with session_scope(self._session_factory) as session:
                    repo = TradeSystemLinkRepository(session)
                    rows = repo.guarded_update(
                        trade_id,
                        system_code.value,
                        [origin.value for origin in origins],
                        assignments,
                    )
                    record = repo.get_link(trade_id, system_code.value)
                    snapshot = LinkSnapshot.from_record(record) if record is not None else None
            except RepositoryException as e:
                raise StoreUnavailableError(
                    str(e), operation=f"transition to {target.value}", cause=e
                ) from e

        if rows == 0:
            self._raise_for_zero_rows(trade_id, system_code, target, origins, snapshot)

        logger.info(
            f"Trade {trade_id}/{system_code.value} -> {target.value}"
            + (f" ({details})" if details else "")
        )
        self._append_event(trade_id, event_type, system_code, user_id, details)
        return snapshot

    def _raise_for_zero_rows(
        self,
        trade_id: int,
        system_code: SystemCode,
        target: TradeSystemStatus,
        origins: FrozenSet[TradeSystemStatus],
        snapshot: Optional[LinkSnapshot],
    ) -> None:
        if snapshot is None:
            raise LinkNotFoundError(trade_id, system_code.value)
        if snapshot.is_terminal:
            raise TerminalStateError(
                trade_id, system_code.value, snapshot.status.value, target.value
            )
        logger.info(
            f"Conflict on trade {trade_id}/{system_code.value}: "
            f"{snapshot.status.value} -> {target.value} not applied"
        )
        raise TransitionConflictError(
            trade_id,
            system_code.value,
            target=target.value,
            expected=[origin.value for origin in origins],
            actual=snapshot.status.value,
        )

    def _append_event(
        self,
        trade_id: int,
        event_type: WorkflowEventType,
        system_code: SystemCode,
        user_id: str,
        details: Optional[str],
    ) -> None:
        try:
            self._event_log.append(
                trade_id=trade_id,
                event_type=event_type,
                user_id=user_id,
                system_code=system_code,
                details=details,
            )
        except RepositoryException as e:
            # Status already committed; the audit entry is the only loss
            logger.error(
                f"Failed to log {event_type.value} for trade {trade_id}/{system_code.value}: {e}"
            )


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False
