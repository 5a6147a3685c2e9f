"""
Acknowledgement Dispatch.

============================================================
RESPONSIBILITY
============================================================
Leader-only outbound acknowledgement for ack-capable venues.

- Success               -> ACK_SENT  (terminal)
- AckTransportError     -> ACK_ERROR (retryable)
- AckRejectedError      -> REJECTED  (terminal)
- anything else         -> propagates, no transition

Only transport failures produce ACK_ERROR.

============================================================
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Union

from booking.state_machine import BookingStateMachine
from booking.types import AckResult, SystemCode, TradeSystemStatus
from core.exceptions import (
    AckRejectedError,
    AckTransportError,
    LinkNotFoundError,
    NotLeaderError,
    TerminalStateError,
    TransitionConflictError,
)


logger = logging.getLogger(__name__)


SENDABLE_STATUSES = (TradeSystemStatus.READY_TO_ACK, TradeSystemStatus.ACK_ERROR)


class AcknowledgementSender(ABC):
    """Boundary to the venue session that transmits acknowledgements."""

    @abstractmethod
    def send(self, payload: Mapping[str, Any]) -> None:
        """
        Transmit one acknowledgement.

        Raises:
            AckTransportError: Session or transport failure
            AckRejectedError: The venue refused the trade
        """
        pass


class AcknowledgementDispatcher:
    """Sends acknowledgements and records the outcome on the link."""

    def __init__(
        self,
        state_machine: BookingStateMachine,
        sender: AcknowledgementSender,
        leadership: Optional[Any] = None,
        system_code: Union[SystemCode, str] = SystemCode.VOLBROKER_STP,
    ):
        self._state_machine = state_machine
        self._sender = sender
        self._leadership = leadership
        self._system_code = SystemCode.parse(system_code)

    def dispatch(self, trade_id: int, payload: Mapping[str, Any]) -> AckResult:
        """
        Send the acknowledgement of one trade.

        Raises:
            NotLeaderError: This instance does not hold the lease
            LinkNotFoundError: No live link
            TerminalStateError: Already ACK_SENT or REJECTED
            TransitionConflictError: Link not READY_TO_ACK or ACK_ERROR
        """
        self._require_leadership(f"dispatch ack {trade_id}")

        link = self._state_machine.get_link(trade_id, self._system_code)
        if link is None:
            raise LinkNotFoundError(trade_id, self._system_code.value)
        if link.is_terminal:
            raise TerminalStateError(
                trade_id, self._system_code.value, link.status.value, TradeSystemStatus.ACK_SENT.value
            )
        if link.status not in SENDABLE_STATUSES:
            raise TransitionConflictError(
                trade_id,
                self._system_code.value,
                target=TradeSystemStatus.ACK_SENT.value,
                expected=[status.value for status in SENDABLE_STATUSES],
                actual=link.status.value,
            )

        try:
            self._sender.send(payload)
        except AckTransportError as e:
            logger.warning(f"Acknowledgement of trade {trade_id} failed in transport: {e.message}")
            updated = self._state_machine.mark_ack_failed(trade_id, e.message, self._system_code)
            return AckResult(trade_id=trade_id, status=updated.status, error_message=e.message)
        except AckRejectedError as e:
            logger.warning(f"Acknowledgement of trade {trade_id} rejected: {e.message}")
            updated = self._state_machine.mark_rejected(
                trade_id, e.message, system_code=self._system_code
            )
            return AckResult(trade_id=trade_id, status=updated.status, error_message=e.message)

        updated = self._state_machine.mark_ack_sent(trade_id, self._system_code)
        logger.info(f"Acknowledgement of trade {trade_id} sent")
        return AckResult(trade_id=trade_id, status=updated.status)

    def reject(self, trade_id: int, reason: str, user_id: Optional[str] = None) -> AckResult:
        """Explicit business rejection: READY_TO_ACK/ACK_ERROR -> REJECTED."""
        self._require_leadership(f"reject ack {trade_id}")
        updated = self._state_machine.mark_rejected(
            trade_id, reason, user_id=user_id, system_code=self._system_code
        )
        return AckResult(trade_id=trade_id, status=updated.status, error_message=reason)

    def _require_leadership(self, action: str) -> None:
        if self._leadership is not None and not self._leadership.confirm_leadership():
            raise NotLeaderError(action)
