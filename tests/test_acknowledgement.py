"""
Tests for acknowledgement dispatch.

Tests cover:
- Sent, transport failure, business rejection
- Retry from ACK_ERROR
- Unexpected sender errors propagate without a transition
- Leadership and state preconditions
"""

import pytest

from booking.acknowledgement import AcknowledgementDispatcher, AcknowledgementSender
from booking.types import SystemCode, TradeSystemStatus
from core.exceptions import (
    AckRejectedError,
    AckTransportError,
    LinkNotFoundError,
    NotLeaderError,
    TerminalStateError,
    TransitionConflictError,
)


ACK_FIELDS = {
    "external_trade_id": "VB-991",
    "currency_pair": "EURUSD",
    "buy_sell": "SELL",
    "notional": 5_000_000,
    "trade_date": "2024-03-01",
    "execution_time_utc": "2024-03-01T08:59:58Z",
}


class ScriptedSender(AcknowledgementSender):
    """Raises the scripted errors in order, then succeeds."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.sent = []

    def send(self, payload):
        if self.errors:
            raise self.errors.pop(0)
        self.sent.append(dict(payload))


@pytest.fixture
def ready_link(state_machine, make_link):
    make_link(42, system_code=SystemCode.VOLBROKER_STP)
    state_machine.mark_ready_to_ack(42, ACK_FIELDS, user_id="alice")
    return 42


def dispatcher(state_machine, sender, leadership):
    return AcknowledgementDispatcher(state_machine, sender, leadership=leadership)


class TestDispatch:
    """Test AcknowledgementDispatcher.dispatch."""

    def test_sent(self, state_machine, leadership, ready_link):
        sender = ScriptedSender()

        result = dispatcher(state_machine, sender, leadership).dispatch(ready_link, ACK_FIELDS)

        assert result.status == TradeSystemStatus.ACK_SENT
        assert sender.sent == [ACK_FIELDS]

    def test_transport_failure_then_retry(self, state_machine, leadership, ready_link):
        sender = ScriptedSender(AckTransportError("FIX session down"))
        ack = dispatcher(state_machine, sender, leadership)

        first = ack.dispatch(ready_link, ACK_FIELDS)
        assert first.status == TradeSystemStatus.ACK_ERROR
        assert first.error_message == "FIX session down"

        second = ack.dispatch(ready_link, ACK_FIELDS)
        assert second.status == TradeSystemStatus.ACK_SENT

    def test_business_rejection_is_terminal(self, state_machine, leadership, ready_link):
        sender = ScriptedSender(AckRejectedError("Unknown counterparty"))
        ack = dispatcher(state_machine, sender, leadership)

        result = ack.dispatch(ready_link, ACK_FIELDS)
        assert result.status == TradeSystemStatus.REJECTED

        with pytest.raises(TerminalStateError):
            ack.dispatch(ready_link, ACK_FIELDS)

    def test_unexpected_error_propagates(self, state_machine, leadership, ready_link):
        sender = ScriptedSender(ValueError("bad payload"))

        with pytest.raises(ValueError):
            dispatcher(state_machine, sender, leadership).dispatch(ready_link, ACK_FIELDS)

        link = state_machine.get_link(ready_link, SystemCode.VOLBROKER_STP)
        assert link.status == TradeSystemStatus.READY_TO_ACK

    def test_not_leader_sends_nothing(self, state_machine, leadership, ready_link):
        leadership.leader = False
        sender = ScriptedSender()

        with pytest.raises(NotLeaderError):
            dispatcher(state_machine, sender, leadership).dispatch(ready_link, ACK_FIELDS)

        assert sender.sent == []

    def test_new_link_not_sendable(self, state_machine, leadership, make_link):
        make_link(43, system_code=SystemCode.VOLBROKER_STP)
        sender = ScriptedSender()

        with pytest.raises(TransitionConflictError):
            dispatcher(state_machine, sender, leadership).dispatch(43, ACK_FIELDS)

        assert sender.sent == []

    def test_missing_link(self, state_machine, leadership):
        with pytest.raises(LinkNotFoundError):
            dispatcher(state_machine, ScriptedSender(), leadership).dispatch(99, ACK_FIELDS)


class TestReject:
    """Test explicit business rejection."""

    def test_reject(self, state_machine, leadership, ready_link):
        ack = dispatcher(state_machine, ScriptedSender(), leadership)

        result = ack.reject(ready_link, "Limit breach", user_id="alice")

        assert result.status == TradeSystemStatus.REJECTED
        link = state_machine.get_link(ready_link, SystemCode.VOLBROKER_STP)
        assert link.last_error == "Limit breach"
