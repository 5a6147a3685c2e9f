"""
Tests for the booking command.

Tests cover:
- Export success moves the link to PENDING
- Export failure (result or exception) leaves the link untouched
- A second booking of the same trade conflicts
"""

import pytest

from booking.commands import BookingCommandService, BookingExporter
from booking.types import ExportResult, SystemCode, TradeSystemStatus
from core.exceptions import TransitionConflictError


class FakeExporter(BookingExporter):
    def __init__(self, result=None, error=None):
        self.result = result or ExportResult(success=True, file_name="42-L1.xml")
        self.error = error
        self.calls = []

    def export(self, trade_id, system_code):
        self.calls.append((trade_id, system_code))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def service(state_machine):
    return BookingCommandService(state_machine, user_name="alice")


class TestBook:
    """Test BookingCommandService.book."""

    def test_successful_export_requests_booking(self, service, state_machine, make_link):
        make_link(42)
        exporter = FakeExporter()

        result = service.book(42, "MX3", exporter)

        assert result.success is True
        assert result.status == TradeSystemStatus.PENDING
        assert result.file_name == "42-L1.xml"
        assert exporter.calls == [(42, SystemCode.MX3)]
        assert state_machine.get_link(42, SystemCode.MX3).booked_by == "alice"

    def test_failed_export_leaves_link_new(self, service, state_machine, make_link):
        make_link(42)
        exporter = FakeExporter(ExportResult(success=False, error_message="template missing"))

        result = service.book(42, SystemCode.MX3, exporter)

        assert result.success is False
        assert result.error_message == "template missing"
        assert state_machine.get_link(42, SystemCode.MX3).status == TradeSystemStatus.NEW
        assert state_machine.event_log.list_for_trade(42) == []

    def test_exporter_exception_is_a_failed_export(self, service, state_machine, make_link):
        make_link(42)

        result = service.book(42, SystemCode.MX3, FakeExporter(error=OSError("share offline")))

        assert result.success is False
        assert "share offline" in result.error_message
        assert state_machine.get_link(42, SystemCode.MX3).status == TradeSystemStatus.NEW

    def test_second_booking_conflicts(self, service, state_machine, make_link):
        make_link(42)
        service.book(42, SystemCode.MX3, FakeExporter())
        other = BookingCommandService(state_machine, user_name="bob")

        with pytest.raises(TransitionConflictError):
            other.book(42, SystemCode.MX3, FakeExporter())

        assert state_machine.get_link(42, SystemCode.MX3).booked_by == "alice"
