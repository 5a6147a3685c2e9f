"""
Booking Package.

Per-link booking and acknowledgement status of trades.

Modules:
- types: Status and system enums, snapshots, schemas
- state_machine: Guarded status transitions
- workflow_log: Append-only audit sink
- commands: Booking command path
- acknowledgement: Leader-only acknowledgement dispatch
"""

from booking.types import (
    ACK_REQUIRED_FIELDS,
    AckResult,
    BookingResult,
    ExportResult,
    LinkSnapshot,
    ParsedResponse,
    ResponseOutcome,
    SystemCode,
    TradeSystemStatus,
    WorkflowEventType,
)
from booking.workflow_log import WorkflowEventLog
from booking.state_machine import BookingStateMachine
from booking.commands import BookingCommandService, BookingExporter
from booking.acknowledgement import AcknowledgementDispatcher, AcknowledgementSender

__all__ = [
    "ACK_REQUIRED_FIELDS",
    "AckResult",
    "BookingResult",
    "ExportResult",
    "LinkSnapshot",
    "ParsedResponse",
    "ResponseOutcome",
    "SystemCode",
    "TradeSystemStatus",
    "WorkflowEventType",
    "WorkflowEventLog",
    "BookingStateMachine",
    "BookingCommandService",
    "BookingExporter",
    "AcknowledgementDispatcher",
    "AcknowledgementSender",
]
