"""
Booking Types.

============================================================
RESPONSIBILITY
============================================================
Enums, snapshots and schemas shared by the booking state machine,
response ingestion and acknowledgement dispatch.

- Status and system codes parse STRICTLY: an unknown stored value
  raises UnknownEnumValueError, there is no default member
- LinkSnapshot is the immutable view of a TradeSystemLink row
- ParsedResponse is the normalized outcome of a response file

============================================================
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, model_validator

from core.exceptions import UnknownEnumValueError


# =============================================================
# ENUMS
# =============================================================

class SystemCode(str, Enum):
    """Downstream booking system or venue of a link."""

    MX3 = "MX3"
    CALYPSO = "CALYPSO"
    VOLBROKER_STP = "VOLBROKER_STP"
    RTNS = "RTNS"

    @classmethod
    def parse(cls, value: Any) -> "SystemCode":
        """Map a stored code to a member, raising on anything unknown."""
        return _parse_strict(cls, value)

    @property
    def supports_acknowledgement(self) -> bool:
        """Whether the venue expects an outbound trade acknowledgement."""
        return self in ACK_CAPABLE_SYSTEMS

    @property
    def has_response_files(self) -> bool:
        """Whether the system answers bookings through response files."""
        return self in (SystemCode.MX3, SystemCode.CALYPSO)


class TradeSystemStatus(str, Enum):
    """Booking status of one trade in one system."""

    NEW = "NEW"
    PENDING = "PENDING"
    BOOKED = "BOOKED"
    ERROR = "ERROR"
    CANCELLED = "CANCELLED"
    READY_TO_ACK = "READY_TO_ACK"
    ACK_SENT = "ACK_SENT"
    ACK_ERROR = "ACK_ERROR"
    REJECTED = "REJECTED"

    @classmethod
    def parse(cls, value: Any) -> "TradeSystemStatus":
        """Map a stored status to a member, raising on anything unknown."""
        return _parse_strict(cls, value)

    @property
    def is_terminal(self) -> bool:
        """No transition leaves a terminal status."""
        return self in TERMINAL_STATUSES


class WorkflowEventType(str, Enum):
    """Event types written to the workflow log."""

    BOOKING_REQUESTED = "BookingRequested"
    BOOKING_CONFIRMED = "BookingConfirmed"
    BOOKING_REJECTED = "BookingRejected"
    READY_TO_ACK = "ReadyToAck"
    ACK_SENT = "AckSent"
    ACK_FAILED = "AckFailed"
    ACK_REJECTED = "AckRejected"
    MASTER_ACQUIRED = "MasterAcquired"
    MASTER_RELEASED = "MasterReleased"
    RESPONSE_QUARANTINED = "ResponseQuarantined"


class ResponseOutcome(str, Enum):
    """Result reported by a booking system response file."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


def _parse_strict(enum_cls, value: Any):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value)
        except ValueError:
            pass
    raise UnknownEnumValueError(
        enum_name=enum_cls.__name__,
        value=value,
        allowed=[member.value for member in enum_cls],
    )


TERMINAL_STATUSES: FrozenSet[TradeSystemStatus] = frozenset({
    TradeSystemStatus.ACK_SENT,
    TradeSystemStatus.REJECTED,
})

ACK_CAPABLE_SYSTEMS: FrozenSet[SystemCode] = frozenset({
    SystemCode.VOLBROKER_STP,
})

# Fields an acknowledgement cannot be built without
ACK_REQUIRED_FIELDS = (
    "external_trade_id",
    "currency_pair",
    "buy_sell",
    "notional",
    "trade_date",
    "execution_time_utc",
)


# =============================================================
# TRANSITIONS
# =============================================================

VALID_TRANSITIONS: Dict[TradeSystemStatus, Set[TradeSystemStatus]] = {
    TradeSystemStatus.NEW: {TradeSystemStatus.PENDING, TradeSystemStatus.READY_TO_ACK},
    TradeSystemStatus.ERROR: {TradeSystemStatus.PENDING},
    TradeSystemStatus.PENDING: {TradeSystemStatus.BOOKED, TradeSystemStatus.ERROR},
    TradeSystemStatus.BOOKED: {TradeSystemStatus.BOOKED},
    TradeSystemStatus.READY_TO_ACK: {
        TradeSystemStatus.ACK_SENT,
        TradeSystemStatus.ACK_ERROR,
        TradeSystemStatus.REJECTED,
    },
    TradeSystemStatus.ACK_ERROR: {
        TradeSystemStatus.ACK_SENT,
        TradeSystemStatus.ACK_ERROR,
        TradeSystemStatus.REJECTED,
    },
    TradeSystemStatus.CANCELLED: set(),
    TradeSystemStatus.ACK_SENT: set(),
    TradeSystemStatus.REJECTED: set(),
}


def allowed_origins(target: TradeSystemStatus) -> FrozenSet[TradeSystemStatus]:
    """Get every status from which target can be reached."""
    return frozenset(
        origin for origin, targets in VALID_TRANSITIONS.items() if target in targets
    )


# =============================================================
# SNAPSHOTS
# =============================================================

@dataclass(frozen=True)
class LinkSnapshot:
    """Immutable, strictly parsed view of a TradeSystemLink row."""

    trade_id: int
    system_code: SystemCode
    status: TradeSystemStatus
    last_status_utc: datetime
    external_trade_id: Optional[str] = None
    last_error: Optional[str] = None
    book_flag: Optional[bool] = None
    stp_mode: Optional[str] = None
    booked_by: Optional[str] = None
    first_booked_utc: Optional[datetime] = None
    last_booked_utc: Optional[datetime] = None

    @classmethod
    def from_record(cls, record) -> "LinkSnapshot":
        """
        Build a snapshot from an ORM row.

        Raises:
            UnknownEnumValueError: system_code or status is not a known code
        """
        return cls(
            trade_id=record.trade_id,
            system_code=SystemCode.parse(record.system_code),
            status=TradeSystemStatus.parse(record.status),
            last_status_utc=record.last_status_utc,
            external_trade_id=record.external_trade_id,
            last_error=record.last_error,
            book_flag=record.book_flag,
            stp_mode=record.stp_mode,
            booked_by=record.booked_by,
            first_booked_utc=record.first_booked_utc,
            last_booked_utc=record.last_booked_utc,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logging and the status CLI."""
        return {
            "trade_id": self.trade_id,
            "system_code": self.system_code.value,
            "status": self.status.value,
            "external_trade_id": self.external_trade_id,
            "last_status_utc": self.last_status_utc.isoformat() if self.last_status_utc else None,
            "last_error": self.last_error,
            "booked_by": self.booked_by,
            "first_booked_utc": self.first_booked_utc.isoformat() if self.first_booked_utc else None,
            "last_booked_utc": self.last_booked_utc.isoformat() if self.last_booked_utc else None,
        }


# =============================================================
# SCHEMAS
# =============================================================

class ParsedResponse(BaseModel):
    """Normalized outcome of one booking system response file."""

    model_config = ConfigDict(frozen=True)

    trade_id: int
    system_code: SystemCode
    outcome: ResponseOutcome
    external_trade_id: Optional[str] = None
    error_text: Optional[str] = None
    file_name: str
    related_files: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_outcome_fields(self) -> "ParsedResponse":
        if self.outcome == ResponseOutcome.SUCCESS and not self.external_trade_id:
            raise ValueError("successful response must carry an external trade id")
        if self.outcome == ResponseOutcome.FAILURE and not self.error_text:
            raise ValueError("failed response must carry an error text")
        return self

    @property
    def is_success(self) -> bool:
        return self.outcome == ResponseOutcome.SUCCESS


class ExportResult(BaseModel):
    """Result reported by the external booking file exporter."""

    success: bool
    file_name: Optional[str] = None
    error_message: Optional[str] = None


class BookingResult(BaseModel):
    """Result of a booking command."""

    trade_id: int
    system_code: SystemCode
    success: bool
    status: Optional[TradeSystemStatus] = None
    file_name: Optional[str] = None
    error_message: Optional[str] = None


class AckResult(BaseModel):
    """Result of one acknowledgement dispatch."""

    trade_id: int
    status: TradeSystemStatus
    error_message: Optional[str] = None
