"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the blotter coordination core.

- Provides clear exception hierarchy
- Keeps transport failures apart from business failures
- Supports error categorization for logging
- Includes context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
CoordinationException (base)
├── ConfigurationError
│   └── InvalidConfigError
├── StoreUnavailableError
├── UnknownEnumValueError
├── ElectionError
│   └── NotLeaderError
├── BookingError
│   ├── LinkNotFoundError
│   ├── TransitionConflictError
│   ├── InvalidTransitionError
│   └── TerminalStateError
├── AcknowledgementError
│   ├── AckTransportError
│   ├── AckRejectedError
│   └── AckPreconditionError
└── ResponseParseError

AckTransportError is the ONLY error that may produce ACK_ERROR.
Business and validation errors never map to it.

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for logging."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, may impact operations."""

    CRITICAL = "critical"
    """Critical issue, requires immediate action."""


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Error can be recovered from automatically."""

    TRANSIENT = "transient"
    """Temporary error, retry may succeed."""

    CONFLICT = "conflict"
    """Expected contention signal from a guarded update."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, requires intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class CoordinationException(Exception):
    """
    Base exception for all coordination core errors.

    All exceptions carry:
    - severity: for logging
    - context: for debugging
    - classification: for error handling decisions
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    @property
    def is_recoverable(self) -> bool:
        """Check if error is recoverable."""
        return self.classification != ErrorClassification.NON_RECOVERABLE

    @property
    def is_transient(self) -> bool:
        """Check if a retry on the next cycle may succeed."""
        return self.classification == ErrorClassification.TRANSIENT

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }

    def to_log_format(self) -> str:
        """Format exception for structured logging."""
        ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        line = f"[{self.severity.value.upper()}] {type(self).__name__}: {self.message}"
        if ctx_str:
            line += f" | {ctx_str}"
        return line


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(CoordinationException):
    """Error in configuration."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE


class InvalidConfigError(ConfigurationError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid configuration for {key}: {reason}",
            context={
                "config_key": key,
                "actual_value": str(value)[:100],
                "reason": reason,
            },
        )
        self.key = key


# ============================================================
# INFRASTRUCTURE ERRORS
# ============================================================

class StoreUnavailableError(CoordinationException):
    """
    Shared store could not be read or written.

    Raised in place of repository exceptions by the periodic loops.
    The outcome of the operation is unknown.
    """

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.TRANSIENT

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if operation:
            context["operation"] = operation
        super().__init__(message, context=context, **kwargs)


class UnknownEnumValueError(CoordinationException):
    """A stored code did not map to a known enum member."""

    default_severity = Severity.CRITICAL
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(self, enum_name: str, value: Any, allowed: Iterable[str]):
        super().__init__(
            message=f"Unknown {enum_name} database value: {value!r}",
            context={"enum": enum_name, "value": str(value), "allowed": ",".join(allowed)},
        )
        self.enum_name = enum_name
        self.value = value


# ============================================================
# ELECTION ERRORS
# ============================================================

class ElectionError(CoordinationException):
    """Base class for leader election errors."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.RECOVERABLE


class NotLeaderError(ElectionError):
    """A leader-only action was attempted without holding the lease."""

    def __init__(self, action: str, user_name: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        context["action"] = action
        if user_name:
            context["user_name"] = user_name
        super().__init__(
            f"Leader-only action '{action}' refused: this instance does not hold the lease",
            context=context,
            **kwargs,
        )
        self.action = action


# ============================================================
# BOOKING STATE MACHINE ERRORS
# ============================================================

class BookingError(CoordinationException):
    """Base class for booking state machine errors."""

    def __init__(
        self,
        message: str,
        trade_id: Optional[int] = None,
        system_code: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if trade_id is not None:
            context["trade_id"] = trade_id
        if system_code:
            context["system_code"] = system_code
        super().__init__(message, context=context, **kwargs)
        self.trade_id = trade_id
        self.system_code = system_code


class LinkNotFoundError(BookingError):
    """No live link exists for (trade_id, system_code)."""

    def __init__(self, trade_id: int, system_code: str):
        super().__init__(
            f"No active trade system link for trade {trade_id} / {system_code}",
            trade_id=trade_id,
            system_code=system_code,
        )


class TransitionConflictError(BookingError):
    """
    Guarded update affected zero rows.

    The link exists but was not in an allowed origin state when the
    update ran. Another instance or an earlier attempt got there first.
    """

    default_classification = ErrorClassification.CONFLICT

    def __init__(
        self,
        trade_id: int,
        system_code: str,
        target: str,
        expected: Iterable[str],
        actual: Optional[str] = None,
    ):
        expected = sorted(expected)
        super().__init__(
            f"Conflict moving trade {trade_id} / {system_code} to {target}: "
            f"expected one of {expected}, found {actual}",
            trade_id=trade_id,
            system_code=system_code,
            context={"target": target, "expected": ",".join(expected), "actual": actual},
        )
        self.target = target
        self.actual = actual


class InvalidTransitionError(BookingError):
    """Transition is not defined for this system code or state."""

    default_classification = ErrorClassification.NON_RECOVERABLE


class TerminalStateError(BookingError):
    """The link is in a terminal state; no further transitions exist."""

    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(self, trade_id: int, system_code: str, state: str, target: str):
        super().__init__(
            f"Trade {trade_id} / {system_code} is terminal ({state}); cannot move to {target}",
            trade_id=trade_id,
            system_code=system_code,
            context={"state": state, "target": target},
        )
        self.state = state


# ============================================================
# ACKNOWLEDGEMENT ERRORS
# ============================================================

class AcknowledgementError(CoordinationException):
    """Base class for outbound acknowledgement errors."""


class AckTransportError(AcknowledgementError):
    """Transport or session failure while sending an acknowledgement."""

    default_classification = ErrorClassification.TRANSIENT


class AckRejectedError(AcknowledgementError):
    """The trade was rejected for business reasons."""

    default_classification = ErrorClassification.NON_RECOVERABLE


class AckPreconditionError(AcknowledgementError):
    """Fields required to build the acknowledgement are missing."""

    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(self, trade_id: int, missing: Iterable[str]):
        missing = sorted(missing)
        super().__init__(
            f"Trade {trade_id} is missing acknowledgement fields: {', '.join(missing)}",
            context={"trade_id": trade_id, "missing": ",".join(missing)},
        )
        self.missing = missing


# ============================================================
# RESPONSE FILE ERRORS
# ============================================================

class ResponseParseError(CoordinationException):
    """A response file could not be parsed into an outcome."""

    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        file_name: Optional[str] = None,
        trade_id: Optional[int] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if file_name:
            context["file_name"] = file_name
        if trade_id is not None:
            context["trade_id"] = trade_id
        super().__init__(message, context=context, **kwargs)
        self.file_name = file_name
        self.trade_id = trade_id


__all__ = [
    "Severity",
    "ErrorClassification",
    "CoordinationException",
    "ConfigurationError",
    "InvalidConfigError",
    "StoreUnavailableError",
    "UnknownEnumValueError",
    "ElectionError",
    "NotLeaderError",
    "BookingError",
    "LinkNotFoundError",
    "TransitionConflictError",
    "InvalidTransitionError",
    "TerminalStateError",
    "AcknowledgementError",
    "AckTransportError",
    "AckRejectedError",
    "AckPreconditionError",
    "ResponseParseError",
]
