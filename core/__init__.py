"""
Core Module Package.

This package contains the core infrastructure components
that all other modules depend on.

Components:
- clock: Unified time abstraction (UTC, mockable in tests)
- exceptions: Custom exception hierarchy
"""

from .clock import ClockProtocol, MockClock, SystemClock
from .exceptions import CoordinationException

__all__ = [
    "ClockProtocol",
    "MockClock",
    "SystemClock",
    "CoordinationException",
]
