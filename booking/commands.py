"""
Booking Commands.

============================================================
RESPONSIBILITY
============================================================
The "book trade" command any blotter instance may issue.

1. The external exporter writes the booking file for the system
2. On success the link moves NEW/ERROR -> PENDING (booked_by = user)
3. BookingRequested is appended by the state machine

Export failures leave the link untouched. Transition conflicts
propagate: another user booked the trade first.

============================================================
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Union

from booking.state_machine import BookingStateMachine
from booking.types import BookingResult, ExportResult, SystemCode


logger = logging.getLogger(__name__)


class BookingExporter(ABC):
    """Boundary to the service that writes booking files."""

    @abstractmethod
    def export(self, trade_id: int, system_code: SystemCode) -> ExportResult:
        """Write the booking file for one trade and system."""
        pass


class BookingCommandService:
    """Issues booking requests on behalf of the local user."""

    def __init__(self, state_machine: BookingStateMachine, user_name: str):
        self._state_machine = state_machine
        self._user_name = user_name

    def book(
        self,
        trade_id: int,
        system_code: Union[SystemCode, str],
        exporter: BookingExporter,
    ) -> BookingResult:
        """
        Export the booking file, then request the booking.

        Args:
            trade_id: Trade to book
            system_code: Target booking system
            exporter: Booking file exporter for that system

        Returns:
            BookingResult; success=False when the export failed

        Raises:
            TransitionConflictError: The link was not NEW or ERROR
            LinkNotFoundError: No live link for the trade and system
        """
        code = SystemCode.parse(system_code)

        try:
            export = exporter.export(trade_id, code)
        except Exception as e:
            logger.error(f"Export of trade {trade_id} to {code.value} raised: {e}")
            export = ExportResult(success=False, error_message=str(e))

        if not export.success:
            logger.warning(
                f"Booking of trade {trade_id} in {code.value} not requested: "
                f"{export.error_message or 'export failed'}"
            )
            return BookingResult(
                trade_id=trade_id,
                system_code=code,
                success=False,
                error_message=export.error_message or "Export failed",
            )

        details = f"Booking file {export.file_name}" if export.file_name else None
        link = self._state_machine.request_booking(
            trade_id, code, user_id=self._user_name, details=details
        )
        return BookingResult(
            trade_id=trade_id,
            system_code=code,
            success=True,
            status=link.status,
            file_name=export.file_name,
        )
