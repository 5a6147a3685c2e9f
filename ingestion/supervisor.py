"""
Ingestion - Supervisor.

Starts one ResponseIngestor per response-file system when this
instance becomes master and stops them all when it stops being
master.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from booking.state_machine import BookingStateMachine
from booking.types import SystemCode
from booking.workflow_log import WorkflowEventLog
from election.coordinator import ElectionCoordinator, MastershipChanged
from ingestion.ingestor import ResponseIngestor
from ingestion.parsers import parser_for


logger = logging.getLogger(__name__)


class IngestionSupervisor:
    """Drives ingestors from MastershipChanged."""

    def __init__(self, ingestors: List[ResponseIngestor]):
        self._ingestors = list(ingestors)
        self._coordinator: Optional[ElectionCoordinator] = None

    @property
    def ingestors(self) -> List[ResponseIngestor]:
        return list(self._ingestors)

    @property
    def active_systems(self) -> List[SystemCode]:
        return [ingestor.system_code for ingestor in self._ingestors if ingestor.is_active]

    def attach(self, coordinator: ElectionCoordinator) -> None:
        """Subscribe to mastership changes of a coordinator."""
        self._coordinator = coordinator
        coordinator.subscribe(self.on_mastership_changed)

    def detach(self) -> None:
        if self._coordinator is not None:
            self._coordinator.unsubscribe(self.on_mastership_changed)
            self._coordinator = None

    def on_mastership_changed(self, change: MastershipChanged) -> None:
        """Start ingestion on promotion, stop it on demotion."""
        if change.is_master:
            for ingestor in self._ingestors:
                ingestor.start()
            logger.info(
                f"Ingestion active for {', '.join(s.value for s in self.active_systems) or 'no systems'}"
            )
        else:
            self.stop_all()

    def stop_all(self) -> None:
        """Stop every ingestor without touching the database."""
        for ingestor in self._ingestors:
            ingestor.stop()

    async def shutdown(self) -> None:
        """Stop every ingestor and wait for their tasks."""
        self.detach()
        self.stop_all()
        await asyncio.gather(*(ingestor.wait_stopped() for ingestor in self._ingestors))


def build_ingestors(
    folders: Dict[SystemCode, Optional[str]],
    state_machine: BookingStateMachine,
    leadership: Any,
    event_log: Optional[WorkflowEventLog] = None,
    poll_interval_seconds: float = 2,
    settle_seconds: float = 1,
    actor: str = "system",
) -> List[ResponseIngestor]:
    """
    Create one ingestor per system with a configured folder.

    Systems without a folder, or that do not answer through
    response files, are skipped with a warning.
    """
    ingestors = []
    for system_code, folder in folders.items():
        if not system_code.has_response_files:
            logger.warning(f"{system_code.value} has no response files, not ingesting")
            continue
        if not folder:
            logger.warning(f"No response folder configured for {system_code.value}, not ingesting")
            continue
        ingestors.append(
            ResponseIngestor(
                parser=parser_for(system_code),
                folder=Path(folder),
                state_machine=state_machine,
                leadership=leadership,
                event_log=event_log,
                poll_interval_seconds=poll_interval_seconds,
                settle_seconds=settle_seconds,
                actor=actor,
            )
        )
    return ingestors
