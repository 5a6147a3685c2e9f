"""
Orchestrator - Core.

============================================================
RESPONSIBILITY
============================================================
Host runtime of one blotter coordinator node.

- Wires presence, election, booking and ingestion together
- Runs the heartbeat, election and ingestion loops on one
  asyncio event loop; database work runs in worker threads
- Handles signals (SIGINT, SIGTERM)
- On graceful shutdown releases the lease and removes presence,
  both best effort

============================================================
"""

import asyncio
import json
import logging
import signal
import sys
from typing import Any, Dict, Optional

from sqlalchemy.engine import Engine

from booking.state_machine import BookingStateMachine
from booking.workflow_log import WorkflowEventLog
from core.clock import ClockProtocol, SystemClock
from core.exceptions import StoreUnavailableError
from election.coordinator import ElectionCoordinator
from election.presence import PresenceService
from ingestion.supervisor import IngestionSupervisor, build_ingestors
from storage.database import create_database_engine, get_session_factory

from .models import CoordinatorConfig


# ============================================================
# LOGGING SETUP
# ============================================================

def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    node_id: Optional[str] = None,
) -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
        node_id: user@machine of this instance, added to every line

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
                "node": node_id or "",
            })
        )
    else:
        formatter = logging.Formatter(
            f"%(asctime)s | %(levelname)-8s | %(name)s | {node_id or ''} | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("orchestrator")


# ============================================================
# COORDINATOR NODE
# ============================================================

class CoordinatorNode:
    """
    One blotter instance taking part in master election.

    Every node heartbeats and runs the election. Only the master
    runs response ingestion.
    """

    def __init__(
        self,
        config: CoordinatorConfig,
        engine: Optional[Engine] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._config = config
        self._logger = logging.getLogger("orchestrator.node")
        self._clock = clock or SystemClock()

        self._engine = engine or create_database_engine(config.database_url)
        self._session_factory = get_session_factory(self._engine)

        self._event_log = WorkflowEventLog(self._session_factory, self._clock)

        self._presence = PresenceService(
            self._session_factory,
            user_name=config.user_name,
            machine_name=config.machine_name,
            presence_ttl_seconds=config.presence_ttl_seconds,
            heartbeat_interval_seconds=config.heartbeat_interval_seconds,
            clock=self._clock,
        )

        self._coordinator = ElectionCoordinator(
            self._session_factory,
            self._presence,
            lock_name=config.lock_name,
            lease_ttl_seconds=config.lease_ttl_seconds,
            election_interval_seconds=config.election_interval_seconds,
            initial_delay_seconds=config.election_initial_delay_seconds,
            failure_threshold=config.election_failure_threshold,
            clock=self._clock,
            event_log=self._event_log if config.log_workflow_mastership else None,
        )

        self._state_machine = BookingStateMachine(
            self._session_factory,
            clock=self._clock,
            event_log=self._event_log,
            leadership=self._coordinator,
            actor=config.user_name,
        )

        self._supervisor = IngestionSupervisor(
            build_ingestors(
                config.response_folders,
                self._state_machine,
                leadership=self._coordinator,
                event_log=self._event_log,
                poll_interval_seconds=config.response_poll_interval_seconds,
                settle_seconds=config.file_settle_seconds,
                actor=config.user_name,
            )
        )
        self._supervisor.attach(self._coordinator)

        self._running = False
        self._shutdown_event: Optional[asyncio.Event] = None

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def config(self) -> CoordinatorConfig:
        return self._config

    @property
    def coordinator(self) -> ElectionCoordinator:
        return self._coordinator

    @property
    def presence(self) -> PresenceService:
        return self._presence

    @property
    def state_machine(self) -> BookingStateMachine:
        return self._state_machine

    @property
    def supervisor(self) -> IngestionSupervisor:
        return self._supervisor

    @property
    def is_running(self) -> bool:
        return self._running

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    async def start(self) -> None:
        """Start heartbeat and election loops."""
        if self._running:
            self._logger.warning("Node already running")
            return

        self._logger.info(f"=== NODE STARTUP {self._config.node_id} ===")
        self._shutdown_event = asyncio.Event()
        self._install_signal_handlers()

        # First heartbeat before the first election tick
        await asyncio.to_thread(self._presence.beat)
        self._presence.start()
        self._coordinator.start()

        self._running = True
        self._logger.info("=== NODE STARTUP COMPLETE ===")

    async def stop(self) -> None:
        """Stop all loops; release lease and presence best effort."""
        if not self._running:
            return

        self._logger.info("=== NODE SHUTDOWN SEQUENCE ===")
        self._running = False

        await self._supervisor.shutdown()
        await self._coordinator.stop(release=True)
        await self._presence.stop()
        await asyncio.to_thread(self._presence.remove_presence)

        self._restore_signal_handlers()
        if self._shutdown_event is not None:
            self._shutdown_event.set()
        self._logger.info("=== NODE SHUTDOWN COMPLETE ===")

    async def run_forever(self) -> None:
        """Run until a signal or request_shutdown()."""
        if not self._running:
            await self.start()
        try:
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    def get_status(self) -> Dict[str, Any]:
        """Current node status for logs and the status command."""
        status: Dict[str, Any] = {
            "node_id": self._config.node_id,
            "running": self._running,
            "is_master": self._coordinator.is_master,
            "lock_name": self._config.lock_name,
            "ingesting": [code.value for code in self._supervisor.active_systems],
        }
        try:
            holder = self._coordinator.get_current_master()
            status["lease_holder"] = (
                f"{holder.user_name}@{holder.machine_name}" if holder else None
            )
        except StoreUnavailableError as e:
            status["lease_holder"] = f"unknown ({e.message})"
        return status

    # --------------------------------------------------------
    # Signal Handlers
    # --------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        """Install signal handlers for graceful shutdown."""
        if sys.platform == "win32":
            signal.signal(signal.SIGINT, self._signal_handler)
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._on_signal, sig)

    def _restore_signal_handlers(self) -> None:
        """Restore original signal handlers."""
        if sys.platform == "win32":
            signal.signal(signal.SIGINT, signal.default_int_handler)
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

    def _on_signal(self, sig: signal.Signals) -> None:
        self._logger.info(f"Received signal {sig.name}")
        self.request_shutdown()

    def _signal_handler(self, signum: int, frame: Any) -> None:
        """Synchronous signal handler (Windows)."""
        self._logger.info(f"Received signal {signum}")
        if self._shutdown_event is not None:
            asyncio.get_event_loop().call_soon_threadsafe(self._shutdown_event.set)
