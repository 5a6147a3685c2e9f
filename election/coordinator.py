"""
Election - Coordinator.

============================================================
RESPONSIBILITY
============================================================
Periodic leader election over the shared database.

Each tick:
1. Read online users (presence) and the priority list
2. preferred = first user in priority order that is online
3. preferred is someone else (or nobody): stay or become passive,
   release the lease if we held it
4. preferred is this user: acquire or renew the lease with one
   conditional update; rowcount decides mastership

============================================================
FAILURE RULES
============================================================
- A tick that hits a database error never promotes
- A master demotes after `failure_threshold` consecutive failed
  ticks, or once the expiry it last wrote has passed
- Mastership changes are emitted as MastershipChanged to
  subscribers, on the thread that applies the tick

============================================================
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional

from sqlalchemy.orm import sessionmaker

from booking.types import WorkflowEventType
from booking.workflow_log import WorkflowEventLog
from core.clock import ClockProtocol, SystemClock
from core.exceptions import StoreUnavailableError
from election.presence import PresenceService
from storage.database import session_scope
from storage.repositories import LeaseRepository, PriorityRepository, RepositoryException


logger = logging.getLogger(__name__)


DEFAULT_LOCK_NAME = "BookingStatusWatcher"


# ============================================================
# SIGNALS AND RESULTS
# ============================================================

@dataclass(frozen=True)
class MastershipChanged:
    """Emitted when this instance gains or loses mastership."""

    is_master: bool
    user_name: str
    machine_name: str
    lock_name: str
    reason: str
    timestamp: datetime


@dataclass(frozen=True)
class LeaseHolder:
    """Holder of an unexpired lease."""

    user_name: str
    machine_name: str
    last_heartbeat_utc: datetime
    expires_at_utc: datetime


class TickOutcome(Enum):
    """What a single election tick observed."""

    ACQUIRED = "acquired"
    """Lease acquired or renewed by this instance."""

    BLOCKED = "blocked"
    """Preferred, but another holder's lease is still valid."""

    YIELDED = "yielded"
    """Another online user is preferred."""

    NO_CANDIDATE = "no_candidate"
    """No user of the priority list is online."""

    ERROR = "error"
    """Database error; outcome unknown."""


@dataclass
class TickResult:
    """Result of the database half of a tick."""

    outcome: TickOutcome
    preferred: Optional[str] = None
    online: List[str] = field(default_factory=list)
    lease_expires_at: Optional[datetime] = None
    error: Optional[Exception] = None

    @property
    def wants_master(self) -> bool:
        return self.outcome == TickOutcome.ACQUIRED


MastershipCallback = Callable[[MastershipChanged], None]


# ============================================================
# COORDINATOR
# ============================================================

class ElectionCoordinator:
    """
    Lease-based master election for one blotter instance.

    is_master lives on this object only; there is no process-wide
    singleton. Consumers subscribe to MastershipChanged.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        presence: PresenceService,
        lock_name: str = DEFAULT_LOCK_NAME,
        lease_ttl_seconds: float = 30,
        election_interval_seconds: float = 12,
        initial_delay_seconds: float = 2,
        failure_threshold: int = 2,
        clock: Optional[ClockProtocol] = None,
        event_log: Optional[WorkflowEventLog] = None,
    ):
        self._session_factory = session_factory
        self._presence = presence
        self._lock_name = lock_name
        self._lease_ttl = timedelta(seconds=lease_ttl_seconds)
        self._election_interval = election_interval_seconds
        self._initial_delay = initial_delay_seconds
        self._failure_threshold = failure_threshold
        self._clock = clock or SystemClock()
        self._event_log = event_log

        self._is_master = False
        self._lease_expires_at: Optional[datetime] = None
        self._consecutive_failures = 0
        self._subscribers: List[MastershipCallback] = []
        self._subscribers_lock = threading.Lock()
        self._task: Optional[asyncio.Task] = None

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def is_master(self) -> bool:
        return self._is_master

    @property
    def user_name(self) -> str:
        return self._presence.user_name

    @property
    def machine_name(self) -> str:
        return self._presence.machine_name

    @property
    def lock_name(self) -> str:
        return self._lock_name

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # --------------------------------------------------------
    # Subscription
    # --------------------------------------------------------

    def subscribe(self, callback: MastershipCallback) -> None:
        """Register a MastershipChanged callback."""
        with self._subscribers_lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: MastershipCallback) -> None:
        """Remove a callback; unknown callbacks are ignored."""
        with self._subscribers_lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    # --------------------------------------------------------
    # Lease operations
    # --------------------------------------------------------

    def load_priority_list(self) -> List[str]:
        """
        Get candidate users, most preferred first.

        Raises:
            StoreUnavailableError: The list could not be read
        """
        try:
            with session_scope(self._session_factory) as session:
                entries = PriorityRepository(session).load_priority_list()
                return [entry.user_name for entry in entries]
        except RepositoryException as e:
            raise StoreUnavailableError(str(e), operation="load_priority_list", cause=e) from e

    def try_acquire_lease(self) -> bool:
        """
        Acquire or renew the lease for this (user, machine).

        Raises:
            StoreUnavailableError: Outcome unknown
        """
        now = self._clock.now()
        try:
            with session_scope(self._session_factory) as session:
                acquired = LeaseRepository(session).try_acquire(
                    self._lock_name, self.user_name, self.machine_name, now, self._lease_ttl
                )
        except RepositoryException as e:
            raise StoreUnavailableError(str(e), operation="try_acquire_lease", cause=e) from e

        if acquired:
            self._lease_expires_at = now + self._lease_ttl
        return acquired

    def release_lease(self) -> bool:
        """
        Expire the lease if this instance holds it. Best effort.

        Returns:
            True if the lease was released
        """
        try:
            with session_scope(self._session_factory) as session:
                released = LeaseRepository(session).release(
                    self._lock_name, self.user_name, self.machine_name, self._clock.now()
                )
        except RepositoryException as e:
            logger.warning(f"Could not release lease {self._lock_name}: {e}")
            return False

        self._lease_expires_at = None
        if released:
            logger.info(f"Lease {self._lock_name} released by {self.user_name}@{self.machine_name}")
        return released

    def get_current_master(self) -> Optional[LeaseHolder]:
        """
        Get the holder of the unexpired lease, if any.

        Raises:
            StoreUnavailableError: The lease could not be read
        """
        try:
            with session_scope(self._session_factory) as session:
                record = LeaseRepository(session).get_current_holder(
                    self._lock_name, self._clock.now()
                )
                if record is None or record.held_by_user is None:
                    return None
                return LeaseHolder(
                    user_name=record.held_by_user,
                    machine_name=record.held_by_machine,
                    last_heartbeat_utc=record.last_heartbeat_utc,
                    expires_at_utc=record.expires_at_utc,
                )
        except RepositoryException as e:
            raise StoreUnavailableError(str(e), operation="get_current_master", cause=e) from e

    def confirm_leadership(self) -> bool:
        """
        Re-read the lease before a leader-only side effect.

        Returns:
            True only if this instance is master and the unexpired
            holder; False on any store error
        """
        if not self._is_master:
            return False
        try:
            holder = self.get_current_master()
        except StoreUnavailableError as e:
            logger.warning(f"Leadership not confirmed, lease unreadable: {e.message}")
            return False
        return (
            holder is not None
            and holder.user_name == self.user_name
            and holder.machine_name == self.machine_name
        )

    # --------------------------------------------------------
    # Tick
    # --------------------------------------------------------

    def tick(self) -> TickResult:
        """Run one complete election tick on the calling thread."""
        result = self._decide()
        change = self._apply(result)
        if change is not None:
            self._after_change(change, result)
        return result

    def _decide(self) -> TickResult:
        """Database half of a tick. Never changes is_master."""
        try:
            online = self._presence.list_online_users()
            priority = self.load_priority_list()
        except StoreUnavailableError as e:
            return TickResult(TickOutcome.ERROR, error=e)

        online_set = set(online)
        preferred = next((user for user in priority if user in online_set), None)

        if preferred is None:
            return TickResult(TickOutcome.NO_CANDIDATE, online=online)
        if preferred != self.user_name:
            return TickResult(TickOutcome.YIELDED, preferred=preferred, online=online)

        try:
            acquired = self.try_acquire_lease()
        except StoreUnavailableError as e:
            return TickResult(TickOutcome.ERROR, preferred=preferred, online=online, error=e)

        return TickResult(
            TickOutcome.ACQUIRED if acquired else TickOutcome.BLOCKED,
            preferred=preferred,
            online=online,
            lease_expires_at=self._lease_expires_at if acquired else None,
        )

    def _apply(self, result: TickResult) -> Optional[MastershipChanged]:
        """State half of a tick. Emits MastershipChanged on transition."""
        if result.outcome == TickOutcome.ERROR:
            self._consecutive_failures += 1
            detail = (
                result.error.to_log_format()
                if isinstance(result.error, StoreUnavailableError)
                else result.error
            )
            logger.warning(
                f"Election tick failed ({self._consecutive_failures} in a row): {detail}"
            )
            if not self._is_master:
                return None
            now = self._clock.now()
            if self._consecutive_failures >= self._failure_threshold:
                return self._set_master(False, f"{self._consecutive_failures} failed election ticks")
            if self._lease_expires_at is not None and now >= self._lease_expires_at:
                return self._set_master(False, "own lease expired while store unavailable")
            return None

        self._consecutive_failures = 0

        if result.wants_master == self._is_master:
            logger.debug(
                f"Election tick: {result.outcome.value} preferred={result.preferred} "
                f"master={self._is_master}"
            )
            return None

        if result.wants_master:
            return self._set_master(True, "lease acquired")
        if result.outcome == TickOutcome.YIELDED:
            return self._set_master(False, f"{result.preferred} is preferred")
        if result.outcome == TickOutcome.NO_CANDIDATE:
            return self._set_master(False, "no candidate online")
        return self._set_master(False, "lease held by another instance")

    def _set_master(self, is_master: bool, reason: str) -> MastershipChanged:
        self._is_master = is_master
        if not is_master:
            self._consecutive_failures = 0

        change = MastershipChanged(
            is_master=is_master,
            user_name=self.user_name,
            machine_name=self.machine_name,
            lock_name=self._lock_name,
            reason=reason,
            timestamp=self._clock.now(),
        )
        if is_master:
            logger.info(f"*** {self.user_name}@{self.machine_name} is now MASTER ({reason}) ***")
        else:
            logger.info(f"{self.user_name}@{self.machine_name} is no longer master ({reason})")

        with self._subscribers_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(change)
            except Exception as e:
                logger.error(f"MastershipChanged subscriber failed: {e}", exc_info=True)
        return change

    def _after_change(self, change: MastershipChanged, result: Optional[TickResult]) -> None:
        """Database follow-up of a transition: release and audit."""
        voluntary = result is not None and result.outcome in (
            TickOutcome.YIELDED,
            TickOutcome.NO_CANDIDATE,
        )
        if not change.is_master and (voluntary or result is None):
            self.release_lease()

        if self._event_log is None:
            return
        event_type = (
            WorkflowEventType.MASTER_ACQUIRED if change.is_master else WorkflowEventType.MASTER_RELEASED
        )
        try:
            self._event_log.append(
                trade_id=None,
                event_type=event_type,
                user_id=self.user_name,
                details=f"{self.machine_name}: {change.reason}",
            )
        except RepositoryException as e:
            logger.warning(f"Could not log {event_type.value}: {e}")

    # --------------------------------------------------------
    # Loop
    # --------------------------------------------------------

    def start(self) -> None:
        """Start the election loop on the running event loop."""
        if self.is_running:
            logger.warning("Election loop already running")
            return
        self._task = asyncio.create_task(self._run(), name=f"election-{self._lock_name}")
        logger.info(
            f"Election loop started | lock={self._lock_name} "
            f"interval={self._election_interval}s ttl={self._lease_ttl.total_seconds():.0f}s"
        )

    async def stop(self, release: bool = True) -> None:
        """
        Cancel the election loop.

        With release=True a master demotes itself and expires the
        lease so the next candidate does not wait for the TTL.
        """
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if release and self._is_master:
            change = self._set_master(False, "shutdown")
            await asyncio.to_thread(self._after_change, change, None)
        logger.info("Election loop stopped")

    async def _run(self) -> None:
        await asyncio.sleep(self._initial_delay)
        while True:
            result = await asyncio.to_thread(self._decide)
            change = self._apply(result)
            if change is not None:
                await asyncio.to_thread(self._after_change, change, result)
            await asyncio.sleep(self._election_interval)
