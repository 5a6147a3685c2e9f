"""
Election - Presence Service.

============================================================
RESPONSIBILITY
============================================================
Heartbeat loop of one blotter instance.

- Upserts presence every heartbeat interval, master or not
- Answers "who is online" for the election
- Removes its own row on graceful shutdown (best effort)

A failed heartbeat is logged and retried on the next beat. Three
missed beats in a row take the node offline for the election.

============================================================
"""

import asyncio
import logging
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.orm import sessionmaker

from core.clock import ClockProtocol, SystemClock
from core.exceptions import StoreUnavailableError
from storage.database import session_scope
from storage.models.coordination import PresenceRecord
from storage.repositories import PresenceRepository, RepositoryException


logger = logging.getLogger(__name__)


def make_node_id(user_name: str, machine_name: str) -> str:
    """Presence key of an instance."""
    return f"{user_name}@{machine_name}"


class PresenceService:
    """Records and reads blotter instance heartbeats."""

    def __init__(
        self,
        session_factory: sessionmaker,
        user_name: str,
        machine_name: str,
        presence_ttl_seconds: float = 30,
        heartbeat_interval_seconds: float = 10,
        clock: Optional[ClockProtocol] = None,
    ):
        self._session_factory = session_factory
        self._user_name = user_name
        self._machine_name = machine_name
        self._presence_ttl = timedelta(seconds=presence_ttl_seconds)
        self._heartbeat_interval = heartbeat_interval_seconds
        self._clock = clock or SystemClock()
        self._task: Optional[asyncio.Task] = None

    @property
    def node_id(self) -> str:
        return make_node_id(self._user_name, self._machine_name)

    @property
    def user_name(self) -> str:
        return self._user_name

    @property
    def machine_name(self) -> str:
        return self._machine_name

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # --------------------------------------------------------
    # Store operations
    # --------------------------------------------------------

    def record_heartbeat(self) -> None:
        """
        Upsert this node's presence row with last_seen = now.

        Raises:
            StoreUnavailableError: The row could not be written
        """
        try:
            with session_scope(self._session_factory) as session:
                PresenceRepository(session).record_heartbeat(
                    self.node_id, self._user_name, self._machine_name, self._clock.now()
                )
        except RepositoryException as e:
            raise StoreUnavailableError(str(e), operation="record_heartbeat", cause=e) from e

    def list_online_users(self) -> List[str]:
        """
        Get distinct users whose last heartbeat is within the TTL.

        Raises:
            StoreUnavailableError: Presence could not be read
        """
        try:
            with session_scope(self._session_factory) as session:
                return PresenceRepository(session).list_online_users(
                    self._clock.now(), self._presence_ttl
                )
        except RepositoryException as e:
            raise StoreUnavailableError(str(e), operation="list_online_users", cause=e) from e

    def list_online_nodes(self) -> List[PresenceRecord]:
        """Get fresh presence rows, most recent first."""
        try:
            with session_scope(self._session_factory) as session:
                return PresenceRepository(session).list_online_nodes(
                    self._clock.now(), self._presence_ttl
                )
        except RepositoryException as e:
            raise StoreUnavailableError(str(e), operation="list_online_nodes", cause=e) from e

    def remove_presence(self) -> bool:
        """Delete this node's row. Failures are logged, not raised."""
        try:
            with session_scope(self._session_factory) as session:
                removed = PresenceRepository(session).remove_presence(self.node_id)
            logger.info(f"Presence removed for {self.node_id}")
            return removed
        except RepositoryException as e:
            logger.warning(f"Could not remove presence for {self.node_id}: {e}")
            return False

    def beat(self) -> bool:
        """One heartbeat; returns False instead of raising on store errors."""
        try:
            self.record_heartbeat()
            return True
        except StoreUnavailableError as e:
            logger.warning(f"Heartbeat failed for {self.node_id}: {e.to_log_format()}")
            return False

    # --------------------------------------------------------
    # Loop
    # --------------------------------------------------------

    def start(self) -> None:
        """Start the heartbeat loop on the running event loop."""
        if self.is_running:
            logger.warning("Presence loop already running")
            return
        self._task = asyncio.create_task(self._run(), name=f"presence-{self.node_id}")
        logger.info(
            f"Presence loop started | node={self.node_id} interval={self._heartbeat_interval}s"
        )

    async def stop(self) -> None:
        """Cancel the heartbeat loop."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Presence loop stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.to_thread(self.beat)
            await asyncio.sleep(self._heartbeat_interval)
