"""
Presence Repository.

============================================================
PURPOSE
============================================================
Data access for blotter instance heartbeats.

============================================================
OPERATIONS
============================================================
- record_heartbeat: idempotent upsert keyed by node_id
- list_online_users / list_online_nodes: rows seen within TTL
- remove_presence: best-effort cleanup on graceful shutdown

============================================================
"""

from datetime import datetime, timedelta
from typing import List

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError as SQLAlchemyIntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from storage.models.coordination import PresenceRecord
from storage.repositories.base import BaseRepository


class PresenceRepository(BaseRepository[PresenceRecord]):
    """
    Repository for PresenceRecord rows.

    Freshness is decided in SQL against the caller's clock so every
    instance applies the same TTL rule.
    """

    def __init__(self, session: Session) -> None:
        super().__init__(session, PresenceRecord, "PresenceRepository")

    def record_heartbeat(
        self,
        node_id: str,
        user_name: str,
        machine_name: str,
        now: datetime,
    ) -> None:
        """
        Upsert the heartbeat row for a node.

        Args:
            node_id: user@machine
            user_name: Instance user
            machine_name: Instance host
            now: Heartbeat time (UTC)
        """
        stmt = (
            update(PresenceRecord)
            .where(PresenceRecord.node_id == node_id)
            .values(user_name=user_name, machine_name=machine_name, last_seen_utc=now)
        )
        if self._execute_update(stmt, "record_heartbeat") > 0:
            return

        try:
            self._session.execute(
                insert(PresenceRecord).values(
                    node_id=node_id,
                    user_name=user_name,
                    machine_name=machine_name,
                    last_seen_utc=now,
                )
            )
            self._logger.info(f"Registered presence for {node_id}")
        except SQLAlchemyIntegrityError:
            # Another process with the same identity inserted first
            self._session.rollback()
            self._execute_update(stmt, "record_heartbeat")
        except SQLAlchemyError as e:
            self._handle_db_error(e, "record_heartbeat", {"node_id": node_id})

    def list_online_users(self, now: datetime, presence_ttl: timedelta) -> List[str]:
        """
        Get distinct users with at least one fresh heartbeat.

        Args:
            now: Current time (UTC)
            presence_ttl: Freshness window

        Returns:
            Sorted user names
        """
        stmt = (
            select(PresenceRecord.user_name)
            .where(PresenceRecord.last_seen_utc > now - presence_ttl)
            .distinct()
            .order_by(PresenceRecord.user_name)
        )
        return self._execute_query(stmt, "list_online_users")

    def list_online_nodes(self, now: datetime, presence_ttl: timedelta) -> List[PresenceRecord]:
        """Get fresh presence rows, most recent first."""
        stmt = (
            select(PresenceRecord)
            .where(PresenceRecord.last_seen_utc > now - presence_ttl)
            .order_by(PresenceRecord.last_seen_utc.desc(), PresenceRecord.node_id)
        )
        return self._execute_query(stmt, "list_online_nodes")

    def list_all(self) -> List[PresenceRecord]:
        """Get every presence row, including stale ones."""
        stmt = select(PresenceRecord).order_by(PresenceRecord.node_id)
        return self._execute_query(stmt, "list_all")

    def remove_presence(self, node_id: str) -> bool:
        """
        Delete the presence row of a node.

        Returns:
            True if a row was removed
        """
        try:
            result = self._session.execute(
                delete(PresenceRecord).where(PresenceRecord.node_id == node_id)
            )
            return result.rowcount > 0
        except SQLAlchemyError as e:
            self._handle_db_error(e, "remove_presence", {"node_id": node_id})
            raise
