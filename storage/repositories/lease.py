"""
Lease Repository.

============================================================
PURPOSE
============================================================
Data access for the master lease. The conditional UPDATE in
try_acquire is the ONLY cross-process atomic primitive of the
coordination core.

============================================================
COMPARE-AND-SWAP
============================================================
UPDATE master_lock
   SET held_by_user = :user, held_by_machine = :machine,
       last_heartbeat_utc = :now, expires_at_utc = :now + ttl
 WHERE lock_name = :name
   AND (expires_at_utc < :now
        OR (held_by_user = :user AND held_by_machine = :machine))

rowcount == 1 means this node holds the lease until the new
expiry. When the row does not exist it is inserted; a unique
key violation on that insert means another node won the race.

============================================================
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, insert, or_, select, update
from sqlalchemy.exc import IntegrityError as SQLAlchemyIntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from storage.models.coordination import LeaseRecord
from storage.repositories.base import BaseRepository


class LeaseRepository(BaseRepository[LeaseRecord]):
    """Repository for LeaseRecord rows."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, LeaseRecord, "LeaseRepository")

    def try_acquire(
        self,
        lock_name: str,
        user_name: str,
        machine_name: str,
        now: datetime,
        ttl: timedelta,
    ) -> bool:
        """
        Acquire or renew the lease in one conditional update.

        Args:
            lock_name: Lease name
            user_name: Candidate user
            machine_name: Candidate machine
            now: Current time (UTC)
            ttl: Lease duration

        Returns:
            True if this (user, machine) now holds the lease
        """
        stmt = (
            update(LeaseRecord)
            .where(
                LeaseRecord.lock_name == lock_name,
                or_(
                    LeaseRecord.expires_at_utc < now,
                    and_(
                        LeaseRecord.held_by_user == user_name,
                        LeaseRecord.held_by_machine == machine_name,
                    ),
                ),
            )
            .values(
                held_by_user=user_name,
                held_by_machine=machine_name,
                last_heartbeat_utc=now,
                expires_at_utc=now + ttl,
            )
        )
        if self._execute_update(stmt, "try_acquire") == 1:
            return True

        exists = self._execute_scalar(
            select(LeaseRecord.lock_name).where(LeaseRecord.lock_name == lock_name),
            "try_acquire",
        )
        if exists is not None:
            return False

        try:
            self._session.execute(
                insert(LeaseRecord).values(
                    lock_name=lock_name,
                    held_by_user=user_name,
                    held_by_machine=machine_name,
                    last_heartbeat_utc=now,
                    expires_at_utc=now + ttl,
                )
            )
        except SQLAlchemyIntegrityError:
            self._session.rollback()
            self._logger.info(f"Lost insert race for lease {lock_name}")
            return False
        except SQLAlchemyError as e:
            self._handle_db_error(e, "try_acquire", {"lock_name": lock_name})

        self._logger.info(f"Created lease {lock_name} for {user_name}@{machine_name}")
        return True

    def release(
        self,
        lock_name: str,
        user_name: str,
        machine_name: str,
        now: datetime,
    ) -> bool:
        """
        Expire the lease, but only if this (user, machine) holds it.

        Returns:
            True if the lease was released
        """
        stmt = (
            update(LeaseRecord)
            .where(
                LeaseRecord.lock_name == lock_name,
                LeaseRecord.held_by_user == user_name,
                LeaseRecord.held_by_machine == machine_name,
                LeaseRecord.expires_at_utc > now,
            )
            .values(expires_at_utc=now)
        )
        return self._execute_update(stmt, "release") == 1

    def get(self, lock_name: str) -> Optional[LeaseRecord]:
        """Get the lease row, expired or not."""
        return self._execute_scalar(
            select(LeaseRecord).where(LeaseRecord.lock_name == lock_name),
            "get",
        )

    def get_current_holder(self, lock_name: str, now: datetime) -> Optional[LeaseRecord]:
        """
        Get the lease row if it is still valid.

        Returns:
            The row when now < expires_at_utc, else None
        """
        stmt = select(LeaseRecord).where(
            LeaseRecord.lock_name == lock_name,
            LeaseRecord.expires_at_utc > now,
        )
        return self._execute_scalar(stmt, "get_current_holder")
