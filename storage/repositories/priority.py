"""
Priority Repository.

Data access for the ordered list of master candidates.
"""

from typing import List, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storage.models.coordination import PriorityEntry
from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import RecordNotFoundError


class PriorityRepository(BaseRepository[PriorityEntry]):
    """Repository for PriorityEntry rows."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, PriorityEntry, "PriorityRepository")

    def load_priority_list(self) -> List[PriorityEntry]:
        """
        Get all candidates, most preferred first.

        Ties on order_no are broken by user name so every instance
        computes the same preferred candidate.
        """
        stmt = select(PriorityEntry).order_by(PriorityEntry.order_no, PriorityEntry.user_name)
        return self._execute_query(stmt, "load_priority_list")

    def set_priority(self, user_name: str, order_no: int) -> PriorityEntry:
        """Insert or update the rank of one user."""
        entry = self._get_by_key(user_name)
        if entry is None:
            return self._add(PriorityEntry(user_name=user_name, order_no=order_no), "set_priority")
        entry.order_no = order_no
        self._session.flush()
        return entry

    def remove(self, user_name: str) -> None:
        """
        Remove a user from the candidate list.

        Raises:
            RecordNotFoundError: If the user is not in the list
        """
        try:
            result = self._session.execute(
                delete(PriorityEntry).where(PriorityEntry.user_name == user_name)
            )
        except SQLAlchemyError as e:
            self._handle_db_error(e, "remove", {"user_name": user_name})
        if result.rowcount == 0:
            raise RecordNotFoundError(self._repository_name, user_name, key_field="user_name")

    def replace_all(self, user_names: Sequence[str]) -> List[PriorityEntry]:
        """
        Replace the whole list; order_no follows the given order from 1.
        """
        try:
            self._session.execute(delete(PriorityEntry))
        except SQLAlchemyError as e:
            self._handle_db_error(e, "replace_all")
        entries = []
        for order_no, user_name in enumerate(user_names, start=1):
            entries.append(
                self._add(PriorityEntry(user_name=user_name, order_no=order_no), "replace_all")
            )
        self._logger.info(f"Priority list replaced: {', '.join(user_names)}")
        return entries
