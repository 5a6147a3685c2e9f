"""
Trade System Link Repository.

============================================================
PURPOSE
============================================================
Data access for per-system booking status of trades.

============================================================
RULES
============================================================
- Status is only changed through guarded_update(), which always
  filters on the allowed origin states
- Rows are never deleted; soft_delete_link() sets is_deleted
- Every read ignores soft-deleted rows

============================================================
"""

from datetime import datetime
from typing import Any, Collection, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storage.models.booking import TradeSystemLink
from storage.repositories.base import BaseRepository


class TradeSystemLinkRepository(BaseRepository[TradeSystemLink]):
    """Repository for TradeSystemLink rows."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, TradeSystemLink, "TradeSystemLinkRepository")

    def create_link(
        self,
        trade_id: int,
        system_code: str,
        status: str,
        now: datetime,
        external_trade_id: Optional[str] = None,
        book_flag: Optional[bool] = None,
        stp_mode: Optional[str] = None,
    ) -> TradeSystemLink:
        """
        Create a live link.

        Used by the inbound message pipeline and by tests.

        Raises:
            DuplicateRecordError: A live link already exists
        """
        link = TradeSystemLink(
            trade_id=trade_id,
            system_code=system_code,
            status=status,
            external_trade_id=external_trade_id,
            last_status_utc=now,
            book_flag=book_flag,
            stp_mode=stp_mode,
            is_deleted=False,
        )
        return self._add(link, "create_link")

    def get_link(self, trade_id: int, system_code: str) -> Optional[TradeSystemLink]:
        """Get the live link for (trade_id, system_code)."""
        stmt = select(TradeSystemLink).where(
            TradeSystemLink.trade_id == trade_id,
            TradeSystemLink.system_code == system_code,
            TradeSystemLink.is_deleted.is_(False),
        )
        return self._execute_scalar(stmt, "get_link")

    def list_for_trade(self, trade_id: int) -> List[TradeSystemLink]:
        """Get all live links of a trade."""
        stmt = (
            select(TradeSystemLink)
            .where(
                TradeSystemLink.trade_id == trade_id,
                TradeSystemLink.is_deleted.is_(False),
            )
            .order_by(TradeSystemLink.system_code)
        )
        return self._execute_query(stmt, "list_for_trade")

    def list_by_status(self, system_code: str, status: str) -> List[TradeSystemLink]:
        """Get live links of one system in one status, oldest change first."""
        stmt = (
            select(TradeSystemLink)
            .where(
                TradeSystemLink.system_code == system_code,
                TradeSystemLink.status == status,
                TradeSystemLink.is_deleted.is_(False),
            )
            .order_by(TradeSystemLink.last_status_utc, TradeSystemLink.trade_id)
        )
        return self._execute_query(stmt, "list_by_status")

    def guarded_update(
        self,
        trade_id: int,
        system_code: str,
        from_statuses: Collection[str],
        values: Dict[str, Any],
    ) -> int:
        """
        Apply a status transition as one conditional update.

        Args:
            trade_id: Trade id
            system_code: System code
            from_statuses: Allowed origin statuses
            values: Column assignments (must include status)

        Returns:
            Number of rows updated (0 or 1)
        """
        stmt = (
            update(TradeSystemLink)
            .where(
                TradeSystemLink.trade_id == trade_id,
                TradeSystemLink.system_code == system_code,
                TradeSystemLink.is_deleted.is_(False),
                TradeSystemLink.status.in_(list(from_statuses)),
            )
            .values(**values)
        )
        return self._execute_update(stmt, "guarded_update")

    def soft_delete_link(self, trade_id: int, system_code: str, now: datetime) -> bool:
        """
        Mark the live link deleted.

        Returns:
            True if a live link was marked
        """
        stmt = (
            update(TradeSystemLink)
            .where(
                TradeSystemLink.trade_id == trade_id,
                TradeSystemLink.system_code == system_code,
                TradeSystemLink.is_deleted.is_(False),
            )
            .values(is_deleted=True, last_status_utc=now)
        )
        return self._execute_update(stmt, "soft_delete_link") > 0
