"""
Base Repository Class.

============================================================
PURPOSE
============================================================
Shared plumbing for the coordination repositories:
- Session injection (the caller owns the transaction)
- Translation of SQLAlchemy errors into repository exceptions
- Guarded UPDATE execution that reports the row count
- A `repository.<Name>` logger per repository

============================================================
"""

import logging
from abc import ABC
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import (
    IntegrityError as SQLAlchemyIntegrityError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.orm import Session

from storage.models.base import Base
from storage.repositories.exceptions import (
    ConnectionError,
    DuplicateRecordError,
    IntegrityError,
    QueryError,
)


T = TypeVar("T", bound=Base)


class BaseRepository(ABC, Generic[T]):
    """
    Abstract base class for the coordination repositories.

    Subclasses pass their model and name:

        class LeaseRepository(BaseRepository[LeaseRecord]):
            def __init__(self, session: Session):
                super().__init__(session, LeaseRecord, "LeaseRepository")
    """

    def __init__(
        self,
        session: Session,
        model_class: Type[T],
        repository_name: str
    ) -> None:
        self._session = session
        self._model_class = model_class
        self._repository_name = repository_name
        self._logger = logging.getLogger(f"repository.{repository_name}")

    # =========================================================
    # ERROR TRANSLATION
    # =========================================================

    def _handle_db_error(
        self,
        error: SQLAlchemyError,
        operation: str,
        context: Optional[dict] = None
    ) -> None:
        """
        Log a database error and raise it as a repository exception.

        OperationalError means the database could not be reached or
        refused the statement (locked, timed out); unique violations
        become DuplicateRecordError; everything else is a QueryError.
        """
        self._logger.error(
            f"{operation} failed: {error}",
            extra={"context": context or {}},
        )
        detail = str(getattr(error, "orig", None) or error)

        if isinstance(error, OperationalError):
            raise ConnectionError(self._repository_name, operation, detail) from error

        if isinstance(error, SQLAlchemyIntegrityError):
            lowered = detail.lower()
            if "unique" in lowered or "duplicate" in lowered:
                raise DuplicateRecordError(self._repository_name, operation, detail) from error
            raise IntegrityError(self._repository_name, operation, detail) from error

        raise QueryError(self._repository_name, operation, detail) from error

    # =========================================================
    # STATEMENT HELPERS
    # =========================================================

    def _add(self, entity: T, operation: str = "add") -> T:
        """Add and flush so generated keys are populated."""
        try:
            self._session.add(entity)
            self._session.flush()
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation, {"entity": repr(entity)})
        return entity

    def _get_by_key(self, key: Any) -> Optional[T]:
        try:
            return self._session.get(self._model_class, key)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "get_by_key", {"key": str(key)})

    def _execute_query(self, stmt: Any, operation: str = "query") -> List[T]:
        try:
            return list(self._session.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation)

    def _execute_scalar(self, stmt: Any, operation: str = "query_scalar") -> Optional[Any]:
        try:
            return self._session.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation)

    def _execute_update(self, stmt: Any, operation: str) -> int:
        """
        Execute a guarded UPDATE and return the affected row count.

        Session synchronization is off: whether the row matched is
        decided by the database, never by objects already loaded.
        """
        try:
            result = self._session.execute(
                stmt.execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation)
        return result.rowcount
