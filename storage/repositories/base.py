"""
Base Repository Class.

============================================================
PURPOSE
============================================================
Common plumbing for all repositories:
- Session injection
- SQLAlchemy error wrapping
- Statement execution helpers
- Per-repository logger ("repository.<name>")

============================================================
USAGE
============================================================
class PositionRepository(BaseRepository[Position]):
    def __init__(self, session: Session):
        super().__init__(session, Position, "PositionRepository")

Repositories never commit on their own; the caller owns the
transaction (see storage.database.transaction_scope).

============================================================
"""

import logging
from typing import Any, Generic, Iterable, List, NoReturn, Optional, Type, TypeVar

from sqlalchemy.exc import (
    IntegrityError as SQLAlchemyIntegrityError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.orm import Session

from storage.models.base import Base
from storage.repositories.exceptions import (
    DuplicateRecordError,
    QueryError,
    StorageConnectionError,
    TransactionError,
)


T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """Base class for all repositories of the risk core."""

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

    @property
    def session(self) -> Session:
        return self._session

    # =========================================================
    # PROTECTED HELPER METHODS
    # =========================================================

    def _handle_db_error(self, error: SQLAlchemyError, operation: str) -> NoReturn:
        """
        Wrap a SQLAlchemy error into a repository exception.

        Raises:
            RepositoryException: Always
        """
        self._logger.error(f"Database error in {operation}: {error}")

        if isinstance(error, OperationalError):
            raise StorageConnectionError(
                repository_name=self._repository_name,
                operation=operation,
                original_error=str(error)
            ) from error

        if isinstance(error, SQLAlchemyIntegrityError):
            raise DuplicateRecordError(
                repository_name=self._repository_name,
                operation=operation,
                original_error=str(error.orig)
            ) from error

        raise QueryError(
            repository_name=self._repository_name,
            operation=operation,
            original_error=str(error)
        ) from error

    def _add(self, entity: T) -> T:
        try:
            self._session.add(entity)
            self._session.flush()
            self._logger.debug(f"Added entity: {entity}")
            return entity
        except SQLAlchemyError as e:
            self._handle_db_error(e, "add")

    def _add_all(self, entities: Iterable[T]) -> int:
        entities = list(entities)
        try:
            self._session.add_all(entities)
            self._session.flush()
            return len(entities)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "add_all")

    def _get_by_id(self, record_id: Any) -> Optional[T]:
        try:
            return self._session.get(self._model_class, record_id)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "get_by_id")

    def _execute_query(self, stmt: Any) -> List[T]:
        """Execute a select statement and return all entities."""
        try:
            return list(self._session.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, "query")

    def _execute_scalar(self, stmt: Any) -> Optional[Any]:
        """Execute a select statement and return a single value or entity."""
        try:
            return self._session.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "query_scalar")

    def _execute_rows(self, stmt: Any) -> List[Any]:
        """Execute a select statement and return result rows."""
        try:
            return list(self._session.execute(stmt).all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, "query_rows")

    def _execute_write(self, stmt: Any, operation: str) -> int:
        """Execute an update/delete statement and return the affected row count."""
        try:
            result = self._session.execute(stmt)
            return result.rowcount or 0
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation)

    def _commit(self) -> None:
        """
        Commit the current transaction.

        Raises:
            TransactionError: If commit fails
        """
        try:
            self._session.commit()
        except SQLAlchemyError as e:
            self._session.rollback()
            raise TransactionError(
                repository_name=self._repository_name,
                phase="commit",
                original_error=str(e)
            ) from e
