"""
Repository Layer Exceptions.

============================================================
PURPOSE
============================================================
Repositories catch SQLAlchemy errors and re-raise them as
the exceptions below, with the repository and operation
attached. Business layers decide whether a persistence fault
is fatal (position bookkeeping) or log-and-continue (risk
metrics audit trail, tick cache).

============================================================
"""

from typing import Any, Optional


class RepositoryException(Exception):
    """Base exception for all repository operations."""

    def __init__(
        self,
        message: str,
        repository_name: str,
        operation: str,
        details: Optional[dict] = None
    ) -> None:
        self.message = message
        self.repository_name = repository_name
        self.operation = operation
        self.details = details or {}
        super().__init__(f"[{repository_name}] {operation}: {message}")


class RecordNotFoundError(RepositoryException):
    """A record that must exist was not found."""

    def __init__(self, repository_name: str, record_id: Any, id_field: str = "id") -> None:
        super().__init__(
            message=f"Record with {id_field}={record_id} not found",
            repository_name=repository_name,
            operation="get",
            details={id_field: str(record_id)}
        )
        self.record_id = record_id
        self.id_field = id_field


class DuplicateRecordError(RepositoryException):
    """Unique constraint violated on insert (e.g. a reused deal_id)."""

    def __init__(self, repository_name: str, operation: str, original_error: str) -> None:
        super().__init__(
            message=f"Duplicate record: {original_error}",
            repository_name=repository_name,
            operation=operation,
        )


class StorageConnectionError(RepositoryException):
    """Database unreachable, pool exhausted or timed out."""

    def __init__(self, repository_name: str, operation: str, original_error: str) -> None:
        super().__init__(
            message=f"Database connection failed: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"original_error": original_error}
        )


class QueryError(RepositoryException):
    """Any other failed statement."""

    def __init__(self, repository_name: str, operation: str, original_error: str) -> None:
        super().__init__(
            message=f"Query failed: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"original_error": original_error}
        )


class TransactionError(RepositoryException):
    """Commit or rollback failed."""

    def __init__(self, repository_name: str, phase: str, original_error: str) -> None:
        super().__init__(
            message=f"Transaction {phase} failed: {original_error}",
            repository_name=repository_name,
            operation=phase,
            details={"phase": phase, "original_error": original_error}
        )
        self.phase = phase
