"""Typed processing errors and retry classification."""

from __future__ import annotations

from enum import Enum

from pydantic import ValidationError
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, TimeoutError as PoolTimeoutError


class ErrorKind(str, Enum):
    """Failure categories assigned where an error is raised."""

    VALIDATION = "validation"
    MALFORMED_INPUT = "malformed_input"
    CONSTRAINT_VIOLATION = "constraint_violation"
    ENTITY_CREATION = "entity_creation"
    TRANSIENT_STORE = "transient_store"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE_KINDS


_RETRYABLE_KINDS = frozenset({ErrorKind.TRANSIENT_STORE, ErrorKind.TIMEOUT, ErrorKind.UNKNOWN})


class ProcessingError(RuntimeError):
    """Raised when a (sub-)batch cannot be committed."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        *,
        batch_id: str | None = None,
        mention_count: int | None = None,
        attempts: int = 1,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.batch_id = batch_id
        self.mention_count = mention_count
        self.attempts = attempts

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class EntityCreationError(ProcessingError):
    """Raised when a resolved-as-new entity cannot be materialized."""

    def __init__(self, message: str, *, temp_id: str) -> None:
        super().__init__(message, ErrorKind.ENTITY_CREATION)
        self.temp_id = temp_id


class MalformedMentionError(ProcessingError):
    """Raised when a validated mention still cannot be routed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorKind.MALFORMED_INPUT)


_TRANSIENT_SQLSTATES = {
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "57014",  # query_canceled (statement_timeout)
    "55P03",  # lock_not_available
    "08000",
    "08003",
    "08006",
}


def classify_exception(exc: BaseException) -> ErrorKind:
    """Map an exception raised inside a batch transaction to an error kind."""

    if isinstance(exc, ProcessingError):
        return exc.kind
    if isinstance(exc, ValidationError):
        return ErrorKind.VALIDATION
    if isinstance(exc, IntegrityError):
        return ErrorKind.CONSTRAINT_VIOLATION
    if isinstance(exc, (PoolTimeoutError, TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(exc, DBAPIError):
        sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
        if sqlstate == "57014":
            return ErrorKind.TIMEOUT
        if exc.connection_invalidated or sqlstate in _TRANSIENT_SQLSTATES:
            return ErrorKind.TRANSIENT_STORE
        if isinstance(exc, OperationalError):
            return ErrorKind.TRANSIENT_STORE
        return ErrorKind.UNKNOWN
    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return ErrorKind.MALFORMED_INPUT
    return ErrorKind.UNKNOWN
