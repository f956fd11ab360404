"""Structured error types for kvindex."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kvindex.types import IndexQueryResponse


class KvIndexError(Exception):
    """Base error for all kvindex errors."""


class InvalidQueryError(KvIndexError):
    """Raised when a query descriptor cannot be built from the given parameters."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class TransportError(KvIndexError):
    """Raised (or delivered to a completion callback) when a transport request fails."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Transport error during {operation}: {detail}")


class QueryExecutionError(KvIndexError):
    """Raised when a query fails mid-execution.

    ``partial`` holds the entries (and last continuation) collected before the
    failure. It is diagnostic context only.
    """

    def __init__(
        self,
        partial: IndexQueryResponse,
        cause: BaseException | None = None,
        *,
        delivered: int | None = None,
    ) -> None:
        self.partial = partial
        self.cause = cause
        self.delivered = len(partial.entries) if delivered is None else delivered
        detail = str(cause) if cause is not None else "unknown failure"
        super().__init__(f"Index query failed after {self.delivered} entries: {detail}")


class StreamingInterrupted(KvIndexError):
    """Raised when the consuming thread is interrupted while waiting for entries."""

    def __init__(self) -> None:
        super().__init__("Interrupted while waiting for streaming index query results")


class AlreadyConsumedError(KvIndexError):
    """Raised when a single-pass streaming response is iterated a second time."""

    def __init__(self) -> None:
        super().__init__("Streaming response can only be iterated once")


class PrematureContinuationAccessError(KvIndexError):
    """Raised when the continuation is read before the stream has finished."""

    def __init__(self) -> None:
        super().__init__(
            "Continuation is only available after the stream has been fully consumed"
        )


class StorageBackendError(KvIndexError):
    """Raised when local index store operations fail."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage backend error during {operation}: {detail}")
