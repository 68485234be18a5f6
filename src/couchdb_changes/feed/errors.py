"""Exceptions raised by the changes feed components."""

from __future__ import annotations

from typing import Optional


class FeedError(RuntimeError):
    """Base class for changes feed failures."""


class DatabaseNotFound(FeedError):
    """Raised when CouchDB answers 404 for the configured database."""

    def __init__(self, database: str) -> None:
        super().__init__(f"database not found: {database}")
        self.database = database


class FeedRequestError(FeedError):
    """Raised for any other non-success HTTP status on the ``_changes`` request."""

    def __init__(self, status_code: int, detail: Optional[str] = None) -> None:
        message = f"changes request failed with HTTP {status_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500 or self.status_code in {408, 429}


class MalformedRecord(FeedError):
    """Raised when a feed line cannot be decoded into a change."""

    def __init__(self, message: str, record: str) -> None:
        super().__init__(message)
        self.record = record


class SequenceStoreError(FeedError):
    """Raised when the resume position cannot be persisted."""


class SinkError(FeedError):
    """Raised when the output sink fails to accept a change."""


class FeedTerminated(FeedError):
    """Raised by the consumer when it stops because of a failure."""


__all__ = [
    "DatabaseNotFound",
    "FeedError",
    "FeedRequestError",
    "FeedTerminated",
    "MalformedRecord",
    "SequenceStoreError",
    "SinkError",
]
