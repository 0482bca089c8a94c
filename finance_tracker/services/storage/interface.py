"""
Abstract Document Store Interface

DESIGN DECISION: We define an abstract interface for the remote document
store. This allows us to:
1. Run against Google Sheets in production
2. Use in-memory storage for testing
3. Keep fetch and mutation functions decoupled from the backend

The interface is intentionally small: equality queries, an inclusive range
query, and single-document writes. There are no multi-document transactions
and no change notifications.

Rows are plain dicts in the persisted layout (camelCase field names) with
the document ID under ``"id"``. Every collection carries a ``userId`` field
and every query filters on it first.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional


TRANSACTIONS = "transactions"
CATEGORIES = "categories"
COLLECTIONS = (TRANSACTIONS, CATEGORIES)


class _ServerTimestamp:
    """Sentinel asking the store to stamp a field with its own clock."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True, order=True)
class StoreTimestamp:
    """
    The store's own timestamp type.

    Readers must convert it with ``to_datetime()`` before use.
    """

    seconds: int
    nanoseconds: int = 0

    @classmethod
    def from_datetime(cls, value: datetime) -> "StoreTimestamp":
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        micros = (value - _EPOCH) // timedelta(microseconds=1)
        return cls(seconds=micros // 1_000_000, nanoseconds=(micros % 1_000_000) * 1000)

    def to_datetime(self) -> datetime:
        """Convert to a naive local datetime."""
        aware = datetime.fromtimestamp(self.seconds, tz=timezone.utc) + timedelta(
            microseconds=self.nanoseconds // 1000
        )
        return aware.astimezone().replace(tzinfo=None)


class DocumentStoreInterface(ABC):
    """
    Abstract interface for the remote document store.

    Any backend (Google Sheets, an in-memory dict, a hosted document
    database) must implement these methods.
    """

    @abstractmethod
    async def query_equal(
        self,
        collection: str,
        filters: Mapping[str, Any],
    ) -> list[dict]:
        """
        Return every row where each ``field == value`` in filters holds.

        Raises:
            StorageError: If the query fails
        """
        pass

    @abstractmethod
    async def query_range(
        self,
        collection: str,
        field: str,
        lower: Any,
        upper: Any,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> list[dict]:
        """
        Return every row with ``lower <= row[field] <= upper``.

        Both bounds are inclusive. Equality filters, when given, are
        ANDed with the range.

        Raises:
            StorageError: If the query fails
        """
        pass

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        """
        Fetch one document by ID.

        Returns:
            The row if found, None otherwise
        """
        pass

    @abstractmethod
    async def insert(self, collection: str, fields: Mapping[str, Any]) -> str:
        """
        Create a document.

        SERVER_TIMESTAMP values are replaced by the store's clock.

        Returns:
            The generated document ID

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: Mapping[str, Any],
    ) -> None:
        """
        Merge fields into an existing document.

        Raises:
            NotFoundError: If the document doesn't exist
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """
        Delete a document.

        Raises:
            NotFoundError: If the document doesn't exist
            StorageError: If the write fails
        """
        pass


def row_matches(
    row: Mapping[str, Any],
    filters: Optional[Mapping[str, Any]] = None,
    field: Optional[str] = None,
    lower: Any = None,
    upper: Any = None,
) -> bool:
    """Shared filter semantics for backends that filter in Python."""
    for key, value in (filters or {}).items():
        if row.get(key) != value:
            return False
    if field is not None:
        current = row.get(field)
        if current is None:
            return False
        if lower is not None and current < lower:
            return False
        if upper is not None and current > upper:
            return False
    return True


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class AuthorizationError(StorageError):
    """No authenticated user, or the document belongs to someone else."""
    pass


class ReferentialIntegrityError(StorageError):
    """The entity is still referenced and cannot be removed."""

    def __init__(self, message: str, reference_count: int = 0):
        self.reference_count = reference_count
        super().__init__(message)
