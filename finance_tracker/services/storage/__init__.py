"""
Storage Services Package

Provides the abstract document store interface and its implementations.
Google Sheets is the production backend; the in-memory store backs tests
and local runs.
"""

from finance_tracker.services.storage.interface import (
    CATEGORIES,
    SERVER_TIMESTAMP,
    TRANSACTIONS,
    AuthorizationError,
    ConnectionError,
    DocumentStoreInterface,
    NotFoundError,
    ReferentialIntegrityError,
    StorageError,
    StoreTimestamp,
)
from finance_tracker.services.storage.memory import InMemoryDocumentStore
from finance_tracker.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
)

__all__ = [
    # Interface
    "CATEGORIES",
    "SERVER_TIMESTAMP",
    "TRANSACTIONS",
    "DocumentStoreInterface",
    "StoreTimestamp",
    # Exceptions
    "AuthorizationError",
    "ConnectionError",
    "NotFoundError",
    "ReferentialIntegrityError",
    "StorageError",
    # Implementations
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
    "InMemoryDocumentStore",
]
