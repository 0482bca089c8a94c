"""
In-Memory Document Store

Keeps every collection in a dict of documents. Used by the test suite and
for running the tracker without a Google account.

Behaves like the remote store where it matters to callers:
- IDs are generated by the store
- SERVER_TIMESTAMP values come back as StoreTimestamp, not datetime
- Rows handed out are copies, so callers can't mutate stored state
"""

import asyncio
import copy
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional
from uuid import uuid4

from finance_tracker.services.storage.interface import (
    COLLECTIONS,
    SERVER_TIMESTAMP,
    DocumentStoreInterface,
    NotFoundError,
    StorageError,
    StoreTimestamp,
    row_matches,
)


class InMemoryDocumentStore(DocumentStoreInterface):
    """
    Dict-backed implementation of the document store.

    Args:
        now: Clock used for server timestamps (defaults to now, UTC)
        latency: Seconds each call yields to the event loop, so that
                 concurrent callers genuinely overlap
    """

    def __init__(
        self,
        now: Optional[Callable[[], datetime]] = None,
        latency: float = 0.0,
    ):
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._latency = latency
        self._collections: dict[str, dict[str, dict]] = {
            name: {} for name in COLLECTIONS
        }

    def _collection(self, name: str) -> dict[str, dict]:
        try:
            return self._collections[name]
        except KeyError:
            raise StorageError(f"Unknown collection: {name}")

    async def _yield(self) -> None:
        await asyncio.sleep(self._latency)

    def _resolve(self, fields: Mapping[str, Any]) -> dict:
        stamp = StoreTimestamp.from_datetime(self._now())
        resolved = {}
        for key, value in fields.items():
            resolved[key] = stamp if value is SERVER_TIMESTAMP else copy.deepcopy(value)
        return resolved

    @staticmethod
    def _out(doc_id: str, doc: dict) -> dict:
        row = copy.deepcopy(doc)
        row["id"] = doc_id
        return row

    async def query_equal(
        self,
        collection: str,
        filters: Mapping[str, Any],
    ) -> list[dict]:
        await self._yield()
        docs = self._collection(collection)
        return [
            self._out(doc_id, doc)
            for doc_id, doc in docs.items()
            if row_matches(doc, filters)
        ]

    async def query_range(
        self,
        collection: str,
        field: str,
        lower: Any,
        upper: Any,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> list[dict]:
        await self._yield()
        docs = self._collection(collection)
        return [
            self._out(doc_id, doc)
            for doc_id, doc in docs.items()
            if row_matches(doc, filters, field, lower, upper)
        ]

    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        await self._yield()
        doc = self._collection(collection).get(doc_id)
        return self._out(doc_id, doc) if doc is not None else None

    async def insert(self, collection: str, fields: Mapping[str, Any]) -> str:
        await self._yield()
        docs = self._collection(collection)
        doc_id = uuid4().hex
        docs[doc_id] = self._resolve(fields)
        return doc_id

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: Mapping[str, Any],
    ) -> None:
        await self._yield()
        docs = self._collection(collection)
        if doc_id not in docs:
            raise NotFoundError(f"{collection} document not found: {doc_id}")
        docs[doc_id].update(self._resolve(fields))

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._yield()
        docs = self._collection(collection)
        if doc_id not in docs:
            raise NotFoundError(f"{collection} document not found: {doc_id}")
        del docs[doc_id]

    def count(self, collection: str) -> int:
        """Number of documents in a collection (test helper)."""
        return len(self._collection(collection))

    def put(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        """Store a document under a chosen ID (fixtures and local seeding)."""
        self._collection(collection)[doc_id] = self._resolve(fields)
