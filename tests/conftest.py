"""
Shared fixtures.

No test touches the network: the store is in memory, the clock is fake
and retries don't wait.
"""

import asyncio
from collections import Counter
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping, Optional

import pytest
import pytest_asyncio

from finance_tracker.audit import AuditLogger, Notifier
from finance_tracker.cache import QueryClient
from finance_tracker.config import AppSettings, CacheSettings
from finance_tracker.models import Category, Transaction, TransactionType
from finance_tracker.services.storage import (
    CATEGORIES,
    TRANSACTIONS,
    InMemoryDocumentStore,
    StorageError,
)


USER = "user42"
OTHER_USER = "user7"
TODAY = date(2024, 7, 20)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingStore(InMemoryDocumentStore):
    """In-memory store that counts calls and can be told to fail."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.calls: Counter = Counter()
        self._failures: dict[str, list[Exception]] = {}

    def fail_next(self, method: str, times: int = 1, error: Optional[Exception] = None) -> None:
        error = error or StorageError("store unavailable")
        self._failures.setdefault(method, []).extend([error] * times)

    def _record(self, method: str) -> None:
        self.calls[method] += 1
        pending = self._failures.get(method)
        if pending:
            raise pending.pop(0)

    async def query_equal(self, collection: str, filters: Mapping[str, Any]) -> list[dict]:
        self._record("query_equal")
        return await super().query_equal(collection, filters)

    async def query_range(self, collection, field, lower, upper, filters=None) -> list[dict]:
        self._record("query_range")
        return await super().query_range(collection, field, lower, upper, filters)

    async def get(self, collection: str, doc_id: str):
        self._record("get")
        return await super().get(collection, doc_id)

    async def insert(self, collection: str, fields: Mapping[str, Any]) -> str:
        self._record("insert")
        return await super().insert(collection, fields)

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        self._record("update")
        return await super().update(collection, doc_id, fields)

    async def delete(self, collection: str, doc_id: str) -> None:
        self._record("delete")
        return await super().delete(collection, doc_id)

    @property
    def reads(self) -> int:
        return self.calls["query_equal"] + self.calls["query_range"]

    @property
    def writes(self) -> int:
        return self.calls["insert"] + self.calls["update"] + self.calls["delete"]


async def drain(rounds: int = 25) -> None:
    """Let background fetches run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_transaction(
    id: str = "t1",
    type: TransactionType = TransactionType.EXPENSE,
    amount: str = "100",
    category_id: str = "food",
    date: str = "2024-07-15",
    title: str = "Groceries",
    user_id: str = USER,
) -> Transaction:
    return Transaction(
        id=id,
        user_id=user_id,
        type=type,
        title=title,
        amount=Decimal(amount),
        category_id=category_id,
        date=date,
        created_at=datetime(2024, 7, 1, 12, 0),
    )


def make_category(
    id: str = "food",
    name: str = "Food",
    type: TransactionType = TransactionType.EXPENSE,
    user_id: str = USER,
) -> Category:
    return Category(
        id=id,
        user_id=user_id,
        name=name,
        type=type,
        created_at=datetime(2024, 1, 1),
    )


def seed_category(store: InMemoryDocumentStore, id: str, name: str, type: str, user_id: str = USER) -> None:
    store.put(CATEGORIES, id, {
        "userId": user_id,
        "name": name,
        "type": type,
        "createdAt": datetime(2024, 1, 1, 9, 0),
    })


def seed_transaction(
    store: InMemoryDocumentStore,
    id: str,
    date: str,
    amount: str = "100",
    type: str = "expense",
    category_id: str = "food",
    title: str = "Entry",
    user_id: str = USER,
) -> None:
    store.put(TRANSACTIONS, id, {
        "userId": user_id,
        "type": type,
        "title": title,
        "amount": amount,
        "categoryId": category_id,
        "date": date,
        "createdAt": datetime(2024, 7, 1, 9, 0),
    })


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache_settings() -> CacheSettings:
    return CacheSettings(retry_delay_seconds=0.0)


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings()


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest_asyncio.fixture
async def client(cache_settings, clock):
    client = QueryClient(cache_settings, clock=clock)
    yield client
    client.close()


@pytest.fixture
def audit_logger() -> AuditLogger:
    return AuditLogger()


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()
