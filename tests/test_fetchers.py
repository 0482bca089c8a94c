"""Tests for the fetch functions and row normalization."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from finance_tracker.cache import query_keys
from finance_tracker.models import TransactionType
from finance_tracker.services import (
    all_transactions_query,
    categories_query,
    fetch_categories_by_type,
    fetch_monthly_transactions,
    fetch_user_categories,
    fetch_user_transactions,
    monthly_transactions_query,
    normalize_timestamp,
)
from finance_tracker.services.storage import (
    TRANSACTIONS,
    AuthorizationError,
    StoreTimestamp,
)

from conftest import OTHER_USER, USER, seed_category, seed_transaction


class TestNormalizeTimestamp:
    """Tests for timestamp normalization."""

    def test_store_timestamp(self):
        stamp = StoreTimestamp.from_datetime(datetime(2024, 7, 15, 10, 30, tzinfo=timezone.utc))
        value = normalize_timestamp(stamp)
        assert isinstance(value, datetime)
        assert value.tzinfo is None
        assert value == datetime(2024, 7, 15, 10, 30, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)

    def test_iso_text(self):
        assert normalize_timestamp("2024-07-15T10:30:00") == datetime(2024, 7, 15, 10, 30)

    def test_zulu_suffix_is_converted_to_local(self):
        value = normalize_timestamp("2024-07-15T10:30:00Z")
        assert value.tzinfo is None

    def test_naive_datetime_passes_through(self):
        dt = datetime(2024, 1, 1, 8, 0)
        assert normalize_timestamp(dt) is dt

    def test_missing(self):
        assert normalize_timestamp(None) is None
        assert normalize_timestamp("") is None

    def test_garbage(self):
        with pytest.raises(ValueError):
            normalize_timestamp(42)


class TestFetchTransactions:
    """Tests for transaction reads."""

    @pytest.mark.asyncio
    async def test_only_the_users_rows(self, store):
        seed_transaction(store, "t1", "2024-07-15")
        seed_transaction(store, "t2", "2024-07-16", user_id=OTHER_USER)

        result = await fetch_user_transactions(store, USER)

        assert [t.id for t in result] == ["t1"]

    @pytest.mark.asyncio
    async def test_rows_are_typed_records(self, store):
        seed_transaction(store, "t1", "2024-07-15", amount="12.50")

        [t] = await fetch_user_transactions(store, USER)

        assert t.amount == Decimal("12.50")
        assert t.type == TransactionType.EXPENSE
        assert t.category_id == "food"
        assert isinstance(t.created_at, datetime)
        assert t.month_key == "2024-07"

    @pytest.mark.asyncio
    async def test_newest_first(self, store):
        seed_transaction(store, "old", "2024-06-01")
        seed_transaction(store, "new", "2024-07-20")
        seed_transaction(store, "mid", "2024-07-01")

        result = await fetch_user_transactions(store, USER)

        assert [t.id for t in result] == ["new", "mid", "old"]

    @pytest.mark.asyncio
    async def test_monthly_bounds_are_inclusive(self, store):
        """First and last day of the month both belong to it."""
        seed_transaction(store, "before", "2024-06-30")
        seed_transaction(store, "first", "2024-07-01")
        seed_transaction(store, "last", "2024-07-31")
        seed_transaction(store, "after", "2024-08-01")

        result = await fetch_monthly_transactions(store, USER, "2024-07")

        assert {t.id for t in result} == {"first", "last"}
        assert store.calls["query_range"] == 1

    @pytest.mark.asyncio
    async def test_malformed_rows_are_skipped(self, store):
        seed_transaction(store, "good", "2024-07-15")
        seed_transaction(store, "bad-amount", "2024-07-15", amount="-5")
        store.put(TRANSACTIONS, "no-date", {"userId": USER, "type": "expense", "title": "x"})

        result = await fetch_user_transactions(store, USER)

        assert [t.id for t in result] == ["good"]

    @pytest.mark.asyncio
    async def test_no_user_is_refused_before_store_call(self, store):
        with pytest.raises(AuthorizationError):
            await fetch_user_transactions(store, "")
        assert store.reads == 0


class TestFetchCategories:
    """Tests for category reads."""

    @pytest.mark.asyncio
    async def test_sorted_by_name_ignoring_case(self, store):
        seed_category(store, "c1", "rent", "expense")
        seed_category(store, "c2", "Food", "expense")
        seed_category(store, "c3", "Salary", "income")

        result = await fetch_user_categories(store, USER)

        assert [c.name for c in result] == ["Food", "rent", "Salary"]

    @pytest.mark.asyncio
    async def test_by_type(self, store):
        seed_category(store, "c1", "Food", "expense")
        seed_category(store, "c2", "Salary", "income")

        result = await fetch_categories_by_type(store, USER, TransactionType.INCOME)

        assert [c.id for c in result] == ["c2"]


class TestQueryOptions:
    """Tests for the key/fetch pairings."""

    @pytest.mark.asyncio
    async def test_keys(self, store):
        assert all_transactions_query(store, USER).key == query_keys.transactions.all(USER)
        assert monthly_transactions_query(store, USER, "2024-07").key == (
            query_keys.transactions.monthly(USER, "2024-07")
        )
        assert categories_query(store, USER).key == query_keys.categories.all(USER)
        assert categories_query(store, USER, "income").key == (
            query_keys.categories.by_type(USER, "income")
        )

    @pytest.mark.asyncio
    async def test_query_fn_runs_the_matching_read(self, store):
        seed_transaction(store, "t1", "2024-07-15")
        options = monthly_transactions_query(store, USER, "2024-07")

        result = await options.query_fn()

        assert [t.id for t in result] == ["t1"]
        assert store.calls["query_range"] == 1
