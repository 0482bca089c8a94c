"""Tests for the query-key taxonomy and month helpers."""

from datetime import date, datetime

import pytest

from finance_tracker.cache.keys import (
    EntityKind,
    QueryKey,
    current_month_key,
    month_bounds,
    month_key_of,
    query_keys,
    validate_month_key,
)
from finance_tracker.models import TransactionType


class TestQueryKeys:
    """Tests for the key families."""

    def test_transaction_keys(self):
        """Test the transaction key layouts."""
        assert query_keys.transactions.all("u1").parts == ("transactions", "u1")
        assert query_keys.transactions.monthly("u1", "2024-07").parts == (
            "transactions", "u1", "2024-07"
        )

    def test_category_keys(self):
        """Test the category key layouts."""
        assert query_keys.categories.all("u1").parts == ("categories", "u1")
        assert query_keys.categories.by_type("u1", TransactionType.INCOME).parts == (
            "categories", "u1", "income"
        )
        assert query_keys.categories.by_type("u1", "expense") == query_keys.categories.by_type(
            "u1", TransactionType.EXPENSE
        )

    def test_keys_are_hashable_values(self):
        """Equal keys address the same cache entry."""
        a = query_keys.transactions.monthly("u1", "2024-07")
        b = QueryKey(EntityKind.TRANSACTIONS, "u1", ("2024-07",))
        assert a == b
        assert len({a, b}) == 1

    def test_key_requires_user(self):
        """Test that a key can't be built without an owner."""
        with pytest.raises(ValueError):
            query_keys.transactions.all("")

    def test_monthly_key_rejects_bad_month(self):
        """Test that malformed month keys are refused."""
        with pytest.raises(ValueError):
            query_keys.transactions.monthly("u1", "2024-7")
        with pytest.raises(ValueError):
            query_keys.transactions.monthly("u1", "2024-13")

    def test_str(self):
        assert str(query_keys.transactions.monthly("u1", "2024-07")) == "transactions/u1/2024-07"


class TestPrefixMatching:
    """Tests for is_prefix_of."""

    def test_coarse_key_is_prefix_of_every_month(self):
        """The all-time key reaches every month of the same user."""
        coarse = query_keys.transactions.all("u42")
        assert coarse.is_prefix_of(query_keys.transactions.monthly("u42", "2024-07"))
        assert coarse.is_prefix_of(query_keys.transactions.monthly("u42", "2024-08"))
        assert coarse.is_prefix_of(coarse)

    def test_finer_key_is_not_prefix_of_coarse_key(self):
        month = query_keys.transactions.monthly("u42", "2024-07")
        assert not month.is_prefix_of(query_keys.transactions.all("u42"))

    def test_prefix_never_crosses_users_or_kinds(self):
        """Test that other users and other entity kinds are untouched."""
        coarse = query_keys.transactions.all("u42")
        assert not coarse.is_prefix_of(query_keys.transactions.monthly("u7", "2024-07"))
        assert not coarse.is_prefix_of(query_keys.categories.all("u42"))
        assert not query_keys.categories.all("u4").is_prefix_of(query_keys.categories.all("u42"))

    def test_sibling_months_do_not_match(self):
        july = query_keys.transactions.monthly("u42", "2024-07")
        august = query_keys.transactions.monthly("u42", "2024-08")
        assert not july.is_prefix_of(august)


class TestMonthHelpers:
    """Tests for month keys and bounds."""

    def test_month_key_of(self):
        assert month_key_of("2024-07-15") == "2024-07"
        assert month_key_of(date(2024, 12, 31)) == "2024-12"
        assert month_key_of(datetime(2024, 1, 1, 23, 59)) == "2024-01"

    def test_current_month_key(self):
        assert current_month_key(date(2024, 2, 29)) == "2024-02"

    def test_month_bounds_are_inclusive_calendar_days(self):
        """Test first and last day of a month, leap years included."""
        assert month_bounds("2024-07") == ("2024-07-01", "2024-07-31")
        assert month_bounds("2024-02") == ("2024-02-01", "2024-02-29")
        assert month_bounds("2023-02") == ("2023-02-01", "2023-02-28")
        assert month_bounds("2024-12") == ("2024-12-01", "2024-12-31")

    def test_validate_month_key(self):
        assert validate_month_key("2024-07") == "2024-07"
        with pytest.raises(ValueError):
            validate_month_key("2024-07-01")
