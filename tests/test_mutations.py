"""
Tests for the mutation functions.

These talk to the store only; cache behaviour after a write is covered
in test_tracker.py.
"""

from datetime import date
from decimal import Decimal

import pytest

from finance_tracker.cache import MutationAction
from finance_tracker.models import CategoryDraft, TransactionDraft, TransactionType
from finance_tracker.services import CategoryMutations, TransactionMutations
from finance_tracker.services.storage import (
    CATEGORIES,
    TRANSACTIONS,
    AuthorizationError,
    NotFoundError,
    ReferentialIntegrityError,
    StorageError,
    StoreTimestamp,
)
from finance_tracker.validation import TransactionValidator, ValidationFailedError

from conftest import OTHER_USER, TODAY, USER, make_category, seed_category, seed_transaction


def groceries(**overrides) -> TransactionDraft:
    values = dict(
        type=TransactionType.EXPENSE,
        title="Groceries",
        amount=Decimal("500"),
        category_id="food",
        date="2024-07-15",
    )
    values.update(overrides)
    return TransactionDraft(**values)


@pytest.fixture
def transactions(store, app_settings) -> TransactionMutations:
    return TransactionMutations(store, TransactionValidator(app_settings, today=lambda: TODAY))


@pytest.fixture
def categories(store) -> CategoryMutations:
    return CategoryMutations(store)


class TestCreateTransaction:
    """Tests for adding a transaction."""

    @pytest.mark.asyncio
    async def test_writes_store_layout(self, store, transactions):
        change = await transactions.create_transaction(USER, groceries())

        row = await store.get(TRANSACTIONS, change.transaction_id)
        assert row["userId"] == USER
        assert row["categoryId"] == "food"
        assert row["date"] == "2024-07-15"
        assert row["amount"] == "500"
        assert isinstance(row["createdAt"], StoreTimestamp)

    @pytest.mark.asyncio
    async def test_returns_change_facts(self, transactions):
        change = await transactions.create_transaction(USER, groceries())
        assert change.action == MutationAction.CREATE
        assert change.month_key == "2024-07"
        assert change.previous_month_key is None
        assert change.user_id == USER

    @pytest.mark.asyncio
    async def test_date_object_is_canonicalized(self, store, transactions):
        change = await transactions.create_transaction(USER, groceries(date=date(2024, 7, 5)))
        row = await store.get(TRANSACTIONS, change.transaction_id)
        assert row["date"] == "2024-07-05"

    @pytest.mark.asyncio
    async def test_invalid_form_never_reaches_store(self, store, transactions):
        with pytest.raises(ValidationFailedError) as exc_info:
            await transactions.create_transaction(USER, groceries(amount=Decimal("0"), title=""))

        assert set(exc_info.value.result.errors_by_field()) == {"amount", "title"}
        assert store.calls.total() == 0

    @pytest.mark.asyncio
    async def test_no_user_never_reaches_store(self, store, transactions):
        with pytest.raises(AuthorizationError):
            await transactions.create_transaction(None, groceries())
        assert store.calls.total() == 0

    @pytest.mark.asyncio
    async def test_category_type_mismatch_with_known_categories(self, store, transactions):
        salary = make_category(id="salary", name="Salary", type=TransactionType.INCOME)
        with pytest.raises(ValidationFailedError):
            await transactions.create_transaction(
                USER, groceries(category_id="salary"), categories=[salary]
            )
        assert store.writes == 0

    @pytest.mark.asyncio
    async def test_store_failure_is_not_retried(self, store, transactions):
        store.fail_next("insert")
        with pytest.raises(StorageError):
            await transactions.create_transaction(USER, groceries())
        assert store.calls["insert"] == 1
        assert store.count(TRANSACTIONS) == 0


class TestUpdateTransaction:
    """Tests for editing a transaction."""

    @pytest.mark.asyncio
    async def test_move_to_other_month_reports_both_months(self, store, transactions):
        seed_transaction(store, "t1", "2024-07-15")

        change = await transactions.update_transaction(USER, "t1", groceries(date="2024-08-02"))

        assert change.month_key == "2024-08"
        assert change.previous_month_key == "2024-07"
        row = await store.get(TRANSACTIONS, "t1")
        assert row["date"] == "2024-08-02"
        assert isinstance(row["updatedAt"], StoreTimestamp)

    @pytest.mark.asyncio
    async def test_missing_transaction(self, transactions):
        with pytest.raises(NotFoundError):
            await transactions.update_transaction(USER, "nope", groceries())

    @pytest.mark.asyncio
    async def test_foreign_transaction_is_refused(self, store, transactions):
        seed_transaction(store, "t1", "2024-07-15", user_id=OTHER_USER)
        with pytest.raises(AuthorizationError):
            await transactions.update_transaction(USER, "t1", groceries())
        assert store.calls["update"] == 0


class TestDeleteTransaction:
    """Tests for deleting a transaction."""

    @pytest.mark.asyncio
    async def test_reports_month_of_deleted_row(self, store, transactions):
        seed_transaction(store, "t1", "2024-05-03")

        change = await transactions.delete_transaction(USER, "t1")

        assert change.action == MutationAction.DELETE
        assert change.month_key == "2024-05"
        assert store.count(TRANSACTIONS) == 0


class TestCategoryMutations:
    """Tests for category writes."""

    @pytest.mark.asyncio
    async def test_create(self, store, categories):
        change = await categories.create_category(USER, CategoryDraft(name=" Food ", type="expense"))

        row = await store.get(CATEGORIES, change.category_id)
        assert row["name"] == "Food"
        assert row["type"] == "expense"
        assert change.category_type == TransactionType.EXPENSE

    @pytest.mark.asyncio
    async def test_empty_name_is_refused(self, store, categories):
        with pytest.raises(ValidationFailedError, match="Category name cannot be empty."):
            await categories.create_category(USER, CategoryDraft(name="   "))
        assert store.writes == 0

    @pytest.mark.asyncio
    async def test_update_reports_previous_type(self, store, categories):
        seed_category(store, "c1", "Bonus", "expense")

        change = await categories.update_category(
            USER, "c1", CategoryDraft(name="Bonus", type="income")
        )

        assert change.previous_type == TransactionType.EXPENSE
        assert change.category_type == TransactionType.INCOME

    @pytest.mark.asyncio
    async def test_delete_unused_category(self, store, categories):
        seed_category(store, "c1", "Food", "expense")
        change = await categories.delete_category(USER, "c1")
        assert change.action == MutationAction.DELETE
        assert store.count(CATEGORIES) == 0

    @pytest.mark.asyncio
    async def test_delete_referenced_category_is_refused(self, store, categories):
        """A referenced category is not deleted, nor is anything else."""
        seed_category(store, "food", "Food", "expense")
        seed_transaction(store, "t1", "2024-07-15", category_id="food")
        seed_transaction(store, "t2", "2024-07-16", category_id="food")

        with pytest.raises(ReferentialIntegrityError) as exc_info:
            await categories.delete_category(USER, "food")

        assert exc_info.value.reference_count == 2
        assert str(exc_info.value) == "Cannot delete category that is being used in transactions."
        assert store.calls["delete"] == 0
        assert store.count(CATEGORIES) == 1
        assert store.count(TRANSACTIONS) == 2

    @pytest.mark.asyncio
    async def test_references_of_other_users_do_not_count(self, store, categories):
        seed_category(store, "food", "Food", "expense")
        seed_transaction(store, "t1", "2024-07-15", category_id="food", user_id=OTHER_USER)

        await categories.delete_category(USER, "food")

        assert store.count(CATEGORIES) == 0
