"""
End-to-end tests: tracker, cache, mutations and store together.

The store is the in-memory one, so every read the cache makes shows up
in ``store.calls``.
"""

from decimal import Decimal

import pytest

from finance_tracker.cache import query_keys
from finance_tracker.models import (
    AuditEventType,
    CategoryDraft,
    TransactionDraft,
    TransactionType,
)
from finance_tracker.reports import summarize
from finance_tracker.services.storage import (
    CATEGORIES,
    TRANSACTIONS,
    AuthorizationError,
    InMemoryDocumentStore,
    ReferentialIntegrityError,
    StorageError,
)
from finance_tracker.tracker import FinanceTracker, TransactionVariables, create_app_components
from finance_tracker.validation import ValidationFailedError

from conftest import TODAY, USER, drain, seed_category, seed_transaction


JULY = query_keys.transactions.monthly(USER, "2024-07")
AUGUST = query_keys.transactions.monthly(USER, "2024-08")


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
def tracker(store, client, audit_logger, notifier) -> FinanceTracker:
    seed_category(store, "food", "Food", "expense")
    seed_category(store, "salary", "Salary", "income")
    seed_transaction(store, "rent", "2024-07-02", amount="1200", category_id="food")
    seed_transaction(store, "pay", "2024-07-01", amount="3000", type="income", category_id="salary")
    return FinanceTracker(
        store,
        client=client,
        audit_logger=audit_logger,
        notifier=notifier,
        today=lambda: TODAY,
    )


def event_types(audit_logger):
    return [e.event_type for e in reversed(audit_logger.recent_events())]


class TestCreateTransaction:
    """Adding a transaction and seeing it everywhere."""

    @pytest.mark.asyncio
    async def test_observed_month_shows_new_expense(self, tracker, store, notifier):
        observer = tracker.watch_monthly_transactions(USER, "2024-07")
        await drain()
        before = summarize(observer.result.data)

        change = await tracker.create_transaction(USER, groceries())

        # Already refetched when the write resolves
        ids = [t.id for t in observer.result.data]
        assert change.transaction_id in ids
        after = summarize(observer.result.data)
        assert after.total_expenses - before.total_expenses == Decimal("500")
        assert after.total_income == before.total_income
        assert store.calls["query_range"] == 2

        assert notifier.history[-1].title == "Transaction Added"
        assert notifier.history[-1].description == (
            'Your expense "Groceries" has been successfully recorded.'
        )
        assert not notifier.history[-1].is_error

    @pytest.mark.asyncio
    async def test_unobserved_list_is_refetched_on_next_read(self, tracker, store):
        first = await tracker.get_transactions(USER)
        await tracker.create_transaction(USER, groceries())

        assert tracker.client.is_stale(query_keys.transactions.all(USER))
        second = await tracker.get_transactions(USER)

        assert len(second) == len(first) + 1
        assert store.calls["query_equal"] == 2

    @pytest.mark.asyncio
    async def test_events_share_one_correlation_id(self, tracker, audit_logger):
        variables = TransactionVariables(USER, draft=groceries())

        await tracker.add_transaction.mutate(variables)

        events = audit_logger.events_for(variables.correlation_id)
        assert [e.event_type for e in events] == [
            AuditEventType.QUERIES_INVALIDATED,
            AuditEventType.TRANSACTION_CREATED,
        ]

    @pytest.mark.asyncio
    async def test_cached_categories_catch_type_mismatch(self, tracker, store, notifier):
        observer = tracker.watch_categories(USER)
        await drain()
        assert observer.result.is_success

        with pytest.raises(ValidationFailedError):
            await tracker.create_transaction(USER, groceries(category_id="salary"))

        assert store.writes == 0
        assert notifier.history[-1].title == "Error Adding Transaction"

    @pytest.mark.asyncio
    async def test_dashboard_reflects_write(self, tracker):
        before = await tracker.dashboard(USER)
        await tracker.create_transaction(USER, groceries())
        after = await tracker.dashboard(USER)

        assert before.month_key == "2024-07"
        assert after.total_expenses == before.total_expenses + Decimal("500")
        assert after.balance == Decimal("1300")


class TestFailedWrites:
    """A failed write never touches the cache."""

    @pytest.mark.asyncio
    async def test_invalid_form(self, tracker, store, client, notifier, audit_logger):
        await tracker.get_monthly_transactions(USER, "2024-07")

        with pytest.raises(ValidationFailedError):
            await tracker.create_transaction(USER, groceries(title=""))

        assert store.writes == 0
        assert not client.get_query_state(JULY).is_invalidated
        assert notifier.history[-1].title == "Error Adding Transaction"
        assert notifier.history[-1].description == "Please enter a title."
        assert notifier.history[-1].is_error
        assert event_types(audit_logger) == [AuditEventType.VALIDATION_FAILED]

    @pytest.mark.asyncio
    async def test_store_failure(self, tracker, store, client, notifier, audit_logger):
        await tracker.get_monthly_transactions(USER, "2024-07")
        store.fail_next("insert")

        with pytest.raises(StorageError):
            await tracker.create_transaction(USER, groceries())

        assert store.calls["insert"] == 1
        assert not client.get_query_state(JULY).is_invalidated
        assert notifier.history[-1].description.startswith(
            "Could not save your changes. Please try again."
        )
        assert event_types(audit_logger) == [AuditEventType.MUTATION_FAILED]
        assert tracker.add_transaction.error is not None

    @pytest.mark.asyncio
    async def test_signed_out(self, tracker, notifier):
        with pytest.raises(AuthorizationError):
            await tracker.create_transaction("", groceries())
        assert notifier.history[-1].description == "You must be logged in to add a transaction."

    def test_watch_requires_user(self, store):
        tracker = FinanceTracker(store, today=lambda: TODAY)
        with pytest.raises(AuthorizationError):
            tracker.watch_transactions("")


class TestCategoryDelete:
    """Deleting categories."""

    @pytest.mark.asyncio
    async def test_referenced_category_is_kept(self, tracker, store, client, notifier, audit_logger):
        observer = tracker.watch_categories(USER)
        await drain()
        reads = store.reads

        with pytest.raises(ReferentialIntegrityError):
            await tracker.delete_category(USER, "food")

        assert store.count(CATEGORIES) == 2
        assert store.count(TRANSACTIONS) == 2
        assert store.calls["delete"] == 0
        # One read to look for references, no refetch
        assert store.reads == reads + 1
        assert not client.get_query_state(query_keys.categories.all(USER)).is_invalidated
        assert [c.id for c in observer.result.data] == ["food", "salary"]

        assert notifier.history[-1].title == "Error Deleting Category"
        assert notifier.history[-1].description == (
            "Cannot delete category that is being used in transactions."
        )
        assert event_types(audit_logger) == [AuditEventType.CATEGORY_DELETE_REFUSED]

    @pytest.mark.asyncio
    async def test_unused_category_disappears(self, tracker, store, notifier):
        seed_category(store, "gifts", "Gifts", "expense")
        observer = tracker.watch_categories(USER)
        await drain()

        await tracker.delete_category(USER, "gifts")

        assert [c.id for c in observer.result.data] == ["food", "salary"]
        assert notifier.history[-1].title == "Category Deleted"


class TestMoveBetweenMonths:
    """Editing a transaction's date into another month."""

    @pytest.mark.asyncio
    async def test_both_months_are_refreshed(self, tracker, store, client):
        seed_transaction(store, "t1", "2024-07-15")
        july = await tracker.get_monthly_transactions(USER, "2024-07")
        august = await tracker.get_monthly_transactions(USER, "2024-08")
        assert "t1" in [t.id for t in july]
        assert august == []

        await tracker.update_transaction(USER, "t1", groceries(date="2024-08-02"))

        assert client.is_stale(JULY)
        assert client.is_stale(AUGUST)
        july = await tracker.get_monthly_transactions(USER, "2024-07")
        august = await tracker.get_monthly_transactions(USER, "2024-08")
        assert "t1" not in [t.id for t in july]
        assert [t.id for t in august] == ["t1"]

    @pytest.mark.asyncio
    async def test_observed_months_refetch_before_resolving(self, tracker, store, notifier):
        seed_transaction(store, "t1", "2024-07-15")
        july = tracker.watch_monthly_transactions(USER, "2024-07")
        august = tracker.watch_monthly_transactions(USER, "2024-08")
        await drain()

        await tracker.update_transaction(USER, "t1", groceries(date="2024-08-02"))

        assert "t1" not in [t.id for t in july.result.data]
        assert [t.id for t in august.result.data] == ["t1"]
        assert notifier.history[-1].title == "Transaction Updated"


class TestCategoryTypeChange:
    """Changing a category's type refreshes both per-type lists."""

    @pytest.mark.asyncio
    async def test_category_moves_between_type_lists(self, tracker):
        expense = tracker.watch_categories(USER, TransactionType.EXPENSE)
        income = tracker.watch_categories(USER, TransactionType.INCOME)
        await drain()

        await tracker.update_category(USER, "food", CategoryDraft(name="Food", type="income"))

        assert "food" not in [c.id for c in expense.result.data]
        assert "food" in [c.id for c in income.result.data]


class TestReports:
    """Derived views served through the tracker."""

    @pytest.mark.asyncio
    async def test_expense_report(self, tracker):
        report = await tracker.expense_report(USER, "2024-07")

        assert report.summary.balance == Decimal("1800")
        assert [p.name for p in report.distribution] == ["Food", "Balance"]

    @pytest.mark.asyncio
    async def test_transaction_rows(self, tracker):
        rows = await tracker.transaction_rows(USER)
        assert {r.category_name for r in rows} == {"Food", "Salary"}


class TestHostSignals:
    """Focus, visibility and connectivity."""

    @pytest.mark.asyncio
    async def test_focus_refetches_stale_observed_month(self, tracker, store, clock):
        tracker.watch_monthly_transactions(USER)
        await drain()

        assert tracker.on_window_focus() == []
        clock.advance(31)
        assert tracker.on_window_focus() == [JULY]
        await drain()

        assert store.calls["query_range"] == 2

    @pytest.mark.asyncio
    async def test_hidden_page_and_offline_do_nothing(self, tracker, clock):
        tracker.watch_monthly_transactions(USER)
        await drain()
        clock.advance(31)

        assert tracker.on_visibility_change(False) == []
        assert tracker.on_network_change(False) == []
        assert tracker.on_network_change(True) == [JULY]
        await drain()


class TestCreateAppComponents:
    """Tests for the factory."""

    def test_with_explicit_store(self):
        store = InMemoryDocumentStore()
        tracker = create_app_components(store=store)
        assert isinstance(tracker, FinanceTracker)
        tracker.close()

    def test_falls_back_to_memory(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)

        tracker = create_app_components()

        assert isinstance(tracker._store, InMemoryDocumentStore)
        tracker.close()
