"""
Finance Tracker

This module ties the components together for the presentation layer:

1. Reads: observers and awaitable getters over the query cache
2. Writes: validate → write → invalidate → audit → notify
3. Host signals: focus, visibility and connectivity changes

DESIGN DECISION: The tracker enforces the consistency boundaries:
- Invalidation only follows a write the store acknowledged
- A failed write leaves the cache untouched and always produces a
  destructive notification naming the action
- Every write outcome is audited under one correlation ID
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Optional, Union
from uuid import UUID

import structlog

from finance_tracker.audit import AuditLogger, Notifier, create_correlation_id
from finance_tracker.cache import (
    CategoryChange,
    InvalidationEngine,
    MutationObserver,
    QueryClient,
    QueryKey,
    QueryObserver,
    TransactionChange,
    current_month_key,
    query_keys,
    use_mutation,
    use_query,
)
from finance_tracker.cache.observers import ResultListener
from finance_tracker.config import Settings, get_settings
from finance_tracker.models.audit import AuditEventBuilder
from finance_tracker.models.finance import (
    Category,
    CategoryDraft,
    ExpenseReport,
    FinancialSummary,
    Transaction,
    TransactionDraft,
    TransactionRow,
    TransactionType,
)
from finance_tracker.reports import expense_distribution, summarize, to_rows
from finance_tracker.services.fetchers import (
    QueryOptions,
    all_transactions_query,
    categories_query,
    monthly_transactions_query,
)
from finance_tracker.services.mutations import CategoryMutations, TransactionMutations
from finance_tracker.services.storage import (
    AuthorizationError,
    DocumentStoreInterface,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryDocumentStore,
    ReferentialIntegrityError,
)
from finance_tracker.validation import (
    CategoryValidator,
    TransactionValidator,
    ValidationFailedError,
)


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TransactionVariables:
    """Input of one transaction write."""
    user_id: str
    draft: Optional[TransactionDraft] = None
    transaction_id: Optional[str] = None
    correlation_id: UUID = field(default_factory=create_correlation_id)


@dataclass(frozen=True)
class CategoryVariables:
    """Input of one category write."""
    user_id: str
    draft: Optional[CategoryDraft] = None
    category_id: Optional[str] = None
    correlation_id: UUID = field(default_factory=create_correlation_id)


Variables = Union[TransactionVariables, CategoryVariables]
Change = Union[TransactionChange, CategoryChange]


@dataclass(frozen=True)
class _Messages:
    entity: str
    action: str
    success_title: str
    error_title: str
    success_description: Callable[[Change], str]


_TRANSACTION_ADDED = _Messages(
    "transaction", "create", "Transaction Added", "Error Adding Transaction",
    lambda c: f'Your {c.transaction_type.value} "{c.title}" has been successfully recorded.',
)
_TRANSACTION_UPDATED = _Messages(
    "transaction", "update", "Transaction Updated", "Error Updating Transaction",
    lambda c: f'"{c.title}" has been updated.',
)
_TRANSACTION_DELETED = _Messages(
    "transaction", "delete", "Transaction Deleted", "Error Deleting Transaction",
    lambda c: "Transaction has been deleted.",
)
_CATEGORY_ADDED = _Messages(
    "category", "create", "Category Added", "Error Adding Category",
    lambda c: f"{c.name} ({c.category_type.value}) has been added.",
)
_CATEGORY_UPDATED = _Messages(
    "category", "update", "Category Updated", "Error Updating Category",
    lambda c: f"{c.name} has been updated.",
)
_CATEGORY_DELETED = _Messages(
    "category", "delete", "Category Deleted", "Error Deleting Category",
    lambda c: "Category has been deleted.",
)


def _require_user(user_id: Optional[str]) -> str:
    if not user_id:
        raise AuthorizationError("You must be logged in to view your data.")
    return user_id


def _entity_id(variables: Variables) -> Optional[str]:
    if isinstance(variables, TransactionVariables):
        return variables.transaction_id
    return variables.category_id


def _error_description(error: BaseException) -> str:
    if isinstance(error, (ValidationFailedError, AuthorizationError, ReferentialIntegrityError)):
        return str(error)
    return f"Could not save your changes. Please try again. {error}".strip()


class FinanceTracker:
    """
    Application facade over the store, the cache and the mutation layer.

    Args:
        store: The document store backend
        client: The query cache. A fresh one is created if omitted.
        audit_logger: Audit trail for writes
        notifier: Where user-facing notifications go
        today: Wall-clock date source (current month, validation)
        settings: Application settings
    """

    def __init__(
        self,
        store: DocumentStoreInterface,
        client: Optional[QueryClient] = None,
        audit_logger: Optional[AuditLogger] = None,
        notifier: Optional[Notifier] = None,
        today: Callable[[], date] = date.today,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self._store = store
        self._client = client or QueryClient(settings.cache)
        self._audit_logger = audit_logger or AuditLogger()
        self._notifier = notifier or Notifier()
        self._today = today
        self._engine = InvalidationEngine(
            self._client, today=today, audit_logger=self._audit_logger
        )
        self._transaction_mutations = TransactionMutations(
            store, TransactionValidator(settings.app, today=today)
        )
        self._category_mutations = CategoryMutations(store, CategoryValidator())

        tm = self._transaction_mutations
        cm = self._category_mutations
        self.add_transaction = self._mutation(
            lambda v: tm.create_transaction(v.user_id, v.draft, self._known_categories(v.user_id)),
            _TRANSACTION_ADDED,
        )
        self.edit_transaction = self._mutation(
            lambda v: tm.update_transaction(
                v.user_id, v.transaction_id, v.draft, self._known_categories(v.user_id)
            ),
            _TRANSACTION_UPDATED,
        )
        self.remove_transaction = self._mutation(
            lambda v: tm.delete_transaction(v.user_id, v.transaction_id),
            _TRANSACTION_DELETED,
        )
        self.add_category = self._mutation(
            lambda v: cm.create_category(v.user_id, v.draft, self._known_categories(v.user_id)),
            _CATEGORY_ADDED,
        )
        self.edit_category = self._mutation(
            lambda v: cm.update_category(
                v.user_id, v.category_id, v.draft, self._known_categories(v.user_id)
            ),
            _CATEGORY_UPDATED,
        )
        self.remove_category = self._mutation(
            lambda v: cm.delete_category(v.user_id, v.category_id),
            _CATEGORY_DELETED,
        )

    @property
    def client(self) -> QueryClient:
        return self._client

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    @property
    def audit_logger(self) -> AuditLogger:
        return self._audit_logger

    def current_month(self) -> str:
        return current_month_key(self._today())

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _watch(self, options: QueryOptions, on_change: Optional[ResultListener]) -> QueryObserver:
        return use_query(self._client, options.key, options.query_fn, on_change=on_change)

    async def _get(self, options: QueryOptions):
        return await self._client.fetch_query(options.key, options.query_fn)

    def watch_transactions(
        self,
        user_id: str,
        on_change: Optional[ResultListener] = None,
    ) -> QueryObserver:
        """Observe the user's full transaction list."""
        return self._watch(all_transactions_query(self._store, _require_user(user_id)), on_change)

    def watch_monthly_transactions(
        self,
        user_id: str,
        month_key: Optional[str] = None,
        on_change: Optional[ResultListener] = None,
    ) -> QueryObserver:
        """Observe one month, the current month by default."""
        return self._watch(
            monthly_transactions_query(
                self._store, _require_user(user_id), month_key or self.current_month()
            ),
            on_change,
        )

    def watch_categories(
        self,
        user_id: str,
        category_type: Optional[TransactionType] = None,
        on_change: Optional[ResultListener] = None,
    ) -> QueryObserver:
        return self._watch(
            categories_query(self._store, _require_user(user_id), category_type),
            on_change,
        )

    async def get_transactions(self, user_id: str) -> list[Transaction]:
        return await self._get(all_transactions_query(self._store, _require_user(user_id)))

    async def get_monthly_transactions(
        self,
        user_id: str,
        month_key: Optional[str] = None,
    ) -> list[Transaction]:
        return await self._get(
            monthly_transactions_query(
                self._store, _require_user(user_id), month_key or self.current_month()
            )
        )

    async def get_categories(
        self,
        user_id: str,
        category_type: Optional[TransactionType] = None,
    ) -> list[Category]:
        return await self._get(categories_query(self._store, _require_user(user_id), category_type))

    async def dashboard(self, user_id: str) -> FinancialSummary:
        """This month's income, expenses and balance."""
        month = self.current_month()
        transactions = await self.get_monthly_transactions(user_id, month)
        return summarize(transactions, month_key=month)

    async def expense_report(
        self,
        user_id: str,
        month_key: Optional[str] = None,
    ) -> ExpenseReport:
        month = month_key or self.current_month()
        transactions = await self.get_monthly_transactions(user_id, month)
        categories = await self.get_categories(user_id)
        return ExpenseReport(
            summary=summarize(transactions, month_key=month),
            distribution=expense_distribution(transactions, categories),
        )

    async def transaction_rows(self, user_id: str) -> list[TransactionRow]:
        """Every transaction with its category name, for the table."""
        transactions = await self.get_transactions(user_id)
        categories = await self.get_categories(user_id)
        return to_rows(transactions, categories)

    def _known_categories(self, user_id: str) -> Optional[list[Category]]:
        # Only fresh data is trusted for the category checks
        if not user_id:
            return None
        key: QueryKey = query_keys.categories.all(user_id)
        state = self._client.get_query_state(key)
        if state is None or state.is_stale or state.data is None:
            return None
        return state.data

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _mutation(self, mutation_fn, messages: _Messages) -> MutationObserver:
        async def on_success(change: Change, variables: Variables) -> None:
            await self._engine.apply(change, correlation_id=variables.correlation_id)
            entity_id = (
                change.transaction_id
                if isinstance(change, TransactionChange)
                else change.category_id
            )
            await self._audit_logger.log(
                AuditEventBuilder.mutation_succeeded(
                    entity_type=messages.entity,
                    action=messages.action,
                    user_id=change.user_id,
                    entity_id=entity_id,
                    correlation_id=variables.correlation_id,
                )
            )
            self._notifier.success(messages.success_title, messages.success_description(change))

        async def on_error(error: BaseException, variables: Variables) -> None:
            if isinstance(error, ValidationFailedError):
                event = AuditEventBuilder.validation_failed(
                    entity_type=messages.entity,
                    action=messages.action,
                    user_id=variables.user_id,
                    issues=[issue.model_dump() for issue in error.result.issues],
                    correlation_id=variables.correlation_id,
                )
            elif isinstance(error, ReferentialIntegrityError):
                event = AuditEventBuilder.category_delete_refused(
                    user_id=variables.user_id,
                    category_id=_entity_id(variables),
                    reference_count=error.reference_count,
                    correlation_id=variables.correlation_id,
                )
            else:
                event = AuditEventBuilder.mutation_failed(
                    entity_type=messages.entity,
                    action=messages.action,
                    user_id=variables.user_id or None,
                    error=error,
                    entity_id=_entity_id(variables),
                    correlation_id=variables.correlation_id,
                )
            await self._audit_logger.log(event)
            self._notifier.error(messages.error_title, _error_description(error))

        return use_mutation(mutation_fn, on_success=on_success, on_error=on_error)

    async def create_transaction(self, user_id: str, draft: TransactionDraft) -> TransactionChange:
        return await self.add_transaction.mutate(TransactionVariables(user_id, draft=draft))

    async def update_transaction(
        self,
        user_id: str,
        transaction_id: str,
        draft: TransactionDraft,
    ) -> TransactionChange:
        return await self.edit_transaction.mutate(
            TransactionVariables(user_id, draft=draft, transaction_id=transaction_id)
        )

    async def delete_transaction(self, user_id: str, transaction_id: str) -> TransactionChange:
        return await self.remove_transaction.mutate(
            TransactionVariables(user_id, transaction_id=transaction_id)
        )

    async def create_category(self, user_id: str, draft: CategoryDraft) -> CategoryChange:
        return await self.add_category.mutate(CategoryVariables(user_id, draft=draft))

    async def update_category(
        self,
        user_id: str,
        category_id: str,
        draft: CategoryDraft,
    ) -> CategoryChange:
        return await self.edit_category.mutate(
            CategoryVariables(user_id, draft=draft, category_id=category_id)
        )

    async def delete_category(self, user_id: str, category_id: str) -> CategoryChange:
        return await self.remove_category.mutate(
            CategoryVariables(user_id, category_id=category_id)
        )

    # -------------------------------------------------------------------------
    # Host signals & teardown
    # -------------------------------------------------------------------------

    def on_window_focus(self) -> list[QueryKey]:
        return self._client.on_window_focus()

    def on_visibility_change(self, visible: bool) -> list[QueryKey]:
        return self._client.on_visibility_change(visible)

    def on_network_change(self, online: bool) -> list[QueryKey]:
        return self._client.set_online(online)

    def close(self) -> None:
        self._client.close()


def create_app_components(
    settings: Optional[Settings] = None,
    store: Optional[DocumentStoreInterface] = None,
) -> FinanceTracker:
    """
    Factory function to create the tracker with all its collaborators.

    Args:
        settings: Application settings. Defaults to the environment.
        store: Document store to use. When omitted, Google Sheets is used
               if configured, the in-memory store otherwise.
    """
    settings = settings or get_settings()

    if store is None:
        try:
            store = GoogleSheetsDocumentStore(GoogleSheetsClient(settings.google_sheets))
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            store = InMemoryDocumentStore()

    return FinanceTracker(
        store=store,
        client=QueryClient(settings.cache),
        audit_logger=AuditLogger(),
        notifier=Notifier(),
        settings=settings,
    )
