"""
Mutation Functions

Create, update and delete against the document store.

Each operation:
1. Refuses without a user (AuthorizationError), before any store call
2. Validates the form locally (ValidationFailedError), before any store call
3. Writes exactly once; writes are never retried
4. Returns the facts of the confirmed write (TransactionChange or
   CategoryChange) for the invalidation rules

Nothing here touches the query cache. Invalidation is the caller's
follow-up to a returned change, so a failed write can't invalidate.
"""

from typing import Iterable, Optional

import structlog

from finance_tracker.cache.invalidation import (
    CategoryChange,
    MutationAction,
    TransactionChange,
)
from finance_tracker.cache.keys import month_key_of
from finance_tracker.models.finance import (
    Category,
    CategoryDraft,
    TransactionDraft,
)
from finance_tracker.services.storage.interface import (
    CATEGORIES,
    SERVER_TIMESTAMP,
    TRANSACTIONS,
    AuthorizationError,
    DocumentStoreInterface,
    NotFoundError,
    ReferentialIntegrityError,
)
from finance_tracker.validation import (
    CategoryValidator,
    TransactionValidator,
    ValidationFailedError,
)


logger = structlog.get_logger(__name__)

CATEGORY_IN_USE_MESSAGE = "Cannot delete category that is being used in transactions."


def _require_user(user_id: Optional[str], action: str) -> str:
    if not user_id:
        raise AuthorizationError(f"You must be logged in to {action}.")
    return user_id


async def _get_owned(
    store: DocumentStoreInterface,
    collection: str,
    doc_id: str,
    user_id: str,
) -> dict:
    """Load a document and check it belongs to the user."""
    label = "Transaction" if collection == TRANSACTIONS else "Category"
    row = await store.get(collection, doc_id)
    if row is None:
        raise NotFoundError(f"{label} not found.")
    if row.get("userId") != user_id:
        raise AuthorizationError(f"{label} belongs to another user.")
    return row


def _previous_month(row: dict) -> Optional[str]:
    try:
        return month_key_of(row.get("date"))
    except ValueError:
        logger.warning("stored_date_unreadable", doc_id=row.get("id"), date=row.get("date"))
        return None


class TransactionMutations:
    """Writes to the transactions collection."""

    def __init__(
        self,
        store: DocumentStoreInterface,
        validator: Optional[TransactionValidator] = None,
    ):
        self._store = store
        self._validator = validator or TransactionValidator()

    def _check(
        self,
        draft: TransactionDraft,
        categories: Optional[Iterable[Category]],
    ) -> None:
        result = self._validator.validate(draft, categories)
        if not result.is_valid:
            raise ValidationFailedError(result)

    async def create_transaction(
        self,
        user_id: str,
        draft: TransactionDraft,
        categories: Optional[Iterable[Category]] = None,
    ) -> TransactionChange:
        user_id = _require_user(user_id, "add a transaction")
        self._check(draft, categories)

        fields = draft.to_store_fields()
        fields["userId"] = user_id
        fields["createdAt"] = SERVER_TIMESTAMP
        transaction_id = await self._store.insert(TRANSACTIONS, fields)

        logger.info("transaction_created", user_id=user_id, transaction_id=transaction_id)
        return TransactionChange(
            user_id=user_id,
            action=MutationAction.CREATE,
            transaction_id=transaction_id,
            month_key=month_key_of(fields["date"]),
            transaction_type=draft.type,
            title=draft.title,
        )

    async def update_transaction(
        self,
        user_id: str,
        transaction_id: str,
        draft: TransactionDraft,
        categories: Optional[Iterable[Category]] = None,
    ) -> TransactionChange:
        """
        Replace the editable fields of a transaction.

        The returned change carries the month before the edit, so a
        transaction moved to another month invalidates both months.
        """
        user_id = _require_user(user_id, "update a transaction")
        self._check(draft, categories)

        previous = await _get_owned(self._store, TRANSACTIONS, transaction_id, user_id)
        fields = draft.to_store_fields()
        fields["updatedAt"] = SERVER_TIMESTAMP
        change = TransactionChange(
            user_id=user_id,
            action=MutationAction.UPDATE,
            transaction_id=transaction_id,
            month_key=month_key_of(fields["date"]),
            previous_month_key=_previous_month(previous),
            transaction_type=draft.type,
            title=draft.title,
        )
        await self._store.update(TRANSACTIONS, transaction_id, fields)

        logger.info("transaction_updated", user_id=user_id, transaction_id=transaction_id)
        return change

    async def delete_transaction(self, user_id: str, transaction_id: str) -> TransactionChange:
        user_id = _require_user(user_id, "delete a transaction")
        previous = await _get_owned(self._store, TRANSACTIONS, transaction_id, user_id)
        month_key = _previous_month(previous)
        if month_key is None:
            raise ValueError(f"Transaction {transaction_id} has no readable date")
        change = TransactionChange(
            user_id=user_id,
            action=MutationAction.DELETE,
            transaction_id=transaction_id,
            month_key=month_key,
            title=previous.get("title"),
        )

        await self._store.delete(TRANSACTIONS, transaction_id)

        logger.info("transaction_deleted", user_id=user_id, transaction_id=transaction_id)
        return change


class CategoryMutations:
    """Writes to the categories collection."""

    def __init__(
        self,
        store: DocumentStoreInterface,
        validator: Optional[CategoryValidator] = None,
    ):
        self._store = store
        self._validator = validator or CategoryValidator()

    def _check(
        self,
        draft: CategoryDraft,
        existing: Optional[Iterable[Category]],
        exclude_id: Optional[str] = None,
    ) -> None:
        result = self._validator.validate(draft, existing, exclude_id=exclude_id)
        if not result.is_valid:
            raise ValidationFailedError(result)

    async def create_category(
        self,
        user_id: str,
        draft: CategoryDraft,
        existing: Optional[Iterable[Category]] = None,
    ) -> CategoryChange:
        user_id = _require_user(user_id, "add a category")
        self._check(draft, existing)

        fields = draft.to_store_fields()
        fields["userId"] = user_id
        fields["createdAt"] = SERVER_TIMESTAMP
        category_id = await self._store.insert(CATEGORIES, fields)

        logger.info("category_created", user_id=user_id, category_id=category_id)
        return CategoryChange(
            user_id=user_id,
            action=MutationAction.CREATE,
            category_id=category_id,
            category_type=draft.type,
            name=draft.name,
        )

    async def update_category(
        self,
        user_id: str,
        category_id: str,
        draft: CategoryDraft,
        existing: Optional[Iterable[Category]] = None,
    ) -> CategoryChange:
        user_id = _require_user(user_id, "update a category")
        self._check(draft, existing, exclude_id=category_id)

        previous = await _get_owned(self._store, CATEGORIES, category_id, user_id)
        change = CategoryChange(
            user_id=user_id,
            action=MutationAction.UPDATE,
            category_id=category_id,
            category_type=draft.type,
            previous_type=previous.get("type"),
            name=draft.name,
        )
        await self._store.update(CATEGORIES, category_id, draft.to_store_fields())

        logger.info("category_updated", user_id=user_id, category_id=category_id)
        return change

    async def delete_category(self, user_id: str, category_id: str) -> CategoryChange:
        """
        Delete a category nobody references.

        Raises:
            ReferentialIntegrityError: If any of the user's transactions
                still points at the category. Nothing is deleted.
        """
        user_id = _require_user(user_id, "delete a category")
        previous = await _get_owned(self._store, CATEGORIES, category_id, user_id)

        references = await self._store.query_equal(
            TRANSACTIONS, {"userId": user_id, "categoryId": category_id}
        )
        if references:
            logger.warning(
                "category_delete_refused",
                user_id=user_id,
                category_id=category_id,
                reference_count=len(references),
            )
            raise ReferentialIntegrityError(CATEGORY_IN_USE_MESSAGE, len(references))

        change = CategoryChange(
            user_id=user_id,
            action=MutationAction.DELETE,
            category_id=category_id,
            category_type=previous.get("type"),
            name=previous.get("name"),
        )
        await self._store.delete(CATEGORIES, category_id)

        logger.info("category_deleted", user_id=user_id, category_id=category_id)
        return change
