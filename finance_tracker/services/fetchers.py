"""
Fetch Functions

Translate a (user, scope) read into a document store query and turn the
rows into typed records.

Normalization on the way in:
- Store timestamps (StoreTimestamp, ISO text, datetime) become naive local
  datetimes
- Dates become canonical ``YYYY-MM-DD`` strings
- Amounts become Decimal

A row that still fails validation is logged and skipped; one bad document
must not hide the rest of the user's data.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Optional, Union

import structlog
from pydantic import ValidationError

from finance_tracker.cache.keys import QueryKey, month_bounds, query_keys
from finance_tracker.models.finance import Category, Transaction, TransactionType
from finance_tracker.services.storage.interface import (
    CATEGORIES,
    TRANSACTIONS,
    AuthorizationError,
    DocumentStoreInterface,
    StoreTimestamp,
)


logger = structlog.get_logger(__name__)


# =============================================================================
# NORMALIZATION
# =============================================================================

def normalize_timestamp(value: Any) -> Optional[datetime]:
    """
    Convert any timestamp representation the store hands out to a naive
    local datetime. None stays None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, StoreTimestamp):
        return value.to_datetime()
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value
    raise ValueError(f"Unsupported timestamp value: {value!r}")


def _normalize_amount(value: Any) -> Any:
    if isinstance(value, (int, str)):
        try:
            return Decimal(str(value).strip())
        except InvalidOperation:
            return value
    if isinstance(value, float):
        return Decimal(str(value))
    return value


def _to_transaction(row: dict) -> Transaction:
    data = dict(row)
    data["createdAt"] = normalize_timestamp(data.get("createdAt"))
    data["updatedAt"] = normalize_timestamp(data.get("updatedAt"))
    data["amount"] = _normalize_amount(data.get("amount"))
    return Transaction.model_validate(data)


def _to_category(row: dict) -> Category:
    data = dict(row)
    data["createdAt"] = normalize_timestamp(data.get("createdAt"))
    return Category.model_validate(data)


def _parse_rows(rows: list[dict], parse: Callable[[dict], Any], collection: str) -> list:
    records = []
    for row in rows:
        try:
            records.append(parse(row))
        except (ValidationError, ValueError) as e:
            logger.warning(
                "malformed_row_skipped",
                collection=collection,
                doc_id=row.get("id"),
                error=str(e),
            )
    return records


def _sort_transactions(transactions: list[Transaction]) -> list[Transaction]:
    # Newest date first, newest entry first within a day
    return sorted(
        transactions,
        key=lambda t: (t.date, t.created_at),
        reverse=True,
    )


def _sort_categories(categories: list[Category]) -> list[Category]:
    return sorted(categories, key=lambda c: (c.name.casefold(), c.name))


def _require_user(user_id: Optional[str]) -> str:
    if not user_id:
        raise AuthorizationError("You must be signed in to load your data.")
    return user_id


# =============================================================================
# FETCH FUNCTIONS
# =============================================================================

async def fetch_user_transactions(
    store: DocumentStoreInterface,
    user_id: str,
) -> list[Transaction]:
    """Every transaction of the user."""
    user_id = _require_user(user_id)
    rows = await store.query_equal(TRANSACTIONS, {"userId": user_id})
    return _sort_transactions(_parse_rows(rows, _to_transaction, TRANSACTIONS))


async def fetch_monthly_transactions(
    store: DocumentStoreInterface,
    user_id: str,
    month_key: str,
) -> list[Transaction]:
    """The user's transactions dated inside one calendar month."""
    user_id = _require_user(user_id)
    first_day, last_day = month_bounds(month_key)
    rows = await store.query_range(
        TRANSACTIONS,
        "date",
        first_day,
        last_day,
        filters={"userId": user_id},
    )
    return _sort_transactions(_parse_rows(rows, _to_transaction, TRANSACTIONS))


async def fetch_user_categories(
    store: DocumentStoreInterface,
    user_id: str,
) -> list[Category]:
    user_id = _require_user(user_id)
    rows = await store.query_equal(CATEGORIES, {"userId": user_id})
    return _sort_categories(_parse_rows(rows, _to_category, CATEGORIES))


async def fetch_categories_by_type(
    store: DocumentStoreInterface,
    user_id: str,
    category_type: Union[TransactionType, str],
) -> list[Category]:
    user_id = _require_user(user_id)
    rows = await store.query_equal(
        CATEGORIES,
        {"userId": user_id, "type": TransactionType(category_type).value},
    )
    return _sort_categories(_parse_rows(rows, _to_category, CATEGORIES))


# =============================================================================
# QUERY OPTIONS
# =============================================================================

@dataclass(frozen=True)
class QueryOptions:
    """A query key paired with the fetch that fills it."""

    key: QueryKey
    query_fn: Callable[[], Awaitable[Any]]


def all_transactions_query(store: DocumentStoreInterface, user_id: str) -> QueryOptions:
    return QueryOptions(
        key=query_keys.transactions.all(user_id),
        query_fn=lambda: fetch_user_transactions(store, user_id),
    )


def monthly_transactions_query(
    store: DocumentStoreInterface,
    user_id: str,
    month_key: str,
) -> QueryOptions:
    return QueryOptions(
        key=query_keys.transactions.monthly(user_id, month_key),
        query_fn=lambda: fetch_monthly_transactions(store, user_id, month_key),
    )


def categories_query(
    store: DocumentStoreInterface,
    user_id: str,
    category_type: Optional[Union[TransactionType, str]] = None,
) -> QueryOptions:
    """All of the user's categories, or only those of one type."""
    if category_type is None:
        return QueryOptions(
            key=query_keys.categories.all(user_id),
            query_fn=lambda: fetch_user_categories(store, user_id),
        )
    return QueryOptions(
        key=query_keys.categories.by_type(user_id, category_type),
        query_fn=lambda: fetch_categories_by_type(store, user_id, category_type),
    )
