"""
Invalidation Rules

Given the facts of a confirmed write, decide every query key it made stale.

Transaction write for user U in month M:
    1. (transactions, U)                  all-time list changed
    2. (transactions, U, M)               that month changed
    3. (transactions, U, M_old)           on an update that moved the
                                          transaction out of M_old
    4. (transactions, U, current month)   the dashboard, always, even when
                                          M is another month
    5. (categories, U)                    category views read transactions
                                          indirectly

Category write for user U of type T:
    (categories, U), (categories, U, T), the previous type on a type
    change, and (transactions, U) since transaction rows show the
    category name.

The set is deliberately generous. Rule 4 in particular must stay even
though it often repeats rule 2: it keeps "this month" correct across
clock skew and timezone edges.

Rules are only applied after the store acknowledged the write.
"""

from datetime import date
from enum import Enum
from typing import Callable, Optional, Union
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict, field_validator

from finance_tracker.audit import AuditLogger
from finance_tracker.cache.client import QueryClient
from finance_tracker.cache.keys import (
    QueryKey,
    current_month_key,
    query_keys,
    validate_month_key,
)
from finance_tracker.models.audit import AuditEventBuilder
from finance_tracker.models.finance import TransactionType


class MutationAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class TransactionChange(BaseModel):
    """What a confirmed transaction write touched."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    action: MutationAction
    transaction_id: str
    month_key: str
    previous_month_key: Optional[str] = None
    transaction_type: Optional[TransactionType] = None
    title: Optional[str] = None

    @field_validator('month_key', 'previous_month_key')
    @classmethod
    def check_month_key(cls, v: Optional[str]) -> Optional[str]:
        return validate_month_key(v) if v is not None else v


class CategoryChange(BaseModel):
    """What a confirmed category write touched."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    action: MutationAction
    category_id: str
    category_type: TransactionType
    previous_type: Optional[TransactionType] = None
    name: Optional[str] = None


def _unique(keys: list[QueryKey]) -> list[QueryKey]:
    return list(dict.fromkeys(keys))


def keys_for_transaction_change(change: TransactionChange, today: date) -> list[QueryKey]:
    u = change.user_id
    keys = [
        query_keys.transactions.all(u),
        query_keys.transactions.monthly(u, change.month_key),
    ]
    if change.previous_month_key and change.previous_month_key != change.month_key:
        keys.append(query_keys.transactions.monthly(u, change.previous_month_key))
    keys.append(query_keys.transactions.monthly(u, current_month_key(today)))
    keys.append(query_keys.categories.all(u))
    return _unique(keys)


def keys_for_category_change(change: CategoryChange) -> list[QueryKey]:
    u = change.user_id
    keys = [
        query_keys.categories.all(u),
        query_keys.categories.by_type(u, change.category_type),
    ]
    if change.previous_type is not None and change.previous_type != change.category_type:
        keys.append(query_keys.categories.by_type(u, change.previous_type))
    keys.append(query_keys.transactions.all(u))
    return _unique(keys)


Change = Union[TransactionChange, CategoryChange]


class InvalidationEngine:
    """
    Applies the rules above to a QueryClient.

    Args:
        client: The cache to invalidate
        today: Wall-clock date source, used for the current-month rule
        audit_logger: Optional audit trail for invalidations
        refetch: Whether to wait for observed entries to refetch
    """

    def __init__(
        self,
        client: QueryClient,
        today: Callable[[], date] = date.today,
        audit_logger: Optional[AuditLogger] = None,
        refetch: bool = True,
    ):
        self._client = client
        self._today = today
        self._audit_logger = audit_logger
        self._refetch = refetch
        self._logger = structlog.get_logger(__name__)

    def keys_for(self, change: Change) -> list[QueryKey]:
        if isinstance(change, TransactionChange):
            return keys_for_transaction_change(change, self._today())
        return keys_for_category_change(change)

    async def apply(
        self,
        change: Change,
        correlation_id: Optional[UUID] = None,
    ) -> list[QueryKey]:
        """Invalidate every key the change affects. Returns those keys."""
        keys = self.keys_for(change)
        await self._client.invalidate_queries(*keys, refetch=self._refetch)

        self._logger.info(
            "mutation_invalidated",
            user_id=change.user_id,
            action=change.action.value,
            keys=[str(k) for k in keys],
        )
        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.queries_invalidated(
                    user_id=change.user_id,
                    keys=[str(k) for k in keys],
                    correlation_id=correlation_id,
                )
            )
        return keys
