"""
Cache Layer

Query keys, the query cache, the invalidation rules and the observer
adapters the presentation layer consumes.
"""

from finance_tracker.cache.keys import (
    EntityKind,
    QueryKey,
    current_month_key,
    month_bounds,
    month_key_of,
    query_keys,
    validate_month_key,
)
from finance_tracker.cache.client import (
    CacheEntry,
    FetchStatus,
    QueryClient,
    QueryState,
    QueryStatus,
)
from finance_tracker.cache.invalidation import (
    CategoryChange,
    InvalidationEngine,
    MutationAction,
    TransactionChange,
    keys_for_category_change,
    keys_for_transaction_change,
)
from finance_tracker.cache.observers import (
    MutationObserver,
    MutationStatus,
    QueryObserver,
    QueryResult,
    use_mutation,
    use_query,
)

__all__ = [
    # Keys
    "EntityKind",
    "QueryKey",
    "current_month_key",
    "month_bounds",
    "month_key_of",
    "query_keys",
    "validate_month_key",
    # Client
    "CacheEntry",
    "FetchStatus",
    "QueryClient",
    "QueryState",
    "QueryStatus",
    # Invalidation
    "CategoryChange",
    "InvalidationEngine",
    "MutationAction",
    "TransactionChange",
    "keys_for_category_change",
    "keys_for_transaction_change",
    # Observers
    "MutationObserver",
    "MutationStatus",
    "QueryObserver",
    "QueryResult",
    "use_mutation",
    "use_query",
]
