"""
Services Package

The document store backends, the fetch functions that read from them and
the mutation functions that write to them.
"""

from finance_tracker.services.fetchers import (
    QueryOptions,
    all_transactions_query,
    categories_query,
    fetch_categories_by_type,
    fetch_monthly_transactions,
    fetch_user_categories,
    fetch_user_transactions,
    monthly_transactions_query,
    normalize_timestamp,
)
from finance_tracker.services.mutations import (
    CategoryMutations,
    TransactionMutations,
)

__all__ = [
    # Fetchers
    "QueryOptions",
    "all_transactions_query",
    "categories_query",
    "fetch_categories_by_type",
    "fetch_monthly_transactions",
    "fetch_user_categories",
    "fetch_user_transactions",
    "monthly_transactions_query",
    "normalize_timestamp",
    # Mutations
    "CategoryMutations",
    "TransactionMutations",
]
