"""Validation package."""

from finance_tracker.validation.validator import (
    CategoryValidator,
    TransactionValidator,
    ValidationFailedError,
    get_user_friendly_summary,
)

__all__ = [
    "CategoryValidator",
    "TransactionValidator",
    "ValidationFailedError",
    "get_user_friendly_summary",
]
