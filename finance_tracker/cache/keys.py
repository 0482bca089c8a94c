"""
Query-Key Taxonomy

Every distinct read against the store gets a structured key:

    (entity kind, owning user, *scope)

Keys are compared by prefix. Invalidating ``(transactions, u)`` therefore
reaches ``(transactions, u, "2024-07")`` and every other month of that user,
while ``(categories, u)`` is never touched by it.

Key families:
    transactions.all(u)            (transactions, u)
    transactions.monthly(u, m)     (transactions, u, "YYYY-MM")
    categories.all(u)              (categories, u)
    categories.by_type(u, t)       (categories, u, "income" | "expense")
"""

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Union

from finance_tracker.models.finance import TransactionType, canonical_date


MONTH_KEY_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


class EntityKind(str, Enum):
    """The first element of every query key."""
    TRANSACTIONS = "transactions"
    CATEGORIES = "categories"


@dataclass(frozen=True)
class QueryKey:
    """
    A structured identifier for one kind of server read.

    Hashable and immutable so it can address cache entries directly.
    """

    kind: EntityKind
    user_id: str
    scope: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("A query key needs an owning user")
        object.__setattr__(self, "kind", EntityKind(self.kind))
        object.__setattr__(self, "scope", tuple(str(part) for part in self.scope))

    @property
    def parts(self) -> tuple[str, ...]:
        return (self.kind.value, self.user_id, *self.scope)

    def is_prefix_of(self, other: "QueryKey") -> bool:
        """True if every part of this key leads the other key's parts."""
        mine = self.parts
        theirs = other.parts
        return len(mine) <= len(theirs) and theirs[:len(mine)] == mine

    def __str__(self) -> str:
        return "/".join(self.parts)


class _TransactionKeys:
    @staticmethod
    def all(user_id: str) -> QueryKey:
        return QueryKey(EntityKind.TRANSACTIONS, user_id)

    @staticmethod
    def monthly(user_id: str, month_key: str) -> QueryKey:
        return QueryKey(
            EntityKind.TRANSACTIONS, user_id, (validate_month_key(month_key),)
        )


class _CategoryKeys:
    @staticmethod
    def all(user_id: str) -> QueryKey:
        return QueryKey(EntityKind.CATEGORIES, user_id)

    @staticmethod
    def by_type(user_id: str, category_type: Union[TransactionType, str]) -> QueryKey:
        return QueryKey(
            EntityKind.CATEGORIES, user_id, (TransactionType(category_type).value,)
        )


class QueryKeys:
    """Registry of the key families; use these instead of building keys by hand."""
    transactions = _TransactionKeys()
    categories = _CategoryKeys()


query_keys = QueryKeys()


# =============================================================================
# MONTH KEYS
# =============================================================================

def validate_month_key(month_key: str) -> str:
    if not isinstance(month_key, str) or not MONTH_KEY_PATTERN.match(month_key):
        raise ValueError(f"Month key must look like YYYY-MM, got {month_key!r}")
    return month_key


def month_key_of(value: Union[date, datetime, str]) -> str:
    """The ``YYYY-MM`` month a calendar date falls in."""
    return canonical_date(value)[:7]


def current_month_key(today: date) -> str:
    return month_key_of(today)


def month_bounds(month_key: str) -> tuple[str, str]:
    """First and last day of the month, both as ``YYYY-MM-DD``."""
    validate_month_key(month_key)
    year, month = (int(part) for part in month_key.split("-"))
    last_day = calendar.monthrange(year, month)[1]
    return (
        date(year, month, 1).isoformat(),
        date(year, month, last_day).isoformat(),
    )
