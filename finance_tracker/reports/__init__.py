"""Derived-view computations over transaction lists."""

from finance_tracker.reports.aggregates import (
    BALANCE,
    CHART_PALETTE,
    UNCATEGORIZED_EXPENSES,
    expense_distribution,
    group_expenses_by_category,
    monthly_breakdown,
    summarize,
    to_rows,
)

__all__ = [
    "BALANCE",
    "CHART_PALETTE",
    "UNCATEGORIZED_EXPENSES",
    "expense_distribution",
    "group_expenses_by_category",
    "monthly_breakdown",
    "summarize",
    "to_rows",
]
