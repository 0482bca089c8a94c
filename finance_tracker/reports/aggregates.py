"""
Derived Views

Pure folds over a transaction list: totals, per-category expense buckets,
the expense distribution chart series and per-month breakdowns.

None of these mutate their input, so computing a view twice from the same
list gives the same result. They are recomputed from cache data on every
render and never persisted.
"""

from collections import OrderedDict
from decimal import Decimal
from typing import Iterable, Optional

from finance_tracker.models.finance import (
    UNCATEGORIZED,
    Category,
    ChartDataPoint,
    FinancialSummary,
    Transaction,
    TransactionRow,
    TransactionType,
)


CHART_PALETTE = (
    "hsl(var(--chart-1))",
    "hsl(var(--chart-2))",
    "hsl(var(--chart-3))",
    "hsl(var(--chart-4))",
    "hsl(var(--chart-5))",
    "hsl(var(--primary))",
    "hsl(var(--accent))",
)

UNCATEGORIZED_EXPENSES = "Uncategorized Expenses"
BALANCE = "Balance"

ZERO = Decimal("0")


def summarize(
    transactions: Iterable[Transaction],
    month_key: Optional[str] = None,
) -> FinancialSummary:
    """
    Total income, total expenses and balance.

    Args:
        transactions: Any list of transactions
        month_key: Restrict to one ``YYYY-MM`` month. None means all of them.
    """
    income = ZERO
    expenses = ZERO
    count = 0
    for t in transactions:
        if month_key is not None and t.month_key != month_key:
            continue
        if t.type == TransactionType.INCOME:
            income += t.amount
        else:
            expenses += t.amount
        count += 1

    return FinancialSummary(
        total_income=income,
        total_expenses=expenses,
        balance=income - expenses,
        transaction_count=count,
        month_key=month_key,
    )


def group_expenses_by_category(
    transactions: Iterable[Transaction],
    categories: Iterable[Category],
) -> "OrderedDict[str, Decimal]":
    """
    Expense totals per category name, in order of first appearance.

    Expenses whose category is unknown land in one "Uncategorized Expenses"
    bucket.
    """
    names = {c.id: c.name for c in categories}
    totals: "OrderedDict[str, Decimal]" = OrderedDict()
    for t in transactions:
        if t.type != TransactionType.EXPENSE:
            continue
        name = names.get(t.category_id, UNCATEGORIZED_EXPENSES)
        totals[name] = totals.get(name, ZERO) + t.amount
    return totals


def expense_distribution(
    transactions: Iterable[Transaction],
    categories: Iterable[Category],
) -> list[ChartDataPoint]:
    """
    The expense distribution chart series.

    One slice per expense category, largest first. Colours are handed out
    from the palette in order of first appearance and cycle. A "Balance"
    slice follows when income exceeds expenses.
    """
    transactions = list(transactions)
    buckets = group_expenses_by_category(transactions, categories)

    points = [
        ChartDataPoint(
            name=name,
            value=value,
            fill=CHART_PALETTE[index % len(CHART_PALETTE)],
        )
        for index, (name, value) in enumerate(buckets.items())
    ]
    # Stable, so equal totals keep their first-appearance order
    points.sort(key=lambda p: p.value, reverse=True)

    # With no expenses at all this is the whole income, in the first colour
    summary = summarize(transactions)
    if summary.balance > 0 and summary.total_income > 0:
        points.append(ChartDataPoint(
            name=BALANCE,
            value=summary.balance,
            fill=CHART_PALETTE[len(buckets) % len(CHART_PALETTE)],
        ))
    return points


def monthly_breakdown(transactions: Iterable[Transaction]) -> list[FinancialSummary]:
    """One summary per month that has transactions, newest month first."""
    by_month: dict[str, list[Transaction]] = {}
    for t in transactions:
        by_month.setdefault(t.month_key, []).append(t)
    return [
        summarize(month_transactions, month_key=month)
        for month, month_transactions in sorted(by_month.items(), reverse=True)
    ]


def to_rows(
    transactions: Iterable[Transaction],
    categories: Iterable[Category],
) -> list[TransactionRow]:
    """Transactions with their category name resolved, for the table."""
    names = {c.id: c.name for c in categories}
    return [
        TransactionRow(
            **t.model_dump(),
            category_name=names.get(t.category_id, UNCATEGORIZED),
        )
        for t in transactions
    ]
