"""
Data Models Package

This package contains all Pydantic models used in the Finance Tracker.
Rows read from the document store are validated into these before any
other part of the system sees them.
"""

from finance_tracker.models.finance import (
    UNCATEGORIZED,
    Category,
    CategoryDraft,
    ChartDataPoint,
    ExpenseReport,
    FinancialSummary,
    Transaction,
    TransactionDraft,
    TransactionRow,
    TransactionType,
    ValidationIssue,
    ValidationResult,
    canonical_date,
)
from finance_tracker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    Notification,
)

__all__ = [
    # Finance models
    "UNCATEGORIZED",
    "Category",
    "CategoryDraft",
    "ChartDataPoint",
    "ExpenseReport",
    "FinancialSummary",
    "Transaction",
    "TransactionDraft",
    "TransactionRow",
    "TransactionType",
    "ValidationIssue",
    "ValidationResult",
    "canonical_date",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    "Notification",
]
