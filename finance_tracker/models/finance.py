"""
Core Data Models for Finance Tracker

These models define the schemas for every record flowing between the
document store, the query cache and the presentation layer.

DESIGN DECISION: Field names are snake_case in Python and camelCase in the
store (``userId``, ``categoryId``, ``createdAt``). The alias generator maps
between the two so rows can be validated straight from the store.

DESIGN DECISION: Transaction dates are calendar dates without a time
component, kept as canonical ``YYYY-MM-DD`` strings. String comparison then
matches calendar order and there is no timezone to drift.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)
from pydantic.alias_generators import to_camel


UNCATEGORIZED = "Uncategorized"


def canonical_date(value: Any) -> str:
    """
    Coerce a date-like value to ``YYYY-MM-DD``.

    Accepts date, datetime and ISO strings (a time part is dropped).
    Raises ValueError for anything else.
    """
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        text = value.strip()
        if "T" in text:
            text = text.split("T", 1)[0]
        return date.fromisoformat(text).isoformat()
    raise ValueError(f"Not a calendar date: {value!r}")


# =============================================================================
# ENUMS
# =============================================================================

class TransactionType(str, Enum):
    """Direction of money. Categories carry the same type."""
    INCOME = "income"
    EXPENSE = "expense"


# =============================================================================
# STORED RECORDS
# =============================================================================

class StoredModel(BaseModel):
    """Base for records that round-trip through the document store."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class Transaction(StoredModel):
    """
    A recorded income or expense.

    The category reference should point at a category of the same user
    and the same type. The UI enforces that, the store does not.
    """

    id: str = Field(
        ...,
        min_length=1,
        description="Store-assigned document ID"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owning user"
    )
    type: TransactionType
    title: str = Field(
        ...,
        min_length=1,
        max_length=200,
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Positive amount; the type gives the direction"
    )
    category_id: str = Field(
        ...,
        min_length=1,
        description="Referenced category document ID"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=1000,
    )
    created_at: datetime
    updated_at: Optional[datetime] = None
    date: str = Field(
        ...,
        description="Calendar date as YYYY-MM-DD"
    )

    @field_validator('date', mode='before')
    @classmethod
    def canonicalize_date(cls, v: Any) -> str:
        return canonical_date(v)

    @field_validator('description', mode='before')
    @classmethod
    def blank_description_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def month_key(self) -> str:
        """The ``YYYY-MM`` month this transaction falls in."""
        return self.date[:7]


class Category(StoredModel):
    """
    A user-defined income or expense category.

    Names are unique per user and type by convention only.
    """

    id: str = Field(
        ...,
        min_length=1,
    )
    user_id: str = Field(
        ...,
        min_length=1,
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
    )
    type: TransactionType
    created_at: datetime


class TransactionRow(Transaction):
    """A transaction with its category name resolved, for tables."""

    category_name: str = UNCATEGORIZED


# =============================================================================
# FORM PAYLOADS
# =============================================================================

class TransactionDraft(BaseModel):
    """
    What the user entered in the transaction form.

    Deliberately loose: nothing here is trusted until the validator
    has looked at it, so that every problem can be reported per field
    instead of failing on the first one.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    type: TransactionType = TransactionType.EXPENSE
    title: str = ""
    amount: Optional[Decimal] = Field(default=None, allow_inf_nan=True)
    category_id: str = ""
    description: Optional[str] = None
    date: Optional[str] = None

    @field_validator('date', mode='before')
    @classmethod
    def date_to_text(cls, v: Any) -> Any:
        if isinstance(v, (date, datetime)):
            return canonical_date(v)
        return v

    def to_store_fields(self) -> dict[str, Any]:
        """Fields to write, in the store layout. Assumes validation passed."""
        return {
            "type": self.type.value,
            "title": self.title,
            "amount": str(self.amount),
            "categoryId": self.category_id,
            "date": canonical_date(self.date),
            "description": self.description or None,
        }


class CategoryDraft(BaseModel):
    """What the user entered in the category form."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = ""
    type: TransactionType = TransactionType.EXPENSE

    def to_store_fields(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.type.value}


# =============================================================================
# DERIVED VIEWS (never persisted)
# =============================================================================

class FinancialSummary(BaseModel):
    """Income, expenses and balance over a set of transactions."""

    total_income: Decimal = Decimal("0")
    total_expenses: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    transaction_count: int = Field(default=0, ge=0)
    month_key: Optional[str] = Field(
        default=None,
        description="Month the summary is restricted to, None for all time"
    )


class ChartDataPoint(BaseModel):
    """One slice of the expense distribution chart."""

    name: str
    value: Decimal
    fill: str = Field(
        ...,
        description="Colour token for the slice, e.g. hsl(var(--chart-1))"
    )


class ExpenseReport(BaseModel):
    """The reports page: one month's totals and its expense chart."""

    summary: FinancialSummary
    distribution: list[ChartDataPoint] = Field(default_factory=list)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue, shown inline next to its field."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'mismatch')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """Outcome of validating one form submission."""

    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[str]:
        return [i.message for i in self.issues if i.severity == "warning"]

    def errors_by_field(self) -> dict[str, list[str]]:
        """Error messages grouped per field, for inline display."""
        grouped: dict[str, list[str]] = {}
        for issue in self.issues:
            if issue.severity == "error":
                grouped.setdefault(issue.field, []).append(issue.message)
        return grouped
