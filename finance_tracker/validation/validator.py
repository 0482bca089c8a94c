"""
Form Validation

DESIGN DECISION: Form input is validated locally, before any store call.
A rejected form never reaches the store and never invalidates the cache.

Validation happens in two stages:

STAGE 1 - FIELD VALIDATION:
- Required fields present (title, amount, category, date)
- Amount strictly positive
- Date is a real calendar date

STAGE 2 - SEMANTIC VALIDATION (only if stage 1 passed):
- Category belongs to the user and has the transaction's type
- Far-future dates and unusually large amounts (warnings only)

Errors block the write. Warnings are reported but the write goes ahead.
Every issue names its field so the form can show it inline.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Iterable, Optional

from finance_tracker.config import AppSettings, get_settings
from finance_tracker.models.finance import (
    Category,
    CategoryDraft,
    TransactionDraft,
    ValidationIssue,
    ValidationResult,
    canonical_date,
)


class ValidationFailedError(Exception):
    """Raised instead of writing when a form has error-level issues."""

    def __init__(self, result: ValidationResult):
        self.result = result
        messages = [i.message for i in result.issues if i.severity == "error"]
        super().__init__(" ".join(messages) or "Invalid input.")


def _result(issues: list[ValidationIssue]) -> ValidationResult:
    return ValidationResult(
        is_valid=not any(issue.severity == "error" for issue in issues),
        issues=issues,
    )


class TransactionValidator:
    """
    Validates the transaction form.

    Args:
        settings: Thresholds for the warning checks
        today: Date source for the future-date check
    """

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        today: Callable[[], date] = date.today,
    ):
        self._settings = settings or get_settings().app
        self._today = today

    def _validate_fields(self, draft: TransactionDraft) -> list[ValidationIssue]:
        issues = []

        if not draft.title:
            issues.append(ValidationIssue(
                field="title",
                issue_type="missing",
                message="Please enter a title.",
                severity="error",
            ))
        elif len(draft.title) > 200:
            issues.append(ValidationIssue(
                field="title",
                issue_type="invalid_value",
                message="Title must be at most 200 characters.",
                severity="error",
            ))

        if draft.amount is None:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="missing",
                message="Please enter an amount.",
                severity="error",
            ))
        elif not draft.amount.is_finite() or draft.amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be positive.",
                severity="error",
            ))

        if not draft.category_id:
            issues.append(ValidationIssue(
                field="category_id",
                issue_type="missing",
                message="Please select a category.",
                severity="error",
            ))

        if not draft.date:
            issues.append(ValidationIssue(
                field="date",
                issue_type="missing",
                message="Please select a date.",
                severity="error",
            ))
        else:
            try:
                canonical_date(draft.date)
            except ValueError:
                issues.append(ValidationIssue(
                    field="date",
                    issue_type="invalid_value",
                    message=f"'{draft.date}' is not a valid date (expected YYYY-MM-DD).",
                    severity="error",
                ))

        if draft.description and len(draft.description) > 1000:
            issues.append(ValidationIssue(
                field="description",
                issue_type="invalid_value",
                message="Description must be at most 1000 characters.",
                severity="error",
            ))

        return issues

    def _validate_semantic(
        self,
        draft: TransactionDraft,
        categories: Optional[Iterable[Category]],
    ) -> list[ValidationIssue]:
        issues = []

        if categories is not None:
            category = next((c for c in categories if c.id == draft.category_id), None)
            if category is None:
                issues.append(ValidationIssue(
                    field="category_id",
                    issue_type="not_found",
                    message="The selected category no longer exists.",
                    severity="error",
                ))
            elif category.type != draft.type:
                issues.append(ValidationIssue(
                    field="category_id",
                    issue_type="mismatch",
                    message=(
                        f"'{category.name}' is an {category.type.value} category "
                        f"and can't be used for an {draft.type.value}."
                    ),
                    severity="error",
                ))

        entry_date = date.fromisoformat(canonical_date(draft.date))
        latest = self._today() + timedelta(days=self._settings.future_date_tolerance_days)
        if entry_date > latest:
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Date ({entry_date.isoformat()}) is far in the future",
                severity="warning",
            ))

        max_amount = Decimal(str(self._settings.max_transaction_amount))
        if draft.amount > max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({draft.amount:,.2f}) seems unusually high",
                severity="warning",
            ))

        return issues

    def validate(
        self,
        draft: TransactionDraft,
        categories: Optional[Iterable[Category]] = None,
    ) -> ValidationResult:
        """
        Validate a transaction form.

        Args:
            draft: What the user entered
            categories: The user's categories, when already loaded.
                        Ownership and type checks are skipped without them.
        """
        issues = self._validate_fields(draft)
        if not any(issue.severity == "error" for issue in issues):
            issues.extend(self._validate_semantic(draft, categories))
        return _result(issues)


class CategoryValidator:
    """Validates the category form."""

    def validate(
        self,
        draft: CategoryDraft,
        existing: Optional[Iterable[Category]] = None,
        exclude_id: Optional[str] = None,
    ) -> ValidationResult:
        """
        Args:
            draft: What the user entered
            existing: The user's categories, for the duplicate-name check
            exclude_id: The category being edited, which can keep its name
        """
        issues = []

        if not draft.name:
            issues.append(ValidationIssue(
                field="name",
                issue_type="missing",
                message="Category name cannot be empty.",
                severity="error",
            ))
        elif len(draft.name) > 100:
            issues.append(ValidationIssue(
                field="name",
                issue_type="invalid_value",
                message="Category name must be at most 100 characters.",
                severity="error",
            ))
        elif existing is not None:
            # Unique per user and type by convention only
            wanted = draft.name.casefold()
            for category in existing:
                if (
                    category.id != exclude_id
                    and category.type == draft.type
                    and category.name.casefold() == wanted
                ):
                    issues.append(ValidationIssue(
                        field="name",
                        issue_type="duplicate",
                        message=f"You already have an {draft.type.value} category named '{category.name}'",
                        severity="warning",
                    ))
                    break

        return _result(issues)


def get_user_friendly_summary(result: ValidationResult) -> str:
    """Summary of a validation result for a notification or form footer."""
    if result.is_valid and not result.warnings:
        return "All checks passed."

    lines = []
    if result.has_errors:
        lines.append("Please fix the following:")
        for issue in result.issues:
            if issue.severity == "error":
                lines.append(f"  - {issue.message}")

    if result.warnings:
        if lines:
            lines.append("")
        lines.append("Please verify the following:")
        for warning in result.warnings:
            lines.append(f"  - {warning}")

    return "\n".join(lines)
