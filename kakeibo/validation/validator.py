"""
Two-Stage Expense Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence
- Description length
- Amount format (positive, at most 2 decimals)

STAGE 2 - SEMANTIC VALIDATION:
- Absurd amount detection
- Future date detection
- Very old date detection

Stage 2 only runs when stage 1 passes, so every message refers to a value
that was at least well-formed.

IMPORTANT: Validation NEVER silently fixes issues. Errors block the
mutation; warnings are reported and the mutation proceeds.
"""

import re
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping, Optional

from kakeibo.config import AppSettings, get_settings
from kakeibo.models.records import naive_local
from kakeibo.models.summaries import ValidationIssue, ValidationResult
from kakeibo.scheduling.recurrence import add_months


class ExpenseValidationError(ValueError):
    """Expense input failed validation; carries the full result."""

    def __init__(self, result: ValidationResult):
        self.result = result
        messages = [i.message for i in result.issues if i.severity == "error"]
        super().__init__("; ".join(messages) or "Expense is invalid")


def sanitize_text(value: str) -> str:
    """Trim, drop angle brackets and collapse runs of whitespace."""
    return re.sub(r"\s+", " ", value.strip().replace("<", "").replace(">", ""))


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None


class ExpenseValidator:
    """
    Validates expense fields before they reach the record store.

    Used for creates and, on the merged record, for updates.
    """

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._settings = settings or get_settings().app
        self._clock = clock

    def _validate_schema(
        self,
        fields: Mapping[str, Any],
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: presence and format.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        description = fields.get("description")
        if description is None or not str(description).strip():
            issues.append(ValidationIssue(
                field="description",
                issue_type="missing",
                message="Description is required",
                severity="error",
            ))
        else:
            length = len(str(description).strip())
            if length < self._settings.min_description_length:
                issues.append(ValidationIssue(
                    field="description",
                    issue_type="too_short",
                    message=(
                        "Description must be at least "
                        f"{self._settings.min_description_length} characters long"
                    ),
                    severity="error",
                ))
            elif length > self._settings.max_description_length:
                issues.append(ValidationIssue(
                    field="description",
                    issue_type="too_long",
                    message=(
                        "Description is too long "
                        f"(max {self._settings.max_description_length} characters)"
                    ),
                    severity="error",
                ))

        raw_amount = fields.get("amount")
        amount = _to_decimal(raw_amount)
        if raw_amount is None or (isinstance(raw_amount, str) and not raw_amount.strip()):
            issues.append(ValidationIssue(
                field="amount",
                issue_type="missing",
                message="Amount is required",
                severity="error",
            ))
        elif amount is None or not amount.is_finite():
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_format",
                message="Amount must be a valid number",
                severity="error",
            ))
        elif amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be greater than zero",
                severity="error",
            ))
        elif amount.as_tuple().exponent < -2:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_format",
                message="Amount can have at most 2 decimal places",
                severity="error",
            ))

        if fields.get("expense_datetime") is None:
            issues.append(ValidationIssue(
                field="expense_datetime",
                issue_type="missing",
                message="Date is required",
                severity="error",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_semantic(
        self,
        fields: Mapping[str, Any],
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: ranges and dates.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        now = naive_local(self._clock())

        amount = _to_decimal(fields.get("amount"))
        max_amount = self._settings.max_expense_amount
        if amount is not None and amount > max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="too_large",
                message=f"Amount is too large (max ₹{max_amount:,})",
                severity="error",
            ))

        when = fields.get("expense_datetime")
        if isinstance(when, date) and not isinstance(when, datetime):
            when = datetime.combine(when, datetime.min.time())
        elif isinstance(when, datetime):
            when = naive_local(when)

        if isinstance(when, datetime):
            latest = now + timedelta(days=self._settings.future_date_tolerance_days)
            earliest = add_months(now, -12 * self._settings.max_expense_age_years, clamp=True)
            if when > latest:
                issues.append(ValidationIssue(
                    field="expense_datetime",
                    issue_type="future_date",
                    message="Date cannot be in the future",
                    severity="error",
                ))
            elif when < earliest:
                issues.append(ValidationIssue(
                    field="expense_datetime",
                    issue_type="too_old",
                    message=(
                        "Date cannot be older than "
                        f"{self._settings.max_expense_age_years} years"
                    ),
                    severity="error",
                ))

        # Very small amounts are usually typos
        if amount is not None and Decimal("0") < amount < Decimal("1"):
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount (₹{amount}) seems unusually low",
                severity="warning",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate(self, fields: Mapping[str, Any]) -> ValidationResult:
        """
        Run the two-stage pipeline.

        Args:
            fields: Expense fields (description, amount, expense_datetime, ...)

        Returns:
            ValidationResult with all issues found
        """
        all_issues = []

        schema_valid, schema_issues = self._validate_schema(fields)
        all_issues.extend(schema_issues)

        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(fields)
            all_issues.extend(semantic_issues)

        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
        )

    def ensure_valid(self, fields: Mapping[str, Any]) -> ValidationResult:
        """
        Validate and raise on errors.

        Raises:
            ExpenseValidationError: If any error-level issue was found
        """
        result = self.validate(fields)
        if not result.is_valid:
            raise ExpenseValidationError(result)
        return result

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """Short text suitable for showing next to the expense form."""
        if result.is_valid and not result.warnings:
            return "✅ Looks good!"

        lines = []
        errors = [i.message for i in result.issues if i.severity == "error"]
        if errors:
            lines.append("❌ Please fix the following:")
            lines.extend(f"   • {message}" for message in errors)

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Please verify the following:")
            lines.extend(f"   • {warning}" for warning in result.warnings)

        return "\n".join(lines)
