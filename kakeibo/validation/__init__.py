"""Input validation package."""

from kakeibo.validation.validator import (
    ExpenseValidationError,
    ExpenseValidator,
    sanitize_text,
)

__all__ = [
    "ExpenseValidationError",
    "ExpenseValidator",
    "sanitize_text",
]
