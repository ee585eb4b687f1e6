"""
Input Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Type checking and coercion through the pydantic input models
- Unknown fields are rejected (the input models forbid extras)
- Month and pagination formats

STAGE 2 - SEMANTIC VALIDATION:
- Business rules that need the store (ownership, parent shape, type
  agreement) live in the ledger components, which raise the specific
  error types

This module covers stage 1. Every failure becomes a ValidationError that
names the offending field.

IMPORTANT: Validation NEVER silently fixes issues.
Whitespace is stripped; nothing else is altered.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from envelope_budget.config import LedgerSettings, get_settings
from envelope_budget.errors import ValidationError
from envelope_budget.models.month import parse_month
from envelope_budget.models.validation import ValidationIssue


ModelT = TypeVar("ModelT", bound=BaseModel)

_ISSUE_TYPES = {
    "missing": "missing",
    "extra_forbidden": "unknown_field",
}


def _issues_from_pydantic(error: PydanticValidationError) -> list[ValidationIssue]:
    issues = []
    for detail in error.errors():
        field = ".".join(str(part) for part in detail.get("loc", ())) or "input"
        issue_type = _ISSUE_TYPES.get(detail.get("type", ""), "invalid_value")
        if issue_type == "unknown_field":
            message = f"'{field}' is not a field that can be set here"
        else:
            message = detail.get("msg", "Invalid value")
        issues.append(ValidationIssue(
            field=field,
            issue_type=issue_type,
            message=message,
            severity="error",
        ))
    return issues


class InputValidator:
    """
    Schema validation for engine inputs.

    Converts raw caller input (dicts, strings, numbers) into the typed
    input models and raises ValidationError on anything it can't accept.
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    def coerce(self, model_cls: Type[ModelT], data: Any) -> ModelT:
        """
        Build an input model, converting pydantic errors.

        Raises:
            ValidationError: With one issue per failing field
        """
        if isinstance(data, model_cls):
            return data
        if isinstance(data, BaseModel):
            data = data.model_dump(exclude_unset=True)
        if not isinstance(data, dict):
            raise ValidationError("fields", f"Expected a mapping of fields, got {type(data).__name__}")
        try:
            return model_cls.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError.from_issues(_issues_from_pydantic(e)) from e

    def month(self, value: Union[str, date], field: str = "month") -> str:
        """Normalize a month to YYYY-MM."""
        try:
            return parse_month(value)
        except ValueError as e:
            raise ValidationError(field, str(e)) from e

    def money(self, value: Any, field: str = "amount") -> Decimal:
        """
        Convert a money value to Decimal.

        Floats are converted through their string form so 0.1 stays 0.1.
        """
        if isinstance(value, bool):
            raise ValidationError(field, "Must be a number")
        try:
            amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as e:
            raise ValidationError(field, f"Not a valid amount: {value!r}") from e
        if not amount.is_finite():
            raise ValidationError(field, "Must be a finite number")
        return amount

    def non_negative_money(self, value: Any, field: str = "amount") -> Decimal:
        amount = self.money(value, field)
        if amount < 0:
            raise ValidationError(field, "Must be zero or greater")
        return amount

    def name(self, value: Any, field: str = "name", max_length: int = 100) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(field, "Must not be empty")
        value = value.strip()
        if len(value) > max_length:
            raise ValidationError(field, f"Must be at most {max_length} characters")
        return value

    def user_id(self, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError("user_id", "A user id is required")
        return value.strip()

    def page(self, page: int, page_size: Optional[int]) -> tuple[int, int]:
        """
        Check pagination arguments.

        Returns:
            (page, page_size) with the configured default filled in
        """
        if page_size is None:
            page_size = self._settings.default_page_size
        if not isinstance(page, int) or isinstance(page, bool) or page < 1:
            raise ValidationError("page", "Must be an integer of at least 1")
        if (
            not isinstance(page_size, int)
            or isinstance(page_size, bool)
            or page_size < 1
            or page_size > self._settings.max_page_size
        ):
            raise ValidationError(
                "page_size",
                f"Must be an integer between 1 and {self._settings.max_page_size}",
            )
        return page, page_size


def get_user_friendly_summary(error: ValidationError) -> str:
    """
    Generate a user-friendly summary of a validation failure.

    This is what we show to non-technical users.
    """
    lines = ["Some of the information you entered could not be accepted:"]
    for issue in error.issues:
        lines.append(f"   - {issue.field}: {issue.message}")
        if issue.suggested_fix:
            lines.append(f"     {issue.suggested_fix}")
    lines.append("")
    lines.append("Please fix the issues above before continuing.")
    return "\n".join(lines)
