"""
Engine Error Hierarchy

DESIGN DECISION: Every failure the engine can report has its own type.
Callers branch on the type, users read `user_message`.

- Validation errors are specific: which field, and why.
- Integrity and storage errors are generic and suggest a retry.
- A committed write whose follow-up recomputes failed is reported as
  PartialUpdateError, never as success.

Storage-level errors (NotFoundError, ConflictError, StoreUnavailableError)
live next to the storage interface and share the BudgetError base.
"""

from typing import Any, Optional

from envelope_budget.models.validation import ValidationIssue


GENERIC_RETRY_MESSAGE = (
    "Something went wrong while saving your changes. Please try again."
)


class BudgetError(Exception):
    """Base exception for everything raised by the engine."""

    @property
    def user_message(self) -> str:
        return GENERIC_RETRY_MESSAGE


class ValidationError(BudgetError):
    """
    Input was rejected before anything was written.

    Carries one ValidationIssue per offending field so a form can point
    at each of them.
    """

    def __init__(
        self,
        field: str,
        message: str,
        issues: Optional[list[ValidationIssue]] = None,
    ):
        self.field = field
        self.message = message
        self.issues = issues or [
            ValidationIssue(
                field=field,
                issue_type="invalid_value",
                message=message,
                severity="error",
            )
        ]
        super().__init__(f"{field}: {message}")

    @classmethod
    def from_issues(cls, issues: list[ValidationIssue]) -> "ValidationError":
        first = issues[0]
        return cls(field=first.field, message=first.message, issues=issues)

    @property
    def user_message(self) -> str:
        return "; ".join(f"{issue.field}: {issue.message}" for issue in self.issues)


class CategoryTypeMismatchError(ValidationError):
    """A child category's type differs from its parent's type."""
    pass


class ReferentialIntegrityError(BudgetError):
    """A write referenced an account, category or parent that is missing or not owned by the user."""
    pass


class InvalidParentError(ReferentialIntegrityError):
    """The requested parent category does not exist (or belongs to someone else)."""
    pass


class AccountNotEmptyError(BudgetError):
    """The account still has transactions or sub-accounts."""

    @property
    def user_message(self) -> str:
        return (
            "This account still has transactions or sub-accounts. "
            "Move or delete them first."
        )


class CategoryInUseError(BudgetError):
    """The category still has children or transactions."""

    @property
    def user_message(self) -> str:
        return (
            "This category still has sub-categories or transactions. "
            "Move them to another category first."
        )


class StageFailure:
    """One recompute step that did not complete."""

    def __init__(self, stage: str, key: Any, error: Exception):
        self.stage = stage
        self.key = key
        self.error = error

    def __repr__(self) -> str:
        return f"StageFailure(stage={self.stage!r}, key={self.key!r}, error={self.error!r})"


class PartialUpdateError(BudgetError):
    """
    The primary write committed but at least one recompute stage failed.

    The affected cached figures have been marked stale. Retrying the whole
    operation (or BudgetEngine.reconcile) is safe because every recompute
    is idempotent.
    """

    def __init__(self, failures: list[StageFailure], result: Any = None):
        self.failures = failures
        self.result = result
        stages = ", ".join(sorted({f.stage for f in failures}))
        super().__init__(f"Write committed but recompute failed in: {stages}")

    @property
    def stage(self) -> str:
        """First stage that failed."""
        return self.failures[0].stage

    @property
    def failed_stages(self) -> list[str]:
        seen: list[str] = []
        for failure in self.failures:
            if failure.stage not in seen:
                seen.append(failure.stage)
        return seen

    @property
    def user_message(self) -> str:
        return (
            "Your change was saved, but some totals could not be refreshed "
            "and are marked as out of date. Please try again."
        )
