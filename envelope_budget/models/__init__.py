"""
Data Models Package

This package contains all Pydantic models used by the budget engine.
All data flowing between the ledger components and the store conforms
to these schemas.
"""

from envelope_budget.models.account import (
    Account,
    AccountCreate,
    AccountNode,
    AccountUpdate,
)
from envelope_budget.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from envelope_budget.models.budget import (
    BudgetCategoryView,
    BudgetRow,
    BudgetSummary,
    ReadyToAssign,
)
from envelope_budget.models.category import (
    Category,
    CategoryNode,
    CategoryTree,
    CategoryType,
    CategoryUpdate,
)
from envelope_budget.models.month import (
    Month,
    month_bounds,
    month_of,
    parse_month,
)
from envelope_budget.models.transaction import (
    Transaction,
    TransactionCreate,
    TransactionPage,
    TransactionType,
    TransactionUpdate,
)
from envelope_budget.models.validation import ValidationIssue

__all__ = [
    # Account models
    "Account",
    "AccountCreate",
    "AccountNode",
    "AccountUpdate",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Budget models
    "BudgetCategoryView",
    "BudgetRow",
    "BudgetSummary",
    "ReadyToAssign",
    # Category models
    "Category",
    "CategoryNode",
    "CategoryTree",
    "CategoryType",
    "CategoryUpdate",
    # Months
    "Month",
    "month_bounds",
    "month_of",
    "parse_month",
    # Transaction models
    "Transaction",
    "TransactionCreate",
    "TransactionPage",
    "TransactionType",
    "TransactionUpdate",
    # Validation
    "ValidationIssue",
]
