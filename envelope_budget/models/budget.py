"""
Budget Models

DESIGN DECISION: Budget.actual and ReadyToAssign.amount are MATERIALIZED
VIEWS. Both can be rebuilt from transactions and assignments at any time;
they are stored only for fast reads and are written by exactly one
recompute function each.

- BudgetRow: one per (user, category, month); `assigned` is user input,
  `actual` is derived.
- ReadyToAssign: one per (user, month); entirely derived.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from envelope_budget.models.category import CategoryType
from envelope_budget.models.month import Month


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BudgetRow(BaseModel):
    """Assigned and actual amounts of one category in one month."""
    
    id: Optional[int] = None
    user_id: str
    category_id: int
    month: Month
    assigned: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Amount the user budgeted for this category and month"
    )
    actual: Decimal = Field(
        default=Decimal("0"),
        description="Sum of expense transactions (cached, always re-derivable)"
    )
    stale: bool = Field(
        default=False,
        description="Set when the actual recompute failed after a committed write"
    )
    
    @property
    def remaining(self) -> Decimal:
        return self.assigned - self.actual
    
    @property
    def key(self) -> tuple[str, int, str]:
        return (self.user_id, self.category_id, self.month)


class ReadyToAssign(BaseModel):
    """Unassigned income pool of one user in one month."""
    
    user_id: str
    month: Month
    amount: Decimal = Field(
        ...,
        description="Income of the month minus everything assigned in the month"
    )
    stale: bool = False
    computed_at: datetime = Field(
        default_factory=_utcnow
    )


class BudgetCategoryView(BaseModel):
    """
    One line of the monthly budget screen.
    
    For a child category the figures are its own. For a root category they
    are the sums of its children; roots hold no assignment of their own.
    """
    
    category_id: int
    name: str
    type: CategoryType
    parent_id: Optional[int] = None
    assigned: Decimal = Decimal("0")
    actual: Decimal = Decimal("0")
    remaining: Decimal = Decimal("0")
    is_orphan: bool = False
    children: list["BudgetCategoryView"] = Field(default_factory=list)


class BudgetSummary(BaseModel):
    """Income and expense totals of one month."""
    
    month: Month
    income: Decimal = Decimal("0")
    expenses: Decimal = Decimal("0")
    
    @property
    def net(self) -> Decimal:
        return self.income - self.expenses
