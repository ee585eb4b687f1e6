"""
Report Queries

DESIGN DECISION: Reports are DETERMINISTIC and read-only.
Every figure is derived from stored transactions and budget rows at the
time of the call. Nothing here writes to the store or reads a cached
derived value, so a report is correct even while a cache entry is stale.
"""

from datetime import date
from decimal import Decimal
from typing import Optional, Union

from envelope_budget.ledger.propagation import ZERO
from envelope_budget.models.budget import BudgetSummary
from envelope_budget.models.month import month_bounds, month_of
from envelope_budget.models.transaction import TransactionType
from envelope_budget.services.storage import BudgetStore
from envelope_budget.validation import InputValidator


class ReportQueries:
    """
    Dashboard figures for one user.

    GUARANTEES:
    - Only returns real data from storage
    - Never estimates
    - Empty results are zeros or None, never errors
    """

    def __init__(self, store: BudgetStore, validator: Optional[InputValidator] = None):
        self._store = store
        self._validator = validator or InputValidator()

    async def budget_summary(self, user_id: str, month: Union[str, date]) -> BudgetSummary:
        """Total income and total expenses of a month."""
        user_id = self._validator.user_id(user_id)
        month = self._validator.month(month)
        start, end = month_bounds(month)
        async with self._store.unit_of_work() as session:
            transactions = await session.find_transactions(user_id, on_or_after=start, before=end)

        income = sum((t.amount for t in transactions if t.type == TransactionType.INCOME), ZERO)
        expenses = sum((t.amount for t in transactions if t.type == TransactionType.EXPENSE), ZERO)
        return BudgetSummary(month=month, income=income, expenses=expenses)

    async def net_worth(self, user_id: str) -> Decimal:
        """Sum of every account balance, derived from the transactions themselves."""
        user_id = self._validator.user_id(user_id)
        async with self._store.unit_of_work() as session:
            transactions = await session.find_transactions(user_id)
        return sum((t.signed_amount for t in transactions), ZERO)

    async def spending_by_category(self, user_id: str, month: Union[str, date]) -> dict[str, Decimal]:
        """
        Expenses of a month grouped by root category.

        Children are folded into their root. Largest amount first; ties by
        name.
        """
        user_id = self._validator.user_id(user_id)
        month = self._validator.month(month)
        start, end = month_bounds(month)
        async with self._store.unit_of_work() as session:
            categories = {c.id: c for c in await session.list_categories(user_id)}
            expenses = await session.find_transactions(
                user_id,
                on_or_after=start,
                before=end,
                type=TransactionType.EXPENSE,
            )

        groups: dict[str, Decimal] = {}
        for transaction in expenses:
            category = categories.get(transaction.category_id)
            if category is None:
                key = "Uncategorized"
            elif category.parent_id is not None and category.parent_id in categories:
                key = categories[category.parent_id].name
            else:
                key = category.name
            groups[key] = groups.get(key, ZERO) + transaction.amount

        return dict(sorted(groups.items(), key=lambda item: (-item[1], item[0])))

    async def earliest_month(self, user_id: str) -> Optional[str]:
        """
        First month that has a transaction or a budget row.

        Used to bound month navigation. None for a user with no data.
        """
        user_id = self._validator.user_id(user_id)
        async with self._store.unit_of_work() as session:
            transactions = await session.find_transactions(user_id)
            rows = await session.list_budget_rows(user_id)

        months = [month_of(t.date) for t in transactions]
        months.extend(row.month for row in rows)
        return min(months) if months else None
