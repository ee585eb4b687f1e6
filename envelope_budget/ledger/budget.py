"""
Budget Ledger

Per (user, category, month) the ledger keeps what was assigned and what was
spent. `assigned` is user input; `actual` is derived from expense
transactions and written only by the recompute pipeline.

DESIGN DECISION: Every write is a field-level upsert keyed on
(user_id, category_id, month). Setting `assigned` never rewrites `actual`
and never touches other categories, so concurrent edits of different
categories cannot lose each other's updates.

Parent categories hold no assignment of their own: their figures in the
budget view are the sums of their children.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional, Union

from envelope_budget.audit import AuditLogger, create_correlation_id
from envelope_budget.errors import ReferentialIntegrityError, ValidationError
from envelope_budget.ledger.categories import CategoryStore
from envelope_budget.ledger.propagation import (
    ZERO,
    Propagator,
    RecomputePlan,
    refresh_actual,
)
from envelope_budget.models.budget import BudgetCategoryView, BudgetRow
from envelope_budget.models.category import CategoryNode
from envelope_budget.models.month import month_bounds
from envelope_budget.models.transaction import TransactionType
from envelope_budget.services.storage import BudgetStore
from envelope_budget.validation import InputValidator


def _leaf_view(
    node: CategoryNode,
    assigned: dict[int, Decimal],
    spent: dict[int, Decimal],
    is_orphan: bool,
) -> BudgetCategoryView:
    category = node.category
    row_assigned = assigned.get(category.id, ZERO)
    actual = spent.get(category.id, ZERO)
    return BudgetCategoryView(
        category_id=category.id,
        name=category.name,
        type=category.type,
        parent_id=category.parent_id,
        assigned=row_assigned,
        actual=actual,
        remaining=row_assigned - actual,
        is_orphan=is_orphan,
    )


def _view(
    node: CategoryNode,
    assigned: dict[int, Decimal],
    spent: dict[int, Decimal],
    is_orphan: bool = False,
) -> BudgetCategoryView:
    """Build the view of a node; a node with children rolls them up."""
    if not node.children:
        return _leaf_view(node, assigned, spent, is_orphan)

    children = [_view(child, assigned, spent) for child in node.children]
    total_assigned = sum((c.assigned for c in children), ZERO)
    total_actual = sum((c.actual for c in children), ZERO)
    return BudgetCategoryView(
        category_id=node.category.id,
        name=node.category.name,
        type=node.category.type,
        parent_id=node.category.parent_id,
        assigned=total_assigned,
        actual=total_actual,
        remaining=total_assigned - total_actual,
        is_orphan=is_orphan,
        children=children,
    )


class BudgetLedger:
    """Assigned and actual amounts per category and month."""

    def __init__(
        self,
        store: BudgetStore,
        categories: CategoryStore,
        propagator: Propagator,
        audit: AuditLogger,
        validator: Optional[InputValidator] = None,
    ):
        self._store = store
        self._categories = categories
        self._propagator = propagator
        self._audit = audit
        self._validator = validator or InputValidator()

    async def get_budget(self, user_id: str, month: Union[str, date]) -> list[BudgetCategoryView]:
        """
        The budget screen for one month.

        Leaf actuals are computed from the month's expense transactions at
        read time, so the view is correct even when a cached actual is stale.
        Roots come first in tree order, orphaned categories last.
        """
        user_id = self._validator.user_id(user_id)
        month = self._validator.month(month)
        tree = await self._categories.list_categories(user_id)
        start, end = month_bounds(month)

        async with self._store.unit_of_work() as session:
            rows = await session.list_budget_rows(user_id, month=month)
            expenses = await session.find_transactions(
                user_id,
                on_or_after=start,
                before=end,
                type=TransactionType.EXPENSE,
            )

        assigned = {row.category_id: row.assigned for row in rows}
        spent: dict[int, Decimal] = {}
        for transaction in expenses:
            spent[transaction.category_id] = spent.get(transaction.category_id, ZERO) + transaction.amount

        views = [_view(node, assigned, spent) for node in tree.roots]
        views.extend(_view(node, assigned, spent, is_orphan=True) for node in tree.orphans)
        return views

    async def set_assigned(
        self,
        user_id: str,
        category_id: int,
        month: Union[str, date],
        value: Any,
    ) -> BudgetRow:
        """
        Set the amount assigned to a category for a month.

        Only `assigned` is written. Ready-to-Assign of the month is
        recalculated afterwards from committed state.

        Raises:
            ValidationError: Negative amount, bad month, or a category with
                             sub-categories
            ReferentialIntegrityError: Category missing or owned by another user
            PartialUpdateError: Saved, but Ready-to-Assign could not be refreshed
        """
        user_id = self._validator.user_id(user_id)
        month = self._validator.month(month)
        amount = self._validator.non_negative_money(value, "assigned")

        async with self._store.unit_of_work() as session:
            category = await session.get_category(category_id)
            if category is None or category.user_id != user_id:
                raise ReferentialIntegrityError(f"Category not found: {category_id}")
            categories = await session.list_categories(user_id)
            if any(c.parent_id == category.id for c in categories):
                raise ValidationError(
                    "category_id",
                    f"'{category.name}' has sub-categories; assign to those instead",
                )
            row = await session.upsert_budget(user_id, category_id, month, assigned=amount)

        correlation_id = create_correlation_id()
        await self._audit.log_budget_assigned(row, correlation_id)
        plan = RecomputePlan(user_id=user_id, months={month})
        return await self._propagator.run(plan, result=row, correlation_id=correlation_id)

    async def recompute_actual(
        self,
        user_id: str,
        category_id: int,
        month: Union[str, date],
    ) -> Decimal:
        """
        Rebuild the cached actual of one row from its transactions.

        Running it twice without intervening writes stores the same value.
        """
        month = self._validator.month(month)
        async with self._store.unit_of_work() as session:
            actual = await refresh_actual(session, user_id, category_id, month)
        if actual is None:
            raise ReferentialIntegrityError(f"Category not found: {category_id}")
        return actual

    async def get_row(
        self,
        user_id: str,
        category_id: int,
        month: Union[str, date],
    ) -> Optional[BudgetRow]:
        month = self._validator.month(month)
        async with self._store.unit_of_work() as session:
            return await session.get_budget_row(user_id, category_id, month)
