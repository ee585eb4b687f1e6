"""
Ready-to-Assign Calculator

For a user and month:

    amount = sum(income transactions in month) - sum(assigned, all categories, month)

The result is cached per (user, month). Reads never return a stale or
missing cache entry: the value is recomputed and stored first.
"""

from datetime import date
from decimal import Decimal
from typing import Optional, Union

from envelope_budget.ledger.propagation import refresh_ready_to_assign
from envelope_budget.models.budget import ReadyToAssign
from envelope_budget.services.storage import BudgetStore
from envelope_budget.validation import InputValidator


class ReadyToAssignCalculator:
    """Derives and caches the unassigned income pool of each month."""

    def __init__(
        self,
        store: BudgetStore,
        validator: Optional[InputValidator] = None,
    ):
        self._store = store
        self._validator = validator or InputValidator()

    async def recalculate(self, user_id: str, month: Union[str, date]) -> Decimal:
        """Recompute from committed state and overwrite the cache."""
        user_id = self._validator.user_id(user_id)
        month = self._validator.month(month)
        async with self._store.unit_of_work() as session:
            return await refresh_ready_to_assign(session, user_id, month)

    async def get(self, user_id: str, month: Union[str, date]) -> Decimal:
        """
        Cached amount for the month.

        A missing or stale entry is computed and persisted before returning.
        """
        user_id = self._validator.user_id(user_id)
        month = self._validator.month(month)
        async with self._store.unit_of_work() as session:
            cached = await session.get_ready_to_assign(user_id, month)
            if cached is not None and not cached.stale:
                return cached.amount
            return await refresh_ready_to_assign(session, user_id, month)

    async def get_row(self, user_id: str, month: Union[str, date]) -> Optional[ReadyToAssign]:
        """The cache entry as stored, stale flag included. No recompute."""
        month = self._validator.month(month)
        async with self._store.unit_of_work() as session:
            return await session.get_ready_to_assign(user_id, month)
