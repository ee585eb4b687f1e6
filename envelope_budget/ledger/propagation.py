"""
Recompute Pipeline

DESIGN DECISION: Account.balance, BudgetRow.actual and ReadyToAssign.amount
are materialized views. Each one is written by exactly one function in this
module, and every mutation site goes through them:

    transaction write -> balance -> actual -> ready_to_assign

Every refresh re-reads the full committed state for its key and overwrites
the cached field. Running one twice is harmless, so a failed pipeline can
simply be run again.

FAILURE HANDLING:
- Each key is refreshed in its own unit of work
- A failing key does not stop the others
- The failed key's cached value is marked stale and an audit event is written
- After all stages ran, PartialUpdateError is raised with every failure
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

import structlog

from envelope_budget.audit import AuditLogger
from envelope_budget.errors import PartialUpdateError, StageFailure
from envelope_budget.models.category import CategoryType
from envelope_budget.models.month import month_bounds
from envelope_budget.models.transaction import Transaction, TransactionType
from envelope_budget.services.storage import BudgetStore, StorageError, StoreSession


logger = structlog.get_logger(__name__)

ZERO = Decimal("0")

STAGE_BALANCE = "balance"
STAGE_ACTUAL = "actual"
STAGE_READY_TO_ASSIGN = "ready_to_assign"
STAGES = (STAGE_BALANCE, STAGE_ACTUAL, STAGE_READY_TO_ASSIGN)


# ----------------------------------------------------------------------
# The single recompute functions
# ----------------------------------------------------------------------

async def compute_balance(session: StoreSession, user_id: str, account_id: int) -> Decimal:
    """Signed sum of every transaction on the account."""
    transactions = await session.find_transactions(user_id, account_id=account_id)
    return sum((t.signed_amount for t in transactions), ZERO)


async def compute_actual(
    session: StoreSession,
    user_id: str,
    category_id: int,
    month: str,
) -> Decimal:
    """Sum of the category's expense transactions within the month."""
    start, end = month_bounds(month)
    expenses = await session.find_transactions(
        user_id,
        category_id=category_id,
        on_or_after=start,
        before=end,
        type=TransactionType.EXPENSE,
    )
    return sum((t.amount for t in expenses), ZERO)


async def compute_ready_to_assign(session: StoreSession, user_id: str, month: str) -> Decimal:
    """Income transactions of the month minus everything assigned in the month."""
    start, end = month_bounds(month)
    income = await session.find_transactions(
        user_id,
        on_or_after=start,
        before=end,
        type=TransactionType.INCOME,
    )
    rows = await session.list_budget_rows(user_id, month=month)
    total_income = sum((t.amount for t in income), ZERO)
    total_assigned = sum((row.assigned for row in rows), ZERO)
    return total_income - total_assigned


async def refresh_balance(session: StoreSession, account_id: int) -> Optional[Decimal]:
    """
    Recompute and store an account balance.

    Returns None when the account no longer exists.
    """
    account = await session.get_account(account_id)
    if account is None:
        return None
    balance = await compute_balance(session, account.user_id, account_id)
    await session.set_account_balance(account_id, balance, stale=False)
    return balance


async def refresh_actual(
    session: StoreSession,
    user_id: str,
    category_id: int,
    month: str,
) -> Optional[Decimal]:
    """
    Recompute and store the actual of one budget row.

    Only `actual` and `stale` are written; `assigned` keeps its value.
    Returns None when the category no longer exists.
    """
    category = await session.get_category(category_id)
    if category is None or category.user_id != user_id:
        return None
    actual = await compute_actual(session, user_id, category_id, month)
    await session.upsert_budget(user_id, category_id, month, actual=actual, stale=False)
    return actual


async def refresh_ready_to_assign(session: StoreSession, user_id: str, month: str) -> Decimal:
    amount = await compute_ready_to_assign(session, user_id, month)
    await session.upsert_ready_to_assign(user_id, month, amount, stale=False)
    return amount


# ----------------------------------------------------------------------
# Plans
# ----------------------------------------------------------------------

@dataclass
class RecomputePlan:
    """
    Every cached value a committed write has invalidated.

    Stages run in the order balance, actual, ready_to_assign. Keys are
    processed in sorted order so runs are reproducible.
    """

    user_id: str
    accounts: set[int] = field(default_factory=set)
    actuals: set[tuple[int, str]] = field(default_factory=set)
    months: set[str] = field(default_factory=set)

    def add_transaction(
        self,
        transaction: Transaction,
        category_type: Optional[CategoryType] = None,
    ) -> None:
        """
        Register the (account, category, month) triple of a transaction state.

        Ready-to-Assign only moves with income, so the month is added when
        the transaction is income or sits in an income category.
        """
        self.accounts.add(transaction.account_id)
        self.actuals.add((transaction.category_id, transaction.month))
        if (
            transaction.type == TransactionType.INCOME
            or category_type == CategoryType.INCOME
        ):
            self.months.add(transaction.month)

    def is_empty(self) -> bool:
        return not (self.accounts or self.actuals or self.months)


class Propagator:
    """
    Runs recompute plans against the store.

    Shared by every ledger component so that there is one place where
    derived values are refreshed, marked stale and reported.
    """

    def __init__(self, store: BudgetStore, audit: AuditLogger):
        self._store = store
        self._audit = audit

    async def run(
        self,
        plan: RecomputePlan,
        result: Any = None,
        correlation_id: Optional[UUID] = None,
    ) -> Any:
        """
        Run every stage of a plan.

        Args:
            plan: What to recompute
            result: Outcome of the primary write, returned on success and
                    attached to PartialUpdateError otherwise
            correlation_id: Ties audit events to the triggering write

        Raises:
            PartialUpdateError: If any key of any stage failed
        """
        failures: list[StageFailure] = []
        user_id = plan.user_id

        for account_id in sorted(plan.accounts):
            await self._run_key(
                user_id,
                STAGE_BALANCE,
                account_id,
                lambda s, a=account_id: refresh_balance(s, a),
                lambda s, a=account_id: s.mark_account_stale(a),
                failures,
                correlation_id,
            )

        for category_id, month in sorted(plan.actuals):
            await self._run_key(
                user_id,
                STAGE_ACTUAL,
                (category_id, month),
                lambda s, c=category_id, m=month: refresh_actual(s, user_id, c, m),
                lambda s, c=category_id, m=month: s.upsert_budget(user_id, c, m, stale=True),
                failures,
                correlation_id,
            )

        for month in sorted(plan.months):
            await self._run_key(
                user_id,
                STAGE_READY_TO_ASSIGN,
                month,
                lambda s, m=month: refresh_ready_to_assign(s, user_id, m),
                lambda s, m=month: s.mark_ready_to_assign_stale(user_id, m),
                failures,
                correlation_id,
            )

        if failures:
            raise PartialUpdateError(failures, result)
        return result

    async def _run_key(
        self,
        user_id: str,
        stage: str,
        key: Any,
        refresh: Callable[[StoreSession], Awaitable[Any]],
        mark_stale: Callable[[StoreSession], Awaitable[Any]],
        failures: list[StageFailure],
        correlation_id: Optional[UUID],
    ) -> None:
        try:
            async with self._store.unit_of_work() as session:
                await refresh(session)
            return
        except StorageError as e:
            failures.append(StageFailure(stage, key, e))
            logger.error(
                "recompute_failed",
                stage=stage,
                key=str(key),
                user_id=user_id,
                error=str(e),
            )
            await self._audit.log_recompute_failed(user_id, stage, key, e, correlation_id)

        try:
            async with self._store.unit_of_work() as session:
                await mark_stale(session)
        except StorageError as e:
            # The failure is already recorded and will be raised
            logger.error(
                "mark_stale_failed",
                stage=stage,
                key=str(key),
                user_id=user_id,
                error=str(e),
            )
            return
        await self._audit.log_value_marked_stale(user_id, stage, key, correlation_id)

    async def plan_for_month(self, user_id: str, month: str) -> RecomputePlan:
        """
        Plan that rebuilds everything a user's month depends on.

        Covers every account balance, the actual of every category in the
        month, and the month's Ready-to-Assign.
        """
        async with self._store.unit_of_work() as session:
            accounts = await session.list_accounts(user_id)
            categories = await session.list_categories(user_id)
        return RecomputePlan(
            user_id=user_id,
            accounts={a.id for a in accounts},
            actuals={(c.id, month) for c in categories},
            months={month},
        )
