"""
Main Orchestrator for Envelope Budget

This module ties together all the components and exposes the engine's
functional API: accounts, categories, transactions, the monthly budget,
Ready-to-Assign and reports.

DESIGN DECISION: The store is constructed explicitly and injected into
every component. There is no process-wide client; two engines over two
stores never share state, and tests pass in doubles.

The orchestrator enforces the boundaries:
- Every mutation is followed by its recomputes
- A write whose recomputes failed is reported as PartialUpdateError
- Every step is audited
"""

from datetime import date
from decimal import Decimal
from typing import Any, Callable, Optional, Union

from envelope_budget.audit import AuditLogger, configure_logging, create_correlation_id
from envelope_budget.config import Settings, get_settings
from envelope_budget.ledger import (
    AccountLedger,
    BudgetLedger,
    CategoryStore,
    Propagator,
    ReadyToAssignCalculator,
    TransactionJournal,
)
from envelope_budget.models import (
    Account,
    AccountNode,
    BudgetCategoryView,
    BudgetRow,
    BudgetSummary,
    Category,
    CategoryTree,
    CategoryType,
    Transaction,
    TransactionPage,
    TransactionType,
)
from envelope_budget.queries import ReportQueries
from envelope_budget.services.storage import (
    AuditStorageInterface,
    BudgetStore,
    InMemoryBudgetStore,
    SQLiteBudgetStore,
)
from envelope_budget.validation import InputValidator


MonthLike = Union[str, date]


class BudgetEngine:
    """
    Facade over the ledger components.

    Methods map one-to-one onto the engine's operations. Each one is a
    coroutine and each mutation runs its primary write in one unit of work.
    """

    def __init__(
        self,
        store: BudgetStore,
        settings: Optional[Settings] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        settings = settings or get_settings()
        ledger_settings = settings.ledger
        audit_storage = store if isinstance(store, AuditStorageInterface) else None

        self._store = store
        self._audit = audit_logger or AuditLogger(audit_storage)
        validator = InputValidator(ledger_settings)

        self._propagator = Propagator(store, self._audit)
        self.categories = CategoryStore(
            store, self._propagator, self._audit, ledger_settings, validator
        )
        self.accounts = AccountLedger(
            store, self.categories, self._propagator, self._audit,
            ledger_settings, validator, clock,
        )
        self.transactions = TransactionJournal(
            store, self._propagator, self._audit, ledger_settings, validator
        )
        self.budget = BudgetLedger(
            store, self.categories, self._propagator, self._audit, validator
        )
        self.ready_to_assign = ReadyToAssignCalculator(store, validator)
        self.reports = ReportQueries(store, validator)
        self._validator = validator

    @property
    def store(self) -> BudgetStore:
        return self._store

    @property
    def audit_logger(self) -> AuditLogger:
        return self._audit

    async def close(self) -> None:
        await self._store.close()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def create_account(
        self,
        user_id: str,
        name: str,
        type: str,
        balance: Any = Decimal("0"),
        parent_id: Optional[int] = None,
    ) -> Account:
        return await self.accounts.create_account(user_id, name, type, balance, parent_id)

    async def get_account(self, account_id: int) -> Account:
        return await self.accounts.get_account(account_id)

    async def list_accounts(self, user_id: str) -> list[Account]:
        return await self.accounts.list_accounts(user_id)

    async def account_tree(self, user_id: str) -> list[AccountNode]:
        return await self.accounts.account_tree(user_id)

    async def update_account(self, account_id: int, fields: dict[str, Any]) -> Account:
        return await self.accounts.update_account(account_id, fields)

    async def delete_account(self, account_id: int) -> None:
        await self.accounts.delete_account(account_id)

    async def recompute_balance(self, account_id: int) -> Decimal:
        return await self.accounts.recompute_balance(account_id)

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    async def create_category(
        self,
        user_id: str,
        name: str,
        parent_id: Optional[int] = None,
        type: Union[CategoryType, str] = CategoryType.EXPENSE,
    ) -> Category:
        return await self.categories.create_category(user_id, name, parent_id, type)

    async def list_categories(self, user_id: str) -> CategoryTree:
        return await self.categories.list_categories(user_id)

    async def update_category(self, category_id: int, fields: dict[str, Any]) -> Category:
        return await self.categories.update_category(category_id, fields)

    async def delete_category(self, category_id: int, reassign_to: Optional[int] = None) -> None:
        await self.categories.delete_category(category_id, reassign_to)

    async def reorder_categories(self, user_id: str, ordered_ids: list[int]) -> CategoryTree:
        return await self.categories.reorder_categories(user_id, ordered_ids)

    async def ensure_default_categories(self, user_id: str) -> list[str]:
        return await self.categories.ensure_default_categories(user_id)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def create_transaction(
        self,
        user_id: str,
        account_id: int,
        category_id: int,
        date: Union[date, str],
        description: str,
        amount: Any,
        type: Union[TransactionType, str],
    ) -> Transaction:
        return await self.transactions.create_transaction(
            user_id, account_id, category_id, date, description, amount, type
        )

    async def get_transaction(self, transaction_id: int) -> Transaction:
        return await self.transactions.get_transaction(transaction_id)

    async def list_transactions(
        self,
        user_id: str,
        page: int = 1,
        page_size: Optional[int] = None,
        month: Optional[MonthLike] = None,
        account_id: Optional[int] = None,
        category_id: Optional[int] = None,
        type: Optional[Union[TransactionType, str]] = None,
    ) -> TransactionPage:
        return await self.transactions.list_transactions(
            user_id,
            page=page,
            page_size=page_size,
            month=month,
            account_id=account_id,
            category_id=category_id,
            type=type,
        )

    async def update_transaction(self, transaction_id: int, fields: dict[str, Any]) -> Transaction:
        return await self.transactions.update_transaction(transaction_id, fields)

    async def delete_transaction(self, transaction_id: int) -> None:
        await self.transactions.delete_transaction(transaction_id)

    # ------------------------------------------------------------------
    # Budget and Ready-to-Assign
    # ------------------------------------------------------------------

    async def get_budget(self, user_id: str, month: MonthLike) -> list[BudgetCategoryView]:
        return await self.budget.get_budget(user_id, month)

    async def set_assigned(
        self,
        user_id: str,
        category_id: int,
        month: MonthLike,
        amount: Any,
    ) -> BudgetRow:
        return await self.budget.set_assigned(user_id, category_id, month, amount)

    async def recompute_actual(self, user_id: str, category_id: int, month: MonthLike) -> Decimal:
        return await self.budget.recompute_actual(user_id, category_id, month)

    async def get_ready_to_assign(self, user_id: str, month: MonthLike) -> Decimal:
        return await self.ready_to_assign.get(user_id, month)

    async def recalculate_ready_to_assign(self, user_id: str, month: MonthLike) -> Decimal:
        return await self.ready_to_assign.recalculate(user_id, month)

    async def reconcile(self, user_id: str, month: MonthLike) -> Decimal:
        """
        Rebuild every derived value a month depends on.

        This is the retry path after a PartialUpdateError: balances of all
        the user's accounts, the actual of every category in the month and
        the month's Ready-to-Assign are recomputed from scratch.

        Returns:
            The month's Ready-to-Assign
        """
        user_id = self._validator.user_id(user_id)
        month = self._validator.month(month)
        correlation_id = create_correlation_id()
        plan = await self._propagator.plan_for_month(user_id, month)
        await self._propagator.run(plan, correlation_id=correlation_id)
        await self._audit.log_month_reconciled(user_id, month, correlation_id)
        return await self.ready_to_assign.get(user_id, month)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def get_budget_summary(self, user_id: str, month: MonthLike) -> BudgetSummary:
        return await self.reports.budget_summary(user_id, month)

    async def net_worth(self, user_id: str) -> Decimal:
        return await self.reports.net_worth(user_id)

    async def spending_by_category(self, user_id: str, month: MonthLike) -> dict[str, Decimal]:
        return await self.reports.spending_by_category(user_id, month)

    async def earliest_month(self, user_id: str) -> Optional[str]:
        return await self.reports.earliest_month(user_id)


def create_store(settings: Optional[Settings] = None) -> BudgetStore:
    """Build the store selected by BUDGET_STORE_BACKEND."""
    settings = settings or get_settings()
    store_settings = settings.store
    if store_settings.backend == "sqlite":
        return SQLiteBudgetStore(store_settings)
    return InMemoryBudgetStore()


def create_engine(
    settings: Optional[Settings] = None,
    store: Optional[BudgetStore] = None,
    clock: Optional[Callable[[], date]] = None,
) -> BudgetEngine:
    """
    Factory function to create a fully wired engine.

    Args:
        settings: Settings to use (defaults to get_settings())
        store: Store to use; built from settings when None
        clock: Returns "today" (used to date opening-balance transactions)

    Returns:
        BudgetEngine ready for use
    """
    settings = settings or get_settings()
    configure_logging(settings.logging)
    store = store or create_store(settings)
    return BudgetEngine(store, settings=settings, clock=clock)
