"""
In-Memory Storage Implementation

Used by the test suite and by callers that embed the engine without
persistence.

Each unit of work runs on a copy of the tables and swaps the copy in when
the block exits normally, so an exception anywhere inside the block leaves
the committed state untouched. Units are serialized by an asyncio.Lock.

TRADEOFFS:
- Nothing survives the process (by design of this backend)
- Copying the table dicts is O(rows) per unit; fine for personal budgets
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import AsyncIterator, Optional
from uuid import UUID

from envelope_budget.models.account import Account
from envelope_budget.models.audit import AuditEvent
from envelope_budget.models.budget import BudgetRow, ReadyToAssign
from envelope_budget.models.category import Category
from envelope_budget.models.transaction import Transaction, TransactionType
from envelope_budget.services.storage.interface import (
    AuditStorageInterface,
    BudgetStore,
    NotFoundError,
    StoreSession,
)


class _Tables:
    """The committed state of the store."""

    def __init__(self):
        self.accounts: dict[int, Account] = {}
        self.categories: dict[int, Category] = {}
        self.transactions: dict[int, Transaction] = {}
        self.budgets: dict[tuple[str, int, str], BudgetRow] = {}
        self.ready_to_assign: dict[tuple[str, str], ReadyToAssign] = {}
        self.sequences: dict[str, int] = {
            "accounts": 0,
            "categories": 0,
            "transactions": 0,
            "budgets": 0,
        }

    def copy(self) -> "_Tables":
        clone = _Tables()
        clone.accounts = dict(self.accounts)
        clone.categories = dict(self.categories)
        clone.transactions = dict(self.transactions)
        clone.budgets = dict(self.budgets)
        clone.ready_to_assign = dict(self.ready_to_assign)
        clone.sequences = dict(self.sequences)
        return clone

    def next_id(self, table: str) -> int:
        self.sequences[table] += 1
        return self.sequences[table]


class InMemorySession(StoreSession):
    """
    Session over a working copy of the tables.

    Stored models are replaced on every write and copied on every read,
    so nothing outside the session can mutate committed rows.
    """

    def __init__(self, tables: _Tables):
        self._tables = tables

    # Accounts

    async def add_account(self, account: Account) -> Account:
        stored = account.model_copy(update={"id": self._tables.next_id("accounts")})
        self._tables.accounts[stored.id] = stored
        return stored.model_copy()

    async def get_account(self, account_id: int) -> Optional[Account]:
        account = self._tables.accounts.get(account_id)
        return account.model_copy() if account else None

    async def list_accounts(self, user_id: str) -> list[Account]:
        return [
            account.model_copy()
            for account_id, account in sorted(self._tables.accounts.items())
            if account.user_id == user_id
        ]

    async def save_account(self, account: Account) -> Account:
        if account.id not in self._tables.accounts:
            raise NotFoundError(f"Account not found: {account.id}")
        self._tables.accounts[account.id] = account.model_copy()
        return account.model_copy()

    async def set_account_balance(
        self,
        account_id: int,
        balance: Decimal,
        stale: bool = False,
    ) -> None:
        account = self._tables.accounts.get(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")
        self._tables.accounts[account_id] = account.model_copy(
            update={"balance": balance, "balance_stale": stale}
        )

    async def mark_account_stale(self, account_id: int) -> None:
        account = self._tables.accounts.get(account_id)
        if account is not None:
            self._tables.accounts[account_id] = account.model_copy(
                update={"balance_stale": True}
            )

    async def remove_account(self, account_id: int) -> bool:
        return self._tables.accounts.pop(account_id, None) is not None

    # Categories

    async def add_category(self, category: Category) -> Category:
        stored = category.model_copy(update={"id": self._tables.next_id("categories")})
        self._tables.categories[stored.id] = stored
        return stored.model_copy()

    async def get_category(self, category_id: int) -> Optional[Category]:
        category = self._tables.categories.get(category_id)
        return category.model_copy() if category else None

    async def list_categories(self, user_id: str) -> list[Category]:
        return [
            category.model_copy()
            for category_id, category in sorted(self._tables.categories.items())
            if category.user_id == user_id
        ]

    async def save_category(self, category: Category) -> Category:
        if category.id not in self._tables.categories:
            raise NotFoundError(f"Category not found: {category.id}")
        self._tables.categories[category.id] = category.model_copy()
        return category.model_copy()

    async def remove_category(self, category_id: int) -> bool:
        return self._tables.categories.pop(category_id, None) is not None

    # Transactions

    async def add_transaction(self, transaction: Transaction) -> Transaction:
        stored = transaction.model_copy(update={"id": self._tables.next_id("transactions")})
        self._tables.transactions[stored.id] = stored
        return stored.model_copy()

    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        transaction = self._tables.transactions.get(transaction_id)
        return transaction.model_copy() if transaction else None

    async def save_transaction(self, transaction: Transaction) -> Transaction:
        if transaction.id not in self._tables.transactions:
            raise NotFoundError(f"Transaction not found: {transaction.id}")
        self._tables.transactions[transaction.id] = transaction.model_copy()
        return transaction.model_copy()

    async def remove_transaction(self, transaction_id: int) -> bool:
        return self._tables.transactions.pop(transaction_id, None) is not None

    async def find_transactions(
        self,
        user_id: str,
        account_id: Optional[int] = None,
        category_id: Optional[int] = None,
        on_or_after: Optional[date] = None,
        before: Optional[date] = None,
        type: Optional[TransactionType] = None,
    ) -> list[Transaction]:
        matches = []
        for transaction_id, transaction in sorted(self._tables.transactions.items()):
            if transaction.user_id != user_id:
                continue
            if account_id is not None and transaction.account_id != account_id:
                continue
            if category_id is not None and transaction.category_id != category_id:
                continue
            if on_or_after is not None and transaction.date < on_or_after:
                continue
            if before is not None and transaction.date >= before:
                continue
            if type is not None and transaction.type != type:
                continue
            matches.append(transaction.model_copy())
        return matches

    # Budget rows

    async def upsert_budget(
        self,
        user_id: str,
        category_id: int,
        month: str,
        assigned: Optional[Decimal] = None,
        actual: Optional[Decimal] = None,
        stale: Optional[bool] = None,
    ) -> BudgetRow:
        key = (user_id, category_id, month)
        row = self._tables.budgets.get(key)
        if row is None:
            row = BudgetRow(
                id=self._tables.next_id("budgets"),
                user_id=user_id,
                category_id=category_id,
                month=month,
            )

        changes = {}
        if assigned is not None:
            changes["assigned"] = assigned
        if actual is not None:
            changes["actual"] = actual
        if stale is not None:
            changes["stale"] = stale

        row = row.model_copy(update=changes)
        self._tables.budgets[key] = row
        return row.model_copy()

    async def get_budget_row(
        self,
        user_id: str,
        category_id: int,
        month: str,
    ) -> Optional[BudgetRow]:
        row = self._tables.budgets.get((user_id, category_id, month))
        return row.model_copy() if row else None

    async def list_budget_rows(
        self,
        user_id: str,
        month: Optional[str] = None,
        category_id: Optional[int] = None,
    ) -> list[BudgetRow]:
        rows = [
            row.model_copy()
            for row in self._tables.budgets.values()
            if row.user_id == user_id
            and (month is None or row.month == month)
            and (category_id is None or row.category_id == category_id)
        ]
        rows.sort(key=lambda r: r.id)
        return rows

    async def remove_budget_rows(self, user_id: str, category_id: int) -> list[str]:
        keys = [
            key for key in self._tables.budgets
            if key[0] == user_id and key[1] == category_id
        ]
        for key in keys:
            del self._tables.budgets[key]
        return sorted(key[2] for key in keys)

    # Ready to assign

    async def upsert_ready_to_assign(
        self,
        user_id: str,
        month: str,
        amount: Decimal,
        stale: bool = False,
    ) -> ReadyToAssign:
        row = ReadyToAssign(user_id=user_id, month=month, amount=amount, stale=stale)
        self._tables.ready_to_assign[(user_id, month)] = row
        return row.model_copy()

    async def get_ready_to_assign(self, user_id: str, month: str) -> Optional[ReadyToAssign]:
        row = self._tables.ready_to_assign.get((user_id, month))
        return row.model_copy() if row else None

    async def mark_ready_to_assign_stale(self, user_id: str, month: str) -> None:
        row = self._tables.ready_to_assign.get((user_id, month))
        if row is None:
            row = ReadyToAssign(user_id=user_id, month=month, amount=Decimal("0"))
        self._tables.ready_to_assign[(user_id, month)] = row.model_copy(update={"stale": True})


class InMemoryBudgetStore(BudgetStore, AuditStorageInterface):
    """
    In-memory implementation of the budget store and the audit log.

    Audit events are kept outside the transactional tables: they are
    appended even when the unit of work that produced them rolls back.
    """

    def __init__(self):
        self._tables = _Tables()
        self._lock = asyncio.Lock()
        self._events: list[AuditEvent] = []

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[StoreSession]:
        async with self._lock:
            working = self._tables.copy()
            yield InMemorySession(working)
            # Only reached when the block exited without an exception
            self._tables = working

    # Audit log

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
