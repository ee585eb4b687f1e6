"""
Abstract Storage Interface

DESIGN DECISION: The engine never talks to a database directly. It is
handed a BudgetStore and does all reads and writes through the session of
a unit of work. This allows us to:
1. Swap the in-memory store for SQLite (or anything transactional)
2. Use test doubles that fail on demand
3. Keep every multi-step write atomic without ad hoc stored procedures

The interface is intentionally small - we're not building a full ORM.
Just the operations the ledger components need.

A unit of work commits when its block exits normally and rolls back when
an exception escapes it:

    async with store.unit_of_work() as session:
        account = await session.get_account(account_id)
        ...
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from envelope_budget.errors import BudgetError
from envelope_budget.models.account import Account
from envelope_budget.models.audit import AuditEvent
from envelope_budget.models.budget import BudgetRow, ReadyToAssign
from envelope_budget.models.category import Category
from envelope_budget.models.transaction import Transaction, TransactionType


class StoreSession(ABC):
    """
    Operations available inside one unit of work.

    Models handed out are copies: mutating one has no effect until it is
    written back with the matching save method.
    """

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    @abstractmethod
    async def add_account(self, account: Account) -> Account:
        """
        Insert a new account.

        Returns:
            The account with its store-assigned id
        """
        pass

    @abstractmethod
    async def get_account(self, account_id: int) -> Optional[Account]:
        pass

    @abstractmethod
    async def list_accounts(self, user_id: str) -> list[Account]:
        """All accounts of a user, ordered by id."""
        pass

    @abstractmethod
    async def save_account(self, account: Account) -> Account:
        """
        Overwrite an existing account.

        Raises:
            NotFoundError: If the account doesn't exist
        """
        pass

    @abstractmethod
    async def set_account_balance(
        self,
        account_id: int,
        balance: Decimal,
        stale: bool = False,
    ) -> None:
        """Write the derived balance (and its stale flag) without touching other fields."""
        pass

    @abstractmethod
    async def mark_account_stale(self, account_id: int) -> None:
        pass

    @abstractmethod
    async def remove_account(self, account_id: int) -> bool:
        pass

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    @abstractmethod
    async def add_category(self, category: Category) -> Category:
        pass

    @abstractmethod
    async def get_category(self, category_id: int) -> Optional[Category]:
        pass

    @abstractmethod
    async def list_categories(self, user_id: str) -> list[Category]:
        """All categories of a user, ordered by id."""
        pass

    @abstractmethod
    async def save_category(self, category: Category) -> Category:
        """
        Overwrite an existing category.

        Raises:
            NotFoundError: If the category doesn't exist
        """
        pass

    @abstractmethod
    async def remove_category(self, category_id: int) -> bool:
        pass

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @abstractmethod
    async def add_transaction(self, transaction: Transaction) -> Transaction:
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> Transaction:
        """
        Overwrite an existing transaction.

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        pass

    @abstractmethod
    async def remove_transaction(self, transaction_id: int) -> bool:
        pass

    @abstractmethod
    async def find_transactions(
        self,
        user_id: str,
        account_id: Optional[int] = None,
        category_id: Optional[int] = None,
        on_or_after: Optional[date] = None,
        before: Optional[date] = None,
        type: Optional[TransactionType] = None,
    ) -> list[Transaction]:
        """
        Transactions of a user matching every given filter, ordered by id.

        Args:
            user_id: Owner
            account_id: Only this account
            category_id: Only this category
            on_or_after: Inclusive lower date bound
            before: Exclusive upper date bound
            type: Only income or only expense
        """
        pass

    # ------------------------------------------------------------------
    # Budget rows (unique per user, category, month)
    # ------------------------------------------------------------------

    @abstractmethod
    async def upsert_budget(
        self,
        user_id: str,
        category_id: int,
        month: str,
        assigned: Optional[Decimal] = None,
        actual: Optional[Decimal] = None,
        stale: Optional[bool] = None,
    ) -> BudgetRow:
        """
        Insert or update the row keyed by (user_id, category_id, month).

        Only the fields that are not None are written; the others keep
        their stored value (or their default on insert).
        """
        pass

    @abstractmethod
    async def get_budget_row(
        self,
        user_id: str,
        category_id: int,
        month: str,
    ) -> Optional[BudgetRow]:
        pass

    @abstractmethod
    async def list_budget_rows(
        self,
        user_id: str,
        month: Optional[str] = None,
        category_id: Optional[int] = None,
    ) -> list[BudgetRow]:
        pass

    @abstractmethod
    async def remove_budget_rows(self, user_id: str, category_id: int) -> list[str]:
        """
        Delete every row of a category.

        Returns:
            The months that had a row
        """
        pass

    # ------------------------------------------------------------------
    # Ready to assign (unique per user, month)
    # ------------------------------------------------------------------

    @abstractmethod
    async def upsert_ready_to_assign(
        self,
        user_id: str,
        month: str,
        amount: Decimal,
        stale: bool = False,
    ) -> ReadyToAssign:
        pass

    @abstractmethod
    async def get_ready_to_assign(self, user_id: str, month: str) -> Optional[ReadyToAssign]:
        pass

    @abstractmethod
    async def mark_ready_to_assign_stale(self, user_id: str, month: str) -> None:
        """Flag the cached amount as stale, creating a stale row if none exists."""
        pass


class BudgetStore(ABC):
    """
    Abstract transactional store.

    Any storage implementation (in-memory, SQLite, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    def unit_of_work(self) -> AbstractAsyncContextManager[StoreSession]:
        """
        Open an atomic unit of work.

        Raises:
            StoreUnavailableError: If the backend cannot be reached
        """
        pass

    async def close(self) -> None:
        """Release backend resources. Optional for stores that hold none."""
        return None


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Events of one logical operation, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Events of one entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(BudgetError):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""

    @property
    def user_message(self) -> str:
        return "The item you are looking for no longer exists. Please refresh and try again."


class ConflictError(StorageError):
    """A uniqueness constraint (budget or ready-to-assign key) was violated."""
    pass


class StoreUnavailableError(StorageError):
    """Could not reach the storage backend."""

    @property
    def user_message(self) -> str:
        return "Your budget data is temporarily unavailable. Please try again in a moment."
