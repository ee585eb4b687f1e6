"""
SQLite Storage Implementation

DESIGN DECISION: SQLite is the durable backend because:
1. A personal budget fits comfortably in one file
2. No server to set up
3. Real transactions: every unit of work is a BEGIN IMMEDIATE ... COMMIT
4. UNIQUE constraints enforce the budget and ready-to-assign keys

TRADEOFFS:
- One writer at a time (fine for one household; units are short)
- Money is stored as TEXT and parsed into Decimal, so sums happen in Python

Units of work on one store instance are serialized by an asyncio.Lock and
share a single connection. Opening the connection and starting a unit are
retried with tenacity; when the retries are exhausted the caller gets
StoreUnavailableError.
"""

import asyncio
import json
import sqlite3
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Optional
from uuid import UUID

import structlog
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from envelope_budget.config import StoreSettings, get_settings
from envelope_budget.models.account import Account
from envelope_budget.models.audit import AuditEvent, AuditEventType, AuditSeverity
from envelope_budget.models.budget import BudgetRow, ReadyToAssign
from envelope_budget.models.category import Category, CategoryType
from envelope_budget.models.transaction import Transaction, TransactionType
from envelope_budget.services.storage.interface import (
    AuditStorageInterface,
    BudgetStore,
    ConflictError,
    NotFoundError,
    StorageError,
    StoreSession,
    StoreUnavailableError,
)


logger = structlog.get_logger(__name__)


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    type TEXT NOT NULL,
    balance TEXT NOT NULL DEFAULT '0',
    parent_id INTEGER,
    balance_stale INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    parent_id INTEGER,
    type TEXT NOT NULL,
    sort_order INTEGER NOT NULL DEFAULT 0,
    is_reserved INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    account_id INTEGER NOT NULL,
    category_id INTEGER NOT NULL,
    date TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    amount TEXT NOT NULL,
    type TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS budgets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    category_id INTEGER NOT NULL,
    month TEXT NOT NULL,
    assigned TEXT NOT NULL DEFAULT '0',
    actual TEXT NOT NULL DEFAULT '0',
    stale INTEGER NOT NULL DEFAULT 0,
    UNIQUE (user_id, category_id, month)
);

CREATE TABLE IF NOT EXISTS ready_to_assign (
    user_id TEXT NOT NULL,
    month TEXT NOT NULL,
    amount TEXT NOT NULL,
    stale INTEGER NOT NULL DEFAULT 0,
    computed_at TEXT NOT NULL,
    PRIMARY KEY (user_id, month)
);

CREATE TABLE IF NOT EXISTS audit_events (
    event_id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    event_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    user_id TEXT,
    entity_type TEXT,
    entity_id TEXT,
    correlation_id TEXT,
    description TEXT NOT NULL,
    details_json TEXT,
    error_code TEXT,
    error_message TEXT
);

CREATE INDEX IF NOT EXISTS ix_txn_user_date ON transactions (user_id, date);
CREATE INDEX IF NOT EXISTS ix_txn_account ON transactions (account_id);
CREATE INDEX IF NOT EXISTS ix_txn_category ON transactions (category_id);
CREATE INDEX IF NOT EXISTS ix_budget_user_month ON budgets (user_id, month);
CREATE INDEX IF NOT EXISTS ix_audit_correlation ON audit_events (correlation_id);
"""


def _translate(error: sqlite3.Error, action: str) -> StorageError:
    """Map a sqlite3 exception onto the storage error hierarchy."""
    if isinstance(error, sqlite3.IntegrityError):
        return ConflictError(f"Failed to {action}: {error}")
    if isinstance(error, sqlite3.OperationalError):
        return StoreUnavailableError(f"Failed to {action}: {error}")
    return StorageError(f"Failed to {action}: {error}")


def _row_to_account(row: sqlite3.Row) -> Account:
    return Account(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        type=row["type"],
        balance=Decimal(row["balance"]),
        parent_id=row["parent_id"],
        balance_stale=bool(row["balance_stale"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_category(row: sqlite3.Row) -> Category:
    return Category(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        parent_id=row["parent_id"],
        type=CategoryType(row["type"]),
        sort_order=row["sort_order"],
        is_reserved=bool(row["is_reserved"]),
    )


def _row_to_transaction(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        user_id=row["user_id"],
        account_id=row["account_id"],
        category_id=row["category_id"],
        date=date.fromisoformat(row["date"]),
        description=row["description"],
        amount=Decimal(row["amount"]),
        type=TransactionType(row["type"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_budget(row: sqlite3.Row) -> BudgetRow:
    return BudgetRow(
        id=row["id"],
        user_id=row["user_id"],
        category_id=row["category_id"],
        month=row["month"],
        assigned=Decimal(row["assigned"]),
        actual=Decimal(row["actual"]),
        stale=bool(row["stale"]),
    )


def _row_to_ready_to_assign(row: sqlite3.Row) -> ReadyToAssign:
    return ReadyToAssign(
        user_id=row["user_id"],
        month=row["month"],
        amount=Decimal(row["amount"]),
        stale=bool(row["stale"]),
        computed_at=datetime.fromisoformat(row["computed_at"]),
    )


def _row_to_event(row: sqlite3.Row) -> AuditEvent:
    return AuditEvent(
        event_id=UUID(row["event_id"]),
        timestamp=datetime.fromisoformat(row["timestamp"]),
        event_type=AuditEventType(row["event_type"]),
        severity=AuditSeverity(row["severity"]),
        user_id=row["user_id"],
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        correlation_id=UUID(row["correlation_id"]) if row["correlation_id"] else None,
        description=row["description"],
        details=json.loads(row["details_json"]) if row["details_json"] else {},
        error_code=row["error_code"],
        error_message=row["error_message"],
    )


class SQLiteSession(StoreSession):
    """Session bound to a connection with an open transaction."""

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def _execute(self, sql: str, params: tuple = (), action: str = "query store") -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise _translate(e, action) from e

    def _fetch_one(self, sql: str, params: tuple, action: str) -> Optional[sqlite3.Row]:
        return self._execute(sql, params, action).fetchone()

    def _fetch_all(self, sql: str, params: tuple, action: str) -> list[sqlite3.Row]:
        return self._execute(sql, params, action).fetchall()

    # Accounts

    async def add_account(self, account: Account) -> Account:
        cursor = self._execute(
            "INSERT INTO accounts (user_id, name, type, balance, parent_id, balance_stale, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                account.user_id,
                account.name,
                account.type,
                str(account.balance),
                account.parent_id,
                int(account.balance_stale),
                account.created_at.isoformat(),
            ),
            "insert account",
        )
        return account.model_copy(update={"id": cursor.lastrowid})

    async def get_account(self, account_id: int) -> Optional[Account]:
        row = self._fetch_one(
            "SELECT * FROM accounts WHERE id = ?", (account_id,), "get account"
        )
        return _row_to_account(row) if row else None

    async def list_accounts(self, user_id: str) -> list[Account]:
        rows = self._fetch_all(
            "SELECT * FROM accounts WHERE user_id = ? ORDER BY id", (user_id,), "list accounts"
        )
        return [_row_to_account(row) for row in rows]

    async def save_account(self, account: Account) -> Account:
        cursor = self._execute(
            "UPDATE accounts SET name = ?, type = ?, balance = ?, parent_id = ?, balance_stale = ? "
            "WHERE id = ?",
            (
                account.name,
                account.type,
                str(account.balance),
                account.parent_id,
                int(account.balance_stale),
                account.id,
            ),
            "update account",
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Account not found: {account.id}")
        return account

    async def set_account_balance(
        self,
        account_id: int,
        balance: Decimal,
        stale: bool = False,
    ) -> None:
        cursor = self._execute(
            "UPDATE accounts SET balance = ?, balance_stale = ? WHERE id = ?",
            (str(balance), int(stale), account_id),
            "update account balance",
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Account not found: {account_id}")

    async def mark_account_stale(self, account_id: int) -> None:
        self._execute(
            "UPDATE accounts SET balance_stale = 1 WHERE id = ?",
            (account_id,),
            "mark account stale",
        )

    async def remove_account(self, account_id: int) -> bool:
        cursor = self._execute(
            "DELETE FROM accounts WHERE id = ?", (account_id,), "delete account"
        )
        return cursor.rowcount > 0

    # Categories

    async def add_category(self, category: Category) -> Category:
        cursor = self._execute(
            "INSERT INTO categories (user_id, name, parent_id, type, sort_order, is_reserved) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                category.user_id,
                category.name,
                category.parent_id,
                category.type.value,
                category.sort_order,
                int(category.is_reserved),
            ),
            "insert category",
        )
        return category.model_copy(update={"id": cursor.lastrowid})

    async def get_category(self, category_id: int) -> Optional[Category]:
        row = self._fetch_one(
            "SELECT * FROM categories WHERE id = ?", (category_id,), "get category"
        )
        return _row_to_category(row) if row else None

    async def list_categories(self, user_id: str) -> list[Category]:
        rows = self._fetch_all(
            "SELECT * FROM categories WHERE user_id = ? ORDER BY id", (user_id,), "list categories"
        )
        return [_row_to_category(row) for row in rows]

    async def save_category(self, category: Category) -> Category:
        cursor = self._execute(
            "UPDATE categories SET name = ?, parent_id = ?, type = ?, sort_order = ?, is_reserved = ? "
            "WHERE id = ?",
            (
                category.name,
                category.parent_id,
                category.type.value,
                category.sort_order,
                int(category.is_reserved),
                category.id,
            ),
            "update category",
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Category not found: {category.id}")
        return category

    async def remove_category(self, category_id: int) -> bool:
        cursor = self._execute(
            "DELETE FROM categories WHERE id = ?", (category_id,), "delete category"
        )
        return cursor.rowcount > 0

    # Transactions

    async def add_transaction(self, transaction: Transaction) -> Transaction:
        cursor = self._execute(
            "INSERT INTO transactions "
            "(user_id, account_id, category_id, date, description, amount, type, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                transaction.user_id,
                transaction.account_id,
                transaction.category_id,
                transaction.date.isoformat(),
                transaction.description,
                str(transaction.amount),
                transaction.type.value,
                transaction.created_at.isoformat(),
            ),
            "insert transaction",
        )
        return transaction.model_copy(update={"id": cursor.lastrowid})

    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        row = self._fetch_one(
            "SELECT * FROM transactions WHERE id = ?", (transaction_id,), "get transaction"
        )
        return _row_to_transaction(row) if row else None

    async def save_transaction(self, transaction: Transaction) -> Transaction:
        cursor = self._execute(
            "UPDATE transactions SET account_id = ?, category_id = ?, date = ?, description = ?, "
            "amount = ?, type = ? WHERE id = ?",
            (
                transaction.account_id,
                transaction.category_id,
                transaction.date.isoformat(),
                transaction.description,
                str(transaction.amount),
                transaction.type.value,
                transaction.id,
            ),
            "update transaction",
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Transaction not found: {transaction.id}")
        return transaction

    async def remove_transaction(self, transaction_id: int) -> bool:
        cursor = self._execute(
            "DELETE FROM transactions WHERE id = ?", (transaction_id,), "delete transaction"
        )
        return cursor.rowcount > 0

    async def find_transactions(
        self,
        user_id: str,
        account_id: Optional[int] = None,
        category_id: Optional[int] = None,
        on_or_after: Optional[date] = None,
        before: Optional[date] = None,
        type: Optional[TransactionType] = None,
    ) -> list[Transaction]:
        clauses = ["user_id = ?"]
        params: list[Any] = [user_id]
        if account_id is not None:
            clauses.append("account_id = ?")
            params.append(account_id)
        if category_id is not None:
            clauses.append("category_id = ?")
            params.append(category_id)
        # ISO dates compare correctly as text
        if on_or_after is not None:
            clauses.append("date >= ?")
            params.append(on_or_after.isoformat())
        if before is not None:
            clauses.append("date < ?")
            params.append(before.isoformat())
        if type is not None:
            clauses.append("type = ?")
            params.append(type.value)

        rows = self._fetch_all(
            f"SELECT * FROM transactions WHERE {' AND '.join(clauses)} ORDER BY id",
            tuple(params),
            "list transactions",
        )
        return [_row_to_transaction(row) for row in rows]

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
        updates = []
        if assigned is not None:
            updates.append("assigned = excluded.assigned")
        if actual is not None:
            updates.append("actual = excluded.actual")
        if stale is not None:
            updates.append("stale = excluded.stale")
        conflict_action = f"DO UPDATE SET {', '.join(updates)}" if updates else "DO NOTHING"

        self._execute(
            "INSERT INTO budgets (user_id, category_id, month, assigned, actual, stale) "
            "VALUES (?, ?, ?, ?, ?, ?) "
            f"ON CONFLICT (user_id, category_id, month) {conflict_action}",
            (
                user_id,
                category_id,
                month,
                str(assigned if assigned is not None else Decimal("0")),
                str(actual if actual is not None else Decimal("0")),
                int(bool(stale)),
            ),
            "upsert budget row",
        )
        row = await self.get_budget_row(user_id, category_id, month)
        if row is None:
            raise ConflictError(
                f"Budget row vanished after upsert: {user_id}/{category_id}/{month}"
            )
        return row

    async def get_budget_row(
        self,
        user_id: str,
        category_id: int,
        month: str,
    ) -> Optional[BudgetRow]:
        row = self._fetch_one(
            "SELECT * FROM budgets WHERE user_id = ? AND category_id = ? AND month = ?",
            (user_id, category_id, month),
            "get budget row",
        )
        return _row_to_budget(row) if row else None

    async def list_budget_rows(
        self,
        user_id: str,
        month: Optional[str] = None,
        category_id: Optional[int] = None,
    ) -> list[BudgetRow]:
        clauses = ["user_id = ?"]
        params: list[Any] = [user_id]
        if month is not None:
            clauses.append("month = ?")
            params.append(month)
        if category_id is not None:
            clauses.append("category_id = ?")
            params.append(category_id)
        rows = self._fetch_all(
            f"SELECT * FROM budgets WHERE {' AND '.join(clauses)} ORDER BY id",
            tuple(params),
            "list budget rows",
        )
        return [_row_to_budget(row) for row in rows]

    async def remove_budget_rows(self, user_id: str, category_id: int) -> list[str]:
        rows = self._fetch_all(
            "SELECT month FROM budgets WHERE user_id = ? AND category_id = ? ORDER BY month",
            (user_id, category_id),
            "list budget months",
        )
        self._execute(
            "DELETE FROM budgets WHERE user_id = ? AND category_id = ?",
            (user_id, category_id),
            "delete budget rows",
        )
        return [row["month"] for row in rows]

    # Ready to assign

    async def upsert_ready_to_assign(
        self,
        user_id: str,
        month: str,
        amount: Decimal,
        stale: bool = False,
    ) -> ReadyToAssign:
        row = ReadyToAssign(user_id=user_id, month=month, amount=amount, stale=stale)
        self._execute(
            "INSERT INTO ready_to_assign (user_id, month, amount, stale, computed_at) "
            "VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT (user_id, month) DO UPDATE SET "
            "amount = excluded.amount, stale = excluded.stale, computed_at = excluded.computed_at",
            (user_id, month, str(amount), int(stale), row.computed_at.isoformat()),
            "upsert ready to assign",
        )
        return row

    async def get_ready_to_assign(self, user_id: str, month: str) -> Optional[ReadyToAssign]:
        row = self._fetch_one(
            "SELECT * FROM ready_to_assign WHERE user_id = ? AND month = ?",
            (user_id, month),
            "get ready to assign",
        )
        return _row_to_ready_to_assign(row) if row else None

    async def mark_ready_to_assign_stale(self, user_id: str, month: str) -> None:
        self._execute(
            "INSERT INTO ready_to_assign (user_id, month, amount, stale, computed_at) "
            "VALUES (?, ?, '0', 1, ?) "
            "ON CONFLICT (user_id, month) DO UPDATE SET stale = 1",
            (user_id, month, datetime.now().astimezone().isoformat()),
            "mark ready to assign stale",
        )


class SQLiteBudgetStore(BudgetStore, AuditStorageInterface):
    """
    SQLite implementation of the budget store and the audit log.
    """

    def __init__(self, settings: Optional[StoreSettings] = None):
        self._settings = settings or get_settings().store
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = asyncio.Lock()

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self._settings.retry_attempts),
            wait=wait_exponential(
                multiplier=self._settings.retry_wait_min or 0,
                min=self._settings.retry_wait_min,
                max=self._settings.retry_wait_max,
            ),
            retry=retry_if_exception_type(sqlite3.OperationalError),
            reraise=True,
        )

    def _connect(self) -> sqlite3.Connection:
        """
        Open the connection and create the schema on first use.

        Retries on OperationalError (locked or unreachable file).
        """
        if self._conn is None:
            try:
                for attempt in self._retrying():
                    with attempt:
                        conn = self._open()
            except sqlite3.Error as e:
                raise StoreUnavailableError(
                    f"Failed to open SQLite store at {self._settings.sqlite_path}: {e}"
                ) from e
            self._conn = conn
            logger.debug("sqlite_store_opened", path=self._settings.sqlite_path)
        return self._conn

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._settings.sqlite_path,
            timeout=self._settings.busy_timeout_seconds,
            isolation_level=None,
        )
        try:
            conn.row_factory = sqlite3.Row
            conn.executescript(SCHEMA_SQL)
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    def _begin(self, conn: sqlite3.Connection) -> None:
        try:
            for attempt in self._retrying():
                with attempt:
                    conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Failed to start a unit of work: {e}") from e

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[StoreSession]:
        async with self._lock:
            conn = self._connect()
            self._begin(conn)
            try:
                yield SQLiteSession(conn)
            except BaseException:
                self._rollback(conn)
                raise
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                raise _translate(e, "commit unit of work") from e

    def _rollback(self, conn: sqlite3.Connection) -> None:
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            # The original exception is already propagating
            logger.warning("sqlite_rollback_failed", error=str(e))

    async def close(self) -> None:
        async with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # Audit log

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event in its own transaction."""
        async with self._lock:
            try:
                conn = self._connect()
                conn.execute(
                    "INSERT INTO audit_events (event_id, timestamp, event_type, severity, user_id, "
                    "entity_type, entity_id, correlation_id, description, details_json, "
                    "error_code, error_message) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    event.to_storage_row(),
                )
                return True
            except (sqlite3.Error, StoreUnavailableError) as e:
                # Don't raise - audit logging should not break the main flow
                logger.warning(
                    "audit_append_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

    async def _query_events(self, sql: str, params: tuple) -> list[AuditEvent]:
        async with self._lock:
            conn = self._connect()
            try:
                rows = conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise _translate(e, "read audit events") from e
        return [_row_to_event(row) for row in rows]

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return await self._query_events(
            "SELECT * FROM audit_events WHERE correlation_id = ? ORDER BY timestamp",
            (str(correlation_id),),
        )

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        return await self._query_events(
            "SELECT * FROM audit_events WHERE entity_type = ? AND entity_id = ? ORDER BY timestamp",
            (entity_type, entity_id),
        )

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return await self._query_events(
            "SELECT * FROM audit_events ORDER BY timestamp DESC LIMIT ?",
            (limit,),
        )
