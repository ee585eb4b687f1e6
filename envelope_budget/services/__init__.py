"""Services package."""

from envelope_budget.services.storage import (
    AuditStorageInterface,
    BudgetStore,
    ConflictError,
    InMemoryBudgetStore,
    NotFoundError,
    SQLiteBudgetStore,
    StorageError,
    StoreSession,
    StoreUnavailableError,
)

__all__ = [
    "AuditStorageInterface",
    "BudgetStore",
    "ConflictError",
    "InMemoryBudgetStore",
    "NotFoundError",
    "SQLiteBudgetStore",
    "StorageError",
    "StoreSession",
    "StoreUnavailableError",
]
