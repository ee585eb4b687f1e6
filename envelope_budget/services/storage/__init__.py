"""
Storage Services Package

Provides the abstract transactional store and its implementations.
The in-memory store backs tests and embedded use; SQLite is the durable
backend. Both also implement the audit log interface.
"""

from envelope_budget.services.storage.interface import (
    AuditStorageInterface,
    BudgetStore,
    ConflictError,
    NotFoundError,
    StorageError,
    StoreSession,
    StoreUnavailableError,
)
from envelope_budget.services.storage.memory import InMemoryBudgetStore
from envelope_budget.services.storage.sqlite import SQLiteBudgetStore

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "BudgetStore",
    "StoreSession",
    # Exceptions
    "ConflictError",
    "NotFoundError",
    "StorageError",
    "StoreUnavailableError",
    # Implementations
    "InMemoryBudgetStore",
    "SQLiteBudgetStore",
]
