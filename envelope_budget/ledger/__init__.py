"""
Ledger Components

The reconciliation engine proper. Leaf-first:

- CategoryStore: category tree per user
- AccountLedger: accounts and derived balances
- TransactionJournal: transaction writes and listing
- BudgetLedger: assigned/actual per category and month
- ReadyToAssignCalculator: unassigned income per month
- Propagator: the recompute pipeline all of them share
"""

from envelope_budget.ledger.accounts import AccountLedger
from envelope_budget.ledger.budget import BudgetLedger
from envelope_budget.ledger.categories import CategoryStore, build_tree
from envelope_budget.ledger.propagation import (
    STAGES,
    Propagator,
    RecomputePlan,
    compute_actual,
    compute_balance,
    compute_ready_to_assign,
)
from envelope_budget.ledger.ready_to_assign import ReadyToAssignCalculator
from envelope_budget.ledger.transactions import TransactionJournal

__all__ = [
    "AccountLedger",
    "BudgetLedger",
    "CategoryStore",
    "Propagator",
    "ReadyToAssignCalculator",
    "RecomputePlan",
    "STAGES",
    "TransactionJournal",
    "build_tree",
    "compute_actual",
    "compute_balance",
    "compute_ready_to_assign",
]
