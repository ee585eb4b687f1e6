"""
Envelope Budget - Source Package

A budget reconciliation engine for envelope-style personal budgeting:
income is assigned to categories month by month, transactions are recorded
against accounts, and every derived figure stays consistent with them.

DESIGN PRINCIPLES:
1. Derived figures are never typed in, only recomputed
2. Fail early, fail visibly
3. No silent fallbacks
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Envelope Budget Team"
