"""
Default category set for first-time users.

This is reference data, not engine logic: the bootstrap only guarantees
that every name below exists once per user.
"""

from envelope_budget.models.category import CategoryType


# (root name, type, child names)
DEFAULT_CATEGORIES: list[tuple[str, CategoryType, list[str]]] = [
    ("Income", CategoryType.INCOME, ["Paycheck", "Other Income"]),
    ("Bills", CategoryType.EXPENSE, ["Rent", "Utilities", "Phone", "Internet"]),
    ("Food", CategoryType.EXPENSE, ["Groceries", "Dining Out"]),
    ("Transportation", CategoryType.EXPENSE, ["Fuel", "Public Transit"]),
    ("Savings Goals", CategoryType.EXPENSE, ["Emergency Fund", "Vacation"]),
    ("Personal", CategoryType.EXPENSE, ["Clothing", "Entertainment", "Health"]),
]
