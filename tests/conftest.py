"""
Shared fixtures.

Engines run on the in-memory store with a fixed "today" so opening-balance
transactions land in a known month. Default category seeding is off unless
a test turns it on.
"""

from contextlib import asynccontextmanager
from datetime import date
from types import SimpleNamespace

import pytest

from envelope_budget.config import StoreSettings, get_settings
from envelope_budget.models import CategoryType
from envelope_budget.orchestrator import BudgetEngine
from envelope_budget.services.storage import InMemoryBudgetStore, StoreUnavailableError


FIXED_TODAY = date(2024, 3, 15)
USER = "user-1"
OTHER_USER = "user-2"


def sqlite_settings(path, **overrides) -> StoreSettings:
    values = {
        "backend": "sqlite",
        "sqlite_path": str(path),
        "retry_attempts": 1,
        "retry_wait_min": 0.0,
        "retry_wait_max": 0.0,
    }
    values.update(overrides)
    return StoreSettings(**values)


class FlakySession:
    """Delegates to a real session, except for the methods listed as failing."""

    def __init__(self, inner, failing: set[str]):
        self._inner = inner
        self._failing = failing

    def __getattr__(self, name):
        attr = getattr(self._inner, name)
        if name in self._failing:
            async def fail(*args, **kwargs):
                raise StoreUnavailableError(f"{name} is unavailable")
            return fail
        return attr


class FlakyStore(InMemoryBudgetStore):
    """In-memory store whose sessions can be told to fail on chosen methods."""

    def __init__(self):
        super().__init__()
        self.failing: set[str] = set()

    @asynccontextmanager
    async def unit_of_work(self):
        async with super().unit_of_work() as session:
            yield FlakySession(session, self.failing)


@pytest.fixture(autouse=True)
def ledger_env(monkeypatch):
    """Isolate every test from the caller's environment."""
    for name in (
        "BUDGET_ACCOUNT_DELETE_POLICY",
        "BUDGET_ALLOW_NEGATIVE_INITIAL_BALANCE",
        "BUDGET_INITIAL_BALANCE_CATEGORY",
        "BUDGET_DEFAULT_PAGE_SIZE",
        "BUDGET_MAX_PAGE_SIZE",
        "BUDGET_STORE_BACKEND",
        "BUDGET_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("BUDGET_SEED_DEFAULT_CATEGORIES", "false")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store():
    return InMemoryBudgetStore()


@pytest.fixture
def engine(store):
    return BudgetEngine(store, clock=lambda: FIXED_TODAY)


@pytest.fixture
def make_engine(monkeypatch):
    """Build an engine after overriding ledger settings through the environment."""

    def _make(store=None, **env):
        for key, value in env.items():
            monkeypatch.setenv(f"BUDGET_{key.upper()}", str(value))
        get_settings.cache_clear()
        return BudgetEngine(store or InMemoryBudgetStore(), clock=lambda: FIXED_TODAY)

    return _make


@pytest.fixture
def flaky_store():
    return FlakyStore()


@pytest.fixture
def flaky_engine(flaky_store):
    return BudgetEngine(flaky_store, clock=lambda: FIXED_TODAY)


async def build_household(engine: BudgetEngine, user_id: str = USER) -> SimpleNamespace:
    """Income/Paycheck, Food/Groceries, Food/Dining Out, Bills/Rent and one account."""
    income = await engine.create_category(user_id, "Income", type=CategoryType.INCOME)
    paycheck = await engine.create_category(user_id, "Paycheck", parent_id=income.id, type=CategoryType.INCOME)
    food = await engine.create_category(user_id, "Food", type=CategoryType.EXPENSE)
    groceries = await engine.create_category(user_id, "Groceries", parent_id=food.id, type=CategoryType.EXPENSE)
    dining = await engine.create_category(user_id, "Dining Out", parent_id=food.id, type=CategoryType.EXPENSE)
    bills = await engine.create_category(user_id, "Bills", type=CategoryType.EXPENSE)
    rent = await engine.create_category(user_id, "Rent", parent_id=bills.id, type=CategoryType.EXPENSE)
    checking = await engine.create_account(user_id, "Checking", "Checking")
    return SimpleNamespace(
        income=income,
        paycheck=paycheck,
        food=food,
        groceries=groceries,
        dining=dining,
        bills=bills,
        rent=rent,
        checking=checking,
    )


@pytest.fixture
async def household(engine):
    return await build_household(engine)


@pytest.fixture
async def flaky_household(flaky_engine):
    return await build_household(flaky_engine)
