"""Concurrent writes against one account, on both stores."""

import asyncio
import pytest
from datetime import date
from decimal import Decimal

from envelope_budget.models import TransactionType
from envelope_budget.orchestrator import BudgetEngine
from envelope_budget.services.storage import InMemoryBudgetStore, SQLiteBudgetStore

from tests.conftest import FIXED_TODAY, USER, build_household, sqlite_settings


@pytest.fixture(params=["memory", "sqlite"])
async def any_engine(request, tmp_path):
    if request.param == "sqlite":
        store = SQLiteBudgetStore(sqlite_settings(tmp_path / "budget.db"))
    else:
        store = InMemoryBudgetStore()
    engine = BudgetEngine(store, clock=lambda: FIXED_TODAY)
    yield engine
    await engine.close()


async def expense(engine, household, category, day, amount):
    return await engine.create_transaction(
        USER, household.checking.id, category.id, day, "Shop", amount, "expense"
    )


async def stored_transactions(engine):
    async with engine.store.unit_of_work() as session:
        return await session.find_transactions(USER)


def spent(transactions, category_id, month):
    return sum(
        (t.amount for t in transactions
         if t.category_id == category_id and t.month == month and t.type == TransactionType.EXPENSE),
        Decimal("0"),
    )


class TestConcurrentTransactions:
    """Interleaved writes on one account leave every derived value consistent."""

    async def test_gathered_writes_keep_the_invariants(self, any_engine):
        engine = any_engine
        household = await build_household(engine)
        await engine.create_transaction(
            USER, household.checking.id, household.paycheck.id, date(2024, 3, 1), "Pay", "2000", "income"
        )
        await engine.set_assigned(USER, household.groceries.id, "2024-03", "500")

        created = await asyncio.gather(*[
            expense(
                engine,
                household,
                household.groceries if amount <= 6 else household.dining,
                date(2024, 3, amount + 1),
                str(amount),
            )
            for amount in range(1, 11)
        ])

        await asyncio.gather(
            engine.update_transaction(created[0].id, {"amount": "11"}),
            engine.update_transaction(created[1].id, {"category_id": household.dining.id}),
            engine.update_transaction(created[2].id, {"date": date(2024, 4, 5)}),
            engine.delete_transaction(created[3].id),
            engine.delete_transaction(created[4].id),
            engine.create_transaction(
                USER, household.checking.id, household.paycheck.id, date(2024, 3, 20), "Bonus", "300", "income"
            ),
            expense(engine, household, household.groceries, date(2024, 3, 21), "12"),
        )

        transactions = await stored_transactions(engine)
        account = await engine.get_account(household.checking.id)
        assert account.balance == sum((t.signed_amount for t in transactions), Decimal("0"))
        assert account.balance == Decimal("2232")
        assert account.balance_stale is False

        for category, month, expected in (
            (household.groceries, "2024-03", Decimal("29")),
            (household.dining, "2024-03", Decimal("36")),
            (household.groceries, "2024-04", Decimal("3")),
        ):
            row = await engine.budget.get_row(USER, category.id, month)
            assert row.actual == spent(transactions, category.id, month) == expected
            assert row.stale is False

        march = await engine.ready_to_assign.get_row(USER, "2024-03")
        assert march.amount == Decimal("1800")
        assert march.stale is False
        assert await engine.get_ready_to_assign(USER, "2024-04") == Decimal("0")

    async def test_gathered_creates_on_one_account(self, any_engine):
        engine = any_engine
        household = await build_household(engine)

        await asyncio.gather(*[
            expense(engine, household, household.groceries, date(2024, 3, 5), "2.50")
            for _ in range(20)
        ])

        account = await engine.get_account(household.checking.id)
        row = await engine.budget.get_row(USER, household.groceries.id, "2024-03")
        assert account.balance == Decimal("-50.00")
        assert row.actual == Decimal("50.00")
        assert (await engine.list_transactions(USER)).total == 20
