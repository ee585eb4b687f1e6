"""
End-to-end checks of the ledger invariants.

Each test drives the engine the way a user would and then re-derives the
cached figures from the raw transactions and budget rows.
"""

import pytest
from datetime import date
from decimal import Decimal

from envelope_budget.ledger import compute_actual, compute_balance, compute_ready_to_assign

from tests.conftest import USER


async def derived_state(store, household, month):
    """Recompute every figure from scratch inside one read-only unit."""
    async with store.unit_of_work() as session:
        return {
            "balance": await compute_balance(session, USER, household.checking.id),
            "groceries": await compute_actual(session, USER, household.groceries.id, month),
            "rta": await compute_ready_to_assign(session, USER, month),
        }


class TestInvariants:
    """Cached values always equal their re-derived values."""
    
    async def test_caches_match_after_mixed_writes(self, engine, store, household):
        pay = await engine.create_transaction(
            USER, household.checking.id, household.paycheck.id, date(2024, 3, 1), "Pay", "2500", "income"
        )
        shop = await engine.create_transaction(
            USER, household.checking.id, household.groceries.id, date(2024, 3, 3), "Shop", "75.25", "expense"
        )
        await engine.create_transaction(
            USER, household.checking.id, household.groceries.id, date(2024, 3, 9), "Shop", "20", "expense"
        )
        await engine.set_assigned(USER, household.groceries.id, "2024-03", "300")
        await engine.update_transaction(shop.id, {"amount": "80"})
        await engine.update_transaction(pay.id, {"amount": "2600"})
        await engine.delete_transaction(shop.id)
        
        expected = await derived_state(store, household, "2024-03")
        account = await engine.get_account(household.checking.id)
        row = await engine.budget.get_row(USER, household.groceries.id, "2024-03")
        rta = await engine.ready_to_assign.get_row(USER, "2024-03")
        
        assert account.balance == expected["balance"] == Decimal("2580")
        assert row.actual == expected["groceries"] == Decimal("20")
        assert rta.amount == expected["rta"] == Decimal("2300")
        assert not (account.balance_stale or row.stale or rta.stale)
    
    async def test_rollup_of_parent(self, engine, household):
        await engine.set_assigned(USER, household.groceries.id, "2024-03", "300")
        await engine.set_assigned(USER, household.dining.id, "2024-03", "120")
        await engine.create_transaction(
            USER, household.checking.id, household.dining.id, date(2024, 3, 3), "Pizza", "45", "expense"
        )
        
        budget = await engine.get_budget(USER, "2024-03")
        
        food = next(view for view in budget if view.category_id == household.food.id)
        assert food.assigned == sum(child.assigned for child in food.children)
        assert food.actual == sum(child.actual for child in food.children)
        assert food.remaining == sum(child.remaining for child in food.children)
    
    async def test_assigned_counts_for_every_category(self, engine, household):
        """Assignments in income categories still reduce Ready-to-Assign."""
        await engine.set_assigned(USER, household.paycheck.id, "2024-03", "10")
        await engine.set_assigned(USER, household.rent.id, "2024-03", "20")
        assert await engine.get_ready_to_assign(USER, "2024-03") == Decimal("-30")
    
    async def test_recomputes_are_idempotent(self, engine, household):
        await engine.create_transaction(
            USER, household.checking.id, household.groceries.id, date(2024, 3, 3), "Shop", "10", "expense"
        )
        
        results = []
        for _ in range(2):
            results.append((
                await engine.recompute_balance(household.checking.id),
                await engine.recompute_actual(USER, household.groceries.id, "2024-03"),
                await engine.recalculate_ready_to_assign(USER, "2024-03"),
            ))
        
        assert results[0] == results[1]
    
    async def test_last_assignment_wins(self, engine, store, household):
        for amount in ("100", "250", "175"):
            await engine.set_assigned(USER, household.groceries.id, "2024-03", amount)
        
        async with store.unit_of_work() as session:
            rows = await session.list_budget_rows(USER, category_id=household.groceries.id)
        
        assert len(rows) == 1
        assert rows[0].assigned == Decimal("175")


class TestWalkthrough:
    """A household's March, step by step."""
    
    async def test_opening_balance(self, engine):
        checking = await engine.create_account(USER, "Checking", "Checking", balance="1000")
        
        page = await engine.list_transactions(USER)
        assert page.total == 1
        assert page.transactions[0].type.value == "income"
        assert page.transactions[0].amount == Decimal("1000")
        assert checking.balance == Decimal("1000")
    
    async def test_groceries_actual_and_food_rollup(self, engine, household):
        await engine.create_transaction(
            USER, household.checking.id, household.groceries.id, date(2024, 3, 2), "Shop", "50", "expense"
        )
        await engine.create_transaction(
            USER, household.checking.id, household.groceries.id, date(2024, 3, 16), "Shop", "30", "expense"
        )
        
        row = await engine.budget.get_row(USER, household.groceries.id, "2024-03")
        budget = await engine.get_budget(USER, "2024-03")
        
        assert row.actual == Decimal("80")
        food = next(view for view in budget if view.category_id == household.food.id)
        assert food.actual == Decimal("80")
    
    async def test_ready_to_assign_after_assignments(self, engine, household):
        await engine.create_transaction(
            USER, household.checking.id, household.paycheck.id, date(2024, 3, 1), "Pay", "2000", "income"
        )
        await engine.set_assigned(USER, household.groceries.id, "2024-03", "500")
        await engine.set_assigned(USER, household.rent.id, "2024-03", "300")
        
        assert await engine.get_ready_to_assign(USER, "2024-03") == Decimal("1200")
    
    async def test_deleting_an_expense(self, engine, household):
        await engine.create_transaction(
            USER, household.checking.id, household.paycheck.id, date(2024, 3, 1), "Pay", "2000", "income"
        )
        fifty = await engine.create_transaction(
            USER, household.checking.id, household.groceries.id, date(2024, 3, 2), "Shop", "50", "expense"
        )
        await engine.create_transaction(
            USER, household.checking.id, household.groceries.id, date(2024, 3, 16), "Shop", "30", "expense"
        )
        rta_before = await engine.get_ready_to_assign(USER, "2024-03")
        
        await engine.delete_transaction(fifty.id)
        
        row = await engine.budget.get_row(USER, household.groceries.id, "2024-03")
        account = await engine.get_account(household.checking.id)
        assert row.actual == Decimal("30")
        assert account.balance == Decimal("1970")
        assert await engine.get_ready_to_assign(USER, "2024-03") == rta_before == Decimal("2000")
