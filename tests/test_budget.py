"""Tests for the budget ledger and Ready-to-Assign."""

import asyncio
import pytest
from datetime import date
from decimal import Decimal

from envelope_budget.errors import ReferentialIntegrityError, ValidationError
from envelope_budget.models import Category, CategoryType

from tests.conftest import OTHER_USER, USER


async def seed_month(engine, household):
    """Income of 3000 and 120 spent on groceries in March 2024."""
    await engine.create_transaction(
        USER, household.checking.id, household.paycheck.id, date(2024, 3, 1), "Pay", "3000", "income"
    )
    await engine.create_transaction(
        USER, household.checking.id, household.groceries.id, date(2024, 3, 4), "Shop", "120", "expense"
    )


class TestSetAssigned:
    """Tests for assigning money to categories."""
    
    async def test_assign_creates_row(self, engine, household):
        row = await engine.set_assigned(USER, household.groceries.id, "2024-03", "400")
        
        assert row.assigned == Decimal("400")
        assert row.actual == Decimal("0")
        assert row.month == "2024-03"
    
    async def test_assign_is_an_upsert(self, engine, store, household):
        await engine.set_assigned(USER, household.groceries.id, "2024-03", "400")
        await engine.set_assigned(USER, household.groceries.id, "2024-03", "450")
        
        async with store.unit_of_work() as session:
            rows = await session.list_budget_rows(USER, month="2024-03")
        assert [(r.category_id, r.assigned) for r in rows] == [(household.groceries.id, Decimal("450"))]
    
    async def test_assign_leaves_actual_alone(self, engine, household):
        await seed_month(engine, household)
        
        row = await engine.set_assigned(USER, household.groceries.id, "2024-03", "400")
        
        assert row.actual == Decimal("120")
        assert row.remaining == Decimal("280")
    
    async def test_assign_updates_ready_to_assign(self, engine, household):
        await seed_month(engine, household)
        
        await engine.set_assigned(USER, household.groceries.id, "2024-03", "400")
        await engine.set_assigned(USER, household.rent.id, "2024-03", "1200")
        
        assert await engine.get_ready_to_assign(USER, "2024-03") == Decimal("1400")
    
    async def test_date_is_accepted_as_month(self, engine, household):
        row = await engine.set_assigned(USER, household.groceries.id, date(2024, 3, 20), "1")
        assert row.month == "2024-03"
    
    @pytest.mark.parametrize("amount", ["-5", "ten", None])
    async def test_bad_amount_rejected(self, engine, household, amount):
        with pytest.raises(ValidationError) as exc_info:
            await engine.set_assigned(USER, household.groceries.id, "2024-03", amount)
        assert exc_info.value.field == "assigned"
    
    async def test_bad_month_rejected(self, engine, household):
        with pytest.raises(ValidationError) as exc_info:
            await engine.set_assigned(USER, household.groceries.id, "2024-13", "1")
        assert exc_info.value.field == "month"
    
    async def test_parent_category_rejected(self, engine, household):
        with pytest.raises(ValidationError) as exc_info:
            await engine.set_assigned(USER, household.food.id, "2024-03", "100")
        assert exc_info.value.field == "category_id"
    
    async def test_childless_root_accepted(self, engine, household):
        savings = await engine.create_category(USER, "Savings", type="expense")
        row = await engine.set_assigned(USER, savings.id, "2024-03", "100")
        assert row.assigned == Decimal("100")
    
    async def test_foreign_category_rejected(self, engine, household):
        theirs = await engine.create_category(OTHER_USER, "Food", type="expense")
        with pytest.raises(ReferentialIntegrityError):
            await engine.set_assigned(USER, theirs.id, "2024-03", "100")
    
    async def test_concurrent_edits_keep_both(self, engine, household):
        await seed_month(engine, household)
        
        await asyncio.gather(
            engine.set_assigned(USER, household.groceries.id, "2024-03", "400"),
            engine.set_assigned(USER, household.dining.id, "2024-03", "150"),
            engine.set_assigned(USER, household.rent.id, "2024-03", "1200"),
        )
        
        budget = await engine.get_budget(USER, "2024-03")
        food = next(view for view in budget if view.category_id == household.food.id)
        assert food.assigned == Decimal("550")
        assert await engine.get_ready_to_assign(USER, "2024-03") == Decimal("1250")


class TestGetBudget:
    """Tests for the monthly budget view."""
    
    async def test_parents_roll_up_children(self, engine, household):
        await seed_month(engine, household)
        await engine.set_assigned(USER, household.groceries.id, "2024-03", "400")
        await engine.set_assigned(USER, household.dining.id, "2024-03", "100")
        
        budget = await engine.get_budget(USER, "2024-03")
        
        assert [view.name for view in budget] == ["Income", "Food", "Bills"]
        food = budget[1]
        assert food.assigned == Decimal("500")
        assert food.actual == Decimal("120")
        assert food.remaining == Decimal("380")
        groceries = food.children[0]
        assert (groceries.assigned, groceries.actual, groceries.remaining) == (
            Decimal("400"), Decimal("120"), Decimal("280")
        )
    
    async def test_empty_month_is_all_zeros(self, engine, household):
        budget = await engine.get_budget(USER, "2030-01")
        for view in budget:
            assert view.assigned == Decimal("0")
            assert view.actual == Decimal("0")
    
    async def test_income_is_not_spending(self, engine, household):
        await seed_month(engine, household)
        budget = await engine.get_budget(USER, "2024-03")
        assert budget[0].actual == Decimal("0")
    
    async def test_orphans_listed_last(self, engine, store, household):
        async with store.unit_of_work() as session:
            orphan = await session.add_category(Category(
                user_id=USER, name="Lost", parent_id=999, type=CategoryType.EXPENSE,
            ))
        engine.categories.invalidate(USER)
        await engine.create_transaction(
            USER, household.checking.id, orphan.id, date(2024, 3, 9), "?", "7", "expense"
        )
        
        budget = await engine.get_budget(USER, "2024-03")
        
        assert budget[-1].category_id == orphan.id
        assert budget[-1].is_orphan
        assert budget[-1].actual == Decimal("7")
        assert not any(view.is_orphan for view in budget[:-1])
    
    async def test_actual_is_live_even_when_cache_is_stale(self, engine, household):
        await seed_month(engine, household)
        async with engine.store.unit_of_work() as session:
            await session.upsert_budget(USER, household.groceries.id, "2024-03", stale=True)
        
        budget = await engine.get_budget(USER, "2024-03")
        
        assert budget[1].children[0].actual == Decimal("120")


class TestRecomputeActual:
    """Tests for rebuilding cached actuals."""
    
    async def test_recompute_clears_stale(self, engine, household):
        await seed_month(engine, household)
        async with engine.store.unit_of_work() as session:
            await session.upsert_budget(USER, household.groceries.id, "2024-03", stale=True)
        
        first = await engine.recompute_actual(USER, household.groceries.id, "2024-03")
        second = await engine.recompute_actual(USER, household.groceries.id, "2024-03")
        
        row = await engine.budget.get_row(USER, household.groceries.id, "2024-03")
        assert first == second == Decimal("120")
        assert row.stale is False
    
    async def test_recompute_keeps_assigned(self, engine, household):
        await engine.set_assigned(USER, household.groceries.id, "2024-03", "400")
        await engine.recompute_actual(USER, household.groceries.id, "2024-03")
        row = await engine.budget.get_row(USER, household.groceries.id, "2024-03")
        assert row.assigned == Decimal("400")
    
    async def test_recompute_missing_category(self, engine):
        with pytest.raises(ReferentialIntegrityError):
            await engine.recompute_actual(USER, 404, "2024-03")


class TestReadyToAssign:
    """Tests for the Ready-to-Assign cache."""
    
    async def test_month_without_data_is_zero(self, engine):
        assert await engine.get_ready_to_assign(USER, "2024-03") == Decimal("0")
    
    async def test_can_go_negative(self, engine, household):
        await engine.set_assigned(USER, household.groceries.id, "2024-03", "50")
        assert await engine.get_ready_to_assign(USER, "2024-03") == Decimal("-50")
    
    async def test_months_are_independent(self, engine, household):
        await seed_month(engine, household)
        await engine.set_assigned(USER, household.groceries.id, "2024-04", "100")
        
        assert await engine.get_ready_to_assign(USER, "2024-03") == Decimal("3000")
        assert await engine.get_ready_to_assign(USER, "2024-04") == Decimal("-100")
    
    async def test_stale_entry_is_recomputed_and_stored(self, engine, household):
        await seed_month(engine, household)
        async with engine.store.unit_of_work() as session:
            await session.upsert_ready_to_assign(USER, "2024-03", Decimal("0"), stale=True)
        
        amount = await engine.get_ready_to_assign(USER, "2024-03")
        
        row = await engine.ready_to_assign.get_row(USER, "2024-03")
        assert amount == Decimal("3000")
        assert row.amount == Decimal("3000")
        assert row.stale is False
    
    async def test_marked_stale_is_healed_on_read(self, engine, household):
        await seed_month(engine, household)
        await engine.get_ready_to_assign(USER, "2024-03")
        async with engine.store.unit_of_work() as session:
            await session.mark_ready_to_assign_stale(USER, "2024-03")
        
        assert (await engine.ready_to_assign.get_row(USER, "2024-03")).stale is True
        assert await engine.get_ready_to_assign(USER, "2024-03") == Decimal("3000")
        assert (await engine.ready_to_assign.get_row(USER, "2024-03")).stale is False
    
    async def test_recalculate_overwrites(self, engine, household):
        await seed_month(engine, household)
        assert await engine.recalculate_ready_to_assign(USER, "2024-03") == Decimal("3000")
