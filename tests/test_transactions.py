"""Tests for the transaction journal."""

import pytest
from datetime import date
from decimal import Decimal

from envelope_budget.errors import ReferentialIntegrityError, ValidationError
from envelope_budget.models import TransactionType
from envelope_budget.services.storage import NotFoundError

from tests.conftest import OTHER_USER, USER


async def spend(engine, household, day, amount, category=None, description="Shop"):
    return await engine.create_transaction(
        USER,
        household.checking.id,
        (category or household.groceries).id,
        day,
        description,
        amount,
        "expense",
    )


async def earn(engine, household, day, amount):
    return await engine.create_transaction(
        USER, household.checking.id, household.paycheck.id, day, "Pay", amount, "income"
    )


class TestCreateTransaction:
    """Tests for recording transactions."""
    
    async def test_expense_updates_balance_and_actual(self, engine, household):
        transaction = await spend(engine, household, date(2024, 3, 5), "42.50")
        
        assert transaction.id is not None
        assert transaction.type == TransactionType.EXPENSE
        account = await engine.get_account(household.checking.id)
        assert account.balance == Decimal("-42.50")
        row = await engine.budget.get_row(USER, household.groceries.id, "2024-03")
        assert row.actual == Decimal("42.50")
        assert row.assigned == Decimal("0")
    
    async def test_income_updates_ready_to_assign(self, engine, household):
        await earn(engine, household, date(2024, 3, 1), "2000")
        
        assert await engine.get_ready_to_assign(USER, "2024-03") == Decimal("2000")
        assert (await engine.get_account(household.checking.id)).balance == Decimal("2000")
    
    async def test_expense_does_not_move_ready_to_assign(self, engine, household):
        await earn(engine, household, date(2024, 3, 1), "2000")
        await spend(engine, household, date(2024, 3, 5), "100")
        
        assert await engine.get_ready_to_assign(USER, "2024-03") == Decimal("2000")
    
    async def test_date_accepts_iso_string(self, engine, household):
        transaction = await spend(engine, household, "2024-03-05", "1")
        assert transaction.date == date(2024, 3, 5)
    
    @pytest.mark.parametrize("amount", ["-1", "abc", "1.001", "Infinity"])
    async def test_bad_amount_rejected(self, engine, household, amount):
        with pytest.raises(ValidationError) as exc_info:
            await spend(engine, household, date(2024, 3, 5), amount)
        assert exc_info.value.field == "amount"
    
    async def test_bad_type_rejected(self, engine, household):
        with pytest.raises(ValidationError) as exc_info:
            await engine.create_transaction(
                USER, household.checking.id, household.groceries.id, date(2024, 3, 5), "x", "1", "transfer"
            )
        assert exc_info.value.field == "type"
    
    async def test_bad_date_rejected(self, engine, household):
        with pytest.raises(ValidationError) as exc_info:
            await spend(engine, household, "2024-02-30", "1")
        assert exc_info.value.field == "date"
    
    async def test_missing_account_rejected(self, engine, household):
        with pytest.raises(ReferentialIntegrityError):
            await engine.create_transaction(
                USER, 999, household.groceries.id, date(2024, 3, 5), "x", "1", "expense"
            )
        assert (await engine.list_transactions(USER)).total == 0
    
    async def test_missing_category_rejected(self, engine, household):
        with pytest.raises(ReferentialIntegrityError):
            await engine.create_transaction(
                USER, household.checking.id, 999, date(2024, 3, 5), "x", "1", "expense"
            )
    
    async def test_foreign_account_rejected(self, engine, household):
        theirs = await engine.create_account(OTHER_USER, "Theirs", "Checking")
        with pytest.raises(ReferentialIntegrityError):
            await engine.create_transaction(
                USER, theirs.id, household.groceries.id, date(2024, 3, 5), "x", "1", "expense"
            )
    
    async def test_parent_category_rejected(self, engine, household):
        with pytest.raises(ValidationError) as exc_info:
            await spend(engine, household, date(2024, 3, 5), "40", category=household.food)
        
        assert exc_info.value.field == "category_id"
        assert (await engine.list_transactions(USER)).total == 0
        summary = await engine.get_budget_summary(USER, "2024-03")
        budget = await engine.get_budget(USER, "2024-03")
        food = next(view for view in budget if view.category_id == household.food.id)
        assert food.actual == summary.expenses == Decimal("0")
    
    async def test_transaction_is_audited(self, engine, store, household):
        transaction = await spend(engine, household, date(2024, 3, 5), "10")
        events = await store.get_events_by_entity("transaction", str(transaction.id))
        assert [e.event_type.value for e in events] == ["transaction_created"]


class TestUpdateTransaction:
    """Tests for edits, including moves between accounts, categories and months."""
    
    async def test_amount_change(self, engine, household):
        transaction = await spend(engine, household, date(2024, 3, 5), "10")
        
        await engine.update_transaction(transaction.id, {"amount": "25"})
        
        assert (await engine.get_account(household.checking.id)).balance == Decimal("-25")
        row = await engine.budget.get_row(USER, household.groceries.id, "2024-03")
        assert row.actual == Decimal("25")
    
    async def test_move_to_another_account(self, engine, household):
        savings = await engine.create_account(USER, "Savings", "Savings")
        transaction = await spend(engine, household, date(2024, 3, 5), "10")
        
        await engine.update_transaction(transaction.id, {"account_id": savings.id})
        
        assert (await engine.get_account(household.checking.id)).balance == Decimal("0")
        assert (await engine.get_account(savings.id)).balance == Decimal("-10")
    
    async def test_move_to_another_category(self, engine, household):
        transaction = await spend(engine, household, date(2024, 3, 5), "10")
        
        await engine.update_transaction(transaction.id, {"category_id": household.dining.id})
        
        old = await engine.budget.get_row(USER, household.groceries.id, "2024-03")
        new = await engine.budget.get_row(USER, household.dining.id, "2024-03")
        assert old.actual == Decimal("0")
        assert new.actual == Decimal("10")
    
    async def test_move_to_parent_category_rejected(self, engine, household):
        transaction = await spend(engine, household, date(2024, 3, 5), "10")
        
        with pytest.raises(ValidationError) as exc_info:
            await engine.update_transaction(transaction.id, {"category_id": household.food.id})
        
        assert exc_info.value.field == "category_id"
        assert (await engine.get_transaction(transaction.id)).category_id == household.groceries.id
    
    async def test_move_to_another_month(self, engine, household):
        transaction = await spend(engine, household, date(2024, 3, 31), "10")
        
        await engine.update_transaction(transaction.id, {"date": date(2024, 4, 1)})
        
        march = await engine.budget.get_row(USER, household.groceries.id, "2024-03")
        april = await engine.budget.get_row(USER, household.groceries.id, "2024-04")
        assert march.actual == Decimal("0")
        assert april.actual == Decimal("10")
    
    async def test_income_moved_between_months_updates_both(self, engine, household):
        transaction = await earn(engine, household, date(2024, 3, 1), "1000")
        
        await engine.update_transaction(transaction.id, {"date": "2024-04-01"})
        
        assert await engine.get_ready_to_assign(USER, "2024-03") == Decimal("0")
        assert await engine.get_ready_to_assign(USER, "2024-04") == Decimal("1000")
    
    async def test_type_flip_moves_ready_to_assign(self, engine, household):
        transaction = await earn(engine, household, date(2024, 3, 1), "1000")
        
        await engine.update_transaction(
            transaction.id, {"type": "expense", "category_id": household.groceries.id}
        )
        
        assert await engine.get_ready_to_assign(USER, "2024-03") == Decimal("0")
        assert (await engine.get_account(household.checking.id)).balance == Decimal("-1000")
    
    @pytest.mark.parametrize("field", ["id", "user_id"])
    async def test_immutable_fields(self, engine, household, field):
        transaction = await spend(engine, household, date(2024, 3, 5), "10")
        with pytest.raises(ValidationError) as exc_info:
            await engine.update_transaction(transaction.id, {field: "other"})
        assert exc_info.value.field == field
    
    async def test_move_to_missing_category_rolls_back(self, engine, household):
        transaction = await spend(engine, household, date(2024, 3, 5), "10")
        with pytest.raises(ReferentialIntegrityError):
            await engine.update_transaction(transaction.id, {"category_id": 999})
        assert (await engine.get_transaction(transaction.id)).category_id == household.groceries.id
    
    async def test_missing_transaction(self, engine, household):
        with pytest.raises(NotFoundError):
            await engine.update_transaction(404, {"amount": "1"})


class TestDeleteTransaction:
    """Tests for deleting transactions."""
    
    async def test_delete_restores_derived_values(self, engine, household):
        await earn(engine, household, date(2024, 3, 1), "500")
        transaction = await spend(engine, household, date(2024, 3, 5), "10")
        
        await engine.delete_transaction(transaction.id)
        
        assert (await engine.get_account(household.checking.id)).balance == Decimal("500")
        row = await engine.budget.get_row(USER, household.groceries.id, "2024-03")
        assert row.actual == Decimal("0")
        with pytest.raises(NotFoundError):
            await engine.get_transaction(transaction.id)
    
    async def test_delete_income_updates_ready_to_assign(self, engine, household):
        transaction = await earn(engine, household, date(2024, 3, 1), "500")
        await engine.delete_transaction(transaction.id)
        assert await engine.get_ready_to_assign(USER, "2024-03") == Decimal("0")
    
    async def test_missing_transaction(self, engine):
        with pytest.raises(NotFoundError):
            await engine.delete_transaction(404)


class TestListTransactions:
    """Tests for listing, filtering and paging."""
    
    async def test_newest_first_then_insertion_order(self, engine, household):
        a = await spend(engine, household, date(2024, 3, 1), "1", description="a")
        b = await spend(engine, household, date(2024, 3, 2), "1", description="b")
        c = await spend(engine, household, date(2024, 3, 2), "1", description="c")
        
        page = await engine.list_transactions(USER)
        
        assert [t.id for t in page.transactions] == [b.id, c.id, a.id]
    
    async def test_pagination(self, engine, household):
        for day in range(1, 8):
            await spend(engine, household, date(2024, 3, day), "1")
        
        first = await engine.list_transactions(USER, page=1, page_size=3)
        last = await engine.list_transactions(USER, page=3, page_size=3)
        beyond = await engine.list_transactions(USER, page=4, page_size=3)
        
        assert first.total == 7
        assert first.page_count == 3
        assert [t.date.day for t in first.transactions] == [7, 6, 5]
        assert [t.date.day for t in last.transactions] == [1]
        assert beyond.transactions == []
        assert beyond.total == 7
    
    async def test_default_page_size_from_settings(self, make_engine):
        engine = make_engine(default_page_size="2")
        food = await engine.create_category(USER, "Food", type="expense")
        account = await engine.create_account(USER, "Checking", "Checking")
        for day in (1, 2, 3):
            await engine.create_transaction(USER, account.id, food.id, date(2024, 3, day), "", "1", "expense")
        
        page = await engine.list_transactions(USER)
        
        assert page.page_size == 2
        assert len(page.transactions) == 2
    
    @pytest.mark.parametrize("page,page_size", [(0, 10), (1, 0), (1, 100000)])
    async def test_bad_paging_rejected(self, engine, page, page_size):
        with pytest.raises(ValidationError):
            await engine.list_transactions(USER, page=page, page_size=page_size)
    
    async def test_month_filter_is_half_open(self, engine, household):
        await spend(engine, household, date(2024, 2, 29), "1")
        inside_first = await spend(engine, household, date(2024, 3, 1), "1")
        inside_last = await spend(engine, household, date(2024, 3, 31), "1")
        await spend(engine, household, date(2024, 4, 1), "1")
        
        page = await engine.list_transactions(USER, month="2024-03")
        
        assert {t.id for t in page.transactions} == {inside_first.id, inside_last.id}
    
    async def test_filters_combine(self, engine, household):
        savings = await engine.create_account(USER, "Savings", "Savings")
        await spend(engine, household, date(2024, 3, 1), "1")
        await spend(engine, household, date(2024, 3, 1), "1", category=household.dining)
        await earn(engine, household, date(2024, 3, 1), "1")
        moved = await spend(engine, household, date(2024, 3, 1), "1")
        await engine.update_transaction(moved.id, {"account_id": savings.id})
        
        by_category = await engine.list_transactions(USER, category_id=household.dining.id)
        by_type = await engine.list_transactions(USER, type="income")
        by_account = await engine.list_transactions(USER, account_id=savings.id, type="expense")
        
        assert by_category.total == 1
        assert by_type.total == 1
        assert [t.id for t in by_account.transactions] == [moved.id]
    
    async def test_bad_month_filter_rejected(self, engine):
        with pytest.raises(ValidationError) as exc_info:
            await engine.list_transactions(USER, month="03/2024")
        assert exc_info.value.field == "month"
    
    async def test_other_users_are_invisible(self, engine, household):
        await spend(engine, household, date(2024, 3, 1), "1")
        page = await engine.list_transactions(OTHER_USER)
        assert page.total == 0
