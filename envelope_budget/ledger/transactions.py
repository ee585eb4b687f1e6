"""
Transaction Journal

Every write here is followed, in the same logical operation, by the
recompute pipeline:

- balance of each affected account
- actual of each affected (category, month)
- Ready-to-Assign of each affected month with income involved

An edit affects BOTH the old and the new state of the transaction, since a
move can touch two accounts, two categories and two months.
"""

from datetime import date
from typing import Any, Optional, Union

from envelope_budget.audit import AuditLogger, create_correlation_id
from envelope_budget.config import LedgerSettings, get_settings
from envelope_budget.errors import ReferentialIntegrityError, ValidationError
from envelope_budget.ledger.propagation import Propagator, RecomputePlan
from envelope_budget.models.audit import AuditEventType
from envelope_budget.models.category import Category
from envelope_budget.models.month import month_bounds
from envelope_budget.models.transaction import (
    Transaction,
    TransactionCreate,
    TransactionPage,
    TransactionType,
    TransactionUpdate,
)
from envelope_budget.services.storage import BudgetStore, NotFoundError, StoreSession
from envelope_budget.validation import InputValidator


_IMMUTABLE_FIELDS = ("id", "user_id")


class TransactionJournal:
    """Create, edit, delete and list transactions."""

    def __init__(
        self,
        store: BudgetStore,
        propagator: Propagator,
        audit: AuditLogger,
        settings: Optional[LedgerSettings] = None,
        validator: Optional[InputValidator] = None,
    ):
        self._store = store
        self._propagator = propagator
        self._audit = audit
        self._settings = settings or get_settings().ledger
        self._validator = validator or InputValidator(self._settings)

    async def create_transaction(
        self,
        user_id: str,
        account_id: int,
        category_id: int,
        date: Union[date, str],
        description: str,
        amount: Any,
        type: Union[TransactionType, str],
    ) -> Transaction:
        """
        Record a transaction.

        Raises:
            ValidationError: Bad amount, date or type, or a category with
                             sub-categories
            ReferentialIntegrityError: Account or category missing or owned
                                       by another user
            PartialUpdateError: Saved, but a follow-up recompute failed
        """
        user_id = self._validator.user_id(user_id)
        data = self._validator.coerce(TransactionCreate, {
            "account_id": account_id,
            "category_id": category_id,
            "date": date,
            "description": description or "",
            "amount": self._validator.money(amount),
            "type": type,
        })

        async with self._store.unit_of_work() as session:
            category = await self._check_references(session, user_id, data.account_id, data.category_id)
            transaction = await session.add_transaction(
                Transaction(user_id=user_id, **data.model_dump())
            )

        plan = RecomputePlan(user_id=user_id)
        plan.add_transaction(transaction, category.type)

        correlation_id = create_correlation_id()
        await self._audit.log_transaction(AuditEventType.TRANSACTION_CREATED, transaction, correlation_id)
        return await self._propagator.run(plan, result=transaction, correlation_id=correlation_id)

    async def get_transaction(self, transaction_id: int) -> Transaction:
        async with self._store.unit_of_work() as session:
            transaction = await session.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        return transaction

    async def update_transaction(
        self,
        transaction_id: int,
        fields: Union[dict[str, Any], TransactionUpdate],
    ) -> Transaction:
        """
        Apply a partial update to any field except id and owner.

        Both the old and the new state are recomputed.
        """
        if isinstance(fields, dict):
            for name in _IMMUTABLE_FIELDS:
                if name in fields:
                    raise ValidationError(name, "Cannot be changed after the transaction is created")
            if "amount" in fields and fields["amount"] is not None:
                fields = {**fields, "amount": self._validator.money(fields["amount"])}
        update = self._validator.coerce(TransactionUpdate, fields)
        changes = update.model_dump(exclude_unset=True)
        for name, value in changes.items():
            if value is None and name != "description":
                raise ValidationError(name, "Must not be empty")
        if changes.get("description", "") is None:
            changes["description"] = ""

        async with self._store.unit_of_work() as session:
            old = await session.get_transaction(transaction_id)
            if old is None:
                raise NotFoundError(f"Transaction not found: {transaction_id}")

            new = old.model_copy(update=changes)
            old_category = await session.get_category(old.category_id)
            new_category = await self._check_references(
                session, old.user_id, new.account_id, new.category_id
            )
            saved = await session.save_transaction(new)

        plan = RecomputePlan(user_id=old.user_id)
        plan.add_transaction(old, old_category.type if old_category else None)
        plan.add_transaction(saved, new_category.type)

        correlation_id = create_correlation_id()
        await self._audit.log_transaction(AuditEventType.TRANSACTION_UPDATED, saved, correlation_id)
        return await self._propagator.run(plan, result=saved, correlation_id=correlation_id)

    async def delete_transaction(self, transaction_id: int) -> None:
        async with self._store.unit_of_work() as session:
            transaction = await session.get_transaction(transaction_id)
            if transaction is None:
                raise NotFoundError(f"Transaction not found: {transaction_id}")
            category = await session.get_category(transaction.category_id)
            await session.remove_transaction(transaction_id)

        plan = RecomputePlan(user_id=transaction.user_id)
        plan.add_transaction(transaction, category.type if category else None)

        correlation_id = create_correlation_id()
        await self._audit.log_transaction(AuditEventType.TRANSACTION_DELETED, transaction, correlation_id)
        await self._propagator.run(plan, correlation_id=correlation_id)

    async def list_transactions(
        self,
        user_id: str,
        page: int = 1,
        page_size: Optional[int] = None,
        month: Optional[Union[str, date]] = None,
        account_id: Optional[int] = None,
        category_id: Optional[int] = None,
        type: Optional[Union[TransactionType, str]] = None,
    ) -> TransactionPage:
        """
        One page of the user's transactions.

        Ordered by date (newest first), then by id (oldest first) so that
        pages are stable. `total` counts every match, not just this page.
        """
        user_id = self._validator.user_id(user_id)
        page, page_size = self._validator.page(page, page_size)
        on_or_after: Optional[date] = None
        before: Optional[date] = None
        if month is not None:
            on_or_after, before = month_bounds(self._validator.month(month))
        if type is not None:
            try:
                type = TransactionType(type)
            except ValueError as e:
                raise ValidationError("type", "Must be income or expense") from e

        async with self._store.unit_of_work() as session:
            matches = await session.find_transactions(
                user_id,
                account_id=account_id,
                category_id=category_id,
                on_or_after=on_or_after,
                before=before,
                type=type,
            )

        matches.sort(key=lambda t: (-t.date.toordinal(), t.id))
        start = (page - 1) * page_size
        return TransactionPage(
            transactions=matches[start:start + page_size],
            total=len(matches),
            page=page,
            page_size=page_size,
        )

    async def _check_references(
        self,
        session: StoreSession,
        user_id: str,
        account_id: int,
        category_id: int,
    ) -> Category:
        account = await session.get_account(account_id)
        if account is None or account.user_id != user_id:
            raise ReferentialIntegrityError(f"Account not found: {account_id}")
        category = await session.get_category(category_id)
        if category is None or category.user_id != user_id:
            raise ReferentialIntegrityError(f"Category not found: {category_id}")
        categories = await session.list_categories(user_id)
        if any(c.parent_id == category.id for c in categories):
            raise ValidationError(
                "category_id",
                f"'{category.name}' has sub-categories; record the transaction in one of those",
            )
        return category
