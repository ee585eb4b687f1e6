"""
Account Ledger

An account's balance is never set directly. It is the signed sum of the
account's transactions, refreshed by the recompute pipeline after every
write that touches the account.

Opening balances are recorded as a synthetic transaction in the reserved
"Initial Balance" category, created in the same unit of work as the
account. The balance invariant therefore holds from the first moment the
account exists.

DESIGN DECISION: Sub-accounts are a grouping for display. They are never
folded into the stored balance of their parent; account_tree() sums them
explicitly for callers that want group totals.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Callable, Optional, Union

from envelope_budget.audit import AuditLogger, create_correlation_id
from envelope_budget.config import LedgerSettings, get_settings
from envelope_budget.errors import (
    AccountNotEmptyError,
    ReferentialIntegrityError,
    ValidationError,
)
from envelope_budget.ledger.categories import CategoryStore
from envelope_budget.ledger.propagation import (
    ZERO,
    Propagator,
    RecomputePlan,
    refresh_balance,
)
from envelope_budget.models.account import Account, AccountCreate, AccountNode, AccountUpdate
from envelope_budget.models.transaction import Transaction, TransactionType
from envelope_budget.services.storage import BudgetStore, NotFoundError, StoreSession
from envelope_budget.validation import InputValidator


Clock = Callable[[], date]


class AccountLedger:
    """Accounts and their derived balances."""

    def __init__(
        self,
        store: BudgetStore,
        categories: CategoryStore,
        propagator: Propagator,
        audit: AuditLogger,
        settings: Optional[LedgerSettings] = None,
        validator: Optional[InputValidator] = None,
        clock: Optional[Clock] = None,
    ):
        self._store = store
        self._categories = categories
        self._propagator = propagator
        self._audit = audit
        self._settings = settings or get_settings().ledger
        self._validator = validator or InputValidator(self._settings)
        self._clock = clock or date.today

    async def create_account(
        self,
        user_id: str,
        name: str,
        type: str,
        balance: Any = ZERO,
        parent_id: Optional[int] = None,
    ) -> Account:
        """
        Create an account, with its opening balance as a transaction.

        Args:
            user_id: Owner
            name: Display name
            type: Free-form account type (Checking, Savings, ...)
            balance: Opening balance; non-zero values create one synthetic
                     transaction dated today
            parent_id: Top-level account to group this one under

        Raises:
            ValidationError: Bad input, or a negative opening balance while
                             those are not allowed
            ReferentialIntegrityError: Parent missing or owned by another user
            PartialUpdateError: Created, but a follow-up recompute failed
        """
        user_id = self._validator.user_id(user_id)
        data = self._validator.coerce(AccountCreate, {
            "name": name,
            "type": type,
            "balance": self._validator.money(balance, "balance"),
            "parent_id": parent_id,
        })
        if data.balance < 0 and not self._settings.allow_negative_initial_balance:
            raise ValidationError("balance", "Initial balance cannot be negative")

        plan = RecomputePlan(user_id=user_id)
        async with self._store.unit_of_work() as session:
            if data.parent_id is not None:
                await self._load_parent(session, user_id, data.parent_id)

            account = await session.add_account(Account(
                user_id=user_id,
                name=data.name,
                type=data.type,
                parent_id=data.parent_id,
            ))
            plan.accounts.add(account.id)

            if data.balance != 0:
                reserved = await self._categories.get_reserved_category(session, user_id)
                opening = await session.add_transaction(Transaction(
                    user_id=user_id,
                    account_id=account.id,
                    category_id=reserved.id,
                    date=self._clock(),
                    description=reserved.name,
                    amount=abs(data.balance),
                    type=TransactionType.INCOME if data.balance > 0 else TransactionType.EXPENSE,
                ))
                plan.add_transaction(opening, reserved.type)
            else:
                reserved = None

        if reserved is not None:
            self._categories.invalidate(user_id)

        correlation_id = create_correlation_id()
        await self._audit.log_account_created(
            account.model_copy(update={"balance": data.balance}), correlation_id
        )
        await self._propagator.run(plan, result=account, correlation_id=correlation_id)
        return await self.get_account(account.id)

    async def get_account(self, account_id: int) -> Account:
        async with self._store.unit_of_work() as session:
            account = await session.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")
        return account

    async def list_accounts(self, user_id: str) -> list[Account]:
        """All accounts of the user, flat, in creation order."""
        user_id = self._validator.user_id(user_id)
        async with self._store.unit_of_work() as session:
            return await session.list_accounts(user_id)

    async def account_tree(self, user_id: str) -> list[AccountNode]:
        """
        Top-level accounts with their sub-accounts attached.

        A sub-account whose parent no longer exists is shown as top-level.
        """
        accounts = await self.list_accounts(user_id)
        nodes = {a.id: AccountNode(account=a) for a in accounts if a.parent_id is None}
        for account in accounts:
            if account.parent_id is None:
                continue
            parent = nodes.get(account.parent_id)
            if parent is None:
                nodes[account.id] = AccountNode(account=account)
            else:
                parent.sub_accounts.append(account)
        return sorted(nodes.values(), key=lambda n: n.account.id)

    async def update_account(self, account_id: int, fields: Union[dict[str, Any], AccountUpdate]) -> Account:
        """
        Apply a partial update (name, type, parent_id).

        The balance is derived from transactions and is rejected here.
        """
        if isinstance(fields, dict) and "balance" in fields:
            raise ValidationError(
                "balance",
                "The balance is calculated from transactions and cannot be edited",
            )
        update = self._validator.coerce(AccountUpdate, fields)
        changes = update.model_dump(exclude_unset=True)
        for required in ("name", "type"):
            if required in changes and changes[required] is None:
                raise ValidationError(required, "Must not be empty")

        async with self._store.unit_of_work() as session:
            account = await session.get_account(account_id)
            if account is None:
                raise NotFoundError(f"Account not found: {account_id}")

            if changes.get("parent_id") is not None:
                if changes["parent_id"] == account.id:
                    raise ValidationError("parent_id", "An account cannot be its own parent")
                siblings = await session.list_accounts(account.user_id)
                if any(a.parent_id == account.id for a in siblings):
                    raise ValidationError(
                        "parent_id",
                        "An account with sub-accounts cannot become a sub-account",
                    )
                await self._load_parent(session, account.user_id, changes["parent_id"])

            updated = await session.save_account(account.model_copy(update=changes))

        await self._audit.log_account_updated(updated, sorted(changes))
        return updated

    async def delete_account(self, account_id: int) -> None:
        """
        Delete an account.

        With transactions, the configured policy decides: "reject" raises
        AccountNotEmptyError, "cascade" deletes them in the same unit of
        work and refreshes every budget figure they fed.

        Raises:
            AccountNotEmptyError: Has sub-accounts, or transactions under "reject"
            PartialUpdateError: Deleted, but a follow-up recompute failed
        """
        async with self._store.unit_of_work() as session:
            account = await session.get_account(account_id)
            if account is None:
                raise NotFoundError(f"Account not found: {account_id}")

            user_id = account.user_id
            accounts = await session.list_accounts(user_id)
            if any(a.parent_id == account.id for a in accounts):
                raise AccountNotEmptyError(f"Account {account_id} has sub-accounts")

            transactions = await session.find_transactions(user_id, account_id=account.id)
            if transactions and self._settings.account_delete_policy == "reject":
                raise AccountNotEmptyError(
                    f"Account {account_id} has {len(transactions)} transactions"
                )

            plan = RecomputePlan(user_id=user_id)
            for transaction in transactions:
                category = await session.get_category(transaction.category_id)
                await session.remove_transaction(transaction.id)
                plan.add_transaction(transaction, category.type if category else None)
            await session.remove_account(account.id)

        # The deleted account has no balance left to refresh
        plan.accounts.discard(account.id)
        correlation_id = create_correlation_id()
        await self._audit.log_account_deleted(account, len(transactions), correlation_id)
        await self._propagator.run(plan, correlation_id=correlation_id)

    async def recompute_balance(self, account_id: int) -> Decimal:
        """
        Rebuild the stored balance from the account's transactions.

        Clears the stale flag. Running it twice stores the same value.
        """
        async with self._store.unit_of_work() as session:
            balance = await refresh_balance(session, account_id)
        if balance is None:
            raise NotFoundError(f"Account not found: {account_id}")
        return balance

    async def _load_parent(self, session: StoreSession, user_id: str, parent_id: int) -> Account:
        parent = await session.get_account(parent_id)
        if parent is None or parent.user_id != user_id:
            raise ReferentialIntegrityError(f"Parent account not found: {parent_id}")
        if parent.parent_id is not None:
            raise ValidationError(
                "parent_id",
                f"'{parent.name}' is a sub-account; sub-accounts cannot be nested",
            )
        return parent
