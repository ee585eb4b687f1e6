"""
Category Store

Categories form a two-level tree per user: roots, and children that hang
off a root. The rules enforced on every write:

1. A parent must exist, belong to the same user and be a root
2. A child has the same type (income/expense) as its parent
3. Sibling names are unique (case-insensitive)
4. The reserved "Initial Balance" category cannot be renamed, moved or deleted

DESIGN DECISION: A missing parent is an error (InvalidParentError), never a
silent fallback to root. Rows that are already orphaned in the store are
surfaced in CategoryTree.orphans instead of being dropped.

Legacy rows whose type disagrees with their parent are not rejected at read
time. They stay in the tree and are listed in CategoryTree.type_mismatches.
"""

from typing import Any, Optional, Union

import structlog

from envelope_budget.audit import AuditLogger, create_correlation_id
from envelope_budget.config import DEFAULT_CATEGORIES, LedgerSettings, get_settings
from envelope_budget.errors import (
    CategoryInUseError,
    CategoryTypeMismatchError,
    InvalidParentError,
    ReferentialIntegrityError,
    ValidationError,
)
from envelope_budget.ledger.propagation import Propagator, RecomputePlan
from envelope_budget.models.category import (
    Category,
    CategoryNode,
    CategoryTree,
    CategoryType,
    CategoryUpdate,
)
from envelope_budget.services.storage import BudgetStore, NotFoundError, StoreSession
from envelope_budget.validation import InputValidator


logger = structlog.get_logger(__name__)


def _same_name(a: str, b: str) -> bool:
    return a.strip().casefold() == b.strip().casefold()


def build_tree(categories: list[Category]) -> CategoryTree:
    """
    Assemble rows into a tree in one pass over an id -> node map.

    Siblings are ordered by (sort_order, id).
    """
    ordered = sorted(categories, key=lambda c: (c.sort_order, c.id))
    nodes = {c.id: CategoryNode(category=c) for c in ordered}
    tree = CategoryTree()

    for category in ordered:
        node = nodes[category.id]
        if category.parent_id is None:
            tree.roots.append(node)
            continue
        parent = nodes.get(category.parent_id)
        if parent is None:
            tree.orphans.append(node)
            continue
        parent.children.append(node)
        if parent.category.type != category.type:
            tree.type_mismatches.append(category.id)

    return tree


class CategoryStore:
    """
    Category definitions of every user.

    Trees are cached per user and dropped on every category mutation made
    through this instance.
    """

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
        self._trees: dict[str, CategoryTree] = {}

    def invalidate(self, user_id: str) -> None:
        """Drop the cached tree of a user."""
        self._trees.pop(user_id, None)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_category(self, category_id: int) -> Category:
        async with self._store.unit_of_work() as session:
            category = await session.get_category(category_id)
        if category is None:
            raise NotFoundError(f"Category not found: {category_id}")
        return category

    async def list_categories(self, user_id: str) -> CategoryTree:
        """
        The user's categories as a tree.

        A user with no categories at all gets the default set first when
        seeding is enabled.
        """
        user_id = self._validator.user_id(user_id)
        cached = self._trees.get(user_id)
        if cached is not None:
            return cached.model_copy(deep=True)

        seeded: list[str] = []
        async with self._store.unit_of_work() as session:
            categories = await session.list_categories(user_id)
            if not categories and self._settings.seed_default_categories:
                seeded = await self._seed(session, user_id)
                categories = await session.list_categories(user_id)

        if seeded:
            await self._audit.log_categories_seeded(user_id, seeded)

        tree = build_tree(categories)
        if tree.type_mismatches:
            logger.warning(
                "category_type_mismatch",
                user_id=user_id,
                category_ids=tree.type_mismatches,
            )
        if tree.orphans:
            logger.warning(
                "category_orphans",
                user_id=user_id,
                category_ids=[node.id for node in tree.orphans],
            )

        self._trees[user_id] = tree
        return tree.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_category(
        self,
        user_id: str,
        name: str,
        parent_id: Optional[int] = None,
        type: Union[CategoryType, str] = CategoryType.EXPENSE,
    ) -> Category:
        """
        Create a root category, or a child when parent_id is given.

        Raises:
            ValidationError: Empty name, duplicate sibling name, bad type,
                             or a parent that is not a root or that holds
                             assigned money or transactions of its own
            InvalidParentError: Parent missing or owned by another user
            CategoryTypeMismatchError: Child type differs from parent type
        """
        user_id = self._validator.user_id(user_id)
        name = self._validator.name(name)
        category_type = self._category_type(type)

        async with self._store.unit_of_work() as session:
            siblings = await self._siblings(session, user_id, parent_id)
            if parent_id is not None:
                parent = await self._load_parent(session, user_id, parent_id)
                self._check_type_agreement(parent, category_type)
            self._check_unique_name(siblings, name)

            sort_order = max((c.sort_order for c in siblings), default=-1) + 1
            category = await session.add_category(Category(
                user_id=user_id,
                name=name,
                parent_id=parent_id,
                type=category_type,
                sort_order=sort_order,
            ))

        self.invalidate(user_id)
        await self._audit.log_category_created(category)
        return category

    async def update_category(self, category_id: int, fields: Union[dict[str, Any], CategoryUpdate]) -> Category:
        """
        Apply a partial update (name, parent_id, type, sort_order).

        Moving a category re-checks every parent rule. Changing the type of
        a category re-checks agreement with its parent and its children.
        """
        update = self._validator.coerce(CategoryUpdate, fields)
        changes = update.model_dump(exclude_unset=True)

        async with self._store.unit_of_work() as session:
            category = await session.get_category(category_id)
            if category is None:
                raise NotFoundError(f"Category not found: {category_id}")

            if category.is_reserved and set(changes) - {"sort_order"}:
                raise ValidationError(
                    "name",
                    f"'{category.name}' is a system category and can only be reordered",
                )

            all_categories = await session.list_categories(category.user_id)
            children = [c for c in all_categories if c.parent_id == category.id]
            new_parent_id = changes.get("parent_id", category.parent_id)
            new_type = changes.get("type", category.type)

            if "name" in changes and changes["name"] is None:
                raise ValidationError("name", "Must not be empty")
            if "type" in changes and changes["type"] is None:
                raise ValidationError("type", "Must be income or expense")
            if "sort_order" in changes and changes["sort_order"] is None:
                raise ValidationError("sort_order", "Must be an integer")

            if new_parent_id is not None:
                if new_parent_id == category.id:
                    raise ValidationError("parent_id", "A category cannot be its own parent")
                if children:
                    raise ValidationError(
                        "parent_id",
                        "A category with sub-categories cannot be moved under another category",
                    )
                parent = await self._load_parent(session, category.user_id, new_parent_id)
                self._check_type_agreement(parent, new_type)

            if "type" in changes:
                mismatched = [c for c in children if c.type != new_type]
                if mismatched:
                    raise CategoryTypeMismatchError(
                        "type",
                        f"Sub-categories of '{category.name}' are {mismatched[0].type.value}; "
                        "change them first",
                    )

            name = changes.get("name", category.name)
            if "name" in changes or "parent_id" in changes:
                siblings = [
                    c for c in all_categories
                    if c.parent_id == new_parent_id and c.id != category.id
                ]
                self._check_unique_name(siblings, name)

            updated = await session.save_category(category.model_copy(update=changes))

        self.invalidate(updated.user_id)
        await self._audit.log_category_updated(updated, sorted(changes))
        return updated

    async def rename_category(self, category_id: int, name: str) -> Category:
        return await self.update_category(category_id, {"name": name})

    async def reparent_category(self, category_id: int, parent_id: Optional[int]) -> Category:
        return await self.update_category(category_id, {"parent_id": parent_id})

    async def delete_category(self, category_id: int, reassign_to: Optional[int] = None) -> None:
        """
        Delete a category.

        A category with sub-categories is never deleted. A category with
        transactions is only deleted when reassign_to names another of the
        user's categories; its transactions are moved there in the same
        unit of work. Budget rows of the deleted category are removed.

        Raises:
            CategoryInUseError: Has sub-categories, or transactions and no target
            ReferentialIntegrityError: Reassignment target missing or foreign
            ValidationError: Reserved category, or a target that is the
                             category itself or has sub-categories
            PartialUpdateError: Deleted, but a follow-up recompute failed
        """
        moved = 0
        async with self._store.unit_of_work() as session:
            category = await session.get_category(category_id)
            if category is None:
                raise NotFoundError(f"Category not found: {category_id}")
            if category.is_reserved:
                raise ValidationError(
                    "category_id",
                    f"'{category.name}' is a system category and cannot be deleted",
                )

            user_id = category.user_id
            plan = RecomputePlan(user_id=user_id)
            all_categories = await session.list_categories(user_id)
            if any(c.parent_id == category.id for c in all_categories):
                raise CategoryInUseError(f"Category {category_id} has sub-categories")

            target = None
            if reassign_to is not None:
                if reassign_to == category.id:
                    raise ValidationError("reassign_to", "Cannot move transactions to the category being deleted")
                target = await session.get_category(reassign_to)
                if target is None or target.user_id != user_id:
                    raise ReferentialIntegrityError(f"Category not found: {reassign_to}")
                if any(c.parent_id == target.id for c in all_categories):
                    raise ValidationError(
                        "reassign_to",
                        f"'{target.name}' has sub-categories; move the transactions to one of those",
                    )

            transactions = await session.find_transactions(user_id, category_id=category.id)
            if transactions and target is None:
                raise CategoryInUseError(
                    f"Category {category_id} has {len(transactions)} transactions"
                )

            for transaction in transactions:
                moved_transaction = transaction.model_copy(update={"category_id": target.id})
                await session.save_transaction(moved_transaction)
                plan.add_transaction(moved_transaction, target.type)
                moved += 1

            # Rows of a deleted category would keep counting as assigned
            plan.months.update(await session.remove_budget_rows(user_id, category.id))
            await session.remove_category(category.id)

        self.invalidate(user_id)
        await self._audit.log_category_deleted(category, reassign_to if moved else None, moved)
        # Balances are unchanged by a category move
        plan.accounts.clear()
        await self._propagator.run(plan, correlation_id=create_correlation_id())

    async def reorder_categories(self, user_id: str, ordered_ids: list[int]) -> CategoryTree:
        """
        Set sort_order from the position of each id in the list.

        Only the listed categories are touched, so reordering one set of
        siblings leaves the others alone.
        """
        user_id = self._validator.user_id(user_id)
        if len(set(ordered_ids)) != len(ordered_ids):
            raise ValidationError("ordered_ids", "Each category may appear only once")

        async with self._store.unit_of_work() as session:
            for position, category_id in enumerate(ordered_ids):
                category = await session.get_category(category_id)
                if category is None or category.user_id != user_id:
                    raise ReferentialIntegrityError(f"Category not found: {category_id}")
                if category.sort_order != position:
                    await session.save_category(category.model_copy(update={"sort_order": position}))

        self.invalidate(user_id)
        await self._audit.log_categories_reordered(user_id, list(ordered_ids))
        return await self.list_categories(user_id)

    async def ensure_default_categories(self, user_id: str) -> list[str]:
        """
        Make sure every default category exists for the user.

        Upsert by name: existing names are left alone, so running this any
        number of times creates each default once.

        Returns:
            Names of the categories that were created
        """
        user_id = self._validator.user_id(user_id)
        async with self._store.unit_of_work() as session:
            created = await self._seed(session, user_id)
        if created:
            self.invalidate(user_id)
            await self._audit.log_categories_seeded(user_id, created)
        return created

    async def get_reserved_category(self, session: StoreSession, user_id: str) -> Category:
        """
        The user's "Initial Balance" category, created on first use.

        Runs inside the caller's unit of work. A root income category that
        already carries the configured name is adopted as the reserved one.
        The caller invalidates the tree cache after committing.
        """
        name = self._settings.initial_balance_category
        categories = await session.list_categories(user_id)
        for category in categories:
            if category.is_reserved:
                return category
        for category in categories:
            if (
                category.parent_id is None
                and category.type == CategoryType.INCOME
                and _same_name(category.name, name)
            ):
                return await session.save_category(category.model_copy(update={"is_reserved": True}))

        roots = [c for c in categories if c.parent_id is None]
        return await session.add_category(Category(
            user_id=user_id,
            name=name,
            type=CategoryType.INCOME,
            sort_order=max((c.sort_order for c in roots), default=-1) + 1,
            is_reserved=True,
        ))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _seed(self, session: StoreSession, user_id: str) -> list[str]:
        existing = await session.list_categories(user_id)
        created: list[str] = []
        existing_ids = {c.id for c in existing}
        root_order = max((c.sort_order for c in existing if c.parent_id is None), default=-1)

        for root_name, category_type, child_names in DEFAULT_CATEGORIES:
            root = next(
                (c for c in existing if c.parent_id is None and _same_name(c.name, root_name)),
                None,
            )
            if root is None:
                root_order += 1
                root = await session.add_category(Category(
                    user_id=user_id,
                    name=root_name,
                    type=category_type,
                    sort_order=root_order,
                ))
                created.append(root_name)

            children = [c for c in existing if c.parent_id == root.id]
            if not children and root.id in existing_ids:
                reason = await self._direct_money(session, root)
                if reason:
                    logger.warning(
                        "default_children_skipped",
                        user_id=user_id,
                        category_id=root.id,
                        reason=reason,
                    )
                    continue
            child_order = max((c.sort_order for c in children), default=-1)
            for child_name in child_names:
                if any(_same_name(c.name, child_name) for c in children):
                    continue
                child_order += 1
                await session.add_category(Category(
                    user_id=user_id,
                    name=child_name,
                    parent_id=root.id,
                    type=root.type,
                    sort_order=child_order,
                ))
                created.append(child_name)

        return created

    async def _siblings(
        self,
        session: StoreSession,
        user_id: str,
        parent_id: Optional[int],
    ) -> list[Category]:
        categories = await session.list_categories(user_id)
        return [c for c in categories if c.parent_id == parent_id]

    async def _load_parent(self, session: StoreSession, user_id: str, parent_id: int) -> Category:
        parent = await session.get_category(parent_id)
        if parent is None or parent.user_id != user_id:
            raise InvalidParentError(f"Parent category not found: {parent_id}")
        if parent.parent_id is not None:
            raise ValidationError(
                "parent_id",
                f"'{parent.name}' is a sub-category; categories can only be nested one level",
            )
        if parent.is_reserved:
            raise ValidationError(
                "parent_id",
                f"'{parent.name}' is a system category and cannot have sub-categories",
            )
        reason = await self._direct_money(session, parent)
        if reason:
            raise ValidationError(
                "parent_id",
                f"'{parent.name}' {reason}; clear it before adding sub-categories",
            )
        return parent

    async def _direct_money(self, session: StoreSession, category: Category) -> Optional[str]:
        """
        Why a category cannot have sub-categories, or None.

        A parent shows only the sums of its children, so money assigned to
        or spent in the category itself would drop out of the budget.
        """
        rows = await session.list_budget_rows(category.user_id, category_id=category.id)
        assigned = sorted(row.month for row in rows if row.assigned != 0)
        if assigned:
            return f"has money assigned in {assigned[0]}"
        if await session.find_transactions(category.user_id, category_id=category.id):
            return "has transactions of its own"
        return None

    def _check_type_agreement(self, parent: Category, category_type: CategoryType) -> None:
        if parent.type != category_type:
            raise CategoryTypeMismatchError(
                "type",
                f"Must match the parent category '{parent.name}' ({parent.type.value})",
            )

    def _check_unique_name(self, siblings: list[Category], name: str) -> None:
        if any(_same_name(c.name, name) for c in siblings):
            raise ValidationError("name", f"A category named '{name}' already exists here")

    def _category_type(self, value: Union[CategoryType, str]) -> CategoryType:
        try:
            return CategoryType(value)
        except ValueError as e:
            raise ValidationError("type", "Must be income or expense") from e
