"""
Category Models

Categories form a two-level tree: roots (parent_id is None) and children
that reference a root. A child always has the same type as its parent.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CategoryType(str, Enum):
    """Whether money in this category comes in or goes out."""
    INCOME = "income"
    EXPENSE = "expense"


class Category(BaseModel):
    """A stored category row."""
    model_config = ConfigDict(str_strip_whitespace=True)
    
    id: Optional[int] = Field(
        default=None,
        description="Store-assigned identifier (None until inserted)"
    )
    user_id: str = Field(..., min_length=1)
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name, unique per user and parent"
    )
    parent_id: Optional[int] = Field(
        default=None,
        description="Root category this child belongs to"
    )
    type: CategoryType
    sort_order: int = Field(
        default=0,
        description="Position among siblings (ties broken by id)"
    )
    is_reserved: bool = Field(
        default=False,
        description="System category (e.g., Initial Balance) that users cannot delete"
    )
    
    @property
    def is_root(self) -> bool:
        return self.parent_id is None


class CategoryUpdate(BaseModel):
    """Editable category fields."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")
    
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    parent_id: Optional[int] = None
    type: Optional[CategoryType] = None
    sort_order: Optional[int] = None


class CategoryNode(BaseModel):
    """A category with its children attached."""
    
    category: Category
    children: list["CategoryNode"] = Field(default_factory=list)
    
    @property
    def id(self) -> int:
        return self.category.id
    
    @property
    def name(self) -> str:
        return self.category.name


class CategoryTree(BaseModel):
    """
    Result of assembling a user's categories.
    
    Rows whose parent cannot be found are listed in `orphans` rather than
    dropped. Children whose type disagrees with their parent (legacy data)
    stay attached but are reported in `type_mismatches`.
    """
    
    roots: list[CategoryNode] = Field(default_factory=list)
    orphans: list[CategoryNode] = Field(default_factory=list)
    type_mismatches: list[int] = Field(default_factory=list)
    
    def find(self, category_id: int) -> Optional[CategoryNode]:
        for node in self.walk():
            if node.id == category_id:
                return node
        return None
    
    def walk(self):
        """Yield every node, roots before their children, orphans last."""
        for node in [*self.roots, *self.orphans]:
            yield from _walk(node)


def _walk(node: CategoryNode):
    yield node
    for child in node.children:
        yield from _walk(child)
