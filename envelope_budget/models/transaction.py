"""
Transaction Models

The amount is a non-negative magnitude. Its sign comes from `type`:
income adds to the account, expense subtracts from it.
"""

import datetime as dt
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from envelope_budget.models.month import month_of


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransactionType(str, Enum):
    """Direction of money movement."""
    INCOME = "income"
    EXPENSE = "expense"


class Transaction(BaseModel):
    """A stored transaction."""
    model_config = ConfigDict(str_strip_whitespace=True)
    
    id: Optional[int] = Field(
        default=None,
        description="Store-assigned identifier, immutable once inserted"
    )
    user_id: str = Field(..., min_length=1)
    account_id: int
    category_id: int
    date: date
    description: str = Field(
        default="",
        max_length=500,
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        decimal_places=2,
        description="Magnitude; the sign is implied by type"
    )
    type: TransactionType
    created_at: datetime = Field(
        default_factory=_utcnow
    )
    
    @property
    def month(self) -> str:
        """Calendar month (YYYY-MM) the transaction belongs to."""
        return month_of(self.date)
    
    @property
    def signed_amount(self) -> Decimal:
        """Amount as it affects the account balance."""
        if self.type == TransactionType.INCOME:
            return self.amount
        return -self.amount


class TransactionCreate(BaseModel):
    """Input for recording a transaction."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")
    
    account_id: int
    category_id: int
    date: date
    description: str = Field(default="", max_length=500)
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    type: TransactionType


class TransactionUpdate(BaseModel):
    """Editable transaction fields. The id and owner never change."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")
    
    account_id: Optional[int] = None
    category_id: Optional[int] = None
    date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, max_length=500)
    amount: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    type: Optional[TransactionType] = None


class TransactionPage(BaseModel):
    """One page of a transaction listing."""
    
    transactions: list[Transaction] = Field(default_factory=list)
    total: int = Field(
        ...,
        ge=0,
        description="Number of matching transactions across all pages"
    )
    page: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1)
    
    @property
    def page_count(self) -> int:
        return max(1, -(-self.total // self.page_size))
