"""
Account Models

An account's balance is DERIVED: it always equals the signed sum of the
account's transactions (income adds, expense subtracts). The only way to
give an account a starting balance is the synthetic "Initial Balance"
transaction recorded at creation.

DESIGN DECISION: Sub-accounts are a display grouping. Their balances are
never folded into the stored balance of the parent account; callers that
want a group total ask for AccountNode.total_balance explicitly.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Account(BaseModel):
    """A stored account."""
    model_config = ConfigDict(str_strip_whitespace=True)
    
    id: Optional[int] = Field(
        default=None,
        description="Store-assigned identifier (None until inserted)"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owner of the account"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Account name"
    )
    type: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Free-form account type (e.g., Checking, Savings, Credit)"
    )
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Signed sum of the account's transactions"
    )
    parent_id: Optional[int] = Field(
        default=None,
        description="Parent account when this is a sub-account"
    )
    balance_stale: bool = Field(
        default=False,
        description="Set when a balance recompute failed after a committed write"
    )
    created_at: datetime = Field(
        default_factory=_utcnow
    )


class AccountCreate(BaseModel):
    """Input for creating an account."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")
    
    name: str = Field(..., min_length=1, max_length=200)
    type: str = Field(..., min_length=1, max_length=50)
    balance: Decimal = Field(
        default=Decimal("0"),
        decimal_places=2,
        description="Initial balance, recorded as a synthetic transaction"
    )
    parent_id: Optional[int] = None


class AccountUpdate(BaseModel):
    """Editable account fields. Balance is deliberately absent."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")
    
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    type: Optional[str] = Field(default=None, min_length=1, max_length=50)
    parent_id: Optional[int] = None


class AccountNode(BaseModel):
    """A top-level account with its sub-accounts, for grouped display."""
    
    account: Account
    sub_accounts: list[Account] = Field(default_factory=list)
    
    @property
    def total_balance(self) -> Decimal:
        """Own balance plus every sub-account balance."""
        return self.account.balance + sum(
            (sub.balance for sub in self.sub_accounts), Decimal("0")
        )
