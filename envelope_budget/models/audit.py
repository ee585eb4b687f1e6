"""
Audit Models for Envelope Budget

Every mutation of money-bearing data is logged for audit purposes.
This provides:
1. Traceability of who changed which figure and when
2. Debugging information when a recompute stage fails
3. A record of which cached figures were marked stale, and why

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
This is an operational trail, not a tamper-proof ledger.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every primary mutation and every recompute outcome has its own type.
    """
    # Accounts
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"

    # Categories
    CATEGORY_CREATED = "category_created"
    CATEGORY_UPDATED = "category_updated"
    CATEGORY_DELETED = "category_deleted"
    CATEGORIES_SEEDED = "categories_seeded"
    CATEGORIES_REORDERED = "categories_reordered"

    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"

    # Budget
    BUDGET_ASSIGNED = "budget_assigned"

    # Recompute pipeline
    RECOMPUTE_FAILED = "recompute_failed"
    VALUE_MARKED_STALE = "value_marked_stale"
    MONTH_RECONCILED = "month_reconciled"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every mutation creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    user_id: Optional[str] = Field(
        default=None,
        description="Owner of the affected data"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'transaction', 'budget')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID (or composite key) of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., a write and its recomputes)"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_storage_row(self) -> tuple:
        """
        Convert to a flat row for tabular storage.

        Columns in order:
        (event_id, timestamp, event_type, severity, user_id, entity_type,
         entity_id, correlation_id, description, details_json,
         error_code, error_message)
        """
        return (
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.user_id,
            self.entity_type,
            self.entity_id,
            str(self.correlation_id) if self.correlation_id else None,
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_code,
            self.error_message,
        )


def _money(value: Decimal) -> str:
    return str(value)


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.account_created(account, correlation_id)
        event = AuditEventBuilder.recompute_failed("balance", 7, error, correlation_id)
    """

    @staticmethod
    def account_created(account, correlation_id: Optional[UUID] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            user_id=account.user_id,
            entity_type="account",
            entity_id=str(account.id),
            correlation_id=correlation_id,
            description=f"Account created: {account.name}",
            details={
                "name": account.name,
                "type": account.type,
                "initial_balance": _money(account.balance),
                "parent_id": account.parent_id,
            },
        )

    @staticmethod
    def account_updated(account, fields: list[str], correlation_id: Optional[UUID] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_UPDATED,
            user_id=account.user_id,
            entity_type="account",
            entity_id=str(account.id),
            correlation_id=correlation_id,
            description=f"Account updated: {account.name}",
            details={"fields": fields},
        )

    @staticmethod
    def account_deleted(
        account,
        deleted_transactions: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DELETED,
            severity=AuditSeverity.WARNING if deleted_transactions else AuditSeverity.INFO,
            user_id=account.user_id,
            entity_type="account",
            entity_id=str(account.id),
            correlation_id=correlation_id,
            description=f"Account deleted: {account.name}",
            details={"deleted_transactions": deleted_transactions},
        )

    @staticmethod
    def category_created(category, correlation_id: Optional[UUID] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_CREATED,
            user_id=category.user_id,
            entity_type="category",
            entity_id=str(category.id),
            correlation_id=correlation_id,
            description=f"Category created: {category.name}",
            details={
                "parent_id": category.parent_id,
                "type": category.type.value,
            },
        )

    @staticmethod
    def category_updated(category, fields: list[str], correlation_id: Optional[UUID] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_UPDATED,
            user_id=category.user_id,
            entity_type="category",
            entity_id=str(category.id),
            correlation_id=correlation_id,
            description=f"Category updated: {category.name}",
            details={"fields": fields},
        )

    @staticmethod
    def category_deleted(
        category,
        reassigned_to: Optional[int],
        moved_transactions: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_DELETED,
            user_id=category.user_id,
            entity_type="category",
            entity_id=str(category.id),
            correlation_id=correlation_id,
            description=f"Category deleted: {category.name}",
            details={
                "reassigned_to": reassigned_to,
                "moved_transactions": moved_transactions,
            },
        )

    @staticmethod
    def categories_seeded(user_id: str, created: list[str], correlation_id: Optional[UUID] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORIES_SEEDED,
            user_id=user_id,
            entity_type="category",
            correlation_id=correlation_id,
            description=f"Default categories seeded ({len(created)} created)",
            details={"created": created},
        )

    @staticmethod
    def categories_reordered(user_id: str, ordered_ids: list[int], correlation_id: Optional[UUID] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORIES_REORDERED,
            user_id=user_id,
            entity_type="category",
            correlation_id=correlation_id,
            description="Categories reordered",
            details={"order": ordered_ids},
        )

    @staticmethod
    def transaction_written(
        event_type: AuditEventType,
        transaction,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = event_type.value.rsplit("_", 1)[-1]
        return AuditEvent(
            event_type=event_type,
            user_id=transaction.user_id,
            entity_type="transaction",
            entity_id=str(transaction.id),
            correlation_id=correlation_id,
            description=f"Transaction {verb}: {transaction.type.value} {_money(transaction.amount)}",
            details={
                "account_id": transaction.account_id,
                "category_id": transaction.category_id,
                "date": transaction.date.isoformat(),
                "amount": _money(transaction.amount),
                "type": transaction.type.value,
            },
        )

    @staticmethod
    def budget_assigned(row, correlation_id: Optional[UUID] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_ASSIGNED,
            user_id=row.user_id,
            entity_type="budget",
            entity_id=f"{row.category_id}:{row.month}",
            correlation_id=correlation_id,
            description=f"Assigned {_money(row.assigned)} for {row.month}",
            details={
                "category_id": row.category_id,
                "month": row.month,
                "assigned": _money(row.assigned),
            },
        )

    @staticmethod
    def recompute_failed(
        user_id: str,
        stage: str,
        key: Any,
        error: Exception,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECOMPUTE_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type=stage,
            entity_id=str(key),
            correlation_id=correlation_id,
            description=f"Recompute failed at stage: {stage}",
            error_code=type(error).__name__,
            error_message=str(error),
            details={"stage": stage},
        )

    @staticmethod
    def value_marked_stale(
        user_id: str,
        stage: str,
        key: Any,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALUE_MARKED_STALE,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type=stage,
            entity_id=str(key),
            correlation_id=correlation_id,
            description=f"Cached value marked stale: {stage} {key}",
        )

    @staticmethod
    def month_reconciled(user_id: str, month: str, correlation_id: Optional[UUID] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONTH_RECONCILED,
            user_id=user_id,
            entity_type="month",
            entity_id=month,
            correlation_id=correlation_id,
            description=f"Month reconciled: {month}",
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
