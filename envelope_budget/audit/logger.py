"""
Audit Logger

DESIGN DECISION: Every mutation of budget data is logged.
This provides:
1. Complete traceability of who changed which figure
2. Debugging capability when a recompute stage fails
3. A record of every cached value that was marked stale

The audit logger:
- Is async so it can sit on the same path as the store
- Gracefully handles failures (a broken audit sink never fails a write)
- Supports correlation IDs to tie a write to its recomputes
"""

import logging
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from envelope_budget.config import LoggingSettings, get_settings
from envelope_budget.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from envelope_budget.services.storage import AuditStorageInterface


def configure_logging(settings: Optional[LoggingSettings] = None) -> None:
    """
    Configure structlog for the package.

    Handlers are left to the host application; only the level of the
    package logger is set here.
    """
    settings = settings or get_settings().logging
    renderer = (
        structlog.processors.JSONRenderer()
        if settings.json_logs
        else structlog.dev.ConsoleRenderer()
    )
    logging.getLogger("envelope_budget").setLevel(settings.level)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The store's audit table, when the store provides one
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("envelope_budget.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_account_created(self, account, correlation_id: Optional[UUID] = None) -> None:
        await self.log(AuditEventBuilder.account_created(account, correlation_id))

    async def log_account_updated(
        self,
        account,
        fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.account_updated(account, fields, correlation_id))

    async def log_account_deleted(
        self,
        account,
        deleted_transactions: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(
            AuditEventBuilder.account_deleted(account, deleted_transactions, correlation_id)
        )

    async def log_category_created(self, category, correlation_id: Optional[UUID] = None) -> None:
        await self.log(AuditEventBuilder.category_created(category, correlation_id))

    async def log_category_updated(
        self,
        category,
        fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.category_updated(category, fields, correlation_id))

    async def log_category_deleted(
        self,
        category,
        reassigned_to: Optional[int],
        moved_transactions: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(
            AuditEventBuilder.category_deleted(
                category, reassigned_to, moved_transactions, correlation_id
            )
        )

    async def log_categories_seeded(
        self,
        user_id: str,
        created: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.categories_seeded(user_id, created, correlation_id))

    async def log_categories_reordered(
        self,
        user_id: str,
        ordered_ids: list[int],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(
            AuditEventBuilder.categories_reordered(user_id, ordered_ids, correlation_id)
        )

    async def log_transaction(
        self,
        event_type: AuditEventType,
        transaction,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a transaction create, update or delete."""
        await self.log(
            AuditEventBuilder.transaction_written(event_type, transaction, correlation_id)
        )

    async def log_budget_assigned(self, row, correlation_id: Optional[UUID] = None) -> None:
        await self.log(AuditEventBuilder.budget_assigned(row, correlation_id))

    async def log_recompute_failed(
        self,
        user_id: str,
        stage: str,
        key: Any,
        error: Exception,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a recompute stage that raised."""
        await self.log(
            AuditEventBuilder.recompute_failed(user_id, stage, key, error, correlation_id)
        )

    async def log_value_marked_stale(
        self,
        user_id: str,
        stage: str,
        key: Any,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(
            AuditEventBuilder.value_marked_stale(user_id, stage, key, correlation_id)
        )

    async def log_month_reconciled(
        self,
        user_id: str,
        month: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.month_reconciled(user_id, month, correlation_id))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a mutation and pass it to every recompute
    that follows it.
    """
    return uuid4()
