"""
Audit Models for the Finance Ledger

Every mutation of the ledger, and every automatic adjustment the engine
makes on the user's behalf, is logged for audit purposes.
This provides:
1. Traceability of automatic money movements (coverage, transfers, auto payments)
2. Debugging information when balances look wrong
3. Ability to reconstruct what the engine did and when

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    User-driven mutations and engine-driven adjustments each get their own type.
    """
    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"

    # Cards and invoices
    CARD_CREATED = "card_created"
    CARD_UPDATED = "card_updated"
    CARD_DELETED = "card_deleted"
    INVOICE_PAID = "invoice_paid"
    AUTO_PAYMENT_GENERATED = "auto_payment_generated"
    CARD_LIMIT_RECALCULATED = "card_limit_recalculated"

    # Investments
    INVESTMENT_CREATED = "investment_created"
    INVESTMENT_DEPOSITED = "investment_deposited"
    INVESTMENT_WITHDRAWN = "investment_withdrawn"
    INVESTMENT_DELETED = "investment_deleted"
    YIELD_RATE_CHANGED = "yield_rate_changed"
    YIELDS_PROCESSED = "yields_processed"

    # Automatic balance management
    COVERAGE_APPLIED = "coverage_applied"
    BALANCE_TRANSFER_RECORDED = "balance_transfer_recorded"
    BALANCE_TRANSFER_SWEPT = "balance_transfer_swept"

    # Data management
    BACKUP_EXPORTED = "backup_exported"
    BACKUP_IMPORTED = "backup_imported"
    MIGRATION_APPLIED = "migration_applied"
    MIGRATION_FAILED = "migration_failed"
    INTEGRITY_REPAIRED = "integrity_repaired"
    DATA_CLEARED = "data_cleared"


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
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
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
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'card', 'investment')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., a purchase and the auto payment it caused)"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    # Additional data (event-specific)
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    # User action tracking
    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_storage_dict(self) -> dict:
        """Convert to the JSON shape kept in the persisted audit log."""
        return self.model_dump(mode="json", exclude_none=True)


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.card_created(card_id, name, limit)
        event = AuditEventBuilder.coverage_applied(investment_id, amount, transaction_id)
    """

    @staticmethod
    def transaction_created(
        transaction_id: str,
        amount: str,
        kind: str,
        instance_count: int,
        correlation_id: Optional[UUID] = None,
        is_user_action: bool = True,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction created: {amount} ({instance_count} instance(s))",
            details={
                "amount": amount,
                "kind": kind,
                "instance_count": instance_count,
            },
            is_user_action=is_user_action,
        )

    @staticmethod
    def transaction_updated(
        transaction_id: str,
        scope: str,
        affected: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction updated ({scope}): {affected} record(s)",
            details={
                "scope": scope,
                "affected": affected,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(
        transaction_id: str,
        scope: str,
        affected: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction deleted ({scope}): {affected} record(s)",
            details={
                "scope": scope,
                "affected": affected,
            },
            is_user_action=True,
        )

    @staticmethod
    def card_created(
        card_id: str,
        name: str,
        limit: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CARD_CREATED,
            entity_type="card",
            entity_id=card_id,
            correlation_id=correlation_id,
            description=f"Card created: {name}",
            details={
                "name": name,
                "limit": limit,
            },
            is_user_action=True,
        )

    @staticmethod
    def card_updated(
        card_id: str,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CARD_UPDATED,
            entity_type="card",
            entity_id=card_id,
            correlation_id=correlation_id,
            description=f"Card updated: {name}",
            is_user_action=True,
        )

    @staticmethod
    def card_deleted(
        card_id: str,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CARD_DELETED,
            entity_type="card",
            entity_id=card_id,
            correlation_id=correlation_id,
            description=f"Card deleted: {name}",
            is_user_action=True,
        )

    @staticmethod
    def invoice_paid(
        card_id: str,
        invoice_month: str,
        amount: str,
        source: str,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_PAID,
            entity_type="card",
            entity_id=card_id,
            correlation_id=correlation_id,
            description=f"Invoice {invoice_month} paid via {source}: {amount}",
            details={
                "invoice_month": invoice_month,
                "amount": amount,
                "source": source,
                "transaction_id": transaction_id,
            },
            is_user_action=True,
        )

    @staticmethod
    def auto_payment_generated(
        payer_card_id: str,
        paid_card_id: str,
        invoice_month: str,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AUTO_PAYMENT_GENERATED,
            entity_type="card",
            entity_id=paid_card_id,
            correlation_id=correlation_id,
            description=f"Invoice {invoice_month} auto-paid by another card: {amount}",
            details={
                "payer_card_id": payer_card_id,
                "invoice_month": invoice_month,
                "amount": amount,
            },
        )

    @staticmethod
    def card_limit_recalculated(
        card_id: str,
        previous_limit: str,
        new_limit: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CARD_LIMIT_RECALCULATED,
            severity=AuditSeverity.DEBUG,
            entity_type="card",
            entity_id=card_id,
            correlation_id=correlation_id,
            description=f"Available limit changed: {previous_limit} -> {new_limit}",
            details={
                "previous_limit": previous_limit,
                "new_limit": new_limit,
            },
        )

    @staticmethod
    def investment_created(
        investment_id: str,
        name: str,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVESTMENT_CREATED,
            entity_type="investment",
            entity_id=investment_id,
            correlation_id=correlation_id,
            description=f"Investment created: {name} with {amount}",
            details={
                "name": name,
                "amount": amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def investment_deposited(
        investment_id: str,
        amount: str,
        is_user_action: bool = True,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVESTMENT_DEPOSITED,
            entity_type="investment",
            entity_id=investment_id,
            correlation_id=correlation_id,
            description=f"Deposit of {amount}",
            details={"amount": amount},
            is_user_action=is_user_action,
        )

    @staticmethod
    def investment_withdrawn(
        investment_id: str,
        amount: str,
        deactivated: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVESTMENT_WITHDRAWN,
            entity_type="investment",
            entity_id=investment_id,
            correlation_id=correlation_id,
            description=f"Withdrawal of {amount}",
            details={
                "amount": amount,
                "deactivated": deactivated,
            },
            is_user_action=True,
        )

    @staticmethod
    def investment_deleted(
        investment_id: str,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVESTMENT_DELETED,
            entity_type="investment",
            entity_id=investment_id,
            correlation_id=correlation_id,
            description=f"Investment deleted: {name}",
            is_user_action=True,
        )

    @staticmethod
    def yield_rate_changed(
        investment_id: str,
        previous_rate: str,
        new_rate: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.YIELD_RATE_CHANGED,
            entity_type="investment",
            entity_id=investment_id,
            correlation_id=correlation_id,
            description=f"Yield rate changed: {previous_rate}% -> {new_rate}%",
            details={
                "previous_rate": previous_rate,
                "new_rate": new_rate,
            },
            is_user_action=True,
        )

    @staticmethod
    def yields_processed(
        rows_written: int,
        through_date: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.YIELDS_PROCESSED,
            entity_type="investment",
            correlation_id=correlation_id,
            description=f"Daily yields processed through {through_date}: {rows_written} row(s)",
            details={
                "rows_written": rows_written,
                "through_date": through_date,
            },
        )

    @staticmethod
    def coverage_applied(
        investment_id: str,
        amount: str,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COVERAGE_APPLIED,
            entity_type="investment",
            entity_id=investment_id,
            correlation_id=correlation_id,
            description=f"Negative balance covered with {amount}",
            details={
                "amount": amount,
                "transaction_id": transaction_id,
            },
        )

    @staticmethod
    def balance_transfer_recorded(
        month: str,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_TRANSFER_RECORDED,
            entity_type="pending_transfer",
            entity_id=month,
            correlation_id=correlation_id,
            description=f"Month-end surplus recorded for {month}: {amount}",
            details={"amount": amount},
        )

    @staticmethod
    def balance_transfer_swept(
        investment_id: str,
        amount: str,
        from_month: str,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_TRANSFER_SWEPT,
            entity_type="investment",
            entity_id=investment_id,
            correlation_id=correlation_id,
            description=f"Surplus from {from_month} swept into reserve: {amount}",
            details={
                "amount": amount,
                "from_month": from_month,
                "transaction_id": transaction_id,
            },
        )

    @staticmethod
    def backup_exported(
        counts: dict[str, int],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_EXPORTED,
            entity_type="backup",
            correlation_id=correlation_id,
            description="Backup exported",
            details=counts,
            is_user_action=True,
        )

    @staticmethod
    def backup_imported(
        counts: dict[str, int],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_IMPORTED,
            severity=AuditSeverity.WARNING,
            entity_type="backup",
            correlation_id=correlation_id,
            description="Backup imported, replacing stored data",
            details=counts,
            is_user_action=True,
        )

    @staticmethod
    def migration_applied(
        version: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MIGRATION_APPLIED,
            entity_type="schema",
            entity_id=str(version),
            correlation_id=correlation_id,
            description=f"Schema migrated to version {version}",
        )

    @staticmethod
    def migration_failed(
        version: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MIGRATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="schema",
            entity_id=str(version),
            correlation_id=correlation_id,
            description=f"Schema migration to version {version} failed",
            error_message=error_message,
        )

    @staticmethod
    def integrity_repaired(
        steps: int,
        issues_before: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INTEGRITY_REPAIRED,
            correlation_id=correlation_id,
            description=f"Data integrity repair ran {steps} step(s)",
            details={
                "steps": steps,
                "issues_before": issues_before,
            },
            is_user_action=True,
        )

    @staticmethod
    def data_cleared(
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATA_CLEARED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description="All stored data cleared",
            is_user_action=True,
        )
