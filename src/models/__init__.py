"""
Data Models Package

This package contains all Pydantic models used by the finance ledger.
All data flowing through the system must conform to these schemas.
"""

from src.models.ledger import (
    CATEGORIES,
    AppPreferences,
    CardInvoiceDetail,
    CardUpdate,
    Category,
    ConsolidatedInvoice,
    CreditCard,
    EditScope,
    PaymentSource,
    RecurrenceType,
    StatementItem,
    StatementTotals,
    Transaction,
    TransactionKind,
    TransactionOrigin,
    TransactionType,
    get_categories,
    get_category,
    new_id,
    round_money,
)
from src.models.investment import (
    CoverageDraw,
    CoverageRecord,
    Investment,
    PendingTransfer,
    TransferHistory,
    TransferStatus,
    YieldHistory,
    YieldRateChange,
)
from src.models.balance import CoverageNeed, DueItem, FutureCoverage, ProjectedBalance
from src.models.backup import BACKUP_VERSION, BackupFile
from src.models.validation import IntegrityReport, ValidationIssue, ValidationResult
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "CATEGORIES",
    "AppPreferences",
    "CardInvoiceDetail",
    "CardUpdate",
    "Category",
    "ConsolidatedInvoice",
    "CreditCard",
    "EditScope",
    "PaymentSource",
    "RecurrenceType",
    "StatementItem",
    "StatementTotals",
    "Transaction",
    "TransactionKind",
    "TransactionOrigin",
    "TransactionType",
    "get_categories",
    "get_category",
    "new_id",
    "round_money",
    # Investment models
    "CoverageDraw",
    "CoverageRecord",
    "Investment",
    "PendingTransfer",
    "TransferHistory",
    "TransferStatus",
    "YieldHistory",
    "YieldRateChange",
    # Balance
    "CoverageNeed",
    "DueItem",
    "FutureCoverage",
    "ProjectedBalance",
    # Backup
    "BACKUP_VERSION",
    "BackupFile",
    # Validation models
    "IntegrityReport",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
