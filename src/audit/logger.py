"""
Audit Logger

DESIGN DECISION: Every mutation of the ledger is logged, and so is every
adjustment the engine makes on its own (auto payments, coverage draws,
balance transfers, yield catch-up).
This provides:
1. Complete traceability of automatic money movements
2. Debugging capability when a balance looks wrong
3. A history the user can review

The audit logger:
- Is async so it composes with the storage layer
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from src.config import get_settings
from src.models.audit import AuditEvent
from src.services.storage import AuditStorageInterface


def configure_logging(level: Optional[str] = None) -> None:
    """Configure stdlib logging and structlog for JSON output."""
    logging.basicConfig(
        format="%(message)s",
        level=level or get_settings().app.log_level,
    )
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
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Configure structlog for local logging
configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The persisted audit trail (for user visibility)
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
        self._logger = structlog.get_logger("audit")

    @property
    def storage(self) -> Optional[AuditStorageInterface]:
        return self._storage

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        # Always log locally
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        elif event.severity.value == "debug":
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Persist to storage if available
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

    async def recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Most recent persisted events, newest first (empty without storage)."""
        if self._storage is None:
            return []
        return await self._storage.get_recent_events(limit=limit)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., adding a purchase).
    Pass it through all subsequent operations.
    """
    return uuid4()
