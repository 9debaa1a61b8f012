"""
Audit Logger

DESIGN DECISION: Every local commit and remote replay outcome is logged.
Detached replays have no caller waiting on them, so this log is where
their failures become visible.

The audit logger:
- Always writes a structured local log line
- Persists to the local store's audit partition when one is given
- Never raises: a failure to record an event must not break a sync
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledgersync.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from ledgersync.services.storage import AuditStorageInterface


# Configure structlog for local logging
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
        structlog.processors.JSONRenderer(ensure_ascii=False)
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The local store's audit partition (for later inspection)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        self._storage = storage
        self._logger = structlog.get_logger("ledgersync.audit")

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns True if the storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value == "error":
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        elif event.severity.value == "debug":
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return self._storage.append_event(event)
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    def recent_events(self, limit: int = 100) -> list[AuditEvent]:
        if not self._storage:
            return []
        return self._storage.get_recent_events(limit)

    def log_local_commit(
        self,
        event_type: AuditEventType,
        transaction_id: str,
        correlation_id: UUID,
        user_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        self.log(AuditEventBuilder.local_commit(
            event_type=event_type,
            transaction_id=transaction_id,
            correlation_id=correlation_id,
            user_id=user_id,
            details=details,
        ))

    def log_replay_delivered(
        self,
        entity_type: str,
        entity_id: str,
        operation: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.replay_delivered(
            entity_type, entity_id, operation, correlation_id,
        ))

    def log_replay_failed(
        self,
        entity_type: str,
        entity_id: str,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
        detached: bool = False,
    ) -> None:
        self.log(AuditEventBuilder.replay_failed(
            entity_type, entity_id, operation, error_message, correlation_id, detached,
        ))

    def log_replay_skipped_offline(
        self,
        entity_type: str,
        entity_id: str,
        operation: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.replay_skipped_offline(
            entity_type, entity_id, operation, correlation_id,
        ))

    def log_attachment_corrected(
        self,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.attachment_corrected(transaction_id, correlation_id))

    def log_reconciliation(
        self,
        entity_type: str,
        inserted: int,
        updated: int,
        skipped: int,
        protected: int = 0,
    ) -> None:
        self.log(AuditEventBuilder.reconciliation_completed(
            entity_type, inserted, updated, skipped, protected,
        ))

    def log_row_skipped(self, entity_type: str, reason: str, row_index: int) -> None:
        self.log(AuditEventBuilder.remote_row_skipped(entity_type, reason, row_index))

    def log_stale_overwrite_prevented(
        self,
        transaction_id: str,
        local_status: str,
        remote_status: str,
    ) -> None:
        self.log(AuditEventBuilder.stale_overwrite_prevented(
            transaction_id, local_status, remote_status,
        ))

    def log_pull_failed(self, entity_type: str, error_message: str) -> None:
        self.log(AuditEventBuilder.pull_failed(entity_type, error_message))

    def log_reference_changed(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        name: str,
    ) -> None:
        self.log(AuditEventBuilder.reference_changed(event_type, entity_type, entity_id, name))

    def log_permission_denied(self, user_id: str, transaction_id: str, operation: str) -> None:
        self.log(AuditEventBuilder.permission_denied(user_id, transaction_id, operation))

    def log_login(self, user_name: str, succeeded: bool) -> None:
        self.log(AuditEventBuilder.login(user_name, succeeded))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a user action; the local commit and its
    remote replay share it.
    """
    return uuid4()
