"""
Audit Models for Ledger Sync

Every local commit and every remote replay attempt is recorded. When a
replay fails in detached mode, the audit trail is the only place the
failure shows up, so it must say which entity, which operation and why.

DESIGN DECISION: Audit logs are append-only. We never modify events.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Local commits
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_STATUS_CHANGED = "transaction_status_changed"
    TRANSACTION_DELETED = "transaction_deleted"

    # Remote replay
    REPLAY_DELIVERED = "replay_delivered"
    REPLAY_FAILED = "replay_failed"
    REPLAY_SKIPPED_OFFLINE = "replay_skipped_offline"
    ATTACHMENT_REFERENCE_CORRECTED = "attachment_reference_corrected"

    # Reconciliation
    RECONCILIATION_COMPLETED = "reconciliation_completed"
    REMOTE_ROW_SKIPPED = "remote_row_skipped"
    STALE_OVERWRITE_PREVENTED = "stale_overwrite_prevented"
    PULL_FAILED = "pull_failed"

    # Reference data
    REFERENCE_ADDED = "reference_added"
    REFERENCE_UPDATED = "reference_updated"
    REFERENCE_DELETED = "reference_deleted"

    # Access
    PERMISSION_DENIED = "permission_denied"
    LOGIN_SUCCEEDED = "login_succeeded"
    LOGIN_FAILED = "login_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """A single audit event."""

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Entity ids here are the application's string ids ("t_...", "c1")
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'category')"
    )
    entity_id: Optional[str] = None

    # Ties a local commit to its remote replay
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
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
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.local_commit(AuditEventType.TRANSACTION_CREATED, tx_id, cid)
        event = AuditEventBuilder.replay_failed("transaction", tx_id, "upsert", err, cid)
    """

    @staticmethod
    def local_commit(
        event_type: AuditEventType,
        transaction_id: str,
        correlation_id: UUID,
        user_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Local commit: {event_type.value.replace('_', ' ')}",
            details={"user_id": user_id, **(details or {})},
            is_user_action=True,
        )

    @staticmethod
    def replay_delivered(
        entity_type: str,
        entity_id: str,
        operation: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REPLAY_DELIVERED,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Remote {operation} delivered",
            details={"operation": operation},
        )

    @staticmethod
    def replay_failed(
        entity_type: str,
        entity_id: str,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID],
        detached: bool = False,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REPLAY_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Remote {operation} failed; local copy kept and marked stale",
            error_message=error_message,
            details={"operation": operation, "detached": detached},
        )

    @staticmethod
    def replay_skipped_offline(
        entity_type: str,
        entity_id: str,
        operation: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REPLAY_SKIPPED_OFFLINE,
            severity=AuditSeverity.DEBUG,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"No remote endpoint configured; {operation} kept local",
            details={"operation": operation},
        )

    @staticmethod
    def attachment_corrected(
        transaction_id: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ATTACHMENT_REFERENCE_CORRECTED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Attachment replaced with the remote canonical reference",
        )

    @staticmethod
    def reconciliation_completed(
        entity_type: str,
        inserted: int,
        updated: int,
        skipped: int,
        protected: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_COMPLETED,
            entity_type=entity_type,
            description=(
                f"Reconciled {entity_type}: {inserted} inserted, "
                f"{updated} updated, {skipped} skipped"
            ),
            details={
                "inserted": inserted,
                "updated": updated,
                "skipped": skipped,
                "protected": protected,
            },
        )

    @staticmethod
    def remote_row_skipped(
        entity_type: str,
        reason: str,
        row_index: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REMOTE_ROW_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            description=f"Skipped malformed remote {entity_type} row {row_index}",
            error_message=reason,
            details={"row_index": row_index},
        )

    @staticmethod
    def stale_overwrite_prevented(
        transaction_id: str,
        local_status: str,
        remote_status: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STALE_OVERWRITE_PREVENTED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_id=transaction_id,
            description="Kept local status; remote snapshot predates a local change",
            details={
                "local_status": local_status,
                "remote_status": remote_status,
            },
        )

    @staticmethod
    def pull_failed(entity_type: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PULL_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            description=f"Could not fetch remote {entity_type}; local data kept",
            error_message=error_message,
        )

    @staticmethod
    def reference_changed(
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        name: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"{entity_type.capitalize()} '{name}': {event_type.value.split('_')[-1]}",
            is_user_action=True,
        )

    @staticmethod
    def permission_denied(
        user_id: str,
        transaction_id: str,
        operation: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PERMISSION_DENIED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"User {user_id} may not {operation} this transaction",
            details={"user_id": user_id, "operation": operation},
            is_user_action=True,
        )

    @staticmethod
    def login(user_name: str, succeeded: bool) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.LOGIN_SUCCEEDED if succeeded
                else AuditEventType.LOGIN_FAILED
            ),
            severity=AuditSeverity.INFO if succeeded else AuditSeverity.WARNING,
            entity_type="user",
            description=f"Login {'succeeded' if succeeded else 'failed'} for {user_name}",
            is_user_action=True,
        )
