"""
Data Models Package

All data persisted locally or exchanged with the remote sheet must
conform to these schemas.
"""

from ledgersync.models.transaction import (
    UNKNOWN_USER_ID,
    UNRESOLVED_ID,
    Category,
    PaymentMethod,
    ProjectDept,
    ReceiptExtraction,
    ReferenceEntity,
    Role,
    SyncConfig,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
    is_unresolved,
    new_category_id,
    new_project_id,
    new_transaction_id,
)
from ledgersync.models.status import STATUS_LABELS, normalize_status, status_label
from ledgersync.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Domain models
    "UNKNOWN_USER_ID",
    "UNRESOLVED_ID",
    "Category",
    "PaymentMethod",
    "ProjectDept",
    "ReceiptExtraction",
    "ReferenceEntity",
    "Role",
    "SyncConfig",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "User",
    "is_unresolved",
    "new_category_id",
    "new_project_id",
    "new_transaction_id",
    # Status
    "STATUS_LABELS",
    "normalize_status",
    "status_label",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
