"""Sync package: reconciliation, optimistic replay, reference data, session."""

from ledgersync.sync.ledger import MutationLedger
from ledgersync.sync.protocol import (
    DeliveryMode,
    InvalidTransitionError,
    OptimisticSyncProtocol,
    SyncOutcome,
    SyncResult,
)
from ledgersync.sync.reconciliation import CloudReconciler, ReconcileReport
from ledgersync.sync.reference import ReferenceDataSync
from ledgersync.sync.resolution import (
    NameResolver,
    PermissionDeniedError,
    can_change_status,
    can_modify,
    is_owner,
    visible_transactions,
)
from ledgersync.sync.session import SessionService

__all__ = [
    "MutationLedger",
    "DeliveryMode",
    "InvalidTransitionError",
    "OptimisticSyncProtocol",
    "SyncOutcome",
    "SyncResult",
    "CloudReconciler",
    "ReconcileReport",
    "ReferenceDataSync",
    "NameResolver",
    "PermissionDeniedError",
    "can_change_status",
    "can_modify",
    "is_owner",
    "visible_transactions",
    "SessionService",
]
