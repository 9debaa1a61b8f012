"""
Optimistic Sync Protocol

Every transaction mutation (create, edit, status change, delete) runs as:

1. Authorize locally. A rejected action never touches the store or the
   network.
2. Commit to the local store. This commit is never rolled back.
3. Replay to the remote sheet, either AWAITED (the caller gets the
   outcome) or DETACHED (the caller gets QUEUED; failures go to the
   audit log only).

The replay is built when it runs, not when the mutation was made: the
endpoint URL is read from the store at that moment and display names are
resolved against the reference lists at that moment, so a rename or a
URL change in between is honoured.

A replay that cannot be delivered (offline, transport failure, rejected)
leaves a stale marker behind; retry_stale() sends those again later.

Replays are tasks owned by this object, not by the caller. An awaited
caller that is cancelled (e.g. the user navigates away) stops waiting but
the replay itself runs to completion.
"""

import asyncio
from enum import Enum
from typing import Optional
from uuid import UUID

import structlog
from pydantic import BaseModel

from ledgersync.audit import AuditLogger, create_correlation_id
from ledgersync.models.audit import AuditEventType
from ledgersync.models.transaction import (
    Transaction,
    TransactionStatus,
    User,
    is_unresolved,
)
from ledgersync.services.remote import RemoteSyncError, SheetsEndpointClient
from ledgersync.services.remote.wire import (
    transaction_delete_payload,
    transaction_upsert_payload,
)
from ledgersync.services.storage import (
    LocalStoreInterface,
    NotFoundError,
    StaleMarker,
)
from ledgersync.sync.ledger import MutationLedger
from ledgersync.sync.resolution import (
    NameResolver,
    PermissionDeniedError,
    can_change_status,
    can_modify,
    visible_transactions,
)


logger = structlog.get_logger(__name__)

ENTITY_TYPE = "transaction"
UPSERT = "upsert"
DELETE = "delete"


class DeliveryMode(str, Enum):
    AWAITED = "awaited"
    DETACHED = "detached"


class SyncOutcome(str, Enum):
    DELIVERED = "DELIVERED"  # Remote acknowledged
    OFFLINE = "OFFLINE"      # No endpoint configured; kept locally
    FAILED = "FAILED"        # Remote unreachable or rejected; kept locally
    QUEUED = "QUEUED"        # Detached; outcome goes to the audit log


class SyncResult(BaseModel):
    """Outcome of one mutation, for the caller to report to the user."""

    outcome: SyncOutcome
    message: str
    transaction_id: str
    transaction: Optional[Transaction] = None
    correlation_id: Optional[UUID] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome != SyncOutcome.FAILED


class InvalidTransitionError(Exception):
    """A status change that is not a forward move."""

    def __init__(self, current: TransactionStatus, target: TransactionStatus):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move status from {current.value} to {target.value}")


class OptimisticSyncProtocol:
    """Local-commit-then-remote-replay for transactions."""

    def __init__(
        self,
        store: LocalStoreInterface,
        client: Optional[SheetsEndpointClient] = None,
        ledger: Optional[MutationLedger] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._client = client or SheetsEndpointClient()
        self._ledger = ledger or MutationLedger()
        self._audit = audit_logger or AuditLogger()
        self._tasks: set[asyncio.Task] = set()

    @property
    def ledger(self) -> MutationLedger:
        return self._ledger

    # -- reads -------------------------------------------------------------

    def visible_transactions(self, user: User) -> list[Transaction]:
        snapshot = self._store.snapshot()
        resolver = NameResolver(
            snapshot.categories, snapshot.projects,
            snapshot.payment_methods, snapshot.users,
        )
        return visible_transactions(user, snapshot.transactions, resolver)

    # -- mutations ---------------------------------------------------------

    def _require(self, transaction_id: str) -> Transaction:
        tx = self._store.get_transaction(transaction_id)
        if tx is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return tx

    def _authorize(self, user: User, tx: Transaction, operation: str) -> None:
        if not can_modify(user, tx, NameResolver.from_store(self._store)):
            self._audit.log_permission_denied(user.id, tx.id, operation)
            raise PermissionDeniedError(user.id, tx.id, operation)

    def _commit(
        self,
        event_type: AuditEventType,
        user: User,
        tx_id: str,
        correlation_id: UUID,
        details: Optional[dict] = None,
    ) -> None:
        self._ledger.record_mutation(tx_id)
        self._audit.log_local_commit(
            event_type=event_type,
            transaction_id=tx_id,
            correlation_id=correlation_id,
            user_id=user.id,
            details=details,
        )

    async def create_transaction(
        self,
        user: User,
        draft: Transaction,
        mode: DeliveryMode = DeliveryMode.AWAITED,
    ) -> SyncResult:
        """
        Record a new transaction submitted by `user`.

        New records always start PENDING and belong to the submitter.
        """
        correlation_id = create_correlation_id()
        update = {"status": TransactionStatus.PENDING}
        if is_unresolved(draft.recorded_by_id):
            update["recorded_by_id"] = user.id
            update["recorded_by_name"] = user.name
        tx = draft.model_copy(update=update)

        self._store.save_transaction(tx)
        self._commit(AuditEventType.TRANSACTION_CREATED, user, tx.id, correlation_id, {
            "amount": str(tx.amount),
            "type": tx.type.value,
        })
        return await self._dispatch(tx.id, UPSERT, mode, correlation_id)

    async def update_transaction(
        self,
        user: User,
        edited: Transaction,
        mode: DeliveryMode = DeliveryMode.AWAITED,
    ) -> SyncResult:
        """
        Save an edit. Status, owner and creation time are not editable
        here and are carried over from the stored record.
        """
        existing = self._require(edited.id)
        self._authorize(user, existing, "edit")

        correlation_id = create_correlation_id()
        tx = edited.model_copy(update={
            "status": existing.status,
            "recorded_by_id": existing.recorded_by_id,
            "recorded_by_name": existing.recorded_by_name,
            "created_at": existing.created_at,
        })
        self._store.save_transaction(tx)
        self._commit(AuditEventType.TRANSACTION_UPDATED, user, tx.id, correlation_id)
        return await self._dispatch(tx.id, UPSERT, mode, correlation_id)

    async def advance_status(
        self,
        user: User,
        transaction_id: str,
        target: TransactionStatus,
        mode: DeliveryMode = DeliveryMode.AWAITED,
    ) -> SyncResult:
        """Move a record forward in review. Managers only."""
        existing = self._require(transaction_id)
        if not can_change_status(user, existing, target):
            if not user.is_manager:
                self._audit.log_permission_denied(user.id, transaction_id, "change status of")
                raise PermissionDeniedError(user.id, transaction_id, "change status of")
            raise InvalidTransitionError(existing.status, target)

        correlation_id = create_correlation_id()
        self._store.save_transaction(existing.model_copy(update={"status": target}))
        self._commit(AuditEventType.TRANSACTION_STATUS_CHANGED, user, transaction_id, correlation_id, {
            "from": existing.status.value,
            "to": target.value,
        })
        return await self._dispatch(transaction_id, UPSERT, mode, correlation_id)

    async def delete_transaction(
        self,
        user: User,
        transaction_id: str,
        mode: DeliveryMode = DeliveryMode.AWAITED,
    ) -> SyncResult:
        """
        Delete locally, then remotely by id.

        A failed remote delete is reported but the record stays deleted
        here; the pending delete is retried by retry_stale().
        """
        existing = self._require(transaction_id)
        self._authorize(user, existing, "delete")

        correlation_id = create_correlation_id()
        self._store.delete_transaction(transaction_id)
        self._commit(AuditEventType.TRANSACTION_DELETED, user, transaction_id, correlation_id)
        return await self._dispatch(transaction_id, DELETE, mode, correlation_id)

    async def retry_stale(self) -> list[SyncResult]:
        """Replay every undelivered transaction change, oldest first."""
        markers = sorted(
            (m for m in self._store.get_stale_markers() if m.entity_type == ENTITY_TYPE),
            key=lambda m: m.marked_at,
        )
        results = []
        for marker in markers:
            self._ledger.record_mutation(marker.entity_id)
            results.append(await self._dispatch(
                marker.entity_id, marker.operation, DeliveryMode.AWAITED, None,
            ))
        return results

    async def drain(self) -> None:
        """Wait for every replay still in flight (detached ones included)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- replay ------------------------------------------------------------

    async def _dispatch(
        self,
        transaction_id: str,
        operation: str,
        mode: DeliveryMode,
        correlation_id: Optional[UUID],
    ) -> SyncResult:
        detached = mode == DeliveryMode.DETACHED
        task = asyncio.ensure_future(
            self._replay(transaction_id, operation, correlation_id, detached)
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_replay_done)

        if detached:
            return SyncResult(
                outcome=SyncOutcome.QUEUED,
                message="Saved locally; syncing in the background",
                transaction_id=transaction_id,
                transaction=self._store.get_transaction(transaction_id),
                correlation_id=correlation_id,
            )
        return await asyncio.shield(task)

    def _on_replay_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("replay_crashed", error=str(error), exc_info=error)

    async def _replay(
        self,
        transaction_id: str,
        operation: str,
        correlation_id: Optional[UUID],
        detached: bool,
    ) -> SyncResult:
        try:
            async with self._ledger.replay_slot(transaction_id):
                return await self._deliver(transaction_id, operation, correlation_id, detached)
        finally:
            self._ledger.settle(transaction_id)

    def _mark_stale(self, transaction_id: str, operation: str, error: Optional[str]) -> None:
        self._store.mark_stale(StaleMarker(
            entity_type=ENTITY_TYPE,
            entity_id=transaction_id,
            operation=operation,
            last_error=error,
        ))

    def _build_payload(self, tx: Transaction) -> dict:
        resolver = NameResolver.from_store(self._store)
        return transaction_upsert_payload(
            tx,
            category_name=resolver.category_name(tx),
            project_name=resolver.project_name(tx),
            method_name=resolver.method_name(tx),
            recorded_by_name=resolver.user_name(tx),
        )

    async def _deliver(
        self,
        transaction_id: str,
        operation: str,
        correlation_id: Optional[UUID],
        detached: bool,
    ) -> SyncResult:
        config = self._store.get_sync_config()
        if not config.is_configured:
            self._mark_stale(transaction_id, operation, None)
            self._audit.log_replay_skipped_offline(
                ENTITY_TYPE, transaction_id, operation, correlation_id,
            )
            return SyncResult(
                outcome=SyncOutcome.OFFLINE,
                message="Saved locally (cloud sync is not configured)",
                transaction_id=transaction_id,
                transaction=self._store.get_transaction(transaction_id),
                correlation_id=correlation_id,
            )

        if operation == DELETE:
            payload = transaction_delete_payload(transaction_id)
        else:
            tx = self._store.get_transaction(transaction_id)
            if tx is None:
                # Deleted locally after this replay was scheduled
                self._store.clear_stale(ENTITY_TYPE, transaction_id)
                return SyncResult(
                    outcome=SyncOutcome.DELIVERED,
                    message="Record was deleted locally; nothing to send",
                    transaction_id=transaction_id,
                    correlation_id=correlation_id,
                )
            payload = self._build_payload(tx)

        try:
            body = await self._client.post(
                config.endpoint_url,
                payload,
                tolerate_not_found=operation == DELETE,
            )
        except RemoteSyncError as e:
            self._mark_stale(transaction_id, operation, str(e))
            self._audit.log_replay_failed(
                ENTITY_TYPE, transaction_id, operation, str(e),
                correlation_id, detached=detached,
            )
            return SyncResult(
                outcome=SyncOutcome.FAILED,
                message=f"Saved locally, but cloud sync failed: {e}",
                transaction_id=transaction_id,
                transaction=self._store.get_transaction(transaction_id),
                correlation_id=correlation_id,
                error=str(e),
            )

        self._store.clear_stale(ENTITY_TYPE, transaction_id)
        if operation == UPSERT:
            self._apply_correction(transaction_id, body, correlation_id)
        self._audit.log_replay_delivered(ENTITY_TYPE, transaction_id, operation, correlation_id)
        return SyncResult(
            outcome=SyncOutcome.DELIVERED,
            message="Saved and synced",
            transaction_id=transaction_id,
            transaction=self._store.get_transaction(transaction_id),
            correlation_id=correlation_id,
        )

    def _apply_correction(
        self,
        transaction_id: str,
        body: dict,
        correlation_id: Optional[UUID],
    ) -> None:
        """Adopt the canonical attachment reference the remote handed back."""
        corrected = body.get("attachmentUrl")
        if not isinstance(corrected, str) or not corrected.strip():
            return
        tx = self._store.get_transaction(transaction_id)
        if tx is None or tx.attachment_url == corrected.strip():
            return
        self._store.save_transaction(tx.model_copy(update={"attachment_url": corrected.strip()}))
        self._audit.log_attachment_corrected(transaction_id, correlation_id)
