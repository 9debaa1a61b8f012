"""
Cloud Reconciliation Engine

Folds remote snapshots into the local store without losing local-only
data and without silently regressing workflow state.

Per remote transaction R:
1. Normalize R.status.
2. No local record with R.id -> insert R as-is. The remote knows a record
   this client does not.
3. Local record L exists -> take R's status and R's non-blank display
   names; keep every other field of L (notably attachmentUrl, which the
   sheet may not carry back).
4. Local records missing from the snapshot are left alone. Snapshots can
   be partial (scoped by user) and a delete only ever comes from an
   explicit delete action.

STATUS PRECEDENCE: the remote status is authoritative (REMOTE_WINS). This
carries a known risk: a status change made here can be overwritten by a
snapshot fetched before that change reached the sheet. The mutation
ledger closes that window per id: if the id was changed locally after the
fetch started, still has a replay pending, or is flagged stale after a
failed replay, the local status is kept. Conflicts between two managers
on different devices stay last-write-wins at the sheet. The MONOTONIC
policy additionally refuses any remote status that is lower than the
local one.

Reference lists (categories, projects, users) are replaced wholesale,
but only with a non-empty list.
"""

from typing import Iterable, Optional, Union

from pydantic import BaseModel, Field

from ledgersync.audit import AuditLogger
from ledgersync.config import StatusPolicy, get_settings
from ledgersync.models.status import normalize_status
from ledgersync.models.transaction import Transaction, User
from ledgersync.services.remote import (
    ParsedBatch,
    ReadAction,
    RemoteSyncError,
    RowSchemaError,
    SheetsEndpointClient,
)
from ledgersync.services.remote.client import MalformedResponseError
from ledgersync.services.remote.wire import (
    MalformedPayload,
    parse_read_reply,
    record_to_transaction,
)
from ledgersync.services.storage import LocalStoreInterface
from ledgersync.sync.ledger import MutationLedger


class ReconcileReport(BaseModel):
    """What one reconciliation pass did."""

    entity_type: str
    offline: bool = False
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    protected: list[str] = Field(default_factory=list)
    replaced: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


_SHADOW_FIELDS = ("category_name", "project_name", "method_name", "recorded_by_name")


class CloudReconciler:
    """Merges remote state into the local store."""

    def __init__(
        self,
        store: LocalStoreInterface,
        client: Optional[SheetsEndpointClient] = None,
        ledger: Optional[MutationLedger] = None,
        audit_logger: Optional[AuditLogger] = None,
        status_policy: Optional[StatusPolicy] = None,
    ):
        self._store = store
        self._client = client or SheetsEndpointClient()
        self._ledger = ledger or MutationLedger()
        self._audit = audit_logger or AuditLogger()
        self._policy = status_policy or get_settings().remote.status_policy

    # -- pure merge --------------------------------------------------------

    def _coerce(self, remote: Union[Transaction, dict]) -> Transaction:
        if isinstance(remote, Transaction):
            return remote.model_copy(update={"status": normalize_status(remote.status)})
        return record_to_transaction(remote)

    def _keep_local_status(
        self,
        local: Transaction,
        remote: Transaction,
        checkpoint: Optional[int],
        stale_ids: set[str],
    ) -> bool:
        if local.status == remote.status:
            return False
        if local.id in stale_ids or self._ledger.has_pending(local.id):
            return True
        if checkpoint is not None and self._ledger.changed_since(checkpoint, local.id):
            return True
        if self._policy == StatusPolicy.MONOTONIC:
            return remote.status.rank < local.status.rank
        return False

    def reconcile_transactions(
        self,
        remote: Iterable[Union[Transaction, dict]],
        checkpoint: Optional[int] = None,
    ) -> ReconcileReport:
        """
        Merge a remote transaction snapshot into the store.

        `checkpoint` is the ledger checkpoint taken before the snapshot was
        fetched; without one only pending and stale ids are protected.
        """
        report = ReconcileReport(entity_type="transaction")
        local_by_id = {tx.id: tx for tx in self._store.get_transactions()}
        stale = self._store.get_stale_markers()
        stale_ids = {m.entity_id for m in stale if m.entity_type == "transaction"}
        pending_deletes = {
            m.entity_id for m in stale
            if m.entity_type == "transaction" and m.operation == "delete"
        }
        changed: list[Transaction] = []

        for idx, item in enumerate(remote):
            try:
                incoming = self._coerce(item)
            except RowSchemaError as e:
                report.skipped += 1
                self._audit.log_row_skipped("transaction", str(e), idx)
                continue

            local = local_by_id.get(incoming.id)
            if local is None:
                # Deleted here after the snapshot was read, or the delete has not landed yet
                if (
                    incoming.id in pending_deletes
                    or self._ledger.has_pending(incoming.id)
                    or (checkpoint is not None and self._ledger.changed_since(checkpoint, incoming.id))
                ):
                    report.protected.append(incoming.id)
                    continue
                local_by_id[incoming.id] = incoming
                changed.append(incoming)
                report.inserted += 1
                continue

            update = {
                name: getattr(incoming, name)
                for name in _SHADOW_FIELDS
                if getattr(incoming, name)
            }
            if self._keep_local_status(local, incoming, checkpoint, stale_ids):
                report.protected.append(local.id)
                self._audit.log_stale_overwrite_prevented(
                    local.id, local.status.value, incoming.status.value,
                )
            else:
                update["status"] = incoming.status

            merged = local.model_copy(update=update)
            if merged == local:
                report.unchanged += 1
                continue
            local_by_id[merged.id] = merged
            changed.append(merged)
            report.updated += 1

        self._store.save_transactions(changed)
        self._audit.log_reconciliation(
            "transaction",
            inserted=report.inserted,
            updated=report.updated,
            skipped=report.skipped,
            protected=len(report.protected),
        )
        return report

    # -- remote pulls ------------------------------------------------------

    def _endpoint(self) -> Optional[str]:
        config = self._store.get_sync_config()
        return config.endpoint_url if config.is_configured else None

    async def _fetch(
        self,
        url: str,
        action: ReadAction,
        user_id: Optional[str] = None,
    ) -> ParsedBatch:
        body = await self._client.fetch(url, action, user_id=user_id)
        try:
            batch = parse_read_reply(action, body)
        except MalformedPayload as e:
            raise MalformedResponseError(str(e)) from e
        for row in batch.skipped:
            self._audit.log_row_skipped(action.value, row.reason, row.index)
        return batch

    async def pull_transactions(self, user: Optional[User] = None) -> ReconcileReport:
        """
        Fetch and merge the remote transactions.

        Employees fetch only their own rows; managers fetch everything.
        Raises RemoteSyncError on failure; the store is untouched then.
        """
        url = self._endpoint()
        if url is None:
            return ReconcileReport(entity_type="transaction", offline=True)

        scope = user.id if user is not None and not user.is_manager else None
        checkpoint = self._ledger.checkpoint()
        try:
            batch = await self._fetch(url, ReadAction.TRANSACTIONS, user_id=scope)
            report = self.reconcile_transactions(batch.items, checkpoint=checkpoint)
        finally:
            self._ledger.release(checkpoint)
        report.skipped += len(batch.skipped)
        return report

    async def _pull_list(self, action: ReadAction, entity_type: str, replace) -> ReconcileReport:
        url = self._endpoint()
        if url is None:
            return ReconcileReport(entity_type=entity_type, offline=True)
        batch = await self._fetch(url, action)
        replaced = replace(batch.items)
        report = ReconcileReport(
            entity_type=entity_type,
            replaced=replaced,
            updated=len(batch.items) if replaced else 0,
            skipped=len(batch.skipped),
        )
        self._audit.log_reconciliation(
            entity_type, inserted=0, updated=report.updated, skipped=report.skipped,
        )
        return report

    async def pull_categories(self) -> ReconcileReport:
        return await self._pull_list(
            ReadAction.CATEGORIES, "category", self._store.replace_categories,
        )

    async def pull_projects(self) -> ReconcileReport:
        return await self._pull_list(
            ReadAction.PROJECTS, "project", self._store.replace_projects,
        )

    async def pull_users(self) -> ReconcileReport:
        return await self._pull_list(
            ReadAction.USERS, "user", self._store.replace_users,
        )

    async def pull_all(self, user: Optional[User] = None) -> dict[str, ReconcileReport]:
        """
        Refresh everything. One failing pull does not stop the others;
        its report carries the error instead.
        """
        pulls = {
            "transactions": lambda: self.pull_transactions(user),
            "categories": self.pull_categories,
            "projects": self.pull_projects,
            "users": self.pull_users,
        }
        reports = {}
        for name, pull in pulls.items():
            try:
                reports[name] = await pull()
            except RemoteSyncError as e:
                self._audit.log_pull_failed(name, str(e))
                reports[name] = ReconcileReport(entity_type=name, error=str(e))
        return reports
