"""
Reference-Data Sync

Categories and projects follow the same optimistic shape as
transactions: commit locally, then replay to the sheet. Replays default
to DETACHED because an add or a toggle is low-stakes and eventual
consistency is fine; failures are only logged.

Entities are never purged by a toggle: deactivating keeps the row so old
transactions still display its name, it just disappears from pickers.
"""

import asyncio
from typing import Callable, Optional, Union

import structlog

from ledgersync.audit import AuditLogger
from ledgersync.models.audit import AuditEventType
from ledgersync.models.transaction import (
    Category,
    PaymentMethod,
    ProjectDept,
    TransactionType,
    new_category_id,
    new_project_id,
)
from ledgersync.services.remote import (
    ReferenceAction,
    RemoteSyncError,
    SheetsEndpointClient,
)
from ledgersync.services.remote.wire import category_payload, project_payload
from ledgersync.services.storage import LocalStoreInterface, NotFoundError
from ledgersync.sync.ledger import MutationLedger
from ledgersync.sync.protocol import DeliveryMode, SyncOutcome


logger = structlog.get_logger(__name__)

Reference = Union[Category, ProjectDept]

_EVENT_FOR_ACTION = {
    ReferenceAction.ADD: AuditEventType.REFERENCE_ADDED,
    ReferenceAction.UPDATE: AuditEventType.REFERENCE_UPDATED,
    ReferenceAction.DELETE: AuditEventType.REFERENCE_DELETED,
}


class ReferenceDataSync:

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

    # -- pickers -----------------------------------------------------------

    def active_categories(self, type: Optional[TransactionType] = None) -> list[Category]:
        return [
            c for c in self._store.get_categories()
            if c.is_active and (type is None or c.type == type)
        ]

    def active_projects(self) -> list[ProjectDept]:
        return [p for p in self._store.get_projects() if p.is_active]

    def active_payment_methods(self) -> list[PaymentMethod]:
        return [m for m in self._store.get_payment_methods() if m.is_active]

    # -- categories --------------------------------------------------------

    async def add_category(
        self,
        name: str,
        type: TransactionType,
        mode: DeliveryMode = DeliveryMode.DETACHED,
    ) -> tuple[Category, SyncOutcome]:
        category = Category(id=new_category_id(), name=name, type=type)
        self._store.save_category(category)
        return category, await self._commit(category, ReferenceAction.ADD, mode)

    async def toggle_category(
        self,
        category_id: str,
        mode: DeliveryMode = DeliveryMode.DETACHED,
    ) -> tuple[Category, SyncOutcome]:
        current = self._find(self._store.get_categories(), category_id, "Category")
        category = current.model_copy(update={"is_active": not current.is_active})
        self._store.save_category(category)
        return category, await self._commit(category, ReferenceAction.UPDATE, mode)

    async def delete_category(
        self,
        category_id: str,
        mode: DeliveryMode = DeliveryMode.DETACHED,
    ) -> SyncOutcome:
        category = self._find(self._store.get_categories(), category_id, "Category")
        self._store.delete_category(category_id)
        return await self._commit(category, ReferenceAction.DELETE, mode)

    # -- projects ----------------------------------------------------------

    async def add_project(
        self,
        name: str,
        mode: DeliveryMode = DeliveryMode.DETACHED,
    ) -> tuple[ProjectDept, SyncOutcome]:
        project = ProjectDept(id=new_project_id(), name=name)
        self._store.save_project(project)
        return project, await self._commit(project, ReferenceAction.ADD, mode)

    async def toggle_project(
        self,
        project_id: str,
        mode: DeliveryMode = DeliveryMode.DETACHED,
    ) -> tuple[ProjectDept, SyncOutcome]:
        current = self._find(self._store.get_projects(), project_id, "Project")
        project = current.model_copy(update={"is_active": not current.is_active})
        self._store.save_project(project)
        return project, await self._commit(project, ReferenceAction.UPDATE, mode)

    async def delete_project(
        self,
        project_id: str,
        mode: DeliveryMode = DeliveryMode.DETACHED,
    ) -> SyncOutcome:
        project = self._find(self._store.get_projects(), project_id, "Project")
        self._store.delete_project(project_id)
        return await self._commit(project, ReferenceAction.DELETE, mode)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- internals ---------------------------------------------------------

    @staticmethod
    def _find(items: list, entity_id: str, label: str):
        for item in items:
            if item.id == entity_id:
                return item
        raise NotFoundError(f"{label} {entity_id} not found")

    @staticmethod
    def _describe(entity: Reference) -> tuple[str, Callable[[Reference, ReferenceAction], dict]]:
        if isinstance(entity, Category):
            return "category", category_payload
        return "project", project_payload

    async def _commit(
        self,
        entity: Reference,
        action: ReferenceAction,
        mode: DeliveryMode,
    ) -> SyncOutcome:
        entity_type, _ = self._describe(entity)
        self._audit.log_reference_changed(
            _EVENT_FOR_ACTION[action], entity_type, entity.id, entity.name,
        )
        key = f"{entity_type}:{entity.id}"
        self._ledger.record_mutation(key)

        task = asyncio.ensure_future(self._replay(key, entity, action, mode))
        self._tasks.add(task)
        task.add_done_callback(self._on_replay_done)
        if mode == DeliveryMode.DETACHED:
            return SyncOutcome.QUEUED
        return await asyncio.shield(task)

    def _on_replay_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("reference_replay_crashed", error=str(task.exception()))

    async def _replay(
        self,
        key: str,
        entity: Reference,
        action: ReferenceAction,
        mode: DeliveryMode,
    ) -> SyncOutcome:
        entity_type, build = self._describe(entity)
        try:
            async with self._ledger.replay_slot(key):
                config = self._store.get_sync_config()
                if not config.is_configured:
                    self._audit.log_replay_skipped_offline(entity_type, entity.id, action.value)
                    return SyncOutcome.OFFLINE
                try:
                    await self._client.post(config.endpoint_url, build(entity, action))
                except RemoteSyncError as e:
                    self._audit.log_replay_failed(
                        entity_type, entity.id, action.value, str(e),
                        detached=mode == DeliveryMode.DETACHED,
                    )
                    return SyncOutcome.FAILED
                self._audit.log_replay_delivered(entity_type, entity.id, action.value)
                return SyncOutcome.DELIVERED
        finally:
            self._ledger.settle(key)
