"""
Main Orchestrator for Ledger Sync

Ties the components together around one shared local store, one remote
client and one mutation ledger:

1. Session (login against stored users)
2. Transaction mutations (OptimisticSyncProtocol)
3. Reference data (ReferenceDataSync)
4. Refresh from the sheet (CloudReconciler)

DESIGN DECISION: the protocol, the reference sync and the reconciler
MUST share the same MutationLedger. The ledger is what lets
reconciliation see that a local change is still in flight.
"""

from pathlib import Path
from typing import Optional

import httpx
import structlog

from ledgersync.audit import AuditLogger
from ledgersync.config import get_settings
from ledgersync.models.transaction import SyncConfig, User
from ledgersync.services.extraction import GeminiReceiptExtractor, ReceiptExtractorInterface
from ledgersync.services.remote import SheetsEndpointClient
from ledgersync.services.storage import (
    InMemoryLocalStore,
    JsonFileLocalStore,
    PartitionedLocalStore,
)
from ledgersync.sync import (
    CloudReconciler,
    MutationLedger,
    OptimisticSyncProtocol,
    ReconcileReport,
    ReferenceDataSync,
    SessionService,
)


logger = structlog.get_logger(__name__)


class LedgerApp:
    """The wired component graph, plus the few flows that span components."""

    def __init__(
        self,
        store: PartitionedLocalStore,
        client: SheetsEndpointClient,
        audit_logger: AuditLogger,
        extractor: Optional[ReceiptExtractorInterface] = None,
    ):
        self.store = store
        self.client = client
        self.audit_logger = audit_logger
        self.ledger = MutationLedger()
        self.session = SessionService(store, audit_logger)
        self.transactions = OptimisticSyncProtocol(store, client, self.ledger, audit_logger)
        self.references = ReferenceDataSync(store, client, self.ledger, audit_logger)
        self.reconciler = CloudReconciler(store, client, self.ledger, audit_logger)
        self.extractor = extractor or GeminiReceiptExtractor()

    def configure_endpoint(self, endpoint_url: Optional[str]) -> SyncConfig:
        """Takes effect on the next sync attempt; nothing is cached."""
        config = SyncConfig(endpoint_url=(endpoint_url or "").strip() or None)
        self.store.save_sync_config(config)
        logger.info("endpoint_configured", configured=config.is_configured)
        return config

    async def refresh(self, user: Optional[User] = None) -> dict[str, ReconcileReport]:
        """Pull everything visible to `user` (defaults to the session user)."""
        return await self.reconciler.pull_all(user or self.session.current_user)

    async def push_pending(self):
        return await self.transactions.retry_stale()

    async def shutdown(self) -> None:
        """Let in-flight replays finish."""
        await self.transactions.drain()
        await self.references.drain()


def create_app_components(
    use_storage: bool = True,
    data_dir: Optional[Path] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    extractor: Optional[ReceiptExtractorInterface] = None,
) -> LedgerApp:
    """
    Factory function to create all application components.

    Args:
        use_storage: Persist to the JSON data directory. Set to False for
                     an in-memory store (tests, demos).
        data_dir: Overrides the configured data directory.
        transport: httpx transport for the remote client (tests inject a
                   MockTransport).
        extractor: Receipt reader; defaults to Gemini.
    """
    settings = get_settings()
    store_settings = settings.store
    remote_settings = settings.remote

    if use_storage:
        store = JsonFileLocalStore(
            data_dir or store_settings.data_dir,
            default_endpoint_url=remote_settings.default_endpoint_url,
            audit_log_limit=store_settings.audit_log_limit,
        )
    else:
        store = InMemoryLocalStore(
            default_endpoint_url=remote_settings.default_endpoint_url,
            audit_log_limit=store_settings.audit_log_limit,
        )

    return LedgerApp(
        store=store,
        client=SheetsEndpointClient(remote_settings, transport=transport),
        audit_logger=AuditLogger(store),
        extractor=extractor,
    )
