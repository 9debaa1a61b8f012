"""Services package."""

from ledgersync.services.extraction import (
    GeminiReceiptExtractor,
    ReceiptExtractorInterface,
    apply_extraction,
)
from ledgersync.services.remote import (
    MalformedResponseError,
    RemoteRejectedError,
    RemoteSyncError,
    RemoteTransportError,
    SheetsEndpointClient,
)
from ledgersync.services.storage import (
    AuditStorageInterface,
    InMemoryLocalStore,
    JsonFileLocalStore,
    LocalStoreInterface,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Receipt reading
    "GeminiReceiptExtractor",
    "ReceiptExtractorInterface",
    "apply_extraction",
    # Remote endpoint
    "MalformedResponseError",
    "RemoteRejectedError",
    "RemoteSyncError",
    "RemoteTransportError",
    "SheetsEndpointClient",
    # Local store
    "AuditStorageInterface",
    "InMemoryLocalStore",
    "JsonFileLocalStore",
    "LocalStoreInterface",
    "NotFoundError",
    "StorageError",
]
