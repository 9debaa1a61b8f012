"""
Storage Services Package

The local store is the single owner of persisted state. Everything else
reads and writes through LocalStoreInterface.
"""

from ledgersync.services.storage.interface import (
    AuditStorageInterface,
    LocalStoreInterface,
    NotFoundError,
    StaleMarker,
    StorageError,
    StoreSnapshot,
)
from ledgersync.services.storage.local_store import (
    InMemoryLocalStore,
    JsonFileLocalStore,
    Partition,
    PartitionedLocalStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LocalStoreInterface",
    "StaleMarker",
    "StoreSnapshot",
    # Exceptions
    "NotFoundError",
    "StorageError",
    # Implementations
    "InMemoryLocalStore",
    "JsonFileLocalStore",
    "Partition",
    "PartitionedLocalStore",
]
