"""
Abstract Local Store Interface

DESIGN DECISION: Everything above the store (reconciliation, the sync
protocol, the session) talks to this interface, never to a file or a
dict directly. This allows us to:
1. Use an in-memory store in tests
2. Keep a JSON directory store for real use
3. Swap the medium later without touching sync logic

Contract shared by every implementation:
- get_* never raises for missing data; an uninitialized partition reads
  as an empty list / None.
- save_* is insert-or-replace by id and keeps insertion order.
- delete_* is a no-op when the id is absent.
- replace_* is a no-op for an empty sequence, so a failed or empty remote
  fetch can never wipe good local data.
- Writes are synchronous: the next read in the same process sees them.
- Failure of the medium itself raises StorageError; that is fatal to the
  operation that triggered it.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Sequence

from pydantic import BaseModel, Field

from ledgersync.models.audit import AuditEvent
from ledgersync.models.transaction import (
    Category,
    PaymentMethod,
    ProjectDept,
    SyncConfig,
    Transaction,
    User,
)


class StaleMarker(BaseModel):
    """A local change the remote has not acknowledged yet."""

    entity_type: str
    entity_id: str
    operation: str  # "upsert" | "delete"
    marked_at: datetime = Field(default_factory=datetime.utcnow)
    last_error: Optional[str] = None


class StoreSnapshot(BaseModel):
    """All collections read together, for rendering one consistent view."""

    transactions: list[Transaction]
    categories: list[Category]
    projects: list[ProjectDept]
    payment_methods: list[PaymentMethod]
    users: list[User]
    current_user: Optional[User] = None


class LocalStoreInterface(ABC):
    """
    Abstract interface for the local persisted store.

    The store exclusively owns persisted state.
    """

    # -- transactions ------------------------------------------------------

    @abstractmethod
    def get_transactions(self) -> list[Transaction]:
        pass

    @abstractmethod
    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    def save_transaction(self, transaction: Transaction) -> None:
        pass

    @abstractmethod
    def save_transactions(self, transactions: Sequence[Transaction]) -> None:
        """Insert-or-replace many records in one write."""
        pass

    @abstractmethod
    def delete_transaction(self, transaction_id: str) -> None:
        pass

    # -- reference lists ---------------------------------------------------

    @abstractmethod
    def get_categories(self) -> list[Category]:
        pass

    @abstractmethod
    def save_category(self, category: Category) -> None:
        pass

    @abstractmethod
    def delete_category(self, category_id: str) -> None:
        pass

    @abstractmethod
    def replace_categories(self, categories: Sequence[Category]) -> bool:
        """Overwrite the list. Returns False (and does nothing) when empty."""
        pass

    @abstractmethod
    def get_projects(self) -> list[ProjectDept]:
        pass

    @abstractmethod
    def save_project(self, project: ProjectDept) -> None:
        pass

    @abstractmethod
    def delete_project(self, project_id: str) -> None:
        pass

    @abstractmethod
    def replace_projects(self, projects: Sequence[ProjectDept]) -> bool:
        pass

    @abstractmethod
    def get_payment_methods(self) -> list[PaymentMethod]:
        pass

    @abstractmethod
    def save_payment_method(self, method: PaymentMethod) -> None:
        pass

    @abstractmethod
    def delete_payment_method(self, method_id: str) -> None:
        pass

    @abstractmethod
    def replace_payment_methods(self, methods: Sequence[PaymentMethod]) -> bool:
        pass

    # -- users and session -------------------------------------------------

    @abstractmethod
    def get_users(self) -> list[User]:
        pass

    @abstractmethod
    def save_user(self, user: User) -> None:
        pass

    @abstractmethod
    def delete_user(self, user_id: str) -> None:
        pass

    @abstractmethod
    def replace_users(self, users: Sequence[User]) -> bool:
        """
        Overwrite the user list (no-op when empty).

        The bootstrap administrator is kept whenever the new list has
        no manager, so an administrator is always resolvable.
        """
        pass

    @abstractmethod
    def get_fallback_admin(self) -> User:
        """The administrator used when no other manager can be found."""
        pass

    @abstractmethod
    def get_current_user(self) -> Optional[User]:
        pass

    @abstractmethod
    def set_current_user(self, user: Optional[User]) -> None:
        pass

    # -- sync configuration and bookkeeping --------------------------------

    @abstractmethod
    def get_sync_config(self) -> SyncConfig:
        pass

    @abstractmethod
    def save_sync_config(self, config: SyncConfig) -> None:
        pass

    @abstractmethod
    def get_stale_markers(self) -> list[StaleMarker]:
        pass

    @abstractmethod
    def mark_stale(self, marker: StaleMarker) -> None:
        """Record (or refresh) a pending change keyed by entity type + id."""
        pass

    @abstractmethod
    def clear_stale(self, entity_type: str, entity_id: str) -> None:
        pass

    @abstractmethod
    def snapshot(self) -> StoreSnapshot:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    def append_event(self, event: AuditEvent) -> bool:
        pass

    @abstractmethod
    def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for local store failures. Always fatal."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass
