"""
Local Store Implementations

Two media share one implementation of the store contract:
- InMemoryLocalStore: a dict of partitions, for tests and ephemeral runs
- JsonFileLocalStore: one JSON file per partition in a data directory

Each partition holds plain JSON (camelCase keys, the same shape the remote
sheet script speaks), so a data directory can be inspected or hand-edited.

TRADEOFFS:
- Every read parses the whole partition (fine at bookkeeping volumes)
- No cross-partition transactions (each save touches one partition)
"""

import contextlib
import json
import os
from abc import abstractmethod
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, TypeVar

import structlog
from pydantic import BaseModel, TypeAdapter, ValidationError

from ledgersync.models.audit import AuditEvent
from ledgersync.models.bootstrap import (
    BOOTSTRAP_ADMIN_ID,
    INITIAL_CATEGORIES,
    INITIAL_PAYMENT_METHODS,
    INITIAL_PROJECTS,
    LEGACY_MOCK_TRANSACTION_IDS,
    bootstrap_admin,
)
from ledgersync.models.transaction import (
    Category,
    PaymentMethod,
    ProjectDept,
    Role,
    SyncConfig,
    Transaction,
    User,
)
from ledgersync.services.storage.interface import (
    AuditStorageInterface,
    LocalStoreInterface,
    StaleMarker,
    StorageError,
    StoreSnapshot,
)


logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


class Partition:
    """Names of the independently readable/writable store partitions."""
    TRANSACTIONS = "transactions"
    CATEGORIES = "categories"
    PROJECTS = "projects"
    PAYMENT_METHODS = "payment_methods"
    CURRENT_USER = "current_user"
    USERS = "users"
    SYNC_CONFIG = "sync_config"
    STALE = "stale"
    AUDIT_LOG = "audit_log"


class PartitionedLocalStore(LocalStoreInterface, AuditStorageInterface):
    """
    Store logic over an abstract partition medium.

    Subclasses only provide _read / _write / _has for raw JSON values.
    """

    def __init__(
        self,
        default_endpoint_url: Optional[str] = None,
        audit_log_limit: int = 500,
    ):
        self._audit_log_limit = audit_log_limit
        self.initialize(default_endpoint_url)

    # -- medium ------------------------------------------------------------

    @abstractmethod
    def _has(self, partition: str) -> bool:
        pass

    @abstractmethod
    def _read(self, partition: str) -> Any:
        pass

    @abstractmethod
    def _write(self, partition: str, value: Any) -> None:
        pass

    # -- bootstrap ---------------------------------------------------------

    def initialize(self, default_endpoint_url: Optional[str] = None) -> None:
        """
        Seed missing partitions with the bootstrap dataset.

        Safe to call repeatedly: existing partitions are left alone apart
        from purging legacy mock transactions and guaranteeing an admin.
        """
        if not self._has(Partition.TRANSACTIONS):
            self._write(Partition.TRANSACTIONS, [])
        else:
            existing = self.get_transactions()
            kept = [t for t in existing if t.id not in LEGACY_MOCK_TRANSACTION_IDS]
            if len(kept) != len(existing):
                self._write_models(Partition.TRANSACTIONS, kept)
                logger.info(
                    "legacy_mock_transactions_purged",
                    removed=len(existing) - len(kept),
                )

        seeds: list[tuple[str, Sequence[BaseModel]]] = [
            (Partition.CATEGORIES, INITIAL_CATEGORIES),
            (Partition.PROJECTS, INITIAL_PROJECTS),
            (Partition.PAYMENT_METHODS, INITIAL_PAYMENT_METHODS),
        ]
        for partition, items in seeds:
            if not self._has(partition):
                self._write_models(partition, items)

        if not self._has(Partition.SYNC_CONFIG):
            self.save_sync_config(SyncConfig(endpoint_url=default_endpoint_url))

        users = self.get_users()
        if not any(u.role == Role.MANAGER for u in users):
            self._write_models(Partition.USERS, [*users, bootstrap_admin()])

    # -- generic list helpers ----------------------------------------------

    def _read_models(self, partition: str, model: type[M]) -> list[M]:
        if not self._has(partition):
            return []
        raw = self._read(partition)
        try:
            return TypeAdapter(list[model]).validate_python(raw or [])
        except ValidationError as e:
            raise StorageError(f"Partition '{partition}' is corrupt: {e}") from e

    def _write_models(self, partition: str, items: Sequence[BaseModel]) -> None:
        self._write(
            partition,
            [item.model_dump(mode="json", by_alias=True) for item in items],
        )

    def _upsert(
        self,
        partition: str,
        model: type[M],
        item: M,
        key: Callable[[M], str] = lambda m: m.id,
    ) -> None:
        items = self._read_models(partition, model)
        for idx, existing in enumerate(items):
            if key(existing) == key(item):
                items[idx] = item
                break
        else:
            items.append(item)
        self._write_models(partition, items)

    def _remove(self, partition: str, model: type[M], item_id: str) -> None:
        items = self._read_models(partition, model)
        kept = [i for i in items if i.id != item_id]
        if len(kept) != len(items):
            self._write_models(partition, kept)

    def _replace(self, partition: str, items: Sequence[BaseModel]) -> bool:
        if not items:
            logger.debug("replace_skipped_empty", partition=partition)
            return False
        self._write_models(partition, items)
        return True

    # -- transactions ------------------------------------------------------

    def get_transactions(self) -> list[Transaction]:
        return self._read_models(Partition.TRANSACTIONS, Transaction)

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        for tx in self.get_transactions():
            if tx.id == transaction_id:
                return tx
        return None

    def save_transaction(self, transaction: Transaction) -> None:
        self._upsert(Partition.TRANSACTIONS, Transaction, transaction)

    def save_transactions(self, transactions: Sequence[Transaction]) -> None:
        if not transactions:
            return
        items = self.get_transactions()
        index = {tx.id: pos for pos, tx in enumerate(items)}
        for tx in transactions:
            if tx.id in index:
                items[index[tx.id]] = tx
            else:
                index[tx.id] = len(items)
                items.append(tx)
        self._write_models(Partition.TRANSACTIONS, items)

    def delete_transaction(self, transaction_id: str) -> None:
        self._remove(Partition.TRANSACTIONS, Transaction, transaction_id)

    # -- reference lists ---------------------------------------------------

    def get_categories(self) -> list[Category]:
        return self._read_models(Partition.CATEGORIES, Category)

    def save_category(self, category: Category) -> None:
        self._upsert(Partition.CATEGORIES, Category, category)

    def delete_category(self, category_id: str) -> None:
        self._remove(Partition.CATEGORIES, Category, category_id)

    def replace_categories(self, categories: Sequence[Category]) -> bool:
        return self._replace(Partition.CATEGORIES, categories)

    def get_projects(self) -> list[ProjectDept]:
        return self._read_models(Partition.PROJECTS, ProjectDept)

    def save_project(self, project: ProjectDept) -> None:
        self._upsert(Partition.PROJECTS, ProjectDept, project)

    def delete_project(self, project_id: str) -> None:
        self._remove(Partition.PROJECTS, ProjectDept, project_id)

    def replace_projects(self, projects: Sequence[ProjectDept]) -> bool:
        return self._replace(Partition.PROJECTS, projects)

    def get_payment_methods(self) -> list[PaymentMethod]:
        return self._read_models(Partition.PAYMENT_METHODS, PaymentMethod)

    def save_payment_method(self, method: PaymentMethod) -> None:
        self._upsert(Partition.PAYMENT_METHODS, PaymentMethod, method)

    def delete_payment_method(self, method_id: str) -> None:
        self._remove(Partition.PAYMENT_METHODS, PaymentMethod, method_id)

    def replace_payment_methods(self, methods: Sequence[PaymentMethod]) -> bool:
        return self._replace(Partition.PAYMENT_METHODS, methods)

    # -- users and session -------------------------------------------------

    def get_users(self) -> list[User]:
        return self._read_models(Partition.USERS, User)

    def save_user(self, user: User) -> None:
        self._upsert(Partition.USERS, User, user)

    def delete_user(self, user_id: str) -> None:
        self._remove(Partition.USERS, User, user_id)

    def replace_users(self, users: Sequence[User]) -> bool:
        if not users:
            logger.debug("replace_skipped_empty", partition=Partition.USERS)
            return False
        users = list(users)
        if not any(u.role == Role.MANAGER for u in users):
            users.append(bootstrap_admin())
        self._write_models(Partition.USERS, users)
        return True

    def get_fallback_admin(self) -> User:
        managers = [u for u in self.get_users() if u.role == Role.MANAGER]
        for user in managers:
            if user.id == BOOTSTRAP_ADMIN_ID:
                return user
        if managers:
            return managers[0]
        return bootstrap_admin()

    def get_current_user(self) -> Optional[User]:
        if not self._has(Partition.CURRENT_USER):
            return None
        raw = self._read(Partition.CURRENT_USER)
        return User.model_validate(raw) if raw else None

    def set_current_user(self, user: Optional[User]) -> None:
        self._write(
            Partition.CURRENT_USER,
            user.model_dump(mode="json", by_alias=True) if user else None,
        )

    # -- sync configuration and bookkeeping --------------------------------

    def get_sync_config(self) -> SyncConfig:
        if not self._has(Partition.SYNC_CONFIG):
            return SyncConfig()
        return SyncConfig.model_validate(self._read(Partition.SYNC_CONFIG) or {})

    def save_sync_config(self, config: SyncConfig) -> None:
        self._write(Partition.SYNC_CONFIG, config.to_wire())

    def get_stale_markers(self) -> list[StaleMarker]:
        return self._read_models(Partition.STALE, StaleMarker)

    def mark_stale(self, marker: StaleMarker) -> None:
        self._upsert(
            Partition.STALE,
            StaleMarker,
            marker,
            key=lambda m: f"{m.entity_type}:{m.entity_id}",
        )

    def clear_stale(self, entity_type: str, entity_id: str) -> None:
        markers = self.get_stale_markers()
        kept = [
            m for m in markers
            if not (m.entity_type == entity_type and m.entity_id == entity_id)
        ]
        if len(kept) != len(markers):
            self._write_models(Partition.STALE, kept)

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            transactions=self.get_transactions(),
            categories=self.get_categories(),
            projects=self.get_projects(),
            payment_methods=self.get_payment_methods(),
            users=self.get_users(),
            current_user=self.get_current_user(),
        )

    # -- audit -------------------------------------------------------------

    def append_event(self, event: AuditEvent) -> bool:
        if self._audit_log_limit == 0:
            return True
        events = self._read_models(Partition.AUDIT_LOG, AuditEvent)
        events.append(event)
        self._write(
            Partition.AUDIT_LOG,
            [e.model_dump(mode="json") for e in events[-self._audit_log_limit:]],
        )
        return True

    def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        events = self._read_models(Partition.AUDIT_LOG, AuditEvent)
        return list(reversed(events))[:limit]


class InMemoryLocalStore(PartitionedLocalStore):
    """Store held in a dict. Values are JSON round-tripped to match file behaviour."""

    def __init__(
        self,
        default_endpoint_url: Optional[str] = None,
        audit_log_limit: int = 500,
    ):
        self._partitions: dict[str, str] = {}
        super().__init__(default_endpoint_url, audit_log_limit)

    def _has(self, partition: str) -> bool:
        return partition in self._partitions

    def _read(self, partition: str) -> Any:
        return json.loads(self._partitions[partition])

    def _write(self, partition: str, value: Any) -> None:
        self._partitions[partition] = json.dumps(value, ensure_ascii=False)


class JsonFileLocalStore(PartitionedLocalStore):
    """
    Store backed by a directory of JSON files.

    Writes go to a temp file first and are moved into place, so a crash
    mid-write never leaves a half-written partition behind.
    """

    def __init__(
        self,
        data_dir: Path,
        default_endpoint_url: Optional[str] = None,
        audit_log_limit: int = 500,
    ):
        self._data_dir = Path(data_dir)
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create data directory {self._data_dir}: {e}") from e
        super().__init__(default_endpoint_url, audit_log_limit)

    def _path(self, partition: str) -> Path:
        return self._data_dir / f"{partition}.json"

    def _has(self, partition: str) -> bool:
        return self._path(partition).exists()

    def _read(self, partition: str) -> Any:
        path = self._path(partition)
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def _write(self, partition: str, value: Any) -> None:
        path = self._path(partition)
        tmp = path.with_suffix(".tmp")
        try:
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(value, f, ensure_ascii=False, indent=2)
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as e:
            with contextlib.suppress(OSError):
                tmp.unlink(missing_ok=True)
            raise StorageError(f"Failed to write {path}: {e}") from e
