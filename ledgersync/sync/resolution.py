"""
Name Resolution and Ownership

Two lookups every view and every replay needs:

1. Display names. A transaction's foreign-key id wins whenever it
   resolves in the current reference lists. When the id is the
   unresolved sentinel (row came from a names-only sheet) or points at an
   entity that no longer exists, the shadow *_name field is used.

2. Ownership. One rule decides whether a user owns a transaction: the
   user's id must equal the transaction's owner id. For rows whose owner
   id is the sentinel, the owner id is first resolved by looking up
   recordedByName in the stored user list. There is no separate
   "name matches" shortcut.
"""

from typing import Iterable, Optional

from ledgersync.models.transaction import (
    Category,
    PaymentMethod,
    ProjectDept,
    Transaction,
    TransactionStatus,
    User,
    is_unresolved,
)


class PermissionDeniedError(Exception):
    """The acting user may not perform this action on this record."""

    def __init__(self, user_id: str, transaction_id: str, operation: str):
        self.user_id = user_id
        self.transaction_id = transaction_id
        self.operation = operation
        super().__init__(
            f"User {user_id} is not allowed to {operation} transaction {transaction_id}"
        )


def _norm(name: Optional[str]) -> str:
    return (name or "").strip().lower()


class NameResolver:
    """Resolves display names against one set of reference lists."""

    def __init__(
        self,
        categories: Iterable[Category] = (),
        projects: Iterable[ProjectDept] = (),
        payment_methods: Iterable[PaymentMethod] = (),
        users: Iterable[User] = (),
    ):
        self._categories = {c.id: c.name for c in categories}
        self._projects = {p.id: p.name for p in projects}
        self._methods = {m.id: m.name for m in payment_methods}
        self._users = list(users)
        self._user_names = {u.id: u.name for u in self._users}

    @classmethod
    def from_store(cls, store) -> "NameResolver":
        """Build from the store's current lists (read now, not cached)."""
        return cls(
            categories=store.get_categories(),
            projects=store.get_projects(),
            payment_methods=store.get_payment_methods(),
            users=store.get_users(),
        )

    @staticmethod
    def _resolve(table: dict, entity_id: str, shadow: Optional[str]) -> str:
        if not is_unresolved(entity_id) and entity_id in table:
            return table[entity_id]
        return shadow or ""

    def category_name(self, tx: Transaction) -> str:
        return self._resolve(self._categories, tx.category_id, tx.category_name)

    def project_name(self, tx: Transaction) -> str:
        return self._resolve(self._projects, tx.project_dept_id, tx.project_name)

    def method_name(self, tx: Transaction) -> str:
        return self._resolve(self._methods, tx.payment_method_id, tx.method_name)

    def user_name(self, tx: Transaction) -> str:
        return self._resolve(self._user_names, tx.recorded_by_id, tx.recorded_by_name)

    def owner_id(self, tx: Transaction) -> Optional[str]:
        if not is_unresolved(tx.recorded_by_id):
            return tx.recorded_by_id
        wanted = _norm(tx.recorded_by_name)
        if not wanted:
            return None
        for user in self._users:
            if _norm(user.name) == wanted:
                return user.id
        return None


def is_owner(user: User, tx: Transaction, resolver: NameResolver) -> bool:
    return resolver.owner_id(tx) == user.id


def can_modify(user: User, tx: Transaction, resolver: NameResolver) -> bool:
    """Edit and delete share one rule: managers always, employees on own PENDING rows."""
    if user.is_manager:
        return True
    return tx.status == TransactionStatus.PENDING and is_owner(user, tx, resolver)


def can_change_status(user: User, tx: Transaction, target: TransactionStatus) -> bool:
    return user.is_manager and tx.status.can_advance_to(target)


def visible_transactions(
    user: User,
    transactions: Iterable[Transaction],
    resolver: NameResolver,
) -> list[Transaction]:
    """Managers see everything; employees see the records they own."""
    if user.is_manager:
        return list(transactions)
    return [tx for tx in transactions if is_owner(user, tx, resolver)]
