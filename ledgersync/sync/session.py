"""
Session

Login is checked against the stored user list (kept fresh by
CloudReconciler.pull_users). Everyone logs in with name + password; the
bootstrap login always reaches an administrator, so a store whose user
list is empty or unreachable still has a way in.
"""

from typing import Optional

from ledgersync.audit import AuditLogger
from ledgersync.models.bootstrap import BOOTSTRAP_ADMIN_LOGIN, BOOTSTRAP_ADMIN_PASSWORD
from ledgersync.models.transaction import User
from ledgersync.services.storage import LocalStoreInterface


class SessionService:

    def __init__(
        self,
        store: LocalStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._audit = audit_logger or AuditLogger()

    def login(self, name: str, password: str) -> Optional[User]:
        """
        Returns the logged-in user, or None for bad credentials.

        Names compare trimmed and case-insensitively; passwords exactly.
        """
        wanted = (name or "").strip().lower()
        user = next(
            (
                u for u in self._store.get_users()
                if u.name.strip().lower() == wanted
                and u.password is not None
                and u.password == password
            ),
            None,
        )
        if user is None and wanted == BOOTSTRAP_ADMIN_LOGIN.lower() and password == BOOTSTRAP_ADMIN_PASSWORD:
            user = self._store.get_fallback_admin()

        self._audit.log_login(name, succeeded=user is not None)
        if user is not None:
            self._store.set_current_user(user)
        return user

    def logout(self) -> None:
        self._store.set_current_user(None)

    @property
    def current_user(self) -> Optional[User]:
        return self._store.get_current_user()
