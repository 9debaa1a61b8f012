"""
Shared fixtures.

The remote sheet is faked in memory behind httpx.MockTransport: it keys
transactions by id (upsert / delete-by-id), like the real script. No test
touches the network.
"""

import json
from typing import Optional

import httpx
import pytest

from ledgersync.audit import AuditLogger
from ledgersync.config import RemoteSettings, StatusPolicy
from ledgersync.models.transaction import Role, SyncConfig, User
from ledgersync.services.remote import SheetsEndpointClient
from ledgersync.services.remote.wire import TRANSACTION_COLUMNS
from ledgersync.services.storage import InMemoryLocalStore
from ledgersync.sync import (
    CloudReconciler,
    MutationLedger,
    OptimisticSyncProtocol,
    ReferenceDataSync,
)


ENDPOINT = "https://script.example.test/macros/exec"


class FakeSheet:
    """In-memory stand-in for the spreadsheet script endpoint."""

    def __init__(self):
        self.transactions: dict[str, dict] = {}
        self.categories: dict[str, dict] = {}
        self.projects: dict[str, dict] = {}
        self.users: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.posts: list[dict] = []
        self.unreachable = False
        self.http_status: Optional[int] = None
        self.reject_posts = False
        self.tabular = False
        self.reply_extra: dict = {}

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("network unreachable", request=request)
        if self.http_status is not None:
            return httpx.Response(self.http_status, text="server error")
        if request.method == "POST":
            return httpx.Response(200, json=self._post(json.loads(request.content)))
        return httpx.Response(200, json=self._get(
            request.url.params.get("action"),
            request.url.params.get("userId"),
        ))

    def _post(self, body: dict) -> dict:
        self.posts.append(body)
        if self.reject_posts:
            return {"result": "error", "error": "Sheet not found"}
        data_type = body.get("dataType")
        if data_type == "TRANSACTION":
            self.transactions[body["id"]] = body
            return {"result": "success", **self.reply_extra}
        if data_type == "DELETE_TRANSACTION":
            if self.transactions.pop(body["id"], None) is None:
                return {"result": "not_found"}
            return {"result": "success"}
        table = self.categories if data_type == "CATEGORY" else self.projects
        if body.get("action") == "delete":
            table.pop(body["id"], None)
        else:
            table[body["id"]] = body
        return {"result": "success"}

    def _get(self, action: str, user_id: Optional[str]):
        if action == "getTransactions":
            rows = [
                r for r in self.transactions.values()
                if user_id is None or r.get("recordedById") == user_id
            ]
            if self.tabular:
                return {
                    "headers": TRANSACTION_COLUMNS,
                    "data": [[r.get(c, "") for c in TRANSACTION_COLUMNS] for r in rows],
                }
            return rows
        if action == "getUsers":
            return self.users
        if action == "getCategories":
            return list(self.categories.values())
        if action == "getProjects":
            return list(self.projects.values())
        return {"result": "error", "error": f"unknown action {action}"}

    def gets(self, action: str) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == "GET" and r.url.params.get("action") == action
        ]


@pytest.fixture
def store():
    return InMemoryLocalStore()


@pytest.fixture
def online(store):
    """The same store, with the endpoint configured."""
    store.save_sync_config(SyncConfig(endpoint_url=ENDPOINT))
    return store


@pytest.fixture
def sheet():
    return FakeSheet()


@pytest.fixture
def remote_settings():
    return RemoteSettings(max_attempts=1, retry_backoff_seconds=0)


@pytest.fixture
def client(sheet, remote_settings):
    return SheetsEndpointClient(remote_settings, transport=sheet.transport)


@pytest.fixture
def ledger():
    return MutationLedger()


@pytest.fixture
def audit(store):
    return AuditLogger(store)


@pytest.fixture
def protocol(store, client, ledger, audit):
    return OptimisticSyncProtocol(store, client, ledger, audit)


@pytest.fixture
def reconciler(store, client, ledger, audit):
    return CloudReconciler(store, client, ledger, audit, status_policy=StatusPolicy.REMOTE_WINS)


@pytest.fixture
def references(store, client, ledger, audit):
    return ReferenceDataSync(store, client, ledger, audit)


@pytest.fixture
def admin(store):
    return store.get_fallback_admin()


@pytest.fixture
def employee(store):
    user = User(id="u_alice", name="Alice", role=Role.EMPLOYEE, password="alice123")
    store.save_user(user)
    return user


@pytest.fixture
def other_employee(store):
    user = User(id="u_bob", name="Bob", role=Role.EMPLOYEE, password="bob123")
    store.save_user(user)
    return user
