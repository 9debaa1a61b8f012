"""Tests for the optimistic sync protocol."""

import asyncio
import json
from datetime import date
from decimal import Decimal

import httpx
import pytest

from ledgersync.audit import AuditLogger
from ledgersync.config import RemoteSettings
from ledgersync.models.audit import AuditEventType
from ledgersync.models.transaction import (
    UNKNOWN_USER_ID,
    Category,
    SyncConfig,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from ledgersync.services.remote import SheetsEndpointClient
from ledgersync.services.remote.wire import transaction_delete_payload
from ledgersync.services.storage import NotFoundError
from ledgersync.sync import (
    DeliveryMode,
    InvalidTransitionError,
    MutationLedger,
    OptimisticSyncProtocol,
    PermissionDeniedError,
    SyncOutcome,
    can_change_status,
)


ENDPOINT = "https://script.example.test/macros/exec"


def _draft(**kwargs) -> Transaction:
    fields = dict(
        date=date(2024, 1, 1),
        type=TransactionType.EXPENSE,
        amount=Decimal("500"),
        summary="test",
        category_id="c3",
        project_dept_id="p1",
        payment_method_id="pm2",
    )
    fields.update(kwargs)
    return Transaction(**fields)


def _events(audit: AuditLogger, event_type: AuditEventType) -> list:
    return [e for e in audit.recent_events() if e.event_type == event_type]


class TestCreate:
    """Tests for create_transaction."""

    @pytest.mark.asyncio
    async def test_offline_create_is_local_only(self, store, protocol, sheet, admin):
        """Test with no endpoint the record is kept locally and nothing is sent."""
        draft = _draft()
        result = await protocol.create_transaction(admin, draft)
        assert result.outcome == SyncOutcome.OFFLINE
        assert result.ok
        assert sheet.requests == []
        stored = store.get_transaction(draft.id)
        assert stored.amount == Decimal("500")
        assert stored.summary == "test"
        assert stored.status == TransactionStatus.PENDING
        assert [m.entity_id for m in store.get_stale_markers()] == [draft.id]

    @pytest.mark.asyncio
    async def test_create_sets_owner_and_pending(self, store, protocol, employee):
        """Test new records belong to the submitter and start PENDING."""
        draft = _draft(status=TransactionStatus.BOOKED)
        await protocol.create_transaction(employee, draft)
        stored = store.get_transaction(draft.id)
        assert stored.recorded_by_id == employee.id
        assert stored.recorded_by_name == employee.name
        assert stored.status == TransactionStatus.PENDING

    @pytest.mark.asyncio
    async def test_online_create_delivers_with_resolved_names(self, online, protocol, sheet, admin):
        """Test the replay carries names resolved from the reference lists."""
        draft = _draft()
        result = await protocol.create_transaction(admin, draft)
        assert result.outcome == SyncOutcome.DELIVERED
        remote = sheet.transactions[draft.id]
        assert remote["categoryName"] == "員工伙食"
        assert remote["projectName"] == "行政部"
        assert remote["methodName"] == "公司信用卡"
        assert remote["recordedByName"] == admin.name
        assert online.get_stale_markers() == []

    @pytest.mark.asyncio
    async def test_unreachable_create_keeps_local_and_marks_stale(self, online, protocol, sheet, admin, audit):
        """Test a transport failure keeps the local record exactly as committed."""
        sheet.unreachable = True
        draft = _draft()
        result = await protocol.create_transaction(admin, draft)
        assert result.outcome == SyncOutcome.FAILED
        assert not result.ok
        assert "cloud sync failed" in result.message
        stored = online.get_transaction(draft.id)
        assert stored.amount == draft.amount
        assert stored.summary == draft.summary
        assert stored.date == draft.date
        marker = online.get_stale_markers()[0]
        assert marker.operation == "upsert"
        assert marker.last_error
        assert _events(audit, AuditEventType.REPLAY_FAILED)

    @pytest.mark.asyncio
    async def test_rejected_create_is_failed(self, online, protocol, sheet, admin):
        """Test a script-level rejection is a failure too."""
        sheet.reject_posts = True
        result = await protocol.create_transaction(admin, _draft())
        assert result.outcome == SyncOutcome.FAILED

    @pytest.mark.asyncio
    async def test_names_resolved_at_replay_time(self, online, protocol, sheet, admin):
        """Test a rename between commit and replay is reflected in the replay."""
        draft = _draft()
        result = await protocol.create_transaction(admin, draft, mode=DeliveryMode.DETACHED)
        assert result.outcome == SyncOutcome.QUEUED
        online.save_category(Category(id="c3", name="Team meals", type=TransactionType.EXPENSE))
        await protocol.drain()
        assert sheet.transactions[draft.id]["categoryName"] == "Team meals"

    @pytest.mark.asyncio
    async def test_attachment_reference_corrected(self, online, protocol, sheet, admin, audit):
        """Test a canonical attachment reference from the remote is written back."""
        sheet.reply_extra = {"attachmentUrl": "https://files.example.test/r/1.jpg"}
        draft = _draft(attachment_url="data:image/jpeg;base64,AAAA")
        result = await protocol.create_transaction(admin, draft)
        assert online.get_transaction(draft.id).attachment_url == "https://files.example.test/r/1.jpg"
        assert result.transaction.attachment_url == "https://files.example.test/r/1.jpg"
        assert _events(audit, AuditEventType.ATTACHMENT_REFERENCE_CORRECTED)

    @pytest.mark.asyncio
    async def test_detached_failure_only_logged(self, online, protocol, sheet, admin, audit):
        """Test a detached failure is reported through the audit log only."""
        sheet.unreachable = True
        result = await protocol.create_transaction(admin, _draft(), mode=DeliveryMode.DETACHED)
        assert result.outcome == SyncOutcome.QUEUED
        await protocol.drain()
        failed = _events(audit, AuditEventType.REPLAY_FAILED)
        assert failed[0].details["detached"] is True


class TestAuthorization:
    """Tests for the ownership rule."""

    @pytest.mark.asyncio
    async def test_employee_cannot_edit_others_record(self, store, protocol, sheet, employee, other_employee):
        """Test editing someone else's record is rejected before any call."""
        draft = _draft()
        await protocol.create_transaction(other_employee, draft)
        with pytest.raises(PermissionDeniedError):
            await protocol.update_transaction(employee, draft.model_copy(update={"summary": "mine now"}))
        assert store.get_transaction(draft.id).summary == "test"

    @pytest.mark.asyncio
    async def test_employee_edits_own_pending_record(self, store, protocol, employee):
        """Test employees may edit their own PENDING records."""
        draft = _draft()
        await protocol.create_transaction(employee, draft)
        stored = store.get_transaction(draft.id)
        await protocol.update_transaction(employee, stored.model_copy(update={"summary": "fixed"}))
        assert store.get_transaction(draft.id).summary == "fixed"

    @pytest.mark.asyncio
    async def test_employee_cannot_delete_own_approved_record(self, store, protocol, employee, admin):
        """Test employees lose edit rights once a record is reviewed."""
        draft = _draft()
        await protocol.create_transaction(employee, draft)
        await protocol.advance_status(admin, draft.id, TransactionStatus.APPROVED)
        with pytest.raises(PermissionDeniedError):
            await protocol.delete_transaction(employee, draft.id)
        assert store.get_transaction(draft.id) is not None

    @pytest.mark.asyncio
    async def test_owner_resolved_by_name_for_sheet_rows(self, store, protocol, employee):
        """Test a names-only record is owned by the user with that name."""
        tx = _draft(recorded_by_id=UNKNOWN_USER_ID, recorded_by_name="alice ")
        store.save_transaction(tx)
        await protocol.delete_transaction(employee, tx.id)
        assert store.get_transaction(tx.id) is None

    @pytest.mark.asyncio
    async def test_edit_cannot_change_status_or_owner(self, store, protocol, admin, employee):
        """Test edits keep the stored status and owner."""
        draft = _draft()
        await protocol.create_transaction(employee, draft)
        stored = store.get_transaction(draft.id)
        await protocol.update_transaction(admin, stored.model_copy(update={
            "status": TransactionStatus.BOOKED,
            "recorded_by_id": admin.id,
            "amount": Decimal("750"),
        }))
        updated = store.get_transaction(draft.id)
        assert updated.status == TransactionStatus.PENDING
        assert updated.recorded_by_id == employee.id
        assert updated.amount == Decimal("750")

    @pytest.mark.asyncio
    async def test_permission_denial_is_audited(self, protocol, audit, employee, other_employee):
        """Test denials leave an audit event."""
        draft = _draft()
        await protocol.create_transaction(other_employee, draft)
        with pytest.raises(PermissionDeniedError):
            await protocol.delete_transaction(employee, draft.id)
        assert _events(audit, AuditEventType.PERMISSION_DENIED)

    @pytest.mark.asyncio
    async def test_missing_record(self, protocol, admin):
        """Test mutating an unknown id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await protocol.delete_transaction(admin, "t_missing")


class TestStatus:
    """Tests for advance_status."""

    @pytest.mark.asyncio
    async def test_manager_advances_and_replays(self, online, protocol, sheet, admin, employee):
        """Test a forward move is committed and sent."""
        draft = _draft()
        await protocol.create_transaction(employee, draft)
        result = await protocol.advance_status(admin, draft.id, TransactionStatus.APPROVED)
        assert result.outcome == SyncOutcome.DELIVERED
        assert online.get_transaction(draft.id).status == TransactionStatus.APPROVED
        assert sheet.transactions[draft.id]["status"] == "APPROVED"

    @pytest.mark.asyncio
    async def test_employee_cannot_change_status(self, protocol, employee):
        """Test status changes are manager-only."""
        draft = _draft()
        await protocol.create_transaction(employee, draft)
        with pytest.raises(PermissionDeniedError):
            await protocol.advance_status(employee, draft.id, TransactionStatus.APPROVED)

    @pytest.mark.asyncio
    async def test_backward_move_rejected(self, store, protocol, admin):
        """Test the status never moves backwards through a local action."""
        draft = _draft()
        await protocol.create_transaction(admin, draft)
        await protocol.advance_status(admin, draft.id, TransactionStatus.BOOKED)
        with pytest.raises(InvalidTransitionError):
            await protocol.advance_status(admin, draft.id, TransactionStatus.APPROVED)
        assert store.get_transaction(draft.id).status == TransactionStatus.BOOKED

    def test_status_rule(self, admin, employee):
        """Test can_change_status requires a manager and a forward move."""
        tx = _draft(status=TransactionStatus.APPROVED)
        assert can_change_status(admin, tx, TransactionStatus.BOOKED)
        assert not can_change_status(admin, tx, TransactionStatus.APPROVED)
        assert not can_change_status(admin, tx, TransactionStatus.PENDING)
        assert not can_change_status(employee, tx, TransactionStatus.BOOKED)

    @pytest.mark.asyncio
    async def test_same_status_rejected(self, store, protocol, admin):
        """Test re-applying the current status is not a move."""
        draft = _draft()
        await protocol.create_transaction(admin, draft)
        with pytest.raises(InvalidTransitionError):
            await protocol.advance_status(admin, draft.id, TransactionStatus.PENDING)


class TestDelete:
    """Tests for delete_transaction."""

    @pytest.mark.asyncio
    async def test_delete_removes_locally_and_remotely(self, online, protocol, sheet, admin):
        """Test a delivered delete removes the remote row."""
        draft = _draft()
        await protocol.create_transaction(admin, draft)
        result = await protocol.delete_transaction(admin, draft.id)
        assert result.outcome == SyncOutcome.DELIVERED
        assert online.get_transaction(draft.id) is None
        assert draft.id not in sheet.transactions

    @pytest.mark.asyncio
    async def test_failed_remote_delete_does_not_resurrect(self, online, protocol, sheet, admin):
        """Test the local delete stands when the remote delete fails."""
        draft = _draft()
        await protocol.create_transaction(admin, draft)
        sheet.http_status = 500
        result = await protocol.delete_transaction(admin, draft.id)
        assert result.outcome == SyncOutcome.FAILED
        assert online.get_transaction(draft.id) is None
        assert online.get_stale_markers()[0].operation == "delete"

    @pytest.mark.asyncio
    async def test_remote_not_found_counts_as_delivered(self, online, protocol, sheet, admin):
        """Test deleting a row the remote never had is not an error."""
        draft = _draft()
        online.save_transaction(draft)
        result = await protocol.delete_transaction(admin, draft.id)
        assert result.outcome == SyncOutcome.DELIVERED
        assert sheet.posts[-1]["dataType"] == "DELETE_TRANSACTION"

    @pytest.mark.asyncio
    async def test_repeated_delete_replay_is_idempotent(self, online, protocol, client, sheet, admin):
        """Test replaying the same delete twice leaves the same remote state."""
        draft = _draft()
        await protocol.create_transaction(admin, draft)
        sheet.transactions["t_keep"] = {"id": "t_keep"}
        payload = transaction_delete_payload(draft.id)
        await client.post(ENDPOINT, payload, tolerate_not_found=True)
        after_once = dict(sheet.transactions)
        await client.post(ENDPOINT, payload, tolerate_not_found=True)
        assert sheet.transactions == after_once == {"t_keep": {"id": "t_keep"}}


class TestRetryAndOrdering:
    """Tests for stale replay and per-id ordering."""

    @pytest.mark.asyncio
    async def test_offline_work_pushed_after_configuring_endpoint(self, store, protocol, sheet, admin):
        """Test retry_stale sends changes made while offline."""
        kept = _draft()
        gone = _draft()
        await protocol.create_transaction(admin, kept)
        await protocol.create_transaction(admin, gone)
        await protocol.delete_transaction(admin, gone.id)
        store.save_sync_config(SyncConfig(endpoint_url=ENDPOINT))

        results = await protocol.retry_stale()
        assert {r.outcome for r in results} == {SyncOutcome.DELIVERED}
        assert kept.id in sheet.transactions
        assert gone.id not in sheet.transactions
        assert store.get_stale_markers() == []

    @pytest.mark.asyncio
    async def test_replays_for_one_id_keep_submission_order(self, online, admin, audit):
        """Test a later replay of a record waits for the earlier one to finish."""
        entered = asyncio.Event()
        gate = asyncio.Event()
        received = []

        async def handler(request):
            entered.set()
            await gate.wait()
            received.append(json.loads(request.content)["summary"])
            return httpx.Response(200, json={"result": "success"})

        client = SheetsEndpointClient(
            RemoteSettings(max_attempts=1, retry_backoff_seconds=0),
            transport=httpx.MockTransport(handler),
        )
        protocol = OptimisticSyncProtocol(online, client, MutationLedger(), audit)
        draft = _draft(summary="first")

        await protocol.create_transaction(admin, draft, mode=DeliveryMode.DETACHED)
        await entered.wait()
        stored = online.get_transaction(draft.id)
        await protocol.update_transaction(
            admin, stored.model_copy(update={"summary": "second"}), mode=DeliveryMode.DETACHED,
        )
        for _ in range(5):
            await asyncio.sleep(0)
        assert received == []
        gate.set()
        await protocol.drain()

        assert received == ["first", "second"]
        assert not protocol.ledger.has_pending(draft.id)

    @pytest.mark.asyncio
    async def test_awaited_delivery_survives_caller_cancellation(self, online, admin, audit):
        """Test cancelling the waiting caller does not abort the replay."""
        entered = asyncio.Event()
        gate = asyncio.Event()
        received = []

        async def handler(request):
            entered.set()
            await gate.wait()
            received.append(request)
            return httpx.Response(200, json={"result": "success"})

        client = SheetsEndpointClient(
            RemoteSettings(max_attempts=1, retry_backoff_seconds=0),
            transport=httpx.MockTransport(handler),
        )
        protocol = OptimisticSyncProtocol(online, client, MutationLedger(), audit)
        draft = _draft()

        caller = asyncio.create_task(protocol.create_transaction(admin, draft))
        await entered.wait()
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller
        gate.set()
        await protocol.drain()

        assert len(received) == 1
        assert online.get_stale_markers() == []
        assert _events(audit, AuditEventType.REPLAY_DELIVERED)
