"""Tests for the audit logger and settings."""

from ledgersync.audit import AuditLogger
from ledgersync.config import RemoteSettings, StatusPolicy, get_settings, validate_all_settings
from ledgersync.models.audit import AuditEventType
from ledgersync.services.storage import AuditStorageInterface, StorageError


class BrokenAuditStorage(AuditStorageInterface):
    def append_event(self, event):
        raise StorageError("disk full")

    def get_recent_events(self, limit=100):
        return []


class TestAuditLogger:
    """Tests for AuditLogger."""

    def test_events_are_persisted_newest_first(self, store):
        """Test events land in the store's audit partition."""
        audit = AuditLogger(store)
        audit.log_login("alice", succeeded=False)
        audit.log_pull_failed("transaction", "quota")
        events = audit.recent_events()
        assert [e.event_type for e in events][:2] == [
            AuditEventType.PULL_FAILED,
            AuditEventType.LOGIN_FAILED,
        ]

    def test_storage_failure_never_raises(self):
        """Test a failing audit store is logged, not raised."""
        audit = AuditLogger(BrokenAuditStorage())
        audit.log_replay_failed("transaction", "t_1", "upsert", "timeout", detached=True)
        assert audit.recent_events() == []

    def test_without_storage(self):
        """Test the logger works with no storage at all."""
        audit = AuditLogger()
        audit.log_row_skipped("transaction", "missing id", 3)
        assert audit.recent_events() == []


class TestSettings:
    """Tests for pydantic-settings configuration."""

    def test_remote_env_prefix(self, monkeypatch):
        """Test remote settings read LEDGERSYNC_REMOTE_* variables."""
        monkeypatch.setenv("LEDGERSYNC_REMOTE_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("LEDGERSYNC_REMOTE_STATUS_POLICY", "monotonic")
        monkeypatch.setenv("LEDGERSYNC_REMOTE_DEFAULT_ENDPOINT_URL", "   ")
        settings = RemoteSettings()
        assert settings.max_attempts == 5
        assert settings.status_policy == StatusPolicy.MONOTONIC
        assert settings.default_endpoint_url is None

    def test_all_sections_load(self):
        """Test every settings section validates with defaults."""
        get_settings.cache_clear()
        results = validate_all_settings()
        assert results["store"] and results["remote"] and results["gemini"]
