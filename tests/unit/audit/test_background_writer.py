"""Unit tests for BackgroundAuditWriter."""

import threading
from unittest.mock import MagicMock

import pytest

from auditchain.audit.background_writer import BackgroundAuditWriter
from auditchain.audit.log import AuditLog
from auditchain.audit.store import InMemoryRecordStore
from auditchain.common.config.features import FeatureToggles
from auditchain.common.exceptions import StorageError


@pytest.fixture
def audit_log():
    return AuditLog(
        InMemoryRecordStore(),
        features=FeatureToggles(overrides={"audit": True, "logger": True}),
    )


@pytest.fixture
def blocked_log():
    """A mock audit log whose "first" append waits until released."""
    started, release = threading.Event(), threading.Event()
    mock_log = MagicMock()

    def append(actor_id, action, *args, **kwargs):
        if action == "first":
            started.set()
            release.wait(5)

    mock_log.append.side_effect = append
    yield mock_log, started, release
    release.set()


class TestBackgroundAuditWriter:
    """Test queued appends."""

    def test_submitted_events_form_a_chain(self, audit_log):
        """Test queued events reach the chain in submission order."""
        writer = BackgroundAuditWriter(audit_log)
        try:
            for i in range(50):
                assert writer.submit("u1", "evt", {"i": i}, origin="10.0.0.1") is True
            assert writer.flush(timeout=5) is True
        finally:
            writer.shutdown()

        records = list(audit_log.store.iterate_all())
        assert [r.payload["i"] for r in records] == list(range(50))
        assert all(r.origin == "10.0.0.1" for r in records)
        assert audit_log.verify_integrity().is_valid
        assert writer.get_stats()["entries_written"] == 50

    def test_payload_copied_at_submit(self, audit_log):
        """Test later mutation of the caller's dict is not recorded."""
        writer = BackgroundAuditWriter(audit_log)
        payload = {"state": "before"}
        try:
            writer.submit("u1", "evt", payload)
            payload["state"] = "after"
            writer.flush(timeout=5)
        finally:
            writer.shutdown()

        assert next(audit_log.store.iterate_all()).payload == {"state": "before"}

    def test_failures_counted(self):
        """Test a failing append is counted and the writer keeps going."""
        mock_log = MagicMock()
        mock_log.append.side_effect = [StorageError("disk full"), MagicMock()]
        writer = BackgroundAuditWriter(mock_log)
        try:
            writer.submit("u1", "evt")
            writer.submit("u1", "evt")
            writer.flush(timeout=5)
        finally:
            writer.shutdown()

        stats = writer.get_stats()
        assert stats["entries_failed"] == 1
        assert stats["entries_written"] == 1

    def test_queue_full_drops_without_fallback(self, blocked_log):
        """Test events are dropped when the queue is full."""
        mock_log, started, release = blocked_log
        writer = BackgroundAuditWriter(mock_log, max_queue_size=1, sync_fallback=False)
        try:
            writer.submit("u1", "first")
            assert started.wait(5)
            assert writer.submit("u1", "second") is True
            assert writer.submit("u1", "third") is False
            assert writer.get_stats()["entries_dropped"] == 1
        finally:
            release.set()
            writer.shutdown()

    def test_queue_full_sync_fallback(self, blocked_log):
        """Test a full queue falls back to a synchronous append."""
        mock_log, started, release = blocked_log
        writer = BackgroundAuditWriter(mock_log, max_queue_size=1, sync_fallback=True)
        try:
            writer.submit("u1", "first")
            assert started.wait(5)
            writer.submit("u1", "second")
            assert writer.submit("u1", "third") is True
            assert writer.get_stats()["sync_fallback_count"] == 1
            assert mock_log.append.call_args.args[1] == "third"
        finally:
            release.set()
            writer.shutdown()

    def test_flush_timeout(self, blocked_log):
        """Test flush reports False while the writer is stuck."""
        mock_log, started, release = blocked_log
        writer = BackgroundAuditWriter(mock_log)
        try:
            writer.submit("u1", "first")
            assert started.wait(5)
            assert writer.flush(timeout=0.1) is False
        finally:
            release.set()
            writer.shutdown()

    def test_shutdown_drains_and_stops(self, audit_log):
        """Test shutdown writes pending events and stops the thread."""
        writer = BackgroundAuditWriter(audit_log)
        for i in range(10):
            writer.submit(None, "evt", {"i": i})
        writer.shutdown()

        assert not writer.is_running
        assert audit_log.store.count() == 10

    def test_submit_after_shutdown_writes_synchronously(self, audit_log):
        """Test events after shutdown are still recorded."""
        writer = BackgroundAuditWriter(audit_log)
        writer.shutdown()

        assert writer.submit("u1", "late") is True
        assert audit_log.store.count() == 1

    def test_shutdown_idempotent(self, audit_log):
        """Test shutting down twice is harmless."""
        writer = BackgroundAuditWriter(audit_log)
        writer.shutdown()
        writer.shutdown()

        assert writer.queue_size == 0
