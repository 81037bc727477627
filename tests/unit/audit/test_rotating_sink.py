"""Unit tests for RotatingFileSink.

Tests chain continuity across rotation and restarts, crash recovery, lost
storage detection, retention, and concurrent writers sharing a directory.
"""

import json
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from auditchain.audit.locking import ProcessFileLock
from auditchain.audit.rotating_sink import RotatingFileSink
from auditchain.audit.schemas import AuditRecord, ViolationReason
from auditchain.common.config.features import Feature, FeatureToggles
from auditchain.common.exceptions import LockTimeoutError, StorageError, ValidationError
from auditchain.monitoring.metrics import AuditMetric


@pytest.fixture
def features():
    return FeatureToggles(overrides={"audit": True})


@pytest.fixture
def make_sink(tmp_path, features):
    """Factory for sinks sharing one directory."""
    def _make(**kwargs):
        kwargs.setdefault("features", features)
        return RotatingFileSink(tmp_path / "security", **kwargs)
    return _make


def read_records(path):
    with open(path, "r", encoding="utf-8") as f:
        return [AuditRecord.from_jsonl(line) for line in f if line.strip()]


def corrupt_line(path, index):
    """Put an invalid UTF-8 byte into the action of one stored line."""
    lines = path.read_bytes().split(b"\n")
    lines[index] = lines[index].replace(b'"evt"', b'"ev\xff"', 1)
    path.write_bytes(b"\n".join(lines))


class TestAppend:
    """Test basic appends."""

    def test_first_append_creates_files(self, make_sink):
        """Test the active file and sidecar appear on first write."""
        sink = make_sink()
        record = sink.append("auth.login_failed", {"attempt": 1}, actor_id="u1", origin="10.0.0.1")

        assert record.prev_hash == ""
        assert sink.active_path.exists()
        assert sink.metadata_path.exists()
        assert sink.tip_hash() == record.hash

    def test_line_format(self, make_sink):
        """Test one JSON object per line with a well-formed hash."""
        sink = make_sink()
        sink.append("evt", {"a": 1})
        sink.append("evt", {"a": 2})

        lines = sink.active_path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        for line in lines:
            data = json.loads(line)
            assert sink.hash_chain.hash_pattern.match(data["hash"])
        assert json.loads(lines[1])["prev_hash"] == json.loads(lines[0])["hash"]

    def test_metadata_tracks_tip(self, make_sink):
        """Test the sidecar follows the tip and counts entries."""
        sink = make_sink()
        for i in range(3):
            last = sink.append("evt", {"i": i})

        meta = json.loads(sink.metadata_path.read_text())
        assert meta["last_hash"] == last.hash
        assert meta["entry_count"] == 3
        assert meta["anchor_hash"] == ""
        assert "updated_at" in meta

    def test_disabled_is_noop(self, make_sink):
        """Test a disabled toggle writes nothing."""
        sink = make_sink(features=FeatureToggles(overrides={"audit": False}))

        assert sink.append("evt") is None
        assert not sink.active_path.exists()

    def test_toggle_read_per_call(self, make_sink, features):
        """Test re-enabling resumes the same chain."""
        sink = make_sink()
        first = sink.append("evt")
        features.disable(Feature.AUDIT)
        sink.append("evt")
        features.enable(Feature.AUDIT)
        second = sink.append("evt")

        assert second.prev_hash == first.hash

    def test_lock_timeout(self, make_sink):
        """Test another holder of the lock file blocks the append."""
        sink = make_sink(lock_timeout=0.1)
        other = ProcessFileLock(sink.log_dir / "security.log.lock")
        entered, release = threading.Event(), threading.Event()

        def hold():
            with other.hold(timeout=5):
                entered.set()
                release.wait(5)

        holder = threading.Thread(target=hold)
        holder.start()
        try:
            assert entered.wait(5)
            with pytest.raises(LockTimeoutError):
                sink.append("evt")
        finally:
            release.set()
            holder.join()

        assert not sink.active_path.exists()


class TestRotation:
    """Test size-based rotation."""

    def test_rotation_continuity(self, make_sink):
        """Test the first record after rotation links to the archived tip."""
        sink = make_sink(max_bytes=1000)
        records = [sink.append("evt", {"i": i}, actor_id="u1") for i in range(20)]

        archives = sink.archive_paths()
        assert len(archives) >= 2

        newest_archive_tip = read_records(archives[-1])[-1]
        first_active = read_records(sink.active_path)[0]
        assert first_active.prev_hash == newest_archive_tip.hash

        result = sink.verify_integrity()
        assert result.is_valid
        assert result.records_checked == 20
        assert result.tip_hash == records[-1].hash

    def test_archive_naming(self, make_sink):
        """Test archives carry the stem, a timestamp and the suffix."""
        sink = make_sink(max_bytes=200)
        for i in range(3):
            sink.append("evt", {"i": i})

        for path in sink.archive_paths():
            assert path.name.startswith("security_")
            assert path.suffix == ".log"

    def test_archive_name_clash_uses_counter(self, make_sink):
        """Test rotations within one clock tick still sort in order."""
        fixed = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        sink = make_sink(max_bytes=200, clock=lambda: fixed)
        for i in range(5):
            sink.append("evt", {"i": i})

        names = [p.name for p in sink.archive_paths()]
        assert names[0] == "security_20260101_120000_000000.log"
        assert names[1] == "security_20260101_120000_000000_1.log"
        assert len(names) == 4
        assert sink.verify_integrity().is_valid

    def test_iterate_all_spans_files(self, make_sink):
        """Test iteration yields archives oldest first, then the active file."""
        sink = make_sink(max_bytes=600)
        appended = [sink.append("evt", {"i": i}) for i in range(10)]

        assert [r.id for r in sink.iterate_all()] == [r.id for r in appended]

    def test_rotation_metric(self, make_sink):
        """Test rotations are counted."""
        metrics = MagicMock()
        sink = make_sink(max_bytes=200, metrics=metrics)
        sink.append("evt")
        sink.append("evt")

        metrics.record_rotation.assert_called_once_with("security.log")

    def test_rotation_metric_after_lock_released(self, make_sink):
        """Test the rotation metric never runs inside the chain lock."""
        metrics = MagicMock()
        sink = make_sink(max_bytes=200, metrics=metrics)
        held = []
        metrics.record_rotation.side_effect = (
            lambda *args: held.append(sink._thread_lock.locked())
        )
        for _ in range(3):
            sink.append("evt")

        assert held == [False, False]

    def test_lone_surrogate_rejected(self, make_sink):
        """Test text that cannot be encoded is refused before writing."""
        sink = make_sink()

        with pytest.raises(ValidationError):
            sink.append("evt", {"note": "\ud800"})
        with pytest.raises(ValidationError):
            sink.append("evt", actor_id="u\udc00")

        assert not sink.active_path.exists()

    def test_max_archives_prunes_and_anchors(self, make_sink):
        """Test pruning keeps the surviving chain verifiable."""
        sink = make_sink(max_bytes=200, max_archives=2)
        for i in range(8):
            sink.append("evt", {"i": i})

        archives = sink.archive_paths()
        assert len(archives) == 2

        meta = json.loads(sink.metadata_path.read_text())
        assert meta["anchor_hash"] == read_records(archives[0])[0].prev_hash
        assert meta["anchor_hash"] != ""

        result = sink.verify_integrity()
        assert result.is_valid
        assert result.records_checked == 3


class TestRecovery:
    """Test tip recovery after restarts and crashes."""

    def test_restart_continues_chain(self, make_sink):
        """Test a new sink instance picks up the tip from disk."""
        last = make_sink().append("evt", {"i": 1})
        record = make_sink().append("evt", {"i": 2})

        assert record.prev_hash == last.hash

    def test_restart_after_rotation_with_no_active_file(self, make_sink):
        """Test the tip is recovered from the newest archive."""
        sink = make_sink()
        last = sink.append("evt")
        # Simulate a crash right after the active file was archived
        sink._rotate()
        assert not sink.active_path.exists()

        restarted = make_sink()
        assert restarted.tip_hash() == last.hash
        assert restarted.append("evt").prev_hash == last.hash
        assert restarted.verify_integrity().is_valid

    def test_torn_tail_repaired(self, make_sink):
        """Test a partial final line from a crashed writer is dropped."""
        sink = make_sink()
        for i in range(3):
            last = sink.append("evt", {"i": i})
        with open(sink.active_path, "ab") as f:
            f.write(b'{"id":"aud_torn","actor_id":nu')

        record = sink.append("evt", {"i": 3})

        assert record.prev_hash == last.hash
        result = sink.verify_integrity()
        assert result.is_valid
        assert result.records_checked == 4

    def test_malformed_last_line_refused(self, make_sink):
        """Test the sink refuses to fork from an unreadable tip."""
        sink = make_sink()
        sink.append("evt")
        with open(sink.active_path, "a", encoding="utf-8") as f:
            f.write("this is not json\n")

        with pytest.raises(StorageError):
            sink.append("evt")

    def test_malformed_hash_refused(self, make_sink):
        """Test a tip whose hash is not a digest is refused."""
        sink = make_sink()
        record = sink.append("evt")
        bad = record.model_copy(update={"hash": "not-a-digest"})
        sink.active_path.write_text(bad.to_jsonl() + "\n", encoding="utf-8")

        with pytest.raises(StorageError):
            sink.append("evt")

    def test_undecodable_tip_refused(self, make_sink):
        """Test a tip line with a corrupt byte is a storage error."""
        metrics = MagicMock()
        sink = make_sink(metrics=metrics)
        sink.append("evt", {"i": 0})
        sink.append("evt", {"i": 1})
        corrupt_line(sink.active_path, 1)

        with pytest.raises(StorageError, match="malformed record"):
            sink.append("evt", {"i": 2})

        metrics.record_failure.assert_called_once_with(
            "security.log", AuditMetric.STORAGE_ERRORS
        )

    def test_storage_lost(self, make_sink):
        """Test missing logs with surviving metadata is an error, not a new chain."""
        sink = make_sink(max_bytes=300)
        for i in range(4):
            sink.append("evt", {"i": i})
        for path in sink.archive_paths() + [sink.active_path]:
            path.unlink()

        with pytest.raises(StorageError, match="chain storage lost"):
            sink.append("evt")

    def test_deleted_active_file_detected(self, make_sink):
        """Test falling back to a stale archive tip is refused."""
        sink = make_sink(max_bytes=300)
        for i in range(4):
            sink.append("evt", {"i": i})
        sink.active_path.unlink()

        with pytest.raises(StorageError):
            sink.append("evt")

    def test_fresh_start_without_metadata(self, make_sink):
        """Test an empty directory starts a new chain."""
        sink = make_sink()
        assert sink.tip_hash() == ""

    def test_short_write_rolled_back(self, make_sink):
        """Test a short write is truncated away and reported."""
        sink = make_sink()
        sink.append("evt")
        size_before = sink.active_path.stat().st_size

        with patch("auditchain.audit.rotating_sink.os.write", return_value=5):
            with pytest.raises(StorageError):
                sink.append("evt")

        assert sink.active_path.stat().st_size == size_before
        assert sink.verify_integrity().records_checked == 1


class TestVerifyIntegrity:
    """Test tamper detection across files."""

    def test_tampered_archive_line(self, make_sink):
        """Test an edited archived record is reported with its location."""
        sink = make_sink(max_bytes=700)
        for i in range(8):
            sink.append("evt", {"i": i})
        archive = sink.archive_paths()[0]

        lines = archive.read_text(encoding="utf-8").splitlines()
        data = json.loads(lines[1])
        data["payload"] = {"i": 999}
        lines[1] = json.dumps(data)
        archive.write_text("\n".join(lines) + "\n", encoding="utf-8")

        result = sink.verify_integrity()

        assert not result.is_valid
        assert result.violation.position == 1
        assert result.violation.reason == ViolationReason.HASH_MISMATCH
        assert result.violation.source == f"{archive.name}:2"

    def test_deleted_archive_detected(self, make_sink):
        """Test removing a whole archive breaks the chain."""
        sink = make_sink(max_bytes=300)
        for i in range(6):
            sink.append("evt", {"i": i})
        sink.archive_paths()[1].unlink()

        result = sink.verify_integrity()
        assert not result.is_valid
        assert result.violation.reason == ViolationReason.PREV_HASH_MISMATCH

    def test_malformed_line(self, make_sink):
        """Test garbage in the middle of a file is reported."""
        sink = make_sink()
        sink.append("evt")
        with open(sink.active_path, "a", encoding="utf-8") as f:
            f.write("garbage\n")
        sink_reader = make_sink()

        result = sink_reader.verify_integrity()
        assert result.violation.reason == ViolationReason.MALFORMED_RECORD
        assert result.violation.source == "security.log:2"

    def test_undecodable_line(self, make_sink):
        """Test a corrupt byte inside an archived line is reported, not raised."""
        sink = make_sink(max_bytes=700)
        for i in range(8):
            sink.append("evt", {"i": i})
        archive = sink.archive_paths()[0]
        corrupt_line(archive, 1)

        result = sink.verify_integrity()

        assert not result.is_valid
        assert result.records_checked == 1
        assert result.violation.position == 1
        assert result.violation.reason == ViolationReason.MALFORMED_RECORD
        assert result.violation.source == f"{archive.name}:2"

    def test_iterate_all_undecodable_line(self, make_sink):
        """Test iteration surfaces a corrupt byte as ValueError."""
        sink = make_sink()
        sink.append("evt")
        corrupt_line(sink.active_path, 0)

        with pytest.raises(ValueError):
            list(sink.iterate_all())

    def test_violation_metric_after_lock_released(self, make_sink):
        """Test the violation metric is recorded outside the chain lock."""
        metrics = MagicMock()
        sink = make_sink(metrics=metrics)
        sink.append("evt")
        sink.append("evt")
        corrupt_line(sink.active_path, 1)

        held = []
        metrics.record_integrity_violation.side_effect = (
            lambda *args: held.append(sink._thread_lock.locked())
        )
        sink.verify_integrity()

        assert held == [False]


class TestConcurrency:
    """Test concurrent writers."""

    def test_threads_one_sink(self, make_sink):
        """Test concurrent appends through one sink form a single chain."""
        sink = make_sink(max_bytes=2000)
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda i: sink.append("evt", {"i": i}), range(40)))

        records = list(sink.iterate_all())
        assert len(records) == 40
        assert len({r.prev_hash for r in records}) == 40
        assert sink.verify_integrity().is_valid

    def test_independent_sinks_share_directory(self, make_sink):
        """Test separate sink instances serialise through the lock file."""
        sinks = [make_sink(max_bytes=1500) for _ in range(4)]

        def worker(i):
            return sinks[i % len(sinks)].append("evt", {"i": i})

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(worker, range(60)))

        result = make_sink().verify_integrity()
        assert result.is_valid
        assert result.records_checked == 60
        assert len(sinks[0].archive_paths()) >= 2
