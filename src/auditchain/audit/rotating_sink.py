"""Rotating File Sink - chained JSONL security log with size-based rotation.

Files in log_dir (for file_name="security.log"):
    security.log                              active file, one record per line
    security_20260101_120000_000000.log       archives, oldest first by name
    security.log.lock                         flock target for all writers
    security.log.meta                         sidecar: last_hash, entry_count,
                                              updated_at, anchor_hash

The chain runs across files: the first record written after a rotation
chains to the last record of the newest archive. The tip is always
re-read from disk while holding the lock, so several processes can share
one directory.
"""

import json
import logging
import os
import re
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from auditchain.audit.hash_chain import HashChain
from auditchain.audit.locking import ProcessFileLock, chain_critical_section
from auditchain.audit.log import (
    Clock,
    check_action,
    check_text,
    next_timestamp,
    utc_now,
)
from auditchain.audit.schemas import (
    AuditRecord,
    IntegrityViolation,
    VerificationResult,
    ViolationReason,
)
from auditchain.common.config.features import Feature, FeatureToggles
from auditchain.common.constants import AuditConstants, SinkConstants
from auditchain.common.exceptions import LockTimeoutError, StorageError
from auditchain.common.logging.logger import SECURITY
from auditchain.monitoring.metrics import AuditMetric, MetricsCollector

logger = logging.getLogger(__name__)


class RotatingFileSink:
    """File-based hash-chained log for lightweight security events.

    Features:
    - Append-only JSONL with size-based rotation to timestamped archives
    - Chain continuity across rotation and restarts
    - Cross-process safety via flock on a separate lock file
    - Torn-tail repair after a crashed writer
    - Sidecar metadata to detect lost storage
    - Optional archive retention (max_archives)
    """

    def __init__(
        self,
        log_dir: Union[str, Path],
        file_name: str = SinkConstants.DEFAULT_FILE_NAME,
        max_bytes: int = SinkConstants.MAX_BYTES,
        hash_algorithm: str = AuditConstants.HASH_ALGORITHM,
        lock_timeout: float = AuditConstants.LOCK_TIMEOUT_SECONDS,
        fsync_on_write: bool = False,
        max_archives: Optional[int] = None,
        features: Optional[FeatureToggles] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Optional[Clock] = None,
    ):
        """Initialize rotating file sink.

        Args:
            log_dir: Directory holding the active file, archives and sidecars
            file_name: Active file name; archives derive from its stem/suffix
            max_bytes: Rotate before writing once the active file reaches this
            hash_algorithm: Hash algorithm for the chain
            lock_timeout: Seconds to wait for the chain lock
            fsync_on_write: Whether to fsync after each write (slower but safer)
            max_archives: Keep at most this many archives (None keeps all)
            features: Feature toggles (environment-backed if not provided)
            metrics: Optional CloudWatch metrics collector
            clock: Returns the current UTC time
        """
        self.log_dir = Path(log_dir)
        self.file_name = file_name
        self.max_bytes = max_bytes
        self.lock_timeout = lock_timeout
        self.fsync_on_write = fsync_on_write
        self.max_archives = max_archives
        self.hash_chain = HashChain(hash_algorithm)
        self.features = features or FeatureToggles()
        self.metrics = metrics
        self.clock = clock or utc_now

        name = Path(file_name)
        self._stem = name.stem
        self._suffix = name.suffix
        self._archive_pattern = re.compile(
            rf"^{re.escape(self._stem)}_(\d{{8}}_\d{{6}}_\d{{6}})(?:_(\d+))?"
            rf"{re.escape(self._suffix)}$"
        )

        # Thread safety
        self._thread_lock = threading.Lock()
        self._file_lock = ProcessFileLock(
            self.log_dir / (file_name + SinkConstants.LOCK_SUFFIX)
        )

        # Ensure log directory exists with secure permissions
        self.log_dir.mkdir(parents=True, exist_ok=True)
        try:
            os.chmod(self.log_dir, 0o700)
        except OSError:
            logger.debug(f"Could not restrict permissions on {self.log_dir}")

    # ========== PATHS ==========

    @property
    def active_path(self) -> Path:
        return self.log_dir / self.file_name

    @property
    def metadata_path(self) -> Path:
        return self.log_dir / (self.file_name + SinkConstants.METADATA_SUFFIX)

    def _archive_key(self, path: Path) -> Optional[Tuple[str, int]]:
        match = self._archive_pattern.match(path.name)
        if match is None:
            return None
        return match.group(1), int(match.group(2) or 0)

    def archive_paths(self) -> List[Path]:
        """Get archive files, oldest first."""
        keyed = []
        for path in self.log_dir.glob(f"{self._stem}_*{self._suffix}"):
            key = self._archive_key(path)
            if key is not None:
                keyed.append((key, path))
        return [path for _, path in sorted(keyed)]

    # ========== PUBLIC API ==========

    def append(
        self,
        action: str,
        payload: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> Optional[AuditRecord]:
        """Append one chained line.

        Returns:
            The written record, or None if auditing is disabled

        Raises:
            ValidationError: If action or payload is invalid
            LockTimeoutError: If the chain lock is not acquired in time
            StorageError: If the tip cannot be recovered or the write fails
        """
        if not self.features.is_enabled(Feature.AUDIT):
            logger.debug(f"Audit disabled; skipped {action}")
            return None

        check_action(action)
        check_text(action=action, actor_id=actor_id, origin=origin)
        payload_serialized = self.hash_chain.serialize_payload(payload)
        payload_copy = json.loads(payload_serialized)
        actor_id = actor_id or None
        origin = origin or None

        started = time.perf_counter()
        rotated = False
        try:
            with chain_critical_section(
                self._thread_lock, self._file_lock, self.lock_timeout
            ):
                self._repair_torn_tail()
                if self._should_rotate():
                    self._rotate()
                    rotated = True

                meta = self._read_metadata()
                tip = self._recover_tip(meta)
                prev_hash = tip.hash if tip is not None else AuditConstants.GENESIS_HASH
                created_at = next_timestamp(self.clock(), tip)
                record = AuditRecord(
                    actor_id=actor_id,
                    action=action,
                    payload=payload_copy,
                    created_at=created_at,
                    origin=origin,
                    prev_hash=prev_hash,
                    hash=self.hash_chain.compute(
                        prev_hash, actor_id, action, payload_serialized,
                        created_at, origin,
                    ),
                )
                self._write_line(record)

                entry_count = meta.get("entry_count")
                if not isinstance(entry_count, int) or entry_count < 0:
                    entry_count = self._count_lines()
                else:
                    entry_count += 1
                self._save_metadata(meta, last_hash=record.hash, entry_count=entry_count)
        except LockTimeoutError:
            logger.warning(f"Sink append timed out waiting for lock: {action}")
            self._record_failure(AuditMetric.LOCK_TIMEOUTS)
            raise
        except StorageError:
            self._record_failure(AuditMetric.STORAGE_ERRORS)
            raise
        except OSError as e:
            logger.error(f"Sink I/O failure in {self.log_dir}: {e}")
            self._record_failure(AuditMetric.STORAGE_ERRORS)
            raise StorageError(
                f"Audit sink I/O failure: {e}",
                details={"log_dir": str(self.log_dir)},
            ) from e
        finally:
            # The file was archived even if the write after it failed
            if rotated:
                self._record_rotation()

        if self.metrics is not None:
            try:
                self.metrics.record_append(
                    self.file_name, action, (time.perf_counter() - started) * 1000
                )
            except Exception as e:
                logger.warning(f"Failed to record append metrics: {e}")
        return record

    def tip_hash(self) -> str:
        """Get the current chain tip hash as recovered from disk."""
        with chain_critical_section(self._thread_lock, self._file_lock, self.lock_timeout):
            tip = self._recover_tip(self._read_metadata())
        return tip.hash if tip is not None else AuditConstants.GENESIS_HASH

    def iterate_all(self) -> Iterator[AuditRecord]:
        """Yield every record, archives (oldest first) then the active file.

        Raises:
            ValueError: On a line that is not a well-formed UTF-8 record
        """
        for _, _, line in self._iter_lines():
            yield AuditRecord.from_jsonl(line.decode("utf-8"))

    def verify_integrity(self) -> VerificationResult:
        """Verify the chain across archives and the active file.

        Starts from the sidecar anchor_hash ("" unless archives were pruned).
        Holds the lock so a concurrent rotation cannot move files mid-walk.
        """
        with chain_critical_section(self._thread_lock, self._file_lock, self.lock_timeout):
            violation, checked, tip_hash = self._walk_chain()

        if violation is not None:
            return self._report_violation(violation, checked, tip_hash)

        logger.info(f"Audit sink verified: {checked} records in {self.log_dir}")
        return VerificationResult.valid(checked, tip_hash)

    def _walk_chain(self) -> Tuple[Optional[IntegrityViolation], int, str]:
        """Check every line in order; stop at the first violation."""
        expected_prev_hash = self._read_metadata().get(
            "anchor_hash", AuditConstants.GENESIS_HASH
        ) or AuditConstants.GENESIS_HASH
        checked = 0

        for path, line_number, line in self._iter_lines():
            source = f"{path.name}:{line_number}"
            try:
                record = AuditRecord.from_jsonl(line.decode("utf-8"))
            except ValueError as e:
                logger.error(f"Malformed audit line at {source}: {e}")
                violation = IntegrityViolation(
                    position=checked,
                    expected_prev_hash=expected_prev_hash,
                    reason=ViolationReason.MALFORMED_RECORD,
                    source=source,
                )
                return violation, checked, expected_prev_hash

            if not self.hash_chain.verify_pair(expected_prev_hash, record):
                reason = (
                    ViolationReason.PREV_HASH_MISMATCH
                    if record.prev_hash != expected_prev_hash
                    else ViolationReason.HASH_MISMATCH
                )
                violation = IntegrityViolation(
                    at_record_id=record.id,
                    position=checked,
                    expected_prev_hash=expected_prev_hash,
                    found_prev_hash=record.prev_hash,
                    reason=reason,
                    source=source,
                )
                return violation, checked, expected_prev_hash

            expected_prev_hash = record.hash
            checked += 1

        return None, checked, expected_prev_hash

    # ========== FILE HANDLING ==========

    def _iter_lines(self) -> Iterator[Tuple[Path, int, bytes]]:
        """Yield (path, line number, raw line) for every non-empty line.

        Lines stay undecoded so a corrupt byte surfaces per line.
        """
        for path in self.archive_paths() + [self.active_path]:
            try:
                with open(path, "rb") as f:
                    for line_number, line in enumerate(f, start=1):
                        line = line.strip()
                        if line:
                            yield path, line_number, line
            except FileNotFoundError:
                # Active file is absent between a rotation and the next write
                continue

    def _count_lines(self) -> int:
        return sum(1 for _ in self._iter_lines())

    def _repair_torn_tail(self) -> None:
        """Truncate a final line left without newline by a crashed writer."""
        path = self.active_path
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            return
        if size == 0:
            return

        with open(path, "rb+") as f:
            f.seek(size - 1)
            if f.read(1) == b"\n":
                return

            keep = 0
            position = size
            while position > 0:
                step = min(SinkConstants.TAIL_READ_BLOCK, position)
                position -= step
                f.seek(position)
                newline = f.read(step).rfind(b"\n")
                if newline != -1:
                    keep = position + newline + 1
                    break

            f.truncate(keep)
            f.flush()
            os.fsync(f.fileno())

        logger.warning(
            f"Repaired torn tail of {path}: dropped {size - keep} bytes "
            f"of an incomplete record"
        )

    def _should_rotate(self) -> bool:
        try:
            return self.active_path.stat().st_size >= self.max_bytes
        except FileNotFoundError:
            return False

    def _next_archive_path(self) -> Path:
        stamp = self.clock().astimezone(timezone.utc).strftime(
            SinkConstants.ARCHIVE_TIMESTAMP_FORMAT
        )
        counter = 0

        # Archive names must sort after every existing archive
        archives = self.archive_paths()
        if archives:
            last_stamp, last_counter = self._archive_key(archives[-1])
            if stamp <= last_stamp:
                stamp, counter = last_stamp, last_counter + 1

        while True:
            tail = f"_{counter}" if counter else ""
            candidate = self.log_dir / f"{self._stem}_{stamp}{tail}{self._suffix}"
            if not candidate.exists():
                return candidate
            counter += 1

    def _rotate(self) -> None:
        archive = self._next_archive_path()
        os.replace(self.active_path, archive)
        logger.info(f"Rotated {self.active_path.name} -> {archive.name}")

        if self.max_archives is not None:
            self._prune_archives()

    def _prune_archives(self) -> None:
        """Delete the oldest archives beyond max_archives.

        The prev_hash of the first surviving record becomes the anchor that
        verification starts from.
        """
        archives = self.archive_paths()
        excess = len(archives) - self.max_archives
        if excess <= 0:
            return

        first_kept = self._read_first_line(archives[excess])
        if first_kept is None:
            raise StorageError(
                f"Cannot prune archives: {archives[excess].name} is empty",
                details={"archive": str(archives[excess])},
            )
        anchor_hash = self._parse_line(first_kept, archives[excess]).prev_hash

        meta = self._read_metadata()
        self._save_metadata(meta, anchor_hash=anchor_hash)
        for path in archives[:excess]:
            path.unlink()
            logger.info(f"Pruned audit archive {path.name}")

    # ========== TIP RECOVERY ==========

    @staticmethod
    def _read_first_line(path: Path) -> Optional[bytes]:
        with open(path, "rb") as f:
            for line in f:
                line = line.strip()
                if line:
                    return line
        return None

    @staticmethod
    def _read_last_line(path: Path) -> Optional[bytes]:
        """Read the last non-empty line without scanning the whole file."""
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            return None

        with open(path, "rb") as f:
            buffer = b""
            position = size
            while position > 0:
                step = min(SinkConstants.TAIL_READ_BLOCK, position)
                position -= step
                f.seek(position)
                buffer = f.read(step) + buffer
                stripped = buffer.rstrip(b"\r\n")
                newline = stripped.rfind(b"\n")
                if newline != -1:
                    return stripped[newline + 1:].strip() or None
            stripped = buffer.strip()
            return stripped or None

    def _parse_line(self, line: bytes, path: Path) -> AuditRecord:
        """Parse a line used for chaining; refuse anything malformed."""
        try:
            record = AuditRecord.from_jsonl(line.decode("utf-8"))
        except ValueError as e:
            logger.error(f"Unparseable last record in {path.name}: {e}")
            raise StorageError(
                f"Cannot recover chain tip from {path.name}: malformed record",
                details={"path": str(path)},
            ) from e

        if not self.hash_chain.hash_pattern.match(record.hash):
            logger.error(f"Last record in {path.name} carries a malformed hash")
            raise StorageError(
                f"Cannot recover chain tip from {path.name}: malformed hash",
                details={"path": str(path)},
            )
        return record

    def _recover_tip(self, meta: Dict[str, Any]) -> Optional[AuditRecord]:
        """Re-derive the tip from the active file or the newest archive."""
        line, source = None, None
        for path in [self.active_path] + list(reversed(self.archive_paths())):
            line = self._read_last_line(path)
            if line is not None:
                source = path
                break

        recorded_hash = meta.get("last_hash") or AuditConstants.GENESIS_HASH

        if line is None:
            if recorded_hash:
                logger.log(SECURITY, f"Audit chain storage lost in {self.log_dir}")
                raise StorageError(
                    "chain storage lost",
                    details={"log_dir": str(self.log_dir), "last_hash": recorded_hash},
                )
            return None

        tip = self._parse_line(line, source)

        # A writer that crashed after its write but before the sidecar update
        # leaves the sidecar one record behind.
        if recorded_hash and recorded_hash not in (tip.hash, tip.prev_hash):
            logger.log(
                SECURITY,
                f"Audit chain tip in {source.name} does not match sidecar metadata",
            )
            raise StorageError(
                "chain storage diverged from metadata",
                details={
                    "path": str(source),
                    "tip_hash": tip.hash,
                    "last_hash": recorded_hash,
                },
            )
        return tip

    # ========== WRITING ==========

    def _write_line(self, record: AuditRecord) -> None:
        """Write one record with a single O_APPEND write."""
        data = (record.to_jsonl() + "\n").encode("utf-8")
        fd = os.open(
            str(self.active_path),
            os.O_WRONLY | os.O_CREAT | os.O_APPEND,
            0o600  # Secure file permissions
        )
        try:
            start = os.fstat(fd).st_size
            try:
                written = os.write(fd, data)
            except OSError as e:
                os.ftruncate(fd, start)
                logger.error(f"Write to {self.active_path} failed: {e}")
                raise StorageError(
                    f"Failed to write audit record: {e}",
                    details={"record_id": record.id},
                ) from e

            if written != len(data):
                os.ftruncate(fd, start)
                logger.error(
                    f"Short write to {self.active_path}: {written}/{len(data)} bytes"
                )
                raise StorageError(
                    "Short write to audit log",
                    details={"record_id": record.id, "written": written},
                )

            if self.fsync_on_write:
                os.fsync(fd)
        finally:
            os.close(fd)

    # ========== METADATA ==========

    def _read_metadata(self) -> Dict[str, Any]:
        try:
            with open(self.metadata_path, "r", encoding="utf-8") as f:
                meta = json.load(f)
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Ignoring unreadable sink metadata {self.metadata_path}: {e}")
            return {}
        return meta if isinstance(meta, dict) else {}

    def _save_metadata(self, meta: Dict[str, Any], **updates: Any) -> None:
        """Atomically rewrite the sidecar with updates applied."""
        meta = dict(meta)
        meta.update(updates)
        meta["updated_at"] = datetime.now(timezone.utc).isoformat()
        meta.setdefault("anchor_hash", AuditConstants.GENESIS_HASH)

        tmp_path = self.metadata_path.with_name(self.metadata_path.name + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(meta, f)
            os.replace(tmp_path, self.metadata_path)
        except OSError as e:
            logger.warning(f"Failed to update sink metadata: {e}")

    # ========== REPORTING ==========

    def _report_violation(
        self,
        violation: IntegrityViolation,
        checked: int,
        tip_hash: str,
    ) -> VerificationResult:
        logger.log(SECURITY, f"Audit sink integrity violation: {violation.describe()}")
        if self.metrics is not None:
            try:
                self.metrics.record_integrity_violation(
                    self.file_name, violation.reason.value
                )
            except Exception as e:
                logger.warning(f"Failed to record integrity metric: {e}")
        return VerificationResult.failed(violation, checked, tip_hash)

    def _record_rotation(self) -> None:
        if self.metrics is None:
            return
        try:
            self.metrics.record_rotation(self.file_name)
        except Exception as e:
            logger.warning(f"Failed to record rotation metric: {e}")

    def _record_failure(self, metric: AuditMetric) -> None:
        if self.metrics is None:
            return
        try:
            self.metrics.record_failure(self.file_name, metric)
        except Exception as e:
            logger.warning(f"Failed to record {metric.value}: {e}")
