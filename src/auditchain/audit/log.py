"""Audit Log - the append and verify entry points of the audit core.

Append path:
    serialise payload -> chain_lock -> fetch tip -> compute hash
    -> store.append -> release lock -> notify/metrics (fire-and-forget)

Verification walks the store in append order and stops at the first record
that does not chain to its predecessor. It reports, it never repairs.
"""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, Optional

from auditchain.audit.hash_chain import HashChain
from auditchain.audit.identity import IdentityResult
from auditchain.audit.schemas import (
    AuditRecord,
    IntegrityViolation,
    VerificationResult,
    ViolationReason,
)
from auditchain.audit.store import RecordStore
from auditchain.common.config.features import Feature, FeatureToggles
from auditchain.common.constants import AuditConstants
from auditchain.common.exceptions import (
    LockTimeoutError,
    StorageError,
    TipConflictError,
    ValidationError,
)
from auditchain.common.logging.logger import SECURITY
from auditchain.monitoring.metrics import AuditMetric, MetricsCollector
from auditchain.observability.notifier import Notifier, NullNotifier

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def check_action(action: str) -> None:
    """Reject empty or oversized action labels before taking any lock."""
    if not isinstance(action, str) or not action:
        raise ValidationError("Audit action must be a non-empty string")
    if len(action) > AuditConstants.ACTION_MAX_LENGTH:
        raise ValidationError(
            f"Audit action exceeds {AuditConstants.ACTION_MAX_LENGTH} characters",
            details={"length": len(action)},
        )


def check_text(**fields: Optional[str]) -> None:
    """Reject text that cannot be hashed as UTF-8 (lone surrogates)."""
    for name, value in fields.items():
        if not isinstance(value, str):
            continue
        try:
            value.encode("utf-8")
        except UnicodeEncodeError as e:
            raise ValidationError(
                f"Audit {name} is not valid UTF-8 text",
                details={"field": name, "position": e.start},
            ) from e


def next_timestamp(now: datetime, tip: Optional[AuditRecord]) -> str:
    """Format now, clamped so created_at never decreases along the chain."""
    created_at = now.astimezone(timezone.utc).strftime(AuditConstants.TIMESTAMP_FORMAT)
    if tip is not None and tip.created_at > created_at:
        return tip.created_at
    return created_at


class AuditLog:
    """Hash-chained audit log over a RecordStore.

    Safe for concurrent callers: the store's chain_lock serialises the
    read-tip-then-append critical section.
    """

    def __init__(
        self,
        store: RecordStore,
        hash_chain: Optional[HashChain] = None,
        features: Optional[FeatureToggles] = None,
        notifier: Optional[Notifier] = None,
        metrics: Optional[MetricsCollector] = None,
        lock_timeout: Optional[float] = None,
        clock: Optional[Clock] = None,
    ):
        """Initialize audit log.

        Args:
            store: Record store holding the chain
            hash_chain: Hashing strategy (SHA-256 if not provided)
            features: Feature toggles (environment-backed if not provided)
            notifier: Receives "Audit appended" and violation events
            metrics: Optional CloudWatch metrics collector
            lock_timeout: Critical-section timeout (store default if None)
            clock: Returns the current UTC time
        """
        self.store = store
        self.hash_chain = hash_chain or HashChain()
        self.features = features or FeatureToggles()
        self.notifier = notifier or NullNotifier()
        self.metrics = metrics
        self.lock_timeout = lock_timeout
        self.clock = clock or utc_now
        self.chain_name = type(store).__name__

    def append(
        self,
        actor_id: Optional[str],
        action: str,
        payload: Optional[Dict[str, Any]] = None,
        origin: Optional[str] = None,
    ) -> Optional[AuditRecord]:
        """Append one event to the chain.

        Args:
            actor_id: Acting user, None for system events
            action: Short action label, e.g. "login.failed"
            payload: String-keyed, JSON-serialisable event data
            origin: Client address

        Returns:
            The appended record, or None if auditing is disabled

        Raises:
            ValidationError: If action or payload is invalid
            LockTimeoutError: If the chain lock is not acquired in time
            StorageError: If the store write fails
            TipConflictError: If another writer advanced the tip concurrently
        """
        if not self.features.is_enabled(Feature.AUDIT):
            logger.debug(f"Audit disabled; skipped {action}")
            return None

        check_action(action)
        check_text(action=action, actor_id=actor_id, origin=origin)
        payload_serialized = self.hash_chain.serialize_payload(payload)
        # Stored payload is exactly what was hashed
        payload_copy = json.loads(payload_serialized)
        actor_id = actor_id or None
        origin = origin or None

        started = time.perf_counter()
        try:
            with self.store.chain_lock(self.lock_timeout):
                tip = self.store.fetch_tip()
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
                self.store.append(record)
        except LockTimeoutError:
            logger.warning(f"Audit append timed out waiting for chain lock: {action}")
            self._record_failure(AuditMetric.LOCK_TIMEOUTS)
            raise
        except TipConflictError:
            logger.warning(f"Audit append lost a race for the chain tip: {action}")
            self._record_failure(AuditMetric.TIP_CONFLICTS)
            raise
        except StorageError as e:
            logger.error(f"Audit append failed: {action}: {e.message}")
            self._record_failure(AuditMetric.STORAGE_ERRORS)
            raise

        latency_ms = (time.perf_counter() - started) * 1000
        self._after_append(record, latency_ms)
        return record

    def append_for(
        self,
        identity: IdentityResult,
        action: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditRecord]:
        """Append using the outcome of request authentication.

        A failed identity is still audited: no actor, and the failure kind
        under payload["identity_error"].
        """
        if identity.is_ok:
            return self.append(
                identity.actor_id,
                action,
                payload,
                origin=identity.identity.origin or identity.origin,
            )

        failed_payload = dict(payload or {})
        failed_payload["identity_error"] = identity.error.value
        return self.append(None, action, failed_payload, origin=identity.origin)

    def verify_integrity(self) -> VerificationResult:
        """Verify the whole chain from the first record.

        Runs regardless of the audit feature toggle.

        Returns:
            VerificationResult with the first violation, if any
        """
        expected_prev_hash = AuditConstants.GENESIS_HASH
        checked = 0
        records: Iterator[AuditRecord] = self.store.iterate_all()

        while True:
            try:
                record = next(records)
            except StopIteration:
                break
            except ValueError as e:
                logger.error(f"Unreadable audit record at position {checked}: {e}")
                violation = IntegrityViolation(
                    position=checked,
                    expected_prev_hash=expected_prev_hash,
                    reason=ViolationReason.MALFORMED_RECORD,
                )
                return self._report_violation(violation, checked, expected_prev_hash)

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
                )
                return self._report_violation(violation, checked, expected_prev_hash)

            expected_prev_hash = record.hash
            checked += 1

        logger.info(f"Audit chain verified: {checked} records")
        return VerificationResult.valid(checked, expected_prev_hash)

    def tip_hash(self) -> str:
        """Get the current chain tip hash ("" for an empty chain)."""
        return self.store.fetch_tip_hash()

    def _report_violation(
        self,
        violation: IntegrityViolation,
        checked: int,
        tip_hash: str,
    ) -> VerificationResult:
        logger.log(SECURITY, f"Audit chain integrity violation: {violation.describe()}")

        if self.metrics is not None:
            try:
                self.metrics.record_integrity_violation(
                    self.chain_name, violation.reason.value
                )
            except Exception as e:
                logger.warning(f"Failed to record integrity metric: {e}")

        try:
            self.notifier.notify(
                "security",
                "Audit chain integrity violation",
                violation.model_dump(mode="json"),
            )
        except Exception as e:
            logger.warning(f"Violation notification failed: {e}")

        return VerificationResult.failed(violation, checked, tip_hash)

    def _after_append(self, record: AuditRecord, latency_ms: float) -> None:
        """Notify and record metrics; never fails the append."""
        try:
            self.notifier.notify(
                "info",
                "Audit appended",
                {"id": record.id, "action": record.action, "actor_id": record.actor_id},
            )
        except Exception as e:
            logger.warning(f"Append notification failed for {record.id}: {e}")

        if self.metrics is not None:
            try:
                self.metrics.record_append(self.chain_name, record.action, latency_ms)
            except Exception as e:
                logger.warning(f"Failed to record append metrics: {e}")

    def _record_failure(self, metric: AuditMetric) -> None:
        if self.metrics is None:
            return
        try:
            self.metrics.record_failure(self.chain_name, metric)
        except Exception as e:
            logger.warning(f"Failed to record {metric.value}: {e}")
