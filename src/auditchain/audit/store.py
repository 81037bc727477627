"""Record Store - Abstraction for hash-chained record persistence.

This module provides an interface for audit record storage backends,
decoupling chaining logic from specific persistence mechanisms.

Design principles:
- Append-only: no update or delete operations
- Append order is chain order (never created_at)
- The append critical section is exposed as chain_lock()
- Every append re-checks prev_hash against the current tip (fork guard)
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, List, Optional

from auditchain.audit.locking import acquire_thread_lock
from auditchain.audit.schemas import AuditRecord
from auditchain.common.constants import AuditConstants
from auditchain.common.exceptions import TipConflictError

logger = logging.getLogger(__name__)


class RecordStore(ABC):
    """Abstract base class for audit record storage backends.

    Implementations must provide durable, append-only storage whose
    iteration order is the order records were appended.
    """

    def __init__(self, lock_timeout: float = AuditConstants.LOCK_TIMEOUT_SECONDS):
        self.lock_timeout = lock_timeout
        self._thread_lock = threading.Lock()

    @contextmanager
    def chain_lock(self, timeout: Optional[float] = None) -> Iterator[None]:
        """Enter the append critical section.

        Read-tip, compute and append must all happen inside this block.

        Raises:
            LockTimeoutError: If the lock cannot be acquired in time
        """
        with acquire_thread_lock(self._thread_lock, self._timeout(timeout)):
            yield

    def _timeout(self, timeout: Optional[float]) -> float:
        return self.lock_timeout if timeout is None else timeout

    @abstractmethod
    def fetch_tip(self) -> Optional[AuditRecord]:
        """Get the most recently appended record.

        Returns:
            The tip record, or None if the store is empty
        """
        pass

    def fetch_tip_hash(self) -> str:
        """Get the current tip hash ("" for an empty store)."""
        tip = self.fetch_tip()
        return tip.hash if tip is not None else AuditConstants.GENESIS_HASH

    @abstractmethod
    def append(self, record: AuditRecord) -> None:
        """Durably persist a record at the end of the chain.

        Args:
            record: Fully hashed record

        Raises:
            StorageError: If the write fails (the record is then not visible)
            TipConflictError: If record.prev_hash is not the current tip hash
        """
        pass

    @abstractmethod
    def iterate_all(self) -> Iterator[AuditRecord]:
        """Yield every record in append order.

        Each call starts a fresh pass.
        """
        pass

    @abstractmethod
    def count(self) -> int:
        """Get the number of records in the store."""
        pass

    def _check_tip(self, record: AuditRecord, current_tip_hash: str) -> None:
        """Refuse a record computed against a stale tip."""
        if record.prev_hash != current_tip_hash:
            logger.warning(
                f"Rejected append of {record.id}: prev_hash does not match tip"
            )
            raise TipConflictError(
                "Record does not chain to the current tip",
                expected_prev_hash=record.prev_hash,
                current_tip_hash=current_tip_hash,
                details={"record_id": record.id},
            )


class InMemoryRecordStore(RecordStore):
    """List-backed store for tests and ephemeral use.

    Not durable. Thread-safe through chain_lock() plus an internal lock
    guarding the list itself.
    """

    def __init__(self, lock_timeout: float = AuditConstants.LOCK_TIMEOUT_SECONDS):
        super().__init__(lock_timeout=lock_timeout)
        self._records: List[AuditRecord] = []
        self._data_lock = threading.Lock()

    def fetch_tip(self) -> Optional[AuditRecord]:
        with self._data_lock:
            return self._records[-1] if self._records else None

    def append(self, record: AuditRecord) -> None:
        with self._data_lock:
            tip_hash = (
                self._records[-1].hash if self._records
                else AuditConstants.GENESIS_HASH
            )
            self._check_tip(record, tip_hash)
            self._records.append(record)

    def iterate_all(self) -> Iterator[AuditRecord]:
        with self._data_lock:
            snapshot = list(self._records)
        return iter(snapshot)

    def count(self) -> int:
        with self._data_lock:
            return len(self._records)
