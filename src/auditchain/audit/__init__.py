"""Audit module - Tamper-evident, hash-chained audit logging.

Every record carries the hash of its predecessor, so any edit, deletion or
reordering of stored records is detected by verify_integrity().

Components:
- HashChain: Canonical record hashing and pairwise verification
- RecordStore: Abstract base class for storage backends
- InMemoryRecordStore / SQLiteRecordStore / DynamoDBRecordStore: Backends
- AuditLog: Append and verify entry points over a RecordStore
- RotatingFileSink: Chained JSONL security log with size-based rotation
- BackgroundAuditWriter: Queue-backed writer for high throughput
"""

from auditchain.audit.schemas import (
    AuditRecord,
    IntegrityViolation,
    VerificationResult,
    ViolationReason,
)
from auditchain.audit.hash_chain import HashChain
from auditchain.audit.identity import Identity, IdentityErrorKind, IdentityResult
from auditchain.audit.store import InMemoryRecordStore, RecordStore
from auditchain.audit.sqlite_store import SQLiteRecordStore
from auditchain.audit.log import AuditLog
from auditchain.audit.rotating_sink import RotatingFileSink
from auditchain.audit.background_writer import BackgroundAuditWriter
from auditchain.audit.config import (
    create_audit_log,
    create_record_store,
    create_rotating_sink,
)

__all__ = [
    "AuditRecord",
    "IntegrityViolation",
    "VerificationResult",
    "ViolationReason",
    "HashChain",
    "Identity",
    "IdentityErrorKind",
    "IdentityResult",
    "RecordStore",
    "InMemoryRecordStore",
    "SQLiteRecordStore",
    "AuditLog",
    "RotatingFileSink",
    "BackgroundAuditWriter",
    "create_audit_log",
    "create_record_store",
    "create_rotating_sink",
]
