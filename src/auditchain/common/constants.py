"""Centralized constants for auditchain."""


# ===== AUDIT CHAIN =====
class AuditConstants:
    HASH_ALGORITHM = "sha256"
    MIN_DIGEST_BYTES = 32
    CHAIN_FORMAT_VERSION = "auditchain.v1"
    GENESIS_HASH = ""
    TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
    LOCK_TIMEOUT_SECONDS = 10.0
    LOCK_POLL_INTERVAL = 0.05
    ACTION_MAX_LENGTH = 255
    RECORD_ID_PREFIX = "aud_"

    # Background writer
    QUEUE_SIZE = 10000
    FLUSH_TIMEOUT_SECONDS = 5.0
    QUEUE_GET_TIMEOUT = 1.0


# ===== ROTATING FILE SINK =====
class SinkConstants:
    DEFAULT_FILE_NAME = "security.log"
    MAX_BYTES = 5_000_000
    ARCHIVE_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"
    LOCK_SUFFIX = ".lock"
    METADATA_SUFFIX = ".meta"
    TAIL_READ_BLOCK = 4096


# ===== STRUCTURED STORES =====
class StoreConstants:
    SQLITE_TABLE = "audit_logs"
    SQLITE_FETCH_BATCH = 500
    DYNAMODB_SEQ_WIDTH = 20
    DEFAULT_CHAIN_ID = "default"


# ===== MONITORING =====
class MonitoringConstants:
    DEFAULT_BATCH_SIZE = 20
    CLOUDWATCH_MAX_BATCH = 20
    APPEND_LATENCY_WARNING_MS = 250
