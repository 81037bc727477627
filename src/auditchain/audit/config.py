"""Audit Layer Configuration and Initialization.

Factory functions that build record stores, sinks and audit logs from the
central Config. Nothing here is cached: every call returns a new object that
the caller owns and injects where it is needed.

Environment variables (see auditchain.common.config.settings):
- AUDITCHAIN_STORAGE_TYPE: "sqlite" (default), "memory" or "dynamodb"
- AUDITCHAIN_SQLITE_PATH: SQLite database file
- AUDITCHAIN_DYNAMODB_TABLE / AUDITCHAIN_CHAIN_ID: DynamoDB table and chain
- AUDITCHAIN_SINK_DIR / AUDITCHAIN_SINK_FILE / AUDITCHAIN_SINK_MAX_BYTES
- AUDITCHAIN_METRICS_ENABLED: Publish audit metrics to CloudWatch
"""

import logging
from typing import Optional

from auditchain.audit.hash_chain import HashChain
from auditchain.audit.log import AuditLog
from auditchain.audit.rotating_sink import RotatingFileSink
from auditchain.audit.store import InMemoryRecordStore, RecordStore
from auditchain.common.config.features import FeatureToggles
from auditchain.common.config.settings import Config, StorageType, get_config
from auditchain.common.exceptions import ConfigurationError
from auditchain.monitoring.metrics import MetricsCollector
from auditchain.observability.notifier import Notifier
from auditchain.observability.operational_log import OperationalLogger

logger = logging.getLogger(__name__)


def create_record_store(config: Optional[Config] = None) -> RecordStore:
    """Factory method to create the configured record store.

    Args:
        config: Configuration (global config if not provided)

    Returns:
        Configured RecordStore instance
    """
    config = config or get_config()
    storage_type = config.storage_type

    if storage_type == StorageType.MEMORY:
        logger.warning("Using in-memory audit store; records are not durable")
        return InMemoryRecordStore(lock_timeout=config.lock_timeout_seconds)

    elif storage_type == StorageType.SQLITE:
        from auditchain.audit.sqlite_store import SQLiteRecordStore

        return SQLiteRecordStore(
            db_path=config.sqlite_path,
            lock_timeout=config.lock_timeout_seconds,
        )

    elif storage_type == StorageType.DYNAMODB:
        from auditchain.audit.dynamodb_store import DynamoDBRecordStore

        return DynamoDBRecordStore(
            table_name=config.dynamodb_table,
            chain_id=config.chain_id,
            region=config.aws_region,
            lock_timeout=config.lock_timeout_seconds,
        )

    else:
        raise ConfigurationError(f"Unknown storage type: {storage_type}")


def create_metrics_collector(config: Optional[Config] = None) -> Optional[MetricsCollector]:
    """Create a CloudWatch collector if metrics are enabled."""
    config = config or get_config()
    if not config.metrics_enabled:
        return None
    return MetricsCollector(
        namespace=config.cloudwatch_namespace,
        region=config.aws_region,
        batch_size=config.metrics_batch_size,
    )


def create_rotating_sink(
    config: Optional[Config] = None,
    features: Optional[FeatureToggles] = None,
    metrics: Optional[MetricsCollector] = None,
) -> RotatingFileSink:
    """Factory method to create the chained security-log sink.

    Args:
        config: Configuration (global config if not provided)
        features: Feature toggles shared with the rest of the application
        metrics: Optional metrics collector

    Returns:
        Configured RotatingFileSink instance
    """
    config = config or get_config()
    return RotatingFileSink(
        log_dir=config.sink_dir,
        file_name=config.sink_file_name,
        max_bytes=config.sink_max_bytes,
        hash_algorithm=config.hash_algorithm,
        lock_timeout=config.lock_timeout_seconds,
        fsync_on_write=config.fsync_on_write,
        max_archives=config.sink_max_archives,
        features=features,
        metrics=metrics,
    )


def create_audit_log(
    config: Optional[Config] = None,
    features: Optional[FeatureToggles] = None,
    notifier: Optional[Notifier] = None,
    store: Optional[RecordStore] = None,
) -> AuditLog:
    """Factory method to create an audit log with the configured backend.

    Args:
        config: Configuration (global config if not provided)
        features: Feature toggles (environment-backed if not provided)
        notifier: Notification target (an OperationalLogger if not provided)
        store: Record store (built from config if not provided)

    Returns:
        Configured AuditLog instance
    """
    config = config or get_config()
    features = features or FeatureToggles()

    return AuditLog(
        store=store or create_record_store(config),
        hash_chain=HashChain(config.hash_algorithm),
        features=features,
        notifier=notifier or OperationalLogger(features=features),
        metrics=create_metrics_collector(config),
        lock_timeout=config.lock_timeout_seconds,
    )


# Re-export for convenience
__all__ = [
    "create_record_store",
    "create_metrics_collector",
    "create_rotating_sink",
    "create_audit_log",
]
