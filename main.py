#!/usr/bin/env python3
"""Main entry point for auditchain."""

from auditchain.audit.config import create_audit_log
from auditchain.common.logging import get_logger
from auditchain.common.config import get_config

logger = get_logger(__name__)


def main():
    """Main entry point."""
    config = get_config()
    logger.info(f"auditchain initialized in {config.environment.value} mode")
    logger.info(f"Record store: {config.storage_type.value}")

    audit_log = create_audit_log(config)
    record = audit_log.append(None, "system.startup", {"environment": config.environment.value})
    if record is not None:
        logger.info(f"Appended {record.id} (hash={record.hash[:12]}...)")

    result = audit_log.verify_integrity()
    if result.is_valid:
        logger.info(f"Audit chain valid: {result.records_checked} records")
    else:
        logger.error(f"Audit chain broken: {result.violation.describe()}")
    return 0 if result.is_valid else 1


if __name__ == "__main__":
    raise SystemExit(main())
