"""Logging helpers and the SECURITY/AUDIT severities."""

from auditchain.common.logging.logger import AUDIT, SECURITY, get_logger

__all__ = ["get_logger", "SECURITY", "AUDIT"]
