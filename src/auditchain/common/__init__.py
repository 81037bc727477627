"""Common utilities - logging, config, exceptions."""

from auditchain.common.logging.logger import get_logger
from auditchain.common.config import Config, get_config, reset_config
from auditchain.common.exceptions import (
    AuditChainException,
    ConfigurationError,
    ValidationError,
    StorageError,
    LockTimeoutError,
    TipConflictError,
    AuditLogIntegrityError,
)

__all__ = [
    # Logging
    "get_logger",
    # Config
    "Config",
    "get_config",
    "reset_config",
    # Exceptions
    "AuditChainException",
    "ConfigurationError",
    "ValidationError",
    "StorageError",
    "LockTimeoutError",
    "TipConflictError",
    "AuditLogIntegrityError",
]
