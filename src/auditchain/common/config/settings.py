"""Configuration management - Centralized configuration for auditchain.

Provides environment-aware configuration with sensible defaults.
All configuration is loaded from environment variables with fallbacks.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from auditchain.common.constants import (
    AuditConstants,
    MonitoringConstants,
    SinkConstants,
    StoreConstants,
)
from auditchain.common.exceptions import ConfigurationError


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StorageType(str, Enum):
    """Record store backend types."""
    MEMORY = "memory"
    SQLITE = "sqlite"
    DYNAMODB = "dynamodb"


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "yes", "1")


def _env_optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value else None


@dataclass
class Config:
    """Central configuration object for auditchain.

    All settings can be overridden via environment variables prefixed with
    AUDITCHAIN_.

    Example:
        AUDITCHAIN_ENVIRONMENT=production
        AUDITCHAIN_STORAGE_TYPE=sqlite
        AUDITCHAIN_SINK_MAX_BYTES=1000000
    """

    # Core settings
    environment: Environment = field(
        default_factory=lambda: Environment(
            os.getenv("AUDITCHAIN_ENVIRONMENT", "development")
        )
    )
    debug: bool = field(
        default_factory=lambda: _env_bool("AUDITCHAIN_DEBUG")
    )
    log_level: LogLevel = field(
        default_factory=lambda: LogLevel(os.getenv("AUDITCHAIN_LOG_LEVEL", "INFO"))
    )

    # Record store
    storage_type: StorageType = field(
        default_factory=lambda: StorageType(
            os.getenv("AUDITCHAIN_STORAGE_TYPE", "sqlite")
        )
    )
    sqlite_path: Path = field(
        default_factory=lambda: Path(
            os.getenv("AUDITCHAIN_SQLITE_PATH", "./data/audit.db")
        )
    )
    dynamodb_table: Optional[str] = field(
        default_factory=lambda: os.getenv("AUDITCHAIN_DYNAMODB_TABLE")
    )
    chain_id: str = field(
        default_factory=lambda: os.getenv(
            "AUDITCHAIN_CHAIN_ID", StoreConstants.DEFAULT_CHAIN_ID
        )
    )

    # AWS settings (for DynamoDB, Parameter Store and CloudWatch)
    aws_region: str = field(
        default_factory=lambda: os.getenv("AWS_DEFAULT_REGION", "us-east-1")
    )

    # Rotating file sink
    sink_dir: Path = field(
        default_factory=lambda: Path(
            os.getenv("AUDITCHAIN_SINK_DIR", "./logs/security")
        )
    )
    sink_file_name: str = field(
        default_factory=lambda: os.getenv(
            "AUDITCHAIN_SINK_FILE", SinkConstants.DEFAULT_FILE_NAME
        )
    )
    sink_max_bytes: int = field(
        default_factory=lambda: int(
            os.getenv("AUDITCHAIN_SINK_MAX_BYTES", str(SinkConstants.MAX_BYTES))
        )
    )
    sink_max_archives: Optional[int] = field(
        default_factory=lambda: _env_optional_int("AUDITCHAIN_SINK_MAX_ARCHIVES")
    )

    # Chain settings
    lock_timeout_seconds: float = field(
        default_factory=lambda: float(
            os.getenv(
                "AUDITCHAIN_LOCK_TIMEOUT", str(AuditConstants.LOCK_TIMEOUT_SECONDS)
            )
        )
    )
    hash_algorithm: str = field(
        default_factory=lambda: os.getenv(
            "AUDITCHAIN_HASH_ALGORITHM", AuditConstants.HASH_ALGORITHM
        )
    )
    fsync_on_write: bool = field(
        default_factory=lambda: _env_bool("AUDITCHAIN_FSYNC")
    )

    # Monitoring
    metrics_enabled: bool = field(
        default_factory=lambda: _env_bool("AUDITCHAIN_METRICS_ENABLED")
    )
    cloudwatch_namespace: str = field(
        default_factory=lambda: os.getenv(
            "AUDITCHAIN_CLOUDWATCH_NAMESPACE", "AuditChain"
        )
    )
    metrics_batch_size: int = MonitoringConstants.DEFAULT_BATCH_SIZE

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.storage_type == StorageType.DYNAMODB and not self.dynamodb_table:
            raise ConfigurationError(
                "AUDITCHAIN_DYNAMODB_TABLE must be set when using DynamoDB storage"
            )

        if self.sink_max_bytes <= 0:
            raise ConfigurationError(
                "AUDITCHAIN_SINK_MAX_BYTES must be positive",
                details={"sink_max_bytes": self.sink_max_bytes},
            )

        if self.sink_max_archives is not None and self.sink_max_archives < 1:
            raise ConfigurationError(
                "AUDITCHAIN_SINK_MAX_ARCHIVES must be at least 1 when set",
                details={"sink_max_archives": self.sink_max_archives},
            )

        if self.lock_timeout_seconds <= 0:
            raise ConfigurationError(
                "AUDITCHAIN_LOCK_TIMEOUT must be positive",
                details={"lock_timeout_seconds": self.lock_timeout_seconds},
            )

        # Warn about debug in production
        if self.environment == Environment.PRODUCTION and self.debug:
            import warnings
            warnings.warn(
                "Debug mode is enabled in production environment",
                RuntimeWarning,
                stacklevel=2
            )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT


# Singleton instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance.

    Returns:
        Config: The global configuration singleton.
    """
    global _config
    if _config is None:
        _config = Config()
    return _config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None
