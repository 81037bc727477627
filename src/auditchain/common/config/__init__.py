"""Configuration module - settings and feature toggles."""

from auditchain.common.config.settings import (
    Config,
    Environment,
    LogLevel,
    StorageType,
    get_config,
    reset_config,
)
from auditchain.common.config.features import (
    ConfigSource,
    Feature,
    FeatureToggles,
)

__all__ = [
    "Config",
    "Environment",
    "LogLevel",
    "StorageType",
    "get_config",
    "reset_config",
    "ConfigSource",
    "Feature",
    "FeatureToggles",
]
