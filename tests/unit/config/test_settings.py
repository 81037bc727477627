"""Tests for configuration settings.

Tests the Config class and environment variable handling.
"""

import os
import pytest
from pathlib import Path
from unittest.mock import patch

from auditchain.common.config.settings import (
    Config,
    Environment,
    LogLevel,
    StorageType,
    get_config,
    reset_config,
)
from auditchain.common.constants import AuditConstants, SinkConstants
from auditchain.common.exceptions import ConfigurationError


class TestEnvironment:
    """Tests for Environment enum."""

    def test_environment_values(self):
        """Test Environment enum values."""
        assert Environment.DEVELOPMENT.value == "development"
        assert Environment.STAGING.value == "staging"
        assert Environment.PRODUCTION.value == "production"


class TestLogLevel:
    """Tests for LogLevel enum."""

    def test_log_level_values(self):
        """Test LogLevel enum values."""
        assert LogLevel.DEBUG.value == "DEBUG"
        assert LogLevel.INFO.value == "INFO"
        assert LogLevel.CRITICAL.value == "CRITICAL"


class TestStorageType:
    """Tests for StorageType enum."""

    def test_storage_type_values(self):
        """Test StorageType enum values."""
        assert StorageType.MEMORY.value == "memory"
        assert StorageType.SQLITE.value == "sqlite"
        assert StorageType.DYNAMODB.value == "dynamodb"


class TestConfig:
    """Tests for Config class."""

    def test_default_config(self):
        """Test Config with default values."""
        with patch.dict(os.environ, {}, clear=True):
            config = Config()

            assert config.environment == Environment.DEVELOPMENT
            assert config.debug is False
            assert config.log_level == LogLevel.INFO
            assert config.storage_type == StorageType.SQLITE
            assert config.sqlite_path == Path("./data/audit.db")
            assert config.sink_file_name == SinkConstants.DEFAULT_FILE_NAME
            assert config.sink_max_bytes == SinkConstants.MAX_BYTES
            assert config.sink_max_archives is None
            assert config.lock_timeout_seconds == AuditConstants.LOCK_TIMEOUT_SECONDS
            assert config.hash_algorithm == "sha256"
            assert config.fsync_on_write is False
            assert config.metrics_enabled is False

    def test_values_from_env_vars(self):
        """Test settings loaded from environment variables."""
        env = {
            "AUDITCHAIN_STORAGE_TYPE": "memory",
            "AUDITCHAIN_SINK_DIR": "/var/log/auditchain",
            "AUDITCHAIN_SINK_MAX_BYTES": "1000000",
            "AUDITCHAIN_SINK_MAX_ARCHIVES": "10",
            "AUDITCHAIN_LOCK_TIMEOUT": "2.5",
            "AUDITCHAIN_HASH_ALGORITHM": "sha512",
            "AUDITCHAIN_FSYNC": "true",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config()

            assert config.storage_type == StorageType.MEMORY
            assert config.sink_dir == Path("/var/log/auditchain")
            assert config.sink_max_bytes == 1_000_000
            assert config.sink_max_archives == 10
            assert config.lock_timeout_seconds == 2.5
            assert config.hash_algorithm == "sha512"
            assert config.fsync_on_write is True

    def test_dynamodb_requires_table(self):
        """Test DynamoDB storage without a table is rejected."""
        with patch.dict(os.environ, {"AUDITCHAIN_STORAGE_TYPE": "dynamodb"}, clear=True):
            with pytest.raises(ConfigurationError):
                Config()

    def test_dynamodb_with_table(self):
        """Test DynamoDB storage with a table and chain id."""
        env = {
            "AUDITCHAIN_STORAGE_TYPE": "dynamodb",
            "AUDITCHAIN_DYNAMODB_TABLE": "audit-chain",
            "AUDITCHAIN_CHAIN_ID": "payments",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config()

            assert config.dynamodb_table == "audit-chain"
            assert config.chain_id == "payments"

    @pytest.mark.parametrize("name,value", [
        ("AUDITCHAIN_SINK_MAX_BYTES", "0"),
        ("AUDITCHAIN_SINK_MAX_ARCHIVES", "0"),
        ("AUDITCHAIN_LOCK_TIMEOUT", "0"),
    ])
    def test_invalid_values_rejected(self, name, value):
        """Test non-positive limits are rejected."""
        with patch.dict(os.environ, {name: value}, clear=True):
            with pytest.raises(ConfigurationError):
                Config()

    def test_debug_in_production_warns(self):
        """Test debug mode in production emits a warning."""
        env = {"AUDITCHAIN_ENVIRONMENT": "production", "AUDITCHAIN_DEBUG": "true"}
        with patch.dict(os.environ, env, clear=True):
            with pytest.warns(RuntimeWarning):
                config = Config()

            assert config.is_production
            assert not config.is_development


class TestGlobalConfig:
    """Tests for global config functions."""

    def test_get_config_singleton(self):
        """Test get_config returns the same instance."""
        reset_config()

        config1 = get_config()
        config2 = get_config()

        assert config1 is config2
        reset_config()

    def test_reset_config(self):
        """Test reset_config clears the singleton."""
        reset_config()
        config1 = get_config()
        reset_config()
        config2 = get_config()

        assert config1 is not config2
        reset_config()
