"""Feature toggles - decide whether audit and log writing is active.

Every audit or log write asks the toggles once per operation. A disabled
feature turns the write into a no-op: nothing is raised and the chain tip is
neither read nor advanced.

Backed by:
- Environment variables (AUDITCHAIN_FEATURE_<NAME>)
- Process-local overrides (enable()/disable())
- AWS SSM Parameter Store (instant updates across hosts)
- Local cache with TTL
"""

import logging
import os
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class ConfigSource(str, Enum):
    """Sources for feature configuration."""
    PARAMETER_STORE = "parameter_store"  # Parameter Store (instant)
    ENVIRONMENT = "environment"          # Environment variables


class Feature(str, Enum):
    """Toggleable features."""
    AUDIT = "audit"    # Hash-chained audit writes (AuditLog, RotatingFileSink)
    LOGGER = "logger"  # Operational logging (OperationalLogger)


class FeatureToggles:
    """Feature toggles with multiple sources.

    Load order:
    1. Environment variables (highest priority)
    2. Process-local overrides
    3. Cache / Parameter Store
    4. Defaults (lowest priority)

    Environment variables:
    - AUDITCHAIN_FEATURE_AUDIT, AUDITCHAIN_FEATURE_LOGGER: true/false
    - PARAMETER_STORE_PREFIX: Parameter Store prefix
    """

    DEFAULT_REGION = "us-east-1"
    DEFAULT_CACHE_TTL_SECONDS = 60
    ENV_PREFIX = "AUDITCHAIN_FEATURE_"

    # Safe defaults: auditing is on unless someone turns it off.
    DEFAULTS: Dict[str, bool] = {
        Feature.AUDIT.value: True,
        Feature.LOGGER.value: True,
    }

    def __init__(
        self,
        source: ConfigSource = ConfigSource.ENVIRONMENT,
        region: Optional[str] = None,
        aws_profile: Optional[str] = None,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        overrides: Optional[Dict[str, bool]] = None,
    ):
        """Initialize feature toggles.

        Args:
            source: Configuration source
            region: AWS region
            aws_profile: AWS profile
            cache_ttl_seconds: Cache TTL for fetched values
            overrides: Initial process-local overrides keyed by feature name
        """
        self.source = source
        self.region = region or os.environ.get("AWS_REGION", self.DEFAULT_REGION)
        self.cache_ttl_seconds = cache_ttl_seconds
        self.cache: Dict[str, Any] = {}
        self.cache_times: Dict[str, datetime] = {}
        self._overrides: Dict[str, bool] = dict(overrides or {})
        self._lock = threading.Lock()

        if source == ConfigSource.PARAMETER_STORE:
            if aws_profile:
                session = boto3.Session(profile_name=aws_profile)
                self.ssm_client = session.client("ssm", region_name=self.region)
            else:
                self.ssm_client = boto3.client("ssm", region_name=self.region)

        self.parameter_store_prefix = os.environ.get(
            "PARAMETER_STORE_PREFIX", "/auditchain/features/"
        )

        logger.info(
            f"Initialized FeatureToggles: source={source.value}, "
            f"cache_ttl={cache_ttl_seconds}s"
        )

    def is_enabled(self, feature: Feature) -> bool:
        """Check whether a feature is active.

        Args:
            feature: Feature to check

        Returns:
            True if enabled
        """
        return bool(self.get(feature.value))

    def get(self, key: str) -> bool:
        """Resolve a feature flag following the load order."""
        env_value = os.environ.get(f"{self.ENV_PREFIX}{key.upper()}")
        if env_value is not None:
            return self._parse_value(env_value)

        with self._lock:
            if key in self._overrides:
                return self._overrides[key]

            if self.source == ConfigSource.ENVIRONMENT:
                return self.DEFAULTS.get(key, False)

            if self._is_cache_valid(key):
                return self.cache[key]

        value = self._get_from_parameter_store(key)
        with self._lock:
            self.cache[key] = value
            self.cache_times[key] = datetime.now(timezone.utc)
        return value

    def enable(self, feature: Feature) -> bool:
        """Turn a feature on."""
        return self.set(feature, True)

    def disable(self, feature: Feature) -> bool:
        """Turn a feature off."""
        return self.set(feature, False)

    def set(self, feature: Feature, value: bool) -> bool:
        """Set a feature flag.

        With the ENVIRONMENT source the value becomes a process-local
        override. With Parameter Store the parameter is written and the cache
        for that key invalidated.

        Returns:
            True if successful
        """
        if self.source == ConfigSource.PARAMETER_STORE:
            return self._set_in_parameter_store(feature.value, value)

        with self._lock:
            self._overrides[feature.value] = bool(value)
        logger.info(f"Feature override: {feature.value} = {value}")
        return True

    def clear_overrides(self) -> None:
        """Drop every process-local override."""
        with self._lock:
            self._overrides.clear()

    def get_status(self) -> Dict[str, bool]:
        """Get current status of all features."""
        return {feature.value: self.is_enabled(feature) for feature in Feature}

    def _is_cache_valid(self, key: str) -> bool:
        """Check if the cached value for key is still valid."""
        cached_at = self.cache_times.get(key)
        if cached_at is None:
            return False

        age = (datetime.now(timezone.utc) - cached_at).total_seconds()
        return age < self.cache_ttl_seconds

    def _parse_value(self, value: str) -> bool:
        """Parse a string flag value."""
        return value.strip().lower() in ("true", "yes", "1", "on")

    def _get_from_parameter_store(self, key: str) -> bool:
        """Get value from Parameter Store.

        Args:
            key: Feature name

        Returns:
            Parameter value, or the default when missing or unreachable
        """
        try:
            param_name = f"{self.parameter_store_prefix}{key}"
            response = self.ssm_client.get_parameter(
                Name=param_name,
                WithDecryption=True,
            )

            return self._parse_value(response["Parameter"]["Value"])

        except self.ssm_client.exceptions.ParameterNotFound:
            return self.DEFAULTS.get(key, False)
        except ClientError as e:
            logger.warning(f"Failed to get parameter {key}: {e}")
            return self.DEFAULTS.get(key, False)

    def _set_in_parameter_store(self, key: str, value: bool) -> bool:
        """Set value in Parameter Store.

        Args:
            key: Feature name
            value: New flag value

        Returns:
            True if successful
        """
        try:
            param_name = f"{self.parameter_store_prefix}{key}"
            self.ssm_client.put_parameter(
                Name=param_name,
                Value="true" if value else "false",
                Type="String",
                Overwrite=True,
            )

            with self._lock:
                self.cache_times.pop(key, None)

            logger.info(f"Updated parameter: {key} = {value}")
            return True

        except ClientError as e:
            logger.error(f"Failed to set parameter {key}: {e}")
            return False
