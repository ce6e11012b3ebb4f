# Copyright 2025 ATP Project Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Inspector SDK Configuration

Configuration management for the Inspector SDK.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.avo.app"


class InspectorEnv(str, Enum):
    """Deployment environment the SDK reports from."""

    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"

    @property
    def allows_validation(self) -> bool:
        """Spec fetching, validation and value encryption only run outside production."""
        return self in (InspectorEnv.DEV, InspectorEnv.STAGING)


def _truthy(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


@dataclass
class InspectorConfig:
    """Configuration for the Inspector SDK."""

    # API Configuration
    api_key: str | None = None
    env: InspectorEnv | str | None = None
    version: str | None = None
    app_name: str = ""
    base_url: str = DEFAULT_BASE_URL

    # Encryption
    public_encryption_key: str | None = None

    # Request Configuration
    network_timeout: float = 10.0
    spec_fetch_timeout: float = 2.0

    # Batching Configuration
    batch_size: int = 30
    batch_flush_seconds: float | None = None

    # Logging Configuration
    should_log: bool | None = None
    log_level: str = "INFO"

    # Storage Configuration
    storage_path: str | None = None
    storage_suffix: str = ""

    def __post_init__(self):
        """Post-initialization validation and environment variable loading."""
        self._load_from_environment()
        self._apply_env_defaults()
        self._validate_config()

    def _load_from_environment(self):
        """Load configuration from environment variables."""
        if not self.api_key:
            self.api_key = os.getenv("INSPECTOR_API_KEY")

        if not self.env and os.getenv("INSPECTOR_ENV"):
            self.env = os.getenv("INSPECTOR_ENV")

        if not self.version:
            self.version = os.getenv("INSPECTOR_APP_VERSION")

        if not self.app_name and os.getenv("INSPECTOR_APP_NAME"):
            self.app_name = os.getenv("INSPECTOR_APP_NAME")

        if os.getenv("INSPECTOR_BASE_URL"):
            self.base_url = os.getenv("INSPECTOR_BASE_URL")

        if not self.public_encryption_key and os.getenv("INSPECTOR_PUBLIC_ENCRYPTION_KEY"):
            self.public_encryption_key = os.getenv("INSPECTOR_PUBLIC_ENCRYPTION_KEY")

        if os.getenv("INSPECTOR_SPEC_FETCH_TIMEOUT"):
            try:
                self.spec_fetch_timeout = float(os.getenv("INSPECTOR_SPEC_FETCH_TIMEOUT"))
            except ValueError:
                pass

        if os.getenv("INSPECTOR_BATCH_SIZE"):
            try:
                self.batch_size = int(os.getenv("INSPECTOR_BATCH_SIZE"))
            except ValueError:
                pass

        if self.should_log is None and os.getenv("INSPECTOR_SHOULD_LOG"):
            self.should_log = _truthy(os.getenv("INSPECTOR_SHOULD_LOG"))

        if os.getenv("INSPECTOR_LOG_LEVEL"):
            self.log_level = os.getenv("INSPECTOR_LOG_LEVEL")

        if not self.storage_path and os.getenv("INSPECTOR_STORAGE_PATH"):
            self.storage_path = os.getenv("INSPECTOR_STORAGE_PATH")

    def _apply_env_defaults(self):
        """Resolve the environment and the defaults that depend on it."""
        if not self.env:
            logger.warning("[Inspector] No env provided. Defaulting to dev.")
            self.env = InspectorEnv.DEV
        else:
            try:
                self.env = InspectorEnv(self.env)
            except ValueError:
                logger.warning(f"[Inspector] Unsupported env '{self.env}'. Defaulting to dev.")
                self.env = InspectorEnv.DEV

        if self.batch_flush_seconds is None:
            self.batch_flush_seconds = 1.0 if self.env == InspectorEnv.DEV else 30.0

        if self.should_log is None:
            self.should_log = self.env == InspectorEnv.DEV

    def _validate_config(self):
        """Validate configuration values."""
        if not self.api_key:
            raise ConfigurationError(
                "API key is required. Set INSPECTOR_API_KEY environment variable or pass api_key parameter."
            )

        if not self.version:
            raise ConfigurationError(
                "App version is required. Set INSPECTOR_APP_VERSION environment variable or pass version parameter."
            )

        if not self.base_url:
            raise ConfigurationError("Base URL is required.")

        if self.spec_fetch_timeout <= 0 or self.network_timeout <= 0:
            raise ConfigurationError("Timeouts must be positive.")

        if self.batch_size < 1:
            raise ConfigurationError("Batch size must be at least 1.")

        if self.batch_flush_seconds <= 0:
            raise ConfigurationError("Batch flush seconds must be positive.")

    @property
    def allows_validation(self) -> bool:
        return InspectorEnv(self.env).allows_validation

    @classmethod
    def from_file(cls, config_file: str) -> "InspectorConfig":
        """Load configuration from a file."""
        import json

        import yaml

        try:
            with open(config_file) as f:
                if config_file.endswith(".json"):
                    config_data = json.load(f)
                elif config_file.endswith((".yml", ".yaml")):
                    config_data = yaml.safe_load(f)
                else:
                    raise ConfigurationError(f"Unsupported config file format: {config_file}")

            return cls(**(config_data or {}))

        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {config_file}")
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Invalid configuration file format: {e}")

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "api_key": "***" if self.api_key else None,  # Mask API key
            "env": InspectorEnv(self.env).value,
            "version": self.version,
            "app_name": self.app_name,
            "base_url": self.base_url,
            "public_encryption_key": self.public_encryption_key,
            "network_timeout": self.network_timeout,
            "spec_fetch_timeout": self.spec_fetch_timeout,
            "batch_size": self.batch_size,
            "batch_flush_seconds": self.batch_flush_seconds,
            "should_log": self.should_log,
            "log_level": self.log_level,
            "storage_path": self.storage_path,
            "storage_suffix": self.storage_suffix,
        }

    def update(self, **kwargs):
        """Update configuration with new values."""
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)
            else:
                raise ConfigurationError(f"Unknown configuration parameter: {key}")

        self._apply_env_defaults()
        self._validate_config()
