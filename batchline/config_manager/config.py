"""Resolve configuration from a YAML file, environment, and explicit overrides."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from batchline.config_manager.analytics_config import AnalyticsConfig
from batchline.config_manager.helpers import parse_bytes
from batchline.const import CONFIG_DIR, CONFIG_FILE

logger = logging.getLogger(__name__)

_ENV_MAP: dict[str, str] = {
    "write_key": "BATCHLINE_WRITE_KEY",
    "api_host": "BATCHLINE_API_HOST",
    "cdn_host": "BATCHLINE_CDN_HOST",
    "storage_path": "BATCHLINE_STORAGE_PATH",
    "base_filename": "BATCHLINE_BASE_FILENAME",
    "max_file_size": "BATCHLINE_MAX_FILE_SIZE",
    "max_batch_bytes": "BATCHLINE_MAX_BATCH_BYTES",
    "flush_count": "BATCHLINE_FLUSH_COUNT",
    "timeout": "BATCHLINE_TIMEOUT",
}

_SIZE_FIELDS = {"max_file_size", "max_batch_bytes"}


class ConfigLoadError(Exception):
    """Raised when the configuration file exists but cannot be read."""


class ConfigManager:
    """Build the effective configuration from file, env and caller overrides.

    Later sources win: file < environment < ``overrides``.
    """

    def __init__(self, config_path: Path | None = None) -> None:
        """Initialise ConfigManager.

        Args:
            config_path: YAML file to read. Defaults to ``~/.batchline/config.yaml``.
        """
        self.config_path = config_path or CONFIG_DIR / CONFIG_FILE

    def _read_file(self) -> dict[str, Any]:
        if not self.config_path.exists():
            return {}
        try:
            with self.config_path.open(encoding="utf-8") as fh:
                loaded = yaml.safe_load(fh)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigLoadError(
                f"Failed to read config file {self.config_path}: {e}"
            ) from e

        if loaded is None:
            return {}
        if not isinstance(loaded, dict):
            raise ConfigLoadError(
                f"Config file {self.config_path} must contain a mapping"
            )
        return loaded

    def _read_env_overrides(self) -> dict[str, Any]:
        """Read configuration overrides from environment variables.

        Values that fail to parse are skipped with a warning.
        """
        overrides: dict[str, Any] = {}

        for field_name, env_var_name in _ENV_MAP.items():
            env_value = os.getenv(env_var_name)
            if env_value is None:
                continue

            try:
                if field_name in _SIZE_FIELDS:
                    overrides[field_name] = parse_bytes(env_value)
                elif field_name == "flush_count":
                    overrides[field_name] = int(env_value)
                elif field_name == "timeout":
                    overrides[field_name] = float(env_value)
                else:
                    overrides[field_name] = env_value
            except ValueError:
                logger.warning("Ignoring invalid %s=%r", env_var_name, env_value)

        return overrides

    def resolve_effective_config(
        self, overrides: dict[str, Any] | None = None
    ) -> AnalyticsConfig:
        """Resolve the effective configuration for this process.

        Args:
            overrides: Caller-supplied values taking precedence over everything.

        Returns:
            The validated ``AnalyticsConfig``.

        Raises:
            ConfigLoadError: If the config file is unreadable.
            pydantic.ValidationError: If the merged values are invalid,
                e.g. no write key was supplied anywhere.
        """
        merged: dict[str, Any] = {}
        merged.update(self._read_file())
        merged.update(self._read_env_overrides())
        if overrides:
            merged.update(overrides)
        return AnalyticsConfig.model_validate(merged)
