"""Configuration management with validation.

Operator-wide defaults are loaded from the environment once at startup.
Per-resource settings (wait timeout, TLS verification, retry limit) live in
the resource spec and override these defaults where present.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass


class ConfigurationError(Exception):
    """Raised when operator or resource configuration is invalid.

    Configuration errors are detected before any HTTP request is sent.
    """

    pass


# Configuration constants with documented bounds
DEFAULT_WAIT_TIMEOUT_SECONDS = 30
MIN_WAIT_TIMEOUT_SECONDS = 1
MAX_WAIT_TIMEOUT_SECONDS = 3600

DEFAULT_NEXT_RECONCILE_SECONDS = 60
MIN_NEXT_RECONCILE_SECONDS = 1

DEFAULT_SECRET_STORE_TIMEOUT_SECONDS = 10

# Manifests are small YAML documents
MAX_MANIFEST_FILE_SIZE_BYTES = 1024 * 1024

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

ENV_PREFIX = "HTTP_OPERATOR_"


@dataclass(frozen=True)
class OperatorConfig:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-reconcile.
    """

    default_wait_timeout_seconds: float = DEFAULT_WAIT_TIMEOUT_SECONDS
    default_next_reconcile_seconds: float = DEFAULT_NEXT_RECONCILE_SECONDS
    secret_store_timeout_seconds: float = DEFAULT_SECRET_STORE_TIMEOUT_SECONDS
    max_manifest_bytes: int = MAX_MANIFEST_FILE_SIZE_BYTES

    log_level: str = "INFO"
    json_logs: bool = True

    def __post_init__(self) -> None:
        errors: list[str] = []

        if not (
            MIN_WAIT_TIMEOUT_SECONDS
            <= self.default_wait_timeout_seconds
            <= MAX_WAIT_TIMEOUT_SECONDS
        ):
            errors.append(
                f"{ENV_PREFIX}DEFAULT_WAIT_TIMEOUT must be between "
                f"{MIN_WAIT_TIMEOUT_SECONDS} and {MAX_WAIT_TIMEOUT_SECONDS} seconds"
            )

        if self.default_next_reconcile_seconds < MIN_NEXT_RECONCILE_SECONDS:
            errors.append(
                f"{ENV_PREFIX}DEFAULT_NEXT_RECONCILE must be at least "
                f"{MIN_NEXT_RECONCILE_SECONDS} second"
            )

        if self.secret_store_timeout_seconds <= 0:
            errors.append(f"{ENV_PREFIX}SECRET_STORE_TIMEOUT must be positive")

        if self.max_manifest_bytes < 1:
            errors.append(f"{ENV_PREFIX}MAX_MANIFEST_BYTES must be at least 1")

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(
                f"{ENV_PREFIX}LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: "
                f"{self.log_level}"
            )

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def log_level_value(self) -> int:
        """Numeric logging level for the configured level name."""
        return logging.getLevelName(self.log_level.upper())

    @classmethod
    def from_env(cls) -> OperatorConfig:
        """Load configuration from environment variables.

        Environment Variables:
            HTTP_OPERATOR_DEFAULT_WAIT_TIMEOUT: Request deadline in seconds when
                a resource does not set waitTimeout (default: 30)
            HTTP_OPERATOR_DEFAULT_NEXT_RECONCILE: Requeue interval in seconds for
                looping resources without nextReconcile (default: 60)
            HTTP_OPERATOR_SECRET_STORE_TIMEOUT: Deadline for secret store calls
                in seconds (default: 10)
            HTTP_OPERATOR_MAX_MANIFEST_BYTES: Largest manifest file accepted
                (default: 1 MiB)
            HTTP_OPERATOR_LOG_LEVEL: Root log level (default: INFO)
            HTTP_OPERATOR_JSON_LOGS: If "true", emit JSON log lines (default: true)
        """

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(ENV_PREFIX + key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{ENV_PREFIX}{key} must be a number: {value}") from e

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(ENV_PREFIX + key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{ENV_PREFIX}{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(ENV_PREFIX + key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            default_wait_timeout_seconds=get_float(
                "DEFAULT_WAIT_TIMEOUT", DEFAULT_WAIT_TIMEOUT_SECONDS
            ),
            default_next_reconcile_seconds=get_float(
                "DEFAULT_NEXT_RECONCILE", DEFAULT_NEXT_RECONCILE_SECONDS
            ),
            secret_store_timeout_seconds=get_float(
                "SECRET_STORE_TIMEOUT", DEFAULT_SECRET_STORE_TIMEOUT_SECONDS
            ),
            max_manifest_bytes=get_int("MAX_MANIFEST_BYTES", MAX_MANIFEST_FILE_SIZE_BYTES),
            log_level=os.environ.get(ENV_PREFIX + "LOG_LEVEL", "INFO"),
            json_logs=get_bool("JSON_LOGS", True),
        )
