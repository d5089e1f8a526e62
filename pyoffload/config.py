"""
Runtime configuration.

Settings are read once from ``PYOFFLOAD_*`` environment variables and can
be replaced programmatically with :func:`set_config`.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Mapping
from dataclasses import dataclass

from pyoffload.exceptions import InvalidConfigurationError

ENV_PREFIX = "PYOFFLOAD_"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


@dataclass
class RuntimeConfig:
    """Process-wide runtime configuration."""

    device_filter: str | None = None  # e.g. "gpu", "cpu,cuda:0"
    cpu_device_count: int = 1
    queue_workers: int = 4
    vectorize: bool = True  # call kernels once with index arrays
    enable_profiling: bool = False
    log_level: str = "WARNING"

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.cpu_device_count < 1:
            raise InvalidConfigurationError(
                "cpu_device_count", self.cpu_device_count, "must be >= 1"
            )
        if self.queue_workers < 1:
            raise InvalidConfigurationError("queue_workers", self.queue_workers, "must be >= 1")
        self.log_level = self.log_level.upper()
        if self.log_level not in _LOG_LEVELS:
            raise InvalidConfigurationError(
                "log_level", self.log_level, f"must be one of {', '.join(_LOG_LEVELS)}"
            )
        if self.device_filter is not None:
            self.device_filter = self.device_filter.strip().lower() or None

    @property
    def filter_terms(self) -> list[str]:
        """Get the device filter split into its comma-separated terms."""
        if not self.device_filter:
            return []
        return [term.strip() for term in self.device_filter.split(",") if term.strip()]

    @property
    def logging_level(self) -> int:
        """Get the numeric :mod:`logging` level."""
        return getattr(logging, self.log_level)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RuntimeConfig:
        """
        Build a configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``).

        Returns:
            Parsed configuration.

        Raises:
            InvalidConfigurationError: If a variable cannot be parsed.
        """
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}

        value = env.get(ENV_PREFIX + "DEVICE_FILTER")
        if value is not None:
            kwargs["device_filter"] = value

        for name, var in (("cpu_device_count", "CPU_DEVICES"), ("queue_workers", "QUEUE_WORKERS")):
            value = env.get(ENV_PREFIX + var)
            if value is not None:
                kwargs[name] = _parse_int(ENV_PREFIX + var, value)

        for name, var in (("vectorize", "VECTORIZE"), ("enable_profiling", "PROFILING")):
            value = env.get(ENV_PREFIX + var)
            if value is not None:
                kwargs[name] = _parse_bool(ENV_PREFIX + var, value)

        value = env.get(ENV_PREFIX + "LOG_LEVEL")
        if value is not None:
            kwargs["log_level"] = value

        return cls(**kwargs)  # type: ignore[arg-type]


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError as e:
        raise InvalidConfigurationError(name, value, "expected an integer") from e


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise InvalidConfigurationError(name, value, "expected a boolean")


_config: RuntimeConfig | None = None
_config_lock = threading.Lock()


def get_config() -> RuntimeConfig:
    """Get the global configuration, reading the environment on first use."""
    global _config
    with _config_lock:
        if _config is None:
            _config = RuntimeConfig.from_env()
        return _config


def set_config(config: RuntimeConfig | None) -> None:
    """
    Replace the global configuration.

    Passing ``None`` makes the next :func:`get_config` call re-read the
    environment. The device registry is refreshed so a new device filter
    takes effect immediately.

    Args:
        config: New configuration or None.
    """
    global _config
    with _config_lock:
        _config = config

    from pyoffload.core.device import DeviceRegistry

    DeviceRegistry.reset()
