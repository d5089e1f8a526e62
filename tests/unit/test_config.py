"""
Unit tests for runtime configuration.
"""

from __future__ import annotations

import logging

import pytest

from pyoffload.config import RuntimeConfig, get_config, set_config
from pyoffload.core.device import get_devices
from pyoffload.exceptions import InvalidConfigurationError


class TestRuntimeConfig:
    """Tests for RuntimeConfig."""

    def test_defaults(self) -> None:
        """Test default values."""
        config = RuntimeConfig()

        assert config.device_filter is None
        assert config.cpu_device_count == 1
        assert config.queue_workers == 4
        assert config.vectorize is True
        assert config.enable_profiling is False
        assert config.log_level == "WARNING"

    def test_invalid_cpu_device_count(self) -> None:
        """Test validation of cpu_device_count."""
        with pytest.raises(InvalidConfigurationError) as exc_info:
            RuntimeConfig(cpu_device_count=0)

        assert exc_info.value.parameter == "cpu_device_count"

    def test_invalid_queue_workers(self) -> None:
        """Test validation of queue_workers."""
        with pytest.raises(InvalidConfigurationError):
            RuntimeConfig(queue_workers=0)

    def test_log_level_normalized(self) -> None:
        """Test log level is upper-cased and mapped to logging."""
        config = RuntimeConfig(log_level="debug")

        assert config.log_level == "DEBUG"
        assert config.logging_level == logging.DEBUG

    def test_invalid_log_level(self) -> None:
        """Test unknown log levels are rejected."""
        with pytest.raises(InvalidConfigurationError):
            RuntimeConfig(log_level="chatty")

    def test_filter_terms(self) -> None:
        """Test filter strings are split into terms."""
        config = RuntimeConfig(device_filter=" GPU, cpu:1 ,")

        assert config.filter_terms == ["gpu", "cpu:1"]

    def test_empty_filter_is_none(self) -> None:
        """Test a blank filter means no filter."""
        config = RuntimeConfig(device_filter="  ")

        assert config.device_filter is None
        assert config.filter_terms == []


class TestFromEnv:
    """Tests for RuntimeConfig.from_env."""

    def test_empty_environment(self) -> None:
        """Test no variables gives defaults."""
        assert RuntimeConfig.from_env({}) == RuntimeConfig()

    def test_all_variables(self) -> None:
        """Test every variable is parsed."""
        config = RuntimeConfig.from_env(
            {
                "PYOFFLOAD_DEVICE_FILTER": "cpu",
                "PYOFFLOAD_CPU_DEVICES": "3",
                "PYOFFLOAD_QUEUE_WORKERS": "2",
                "PYOFFLOAD_VECTORIZE": "off",
                "PYOFFLOAD_PROFILING": "yes",
                "PYOFFLOAD_LOG_LEVEL": "info",
            }
        )

        assert config.device_filter == "cpu"
        assert config.cpu_device_count == 3
        assert config.queue_workers == 2
        assert config.vectorize is False
        assert config.enable_profiling is True
        assert config.log_level == "INFO"

    def test_bad_integer(self) -> None:
        """Test non-integer values raise."""
        with pytest.raises(InvalidConfigurationError) as exc_info:
            RuntimeConfig.from_env({"PYOFFLOAD_CPU_DEVICES": "two"})

        assert exc_info.value.parameter == "PYOFFLOAD_CPU_DEVICES"

    def test_bad_boolean(self) -> None:
        """Test non-boolean values raise."""
        with pytest.raises(InvalidConfigurationError):
            RuntimeConfig.from_env({"PYOFFLOAD_PROFILING": "maybe"})

    def test_reads_os_environ(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test os.environ is the default source."""
        monkeypatch.setenv("PYOFFLOAD_QUEUE_WORKERS", "7")

        assert RuntimeConfig.from_env().queue_workers == 7


class TestGlobalConfig:
    """Tests for get_config/set_config."""

    def test_set_and_get(self) -> None:
        """Test the global configuration can be replaced."""
        config = RuntimeConfig(queue_workers=2)
        set_config(config)

        assert get_config() is config

    def test_reset_rereads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test set_config(None) makes the environment authoritative again."""
        monkeypatch.setenv("PYOFFLOAD_QUEUE_WORKERS", "3")
        set_config(None)

        assert get_config().queue_workers == 3

    def test_set_config_refreshes_devices(self) -> None:
        """Test a new configuration takes effect on device discovery."""
        set_config(RuntimeConfig(cpu_device_count=3, device_filter="cpu"))

        devices = get_devices()

        assert [d.index for d in devices] == [0, 1, 2]
