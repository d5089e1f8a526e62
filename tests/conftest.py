"""
Pytest configuration and shared fixtures.
"""

from __future__ import annotations

from collections.abc import Generator

import numpy as np
import pytest

from pyoffload.config import RuntimeConfig, set_config
from pyoffload.core.device import Device, get_devices
from pyoffload.core.queue import Queue
from pyoffload.core.selectors import select_device

# Configure pytest-asyncio
pytest_plugins = ["pytest_asyncio"]


@pytest.fixture(autouse=True)
def runtime_config() -> Generator[RuntimeConfig, None, None]:
    """Give every test default settings and a freshly discovered device list."""
    config = RuntimeConfig()
    set_config(config)
    yield config
    set_config(None)


@pytest.fixture
def cpu_device() -> Device:
    """Provide the first CPU device."""
    return select_device("cpu")


@pytest.fixture
def two_cpu_devices() -> list[Device]:
    """Expose two CPU devices and provide them."""
    set_config(RuntimeConfig(cpu_device_count=2, device_filter="cpu"))
    return get_devices()


@pytest.fixture
def queue(cpu_device: Device) -> Generator[Queue, None, None]:
    """Provide a CPU queue, closed after the test."""
    q = Queue(cpu_device)
    yield q
    q.close()


@pytest.fixture
def profiling_queue(cpu_device: Device) -> Generator[Queue, None, None]:
    """Provide a CPU queue with profiling enabled."""
    q = Queue(cpu_device, enable_profiling=True)
    yield q
    q.close()


@pytest.fixture
def host_data() -> np.ndarray:
    """Provide 0..15 as float32."""
    return np.arange(16, dtype=np.float32)


# Markers for CUDA tests
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "cuda: mark test as requiring CUDA"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_collection_modifyitems(
    config: pytest.Config,
    items: list[pytest.Item],
) -> None:
    """Skip CUDA tests if CUDA is not available."""
    cuda_available = False
    try:
        import cupy as cp

        cuda_available = cp.cuda.runtime.getDeviceCount() > 0
    except Exception:
        pass

    if not cuda_available:
        skip_cuda = pytest.mark.skip(reason="CUDA not available")
        for item in items:
            if "cuda" in item.keywords:
                item.add_marker(skip_cuda)
