"""
Compute device abstraction.

Provides device discovery, filtering and properties access. At least one
CPU device is always present; CUDA GPUs are added when CuPy can see them.
"""

from __future__ import annotations

import logging
import os
import platform
import threading
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any

from pyoffload.backends.base import Backend, BackendType
from pyoffload.backends.cpu import CPUBackend
from pyoffload.config import get_config
from pyoffload.exceptions import BackendNotAvailableError, DeviceNotFoundError

logger = logging.getLogger(__name__)


class DeviceType(Enum):
    """Type of compute device."""

    CPU = auto()
    GPU = auto()
    ACCELERATOR = auto()


class Aspect(Enum):
    """Optional device capabilities."""

    CPU = "cpu"
    GPU = "gpu"
    ACCELERATOR = "accelerator"
    FP16 = "fp16"
    FP64 = "fp64"
    USM_DEVICE_ALLOCATIONS = "usm_device_allocations"
    USM_HOST_ALLOCATIONS = "usm_host_allocations"
    USM_SHARED_ALLOCATIONS = "usm_shared_allocations"


_TYPE_SCORES = {
    DeviceType.GPU: 500,
    DeviceType.ACCELERATOR: 400,
    DeviceType.CPU: 300,
}


@dataclass(frozen=True)
class Device:
    """
    A compute device.

    Devices compare equal when they refer to the same backend ordinal, so
    instances returned by separate enumerations are interchangeable.
    """

    name: str
    device_type: DeviceType
    backend_type: BackendType
    index: int
    aspects: frozenset[Aspect]
    global_mem_size: int = 0  # bytes
    max_work_group_size: int = 1
    max_compute_units: int = 1
    backend: Backend = field(compare=False, hash=False, repr=False, default=None)  # type: ignore[assignment]

    def has(self, aspect: Aspect | str) -> bool:
        """Check whether the device supports an aspect."""
        if isinstance(aspect, str):
            aspect = Aspect(aspect)
        return aspect in self.aspects

    @property
    def is_cpu(self) -> bool:
        """Check if this is a CPU device."""
        return self.device_type == DeviceType.CPU

    @property
    def is_gpu(self) -> bool:
        """Check if this is a GPU device."""
        return self.device_type == DeviceType.GPU

    @property
    def is_accelerator(self) -> bool:
        """Check if this is an accelerator device."""
        return self.device_type == DeviceType.ACCELERATOR

    @property
    def filter_string(self) -> str:
        """Get the filter string that selects exactly this device (e.g. ``cuda:0``)."""
        return f"{self.backend_type.name.lower()}:{self.index}"

    @property
    def default_selector_score(self) -> int:
        """Get the score the default selector assigns to this device."""
        return _TYPE_SCORES[self.device_type]

    @property
    def global_mem_size_gb(self) -> float:
        """Get global memory size in GB."""
        return self.global_mem_size / (1024**3)

    def info(self) -> dict[str, Any]:
        """Get a dictionary describing the device."""
        return {
            "name": self.name,
            "device_type": self.device_type.name,
            "backend": self.backend_type.name,
            "filter_string": self.filter_string,
            "global_mem_size": self.global_mem_size,
            "max_work_group_size": self.max_work_group_size,
            "max_compute_units": self.max_compute_units,
            "aspects": sorted(aspect.value for aspect in self.aspects),
        }

    def print_device_info(self) -> None:
        """Print a human-readable device summary."""
        for key, value in self.info().items():
            print(f"    {key:<20}{value}")

    def __str__(self) -> str:
        return f"{self.name} [{self.filter_string}]"


def _cpu_name() -> str:
    name = platform.processor() or platform.machine()
    return name or "CPU"


def _host_memory() -> int:
    try:
        return os.sysconf("SC_PAGE_SIZE") * os.sysconf("SC_PHYS_PAGES")
    except (AttributeError, OSError, ValueError):
        return 0


class DeviceRegistry:
    """
    Registry of available compute devices.

    Singleton: discovery happens once per configuration. Call
    :meth:`reset` after changing the configuration to rediscover.
    """

    _instance: DeviceRegistry | None = None
    _initialized: bool = False
    _lock = threading.Lock()

    def __new__(cls) -> DeviceRegistry:
        """Singleton pattern for the registry."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
            return cls._instance

    def __init__(self) -> None:
        """Initialize the registry."""
        if DeviceRegistry._initialized:
            return

        self._all_devices: list[Device] = []
        self._devices: list[Device] = []
        self._discover_devices()
        self._devices = self._apply_filter(self._all_devices)
        DeviceRegistry._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Forget discovered devices so the next access rediscovers them."""
        with cls._lock:
            cls._instance = None
            cls._initialized = False

    def _discover_devices(self) -> None:
        """Discover available compute devices."""
        config = get_config()

        cpu_backend = CPUBackend(device_count=config.cpu_device_count)
        cpu_aspects = frozenset(
            {
                Aspect.CPU,
                Aspect.FP16,
                Aspect.FP64,
                Aspect.USM_DEVICE_ALLOCATIONS,
                Aspect.USM_HOST_ALLOCATIONS,
                Aspect.USM_SHARED_ALLOCATIONS,
            }
        )
        for i in range(config.cpu_device_count):
            self._all_devices.append(
                Device(
                    name=_cpu_name(),
                    device_type=DeviceType.CPU,
                    backend_type=BackendType.CPU,
                    index=i,
                    aspects=cpu_aspects,
                    global_mem_size=_host_memory(),
                    max_work_group_size=8192,
                    max_compute_units=os.cpu_count() or 1,
                    backend=cpu_backend,
                )
            )

        # Try to discover CUDA devices
        from pyoffload.backends.cuda import CUDABackend, cuda_device_count, cuda_device_properties

        for i in range(cuda_device_count()):
            try:
                props = cuda_device_properties(i)
                backend = CUDABackend(device_id=i)
            except BackendNotAvailableError as e:
                logger.warning(f"Skipping CUDA device {i}: {e}")
                continue

            aspects = {
                Aspect.GPU,
                Aspect.FP16,
                Aspect.FP64,
                Aspect.USM_DEVICE_ALLOCATIONS,
                Aspect.USM_HOST_ALLOCATIONS,
            }
            if props["managed_memory"]:
                aspects.add(Aspect.USM_SHARED_ALLOCATIONS)

            self._all_devices.append(
                Device(
                    name=props["name"],
                    device_type=DeviceType.GPU,
                    backend_type=BackendType.CUDA,
                    index=i,
                    aspects=frozenset(aspects),
                    global_mem_size=props["total_memory"],
                    max_work_group_size=props["max_threads_per_block"],
                    max_compute_units=props["multiprocessor_count"],
                    backend=backend,
                )
            )

        logger.debug(f"Discovered devices: {[str(d) for d in self._all_devices]}")

    def _apply_filter(self, devices: list[Device]) -> list[Device]:
        terms = get_config().filter_terms
        if not terms:
            return list(devices)

        selected = [d for d in devices if any(matches_filter(d, term) for term in terms)]
        logger.debug(f"Device filter {terms} kept {[str(d) for d in selected]}")
        return selected

    @property
    def devices(self) -> list[Device]:
        """Get all devices visible through the configured filter."""
        return self._devices.copy()

    @property
    def device_count(self) -> int:
        """Get the number of visible devices."""
        return len(self._devices)

    def get_device(self, key: int | str) -> Device:
        """
        Get a device by position or filter string.

        Args:
            key: Index into :attr:`devices`, or a filter term such as
                ``"gpu"`` or ``"cpu:1"``.

        Raises:
            DeviceNotFoundError: If nothing matches.
        """
        if isinstance(key, int):
            if key < 0 or key >= len(self._devices):
                raise DeviceNotFoundError(
                    f"index {key}", [str(d) for d in self._devices]
                )
            return self._devices[key]

        terms = [term.strip().lower() for term in key.split(",") if term.strip()]
        for term in terms:
            for device in self._devices:
                if matches_filter(device, term):
                    return device
        raise DeviceNotFoundError(f"filter '{key}'", [str(d) for d in self._devices])

    def __repr__(self) -> str:
        """String representation."""
        return f"DeviceRegistry(devices={[str(d) for d in self._devices]})"


def matches_filter(device: Device, term: str) -> bool:
    """
    Check a device against one filter term.

    Terms are a device type (``cpu``, ``gpu``, ``accelerator``), a backend
    name (``cuda``), or ``<backend-or-type>:<index>``.
    """
    name, _, index = term.partition(":")
    kinds = {device.device_type.name.lower(), device.backend_type.name.lower()}
    if name not in kinds and name != "*":
        return False
    if not index:
        return True
    try:
        return device.index == int(index)
    except ValueError:
        return False


def get_registry() -> DeviceRegistry:
    """Get the global device registry."""
    return DeviceRegistry()


def get_devices(
    device_type: DeviceType | str | None = None,
    backend: BackendType | str | None = None,
) -> list[Device]:
    """
    Get the available devices, optionally narrowed by type and backend.

    Args:
        device_type: Keep only devices of this type.
        backend: Keep only devices of this backend.

    Returns:
        Devices in enumeration order.
    """
    devices = get_registry().devices

    if device_type is not None:
        if isinstance(device_type, str):
            device_type = DeviceType[device_type.upper()]
        devices = [d for d in devices if d.device_type == device_type]

    if backend is not None:
        if isinstance(backend, str):
            backend = BackendType[backend.upper()]
        devices = [d for d in devices if d.backend_type == backend]

    return devices
