"""
Core abstractions for PyOffload.
"""

from pyoffload.core.access import AccessMode, read_only, read_write, write_only
from pyoffload.core.accessor import Accessor, HostAccessor
from pyoffload.core.buffer import Buffer, BufferState, TransferStatistics
from pyoffload.core.device import (
    Aspect,
    Device,
    DeviceRegistry,
    DeviceType,
    get_devices,
    get_registry,
)
from pyoffload.core.event import Event, EventStatus, KernelExecution, ProfilingInfo
from pyoffload.core.handler import Handler, normalize_range
from pyoffload.core.partition import get_two_devices, partition_range, split_range
from pyoffload.core.queue import Queue
from pyoffload.core.selectors import (
    accelerator_selector,
    aspect_selector,
    cpu_selector,
    default_selector,
    gpu_selector,
    select_device,
    usm_selector,
)
from pyoffload.core.usm import (
    USMAllocation,
    USMKind,
    USMStatistics,
    free,
    malloc_device,
    malloc_host,
    malloc_shared,
)

__all__ = [
    # Devices
    "Aspect",
    "Device",
    "DeviceRegistry",
    "DeviceType",
    "get_devices",
    "get_registry",
    # Selectors
    "accelerator_selector",
    "aspect_selector",
    "cpu_selector",
    "default_selector",
    "gpu_selector",
    "select_device",
    "usm_selector",
    # Queues and events
    "Queue",
    "Handler",
    "normalize_range",
    "Event",
    "EventStatus",
    "KernelExecution",
    "ProfilingInfo",
    # Buffers
    "AccessMode",
    "Accessor",
    "HostAccessor",
    "Buffer",
    "BufferState",
    "TransferStatistics",
    "read_only",
    "read_write",
    "write_only",
    # USM
    "USMAllocation",
    "USMKind",
    "USMStatistics",
    "free",
    "malloc_device",
    "malloc_host",
    "malloc_shared",
    # Partitioning
    "get_two_devices",
    "partition_range",
    "split_range",
]
