"""
PyOffload - SYCL-style heterogeneous offload for Python.

Select a device, create a queue for it and submit command groups. Data
lives either in buffers, whose accessors let the runtime infer the order
of kernels and move data lazily, or in explicitly managed unified shared
memory (USM) allocations.

Core Features:
    - Device Selection: Score-based selectors and filter strings
    - Queues: Asynchronous command groups with events and async errors
    - Buffers: Accessor-driven dependencies and lazy host/device transfers
    - USM: Device, shared and host allocations with explicit memcpy
    - CPU Fallback: Full API compatibility when CUDA is unavailable

Quick Start:
    >>> import numpy as np
    >>> from pyoffload import Buffer, Queue, read_only, write_only
    >>>
    >>> a = np.arange(1024, dtype=np.float32)
    >>> r = np.zeros_like(a)
    >>> with Queue() as q, Buffer(a) as buf_a, Buffer(r) as buf_r:
    ...     def command_group(h):
    ...         acc_a = buf_a.get_access(h, read_only)
    ...         acc_r = buf_r.get_access(h, write_only)
    ...
    ...         def double(i):
    ...             acc_r[i] = acc_a[i] * 2
    ...
    ...         h.parallel_for(len(a), double)
    ...     q.submit(command_group)
"""

from pyoffload.config import RuntimeConfig, get_config, set_config
from pyoffload.core import (
    AccessMode,
    Accessor,
    Aspect,
    Buffer,
    BufferState,
    Device,
    DeviceType,
    Event,
    EventStatus,
    Handler,
    HostAccessor,
    Queue,
    USMAllocation,
    USMKind,
    accelerator_selector,
    aspect_selector,
    cpu_selector,
    default_selector,
    free,
    get_devices,
    get_two_devices,
    gpu_selector,
    malloc_device,
    malloc_host,
    malloc_shared,
    partition_range,
    read_only,
    read_write,
    select_device,
    split_range,
    usm_selector,
    write_only,
)
from pyoffload.decorators.kernel import kernel

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Configuration
    "RuntimeConfig",
    "get_config",
    "set_config",
    # Devices
    "Aspect",
    "Device",
    "DeviceType",
    "get_devices",
    "select_device",
    "default_selector",
    "gpu_selector",
    "cpu_selector",
    "accelerator_selector",
    "aspect_selector",
    "usm_selector",
    # Queues
    "Queue",
    "Handler",
    "Event",
    "EventStatus",
    # Buffers
    "Buffer",
    "BufferState",
    "Accessor",
    "HostAccessor",
    "AccessMode",
    "read_only",
    "write_only",
    "read_write",
    # USM
    "USMAllocation",
    "USMKind",
    "malloc_device",
    "malloc_shared",
    "malloc_host",
    "free",
    # Partitioning
    "split_range",
    "partition_range",
    "get_two_devices",
    # Decorators
    "kernel",
]
