"""
Unified shared memory (USM) allocations.

USM memory is managed explicitly: the program allocates it against a
queue, moves data with :meth:`Queue.memcpy` and frees it. No dependency
tracking is performed; ordering comes from events and waits.

Three kinds are supported:

- DEVICE: lives on the device, dereferenceable only inside kernels
  running on that device.
- SHARED: accessible from the host and from kernels on its device.
- HOST: host memory (page-locked for CUDA devices), accessible from the
  host and from kernels on CPU devices.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Any

import numpy as np

from pyoffload.backends.base import BackendType
from pyoffload.core.device import Aspect
from pyoffload.exceptions import USMAccessError, USMError, USMFreedError

if TYPE_CHECKING:
    from numpy.typing import DTypeLike

    from pyoffload.core.device import Device
    from pyoffload.core.queue import Queue

logger = logging.getLogger(__name__)


_kernel_context = threading.local()


@contextlib.contextmanager
def kernel_scope(device: Device) -> Iterator[None]:
    """Mark the current thread as running a kernel on ``device``."""
    previous = getattr(_kernel_context, "device", None)
    _kernel_context.device = device
    try:
        yield
    finally:
        _kernel_context.device = previous


def current_kernel_device() -> Device | None:
    """Get the device of the kernel running on this thread, if any."""
    return getattr(_kernel_context, "device", None)


class USMKind(Enum):
    """Kind of USM allocation."""

    DEVICE = auto()
    SHARED = auto()
    HOST = auto()


_REQUIRED_ASPECT = {
    USMKind.DEVICE: Aspect.USM_DEVICE_ALLOCATIONS,
    USMKind.SHARED: Aspect.USM_SHARED_ALLOCATIONS,
    USMKind.HOST: Aspect.USM_HOST_ALLOCATIONS,
}


@dataclass
class USMStatistics:
    """USM usage of a queue."""

    live_allocations: int = 0
    live_bytes: int = 0
    peak_bytes: int = 0
    total_allocations: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def live_mb(self) -> float:
        """Get live memory in MB."""
        return self.live_bytes / (1024 * 1024)

    @property
    def peak_mb(self) -> float:
        """Get peak memory in MB."""
        return self.peak_bytes / (1024 * 1024)

    def record_alloc(self, nbytes: int) -> None:
        """Record a new allocation."""
        with self._lock:
            self.live_allocations += 1
            self.total_allocations += 1
            self.live_bytes += nbytes
            self.peak_bytes = max(self.peak_bytes, self.live_bytes)

    def record_free(self, nbytes: int) -> None:
        """Record a released allocation."""
        with self._lock:
            self.live_allocations -= 1
            self.live_bytes -= nbytes

    def to_dict(self) -> dict[str, int]:
        """Convert to dictionary."""
        return {
            "live_allocations": self.live_allocations,
            "live_bytes": self.live_bytes,
            "peak_bytes": self.peak_bytes,
            "total_allocations": self.total_allocations,
        }


class USMAllocation:
    """
    A typed USM allocation of ``count`` elements.

    Indexing goes through access checks so misuse (host dereference of
    device memory, use after free) fails loudly instead of silently
    reading stale data.
    """

    def __init__(
        self,
        array: Any,
        kind: USMKind,
        device: Device,
        queue: Queue | None = None,
    ) -> None:
        self._array = array
        self._kind = kind
        self._device = device
        self._queue = queue
        self._count = int(array.shape[0])
        self._dtype = np.dtype(array.dtype)
        self._freed = False

    @property
    def kind(self) -> USMKind:
        """Get the allocation kind."""
        return self._kind

    @property
    def device(self) -> Device:
        """Get the device the allocation is associated with."""
        return self._device

    @property
    def count(self) -> int:
        """Get the number of elements."""
        return self._count

    @property
    def dtype(self) -> np.dtype[Any]:
        """Get the element type."""
        return self._dtype

    @property
    def nbytes(self) -> int:
        """Get the size in bytes."""
        return self._count * self._dtype.itemsize

    @property
    def is_freed(self) -> bool:
        """Check if the allocation has been freed."""
        return self._freed

    @property
    def array(self) -> Any:
        """
        Get the backing array without access checks.

        Raises:
            USMFreedError: If the allocation was freed.
        """
        if self._freed:
            raise USMFreedError()
        return self._array

    def _check_access(self) -> None:
        if self._freed:
            raise USMFreedError()

        device = current_kernel_device()
        kind = self._kind.name.lower()

        if device is None:
            if self._kind == USMKind.DEVICE:
                raise USMAccessError(
                    kind,
                    f"it lives on {self._device} and is only accessible inside kernels "
                    "running there; use Queue.memcpy to move data to the host",
                )
            return

        if self._kind == USMKind.HOST:
            if device.backend_type != BackendType.CPU:
                raise USMAccessError(kind, f"host memory is not addressable from {device}")
            return

        if device != self._device:
            raise USMAccessError(kind, f"it belongs to {self._device}, not {device}")

    def __getitem__(self, key: Any) -> Any:
        self._check_access()
        return self._array[key]

    def __setitem__(self, key: Any, value: Any) -> None:
        self._check_access()
        self._array[key] = value

    def __len__(self) -> int:
        return self._count

    def to_numpy(self) -> np.ndarray[Any, Any]:
        """
        Copy the contents of a host-accessible allocation to a NumPy array.

        Raises:
            USMAccessError: For device allocations.
        """
        self._check_access()
        return self._device.backend.copy_to_host(self._array)

    def _release(self) -> None:
        if self._freed:
            raise USMFreedError()
        self._device.backend.free(self._array)
        self._array = None
        self._freed = True

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"USMAllocation(kind={self._kind.name}, count={self._count}, "
            f"dtype={self._dtype}, device={self._device}, freed={self._freed})"
        )


def _malloc(kind: USMKind, count: int, queue: Queue, dtype: DTypeLike) -> USMAllocation:
    if count < 0:
        raise ValueError(f"count must be >= 0, got {count}")

    device = queue.device
    aspect = _REQUIRED_ASPECT[kind]
    if not device.has(aspect):
        raise USMError(f"{device} does not support {aspect.value}")

    backend = device.backend
    shape = (count,)
    if kind == USMKind.DEVICE or device.backend_type == BackendType.CPU:
        array = backend.allocate(shape, dtype)
    elif kind == USMKind.SHARED:
        array = backend.allocate_managed(shape, dtype)  # type: ignore[attr-defined]
    else:
        array = backend.allocate_pinned(shape, dtype)  # type: ignore[attr-defined]

    allocation = USMAllocation(array, kind, device, queue)
    queue.usm_statistics.record_alloc(allocation.nbytes)
    logger.debug(f"Allocated {allocation}")
    return allocation


def malloc_device(count: int, queue: Queue, dtype: DTypeLike = np.float32) -> USMAllocation:
    """
    Allocate device USM memory.

    Args:
        count: Number of elements.
        queue: Queue whose device owns the memory.
        dtype: Element type.

    Returns:
        The allocation.

    Raises:
        USMError: If the device does not support device allocations.
    """
    return _malloc(USMKind.DEVICE, count, queue, dtype)


def malloc_shared(count: int, queue: Queue, dtype: DTypeLike = np.float32) -> USMAllocation:
    """Allocate shared USM memory accessible from the host and the queue's device."""
    return _malloc(USMKind.SHARED, count, queue, dtype)


def malloc_host(count: int, queue: Queue, dtype: DTypeLike = np.float32) -> USMAllocation:
    """Allocate host USM memory."""
    return _malloc(USMKind.HOST, count, queue, dtype)


def free(allocation: USMAllocation, queue: Queue | None = None) -> None:
    """
    Free a USM allocation.

    Args:
        allocation: Allocation to free.
        queue: Queue used for the allocation (defaults to the allocating queue).

    Raises:
        USMFreedError: If the allocation was already freed.
    """
    owner = allocation._queue if allocation._queue is not None else queue
    nbytes = allocation.nbytes
    allocation._release()
    if owner is not None:
        owner.usm_statistics.record_free(nbytes)
    logger.debug(f"Freed {nbytes} bytes of {allocation.kind.name} USM on {allocation.device}")
