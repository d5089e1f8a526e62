"""
Backend base classes and interfaces.

Defines the abstract interface that all backends must implement.
"""

from __future__ import annotations

import itertools
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, TypeVar

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray


T = TypeVar("T", bound=np.generic)


class BackendType(Enum):
    """Type of compute backend."""

    CPU = auto()
    CUDA = auto()


@dataclass
class KernelExecutionResult:
    """Result of a kernel execution."""

    success: bool
    execution_time_ms: float
    work_items: int = 0
    error: Exception | None = None


class Backend(ABC):
    """
    Abstract base class for compute backends.

    All backends must implement this interface to provide
    a consistent API for kernel execution and memory management.
    Arrays returned by ``allocate`` are "device arrays" for this backend;
    host arrays are always NumPy arrays.
    """

    @property
    @abstractmethod
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        ...

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Check if this backend is available."""
        ...

    @property
    @abstractmethod
    def device_count(self) -> int:
        """Get the number of available devices."""
        ...

    @property
    @abstractmethod
    def array_module(self) -> Any:
        """Get the array module (numpy or cupy) used for device arrays."""
        ...

    @abstractmethod
    def allocate(
        self,
        shape: tuple[int, ...],
        dtype: np.dtype[T] | type[T],
    ) -> Any:
        """
        Allocate an uninitialized device array.

        Args:
            shape: Shape of the array.
            dtype: Data type.

        Returns:
            Allocated array.
        """
        ...

    @abstractmethod
    def allocate_zeros(
        self,
        shape: tuple[int, ...],
        dtype: np.dtype[T] | type[T],
    ) -> Any:
        """Allocate a zero-filled device array."""
        ...

    @abstractmethod
    def free(self, array: Any) -> None:
        """
        Free an array allocated by this backend.

        Args:
            array: Array to free.
        """
        ...

    @abstractmethod
    def copy_to_device(self, host_array: NDArray[T]) -> Any:
        """
        Copy a host array into a new device array.

        Args:
            host_array: Source host array.

        Returns:
            Device array.
        """
        ...

    @abstractmethod
    def copy_to_host(self, device_array: Any) -> NDArray[T]:
        """
        Copy a device array into a new host array.

        Args:
            device_array: Source device array.

        Returns:
            Host array.
        """
        ...

    @abstractmethod
    def copy_from_host(self, device_array: Any, host_array: NDArray[T]) -> None:
        """
        Overwrite an existing device array with host data.

        Args:
            device_array: Destination device array.
            host_array: Source host array of the same shape.
        """
        ...

    @abstractmethod
    def memcpy(self, dest: Any, src: Any, nbytes: int) -> None:
        """
        Copy raw bytes between arrays.

        Either side may be a host (NumPy) array or a device array of
        this backend.

        Args:
            dest: Destination array.
            src: Source array.
            nbytes: Number of bytes to copy from the start of ``src``.
        """
        ...

    @abstractmethod
    def synchronize(self) -> None:
        """Synchronize all pending operations."""
        ...

    @abstractmethod
    def execute_kernel(
        self,
        kernel: Callable[..., Any],
        global_range: tuple[int, ...],
        *,
        vectorize: bool = True,
    ) -> KernelExecutionResult:
        """
        Execute a data-parallel kernel on this backend.

        Args:
            kernel: Kernel function taking a work-item index.
            global_range: Number of work items in each dimension.
            vectorize: Call the kernel once with index arrays instead of
                once per work item.

        Returns:
            Execution result.
        """
        ...

    def _run_kernel(
        self,
        kernel: Callable[..., Any],
        global_range: tuple[int, ...],
        vectorize: bool,
    ) -> KernelExecutionResult:
        """Dispatch a kernel over ``global_range`` using this backend's array module."""
        work_items = int(np.prod(global_range)) if global_range else 1
        start_time = time.perf_counter()

        try:
            if work_items > 0:
                if vectorize:
                    kernel(vector_index(self.array_module, global_range))
                else:
                    for idx in item_indices(global_range):
                        kernel(idx)

            end_time = time.perf_counter()
            return KernelExecutionResult(
                success=True,
                execution_time_ms=(end_time - start_time) * 1000,
                work_items=work_items,
            )

        except Exception as e:
            end_time = time.perf_counter()
            return KernelExecutionResult(
                success=False,
                execution_time_ms=(end_time - start_time) * 1000,
                work_items=work_items,
                error=e,
            )


def vector_index(xp: Any, global_range: tuple[int, ...]) -> Any:
    """
    Build the index handed to a vectorized kernel.

    A 1-D range yields ``arange(n)`` so ``a[i]`` addresses every element;
    an n-D range yields a tuple of flattened coordinate arrays.
    """
    if len(global_range) == 1:
        return xp.arange(global_range[0])
    grid = xp.indices(global_range)
    return tuple(axis.ravel() for axis in grid)


def item_indices(global_range: tuple[int, ...]) -> Any:
    """Iterate work-item indices: ints for 1-D ranges, tuples otherwise."""
    if len(global_range) == 1:
        return iter(range(global_range[0]))
    return itertools.product(*(range(extent) for extent in global_range))


def byte_view(array: Any) -> Any:
    """Get a flat ``uint8`` view of a contiguous array (NumPy or CuPy)."""
    return array.reshape(-1).view("uint8")
