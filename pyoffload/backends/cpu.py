"""
CPU backend for PyOffload.

Provides a CPU-based implementation of the backend interface.
Device memory is a separate NumPy allocation so host/device transfers
are real copies, which keeps buffer coherence observable without a GPU.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

import numpy as np

from pyoffload.backends.base import Backend, BackendType, KernelExecutionResult, byte_view

if TYPE_CHECKING:
    from numpy.typing import NDArray


T = TypeVar("T", bound=np.generic)

logger = logging.getLogger(__name__)


class CPUBackend(Backend):
    """
    CPU backend implementation.

    Executes kernels on the CPU using NumPy operations.

    Example:
        >>> backend = CPUBackend()
        >>> arr = backend.allocate((1024,), np.float32)
        >>> result = backend.execute_kernel(lambda i: arr.__setitem__(i, 0), (1024,))
    """

    def __init__(self, device_count: int = 1) -> None:
        """
        Initialize the CPU backend.

        Args:
            device_count: Number of CPU devices exposed by this backend.
        """
        self._device_count = device_count

    @property
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        return BackendType.CPU

    @property
    def is_available(self) -> bool:
        """Check if this backend is available."""
        return True  # CPU is always available

    @property
    def device_count(self) -> int:
        """Get the number of available devices."""
        return self._device_count

    @property
    def array_module(self) -> Any:
        """Get the array module."""
        return np

    def allocate(
        self,
        shape: tuple[int, ...],
        dtype: np.dtype[T] | type[T],
    ) -> NDArray[T]:
        """
        Allocate a NumPy array.

        Args:
            shape: Shape of the array.
            dtype: Data type.

        Returns:
            Allocated NumPy array.
        """
        return np.empty(shape, dtype=dtype)

    def allocate_zeros(
        self,
        shape: tuple[int, ...],
        dtype: np.dtype[T] | type[T],
    ) -> NDArray[T]:
        """
        Allocate a zero-filled NumPy array.

        Args:
            shape: Shape of the array.
            dtype: Data type.

        Returns:
            Zero-filled NumPy array.
        """
        return np.zeros(shape, dtype=dtype)

    def free(self, array: NDArray[T]) -> None:
        """
        Free a NumPy array.

        For CPU backend, this is a no-op as NumPy handles memory.

        Args:
            array: Array to free.
        """
        # NumPy handles garbage collection
        pass

    def copy_to_device(self, host_array: NDArray[T]) -> NDArray[T]:
        """
        Copy to device.

        Args:
            host_array: Source array.

        Returns:
            A new array holding the same data.
        """
        return np.array(host_array, copy=True)

    def copy_to_host(self, device_array: NDArray[T]) -> NDArray[T]:
        """
        Copy to host.

        Args:
            device_array: Source array.

        Returns:
            A new array holding the same data.
        """
        return np.array(device_array, copy=True)

    def copy_from_host(self, device_array: NDArray[T], host_array: NDArray[T]) -> None:
        """Overwrite ``device_array`` with ``host_array``."""
        np.copyto(device_array, host_array)

    def memcpy(self, dest: NDArray[Any], src: NDArray[Any], nbytes: int) -> None:
        """Copy ``nbytes`` raw bytes from ``src`` into ``dest``."""
        byte_view(dest)[:nbytes] = byte_view(src)[:nbytes]

    def synchronize(self) -> None:
        """Synchronize (no-op for CPU)."""
        # CPU operations are synchronous
        pass

    def execute_kernel(
        self,
        kernel: Callable[..., Any],
        global_range: tuple[int, ...],
        *,
        vectorize: bool = True,
    ) -> KernelExecutionResult:
        """
        Execute a kernel on the CPU.

        Args:
            kernel: Kernel function.
            global_range: Work items per dimension.
            vectorize: Pass index arrays instead of one index per call.

        Returns:
            Execution result.
        """
        result = self._run_kernel(kernel, global_range, vectorize)
        logger.debug(
            f"CPU kernel over {global_range} finished in {result.execution_time_ms:.3f}ms "
            f"(success={result.success})"
        )
        return result

    def __repr__(self) -> str:
        """String representation."""
        return f"CPUBackend(available=True, devices={self._device_count})"
