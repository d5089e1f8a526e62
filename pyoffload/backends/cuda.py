"""
CUDA backend for PyOffload.

Provides CUDA-based implementation using CuPy.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

import numpy as np

from pyoffload.backends.base import Backend, BackendType, KernelExecutionResult, byte_view
from pyoffload.exceptions import BackendNotAvailableError, CUDAError

if TYPE_CHECKING:
    from numpy.typing import NDArray


T = TypeVar("T", bound=np.generic)

logger = logging.getLogger(__name__)


def _check_cuda_available() -> bool:
    """Check if CUDA is available."""
    try:
        import cupy as cp

        return cp.cuda.runtime.getDeviceCount() > 0
    except ImportError:
        return False
    except Exception:
        return False


def cuda_device_count() -> int:
    """Get the number of CUDA devices visible to CuPy (0 without CuPy)."""
    try:
        import cupy as cp

        return int(cp.cuda.runtime.getDeviceCount())
    except ImportError:
        return 0
    except Exception as e:
        logger.warning(f"CUDA device discovery failed: {e}")
        return 0


def cuda_device_properties(device_id: int) -> dict[str, Any]:
    """
    Query CUDA device properties through CuPy.

    Args:
        device_id: CUDA device ordinal.

    Returns:
        Dictionary of runtime properties.
    """
    import cupy as cp

    props = cp.cuda.runtime.getDeviceProperties(device_id)
    name = props["name"]
    return {
        "name": name.decode() if isinstance(name, bytes) else name,
        "total_memory": int(props["totalGlobalMem"]),
        "max_threads_per_block": int(props["maxThreadsPerBlock"]),
        "multiprocessor_count": int(props["multiProcessorCount"]),
        "compute_capability": (int(props["major"]), int(props["minor"])),
        "managed_memory": bool(props.get("managedMemory", 0)),
    }


class CUDABackend(Backend):
    """
    CUDA backend implementation using CuPy.

    Every call runs under the backend's CUDA device context so queues
    bound to different GPUs can share worker threads safely.

    Example:
        >>> backend = CUDABackend()
        >>> if backend.is_available:
        ...     arr = backend.allocate((1024,), np.float32)
    """

    def __init__(self, device_id: int = 0) -> None:
        """
        Initialize the CUDA backend.

        Args:
            device_id: CUDA device ID to use.

        Raises:
            BackendNotAvailableError: If CUDA is not available.
        """
        self._device_id = device_id
        self._cuda_available = _check_cuda_available()
        self._cp: Any = None

        if not self._cuda_available:
            raise BackendNotAvailableError("CUDA", "no CUDA device visible to CuPy")

        try:
            import cupy as cp

            self._cp = cp
        except ImportError as e:
            self._cuda_available = False
            raise BackendNotAvailableError(
                "CUDA",
                f"Required packages not installed: {e}",
            ) from e

    @property
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        return BackendType.CUDA

    @property
    def is_available(self) -> bool:
        """Check if this backend is available."""
        return self._cuda_available

    @property
    def device_count(self) -> int:
        """Get the number of available CUDA devices."""
        return cuda_device_count()

    @property
    def device_id(self) -> int:
        """Get the device ID."""
        return self._device_id

    @property
    def array_module(self) -> Any:
        """Get the array module."""
        return self._cp

    def _device(self) -> Any:
        return self._cp.cuda.Device(self._device_id)

    def allocate(
        self,
        shape: tuple[int, ...],
        dtype: np.dtype[T] | type[T],
    ) -> Any:  # Returns cp.ndarray
        """
        Allocate a CuPy array on the GPU.

        Raises:
            CUDAError: If allocation fails.
        """
        try:
            with self._device():
                return self._cp.empty(shape, dtype=dtype)
        except Exception as e:
            raise CUDAError(f"Failed to allocate GPU memory: {e}") from e

    def allocate_zeros(
        self,
        shape: tuple[int, ...],
        dtype: np.dtype[T] | type[T],
    ) -> Any:
        """Allocate a zero-filled CuPy array on the GPU."""
        try:
            with self._device():
                return self._cp.zeros(shape, dtype=dtype)
        except Exception as e:
            raise CUDAError(f"Failed to allocate GPU memory: {e}") from e

    def allocate_managed(
        self,
        shape: tuple[int, ...],
        dtype: np.dtype[T] | type[T],
    ) -> Any:
        """
        Allocate a CuPy array backed by CUDA managed memory.

        Used for shared USM allocations.
        """
        nbytes = int(np.prod(shape)) * np.dtype(dtype).itemsize
        try:
            with self._device():
                memptr = self._cp.cuda.malloc_managed(max(nbytes, 1))
                return self._cp.ndarray(shape, dtype=dtype, memptr=memptr)
        except Exception as e:
            raise CUDAError(f"Failed to allocate managed memory: {e}") from e

    def allocate_pinned(
        self,
        shape: tuple[int, ...],
        dtype: np.dtype[T] | type[T],
    ) -> NDArray[T]:
        """Allocate a NumPy array in page-locked host memory."""
        nbytes = int(np.prod(shape)) * np.dtype(dtype).itemsize
        try:
            pinned_mem = self._cp.cuda.alloc_pinned_memory(max(nbytes, 1))
            return np.frombuffer(pinned_mem, dtype=dtype, count=int(np.prod(shape))).reshape(
                shape
            )
        except Exception as e:
            logger.warning(f"Pinned allocation failed, using pageable memory: {e}")
            return np.empty(shape, dtype=dtype)

    def free(self, array: Any) -> None:
        """
        Free a CuPy array.

        CuPy releases memory when the last reference goes away.
        """
        del array

    def copy_to_device(self, host_array: NDArray[T]) -> Any:
        """Copy a NumPy array to the GPU."""
        with self._device():
            return self._cp.asarray(host_array)

    def copy_to_host(self, device_array: Any) -> NDArray[T]:
        """Copy a CuPy array to host."""
        if hasattr(device_array, "get"):
            with self._device():
                return device_array.get()
        return np.asarray(device_array)

    def copy_from_host(self, device_array: Any, host_array: NDArray[T]) -> None:
        """Overwrite a CuPy array with host data."""
        with self._device():
            device_array.set(np.ascontiguousarray(host_array))

    def memcpy(self, dest: Any, src: Any, nbytes: int) -> None:
        """Copy raw bytes between host and/or device arrays."""
        dest_bytes = byte_view(dest)[:nbytes]
        src_bytes = byte_view(src)[:nbytes]
        dest_on_device = isinstance(dest, self._cp.ndarray)
        src_on_device = isinstance(src, self._cp.ndarray)

        with self._device():
            if dest_on_device and src_on_device:
                dest_bytes[...] = src_bytes
            elif dest_on_device:
                dest_bytes.set(src_bytes)
            elif src_on_device:
                src_bytes.get(out=dest_bytes)
            else:
                dest_bytes[...] = src_bytes

    def synchronize(self) -> None:
        """Synchronize CUDA operations."""
        with self._device():
            self._cp.cuda.Stream.null.synchronize()

    def execute_kernel(
        self,
        kernel: Callable[..., Any],
        global_range: tuple[int, ...],
        *,
        vectorize: bool = True,
    ) -> KernelExecutionResult:
        """
        Execute a kernel with CuPy arrays.

        Args:
            kernel: Kernel function.
            global_range: Work items per dimension.
            vectorize: Pass index arrays instead of one index per call.

        Returns:
            Execution result.
        """
        with self._device():
            result = self._run_kernel(kernel, global_range, vectorize)
            if result.success:
                try:
                    # Synchronize to get accurate timing and surface launch errors
                    self._cp.cuda.Stream.null.synchronize()
                except Exception as e:
                    result.success = False
                    result.error = CUDAError(f"Kernel synchronization failed: {e}")

        logger.debug(
            f"CUDA:{self._device_id} kernel over {global_range} finished in "
            f"{result.execution_time_ms:.3f}ms (success={result.success})"
        )
        return result

    def get_memory_info(self) -> dict[str, int]:
        """
        Get GPU memory information.

        Returns:
            Dictionary with free and total memory in bytes.
        """
        with self._device():
            mem_info = self._cp.cuda.runtime.memGetInfo()
        return {
            "free": mem_info[0],
            "total": mem_info[1],
            "used": mem_info[1] - mem_info[0],
        }

    def __repr__(self) -> str:
        """String representation."""
        mem = self.get_memory_info()
        return (
            f"CUDABackend(device={self._device_id}, "
            f"devices={self.device_count}, "
            f"memory_free={mem['free'] // 1024**2}MB)"
        )
