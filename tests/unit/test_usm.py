"""
Unit tests for unified shared memory.
"""

from __future__ import annotations

import numpy as np
import pytest

from pyoffload.core.device import Device
from pyoffload.core.queue import Queue
from pyoffload.core.usm import (
    USMKind,
    USMStatistics,
    current_kernel_device,
    free,
    kernel_scope,
    malloc_device,
    malloc_host,
    malloc_shared,
)
from pyoffload.exceptions import (
    AsynchronousError,
    InvalidRangeError,
    KernelExecutionError,
    USMAccessError,
    USMFreedError,
)


class TestAllocation:
    """Tests for USM allocation."""

    def test_malloc_device(self, queue: Queue) -> None:
        """Test device allocations."""
        ptr = malloc_device(32, queue, np.int32)

        assert ptr.kind == USMKind.DEVICE
        assert ptr.device == queue.device
        assert ptr.count == 32
        assert len(ptr) == 32
        assert ptr.dtype == np.int32
        assert ptr.nbytes == 128

    def test_default_dtype(self, queue: Queue) -> None:
        """Test float32 is the default element type."""
        assert malloc_shared(4, queue).dtype == np.float32

    def test_negative_count(self, queue: Queue) -> None:
        """Test negative sizes are rejected."""
        with pytest.raises(ValueError):
            malloc_device(-1, queue)

    def test_statistics(self, queue: Queue) -> None:
        """Test per-queue usage tracking."""
        a = malloc_device(256, queue)
        b = malloc_host(256, queue)
        stats = queue.usm_statistics

        assert stats.live_allocations == 2
        assert stats.live_bytes == 2048
        assert stats.total_allocations == 2

        free(a, queue)
        free(b)

        assert stats.live_allocations == 0
        assert stats.live_bytes == 0
        assert stats.peak_bytes == 2048
        assert stats.to_dict()["total_allocations"] == 2

    def test_double_free(self, queue: Queue) -> None:
        """Test freeing twice raises."""
        ptr = malloc_device(4, queue)
        free(ptr, queue)

        assert ptr.is_freed
        with pytest.raises(USMFreedError):
            free(ptr, queue)

    def test_use_after_free(self, queue: Queue) -> None:
        """Test freed memory cannot be used."""
        ptr = malloc_shared(4, queue)
        free(ptr, queue)

        with pytest.raises(USMFreedError):
            _ = ptr[0]
        with pytest.raises(USMFreedError):
            _ = ptr.array


class TestAccessRules:
    """Tests for USM access checks."""

    def test_device_memory_not_on_host(self, queue: Queue) -> None:
        """Test host dereference of device memory raises."""
        ptr = malloc_device(4, queue)

        with pytest.raises(USMAccessError):
            _ = ptr[0]
        with pytest.raises(USMAccessError):
            ptr[0] = 1.0
        with pytest.raises(USMAccessError):
            ptr.to_numpy()

    def test_shared_memory_on_host(self, queue: Queue) -> None:
        """Test shared memory is host accessible."""
        ptr = malloc_shared(4, queue)

        ptr[0] = 3.0

        assert ptr[0] == 3.0

    def test_host_memory_on_host(self, queue: Queue) -> None:
        """Test host memory is host accessible."""
        ptr = malloc_host(4, queue)

        ptr[:] = 1.0

        np.testing.assert_array_equal(ptr.to_numpy(), np.ones(4))

    def test_device_memory_in_kernel_scope(self, queue: Queue) -> None:
        """Test device memory is accessible inside its device's kernels."""
        ptr = malloc_device(4, queue)

        with kernel_scope(queue.device):
            assert current_kernel_device() == queue.device
            ptr[0] = 5.0
            assert ptr[0] == 5.0

        assert current_kernel_device() is None

    def test_device_memory_on_other_device(self, two_cpu_devices: list[Device]) -> None:
        """Test device memory is private to its device."""
        first, second = two_cpu_devices
        with Queue(first) as owner, Queue(second) as other:
            ptr = malloc_device(4, owner)

            def touch(i: np.ndarray) -> None:
                ptr[i] = 1.0

            event = other.parallel_for(4, touch)
            event.wait()

            assert isinstance(event.error, KernelExecutionError)
            assert isinstance(event.error.cause, USMAccessError)
            with pytest.raises(AsynchronousError):
                other.throw_asynchronous()

    def test_host_memory_on_cpu_kernels(self, queue: Queue) -> None:
        """Test host memory is reachable from CPU kernels."""
        ptr = malloc_host(8, queue)

        def index(i: np.ndarray) -> None:
            ptr[i] = i

        queue.parallel_for(8, index).wait()
        queue.throw_asynchronous()

        np.testing.assert_array_equal(ptr.to_numpy(), np.arange(8))


class TestQueueOperations:
    """Tests for USM queue operations."""

    def test_memcpy_round_trip(self, queue: Queue) -> None:
        """Test host -> device -> host copies."""
        src = np.arange(16, dtype=np.float32)
        dest = np.zeros(16, dtype=np.float32)
        ptr = malloc_device(16, queue)

        queue.memcpy(ptr, src).wait()
        queue.memcpy(dest, ptr).wait()
        queue.throw_asynchronous()

        np.testing.assert_array_equal(dest, src)

    def test_memcpy_partial(self, queue: Queue) -> None:
        """Test nbytes limits the copy."""
        src = np.arange(8, dtype=np.int32)
        ptr = malloc_shared(8, queue, np.int32)
        queue.fill(ptr, 0).wait()

        queue.memcpy(ptr, src, 4 * src.itemsize).wait()

        np.testing.assert_array_equal(ptr.to_numpy(), [0, 1, 2, 3, 0, 0, 0, 0])

    def test_memcpy_too_large(self, queue: Queue) -> None:
        """Test oversize copies are rejected at submission."""
        ptr = malloc_device(4, queue)

        with pytest.raises(InvalidRangeError):
            queue.memcpy(ptr, np.zeros(8, dtype=np.float32))

    def test_memcpy_non_contiguous(self, queue: Queue) -> None:
        """Test host arrays must be contiguous."""
        ptr = malloc_device(4, queue)

        with pytest.raises(ValueError):
            queue.memcpy(ptr, np.zeros(8, dtype=np.float32)[::2])

    def test_memcpy_between_allocations(self, queue: Queue) -> None:
        """Test device to device copies."""
        a = malloc_shared(4, queue)
        b = malloc_device(4, queue)
        a[:] = np.array([1, 2, 3, 4], dtype=np.float32)
        out = np.zeros(4, dtype=np.float32)

        queue.memcpy(b, a).wait()
        queue.memcpy(out, b).wait()

        np.testing.assert_array_equal(out, [1, 2, 3, 4])

    def test_copy_counts_elements(self, queue: Queue) -> None:
        """Test copy works in elements rather than bytes."""
        src = np.arange(6, dtype=np.float64)
        ptr = malloc_shared(6, queue, np.float64)
        queue.fill(ptr, -1.0).wait()

        queue.copy(src, ptr, count=2).wait()

        np.testing.assert_array_equal(ptr.to_numpy(), [0, 1, -1, -1, -1, -1])

    def test_fill(self, queue: Queue) -> None:
        """Test fill on device memory."""
        ptr = malloc_device(8, queue)
        out = np.zeros(8, dtype=np.float32)

        queue.fill(ptr, 2.5).wait()
        queue.memcpy(out, ptr).wait()

        np.testing.assert_array_equal(out, np.full(8, 2.5))

    def test_fill_count(self, queue: Queue) -> None:
        """Test fill limited to a prefix."""
        ptr = malloc_shared(4, queue)
        queue.fill(ptr, 0.0).wait()

        queue.fill(ptr, 9.0, count=2).wait()

        np.testing.assert_array_equal(ptr.to_numpy(), [9, 9, 0, 0])

    def test_fill_count_too_large(self, queue: Queue) -> None:
        """Test fill counts are validated."""
        ptr = malloc_shared(4, queue)

        with pytest.raises(InvalidRangeError):
            queue.fill(ptr, 0.0, count=5)

    def test_memset(self, queue: Queue) -> None:
        """Test memset writes bytes."""
        ptr = malloc_shared(4, queue, np.uint32)

        queue.memset(ptr, 0xFF).wait()

        np.testing.assert_array_equal(ptr.to_numpy(), np.full(4, 0xFFFFFFFF, dtype=np.uint32))

    def test_memset_prefix(self, queue: Queue) -> None:
        """Test memset limited to nbytes."""
        ptr = malloc_shared(2, queue, np.uint16)
        queue.memset(ptr, 0).wait()

        queue.memset(ptr, 1, nbytes=1).wait()

        np.testing.assert_array_equal(ptr.to_numpy(), [1, 0])

    def test_usm_vector_add(self, queue: Queue) -> None:
        """Test a full vector addition on device memory."""
        n = 64
        a = np.arange(n, dtype=np.float32)
        r = np.zeros(n, dtype=np.float32)
        dev_a = malloc_device(n, queue)
        dev_r = malloc_device(n, queue)

        queue.memcpy(dev_a, a).wait()

        def add(i: np.ndarray) -> None:
            dev_r[i] = dev_a[i] + dev_a[i]

        queue.parallel_for(n, add).wait()
        queue.memcpy(r, dev_r).wait()
        queue.throw_asynchronous()

        np.testing.assert_array_equal(r, a * 2)


class TestUSMStatistics:
    """Tests for USMStatistics."""

    def test_megabytes(self) -> None:
        """Test MB conversions."""
        stats = USMStatistics()
        stats.record_alloc(2 * 1024 * 1024)

        assert stats.live_mb == 2.0
        assert stats.peak_mb == 2.0
