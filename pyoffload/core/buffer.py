"""
Buffers with lazy host/device coherence.

A buffer owns one logical array and keeps a copy per location (the host
and every device it has been used on). Data only moves when a location
without an up-to-date copy is accessed, and results are written back to
the buffer's final data when it is closed.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any

import numpy as np

from pyoffload.core.access import AccessMode, AccessTracker
from pyoffload.core.event import Event
from pyoffload.exceptions import BufferReleasedError, BufferSyncError

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, DTypeLike, NDArray

    from pyoffload.core.device import Device

logger = logging.getLogger(__name__)

# Location key for the host copy
HOST = None


class BufferState(Enum):
    """Where the buffer currently holds up-to-date data."""

    UNINITIALIZED = auto()
    HOST_ONLY = auto()
    DEVICE_ONLY = auto()
    SYNCHRONIZED = auto()
    RELEASED = auto()


@dataclass
class TransferStatistics:
    """Host/device traffic caused by a buffer."""

    bytes_to_device: int = 0
    bytes_to_host: int = 0
    transfers_to_device: int = 0
    transfers_to_host: int = 0

    @property
    def total_bytes(self) -> int:
        """Get the total bytes moved in either direction."""
        return self.bytes_to_device + self.bytes_to_host

    def record_to_device(self, nbytes: int) -> None:
        """Record a host to device copy."""
        self.bytes_to_device += nbytes
        self.transfers_to_device += 1

    def record_to_host(self, nbytes: int) -> None:
        """Record a device to host copy."""
        self.bytes_to_host += nbytes
        self.transfers_to_host += 1


class Buffer:
    """
    Buffer managed by the runtime.

    Kernels reach the data through accessors, which also tell the runtime
    which commands depend on each other. Use the buffer as a context
    manager (or call :meth:`close`) so results are written back.

    Example:
        >>> a = np.arange(1024, dtype=np.float32)
        >>> with Buffer(a) as buf:
        ...     queue.submit(lambda h: ...)
        >>> # ``a`` now holds the results
    """

    def __init__(
        self,
        host_data: ArrayLike | None = None,
        *,
        shape: tuple[int, ...] | int | None = None,
        dtype: DTypeLike | None = None,
        use_host_ptr: bool = False,
        name: str | None = None,
    ) -> None:
        """
        Initialize a buffer.

        Args:
            host_data: Initial contents. A NumPy array also becomes the
                final data that results are written back to.
            shape: Shape of a buffer created without host data.
            dtype: Element type (defaults to float32 without host data).
            use_host_ptr: Use ``host_data`` itself as the host copy
                instead of copying it.
            name: Name used in diagnostics.

        Raises:
            ValueError: If neither ``host_data`` nor ``shape`` is given.
        """
        self._lock = threading.RLock()
        self._copies: dict[Device, Any] = {}
        self._valid: set[Device | None] = set()
        self._final_data: NDArray[Any] | None = None
        self._host: NDArray[Any] | None = None
        self._written = False
        self._write_back = True
        self._released = False
        self._statistics = TransferStatistics()

        if host_data is not None:
            source = np.asarray(host_data, dtype=dtype)
            if use_host_ptr:
                if source is not host_data:
                    raise ValueError("use_host_ptr requires a NumPy array of the buffer dtype")
                self._host = source
            else:
                self._host = np.array(source, copy=True)
            if isinstance(host_data, np.ndarray) and source is host_data:
                self._final_data = host_data
            self._valid.add(HOST)
            self._shape: tuple[int, ...] = tuple(source.shape)
            self._dtype = source.dtype
        else:
            if shape is None:
                raise ValueError("Buffer needs host_data or a shape")
            if isinstance(shape, int):
                shape = (shape,)
            self._shape = tuple(shape)
            self._dtype = np.dtype(dtype if dtype is not None else np.float32)

        self._name = name or f"buffer@{id(self):x}"
        self._tracker = AccessTracker(self._name)

    @property
    def name(self) -> str:
        """Get the buffer name."""
        return self._name

    @property
    def shape(self) -> tuple[int, ...]:
        """Get the buffer shape."""
        return self._shape

    @property
    def dtype(self) -> np.dtype[Any]:
        """Get the buffer dtype."""
        return self._dtype

    @property
    def size(self) -> int:
        """Get the total number of elements."""
        return int(np.prod(self._shape))

    @property
    def nbytes(self) -> int:
        """Get the total size in bytes."""
        return self.size * self._dtype.itemsize

    @property
    def statistics(self) -> TransferStatistics:
        """Get host/device transfer statistics."""
        return self._statistics

    @property
    def final_data(self) -> NDArray[Any] | None:
        """Get the array results are written back to."""
        return self._final_data

    @property
    def is_released(self) -> bool:
        """Check if the buffer has been closed."""
        return self._released

    @property
    def state(self) -> BufferState:
        """Get the current coherence state."""
        with self._lock:
            if self._released:
                return BufferState.RELEASED
            on_host = HOST in self._valid
            on_device = any(loc is not HOST for loc in self._valid)
            if on_host and on_device:
                return BufferState.SYNCHRONIZED
            if on_host:
                return BufferState.HOST_ONLY
            if on_device:
                return BufferState.DEVICE_ONLY
            return BufferState.UNINITIALIZED

    def __len__(self) -> int:
        """Get the length of the first dimension."""
        return self._shape[0]

    def set_final_data(self, final_data: NDArray[Any] | None) -> None:
        """
        Set where results are written back on close.

        Args:
            final_data: Destination array with the buffer's size, or None
                to discard results.

        Raises:
            ValueError: If the destination size does not match.
        """
        if final_data is not None:
            if not isinstance(final_data, np.ndarray):
                raise TypeError(f"final data must be a NumPy array, got {type(final_data)}")
            if final_data.size != self.size:
                raise ValueError(
                    f"final data has {final_data.size} elements, buffer has {self.size}"
                )
        self._final_data = final_data

    def set_write_back(self, flag: bool = True) -> None:
        """Enable or disable write-back on close."""
        self._write_back = flag

    def get_access(
        self,
        handler: Any,
        mode: AccessMode = AccessMode.READ_WRITE,
        *,
        no_init: bool = False,
    ) -> Any:
        """
        Create an accessor for use in a command group.

        Args:
            handler: Command group handler.
            mode: Declared access mode.
            no_init: Discard previous contents instead of copying them in.

        Returns:
            Accessor registered with ``handler``.
        """
        from pyoffload.core.accessor import Accessor

        return Accessor(self, handler, mode, no_init=no_init)

    def get_host_access(
        self,
        mode: AccessMode = AccessMode.READ,
        *,
        no_init: bool = False,
    ) -> Any:
        """
        Access the buffer from the host.

        Blocks until every command the access depends on has finished.
        Commands submitted later wait until the accessor is released.

        Args:
            mode: Declared access mode.
            no_init: Skip copying device data back.

        Returns:
            A :class:`~pyoffload.core.accessor.HostAccessor`.
        """
        from pyoffload.core.accessor import HostAccessor

        self._check_alive()
        future: concurrent.futures.Future[None] = concurrent.futures.Future()
        event = Event(future, name=f"host_access({self._name})")
        deps = self._tracker.record(event, mode)
        Event.wait_all(deps)
        event.mark_started()

        with self._lock:
            if not no_init or not mode.writes:
                self._sync_to_host()
            elif self._host is None:
                self._host = np.empty(self._shape, dtype=self._dtype)
            if mode.writes:
                self._valid = {HOST}
                self._written = True
            host = self._host

        return HostAccessor(self, host, mode, future)

    def _check_alive(self) -> None:
        if self._released:
            raise BufferReleasedError()

    def _register(self, event: Event, mode: AccessMode) -> list[Event]:
        """Record a command accessing the buffer and get its dependencies."""
        self._check_alive()
        return [dep for dep in self._tracker.record(event, mode) if dep is not event]

    def _acquire(self, device: Device, mode: AccessMode, no_init: bool = False) -> Any:
        """
        Get the device copy for a command, moving data in if needed.

        Called by queue workers once the command's dependencies finished.
        """
        with self._lock:
            self._check_alive()
            array = self._copies.get(device)
            if array is None:
                array = device.backend.allocate(self._shape, self._dtype)
                self._copies[device] = array

            if device not in self._valid and self._valid and not no_init:
                self._sync_to_host()
                assert self._host is not None
                try:
                    device.backend.copy_from_host(array, self._host)
                except Exception as e:
                    raise BufferSyncError("host->device", e) from e
                self._statistics.record_to_device(self.nbytes)
                logger.debug(f"{self._name}: copied {self.nbytes} bytes to {device}")

            if mode.writes:
                self._valid = {device}
                self._written = True
            else:
                self._valid.add(device)
            return array

    def _sync_to_host(self) -> None:
        """Make the host copy current. Caller holds the lock."""
        if HOST in self._valid:
            return
        if self._host is None:
            self._host = np.empty(self._shape, dtype=self._dtype)
        if not self._valid:
            return

        device = next(loc for loc in self._valid if loc is not HOST)
        try:
            np.copyto(self._host, device.backend.copy_to_host(self._copies[device]))
        except Exception as e:
            raise BufferSyncError("device->host", e) from e
        self._statistics.record_to_host(self.nbytes)
        self._valid.add(HOST)
        logger.debug(f"{self._name}: copied {self.nbytes} bytes from {device} to host")

    def wait(self) -> None:
        """Block until every command using the buffer has finished."""
        Event.wait_all(self._tracker.pending())

    def close(self) -> None:
        """
        Release the buffer.

        Waits for outstanding commands, writes results back to the final
        data when the buffer was modified, and frees device copies.
        Closing twice is a no-op.
        """
        if self._released:
            return
        self.wait()

        with self._lock:
            final = self._final_data
            if self._write_back and self._written and final is not None:
                self._sync_to_host()
                assert self._host is not None
                if final is not self._host:
                    np.copyto(final, self._host.reshape(final.shape))
                logger.debug(f"{self._name}: wrote back {self.nbytes} bytes")

            for device, array in self._copies.items():
                device.backend.free(array)
            self._copies.clear()
            self._valid.clear()
            self._released = True

    def __enter__(self) -> Buffer:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"Buffer(name={self._name!r}, shape={self._shape}, dtype={self._dtype}, "
            f"state={self.state.name})"
        )
