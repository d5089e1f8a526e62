"""
Accessors: declared access to buffer data.

A device :class:`Accessor` is created inside a command group; it tells
the runtime how the command uses the buffer and gives the kernel indexed
access to the device copy while the command runs. A :class:`HostAccessor`
gives synchronous access from the host.
"""

from __future__ import annotations

import concurrent.futures
from typing import TYPE_CHECKING, Any

import numpy as np

from pyoffload.core.access import AccessMode
from pyoffload.exceptions import AccessorError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from pyoffload.core.buffer import Buffer
    from pyoffload.core.handler import Handler


class Accessor:
    """
    Device access to a buffer from one command.

    Example:
        >>> def command_group(h):
        ...     acc_a = Accessor(buf_a, h, read_only)
        ...     acc_r = Accessor(buf_r, h, write_only)
        ...     h.parallel_for(1024, lambda i: acc_r.__setitem__(i, acc_a[i] * 2))
    """

    def __init__(
        self,
        buffer: Buffer,
        handler: Handler | None = None,
        mode: AccessMode = AccessMode.READ_WRITE,
        *,
        no_init: bool = False,
    ) -> None:
        """
        Initialize an accessor.

        Args:
            buffer: Buffer to access.
            handler: Command group handler to register with.
            mode: Declared access mode.
            no_init: Discard previous contents (only valid for writes).

        Raises:
            AccessorError: If ``no_init`` is combined with a read-only mode.
        """
        if no_init and mode == AccessMode.READ:
            raise AccessorError("no_init cannot be combined with read-only access")

        self._buffer = buffer
        self._mode = mode
        self._no_init = no_init
        self._data: Any = None
        if handler is not None:
            handler.require(self)

    @property
    def buffer(self) -> Buffer:
        """Get the accessed buffer."""
        return self._buffer

    @property
    def mode(self) -> AccessMode:
        """Get the access mode."""
        return self._mode

    @property
    def no_init(self) -> bool:
        """Check if previous contents are discarded."""
        return self._no_init

    @property
    def shape(self) -> tuple[int, ...]:
        """Get the accessed shape."""
        return self._buffer.shape

    @property
    def size(self) -> int:
        """Get the number of accessible elements."""
        return self._buffer.size

    @property
    def is_bound(self) -> bool:
        """Check if the accessor is attached to device data."""
        return self._data is not None

    @property
    def data(self) -> Any:
        """
        Get the device array backing the accessor.

        Raises:
            AccessorError: Outside of the command's execution.
        """
        if self._data is None:
            raise AccessorError("accessors can only be used while their command is running")
        return self._data

    def _bind(self, data: Any) -> None:
        if self._mode == AccessMode.READ and isinstance(data, np.ndarray):
            data = data.view()
            data.flags.writeable = False
        self._data = data

    def _unbind(self) -> None:
        self._data = None

    def __getitem__(self, key: Any) -> Any:
        return self.data[key]

    def __setitem__(self, key: Any, value: Any) -> None:
        if self._mode == AccessMode.READ:
            raise AccessorError(f"write through a read-only accessor of {self._buffer.name}")
        self.data[key] = value

    def __len__(self) -> int:
        return self._buffer.shape[0]

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"Accessor(buffer={self._buffer.name!r}, mode={self._mode.value}, "
            f"bound={self.is_bound})"
        )


class HostAccessor:
    """
    Host access to a buffer.

    Holds back later commands on the buffer until released; use it as a
    context manager.

    Example:
        >>> with buf.get_host_access() as host:
        ...     assert host[3] == 6
    """

    def __init__(
        self,
        buffer: Buffer,
        host: NDArray[Any],
        mode: AccessMode,
        future: concurrent.futures.Future[None],
    ) -> None:
        self._buffer = buffer
        self._mode = mode
        self._future = future
        if mode == AccessMode.READ:
            host = host.view()
            host.flags.writeable = False
        self._host: NDArray[Any] | None = host

    @property
    def mode(self) -> AccessMode:
        """Get the access mode."""
        return self._mode

    @property
    def data(self) -> NDArray[Any]:
        """
        Get the host array.

        Raises:
            AccessorError: After the accessor was released.
        """
        if self._host is None:
            raise AccessorError("host accessor has been released")
        return self._host

    @property
    def is_released(self) -> bool:
        """Check if the accessor has been released."""
        return self._host is None

    def release(self) -> None:
        """Release the accessor, letting waiting commands proceed."""
        if self._host is None:
            return
        self._host = None
        self._future.set_result(None)

    def __getitem__(self, key: Any) -> Any:
        return self.data[key]

    def __setitem__(self, key: Any, value: Any) -> None:
        if self._mode == AccessMode.READ:
            raise AccessorError(f"write through a read-only host accessor of {self._buffer.name}")
        self.data[key] = value

    def __len__(self) -> int:
        return len(self.data)

    def __array__(self, dtype: Any = None, copy: Any = None) -> NDArray[Any]:
        return np.asarray(self.data, dtype=dtype)

    def __enter__(self) -> HostAccessor:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.release()

    def __del__(self) -> None:
        # Never leave later commands blocked on a dropped accessor
        if getattr(self, "_host", None) is not None and not self._future.done():
            self._future.set_result(None)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"HostAccessor(buffer={self._buffer.name!r}, mode={self._mode.value}, "
            f"released={self.is_released})"
        )
