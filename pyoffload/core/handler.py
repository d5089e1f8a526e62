"""
Command group handler.

A command group is a function receiving a :class:`Handler`. It declares
accessors and dependencies and records exactly one action: a kernel, a
fill, a copy or a memcpy.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from pyoffload.backends.base import KernelExecutionResult, byte_view
from pyoffload.core.access import AccessMode
from pyoffload.core.accessor import Accessor
from pyoffload.core.event import Event
from pyoffload.core.usm import USMAllocation
from pyoffload.decorators.kernel import kernel_name, kernel_vectorize
from pyoffload.exceptions import InvalidCommandGroupError, InvalidRangeError

if TYPE_CHECKING:
    from pyoffload.core.buffer import Buffer
    from pyoffload.core.device import Device
    from pyoffload.core.queue import Queue


RangeLike = int | tuple[int, ...] | list[int]


def normalize_range(global_range: RangeLike) -> tuple[int, ...]:
    """
    Normalize a kernel range to a tuple of 1 to 3 non-negative extents.

    Raises:
        InvalidRangeError: If the range is malformed.
    """
    if isinstance(global_range, (int, np.integer)):
        extents: tuple[int, ...] = (int(global_range),)
    else:
        try:
            extents = tuple(int(extent) for extent in global_range)
        except (TypeError, ValueError) as e:
            raise InvalidRangeError(global_range, "expected an int or a sequence of ints") from e

    if not 1 <= len(extents) <= 3:
        raise InvalidRangeError(global_range, "ranges have 1 to 3 dimensions")
    if any(extent < 0 for extent in extents):
        raise InvalidRangeError(global_range, "extents must be >= 0")
    return extents


@dataclass
class Action:
    """The single operation recorded by a command group."""

    name: str
    run: Callable[[Device], KernelExecutionResult]
    global_range: tuple[int, ...] = ()


@dataclass
class Requirement:
    """Combined access of one command to one buffer."""

    buffer: Buffer
    mode: AccessMode
    accessors: list[Accessor] = field(default_factory=list)


def _merge_modes(first: AccessMode, second: AccessMode) -> AccessMode:
    if first == second:
        return first
    return AccessMode.READ_WRITE


class Handler:
    """
    Records the contents of one command group.

    Example:
        >>> def command_group(h: Handler) -> None:
        ...     acc = buf.get_access(h, read_write)
        ...     h.parallel_for(1024, lambda i: acc.__setitem__(i, acc[i] * 2))
        >>> queue.submit(command_group)
    """

    def __init__(self, queue: Queue) -> None:
        self._queue = queue
        self._accessors: list[Accessor] = []
        self._dependencies: list[Event] = []
        self._action: Action | None = None

    @property
    def queue(self) -> Queue:
        """Get the queue the command group is submitted to."""
        return self._queue

    @property
    def device(self) -> Device:
        """Get the device the command will run on."""
        return self._queue.device

    @property
    def accessors(self) -> list[Accessor]:
        """Get the accessors declared so far."""
        return list(self._accessors)

    @property
    def dependencies(self) -> list[Event]:
        """Get the explicit event dependencies."""
        return list(self._dependencies)

    @property
    def action(self) -> Action:
        """
        Get the recorded action.

        Raises:
            InvalidCommandGroupError: If no action was recorded.
        """
        if self._action is None:
            raise InvalidCommandGroupError("no kernel, fill, copy or memcpy was recorded")
        return self._action

    def requirements(self) -> list[Requirement]:
        """Get declared buffer accesses merged per buffer."""
        merged: dict[int, Requirement] = {}
        for accessor in self._accessors:
            key = id(accessor.buffer)
            requirement = merged.get(key)
            if requirement is None:
                merged[key] = Requirement(accessor.buffer, accessor.mode, [accessor])
            else:
                requirement.mode = _merge_modes(requirement.mode, accessor.mode)
                requirement.accessors.append(accessor)
        return list(merged.values())

    def require(self, accessor: Accessor) -> None:
        """Register an accessor with the command."""
        if accessor not in self._accessors:
            self._accessors.append(accessor)

    def depends_on(self, events: Event | Iterable[Event] | None) -> None:
        """Make the command wait for ``events``."""
        if events is None:
            return
        if isinstance(events, Event):
            events = [events]
        self._dependencies.extend(events)

    def _record(self, action: Action) -> None:
        if self._action is not None:
            raise InvalidCommandGroupError(
                f"'{action.name}' recorded after '{self._action.name}'; "
                "a command group holds exactly one action"
            )
        self._action = action

    def parallel_for(
        self,
        global_range: RangeLike,
        kernel: Callable[[Any], Any],
        *,
        name: str | None = None,
        vectorize: bool | None = None,
    ) -> None:
        """
        Run ``kernel`` once per work item of ``global_range``.

        Args:
            global_range: Work items per dimension.
            kernel: Function receiving the work-item index.
            name: Kernel name (defaults to the kernel's registered name).
            vectorize: Call the kernel once with index arrays; defaults to
                the kernel's own setting, then the runtime configuration.
        """
        extents = normalize_range(global_range)
        label = name or kernel_name(kernel)
        batched = kernel_vectorize(kernel, vectorize, self._queue.vectorize)

        def run(device: Device) -> KernelExecutionResult:
            return device.backend.execute_kernel(kernel, extents, vectorize=batched)

        self._record(Action(label, run, extents))

    def single_task(self, kernel: Callable[[], Any], *, name: str | None = None) -> None:
        """Run ``kernel`` exactly once with no arguments."""
        label = name or kernel_name(kernel)

        def run(device: Device) -> KernelExecutionResult:
            return device.backend.execute_kernel(lambda _: kernel(), (1,), vectorize=False)

        self._record(Action(label, run, (1,)))

    def fill(self, dest: Accessor | USMAllocation, value: Any, count: int | None = None) -> None:
        """
        Fill an accessor or USM allocation with ``value``.

        Args:
            dest: Destination.
            value: Value to store.
            count: Number of leading elements (defaults to all).
        """
        extent = dest.size if isinstance(dest, Accessor) else dest.count
        count = extent if count is None else count
        if not 0 <= count <= extent:
            raise InvalidRangeError(count, f"fill count must be within [0, {extent}]")

        def run(device: Device) -> KernelExecutionResult:
            target = _flat(dest)

            def fill_kernel(idx: Any) -> None:
                target[idx] = value

            return device.backend.execute_kernel(fill_kernel, (count,), vectorize=True)

        self._record(Action("fill", run, (count,)))

    def memset(self, dest: USMAllocation, value: int, nbytes: int | None = None) -> None:
        """Set the first ``nbytes`` bytes of a USM allocation to ``value``."""
        nbytes = dest.nbytes if nbytes is None else nbytes
        if not 0 <= nbytes <= dest.nbytes:
            raise InvalidRangeError(nbytes, f"memset size must be within [0, {dest.nbytes}]")

        def run(device: Device) -> KernelExecutionResult:
            target = byte_view(dest.array)

            def memset_kernel(idx: Any) -> None:
                target[idx] = value

            return device.backend.execute_kernel(memset_kernel, (nbytes,), vectorize=True)

        self._record(Action("memset", run, (nbytes,)))

    def copy(self, src: Any, dest: Any) -> None:
        """
        Explicit copy between an accessor and a host array.

        Supported directions: accessor to host array, host array to
        accessor, and accessor to accessor on the same device.
        """
        if not isinstance(src, Accessor) and not isinstance(dest, Accessor):
            raise InvalidCommandGroupError("copy needs an accessor on at least one side")

        def run(device: Device) -> KernelExecutionResult:
            backend = device.backend
            start = time.perf_counter()
            try:
                if isinstance(src, Accessor) and isinstance(dest, Accessor):
                    dest.data[...] = src.data
                elif isinstance(src, Accessor):
                    np.copyto(dest, backend.copy_to_host(src.data).reshape(np.shape(dest)))
                else:
                    backend.copy_from_host(dest.data, np.asarray(src).reshape(dest.shape))
            except Exception as e:
                return KernelExecutionResult(False, (time.perf_counter() - start) * 1000, error=e)
            return KernelExecutionResult(True, (time.perf_counter() - start) * 1000)

        self._record(Action("copy", run))

    def memcpy(self, dest: Any, src: Any, nbytes: int | None = None) -> None:
        """
        Copy raw bytes between USM allocations and/or host arrays.

        Args:
            dest: Destination allocation or C-contiguous NumPy array.
            src: Source allocation or NumPy array.
            nbytes: Bytes to copy (defaults to the size of ``src``).

        Raises:
            InvalidRangeError: If ``nbytes`` exceeds either side.
            ValueError: If a host array is not C-contiguous.
        """
        dest_size = _nbytes(dest)
        src_size = _nbytes(src)
        nbytes = src_size if nbytes is None else nbytes
        if not 0 <= nbytes <= min(dest_size, src_size):
            raise InvalidRangeError(
                nbytes, f"memcpy of {nbytes} bytes into {dest_size} from {src_size}"
            )

        owner = next(
            (side.device for side in (src, dest) if isinstance(side, USMAllocation)),
            self._queue.device,
        )

        def run(device: Device) -> KernelExecutionResult:
            start = time.perf_counter()
            try:
                owner.backend.memcpy(_raw(dest), _raw(src), nbytes)
            except Exception as e:
                return KernelExecutionResult(False, (time.perf_counter() - start) * 1000, error=e)
            return KernelExecutionResult(True, (time.perf_counter() - start) * 1000, nbytes)

        self._record(Action("memcpy", run, (nbytes,)))

    def __repr__(self) -> str:
        """String representation."""
        action = self._action.name if self._action else None
        return f"Handler(accessors={len(self._accessors)}, action={action!r})"


def _flat(dest: Accessor | USMAllocation) -> Any:
    if isinstance(dest, Accessor):
        return dest.data.reshape(-1)
    return dest.array


def _raw(side: Any) -> Any:
    if isinstance(side, USMAllocation):
        return side.array
    return side


def _nbytes(side: Any) -> int:
    if isinstance(side, USMAllocation):
        return side.nbytes
    if isinstance(side, np.ndarray):
        if not side.flags.c_contiguous:
            raise ValueError("memcpy needs C-contiguous host arrays")
        return int(side.nbytes)
    raise TypeError(f"memcpy operands must be USM allocations or NumPy arrays, got {type(side)}")
