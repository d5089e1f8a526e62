"""
Command queues.

A queue is bound to one device and runs submitted command groups on a
pool of worker threads. Each command waits for the commands it depends
on: explicit ``depends_on`` events, the previous command on an in-order
queue, and the commands inferred from its buffer accessors.

Errors raised while a command runs are never thrown from ``submit``. They
are collected and reported by :meth:`Queue.throw_asynchronous`.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

import numpy as np

from pyoffload.config import get_config
from pyoffload.core.event import Event, KernelExecution, ProfilingInfo
from pyoffload.core.handler import Action, Handler, Requirement
from pyoffload.core.selectors import Selector, select_device
from pyoffload.core.usm import USMAllocation, USMStatistics, kernel_scope
from pyoffload.exceptions import (
    AsynchronousError,
    DependencyFailedError,
    KernelExecutionError,
    PyOffloadError,
    QueueError,
)

if TYPE_CHECKING:
    from pyoffload.core.device import Device

logger = logging.getLogger(__name__)

AsyncHandler = Callable[[list[BaseException]], None]
CommandGroup = Callable[[Handler], None]
DependsOn = Event | Iterable[Event] | None


class Queue:
    """
    Submits work to a device.

    Example:
        >>> with Queue(gpu_selector) as q:
        ...     event = q.parallel_for(n, kernel_fn)
        ...     event.wait()
        ...     q.wait_and_throw()
    """

    def __init__(
        self,
        target: Selector | Device | str | None = None,
        *,
        async_handler: AsyncHandler | None = None,
        in_order: bool = False,
        enable_profiling: bool | None = None,
        max_workers: int | None = None,
        name: str | None = None,
    ) -> None:
        """
        Initialize a queue.

        Args:
            target: Device, selector callable or filter string (defaults to
                the default selector).
            async_handler: Receives errors collected from commands; without
                one they are raised as :class:`AsynchronousError`.
            in_order: Run commands one after another in submission order.
            enable_profiling: Record command timestamps (defaults to the
                runtime configuration).
            max_workers: Worker threads (defaults to the configuration;
                in-order queues always use one).
            name: Queue name used in logs.
        """
        config = get_config()
        self._device = select_device(target)
        self._async_handler = async_handler
        self._in_order = in_order
        self._profiling = config.enable_profiling if enable_profiling is None else enable_profiling
        self._vectorize = config.vectorize
        self._name = name or f"queue@{id(self):x}"

        workers = 1 if in_order else (max_workers or config.queue_workers)
        if workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {workers}")
        self._executor = ThreadPoolExecutor(
            max_workers=workers,
            thread_name_prefix=f"pyoffload-{self._device.filter_string}",
        )

        self._lock = threading.Lock()
        self._events: list[Event] = []
        self._last_event: Event | None = None
        self._errors: list[BaseException] = []
        self._execution_history: list[KernelExecution] = []
        self._usm_statistics = USMStatistics()
        self._closed = False

        logger.info(f"{self._name}: running on {self._device}")

    @property
    def device(self) -> Device:
        """Get the queue's device."""
        return self._device

    @property
    def name(self) -> str:
        """Get the queue name."""
        return self._name

    @property
    def is_in_order(self) -> bool:
        """Check if commands run in submission order."""
        return self._in_order

    @property
    def has_profiling(self) -> bool:
        """Check if events carry profiling timestamps."""
        return self._profiling

    @property
    def vectorize(self) -> bool:
        """Get the default kernel dispatch mode."""
        return self._vectorize

    @property
    def usm_statistics(self) -> USMStatistics:
        """Get USM usage of allocations made against this queue."""
        return self._usm_statistics

    @property
    def is_closed(self) -> bool:
        """Check if the queue has been closed."""
        return self._closed

    @property
    def history(self) -> list[KernelExecution]:
        """Get every command executed so far."""
        with self._lock:
            return list(self._execution_history)

    def get_execution_history(
        self,
        limit: int | None = None,
        kernel_name: str | None = None,
    ) -> list[KernelExecution]:
        """
        Get command execution history.

        Args:
            limit: Maximum number of entries to return (most recent).
            kernel_name: Filter by kernel name.

        Returns:
            List of execution records.
        """
        history = self.history

        if kernel_name:
            history = [e for e in history if e.kernel_name == kernel_name]

        if limit:
            history = history[-limit:]

        return history

    def clear_execution_history(self) -> None:
        """Clear the execution history."""
        with self._lock:
            self._execution_history.clear()

    def submit(self, command_group: CommandGroup, depends_on: DependsOn = None) -> Event:
        """
        Submit a command group.

        Args:
            command_group: Function receiving a :class:`Handler`; it must
                record exactly one action.
            depends_on: Extra events the command waits for.

        Returns:
            Event tracking the command.

        Raises:
            QueueError: If the queue is closed.
            InvalidCommandGroupError: If the group records no action.
        """
        if self._closed:
            raise QueueError(f"{self._name} is closed")

        handler = Handler(self)
        command_group(handler)
        handler.depends_on(depends_on)
        action = handler.action
        requirements = handler.requirements()
        for requirement in requirements:
            requirement.buffer._check_alive()

        future: concurrent.futures.Future[None] = concurrent.futures.Future()
        profiling = ProfilingInfo(submit_ns=time.perf_counter_ns()) if self._profiling else None
        event = Event(future, name=action.name, queue=self, profiling=profiling)

        # Registration and enqueueing happen together so every dependency
        # was submitted before the command that waits on it.
        with self._lock:
            deps: dict[int, Event] = {id(e): e for e in handler.dependencies}
            if self._in_order and self._last_event is not None:
                deps[id(self._last_event)] = self._last_event
            for requirement in requirements:
                for dep in requirement.buffer._register(event, requirement.mode):
                    deps[id(dep)] = dep

            self._last_event = event
            self._events = [e for e in self._events if not e.is_complete]
            self._events.append(event)
            self._executor.submit(self._run, event, action, requirements, list(deps.values()))

        logger.debug(f"{self._name}: submitted {action.name} with {len(deps)} dependencies")
        return event

    def _run(
        self,
        event: Event,
        action: Action,
        requirements: list[Requirement],
        deps: list[Event],
    ) -> None:
        """Execute one command on a worker thread."""
        Event.wait_all(deps)
        execution = KernelExecution(
            kernel_name=action.name,
            device=self._device,
            global_range=action.global_range,
            start_time=time.perf_counter(),
        )
        profiling = event._profiling
        if profiling is not None:
            profiling.start_ns = time.perf_counter_ns()

        error: BaseException | None = None
        failed = next((dep.error for dep in deps if dep.error is not None), None)
        if failed is not None:
            error = DependencyFailedError(action.name, failed)
        else:
            event.mark_started()
            try:
                for requirement in requirements:
                    no_init = all(acc.no_init for acc in requirement.accessors)
                    array = requirement.buffer._acquire(self._device, requirement.mode, no_init)
                    for accessor in requirement.accessors:
                        accessor._bind(array)
                with kernel_scope(self._device):
                    result = action.run(self._device)
                if not result.success:
                    assert result.error is not None
                    error = KernelExecutionError(action.name, result.error)
            except PyOffloadError as e:
                error = e
            except Exception as e:
                error = KernelExecutionError(action.name, e)
            finally:
                for requirement in requirements:
                    for accessor in requirement.accessors:
                        accessor._unbind()

        execution.end_time = time.perf_counter()
        execution.success = error is None
        execution.error = error
        if profiling is not None:
            profiling.end_ns = time.perf_counter_ns()

        with self._lock:
            self._execution_history.append(execution)
            if error is not None:
                self._errors.append(error)

        if error is not None:
            logger.error(f"{self._name}: {error}")
            event.future.set_exception(error)
        else:
            logger.debug(f"{self._name}: {action.name} finished in {execution.duration_ms:.3f}ms")
            event.future.set_result(None)

    def parallel_for(
        self,
        global_range: Any,
        kernel: Callable[[Any], Any],
        *,
        depends_on: DependsOn = None,
        name: str | None = None,
        vectorize: bool | None = None,
    ) -> Event:
        """Submit a data-parallel kernel (shortcut for a one-kernel command group)."""

        def command_group(h: Handler) -> None:
            h.parallel_for(global_range, kernel, name=name, vectorize=vectorize)

        return self.submit(command_group, depends_on)

    def single_task(
        self,
        kernel: Callable[[], Any],
        *,
        depends_on: DependsOn = None,
        name: str | None = None,
    ) -> Event:
        """Submit a kernel that runs once."""

        def command_group(h: Handler) -> None:
            h.single_task(kernel, name=name)

        return self.submit(command_group, depends_on)

    def memcpy(
        self,
        dest: Any,
        src: Any,
        nbytes: int | None = None,
        *,
        depends_on: DependsOn = None,
    ) -> Event:
        """
        Copy bytes between USM allocations and host arrays.

        Args:
            dest: Destination allocation or NumPy array.
            src: Source allocation or NumPy array.
            nbytes: Bytes to copy (defaults to the size of ``src``).
            depends_on: Events to wait for first.
        """

        def command_group(h: Handler) -> None:
            h.memcpy(dest, src, nbytes)

        return self.submit(command_group, depends_on)

    def copy(
        self,
        src: Any,
        dest: Any,
        count: int | None = None,
        *,
        depends_on: DependsOn = None,
    ) -> Event:
        """Copy ``count`` elements (defaults to all of ``src``) between USM and host arrays."""
        nbytes = None if count is None else count * _itemsize(src)

        def command_group(h: Handler) -> None:
            h.memcpy(dest, src, nbytes)

        return self.submit(command_group, depends_on)

    def fill(
        self,
        dest: USMAllocation,
        value: Any,
        count: int | None = None,
        *,
        depends_on: DependsOn = None,
    ) -> Event:
        """Fill the first ``count`` elements of a USM allocation with ``value``."""

        def command_group(h: Handler) -> None:
            h.fill(dest, value, count)

        return self.submit(command_group, depends_on)

    def memset(
        self,
        dest: USMAllocation,
        value: int,
        nbytes: int | None = None,
        *,
        depends_on: DependsOn = None,
    ) -> Event:
        """Set the first ``nbytes`` bytes of a USM allocation to ``value``."""

        def command_group(h: Handler) -> None:
            h.memset(dest, value, nbytes)

        return self.submit(command_group, depends_on)

    def _pending(self) -> list[Event]:
        with self._lock:
            return list(self._events)

    def wait(self) -> None:
        """Block until every submitted command has finished. Never raises."""
        Event.wait_all(self._pending())

    async def wait_async(self) -> None:
        """Await every submitted command without blocking the event loop."""
        await asyncio.gather(*(event.wait_async() for event in self._pending()))

    def throw_asynchronous(self) -> None:
        """
        Report errors collected since the last report.

        Raises:
            AsynchronousError: If errors are pending and the queue has no
                async handler.
        """
        with self._lock:
            errors, self._errors = self._errors, []
        if not errors:
            return
        if self._async_handler is not None:
            self._async_handler(errors)
            return
        raise AsynchronousError(errors)

    def wait_and_throw(self) -> None:
        """Wait for every command, then report pending errors."""
        self.wait()
        self.throw_asynchronous()

    def close(self) -> None:
        """Wait for outstanding commands and stop the workers."""
        if self._closed:
            return
        self._closed = True
        self.wait()
        self._executor.shutdown(wait=True)
        with self._lock:
            unreported = len(self._errors)
        if unreported:
            logger.warning(f"{self._name}: closed with {unreported} unreported error(s)")

    def __enter__(self) -> Queue:
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
            f"Queue(name={self._name!r}, device={self._device}, in_order={self._in_order}, "
            f"executions={len(self._execution_history)})"
        )


def _itemsize(side: Any) -> int:
    if isinstance(side, USMAllocation):
        return side.dtype.itemsize
    return np.asarray(side).dtype.itemsize
