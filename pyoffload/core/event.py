"""
Events returned by queue submissions.

An event tracks one command. Waiting on it never raises; errors raised by
the command are reported through the owning queue's asynchronous error
path (see :meth:`pyoffload.core.queue.Queue.throw_asynchronous`).
"""

from __future__ import annotations

import asyncio
import concurrent.futures
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from pyoffload.exceptions import ProfilingInfoNotAvailableError

if TYPE_CHECKING:
    from pyoffload.core.device import Device
    from pyoffload.core.queue import Queue


class EventStatus(Enum):
    """Execution status of a command."""

    SUBMITTED = auto()
    RUNNING = auto()
    COMPLETE = auto()


@dataclass
class ProfilingInfo:
    """Command timestamps in nanoseconds (``time.perf_counter_ns`` clock)."""

    submit_ns: int = 0
    start_ns: int = 0
    end_ns: int = 0

    @property
    def duration_ns(self) -> int:
        """Get execution time in nanoseconds."""
        return self.end_ns - self.start_ns

    @property
    def duration_ms(self) -> float:
        """Get execution time in milliseconds."""
        return self.duration_ns / 1_000_000

    @property
    def queued_ns(self) -> int:
        """Get time spent waiting between submission and start."""
        return self.start_ns - self.submit_ns


@dataclass
class KernelExecution:
    """Record of a command executed by a queue."""

    execution_id: UUID = field(default_factory=uuid4)
    kernel_name: str = ""
    device: Device | None = None
    global_range: tuple[int, ...] = ()
    start_time: float = 0.0
    end_time: float = 0.0
    success: bool = False
    error: BaseException | None = None

    @property
    def duration_ms(self) -> float:
        """Get execution duration in milliseconds."""
        return (self.end_time - self.start_time) * 1000


class Event:
    """
    Handle to a submitted command.

    Example:
        >>> event = queue.parallel_for(1024, kernel)
        >>> event.wait()
        >>> event.status
        <EventStatus.COMPLETE: 3>
    """

    def __init__(
        self,
        future: concurrent.futures.Future[None],
        *,
        name: str = "",
        queue: Queue | None = None,
        profiling: ProfilingInfo | None = None,
    ) -> None:
        """
        Initialize an event.

        Args:
            future: Future completed when the command finishes.
            name: Command name, used in diagnostics.
            queue: Queue the command was submitted to.
            profiling: Timestamps, present only on profiling queues.
        """
        self._future = future
        self._name = name
        self._queue = queue
        self._profiling = profiling
        self._started = False

    @classmethod
    def completed(cls, name: str = "") -> Event:
        """Create an event that is already complete."""
        future: concurrent.futures.Future[None] = concurrent.futures.Future()
        future.set_result(None)
        return cls(future, name=name)

    @property
    def name(self) -> str:
        """Get the command name."""
        return self._name

    @property
    def future(self) -> concurrent.futures.Future[None]:
        """Get the underlying future."""
        return self._future

    @property
    def status(self) -> EventStatus:
        """Get the command status."""
        if self._future.done():
            return EventStatus.COMPLETE
        if self._started:
            return EventStatus.RUNNING
        return EventStatus.SUBMITTED

    @property
    def is_complete(self) -> bool:
        """Check if the command has finished (successfully or not)."""
        return self._future.done()

    @property
    def error(self) -> BaseException | None:
        """Get the error raised by the command, if it finished with one."""
        if not self._future.done():
            return None
        return self._future.exception()

    @property
    def profiling(self) -> ProfilingInfo:
        """
        Get profiling timestamps.

        Raises:
            ProfilingInfoNotAvailableError: If the queue was not created
                with profiling enabled.
        """
        if self._profiling is None:
            raise ProfilingInfoNotAvailableError()
        return self._profiling

    def mark_started(self) -> None:
        """Record that the command began executing."""
        self._started = True

    def wait(self, timeout: float | None = None) -> bool:
        """
        Block until the command finishes.

        Never raises for command errors.

        Args:
            timeout: Maximum time to wait in seconds.

        Returns:
            True if the command finished.
        """
        done, _ = concurrent.futures.wait([self._future], timeout=timeout)
        return bool(done)

    def wait_and_throw(self) -> None:
        """Wait, then report pending asynchronous errors of the owning queue."""
        self.wait()
        if self._queue is not None:
            self._queue.throw_asynchronous()
        elif self.error is not None:
            from pyoffload.exceptions import AsynchronousError

            raise AsynchronousError([self.error])

    async def wait_async(self) -> None:
        """Await completion without blocking the event loop."""
        if self._future.done():
            return
        wrapped = asyncio.wrap_future(self._future)
        await asyncio.wait([wrapped])
        # errors go through the queue; mark them retrieved for asyncio
        wrapped.exception()

    @staticmethod
    def wait_all(events: Iterable[Event], timeout: float | None = None) -> bool:
        """
        Block until every event finishes.

        Returns:
            True if all finished within ``timeout``.
        """
        futures = [event.future for event in events]
        _, pending = concurrent.futures.wait(futures, timeout=timeout)
        return not pending

    def __repr__(self) -> str:
        """String representation."""
        return f"Event(name={self._name!r}, status={self.status.name})"
