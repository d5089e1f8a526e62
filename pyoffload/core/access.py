"""
Access modes and per-buffer dependency tracking.

Each buffer keeps an :class:`AccessTracker` recording the last command
that wrote it and the commands that read it since. A new command's
dependencies follow from its declared access:

- read after write: a read waits for the last writer;
- write after read / write after write: a write waits for the last
  writer and every reader since.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum

from pyoffload.core.event import Event

logger = logging.getLogger(__name__)


class AccessMode(Enum):
    """Declared intent of an accessor."""

    READ = "read"
    WRITE = "write"
    READ_WRITE = "read_write"

    @property
    def reads(self) -> bool:
        """Check if this mode reads existing contents."""
        return self != AccessMode.WRITE

    @property
    def writes(self) -> bool:
        """Check if this mode modifies contents."""
        return self != AccessMode.READ


read_only = AccessMode.READ
write_only = AccessMode.WRITE
read_write = AccessMode.READ_WRITE


class AccessTracker:
    """
    Tracks outstanding commands touching one buffer.

    Thread-safe; completed events are pruned as new ones are recorded.
    """

    def __init__(self, name: str = "") -> None:
        self._name = name
        self._lock = threading.Lock()
        self._last_write: Event | None = None
        self._reads: list[Event] = []

    def dependencies(self, mode: AccessMode) -> list[Event]:
        """
        Get the events a new access in ``mode`` must wait for.

        Args:
            mode: Declared access mode.

        Returns:
            Outstanding events, oldest first.
        """
        with self._lock:
            deps: list[Event] = []
            if self._last_write is not None and not self._last_write.is_complete:
                deps.append(self._last_write)
            if mode.writes:
                deps.extend(e for e in self._reads if not e.is_complete)
            return deps

    def record(self, event: Event, mode: AccessMode) -> list[Event]:
        """
        Register ``event`` as accessing the buffer in ``mode``.

        Returns:
            The dependencies computed before registering.
        """
        with self._lock:
            deps: list[Event] = []
            if self._last_write is not None and not self._last_write.is_complete:
                deps.append(self._last_write)

            if mode.writes:
                deps.extend(e for e in self._reads if not e.is_complete)
                self._last_write = event
                self._reads = []
            else:
                self._reads = [e for e in self._reads if not e.is_complete]
                self._reads.append(event)

        if deps:
            logger.debug(
                f"{event.name} ({mode.value} {self._name}) depends on {[d.name for d in deps]}"
            )
        return deps

    def pending(self) -> list[Event]:
        """Get every outstanding event touching the buffer."""
        return self.dependencies(AccessMode.READ_WRITE)
