"""
Splitting one vector addition across two devices.

The arrays are cut at ``ratio``; each half gets its own buffers (views
of the host arrays) and its own queue, and both halves run concurrently.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np

from pyoffload.core.access import read_only, write_only
from pyoffload.core.buffer import Buffer
from pyoffload.core.handler import Handler
from pyoffload.core.partition import get_two_devices, split_range
from pyoffload.core.queue import Queue
from pyoffload.core.selectors import select_device

logger = logging.getLogger(__name__)


def _vector_add(
    queue: Queue, buf_a: Buffer, buf_b: Buffer, buf_r: Buffer, name: str
) -> None:
    def command_group(h: Handler) -> None:
        acc_a = buf_a.get_access(h, read_only)
        acc_b = buf_b.get_access(h, read_only)
        acc_r = buf_r.get_access(h, write_only)

        def vector_add(i: Any) -> None:
            acc_r[i] = acc_a[i] + acc_b[i]

        h.parallel_for(len(buf_r), vector_add, name=name)

    queue.submit(command_group)


def run(size: int = 1024, device: str | None = None, ratio: float = 0.5) -> np.ndarray:
    a = np.arange(size, dtype=np.float32)
    b = np.arange(size, dtype=np.float32)
    r = np.zeros(size, dtype=np.float32)
    first, _ = split_range(size, ratio)

    devices = get_two_devices(None if device is None else [select_device(device)])
    with Queue(devices[0]) as queue_1, Queue(devices[1]) as queue_2:
        logger.info(f"Running on devices: 1: {queue_1.device.name}, 2: {queue_2.device.name}")

        with (
            Buffer(a[:first]) as buf_first_a,
            Buffer(b[:first]) as buf_first_b,
            Buffer(r[:first]) as buf_first_r,
            Buffer(a[first:]) as buf_second_a,
            Buffer(b[first:]) as buf_second_b,
            Buffer(r[first:]) as buf_second_r,
        ):
            _vector_add(queue_1, buf_first_a, buf_first_b, buf_first_r, "vector_add_first")
            _vector_add(queue_2, buf_second_a, buf_second_b, buf_second_r, "vector_add_second")

            queue_1.wait_and_throw()
            queue_2.wait_and_throw()

    return r
