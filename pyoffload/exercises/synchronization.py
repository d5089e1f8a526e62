"""
Synchronizing with the host.

Two flavours of the same vector addition: USM memory synchronized with
a single ``wait_and_throw`` after the copies back, and buffers whose
results are read through a host accessor and written back on release.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np

from pyoffload.core.access import read_only, write_only
from pyoffload.core.buffer import Buffer
from pyoffload.core.handler import Handler
from pyoffload.core.queue import Queue
from pyoffload.core.selectors import default_selector, usm_selector
from pyoffload.core.usm import free, malloc_device
from pyoffload.decorators.kernel import kernel
from pyoffload.exceptions import PyOffloadError

logger = logging.getLogger(__name__)


def run_usm(size: int = 1024, device: str | None = None) -> np.ndarray:
    a = np.arange(size, dtype=np.float32)
    b = np.arange(size, dtype=np.float32)
    r = np.zeros(size, dtype=np.float32)

    with Queue(usm_selector if device is None else device) as queue:
        dev_a = malloc_device(size, queue, np.float32)
        dev_b = malloc_device(size, queue, np.float32)
        dev_r = malloc_device(size, queue, np.float32)

        queue.memcpy(dev_a, a).wait()
        queue.memcpy(dev_b, b).wait()
        queue.memcpy(dev_r, r).wait()

        @kernel(name="usm_add")
        def usm_add(i: Any) -> None:
            dev_r[i] = dev_a[i] + dev_b[i]

        queue.parallel_for(size, usm_add).wait()

        # No per-copy waits; one wait_and_throw covers all three
        queue.memcpy(a, dev_a)
        queue.memcpy(b, dev_b)
        queue.memcpy(r, dev_r)
        queue.wait_and_throw()

        free(dev_a, queue)
        free(dev_b, queue)
        free(dev_r, queue)

    return r


def run_buffer_accessor(size: int = 1024, device: str | None = None) -> np.ndarray:
    a = np.arange(size, dtype=np.float32)
    b = np.arange(size, dtype=np.float32)
    r = np.zeros(size, dtype=np.float32)

    with Queue(default_selector if device is None else device) as queue:
        logger.info(f"Chosen device: {queue.device.name}")

        with Buffer(a) as buf_a, Buffer(b) as buf_b, Buffer(r) as buf_r:

            def command_group(h: Handler) -> None:
                acc_a = buf_a.get_access(h, read_only)
                acc_b = buf_b.get_access(h, read_only)
                acc_r = buf_r.get_access(h, write_only)

                def vector_add(i: Any) -> None:
                    acc_r[i] = acc_a[i] + acc_b[i]

                h.parallel_for(size, vector_add)

            queue.submit(command_group).wait()

            with buf_r.get_host_access(read_only) as host_r:
                expected = np.arange(size, dtype=np.float32) * 2
                if not np.array_equal(host_r.data, expected):
                    raise PyOffloadError("host accessor saw unexpected results")

        queue.throw_asynchronous()

    return r
