"""
Vector addition on device USM allocations.

Data is moved explicitly with memcpy, waiting for every copy before the
next command is submitted.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np

from pyoffload.core.queue import Queue
from pyoffload.core.selectors import usm_selector
from pyoffload.core.usm import free, malloc_device
from pyoffload.decorators.kernel import kernel

logger = logging.getLogger(__name__)


def run(size: int = 1024, device: str | None = None) -> np.ndarray:
    a = np.arange(size, dtype=np.float32)
    b = np.arange(size, dtype=np.float32)
    r = np.zeros(size, dtype=np.float32)

    with Queue(usm_selector if device is None else device) as queue:
        dev_a = malloc_device(size, queue, np.float32)
        dev_b = malloc_device(size, queue, np.float32)
        dev_r = malloc_device(size, queue, np.float32)

        queue.memcpy(dev_a, a, a.nbytes).wait()
        queue.memcpy(dev_b, b, b.nbytes).wait()
        queue.memcpy(dev_r, r, r.nbytes).wait()

        @kernel(name="usm_add")
        def usm_add(i: Any) -> None:
            dev_r[i] = dev_a[i] + dev_b[i]

        queue.parallel_for(size, usm_add).wait()

        queue.memcpy(a, dev_a, a.nbytes).wait()
        queue.memcpy(b, dev_b, b.nbytes).wait()
        queue.memcpy(r, dev_r, r.nbytes).wait()

        free(dev_a, queue)
        free(dev_b, queue)
        free(dev_r, queue)

        queue.throw_asynchronous()

    return r
