"""
Temporary data that never travels back.

The input buffer is only read on the device, so its write-back is
disabled; the intermediate buffer has no host data and its final data
is the output array. The only device to host transfer happens when the
intermediate buffer is closed.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np

from pyoffload.core.buffer import Buffer
from pyoffload.core.handler import Handler
from pyoffload.core.queue import Queue
from pyoffload.core.selectors import default_selector

logger = logging.getLogger(__name__)


def run(size: int = 1024, device: str | None = None) -> np.ndarray:
    inp = np.arange(size, dtype=np.float32)
    out = np.zeros(size, dtype=np.float32)

    with Queue(default_selector if device is None else device) as queue:
        buf_in = Buffer(inp, name="in")
        buf_tmp = Buffer(shape=(size,), dtype=np.float32, name="tmp")
        buf_in.set_final_data(None)
        buf_tmp.set_final_data(out)

        with buf_in, buf_tmp:

            def scale(h: Handler) -> None:
                acc_in = buf_in.get_access(h)
                acc_tmp = buf_tmp.get_access(h)

                def times_eight(i: Any) -> None:
                    acc_tmp[i] = acc_in[i] * 8

                h.parallel_for(size, times_eight, name="scale")

            def halve(h: Handler) -> None:
                acc_tmp = buf_tmp.get_access(h)

                def half(i: Any) -> None:
                    acc_tmp[i] /= 2

                h.parallel_for(size, half, name="halve")

            queue.submit(scale)
            queue.submit(halve)
            queue.wait_and_throw()

        stats = buf_tmp.statistics
        logger.info(
            f"tmp transfers: {stats.transfers_to_device} to device, "
            f"{stats.transfers_to_host} to host"
        )

    return out
