"""
Dependencies inferred from accessors.

Four kernels form a diamond: A doubles ``a``; B and C read ``a`` and
update ``b`` and ``c`` independently; Out combines them. No event is
passed around, the buffers' access modes order the kernels.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from pyoffload.core.access import read_only, read_write, write_only
from pyoffload.core.buffer import Buffer
from pyoffload.core.handler import Handler
from pyoffload.core.queue import Queue
from pyoffload.core.selectors import default_selector


def run(size: int = 1024, device: str | None = None) -> np.ndarray:
    in_a = np.arange(size, dtype=np.int32)
    in_b = np.arange(size, dtype=np.int32)
    in_c = np.arange(size, dtype=np.int32)
    out = np.zeros(size, dtype=np.int32)

    with Queue(default_selector if device is None else device) as queue:
        with (
            Buffer(in_a, name="a") as buf_a,
            Buffer(in_b, name="b") as buf_b,
            Buffer(in_c, name="c") as buf_c,
            Buffer(out, name="out") as buf_out,
        ):

            def kernel_a(h: Handler) -> None:
                acc_a = buf_a.get_access(h, read_write)

                def double(i: Any) -> None:
                    acc_a[i] = acc_a[i] * 2

                h.parallel_for(size, double, name="kernel_a")

            def kernel_b(h: Handler) -> None:
                acc_a = buf_a.get_access(h, read_only)
                acc_b = buf_b.get_access(h, write_only)

                def add(i: Any) -> None:
                    acc_b[i] += acc_a[i]

                h.parallel_for(size, add, name="kernel_b")

            def kernel_c(h: Handler) -> None:
                acc_a = buf_a.get_access(h, read_only)
                acc_c = buf_c.get_access(h, write_only)

                def subtract(i: Any) -> None:
                    acc_c[i] -= acc_a[i]

                h.parallel_for(size, subtract, name="kernel_c")

            def kernel_out(h: Handler) -> None:
                acc_b = buf_b.get_access(h, read_only)
                acc_c = buf_c.get_access(h, read_only)
                acc_out = buf_out.get_access(h, write_only)

                def combine(i: Any) -> None:
                    acc_out[i] = acc_b[i] + acc_c[i]

                h.parallel_for(size, combine, name="kernel_out")

            for command_group in (kernel_a, kernel_b, kernel_c, kernel_out):
                queue.submit(command_group)

            queue.wait_and_throw()

    return out
