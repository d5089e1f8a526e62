"""
Helpers for splitting work across devices.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from pyoffload.exceptions import DeviceNotFoundError, InvalidRangeError

if TYPE_CHECKING:
    from pyoffload.core.device import Device

logger = logging.getLogger(__name__)


def split_range(size: int, ratio: float = 0.5) -> tuple[int, int]:
    """
    Split ``size`` work items in two.

    Args:
        size: Total number of work items.
        ratio: Share of the first part, in [0, 1].

    Returns:
        ``(first, second)`` with ``first = int(ratio * size)``.

    Raises:
        InvalidRangeError: For a negative size or a ratio outside [0, 1].
    """
    if size < 0:
        raise InvalidRangeError(size, "size must be >= 0")
    if not 0.0 <= ratio <= 1.0:
        raise InvalidRangeError(ratio, "ratio must be within [0, 1]")
    first = int(ratio * size)
    return first, size - first


def partition_range(size: int, weights: Sequence[float]) -> list[slice]:
    """
    Partition ``[0, size)`` into contiguous slices proportional to ``weights``.

    Rounding leftovers go to the last slice, so the slices always cover
    the whole range.

    Raises:
        InvalidRangeError: For a negative size, no weights, or weights
            that are negative or sum to zero.
    """
    if size < 0:
        raise InvalidRangeError(size, "size must be >= 0")
    if not weights:
        raise InvalidRangeError(weights, "at least one weight is required")
    if any(w < 0 for w in weights) or sum(weights) <= 0:
        raise InvalidRangeError(weights, "weights must be >= 0 with a positive sum")

    total = float(sum(weights))
    slices: list[slice] = []
    start = 0
    accumulated = 0.0
    for i, weight in enumerate(weights):
        accumulated += weight
        stop = size if i == len(weights) - 1 else int(size * accumulated / total)
        slices.append(slice(start, stop))
        start = stop
    return slices


def get_two_devices(devices: Sequence[Device] | None = None) -> tuple[Device, Device]:
    """
    Pick two devices to share work.

    Args:
        devices: Candidates (defaults to every available device).

    Returns:
        The first two distinct devices, or the only device twice.

    Raises:
        DeviceNotFoundError: If there are no devices.
    """
    if devices is None:
        from pyoffload.core.device import get_devices

        devices = get_devices()

    distinct: list[Device] = []
    for device in devices:
        if device not in distinct:
            distinct.append(device)

    if not distinct:
        raise DeviceNotFoundError("two devices for load balancing")
    if len(distinct) == 1:
        logger.info(f"Only one device available, using {distinct[0]} twice")
        return distinct[0], distinct[0]
    return distinct[0], distinct[1]
