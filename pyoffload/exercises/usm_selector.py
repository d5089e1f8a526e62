"""
Choosing a device that supports USM allocations.
"""

from __future__ import annotations

import logging

from pyoffload.core.device import Device
from pyoffload.core.queue import Queue
from pyoffload.core.selectors import select_device, usm_selector

logger = logging.getLogger(__name__)


def run(size: int = 1024, device: str | None = None) -> Device:
    """
    Create a queue on a device with USM device allocations.

    ``size`` is unused; every exercise shares one signature.

    Returns:
        The chosen device.
    """
    target = usm_selector if device is None else select_device(device)
    with Queue(target) as queue:
        logger.info(f"Chosen device: {queue.device.name}")
        queue.throw_asynchronous()
        return queue.device
