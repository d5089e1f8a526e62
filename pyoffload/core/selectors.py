"""
Device selectors.

A selector is any callable taking a :class:`Device` and returning an
integer score. Devices with a negative score are never chosen; among the
rest the highest score wins, ties going to the earliest device.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence

from pyoffload.core.device import Aspect, Device, DeviceType, get_devices, get_registry
from pyoffload.exceptions import DeviceNotFoundError

logger = logging.getLogger(__name__)

Selector = Callable[[Device], int]

REJECT = -1


def default_selector(device: Device) -> int:
    """Prefer GPUs, then accelerators, then CPUs."""
    return device.default_selector_score


def gpu_selector(device: Device) -> int:
    """Accept only GPU devices."""
    return device.default_selector_score if device.device_type == DeviceType.GPU else REJECT


def cpu_selector(device: Device) -> int:
    """Accept only CPU devices."""
    return device.default_selector_score if device.device_type == DeviceType.CPU else REJECT


def accelerator_selector(device: Device) -> int:
    """Accept only accelerator devices."""
    return (
        device.default_selector_score
        if device.device_type == DeviceType.ACCELERATOR
        else REJECT
    )


def aspect_selector(
    *required: Aspect | str,
    excluded: Iterable[Aspect | str] = (),
) -> Selector:
    """
    Build a selector from required and excluded aspects.

    Accepted devices are ranked with the default selector score.

    Example:
        >>> select_device(aspect_selector("fp64", "gpu"))
    """
    required_aspects = [Aspect(a) if isinstance(a, str) else a for a in required]
    excluded_aspects = [Aspect(a) if isinstance(a, str) else a for a in excluded]

    def selector(device: Device) -> int:
        if not all(device.has(a) for a in required_aspects):
            return REJECT
        if any(device.has(a) for a in excluded_aspects):
            return REJECT
        return device.default_selector_score

    required_names = ", ".join(a.value for a in required_aspects)
    selector.__name__ = f"aspect_selector({required_names})"
    return selector


def usm_selector(device: Device) -> int:
    """Accept devices that support device USM allocations."""
    return (
        device.default_selector_score
        if device.has(Aspect.USM_DEVICE_ALLOCATIONS)
        else REJECT
    )


def select_device(
    selector: Selector | Device | str | None = None,
    devices: Sequence[Device] | None = None,
) -> Device:
    """
    Choose a device.

    Args:
        selector: ``None`` for the default selector, a :class:`Device`, a
            selector callable, or a filter string such as ``"gpu"`` or
            ``"cuda:1"``.
        devices: Candidates (defaults to every available device).

    Returns:
        The chosen device.

    Raises:
        DeviceNotFoundError: If every candidate is rejected.
        TypeError: If ``selector`` has an unsupported type.
    """
    if isinstance(selector, Device):
        return selector
    if isinstance(selector, str):
        return get_registry().get_device(selector)
    if selector is None:
        selector = default_selector
    if not callable(selector):
        raise TypeError(f"Expected a selector, Device or filter string, got {type(selector)}")

    candidates = list(devices) if devices is not None else get_devices()
    best: Device | None = None
    best_score = REJECT
    for device in candidates:
        score = int(selector(device))
        if score >= 0 and (best is None or score > best_score):
            best = device
            best_score = score

    name = getattr(selector, "__name__", repr(selector))
    if best is None:
        raise DeviceNotFoundError(f"selector '{name}'", [str(d) for d in candidates])

    logger.debug(f"Selector '{name}' chose {best} (score={best_score})")
    return best
