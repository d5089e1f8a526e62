"""
Worked exercises built on the runtime.

Each exercise runs a small offload program and returns its output, which
the command line runner checks against a closed form.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import numpy as np

from pyoffload.exercises import (
    load_balancing,
    managing_dependencies,
    synchronization,
    temporary_data,
    usm_selector,
    usm_vector_add,
)


def twice_index(size: int) -> np.ndarray:
    """Expected output ``2 * i``."""
    return np.arange(size) * 2


def four_times_index(size: int) -> np.ndarray:
    """Expected output ``4 * i``."""
    return np.arange(size) * 4


@dataclass(frozen=True)
class Exercise:
    """A runnable exercise and the output it must produce."""

    name: str
    title: str
    run: Callable[..., Any]
    expected: Callable[[int], np.ndarray] | None = None

    def check(self, result: Any, size: int) -> bool:
        """Compare a result with the expected output; exercises without one always pass."""
        if self.expected is None:
            return True
        return bool(np.array_equal(np.asarray(result), self.expected(size)))


EXERCISES: dict[str, Exercise] = {
    exercise.name: exercise
    for exercise in (
        Exercise("usm_selector", "Select a device with USM support", usm_selector.run),
        Exercise("usm_vector_add", "Vector add on device USM", usm_vector_add.run, twice_index),
        Exercise(
            "synchronization_usm",
            "USM copies synchronized by wait_and_throw",
            synchronization.run_usm,
            twice_index,
        ),
        Exercise(
            "synchronization_buffer_accessor",
            "Buffers, events and host accessors",
            synchronization.run_buffer_accessor,
            twice_index,
        ),
        Exercise(
            "managing_dependencies",
            "Kernel ordering inferred from accessors",
            managing_dependencies.run,
            twice_index,
        ),
        Exercise(
            "temporary_data",
            "Temporary buffers without extra transfers",
            temporary_data.run,
            four_times_index,
        ),
        Exercise(
            "load_balancing",
            "Vector add split across two devices",
            load_balancing.run,
            twice_index,
        ),
    )
}


def get_exercise(name: str) -> Exercise:
    """
    Look up an exercise by name.

    Raises:
        KeyError: If no exercise has that name.
    """
    try:
        return EXERCISES[name]
    except KeyError:
        raise KeyError(f"Unknown exercise '{name}'. Available: {', '.join(EXERCISES)}") from None


__all__ = [
    "EXERCISES",
    "Exercise",
    "get_exercise",
    "four_times_index",
    "twice_index",
]
