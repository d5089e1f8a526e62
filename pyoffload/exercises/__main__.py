"""
Command line runner for the exercises.

    python -m pyoffload.exercises [names...] [--list] [--size N]
        [--device FILTER] [--log-level LEVEL]
"""

from __future__ import annotations

import argparse
import logging
import sys

from pyoffload.config import get_config
from pyoffload.exceptions import PyOffloadError
from pyoffload.exercises import EXERCISES, Exercise

logger = logging.getLogger("pyoffload.exercises")


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pyoffload-exercises",
        description="Run the PyOffload exercises and validate their results.",
    )
    parser.add_argument(
        "names",
        nargs="*",
        metavar="NAME",
        help="Exercises to run (default: all).",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List available exercises and exit.",
    )
    parser.add_argument(
        "--size",
        type=int,
        default=1024,
        help="Number of elements per exercise.",
    )
    parser.add_argument(
        "--device",
        default=None,
        help="Device filter string, e.g. 'cpu', 'gpu' or 'cuda:1'.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help="Logging level (default: PYOFFLOAD_LOG_LEVEL).",
    )
    return parser


def run_exercise(exercise: Exercise, size: int, device: str | None) -> bool:
    """Run one exercise; returns True when it succeeded and validated."""
    try:
        result = exercise.run(size, device)
    except PyOffloadError as e:
        logger.error(f"{exercise.name}: Exception caught: {e}")
        return False

    if not exercise.check(result, size):
        logger.error(f"{exercise.name}: FAILED validation")
        return False

    print(f"{exercise.name}: OK")
    return True


def main(argv: list[str] | None = None) -> int:
    """Main entry-point."""
    args = _parser().parse_args(argv)

    if args.log_level is not None:
        level = getattr(logging, args.log_level)
    else:
        level = get_config().logging_level
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    if args.list:
        for exercise in EXERCISES.values():
            print(f"{exercise.name:<34}{exercise.title}")
        return 0

    if args.size < 0:
        logger.error(f"--size must be >= 0, got {args.size}")
        return 2

    unknown = [name for name in args.names if name not in EXERCISES]
    if unknown:
        logger.error(f"Unknown exercise(s): {', '.join(unknown)}")
        return 2

    selected = [EXERCISES[name] for name in args.names] or list(EXERCISES.values())
    failures = [e.name for e in selected if not run_exercise(e, args.size, args.device)]

    if failures:
        logger.error(f"{len(failures)} of {len(selected)} exercise(s) failed: {failures}")
        return 1
    print(f"All {len(selected)} exercise(s) passed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
