"""
Kernel decorator for PyOffload.

Attaches a name and a dispatch mode to a kernel function. Queues use the
name in execution history and logs, and the dispatch mode to decide
whether the kernel is called once with index arrays or once per work item.
"""

from __future__ import annotations

import functools
from collections.abc import Callable
from typing import Any, TypeVar

F = TypeVar("F", bound=Callable[..., Any])


def kernel(
    func: F | None = None,
    *,
    name: str | None = None,
    vectorize: bool | None = None,
) -> F | Callable[[F], F]:
    """
    Decorator to define a compute kernel.

    Args:
        func: The function to decorate.
        name: Optional kernel name (defaults to function name).
        vectorize: Force vectorized (True) or per-item (False) dispatch;
            None defers to the queue configuration.

    Returns:
        Decorated kernel function.

    Example:
        >>> @kernel
        ... def double(i):
        ...     out[i] = 2 * a[i]
        ...
        >>> @kernel(name="scalar_sum", vectorize=False)
        ... def scalar_sum(i):
        ...     total[0] += a[i]
    """

    def decorator(fn: F) -> F:
        meta = {
            "name": name or getattr(fn, "__name__", "kernel"),
            "vectorize": vectorize,
        }

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return fn(*args, **kwargs)

        wrapper._kernel_meta = meta  # type: ignore
        wrapper._original_func = fn  # type: ignore

        return wrapper  # type: ignore

    if func is not None:
        return decorator(func)
    return decorator


def kernel_name(func: Callable[..., Any]) -> str:
    """Get the display name of a kernel."""
    meta = getattr(func, "_kernel_meta", None)
    if meta is not None:
        return str(meta["name"])
    name = getattr(func, "__name__", None) or type(func).__name__
    return "kernel" if name == "<lambda>" else name


def kernel_vectorize(func: Callable[..., Any], override: bool | None, default: bool) -> bool:
    """
    Resolve the dispatch mode of a kernel.

    An explicit ``override`` wins, then the decorator setting, then ``default``.
    """
    if override is not None:
        return override
    meta = getattr(func, "_kernel_meta", None)
    if meta is not None and meta["vectorize"] is not None:
        return bool(meta["vectorize"])
    return default
