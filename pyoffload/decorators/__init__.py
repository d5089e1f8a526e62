"""
Decorators for kernel definitions.
"""

from pyoffload.decorators.kernel import kernel, kernel_name, kernel_vectorize

__all__ = [
    "kernel",
    "kernel_name",
    "kernel_vectorize",
]
