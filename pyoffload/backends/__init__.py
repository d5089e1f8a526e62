"""
Backend implementations for PyOffload.
"""

from pyoffload.backends.base import Backend, BackendType, KernelExecutionResult
from pyoffload.backends.cpu import CPUBackend
from pyoffload.backends.cuda import CUDABackend

__all__ = [
    "Backend",
    "BackendType",
    "KernelExecutionResult",
    "CPUBackend",
    "CUDABackend",
]
