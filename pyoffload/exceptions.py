"""
PyOffload exception hierarchy.

This module defines the complete exception hierarchy for PyOffload,
providing specific exception types for different error categories:

- DeviceError: Device discovery and selection failures
- BackendError: Compute backend availability and execution
- QueueError: Command group and queue misuse
- KernelError: Kernel failures reported asynchronously
- BufferError: Buffer lifetime, synchronization and accessor misuse
- USMError: Unified shared memory access violations
- ValidationError: Configuration and range validation errors

All exceptions inherit from PyOffloadError for easy catching.
"""

from __future__ import annotations


class PyOffloadError(Exception):
    """Base exception for all PyOffload errors."""

    pass


class DeviceError(PyOffloadError):
    """Base exception for device-related errors."""

    pass


class DeviceNotFoundError(DeviceError):
    """Raised when no available device satisfies a selection request."""

    def __init__(self, criteria: str, available: list[str] | None = None) -> None:
        self.criteria = criteria
        self.available = available or []
        msg = f"No device satisfies {criteria}."
        if self.available:
            msg += f" Available devices: {self.available}"
        super().__init__(msg)


class BackendError(PyOffloadError):
    """Base exception for backend-related errors."""

    pass


class BackendNotAvailableError(BackendError):
    """Raised when a requested backend is not available."""

    def __init__(self, backend_name: str, reason: str) -> None:
        self.backend_name = backend_name
        self.reason = reason
        super().__init__(f"Backend '{backend_name}' is not available: {reason}")


class CUDAError(BackendError):
    """Raised for CUDA-specific errors."""

    pass


class QueueError(PyOffloadError):
    """Base exception for queue-related errors."""

    pass


class InvalidCommandGroupError(QueueError):
    """Raised when a command group does not record exactly one action."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid command group: {reason}")


class ProfilingInfoNotAvailableError(QueueError):
    """Raised when profiling data is requested from a non-profiling queue."""

    def __init__(self) -> None:
        super().__init__(
            "Profiling information is not available. "
            "Create the queue with enable_profiling=True."
        )


class KernelError(PyOffloadError):
    """Base exception for kernel-related errors."""

    pass


class KernelExecutionError(KernelError):
    """Raised when a kernel fails while running on a device."""

    def __init__(self, kernel_name: str, cause: BaseException) -> None:
        self.kernel_name = kernel_name
        self.cause = cause
        super().__init__(f"Kernel '{kernel_name}' failed: {cause!r}")


class DependencyFailedError(KernelError):
    """Raised for a command that was skipped because a dependency failed."""

    def __init__(self, kernel_name: str, cause: BaseException) -> None:
        self.kernel_name = kernel_name
        self.cause = cause
        super().__init__(f"Command '{kernel_name}' skipped, a dependency failed: {cause}")


class AsynchronousError(PyOffloadError):
    """
    Raised when a queue reports errors that happened during execution.

    Carries every error collected since the last report.
    """

    def __init__(self, exceptions: list[BaseException]) -> None:
        self.exceptions = list(exceptions)
        count = len(self.exceptions)
        first = self.exceptions[0] if self.exceptions else None
        super().__init__(f"{count} asynchronous error(s) reported; first: {first}")

    def __iter__(self):  # type: ignore[no-untyped-def]
        return iter(self.exceptions)

    def __len__(self) -> int:
        return len(self.exceptions)


class BufferError(PyOffloadError):
    """Base exception for buffer-related errors."""

    pass


class BufferReleasedError(BufferError):
    """Raised when using a buffer after it has been closed."""

    def __init__(self) -> None:
        super().__init__("Buffer has been released. Create a new buffer instead.")


class BufferSyncError(BufferError):
    """Raised when buffer synchronization fails."""

    def __init__(self, direction: str, cause: Exception) -> None:
        self.direction = direction
        self.cause = cause
        super().__init__(f"Failed to sync buffer {direction}: {cause}")


class AccessorError(BufferError):
    """Raised when an accessor is used outside of its command."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid accessor use: {reason}")


class USMError(PyOffloadError):
    """Base exception for unified shared memory errors."""

    pass


class USMAccessError(USMError):
    """Raised when a USM allocation is dereferenced where it is not accessible."""

    def __init__(self, kind: str, reason: str) -> None:
        self.kind = kind
        self.reason = reason
        super().__init__(f"Cannot access {kind} USM allocation: {reason}")


class USMFreedError(USMError):
    """Raised when using a USM allocation after it was freed."""

    def __init__(self) -> None:
        super().__init__("USM allocation has already been freed")


class ValidationError(PyOffloadError):
    """Base exception for validation-related errors."""

    pass


class InvalidConfigurationError(ValidationError):
    """Raised when configuration is invalid."""

    def __init__(self, parameter: str, value: object, reason: str) -> None:
        self.parameter = parameter
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid configuration: {parameter}={value!r} - {reason}")


class InvalidRangeError(ValidationError):
    """Raised when a kernel range or partition is invalid."""

    def __init__(self, value: object, reason: str) -> None:
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid range {value!r}: {reason}")
