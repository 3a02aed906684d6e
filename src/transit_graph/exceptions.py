"""
Custom exceptions for the transit graph cache.

Provides a hierarchy of exceptions for the cache lifecycle:
eager input validation, build and load failures, readiness
timeouts and cancellation of import jobs.
"""

from typing import List, Optional

BYTES_PER_GB = 1024.0 * 1024.0 * 1024.0


class GraphCacheError(Exception):
    """Base exception for all graph cache errors."""

    pass


class InputValidationError(GraphCacheError):
    """Base exception for precondition failures detected before any mutation."""

    pass


class MissingInputFilesError(InputValidationError):
    """Raised when one or both input files are absent or not regular files."""

    def __init__(self, missing: List[str]) -> None:
        self.missing = list(missing)
        message = f"missing input files: {', '.join(self.missing)}"
        super().__init__(message)


class UnreadableInputFilesError(InputValidationError):
    """Raised when input files exist but cannot be read."""

    def __init__(self, unreadable: List[str]) -> None:
        self.unreadable = list(unreadable)
        super().__init__("files unreadable")


class InsufficientDiskSpaceError(InputValidationError):
    """Raised when the cache volume has less free space than required."""

    def __init__(self, available_bytes: int, required_bytes: int) -> None:
        self.available_bytes = available_bytes
        self.required_bytes = required_bytes
        message = (
            f"insufficient disk space: {available_bytes / BYTES_PER_GB:.2f} GB "
            f"available, {required_bytes / BYTES_PER_GB:.2f} GB required"
        )
        super().__init__(message)


class MetadataWriteError(GraphCacheError):
    """Raised when the fingerprint file cannot be written."""

    def __init__(self, path: str, cause: Optional[BaseException] = None) -> None:
        self.path = path
        self.cause = cause
        message = f"failed to write cache version to {path}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class BuildFailureError(GraphCacheError):
    """Raised when the routing engine fails while building the artifact."""

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"graph build failed: {cause}")


class ArtifactInitError(GraphCacheError):
    """Raised when a built or cached artifact cannot be loaded."""

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"graph load failed: {cause}")


class ReadinessTimeoutError(GraphCacheError):
    """Raised when the artifact does not become ready within the timeout."""

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__("timeout")


class ImportCancelledError(GraphCacheError):
    """Raised inside an import job once it has been told to stop."""

    def __init__(self, message: str = "cancelled") -> None:
        super().__init__(message)


class OutOfMemoryFailure(GraphCacheError):
    """
    Raised when the build runs out of memory.

    Kept distinct from BuildFailureError: it usually points at a
    configuration or resource problem rather than a transient fault.
    """

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        detail = str(cause) or type(cause).__name__
        super().__init__(f"out of memory during graph build: {detail}")


class InvalidStateTransitionError(GraphCacheError):
    """Raised when the cache state machine is asked for an illegal transition."""

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Invalid cache state transition: {current} -> {requested}")


class GraphNotReadyError(GraphCacheError):
    """Raised when a route is requested before any artifact is loaded."""

    def __init__(self, message: str = "Routing graph is not ready") -> None:
        super().__init__(message)
