"""
Background job port interface.

The contract the singleton job registry needs from a unit of work.
"""

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class BackgroundJob(Protocol):
    """
    Protocol for cancellable background work.

    run() executes on a worker thread. cancel() may be called from any
    thread, at any time, any number of times.
    """

    @property
    def name(self) -> str:
        """Singleton key the job is registered under."""
        ...

    @property
    def is_active(self) -> bool:
        """True while the job is pending or running."""
        ...

    def run(self) -> None:
        """Execute the job to completion, failure or cancellation."""
        ...

    def cancel(self, wait: bool = False, timeout: Optional[float] = None) -> bool:
        """
        Ask the job to stop.

        Args:
            wait: Block until the job has settled (cleanup included).
            timeout: Max seconds to wait when wait is True.

        Returns:
            True if the job has settled when this call returns.
        """
        ...
