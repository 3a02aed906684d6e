"""
Import job record schemas.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ImportJobState(str, Enum):
    """Lifecycle of a background import job."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        """Check if the job is still outstanding."""
        return self in (ImportJobState.PENDING, ImportJobState.RUNNING)


@dataclass(frozen=True)
class ImportJobInfo:
    """
    Point-in-time snapshot of an import job.

    Attributes:
        name: Singleton key the job was submitted under.
        state: Current lifecycle state.
        progress_percent: Last reported checkpoint (0..100).
        failure_message: Reason string when state is FAILED.
        cancelled: True if the job failed because it was told to stop.
    """

    name: str
    state: ImportJobState
    progress_percent: int = 0
    failure_message: Optional[str] = None
    cancelled: bool = False

    def __post_init__(self) -> None:
        """Validate progress bounds."""
        if not 0 <= self.progress_percent <= 100:
            raise ValueError(
                f"progress_percent must be in 0..100, got {self.progress_percent}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "progress_percent": self.progress_percent,
            "failure_message": self.failure_message,
            "cancelled": self.cancelled,
        }
