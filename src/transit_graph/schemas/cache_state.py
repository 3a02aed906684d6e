"""
Cache lifecycle state schemas.

CacheState is a projection recomputed from the input files, the
persisted fingerprint and the import job status. It is never stored.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple


class CacheStateKind(str, Enum):
    """Kinds of observable cache state."""

    MISSING_FILES = "missing_files"
    NEEDS_IMPORT = "needs_import"
    IMPORTING = "importing"
    READY = "ready"
    ERROR = "error"


TERMINAL_KINDS = frozenset(
    {CacheStateKind.MISSING_FILES, CacheStateKind.READY, CacheStateKind.ERROR}
)


@dataclass(frozen=True)
class CacheState:
    """
    Immutable cache lifecycle state.

    Use the classmethod constructors rather than building instances
    directly, so that payload fields always match the kind.

    Attributes:
        kind: Which state this is.
        missing_files: Names of missing inputs (MISSING_FILES only).
        message: Human-readable failure reason (ERROR only).
    """

    kind: CacheStateKind
    missing_files: Tuple[str, ...] = field(default_factory=tuple)
    message: Optional[str] = None

    @classmethod
    def missing(cls, missing_files: Sequence[str]) -> "CacheState":
        return cls(kind=CacheStateKind.MISSING_FILES, missing_files=tuple(missing_files))

    @classmethod
    def needs_import(cls) -> "CacheState":
        return cls(kind=CacheStateKind.NEEDS_IMPORT)

    @classmethod
    def importing(cls) -> "CacheState":
        return cls(kind=CacheStateKind.IMPORTING)

    @classmethod
    def ready(cls) -> "CacheState":
        return cls(kind=CacheStateKind.READY)

    @classmethod
    def error(cls, message: str) -> "CacheState":
        return cls(kind=CacheStateKind.ERROR, message=message)

    @property
    def is_terminal(self) -> bool:
        """Check if no further state follows within a session."""
        return self.kind in TERMINAL_KINDS

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation for the presentation layer."""
        data: Dict[str, Any] = {"state": self.kind.value}
        if self.kind is CacheStateKind.MISSING_FILES:
            data["missing_files"] = list(self.missing_files)
        if self.kind is CacheStateKind.ERROR:
            data["message"] = self.message
        return data
