"""
Repository adapters for the graph cache.
"""

from src.transit_graph.adapters.repositories.artifact_handle import (
    ArtifactHandle,
    ReadinessSignal,
)
from src.transit_graph.adapters.repositories.fingerprint_store import (
    FingerprintStore,
    fingerprint_file,
)

__all__ = [
    "ArtifactHandle",
    "FingerprintStore",
    "ReadinessSignal",
    "fingerprint_file",
]
