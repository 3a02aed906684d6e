"""
Schemas for the transit graph cache.

Frozen dataclasses for domain records (cache versions, lifecycle states,
job snapshots, routes) and Pandera models for the engine's input tables.
"""

from src.transit_graph.schemas.cache_state import CacheState, CacheStateKind
from src.transit_graph.schemas.cache_version import CacheVersion, InputFingerprint
from src.transit_graph.schemas.import_job import ImportJobInfo, ImportJobState
from src.transit_graph.schemas.route import (
    Instruction,
    Itinerary,
    Leg,
    RouteCoordinate,
    RouteQuery,
    TravelMode,
)

__all__ = [
    "CacheState",
    "CacheStateKind",
    "CacheVersion",
    "ImportJobInfo",
    "ImportJobState",
    "InputFingerprint",
    "Instruction",
    "Itinerary",
    "Leg",
    "RouteCoordinate",
    "RouteQuery",
    "TravelMode",
]
