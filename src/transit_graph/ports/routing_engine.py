"""
Routing Engine port interface.

Defines the abstract contract for the engine that turns the road extract
and the transit feed into a routable graph. The cache lifecycle treats
the engine as opaque: possibly slow, possibly running out of memory, and
owning the on-disk format of the cache directory.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from src.transit_graph.schemas.route import Itinerary, RouteQuery


@dataclass(frozen=True)
class EngineOptions:
    """
    Tuning options passed through to the engine.

    Attributes:
        walk_speed_mps: Walking speed in meters per second.
        max_stop_link_m: Max distance between a stop and its road node.
        transit_window_minutes: Departures after the query time considered.
        boarding_penalty_s: Fixed cost of boarding a vehicle.
    """

    walk_speed_mps: float = 1.3
    max_stop_link_m: float = 500.0
    transit_window_minutes: int = 120
    boarding_penalty_s: float = 120.0


@dataclass(frozen=True)
class EngineConfig:
    """
    Everything an engine instance needs.

    Input paths are only required for build(); load() needs the cache
    directory alone.

    Attributes:
        cache_dir: Directory the artifact is written to / read from.
        road_extract_path: Road-network extract (build only).
        transit_feed_path: Transit-schedule feed (build only).
        options: Engine tuning options.
    """

    cache_dir: Path
    road_extract_path: Optional[Path] = None
    transit_feed_path: Optional[Path] = None
    options: EngineOptions = field(default_factory=EngineOptions)


class RoutingEngine(ABC):
    """
    Abstract interface for routing engines.

    build() and load() are synchronous and may take minutes. An instance
    becomes queryable after either returns successfully, and stops being
    queryable after close().

    Implementations:
    - NetworkXRoutingEngine: Reference engine on CSV/GTFS inputs
    """

    @abstractmethod
    def build(self, cancel_event: Optional[threading.Event] = None) -> None:
        """
        Build the artifact from the inputs into the cache directory.

        Implementations should check cancel_event between phases and
        raise ImportCancelledError once it is set. Checking is best-effort:
        the caller cleans up whatever the engine left behind.

        Args:
            cancel_event: Set when the surrounding job has been told to stop.

        Raises:
            ImportCancelledError: If cancel_event was observed.
            MemoryError: If the build runs out of memory.
            Exception: Any other build failure.
        """
        ...

    @abstractmethod
    def load(self) -> None:
        """
        Load a previously built artifact from the cache directory.

        Raises:
            Exception: If the cache directory is missing or unreadable.
        """
        ...

    @abstractmethod
    def route(self, query: RouteQuery) -> Optional[Itinerary]:
        """
        Compute the best route for a query.

        Args:
            query: Validated routing request.

        Returns:
            Best Itinerary, or None if the engine finds no route.
        """
        ...

    @abstractmethod
    def close(self) -> None:
        """Release resources. Must be safe to call more than once."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Human-readable name of this engine.

        Returns:
            Engine identifier (e.g., "NetworkX reference engine").
        """
        ...


EngineFactory = Callable[[EngineConfig], RoutingEngine]
