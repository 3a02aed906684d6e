"""
Route Query Service - thin query facade over the artifact handle.

Validates routing requests and forwards them to whatever engine the
handle currently holds. Never waits for readiness.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import TYPE_CHECKING, Optional, Union

from src.transit_graph.exceptions import GraphNotReadyError
from src.transit_graph.schemas.route import Itinerary, RouteQuery, TravelMode

if TYPE_CHECKING:
    from src.transit_graph.adapters.repositories.artifact_handle import ArtifactHandle

logger = logging.getLogger(__name__)


class RouteQueryService:
    """
    Stateless, thread-safe routing facade.

    Attributes:
        _handle: Holder of the loaded routing engine.
    """

    def __init__(self, handle: ArtifactHandle) -> None:
        self._handle = handle

    @property
    def is_ready(self) -> bool:
        return self._handle.is_ready

    def calculate_route(
        self,
        start_lat: float,
        start_lon: float,
        end_lat: float,
        end_lon: float,
        departure_time: Optional[datetime] = None,
        mode: Union[TravelMode, str] = TravelMode.FOOT,
    ) -> Optional[Itinerary]:
        """
        Compute the best route between two points.

        Args:
            start_lat: Origin latitude.
            start_lon: Origin longitude.
            end_lat: Destination latitude.
            end_lon: Destination longitude.
            departure_time: Requested departure (defaults to now).
            mode: Travel mode (TravelMode or its string value).

        Returns:
            Best Itinerary, or None if no route exists.

        Raises:
            GraphNotReadyError: If no routing graph is loaded.
            ValueError: If coordinates or mode are invalid.
        """
        query = RouteQuery(
            start_lat=start_lat,
            start_lon=start_lon,
            end_lat=end_lat,
            end_lon=end_lon,
            departure_time=departure_time or datetime.now(),
            mode=TravelMode(mode),
        )
        return self.route(query)

    def route(self, query: RouteQuery) -> Optional[Itinerary]:
        """
        Route a pre-built query.

        Raises:
            GraphNotReadyError: If no routing graph is loaded.
        """
        if not self._handle.is_ready:
            raise GraphNotReadyError()

        start_ts = time.perf_counter()
        itinerary = self._handle.route(query)
        elapsed_ms = (time.perf_counter() - start_ts) * 1000

        if itinerary is None:
            logger.info("No %s route found in %.1f ms", query.mode.value, elapsed_ms)
        else:
            logger.info(
                "%s route found in %.1f ms: %d legs, %.0f m",
                query.mode.value,
                elapsed_ms,
                itinerary.num_legs,
                itinerary.distance_meters,
            )
        return itinerary
