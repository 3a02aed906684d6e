"""
Route query and itinerary schemas.

Defines the contract between the query facade and the routing engine:
a RouteQuery goes in, an Itinerary (or None for "no result") comes out.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Sequence, Tuple


class TravelMode(str, Enum):
    """Supported travel modes."""

    FOOT = "foot"
    PT = "pt"


def _check_coordinate(name: str, lat: float, lon: float) -> None:
    if not -90.0 <= lat <= 90.0:
        raise ValueError(f"{name} latitude must be in [-90, 90], got {lat}")
    if not -180.0 <= lon <= 180.0:
        raise ValueError(f"{name} longitude must be in [-180, 180], got {lon}")


@dataclass(frozen=True)
class RouteQuery:
    """
    Immutable routing request.

    Attributes:
        start_lat: Origin latitude (WGS84).
        start_lon: Origin longitude (WGS84).
        end_lat: Destination latitude (WGS84).
        end_lon: Destination longitude (WGS84).
        departure_time: Requested departure.
        mode: Travel mode.
    """

    start_lat: float
    start_lon: float
    end_lat: float
    end_lon: float
    departure_time: datetime
    mode: TravelMode = TravelMode.FOOT

    def __post_init__(self) -> None:
        """Validate coordinate ranges."""
        _check_coordinate("start", self.start_lat, self.start_lon)
        _check_coordinate("end", self.end_lat, self.end_lon)


@dataclass(frozen=True)
class RouteCoordinate:
    """A single point of the route polyline."""

    latitude: float
    longitude: float


@dataclass(frozen=True)
class Instruction:
    """
    One turn-by-turn instruction.

    Attributes:
        text: Street name or line description.
        distance_meters: Distance covered by this instruction.
        duration_seconds: Time spent on this instruction.
    """

    text: str
    distance_meters: float
    duration_seconds: int


@dataclass(frozen=True)
class Leg:
    """A part of an itinerary travelled in a single mode."""

    mode: TravelMode
    instructions: Tuple[Instruction, ...]
    distance_meters: float
    duration_seconds: int


@dataclass(frozen=True)
class Itinerary:
    """
    Immutable representation of a computed route.

    Attributes:
        legs: Ordered legs of the journey.
        start_time: Departure time (None if the engine is time-agnostic).
        end_time: Arrival time (None if the engine is time-agnostic).
        distance_meters: Total distance.
        duration_seconds: Total duration.
        route_coordinates: Route polyline.
    """

    legs: Tuple[Leg, ...]
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    distance_meters: float
    duration_seconds: int
    route_coordinates: Tuple[RouteCoordinate, ...] = field(default_factory=tuple)

    @property
    def num_legs(self) -> int:
        """Number of legs."""
        return len(self.legs)

    @property
    def modes(self) -> List[TravelMode]:
        """Ordered modes of the legs."""
        return [leg.mode for leg in self.legs]

    @classmethod
    def from_legs(
        cls,
        legs: Sequence[Leg],
        coordinates: Sequence[RouteCoordinate],
        start_time: Optional[datetime] = None,
    ) -> "Itinerary":
        """
        Factory method to create an Itinerary from its legs.

        Totals are summed over the legs. When start_time is given,
        end_time is derived from the total duration.

        Args:
            legs: Sequence of Leg objects.
            coordinates: Route polyline.
            start_time: Optional departure time.

        Returns:
            Validated Itinerary instance.
        """
        if not legs:
            raise ValueError("Itinerary must have at least one leg")

        distance = sum(leg.distance_meters for leg in legs)
        duration = sum(leg.duration_seconds for leg in legs)
        end_time = start_time + timedelta(seconds=duration) if start_time else None

        return cls(
            legs=tuple(legs),
            start_time=start_time,
            end_time=end_time,
            distance_meters=distance,
            duration_seconds=duration,
            route_coordinates=tuple(coordinates),
        )
