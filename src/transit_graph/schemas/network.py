"""
Input table schemas using Pandera.

Defines the contract for the tables the reference routing engine reads
from the road extract and the transit feed. Validation happens once at
the boundary (when the inputs are read), not per row downstream.
"""

from typing import Optional

import pandera as pa
from pandera.typing import Series


class RoadEdgeSchema(pa.DataFrameModel):
    """
    One row per walkable road segment of the road extract.

    Edges are treated as bidirectional for walking.
    """

    source: Series[str] = pa.Field(nullable=False, description="Source node id")
    target: Series[str] = pa.Field(nullable=False, description="Target node id")
    source_lat: Series[float] = pa.Field(ge=-90, le=90)
    source_lon: Series[float] = pa.Field(ge=-180, le=180)
    target_lat: Series[float] = pa.Field(ge=-90, le=90)
    target_lon: Series[float] = pa.Field(ge=-180, le=180)
    length_m: Series[float] = pa.Field(ge=0, description="Segment length in meters")
    name: Optional[Series[str]] = pa.Field(nullable=True, description="Street name")

    class Config:
        strict = False
        coerce = True
        name = "RoadEdgeSchema"


class StopSchema(pa.DataFrameModel):
    """GTFS stops.txt (columns the engine needs)."""

    stop_id: Series[str] = pa.Field(nullable=False, unique=True)
    stop_name: Optional[Series[str]] = pa.Field(nullable=True)
    stop_lat: Series[float] = pa.Field(ge=-90, le=90)
    stop_lon: Series[float] = pa.Field(ge=-180, le=180)

    class Config:
        strict = False
        coerce = True
        name = "StopSchema"


class StopTimeSchema(pa.DataFrameModel):
    """
    GTFS stop_times.txt (columns the engine needs).

    Times are kept as GTFS "HH:MM:SS" strings here; hours may exceed 23
    for trips running past midnight.
    """

    trip_id: Series[str] = pa.Field(nullable=False)
    arrival_time: Series[str] = pa.Field(nullable=False, str_matches=r"^\d{1,3}:\d{2}:\d{2}$")
    departure_time: Series[str] = pa.Field(
        nullable=False, str_matches=r"^\d{1,3}:\d{2}:\d{2}$"
    )
    stop_id: Series[str] = pa.Field(nullable=False)
    stop_sequence: Series[int] = pa.Field(ge=0)

    class Config:
        strict = False
        coerce = True
        name = "StopTimeSchema"


class TransitHopSchema(pa.DataFrameModel):
    """
    Derived table: one row per ride between two consecutive stops of a trip.

    Written to and read back from the cache directory.
    """

    from_stop: Series[str] = pa.Field(nullable=False)
    to_stop: Series[str] = pa.Field(nullable=False)
    dep_seconds: Series[int] = pa.Field(ge=0, description="Seconds after service-day midnight")
    arr_seconds: Series[int] = pa.Field(ge=0)
    trip_id: Series[str] = pa.Field(nullable=False)
    line_name: Series[str] = pa.Field(nullable=True)

    class Config:
        strict = False
        coerce = True
        name = "TransitHopSchema"
