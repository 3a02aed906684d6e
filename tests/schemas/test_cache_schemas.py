"""
Tests for transit graph schema definitions.

Validates that:
1. CacheVersion parsing fails soft on malformed records
2. CacheState constructors keep payloads consistent with the kind
3. ImportJobInfo and route dataclasses enforce their constraints
4. Pandera input schemas accept valid tables and reject invalid ones
"""

from datetime import datetime

import pandas as pd
import pandera as pa
import pytest

from src.transit_graph.schemas.cache_state import CacheState, CacheStateKind
from src.transit_graph.schemas.cache_version import CacheVersion, InputFingerprint
from src.transit_graph.schemas.import_job import ImportJobInfo, ImportJobState
from src.transit_graph.schemas.network import RoadEdgeSchema, StopSchema, StopTimeSchema
from src.transit_graph.schemas.route import (
    Instruction,
    Itinerary,
    Leg,
    RouteCoordinate,
    RouteQuery,
    TravelMode,
)


# -------------------------
# Fixtures
# -------------------------


@pytest.fixture
def version_record() -> dict:
    return {
        "osmTimestamp": 1_700_000_000_000,
        "osmSize": 2048,
        "gtfsTimestamp": 1_700_000_500_000,
        "gtfsSize": 512,
    }


@pytest.fixture
def sample_leg() -> Leg:
    return Leg(
        mode=TravelMode.FOOT,
        instructions=(Instruction("Main Street", 300.0, 230),),
        distance_meters=300.0,
        duration_seconds=230,
    )


# -------------------------
# CacheVersion
# -------------------------


class TestCacheVersion:
    def test_from_dict_parses_valid_record(self, version_record):
        version = CacheVersion.from_dict(version_record)

        assert version == CacheVersion(
            osm=InputFingerprint(1_700_000_000_000, 2048),
            gtfs=InputFingerprint(1_700_000_500_000, 512),
        )

    def test_to_dict_uses_stable_keys(self, version_record):
        version = CacheVersion.from_dict(version_record)
        assert version.to_dict() == version_record

    @pytest.mark.parametrize("key", ["osmTimestamp", "osmSize", "gtfsTimestamp", "gtfsSize"])
    def test_missing_key_is_absent(self, version_record, key):
        del version_record[key]
        assert CacheVersion.from_dict(version_record) is None

    @pytest.mark.parametrize("bad_value", [-1, "12", 1.5, None, True])
    def test_invalid_value_is_absent(self, version_record, bad_value):
        version_record["gtfsSize"] = bad_value
        assert CacheVersion.from_dict(version_record) is None

    def test_non_mapping_is_absent(self):
        assert CacheVersion.from_dict([1, 2, 3, 4]) is None
        assert CacheVersion.from_dict(None) is None

    def test_any_field_difference_breaks_equality(self, version_record):
        a = CacheVersion.from_dict(version_record)
        version_record["osmTimestamp"] += 1
        b = CacheVersion.from_dict(version_record)
        assert a != b

    def test_negative_fingerprint_rejected(self):
        with pytest.raises(ValueError, match="size_bytes"):
            InputFingerprint(last_modified_millis=0, size_bytes=-5)


# -------------------------
# CacheState
# -------------------------


class TestCacheState:
    def test_missing_carries_file_names(self):
        state = CacheState.missing(["transit.feed"])

        assert state.kind is CacheStateKind.MISSING_FILES
        assert state.missing_files == ("transit.feed",)
        assert state.to_dict() == {"state": "missing_files", "missing_files": ["transit.feed"]}

    def test_error_carries_message(self):
        state = CacheState.error("timeout")
        assert state.to_dict() == {"state": "error", "message": "timeout"}

    @pytest.mark.parametrize(
        "state,terminal",
        [
            (CacheState.missing([]), True),
            (CacheState.needs_import(), False),
            (CacheState.importing(), False),
            (CacheState.ready(), True),
            (CacheState.error("x"), True),
        ],
    )
    def test_terminal_kinds(self, state, terminal):
        assert state.is_terminal is terminal

    def test_states_compare_by_value(self):
        assert CacheState.ready() == CacheState.ready()
        assert CacheState.error("a") != CacheState.error("b")


# -------------------------
# ImportJobInfo
# -------------------------


class TestImportJobInfo:
    def test_progress_bounds(self):
        with pytest.raises(ValueError, match="progress_percent"):
            ImportJobInfo(name="graph_import", state=ImportJobState.RUNNING, progress_percent=101)

    def test_active_states(self):
        assert ImportJobState.PENDING.is_active
        assert ImportJobState.RUNNING.is_active
        assert not ImportJobState.SUCCEEDED.is_active
        assert not ImportJobState.FAILED.is_active

    def test_to_dict(self):
        info = ImportJobInfo(
            name="graph_import",
            state=ImportJobState.FAILED,
            progress_percent=10,
            failure_message="cancelled",
            cancelled=True,
        )
        assert info.to_dict() == {
            "name": "graph_import",
            "state": "failed",
            "progress_percent": 10,
            "failure_message": "cancelled",
            "cancelled": True,
        }


# -------------------------
# Route dataclasses
# -------------------------


class TestRouteSchemas:
    def test_query_rejects_invalid_latitude(self):
        with pytest.raises(ValueError, match="latitude"):
            RouteQuery(95.0, 21.0, 52.0, 21.0, departure_time=datetime(2026, 1, 5, 8, 0))

    def test_query_rejects_invalid_longitude(self):
        with pytest.raises(ValueError, match="longitude"):
            RouteQuery(52.0, 21.0, 52.0, 181.0, departure_time=datetime(2026, 1, 5, 8, 0))

    def test_itinerary_from_legs_sums_totals(self, sample_leg):
        start = datetime(2026, 1, 5, 8, 0)
        itinerary = Itinerary.from_legs(
            [sample_leg, sample_leg],
            [RouteCoordinate(52.23, 21.0), RouteCoordinate(52.24, 21.0)],
            start_time=start,
        )

        assert itinerary.num_legs == 2
        assert itinerary.distance_meters == 600.0
        assert itinerary.duration_seconds == 460
        assert (itinerary.end_time - start).total_seconds() == 460
        assert itinerary.modes == [TravelMode.FOOT, TravelMode.FOOT]

    def test_itinerary_without_start_time_has_no_end_time(self, sample_leg):
        itinerary = Itinerary.from_legs([sample_leg], [])
        assert itinerary.end_time is None

    def test_itinerary_requires_a_leg(self):
        with pytest.raises(ValueError, match="at least one leg"):
            Itinerary.from_legs([], [])

    def test_travel_mode_from_value(self):
        assert TravelMode("pt") is TravelMode.PT


# -------------------------
# Pandera input schemas
# -------------------------


class TestNetworkSchemas:
    def test_road_edges_valid(self):
        df = pd.DataFrame(
            {
                "source": ["A"],
                "target": ["B"],
                "source_lat": [52.23],
                "source_lon": [21.0],
                "target_lat": [52.23],
                "target_lon": [21.005],
                "length_m": [341.0],
                "name": ["Main Street"],
                "highway": ["residential"],
            }
        )
        validated = RoadEdgeSchema.validate(df)
        assert "highway" in validated.columns

    def test_road_edges_negative_length_rejected(self):
        df = pd.DataFrame(
            {
                "source": ["A"],
                "target": ["B"],
                "source_lat": [52.23],
                "source_lon": [21.0],
                "target_lat": [52.23],
                "target_lon": [21.005],
                "length_m": [-1.0],
            }
        )
        with pytest.raises(pa.errors.SchemaError):
            RoadEdgeSchema.validate(df)

    def test_duplicate_stop_ids_rejected(self):
        df = pd.DataFrame(
            {
                "stop_id": ["S1", "S1"],
                "stop_name": ["A", "B"],
                "stop_lat": [52.0, 52.1],
                "stop_lon": [21.0, 21.1],
            }
        )
        with pytest.raises(pa.errors.SchemaError):
            StopSchema.validate(df)

    def test_stop_times_accept_hours_past_midnight(self):
        df = pd.DataFrame(
            {
                "trip_id": ["T1"],
                "arrival_time": ["25:10:00"],
                "departure_time": ["25:11:00"],
                "stop_id": ["S1"],
                "stop_sequence": [1],
            }
        )
        StopTimeSchema.validate(df)

    def test_stop_times_reject_malformed_time(self):
        df = pd.DataFrame(
            {
                "trip_id": ["T1"],
                "arrival_time": ["8am"],
                "departure_time": ["08:00:00"],
                "stop_id": ["S1"],
                "stop_sequence": [1],
            }
        )
        with pytest.raises(pa.errors.SchemaError):
            StopTimeSchema.validate(df)
