"""
Shared fixtures for the transit graph cache tests.

Provides:
- FakeRoutingEngine with controllable build outcomes
- Dummy input files for lifecycle tests
- A small real road extract + GTFS feed for the reference engine
"""

import threading
import zipfile
from pathlib import Path
from typing import List, Optional

import pytest

from src.transit_graph.config import GraphCacheSettings
from src.transit_graph.exceptions import ImportCancelledError
from src.transit_graph.ports.routing_engine import EngineConfig, RoutingEngine
from src.transit_graph.schemas.route import (
    Instruction,
    Itinerary,
    Leg,
    RouteCoordinate,
    RouteQuery,
)

FAKE_MANIFEST = "fake.manifest"


# =============================================================================
# FAKE ROUTING ENGINE
# =============================================================================


class FakeRoutingEngine(RoutingEngine):
    """
    Test double for the routing engine port.

    The owning factory decides what build() does:
    - "succeed": write a partial file, then the manifest
    - "fail": write a partial file, then raise RuntimeError
    - "oom": write a partial file, then raise MemoryError
    - "block": write a partial file, then wait for the factory's release
      event (success) or the job's cancel event (ImportCancelledError)

    load() blocks on the factory's load_gate while one is set.
    """

    def __init__(self, config: EngineConfig, factory: "FakeEngineFactory") -> None:
        self.config = config
        self.factory = factory
        self.built = False
        self.loaded = False
        self.closed = False

    @property
    def name(self) -> str:
        return "fake engine"

    def build(self, cancel_event: Optional[threading.Event] = None) -> None:
        self.factory.build_calls += 1
        cache_dir = self.config.cache_dir
        cache_dir.mkdir(parents=True, exist_ok=True)
        (cache_dir / "partial.bin").write_text("partial")

        behavior = self.factory.behavior
        if behavior == "fail":
            raise RuntimeError("simulated engine failure")
        if behavior == "oom":
            raise MemoryError("simulated out of memory")
        if behavior == "block":
            self.factory.build_started.set()
            while not self.factory.release.wait(0.01):
                if cancel_event is not None and cancel_event.is_set():
                    raise ImportCancelledError()

        (cache_dir / FAKE_MANIFEST).write_text("ok")
        self.built = True
        self.loaded = True

    def load(self) -> None:
        self.factory.load_calls += 1
        if self.factory.load_gate is not None:
            self.factory.load_started.set()
            self.factory.load_gate.wait(2.0)
        if self.factory.corrupt_cache:
            raise ValueError("corrupt graph cache")
        if not (self.config.cache_dir / FAKE_MANIFEST).is_file():
            raise FileNotFoundError(f"no manifest in {self.config.cache_dir}")
        self.loaded = True

    def route(self, query: RouteQuery) -> Optional[Itinerary]:
        if not self.loaded or self.closed:
            return None
        if self.factory.no_route:
            return None
        leg = Leg(
            mode=query.mode,
            instructions=(Instruction("Main Street", 100.0, 77),),
            distance_meters=100.0,
            duration_seconds=77,
        )
        return Itinerary.from_legs(
            [leg],
            [
                RouteCoordinate(query.start_lat, query.start_lon),
                RouteCoordinate(query.end_lat, query.end_lon),
            ],
            start_time=query.departure_time,
        )

    def close(self) -> None:
        self.closed = True
        self.loaded = False


class FakeEngineFactory:
    """Callable engine factory recording every engine it creates."""

    def __init__(self) -> None:
        self.behavior = "succeed"
        self.corrupt_cache = False
        self.no_route = False
        self.engines: List[FakeRoutingEngine] = []
        self.build_calls = 0
        self.load_calls = 0
        self.build_started = threading.Event()
        self.release = threading.Event()
        self.load_started = threading.Event()
        self.load_gate: Optional[threading.Event] = None

    def __call__(self, config: EngineConfig) -> FakeRoutingEngine:
        engine = FakeRoutingEngine(config, self)
        self.engines.append(engine)
        return engine


# =============================================================================
# FIXTURES: lifecycle
# =============================================================================


@pytest.fixture
def engine_factory() -> FakeEngineFactory:
    """Fake engine factory; tests switch behavior before use."""
    factory = FakeEngineFactory()
    yield factory
    factory.release.set()


@pytest.fixture
def graph_root(tmp_path: Path) -> Path:
    """Empty cache root directory."""
    root = tmp_path / "data"
    root.mkdir()
    return root


@pytest.fixture
def settings(graph_root: Path) -> GraphCacheSettings:
    """Settings for the fake engine: no disk threshold, short timeout."""
    return GraphCacheSettings(
        graph_root=graph_root,
        road_extract_file="road.extract",
        transit_feed_file="transit.feed",
        min_free_disk_bytes=0,
        ready_timeout_seconds=5.0,
    )


@pytest.fixture
def write_inputs(settings: GraphCacheSettings):
    """Write dummy content to both input files (fake engine does not parse them)."""

    def _write(road: str = "road v1", transit: str = "transit v1") -> None:
        settings.road_extract_path.write_text(road)
        settings.transit_feed_path.write_text(transit)

    return _write


# =============================================================================
# FIXTURES: small real network for the reference engine
# =============================================================================

ROAD_CSV = """source,target,source_lat,source_lon,target_lat,target_lon,length_m,name
A,B,52.2300,21.0000,52.2300,21.0050,341.0,Main Street
B,C,52.2300,21.0050,52.2300,21.0100,341.0,Main Street
C,D,52.2300,21.0100,52.2350,21.0100,556.0,Side Street
E,F,52.3000,21.1000,52.3000,21.1010,68.0,Island Road
"""

STOPS_TXT = """stop_id,stop_name,stop_lat,stop_lon
S1,Riverside,52.2300,21.0001
S2,Central,52.2350,21.0099
S9,Faraway,10.0000,10.0000
"""

STOP_TIMES_TXT = """trip_id,arrival_time,departure_time,stop_id,stop_sequence
T1,08:00:00,08:00:00,S1,1
T1,08:03:00,08:03:00,S2,2
"""

TRIPS_TXT = """route_id,service_id,trip_id
R1,WD,T1
"""

ROUTES_TXT = """route_id,route_short_name,route_type
R1,Tram 4,0
"""


def write_road_extract(path: Path) -> Path:
    path.write_text(ROAD_CSV)
    return path


def write_gtfs_feed(path: Path, include_stop_times: bool = True) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("stops.txt", STOPS_TXT)
        if include_stop_times:
            zf.writestr("stop_times.txt", STOP_TIMES_TXT)
        zf.writestr("trips.txt", TRIPS_TXT)
        zf.writestr("routes.txt", ROUTES_TXT)
    return path


@pytest.fixture
def road_extract(tmp_path: Path) -> Path:
    """Four-edge road extract: A-B-C-D chain plus an isolated E-F edge."""
    return write_road_extract(tmp_path / "road_network.csv")


@pytest.fixture
def gtfs_feed(tmp_path: Path) -> Path:
    """GTFS zip with one tram trip from Riverside (near A) to Central (near D)."""
    return write_gtfs_feed(tmp_path / "gtfs_feed.zip")


@pytest.fixture
def real_inputs(graph_root: Path):
    """Write the real network inputs under graph_root with default names."""
    write_road_extract(graph_root / "road_network.csv")
    write_gtfs_feed(graph_root / "gtfs_feed.zip")
    return graph_root
