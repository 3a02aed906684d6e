"""
NetworkX Routing Engine - reference implementation of the RoutingEngine port.

Builds a routable graph from:
- a road extract given as a CSV edge table (see RoadEdgeSchema)
- a GTFS zip (stops.txt, stop_times.txt; trips.txt/routes.txt optional)

The artifact is a set of CSV tables plus a manifest in the cache
directory. The manifest is written last, so a directory without one is
an incomplete build and refuses to load.

Transit routing here is a static approximation: each pair of
consecutive stops is served by its earliest departure inside the query
window, and boarding costs a fixed penalty. Exact time-dependent search
is the job of a production engine behind the same port.
"""

from __future__ import annotations

import json
import logging
import threading
import zipfile
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import networkx as nx
import numpy as np
import pandas as pd
import pandera as pa

from src.transit_graph.exceptions import ImportCancelledError
from src.transit_graph.ports.routing_engine import EngineConfig, RoutingEngine
from src.transit_graph.schemas.network import (
    RoadEdgeSchema,
    StopSchema,
    StopTimeSchema,
    TransitHopSchema,
)
from src.transit_graph.schemas.route import (
    Instruction,
    Itinerary,
    Leg,
    RouteCoordinate,
    RouteQuery,
    TravelMode,
)

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
MANIFEST_FILE = "manifest.json"
NODES_FILE = "nodes.csv"
EDGES_FILE = "road_edges.csv"
STOPS_FILE = "stops.csv"
HOPS_FILE = "transit_hops.csv"

EARTH_RADIUS_M = 6_371_000.0
LINK_CHUNK_SIZE = 256
UNNAMED_ROAD = "unnamed road"


# =============================================================================
# VECTORIZED HELPERS
# =============================================================================


def haversine_m(lat1, lon1, lat2, lon2) -> np.ndarray:
    """
    Great-circle distance in meters, broadcast over numpy arrays.

    Args:
        lat1, lon1: First point(s) in degrees.
        lat2, lon2: Second point(s) in degrees.

    Returns:
        Array of distances (0-d for scalar inputs).
    """
    lat1, lon1, lat2, lon2 = (np.radians(v) for v in (lat1, lon1, lat2, lon2))
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = np.sin(dlat / 2.0) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2.0) ** 2
    return 2.0 * EARTH_RADIUS_M * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))


def gtfs_time_to_seconds(values: pd.Series) -> pd.Series:
    """
    Convert GTFS "HH:MM:SS" strings to seconds after service-day midnight.

    Hours may exceed 23 for trips running past midnight.
    """
    if values.empty:
        return pd.Series([], index=values.index, dtype="int64")
    parts = values.str.split(":", expand=True).astype("int64")
    return parts[0] * 3600 + parts[1] * 60 + parts[2]


# =============================================================================
# INPUT READERS
# =============================================================================


def read_road_edges(path: Path) -> pd.DataFrame:
    """
    Read and validate the road extract edge table.

    Raises:
        ValueError: If the table does not match RoadEdgeSchema.
    """
    df = pd.read_csv(path, dtype={"source": str, "target": str})
    if "name" not in df.columns:
        df["name"] = ""
    df["name"] = df["name"].fillna("")
    try:
        return RoadEdgeSchema.validate(df)
    except (pa.errors.SchemaError, pa.errors.SchemaErrors) as e:
        raise ValueError(f"Invalid road extract {path}: {e}") from e


def _read_line_names(zf: zipfile.ZipFile, names: set) -> Dict[str, str]:
    """Map trip_id to a display name using optional trips/routes tables."""
    if "trips.txt" not in names:
        return {}
    with zf.open("trips.txt") as f:
        trips = pd.read_csv(f, dtype=str)
    if "trip_id" not in trips.columns or "route_id" not in trips.columns:
        return {}

    route_names: Dict[str, str] = {}
    if "routes.txt" in names:
        with zf.open("routes.txt") as f:
            routes = pd.read_csv(f, dtype=str)
        for column in ("route_long_name", "route_short_name"):
            if column in routes.columns and "route_id" in routes.columns:
                named = routes.dropna(subset=[column])
                route_names.update(zip(named["route_id"], named[column]))

    return {
        trip_id: route_names.get(route_id, route_id)
        for trip_id, route_id in zip(trips["trip_id"], trips["route_id"])
    }


def read_gtfs_feed(path: Path) -> Tuple[pd.DataFrame, pd.DataFrame, Dict[str, str]]:
    """
    Read and validate the tables the engine needs from a GTFS zip.

    Returns:
        Tuple of (stops, stop_times, line name by trip_id).

    Raises:
        ValueError: If a required table is missing or invalid.
    """
    try:
        with zipfile.ZipFile(path) as zf:
            names = set(zf.namelist())
            for required in ("stops.txt", "stop_times.txt"):
                if required not in names:
                    raise ValueError(f"GTFS feed {path} has no {required}")
            with zf.open("stops.txt") as f:
                stops = pd.read_csv(f, dtype={"stop_id": str, "stop_name": str})
            with zf.open("stop_times.txt") as f:
                stop_times = pd.read_csv(
                    f,
                    dtype={
                        "trip_id": str,
                        "stop_id": str,
                        "arrival_time": str,
                        "departure_time": str,
                    },
                )
            line_names = _read_line_names(zf, names)
    except zipfile.BadZipFile as e:
        raise ValueError(f"GTFS feed {path} is not a zip archive") from e

    if "stop_id" in stops.columns:
        if "stop_name" not in stops.columns:
            stops["stop_name"] = stops["stop_id"]
        stops["stop_name"] = stops["stop_name"].fillna(stops["stop_id"])
    # Untimed stops (interpolated in GTFS) carry no departure to ride from
    timed = [c for c in ("arrival_time", "departure_time") if c in stop_times.columns]
    stop_times = stop_times.dropna(subset=timed)
    try:
        stops = StopSchema.validate(stops)
        stop_times = StopTimeSchema.validate(stop_times)
    except (pa.errors.SchemaError, pa.errors.SchemaErrors) as e:
        raise ValueError(f"Invalid GTFS feed {path}: {e}") from e
    return stops, stop_times, line_names


# =============================================================================
# DERIVED TABLES
# =============================================================================


def build_nodes(edges: pd.DataFrame) -> pd.DataFrame:
    """Unique road nodes with their coordinates."""
    sources = edges[["source", "source_lat", "source_lon"]].set_axis(
        ["node_id", "lat", "lon"], axis=1
    )
    targets = edges[["target", "target_lat", "target_lon"]].set_axis(
        ["node_id", "lat", "lon"], axis=1
    )
    return (
        pd.concat([sources, targets], ignore_index=True)
        .drop_duplicates(subset="node_id")
        .reset_index(drop=True)
    )


def link_stops(stops: pd.DataFrame, nodes: pd.DataFrame, max_link_m: float) -> pd.DataFrame:
    """
    Attach every stop to its nearest road node.

    Distances are computed with numpy broadcasting in chunks of stops,
    so memory stays O(chunk * nodes). Stops farther than max_link_m from
    any node are dropped.

    Returns:
        Stops with extra node_id and link_m columns.
    """
    if stops.empty or nodes.empty:
        return stops.iloc[0:0].assign(node_id=pd.Series(dtype=str), link_m=pd.Series(dtype=float))

    node_ids = nodes["node_id"].to_numpy()
    node_lat = nodes["lat"].to_numpy(dtype=float)
    node_lon = nodes["lon"].to_numpy(dtype=float)
    stop_lat = stops["stop_lat"].to_numpy(dtype=float)
    stop_lon = stops["stop_lon"].to_numpy(dtype=float)

    n = len(stops)
    nearest_idx = np.empty(n, dtype=np.int64)
    nearest_dist = np.empty(n, dtype=float)
    for start in range(0, n, LINK_CHUNK_SIZE):
        end = min(start + LINK_CHUNK_SIZE, n)
        dist = haversine_m(
            stop_lat[start:end, None],
            stop_lon[start:end, None],
            node_lat[None, :],
            node_lon[None, :],
        )
        idx = dist.argmin(axis=1)
        nearest_idx[start:end] = idx
        nearest_dist[start:end] = dist[np.arange(end - start), idx]

    linked = stops.assign(node_id=node_ids[nearest_idx], link_m=nearest_dist)
    dropped = int((linked["link_m"] > max_link_m).sum())
    if dropped:
        logger.warning("%d stops are farther than %.0f m from the road network", dropped, max_link_m)
    return linked[linked["link_m"] <= max_link_m].reset_index(drop=True)


def build_transit_hops(stop_times: pd.DataFrame, line_names: Dict[str, str]) -> pd.DataFrame:
    """
    Derive one ride per pair of consecutive stops of each trip.

    Returns:
        DataFrame matching TransitHopSchema.
    """
    st = stop_times.sort_values(["trip_id", "stop_sequence"]).reset_index(drop=True)
    st["dep_seconds"] = gtfs_time_to_seconds(st["departure_time"])
    st["arr_here"] = gtfs_time_to_seconds(st["arrival_time"])
    grouped = st.groupby("trip_id", sort=False)

    hops = pd.DataFrame(
        {
            "from_stop": st["stop_id"],
            "to_stop": grouped["stop_id"].shift(-1),
            "dep_seconds": st["dep_seconds"],
            "arr_seconds": grouped["arr_here"].shift(-1),
            "trip_id": st["trip_id"],
        }
    ).dropna(subset=["to_stop", "arr_seconds"])

    hops["arr_seconds"] = hops["arr_seconds"].astype("int64")
    hops = hops[hops["arr_seconds"] >= hops["dep_seconds"]].copy()
    hops["line_name"] = hops["trip_id"].map(line_names).fillna(hops["trip_id"])
    return TransitHopSchema.validate(hops.reset_index(drop=True))


# =============================================================================
# LOADED NETWORK: swapped as a single reference
# =============================================================================


@dataclass(frozen=True)
class _LoadedNetwork:
    walk_graph: nx.Graph
    node_ids: np.ndarray
    node_lat: np.ndarray
    node_lon: np.ndarray
    node_coords: Dict[str, Tuple[float, float]]
    stops: pd.DataFrame
    hops: pd.DataFrame


class NetworkXRoutingEngine(RoutingEngine):
    """
    Reference routing engine built on networkx shortest paths.

    Usage:
        >>> engine = NetworkXRoutingEngine(EngineConfig(
        ...     cache_dir=Path("data/graph-cache"),
        ...     road_extract_path=Path("data/road_network.csv"),
        ...     transit_feed_path=Path("data/gtfs_feed.zip"),
        ... ))
        >>> engine.build()
        >>> engine.route(query)
    """

    def __init__(self, config: EngineConfig) -> None:
        self._config = config
        self._options = config.options
        self._network: Optional[_LoadedNetwork] = None

    @property
    def name(self) -> str:
        return "NetworkX reference engine"

    @property
    def is_loaded(self) -> bool:
        return self._network is not None

    # -------------------------------------------------------------------------
    # Build / load
    # -------------------------------------------------------------------------

    def build(self, cancel_event: Optional[threading.Event] = None) -> None:
        road_path = self._config.road_extract_path
        transit_path = self._config.transit_feed_path
        if road_path is None or transit_path is None:
            raise ValueError("build() requires road_extract_path and transit_feed_path")

        self._check_cancelled(cancel_event)
        edges = read_road_edges(road_path)
        logger.info("Read %d road edges from %s", len(edges), road_path)

        self._check_cancelled(cancel_event)
        stops, stop_times, line_names = read_gtfs_feed(transit_path)
        logger.info(
            "Read %d stops and %d stop times from %s",
            len(stops),
            len(stop_times),
            transit_path,
        )

        self._check_cancelled(cancel_event)
        nodes = build_nodes(edges)
        linked_stops = link_stops(stops, nodes, self._options.max_stop_link_m)

        self._check_cancelled(cancel_event)
        hops = build_transit_hops(stop_times, line_names)
        linked_ids = set(linked_stops["stop_id"])
        hops = hops[hops["from_stop"].isin(linked_ids) & hops["to_stop"].isin(linked_ids)]

        self._check_cancelled(cancel_event)
        cache_dir = self._config.cache_dir
        cache_dir.mkdir(parents=True, exist_ok=True)
        nodes.to_csv(cache_dir / NODES_FILE, index=False)
        edges[["source", "target", "length_m", "name"]].to_csv(
            cache_dir / EDGES_FILE, index=False
        )
        linked_stops[["stop_id", "stop_name", "stop_lat", "stop_lon", "node_id", "link_m"]].to_csv(
            cache_dir / STOPS_FILE, index=False
        )
        hops.to_csv(cache_dir / HOPS_FILE, index=False)

        self._check_cancelled(cancel_event)
        manifest = {
            "format_version": FORMAT_VERSION,
            "engine": self.name,
            "built_at": datetime.now(timezone.utc).isoformat(),
            "node_count": len(nodes),
            "edge_count": len(edges),
            "stop_count": len(linked_stops),
            "hop_count": len(hops),
            "options": asdict(self._options),
        }
        (cache_dir / MANIFEST_FILE).write_text(json.dumps(manifest, indent=2), encoding="utf-8")
        logger.info(
            "Graph written to %s: %d nodes, %d edges, %d stops, %d rides",
            cache_dir,
            len(nodes),
            len(edges),
            len(linked_stops),
            len(hops),
        )

        self.load()

    def load(self) -> None:
        cache_dir = self._config.cache_dir
        manifest_path = cache_dir / MANIFEST_FILE
        if not manifest_path.is_file():
            raise FileNotFoundError(f"Graph cache {cache_dir} has no {MANIFEST_FILE}")

        manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
        if manifest.get("format_version") != FORMAT_VERSION:
            raise ValueError(
                f"Unsupported graph format {manifest.get('format_version')!r} "
                f"(expected {FORMAT_VERSION})"
            )

        nodes = pd.read_csv(cache_dir / NODES_FILE, dtype={"node_id": str})
        edges = pd.read_csv(cache_dir / EDGES_FILE, dtype={"source": str, "target": str, "name": str})
        edges["name"] = edges["name"].fillna("")
        stops = pd.read_csv(
            cache_dir / STOPS_FILE, dtype={"stop_id": str, "stop_name": str, "node_id": str}
        )
        hops = pd.read_csv(
            cache_dir / HOPS_FILE,
            dtype={"from_stop": str, "to_stop": str, "trip_id": str, "line_name": str},
        )

        # Longest first so parallel edges collapse onto the shortest one
        edges = edges.sort_values("length_m", ascending=False)
        walk_graph = nx.Graph()
        walk_graph.add_nodes_from(nodes["node_id"])
        walk_graph.add_edges_from(
            (src, tgt, {"length_m": float(length), "name": name})
            for src, tgt, length, name in zip(
                edges["source"], edges["target"], edges["length_m"], edges["name"]
            )
        )

        node_coords = dict(
            zip(nodes["node_id"], zip(nodes["lat"].astype(float), nodes["lon"].astype(float)))
        )
        self._network = _LoadedNetwork(
            walk_graph=walk_graph,
            node_ids=nodes["node_id"].to_numpy(),
            node_lat=nodes["lat"].to_numpy(dtype=float),
            node_lon=nodes["lon"].to_numpy(dtype=float),
            node_coords=node_coords,
            stops=stops.set_index("stop_id", drop=False),
            hops=hops,
        )
        logger.info(
            "Graph loaded from %s: %d nodes, %d edges",
            cache_dir,
            walk_graph.number_of_nodes(),
            walk_graph.number_of_edges(),
        )

    def close(self) -> None:
        self._network = None

    # -------------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------------

    def route(self, query: RouteQuery) -> Optional[Itinerary]:
        network = self._network
        if network is None or len(network.node_ids) == 0:
            return None

        start = self._nearest_node(network, query.start_lat, query.start_lon)
        end = self._nearest_node(network, query.end_lat, query.end_lon)
        if start is None or end is None:
            return None

        if query.mode is TravelMode.PT:
            return self._route_transit(network, query, start, end)
        return self._route_walk(network, query, start, end)

    def _nearest_node(self, network: _LoadedNetwork, lat: float, lon: float) -> Optional[str]:
        dist = haversine_m(lat, lon, network.node_lat, network.node_lon)
        idx = int(dist.argmin())
        if dist[idx] > self._options.max_stop_link_m:
            return None
        return str(network.node_ids[idx])

    def _route_walk(
        self, network: _LoadedNetwork, query: RouteQuery, start: str, end: str
    ) -> Optional[Itinerary]:
        try:
            path = nx.shortest_path(network.walk_graph, start, end, weight="length_m")
        except (nx.NetworkXNoPath, nx.NodeNotFound):
            return None

        steps = [
            (network.walk_graph.edges[a, b]["name"], network.walk_graph.edges[a, b]["length_m"])
            for a, b in zip(path, path[1:])
        ]
        leg = self._walk_leg(steps)
        coordinates = [RouteCoordinate(*network.node_coords[node]) for node in path]
        return Itinerary.from_legs([leg], coordinates, start_time=query.departure_time)

    def _route_transit(
        self, network: _LoadedNetwork, query: RouteQuery, start: str, end: str
    ) -> Optional[Itinerary]:
        t0 = (
            query.departure_time.hour * 3600
            + query.departure_time.minute * 60
            + query.departure_time.second
        )
        window_end = t0 + self._options.transit_window_minutes * 60
        hops = network.hops
        hops = hops[(hops["dep_seconds"] >= t0) & (hops["dep_seconds"] <= window_end)]
        if hops.empty:
            logger.debug("No departures between %d and %d, walking only", t0, window_end)
            return self._route_walk(network, query, start, end)

        earliest = hops.sort_values("dep_seconds").drop_duplicates(["from_stop", "to_stop"])
        graph = self._multimodal_graph(network, earliest)
        try:
            path = nx.shortest_path(graph, start, end, weight="weight")
        except (nx.NetworkXNoPath, nx.NodeNotFound):
            return None

        return self._itinerary_from_path(network, graph, path, query)

    def _multimodal_graph(self, network: _LoadedNetwork, rides: pd.DataFrame) -> nx.DiGraph:
        speed = self._options.walk_speed_mps
        graph = nx.DiGraph()
        for a, b, data in network.walk_graph.edges(data=True):
            attrs = {
                "weight": data["length_m"] / speed,
                "kind": "walk",
                "length_m": data["length_m"],
                "name": data["name"],
            }
            graph.add_edge(a, b, **attrs)
            graph.add_edge(b, a, **attrs)

        stops = network.stops
        for stop_id, node_id, link_m in zip(stops["stop_id"], stops["node_id"], stops["link_m"]):
            stop_node = ("stop", stop_id)
            walk_s = float(link_m) / speed
            graph.add_edge(
                node_id,
                stop_node,
                weight=walk_s + self._options.boarding_penalty_s,
                kind="board",
                length_m=float(link_m),
                name="",
            )
            graph.add_edge(stop_node, node_id, weight=walk_s, kind="alight", length_m=float(link_m), name="")

        for row in rides.itertuples(index=False):
            if row.from_stop not in stops.index or row.to_stop not in stops.index:
                continue
            length = float(
                haversine_m(
                    stops.at[row.from_stop, "stop_lat"],
                    stops.at[row.from_stop, "stop_lon"],
                    stops.at[row.to_stop, "stop_lat"],
                    stops.at[row.to_stop, "stop_lon"],
                )
            )
            graph.add_edge(
                ("stop", row.from_stop),
                ("stop", row.to_stop),
                weight=float(row.arr_seconds - row.dep_seconds),
                kind="ride",
                length_m=length,
                name=row.line_name,
            )
        return graph

    def _itinerary_from_path(
        self, network: _LoadedNetwork, graph: nx.DiGraph, path: List, query: RouteQuery
    ) -> Itinerary:
        legs: List[Leg] = []
        walk_steps: List[Tuple[str, float]] = []
        ride_steps: List[Tuple[str, str, float, float]] = []

        def flush_walk() -> None:
            if walk_steps:
                legs.append(self._walk_leg(walk_steps))
                walk_steps.clear()

        def flush_ride() -> None:
            if ride_steps:
                legs.append(self._ride_leg(ride_steps))
                ride_steps.clear()

        for a, b in zip(path, path[1:]):
            edge = graph.edges[a, b]
            if edge["kind"] == "ride":
                flush_walk()
                if ride_steps and ride_steps[-1][0] != edge["name"]:
                    flush_ride()
                stop_name = str(network.stops.at[b[1], "stop_name"])
                ride_steps.append((edge["name"], stop_name, edge["length_m"], edge["weight"]))
            else:
                flush_ride()
                if edge["kind"] == "walk":
                    walk_steps.append((edge["name"], edge["length_m"]))
                elif edge["length_m"] > 0:
                    walk_steps.append(("", edge["length_m"]))
        flush_walk()
        flush_ride()

        coordinates = [self._coordinate(network, node) for node in path]
        if not legs:
            legs.append(self._walk_leg([]))
        return Itinerary.from_legs(legs, coordinates, start_time=query.departure_time)

    def _walk_leg(self, steps: List[Tuple[str, float]]) -> Leg:
        """Group consecutive steps on the same street into instructions."""
        speed = self._options.walk_speed_mps
        grouped: List[Tuple[str, float]] = []
        for name, length in steps:
            if grouped and grouped[-1][0] == name:
                grouped[-1] = (name, grouped[-1][1] + length)
            else:
                grouped.append((name, length))

        instructions = tuple(
            Instruction(
                text=name or UNNAMED_ROAD,
                distance_meters=length,
                duration_seconds=int(round(length / speed)),
            )
            for name, length in grouped
        )
        distance = sum(length for _, length in steps)
        return Leg(
            mode=TravelMode.FOOT,
            instructions=instructions,
            distance_meters=distance,
            duration_seconds=int(round(distance / speed)),
        )

    def _ride_leg(self, steps: List[Tuple[str, str, float, float]]) -> Leg:
        line_name = steps[0][0]
        last_stop = steps[-1][1]
        distance = sum(step[2] for step in steps)
        ride_s = sum(step[3] for step in steps)
        duration = int(round(ride_s + self._options.boarding_penalty_s))
        instruction = Instruction(
            text=f"{line_name} to {last_stop}",
            distance_meters=distance,
            duration_seconds=duration,
        )
        return Leg(
            mode=TravelMode.PT,
            instructions=(instruction,),
            distance_meters=distance,
            duration_seconds=duration,
        )

    @staticmethod
    def _coordinate(network: _LoadedNetwork, node) -> RouteCoordinate:
        if isinstance(node, tuple):
            stop = network.stops.loc[node[1]]
            return RouteCoordinate(float(stop["stop_lat"]), float(stop["stop_lon"]))
        lat, lon = network.node_coords[node]
        return RouteCoordinate(lat, lon)

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ImportCancelledError()
