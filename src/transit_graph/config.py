"""
Configuration module for the transit graph cache.

Loads environment variables (optionally from a .env file) and exposes
them as an immutable settings object shared by the coordinator, the
import job and the reference routing engine.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from src.transit_graph.ports.routing_engine import EngineOptions

# Load environment variables from .env file
load_dotenv()

DEFAULT_GRAPH_ROOT = "data"
DEFAULT_ROAD_EXTRACT_FILE = "road_network.csv"
DEFAULT_TRANSIT_FEED_FILE = "gtfs_feed.zip"
DEFAULT_CACHE_DIR_NAME = "graph-cache"
DEFAULT_VERSION_FILE_NAME = "version.json"
DEFAULT_IMPORT_JOB_NAME = "graph_import"
DEFAULT_READY_TIMEOUT_SECONDS = 60.0
DEFAULT_MIN_FREE_DISK_BYTES = 3 * 1024 * 1024 * 1024  # 3 GiB
DEFAULT_WALK_SPEED_MPS = 1.3
DEFAULT_MAX_STOP_LINK_M = 500.0
DEFAULT_TRANSIT_WINDOW_MINUTES = 120
DEFAULT_BOARDING_PENALTY_S = 120.0


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


@dataclass(frozen=True)
class GraphCacheSettings:
    """
    Settings for the graph cache lifecycle.

    Attributes:
        graph_root: Directory holding both inputs, the cache directory
            and the persisted fingerprint file.
        road_extract_file: File name of the road-network extract.
        transit_feed_file: File name of the transit-schedule feed.
        cache_dir_name: Name of the artifact directory under graph_root.
        version_file_name: Name of the fingerprint file under graph_root.
        import_job_name: Singleton key of the import job.
        ready_timeout_seconds: How long start() waits for readiness.
        min_free_disk_bytes: Free space required before any build.
        walk_speed_mps: Walking speed used by the reference engine.
        max_stop_link_m: Max distance from a stop to its road node.
        transit_window_minutes: Departures considered for a transit query.
        boarding_penalty_s: Fixed cost added when boarding a vehicle.
        import_source_dir: Optional directory missing inputs are copied from.
    """

    graph_root: Path = Path(DEFAULT_GRAPH_ROOT)
    road_extract_file: str = DEFAULT_ROAD_EXTRACT_FILE
    transit_feed_file: str = DEFAULT_TRANSIT_FEED_FILE
    cache_dir_name: str = DEFAULT_CACHE_DIR_NAME
    version_file_name: str = DEFAULT_VERSION_FILE_NAME
    import_job_name: str = DEFAULT_IMPORT_JOB_NAME
    ready_timeout_seconds: float = DEFAULT_READY_TIMEOUT_SECONDS
    min_free_disk_bytes: int = DEFAULT_MIN_FREE_DISK_BYTES
    walk_speed_mps: float = DEFAULT_WALK_SPEED_MPS
    max_stop_link_m: float = DEFAULT_MAX_STOP_LINK_M
    transit_window_minutes: int = DEFAULT_TRANSIT_WINDOW_MINUTES
    boarding_penalty_s: float = DEFAULT_BOARDING_PENALTY_S
    import_source_dir: Optional[Path] = None

    def __post_init__(self) -> None:
        """Validate numeric settings."""
        if self.ready_timeout_seconds <= 0:
            raise ValueError(
                f"ready_timeout_seconds must be > 0, got {self.ready_timeout_seconds}"
            )
        if self.min_free_disk_bytes < 0:
            raise ValueError(
                f"min_free_disk_bytes must be >= 0, got {self.min_free_disk_bytes}"
            )
        if self.walk_speed_mps <= 0:
            raise ValueError(f"walk_speed_mps must be > 0, got {self.walk_speed_mps}")
        if self.road_extract_file == self.transit_feed_file:
            raise ValueError("road extract and transit feed must have different names")

    @classmethod
    def from_env(cls) -> "GraphCacheSettings":
        """Build settings from TRANSIT_GRAPH_* environment variables."""
        source = os.getenv("TRANSIT_GRAPH_IMPORT_SOURCE")
        return cls(
            graph_root=Path(os.getenv("TRANSIT_GRAPH_ROOT", DEFAULT_GRAPH_ROOT)),
            road_extract_file=os.getenv(
                "TRANSIT_GRAPH_ROAD_FILE", DEFAULT_ROAD_EXTRACT_FILE
            ),
            transit_feed_file=os.getenv(
                "TRANSIT_GRAPH_TRANSIT_FILE", DEFAULT_TRANSIT_FEED_FILE
            ),
            cache_dir_name=os.getenv("TRANSIT_GRAPH_CACHE_DIR", DEFAULT_CACHE_DIR_NAME),
            version_file_name=os.getenv(
                "TRANSIT_GRAPH_VERSION_FILE", DEFAULT_VERSION_FILE_NAME
            ),
            import_job_name=os.getenv("TRANSIT_GRAPH_JOB_NAME", DEFAULT_IMPORT_JOB_NAME),
            ready_timeout_seconds=_env_float(
                "TRANSIT_GRAPH_READY_TIMEOUT", DEFAULT_READY_TIMEOUT_SECONDS
            ),
            min_free_disk_bytes=_env_int(
                "TRANSIT_GRAPH_MIN_FREE_BYTES", DEFAULT_MIN_FREE_DISK_BYTES
            ),
            walk_speed_mps=_env_float("TRANSIT_GRAPH_WALK_SPEED", DEFAULT_WALK_SPEED_MPS),
            max_stop_link_m=_env_float(
                "TRANSIT_GRAPH_MAX_STOP_LINK_M", DEFAULT_MAX_STOP_LINK_M
            ),
            transit_window_minutes=_env_int(
                "TRANSIT_GRAPH_TRANSIT_WINDOW_MIN", DEFAULT_TRANSIT_WINDOW_MINUTES
            ),
            boarding_penalty_s=_env_float(
                "TRANSIT_GRAPH_BOARDING_PENALTY", DEFAULT_BOARDING_PENALTY_S
            ),
            import_source_dir=Path(source) if source else None,
        )

    @property
    def road_extract_path(self) -> Path:
        return self.graph_root / self.road_extract_file

    @property
    def transit_feed_path(self) -> Path:
        return self.graph_root / self.transit_feed_file

    @property
    def cache_dir(self) -> Path:
        return self.graph_root / self.cache_dir_name

    @property
    def version_path(self) -> Path:
        return self.graph_root / self.version_file_name

    def engine_options(self) -> EngineOptions:
        """Tuning options handed to the routing engine."""
        return EngineOptions(
            walk_speed_mps=self.walk_speed_mps,
            max_stop_link_m=self.max_stop_link_m,
            transit_window_minutes=self.transit_window_minutes,
            boarding_penalty_s=self.boarding_penalty_s,
        )
