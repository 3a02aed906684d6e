"""
TransitRouting Use Case - Public API for the transit graph cache.

This module provides the main entry point for consumers. It acts as a
Facade/Factory: it wires settings, the fingerprint store, the artifact
handle, the job registry and the coordinator together, and exposes the
lifecycle commands next to route queries.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from src.transit_graph.adapters.engines.networkx_engine import NetworkXRoutingEngine
from src.transit_graph.adapters.repositories.artifact_handle import ArtifactHandle
from src.transit_graph.adapters.repositories.fingerprint_store import FingerprintStore
from src.transit_graph.config import GraphCacheSettings
from src.transit_graph.ports.routing_engine import EngineFactory
from src.transit_graph.schemas.cache_state import CacheState
from src.transit_graph.schemas.import_job import ImportJobInfo
from src.transit_graph.schemas.route import Itinerary, TravelMode
from src.transit_graph.services.cache_coordinator import CacheCoordinator
from src.transit_graph.services.import_job import ImportJob
from src.transit_graph.services.job_registry import SingletonJobRegistry
from src.transit_graph.services.route_query_service import RouteQueryService

logger = logging.getLogger(__name__)


class TransitRouting:
    """
    Public API of the transit graph cache.

    One instance per process and cache root; construct it explicitly and
    pass it where it is needed.

    Example usage:
        >>> routing = TransitRouting(GraphCacheSettings(graph_root=Path("data")))
        >>> for state in routing.start():
        ...     print(state.to_dict())
        >>> itinerary = routing.calculate_route(52.23, 21.01, 52.25, 21.00)
        >>> routing.shutdown()

    Attributes:
        _coordinator: Lifecycle coordinator.
        _query_service: Routing facade.
        _registry: Job registry (for shutdown).
    """

    def __init__(
        self,
        settings: Optional[GraphCacheSettings] = None,
        engine_factory: Optional[EngineFactory] = None,
    ) -> None:
        """
        Initialize all collaborators.

        Args:
            settings: Cache settings. If None, reads them from the environment.
            engine_factory: Routing engine factory. If None, uses
                NetworkXRoutingEngine.
        """
        self._settings = settings or GraphCacheSettings.from_env()
        factory = engine_factory or NetworkXRoutingEngine
        options = self._settings.engine_options()

        self._store = FingerprintStore()
        self._handle = ArtifactHandle(
            engine_factory=factory,
            cache_dir_name=self._settings.cache_dir_name,
            engine_options=options,
        )
        self._registry = SingletonJobRegistry()
        self._coordinator = CacheCoordinator(
            settings=self._settings,
            handle=self._handle,
            store=self._store,
            registry=self._registry,
            engine_factory=factory,
            engine_options=options,
        )
        self._query_service = RouteQueryService(self._handle)

        logger.info("TransitRouting initialized for graph root %s", self._settings.graph_root)

    @property
    def settings(self) -> GraphCacheSettings:
        return self._settings

    @property
    def handle(self) -> ArtifactHandle:
        return self._handle

    @property
    def coordinator(self) -> CacheCoordinator:
        return self._coordinator

    @property
    def is_ready(self) -> bool:
        return self._handle.is_ready

    @property
    def current_state(self) -> Optional[CacheState]:
        return self._coordinator.current_state

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> Iterator[CacheState]:
        """Stream the states of one lifecycle session (see CacheCoordinator.start)."""
        return self._coordinator.start()

    def force_rebuild(self) -> ImportJob:
        return self._coordinator.force_rebuild()

    def force_refresh_check(self) -> bool:
        return self._coordinator.force_refresh_check()

    def get_missing_files(self) -> List[str]:
        return self._coordinator.get_missing_files()

    def get_input_last_modified(self) -> Dict[str, Optional[int]]:
        return self._coordinator.get_input_last_modified()

    def import_missing_files(self, source_dir: Optional[Union[str, Path]] = None) -> bool:
        return self._coordinator.import_missing_files(source_dir)

    def is_import_running(self) -> bool:
        return self._coordinator.is_import_running()

    def job_snapshot(self) -> Optional[ImportJobInfo]:
        """Snapshot of the most recent import job, if any."""
        job = self._coordinator.current_job()
        return job.snapshot() if job is not None else None

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

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

        Raises:
            GraphNotReadyError: If no routing graph is loaded.
        """
        return self._query_service.calculate_route(
            start_lat=start_lat,
            start_lon=start_lon,
            end_lat=end_lat,
            end_lon=end_lon,
            departure_time=departure_time,
            mode=mode,
        )

    def shutdown(self, wait: bool = True) -> None:
        """Cancel any running import, stop the worker and close the engine."""
        self._registry.shutdown(wait=wait)
        self._handle.reset()
        logger.info("TransitRouting shut down")
