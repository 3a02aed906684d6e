"""
Domain services for the transit graph cache.

Services orchestrate the interaction between ports (routing engine,
background jobs) and adapters (artifact handle, fingerprint store).
"""

from src.transit_graph.services.cache_coordinator import CacheCoordinator
from src.transit_graph.services.import_job import ImportJob
from src.transit_graph.services.job_registry import JobPolicy, SingletonJobRegistry
from src.transit_graph.services.route_query_service import RouteQueryService
from src.transit_graph.services.state_machine import CacheStateMachine

__all__ = [
    "CacheCoordinator",
    "CacheStateMachine",
    "ImportJob",
    "JobPolicy",
    "RouteQueryService",
    "SingletonJobRegistry",
]
