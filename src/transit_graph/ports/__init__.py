"""
Port interfaces for the transit graph cache.

Ports define the abstract interfaces (ABCs and Protocols) the cache
lifecycle uses to talk to the routing engine and to background work.
This follows the Ports and Adapters (Hexagonal) architecture pattern.
"""

from src.transit_graph.ports.background_job import BackgroundJob
from src.transit_graph.ports.routing_engine import (
    EngineConfig,
    EngineFactory,
    EngineOptions,
    RoutingEngine,
)

__all__ = [
    "BackgroundJob",
    "EngineConfig",
    "EngineFactory",
    "EngineOptions",
    "RoutingEngine",
]
