"""
Application layer for the transit graph cache.

Provides the public API (use cases) for consumers.
"""

from src.transit_graph.application.transit_routing import TransitRouting

__all__ = ["TransitRouting"]
