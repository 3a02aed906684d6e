"""
Routing engine adapters.
"""

from src.transit_graph.adapters.engines.networkx_engine import NetworkXRoutingEngine

__all__ = [
    "NetworkXRoutingEngine",
]
