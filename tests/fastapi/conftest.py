"""
Fixtures for FastAPI endpoint tests.

Provides a TransitRouting facade wired to the fake engine, patched into
the API module in place of the environment-configured instance.
"""

from unittest.mock import patch

import pytest

from src.transit_graph.application import TransitRouting


@pytest.fixture
def anyio_backend():
    """Use asyncio backend for async tests."""
    return "asyncio"


@pytest.fixture
def api_routing(settings, engine_factory) -> TransitRouting:
    """TransitRouting over the fake engine, installed as the API's global."""
    routing = TransitRouting(settings=settings, engine_factory=engine_factory)
    with patch("src.fastapi.graph_api.routing", routing):
        yield routing
    routing.shutdown(wait=True)


@pytest.fixture
def ready_routing(api_routing, write_inputs) -> TransitRouting:
    """API routing facade after a successful cold start."""
    write_inputs()
    states = list(api_routing.start())
    assert states[-1].kind.value == "ready"
    assert api_routing.coordinator.current_job().wait(2.0)
    return api_routing
