"""
Artifact Handle - single-owner holder of the loaded routing engine.

Implements the process-wide (but explicitly constructed) holder of at
most one queryable engine instance:
- All mutation (install, close, nullify) under one lock
- Lock-free reads for routing (reference swapped atomically)
- Observable readiness flag waiters can block on without polling
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, List, Optional, Union

from src.transit_graph.exceptions import ArtifactInitError
from src.transit_graph.ports.routing_engine import (
    EngineConfig,
    EngineFactory,
    EngineOptions,
    RoutingEngine,
)
from src.transit_graph.schemas.route import Itinerary, RouteQuery

logger = logging.getLogger(__name__)

ReadinessListener = Callable[[bool], None]


# =============================================================================
# READINESS SIGNAL: Observable boolean
# =============================================================================


class ReadinessSignal:
    """
    Observable boolean backed by a condition variable.

    Listeners are called synchronously on every change, on the thread
    that made the change. They must not block and must not call back
    into the owner of the signal.
    """

    def __init__(self, initial: bool = False) -> None:
        self._value = initial
        self._cond = threading.Condition()
        self._listeners: List[ReadinessListener] = []

    @property
    def value(self) -> bool:
        with self._cond:
            return self._value

    def set(self, value: bool) -> None:
        """Change the value, waking waiters and notifying listeners."""
        with self._cond:
            if value == self._value:
                return
            self._value = value
            self._cond.notify_all()
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(value)
            except Exception:
                logger.exception("Readiness listener failed")

    def wait_for(self, expected: bool = True, timeout: Optional[float] = None) -> bool:
        """
        Block until the value equals expected.

        Args:
            expected: Value to wait for.
            timeout: Max seconds to wait (None = forever).

        Returns:
            True if the value matched before the timeout.
        """
        with self._cond:
            return self._cond.wait_for(lambda: self._value == expected, timeout)

    def subscribe(self, listener: ReadinessListener) -> Callable[[], None]:
        """
        Register a change listener.

        Returns:
            Callable that removes the listener again.
        """
        with self._cond:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._cond:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe


# =============================================================================
# ARTIFACT HANDLE
# =============================================================================


class ArtifactHandle:
    """
    Holder of at most one loaded routing engine.

    Only the coordinator and the import job install or tear down the
    engine. The query facade borrows it through route(); the borrowed
    reference stays valid until the next reset().

    Usage:
        >>> handle = ArtifactHandle(engine_factory=NetworkXRoutingEngine)
        >>> handle.init(Path("data"))  # loads data/graph-cache if present
        >>> if handle.is_ready:
        ...     itinerary = handle.route(query)
    """

    def __init__(
        self,
        engine_factory: EngineFactory,
        cache_dir_name: str = "graph-cache",
        engine_options: Optional[EngineOptions] = None,
    ) -> None:
        """
        Initialize an empty, not-ready handle.

        Args:
            engine_factory: Creates engine instances from an EngineConfig.
            cache_dir_name: Name of the cache directory under a graph root.
            engine_options: Tuning options for engines loaded by init().
        """
        self._engine_factory = engine_factory
        self._cache_dir_name = cache_dir_name
        self._engine_options = engine_options or EngineOptions()
        self._engine: Optional[RoutingEngine] = None
        self._generation = 0
        self._lock = threading.Lock()
        self._readiness = ReadinessSignal(False)

    @property
    def readiness(self) -> ReadinessSignal:
        """Observable readiness flag."""
        return self._readiness

    @property
    def is_ready(self) -> bool:
        """Check if a fully installed, queryable engine is held."""
        return self._readiness.value

    @property
    def engine(self) -> Optional[RoutingEngine]:
        """Currently held engine (borrowed reference, may be None)."""
        return self._engine

    def init(self, graph_root: Union[str, Path]) -> None:
        """
        Load the cached artifact under graph_root, if there is one.

        No-op when already ready. Absence of a cache directory is not a
        fault here: the handle simply stays not-ready. An engine whose
        load() overlaps a reset() is discarded, not installed.

        Args:
            graph_root: Directory containing the cache directory.

        Raises:
            ArtifactInitError: If a cache directory exists but fails to load.
        """
        with self._lock:
            if self._engine is not None:
                return
            generation = self._generation

        cache_dir = Path(graph_root) / self._cache_dir_name
        if not cache_dir.is_dir():
            logger.info("No graph cache at %s, handle stays not ready", cache_dir)
            return

        engine = self._engine_factory(
            EngineConfig(cache_dir=cache_dir, options=self._engine_options)
        )
        try:
            engine.load()
        except Exception as e:
            logger.exception("Failed to load graph cache from %s", cache_dir)
            engine.close()
            raise ArtifactInitError(e) from e

        if not self.install(engine, generation=generation):
            logger.info("Handle reset while loading %s, loaded engine discarded", cache_dir)
            return
        logger.info("Graph loaded from cache %s (%s)", cache_dir, engine.name)

    def install(self, engine: RoutingEngine, generation: Optional[int] = None) -> bool:
        """
        Install a loaded engine and flip readiness to true.

        Install-then-ready happens under the lock, so a waiter that
        observes readiness always sees the installed engine. A previously
        held engine is closed.

        Args:
            engine: Engine on which build() or load() has succeeded.
            generation: Reset generation observed before the engine was
                loaded. If reset() ran since, the engine is closed instead.

        Returns:
            True if the engine was installed.
        """
        previous: Optional[RoutingEngine] = None
        with self._lock:
            stale = generation is not None and generation != self._generation
            if not stale:
                previous = self._engine
                self._engine = engine
                self._readiness.set(True)

        if stale:
            self._close_quietly(engine)
            return False
        if previous is not None and previous is not engine:
            self._close_quietly(previous)
        return True

    def reset(self) -> None:
        """
        Close and discard the held engine, flipping readiness to false.

        Safe to call when nothing is loaded.
        """
        with self._lock:
            self._generation += 1
            previous = self._engine
            self._engine = None
            self._readiness.set(False)
            if previous is not None:
                self._close_quietly(previous)
                logger.info("Graph engine closed")

    def route(self, query: RouteQuery) -> Optional[Itinerary]:
        """
        Route a query against the held engine.

        Never blocks waiting for readiness: callers check is_ready first.

        Args:
            query: Validated routing request.

        Returns:
            Best Itinerary, or None if no engine is held or no route exists.
        """
        engine = self._engine
        if engine is None:
            return None
        return engine.route(query)

    @staticmethod
    def _close_quietly(engine: RoutingEngine) -> None:
        try:
            engine.close()
        except Exception:
            logger.exception("Error while closing graph engine %s", engine.name)
