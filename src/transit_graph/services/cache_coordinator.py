"""
Cache Coordinator - decides between reusing and rebuilding the graph.

Implements the cache lifecycle:
1. Eager input validation (missing, unreadable, disk space) before any mutation
2. Fingerprint comparison against the persisted CacheVersion
3. Wipe of stale cache state before any rebuild
4. Load of a valid cache, or submission of a singleton import job
5. Event-driven readiness wait bounded by a timeout

start() streams CacheState values and never raises; force_rebuild()
raises on precondition failures; force_refresh_check() never disturbs
an in-flight build.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

from src.transit_graph.adapters.repositories.artifact_handle import ArtifactHandle
from src.transit_graph.adapters.repositories.fingerprint_store import (
    FingerprintStore,
    fingerprint_file,
)
from src.transit_graph.config import GraphCacheSettings
from src.transit_graph.exceptions import (
    ArtifactInitError,
    InputValidationError,
    InsufficientDiskSpaceError,
    MissingInputFilesError,
    ReadinessTimeoutError,
    UnreadableInputFilesError,
)
from src.transit_graph.ports.routing_engine import EngineFactory, EngineOptions
from src.transit_graph.schemas.cache_state import CacheState, CacheStateKind
from src.transit_graph.services.import_job import ImportJob
from src.transit_graph.services.job_registry import JobPolicy, SingletonJobRegistry
from src.transit_graph.services.state_machine import CacheStateMachine

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "graph import failed"


class CacheCoordinator:
    """
    Orchestrates validation, fingerprinting and import of the graph cache.

    One instance per cache root. All collaborators are injected, so the
    coordinator holds no hidden global state.

    Usage:
        >>> coordinator = CacheCoordinator(settings, handle, FingerprintStore(),
        ...                                registry, NetworkXRoutingEngine)
        >>> for state in coordinator.start():
        ...     print(state.kind)
    """

    def __init__(
        self,
        settings: GraphCacheSettings,
        handle: ArtifactHandle,
        store: FingerprintStore,
        registry: SingletonJobRegistry,
        engine_factory: EngineFactory,
        engine_options: Optional[EngineOptions] = None,
    ) -> None:
        self._settings = settings
        self._handle = handle
        self._store = store
        self._registry = registry
        self._engine_factory = engine_factory
        self._engine_options = engine_options or settings.engine_options()
        self._state_lock = threading.Lock()
        self._last_state: Optional[CacheState] = None

    @property
    def settings(self) -> GraphCacheSettings:
        return self._settings

    @property
    def current_state(self) -> Optional[CacheState]:
        """Last state emitted by start() (None before the first call)."""
        with self._state_lock:
            return self._last_state

    # =========================================================================
    # Side-effect-free queries
    # =========================================================================

    def _input_paths(self) -> Tuple[Path, Path]:
        return self._settings.road_extract_path, self._settings.transit_feed_path

    def get_missing_files(self) -> List[str]:
        """Names of input files that are absent or not regular files."""
        return [path.name for path in self._input_paths() if not path.is_file()]

    def get_input_last_modified(self) -> Dict[str, Optional[int]]:
        """
        Last-modified time of each input file.

        Returns:
            Dict mapping file name to mtime in epoch millis (None if absent or
            not representable).
        """
        result: Dict[str, Optional[int]] = {}
        for path in self._input_paths():
            try:
                result[path.name] = fingerprint_file(path).last_modified_millis
            except (OSError, ValueError):
                result[path.name] = None
        return result

    def is_import_running(self) -> bool:
        return self._registry.is_running(self._settings.import_job_name)

    def current_job(self) -> Optional[ImportJob]:
        """Most recently submitted import job, if any."""
        return self._registry.get(self._settings.import_job_name)

    # =========================================================================
    # Input provisioning
    # =========================================================================

    def import_missing_files(self, source_dir: Optional[Union[str, Path]] = None) -> bool:
        """
        Copy missing input files from a source directory into the cache root.

        Args:
            source_dir: Directory to copy from (defaults to the configured
                import source).

        Returns:
            True if at least one file was copied.
        """
        source = source_dir if source_dir is not None else self._settings.import_source_dir
        if source is None:
            logger.info("No import source configured")
            return False

        source = Path(source)
        copied = False
        for name in self.get_missing_files():
            candidate = source / name
            if not candidate.is_file():
                logger.info("Input %s not found in %s", name, source)
                continue
            try:
                self._settings.graph_root.mkdir(parents=True, exist_ok=True)
                shutil.copy2(candidate, self._settings.graph_root / name)
            except OSError as e:
                logger.warning("Failed to copy %s from %s: %s", name, source, e)
                continue
            logger.info("Copied input %s from %s", name, source)
            copied = True
        return copied

    # =========================================================================
    # Validation
    # =========================================================================

    def _check_readable(self) -> None:
        unreadable = [path.name for path in self._input_paths() if not os.access(path, os.R_OK)]
        if unreadable:
            raise UnreadableInputFilesError(unreadable)

    def _check_disk_space(self) -> None:
        required = self._settings.min_free_disk_bytes
        root = self._settings.graph_root
        available = shutil.disk_usage(root).free
        if available <= required:
            raise InsufficientDiskSpaceError(available, required)

    def _validate_inputs(self) -> None:
        """
        Run every precondition, in order, without touching the filesystem.

        Raises:
            MissingInputFilesError: If an input is absent.
            UnreadableInputFilesError: If an input cannot be read.
            InsufficientDiskSpaceError: If the cache volume is too full.
        """
        missing = self.get_missing_files()
        if missing:
            raise MissingInputFilesError(missing)
        self._check_readable()
        self._check_disk_space()

    # =========================================================================
    # Mutation helpers
    # =========================================================================

    def _wipe_cache(self) -> None:
        """Delete the cache directory and persisted fingerprint, then reset the handle."""
        if self.is_import_running():
            # The replacing job wipes before it builds
            logger.info("Import in flight, deferring cache wipe to the next job")
        else:
            cache_dir = self._settings.cache_dir
            if cache_dir.exists():
                shutil.rmtree(cache_dir)
                logger.info("Deleted graph cache %s", cache_dir)
            if self._store.delete(self._settings.version_path):
                logger.info("Deleted cache version %s", self._settings.version_path)
        self._handle.reset()

    def _new_job(self) -> ImportJob:
        settings = self._settings
        return ImportJob(
            name=settings.import_job_name,
            road_extract_path=settings.road_extract_path,
            transit_feed_path=settings.transit_feed_path,
            cache_dir=settings.cache_dir,
            version_path=settings.version_path,
            handle=self._handle,
            store=self._store,
            engine_factory=self._engine_factory,
            engine_options=self._engine_options,
        )

    def _enter(self, machine: CacheStateMachine, state: CacheState) -> CacheState:
        machine.transition(state)
        with self._state_lock:
            self._last_state = state
        return state

    # =========================================================================
    # start(): state stream
    # =========================================================================

    def start(self) -> Iterator[CacheState]:
        """
        Run one session of the lifecycle, yielding each state entered.

        The stream always ends in a terminal state (MissingFiles, Ready or
        Error). No exception escapes: failures become Error(message).
        Every call runs its own session, so overlapping callers each get
        a complete stream.

        Yields:
            CacheState values in transition order.
        """
        machine = CacheStateMachine()
        machine.begin()
        try:
            yield from self._session(machine)
        except Exception as e:
            logger.exception("Graph cache start failed")
            if machine.can_transition(CacheStateKind.ERROR):
                yield self._enter(machine, CacheState.error(str(e) or DEFAULT_ERROR_MESSAGE))

    def _session(self, machine: CacheStateMachine) -> Iterator[CacheState]:
        settings = self._settings

        missing = self.get_missing_files()
        if missing:
            logger.info("Missing input files: %s", ", ".join(missing))
            yield self._enter(machine, CacheState.missing(missing))
            return

        try:
            self._check_readable()
            self._check_disk_space()
        except InputValidationError as e:
            logger.warning("Graph cache precondition failed: %s", e)
            yield self._enter(machine, CacheState.error(str(e)))
            return

        current = self._store.compute(*self._input_paths())
        saved = self._store.read(settings.version_path)
        needs_rebuild = saved is None or saved != current
        if needs_rebuild:
            logger.info(
                "Cache version %s, rebuilding",
                "absent" if saved is None else "changed",
            )
            self._wipe_cache()

        if settings.cache_dir.is_dir() and not needs_rebuild:
            try:
                self._handle.init(settings.graph_root)
            except ArtifactInitError as e:
                self._wipe_cache()
                yield self._enter(machine, CacheState.error(str(e)))
                return
            if self._handle.is_ready:
                yield self._enter(machine, CacheState.ready())
                return

        yield self._enter(machine, CacheState.needs_import())
        yield from self._import_and_wait(machine)

    def _import_and_wait(self, machine: CacheStateMachine) -> Iterator[CacheState]:
        settings = self._settings
        settled = threading.Event()

        def on_readiness(ready: bool) -> None:
            if ready:
                settled.set()

        unsubscribe = self._handle.readiness.subscribe(on_readiness)
        try:
            job = self._registry.submit(settings.import_job_name, self._new_job, JobPolicy.REPLACE)
            job.add_done_callback(lambda _job: settled.set())
            yield self._enter(machine, CacheState.importing())

            if not settled.wait(settings.ready_timeout_seconds):
                timeout = ReadinessTimeoutError(settings.ready_timeout_seconds)
                logger.warning(
                    "Graph not ready after %.0f s, cancelling import",
                    settings.ready_timeout_seconds,
                )
                self._registry.cancel(settings.import_job_name)
                yield self._enter(machine, CacheState.error(str(timeout)))
                return
        finally:
            unsubscribe()

        if job.error is not None:
            yield self._enter(machine, CacheState.error(job.failure_message or DEFAULT_ERROR_MESSAGE))
        elif self._handle.is_ready:
            yield self._enter(machine, CacheState.ready())
        else:
            yield self._enter(machine, CacheState.error(DEFAULT_ERROR_MESSAGE))

    # =========================================================================
    # Commands
    # =========================================================================

    def force_rebuild(self) -> ImportJob:
        """
        Unconditionally rebuild the cache.

        Returns:
            The submitted import job.

        Raises:
            MissingInputFilesError: If an input is absent.
            UnreadableInputFilesError: If an input cannot be read.
            InsufficientDiskSpaceError: If the cache volume is too full.
        """
        self._validate_inputs()
        logger.info("Forced graph rebuild requested")
        self._wipe_cache()
        return self._registry.submit(
            self._settings.import_job_name, self._new_job, JobPolicy.REPLACE
        )

    def force_refresh_check(self) -> bool:
        """
        Re-check fingerprints and rebuild if the inputs changed.

        Silently does nothing when inputs are invalid, the saved version is
        absent or unchanged, or an import is already running. The check
        and the submission are atomic under the registry lock.

        Returns:
            True if a new import job was submitted.
        """
        try:
            self._validate_inputs()
        except InputValidationError as e:
            logger.info("Refresh check skipped: %s", e)
            return False

        saved = self._store.read(self._settings.version_path)
        if saved is None:
            logger.debug("Refresh check skipped: no saved cache version")
            return False
        current = self._store.compute(*self._input_paths())
        if saved == current:
            logger.debug("Refresh check: inputs unchanged")
            return False

        job = self._registry.submit(
            self._settings.import_job_name, self._new_job, JobPolicy.KEEP
        )
        if job is None:
            return False
        logger.info("Inputs changed, refresh import submitted")
        return True
