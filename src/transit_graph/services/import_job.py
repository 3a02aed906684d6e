"""
Import Job - cancellable background build of the routing graph.

Implements the unit of work submitted through the job registry:
- Input validation with no side effects on failure
- Wipe of any stale cache before the build
- Progress checkpoints 10 / 80 / 90 / 100 (skipped once told to stop)
- Fingerprint written before the engine is installed
- One-shot cleanup that runs to completion regardless of cancellation
- Structured failure (OutOfMemoryFailure, BuildFailureError, ...)
  stored on the job and re-raised out of run()
"""

from __future__ import annotations

import logging
import shutil
import threading
from pathlib import Path
from typing import Callable, List, Optional, Union

from src.transit_graph.adapters.repositories.artifact_handle import ArtifactHandle
from src.transit_graph.adapters.repositories.fingerprint_store import FingerprintStore
from src.transit_graph.exceptions import (
    BuildFailureError,
    GraphCacheError,
    ImportCancelledError,
    MissingInputFilesError,
    OutOfMemoryFailure,
)
from src.transit_graph.ports.routing_engine import (
    EngineConfig,
    EngineFactory,
    EngineOptions,
    RoutingEngine,
)
from src.transit_graph.schemas.import_job import ImportJobInfo, ImportJobState

logger = logging.getLogger(__name__)

PROGRESS_VALIDATED = 10
PROGRESS_BUILT = 80
PROGRESS_PERSISTED = 90
PROGRESS_INSTALLED = 100

ProgressCallback = Callable[[int], None]
DoneCallback = Callable[["ImportJob"], None]


class ImportJob:
    """
    Background job building the artifact and installing it in the handle.

    A job instance runs at most once. It is driven by run() on a worker
    thread and may be cancelled from any thread.

    Usage:
        >>> job = ImportJob(
        ...     name="graph_import",
        ...     road_extract_path=Path("data/road_network.csv"),
        ...     transit_feed_path=Path("data/gtfs_feed.zip"),
        ...     cache_dir=Path("data/graph-cache"),
        ...     version_path=Path("data/version.json"),
        ...     handle=handle,
        ...     store=FingerprintStore(),
        ...     engine_factory=NetworkXRoutingEngine,
        ... )
        >>> job.run()
        >>> job.state
        <ImportJobState.SUCCEEDED: 'succeeded'>
    """

    def __init__(
        self,
        name: str,
        road_extract_path: Optional[Union[str, Path]],
        transit_feed_path: Optional[Union[str, Path]],
        cache_dir: Union[str, Path],
        version_path: Union[str, Path],
        handle: ArtifactHandle,
        store: FingerprintStore,
        engine_factory: EngineFactory,
        engine_options: Optional[EngineOptions] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        self._name = name
        self._road_extract_path = Path(road_extract_path) if road_extract_path else None
        self._transit_feed_path = Path(transit_feed_path) if transit_feed_path else None
        self._cache_dir = Path(cache_dir)
        self._version_path = Path(version_path)
        self._handle = handle
        self._store = store
        self._engine_factory = engine_factory
        self._engine_options = engine_options or EngineOptions()
        self._progress_callback = progress_callback

        self._lock = threading.Lock()
        self._state = ImportJobState.PENDING
        self._progress = 0
        self._error: Optional[BaseException] = None
        self._cancel_event = threading.Event()
        self._done = threading.Event()
        self._done_callbacks: List[DoneCallback] = []

        self._cleanup_lock = threading.Lock()
        self._cleaned = False

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> ImportJobState:
        with self._lock:
            return self._state

    @property
    def progress_percent(self) -> int:
        with self._lock:
            return self._progress

    @property
    def error(self) -> Optional[BaseException]:
        with self._lock:
            return self._error

    @property
    def failure_message(self) -> Optional[str]:
        with self._lock:
            return str(self._error) if self._error is not None else None

    @property
    def is_active(self) -> bool:
        return self.state.is_active

    @property
    def is_done(self) -> bool:
        return self._done.is_set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def snapshot(self) -> ImportJobInfo:
        """Point-in-time record of this job."""
        with self._lock:
            return ImportJobInfo(
                name=self._name,
                state=self._state,
                progress_percent=self._progress,
                failure_message=str(self._error) if self._error is not None else None,
                cancelled=isinstance(self._error, ImportCancelledError),
            )

    # -------------------------------------------------------------------------
    # Completion
    # -------------------------------------------------------------------------

    def add_done_callback(self, callback: DoneCallback) -> None:
        """
        Call callback(job) once the job has settled.

        Called immediately if the job already has.
        """
        with self._lock:
            if not self._done.is_set():
                self._done_callbacks.append(callback)
                return
        self._invoke_callback(callback)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the job has settled.

        Returns:
            True if the job settled before the timeout.
        """
        return self._done.wait(timeout)

    def result(self, timeout: Optional[float] = None) -> None:
        """
        Wait for the job and re-raise its failure, if any.

        Raises:
            TimeoutError: If the job did not settle in time.
            GraphCacheError: The structured failure of the job.
        """
        if not self._done.wait(timeout):
            raise TimeoutError(f"Import job '{self._name}' still running")
        error = self.error
        if error is not None:
            raise error

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------

    def cancel(self, wait: bool = False, timeout: Optional[float] = None) -> bool:
        """
        Ask the job to stop.

        A pending job settles immediately as cancelled, with no side
        effects. A running job stops at its next checkpoint and cleans
        up before settling.

        Args:
            wait: Block until the job has settled, cleanup included.
            timeout: Max seconds to wait when wait is True.

        Returns:
            True if the job has settled when this call returns.
        """
        settle_now = False
        with self._lock:
            self._cancel_event.set()
            if self._state is ImportJobState.PENDING:
                self._state = ImportJobState.FAILED
                self._error = ImportCancelledError()
                settle_now = True

        if settle_now:
            logger.info("Import job '%s' cancelled before start", self._name)
            self._settle()
        if wait:
            return self._done.wait(timeout)
        return self._done.is_set()

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def run(self) -> None:
        """
        Execute the import.

        Raises:
            MissingInputFilesError: If an input path parameter is missing.
            ImportCancelledError: If the job was told to stop.
            OutOfMemoryFailure: If the build ran out of memory.
            MetadataWriteError: If the fingerprint could not be persisted.
            BuildFailureError: On any other failure during the build.
        """
        with self._lock:
            if self._state is not ImportJobState.PENDING:
                return
            self._state = ImportJobState.RUNNING
        logger.info("Import job '%s' started", self._name)

        missing: List[str] = []
        for label, path in (
            ("road_extract_path", self._road_extract_path),
            ("transit_feed_path", self._transit_feed_path),
        ):
            if path is None:
                missing.append(label)
            elif not path.is_file():
                missing.append(path.name)
        if missing:
            error = MissingInputFilesError(missing)
            logger.error("Import job '%s' rejected: %s", self._name, error)
            self._fail(error)
            raise error

        self._report(PROGRESS_VALIDATED)

        engine: Optional[RoutingEngine] = None
        installed = False
        try:
            self._check_cancelled()
            self._handle.reset()
            self._remove_cache_state(strict=True)

            version = self._store.compute(self._road_extract_path, self._transit_feed_path)
            engine = self._engine_factory(
                EngineConfig(
                    cache_dir=self._cache_dir,
                    road_extract_path=self._road_extract_path,
                    transit_feed_path=self._transit_feed_path,
                    options=self._engine_options,
                )
            )
            logger.info("Building graph with %s into %s", engine.name, self._cache_dir)
            engine.build(self._cancel_event)
            self._report(PROGRESS_BUILT)

            self._check_cancelled()
            self._store.write(self._version_path, version)
            self._report(PROGRESS_PERSISTED)

            self._check_cancelled()
            self._handle.install(engine)
            installed = True
            self._report(PROGRESS_INSTALLED)
        except Exception as e:
            error = self._to_structured(e)
            if engine is not None and not installed:
                try:
                    engine.close()
                except Exception:
                    logger.exception("Error while closing engine of failed import")
            self.cleanup()
            self._fail(error)
            if error is e:
                raise
            raise error from e

        with self._lock:
            self._state = ImportJobState.SUCCEEDED
        logger.info("Import job '%s' succeeded", self._name)
        self._settle()

    def cleanup(self) -> bool:
        """
        Delete the cache directory and the fingerprint file, once.

        Never consults the cancel flag. Concurrent callers block until the
        first one has finished; only that one deletes anything.

        Returns:
            True if this call performed the cleanup.
        """
        with self._cleanup_lock:
            if self._cleaned:
                return False
            self._cleaned = True
            logger.info("Cleaning up partial graph cache %s", self._cache_dir)
            self._remove_cache_state(strict=False)
            return True

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _remove_cache_state(self, strict: bool) -> None:
        """Delete cache directory and fingerprint; log instead of raise unless strict."""
        try:
            if self._cache_dir.exists():
                shutil.rmtree(self._cache_dir)
        except OSError as e:
            if strict:
                raise
            logger.warning("Failed to delete cache directory %s: %s", self._cache_dir, e)

        try:
            self._store.delete(self._version_path)
        except OSError as e:
            if strict:
                raise
            logger.warning("Failed to delete cache version %s: %s", self._version_path, e)

    def _to_structured(self, error: Exception) -> GraphCacheError:
        if isinstance(error, MemoryError):
            logger.exception("Import job '%s' ran out of memory", self._name)
            return OutOfMemoryFailure(error)
        if isinstance(error, GraphCacheError):
            if not isinstance(error, ImportCancelledError):
                logger.error("Import job '%s' failed: %s", self._name, error)
            return error
        if self._cancel_event.is_set():
            logger.info("Import job '%s' stopped after cancellation: %s", self._name, error)
            return ImportCancelledError()
        logger.exception("Import job '%s' failed during build", self._name)
        return BuildFailureError(error)

    def _check_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise ImportCancelledError()

    def _report(self, percent: int) -> None:
        if self._cancel_event.is_set():
            return
        with self._lock:
            self._progress = percent
        logger.info("Import job '%s' progress %d%%", self._name, percent)
        if self._progress_callback is not None:
            try:
                self._progress_callback(percent)
            except Exception:
                logger.exception("Progress callback failed")

    def _fail(self, error: BaseException) -> None:
        with self._lock:
            self._state = ImportJobState.FAILED
            self._error = error
        self._settle()

    def _settle(self) -> None:
        with self._lock:
            self._done.set()
            callbacks = list(self._done_callbacks)
            self._done_callbacks.clear()
        for callback in callbacks:
            self._invoke_callback(callback)

    def _invoke_callback(self, callback: DoneCallback) -> None:
        try:
            callback(self)
        except Exception:
            logger.exception("Done callback of import job '%s' failed", self._name)
