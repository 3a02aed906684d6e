"""
Singleton Job Registry - one outstanding job per name.

Implements named background work with:
- Single-slot registry keyed by job name
- Atomic check-and-submit under one lock
- REPLACE policy: cancel the occupant, then install the new job
- KEEP policy: leave an active occupant alone and submit nothing
- One worker thread, so a replaced job's cleanup always finishes
  before its successor starts
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Callable, Dict, Optional, TypeVar

from src.transit_graph.ports.background_job import BackgroundJob

logger = logging.getLogger(__name__)

JobT = TypeVar("JobT", bound=BackgroundJob)


class JobPolicy(str, Enum):
    """What submit() does when an active job already holds the name."""

    REPLACE = "replace"
    KEEP = "keep"


class SingletonJobRegistry:
    """
    Registry guaranteeing at most one outstanding job per name.

    Jobs are created lazily through a factory so that under KEEP no job
    object is built at all when the slot is taken.

    Usage:
        >>> registry = SingletonJobRegistry()
        >>> job = registry.submit("graph_import", lambda: ImportJob(...))
        >>> registry.is_running("graph_import")
        True
        >>> registry.shutdown()
    """

    def __init__(self, thread_name_prefix: str = "graph-import") -> None:
        self._lock = threading.Lock()
        self._jobs: Dict[str, BackgroundJob] = {}
        self._futures: Dict[str, Future] = {}
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=thread_name_prefix,
        )
        self._shutdown = False

    def submit(
        self,
        name: str,
        job_factory: Callable[[], JobT],
        policy: JobPolicy = JobPolicy.REPLACE,
    ) -> Optional[JobT]:
        """
        Submit a job under a singleton name.

        Args:
            name: Singleton key.
            job_factory: Creates the job to run.
            policy: REPLACE cancels an active occupant; KEEP submits
                nothing while one is active.

        Returns:
            The submitted job, or None if KEEP left an active job in place.

        Raises:
            RuntimeError: If the registry has been shut down.
        """
        with self._lock:
            if self._shutdown:
                raise RuntimeError("Job registry is shut down")

            current = self._jobs.get(name)
            if current is not None and current.is_active:
                if policy is JobPolicy.KEEP:
                    logger.info("Job '%s' already running, not submitting", name)
                    return None
                logger.info("Replacing running job '%s'", name)
                current.cancel()

            job = job_factory()
            self._jobs[name] = job
            self._futures[name] = self._executor.submit(self._run, name, job)
            logger.info("Job '%s' submitted", name)
            return job

    def _run(self, name: str, job: BackgroundJob) -> None:
        try:
            job.run()
        except Exception as e:
            # The job records its own failure; the worker stays alive
            logger.debug("Job '%s' finished with %s: %s", name, type(e).__name__, e)

    def get(self, name: str) -> Optional[BackgroundJob]:
        """Most recent job submitted under name (active or settled)."""
        with self._lock:
            return self._jobs.get(name)

    def is_running(self, name: str) -> bool:
        """Check if the job under name is pending or running."""
        with self._lock:
            job = self._jobs.get(name)
            return job is not None and job.is_active

    def cancel(self, name: str, wait: bool = False, timeout: Optional[float] = None) -> bool:
        """
        Cancel the job under name.

        Args:
            name: Singleton key.
            wait: Block until the job has settled, cleanup included.
            timeout: Max seconds to wait when wait is True.

        Returns:
            True if there was an active job to cancel.
        """
        with self._lock:
            job = self._jobs.get(name)
            if job is None or not job.is_active:
                return False
        logger.info("Cancelling job '%s'", name)
        job.cancel(wait=wait, timeout=timeout)
        return True

    def shutdown(self, wait: bool = True, cancel_running: bool = True) -> None:
        """
        Stop accepting jobs and release the worker thread.

        Args:
            wait: Block until the worker has drained.
            cancel_running: Cancel active jobs first.
        """
        with self._lock:
            self._shutdown = True
            active = [job for job in self._jobs.values() if job.is_active]

        if cancel_running:
            for job in active:
                job.cancel()
        self._executor.shutdown(wait=wait)
        logger.info("Job registry shut down")
