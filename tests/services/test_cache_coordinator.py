"""
Tests for the Cache Coordinator.

Tests cover the lifecycle scenarios end to end with the fake engine:
- Cold start, missing inputs, valid cache, changed inputs
- Idempotent start()
- Disk-space and readability gates firing before any mutation
- Readiness timeout and mid-build failure
- force_rebuild(), force_refresh_check() and the side-effect-free queries
"""

import dataclasses
import os
import threading
import time
from collections import namedtuple
from pathlib import Path
from typing import List

import pytest

from src.transit_graph.adapters.repositories.artifact_handle import ArtifactHandle
from src.transit_graph.adapters.repositories.fingerprint_store import FingerprintStore
from src.transit_graph.exceptions import (
    InsufficientDiskSpaceError,
    MissingInputFilesError,
    UnreadableInputFilesError,
)
from src.transit_graph.schemas.cache_state import CacheState, CacheStateKind
from src.transit_graph.schemas.cache_version import InputFingerprint
from src.transit_graph.schemas.import_job import ImportJobState
from src.transit_graph.services.cache_coordinator import CacheCoordinator
from src.transit_graph.services.job_registry import SingletonJobRegistry

GIB = 1024 ** 3
DiskUsage = namedtuple("DiskUsage", "total used free")

IMPORT_PATH = [CacheStateKind.NEEDS_IMPORT, CacheStateKind.IMPORTING, CacheStateKind.READY]


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def registry() -> SingletonJobRegistry:
    registry = SingletonJobRegistry()
    yield registry
    registry.shutdown(wait=True)


@pytest.fixture
def make_coordinator(engine_factory):
    """Build a coordinator with a fresh handle (a process restart, in effect)."""
    registries: List[SingletonJobRegistry] = []

    def _make(settings, registry=None, store=None) -> CacheCoordinator:
        if registry is None:
            registry = SingletonJobRegistry()
            registries.append(registry)
        handle = ArtifactHandle(engine_factory=engine_factory, cache_dir_name=settings.cache_dir_name)
        return CacheCoordinator(
            settings=settings,
            handle=handle,
            store=store or FingerprintStore(),
            registry=registry,
            engine_factory=engine_factory,
        )

    yield _make
    for registry in registries:
        registry.shutdown(wait=True)


@pytest.fixture
def coordinator(make_coordinator, settings, registry) -> CacheCoordinator:
    return make_coordinator(settings, registry=registry)


def kinds(states: List[CacheState]) -> List[CacheStateKind]:
    return [state.kind for state in states]


def tree(root: Path) -> List[str]:
    return sorted(str(p.relative_to(root)) for p in root.rglob("*"))


def start_and_settle(coordinator: CacheCoordinator) -> List[CacheState]:
    """Run start() and wait for the import job (if any) to finish."""
    states = list(coordinator.start())
    job = coordinator.current_job()
    if job is not None:
        assert job.wait(2.0)
    return states


# =============================================================================
# START: SCENARIOS
# =============================================================================


class TestStartScenarios:
    def test_cold_start_imports_and_becomes_ready(self, coordinator, settings, write_inputs, engine_factory):
        write_inputs()

        states = list(coordinator.start())

        assert kinds(states) == IMPORT_PATH
        assert settings.cache_dir.is_dir()
        assert settings.version_path.is_file()
        assert coordinator.current_state == CacheState.ready()
        assert engine_factory.build_calls == 1

    def test_missing_transit_feed_only(self, coordinator, settings, graph_root, engine_factory):
        settings.road_extract_path.write_text("road v1")
        before = tree(graph_root)

        states = list(coordinator.start())

        assert states == [CacheState.missing(["transit.feed"])]
        assert tree(graph_root) == before
        assert engine_factory.engines == []

    def test_both_inputs_missing(self, coordinator):
        states = list(coordinator.start())
        assert states == [CacheState.missing(["road.extract", "transit.feed"])]

    def test_valid_cache_is_ready_without_import(self, make_coordinator, settings, write_inputs, engine_factory):
        write_inputs()
        assert kinds(start_and_settle(make_coordinator(settings))) == IMPORT_PATH

        registry = SingletonJobRegistry()
        try:
            restarted = make_coordinator(settings, registry=registry)
            states = list(restarted.start())

            assert states == [CacheState.ready()]
            assert registry.get(settings.import_job_name) is None
            assert engine_factory.build_calls == 1
            assert engine_factory.load_calls == 1
        finally:
            registry.shutdown()

    def test_start_is_idempotent(self, coordinator, write_inputs, engine_factory):
        write_inputs()

        first = start_and_settle(coordinator)
        second = list(coordinator.start())

        assert kinds(first) == IMPORT_PATH
        assert second == [CacheState.ready()]
        assert engine_factory.build_calls == 1

    def test_changed_input_triggers_rebuild(self, coordinator, settings, write_inputs, engine_factory):
        write_inputs()
        start_and_settle(coordinator)

        write_inputs(transit="transit v2 with a different size")
        states = list(coordinator.start())

        assert kinds(states) == IMPORT_PATH
        assert engine_factory.build_calls == 2
        store = FingerprintStore()
        assert store.read(settings.version_path) == store.compute(
            settings.road_extract_path, settings.transit_feed_path
        )

    def test_missing_fingerprint_forces_rebuild(self, coordinator, settings, write_inputs, engine_factory):
        write_inputs()
        start_and_settle(coordinator)
        settings.version_path.unlink()

        states = list(coordinator.start())

        assert kinds(states) == IMPORT_PATH
        assert engine_factory.build_calls == 2

    def test_corrupt_cache_is_wiped(self, make_coordinator, settings, write_inputs, engine_factory):
        write_inputs()
        start_and_settle(make_coordinator(settings))
        engine_factory.corrupt_cache = True

        states = list(make_coordinator(settings).start())

        assert states == [CacheState.error("graph load failed: corrupt graph cache")]
        assert not settings.cache_dir.exists()
        assert not settings.version_path.exists()


# =============================================================================
# START: PRECONDITIONS
# =============================================================================


class TestStartPreconditions:
    def test_disk_gate_fires_before_any_mutation(self, make_coordinator, settings, write_inputs, graph_root, monkeypatch):
        write_inputs()
        settings = dataclasses.replace(settings, min_free_disk_bytes=3 * GIB)
        settings.cache_dir.mkdir()
        (settings.cache_dir / "stale.bin").write_text("old")
        before = tree(graph_root)
        monkeypatch.setattr(
            "src.transit_graph.services.cache_coordinator.shutil.disk_usage",
            lambda path: DiskUsage(total=10 * GIB, used=9 * GIB, free=GIB),
        )
        coordinator = make_coordinator(settings)

        states = list(coordinator.start())

        assert states == [
            CacheState.error("insufficient disk space: 1.00 GB available, 3.00 GB required")
        ]
        assert tree(graph_root) == before

        with pytest.raises(InsufficientDiskSpaceError):
            coordinator.force_rebuild()
        assert tree(graph_root) == before

    def test_unreadable_inputs(self, coordinator, write_inputs, engine_factory, monkeypatch):
        write_inputs()
        monkeypatch.setattr(
            "src.transit_graph.services.cache_coordinator.os.access",
            lambda path, mode: False,
        )

        states = list(coordinator.start())

        assert states == [CacheState.error("files unreadable")]
        assert engine_factory.engines == []

    def test_unexpected_exception_becomes_error(self, make_coordinator, settings, write_inputs, monkeypatch):
        write_inputs()
        store = FingerprintStore()

        def boom(*args):
            raise RuntimeError()

        monkeypatch.setattr(store, "compute", boom)
        states = list(make_coordinator(settings, store=store).start())

        assert states == [CacheState.error("graph import failed")]


# =============================================================================
# START: IMPORT OUTCOMES
# =============================================================================


class TestStartImportOutcomes:
    def test_mid_build_failure(self, coordinator, settings, write_inputs, engine_factory):
        write_inputs()
        engine_factory.behavior = "fail"

        started = time.monotonic()
        states = list(coordinator.start())
        elapsed = time.monotonic() - started

        assert kinds(states) == [
            CacheStateKind.NEEDS_IMPORT,
            CacheStateKind.IMPORTING,
            CacheStateKind.ERROR,
        ]
        assert states[-1].message == "graph build failed: simulated engine failure"
        assert elapsed < settings.ready_timeout_seconds
        assert not settings.cache_dir.exists()
        assert not settings.version_path.exists()
        assert coordinator.current_job() is not None
        assert coordinator.current_job().state is ImportJobState.FAILED

    def test_out_of_memory(self, coordinator, settings, write_inputs, engine_factory):
        write_inputs()
        engine_factory.behavior = "oom"

        states = list(coordinator.start())

        assert states[-1].kind is CacheStateKind.ERROR
        assert states[-1].message.startswith("out of memory during graph build")
        assert not settings.cache_dir.exists()

    def test_timeout_cancels_job_and_cleans_up(self, make_coordinator, settings, write_inputs, engine_factory, registry):
        write_inputs()
        engine_factory.behavior = "block"
        coordinator = make_coordinator(
            dataclasses.replace(settings, ready_timeout_seconds=0.2), registry=registry
        )

        states = list(coordinator.start())

        assert states[-1] == CacheState.error("timeout")
        job = coordinator.current_job()
        assert job.wait(2.0)
        assert job.snapshot().cancelled is True
        assert not settings.cache_dir.exists()
        assert not settings.version_path.exists()


class TestOverlappingSessions:
    def test_each_session_ends_in_terminal_state(self, coordinator, write_inputs, engine_factory):
        """A session whose import is replaced by a newer session still ends in Error."""
        write_inputs()
        engine_factory.behavior = "block"
        first: List[CacheState] = []
        thread = threading.Thread(target=lambda: first.extend(coordinator.start()))
        thread.start()
        assert engine_factory.build_started.wait(2.0)

        engine_factory.behavior = "succeed"
        second = list(coordinator.start())
        thread.join(timeout=5.0)

        assert not thread.is_alive()
        assert kinds(second) == IMPORT_PATH
        assert kinds(first) == [
            CacheStateKind.NEEDS_IMPORT,
            CacheStateKind.IMPORTING,
            CacheStateKind.ERROR,
        ]
        assert first[-1].message == "cancelled"
        assert coordinator.current_job().wait(2.0)
        assert coordinator.current_job().state is ImportJobState.SUCCEEDED

    def test_later_session_does_not_disturb_finished_one(self, coordinator, write_inputs):
        write_inputs()
        first = coordinator.start()
        assert next(first).kind is CacheStateKind.NEEDS_IMPORT

        assert kinds(list(coordinator.start()))[-1] is CacheStateKind.READY
        assert kinds(list(first))[-1] in (CacheStateKind.READY, CacheStateKind.ERROR)


# =============================================================================
# COMMANDS AND QUERIES
# =============================================================================


class TestForceRebuild:
    def test_force_rebuild_rebuilds_valid_cache(self, coordinator, write_inputs, engine_factory):
        write_inputs()
        start_and_settle(coordinator)

        job = coordinator.force_rebuild()
        job.result(timeout=2.0)

        assert job.state is ImportJobState.SUCCEEDED
        assert engine_factory.build_calls == 2

    def test_force_rebuild_raises_on_missing_inputs(self, coordinator):
        with pytest.raises(MissingInputFilesError):
            coordinator.force_rebuild()

    def test_force_rebuild_raises_on_unreadable_inputs(self, coordinator, write_inputs, monkeypatch):
        write_inputs()
        monkeypatch.setattr(
            "src.transit_graph.services.cache_coordinator.os.access",
            lambda path, mode: False,
        )
        with pytest.raises(UnreadableInputFilesError):
            coordinator.force_rebuild()


class TestForceRefreshCheck:
    def test_noop_without_saved_version(self, coordinator, write_inputs):
        write_inputs()
        assert coordinator.force_refresh_check() is False

    def test_noop_when_unchanged(self, coordinator, write_inputs, engine_factory):
        write_inputs()
        start_and_settle(coordinator)

        assert coordinator.force_refresh_check() is False
        assert engine_factory.build_calls == 1

    def test_submits_when_changed(self, coordinator, write_inputs, engine_factory):
        write_inputs()
        start_and_settle(coordinator)
        write_inputs(road="road v2, longer than before")

        assert coordinator.force_refresh_check() is True
        coordinator.current_job().result(timeout=2.0)
        assert engine_factory.build_calls == 2

    def test_does_not_disturb_running_import(self, coordinator, settings, write_inputs, engine_factory):
        write_inputs()
        start_and_settle(coordinator)
        write_inputs(road="road v2, longer than before")
        engine_factory.behavior = "block"
        running = coordinator.force_rebuild()
        assert engine_factory.build_started.wait(2.0)

        # Inputs changed again, but a build is in flight
        settings.version_path.write_text(
            '{"osmTimestamp": 1, "osmSize": 1, "gtfsTimestamp": 1, "gtfsSize": 1}'
        )
        assert coordinator.force_refresh_check() is False
        assert coordinator.current_job() is running
        assert not running.cancel_requested

        engine_factory.release.set()
        running.result(timeout=2.0)

    def test_noop_when_inputs_missing(self, coordinator):
        assert coordinator.force_refresh_check() is False


class TestQueries:
    def test_get_missing_files(self, coordinator, settings):
        settings.transit_feed_path.write_text("transit v1")
        assert coordinator.get_missing_files() == ["road.extract"]

    def test_get_input_last_modified(self, coordinator, settings):
        settings.road_extract_path.write_text("road v1")
        os.utime(settings.road_extract_path, ns=(1_700_000_000_000_000_000,) * 2)

        assert coordinator.get_input_last_modified() == {
            "road.extract": 1_700_000_000_000,
            "transit.feed": None,
        }

    def test_get_input_last_modified_before_epoch(self, coordinator, settings, monkeypatch):
        settings.road_extract_path.write_text("road v1")
        settings.transit_feed_path.write_text("transit v1")

        def pre_epoch(path):
            return InputFingerprint(last_modified_millis=-86_400_000, size_bytes=7)

        monkeypatch.setattr(
            "src.transit_graph.services.cache_coordinator.fingerprint_file", pre_epoch
        )

        assert coordinator.get_input_last_modified() == {
            "road.extract": None,
            "transit.feed": None,
        }

    def test_import_missing_files_copies_from_source(self, coordinator, settings, tmp_path):
        source = tmp_path / "downloads"
        source.mkdir()
        (source / "transit.feed").write_text("transit v1")
        settings.road_extract_path.write_text("road v1")

        assert coordinator.import_missing_files(source) is True
        assert coordinator.get_missing_files() == []
        assert settings.transit_feed_path.read_text() == "transit v1"

    def test_import_missing_files_nothing_to_copy(self, coordinator, tmp_path):
        source = tmp_path / "empty"
        source.mkdir()
        assert coordinator.import_missing_files(source) is False

    def test_import_missing_files_without_source(self, coordinator):
        assert coordinator.import_missing_files() is False
