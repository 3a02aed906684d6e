#!/usr/bin/env python3
"""
Validate, build or refresh the transit graph cache from the command line.

This script:
1. Optionally copies missing inputs from a source directory
2. Runs one cache lifecycle session and prints every state
3. Optionally forces a rebuild and waits for the import job

Usage:
    python scripts/build_graph_cache.py
    python scripts/build_graph_cache.py --root data --timeout 600
    python scripts/build_graph_cache.py --rebuild
    python scripts/build_graph_cache.py --import-from ~/Downloads
"""

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.transit_graph.application import TransitRouting
from src.transit_graph.config import GraphCacheSettings
from src.transit_graph.exceptions import GraphCacheError, InputValidationError
from src.transit_graph.schemas.cache_state import CacheStateKind

logger = logging.getLogger("build_graph_cache")


def build_settings(args: argparse.Namespace) -> GraphCacheSettings:
    """Environment settings with command-line overrides applied."""
    settings = GraphCacheSettings.from_env()
    overrides = {}
    if args.root:
        overrides["graph_root"] = Path(args.root)
    if args.timeout:
        overrides["ready_timeout_seconds"] = args.timeout
    if args.min_free_gb is not None:
        overrides["min_free_disk_bytes"] = int(args.min_free_gb * 1024 ** 3)
    return dataclasses.replace(settings, **overrides) if overrides else settings


def run_start(routing: TransitRouting) -> int:
    final = None
    for state in routing.start():
        print(json.dumps(state.to_dict()))
        final = state
    return 0 if final is not None and final.kind is CacheStateKind.READY else 1


def run_rebuild(routing: TransitRouting, timeout: float) -> int:
    try:
        job = routing.force_rebuild()
    except InputValidationError as e:
        logger.error("Cannot rebuild: %s", e)
        return 1

    try:
        job.result(timeout=timeout)
    except TimeoutError:
        logger.error("Rebuild still running after %.0f s, cancelling", timeout)
        job.cancel(wait=True)
        return 1
    except GraphCacheError as e:
        logger.error("Rebuild failed: %s", e)
        return 1

    print(json.dumps(job.snapshot().to_dict()))
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Build or refresh the transit graph cache")
    parser.add_argument("--root", help="Graph root directory (default: $TRANSIT_GRAPH_ROOT or data)")
    parser.add_argument("--timeout", type=float, help="Seconds to wait for the graph to be ready")
    parser.add_argument("--min-free-gb", type=float, help="Required free disk space in GB")
    parser.add_argument("--rebuild", action="store_true", help="Force a rebuild even if the cache is valid")
    parser.add_argument("--import-from", help="Copy missing input files from this directory first")
    args = parser.parse_args()

    settings = build_settings(args)
    routing = TransitRouting(settings)
    try:
        if args.import_from:
            routing.import_missing_files(args.import_from)
        if args.rebuild:
            return run_rebuild(routing, settings.ready_timeout_seconds)
        return run_start(routing)
    finally:
        routing.shutdown()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    sys.exit(main())
