"""
Fingerprint Store - persisted CacheVersion beside the graph cache.

Staleness detection is metadata-based (modification time + size), never
content-based: computing a fingerprint is O(1) I/O per file regardless
of how large the inputs are.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from src.transit_graph.exceptions import MetadataWriteError
from src.transit_graph.schemas.cache_version import CacheVersion, InputFingerprint

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def fingerprint_file(path: PathLike) -> InputFingerprint:
    """
    Fingerprint a single file from its stat metadata.

    Args:
        path: File to fingerprint.

    Returns:
        InputFingerprint with mtime in milliseconds and size in bytes.

    Raises:
        OSError: If the file cannot be stat'ed.
    """
    stat = os.stat(path)
    return InputFingerprint(
        last_modified_millis=stat.st_mtime_ns // 1_000_000,
        size_bytes=stat.st_size,
    )


class FingerprintStore:
    """
    Reads, writes and computes CacheVersion records.

    The store is stateless; all methods take explicit paths so that one
    instance can serve any cache root.
    """

    def compute(self, road_extract: PathLike, transit_feed: PathLike) -> CacheVersion:
        """
        Compute the current CacheVersion of the two input files.

        Args:
            road_extract: Road-network extract path.
            transit_feed: Transit feed path.

        Returns:
            CacheVersion of the files as they are now.
        """
        return CacheVersion(
            osm=fingerprint_file(road_extract),
            gtfs=fingerprint_file(transit_feed),
        )

    def read(self, version_path: PathLike) -> Optional[CacheVersion]:
        """
        Read a persisted CacheVersion, failing soft.

        Returns None (never raises) on a missing file, unparsable
        content, or any missing/negative field.

        Args:
            version_path: Fingerprint file path.

        Returns:
            The persisted CacheVersion, or None if there is no valid one.
        """
        path = Path(version_path)
        if not path.is_file():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValueError) as e:
            logger.warning("Ignoring unreadable cache version %s: %s", path, e)
            return None

        version = CacheVersion.from_dict(data)
        if version is None:
            logger.warning("Ignoring malformed cache version %s", path)
        return version

    def write(self, version_path: PathLike, version: CacheVersion) -> None:
        """
        Persist a CacheVersion.

        Writes to a sibling temp file and renames it over the target,
        which is atomic enough for the single writer this cache has.

        Args:
            version_path: Fingerprint file path.
            version: Version to persist.

        Raises:
            MetadataWriteError: On any I/O error.
        """
        path = Path(version_path)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            tmp_path.write_text(json.dumps(version.to_dict()), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                logger.warning("Could not remove temp version file %s", tmp_path)
            raise MetadataWriteError(str(path), e) from e
        logger.debug("Cache version written to %s", path)

    def delete(self, version_path: PathLike) -> bool:
        """
        Delete the fingerprint file if present.

        Returns:
            True if a file was removed.
        """
        path = Path(version_path)
        if not path.exists():
            return False
        path.unlink()
        return True
