"""
Cache version schemas.

A CacheVersion records which inputs a cached artifact was built from.
It is a metadata-only proxy (modification time + size per input file):
a file rewritten with identical size and timestamp counts as unchanged.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

# Stable keys of the persisted record
KEY_OSM_TIMESTAMP = "osmTimestamp"
KEY_OSM_SIZE = "osmSize"
KEY_GTFS_TIMESTAMP = "gtfsTimestamp"
KEY_GTFS_SIZE = "gtfsSize"

VERSION_KEYS = (KEY_OSM_TIMESTAMP, KEY_OSM_SIZE, KEY_GTFS_TIMESTAMP, KEY_GTFS_SIZE)


@dataclass(frozen=True)
class InputFingerprint:
    """
    Fingerprint of a single input file.

    Attributes:
        last_modified_millis: Modification time in milliseconds since epoch.
        size_bytes: File size in bytes.
    """

    last_modified_millis: int
    size_bytes: int

    def __post_init__(self) -> None:
        """Validate non-negative fields."""
        if self.last_modified_millis < 0:
            raise ValueError(
                f"last_modified_millis must be >= 0, got {self.last_modified_millis}"
            )
        if self.size_bytes < 0:
            raise ValueError(f"size_bytes must be >= 0, got {self.size_bytes}")


@dataclass(frozen=True)
class CacheVersion:
    """
    Pair of fingerprints describing the inputs of a cached artifact.

    Equality is field-wise: any difference in either fingerprint means
    the cache is stale.

    Attributes:
        osm: Fingerprint of the road-network extract.
        gtfs: Fingerprint of the transit feed.
    """

    osm: InputFingerprint
    gtfs: InputFingerprint

    def to_dict(self) -> Dict[str, int]:
        """Serialize to the flat record persisted beside the cache."""
        return {
            KEY_OSM_TIMESTAMP: self.osm.last_modified_millis,
            KEY_OSM_SIZE: self.osm.size_bytes,
            KEY_GTFS_TIMESTAMP: self.gtfs.last_modified_millis,
            KEY_GTFS_SIZE: self.gtfs.size_bytes,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["CacheVersion"]:
        """
        Parse a persisted record, failing soft.

        Returns None when the record is not a mapping, a key is missing,
        a value is not an integer (booleans included) or is negative.
        """
        if not isinstance(data, dict):
            return None

        values = []
        for key in VERSION_KEYS:
            value = data.get(key)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                return None
            values.append(value)

        osm_ts, osm_size, gtfs_ts, gtfs_size = values
        return cls(
            osm=InputFingerprint(last_modified_millis=osm_ts, size_bytes=osm_size),
            gtfs=InputFingerprint(last_modified_millis=gtfs_ts, size_bytes=gtfs_size),
        )
