"""
Data models for tracker identity resolution.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .constants import BLUETOOTH_BASE_UUID_SUFFIX
from .distance import classify_proximity_band


class TrackerFamily(str, Enum):
    """Tracker protocol families."""
    FINDMY = 'findmy'
    TILE = 'tile'
    SAMSUNG = 'samsung'
    UNKNOWN = 'unknown'

    def __str__(self) -> str:
        return self.value


class TrackerKind(str, Enum):
    """Outward-facing tracker labels."""
    AIRTAG = 'AIRTAG'
    TILE = 'TILE'
    SAMSUNG = 'SAMSUNG'
    APPLE_DEVICE = 'APPLE_DEVICE'
    UNKNOWN = 'UNKNOWN'

    def __str__(self) -> str:
        return self.value

    @classmethod
    def for_family(cls, family: TrackerFamily) -> 'TrackerKind':
        return _FAMILY_KINDS.get(family, cls.UNKNOWN)


_FAMILY_KINDS = {
    TrackerFamily.FINDMY: TrackerKind.AIRTAG,
    TrackerFamily.TILE: TrackerKind.TILE,
    TrackerFamily.SAMSUNG: TrackerKind.SAMSUNG,
}


def normalize_uuid(uuid: str) -> str:
    """
    Normalize a service UUID to lowercase, shortening Bluetooth Base UUIDs.

    '0000FD44-0000-1000-8000-00805F9B34FB' -> 'fd44'
    """
    uuid_lower = str(uuid).lower()
    if len(uuid_lower) == 36 and uuid_lower.endswith(BLUETOOTH_BASE_UUID_SUFFIX):
        if uuid_lower.startswith('0000'):
            return uuid_lower[4:8]
        return uuid_lower[:8]
    return uuid_lower


@dataclass(frozen=True)
class RawAdvertisement:
    """
    A single BLE advertisement as delivered by the radio collaborator.

    Service data keys and service UUIDs may be given in 16-bit or full
    128-bit form; lookups go through normalize_uuid().
    """

    rssi: int
    observed_at_ms: int
    address: Optional[str] = None
    service_data: dict[str, bytes] = field(default_factory=dict)
    manufacturer_data: dict[int, bytes] = field(default_factory=dict)
    service_uuids: frozenset[str] = field(default_factory=frozenset)
    raw_bytes: bytes = b''

    def service_data_for(self, uuid: str) -> Optional[bytes]:
        """Get service data for a 16-bit UUID, whatever form the key has."""
        wanted = normalize_uuid(uuid)
        for key, value in self.service_data.items():
            if normalize_uuid(key) == wanted:
                return value
        return None

    @property
    def normalized_service_uuids(self) -> set[str]:
        return {normalize_uuid(u) for u in self.service_uuids}

    @property
    def has_address(self) -> bool:
        return bool(self.address and self.address.strip())


@dataclass
class TrackerState:
    """Per-signature state held by the tracker state store."""

    signature: str
    family: TrackerFamily
    last_seen_ms: int
    last_rssi: int
    last_mac: Optional[str] = None
    rotating_mac_count: int = 0
    last_raw_frame: str = ''

    def copy(self) -> 'TrackerState':
        return TrackerState(
            signature=self.signature,
            family=self.family,
            last_seen_ms=self.last_seen_ms,
            last_rssi=self.last_rssi,
            last_mac=self.last_mac,
            rotating_mac_count=self.rotating_mac_count,
            last_raw_frame=self.last_raw_frame,
        )


@dataclass(frozen=True)
class DetectedTracker:
    """Resolved tracker record, one per accepted observation."""

    id: str
    logical_id: str
    kind: TrackerKind
    family: TrackerFamily
    address: Optional[str]
    rssi: int
    distance_meters: float
    last_seen_ms: int
    signature: str
    raw_frame: str
    rotating_mac_count: int

    def to_dict(self) -> dict:
        """Convert to the payload consumed by the presentation layer."""
        return {
            'id': self.id,
            'logicalId': self.logical_id,
            'address': self.address,
            'mac': self.address or '',
            'kind': self.kind.value,
            'family': self.family.value,
            'rssi': self.rssi,
            'distanceMeters': round(self.distance_meters, 2),
            'proximityBand': str(classify_proximity_band(self.distance_meters)),
            'lastSeenMs': self.last_seen_ms,
            'signature': self.signature,
            'rawFrame': self.raw_frame,
            'rotatingMacCount': self.rotating_mac_count,
        }


@dataclass
class ScanStatus:
    """Current state of the tracker scanner."""

    is_scanning: bool = False
    backend: Optional[str] = None
    started_at_ms: Optional[int] = None
    tracker_count: int = 0
    findmy_entries: int = 0
    tile_samsung_entries: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'is_scanning': self.is_scanning,
            'backend': self.backend,
            'started_at_ms': self.started_at_ms,
            'tracker_count': self.tracker_count,
            'findmy_entries': self.findmy_entries,
            'tile_samsung_entries': self.tile_samsung_entries,
            'error': self.error,
        }
