"""
Tracker identity resolution package for TagWatch.

Resolves MAC-rotating BLE tracker advertisements (Apple Find My, Tile,
Samsung SmartTag) into stable logical identities with liveness, rotation
counts and distance estimates.
"""

from .classifier import classify_findmy, classify_tile_samsung, is_findmy_manufacturer_frame
from .config import TrackerConfig, load_tracker_config
from .distance import ProximityBand, classify_proximity_band, estimate_distance
from .emitter import CallbackSink, QueueSink, TrackerEmitter, TrackerSink
from .fingerprint import fingerprint, logical_id
from .models import (
    DetectedTracker,
    RawAdvertisement,
    ScanStatus,
    TrackerFamily,
    TrackerKind,
    TrackerState,
    normalize_uuid,
)
from .pipeline import TrackerPipeline
from .policy import FINDMY_POLICY, TILE_SAMSUNG_POLICY, TrackerPolicy
from .scanner import (
    BleakBackend,
    TrackerScanner,
    advertisement_from_bleak,
    get_tracker_scanner,
    reset_tracker_scanner,
)
from .stable_bytes import select_stable_bytes
from .state_store import TrackerStateStore

__all__ = [
    # Scanner
    'TrackerScanner',
    'BleakBackend',
    'advertisement_from_bleak',
    'get_tracker_scanner',
    'reset_tracker_scanner',

    # Pipeline
    'TrackerPipeline',
    'TrackerPolicy',
    'FINDMY_POLICY',
    'TILE_SAMSUNG_POLICY',

    # Stages
    'classify_findmy',
    'classify_tile_samsung',
    'is_findmy_manufacturer_frame',
    'select_stable_bytes',
    'fingerprint',
    'logical_id',
    'TrackerStateStore',
    'estimate_distance',
    'classify_proximity_band',
    'ProximityBand',

    # Emission
    'TrackerSink',
    'CallbackSink',
    'QueueSink',
    'TrackerEmitter',

    # Models
    'RawAdvertisement',
    'TrackerFamily',
    'TrackerKind',
    'TrackerState',
    'DetectedTracker',
    'ScanStatus',
    'normalize_uuid',

    # Config
    'TrackerConfig',
    'load_tracker_config',
]
