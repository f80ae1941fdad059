"""
Tracker scanner configuration, loaded from the settings store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from utils.database import get_setting

from .constants import (
    DEFAULT_EVENT_QUEUE_SIZE,
    DEFAULT_MAX_ENTRIES,
    DEFAULT_REFERENCE_POWER_DBM,
)

logger = logging.getLogger('tagwatch.trackers.config')

SETTING_REFERENCE_POWER = 'trackers_reference_power_dbm'
SETTING_MAX_ENTRIES = 'trackers_max_entries'
SETTING_EVENT_QUEUE_SIZE = 'trackers_event_queue_size'

# Accepted (min, max) per setting, inclusive
TRACKER_SETTING_RANGES = {
    SETTING_REFERENCE_POWER: (-100, 20),
    SETTING_MAX_ENTRIES: (0, 100_000),
    SETTING_EVENT_QUEUE_SIZE: (1, 100_000),
}

TRACKER_SETTING_KEYS = tuple(TRACKER_SETTING_RANGES)


def validate_tracker_setting(key: str, value: object) -> bool:
    """Check a tracker setting value: a plain int (not bool) within range."""
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    low, high = TRACKER_SETTING_RANGES[key]
    return low <= value <= high


@dataclass(frozen=True)
class TrackerConfig:
    """Tunables for the tracker scanner."""
    reference_power_dbm: int = DEFAULT_REFERENCE_POWER_DBM
    max_entries: int = DEFAULT_MAX_ENTRIES
    event_queue_size: int = DEFAULT_EVENT_QUEUE_SIZE

    def to_dict(self) -> dict:
        return {
            SETTING_REFERENCE_POWER: self.reference_power_dbm,
            SETTING_MAX_ENTRIES: self.max_entries,
            SETTING_EVENT_QUEUE_SIZE: self.event_queue_size,
        }


def _int_setting(key: str, default: int) -> int:
    value = get_setting(key, default)
    if not validate_tracker_setting(key, value):
        logger.warning(f"Invalid value for {key}: {value!r}, using {default}")
        return default
    return value


def load_tracker_config() -> TrackerConfig:
    """Load the tracker configuration from settings, with defaults."""
    return TrackerConfig(
        reference_power_dbm=_int_setting(SETTING_REFERENCE_POWER, DEFAULT_REFERENCE_POWER_DBM),
        max_entries=_int_setting(SETTING_MAX_ENTRIES, DEFAULT_MAX_ENTRIES),
        event_queue_size=_int_setting(SETTING_EVENT_QUEUE_SIZE, DEFAULT_EVENT_QUEUE_SIZE),
    )
