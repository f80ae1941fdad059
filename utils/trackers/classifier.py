"""
Frame classification for tracker advertisements.

Decides whether an advertisement belongs to a known tracker family. A
rejection is returned as None: it is the expected outcome for most ambient
BLE traffic and is not logged.
"""

from __future__ import annotations

from typing import Optional

from .constants import (
    APPLE_COMPANY_ID,
    FINDMY_MFG_MARKERS,
    FINDMY_MFG_MAX_LEN,
    FINDMY_MFG_MIN_LEN,
    FINDMY_SERVICE_UUID,
    SAMSUNG_COMPANY_ID,
    TILE_COMPANY_ID,
    TILE_SERVICE_UUIDS,
)
from .models import RawAdvertisement, TrackerFamily


def is_findmy_manufacturer_frame(payload: Optional[bytes]) -> bool:
    """
    Check an Apple manufacturer payload for a Find My broadcast.

    The payload must be 20-28 bytes long and start with one of the known
    offline finding message-type markers. Near misses are not Find My.
    """
    if payload is None:
        return False
    if not FINDMY_MFG_MIN_LEN <= len(payload) <= FINDMY_MFG_MAX_LEN:
        return False
    return bytes(payload[:2]) in FINDMY_MFG_MARKERS


def classify_findmy(frame: RawAdvertisement) -> Optional[TrackerFamily]:
    """Classify a frame for the Find My pipeline."""
    if frame.service_data_for(FINDMY_SERVICE_UUID) is not None:
        return TrackerFamily.FINDMY

    if is_findmy_manufacturer_frame(frame.manufacturer_data.get(APPLE_COMPANY_ID)):
        return TrackerFamily.FINDMY

    return None


def classify_tile_samsung(frame: RawAdvertisement) -> Optional[TrackerFamily]:
    """Classify a frame for the Tile / Samsung pipeline. Tile wins ties."""
    if TILE_COMPANY_ID in frame.manufacturer_data:
        return TrackerFamily.TILE

    if frame.normalized_service_uuids & TILE_SERVICE_UUIDS:
        return TrackerFamily.TILE

    if SAMSUNG_COMPANY_ID in frame.manufacturer_data:
        return TrackerFamily.SAMSUNG

    return None
