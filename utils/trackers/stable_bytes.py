"""
Stable-bytes selection.

Picks the payload prefix that does not rotate with the advertised address.
The prefix lengths are protocol constants: 4 bytes for Find My, up to 6 for
Tile and Samsung.
"""

from __future__ import annotations

from typing import Optional

from .constants import (
    APPLE_COMPANY_ID,
    FINDMY_SERVICE_UUID,
    FINDMY_STABLE_PREFIX_LEN,
    SAMSUNG_COMPANY_ID,
    SAMSUNG_STABLE_PREFIX_LEN,
    TILE_COMPANY_ID,
    TILE_STABLE_PREFIX_LEN,
)
from .models import RawAdvertisement, TrackerFamily


def select_findmy_bytes(frame: RawAdvertisement) -> Optional[bytes]:
    """First 4 bytes of FD44 service data, else of the Apple payload."""
    for source in (
        frame.service_data_for(FINDMY_SERVICE_UUID),
        frame.manufacturer_data.get(APPLE_COMPANY_ID),
    ):
        if source is not None and len(source) >= FINDMY_STABLE_PREFIX_LEN:
            return bytes(source[:FINDMY_STABLE_PREFIX_LEN])
    return None


def select_tile_bytes(frame: RawAdvertisement) -> Optional[bytes]:
    """Up to 6 bytes of the Tile payload, else of the first service data."""
    source = frame.manufacturer_data.get(TILE_COMPANY_ID)
    if source is None and frame.service_data:
        source = next(iter(frame.service_data.values()))
    if not source:
        return None
    return bytes(source[:TILE_STABLE_PREFIX_LEN])


def select_samsung_bytes(frame: RawAdvertisement) -> Optional[bytes]:
    """Up to 6 bytes of the Samsung manufacturer payload."""
    source = frame.manufacturer_data.get(SAMSUNG_COMPANY_ID)
    if not source:
        return None
    return bytes(source[:SAMSUNG_STABLE_PREFIX_LEN])


_SELECTORS = {
    TrackerFamily.FINDMY: select_findmy_bytes,
    TrackerFamily.TILE: select_tile_bytes,
    TrackerFamily.SAMSUNG: select_samsung_bytes,
}


def select_stable_bytes(
    frame: RawAdvertisement,
    family: TrackerFamily,
) -> Optional[bytes]:
    """
    Select the stable byte range for a classified frame.

    Returns:
        The stable prefix, or None when the frame lacks enough stable bytes
        (or the family has no known stable prefix).
    """
    selector = _SELECTORS.get(family)
    if selector is None:
        return None
    return selector(frame)
