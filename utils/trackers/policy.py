"""
Per-family pipeline policies.

A policy bundles the classification predicate, the stable-bytes selector
and the timing constants of one pipeline instance.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from .classifier import classify_findmy, classify_tile_samsung
from .constants import (
    FINDMY_STABLE_PREFIX_LEN,
    FINDMY_TTL_MS,
    TILE_SAMSUNG_TTL_MS,
    TILE_STABLE_PREFIX_LEN,
)
from .models import RawAdvertisement, TrackerFamily
from .stable_bytes import select_stable_bytes


@dataclass(frozen=True)
class TrackerPolicy:
    """Matching and timing rules for one pipeline instance."""
    name: str
    classify: Callable[[RawAdvertisement], Optional[TrackerFamily]]
    select_stable_bytes: Callable[[RawAdvertisement, TrackerFamily], Optional[bytes]]
    prefix_len: int
    ttl_ms: int


FINDMY_POLICY = TrackerPolicy(
    name='findmy',
    classify=classify_findmy,
    select_stable_bytes=select_stable_bytes,
    prefix_len=FINDMY_STABLE_PREFIX_LEN,
    ttl_ms=FINDMY_TTL_MS,
)

TILE_SAMSUNG_POLICY = TrackerPolicy(
    name='tile_samsung',
    classify=classify_tile_samsung,
    select_stable_bytes=select_stable_bytes,
    prefix_len=TILE_STABLE_PREFIX_LEN,
    ttl_ms=TILE_SAMSUNG_TTL_MS,
)

DEFAULT_POLICIES = (FINDMY_POLICY, TILE_SAMSUNG_POLICY)
