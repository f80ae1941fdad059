"""
Tracker state store.

Holds one TrackerState per signature, sweeps stale entries lazily on each
accepted observation and counts the distinct radio addresses seen for each
logical identity.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from .models import RawAdvertisement, TrackerFamily, TrackerState

logger = logging.getLogger('tagwatch.trackers.state_store')


class TrackerStateStore:
    """
    Time-windowed table of tracker states keyed by signature.

    Entries are never merged, split or re-keyed. Callers only ever receive
    copies of the stored state, so the table has a single writer:
    sweep_and_upsert().
    """

    def __init__(
        self,
        ttl_ms: int,
        max_entries: Optional[int] = None,
        on_evict: Optional[Callable[[TrackerState], None]] = None,
    ):
        """
        Args:
            ttl_ms: Silence interval after which an entry is swept.
            max_entries: Optional hard cap. When a new signature arrives at a
                full table the least recently seen entry is evicted.
            on_evict: Called with a copy of every swept or evicted state,
                with the store lock held. It must not call back into the store.
        """
        if max_entries is not None and max_entries <= 0:
            max_entries = None

        self.ttl_ms = ttl_ms
        self.max_entries = max_entries
        self._on_evict = on_evict
        self._states: dict[str, TrackerState] = {}
        self._lock = threading.Lock()

    def sweep_and_upsert(
        self,
        signature: str,
        family: TrackerFamily,
        advertisement: RawAdvertisement,
    ) -> TrackerState:
        """
        Sweep stale entries, then record the observation for its signature.

        The observation time is the sweep reference. An entry survives when
        exactly ttl_ms has elapsed and is removed one millisecond later.

        Returns:
            A copy of the post-update state.
        """
        now = advertisement.observed_at_ms
        address = advertisement.address if advertisement.has_address else None
        raw_hex = advertisement.raw_bytes.hex()

        with self._lock:
            self._sweep(now)

            state = self._states.get(signature)
            if state is None:
                self._make_room()
                state = TrackerState(
                    signature=signature,
                    family=family,
                    last_seen_ms=now,
                    last_rssi=advertisement.rssi,
                    last_mac=address,
                    rotating_mac_count=1 if address else 0,
                    last_raw_frame=raw_hex,
                )
                self._states[signature] = state
                logger.debug(f"New {family} tracker {signature[:12]}")
            else:
                if address and address != state.last_mac:
                    state.last_mac = address
                    state.rotating_mac_count += 1

                state.last_seen_ms = now
                state.last_rssi = advertisement.rssi
                state.last_raw_frame = raw_hex

            return state.copy()

    def _sweep(self, now: int) -> int:
        """Remove entries silent for longer than the TTL. Caller holds the lock."""
        stale = [
            signature for signature, state in self._states.items()
            if now - state.last_seen_ms > self.ttl_ms
        ]
        for signature in stale:
            self._evict(signature)
        if stale:
            logger.debug(f"Swept {len(stale)} stale tracker(s)")
        return len(stale)

    def _make_room(self) -> None:
        """Evict the least recently seen entry if the table is full."""
        if self.max_entries is None or len(self._states) < self.max_entries:
            return
        oldest = min(self._states.values(), key=lambda s: s.last_seen_ms)
        self._evict(oldest.signature)
        logger.debug(f"State table full, evicted {oldest.signature[:12]}")

    def _evict(self, signature: str) -> None:
        state = self._states.pop(signature)
        if self._on_evict is not None:
            self._on_evict(state.copy())

    def sweep(self, now: int) -> int:
        """Remove entries silent for longer than the TTL at time now."""
        with self._lock:
            return self._sweep(now)

    def get(self, signature: str) -> Optional[TrackerState]:
        """Get a copy of the state for a signature."""
        with self._lock:
            state = self._states.get(signature)
            return state.copy() if state else None

    def snapshot(self) -> list[TrackerState]:
        """Get copies of all current states."""
        with self._lock:
            return [state.copy() for state in self._states.values()]

    def clear(self) -> None:
        """Drop all entries."""
        with self._lock:
            self._states.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def __contains__(self, signature: object) -> bool:
        with self._lock:
            return signature in self._states
