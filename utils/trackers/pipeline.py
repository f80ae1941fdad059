"""
Tracker identity resolution pipeline.

classify -> select stable bytes -> fingerprint -> sweep + upsert ->
estimate distance -> emit. One instance per policy; instances share no
state.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, Optional

from .constants import DEFAULT_REFERENCE_POWER_DBM
from .distance import estimate_distance
from .emitter import TrackerEmitter, TrackerSink
from .fingerprint import fingerprint
from .models import DetectedTracker, RawAdvertisement, TrackerState
from .policy import TrackerPolicy
from .state_store import TrackerStateStore

logger = logging.getLogger('tagwatch.trackers.pipeline')


class TrackerPipeline:
    """
    Resolves advertisements into logical tracker identities for one policy.

    process() runs sweep -> upsert -> emit under a lock, so observations
    delivered from several threads are applied one at a time.
    """

    def __init__(
        self,
        policy: TrackerPolicy,
        sink: TrackerSink | Callable[[DetectedTracker], None],
        reference_power_dbm: int = DEFAULT_REFERENCE_POWER_DBM,
        max_entries: Optional[int] = None,
        on_evict: Optional[Callable[[TrackerState], None]] = None,
    ):
        self.policy = policy
        self.reference_power_dbm = reference_power_dbm
        self.store = TrackerStateStore(
            ttl_ms=policy.ttl_ms,
            max_entries=max_entries,
            on_evict=on_evict,
        )
        self._emitter = TrackerEmitter(sink)
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self.policy.name

    def process(self, advertisement: RawAdvertisement) -> Optional[DetectedTracker]:
        """
        Process one advertisement.

        Returns:
            The emitted record, or None if the frame was rejected.
        """
        family = self.policy.classify(advertisement)
        if family is None:
            return None

        stable = self.policy.select_stable_bytes(advertisement, family)
        if stable is None:
            return None

        signature = fingerprint(stable)

        with self._lock:
            state = self.store.sweep_and_upsert(signature, family, advertisement)
            distance = estimate_distance(advertisement.rssi, self.reference_power_dbm)
            address = advertisement.address if advertisement.has_address else None
            return self._emitter.emit(family, signature, state, address, distance)

    def process_batch(
        self,
        advertisements: Iterable[RawAdvertisement],
    ) -> list[DetectedTracker]:
        """Process a batch in delivery order. Returns the emitted records."""
        emitted = []
        for advertisement in advertisements:
            tracker = self.process(advertisement)
            if tracker is not None:
                emitted.append(tracker)
        return emitted

    def sweep(self, now_ms: int) -> int:
        """Sweep stale identities without an observation. Returns the count removed."""
        with self._lock:
            return self.store.sweep(now_ms)

    def reset(self) -> None:
        """Forget every tracked identity."""
        with self._lock:
            self.store.clear()
        logger.debug(f"Pipeline {self.name} reset")

    @property
    def tracker_count(self) -> int:
        return len(self.store)
