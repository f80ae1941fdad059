"""
Update emission for resolved trackers.

The pipeline pushes one DetectedTracker per accepted observation into a
sink, synchronously. Sinks never batch or deduplicate.
"""

from __future__ import annotations

import queue
from typing import Callable, Optional

from .fingerprint import logical_id
from .models import DetectedTracker, TrackerFamily, TrackerKind, TrackerState


class TrackerSink:
    """Receiver of resolved tracker records."""

    def emit(self, tracker: DetectedTracker) -> None:
        raise NotImplementedError


class CallbackSink(TrackerSink):
    """Sink that forwards each record to a callable."""

    def __init__(self, callback: Callable[[DetectedTracker], None]):
        self._callback = callback

    def emit(self, tracker: DetectedTracker) -> None:
        self._callback(tracker)


class QueueSink(TrackerSink):
    """
    Bounded cross-thread channel.

    When the queue is full the oldest record is dropped to make room, so
    emit() never blocks the engine.
    """

    def __init__(self, maxsize: int = 1000):
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self.dropped = 0

    def emit(self, tracker: DetectedTracker) -> None:
        while True:
            try:
                self._queue.put_nowait(tracker)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def get(self, timeout: Optional[float] = None) -> Optional[DetectedTracker]:
        """Wait for the next record. Returns None on timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[DetectedTracker]:
        """Take every queued record without waiting."""
        items = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                return items

    def __len__(self) -> int:
        return self._queue.qsize()


class TrackerEmitter:
    """Assembles DetectedTracker records and hands them to a sink."""

    def __init__(self, sink: TrackerSink | Callable[[DetectedTracker], None]):
        if not isinstance(sink, TrackerSink):
            sink = CallbackSink(sink)
        self.sink = sink

    @staticmethod
    def build(
        family: TrackerFamily,
        signature: str,
        state: TrackerState,
        address: Optional[str],
        distance_m: float,
    ) -> DetectedTracker:
        """Build the outward record from the post-update state."""
        kind = TrackerKind.for_family(family)
        tracker_id = logical_id(kind.value, signature)
        return DetectedTracker(
            id=tracker_id,
            logical_id=tracker_id,
            kind=kind,
            family=family,
            address=address,
            rssi=state.last_rssi,
            distance_meters=distance_m,
            last_seen_ms=state.last_seen_ms,
            signature=signature,
            raw_frame=state.last_raw_frame,
            rotating_mac_count=state.rotating_mac_count,
        )

    def emit(
        self,
        family: TrackerFamily,
        signature: str,
        state: TrackerState,
        address: Optional[str],
        distance_m: float,
    ) -> DetectedTracker:
        tracker = self.build(family, signature, state, address, distance_m)
        self.sink.emit(tracker)
        return tracker
