"""
Tracker scanner.

Owns the radio backend, both resolution pipelines (Find My and
Tile/Samsung) and the fan-out of resolved trackers to the latest-record
view, the event stream and MQTT.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
import time
from typing import Callable, Generator, Iterable, Optional

from utils.mqtt import mqtt_publish

from .config import TrackerConfig, load_tracker_config
from .constants import (
    AD_TYPE_MANUFACTURER_DATA,
    AD_TYPE_SERVICE_DATA_16,
    AD_TYPE_SERVICE_UUIDS_16,
    BLEAK_POLL_INTERVAL,
    BLEAK_START_TIMEOUT,
    BLEAK_STOP_TIMEOUT,
)
from .emitter import QueueSink
from .fingerprint import logical_id
from .models import (
    DetectedTracker,
    RawAdvertisement,
    ScanStatus,
    TrackerKind,
    TrackerState,
    normalize_uuid,
)
from .pipeline import TrackerPipeline
from .policy import DEFAULT_POLICIES, FINDMY_POLICY, TILE_SAMSUNG_POLICY

logger = logging.getLogger('tagwatch.trackers.scanner')


def now_ms() -> int:
    return int(time.time() * 1000)


# =============================================================================
# BLEAK CONVERSION
# =============================================================================

def _ad_structure(ad_type: int, data: bytes) -> bytes:
    """[len][type][data...], len covering type + data."""
    length = 1 + len(data)
    if length > 0xFF:
        raise ValueError("AD structure too large")
    return bytes([length, ad_type]) + data


def build_raw_bytes(
    manufacturer_data: dict[int, bytes],
    service_data: dict[str, bytes],
    service_uuids: Iterable[str],
) -> bytes:
    """
    Rebuild advertisement bytes from decoded fields.

    bleak hands out decoded fields only, so the raw frame kept for
    diagnostics is reconstructed: 16-bit UUID list, 16-bit service data and
    manufacturer data. Anything that does not fit an AD structure is left
    out.
    """
    parts = []

    short_uuids = [u for u in (normalize_uuid(x) for x in service_uuids) if len(u) == 4]
    if short_uuids:
        uuid_bytes = b''.join(int(u, 16).to_bytes(2, 'little') for u in short_uuids)
        parts.append(_ad_structure(AD_TYPE_SERVICE_UUIDS_16, uuid_bytes))

    for uuid, data in service_data.items():
        short = normalize_uuid(uuid)
        if len(short) != 4:
            continue
        body = int(short, 16).to_bytes(2, 'little') + bytes(data)
        if len(body) < 0xFF:
            parts.append(_ad_structure(AD_TYPE_SERVICE_DATA_16, body))

    for company_id, data in manufacturer_data.items():
        body = company_id.to_bytes(2, 'little') + bytes(data)
        if len(body) < 0xFF:
            parts.append(_ad_structure(AD_TYPE_MANUFACTURER_DATA, body))

    return b''.join(parts)


def advertisement_from_bleak(device, adv_data, observed_at_ms: Optional[int] = None) -> RawAdvertisement:
    """Convert a bleak detection callback into a RawAdvertisement."""
    manufacturer_data = {
        int(mid): bytes(data)
        for mid, data in (adv_data.manufacturer_data or {}).items()
    }
    service_data = {
        str(uuid): bytes(data)
        for uuid, data in (adv_data.service_data or {}).items()
    }
    service_uuids = [str(u) for u in (adv_data.service_uuids or [])]

    address = getattr(device, 'address', None) or None
    if address:
        address = address.upper()

    return RawAdvertisement(
        rssi=int(adv_data.rssi),
        observed_at_ms=observed_at_ms if observed_at_ms is not None else now_ms(),
        address=address,
        service_data=service_data,
        manufacturer_data=manufacturer_data,
        service_uuids=frozenset(service_uuids),
        raw_bytes=build_raw_bytes(manufacturer_data, service_data, service_uuids),
    )


class BleakBackend:
    """
    BLE advertisement source using the bleak library.

    Runs bleak's scanner in a background thread with its own event loop and
    delivers each advertisement to the callback from that thread. start()
    waits until bleak has either started scanning or failed, so adapter and
    permission errors are reported to the caller.
    """

    name = 'bleak'

    def __init__(self, adapter: Optional[str] = None, start_timeout: float = BLEAK_START_TIMEOUT):
        self._adapter = adapter
        self._start_timeout = start_timeout
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._started_event = threading.Event()
        self._running = False
        self._on_advertisement: Optional[Callable[[RawAdvertisement], None]] = None
        self._on_error: Optional[Callable[[str], None]] = None
        self.error: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def start(
        self,
        on_advertisement: Callable[[RawAdvertisement], None],
        on_error: Optional[Callable[[str], None]] = None,
    ) -> bool:
        """
        Start scanning.

        Args:
            on_advertisement: Called from the scan thread for each advertisement.
            on_error: Called from the scan thread if a running scan dies.

        Returns:
            True once bleak reports the scan started, False if it failed or
            did not start within the timeout (see .error).
        """
        self._on_advertisement = on_advertisement
        self._on_error = on_error
        self._stop_event.clear()
        self._started_event.clear()
        self._running = False
        self.error = None

        self._thread = threading.Thread(target=self._scan_loop, daemon=True)
        self._thread.start()

        if not self._started_event.wait(timeout=self._start_timeout):
            self.error = f"Bleak scanner did not start within {self._start_timeout}s"
            logger.error(self.error)
            self._stop_event.set()
            return False

        if not self._running:
            self._thread.join(timeout=BLEAK_STOP_TIMEOUT)
            self._thread = None
            return False

        return True

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=BLEAK_STOP_TIMEOUT)
        self._thread = None
        self._running = False

    def _scan_loop(self) -> None:
        try:
            asyncio.run(self._async_scan())
        except Exception as e:
            self.error = str(e) or type(e).__name__
            logger.error(f"Bleak scan error: {self.error}")
            if self._running and not self._stop_event.is_set() and self._on_error:
                self._on_error(self.error)
        finally:
            self._running = False
            self._started_event.set()

    async def _async_scan(self) -> None:
        from bleak import BleakScanner

        def detection_callback(device, adv_data):
            if self._stop_event.is_set() or self._on_advertisement is None:
                return
            self._on_advertisement(advertisement_from_bleak(device, adv_data))

        kwargs = {'detection_callback': detection_callback}
        if self._adapter:
            kwargs['adapter'] = self._adapter

        scanner = BleakScanner(**kwargs)
        await scanner.start()
        self._running = True
        self._started_event.set()
        try:
            while not self._stop_event.is_set():
                await asyncio.sleep(BLEAK_POLL_INTERVAL)
        finally:
            await scanner.stop()


# =============================================================================
# SCANNER
# =============================================================================

class TrackerScanner:
    """
    Scan lifecycle owner for the tracker pipelines.

    start() while scanning and stop() while stopped are no-ops.
    Advertisements arriving while stopped are dropped.

    Each pipeline has its own latest-record view, and a record leaves its
    view when the pipeline sweeps or evicts the identity. The views never
    hold more identities than the state tables.
    """

    def __init__(
        self,
        backend=None,
        config: Optional[TrackerConfig] = None,
        publish: Optional[Callable[..., bool]] = mqtt_publish,
    ):
        self.config = config or TrackerConfig()
        self._backend = backend if backend is not None else BleakBackend()
        self._publish = publish

        self._views: dict[str, dict[str, DetectedTracker]] = {}
        self._trackers_lock = threading.Lock()
        self._subscribers: list[QueueSink] = []
        self._subscribers_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._latest_observed_ms: Optional[int] = None

        max_entries = self.config.max_entries or None
        self.pipelines = []
        for policy in DEFAULT_POLICIES:
            view = self._views.setdefault(policy.name, {})
            self.pipelines.append(TrackerPipeline(
                policy,
                functools.partial(self._on_tracker, view),
                reference_power_dbm=self.config.reference_power_dbm,
                max_entries=max_entries,
                on_evict=functools.partial(self._on_evict, view),
            ))

        self._is_scanning = False
        self._started_at_ms: Optional[int] = None
        self._error: Optional[str] = None

    @property
    def is_scanning(self) -> bool:
        return self._is_scanning

    def start(self) -> bool:
        """Start scanning. Returns True if the scan is running."""
        with self._state_lock:
            if self._is_scanning:
                return True

            self._error = None
            try:
                started = self._backend.start(
                    self._on_advertisement,
                    on_error=self._on_backend_error,
                )
            except Exception as e:
                logger.error(f"Failed to start {self._backend_name} backend: {e}")
                self._error = str(e)
                return False

            if not started:
                self._error = getattr(self._backend, 'error', None) or 'Backend failed to start'
                logger.error(f"Tracker scan not started: {self._error}")
                return False

            self._is_scanning = True
            self._started_at_ms = now_ms()

        logger.info(f"Tracker scan started ({self._backend_name})")
        return True

    def stop(self) -> None:
        """Stop scanning."""
        with self._state_lock:
            if not self._is_scanning:
                return
            self._is_scanning = False
            self._started_at_ms = None
            self._backend.stop()

        logger.info("Tracker scan stopped")

    @property
    def _backend_name(self) -> str:
        return getattr(self._backend, 'name', type(self._backend).__name__)

    def _on_backend_error(self, message: str) -> None:
        """Backend callback for a scan that died after starting."""
        self._error = message
        self._is_scanning = False
        self._started_at_ms = None
        logger.error(f"Tracker scan ended: {message}")

    def _on_advertisement(self, advertisement: RawAdvertisement) -> None:
        """Backend callback. A failing consumer must not end the scan."""
        try:
            self.ingest(advertisement)
        except Exception as e:
            logger.debug(f"Error processing advertisement: {e}")

    def ingest(self, advertisement: RawAdvertisement) -> list[DetectedTracker]:
        """Run one advertisement through both pipelines."""
        if not self._is_scanning:
            return []

        observed = advertisement.observed_at_ms
        if self._latest_observed_ms is None or observed > self._latest_observed_ms:
            self._latest_observed_ms = observed

        emitted = []
        for pipeline in self.pipelines:
            tracker = pipeline.process(advertisement)
            if tracker is not None:
                emitted.append(tracker)
        return emitted

    def ingest_batch(self, advertisements: Iterable[RawAdvertisement]) -> list[DetectedTracker]:
        """Run a batch through both pipelines, preserving order."""
        emitted = []
        for advertisement in advertisements:
            emitted.extend(self.ingest(advertisement))
        return emitted

    def _on_tracker(self, view: dict[str, DetectedTracker], tracker: DetectedTracker) -> None:
        with self._trackers_lock:
            view[tracker.logical_id] = tracker

        with self._subscribers_lock:
            subscribers = list(self._subscribers)
        for subscriber in subscribers:
            subscriber.emit(tracker)

        if self._publish is not None:
            self._publish('trackers', tracker.to_dict(), subtopic=tracker.kind.value.lower())

    def _on_evict(self, view: dict[str, DetectedTracker], state: TrackerState) -> None:
        # A signature may have been emitted under more than one kind (Tile/Samsung)
        with self._trackers_lock:
            for kind in TrackerKind:
                view.pop(logical_id(kind.value, state.signature), None)

    @property
    def record_count(self) -> int:
        """Number of records in the latest-record views."""
        with self._trackers_lock:
            return sum(len(view) for view in self._views.values())

    def get_trackers(
        self,
        kind: Optional[str] = None,
        sort_by: str = 'last_seen',
    ) -> list[DetectedTracker]:
        """
        Get the latest record of every tracker still held by a pipeline.

        Every pipeline is swept first, using the newest observation time
        seen by the scanner, so an idle pipeline does not list identities
        that are already past their TTL.

        Args:
            kind: Optional TrackerKind value filter (e.g. 'AIRTAG').
            sort_by: 'last_seen', 'rssi', 'distance' or 'rotations'.
        """
        if self._latest_observed_ms is not None:
            for pipeline in self.pipelines:
                pipeline.sweep(self._latest_observed_ms)

        with self._trackers_lock:
            trackers = [t for view in self._views.values() for t in view.values()]

        if kind:
            trackers = [t for t in trackers if t.kind.value == kind.upper()]

        sort_keys = {
            'last_seen': (lambda t: t.last_seen_ms, True),
            'rssi': (lambda t: t.rssi, True),
            'distance': (lambda t: t.distance_meters, False),
            'rotations': (lambda t: t.rotating_mac_count, True),
        }
        key, reverse = sort_keys.get(sort_by, sort_keys['last_seen'])
        return sorted(trackers, key=key, reverse=reverse)

    def get_tracker(self, tracker_id: str) -> Optional[DetectedTracker]:
        with self._trackers_lock:
            for view in self._views.values():
                if tracker_id in view:
                    return view[tracker_id]
        return None

    def clear(self) -> None:
        """Forget all trackers in both pipelines."""
        for pipeline in self.pipelines:
            pipeline.reset()
        with self._trackers_lock:
            for view in self._views.values():
                view.clear()
        with self._subscribers_lock:
            for subscriber in self._subscribers:
                subscriber.drain()

    def subscribe(self) -> QueueSink:
        """Register a new event queue. Every subscriber gets every record."""
        subscriber = QueueSink(maxsize=self.config.event_queue_size)
        with self._subscribers_lock:
            self._subscribers.append(subscriber)
        return subscriber

    def unsubscribe(self, subscriber: QueueSink) -> None:
        with self._subscribers_lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    @property
    def subscriber_count(self) -> int:
        with self._subscribers_lock:
            return len(self._subscribers)

    def stream_events(self, timeout: float = 1.0) -> Generator[dict, None, None]:
        """
        Yield tracker events, with pings when idle.

        Each stream has its own queue, registered when iteration starts and
        removed when the generator is closed. Each event is
        {'type': 'tracker', 'tracker': {...}} or {'type': 'ping'}.
        """
        subscriber = self.subscribe()
        try:
            while True:
                tracker = subscriber.get(timeout=timeout)
                if tracker is not None:
                    yield {'type': 'tracker', 'tracker': tracker.to_dict()}
                else:
                    yield {'type': 'ping'}
        finally:
            self.unsubscribe(subscriber)

    def get_status(self) -> ScanStatus:
        counts = {p.name: p.tracker_count for p in self.pipelines}
        return ScanStatus(
            is_scanning=self._is_scanning,
            backend=self._backend_name,
            started_at_ms=self._started_at_ms,
            tracker_count=sum(counts.values()),
            findmy_entries=counts.get(FINDMY_POLICY.name, 0),
            tile_samsung_entries=counts.get(TILE_SAMSUNG_POLICY.name, 0),
            error=self._error or getattr(self._backend, 'error', None),
        )

    def get_pipeline_info(self) -> list[dict]:
        return [
            {
                'name': p.name,
                'prefix_len': p.policy.prefix_len,
                'ttl_ms': p.policy.ttl_ms,
                'entries': p.tracker_count,
                'max_entries': p.store.max_entries,
            }
            for p in self.pipelines
        ]


# =============================================================================
# SINGLETON
# =============================================================================

_scanner_instance: Optional[TrackerScanner] = None
_scanner_lock = threading.Lock()


def get_tracker_scanner() -> TrackerScanner:
    """Get the shared tracker scanner, configured from settings."""
    global _scanner_instance
    with _scanner_lock:
        if _scanner_instance is None:
            _scanner_instance = TrackerScanner(config=load_tracker_config())
        return _scanner_instance


def reset_tracker_scanner() -> None:
    """Stop and forget the shared tracker scanner."""
    global _scanner_instance
    with _scanner_lock:
        if _scanner_instance is not None:
            _scanner_instance.stop()
        _scanner_instance = None
