"""
End-to-end tests for the tracker resolution pipelines.
"""

import pytest

from utils.trackers.constants import (
    APPLE_COMPANY_ID,
    SAMSUNG_COMPANY_ID,
    TILE_COMPANY_ID,
)
from utils.trackers.emitter import CallbackSink, QueueSink, TrackerEmitter
from utils.trackers.fingerprint import fingerprint
from utils.trackers.models import (
    RawAdvertisement,
    TrackerFamily,
    TrackerKind,
    TrackerState,
)
from utils.trackers.pipeline import TrackerPipeline
from utils.trackers.policy import FINDMY_POLICY, TILE_SAMSUNG_POLICY


AIRTAG_PAYLOAD = bytes([0x12, 0x19]) + bytes(range(0x20, 0x34))   # 22 bytes
AIRTAG_SIG = fingerprint(AIRTAG_PAYLOAD[:4])


def airtag(at_ms, address, rssi=-60):
    return RawAdvertisement(
        rssi=rssi,
        observed_at_ms=at_ms,
        address=address,
        manufacturer_data={APPLE_COMPANY_ID: AIRTAG_PAYLOAD},
        raw_bytes=b'\x1a\xff\x4c\x00' + AIRTAG_PAYLOAD,
    )


@pytest.fixture
def emitted():
    return []


@pytest.fixture
def findmy(emitted):
    return TrackerPipeline(FINDMY_POLICY, emitted.append)


@pytest.fixture
def tile_samsung(emitted):
    return TrackerPipeline(TILE_SAMSUNG_POLICY, emitted.append)


class TestFindMyPipeline:
    """AirTag identity resolution across address rotation."""

    def test_rotation_scenario(self, findmy, emitted):
        """Same stable bytes over rotating addresses resolve to one identity."""
        findmy.process(airtag(0, 'AA:AA'))
        findmy.process(airtag(1000, 'BB:BB'))

        assert len(emitted) == 2
        assert emitted[0].rotating_mac_count == 1
        assert emitted[1].rotating_mac_count == 2
        assert emitted[0].logical_id == emitted[1].logical_id == f'AIRTAG_{AIRTAG_SIG}'
        assert emitted[1].address == 'BB:BB'

        findmy.process(airtag(22000, 'CC:CC'))
        assert emitted[2].rotating_mac_count == 1
        assert emitted[2].logical_id == emitted[0].logical_id

    def test_record_fields(self, findmy):
        tracker = findmy.process(airtag(5000, 'AA:AA', rssi=-70))
        assert tracker.kind == TrackerKind.AIRTAG
        assert tracker.family == TrackerFamily.FINDMY
        assert tracker.id == tracker.logical_id
        assert tracker.signature == AIRTAG_SIG
        assert tracker.rssi == -70
        assert tracker.last_seen_ms == 5000
        assert tracker.distance_meters == pytest.approx(3.548, abs=0.001)
        assert tracker.raw_frame == ('1aff4c00' + AIRTAG_PAYLOAD.hex())

    def test_address_is_current_observation(self, findmy):
        findmy.process(airtag(0, 'AA:AA'))
        tracker = findmy.process(airtag(100, None))
        assert tracker.address is None
        assert tracker.rotating_mac_count == 1

    def test_non_tracker_emits_nothing(self, findmy, emitted):
        adv = RawAdvertisement(
            rssi=-50,
            observed_at_ms=0,
            address='AA:AA',
            manufacturer_data={APPLE_COMPANY_ID: b'\x02\x15' + bytes(21)},
        )
        assert findmy.process(adv) is None
        assert emitted == []
        assert findmy.tracker_count == 0

    def test_insufficient_stable_bytes_emits_nothing(self, findmy, emitted):
        adv = RawAdvertisement(rssi=-50, observed_at_ms=0, service_data={'fd44': b'\x01\x02'})
        assert findmy.process(adv) is None
        assert emitted == []

    def test_batch_preserves_order(self, findmy):
        batch = [airtag(i * 10, addr) for i, addr in enumerate(['A', 'B', 'B', 'C'])]
        trackers = findmy.process_batch(batch)
        assert [t.last_seen_ms for t in trackers] == [0, 10, 20, 30]
        assert [t.rotating_mac_count for t in trackers] == [1, 2, 2, 3]

    def test_custom_reference_power(self, emitted):
        pipeline = TrackerPipeline(FINDMY_POLICY, emitted.append, reference_power_dbm=-70)
        tracker = pipeline.process(airtag(0, 'A', rssi=-70))
        assert tracker.distance_meters == pytest.approx(1.0)

    def test_reset_forgets_identities(self, findmy):
        findmy.process(airtag(0, 'A'))
        findmy.reset()
        assert findmy.tracker_count == 0
        assert findmy.process(airtag(10, 'B')).rotating_mac_count == 1


class TestTileSamsungPipeline:
    """Tile and Samsung identity resolution."""

    def test_tile_identity(self, tile_samsung):
        adv = RawAdvertisement(
            rssi=-65,
            observed_at_ms=0,
            address='11:22',
            manufacturer_data={TILE_COMPANY_ID: bytes(range(1, 12))},
        )
        tracker = tile_samsung.process(adv)
        assert tracker.kind == TrackerKind.TILE
        assert tracker.signature == fingerprint(bytes(range(1, 7)))
        assert tracker.id.startswith('TILE_')

    def test_samsung_identity(self, tile_samsung):
        adv = RawAdvertisement(
            rssi=-65,
            observed_at_ms=0,
            manufacturer_data={SAMSUNG_COMPANY_ID: bytes(range(10))},
        )
        tracker = tile_samsung.process(adv)
        assert tracker.kind == TrackerKind.SAMSUNG
        assert tracker.logical_id == f'SAMSUNG_{fingerprint(bytes(range(6)))}'
        assert tracker.rotating_mac_count == 0

    def test_thirty_second_window(self, tile_samsung):
        def tile(at_ms, address):
            return RawAdvertisement(
                rssi=-60, observed_at_ms=at_ms, address=address,
                manufacturer_data={TILE_COMPANY_ID: b'\x01\x02\x03\x04\x05\x06'},
            )

        tile_samsung.process(tile(0, 'A'))
        assert tile_samsung.process(tile(30000, 'B')).rotating_mac_count == 2
        assert tile_samsung.process(tile(60001, 'C')).rotating_mac_count == 1

    def test_airtag_frame_rejected(self, tile_samsung, emitted):
        assert tile_samsung.process(airtag(0, 'A')) is None
        assert emitted == []


class TestPipelineIndependence:
    """Pipelines share no state."""

    def test_separate_tables(self, findmy, tile_samsung):
        findmy.process(airtag(0, 'A'))
        assert findmy.tracker_count == 1
        assert tile_samsung.tracker_count == 0

    def test_frame_matching_both_pipelines(self, findmy, tile_samsung, emitted):
        adv = RawAdvertisement(
            rssi=-60,
            observed_at_ms=0,
            address='A',
            manufacturer_data={
                APPLE_COMPANY_ID: AIRTAG_PAYLOAD,
                TILE_COMPANY_ID: b'\x09\x09\x09\x09\x09\x09',
            },
        )
        findmy.process(adv)
        tile_samsung.process(adv)
        assert [t.kind for t in emitted] == [TrackerKind.AIRTAG, TrackerKind.TILE]
        assert emitted[0].signature != emitted[1].signature


class TestEmitter:
    """Tests for tracker record assembly and sinks."""

    def _state(self):
        return TrackerState(
            signature=AIRTAG_SIG,
            family=TrackerFamily.FINDMY,
            last_seen_ms=1234,
            last_rssi=-61,
            last_mac='AA:AA',
            rotating_mac_count=2,
            last_raw_frame='00ff',
        )

    def test_payload_keys(self):
        tracker = TrackerEmitter.build(TrackerFamily.FINDMY, AIRTAG_SIG, self._state(), 'AA:AA', 2.5)
        payload = tracker.to_dict()
        assert payload == {
            'id': f'AIRTAG_{AIRTAG_SIG}',
            'logicalId': f'AIRTAG_{AIRTAG_SIG}',
            'address': 'AA:AA',
            'mac': 'AA:AA',
            'kind': 'AIRTAG',
            'family': 'findmy',
            'rssi': -61,
            'distanceMeters': 2.5,
            'proximityBand': 'near',
            'lastSeenMs': 1234,
            'signature': AIRTAG_SIG,
            'rawFrame': '00ff',
            'rotatingMacCount': 2,
        }

    def test_missing_address_in_payload(self):
        tracker = TrackerEmitter.build(TrackerFamily.FINDMY, AIRTAG_SIG, self._state(), None, 0.5)
        payload = tracker.to_dict()
        assert payload['address'] is None
        assert payload['mac'] == ''

    def test_callable_wrapped_in_callback_sink(self):
        received = []
        emitter = TrackerEmitter(received.append)
        assert isinstance(emitter.sink, CallbackSink)
        emitter.emit(TrackerFamily.FINDMY, AIRTAG_SIG, self._state(), 'AA:AA', 1.0)
        assert len(received) == 1

    def test_queue_sink_drops_oldest(self):
        sink = QueueSink(maxsize=2)
        records = [
            TrackerEmitter.build(TrackerFamily.FINDMY, AIRTAG_SIG, self._state(), str(i), 1.0)
            for i in range(3)
        ]
        for record in records:
            sink.emit(record)

        assert sink.dropped == 1
        assert [r.address for r in sink.drain()] == ['1', '2']
        assert len(sink) == 0

    def test_queue_sink_get_timeout(self):
        assert QueueSink(maxsize=1).get(timeout=0.01) is None
