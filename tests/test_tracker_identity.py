"""
Unit tests for tracker fingerprinting, distance estimation and the
per-signature state store.
"""

import pytest

from utils.trackers.distance import (
    ProximityBand,
    classify_proximity_band,
    estimate_distance,
)
from utils.trackers.fingerprint import SIGNATURE_LENGTH, fingerprint, logical_id
from utils.trackers.models import RawAdvertisement, TrackerFamily
from utils.trackers.state_store import TrackerStateStore


def observe(at_ms, address=None, rssi=-60, raw=b''):
    return RawAdvertisement(
        rssi=rssi,
        observed_at_ms=at_ms,
        address=address,
        raw_bytes=raw,
    )


SIG_A = 'a' * 40
SIG_B = 'b' * 40


class TestFingerprint:
    """Tests for signature generation."""

    def test_known_vector(self):
        assert fingerprint(b'abc') == 'a9993e364706816aba3e25717850c26c9cd0d89d'

    def test_lowercase_hex_of_fixed_length(self):
        sig = fingerprint(b'\x12\x19\x00\xff')
        assert len(sig) == SIGNATURE_LENGTH
        assert sig == sig.lower()
        int(sig, 16)

    def test_deterministic(self):
        assert fingerprint(b'\x01\x02\x03\x04') == fingerprint(bytearray(b'\x01\x02\x03\x04'))

    def test_different_prefixes_do_not_merge(self):
        assert fingerprint(b'\x01\x02\x03\x04') != fingerprint(b'\x01\x02\x03\x05')

    def test_logical_id(self):
        assert logical_id('AIRTAG', SIG_A) == f'AIRTAG_{SIG_A}'


class TestDistance:
    """Tests for the path-loss distance model."""

    def test_reference_power_is_one_meter(self):
        assert estimate_distance(-59) == pytest.approx(1.0)

    def test_known_value(self):
        assert estimate_distance(-70) == pytest.approx(3.548, abs=0.001)

    def test_custom_reference_power(self):
        assert estimate_distance(-65, reference_power_dbm=-65) == pytest.approx(1.0)

    def test_ten_meters_at_twenty_db_below_reference(self):
        assert estimate_distance(-79) == pytest.approx(10.0)

    def test_stronger_signal_is_closer(self):
        distances = [estimate_distance(rssi) for rssi in (-40, -55, -70, -85, -100)]
        assert distances == sorted(distances)

    def test_not_clamped(self):
        assert estimate_distance(-30) < 0.1

    @pytest.mark.parametrize('distance,band', [
        (0.2, ProximityBand.IMMEDIATE),
        (1.0, ProximityBand.NEAR),
        (2.9, ProximityBand.NEAR),
        (3.0, ProximityBand.FAR),
        (9.9, ProximityBand.FAR),
        (10.0, ProximityBand.UNKNOWN),
        (250.0, ProximityBand.UNKNOWN),
    ])
    def test_bands(self, distance, band):
        assert classify_proximity_band(distance) == band


class TestTrackerStateStore:
    """Tests for sweep, upsert and rotation counting."""

    @pytest.fixture
    def store(self):
        return TrackerStateStore(ttl_ms=20000)

    def test_new_entry_with_address(self, store):
        state = store.sweep_and_upsert(SIG_A, TrackerFamily.FINDMY, observe(0, 'AA:AA'))
        assert state.rotating_mac_count == 1
        assert state.last_mac == 'AA:AA'
        assert state.last_seen_ms == 0

    def test_new_entry_without_address(self, store):
        state = store.sweep_and_upsert(SIG_A, TrackerFamily.FINDMY, observe(0, None))
        assert state.rotating_mac_count == 0
        assert state.last_mac is None

    def test_address_change_increments(self, store):
        store.sweep_and_upsert(SIG_A, TrackerFamily.FINDMY, observe(0, 'AA:AA'))
        state = store.sweep_and_upsert(SIG_A, TrackerFamily.FINDMY, observe(5000, 'BB:BB'))
        assert state.rotating_mac_count == 2
        assert state.last_mac == 'BB:BB'

    def test_rotation_sequence(self, store):
        """Only changes to a different non-empty address count."""
        addresses = ['A', 'A', '', 'B', None, 'B', 'C']
        state = None
        for i, address in enumerate(addresses):
            state = store.sweep_and_upsert(SIG_A, TrackerFamily.TILE, observe(i * 100, address))
        assert state.rotating_mac_count == 3
        assert state.last_mac == 'C'

    def test_no_addresses_never_counts(self, store):
        for i in range(5):
            state = store.sweep_and_upsert(SIG_A, TrackerFamily.TILE, observe(i, None))
        assert state.rotating_mac_count == 0

    def test_blank_address_treated_as_absent(self, store):
        state = store.sweep_and_upsert(SIG_A, TrackerFamily.TILE, observe(0, '   '))
        assert state.rotating_mac_count == 0
        assert state.last_mac is None

    def test_returning_to_earlier_address_counts(self, store):
        for i, address in enumerate(['A', 'B', 'A']):
            state = store.sweep_and_upsert(SIG_A, TrackerFamily.FINDMY, observe(i, address))
        assert state.rotating_mac_count == 3

    def test_updates_seen_rssi_and_raw(self, store):
        store.sweep_and_upsert(SIG_A, TrackerFamily.FINDMY, observe(0, 'A', rssi=-80, raw=b'\x01'))
        state = store.sweep_and_upsert(SIG_A, TrackerFamily.FINDMY, observe(900, 'A', rssi=-50, raw=b'\xab\xcd'))
        assert state.last_seen_ms == 900
        assert state.last_rssi == -50
        assert state.last_raw_frame == 'abcd'
        assert state.rotating_mac_count == 1

    def test_entry_at_exact_ttl_survives(self, store):
        store.sweep_and_upsert(SIG_A, TrackerFamily.FINDMY, observe(0, 'A'))
        store.sweep_and_upsert(SIG_B, TrackerFamily.FINDMY, observe(20000, 'B'))
        assert SIG_A in store

    def test_entry_past_ttl_swept(self, store):
        store.sweep_and_upsert(SIG_A, TrackerFamily.FINDMY, observe(0, 'A'))
        store.sweep_and_upsert(SIG_B, TrackerFamily.FINDMY, observe(20001, 'B'))
        assert SIG_A not in store
        assert len(store) == 1

    def test_swept_signature_restarts_count(self, store):
        store.sweep_and_upsert(SIG_A, TrackerFamily.FINDMY, observe(0, 'A'))
        store.sweep_and_upsert(SIG_A, TrackerFamily.FINDMY, observe(100, 'B'))
        state = store.sweep_and_upsert(SIG_A, TrackerFamily.FINDMY, observe(30000, 'C'))
        assert state.rotating_mac_count == 1

    def test_returned_state_is_a_copy(self, store):
        state = store.sweep_and_upsert(SIG_A, TrackerFamily.FINDMY, observe(0, 'A'))
        state.rotating_mac_count = 99
        state.last_mac = 'Z'
        stored = store.get(SIG_A)
        assert stored.rotating_mac_count == 1
        assert stored.last_mac == 'A'

    def test_max_entries_evicts_least_recently_seen(self):
        store = TrackerStateStore(ttl_ms=20000, max_entries=2)
        store.sweep_and_upsert('1' * 40, TrackerFamily.TILE, observe(100))
        store.sweep_and_upsert('2' * 40, TrackerFamily.TILE, observe(200))
        store.sweep_and_upsert('1' * 40, TrackerFamily.TILE, observe(300))
        store.sweep_and_upsert('3' * 40, TrackerFamily.TILE, observe(400))

        assert len(store) == 2
        assert '2' * 40 not in store
        assert '1' * 40 in store
        assert '3' * 40 in store

    def test_zero_max_entries_disables_cap(self):
        store = TrackerStateStore(ttl_ms=20000, max_entries=0)
        assert store.max_entries is None
        for i in range(10):
            store.sweep_and_upsert(str(i) * 40, TrackerFamily.TILE, observe(i))
        assert len(store) == 10

    def test_snapshot_and_clear(self, store):
        store.sweep_and_upsert(SIG_A, TrackerFamily.FINDMY, observe(0, 'A'))
        store.sweep_and_upsert(SIG_B, TrackerFamily.FINDMY, observe(1, 'B'))
        assert {s.signature for s in store.snapshot()} == {SIG_A, SIG_B}

        store.clear()
        assert len(store) == 0
        assert store.get(SIG_A) is None
