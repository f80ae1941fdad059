"""
Tracker protocol constants for the identity resolution engine.
"""

from __future__ import annotations

# =============================================================================
# COMPANY IDENTIFIERS (Bluetooth SIG assigned)
# =============================================================================

APPLE_COMPANY_ID = 0x004C
TILE_COMPANY_ID = 0x0131
SAMSUNG_COMPANY_ID = 0x0075

# =============================================================================
# SERVICE UUIDS (16-bit, lowercase)
# =============================================================================

FINDMY_SERVICE_UUID = 'fd44'
TILE_SERVICE_UUIDS = frozenset({'feed', 'fee7'})

# Bluetooth Base UUID suffix, used to shorten 128-bit UUIDs to 16-bit form
BLUETOOTH_BASE_UUID_SUFFIX = '-0000-1000-8000-00805f9b34fb'

# =============================================================================
# FIND MY MANUFACTURER FRAMES
# =============================================================================

# Accepted Apple manufacturer payload length range (inclusive)
FINDMY_MFG_MIN_LEN = 20
FINDMY_MFG_MAX_LEN = 28

# Known Find My / offline finding message-type markers (first two bytes)
FINDMY_MFG_MARKERS = frozenset({
    bytes([0x12, 0x19]),
    bytes([0x12, 0x02]),
    bytes([0x10, 0x05]),
})

# =============================================================================
# STABLE PREFIX LENGTHS
# =============================================================================

FINDMY_STABLE_PREFIX_LEN = 4
TILE_STABLE_PREFIX_LEN = 6
SAMSUNG_STABLE_PREFIX_LEN = 6

# =============================================================================
# STATE TABLE
# =============================================================================

# Silence interval after which a tracker is swept (milliseconds)
FINDMY_TTL_MS = 20_000
TILE_SAMSUNG_TTL_MS = 30_000

# Hard cap on entries per state table (0 disables the cap)
DEFAULT_MAX_ENTRIES = 512

# =============================================================================
# DISTANCE
# =============================================================================

# Assumed RSSI at 1 meter (dBm)
DEFAULT_REFERENCE_POWER_DBM = -59

# Log-distance path-loss exponent (free space)
PATH_LOSS_EXPONENT = 2.0

# =============================================================================
# SCANNER
# =============================================================================

DEFAULT_EVENT_QUEUE_SIZE = 1000

# Poll interval for the bleak scan loop (seconds)
BLEAK_POLL_INTERVAL = 0.1
BLEAK_STOP_TIMEOUT = 2.0
BLEAK_START_TIMEOUT = 10.0

# AD structure types used when rebuilding raw advertisement bytes
AD_TYPE_SERVICE_UUIDS_16 = 0x03
AD_TYPE_SERVICE_DATA_16 = 0x16
AD_TYPE_MANUFACTURER_DATA = 0xFF
