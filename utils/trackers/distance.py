"""
Distance estimation for tracker advertisements.

Log-distance path-loss model with a fixed exponent. Results are rough
order-of-magnitude estimates, not calibrated measurements.
"""

from __future__ import annotations

from enum import Enum

from .constants import DEFAULT_REFERENCE_POWER_DBM, PATH_LOSS_EXPONENT


class ProximityBand(str, Enum):
    """Proximity band classifications."""
    IMMEDIATE = 'immediate'  # < 1m
    NEAR = 'near'           # 1-3m
    FAR = 'far'             # 3-10m
    UNKNOWN = 'unknown'     # Beyond useful range

    def __str__(self) -> str:
        return self.value


def estimate_distance(
    rssi: int,
    reference_power_dbm: int = DEFAULT_REFERENCE_POWER_DBM,
) -> float:
    """
    Estimate distance in meters from an RSSI sample.

    Formula: d = 10^((reference_power - rssi) / (10 * n)), n = 2.0

    Args:
        rssi: Received signal strength (dBm).
        reference_power_dbm: Assumed RSSI at 1 meter (dBm).

    Returns:
        Estimated distance in meters. Not clamped.
    """
    exponent = (reference_power_dbm - rssi) / (10 * PATH_LOSS_EXPONENT)
    return 10 ** exponent


def classify_proximity_band(distance_m: float) -> ProximityBand:
    """Classify an estimated distance into a proximity band."""
    if distance_m < 1.0:
        return ProximityBand.IMMEDIATE
    elif distance_m < 3.0:
        return ProximityBand.NEAR
    elif distance_m < 10.0:
        return ProximityBand.FAR
    return ProximityBand.UNKNOWN
