"""LoRa physical-layer parameters: sensitivity table and legacy range scaling."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Tuple

# Practical receiver sensitivity per spreading factor (dBm) at 125 kHz.
# Worse than datasheet figures to account for implementation losses.
SF_SENSITIVITY: Dict[int, float] = {
    7: -118.0,
    8: -121.0,
    9: -124.0,
    10: -127.0,
    11: -129.5,
    12: -132.0,
}

BANDWIDTHS_KHZ: Tuple[int, ...] = (125, 250, 500)

# Sensitivity penalty relative to 125 kHz
BW_CORRECTION_DB: Dict[int, float] = {125: 0.0, 250: 3.0, 500: 6.0}

SF_RANGE = (7, 12)
CR_RANGE = (5, 8)


def _finite(value: object) -> bool:
    try:
        return math.isfinite(float(value))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return False


def clamp_spreading_factor(sf: object, fallback: int = 7) -> int:
    if not _finite(sf):
        return fallback
    return int(min(SF_RANGE[1], max(SF_RANGE[0], round(float(sf)))))  # type: ignore[arg-type]


def clamp_coding_rate(cr: object, fallback: int = 5) -> int:
    """Coding rate denominator, i.e. 5 means 4/5."""
    if not _finite(cr):
        return fallback
    return int(min(CR_RANGE[1], max(CR_RANGE[0], round(float(cr)))))  # type: ignore[arg-type]


def snap_bandwidth(bw_khz: object) -> int:
    """Snap to the nearest supported bandwidth; anything unusable becomes 125."""
    if not _finite(bw_khz):
        return 125
    value = float(bw_khz)  # type: ignore[arg-type]
    if value <= 0:
        return 125
    return min(BANDWIDTHS_KHZ, key=lambda b: abs(b - value))


def sensitivity_dbm(spreading_factor: int, bandwidth_khz: float) -> float:
    """Receiver sensitivity for a SF/BW combination."""
    s = SF_SENSITIVITY.get(int(spreading_factor), -125.0)
    return s + BW_CORRECTION_DB.get(int(bandwidth_khz), 0.0)


def range_factor(spreading_factor: int, bandwidth_khz: float, coding_rate: int) -> float:
    """Relative range multiplier used by the simplified propagation mode.

    Higher SF and CR stretch the range, wider bandwidth shrinks it.
    """
    sf = clamp_spreading_factor(spreading_factor)
    sf_f = 1.0 + (sf - 7) * 0.24
    bw = int(bandwidth_khz)
    bw_f = 0.9 if bw == 500 else (1.0 if bw == 250 else 1.2)
    cr = clamp_coding_rate(coding_rate)
    cr_f = 1.0 + (cr - 5) * 0.05
    return sf_f * bw_f * cr_f


@dataclass
class LoRaParams:
    """Modulation settings shared by every node of the mesh.

    Parameters
    ----------
    spreading_factor : int
        SF7–SF12 (default SF7, European default).
    bandwidth_khz : int
        125, 250 or 500 kHz.
    coding_rate : int
        Denominator of the 4/x coding rate, 5–8.
    """

    spreading_factor: int = 7
    bandwidth_khz: int = 125
    coding_rate: int = 5

    def __post_init__(self) -> None:
        self.spreading_factor = clamp_spreading_factor(self.spreading_factor)
        self.bandwidth_khz = snap_bandwidth(self.bandwidth_khz)
        self.coding_rate = clamp_coding_rate(self.coding_rate)

    @property
    def sensitivity_dbm(self) -> float:
        return sensitivity_dbm(self.spreading_factor, self.bandwidth_khz)

    @property
    def range_factor(self) -> float:
        return range_factor(self.spreading_factor, self.bandwidth_khz, self.coding_rate)
