"""Free-space path loss and its inverse (line-of-sight range)."""

from __future__ import annotations

import numpy as np

from ..protocols.lora import sensitivity_dbm

FSPL_CONSTANT_DB = 32.44
MIN_DISTANCE_KM = 0.001


def free_space_path_loss(distance_m: np.ndarray | float, freq_mhz: float) -> np.ndarray:
    """Free-Space Path Loss (Friis).

    FSPL(dB) = 32.44 + 20·log10(f) + 20·log10(d)
    where *d* in km (floored at 0.001 km), *f* in MHz.
    """
    d_km = np.asarray(distance_m, dtype=np.float64) / 1000.0
    d_km = np.maximum(d_km, MIN_DISTANCE_KM)
    return FSPL_CONSTANT_DB + 20.0 * np.log10(freq_mhz) + 20.0 * np.log10(d_km)  # type: ignore[return-value]


def max_range_meters(
    spreading_factor: int,
    bandwidth_khz: float,
    tx_dbm: float,
    freq_mhz: float = 868.0,
) -> float:
    """Line-of-sight range at which FSPL exactly consumes the link budget.

    Solves ``tx - FSPL(d) = sensitivity`` for *d*; never below 1 m.
    """
    budget = tx_dbm - sensitivity_dbm(spreading_factor, bandwidth_khz)
    a = FSPL_CONSTANT_DB + 20.0 * np.log10(freq_mhz)
    d_km = 10.0 ** ((budget - a) / 20.0)
    return max(1.0, float(d_km) * 1000.0)
