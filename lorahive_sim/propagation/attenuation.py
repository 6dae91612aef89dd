"""Obstacle absorption, link budget and simplified-mode range helpers."""

from __future__ import annotations

import math

import numpy as np

from ..protocols.lora import range_factor
from .pathloss import free_space_path_loss

# Sector weight below which an obstacle is treated as a near-total block
BLOCKED_WEIGHT = 0.1
BLOCKED_LOSS_DB = 60.0

MIN_VISUAL_RADIUS_PX = 10.0
MAX_VISUAL_RADIUS_PX = 200_000.0


def attenuation_factor(absorption: float, thickness_m: float) -> float:
    """Beer-Lambert style amplitude factor ``exp(-k·t)``."""
    return math.exp(-absorption * max(0.0, thickness_m))


def obstacle_loss_db(sector_weight: float) -> float:
    """Convert a sector multiplier (0–1) into an extra loss in dB."""
    if sector_weight < BLOCKED_WEIGHT:
        return BLOCKED_LOSS_DB
    return -10.0 * math.log10(max(1e-6, sector_weight))


def received_power_dbm(
    tx_dbm: float,
    distance_m: float,
    freq_mhz: float,
    sector_weight: float = 1.0,
) -> float:
    """Link budget: ``tx − FSPL(d) − obstacle loss``."""
    pl = float(free_space_path_loss(max(1e-3, distance_m), freq_mhz))
    return tx_dbm - pl - obstacle_loss_db(sector_weight)


def visual_max_radius_px(range_m: float, meters_per_pixel: float) -> float:
    """Scene radius (px) covered by a transmission of *range_m* metres."""
    px = range_m / max(0.0001, meters_per_pixel)
    return float(np.clip(px, MIN_VISUAL_RADIUS_PX, MAX_VISUAL_RADIUS_PX))


# ----------------------------------------------------------------------
# Simplified (non dB) mode
# ----------------------------------------------------------------------

def legacy_range_px(base_range: float, sf: int, bw_khz: float, cr: int) -> float:
    return float(np.clip(base_range * range_factor(sf, bw_khz, cr), 80.0, 4000.0))


def legacy_rx_threshold(base_threshold: float, sf: int, bw_khz: float, cr: int) -> float:
    return float(np.clip(base_threshold / range_factor(sf, bw_khz, cr), 0.01, 0.2))
