"""Simulation parameters, clamped to their valid interval on every assignment."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, fields
from typing import Any, Callable, Dict

from .protocols.lora import LoRaParams, clamp_coding_rate, clamp_spreading_factor, snap_bandwidth

# Fixed time for a wave to reach its maximum radius
WAVE_DURATION_MS = 10_000.0
# Frame period the simplified-mode fade rate is expressed against (~60 Hz)
FRAME_MS = 16.67


def _bounded(lo: float, hi: float) -> Callable[[Any, Any], float]:
    def clamp(value: Any, current: Any) -> float:
        try:
            v = float(value)
        except (TypeError, ValueError):
            return current
        if not math.isfinite(v):
            return current
        return min(hi, max(lo, v))

    return clamp


def _bounded_int(lo: int, hi: int) -> Callable[[Any, Any], int]:
    inner = _bounded(lo, hi)

    def clamp(value: Any, current: Any) -> int:
        return int(round(inner(value, current)))

    return clamp


_CLAMPS: Dict[str, Callable[[Any, Any], Any]] = {
    "spreading_factor": lambda v, cur: clamp_spreading_factor(v, fallback=cur),
    "bandwidth_khz": lambda v, cur: snap_bandwidth(v),
    "coding_rate": lambda v, cur: clamp_coding_rate(v, fallback=cur),
    "max_retrans": _bounded_int(0, 10),
    "meters_per_pixel": _bounded(0.001, 10_000.0),
    "frequency_mhz": _bounded(100.0, 10_000.0),
    "tx_dbm_default": _bounded(0.0, 30.0),
    "realistic": lambda v, cur: bool(v),
    "attenuation": _bounded(0.0005, 0.05),
    "base_range": _bounded(80.0, 4000.0),
    "base_rx_threshold": _bounded(0.005, 0.3),
}


@dataclass
class SimulationConfig:
    """Radio and protocol knobs of a simulation.

    Out-of-range numbers are clamped, non-finite numbers keep the previous
    value, and bandwidth snaps to the nearest of 125/250/500 kHz.

    Parameters
    ----------
    spreading_factor : int
        LoRa SF, 7–12.
    bandwidth_khz : int
        125, 250 or 500.
    coding_rate : int
        4/x denominator, 5–8.
    max_retrans : int
        TTL given to freshly originated DATA, 0–10.
    meters_per_pixel : float
        Scene scale.
    frequency_mhz : float
        Carrier frequency.
    tx_dbm_default : float
        Power of new hives and fallback when an emitter is gone.
    realistic : bool
        dB link budget when True, simplified visual decay otherwise.
    attenuation, base_range, base_rx_threshold : float
        Simplified-mode fade rate per frame, base range (px) and
        reception threshold.
    """

    spreading_factor: int = 7
    bandwidth_khz: int = 125
    coding_rate: int = 5
    max_retrans: int = 2
    meters_per_pixel: float = 2.0
    frequency_mhz: float = 868.0
    tx_dbm_default: float = 10.0
    realistic: bool = True
    attenuation: float = 0.005
    base_range: float = 340.0
    base_rx_threshold: float = 0.08

    def __setattr__(self, name: str, value: Any) -> None:
        clamp = _CLAMPS.get(name)
        if clamp is not None:
            current = self.__dict__.get(name)
            if current is None:
                current = getattr(type(self), name)
            value = clamp(value, current)
        super().__setattr__(name, value)

    @property
    def lora(self) -> LoRaParams:
        return LoRaParams(self.spreading_factor, self.bandwidth_khz, self.coding_rate)

    def update(self, **changes: Any) -> "SimulationConfig":
        """Assign several known fields at once; unknown names raise ``TypeError``."""
        known = {f.name for f in fields(self)}
        for name, value in changes.items():
            if name not in known:
                raise TypeError(f"Unknown setting '{name}'")
            setattr(self, name, value)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
