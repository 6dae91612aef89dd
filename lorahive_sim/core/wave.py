"""In-flight transmissions (waves) and their expansion curve."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Set

import numpy as np

from ..protocols.packet import Payload, WaveKind
from .geometry import SECTORS, BoundingBox, bearing_sector


def ease(progress: float) -> float:
    """Normalised radius (0–1) after *progress* (0–1) of the wave duration.

    Three phases: a near-silent launch (first 20 %, scaled by 0.05), a
    quartic ramp up to 40 % of the radius by 60 % of the duration, then a
    decelerating completion to 1.
    """
    p = min(1.0, max(0.0, progress))
    if p < 0.2:
        return p * 0.05
    if p < 0.6:
        t = (p - 0.2) / 0.4
        return 0.01 + 0.39 * t ** 4
    t = (p - 0.6) / 0.4
    return 0.4 + 0.6 * (1.0 - (1.0 - t) ** 1.2)


@dataclass(eq=False)
class Wave:
    """One transmission attempt expanding from ``(x, y)``.

    ``sectors`` holds 72 independent multipliers (5° each) that obstacles
    only ever scale down; ``applied_obstacles`` and ``evaluated`` make
    obstacle attenuation and node reception happen at most once per wave.
    """

    x: float
    y: float
    emitter_id: str
    kind: WaveKind
    payload: Payload
    ttl: int
    max_radius: float
    start_ms: float
    fade: float = 1.0
    radius: float = 0.0
    last_update_ms: float = field(default=0.0)
    sectors: np.ndarray = field(default_factory=lambda: np.ones(SECTORS, dtype=np.float64))
    applied_obstacles: Set[int] = field(default_factory=set)
    evaluated: Set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        self.last_update_ms = self.start_ms

    @property
    def origin(self) -> str:
        """Node the logical message belongs to (DATA sender / ACK recipient)."""
        return self.payload.origin

    def elapsed_ms(self, now_ms: float) -> float:
        return now_ms - self.start_ms

    def bbox(self) -> BoundingBox:
        return BoundingBox.around(self.x, self.y, self.radius)

    def sector_toward(self, x: float, y: float) -> int:
        return bearing_sector(self.x, self.y, x, y)

    def attenuate(self, factor: float) -> None:
        self.sectors *= factor

    def view(self) -> dict:
        return {
            "x": self.x,
            "y": self.y,
            "radius": self.radius,
            "max_radius": self.max_radius,
            "fade": self.fade,
            "kind": self.kind.value,
            "ttl": self.ttl,
            "origin": self.origin,
            "seq": self.payload.seq,
            "emitter": self.emitter_id,
            "sectors": (self.fade * self.sectors).tolist(),
        }
