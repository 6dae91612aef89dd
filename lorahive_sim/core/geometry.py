"""Planar geometry helpers: bounding boxes, polygon tests, angular sectors."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

Point = Tuple[float, float]

SECTORS = 72
SECTOR_RAD = 2.0 * math.pi / SECTORS


def finite_point(x: float, y: float) -> Point:
    """Return ``(x, y)`` as floats; raises ValueError on NaN or infinity."""
    fx, fy = float(x), float(y)
    if not (math.isfinite(fx) and math.isfinite(fy)):
        raise ValueError(f"Coordinates must be finite, got ({x}, {y})")
    return fx, fy


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned rectangle with closed edges."""

    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @classmethod
    def around(cls, x: float, y: float, half: float) -> "BoundingBox":
        return cls(x - half, y - half, x + half, y + half)

    @classmethod
    def of_points(cls, points: Sequence[Point]) -> "BoundingBox":
        arr = np.asarray(points, dtype=np.float64)
        lo = arr.min(axis=0)
        hi = arr.max(axis=0)
        return cls(float(lo[0]), float(lo[1]), float(hi[0]), float(hi[1]))

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center(self) -> Point:
        return ((self.min_x + self.max_x) / 2.0, (self.min_y + self.max_y) / 2.0)

    def intersects(self, other: "BoundingBox") -> bool:
        return not (
            self.max_x < other.min_x
            or other.max_x < self.min_x
            or self.max_y < other.min_y
            or other.max_y < self.min_y
        )

    def as_array(self) -> np.ndarray:
        return np.array([self.min_x, self.min_y, self.max_x, self.max_y], dtype=np.float64)


def point_in_polygon(x: float, y: float, points: Sequence[Point]) -> bool:
    """Even-odd ray casting test."""
    inside = False
    n = len(points)
    j = n - 1
    for i in range(n):
        xi, yi = points[i]
        xj, yj = points[j]
        if (yi > y) != (yj > y):
            x_cross = (xj - xi) * (y - yi) / (yj - yi) + xi
            if x < x_cross:
                inside = not inside
        j = i
    return inside


def point_segment_distance_sq(px: float, py: float, a: Point, b: Point) -> float:
    """Squared distance from (px, py) to the closest point of segment a→b."""
    cx = b[0] - a[0]
    cy = b[1] - a[1]
    len_sq = cx * cx + cy * cy
    t = -1.0
    if len_sq != 0.0:
        t = ((px - a[0]) * cx + (py - a[1]) * cy) / len_sq
    if t < 0.0:
        qx, qy = a
    elif t > 1.0:
        qx, qy = b
    else:
        qx, qy = a[0] + t * cx, a[1] + t * cy
    dx = px - qx
    dy = py - qy
    return dx * dx + dy * dy


def circle_intersects_polygon(cx: float, cy: float, r: float, points: Sequence[Point]) -> bool:
    """True if the disc (cx, cy, r) touches the polygon interior or any edge."""
    if point_in_polygon(cx, cy, points):
        return True
    r_sq = r * r
    n = len(points)
    for i in range(n):
        if point_segment_distance_sq(cx, cy, points[i], points[(i + 1) % n]) <= r_sq:
            return True
    return False


def polygon_area(points: Sequence[Point]) -> float:
    """Shoelace area of a ring (closed or open)."""
    arr = np.asarray(points, dtype=np.float64)
    if len(arr) < 3:
        return 0.0
    x = arr[:, 0]
    y = arr[:, 1]
    return float(abs(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))) / 2.0)


def angle_to_sector(theta: float) -> int:
    """Map an angle in radians onto one of the :data:`SECTORS` slices."""
    t = theta % (2.0 * math.pi)
    return int(t // SECTOR_RAD) % SECTORS


def bearing_sector(x0: float, y0: float, x1: float, y1: float) -> int:
    return angle_to_sector(math.atan2(y1 - y0, x1 - x0))
