"""Scene container: hives, server and material obstacles with spatial indexes."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

from .device import Hive, Node, Server
from .geometry import BoundingBox, Point, circle_intersects_polygon, finite_point
from .spatial_index import SpatialIndex

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Material presets: name → (absorption α in 1/m, display loss in dB)
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Material:
    alpha: float
    loss_db: float


MATERIALS: Dict[str, Material] = {
    "brick": Material(0.35, 1.5),
    "concrete": Material(1.15, 5.0),
    "forest": Material(0.15, 0.65),
    "field": Material(0.03, 0.13),
    "water": Material(3.0, 13.0),
    "rock": Material(1.8, 7.8),
    "urban_mix": Material(0.25, 1.1),
    "metal": Material(2.5, 10.8),
    "wood": Material(0.05, 0.2),
    "sand": Material(0.08, 0.35),
    "default": Material(0.1, 0.43),
}

# Absorption used when a tag is not in MATERIALS
FALLBACK_ALPHA = 0.6

MIN_ABSORPTION = 0.00001
MAX_ABSORPTION = 5.0
MIN_CIRCLE_RADIUS = 5.0
MAX_CIRCLE_RADIUS = 240.0


def material_alpha(material: str) -> float:
    preset = MATERIALS.get(material)
    return preset.alpha if preset else FALLBACK_ALPHA


def clamp_absorption(value: float) -> float:
    return min(MAX_ABSORPTION, max(MIN_ABSORPTION, float(value)))


def clamp_loss(value: float) -> float:
    return min(0.95, max(0.0, float(value)))


def lookup_material(material: str) -> Tuple[str, float]:
    key = material.lower()
    preset = MATERIALS.get(key)
    if preset is None:
        raise ValueError(
            f"Unknown material '{material}'. Choose from: " + ", ".join(sorted(MATERIALS))
        )
    return key, preset.alpha


@dataclass(eq=False)
class Obstacle:
    """Common obstacle attributes.

    ``absorption`` is the attenuation coefficient α (per metre) driving the
    radio model; ``loss`` is a display-only fraction kept for collaborators
    that render the scene. Shape geometry lives on :class:`CircleObstacle`
    and :class:`PolygonObstacle`.
    """

    id: int
    material: str
    absorption: float
    loss: float

    def _clamp_common(self) -> None:
        self.absorption = clamp_absorption(self.absorption)
        self.loss = clamp_loss(self.loss)


@dataclass(eq=False)
class CircleObstacle(Obstacle):
    x: float = 0.0
    y: float = 0.0
    radius: float = 40.0

    def __post_init__(self) -> None:
        self._clamp_common()
        self.x, self.y = finite_point(self.x, self.y)
        radius = float(self.radius)
        if math.isnan(radius):
            raise ValueError("Circle radius must be a number")
        self.radius = min(MAX_CIRCLE_RADIUS, max(MIN_CIRCLE_RADIUS, radius))

    def bbox(self) -> BoundingBox:
        return BoundingBox.around(self.x, self.y, self.radius)

    def thickness_px(self) -> float:
        # Diameter as a rough path length through the obstacle
        return 2.0 * self.radius

    def touches_disc(self, x: float, y: float, r: float) -> bool:
        return math.hypot(x - self.x, y - self.y) <= r + self.radius

    def contains(self, x: float, y: float) -> bool:
        return (x - self.x) ** 2 + (y - self.y) ** 2 <= self.radius ** 2

    def translate(self, dx: float, dy: float) -> None:
        self.x, self.y = finite_point(self.x + dx, self.y + dy)


@dataclass(eq=False)
class PolygonObstacle(Obstacle):
    points: List[Point] = field(default_factory=list)
    bounds: BoundingBox = field(init=False)

    def __post_init__(self) -> None:
        if len(self.points) < 3:
            raise ValueError("A polygon obstacle needs at least 3 vertices")
        self._clamp_common()
        self.points = [finite_point(px, py) for px, py in self.points]
        self.bounds = BoundingBox.of_points(self.points)

    def bbox(self) -> BoundingBox:
        return self.bounds

    def thickness_px(self) -> float:
        # Half the smaller bounding dimension
        return 0.5 * min(self.bounds.width, self.bounds.height)

    def touches_disc(self, x: float, y: float, r: float) -> bool:
        return circle_intersects_polygon(x, y, r, self.points)

    def contains(self, x: float, y: float) -> bool:
        return circle_intersects_polygon(x, y, 0.0, self.points)

    def translate(self, dx: float, dy: float) -> None:
        self.points = [finite_point(px + dx, py + dy) for px, py in self.points]
        self.bounds = BoundingBox.of_points(self.points)


AnyObstacle = Union[CircleObstacle, PolygonObstacle]


class Environment:
    """Owned collections of nodes and obstacles plus their spatial indexes.

    Obstacle ids are handed out from a monotonically increasing counter so
    waves can refer to obstacles by a stable integer.
    """

    def __init__(self, server: Optional[Server] = None) -> None:
        self.server: Server = server or Server()
        self.hives: List[Hive] = []
        self.obstacles: List[AnyObstacle] = []
        self.node_index = SpatialIndex()
        self.obstacle_index = SpatialIndex()
        self._next_obstacle_id = 1
        self.node_index.insert(self.server)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def nodes(self) -> Iterator[Node]:
        yield self.server
        yield from self.hives

    def resolve(self, node_id: str) -> Optional[Node]:
        if node_id == self.server.id:
            return self.server
        for hive in self.hives:
            if hive.id == node_id:
                return hive
        return None

    def obstacle(self, obstacle_id: int) -> Optional[AnyObstacle]:
        for ob in self.obstacles:
            if ob.id == obstacle_id:
                return ob
        return None

    def next_hive_id(self) -> str:
        taken = {h.id for h in self.hives}
        n = len(self.hives) + 1
        while f"Hive {n}" in taken:
            n += 1
        return f"Hive {n}"

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def add_hive(self, hive: Hive) -> Hive:
        if self.resolve(hive.id) is not None:
            raise ValueError(f"Duplicate node id '{hive.id}'")
        self.hives.append(hive)
        self.node_index.insert(hive)
        return hive

    def remove_hive(self, hive: Hive) -> None:
        self.hives = [h for h in self.hives if h is not hive]
        self.node_index.remove(hive)

    def move_node(self, node: Node, x: float, y: float) -> None:
        node.x, node.y = finite_point(x, y)
        self.node_index.update(node)

    def replace_server(self, server: Server) -> None:
        self.node_index.remove(self.server)
        self.server = server
        self.node_index.insert(server)

    # ------------------------------------------------------------------
    # Obstacles
    # ------------------------------------------------------------------

    def allocate_obstacle_id(self) -> int:
        oid = self._next_obstacle_id
        self._next_obstacle_id += 1
        return oid

    def add_obstacle(self, obstacle: AnyObstacle) -> AnyObstacle:
        """Add an obstacle, taking its id into account for future allocations."""
        self._next_obstacle_id = max(self._next_obstacle_id, obstacle.id + 1)
        self.obstacles.append(obstacle)
        self.obstacle_index.insert(obstacle)
        logger.debug(
            "Added %s obstacle %d: material=%s, alpha=%.3f",
            type(obstacle).__name__, obstacle.id, obstacle.material, obstacle.absorption,
        )
        return obstacle

    def circle(
        self,
        x: float,
        y: float,
        radius: float = 40.0,
        material: str = "brick",
        absorption: Optional[float] = None,
    ) -> CircleObstacle:
        """Create and add a circular obstacle from a preset material.

        Raises
        ------
        ValueError
            If *material* is not a known preset.
        """
        key, alpha = lookup_material(material)
        k = alpha if absorption is None else absorption
        ob = CircleObstacle(
            id=self.allocate_obstacle_id(), material=key, absorption=k, loss=k * 0.1,
            x=x, y=y, radius=radius,
        )
        self.add_obstacle(ob)
        return ob

    def polygon(
        self,
        points: Sequence[Point],
        material: str = "brick",
        absorption: Optional[float] = None,
    ) -> PolygonObstacle:
        """Create and add a polygon obstacle from a preset material.

        Raises
        ------
        ValueError
            If *material* is unknown or fewer than 3 vertices are given.
        """
        key, alpha = lookup_material(material)
        k = alpha if absorption is None else absorption
        ob = PolygonObstacle(
            id=self.allocate_obstacle_id(), material=key, absorption=k, loss=k * 0.1,
            points=list(points),
        )
        self.add_obstacle(ob)
        return ob

    def remove_obstacle(self, obstacle: AnyObstacle) -> None:
        self.obstacles = [o for o in self.obstacles if o is not obstacle]
        self.obstacle_index.remove(obstacle)

    def move_obstacle(self, obstacle: AnyObstacle, dx: float, dy: float) -> None:
        obstacle.translate(dx, dy)
        self.obstacle_index.update(obstacle)

    def obstacles_near(self, rect: BoundingBox) -> List[AnyObstacle]:
        return self.obstacle_index.query(rect)

    def nodes_near(self, rect: BoundingBox) -> List[Node]:
        return self.node_index.query(rect)

    # ------------------------------------------------------------------
    # Utility
    # ------------------------------------------------------------------

    def clear(self) -> None:
        self.hives = []
        self.obstacles = []
        self.node_index.clear()
        self.obstacle_index.clear()
        self._next_obstacle_id = 1
        self.server.clear_dedup()
        self.node_index.insert(self.server)

    def world_bounds(self) -> BoundingBox:
        boxes = [n.bbox() for n in self.nodes()] + [o.bbox() for o in self.obstacles]
        return BoundingBox(
            min(b.min_x for b in boxes),
            min(b.min_y for b in boxes),
            max(b.max_x for b in boxes),
            max(b.max_y for b in boxes),
        )
