from .geometry import BoundingBox, SECTORS
from .spatial_index import SpatialIndex
from .device import Node, Server, Hive
from .environment import (
    Environment, Obstacle, CircleObstacle, PolygonObstacle, MATERIALS, material_alpha,
)
from .wave import Wave, ease
from .simulation import Simulation, UnknownNodeError, UnknownObstacleError

__all__ = [
    "BoundingBox", "SECTORS", "SpatialIndex",
    "Node", "Server", "Hive",
    "Environment", "Obstacle", "CircleObstacle", "PolygonObstacle", "MATERIALS", "material_alpha",
    "Wave", "ease",
    "Simulation", "UnknownNodeError", "UnknownObstacleError",
]
