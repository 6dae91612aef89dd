"""Mesh nodes: the central Server and battery Hives."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Set

from ..protocols.packet import ProtocolKey
from .geometry import BoundingBox, finite_point

# Half-size of the box a node occupies in the spatial index
NODE_PADDING_PX = 20.0

SERVER_ID = "Central Server"


def clamp_tx_dbm(value: float) -> float:
    return min(30.0, max(0.0, float(value)))


@dataclass(eq=False)
class Node:
    """Radio endpoint with per-node flood dedup state."""

    x: float
    y: float
    id: str
    tx_power_dbm: float = 14.0
    seen_data: Set[ProtocolKey] = field(default_factory=set)
    seen_ack: Set[ProtocolKey] = field(default_factory=set)

    is_server = False

    def __post_init__(self) -> None:
        self.x, self.y = finite_point(self.x, self.y)
        self.tx_power_dbm = clamp_tx_dbm(self.tx_power_dbm)

    def bbox(self) -> BoundingBox:
        return BoundingBox.around(self.x, self.y, NODE_PADDING_PX)

    def clear_dedup(self) -> None:
        self.seen_data.clear()
        self.seen_ack.clear()


@dataclass(eq=False)
class Server(Node):
    """Collector: terminal destination for DATA, origin of ACKs.

    ``seen_data`` doubles as the server-side delivery table.
    """

    x: float = 450.0
    y: float = 280.0
    id: str = SERVER_ID

    is_server = True


@dataclass(eq=False)
class Hive(Node):
    """Battery node that originates and relays messages.

    Parameters
    ----------
    amplitude : float
        Starting fade of waves emitted by this hive in simplified mode,
        clamped to [0.2, 2].
    """

    tx_power_dbm: float = 10.0
    amplitude: float = 1.0

    def __post_init__(self) -> None:
        super().__post_init__()
        self.amplitude = min(2.0, max(0.2, float(self.amplitude)))
