"""Tick-driven wavefront engine: expansion, obstacle attenuation, reception."""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from ..analysis.statistics import Statistics
from ..config import FRAME_MS, WAVE_DURATION_MS, SimulationConfig
from ..propagation.attenuation import (
    attenuation_factor,
    legacy_range_px,
    legacy_rx_threshold,
    received_power_dbm,
    visual_max_radius_px,
)
from ..propagation.pathloss import max_range_meters
from ..protocols.flood import FloodProtocol
from ..protocols.lora import sensitivity_dbm
from ..protocols.packet import Payload, WaveKind
from .device import Hive, Node, Server
from .environment import (
    AnyObstacle,
    Environment,
    PolygonObstacle,
    lookup_material,
    clamp_absorption,
    clamp_loss,
    material_alpha,
)
from .geometry import Point
from .wave import Wave, ease

logger = logging.getLogger(__name__)

# Waves linger slightly past full radius before being dropped
LIFESPAN_PROGRESS = 1.1


class UnknownNodeError(KeyError):
    """Raised when an operation names a node that is not in the scene."""


class UnknownObstacleError(KeyError):
    """Raised when an operation names an obstacle id that is not in the scene."""


class Simulation:
    """Single owner of the mesh state, advanced one step per :meth:`tick`.

    Parameters
    ----------
    env : Environment, optional
        Scene to simulate; a new empty one (server only) by default.
    config : SimulationConfig, optional
        Radio/protocol parameters.

    Notes
    -----
    Waves created while a tick runs (relays, ACKs) are appended to
    :attr:`waves` but first advanced on the following tick.
    """

    def __init__(
        self,
        env: Optional[Environment] = None,
        config: Optional[SimulationConfig] = None,
    ) -> None:
        self.env = env or Environment()
        self.config = config or SimulationConfig()
        self.stats = Statistics()
        self.waves: List[Wave] = []
        self.protocol = FloodProtocol(self)
        self.now_ms = 0.0

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def server(self) -> Server:
        return self.env.server

    @property
    def hives(self) -> List[Hive]:
        return self.env.hives

    @property
    def obstacles(self) -> List[AnyObstacle]:
        return self.env.obstacles

    def nodes(self) -> List[Node]:
        return list(self.env.nodes())

    def node(self, node_id: str) -> Node:
        node = self.env.resolve(node_id)
        if node is None:
            raise UnknownNodeError(node_id)
        return node

    def obstacle(self, obstacle_id: int) -> AnyObstacle:
        ob = self.env.obstacle(obstacle_id)
        if ob is None:
            raise UnknownObstacleError(obstacle_id)
        return ob

    def wave_views(self) -> List[dict]:
        return [w.view() for w in self.waves]

    def sensitivity_dbm(self) -> float:
        return sensitivity_dbm(self.config.spreading_factor, self.config.bandwidth_khz)

    def los_range_m(self, tx_dbm: Optional[float] = None) -> float:
        """Obstacle-free range (m) at the current radio settings."""
        cfg = self.config
        tx = cfg.tx_dbm_default if tx_dbm is None else tx_dbm
        return max_range_meters(cfg.spreading_factor, cfg.bandwidth_khz, tx, cfg.frequency_mhz)

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def max_radius_for(self, node: Node) -> float:
        cfg = self.config
        if not cfg.realistic:
            return legacy_range_px(
                cfg.base_range, cfg.spreading_factor, cfg.bandwidth_khz, cfg.coding_rate
            )
        return visual_max_radius_px(self.los_range_m(node.tx_power_dbm), cfg.meters_per_pixel)

    def emit(
        self,
        node_id: str,
        kind: WaveKind | str = WaveKind.DATA,
        payload: Optional[Payload] = None,
        ttl: Optional[int] = None,
        now_ms: Optional[float] = None,
    ) -> Wave:
        """Start one wave from *node_id*.

        Without *payload* a new DATA message is originated (fresh sequence
        number, counted in ``data_sent``). *ttl* defaults to
        ``config.max_retrans``. *now_ms* is the emission time on the clock
        passed to :meth:`tick`; it defaults to the time of the last tick,
        so callers on a wall clock should pass it before their first tick.

        Raises
        ------
        UnknownNodeError
            If *node_id* is not in the scene.
        ValueError
            If an ACK is requested without a payload.
        """
        node = self.node(node_id)
        kind = WaveKind(kind)
        start_ms = self.now_ms if now_ms is None else float(now_ms)
        if not math.isfinite(start_ms):
            raise ValueError(f"Emission time must be finite, got {now_ms}")
        if payload is None:
            if kind is WaveKind.ACK:
                raise ValueError("An ACK wave needs the payload it acknowledges")
            payload = self.protocol.originate(node, start_ms)
        ttl = self.config.max_retrans if ttl is None else int(ttl)
        wave = Wave(
            x=node.x,
            y=node.y,
            emitter_id=node.id,
            kind=kind,
            payload=payload,
            ttl=ttl,
            max_radius=self.max_radius_for(node),
            start_ms=start_ms,
            fade=getattr(node, "amplitude", 1.0),
        )
        self.waves.append(wave)
        logger.info(
            "%s emits %s seq:%d TTL=%d visualRange≈%d m",
            node.id, kind.value, payload.seq, ttl,
            int(wave.max_radius * self.config.meters_per_pixel),
        )
        return wave

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def _alive(self, wave: Wave, now_ms: float) -> bool:
        if wave.ttl < 0:
            return False
        if self.config.realistic:
            return wave.elapsed_ms(now_ms) / WAVE_DURATION_MS < LIFESPAN_PROGRESS
        return wave.fade > 0.0

    def tick(self, now_ms: float) -> None:
        """Advance every live wave by one step at wall-clock *now_ms*."""
        self.now_ms = now_ms
        self.waves = [w for w in self.waves if self._alive(w, now_ms)]
        for wave in list(self.waves):
            self._advance(wave, now_ms)
            self._apply_obstacles(wave)
            self._receive(wave, now_ms)

    def _advance(self, wave: Wave, now_ms: float) -> None:
        cap = wave.max_radius
        progress = min(1.0, wave.elapsed_ms(now_ms) / WAVE_DURATION_MS)
        wave.radius = min(cap, cap * ease(progress))
        if self.config.realistic:
            wave.fade = max(0.05, 1.0 - wave.radius / cap)
        else:
            dt = now_ms - wave.last_update_ms
            wave.fade = max(0.0, wave.fade - self.config.attenuation * (dt / FRAME_MS))
        wave.last_update_ms = now_ms

    def _apply_obstacles(self, wave: Wave) -> None:
        """Scale every sector by each newly touched obstacle's absorption.

        The whole wave is attenuated, not just the sectors the obstacle
        subtends.
        """
        mpp = self.config.meters_per_pixel
        for ob in self.env.obstacles_near(wave.bbox()):
            if ob.id in wave.applied_obstacles:
                continue
            if not ob.touches_disc(wave.x, wave.y, wave.radius):
                continue
            wave.attenuate(attenuation_factor(ob.absorption, ob.thickness_px() * mpp))
            wave.applied_obstacles.add(ob.id)

    def _receive(self, wave: Wave, now_ms: float) -> None:
        for node in self.env.nodes_near(wave.bbox()):
            if node.id in wave.evaluated:
                continue
            if node.is_server and wave.kind is not WaveKind.DATA:
                continue
            d = math.hypot(node.x - wave.x, node.y - wave.y)
            if not math.isfinite(d) or d > wave.radius:
                continue
            wave.evaluated.add(node.id)
            if node.id == wave.emitter_id:
                continue
            if not self.can_receive(wave, node, d):
                self.stats.shadow_drops += 1
                if node.is_server:
                    self.stats.server_shadow_drops += 1
                logger.debug("%s misses %s seq:%d (shadow)", node.id, wave.kind.value, wave.payload.seq)
                continue
            self.protocol.on_receive(node, wave, now_ms)

    def can_receive(self, wave: Wave, node: Node, distance_px: Optional[float] = None) -> bool:
        """Reception test for *node* against the current state of *wave*."""
        cfg = self.config
        weight = float(wave.sectors[wave.sector_toward(node.x, node.y)])
        if not cfg.realistic:
            threshold = legacy_rx_threshold(
                cfg.base_rx_threshold, cfg.spreading_factor, cfg.bandwidth_khz, cfg.coding_rate
            )
            return wave.fade * weight >= threshold
        if distance_px is None:
            distance_px = math.hypot(node.x - wave.x, node.y - wave.y)
        emitter = self.env.resolve(wave.emitter_id)
        tx = emitter.tx_power_dbm if emitter is not None else cfg.tx_dbm_default
        rx = received_power_dbm(tx, distance_px * cfg.meters_per_pixel, cfg.frequency_mhz, weight)
        return rx >= self.sensitivity_dbm()

    # ------------------------------------------------------------------
    # Scene mutation
    # ------------------------------------------------------------------

    def add_hive(
        self,
        x: float,
        y: float,
        hive_id: Optional[str] = None,
        tx_power_dbm: Optional[float] = None,
        amplitude: float = 1.0,
    ) -> Hive:
        hive = Hive(
            x=float(x),
            y=float(y),
            id=hive_id or self.env.next_hive_id(),
            tx_power_dbm=self.config.tx_dbm_default if tx_power_dbm is None else tx_power_dbm,
            amplitude=amplitude,
        )
        return self.env.add_hive(hive)

    def remove_hive(self, hive_id: str) -> None:
        node = self.node(hive_id)
        if node.is_server:
            raise ValueError("The server cannot be removed")
        self.env.remove_hive(node)  # type: ignore[arg-type]

    def move_node(self, node_id: str, x: float, y: float) -> None:
        self.env.move_node(self.node(node_id), x, y)

    def add_circle_obstacle(
        self,
        x: float,
        y: float,
        radius: float = 40.0,
        material: str = "brick",
        absorption: Optional[float] = None,
    ) -> AnyObstacle:
        return self.env.circle(x, y, radius, material, absorption)

    def add_polygon_obstacle(
        self,
        points: Sequence[Point],
        material: str = "brick",
        absorption: Optional[float] = None,
    ) -> AnyObstacle:
        return self.env.polygon(points, material, absorption)

    def remove_obstacle(self, obstacle_id: int) -> None:
        self.env.remove_obstacle(self.obstacle(obstacle_id))

    def move_obstacle(self, obstacle_id: int, dx: float, dy: float) -> None:
        self.env.move_obstacle(self.obstacle(obstacle_id), dx, dy)

    def set_obstacle_material(
        self,
        obstacle_id: int,
        material: str,
        absorption: Optional[float] = None,
        loss: Optional[float] = None,
    ) -> AnyObstacle:
        """Retag an obstacle; absorption and loss follow the material preset.

        Raises
        ------
        ValueError
            If *material* is not a known preset.
        """
        ob = self.obstacle(obstacle_id)
        key, alpha = lookup_material(material)
        ob.material = key
        ob.absorption = clamp_absorption(alpha if absorption is None else absorption)
        ob.loss = clamp_loss(ob.absorption * 0.1 if loss is None else loss)
        return ob

    def configure(self, **changes: Any) -> SimulationConfig:
        """Update settings; a new default TX power also applies to the server."""
        self.config.update(**changes)
        if "tx_dbm_default" in changes:
            self.server.tx_power_dbm = self.config.tx_dbm_default
        return self.config

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    def ingest_batch(self, items: Iterable[Any]) -> int:
        """Integrate one batch of parsed geo features.

        Points named ``server`` relocate the server, other points become
        hives; polygons with at least 3 vertices become obstacles. Every
        item is fully registered (collections and indexes) before the next
        one. Returns the number of entities added or moved.
        """
        count = 0
        for item in items:
            try:
                count += self._ingest_item(item)
            except ValueError as exc:
                logger.warning("Skipping unusable %s feature: %s", item.kind, exc)
        return count

    def _ingest_item(self, item: Any) -> int:
        if item.kind == "point":
            name = str(item.properties.get("name") or "").lower()
            if name == "server":
                self.env.move_node(self.server, item.x, item.y)
            else:
                self.add_hive(item.x, item.y)
            return 1
        if item.kind != "polygon" or len(item.points) < 3:
            return 0
        props: Mapping[str, Any] = item.properties
        absorption = _prop_float(props, "absorption", clamp_absorption)
        if absorption is None:
            absorption = item.k if item.k is not None else material_alpha(item.material)
        loss = _prop_float(props, "loss", clamp_loss)
        if loss is None:
            loss = absorption * 0.1
        ob = PolygonObstacle(
            id=self.env.allocate_obstacle_id(),
            material=item.material,
            absorption=absorption,
            loss=loss,
            points=list(item.points),
        )
        self.env.add_obstacle(ob)
        return 1

    def load_scene(self, scene: Any, replace: bool = True) -> None:
        """Load a :class:`~lorahive_sim.io.schema.SceneSnapshot` or mapping."""
        from ..io.schema import apply_snapshot

        apply_snapshot(self, scene, replace=replace)

    def export_scene(self):
        from ..io.schema import snapshot_of

        return snapshot_of(self)

    def reset_stats(self) -> None:
        self.stats.reset()
        self.protocol.emitted_at.clear()

    def reset(self) -> None:
        """Drop all waves, hives, obstacles, counters and dedup state."""
        self.waves = []
        self.env.clear()
        self.protocol.reset()
        self.stats.reset()

    def summary(self) -> Dict[str, Any]:
        cfg = self.config
        return {
            "lora": {"sf": cfg.spreading_factor, "bw": cfg.bandwidth_khz, "cr": cfg.coding_rate},
            "los_range_m": round(self.los_range_m(), 1),
            "realistic": cfg.realistic,
            "hives": len(self.hives),
            "obstacles": len(self.obstacles),
            "waves": len(self.waves),
            "server_seen": len(self.server.seen_data),
            "bounds": self.env.world_bounds(),
        }


def _prop_float(props: Mapping[str, Any], name: str, clamp) -> Optional[float]:
    raw = props.get(name)
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value == 0.0:
        return None
    return clamp(value)
