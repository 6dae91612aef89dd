"""Scene snapshot models used for bulk load and export.

Loading is lenient: bad coordinates fall back to 0, unusable ids are
regenerated, invalid dedup keys are dropped and obstacles that cannot be
built are skipped. Only a snapshot that is not a mapping at all, or whose
sections have the wrong shape, is rejected.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..core.device import Hive, Server
from ..core.environment import CircleObstacle, PolygonObstacle, material_alpha
from ..protocols.packet import format_key, parse_key

if TYPE_CHECKING:
    from ..core.simulation import Simulation

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class SceneLoadError(ValueError):
    """The snapshot as a whole is unusable; the scene was left untouched."""


# ---------------------------------------------------------------------------
# Lenient coercions
# ---------------------------------------------------------------------------

def _finite_or_none(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) else None


def _coord(value: Any) -> float:
    v = _finite_or_none(value)
    return 0.0 if v is None else v


def _id_or_none(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _keys(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple, set)):
        return []
    out = []
    for item in value:
        if not isinstance(item, str):
            continue
        try:
            parse_key(item)
        except ValueError:
            continue
        out.append(item)
    return out


def _point(value: Any) -> Optional[Tuple[float, float]]:
    if isinstance(value, Mapping):
        x, y = _finite_or_none(value.get("x")), _finite_or_none(value.get("y"))
    elif isinstance(value, (list, tuple)) and len(value) == 2:
        x, y = _finite_or_none(value[0]), _finite_or_none(value[1])
    else:
        return None
    if x is None or y is None:
        return None
    return (x, y)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class SettingsRecord(BaseModel):
    spreading_factor: Optional[int] = None
    bandwidth_khz: Optional[int] = None
    coding_rate: Optional[int] = None
    max_retrans: Optional[int] = None
    meters_per_pixel: Optional[float] = None
    frequency_mhz: Optional[float] = None
    tx_dbm_default: Optional[float] = None
    realistic: Optional[bool] = None
    attenuation: Optional[float] = None
    base_range: Optional[float] = None
    base_rx_threshold: Optional[float] = None

    @field_validator("spreading_factor", "bandwidth_khz", "coding_rate", "max_retrans", mode="before")
    @classmethod
    def _integers(cls, value: Any) -> Optional[int]:
        v = _finite_or_none(value)
        return None if v is None else int(round(v))

    @field_validator(
        "meters_per_pixel", "frequency_mhz", "tx_dbm_default",
        "attenuation", "base_range", "base_rx_threshold",
        mode="before",
    )
    @classmethod
    def _numbers(cls, value: Any) -> Optional[float]:
        return _finite_or_none(value)

    @field_validator("realistic", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> Optional[bool]:
        return None if value is None else bool(value)


class ServerRecord(BaseModel):
    id: Optional[str] = None
    x: Optional[float] = None
    y: Optional[float] = None
    tx_power_dbm: Optional[float] = None
    seen_data: List[str] = []

    @field_validator("id", mode="before")
    @classmethod
    def _valid_id(cls, value: Any) -> Optional[str]:
        return _id_or_none(value)

    @field_validator("x", "y", "tx_power_dbm", mode="before")
    @classmethod
    def _valid_number(cls, value: Any) -> Optional[float]:
        return _finite_or_none(value)

    @field_validator("seen_data", mode="before")
    @classmethod
    def _valid_keys(cls, value: Any) -> List[str]:
        return _keys(value)


class HiveRecord(BaseModel):
    id: Optional[str] = None
    x: float = 0.0
    y: float = 0.0
    tx_power_dbm: Optional[float] = None
    amplitude: float = 1.0
    seen_data: List[str] = []
    seen_ack: List[str] = []

    @field_validator("id", mode="before")
    @classmethod
    def _valid_id(cls, value: Any) -> Optional[str]:
        return _id_or_none(value)

    @field_validator("x", "y", mode="before")
    @classmethod
    def _valid_coord(cls, value: Any) -> float:
        return _coord(value)

    @field_validator("tx_power_dbm", mode="before")
    @classmethod
    def _valid_power(cls, value: Any) -> Optional[float]:
        return _finite_or_none(value)

    @field_validator("amplitude", mode="before")
    @classmethod
    def _valid_amplitude(cls, value: Any) -> float:
        v = _finite_or_none(value)
        return 1.0 if v is None else v

    @field_validator("seen_data", "seen_ack", mode="before")
    @classmethod
    def _valid_keys(cls, value: Any) -> List[str]:
        return _keys(value)


class _ObstacleBase(BaseModel):
    id: Optional[int] = None
    material: str = "brick"
    absorption: Optional[float] = None
    loss: Optional[float] = None

    @field_validator("id", mode="before")
    @classmethod
    def _valid_id(cls, value: Any) -> Optional[int]:
        if isinstance(value, int) and not isinstance(value, bool) and value > 0:
            return value
        return None

    @field_validator("material", mode="before")
    @classmethod
    def _valid_material(cls, value: Any) -> str:
        return value.lower() if isinstance(value, str) and value.strip() else "brick"

    @field_validator("absorption", "loss", mode="before")
    @classmethod
    def _valid_number(cls, value: Any) -> Optional[float]:
        return _finite_or_none(value)


class CircleRecord(_ObstacleBase):
    type: Literal["circle"] = "circle"
    x: float = 0.0
    y: float = 0.0
    radius: float = 40.0

    @field_validator("x", "y", mode="before")
    @classmethod
    def _valid_coord(cls, value: Any) -> float:
        return _coord(value)

    @field_validator("radius", mode="before")
    @classmethod
    def _valid_radius(cls, value: Any) -> float:
        v = _finite_or_none(value)
        return 40.0 if v is None else v


class PolygonRecord(_ObstacleBase):
    type: Literal["polygon"] = "polygon"
    points: List[Tuple[float, float]]

    @field_validator("points", mode="before")
    @classmethod
    def _valid_points(cls, value: Any) -> List[Tuple[float, float]]:
        if not isinstance(value, (list, tuple)):
            raise ValueError("points must be a list")
        pts = [p for p in (_point(v) for v in value) if p is not None]
        if len(pts) < 3:
            raise ValueError("a polygon needs at least 3 valid vertices")
        return pts


ObstacleRecord = Union[CircleRecord, PolygonRecord]


def _obstacle_record(entry: Any) -> Optional[ObstacleRecord]:
    if isinstance(entry, (CircleRecord, PolygonRecord)):
        return entry
    if not isinstance(entry, Mapping):
        return None
    is_polygon = entry.get("type") == "polygon" or "points" in entry
    model = PolygonRecord if is_polygon else CircleRecord
    try:
        return model.model_validate(entry)
    except ValidationError as exc:
        logger.warning("Skipping malformed obstacle entry: %s", exc.errors()[0]["msg"])
        return None


class SceneSnapshot(BaseModel):
    """Complete, exactly resumable scene description."""

    version: int = SNAPSHOT_VERSION
    settings: SettingsRecord = Field(default_factory=SettingsRecord)
    server: ServerRecord = Field(default_factory=ServerRecord)
    hives: List[HiveRecord] = []
    obstacles: List[Union[CircleRecord, PolygonRecord]] = []
    seq_counter: int = 1

    @field_validator("hives", mode="before")
    @classmethod
    def _drop_bad_hives(cls, value: Any) -> List[Any]:
        if not isinstance(value, (list, tuple)):
            return []
        kept = [h for h in value if isinstance(h, (Mapping, HiveRecord))]
        if len(kept) != len(value):
            logger.warning("Skipped %d malformed hive entries", len(value) - len(kept))
        return kept

    @field_validator("obstacles", mode="before")
    @classmethod
    def _drop_bad_obstacles(cls, value: Any) -> List[Any]:
        if not isinstance(value, (list, tuple)):
            return []
        return [r for r in (_obstacle_record(o) for o in value) if r is not None]

    @field_validator("seq_counter", mode="before")
    @classmethod
    def _valid_seq(cls, value: Any) -> int:
        v = _finite_or_none(value)
        return 1 if v is None else max(1, int(v))


# ---------------------------------------------------------------------------
# Simulation <-> snapshot
# ---------------------------------------------------------------------------

def _key_set(keys: List[str]) -> set:
    return {parse_key(k) for k in keys}


def _key_list(keys: set) -> List[str]:
    return sorted(format_key(k) for k in keys)


def snapshot_of(sim: "Simulation") -> SceneSnapshot:
    server = sim.server
    obstacles: List[ObstacleRecord] = []
    for ob in sim.obstacles:
        if isinstance(ob, PolygonObstacle):
            obstacles.append(PolygonRecord(
                id=ob.id, material=ob.material, absorption=ob.absorption, loss=ob.loss,
                points=list(ob.points),
            ))
        else:
            obstacles.append(CircleRecord(
                id=ob.id, material=ob.material, absorption=ob.absorption, loss=ob.loss,
                x=ob.x, y=ob.y, radius=ob.radius,
            ))
    return SceneSnapshot(
        settings=SettingsRecord(**sim.config.to_dict()),
        server=ServerRecord(
            id=server.id, x=server.x, y=server.y, tx_power_dbm=server.tx_power_dbm,
            seen_data=_key_list(server.seen_data),
        ),
        hives=[
            HiveRecord(
                id=h.id, x=h.x, y=h.y, tx_power_dbm=h.tx_power_dbm, amplitude=h.amplitude,
                seen_data=_key_list(h.seen_data), seen_ack=_key_list(h.seen_ack),
            )
            for h in sim.hives
        ],
        obstacles=obstacles,
        seq_counter=sim.protocol.next_seq,
    )


def _validate(scene: Any) -> SceneSnapshot:
    if isinstance(scene, SceneSnapshot):
        return scene
    if not isinstance(scene, Mapping):
        raise SceneLoadError("Invalid object: a scene snapshot must be a mapping")
    try:
        return SceneSnapshot.model_validate(dict(scene))
    except ValidationError as exc:
        raise SceneLoadError(str(exc)) from exc


def apply_snapshot(sim: "Simulation", scene: Any, replace: bool = True) -> None:
    """Load *scene* into *sim*, replacing or extending the current state.

    Raises
    ------
    SceneLoadError
        If *scene* cannot be read at all. Nothing is modified in that case.
    """
    snap = _validate(scene)
    env = sim.env

    settings = {k: v for k, v in snap.settings.model_dump().items() if v is not None}
    sim.configure(**settings)

    if replace:
        sim.waves = []
        env.clear()
        sim.protocol.reset(seq_start=snap.seq_counter)
    else:
        sim.protocol.next_seq = max(sim.protocol.next_seq, snap.seq_counter)

    srv = snap.server
    server: Server = env.server
    if srv.id is not None and srv.id != server.id:
        env.replace_server(Server(x=server.x, y=server.y, id=srv.id, tx_power_dbm=server.tx_power_dbm))
        server = env.server
    if srv.x is not None and srv.y is not None:
        env.move_node(server, srv.x, srv.y)
    if srv.tx_power_dbm is not None:
        server.tx_power_dbm = min(30.0, max(0.0, srv.tx_power_dbm))
    server.seen_data |= _key_set(srv.seen_data)

    for rec in snap.hives:
        hive_id = rec.id
        if hive_id is None or env.resolve(hive_id) is not None:
            hive_id = env.next_hive_id()
        env.add_hive(Hive(
            x=rec.x,
            y=rec.y,
            id=hive_id,
            tx_power_dbm=sim.config.tx_dbm_default if rec.tx_power_dbm is None else rec.tx_power_dbm,
            amplitude=rec.amplitude,
            seen_data=_key_set(rec.seen_data),
            seen_ack=_key_set(rec.seen_ack),
        ))

    for rec in snap.obstacles:
        oid = rec.id
        if oid is None or env.obstacle(oid) is not None:
            oid = env.allocate_obstacle_id()
        absorption = material_alpha(rec.material) if rec.absorption is None else rec.absorption
        loss = absorption * 0.1 if rec.loss is None else rec.loss
        if isinstance(rec, PolygonRecord):
            ob = PolygonObstacle(
                id=oid, material=rec.material, absorption=absorption, loss=loss,
                points=list(rec.points),
            )
        else:
            ob = CircleObstacle(
                id=oid, material=rec.material, absorption=absorption, loss=loss,
                x=rec.x, y=rec.y, radius=rec.radius,
            )
        env.add_obstacle(ob)

    logger.info(
        "Loaded scene: %d hives, %d obstacles (replace=%s)",
        len(snap.hives), len(snap.obstacles), replace,
    )
