"""FastAPI web app driving an interactive LoRa hive mesh simulation."""

import logging
from fastapi import Body, FastAPI
from pydantic import BaseModel
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from lorahive_sim.config import FRAME_MS
from lorahive_sim.core import Simulation, UnknownNodeError, UnknownObstacleError
from lorahive_sim.core.environment import MATERIALS, PolygonObstacle
from lorahive_sim.io import GeoImportError, SceneLoadError, import_geojson

logger = logging.getLogger("lorahive_sim.app")

app = FastAPI(title="LoRa Hive Simulator")
app.state.sim = Simulation()

# ============================================================================
# Request models
# ============================================================================

class TickRequest(BaseModel):
    now_ms: Optional[float] = None
    dt_ms: float = FRAME_MS

class EmitRequest(BaseModel):
    node_id: str
    kind: Literal["DATA", "ACK"] = "DATA"
    now_ms: Optional[float] = None

class HiveRequest(BaseModel):
    x: float
    y: float
    id: Optional[str] = None
    tx_power_dbm: Optional[float] = None
    amplitude: float = 1.0

class MoveNodeRequest(BaseModel):
    x: float
    y: float

class CircleRequest(BaseModel):
    x: float
    y: float
    radius: float = 40.0
    material: str = "brick"
    absorption: Optional[float] = None

class PolygonRequest(BaseModel):
    points: List[Tuple[float, float]]
    material: str = "brick"
    absorption: Optional[float] = None

class MoveObstacleRequest(BaseModel):
    dx: float
    dy: float

class MaterialRequest(BaseModel):
    material: str
    absorption: Optional[float] = None
    loss: Optional[float] = None

class ConfigRequest(BaseModel):
    spreading_factor: Optional[float] = None
    bandwidth_khz: Optional[float] = None
    coding_rate: Optional[float] = None
    max_retrans: Optional[float] = None
    meters_per_pixel: Optional[float] = None
    frequency_mhz: Optional[float] = None
    tx_dbm_default: Optional[float] = None
    realistic: Optional[bool] = None
    attenuation: Optional[float] = None
    base_range: Optional[float] = None
    base_rx_threshold: Optional[float] = None

class GeoImportRequest(BaseModel):
    geojson: Union[str, Dict[str, Any]]
    origin_lat: float
    origin_lon: float
    meters_per_pixel: Optional[float] = None
    batch_size: int = 1000
    simplify_tolerance: float = 1e-5
    min_area_deg2: float = 5e-8

# ============================================================================
# Helpers
# ============================================================================

def _sim() -> Simulation:
    return app.state.sim

def _node_view(node) -> Dict:
    view = {
        "id": node.id,
        "x": node.x,
        "y": node.y,
        "tx_power_dbm": node.tx_power_dbm,
        "server": node.is_server,
        "seen_data": len(node.seen_data),
    }
    if not node.is_server:
        view["amplitude"] = node.amplitude
        view["seen_ack"] = len(node.seen_ack)
    return view

def _obstacle_view(ob) -> Dict:
    view = {"id": ob.id, "material": ob.material, "absorption": ob.absorption, "loss": ob.loss}
    if isinstance(ob, PolygonObstacle):
        view.update(type="polygon", points=[list(p) for p in ob.points])
    else:
        view.update(type="circle", x=ob.x, y=ob.y, radius=ob.radius)
    return view

def _error(e: Exception) -> Dict:
    # KeyError str() adds quotes around the key
    message = e.args[0] if isinstance(e, KeyError) and e.args else str(e)
    logger.warning("Request rejected: %s", message)
    return {"ok": False, "error": f"{type(e).__name__}: {message}"}

# ============================================================================
# API endpoints
# ============================================================================

@app.post("/api/tick")
async def tick(req: TickRequest):
    sim = _sim()
    now = sim.now_ms + req.dt_ms if req.now_ms is None else req.now_ms
    sim.tick(now)
    return {"ok": True, "now_ms": sim.now_ms, "waves": sim.wave_views()}

@app.post("/api/emit")
async def emit(req: EmitRequest):
    try:
        wave = _sim().emit(req.node_id, req.kind, now_ms=req.now_ms)
    except (UnknownNodeError, ValueError) as e:
        return _error(e)
    return {"ok": True, "wave": wave.view()}

@app.get("/api/state")
async def state():
    sim = _sim()
    return {
        "summary": sim.summary(),
        "nodes": [_node_view(n) for n in sim.nodes()],
        "obstacles": [_obstacle_view(o) for o in sim.obstacles],
        "waves": sim.wave_views(),
        "stats": sim.stats.snapshot(),
    }

@app.get("/api/stats")
async def stats():
    return _sim().stats.snapshot()

@app.post("/api/stats/reset")
async def reset_stats():
    _sim().reset_stats()
    return {"ok": True}

@app.get("/api/waves")
async def waves():
    return _sim().wave_views()

@app.get("/api/nodes")
async def nodes():
    return [_node_view(n) for n in _sim().nodes()]

@app.post("/api/hives")
async def add_hive(req: HiveRequest):
    try:
        hive = _sim().add_hive(req.x, req.y, req.id, req.tx_power_dbm, req.amplitude)
    except ValueError as e:
        return _error(e)
    return {"ok": True, "node": _node_view(hive)}

@app.delete("/api/hives/{hive_id}")
async def remove_hive(hive_id: str):
    try:
        _sim().remove_hive(hive_id)
    except (UnknownNodeError, ValueError) as e:
        return _error(e)
    return {"ok": True}

@app.post("/api/nodes/{node_id}/move")
async def move_node(node_id: str, req: MoveNodeRequest):
    try:
        _sim().move_node(node_id, req.x, req.y)
    except (UnknownNodeError, ValueError) as e:
        return _error(e)
    return {"ok": True}

@app.get("/api/obstacles")
async def obstacles():
    return [_obstacle_view(o) for o in _sim().obstacles]

@app.get("/api/materials")
async def materials():
    return {name: {"alpha": m.alpha, "loss_db": m.loss_db} for name, m in MATERIALS.items()}

@app.post("/api/obstacles/circle")
async def add_circle(req: CircleRequest):
    try:
        ob = _sim().add_circle_obstacle(req.x, req.y, req.radius, req.material, req.absorption)
    except ValueError as e:
        return _error(e)
    return {"ok": True, "obstacle": _obstacle_view(ob)}

@app.post("/api/obstacles/polygon")
async def add_polygon(req: PolygonRequest):
    try:
        ob = _sim().add_polygon_obstacle(req.points, req.material, req.absorption)
    except ValueError as e:
        return _error(e)
    return {"ok": True, "obstacle": _obstacle_view(ob)}

@app.delete("/api/obstacles/{obstacle_id}")
async def remove_obstacle(obstacle_id: int):
    try:
        _sim().remove_obstacle(obstacle_id)
    except UnknownObstacleError as e:
        return _error(e)
    return {"ok": True}

@app.post("/api/obstacles/{obstacle_id}/move")
async def move_obstacle(obstacle_id: int, req: MoveObstacleRequest):
    try:
        _sim().move_obstacle(obstacle_id, req.dx, req.dy)
    except (UnknownObstacleError, ValueError) as e:
        return _error(e)
    return {"ok": True}

@app.post("/api/obstacles/{obstacle_id}/material")
async def set_material(obstacle_id: int, req: MaterialRequest):
    try:
        ob = _sim().set_obstacle_material(obstacle_id, req.material, req.absorption, req.loss)
    except (UnknownObstacleError, ValueError) as e:
        return _error(e)
    return {"ok": True, "obstacle": _obstacle_view(ob)}

@app.get("/api/config")
async def get_config():
    return _sim().config.to_dict()

@app.post("/api/config")
async def set_config(req: ConfigRequest):
    changes = req.model_dump(exclude_none=True)
    cfg = _sim().configure(**changes)
    return {"ok": True, "config": cfg.to_dict()}

@app.get("/api/scene")
async def export_scene():
    return _sim().export_scene().model_dump()

@app.post("/api/scene")
async def load_scene(scene: Any = Body(None), replace: bool = True):
    try:
        _sim().load_scene(scene, replace=replace)
    except SceneLoadError as e:
        return _error(e)
    return {"ok": True, "summary": _sim().summary()}

@app.post("/api/reset")
async def reset():
    _sim().reset()
    return {"ok": True}

@app.post("/api/import/geojson")
async def import_geo(req: GeoImportRequest):
    try:
        count = import_geojson(
            _sim(), req.geojson, req.origin_lat, req.origin_lon, req.meters_per_pixel,
            batch_size=req.batch_size,
            simplify_tolerance=req.simplify_tolerance,
            min_area_deg2=req.min_area_deg2,
        )
    except GeoImportError as e:
        return _error(e)
    return {"ok": True, "count": count, "summary": _sim().summary()}

if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host="127.0.0.1", port=8001)
