"""GeoJSON import: projection, ring simplification and material inference.

Features are turned into :class:`IngestPoint` / :class:`IngestPolygon`
items and handed to :meth:`Simulation.ingest_batch` in batches, either
synchronously (:func:`import_geojson`) or from a background producer
thread (:class:`GeoImportWorker`).
"""

from __future__ import annotations

import json
import logging
import math
import queue
import re
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from ..core.geometry import Point, polygon_area

if TYPE_CHECKING:
    from ..core.simulation import Simulation

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6378137.0
DEFAULT_BATCH_SIZE = 1000
DEFAULT_SIMPLIFY_TOLERANCE = 1e-5   # degrees, roughly 1 m at the equator
DEFAULT_MIN_AREA_DEG2 = 5e-8
PROGRESS_EVERY = 5000
# k used when a feature names its own material without a k
DEFAULT_TAGGED_K = 0.35


class GeoImportError(ValueError):
    """The document is not valid JSON or not a FeatureCollection."""


@dataclass
class IngestPoint:
    x: float
    y: float
    properties: Dict[str, Any] = field(default_factory=dict)
    kind: str = field(default="point", init=False)


@dataclass
class IngestPolygon:
    points: List[Point]
    material: str
    k: Optional[float]
    properties: Dict[str, Any] = field(default_factory=dict)
    original_vertices: int = 0
    simplified_vertices: int = 0
    kind: str = field(default="polygon", init=False)


IngestItem = Union[IngestPoint, IngestPolygon]


# ---------------------------------------------------------------------------
# Geometry helpers
# ---------------------------------------------------------------------------

def latlon_to_xy(
    lat: float, lon: float, origin_lat: float, origin_lon: float, meters_per_pixel: float
) -> Tuple[float, float]:
    """Equirectangular projection around the origin, in scene pixels.

    Screen y grows downwards, so northings are negated.
    """
    x = math.radians(lon - origin_lon) * EARTH_RADIUS_M * math.cos(math.radians(origin_lat))
    y = math.radians(lat - origin_lat) * EARTH_RADIUS_M
    return x / meters_per_pixel, -y / meters_per_pixel


def _segment_dist_sq(pts: np.ndarray, a: np.ndarray, b: np.ndarray) -> np.ndarray:
    d = b - a
    denom = float(np.dot(d, d))
    if denom == 0.0:
        return np.sum((pts - a) ** 2, axis=1)
    t = np.clip(((pts - a) @ d) / denom, 0.0, 1.0)
    proj = a + t[:, None] * d
    return np.sum((pts - proj) ** 2, axis=1)


def simplify_ring(ring: Sequence[Sequence[float]], tolerance: float) -> List[Tuple[float, float]]:
    """Ramer-Douglas-Peucker simplification keeping both end points.

    Parameters
    ----------
    ring : sequence of (lon, lat)
        Vertices in input order; a closed ring keeps its closing vertex.
    tolerance : float
        Maximum allowed deviation, in the ring's own units.
    """
    pts = np.asarray([(float(p[0]), float(p[1])) for p in ring], dtype=np.float64)
    n = len(pts)
    if n < 3:
        return [tuple(p) for p in pts.tolist()]

    keep = np.zeros(n, dtype=bool)
    keep[0] = keep[-1] = True
    tol_sq = tolerance * tolerance
    stack = [(0, n - 1)]
    while stack:
        a, b = stack.pop()
        if b - a < 2:
            continue
        d2 = _segment_dist_sq(pts[a + 1:b], pts[a], pts[b])
        i = int(np.argmax(d2))
        if d2[i] > tol_sq:
            idx = a + 1 + i
            keep[idx] = True
            stack.append((a, idx))
            stack.append((idx, b))
    return [tuple(p) for p in pts[keep].tolist()]


# ---------------------------------------------------------------------------
# Material inference from OSM-style tags
# ---------------------------------------------------------------------------

# (tag, pattern, material, k); first match wins
MATERIAL_RULES: List[Tuple[str, "re.Pattern[str]", str, float]] = [
    ("building", re.compile(r"industrial|warehouse|bunker"), "concrete", 1.15),
    ("building", re.compile(r"yes|house|residential|commercial"), "brick", 0.35),
    ("landuse", re.compile(r"forest|wood|scrub"), "forest", 0.15),
    ("landuse", re.compile(r"grass|meadow|pasture|farmland"), "field", 0.03),
    ("natural", re.compile(r"water|wetland|river|lake"), "water", 3.0),
    ("natural", re.compile(r"rock|mountain"), "rock", 1.8),
    ("landuse", re.compile(r"urban|residential"), "urban_mix", 0.25),
    ("landuse", re.compile(r"military"), "metal", 2.5),
    ("landuse", re.compile(r"cemetery|park"), "wood", 0.05),
    ("natural", re.compile(r"sand|beach"), "sand", 0.08),
]


def map_feature_to_material(properties: Mapping[str, Any]) -> Tuple[str, float]:
    for tag, pattern, material, k in MATERIAL_RULES:
        value = properties.get(tag)
        if value and pattern.search(str(value)):
            return material, k
    return "default", 0.1


def _feature_material(properties: Mapping[str, Any]) -> Tuple[str, Optional[float]]:
    tagged = properties.get("material")
    if isinstance(tagged, str) and tagged:
        k = properties.get("k")
        try:
            k = float(k) if k else DEFAULT_TAGGED_K
        except (TypeError, ValueError):
            k = DEFAULT_TAGGED_K
        if not math.isfinite(k):
            k = DEFAULT_TAGGED_K
        return tagged.lower(), k
    return map_feature_to_material(properties)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def load_feature_collection(source: Union[str, bytes, Mapping[str, Any]]) -> Dict[str, Any]:
    """Parse *source* and check it is a FeatureCollection.

    Raises
    ------
    GeoImportError
        On invalid JSON or any other top-level object.
    """
    if isinstance(source, (str, bytes)):
        try:
            obj = json.loads(source)
        except ValueError as exc:
            raise GeoImportError(f"Invalid JSON: {exc}") from exc
    else:
        obj = source
    if not isinstance(obj, Mapping) or obj.get("type") != "FeatureCollection":
        raise GeoImportError("Must be a FeatureCollection")
    if not isinstance(obj.get("features") or [], (list, tuple)):
        raise GeoImportError("FeatureCollection features must be an array")
    return dict(obj)


def _lonlat(value: Any) -> Optional[Tuple[float, float]]:
    """``(lon, lat)`` from a GeoJSON position, or None if it is unusable."""
    if not isinstance(value, (list, tuple)) or len(value) < 2:
        return None
    out = []
    for v in value[:2]:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return None
        v = float(v)
        if not math.isfinite(v):
            return None
        out.append(v)
    return out[0], out[1]


def _ring(value: Any) -> List[Tuple[float, float]]:
    if not isinstance(value, (list, tuple)):
        return []
    return [p for p in (_lonlat(v) for v in value) if p is not None]


def feature_items(
    feature: Mapping[str, Any],
    origin_lat: float,
    origin_lon: float,
    meters_per_pixel: float,
    simplify_tolerance: float = DEFAULT_SIMPLIFY_TOLERANCE,
    min_area_deg2: float = DEFAULT_MIN_AREA_DEG2,
) -> List[IngestItem]:
    """Items produced by one feature.

    Unsupported geometries yield none. Positions that are not a pair of
    finite numbers are dropped: a bad Point skips the feature, bad ring
    vertices are left out of the ring.
    """
    items: List[IngestItem] = []
    if not isinstance(feature, Mapping):
        logger.warning("Skipping GeoJSON feature that is not an object: %r", feature)
        return items
    geometry = feature.get("geometry")
    if not isinstance(geometry, Mapping):
        return items
    raw_props = feature.get("properties")
    props = dict(raw_props) if isinstance(raw_props, Mapping) else {}
    gtype = geometry.get("type")
    coords = geometry.get("coordinates")

    if gtype == "Point":
        position = _lonlat(coords)
        if position is None:
            logger.warning("Skipping Point with unusable coordinates: %r", coords)
            return items
        lon, lat = position
        x, y = latlon_to_xy(lat, lon, origin_lat, origin_lon, meters_per_pixel)
        items.append(IngestPoint(x=x, y=y, properties=props))
    elif gtype in ("Polygon", "MultiPolygon"):
        polygons = [coords] if gtype == "Polygon" else coords
        if not isinstance(polygons, (list, tuple)):
            logger.warning("Skipping %s with unusable coordinates", gtype)
            return items
        for rings in polygons:
            if not isinstance(rings, (list, tuple)) or not rings:
                continue
            raw = rings[0]
            exterior = _ring(raw)
            dropped = len(raw) - len(exterior) if isinstance(raw, (list, tuple)) else 0
            if dropped:
                logger.warning("Dropped %d unusable vertices from a %s ring", dropped, gtype)
            if polygon_area(exterior) < min_area_deg2:
                continue
            simplified = simplify_ring(exterior, simplify_tolerance)
            if len(simplified) < 3:
                continue
            points = [
                latlon_to_xy(lat, lon, origin_lat, origin_lon, meters_per_pixel)
                for lon, lat in simplified
            ]
            material, k = _feature_material(props)
            items.append(IngestPolygon(
                points=points,
                material=material,
                k=k,
                properties=props,
                original_vertices=len(exterior),
                simplified_vertices=len(simplified),
            ))
    return items


def iter_batches(
    source: Union[str, bytes, Mapping[str, Any]],
    origin_lat: float,
    origin_lon: float,
    meters_per_pixel: float,
    batch_size: int = DEFAULT_BATCH_SIZE,
    simplify_tolerance: float = DEFAULT_SIMPLIFY_TOLERANCE,
    min_area_deg2: float = DEFAULT_MIN_AREA_DEG2,
) -> Iterator[List[IngestItem]]:
    """Yield lists of ingest items, flushing whenever *batch_size* is reached."""
    collection = load_feature_collection(source)
    batch: List[IngestItem] = []
    for feature in collection.get("features") or []:
        batch.extend(feature_items(
            feature, origin_lat, origin_lon, meters_per_pixel, simplify_tolerance, min_area_deg2
        ))
        if len(batch) >= batch_size:
            yield batch
            batch = []
    if batch:
        yield batch


def import_geojson(
    sim: "Simulation",
    source: Union[str, bytes, Mapping[str, Any]],
    origin_lat: float,
    origin_lon: float,
    meters_per_pixel: Optional[float] = None,
    **options: Any,
) -> int:
    """Parse a whole document, then ingest it into *sim*.

    Nothing is added when parsing fails. Returns the number of entities
    added or moved.
    """
    mpp = sim.config.meters_per_pixel if meters_per_pixel is None else meters_per_pixel
    batches = list(iter_batches(source, origin_lat, origin_lon, mpp, **options))
    count = sum(sim.ingest_batch(batch) for batch in batches)
    logger.info("Imported %d GeoJSON entities in %d batches", count, len(batches))
    return count


# ---------------------------------------------------------------------------
# Background producer
# ---------------------------------------------------------------------------

class GeoImportWorker:
    """Parse GeoJSON on a daemon thread and queue the results.

    Messages are ``(kind, payload)`` tuples with kind ``batch`` (list of
    items), ``progress`` (``{"processed", "total"}``), ``done``
    (``{"count", "features"}``) or ``error`` (message string). The queue is
    bounded, so the producer waits while the consumer falls behind.

    Call :meth:`drain` from the thread that ticks the simulation.
    """

    def __init__(
        self,
        source: Union[str, bytes, Mapping[str, Any]],
        origin_lat: float,
        origin_lon: float,
        meters_per_pixel: float,
        batch_size: int = DEFAULT_BATCH_SIZE,
        simplify_tolerance: float = DEFAULT_SIMPLIFY_TOLERANCE,
        min_area_deg2: float = DEFAULT_MIN_AREA_DEG2,
        max_pending: int = 8,
    ) -> None:
        self.source = source
        self.origin_lat = origin_lat
        self.origin_lon = origin_lon
        self.meters_per_pixel = meters_per_pixel
        self.batch_size = batch_size
        self.simplify_tolerance = simplify_tolerance
        self.min_area_deg2 = min_area_deg2
        self.messages: "queue.Queue[Tuple[str, Any]]" = queue.Queue(maxsize=max_pending)
        self.finished = False
        self.error: Optional[str] = None
        self.progress: Dict[str, int] = {"processed": 0, "total": 0}
        self._cancel = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "GeoImportWorker":
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()
        return self

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _put(self, kind: str, payload: Any) -> bool:
        while not self._cancel.is_set():
            try:
                self.messages.put((kind, payload), timeout=0.1)
                return True
            except queue.Full:
                continue
        return False

    def _run(self) -> None:
        try:
            collection = load_feature_collection(self.source)
            features = collection.get("features") or []
            total = len(features)
            processed = 0
            batch: List[IngestItem] = []
            for feature in features:
                if self._cancel.is_set():
                    return
                batch.extend(feature_items(
                    feature, self.origin_lat, self.origin_lon, self.meters_per_pixel,
                    self.simplify_tolerance, self.min_area_deg2,
                ))
                processed += 1
                if len(batch) >= self.batch_size:
                    if not self._put("batch", batch):
                        return
                    batch = []
                if processed % PROGRESS_EVERY == 0:
                    self._put("progress", {"processed": processed, "total": total})
            if batch and not self._put("batch", batch):
                return
            self._put("done", {"count": processed, "features": total})
        except Exception as exc:  # reported to the consumer, never raised on this thread
            logger.warning("GeoJSON import failed: %s", exc)
            self._put("error", str(exc))

    def drain(self, sim: "Simulation", block: bool = False, timeout: Optional[float] = None) -> int:
        """Ingest every queued batch into *sim*; returns entities added.

        With *block* the call waits for ``done`` or ``error``. Batches that
        arrive after :meth:`cancel` are discarded.
        """
        added = 0
        while not self.finished:
            try:
                kind, payload = self.messages.get(block=block, timeout=timeout)
            except queue.Empty:
                break
            if kind == "batch":
                if not self.cancelled:
                    added += sim.ingest_batch(payload)
            elif kind == "progress":
                self.progress = payload
                logger.info("GeoJSON import: %d/%d features", payload["processed"], payload["total"])
            elif kind == "done":
                self.finished = True
                self.progress = {"processed": payload["count"], "total": payload["features"]}
            elif kind == "error":
                self.finished = True
                self.error = payload
        return added
