from .schema import (
    SceneLoadError, SceneSnapshot, SettingsRecord, ServerRecord, HiveRecord,
    CircleRecord, PolygonRecord, snapshot_of, apply_snapshot,
)
from .geojson import (
    GeoImportError, GeoImportWorker, IngestPoint, IngestPolygon,
    iter_batches, import_geojson, latlon_to_xy, simplify_ring, map_feature_to_material,
)

__all__ = [
    "SceneLoadError", "SceneSnapshot", "SettingsRecord", "ServerRecord", "HiveRecord",
    "CircleRecord", "PolygonRecord", "snapshot_of", "apply_snapshot",
    "GeoImportError", "GeoImportWorker", "IngestPoint", "IngestPolygon",
    "iter_batches", "import_geojson", "latlon_to_xy", "simplify_ring", "map_feature_to_material",
]
