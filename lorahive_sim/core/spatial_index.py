"""Bounding-box index for nodes and obstacles."""

from __future__ import annotations

from typing import Any, Dict, Hashable, List, Optional

import numpy as np

from .geometry import BoundingBox


class SpatialIndex:
    """Map of entity → axis-aligned bounding box with rectangle queries.

    Entities must expose a hashable ``id`` and a ``bbox()`` method. The box
    is captured at insertion time; after moving an entity call
    :meth:`update` (or remove + insert) to re-register it.

    Queries scan every entry, vectorised over a stacked ``(n, 4)`` bounds
    matrix that is rebuilt only when the index changed since the last query.
    """

    def __init__(self) -> None:
        self._entries: Dict[Hashable, Any] = {}
        self._boxes: Dict[Hashable, BoundingBox] = {}
        self._keys: List[Hashable] = []
        self._matrix: np.ndarray = np.empty((0, 4), dtype=np.float64)
        self.dirty = True

    # ------------------------------------------------------------------
    def insert(self, entity: Any) -> None:
        self._entries[entity.id] = entity
        self._boxes[entity.id] = entity.bbox()
        self.dirty = True

    def remove(self, entity: Any) -> None:
        key = entity.id
        if key in self._entries:
            del self._entries[key]
            del self._boxes[key]
            self.dirty = True

    def update(self, entity: Any) -> None:
        self.remove(entity)
        self.insert(entity)

    def clear(self) -> None:
        self._entries.clear()
        self._boxes.clear()
        self.dirty = True

    def bbox_of(self, entity: Any) -> Optional[BoundingBox]:
        return self._boxes.get(entity.id)

    # ------------------------------------------------------------------
    def _rebuild(self) -> None:
        self._keys = list(self._entries)
        if self._keys:
            self._matrix = np.stack([self._boxes[k].as_array() for k in self._keys])
        else:
            self._matrix = np.empty((0, 4), dtype=np.float64)
        self.dirty = False

    def query(self, rect: BoundingBox) -> List[Any]:
        """Entities whose box intersects *rect* (edges inclusive), unordered."""
        if self.dirty:
            self._rebuild()
        if not self._keys:
            return []
        m = self._matrix
        hit = ~(
            (m[:, 2] < rect.min_x)
            | (rect.max_x < m[:, 0])
            | (m[:, 3] < rect.min_y)
            | (rect.max_y < m[:, 1])
        )
        return [self._entries[self._keys[i]] for i in np.flatnonzero(hit)]

    def all(self) -> List[Any]:
        return list(self._entries.values())

    def stats(self) -> dict:
        return {"count": len(self._entries), "dirty": self.dirty}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entity: Any) -> bool:
        return getattr(entity, "id", entity) in self._entries
