"""
Triangle mesh container returned by iso-surface extraction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import numpy as np
import pyvista as pv


def _readonly(arr: np.ndarray) -> np.ndarray:
    view = arr.view()
    view.flags.writeable = False
    return view


@dataclass(frozen=True, eq=False)
class Mesh:
    """
    Immutable indexed triangle mesh in patient space.

    Attributes
    ----------
    vertices : (N, 3) float32
        Vertex positions (x, y, z) in mm.
    normals : (N, 3) float32
        Unit normal per vertex.
    triangles : (T, 3) int64
        Vertex indices of every triangle.
    metadata : dict
        Extraction parameters (iso value, step size, ...).
    """

    vertices:   np.ndarray
    normals:    np.ndarray
    triangles:  np.ndarray
    metadata:   Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        vertices  = np.asarray(self.vertices,  dtype=np.float32).reshape(-1, 3)
        normals   = np.asarray(self.normals,   dtype=np.float32).reshape(-1, 3)
        triangles = np.asarray(self.triangles, dtype=np.int64).reshape(-1, 3)

        if normals.shape != vertices.shape:
            raise ValueError(
                f"normals shape {normals.shape} does not match vertices shape {vertices.shape}"
            )
        if triangles.size and (triangles.min() < 0 or triangles.max() >= len(vertices)):
            raise ValueError("Triangle indices out of range.")

        object.__setattr__(self, "vertices",  _readonly(vertices))
        object.__setattr__(self, "normals",   _readonly(normals))
        object.__setattr__(self, "triangles", _readonly(triangles))

    # ------------------------------------------------------------------
    @classmethod
    def empty(cls, metadata: Optional[Dict[str, Any]] = None) -> "Mesh":
        return cls(
            vertices  = np.zeros((0, 3), dtype=np.float32),
            normals   = np.zeros((0, 3), dtype=np.float32),
            triangles = np.zeros((0, 3), dtype=np.int64),
            metadata  = dict(metadata or {}),
        )

    @property
    def vertex_count(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def triangle_count(self) -> int:
        return int(self.triangles.shape[0])

    @property
    def is_empty(self) -> bool:
        return self.triangle_count == 0

    @property
    def bounding_box(self) -> Optional[Tuple[Tuple[float, float, float], Tuple[float, float, float]]]:
        """((xmin, ymin, zmin), (xmax, ymax, zmax)), or None without vertices."""
        if self.vertex_count == 0:
            return None
        lo = self.vertices.min(axis=0)
        hi = self.vertices.max(axis=0)
        return (tuple(float(v) for v in lo), tuple(float(v) for v in hi))  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Topology queries
    # ------------------------------------------------------------------

    def _edge_uses(self) -> Tuple[np.ndarray, np.ndarray]:
        if self.triangle_count == 0:
            return np.zeros((0, 2), dtype=np.int64), np.zeros(0, dtype=np.int64)
        t = self.triangles
        pairs = np.concatenate((t[:, [0, 1]], t[:, [1, 2]], t[:, [2, 0]]))
        pairs = np.sort(pairs, axis=1)
        return np.unique(pairs, axis=0, return_counts=True)

    def edges(self) -> np.ndarray:
        """Unique undirected edges (E, 2), smaller index first."""
        return self._edge_uses()[0]

    def boundary_edges(self) -> np.ndarray:
        """Edges used by exactly one triangle."""
        edges, counts = self._edge_uses()
        return edges[counts == 1]

    @property
    def is_watertight(self) -> bool:
        """True when every edge borders exactly two triangles."""
        if self.is_empty:
            return False
        _, counts = self._edge_uses()
        return bool(np.all(counts == 2))

    # ------------------------------------------------------------------
    def to_polydata(self) -> pv.PolyData:
        """Hand the mesh to PyVista for rendering or export."""
        if self.is_empty:
            return pv.PolyData()
        faces = np.hstack(
            (np.full((self.triangle_count, 1), 3, dtype=np.int64), self.triangles)
        ).ravel()
        poly = pv.PolyData(np.array(self.vertices, dtype=np.float32), faces)
        poly.point_data["Normals"] = np.array(self.normals)
        return poly
