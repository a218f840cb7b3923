"""
Slab-parallel Marching Cubes iso-surface extraction.

The depth axis is split into slabs (see ``core.chunker.SlabChunker``).  Each
worker reads its slab plus one halo layer per side and fills private vertex
and triangle buffers.  Vertices are keyed by the global identity of the cube
edge they sit on, or of the voxel when a crossing lands exactly on a corner,
so the final merge is a concatenation in slab order plus a sorted lookup: the
output does not depend on the slab size or worker count.
"""

import threading
import concurrent.futures
import numpy as np
from dataclasses import dataclass
from typing import Optional, Tuple

from core.base import Volume
from core.chunker import SlabChunker, SlabDescriptor
from core.errors import DegenerateVolumeError, ExtractionCancelled
from core.mesh import Mesh
from processors.mc_tables import (
    CORNER_OFFSETS,
    EDGE_AXIS,
    EDGE_ORIGIN,
    TRI_COUNT,
    TRI_TABLE,
)
from config import (
    DEFAULT_NORMAL,
    EXTRACT_MAX_WORKERS,
    EXTRACT_SLAB_DEPTH,
    EXTRACT_STEP_SIZE,
    ISO_EPSILON,
)


@dataclass
class _SlabResult:
    """Private output buffers of one slab worker."""
    edge_ids: np.ndarray      # (n,) int64, ascending
    keys: np.ndarray          # (n,) int64 vertex identity: edge id, or -(voxel + 1) at a tie
    vertices: np.ndarray      # (n, 3) float64
    normals: np.ndarray       # (n, 3) float64
    triangles: np.ndarray     # (m, 3) int64 edge ids


@dataclass(frozen=True)
class _Grid:
    """Sampled field and geometry shared read-only by all workers."""
    samples: np.ndarray
    z_coords: np.ndarray
    spacing: Tuple[float, float, float]
    origin: np.ndarray
    rotation: np.ndarray


def _raise_if_cancelled(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise ExtractionCancelled("Iso-surface extraction cancelled.")


def _rotate(rotation: np.ndarray, vx: np.ndarray, vy: np.ndarray, vz: np.ndarray) -> np.ndarray:
    # Explicit per-element products keep results independent of batch size
    out = np.empty((vx.shape[0], 3), dtype=np.float64)
    for row in range(3):
        out[:, row] = rotation[row, 0] * vx + rotation[row, 1] * vy + rotation[row, 2] * vz
    return out


def _edge_ids(z: np.ndarray, y: np.ndarray, x: np.ndarray, axis, height: int, width: int) -> np.ndarray:
    return ((z * height + y) * width + x) * 3 + axis


class IsoSurfaceExtractor:
    """
    Extracts a triangulated iso-surface from a Volume with Marching Cubes.

    Args:
        max_workers: Number of slab worker threads.
        slab_depth: Cube layers per slab.
        step_size: Voxel subsampling factor; 1 keeps full resolution.
        iso_epsilon: Values within this distance below the iso-value count as inside.
    """

    def __init__(self,
                 max_workers: int = EXTRACT_MAX_WORKERS,
                 slab_depth: int = EXTRACT_SLAB_DEPTH,
                 step_size: int = EXTRACT_STEP_SIZE,
                 iso_epsilon: float = ISO_EPSILON):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        if slab_depth < 1:
            raise ValueError(f"slab_depth must be >= 1, got {slab_depth}")
        if step_size < 1:
            raise ValueError(f"step_size must be >= 1, got {step_size}")
        self.max_workers = int(max_workers)
        self.slab_depth = int(slab_depth)
        self.step_size = int(step_size)
        self.iso_epsilon = float(iso_epsilon)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def extract(self, volume: Volume, iso_value: float,
                cancel: Optional[threading.Event] = None) -> Mesh:
        """
        Extract the surface where the sampled field crosses ``iso_value``.

        Args:
            volume: Source volume (normalised samples).
            iso_value: Threshold in the volume's normalised range.
            cancel: Optional event; once set, extraction stops at the next cube layer.

        Returns:
            Mesh: Deduplicated, deterministic triangle mesh (empty if nothing crosses).

        Raises:
            DegenerateVolumeError: A dimension has fewer than two samples.
            ExtractionCancelled: ``cancel`` was set before completion.
        """
        iso = float(iso_value)
        if not np.isfinite(iso):
            raise ValueError(f"iso_value must be finite, got {iso_value!r}")

        self._check_dimensions(volume.dimensions, "Volume")
        grid = self._prepare_grid(volume)
        d, h, w = grid.samples.shape
        self._check_dimensions((w, h, d), f"Volume subsampled by step {self.step_size}")

        _raise_if_cancelled(cancel)
        chunker = SlabChunker(d, slab_depth=self.slab_depth, halo=1)

        results = self._run_slabs(grid, chunker, iso, cancel)
        _raise_if_cancelled(cancel)

        metadata = {
            "iso_value": iso,
            "step_size": self.step_size,
            "slab_count": chunker.num_slabs,
            "precision": volume.precision.value,
            "source_dimensions": volume.dimensions,
        }
        return self._merge(results, grid.rotation, metadata)

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    @staticmethod
    def _check_dimensions(dims: Tuple[int, int, int], label: str) -> None:
        if min(dims) < 2:
            raise DegenerateVolumeError(
                f"{label} dimensions {tuple(dims)} are too small: "
                "every axis needs at least 2 samples to form a cube"
            )

    def _prepare_grid(self, volume: Volume) -> _Grid:
        s = self.step_size
        sx, sy, _ = volume.spacing
        return _Grid(
            samples=volume.samples[::s, ::s, ::s],
            z_coords=np.asarray(volume.slice_offsets[::s], dtype=np.float64),
            spacing=(sx * s, sy * s, volume.spacing[2] * s),
            origin=np.asarray(volume.origin, dtype=np.float64),
            rotation=np.asarray(volume.direction, dtype=np.float64),
        )

    # ------------------------------------------------------------------
    # Parallel execution
    # ------------------------------------------------------------------

    def _run_slabs(self, grid: _Grid, chunker: SlabChunker, iso: float,
                   cancel: Optional[threading.Event]) -> list:
        slabs = list(chunker)
        workers = max(1, min(self.max_workers, len(slabs)))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(self._extract_slab, grid, desc, iso, cancel) for desc in slabs]
            try:
                # Slab order, not completion order
                return [future.result() for future in futures]
            except Exception:
                for future in futures:
                    future.cancel()
                raise

    def _extract_slab(self, grid: _Grid, desc: SlabDescriptor, iso: float,
                      cancel: Optional[threading.Event]) -> _SlabResult:
        _raise_if_cancelled(cancel)

        block = grid.samples[desc.extended]
        base = desc.extended.start
        outside = block < iso - self.iso_epsilon

        edge_ids, keys, vertices, normals = self._slab_vertices(grid, block, outside, desc, iso)

        triangles = []
        for z in range(desc.core.start, desc.core.stop):
            _raise_if_cancelled(cancel)
            layer = self._layer_triangles(outside, z, base)
            if layer is not None:
                triangles.append(layer)

        tri = np.concatenate(triangles) if triangles else np.zeros((0, 3), dtype=np.int64)
        return _SlabResult(edge_ids=edge_ids, keys=keys, vertices=vertices, normals=normals, triangles=tri)

    # ------------------------------------------------------------------
    # Vertices
    # ------------------------------------------------------------------

    def _slab_vertices(self, grid: _Grid, block: np.ndarray, outside: np.ndarray,
                       desc: SlabDescriptor, iso: float):
        """Interpolated vertex and normal for every crossed edge owned by the slab."""
        _, h, w = block.shape
        base = desc.extended.start
        z0, z1 = desc.core.start, desc.core.stop
        # x/y edges live on voxel planes; the last slab also owns the final plane
        plane_stop = z1 + 1 if desc.is_last else z1

        planes = outside[z0 - base:plane_stop - base]
        crossings = []
        zx, yx, xx = np.nonzero(planes[:, :, :-1] != planes[:, :, 1:])
        crossings.append((zx + z0, yx, xx, 0))
        zy, yy, xy = np.nonzero(planes[:, :-1, :] != planes[:, 1:, :])
        crossings.append((zy + z0, yy, xy, 1))
        lower = outside[z0 - base:z1 - base]
        upper = outside[z0 - base + 1:z1 - base + 1]
        zz, yz, xz = np.nonzero(lower != upper)
        crossings.append((zz + z0, yz, xz, 2))

        z = np.concatenate([c[0] for c in crossings]).astype(np.int64)
        y = np.concatenate([c[1] for c in crossings]).astype(np.int64)
        x = np.concatenate([c[2] for c in crossings]).astype(np.int64)
        axis = np.concatenate([np.full(c[0].shape[0], c[3], dtype=np.int64) for c in crossings])

        ids = _edge_ids(z, y, x, axis, h, w)
        order = np.argsort(ids, kind="stable")
        ids, z, y, x, axis = ids[order], z[order], y[order], x[order], axis[order]

        zb = z + (axis == 2)
        yb = y + (axis == 1)
        xb = x + (axis == 0)

        va = block[z - base, y, x].astype(np.float64)
        vb = block[zb - base, yb, xb].astype(np.float64)
        with np.errstate(divide="ignore", invalid="ignore"):
            t = (iso - va) / (vb - va)
        t = np.clip(np.nan_to_num(t, nan=0.0), 0.0, 1.0)

        # A crossing that lands on a corner belongs to that voxel, whichever
        # edge found it, so every edge meeting there shares one vertex
        at_a = t <= 0.0
        at_b = t >= 1.0
        keys = ids.copy()
        keys[at_a] = -(((z[at_a] * h + y[at_a]) * w + x[at_a]) + 1)
        keys[at_b] = -(((zb[at_b] * h + yb[at_b]) * w + xb[at_b]) + 1)

        sx, sy, _ = grid.spacing
        zc = grid.z_coords
        px = (x + t * (xb - x)) * sx
        py = (y + t * (yb - y)) * sy
        pz = np.where(at_b, zc[zb], zc[z] + t * (zc[zb] - zc[z]))
        positions = _rotate(grid.rotation, px, py, pz) + grid.origin

        ga = self._gradient(block, zc[base:base + block.shape[0]], z - base, y, x, grid.spacing)
        gb = self._gradient(block, zc[base:base + block.shape[0]], zb - base, yb, xb, grid.spacing)
        g = [np.where(at_b, b, a + t * (b - a)) for a, b in zip(ga, gb)]

        # Normals point down the gradient, from high to low values
        normals = _rotate(grid.rotation, -g[0], -g[1], -g[2])
        length = np.sqrt(normals[:, 0] * normals[:, 0] + normals[:, 1] * normals[:, 1]
                         + normals[:, 2] * normals[:, 2])
        flat = length < 1e-12
        normals[~flat] /= length[~flat, np.newaxis]
        normals[flat] = DEFAULT_NORMAL

        return ids, keys, positions, normals

    @staticmethod
    def _gradient(block: np.ndarray, zc: np.ndarray, z: np.ndarray, y: np.ndarray, x: np.ndarray,
                  spacing: Tuple[float, float, float]):
        """Central differences at voxels, one-sided at the volume border."""
        d, h, w = block.shape
        sx, sy, _ = spacing

        xp, xm = np.minimum(x + 1, w - 1), np.maximum(x - 1, 0)
        yp, ym = np.minimum(y + 1, h - 1), np.maximum(y - 1, 0)
        zp, zm = np.minimum(z + 1, d - 1), np.maximum(z - 1, 0)

        gx = (block[z, y, xp].astype(np.float64) - block[z, y, xm]) / ((xp - xm) * sx)
        gy = (block[z, yp, x].astype(np.float64) - block[z, ym, x]) / ((yp - ym) * sy)
        gz = (block[zp, y, x].astype(np.float64) - block[zm, y, x]) / (zc[zp] - zc[zm])
        return gx, gy, gz

    # ------------------------------------------------------------------
    # Triangles
    # ------------------------------------------------------------------

    @staticmethod
    def _layer_triangles(outside: np.ndarray, z: int, base: int) -> Optional[np.ndarray]:
        """Triangles of cube layer ``z`` as global edge-id triples, in row/column order."""
        pair = outside[z - base:z - base + 2]
        _, h, w = pair.shape

        cube_index = np.zeros((h - 1, w - 1), dtype=np.int64)
        for bit, (dx, dy, dz) in enumerate(CORNER_OFFSETS):
            cube_index |= pair[dz, dy:dy + h - 1, dx:dx + w - 1].astype(np.int64) << bit

        ys, xs = np.nonzero(TRI_COUNT[cube_index])
        if ys.size == 0:
            return None

        rows = TRI_TABLE[cube_index[ys, xs]]
        cube, col = np.nonzero(rows >= 0)
        edges = rows[cube, col]

        gx = xs[cube] + EDGE_ORIGIN[edges, 0]
        gy = ys[cube] + EDGE_ORIGIN[edges, 1]
        gz = z + EDGE_ORIGIN[edges, 2]
        return _edge_ids(gz, gy, gx, EDGE_AXIS[edges], h, w).reshape(-1, 3)

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    @staticmethod
    def _merge(results: list, rotation: np.ndarray, metadata: dict) -> Mesh:
        """Single serialisation point: concatenate slab buffers and resolve edge ids."""
        if not results:
            return Mesh.empty(metadata)

        edge_ids = np.concatenate([r.edge_ids for r in results])
        keys = np.concatenate([r.keys for r in results])
        vertices = np.concatenate([r.vertices for r in results])
        normals = np.concatenate([r.normals for r in results])
        tri_edges = np.concatenate([r.triangles for r in results])

        if tri_edges.shape[0] == 0:
            return Mesh.empty(metadata)

        rows = np.searchsorted(edge_ids, tri_edges)

        # One vertex per key, numbered in edge-id order of first appearance
        _, first, inverse = np.unique(keys, return_index=True, return_inverse=True)
        order = np.argsort(first, kind="stable")
        rank = np.empty_like(order)
        rank[order] = np.arange(order.size)
        triangles = rank[inverse.reshape(-1)[rows]]
        vertices = vertices[first[order]]
        normals = normals[first[order]]

        # Triangles collapsed onto a tie corner repeat an index
        keep = ((triangles[:, 0] != triangles[:, 1])
                & (triangles[:, 1] != triangles[:, 2])
                & (triangles[:, 0] != triangles[:, 2]))
        triangles = triangles[keep]
        if triangles.shape[0] == 0:
            return Mesh.empty(metadata)

        # Compact away vertices no triangle references
        used, remap = np.unique(triangles, return_inverse=True)
        triangles = remap.reshape(-1, 3)
        vertices = vertices[used]
        normals = normals[used]

        # Reflected frames flip winding; keep it consistent with the normals
        if np.linalg.det(rotation) < 0:
            triangles = triangles[:, [0, 2, 1]]

        return Mesh(vertices=vertices, normals=normals, triangles=triangles, metadata=metadata)


def extract(volume: Volume, iso_value: float, cancel: Optional[threading.Event] = None) -> Mesh:
    """Extract an iso-surface with default extractor settings."""
    return IsoSurfaceExtractor().extract(volume, iso_value, cancel=cancel)
