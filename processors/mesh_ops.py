"""
Mesh post-processing: Laplacian smoothing and small-component removal.
Both operations return new Mesh objects; inputs are never modified.
"""

import numpy as np
import scipy.sparse as sparse
from scipy.sparse.csgraph import connected_components

from core.mesh import Mesh
from config import (
    DEFAULT_NORMAL,
    MESH_MIN_COMPONENT_TRIANGLES,
    MESH_SMOOTH_FACTOR,
    MESH_SMOOTH_ITERATIONS,
)


def vertex_adjacency(mesh: Mesh) -> sparse.csr_matrix:
    """Symmetric (N, N) vertex adjacency matrix built from triangle edges."""
    n = mesh.vertex_count
    edges = mesh.edges()
    if edges.shape[0] == 0:
        return sparse.csr_matrix((n, n), dtype=np.float64)
    rows = np.concatenate((edges[:, 0], edges[:, 1]))
    cols = np.concatenate((edges[:, 1], edges[:, 0]))
    data = np.ones(rows.shape[0], dtype=np.float64)
    return sparse.csr_matrix((data, (rows, cols)), shape=(n, n))


def compute_vertex_normals(vertices: np.ndarray, triangles: np.ndarray) -> np.ndarray:
    """Area-weighted vertex normals following triangle winding."""
    v = np.asarray(vertices, dtype=np.float64)
    t = np.asarray(triangles, dtype=np.int64)
    normals = np.zeros_like(v)
    if t.shape[0]:
        face = np.cross(v[t[:, 1]] - v[t[:, 0]], v[t[:, 2]] - v[t[:, 0]])
        for k in range(3):
            np.add.at(normals, t[:, k], face)
    length = np.linalg.norm(normals, axis=1)
    flat = length < 1e-12
    normals[~flat] /= length[~flat, np.newaxis]
    normals[flat] = DEFAULT_NORMAL
    return normals


def smooth_mesh(mesh: Mesh,
                iterations: int = MESH_SMOOTH_ITERATIONS,
                factor: float = MESH_SMOOTH_FACTOR) -> Mesh:
    """
    Laplacian smoothing: move each vertex toward the mean of its neighbours.

    Args:
        mesh: Source mesh.
        iterations: Number of smoothing passes.
        factor: Fraction of the way toward the neighbour mean per pass (0..1).

    Returns:
        Mesh: Smoothed copy with recomputed normals (same topology).
    """
    if iterations <= 0 or factor <= 0 or mesh.is_empty:
        return mesh

    adjacency = vertex_adjacency(mesh)
    degree = np.asarray(adjacency.sum(axis=1)).ravel()
    has_neighbours = degree > 0

    positions = np.asarray(mesh.vertices, dtype=np.float64).copy()
    for _ in range(int(iterations)):
        mean = adjacency @ positions
        mean[has_neighbours] /= degree[has_neighbours, np.newaxis]
        positions[has_neighbours] += (mean[has_neighbours] - positions[has_neighbours]) * factor

    metadata = dict(mesh.metadata)
    metadata["smooth_iterations"] = int(iterations)
    metadata["smooth_factor"] = float(factor)
    return Mesh(
        vertices=positions,
        normals=compute_vertex_normals(positions, mesh.triangles),
        triangles=np.array(mesh.triangles),
        metadata=metadata,
    )


def label_components(mesh: Mesh) -> np.ndarray:
    """Connected-component label of every triangle (shared vertices connect)."""
    if mesh.is_empty:
        return np.zeros(0, dtype=np.int64)
    _, vertex_labels = connected_components(vertex_adjacency(mesh), directed=False)
    return vertex_labels[mesh.triangles[:, 0]].astype(np.int64)


def remove_small_components(mesh: Mesh, min_triangles: int = MESH_MIN_COMPONENT_TRIANGLES) -> Mesh:
    """
    Drop connected pieces with fewer than ``min_triangles`` triangles.

    Returns:
        Mesh: Copy holding only the large components, vertices compacted.
    """
    if mesh.is_empty or min_triangles <= 1:
        return mesh

    labels = label_components(mesh)
    sizes = np.bincount(labels)
    keep = sizes[labels] >= int(min_triangles)
    if keep.all():
        return mesh

    triangles = mesh.triangles[keep]
    metadata = dict(mesh.metadata)
    metadata["removed_components"] = int(np.count_nonzero(sizes < int(min_triangles)))
    if triangles.shape[0] == 0:
        return Mesh.empty(metadata)

    used, remap = np.unique(triangles, return_inverse=True)
    return Mesh(
        vertices=mesh.vertices[used],
        normals=mesh.normals[used],
        triangles=remap.reshape(-1, 3),
        metadata=metadata,
    )
