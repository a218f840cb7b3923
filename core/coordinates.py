"""
Coordinate conversion helpers for the project-wide 3D convention.

Convention:
- Raw voxel arrays use index order (z, y, x)
- Patient-space geometry uses axis order (x, y, z)
- Spacing/origin tuples are stored as (x, y, z)
- Direction matrices hold the x, y and z grid axes as columns
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple
import numpy as np


def raw_zyx_to_grid_xyz(raw_data: np.ndarray) -> np.ndarray:
    """
    Reorder a raw volume from (z, y, x) to (x, y, z) for VTK/PyVista grids.
    """
    arr = np.asarray(raw_data)
    if arr.ndim != 3:
        raise ValueError(f"Expected 3D volume, got shape={arr.shape}")
    return np.transpose(arr, (2, 1, 0))


def orientation_vectors(orientation: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
    """
    Split a 6-component orientation into unit row and column directions.
    """
    values = np.asarray(orientation, dtype=np.float64)
    if values.shape != (6,):
        raise ValueError(f"Expected 6 orientation components, got shape={values.shape}")
    row, col = values[:3], values[3:]
    row_len = np.linalg.norm(row)
    col_len = np.linalg.norm(col)
    if row_len < 1e-12 or col_len < 1e-12:
        raise ValueError("Orientation vectors must be non-zero.")
    return row / row_len, col / col_len


def slice_normal(orientation: Sequence[float]) -> np.ndarray:
    """
    Unit normal of an image plane (row direction x column direction).
    """
    row, col = orientation_vectors(orientation)
    normal = np.cross(row, col)
    length = np.linalg.norm(normal)
    if length < 1e-12:
        raise ValueError("Row and column directions are parallel.")
    return normal / length


def angle_between(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Angle in radians between two non-zero vectors.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom < 1e-24:
        return float(np.pi)
    # atan2 keeps precision for nearly parallel vectors
    return float(np.arctan2(np.linalg.norm(np.cross(va, vb)), np.dot(va, vb)))


def direction_from_orientation(orientation: Sequence[float], flip_stack: bool = False) -> np.ndarray:
    """
    Build the 3x3 grid direction matrix from a slice orientation.

    Columns are the row direction (grid x), the column direction (grid y) and
    the slice normal (grid z).  ``flip_stack`` negates the normal for series
    whose ascending order runs against it.
    """
    row, col = orientation_vectors(orientation)
    normal = slice_normal(orientation)
    if flip_stack:
        normal = -normal
    return np.column_stack((row, col, normal))


def volume_to_world_matrix(
    spacing_xyz: Tuple[float, float, float],
    origin_xyz: Tuple[float, float, float],
    direction: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    4x4 affine mapping homogeneous voxel indices (x, y, z, 1) to patient space.
    """
    rot = np.eye(3) if direction is None else np.asarray(direction, dtype=np.float64)
    matrix = np.eye(4)
    matrix[:3, :3] = rot * np.asarray(spacing_xyz, dtype=np.float64)[np.newaxis, :]
    matrix[:3, 3] = np.asarray(origin_xyz, dtype=np.float64)
    return matrix


def voxel_xyz_to_world_xyz(
    points_xyz: np.ndarray,
    spacing_xyz: Tuple[float, float, float],
    origin_xyz: Tuple[float, float, float],
    direction: Optional[np.ndarray] = None,
    slice_offsets: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Convert (N, 3) voxel coordinates (x, y, z) to patient coordinates (x, y, z).

    When ``slice_offsets`` is given, fractional z indices are mapped through the
    real layer offsets instead of the nominal z spacing.
    """
    pts = np.atleast_2d(np.asarray(points_xyz, dtype=np.float64))
    if pts.shape[1] != 3:
        raise ValueError(f"Expected (N, 3) points, got shape={pts.shape}")
    sx, sy, sz = (float(s) for s in spacing_xyz)

    local = np.empty_like(pts)
    local[:, 0] = pts[:, 0] * sx
    local[:, 1] = pts[:, 1] * sy
    if slice_offsets is None:
        local[:, 2] = pts[:, 2] * sz
    else:
        offsets = np.asarray(slice_offsets, dtype=np.float64)
        local[:, 2] = np.interp(pts[:, 2], np.arange(offsets.size), offsets)

    rot = np.eye(3) if direction is None else np.asarray(direction, dtype=np.float64)
    return local @ rot.T + np.asarray(origin_xyz, dtype=np.float64)


def world_xyz_to_voxel_xyz(
    world_xyz: np.ndarray,
    spacing_xyz: Tuple[float, float, float],
    origin_xyz: Tuple[float, float, float],
    direction: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Convert (N, 3) patient coordinates back to fractional voxel indices (x, y, z).
    """
    sx, sy, sz = (float(s) for s in spacing_xyz)
    if abs(sx) < 1e-12 or abs(sy) < 1e-12 or abs(sz) < 1e-12:
        raise ValueError("Spacing components must be non-zero.")
    pts = np.atleast_2d(np.asarray(world_xyz, dtype=np.float64))
    rot = np.eye(3) if direction is None else np.asarray(direction, dtype=np.float64)
    local = np.linalg.solve(rot, (pts - np.asarray(origin_xyz, dtype=np.float64)).T).T
    return local / np.asarray((sx, sy, sz))
