"""
Core data structures and abstract base classes.
"""

import numpy as np
import pyvista as pv
from dataclasses import dataclass, field
from abc import ABC, abstractmethod
from enum import Enum
from typing import Tuple, Dict, Any, Optional, Callable, List

from core.coordinates import (
    raw_zyx_to_grid_xyz,
    slice_normal,
    volume_to_world_matrix,
    voxel_xyz_to_world_xyz,
)


class PrecisionLevel(str, Enum):
    """Whether geometry was measured or filled in with defaults."""
    FULL = "full"
    DEGRADED = "degraded-default"

    @staticmethod
    def combine(*levels: "PrecisionLevel") -> "PrecisionLevel":
        """The weakest of several precision levels."""
        if any(level is PrecisionLevel.DEGRADED for level in levels):
            return PrecisionLevel.DEGRADED
        return PrecisionLevel.FULL


def _as_float_tuple(values, length: int, name: str) -> Optional[Tuple[float, ...]]:
    if values is None:
        return None
    out = tuple(float(v) for v in values)
    if len(out) != length:
        raise ValueError(f"{name} must have {length} components, got {len(out)}")
    return out


@dataclass(frozen=True, eq=False)
class SliceRecord:
    """
    One decoded 2D image and its spatial tags.

    Attributes:
        pixels (np.ndarray): Row-major (rows, columns) buffer as typed by the decoder.
        rows (int): Number of pixel rows.
        columns (int): Number of pixel columns.
        bits_stored (int): Significant bits per sample.
        is_signed (bool): Whether samples are two's complement.
        slice_location (Optional[float]): Position along the stack axis (mm).
        position (Optional[Tuple[float, float, float]]): Patient position of the first pixel (x, y, z).
        orientation (Optional[Tuple[float, ...]]): Row direction cosines followed by column direction cosines.
        pixel_spacing (Optional[Tuple[float, float]]): (row spacing, column spacing) in mm.
        series_uid (str): Identifier of the owning series.
        instance_number (Optional[int]): Acquisition index, used only when no location is available.
    """
    pixels: np.ndarray
    rows: int
    columns: int
    bits_stored: int
    is_signed: bool = False
    slice_location: Optional[float] = None
    position: Optional[Tuple[float, float, float]] = None
    orientation: Optional[Tuple[float, float, float, float, float, float]] = None
    pixel_spacing: Optional[Tuple[float, float]] = None
    series_uid: str = ""
    instance_number: Optional[int] = None

    def __post_init__(self):
        pixels = np.asarray(self.pixels).view()
        if pixels.shape != (int(self.rows), int(self.columns)):
            raise ValueError(
                f"Pixel buffer shape {pixels.shape} does not match "
                f"rows x columns ({self.rows}, {self.columns})"
            )
        if int(self.bits_stored) < 1:
            raise ValueError(f"bits_stored must be positive, got {self.bits_stored}")
        pixels.flags.writeable = False

        object.__setattr__(self, "pixels", pixels)
        object.__setattr__(self, "rows", int(self.rows))
        object.__setattr__(self, "columns", int(self.columns))
        object.__setattr__(self, "bits_stored", int(self.bits_stored))
        object.__setattr__(self, "position", _as_float_tuple(self.position, 3, "position"))
        object.__setattr__(self, "orientation", _as_float_tuple(self.orientation, 6, "orientation"))
        object.__setattr__(self, "pixel_spacing", _as_float_tuple(self.pixel_spacing, 2, "pixel_spacing"))
        if self.slice_location is not None:
            object.__setattr__(self, "slice_location", float(self.slice_location))

    @property
    def normal(self) -> Optional[np.ndarray]:
        """Unit normal of the image plane, or None without orientation."""
        if self.orientation is None:
            return None
        return slice_normal(self.orientation)

    @property
    def location(self) -> Optional[float]:
        """
        Effective position along the stack axis.

        Falls back from the explicit slice location to the position projected
        on the slice normal, then to the instance number.
        """
        if self.slice_location is not None:
            return self.slice_location
        if self.position is not None and self.orientation is not None:
            return float(np.dot(np.asarray(self.position), self.normal))
        if self.instance_number is not None:
            return float(self.instance_number)
        return None

    @property
    def precision(self) -> PrecisionLevel:
        """FULL only when position and orientation were both supplied."""
        if self.position is None or self.orientation is None:
            return PrecisionLevel.DEGRADED
        return PrecisionLevel.FULL


@dataclass(frozen=True, eq=False)
class Series:
    """
    An ordered, validated stack of slices sharing one series identifier.

    Produced by ``SeriesAssembler.finalize``; never mutated afterwards.
    """
    series_uid: str = ""
    slices: Tuple[SliceRecord, ...] = ()
    slice_locations: Tuple[float, ...] = ()
    slice_thickness: Optional[float] = None
    spacings: Tuple[float, ...] = ()
    irregular_spacing: bool = False
    spacing_warning: Optional[str] = None
    precision: PrecisionLevel = PrecisionLevel.FULL
    orientation: Optional[Tuple[float, ...]] = None
    pixel_spacing: Optional[Tuple[float, float]] = None

    @property
    def slice_count(self) -> int:
        return len(self.slices)

    @property
    def is_empty(self) -> bool:
        return not self.slices

    @property
    def volume_dimensions(self) -> Tuple[int, int, int]:
        """Returns (rows, columns, slice count), or (0, 0, 0) when empty."""
        if not self.slices:
            return (0, 0, 0)
        first = self.slices[0]
        return (first.rows, first.columns, len(self.slices))

    def ordered_slices(self) -> List[SliceRecord]:
        """A fresh list of the slices in ascending location order."""
        return list(self.slices)


@dataclass(frozen=True, eq=False)
class Volume:
    """
    Dense scalar grid assembled from a series.

    Attributes:
        samples (np.ndarray): Read-only float32 matrix (Z, Y, X), normalised to [0, 1].
        spacing (Tuple[float, float, float]): Voxel spacing (x, y, z) in mm.
        origin (Tuple[float, float, float]): Patient position of voxel [0, 0, 0] (x, y, z).
        direction (np.ndarray): 3x3 matrix whose columns are the x, y and z axis directions.
        slice_offsets (np.ndarray): Physical offset of every depth layer from layer 0 (mm).
        precision (PrecisionLevel): FULL or DEGRADED geometry.
        irregular_spacing (bool): True when the source series had non-uniform gaps.
        metadata (Dict[str, Any]): Arbitrary metadata (SeriesUID, etc.).
    """
    samples: np.ndarray
    spacing: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    origin: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    direction: Optional[np.ndarray] = None
    slice_offsets: Optional[np.ndarray] = None
    precision: PrecisionLevel = PrecisionLevel.FULL
    irregular_spacing: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        samples = np.asarray(self.samples, dtype=np.float32)
        if samples.ndim != 3:
            raise ValueError(f"Expected 3D sample array, got shape={samples.shape}")
        samples = samples.view()
        samples.flags.writeable = False

        direction = np.eye(3) if self.direction is None else np.array(self.direction, dtype=np.float64)
        if direction.shape != (3, 3):
            raise ValueError(f"direction must be 3x3, got shape={direction.shape}")
        direction.flags.writeable = False

        spacing = tuple(float(s) for s in self.spacing)
        if self.slice_offsets is None:
            offsets = np.arange(samples.shape[0], dtype=np.float64) * spacing[2]
        else:
            offsets = np.array(self.slice_offsets, dtype=np.float64)
        if offsets.shape != (samples.shape[0],):
            raise ValueError(f"slice_offsets must have {samples.shape[0]} entries, got {offsets.shape}")
        if offsets.size > 1 and not np.all(np.diff(offsets) > 0):
            raise ValueError("slice_offsets must be strictly increasing")
        offsets.flags.writeable = False

        object.__setattr__(self, "samples", samples)
        object.__setattr__(self, "direction", direction)
        object.__setattr__(self, "slice_offsets", offsets)
        object.__setattr__(self, "spacing", spacing)
        object.__setattr__(self, "origin", tuple(float(o) for o in self.origin))

    @property
    def shape(self) -> Tuple[int, int, int]:
        """Array shape (Z, Y, X)."""
        return self.samples.shape

    @property
    def dimensions(self) -> Tuple[int, int, int]:
        """Grid size (width, height, depth)."""
        d, h, w = self.samples.shape
        return (w, h, d)

    @property
    def voxel_count(self) -> int:
        return int(self.samples.size)

    def value_range(self) -> Tuple[float, float]:
        if self.samples.size == 0:
            return (0.0, 0.0)
        return (float(self.samples.min()), float(self.samples.max()))

    def voxel_value(self, x: int, y: int, z: int) -> float:
        """Sample at column x, row y, layer z."""
        d, h, w = self.samples.shape
        if not (0 <= x < w and 0 <= y < h and 0 <= z < d):
            raise IndexError(f"Voxel ({x}, {y}, {z}) outside grid {self.dimensions}")
        return float(self.samples[z, y, x])

    @property
    def volume_to_world(self) -> np.ndarray:
        """4x4 affine mapping voxel indices (x, y, z, 1) to patient space."""
        return volume_to_world_matrix(self.spacing, self.origin, self.direction)

    def voxel_to_world(self, points_xyz: np.ndarray) -> np.ndarray:
        """Map (N, 3) voxel coordinates to patient space honouring real layer offsets."""
        return voxel_xyz_to_world_xyz(
            points_xyz, self.spacing, self.origin, self.direction, self.slice_offsets
        )

    def to_image_data(self) -> pv.ImageData:
        """Uniform-grid view for PyVista renderers (axis-aligned spacing)."""
        grid = pv.ImageData()
        grid.dimensions = self.dimensions
        grid.spacing = self.spacing
        grid.origin = self.origin
        grid.point_data["values"] = np.asfortranarray(raw_zyx_to_grid_xyz(self.samples)).ravel(order="F")
        return grid


class BaseLoader(ABC):
    """Abstract base class for slice acquisition strategies."""

    @abstractmethod
    def load(self, source: Any, callback: Optional[Callable[[int, str], None]] = None) -> Series:
        """
        Load and assemble one series from a source.

        Args:
            source: Path to a directory, or loader-specific parameters.
            callback: Optional progress callback (percent, message).

        Returns:
            Series: Assembled series.
        """
        pass
