"""
Volume assembly from a finalized series.
Slice layers are copied in parallel; every worker writes a disjoint depth layer.
"""

import concurrent.futures
import numpy as np
from typing import Tuple

from core.base import PrecisionLevel, Series, SliceRecord, Volume
from core.coordinates import direction_from_orientation, slice_normal
from core.errors import InsufficientSlicesError
from config import BUILDER_MAX_WORKERS, DEFAULT_PIXEL_SPACING


def normalize_pixels(pixels: np.ndarray, bits_stored: int, is_signed: bool) -> np.ndarray:
    """
    Linear rescale of raw samples to the common [0, 1] float32 range.

    Unsigned: v / (2^bits - 1).  Signed: (v + 2^(bits-1)) / (2^bits - 1).
    Values outside the declared bit depth are not clipped.
    """
    full_scale = float(2 ** int(bits_stored) - 1)
    out = np.asarray(pixels, dtype=np.float64)
    if is_signed:
        out = out + float(2 ** (int(bits_stored) - 1))
    return (out / full_scale).astype(np.float32)


class VolumeBuilder:
    """
    Builds a dense Volume from an ordered, validated Series.

    Args:
        max_workers: Number of threads copying slice layers.
    """

    def __init__(self, max_workers: int = BUILDER_MAX_WORKERS):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.max_workers = int(max_workers)

    def build(self, series: Series) -> Volume:
        """
        Copy every slice into its depth layer and attach physical geometry.

        Raises:
            InsufficientSlicesError: Fewer than two slices.
        """
        slices = series.ordered_slices()
        if len(slices) < 2:
            raise InsufficientSlicesError(
                f"A volume needs at least 2 slices, series has {len(slices)}"
            )

        rows, columns, depth = series.volume_dimensions
        samples = np.empty((depth, rows, columns), dtype=np.float32)

        def copy_layer(index: int) -> None:
            record = slices[index]
            samples[index] = normalize_pixels(record.pixels, record.bits_stored, record.is_signed)

        with concurrent.futures.ThreadPoolExecutor(max_workers=min(self.max_workers, depth)) as executor:
            # list() surfaces worker exceptions; leaving the block is the barrier
            list(executor.map(copy_layer, range(depth)))

        precision = series.precision
        spacing_xy, spacing_precision = self._in_plane_spacing(series)
        precision = PrecisionLevel.combine(precision, spacing_precision)

        first = slices[0]
        if first.position is not None:
            origin = first.position
        else:
            origin = (0.0, 0.0, 0.0)
            precision = PrecisionLevel.DEGRADED

        locations = np.asarray(series.slice_locations, dtype=np.float64)
        offsets = locations - locations[0]

        return Volume(
            samples=samples,
            spacing=(spacing_xy[0], spacing_xy[1], float(series.slice_thickness)),
            origin=origin,
            direction=self._direction(series, slices),
            slice_offsets=offsets,
            precision=precision,
            irregular_spacing=series.irregular_spacing,
            metadata={
                "SeriesUID": series.series_uid,
                "SliceCount": depth,
                "SpacingWarning": series.spacing_warning,
            },
        )

    @staticmethod
    def _in_plane_spacing(series: Series) -> Tuple[Tuple[float, float], PrecisionLevel]:
        """(x, y) spacing: column spacing then row spacing."""
        if series.pixel_spacing is None:
            return (DEFAULT_PIXEL_SPACING, DEFAULT_PIXEL_SPACING), PrecisionLevel.DEGRADED
        row_spacing, col_spacing = series.pixel_spacing
        return (float(col_spacing), float(row_spacing)), PrecisionLevel.FULL

    @staticmethod
    def _direction(series: Series, slices: list) -> np.ndarray:
        if series.orientation is None:
            return np.eye(3)
        first: SliceRecord = slices[0]
        last: SliceRecord = slices[-1]
        flip = False
        if first.position is not None and last.position is not None:
            # Stack axis follows ascending order, which may run against the normal
            step = np.asarray(last.position) - np.asarray(first.position)
            flip = float(np.dot(step, slice_normal(series.orientation))) < 0
        return direction_from_orientation(series.orientation, flip_stack=flip)


def build(series: Series) -> Volume:
    """Build a volume with default builder settings."""
    return VolumeBuilder().build(series)
