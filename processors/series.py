"""
Series assembly: validates slice geometry and produces an ordered Series.

Slices may arrive out of order and from parallel decode workers;
``SeriesAssembler.add_slice`` serialises them behind a single lock.
"""

import threading
import numpy as np
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Tuple

from core.base import PrecisionLevel, Series, SliceRecord
from core.coordinates import angle_between, orientation_vectors
from core.errors import (
    DuplicateSliceLocationError,
    GeometryMismatchError,
    IrregularSpacingError,
    SeriesMismatchError,
)
from config import (
    ASSEMBLY_ANGULAR_TOLERANCE,
    ASSEMBLY_LOCATION_EPSILON,
    ASSEMBLY_PIXEL_SPACING_TOLERANCE,
    ASSEMBLY_POSITION_TOLERANCE,
    SPACING_ABSOLUTE_TOLERANCE,
    SPACING_RELATIVE_TOLERANCE,
)


class SeriesAssembler:
    """
    Collects slices of one series and validates their spatial consistency.

    The first accepted slice fixes the reference size, orientation, pixel
    spacing and series identifier; every later slice is checked against it.
    """

    def __init__(self,
                 series_uid: Optional[str] = None,
                 angular_tolerance: float = ASSEMBLY_ANGULAR_TOLERANCE,
                 position_tolerance: float = ASSEMBLY_POSITION_TOLERANCE,
                 location_epsilon: float = ASSEMBLY_LOCATION_EPSILON):
        self._series_uid = series_uid
        self.angular_tolerance = angular_tolerance
        self.position_tolerance = position_tolerance
        self.location_epsilon = location_epsilon

        self._lock = threading.Lock()
        self._slices: List[SliceRecord] = []
        self._reference: Optional[SliceRecord] = None
        self._series: Optional[Series] = None

    # ------------------------------------------------------------------
    # Incremental assembly
    # ------------------------------------------------------------------

    def add_slice(self, record: SliceRecord) -> None:
        """
        Append a decoded slice. Safe to call from several threads.

        Raises:
            GeometryMismatchError: Size, orientation, position or pixel spacing disagree.
            SeriesMismatchError: The slice belongs to a different series.
            RuntimeError: The assembler was already finalized.
        """
        with self._lock:
            if self._series is not None:
                raise RuntimeError("Cannot add slices to a finalized series.")
            if self._series_uid is None:
                self._series_uid = record.series_uid
            elif record.series_uid != self._series_uid:
                raise SeriesMismatchError(
                    f"Slice belongs to series '{record.series_uid}', "
                    f"expected '{self._series_uid}'"
                )
            if record.location is None:
                raise GeometryMismatchError(
                    "Slice has no slice location, position or instance number to order it by."
                )

            if self._reference is None:
                self._reference = record
            else:
                self._check_geometry(self._reference, record)
            self._slices.append(record)

    def _check_geometry(self, ref: SliceRecord, record: SliceRecord) -> None:
        if (record.rows, record.columns) != (ref.rows, ref.columns):
            raise GeometryMismatchError(
                f"Slice size {record.rows}x{record.columns} differs from "
                f"series size {ref.rows}x{ref.columns}"
            )

        if ref.orientation is not None and record.orientation is not None:
            ref_row, ref_col = orientation_vectors(ref.orientation)
            row, col = orientation_vectors(record.orientation)
            worst = max(angle_between(ref_row, row), angle_between(ref_col, col))
            if worst > self.angular_tolerance:
                raise GeometryMismatchError(
                    f"Slice orientation deviates by {worst:.2e} rad "
                    f"(tolerance {self.angular_tolerance:.1e})"
                )

        if ref.pixel_spacing is not None and record.pixel_spacing is not None:
            a = np.asarray(ref.pixel_spacing)
            b = np.asarray(record.pixel_spacing)
            if np.any(np.abs(a - b) > ASSEMBLY_PIXEL_SPACING_TOLERANCE * np.abs(a)):
                raise GeometryMismatchError(
                    f"Pixel spacing {tuple(b)} differs from series spacing {tuple(a)}"
                )

        if ref.position is not None and record.position is not None and ref.orientation is not None:
            # Stacked slices only move along the normal
            row, col = orientation_vectors(ref.orientation)
            delta = np.asarray(record.position) - np.asarray(ref.position)
            drift = max(abs(float(np.dot(delta, row))), abs(float(np.dot(delta, col))))
            limit = self.position_tolerance * self._smallest_pixel_spacing(ref)
            if drift > limit:
                raise GeometryMismatchError(
                    f"Slice position drifts {drift:.4g} mm in-plane (tolerance {limit:.4g} mm)"
                )

    @staticmethod
    def _smallest_pixel_spacing(ref: SliceRecord) -> float:
        if ref.pixel_spacing is None:
            return 1.0
        return float(min(ref.pixel_spacing))

    # ------------------------------------------------------------------
    # Queries during assembly
    # ------------------------------------------------------------------

    @property
    def series_uid(self) -> Optional[str]:
        return self._series_uid

    @property
    def slice_count(self) -> int:
        with self._lock:
            return len(self._slices)

    @property
    def volume_dimensions(self) -> Tuple[int, int, int]:
        """(rows, columns, slice count), or (0, 0, 0) while empty."""
        with self._lock:
            if self._reference is None:
                return (0, 0, 0)
            return (self._reference.rows, self._reference.columns, len(self._slices))

    @property
    def is_finalized(self) -> bool:
        return self._series is not None

    @property
    def series(self) -> Series:
        if self._series is None:
            raise RuntimeError("Series has not been finalized.")
        return self._series

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def finalize(self, allow_irregular: bool = False) -> Series:
        """
        Sort slices by location and derive the slice thickness.

        Args:
            allow_irregular: Return an irregular series instead of raising.

        Raises:
            DuplicateSliceLocationError: Two slices share a location.
            IrregularSpacingError: Gaps are not uniform; the flagged series is attached.
        """
        with self._lock:
            if self._series is None:
                self._series = self._build_series()
            series = self._series

        if series.irregular_spacing and not allow_irregular:
            raise IrregularSpacingError(series.spacing_warning, series=series, spacings=series.spacings)
        return series

    def _build_series(self) -> Series:
        keyed = [(record.location, record) for record in self._slices]
        keyed.sort(key=lambda item: item[0])
        locations = tuple(float(loc) for loc, _ in keyed)
        ordered = tuple(record for _, record in keyed)

        for a, b in zip(locations, locations[1:]):
            if b - a <= self.location_epsilon:
                raise DuplicateSliceLocationError(
                    f"Two slices share location {b:.4f} mm", location=b
                )

        spacings = tuple(float(g) for g in np.diff(locations)) if len(locations) > 1 else ()
        thickness = None
        irregular = False
        warning = None
        if len(locations) >= 2:
            thickness = (locations[-1] - locations[0]) / (len(locations) - 1)
            tolerance = max(SPACING_ABSOLUTE_TOLERANCE, SPACING_RELATIVE_TOLERANCE * thickness)
            deviation = max(abs(g - thickness) for g in spacings)
            if deviation > tolerance:
                irregular = True
                warning = (
                    f"Irregular slice spacing: gaps range {min(spacings):.4f}-{max(spacings):.4f} mm "
                    f"around mean {thickness:.4f} mm"
                )

        precision = PrecisionLevel.combine(*(r.precision for r in ordered))

        ref = self._reference
        return Series(
            series_uid=self._series_uid or "",
            slices=ordered,
            slice_locations=locations,
            slice_thickness=thickness,
            spacings=spacings,
            irregular_spacing=irregular,
            spacing_warning=warning,
            precision=precision,
            orientation=ref.orientation if ref is not None else None,
            pixel_spacing=ref.pixel_spacing if ref is not None else None,
        )

    def ordered_slices(self) -> List[SliceRecord]:
        """A fresh list of the sorted slices. Requires finalize()."""
        return self.series.ordered_slices()


# ---------------------------------------------------------------------------
# One-shot helpers
# ---------------------------------------------------------------------------

def assemble(slices: Iterable[SliceRecord], allow_irregular: bool = False) -> Series:
    """Validate and order the slices of one series."""
    assembler = SeriesAssembler()
    for record in slices:
        assembler.add_slice(record)
    return assembler.finalize(allow_irregular=allow_irregular)


def group_by_series(slices: Iterable[SliceRecord]) -> Dict[str, List[SliceRecord]]:
    """Split decoded slices by series identifier, keeping arrival order."""
    groups: Dict[str, List[SliceRecord]] = OrderedDict()
    for record in slices:
        groups.setdefault(record.series_uid, []).append(record)
    return groups
