"""
Typed failures raised by the reconstruction core.

Every assembly, build and extraction failure derives from
``ReconstructionError`` so callers can catch the whole family at once.
Cancellation is not a failure and derives from ``InterruptedError`` instead.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


class ReconstructionError(Exception):
    """Base class for all reconstruction failures."""


class GeometryMismatchError(ReconstructionError):
    """A slice disagrees with the series in size, orientation, position or pixel spacing."""


class SeriesMismatchError(ReconstructionError):
    """A slice belonging to another series was offered to an assembler."""


class DuplicateSliceLocationError(ReconstructionError):
    """Two slices of one series share the same location."""

    def __init__(self, message: str, location: Optional[float] = None) -> None:
        super().__init__(message)
        self.location = location


class IrregularSpacingError(ReconstructionError):
    """
    Consecutive slice gaps are not uniform.

    Recoverable: the finalized series is attached as ``series`` and remains
    usable, flagged as irregular.
    """

    def __init__(self, message: str, series: Any = None, spacings: Sequence[float] = ()) -> None:
        super().__init__(message)
        self.series = series
        self.spacings = tuple(float(s) for s in spacings)


class InsufficientSlicesError(ReconstructionError):
    """Fewer than two slices are available for a volume."""


class DegenerateVolumeError(ReconstructionError):
    """A volume dimension is smaller than two samples."""


class ExtractionCancelled(InterruptedError):
    """Iso-surface extraction was cancelled before completion."""


__all__ = [
    "ReconstructionError",
    "GeometryMismatchError",
    "SeriesMismatchError",
    "DuplicateSliceLocationError",
    "IrregularSpacingError",
    "InsufficientSlicesError",
    "DegenerateVolumeError",
    "ExtractionCancelled",
]
