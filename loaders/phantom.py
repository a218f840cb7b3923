"""
Synthetic slice generators for testing and demos.
"""

import numpy as np
from typing import Callable, List, Optional, Tuple

from core import BaseLoader, Series, SliceRecord
from processors.series import SeriesAssembler
from config import PHANTOM_BITS_STORED, PHANTOM_SIZE, PHANTOM_SLICE_THICKNESS


AXIAL_ORIENTATION = (1.0, 0.0, 0.0, 0.0, 1.0, 0.0)


def sphere_field(size: int, radius: float, center: Optional[Tuple[float, float, float]] = None) -> np.ndarray:
    """
    Filled sphere mask on a (size, size, size) grid, indexed (z, y, x).

    The centre defaults to the middle of the grid.
    """
    c = (size - 1) / 2.0
    cz, cy, cx = center if center is not None else (c, c, c)
    zz, yy, xx = np.ogrid[0:size, 0:size, 0:size]
    return (zz - cz) ** 2 + (yy - cy) ** 2 + (xx - cx) ** 2 <= radius ** 2


def phantom_slices(field: np.ndarray,
                   bits_stored: int = PHANTOM_BITS_STORED,
                   thickness: float = PHANTOM_SLICE_THICKNESS,
                   pixel_spacing: Tuple[float, float] = (1.0, 1.0),
                   origin: Tuple[float, float, float] = (0.0, 0.0, 0.0),
                   series_uid: str = "PHANTOM") -> List[SliceRecord]:
    """
    Cut a (z, y, x) field into axial SliceRecords.

    Boolean fields map True to full scale; numeric fields are stored as given.
    """
    if field.dtype == bool:
        stored = field.astype(np.uint16) * np.uint16(2 ** bits_stored - 1)
    else:
        stored = np.asarray(field)

    ox, oy, oz = origin
    records = []
    for z in range(stored.shape[0]):
        location = oz + z * thickness
        records.append(SliceRecord(
            pixels=stored[z],
            rows=stored.shape[1],
            columns=stored.shape[2],
            bits_stored=bits_stored,
            slice_location=location,
            position=(ox, oy, location),
            orientation=AXIAL_ORIENTATION,
            pixel_spacing=pixel_spacing,
            series_uid=series_uid,
            instance_number=z + 1,
        ))
    return records


class PhantomLoader(BaseLoader):
    """Synthetic sphere phantom delivered as an assembled series."""

    def __init__(self, shuffle: bool = True, seed: Optional[int] = None):
        """
        Args:
            shuffle: Feed slices to the assembler in random order, like parallel decoding does.
            seed: Random seed for the shuffle.
        """
        self.shuffle = shuffle
        self.seed = seed

    def load(self, size: int = PHANTOM_SIZE, callback: Optional[Callable[[int, str], None]] = None,
             radius: Optional[float] = None) -> Series:
        size = int(size)
        radius = float(radius) if radius is not None else size / 3.0
        print(f"[Loader] Generating synthetic sphere phantom (size={size}, radius={radius:.1f})...")
        if callback:
            callback(0, "Generating sphere phantom...")

        records = phantom_slices(sphere_field(size, radius))
        if self.shuffle:
            order = np.random.default_rng(self.seed).permutation(len(records))
            records = [records[i] for i in order]

        assembler = SeriesAssembler()
        for i, record in enumerate(records):
            assembler.add_slice(record)
            if callback and i % 16 == 0:
                callback(10 + int(80 * i / len(records)), f"Assembling slice {i + 1}/{len(records)}...")

        series = assembler.finalize()
        print(f"[Loader] Phantom ready: {series.volume_dimensions} (rows, cols, slices)")
        if callback:
            callback(100, "Phantom ready.")
        return series
