"""
DICOM series loader.
Decodes files with pydicom in parallel and feeds each slice straight into a
shared SeriesAssembler from the worker threads.
"""

import os
import re
import threading
import pydicom
from pydicom.errors import InvalidDicomError
import concurrent.futures
from glob import glob
from typing import Callable, Dict, List, Optional

from core import BaseLoader, Series, SliceRecord
from core.errors import ReconstructionError
from processors.series import SeriesAssembler
from config import LOADER_MAX_WORKERS


def _natural_sort_key(text: str):
    """Natural sorting key for filenames like img_1, img_2, ..., img_10"""
    return [int(c) if c.isdigit() else c.lower() for c in re.split(r'(\d+)', text)]


# ==========================================
# Shared Utility Functions
# ==========================================

def _validate_path(folder_path: str) -> None:
    """Validate folder path exists."""
    if not os.path.exists(folder_path):
        raise FileNotFoundError(f"Path does not exist: {folder_path}")


def _find_dicom_files(folder_path: str) -> List[str]:
    """Find DICOM files in folder, checking extension first then content."""
    files = glob(os.path.join(folder_path, "*.dcm"))
    if not files:
        # Check all files for a valid DICOM header
        files = []
        for f in glob(os.path.join(folder_path, "*")):
            if os.path.isfile(f):
                try:
                    pydicom.dcmread(f, stop_before_pixels=True)
                    files.append(f)
                except (InvalidDicomError, OSError):
                    continue
    if not files:
        raise FileNotFoundError("No valid DICOM files found")
    files.sort(key=lambda f: _natural_sort_key(os.path.basename(f)))
    return files


def _optional_float(ds, keyword: str) -> Optional[float]:
    value = getattr(ds, keyword, None)
    if value is None or value == "":
        return None
    return float(value)


def _optional_vector(ds, keyword: str, length: int) -> Optional[tuple]:
    value = getattr(ds, keyword, None)
    if value is None:
        return None
    values = tuple(float(v) for v in value)
    return values if len(values) == length else None


def slice_record_from_dataset(ds) -> SliceRecord:
    """
    Adapt a decoded pydicom dataset into a SliceRecord.

    Missing spatial tags stay None; the assembler and builder downgrade
    precision instead of failing.

    Args:
        ds: pydicom Dataset carrying pixel data.

    Returns:
        SliceRecord: Immutable slice with the raw stored values.
    """
    pixels = ds.pixel_array
    if pixels.ndim != 2:
        raise ValueError(f"Expected a single-frame image, got pixel array shape {pixels.shape}")

    bits_allocated = int(getattr(ds, "BitsAllocated", 16))
    instance = getattr(ds, "InstanceNumber", None)
    return SliceRecord(
        pixels=pixels,
        rows=int(ds.Rows),
        columns=int(ds.Columns),
        bits_stored=int(getattr(ds, "BitsStored", bits_allocated)),
        is_signed=int(getattr(ds, "PixelRepresentation", 0)) == 1,
        slice_location=_optional_float(ds, "SliceLocation"),
        position=_optional_vector(ds, "ImagePositionPatient", 3),
        orientation=_optional_vector(ds, "ImageOrientationPatient", 6),
        pixel_spacing=_optional_vector(ds, "PixelSpacing", 2),
        series_uid=str(getattr(ds, "SeriesInstanceUID", "")),
        instance_number=int(instance) if instance not in (None, "") else None,
    )


class DicomSeriesLoader(BaseLoader):
    """
    Concrete DICOM loader for CT/MR slice stacks.

    Every file is decoded on a worker thread and added to the assembler of its
    series as soon as it is read, in whatever order the workers finish.
    """

    def __init__(self, max_workers: int = LOADER_MAX_WORKERS,
                 series_uid: Optional[str] = None,
                 allow_irregular: bool = False):
        """
        Args:
            max_workers: Number of parallel threads for file reading.
            series_uid: Series to return; None picks the series with most slices.
            allow_irregular: Accept series with non-uniform slice gaps.
        """
        self.max_workers = max_workers
        self.series_uid = series_uid
        self.allow_irregular = allow_irregular

    def load(self, folder_path: str, callback: Optional[Callable[[int, str], None]] = None) -> Series:
        print(f"[Loader] Scanning folder: {folder_path} ...")
        assemblers, errors = self.scan(folder_path, callback)

        uid = self._select_series(assemblers)
        if uid in errors:
            raise errors[uid]

        assembler = assemblers[uid]
        if callback: callback(90, f"Finalizing series {uid} ({assembler.slice_count} slices)...")
        series = assembler.finalize(allow_irregular=self.allow_irregular)
        if series.irregular_spacing:
            print(f"[Loader] Warning: {series.spacing_warning}")

        print(f"[Loader] Loading complete: {series.volume_dimensions} (rows, cols, slices), "
              f"thickness: {series.slice_thickness}")
        if callback: callback(100, "Loading complete.")
        return series

    def scan(self, folder_path: str, callback: Optional[Callable[[int, str], None]] = None):
        """
        Decode every file of a folder into per-series assemblers.

        Returns:
            (assemblers, errors): Assemblers keyed by series UID, and the first
            assembly error of each series that failed.
        """
        if callback: callback(0, "Scanning directory...")
        _validate_path(folder_path)
        files = _find_dicom_files(folder_path)
        if callback: callback(10, f"Found {len(files)} files. Reading...")

        assemblers: Dict[str, SeriesAssembler] = {}
        errors: Dict[str, ReconstructionError] = {}
        lock = threading.Lock()

        def assembler_for(uid: str) -> SeriesAssembler:
            with lock:
                if uid not in assemblers:
                    assemblers[uid] = SeriesAssembler(series_uid=uid)
                return assemblers[uid]

        def read_single(path: str) -> None:
            try:
                record = slice_record_from_dataset(pydicom.dcmread(path))
            except (InvalidDicomError, OSError, ValueError, AttributeError,
                    RuntimeError, NotImplementedError) as e:
                # Unsupported transfer syntaxes fail in pixel decoding
                print(f"[Loader] Warning: Failed to read {path} - {e}")
                return
            try:
                assembler_for(record.series_uid).add_slice(record)
            except ReconstructionError as e:
                with lock:
                    errors.setdefault(record.series_uid, e)

        total = len(files)
        with concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(read_single, f) for f in files]
            for completed, future in enumerate(concurrent.futures.as_completed(futures), start=1):
                future.result()
                if callback and completed % 20 == 0:
                    callback(10 + int(80 * completed / total), f"Reading slice {completed}/{total}...")

        if not assemblers:
            raise ValueError("No valid DICOM slices loaded.")
        for uid, error in errors.items():
            print(f"[Loader] Series {uid or '<unknown>'} rejected: {error}")
        return assemblers, errors

    def _select_series(self, assemblers: Dict[str, SeriesAssembler]) -> str:
        if self.series_uid is not None:
            if self.series_uid not in assemblers:
                raise KeyError(f"Series {self.series_uid} not found in folder")
            return self.series_uid
        if len(assemblers) > 1:
            print(f"[Loader] Found {len(assemblers)} series, using the largest.")
        return max(assemblers, key=lambda uid: assemblers[uid].slice_count)
