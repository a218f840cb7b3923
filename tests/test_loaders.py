"""
Unit tests for slice loaders.
"""

import unittest
import os
import sys
import tempfile
from unittest import mock

import numpy as np

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pydicom.dataset import Dataset, FileMetaDataset
from pydicom.uid import CTImageStorage, ExplicitVRLittleEndian, generate_uid

from core import GeometryMismatchError, PrecisionLevel
from loaders import DicomSeriesLoader, PhantomLoader, phantom_slices, slice_record_from_dataset, sphere_field
from loaders.dicom import _natural_sort_key


def _make_dataset(z, series_uid="1.2.3", rows=6, columns=5, signed=False, with_geometry=True):
    file_meta = FileMetaDataset()
    file_meta.MediaStorageSOPClassUID = CTImageStorage
    file_meta.MediaStorageSOPInstanceUID = generate_uid()
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian

    ds = Dataset()
    ds.file_meta = file_meta
    ds.SOPClassUID = CTImageStorage
    ds.SOPInstanceUID = file_meta.MediaStorageSOPInstanceUID
    ds.SeriesInstanceUID = series_uid
    ds.InstanceNumber = int(z) + 1
    ds.Rows = rows
    ds.Columns = columns
    ds.SamplesPerPixel = 1
    ds.PhotometricInterpretation = "MONOCHROME2"
    ds.BitsAllocated = 16
    ds.BitsStored = 12
    ds.HighBit = 11
    ds.PixelRepresentation = 1 if signed else 0
    if with_geometry:
        ds.ImagePositionPatient = [0.0, 0.0, float(z)]
        ds.ImageOrientationPatient = [1.0, 0.0, 0.0, 0.0, 1.0, 0.0]
        ds.PixelSpacing = [0.8, 0.6]
        ds.SliceLocation = float(z)
    dtype = np.int16 if signed else np.uint16
    pixels = np.arange(rows * columns, dtype=dtype).reshape(rows, columns) + int(z)
    ds.PixelData = pixels.tobytes()
    return ds


def _write_series(folder, locations, **kwargs):
    for i, z in enumerate(locations):
        _make_dataset(z, **kwargs).save_as(
            os.path.join(folder, f"img_{i}.dcm"), enforce_file_format=True
        )


class TestNaturalSortKey(unittest.TestCase):
    """Test natural sorting function for filenames."""

    def test_numeric_sorting(self):
        """Test that numeric parts are sorted numerically, not lexicographically."""
        files = ['img_1.dcm', 'img_10.dcm', 'img_2.dcm', 'img_20.dcm', 'img_3.dcm']
        sorted_files = sorted(files, key=_natural_sort_key)
        expected = ['img_1.dcm', 'img_2.dcm', 'img_3.dcm', 'img_10.dcm', 'img_20.dcm']
        self.assertEqual(sorted_files, expected)

    def test_case_insensitive(self):
        """Test that sorting is case-insensitive."""
        files = ['IMG_1.dcm', 'img_2.dcm', 'Img_3.dcm']
        sorted_files = sorted(files, key=_natural_sort_key)
        self.assertEqual(sorted_files, ['IMG_1.dcm', 'img_2.dcm', 'Img_3.dcm'])


class TestSliceRecordFromDataset(unittest.TestCase):
    """Adapting pydicom datasets into slice records."""

    def test_full_geometry(self):
        record = slice_record_from_dataset(_make_dataset(3.0))
        self.assertEqual((record.rows, record.columns), (6, 5))
        self.assertEqual(record.bits_stored, 12)
        self.assertFalse(record.is_signed)
        self.assertEqual(record.slice_location, 3.0)
        self.assertEqual(record.position, (0.0, 0.0, 3.0))
        self.assertEqual(record.pixel_spacing, (0.8, 0.6))
        self.assertEqual(record.series_uid, "1.2.3")
        self.assertEqual(record.instance_number, 4)
        self.assertEqual(record.precision, PrecisionLevel.FULL)
        self.assertEqual(int(record.pixels[0, 1]), 4)

    def test_signed_pixels(self):
        record = slice_record_from_dataset(_make_dataset(0.0, signed=True))
        self.assertTrue(record.is_signed)

    def test_missing_geometry_degrades(self):
        record = slice_record_from_dataset(_make_dataset(2.0, with_geometry=False))
        self.assertIsNone(record.position)
        self.assertIsNone(record.orientation)
        self.assertEqual(record.location, 3.0)  # instance number
        self.assertEqual(record.precision, PrecisionLevel.DEGRADED)


class TestDicomSeriesLoader(unittest.TestCase):
    """Folder scanning with parallel decode and assembly."""

    def test_loader_initialization(self):
        loader = DicomSeriesLoader()
        self.assertEqual(loader.max_workers, 4)
        self.assertIsNone(loader.series_uid)
        self.assertFalse(loader.allow_irregular)

    def test_load_orders_slices(self):
        with tempfile.TemporaryDirectory() as folder:
            _write_series(folder, [4.0, 0.0, 2.0, 6.0, 8.0])
            progress = []
            series = DicomSeriesLoader(max_workers=3).load(folder, callback=lambda p, m: progress.append(p))

        self.assertEqual(series.slice_locations, (0.0, 2.0, 4.0, 6.0, 8.0))
        self.assertAlmostEqual(series.slice_thickness, 2.0)
        self.assertEqual(series.volume_dimensions, (6, 5, 5))
        self.assertEqual(progress[-1], 100)

    def test_largest_series_selected(self):
        with tempfile.TemporaryDirectory() as folder:
            _write_series(folder, [0.0, 1.0, 2.0], series_uid="1.1")
            for i, z in enumerate([0.0, 1.0]):
                _make_dataset(z, series_uid="2.2").save_as(
                    os.path.join(folder, f"other_{i}.dcm"), enforce_file_format=True
                )
            series = DicomSeriesLoader().load(folder)
            chosen = DicomSeriesLoader(series_uid="2.2").load(folder)
            with self.assertRaises(KeyError):
                DicomSeriesLoader(series_uid="9.9").load(folder)

        self.assertEqual(series.series_uid, "1.1")
        self.assertEqual(chosen.slice_count, 2)

    def test_geometry_mismatch_reported(self):
        with tempfile.TemporaryDirectory() as folder:
            _write_series(folder, [0.0, 1.0])
            _make_dataset(2.0, columns=7).save_as(os.path.join(folder, "odd.dcm"), enforce_file_format=True)
            with self.assertRaises(GeometryMismatchError):
                DicomSeriesLoader(max_workers=1).load(folder)

    def test_undecodable_pixels_are_skipped(self):
        real = slice_record_from_dataset

        for error in (RuntimeError, NotImplementedError):
            def decode(ds, _error=error):
                if ds.InstanceNumber == 4:
                    raise _error("Unable to decode pixel data with transfer syntax")
                return real(ds)

            with self.subTest(error=error.__name__), tempfile.TemporaryDirectory() as folder:
                _write_series(folder, [0.0, 1.0, 2.0, 3.0])
                with mock.patch("loaders.dicom.slice_record_from_dataset", side_effect=decode):
                    series = DicomSeriesLoader(max_workers=2).load(folder)

                self.assertEqual(series.slice_locations, (0.0, 1.0, 2.0))

    def test_missing_folder(self):
        with self.assertRaises(FileNotFoundError):
            DicomSeriesLoader().load("/nonexistent/path/for/tests")


class TestPhantomLoader(unittest.TestCase):
    """Synthetic sphere phantom."""

    def test_sphere_field(self):
        field = sphere_field(9, 3.0)
        self.assertEqual(field.shape, (9, 9, 9))
        self.assertTrue(field[4, 4, 4])
        self.assertFalse(field[0, 0, 0])

    def test_phantom_slices_full_scale(self):
        records = phantom_slices(sphere_field(8, 3.0), bits_stored=12)
        self.assertEqual(len(records), 8)
        self.assertEqual(int(records[4].pixels.max()), 4095)
        self.assertEqual([r.slice_location for r in records], [float(z) for z in range(8)])

    def test_load_shuffled(self):
        series = PhantomLoader(shuffle=True, seed=1).load(size=12)
        self.assertEqual(series.volume_dimensions, (12, 12, 12))
        self.assertEqual(series.slice_locations, tuple(float(z) for z in range(12)))
        self.assertEqual(series.precision, PrecisionLevel.FULL)


if __name__ == '__main__':
    unittest.main()
