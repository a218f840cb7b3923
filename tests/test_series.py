import concurrent.futures
import random

import numpy as np
import pytest

from core import (
    DuplicateSliceLocationError,
    GeometryMismatchError,
    InsufficientSlicesError,
    IrregularSpacingError,
    PrecisionLevel,
    SeriesMismatchError,
    SliceRecord,
)
from processors import SeriesAssembler, VolumeBuilder, assemble, group_by_series


AXIAL = (1.0, 0.0, 0.0, 0.0, 1.0, 0.0)


def _slice(z, rows=8, columns=8, uid="S1", orientation=AXIAL, position=None, spacing=(0.5, 0.5), **kwargs):
    pos = position if position is not None else (0.0, 0.0, z)
    return SliceRecord(
        pixels=np.full((rows, columns), int(z) % 4096, dtype=np.uint16),
        rows=rows,
        columns=columns,
        bits_stored=12,
        slice_location=z,
        position=pos,
        orientation=orientation,
        pixel_spacing=spacing,
        series_uid=uid,
        **kwargs,
    )


def test_orders_slices_and_derives_thickness():
    assembler = SeriesAssembler()
    for z in (10.0, 0.0, 5.0):
        assembler.add_slice(_slice(z))

    series = assembler.finalize()
    assert series.slice_locations == (0.0, 5.0, 10.0)
    assert [s.slice_location for s in assembler.ordered_slices()] == [0.0, 5.0, 10.0]
    assert series.slice_thickness == pytest.approx(5.0)
    assert series.irregular_spacing is False
    assert series.precision is PrecisionLevel.FULL
    assert series.volume_dimensions == (8, 8, 3)


def test_column_mismatch_rejected():
    assembler = SeriesAssembler()
    assembler.add_slice(_slice(0.0, rows=256, columns=256))
    with pytest.raises(GeometryMismatchError):
        assembler.add_slice(_slice(1.0, rows=256, columns=512))
    assert assembler.slice_count == 1


def test_empty_series_cannot_build():
    assembler = SeriesAssembler()
    assert assembler.volume_dimensions == (0, 0, 0)

    series = assembler.finalize()
    assert series.is_empty
    assert series.volume_dimensions == (0, 0, 0)
    assert series.slice_thickness is None
    with pytest.raises(InsufficientSlicesError):
        VolumeBuilder().build(series)


def test_single_slice_has_no_thickness():
    series = assemble([_slice(3.0)])
    assert series.slice_count == 1
    assert series.slice_thickness is None
    with pytest.raises(InsufficientSlicesError):
        VolumeBuilder().build(series)


def test_orientation_mismatch_rejected():
    assembler = SeriesAssembler()
    assembler.add_slice(_slice(0.0))
    tilted = (1.0, 0.0, 0.0, 0.0, np.cos(0.01), np.sin(0.01))
    with pytest.raises(GeometryMismatchError):
        assembler.add_slice(_slice(1.0, orientation=tilted))


def test_orientation_within_tolerance_accepted():
    assembler = SeriesAssembler()
    assembler.add_slice(_slice(0.0))
    nearly = (1.0, 0.0, 0.0, 0.0, np.cos(1e-5), np.sin(1e-5))
    assembler.add_slice(_slice(1.0, orientation=nearly))
    assert assembler.slice_count == 2


def test_in_plane_position_drift_rejected():
    assembler = SeriesAssembler()
    assembler.add_slice(_slice(0.0))
    with pytest.raises(GeometryMismatchError):
        assembler.add_slice(_slice(1.0, position=(0.5, 0.0, 1.0)))


def test_pixel_spacing_mismatch_rejected():
    assembler = SeriesAssembler()
    assembler.add_slice(_slice(0.0))
    with pytest.raises(GeometryMismatchError):
        assembler.add_slice(_slice(1.0, spacing=(0.6, 0.5)))


def test_series_mismatch_rejected():
    assembler = SeriesAssembler(series_uid="S1")
    with pytest.raises(SeriesMismatchError):
        assembler.add_slice(_slice(0.0, uid="S2"))


def test_unlocatable_slice_rejected():
    assembler = SeriesAssembler()
    bare = SliceRecord(pixels=np.zeros((8, 8)), rows=8, columns=8, bits_stored=12, series_uid="S1")
    with pytest.raises(GeometryMismatchError):
        assembler.add_slice(bare)


def test_duplicate_location_rejected():
    assembler = SeriesAssembler()
    assembler.add_slice(_slice(0.0))
    assembler.add_slice(_slice(1.0))
    assembler.add_slice(_slice(1.0))
    with pytest.raises(DuplicateSliceLocationError) as info:
        assembler.finalize()
    assert info.value.location == pytest.approx(1.0)


def test_irregular_spacing_is_recoverable():
    slices = [_slice(z) for z in (0.0, 1.0, 2.0, 4.0)]
    with pytest.raises(IrregularSpacingError) as info:
        assemble(slices)

    flagged = info.value.series
    assert flagged.irregular_spacing is True
    assert flagged.spacings == (1.0, 1.0, 2.0)
    assert "Irregular" in flagged.spacing_warning

    series = assemble(slices, allow_irregular=True)
    assert series.irregular_spacing is True
    assert series.slice_thickness == pytest.approx(4.0 / 3.0)


def test_small_jitter_is_regular():
    series = assemble([_slice(z) for z in (0.0, 2.0001, 4.0)])
    assert series.irregular_spacing is False


def test_finalize_is_idempotent_and_closes_assembler():
    assembler = SeriesAssembler()
    assembler.add_slice(_slice(0.0))
    assembler.add_slice(_slice(1.0))
    first = assembler.finalize()
    assert assembler.finalize() is first
    assert assembler.is_finalized
    with pytest.raises(RuntimeError):
        assembler.add_slice(_slice(2.0))


def test_ordered_slices_requires_finalize():
    assembler = SeriesAssembler()
    assembler.add_slice(_slice(0.0))
    with pytest.raises(RuntimeError):
        assembler.ordered_slices()


def test_missing_geometry_degrades_precision():
    records = [
        SliceRecord(pixels=np.zeros((4, 4)), rows=4, columns=4, bits_stored=8,
                    series_uid="S1", instance_number=n)
        for n in (3, 1, 2)
    ]
    series = assemble(records)
    assert series.precision is PrecisionLevel.DEGRADED
    assert [s.instance_number for s in series.ordered_slices()] == [1, 2, 3]


def test_concurrent_add_slice_matches_sequential():
    locations = [float(z) * 1.25 for z in range(200)]
    shuffled = list(locations)
    random.Random(7).shuffle(shuffled)

    assembler = SeriesAssembler()
    with concurrent.futures.ThreadPoolExecutor(max_workers=8) as executor:
        list(executor.map(lambda z: assembler.add_slice(_slice(z)), shuffled))

    series = assembler.finalize()
    expected = assemble([_slice(z) for z in locations])
    assert series.slice_count == 200
    assert series.slice_locations == expected.slice_locations
    assert series.slice_thickness == pytest.approx(expected.slice_thickness)


def test_group_by_series_keeps_arrival_order():
    slices = [_slice(0.0, uid="A"), _slice(0.0, uid="B"), _slice(1.0, uid="A")]
    groups = group_by_series(slices)
    assert list(groups) == ["A", "B"]
    assert [s.slice_location for s in groups["A"]] == [0.0, 1.0]
