import threading
from pathlib import Path

import numpy as np
import pytest

from core import (
    ExtractionCancelled,
    Mesh,
    ReconstructionParamsDTO,
    Volume,
    build_reconstruction_pipeline,
    resolve_pipeline_stages,
    run_reconstruction_pipeline,
)
from core.progress import ProgressBus
from loaders import phantom_slices, sphere_field
from processors import assemble, suggest_iso_value_for_tissue


def _make_sample_series(size=12):
    return assemble(phantom_slices(sphere_field(size, size / 3.0)))


def test_resolve_pipeline_stages():
    assert resolve_pipeline_stages(target_stage="build", include_export=False) == ("load", "build")
    assert resolve_pipeline_stages(target_stage="extract", include_export=False) == (
        "load",
        "build",
        "iso",
        "extract",
    )
    assert resolve_pipeline_stages(target_stage="export", include_export=False)[-1] == "postprocess"


def test_resolve_pipeline_stages_rejects_unknown():
    with pytest.raises(ValueError):
        resolve_pipeline_stages(target_stage="unknown")  # type: ignore[arg-type]


def test_build_pipeline_for_extract():
    dag = build_reconstruction_pipeline(
        dto=ReconstructionParamsDTO(),
        input_series=_make_sample_series(),
        target_stage="extract",
        include_export=False,
    )
    assert set(dag.node_names) == {"load", "build", "iso", "extract"}


def test_run_pipeline_uses_preloaded_series():
    series = _make_sample_series()
    results = run_reconstruction_pipeline(
        dto=ReconstructionParamsDTO(iso_value=0.5),
        input_series=series,
        target_stage="postprocess",
        include_export=False,
    )
    assert results["load"] is series
    assert isinstance(results["build"], Volume)
    assert results["iso"] == pytest.approx(0.5)
    assert isinstance(results["extract"], Mesh)
    assert results["postprocess"].is_watertight


def test_run_pipeline_with_phantom_loader_and_auto_iso():
    dto = ReconstructionParamsDTO(loader_type="phantom", phantom_size=16, auto_iso=True, iso_algorithm="otsu")
    events = []
    bus = ProgressBus().subscribe(events.append)
    results = run_reconstruction_pipeline(dto=dto, target_stage="extract", include_export=False, progress_bus=bus)

    assert results["build"].dimensions == (16, 16, 16)
    assert 0.0 < results["iso"] < 1.0
    assert results["extract"].triangle_count > 0
    assert {e.stage for e in events} >= {"load", "build", "iso", "extract"}


def test_auto_iso_with_tissue_preset():
    dto = ReconstructionParamsDTO(loader_type="phantom", phantom_size=16, auto_iso=True, iso_tissue="bone")
    results = run_reconstruction_pipeline(dto=dto, target_stage="iso", include_export=False)

    assert results["iso"] == suggest_iso_value_for_tissue(results["build"], "bone")


def test_postprocess_smooths_and_filters():
    dto = ReconstructionParamsDTO(iso_value=0.5, smooth_iterations=2, min_component_triangles=10)
    results = run_reconstruction_pipeline(
        dto=dto,
        input_series=_make_sample_series(),
        target_stage="postprocess",
        include_export=False,
    )
    mesh = results["postprocess"]
    assert mesh.metadata["smooth_iterations"] == 2
    assert mesh.triangle_count == results["extract"].triangle_count
    assert not np.array_equal(mesh.vertices, results["extract"].vertices)


def test_export_writes_requested_formats(tmp_path):
    dto = ReconstructionParamsDTO(iso_value=0.5, output_dir=str(tmp_path), export_formats=("npz", "vti"))
    results = run_reconstruction_pipeline(dto=dto, input_series=_make_sample_series())

    exported = results["export"]
    assert [Path(p).name for p in exported] == ["surface.npz", "volume.vti"]
    assert (tmp_path / "surface.npz").exists()
    assert (tmp_path / "volume.vti").exists()


def test_cancelled_pipeline_raises():
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(ExtractionCancelled):
        run_reconstruction_pipeline(
            dto=ReconstructionParamsDTO(iso_value=0.5),
            input_series=_make_sample_series(),
            target_stage="extract",
            include_export=False,
            cancel=cancel,
        )


def test_dicom_loader_requires_input_path():
    with pytest.raises(ValueError):
        run_reconstruction_pipeline(dto=ReconstructionParamsDTO(), target_stage="load", include_export=False)
