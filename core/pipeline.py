"""
Shared DAG pipeline used by the CLI and by embedding hosts.

This module chains the reconstruction stages:
load -> build -> iso -> extract -> postprocess -> export

The core entry points (assemble / build / extract) stay callback-free; progress
is reported here, between stage calls.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Literal, Optional
import threading

from core.base import Series, Volume
from core.chunker import DAGNode, SimpleDAGExecutor
from core.dto import ReconstructionParamsDTO
from core.mesh import Mesh
from core.progress import ProgressBus
from config import EXPORT_DEFAULT_DIR, EXPORT_MESH_BASENAME, EXPORT_VOLUME_BASENAME


PipelineStage = Literal["load", "build", "iso", "extract", "postprocess", "export"]
PIPELINE_STAGE_ORDER: tuple[PipelineStage, ...] = ("load", "build", "iso", "extract", "postprocess", "export")


def _noop_progress(_percent: int, _message: str) -> None:
    """Default no-op progress callback."""
    return


def resolve_pipeline_stages(
    target_stage: PipelineStage = "export",
    include_export: bool = True,
) -> tuple[PipelineStage, ...]:
    """
    Resolve the ordered list of stages required for a target stage.

    Example:
    - target_stage='build'   -> ('load', 'build')
    - target_stage='extract' -> ('load', 'build', 'iso', 'extract')
    """
    if target_stage not in PIPELINE_STAGE_ORDER:
        allowed = ", ".join(PIPELINE_STAGE_ORDER)
        raise ValueError(f"Unknown pipeline stage '{target_stage}'. Expected one of: {allowed}.")

    end_idx = PIPELINE_STAGE_ORDER.index(target_stage)
    stages = list(PIPELINE_STAGE_ORDER[: end_idx + 1])

    if not include_export and "export" in stages:
        stages.remove("export")

    return tuple(stages)


def _resolve_phantom_size(dto: ReconstructionParamsDTO) -> int:
    """
    Phantom size from input_path when it is an integer string, else dto.phantom_size.
    """
    if dto.input_path:
        try:
            size = int(dto.input_path)
            if size > 0:
                return size
        except (TypeError, ValueError):
            pass
    return dto.phantom_size


def _stage_load(dto: ReconstructionParamsDTO, progress: Callable[[int, str], None]) -> Series:
    """Decode and assemble one series."""
    progress(0, f"Loading input via {dto.loader_type}...")

    loader_type = (dto.loader_type or "dicom").lower()
    if loader_type == "phantom":
        from loaders import PhantomLoader

        return PhantomLoader(seed=0).load(size=_resolve_phantom_size(dto), callback=progress)

    if loader_type == "dicom":
        from loaders import DicomSeriesLoader

        if not dto.input_path:
            raise ValueError("input_path is required when loader_type='dicom'.")
        loader = DicomSeriesLoader(
            max_workers=dto.loader_workers,
            series_uid=dto.series_uid,
            allow_irregular=dto.allow_irregular,
        )
        return loader.load(dto.input_path, callback=progress)

    raise ValueError(f"Unknown loader_type: {dto.loader_type!r}. Supported: 'dicom', 'phantom'.")


def _stage_build(series: Series, progress: Callable[[int, str], None]) -> Volume:
    """Copy slices into a dense volume."""
    from processors import VolumeBuilder

    progress(0, f"Building volume from {series.slice_count} slices...")
    volume = VolumeBuilder().build(series)
    progress(100, f"Volume {volume.dimensions}, spacing {tuple(round(s, 4) for s in volume.spacing)}")
    return volume


def _stage_iso(volume: Volume, dto: ReconstructionParamsDTO, progress: Callable[[int, str], None]) -> float:
    """Pick the iso-value (fixed or auto)."""
    if dto.auto_iso and dto.iso_tissue:
        from processors import suggest_iso_value_for_tissue

        progress(0, f"Detecting iso-value for {dto.iso_tissue}...")
        iso = suggest_iso_value_for_tissue(volume, dto.iso_tissue)
        progress(100, f"Auto iso-value ({dto.iso_tissue}): {iso:.4f}")
        return iso

    if dto.auto_iso:
        from processors import suggest_iso_value

        progress(0, f"Detecting iso-value ({dto.iso_algorithm})...")
        iso = suggest_iso_value(volume, algorithm=dto.iso_algorithm)
        progress(100, f"Auto iso-value: {iso:.4f}")
        return iso

    iso = float(dto.iso_value)
    progress(100, f"Using fixed iso-value: {iso:.4f}")
    return iso


def _stage_extract(
    volume: Volume,
    iso_value: float,
    dto: ReconstructionParamsDTO,
    cancel: Optional[threading.Event],
    progress: Callable[[int, str], None],
) -> Mesh:
    """Run Marching Cubes."""
    from processors import IsoSurfaceExtractor

    progress(0, f"Extracting iso-surface at {iso_value:.4f}...")
    extractor = IsoSurfaceExtractor(
        max_workers=dto.extract_workers,
        slab_depth=dto.slab_depth,
        step_size=dto.step_size,
    )
    mesh = extractor.extract(volume, iso_value, cancel=cancel)
    progress(100, f"Mesh: {mesh.vertex_count} vertices, {mesh.triangle_count} triangles")
    return mesh


def _stage_postprocess(mesh: Mesh, dto: ReconstructionParamsDTO, progress: Callable[[int, str], None]) -> Mesh:
    """Optional component filtering and smoothing."""
    from processors import remove_small_components, smooth_mesh

    if dto.min_component_triangles > 1:
        progress(0, f"Removing components under {dto.min_component_triangles} triangles...")
        mesh = remove_small_components(mesh, dto.min_component_triangles)
    if dto.smooth_iterations > 0:
        progress(50, f"Smoothing ({dto.smooth_iterations} iterations)...")
        mesh = smooth_mesh(mesh, dto.smooth_iterations, dto.smooth_factor)
    progress(100, f"Post-processed mesh: {mesh.triangle_count} triangles")
    return mesh


def _stage_export(
    mesh: Mesh,
    volume: Volume,
    dto: ReconstructionParamsDTO,
    progress: Callable[[int, str], None],
) -> list[str]:
    """Export the mesh (and optionally the volume) and return the file paths."""
    from exporters import MeshExporter, VolumeExporter

    out_dir = Path(dto.output_dir) if dto.output_dir else Path.cwd() / EXPORT_DEFAULT_DIR
    out_dir.mkdir(parents=True, exist_ok=True)

    formats = tuple(fmt.lower().lstrip(".") for fmt in dto.export_formats)
    exported: list[str] = []
    if not formats:
        progress(100, "No export tasks requested.")
        return exported

    total = len(formats)
    for idx, fmt in enumerate(formats, start=1):
        basename = EXPORT_VOLUME_BASENAME if fmt == "vti" else EXPORT_MESH_BASENAME
        path = out_dir / f"{basename}.{fmt}"
        progress(int(100 * (idx - 1) / total), f"Exporting {fmt.upper()} -> {path.name}")
        if fmt == "vti":
            VolumeExporter.export(volume, str(path))
        else:
            MeshExporter.export(mesh, str(path))
        exported.append(str(path))

    progress(100, "Export complete.")
    return exported


def build_reconstruction_pipeline(
    dto: ReconstructionParamsDTO,
    *,
    input_series: Optional[Series] = None,
    target_stage: PipelineStage = "export",
    include_export: bool = True,
    cancel: Optional[threading.Event] = None,
    progress_bus: Optional[ProgressBus] = None,
    stage_progress_factory: Optional[Callable[[PipelineStage], Callable[[int, str], None]]] = None,
) -> SimpleDAGExecutor:
    """
    Build a DAG executor for the reconstruction pipeline.

    Args:
        dto: Pipeline configuration.
        input_series: Optional pre-assembled series. If provided, load stage returns it.
        target_stage: Last stage to execute.
        include_export: Whether to include export stage if target allows it.
        cancel: Optional event shared with the extractor.
        progress_bus: Optional progress event bus.
        stage_progress_factory: Optional per-stage progress callback factory.
    """
    stages = resolve_pipeline_stages(target_stage=target_stage, include_export=include_export)
    dag = SimpleDAGExecutor()

    def stage_progress(stage: PipelineStage) -> Callable[[int, str], None]:
        if stage_progress_factory is None:
            if progress_bus is None:
                return _noop_progress
            return progress_bus.stage_callback(stage)
        return stage_progress_factory(stage)

    if "load" in stages:
        dag.add(DAGNode(
            name="load",
            fn=lambda _deps: input_series if input_series is not None else _stage_load(dto, stage_progress("load")),
            depends_on=(),
        ))

    if "build" in stages:
        dag.add(DAGNode(
            name="build",
            fn=lambda deps: _stage_build(deps["load"], stage_progress("build")),
            depends_on=("load",),
        ))

    if "iso" in stages:
        dag.add(DAGNode(
            name="iso",
            fn=lambda deps: _stage_iso(deps["build"], dto, stage_progress("iso")),
            depends_on=("build",),
        ))

    if "extract" in stages:
        dag.add(DAGNode(
            name="extract",
            fn=lambda deps: _stage_extract(deps["build"], deps["iso"], dto, cancel, stage_progress("extract")),
            depends_on=("build", "iso"),
        ))

    if "postprocess" in stages:
        dag.add(DAGNode(
            name="postprocess",
            fn=lambda deps: _stage_postprocess(deps["extract"], dto, stage_progress("postprocess")),
            depends_on=("extract",),
        ))

    if "export" in stages:
        dag.add(DAGNode(
            name="export",
            fn=lambda deps: _stage_export(deps["postprocess"], deps["build"], dto, stage_progress("export")),
            depends_on=("postprocess", "build"),
        ))

    return dag


def run_reconstruction_pipeline(
    dto: ReconstructionParamsDTO,
    *,
    input_series: Optional[Series] = None,
    target_stage: PipelineStage = "export",
    include_export: bool = True,
    cancel: Optional[threading.Event] = None,
    progress_bus: Optional[ProgressBus] = None,
    dag_progress: Optional[Callable[[int, str], None]] = None,
    stage_progress_factory: Optional[Callable[[PipelineStage], Callable[[int, str], None]]] = None,
) -> dict[str, Any]:
    """
    Execute the reconstruction pipeline and return stage outputs keyed by stage name.
    """
    dag = build_reconstruction_pipeline(
        dto=dto,
        input_series=input_series,
        target_stage=target_stage,
        include_export=include_export,
        cancel=cancel,
        progress_bus=progress_bus,
        stage_progress_factory=stage_progress_factory,
    )
    return dag.run(progress=dag_progress)


__all__ = [
    "PipelineStage",
    "PIPELINE_STAGE_ORDER",
    "resolve_pipeline_stages",
    "build_reconstruction_pipeline",
    "run_reconstruction_pipeline",
]
