"""
Headless CLI entry point for the slice-stack reconstruction engine.

Runs the full pipeline (load -> build -> iso -> extract -> postprocess -> export)
without any display server.
"""

from __future__ import annotations

import argparse
import os
import sys
import threading
import time


def _configure_headless_vtk() -> None:
    """Force VTK / PyVista into offscreen mode when no display is available."""
    display = os.environ.get("DISPLAY") or os.environ.get("WAYLAND_DISPLAY")
    if not display:
        os.environ.setdefault("PYVISTA_OFF_SCREEN", "true")
        os.environ.setdefault("VTK_DEFAULT_RENDER_WINDOW_OFFSCREEN", "1")


_configure_headless_vtk()


from core import ReconstructionParamsDTO, resolve_pipeline_stages, run_reconstruction_pipeline
from core.errors import ExtractionCancelled, ReconstructionError
from core.progress import CancelEventObserver, ProgressBus, StageProgressMapper, TerminalProgressObserver
from processors.isovalue import ISO_ALGORITHMS, TISSUE_TYPES
from config import (
    EXTRACT_MAX_WORKERS,
    EXTRACT_SLAB_DEPTH,
    EXTRACT_STEP_SIZE,
    MESH_SMOOTH_FACTOR,
    PHANTOM_SIZE,
)


def run_batch(dto: ReconstructionParamsDTO, cancel: threading.Event | None = None) -> dict:
    """
    Execute the full pipeline using the shared DAG engine.

    Args:
        dto: Resolved run configuration.
        cancel: Optional event; setting it stops the run at the next check.

    Returns:
        Dict keyed by stage name containing each stage output.
    """
    cancel = cancel if cancel is not None else threading.Event()
    mapper = StageProgressMapper(resolve_pipeline_stages(target_stage="export", include_export=True))
    progress_bus = (
        ProgressBus()
        .subscribe(CancelEventObserver(cancel))
        .subscribe(TerminalProgressObserver(mapper=mapper))
    )

    t_start = time.perf_counter()
    results = run_reconstruction_pipeline(
        dto=dto,
        target_stage="export",
        include_export=True,
        cancel=cancel,
        progress_bus=progress_bus,
        dag_progress=progress_bus.dag_callback(),
    )
    elapsed = time.perf_counter() - t_start

    print(f"\nPipeline complete in {elapsed:.2f}s")
    mesh = results.get("postprocess")
    if mesh is not None:
        print(f"Surface: {mesh.vertex_count} vertices, {mesh.triangle_count} triangles, "
              f"watertight={mesh.is_watertight}")
    exported = results.get("export", [])
    if exported:
        print("Exported files:")
        for path in exported:
            print(f"  {path}")

    return results


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python cli.py",
        description="Headless slice-stack to iso-surface reconstruction",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        metavar="FILE",
        help="Path to YAML or JSON config file. Overrides other flags.",
    )
    parser.add_argument(
        "--input",
        metavar="PATH",
        default="",
        help="DICOM directory, or phantom edge length when --loader phantom.",
    )
    parser.add_argument("--loader", metavar="TYPE", default="dicom", choices=("dicom", "phantom"),
                        help="Loader type: dicom | phantom.")
    parser.add_argument("--series", metavar="UID", default=None, help="Series UID to reconstruct (default: largest).")
    parser.add_argument("--allow-irregular", action="store_true", help="Accept non-uniform slice spacing.")
    parser.add_argument("--output", metavar="DIR", default=None, help="Output directory.")
    parser.add_argument("--iso", metavar="VALUE", type=float, default=0.5,
                        help="Iso-value in normalized units [0, 1].")
    parser.add_argument("--auto-iso", action="store_true", help="Auto-detect the iso-value.")
    parser.add_argument(
        "--iso-algorithm",
        metavar="ALG",
        default="otsu",
        choices=ISO_ALGORITHMS,
        help="Iso-value algorithm when --auto-iso is set: " + " | ".join(ISO_ALGORITHMS) + ".",
    )
    parser.add_argument(
        "--tissue",
        metavar="TYPE",
        default=None,
        choices=TISSUE_TYPES,
        help="Tissue preset when --auto-iso is set, overrides --iso-algorithm: " + " | ".join(TISSUE_TYPES) + ".",
    )
    parser.add_argument("--step", metavar="N", type=int, default=EXTRACT_STEP_SIZE,
                        help="Sample every N-th voxel along each axis.")
    parser.add_argument("--workers", metavar="N", type=int, default=EXTRACT_MAX_WORKERS,
                        help="Worker threads for loading and extraction.")
    parser.add_argument("--slab", metavar="N", type=int, default=EXTRACT_SLAB_DEPTH,
                        help="Cube layers per extraction slab.")
    parser.add_argument("--smooth", metavar="N", type=int, default=0, help="Laplacian smoothing iterations.")
    parser.add_argument("--smooth-factor", metavar="F", type=float, default=MESH_SMOOTH_FACTOR,
                        help="Laplacian relaxation factor.")
    parser.add_argument("--min-component", metavar="N", type=int, default=0,
                        help="Drop connected components with fewer triangles.")
    parser.add_argument(
        "--formats",
        metavar="FMT",
        nargs="+",
        default=["vtp"],
        help="Export formats: vtp vtk stl ply npz vti (space-separated).",
    )
    parser.add_argument("--dry-run", action="store_true", help="Print resolved DTO without running.")
    return parser


def _resolve_dto(args: argparse.Namespace, parser: argparse.ArgumentParser) -> ReconstructionParamsDTO:
    """Resolve DTO from config file or inline CLI flags."""
    if args.config:
        cfg_path = args.config
        if cfg_path.endswith((".yaml", ".yml")):
            return ReconstructionParamsDTO.from_yaml(cfg_path)
        if cfg_path.endswith(".json"):
            return ReconstructionParamsDTO.from_json(cfg_path)
        try:
            return ReconstructionParamsDTO.from_yaml(cfg_path)
        except Exception:
            return ReconstructionParamsDTO.from_json(cfg_path)

    if not args.input and args.loader != "phantom":
        parser.error("Provide --config FILE or --input PATH")

    return ReconstructionParamsDTO(
        input_path=args.input,
        loader_type=args.loader,
        series_uid=args.series,
        phantom_size=PHANTOM_SIZE,
        allow_irregular=args.allow_irregular,
        iso_value=args.iso,
        auto_iso=args.auto_iso,
        iso_algorithm=args.iso_algorithm,
        iso_tissue=args.tissue,
        step_size=args.step,
        smooth_iterations=args.smooth,
        smooth_factor=args.smooth_factor,
        min_component_triangles=args.min_component,
        loader_workers=args.workers,
        extract_workers=args.workers,
        slab_depth=args.slab,
        output_dir=args.output,
        export_formats=tuple(args.formats),
    )


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    dto = _resolve_dto(args, parser)

    if args.dry_run:
        import json

        print("Resolved ReconstructionParamsDTO:")
        print(json.dumps(dto.to_dict(), indent=2))
        return 0

    print("=" * 60)
    print("Slice-Stack Reconstruction - Headless Batch Processor")
    print("=" * 60)

    cancel = threading.Event()
    try:
        run_batch(dto, cancel=cancel)
    except KeyboardInterrupt:
        cancel.set()
        print("\nAborted by user.")
        return 1
    except ExtractionCancelled as exc:
        print(f"\nCancelled: {exc}")
        return 1
    except ReconstructionError as exc:
        print(f"\nReconstruction failed: {type(exc).__name__}: {exc}")
        return 2
    except Exception as exc:
        import traceback

        print(f"\nPipeline failed: {type(exc).__name__}: {exc}")
        traceback.print_exc()
        return 2

    return 0


if __name__ == "__main__":
    sys.exit(main())
