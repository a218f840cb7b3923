"""
Data Transfer Objects (DTOs) for the reconstruction pipeline.

Design rules
------------
* All DTOs are immutable (frozen=True).  Hosts build a new DTO and *push* it
  to the engine; the engine never reads host state.
* ``from_dict`` / ``from_yaml`` / ``from_json`` keep serialisation in one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from config import (
    EXTRACT_MAX_WORKERS,
    EXTRACT_SLAB_DEPTH,
    EXTRACT_STEP_SIZE,
    LOADER_MAX_WORKERS,
    MESH_SMOOTH_FACTOR,
)


# ---------------------------------------------------------------------------
# Reconstruction parameters DTO
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReconstructionParamsDTO:
    """
    Immutable configuration for a headless reconstruction run.

    Used by the CLI and by unit tests that bypass any host application.
    """

    # Input
    input_path:       str                       = ""
    loader_type:      str                       = "dicom"    # "dicom" | "phantom"
    series_uid:       Optional[str]             = None       # None -> largest series
    phantom_size:     int                       = 64
    allow_irregular:  bool                      = False

    # Iso-surface
    iso_value:        float                     = 0.5
    auto_iso:         bool                      = False
    iso_algorithm:    str                       = "otsu"     # "otsu" | "li" | "yen" | "triangle" | "minimum" | "median"
    iso_tissue:       Optional[str]             = None       # "auto" | "skin" | "soft_tissue" | "brain" | "bone"; overrides iso_algorithm
    step_size:        int                       = EXTRACT_STEP_SIZE

    # Mesh post-processing
    smooth_iterations: int                      = 0
    smooth_factor:    float                     = MESH_SMOOTH_FACTOR
    min_component_triangles: int                = 0

    # Parallelism
    loader_workers:   int                       = LOADER_MAX_WORKERS
    extract_workers:  int                       = EXTRACT_MAX_WORKERS
    slab_depth:       int                       = EXTRACT_SLAB_DEPTH

    # Output
    output_dir:       Optional[str]             = None
    export_formats:   Tuple[str, ...]           = ("vtp",)   # "vtp", "vtk", "stl", "ply", "npz", "vti"

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "ReconstructionParamsDTO":
        return ReconstructionParamsDTO(
            input_path      = str(d.get("input_path",      "")),
            loader_type     = str(d.get("loader_type",     "dicom")),
            series_uid      = d.get("series_uid"),
            phantom_size    = int(d.get("phantom_size",    64)),
            allow_irregular = bool(d.get("allow_irregular", False)),
            iso_value       = float(d.get("iso_value",     0.5)),
            auto_iso        = bool(d.get("auto_iso",       False)),
            iso_algorithm   = str(d.get("iso_algorithm",   "otsu")),
            iso_tissue      = d.get("iso_tissue"),
            step_size       = int(d.get("step_size",       EXTRACT_STEP_SIZE)),
            smooth_iterations = int(d.get("smooth_iterations", 0)),
            smooth_factor   = float(d.get("smooth_factor", MESH_SMOOTH_FACTOR)),
            min_component_triangles = int(d.get("min_component_triangles", 0)),
            loader_workers  = int(d.get("loader_workers",  LOADER_MAX_WORKERS)),
            extract_workers = int(d.get("extract_workers", EXTRACT_MAX_WORKERS)),
            slab_depth      = int(d.get("slab_depth",      EXTRACT_SLAB_DEPTH)),
            output_dir      = d.get("output_dir"),
            export_formats  = tuple(d.get("export_formats", ["vtp"])),
        )

    @staticmethod
    def from_yaml(path: str) -> "ReconstructionParamsDTO":
        """Load config from a YAML file."""
        import yaml  # only needed for CLI config files
        with open(path, encoding="utf-8") as fh:
            d = yaml.safe_load(fh)
        return ReconstructionParamsDTO.from_dict(d or {})

    @staticmethod
    def from_json(path: str) -> "ReconstructionParamsDTO":
        """Load config from a JSON file."""
        import json
        with open(path, encoding="utf-8") as fh:
            d = json.load(fh)
        return ReconstructionParamsDTO.from_dict(d)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input_path":      self.input_path,
            "loader_type":     self.loader_type,
            "series_uid":      self.series_uid,
            "phantom_size":    self.phantom_size,
            "allow_irregular": self.allow_irregular,
            "iso_value":       self.iso_value,
            "auto_iso":        self.auto_iso,
            "iso_algorithm":   self.iso_algorithm,
            "iso_tissue":      self.iso_tissue,
            "step_size":       self.step_size,
            "smooth_iterations": self.smooth_iterations,
            "smooth_factor":   self.smooth_factor,
            "min_component_triangles": self.min_component_triangles,
            "loader_workers":  self.loader_workers,
            "extract_workers": self.extract_workers,
            "slab_depth":      self.slab_depth,
            "output_dir":      self.output_dir,
            "export_formats":  list(self.export_formats),
        }
