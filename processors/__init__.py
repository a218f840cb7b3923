"""
Reconstruction processors package.

Modules:
- series: Slice validation and ordering (SeriesAssembler)
- volume_builder: Dense volume assembly (VolumeBuilder)
- marching_cubes: Slab-parallel iso-surface extraction (IsoSurfaceExtractor)
- mc_tables: Static Marching Cubes lookup tables
- isovalue: Iso-value suggestion
- mesh_ops: Mesh smoothing and component filtering
"""

from processors.series import SeriesAssembler, assemble, group_by_series
from processors.volume_builder import VolumeBuilder, build, normalize_pixels
from processors.marching_cubes import IsoSurfaceExtractor, extract
from processors.isovalue import (
    suggest_iso_value, suggest_iso_value_for_tissue, suggest_iso_values, ISO_ALGORITHMS, TISSUE_TYPES
)
from processors.mesh_ops import smooth_mesh, remove_small_components, compute_vertex_normals

__all__ = [
    'SeriesAssembler',
    'assemble',
    'group_by_series',
    'VolumeBuilder',
    'build',
    'normalize_pixels',
    'IsoSurfaceExtractor',
    'extract',
    'suggest_iso_value',
    'suggest_iso_value_for_tissue',
    'suggest_iso_values',
    'ISO_ALGORITHMS',
    'TISSUE_TYPES',
    'smooth_mesh',
    'remove_small_components',
    'compute_vertex_normals',
]
