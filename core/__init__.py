"""
Core module containing data structures, errors and pipeline plumbing.
"""

from core.base import PrecisionLevel, SliceRecord, Series, Volume, BaseLoader
from core.mesh import Mesh
from core.errors import (
    ReconstructionError,
    GeometryMismatchError,
    SeriesMismatchError,
    DuplicateSliceLocationError,
    IrregularSpacingError,
    InsufficientSlicesError,
    DegenerateVolumeError,
    ExtractionCancelled,
)
from core.dto import ReconstructionParamsDTO
from core.chunker import SlabChunker, SlabDescriptor, DAGNode, SimpleDAGExecutor
from core.progress import (
    ProgressEvent,
    ProgressObserver,
    ProgressBus,
    StageProgressMapper,
    CancelEventObserver,
    TerminalProgressObserver,
)
from core.pipeline import (
    PipelineStage,
    PIPELINE_STAGE_ORDER,
    resolve_pipeline_stages,
    build_reconstruction_pipeline,
    run_reconstruction_pipeline,
)
from core.coordinates import (
    raw_zyx_to_grid_xyz,
    orientation_vectors,
    slice_normal,
    angle_between,
    direction_from_orientation,
    volume_to_world_matrix,
    voxel_xyz_to_world_xyz,
    world_xyz_to_voxel_xyz,
)

__all__ = [
    'PrecisionLevel', 'SliceRecord', 'Series', 'Volume', 'BaseLoader', 'Mesh',
    'ReconstructionError', 'GeometryMismatchError', 'SeriesMismatchError',
    'DuplicateSliceLocationError', 'IrregularSpacingError', 'InsufficientSlicesError',
    'DegenerateVolumeError', 'ExtractionCancelled',
    'ReconstructionParamsDTO',
    'SlabChunker', 'SlabDescriptor', 'DAGNode', 'SimpleDAGExecutor',
    'ProgressEvent', 'ProgressObserver', 'ProgressBus', 'StageProgressMapper',
    'CancelEventObserver', 'TerminalProgressObserver',
    'PipelineStage', 'PIPELINE_STAGE_ORDER', 'resolve_pipeline_stages',
    'build_reconstruction_pipeline', 'run_reconstruction_pipeline',
    'raw_zyx_to_grid_xyz', 'orientation_vectors', 'slice_normal', 'angle_between',
    'direction_from_orientation', 'volume_to_world_matrix',
    'voxel_xyz_to_world_xyz', 'world_xyz_to_voxel_xyz',
]
