"""
Exporters package.
"""

from exporters.vtk import MeshExporter, VolumeExporter, MESH_FORMATS, VOLUME_FORMATS

__all__ = [
    'MeshExporter',
    'VolumeExporter',
    'MESH_FORMATS',
    'VOLUME_FORMATS',
]
