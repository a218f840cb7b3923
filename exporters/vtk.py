"""
VTK-family exporters for reconstructed meshes and volumes.
"""

import os
import numpy as np

from core import Mesh, Volume


MESH_FORMATS = (".vtp", ".vtk", ".stl", ".ply", ".npz")
VOLUME_FORMATS = (".vti",)


class MeshExporter:
    """
    Writes Mesh objects to disk through PyVista (or numpy for .npz).
    """

    @staticmethod
    def export(mesh: Mesh, filepath: str) -> bool:
        """
        Select the writer from the file extension.

        Args:
            mesh: Mesh to write.
            filepath: Target path (.vtp, .vtk, .stl, .ply or .npz).

        Returns:
            bool: True once written.
        """
        if mesh is None:
            raise ValueError("No mesh to export.")

        ext = os.path.splitext(filepath)[1].lower()
        if ext not in MESH_FORMATS:
            raise ValueError(f"Unsupported mesh format '{ext}'. Supported: {', '.join(MESH_FORMATS)}")
        if mesh.is_empty:
            print(f"[Exporter] Warning: mesh is empty, writing an empty file.")

        if ext == ".npz":
            return MeshExporter._export_arrays(mesh, filepath)

        mesh.to_polydata().save(filepath)
        print(f"[Exporter] Mesh saved to {filepath} "
              f"({mesh.vertex_count} vertices, {mesh.triangle_count} triangles)")
        return True

    @staticmethod
    def _export_arrays(mesh: Mesh, filepath: str) -> bool:
        """Raw vertex/normal/triangle arrays (.npz)."""
        np.savez_compressed(
            filepath,
            vertices=np.asarray(mesh.vertices),
            normals=np.asarray(mesh.normals),
            triangles=np.asarray(mesh.triangles),
        )
        print(f"[Exporter] Mesh arrays saved to {filepath}")
        return True


class VolumeExporter:
    """
    Writes Volume samples as a VTK image (.vti) for external viewers.
    """

    @staticmethod
    def export(volume: Volume, filepath: str) -> bool:
        ext = os.path.splitext(filepath)[1].lower()
        if ext not in VOLUME_FORMATS:
            raise ValueError(f"Unsupported volume format '{ext}'. Supported: {', '.join(VOLUME_FORMATS)}")
        if volume.irregular_spacing:
            print("[Exporter] Warning: irregular slice spacing is stored with the mean thickness.")

        volume.to_image_data().save(filepath)
        print(f"[Exporter] Volume saved to {filepath}")
        return True
