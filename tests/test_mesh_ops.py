import numpy as np
import pytest

from core import Mesh, Volume
from loaders.phantom import sphere_field
from processors import compute_vertex_normals, extract, remove_small_components, smooth_mesh
from processors.mesh_ops import label_components, vertex_adjacency


def _two_blobs() -> Mesh:
    samples = np.zeros((12, 12, 20), dtype=np.float32)
    samples[2:10, 2:10, 2:10] = sphere_field(8, 3.5)
    samples[6, 6, 15] = 1.0
    return extract(Volume(samples=samples), 0.5)


def test_vertex_adjacency_is_symmetric():
    mesh = extract(Volume(samples=sphere_field(8, 3.0).astype(np.float32)), 0.5)
    adjacency = vertex_adjacency(mesh)
    assert adjacency.shape == (mesh.vertex_count, mesh.vertex_count)
    assert (adjacency != adjacency.T).nnz == 0


def test_compute_vertex_normals_follow_winding():
    vertices = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0]], dtype=np.float64)
    normals = compute_vertex_normals(vertices, np.array([[0, 1, 2]]))
    np.testing.assert_allclose(normals, np.tile([0.0, 0.0, 1.0], (3, 1)))


def test_smoothing_keeps_topology_and_shrinks_noise():
    mesh = extract(Volume(samples=sphere_field(16, 6.0).astype(np.float32)), 0.5)
    smoothed = smooth_mesh(mesh, iterations=5, factor=0.5)

    np.testing.assert_array_equal(smoothed.triangles, mesh.triangles)
    assert smoothed.is_watertight
    np.testing.assert_allclose(np.linalg.norm(smoothed.normals, axis=1), 1.0, atol=1e-5)

    centre = np.full(3, 7.5)
    before = np.linalg.norm(mesh.vertices - centre, axis=1)
    after = np.linalg.norm(smoothed.vertices - centre, axis=1)
    assert after.std() < before.std()
    assert not np.array_equal(smoothed.vertices, mesh.vertices)


def test_smoothing_no_op_cases():
    mesh = Mesh.empty()
    assert smooth_mesh(mesh, iterations=3) is mesh
    sphere = extract(Volume(samples=sphere_field(8, 3.0).astype(np.float32)), 0.5)
    assert smooth_mesh(sphere, iterations=0) is sphere


def test_label_components():
    labels = label_components(_two_blobs())
    assert len(np.unique(labels)) == 2


def test_remove_small_components():
    mesh = _two_blobs()
    cleaned = remove_small_components(mesh, min_triangles=20)

    assert cleaned.triangle_count < mesh.triangle_count
    assert cleaned.is_watertight
    assert cleaned.metadata["removed_components"] == 1
    assert len(np.unique(label_components(cleaned))) == 1
    # The lone voxel sits at x = 15
    assert cleaned.bounding_box[1][0] < 12.0


def test_remove_everything_gives_empty_mesh():
    cleaned = remove_small_components(_two_blobs(), min_triangles=10 ** 6)
    assert cleaned.is_empty
    assert cleaned.metadata["removed_components"] == 2


@pytest.mark.parametrize("min_triangles", [0, 1])
def test_remove_small_components_disabled(min_triangles):
    mesh = _two_blobs()
    assert remove_small_components(mesh, min_triangles=min_triangles) is mesh
