import unittest
import numpy as np

from core.coordinates import (
    angle_between,
    direction_from_orientation,
    orientation_vectors,
    raw_zyx_to_grid_xyz,
    slice_normal,
    volume_to_world_matrix,
    voxel_xyz_to_world_xyz,
    world_xyz_to_voxel_xyz,
)


class TestCoordinateConversions(unittest.TestCase):
    def test_raw_zyx_to_grid_xyz(self):
        raw = np.arange(2 * 3 * 4, dtype=np.int32).reshape(2, 3, 4)
        grid = raw_zyx_to_grid_xyz(raw)
        self.assertEqual(grid.shape, (4, 3, 2))
        self.assertEqual(grid[3, 2, 1], raw[1, 2, 3])

    def test_orientation_vectors_are_normalised(self):
        row, col = orientation_vectors((2.0, 0.0, 0.0, 0.0, 0.0, 3.0))
        np.testing.assert_allclose(row, [1.0, 0.0, 0.0])
        np.testing.assert_allclose(col, [0.0, 0.0, 1.0])
        with self.assertRaises(ValueError):
            orientation_vectors((0.0, 0.0, 0.0, 0.0, 1.0, 0.0))

    def test_slice_normal(self):
        np.testing.assert_allclose(slice_normal((1, 0, 0, 0, 1, 0)), [0.0, 0.0, 1.0])
        # Coronal: row along x, column along -z
        np.testing.assert_allclose(slice_normal((1, 0, 0, 0, 0, -1)), [0.0, 1.0, 0.0])

    def test_angle_between(self):
        self.assertAlmostEqual(angle_between((1, 0, 0), (0, 1, 0)), np.pi / 2)
        self.assertAlmostEqual(angle_between((1, 0, 0), (1, 1e-6, 0)), 1e-6, places=12)
        self.assertEqual(angle_between((0, 0, 0), (1, 0, 0)), np.pi)

    def test_direction_from_orientation(self):
        direction = direction_from_orientation((1, 0, 0, 0, 1, 0), flip_stack=True)
        np.testing.assert_allclose(direction, np.diag([1.0, 1.0, -1.0]))

    def test_world_voxel_round_trip(self):
        spacing = (2.0, 3.0, 4.0)
        origin = (10.0, 20.0, 30.0)
        direction = direction_from_orientation((0, 1, 0, -1, 0, 0))
        voxels = np.array([[1.0, 2.0, 3.0], [0.5, 0.0, 1.25]])

        world = voxel_xyz_to_world_xyz(voxels, spacing, origin, direction)
        np.testing.assert_allclose(world_xyz_to_voxel_xyz(world, spacing, origin, direction), voxels)

        matrix = volume_to_world_matrix(spacing, origin, direction)
        homogeneous = np.hstack((voxels, np.ones((2, 1))))
        np.testing.assert_allclose((homogeneous @ matrix.T)[:, :3], world)


if __name__ == '__main__':
    unittest.main()
