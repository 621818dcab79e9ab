import math
import unittest

import numpy as np
from numpy.testing import assert_allclose

from mesh_nav.geometry import (
    angle_between,
    barycentric_coords,
    heading_of,
    is_inside,
    make_pose,
    normalized,
    orientation_from_direction,
    path_length,
    project_onto_plane,
    rotate_about_axis,
    turn_direction,
)
from mesh_nav.dtypes import Pose
from mesh_nav.locator import FaceLocator, global_search, local_search
from mesh_nav.mesh import TriangleMesh


Z = np.array([0.0, 0.0, 1.0])


class TestBarycentric(unittest.TestCase):
    """Barycentric weights: u for a, v for b, the rest for c."""

    def setUp(self):
        self.a = np.array([0.0, 0.0, 0.0])
        self.b = np.array([1.0, 0.0, 0.0])
        self.c = np.array([0.0, 1.0, 0.0])

    def test_corners(self):
        assert_allclose(barycentric_coords(self.a, self.a, self.b, self.c), (1.0, 0.0), atol=1e-12)
        assert_allclose(barycentric_coords(self.b, self.a, self.b, self.c), (0.0, 1.0), atol=1e-12)
        assert_allclose(barycentric_coords(self.c, self.a, self.b, self.c), (0.0, 0.0), atol=1e-12)

    def test_centroid(self):
        centroid = (self.a + self.b + self.c) / 3
        u, v = barycentric_coords(centroid, self.a, self.b, self.c)
        self.assertAlmostEqual(u, 1 / 3)
        self.assertAlmostEqual(v, 1 / 3)

    def test_point_above_plane_uses_projection(self):
        u, v = barycentric_coords(np.array([0.25, 0.25, 3.0]), self.a, self.b, self.c)
        self.assertAlmostEqual(u, 0.5)
        self.assertAlmostEqual(v, 0.25)

    def test_degenerate_triangle(self):
        self.assertIsNone(barycentric_coords(self.a, self.a, self.b, 2 * self.b))

    def test_is_inside_slack(self):
        self.assertTrue(is_inside(0.5, 0.5))
        self.assertTrue(is_inside(-1e-9, 0.3))
        self.assertFalse(is_inside(-0.01, 0.3))
        self.assertFalse(is_inside(0.6, 0.6))


class TestVectors(unittest.TestCase):

    def test_normalized(self):
        assert_allclose(normalized(np.array([3.0, 0.0, 4.0])), [0.6, 0.0, 0.8])
        self.assertIsNone(normalized(np.zeros(3)))

    def test_rotate_quarter_turn(self):
        assert_allclose(rotate_about_axis(np.array([1.0, 0.0, 0.0]), Z, math.pi / 2),
                        [0.0, 1.0, 0.0], atol=1e-12)

    def test_rotate_without_axis_is_identity(self):
        vec = np.array([1.0, 2.0, 3.0])
        assert_allclose(rotate_about_axis(vec, np.zeros(3), 1.0), vec)

    def test_angle_between(self):
        self.assertAlmostEqual(angle_between(np.array([1.0, 0, 0]), np.array([0, 1.0, 0])), math.pi / 2)
        self.assertAlmostEqual(angle_between(np.array([1.0, 0, 0]), np.array([-2.0, 0, 0])), math.pi)
        self.assertEqual(angle_between(np.zeros(3), np.array([1.0, 0, 0])), 0.0)

    def test_turn_direction(self):
        x = np.array([1.0, 0.0, 0.0])
        y = np.array([0.0, 1.0, 0.0])
        self.assertEqual(turn_direction(x, y, Z), 1.0)
        self.assertEqual(turn_direction(y, x, Z), -1.0)
        self.assertEqual(turn_direction(x, -Z, y), 1.0)

    def test_project_onto_plane(self):
        assert_allclose(project_onto_plane(np.array([1.0, 2.0, 5.0]), np.zeros(3), Z), [1.0, 2.0, 0.0])

    def test_path_length(self):
        self.assertAlmostEqual(path_length([[0, 0, 0], [3, 4, 0], [3, 4, 1]]), 6.0)
        self.assertEqual(path_length([[1, 1, 1]]), 0.0)


class TestPoses(unittest.TestCase):

    def test_make_pose_heading(self):
        pose = make_pose([1.0, 2.0, 0.0], yaw=math.pi / 2)
        assert_allclose(heading_of(pose), [0.0, 1.0, 0.0], atol=1e-12)

    def test_orientation_follows_direction_on_slope(self):
        normal = normalized(np.array([0.0, -1.0, 1.0]))
        direction = np.array([0.0, 1.0, 1.0])
        quat = orientation_from_direction(direction, normal)
        heading = heading_of(Pose(np.zeros(3), quat))
        assert_allclose(heading, normalized(direction), atol=1e-12)

    def test_orientation_parallel_to_normal(self):
        self.assertIsNone(orientation_from_direction(Z, Z))


def _square():
    vertices = np.array([[0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0]], dtype=np.float64)
    faces = np.array([[0, 1, 2], [0, 2, 3]])
    return TriangleMesh(vertices, faces)


class TestLocator(unittest.TestCase):
    """Containing-face queries."""

    def setUp(self):
        self.mesh = TriangleMesh.from_height_grid(np.zeros((5, 5)))

    def test_global_search(self):
        square = _square()
        self.assertEqual(global_search(square, np.array([0.7, 0.2, 0.0])), 0)
        self.assertEqual(global_search(square, np.array([0.2, 0.7, 0.0])), 1)
        self.assertIsNone(global_search(square, np.array([2.0, 0.5, 0.0])))

    def test_global_search_height_tolerance(self):
        square = _square()
        point = np.array([0.7, 0.2, 0.5])
        self.assertEqual(global_search(square, point, tolerance=1.0), 0)
        self.assertIsNone(global_search(square, point, tolerance=0.2))

    def test_local_search_from_neighbour(self):
        point = np.array([1.3, 1.2, 0.0])
        expected = global_search(self.mesh, point)
        start = self.mesh.neighbours_of_face(expected)[0]
        self.assertEqual(local_search(self.mesh, point, start), expected)

    def test_local_search_budget(self):
        far = np.array([3.8, 3.9, 0.0])
        start = global_search(self.mesh, np.array([0.1, 0.1, 0.0]))
        self.assertIsNone(local_search(self.mesh, far, start, max_faces=1))

    def test_locator_falls_back_to_global_search(self):
        far = np.array([3.8, 3.9, 0.0])
        start = global_search(self.mesh, np.array([0.1, 0.1, 0.0]))
        locator = FaceLocator(self.mesh, max_faces=1)
        self.assertEqual(locator.locate(far, hint=start), global_search(self.mesh, far))

    def test_locator_off_mesh(self):
        locator = FaceLocator(self.mesh, tolerance=0.2)
        self.assertIsNone(locator.locate(np.array([10.0, 10.0, 0.0])))


if __name__ == "__main__":
    unittest.main()
