# mesh_nav/geometry.py
from __future__ import annotations

from typing import Optional, Tuple

import numpy as np
from scipy.spatial.transform import Rotation

from .dtypes import Pose, Quaternion, Vector3


# Constants

# Tolerance for vector magnitude during normalization
_VECTOR_NORM_TOL: float = 1e-10

# Squared-area tolerance below which a triangle is treated as degenerate
_DEGENERATE_DENOM_TOL: float = 1e-20

# Slack on barycentric containment so points on shared edges are found
BARYCENTRIC_EPS: float = 1e-6

_X_AXIS = np.array([1.0, 0.0, 0.0])


def as_vector(value) -> Vector3:
    return np.asarray(value, dtype=np.float64).reshape(3)


def normalized(vec: Vector3) -> Optional[Vector3]:
    """Unit vector along ``vec``, or None when it has no usable length."""
    norm = float(np.linalg.norm(vec))
    if not np.isfinite(norm) or norm < _VECTOR_NORM_TOL:
        return None
    return vec / norm


def barycentric_coords(
    point: Vector3,
    a: Vector3,
    b: Vector3,
    c: Vector3,
) -> Optional[Tuple[float, float]]:
    """
    Barycentric weights (u, v) of ``point`` w.r.t. triangle (a, b, c).

    ``u`` weights ``a``, ``v`` weights ``b`` and the implicit ``w = 1 - u - v``
    weights ``c``. Points off the triangle plane are handled as their
    orthogonal projection. Returns None for a degenerate triangle.
    """
    e0 = a - c
    e1 = b - c
    d = point - c

    d00 = float(np.dot(e0, e0))
    d01 = float(np.dot(e0, e1))
    d11 = float(np.dot(e1, e1))
    d20 = float(np.dot(d, e0))
    d21 = float(np.dot(d, e1))

    denom = d00 * d11 - d01 * d01
    if abs(denom) < _DEGENERATE_DENOM_TOL:
        return None

    u = (d11 * d20 - d01 * d21) / denom
    v = (d00 * d21 - d01 * d20) / denom
    return u, v


def is_inside(u: float, v: float, eps: float = BARYCENTRIC_EPS) -> bool:
    return u >= -eps and v >= -eps and u + v <= 1.0 + eps


def project_onto_plane(point: Vector3, plane_point: Vector3, normal: Vector3) -> Vector3:
    return point - np.dot(point - plane_point, normal) * normal


def rotate_about_axis(vec: Vector3, axis: Vector3, angle: float) -> Vector3:
    """Right-handed rotation of ``vec`` by ``angle`` around ``axis``."""
    unit_axis = normalized(axis)
    if unit_axis is None or angle == 0.0:
        return np.array(vec, dtype=np.float64)
    return Rotation.from_rotvec(unit_axis * angle).apply(vec)


def angle_between(first: Vector3, second: Vector3) -> float:
    """Unsigned angle in [0, pi]; zero when either vector has no length."""
    n1 = np.linalg.norm(first)
    n2 = np.linalg.norm(second)
    if n1 < _VECTOR_NORM_TOL or n2 < _VECTOR_NORM_TOL:
        return 0.0
    cos_angle = np.dot(first, second) / (n1 * n2)
    return float(np.arccos(np.clip(cos_angle, -1.0, 1.0)))


def turn_direction(current: Vector3, target: Vector3, normal: Vector3) -> float:
    """+1.0 when ``target`` lies to the left of ``current`` around ``normal``, else -1.0."""
    if np.dot(normal, np.cross(current, target)) > 0.0:
        return 1.0
    return -1.0


def orientation_from_direction(direction: Vector3, normal: Vector3) -> Optional[Quaternion]:
    """
    Quaternion whose x-axis follows ``direction`` and whose z-axis is
    the surface ``normal``. Returns None if the two are (anti-)parallel
    or either has no length.
    """
    ez = normalized(np.asarray(normal, dtype=np.float64))
    if ez is None:
        return None
    ey = normalized(np.cross(ez, direction))
    if ey is None:
        return None
    ex = np.cross(ey, ez)
    matrix = np.column_stack([ex, ey, ez])
    return Rotation.from_matrix(matrix).as_quat()


def pose_from_positions(
    current: Vector3,
    following: Vector3,
    normal: Vector3,
    fallback: Optional[Quaternion] = None,
) -> Pose:
    """Pose at ``current`` heading towards ``following`` on a face with ``normal``."""
    orientation = orientation_from_direction(following - current, normal)
    if orientation is None:
        orientation = fallback if fallback is not None else np.array([0.0, 0.0, 0.0, 1.0])
    return Pose(np.array(current, dtype=np.float64), np.array(orientation, dtype=np.float64))


def heading_of(pose: Pose) -> Vector3:
    """Direction of the pose's x-axis in the map frame."""
    return Rotation.from_quat(pose.orientation).apply(_X_AXIS)


def make_pose(position, yaw: float = 0.0) -> Pose:
    """Pose with a yaw-only orientation, for callers working in the plane."""
    quat = Rotation.from_euler("z", yaw).as_quat()
    return Pose(as_vector(position), quat)


def path_length(positions) -> float:
    points = np.asarray(positions, dtype=np.float64)
    if len(points) < 2:
        return 0.0
    return float(np.linalg.norm(np.diff(points, axis=0), axis=1).sum())
