# mesh_nav/locator.py
from __future__ import annotations

import logging
from collections import deque
from typing import TYPE_CHECKING, Optional

import numpy as np

from .dtypes import Vector3
from .geometry import BARYCENTRIC_EPS, barycentric_coords, is_inside

if TYPE_CHECKING:
    from .mesh import TriangleMesh


logger = logging.getLogger(__name__)


# Constants

# Upper bound on faces visited by one neighbourhood search
DEFAULT_MAX_NEIGHBOUR_FACES: int = 40

_DEGENERATE_DENOM_TOL: float = 1e-20


def global_search(
    mesh: "TriangleMesh",
    point: Vector3,
    tolerance: Optional[float] = None,
) -> Optional[int]:
    """
    Scan every face for one containing ``point``.

    A face matches when the barycentric coordinates of the point's
    projection lie inside the triangle and, if ``tolerance`` is given, the
    point is no further than ``tolerance`` from the face plane. Among
    several matches the face with the smallest plane distance wins.
    """
    if mesh.num_faces == 0:
        return None

    point = np.asarray(point, dtype=np.float64)
    V, F = mesh.vertices, mesh.faces
    a = V[F[:, 0]]
    b = V[F[:, 1]]
    c = V[F[:, 2]]

    e0 = a - c
    e1 = b - c
    d = point[None, :] - c

    d00 = np.einsum("ij,ij->i", e0, e0)
    d01 = np.einsum("ij,ij->i", e0, e1)
    d11 = np.einsum("ij,ij->i", e1, e1)
    d20 = np.einsum("ij,ij->i", d, e0)
    d21 = np.einsum("ij,ij->i", d, e1)

    denom = d00 * d11 - d01 * d01
    valid = np.abs(denom) > _DEGENERATE_DENOM_TOL
    denom_safe = np.where(valid, denom, 1.0)

    u = (d11 * d20 - d01 * d21) / denom_safe
    v = (d00 * d21 - d01 * d20) / denom_safe

    inside = (
        valid
        & (u >= -BARYCENTRIC_EPS)
        & (v >= -BARYCENTRIC_EPS)
        & (u + v <= 1.0 + BARYCENTRIC_EPS)
    )

    height = np.abs(np.einsum("ij,ij->i", d, mesh.face_normals))
    if tolerance is not None:
        inside &= height <= tolerance

    candidates = np.flatnonzero(inside)
    if len(candidates) == 0:
        return None
    return int(candidates[np.argmin(height[candidates])])


def local_search(
    mesh: "TriangleMesh",
    point: Vector3,
    start_face: int,
    max_faces: int = DEFAULT_MAX_NEIGHBOUR_FACES,
) -> Optional[int]:
    """
    Breadth-first walk over face adjacency from ``start_face``, testing
    barycentric containment at each visited face. Gives up after
    ``max_faces`` faces have been tested.
    """
    queue = deque([start_face])
    visited = {start_face}
    tested = 0

    while queue and tested < max_faces:
        fh = queue.popleft()
        tested += 1

        a, b, c = mesh.face_positions(fh)
        coords = barycentric_coords(point, a, b, c)
        if coords is not None and is_inside(*coords):
            return fh

        for nh in mesh.neighbours_of_face(fh):
            if nh not in visited:
                visited.add(nh)
                queue.append(nh)

    return None


class FaceLocator:
    """Finds the face under a point, preferring a cheap search near a known face."""

    def __init__(
        self,
        mesh: "TriangleMesh",
        max_faces: int = DEFAULT_MAX_NEIGHBOUR_FACES,
        tolerance: Optional[float] = None,
    ):
        self.mesh = mesh
        self.max_faces = max_faces
        self.tolerance = tolerance

    def locate(self, point: Vector3, hint: Optional[int] = None) -> Optional[int]:
        """
        Local search seeded at ``hint`` when one is known, then a single
        global search if that fails or no hint is given.
        """
        if hint is not None:
            face = local_search(self.mesh, point, hint, self.max_faces)
            if face is not None:
                return face
            logger.debug(
                f"No face within {self.max_faces} faces of {hint}, searching the whole mesh"
            )

        face = global_search(self.mesh, point, self.tolerance)
        if face is None:
            logger.debug(f"Point {np.round(point, 3).tolist()} lies on no face")
        return face
