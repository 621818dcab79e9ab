# mesh_nav/tracer.py
from __future__ import annotations

import logging
from collections import deque
from typing import Callable, List, Optional, Tuple

import numpy as np

from .dtypes import PlannerOutcome, Pose, Quaternion, Vector3, VectorField
from .geometry import (
    barycentric_coords,
    is_inside,
    normalized,
    pose_from_positions,
    project_onto_plane,
    rotate_about_axis,
)
from .locator import DEFAULT_MAX_NEIGHBOUR_FACES
from .mesh import TriangleMesh
from .propagation import PropagationContext


logger = logging.getLogger(__name__)


# Constants
_DEFAULT_STEP_WIDTH: float = 0.03   # 3 cm
_DEFAULT_MAX_STEPS: int = 100000

SurfacePoint = Tuple[Vector3, int]


def compute_vector_field(mesh: TriangleMesh, ctx: PropagationContext) -> VectorField:
    """
    Fill ``ctx.vector_field`` for every vertex reached through a face update.

    The steering vector points from the vertex at its predecessor, rotated
    about the cutting face normal by the stored turn angle. Seed vertices
    keep the unscaled offset to the source point they were given.
    """
    for v3 in range(mesh.num_vertices):
        v1 = int(ctx.predecessors[v3])
        if v1 == v3:
            continue
        fh = int(ctx.cutting_faces[v3])
        if fh < 0:
            continue

        towards = mesh.vertex_position(v1) - mesh.vertex_position(v3)
        rotated = rotate_about_axis(towards, mesh.face_normal(fh), float(ctx.turn_angles[v3]))
        direction = normalized(rotated)
        if direction is not None:
            ctx.vector_field[v3] = direction

    return ctx.vector_field


class VectorFieldTracer:
    """Walks a per-vertex steering field across the mesh surface in fixed steps."""

    def __init__(
        self,
        mesh: TriangleMesh,
        step_width: float = _DEFAULT_STEP_WIDTH,
        max_steps: int = _DEFAULT_MAX_STEPS,
        max_faces: int = DEFAULT_MAX_NEIGHBOUR_FACES,
    ):
        self.mesh = mesh
        self.step_width = step_width
        self.max_steps = max_steps
        self.max_faces = max_faces

    def step(
        self,
        vector_field: VectorField,
        point: Vector3,
        face: int,
    ) -> Optional[SurfacePoint]:
        """
        Move ``point`` one step along the field and return the new surface
        point and the face it landed in, or None on a dead end.
        """
        mesh = self.mesh
        direction = mesh.direction_at_position(vector_field, face, point)
        if direction is None:
            return None

        ahead = point + direction * self.step_width

        # Breadth-first over neighbouring faces, projecting onto each plane
        queue = deque([face])
        visited = {face}
        tested = 0
        while queue and tested < self.max_faces:
            fh = queue.popleft()
            tested += 1

            a, b, c = mesh.face_positions(fh)
            projected = project_onto_plane(ahead, a, mesh.face_normal(fh))
            coords = barycentric_coords(projected, a, b, c)
            if coords is not None and is_inside(*coords):
                return projected, fh

            for nh in mesh.neighbours_of_face(fh):
                if nh not in visited:
                    visited.add(nh)
                    queue.append(nh)

        return None

    def trace(
        self,
        vector_field: VectorField,
        start: SurfacePoint,
        goal: SurfacePoint,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> Tuple[PlannerOutcome, List[SurfacePoint]]:
        """
        Follow the field from ``start`` until within one step width of
        ``goal``. The returned samples run from start to goal inclusive.
        """
        current_pos, current_face = start
        goal_pos, _ = goal
        path: List[SurfacePoint] = [(np.array(current_pos, dtype=np.float64), current_face)]

        logger.info("Start vector field back tracking!")
        steps = 0
        while np.linalg.norm(current_pos - goal_pos) > self.step_width:
            if should_cancel is not None and should_cancel():
                logger.warning("Vector field back tracking has been canceled!")
                return PlannerOutcome.CANCELED, path

            if steps >= self.max_steps:
                logger.warning(f"Back tracking did not reach the goal within {steps} steps")
                return PlannerOutcome.NO_PATH_FOUND, path

            ahead = self.step(vector_field, current_pos, current_face)
            if ahead is None:
                logger.warning("Could not find a valid path, while back-tracking from the goal")
                return PlannerOutcome.NO_PATH_FOUND, path

            current_pos, current_face = ahead
            path.append(ahead)
            steps += 1

        path.append((np.array(goal_pos, dtype=np.float64), goal[1]))
        logger.info(f"Successfully finished vector field back tracking in {steps} steps!")
        return PlannerOutcome.SUCCESS, path


def samples_to_poses(
    mesh: TriangleMesh,
    samples: List[SurfacePoint],
    fallback: Optional[Quaternion] = None,
) -> List[Pose]:
    """
    Orient each sample towards its successor on its face's tangent plane.
    The last sample keeps the orientation of the one before it.
    """
    poses: List[Pose] = []
    previous: Optional[Quaternion] = fallback
    for (point, fh), (following, _) in zip(samples, samples[1:]):
        pose = pose_from_positions(point, following, mesh.face_normal(fh), fallback=previous)
        poses.append(pose)
        previous = pose.orientation

    if samples:
        last_point, _ = samples[-1]
        orientation = previous if previous is not None else np.array([0.0, 0.0, 0.0, 1.0])
        poses.append(Pose(np.array(last_point, dtype=np.float64), np.array(orientation)))
    return poses
