# mesh_nav/planner.py
from __future__ import annotations

import logging
import threading
from typing import Optional

import numpy as np

from .config import PlannerConfig
from .dtypes import (
    HandleField,
    PlannerOutcome,
    PlanResult,
    Pose,
    ScalarField,
    VectorField,
)
from .geometry import path_length, project_onto_plane
from .locator import FaceLocator
from .mesh import TriangleMesh
from .propagation import PropagationContext, WavefrontPropagation
from .tracer import VectorFieldTracer, compute_vector_field, samples_to_poses


logger = logging.getLogger(__name__)


class MeshPlanner:
    """
    Wavefront planner over a triangle mesh.

    Usage:
        planner = MeshPlanner()
        planner.initialize(mesh)
        result = planner.make_plan(start_pose, goal_pose)
        if result.outcome is PlannerOutcome.SUCCESS:
            controller.set_plan(result.plan, planner.vector_field)
    """

    def __init__(self, config: Optional[PlannerConfig] = None):
        self._config = config or PlannerConfig()
        self._config.validate()
        self._mesh: Optional[TriangleMesh] = None
        self._cancel_requested = threading.Event()
        self._last_context: Optional[PropagationContext] = None

    def initialize(self, mesh: TriangleMesh) -> bool:
        self._mesh = mesh
        self._last_context = None
        logger.info(
            f"Planner initialized on a mesh with {mesh.num_vertices} vertices "
            f"and {mesh.num_faces} faces"
        )
        return True

    def reconfigure(self, config: PlannerConfig) -> None:
        """Swap in a new parameter snapshot; the next planning call picks it up."""
        config.validate()
        self._config = config
        logger.info(f"New planner config: {config}")

    @property
    def config(self) -> PlannerConfig:
        return self._config

    def cancel(self) -> bool:
        self._cancel_requested.set()
        return True

    # Diagnostics of the last planning call

    @property
    def potential(self) -> Optional[ScalarField]:
        return None if self._last_context is None else self._last_context.distances

    @property
    def vector_field(self) -> Optional[VectorField]:
        return None if self._last_context is None else self._last_context.vector_field

    @property
    def predecessors(self) -> Optional[HandleField]:
        return None if self._last_context is None else self._last_context.predecessors

    @property
    def cutting_faces(self) -> Optional[HandleField]:
        return None if self._last_context is None else self._last_context.cutting_faces

    @property
    def last_context(self) -> Optional[PropagationContext]:
        return self._last_context

    def make_plan(self, start: Pose, goal: Pose, tolerance: float = 0.0) -> PlanResult:
        """
        Plan from ``start`` to ``goal``.

        ``tolerance`` is accepted for interface compatibility; the goal is
        always approached to within one tracing step.
        """
        config = self._config
        self._cancel_requested.clear()

        mesh = self._mesh
        if mesh is None:
            return PlanResult([], PlannerOutcome.INVALID_START, message="Planner is not initialized")

        start_vec = np.asarray(start.position, dtype=np.float64)
        goal_vec = np.asarray(goal.position, dtype=np.float64)

        locator = FaceLocator(mesh, config.max_neighbour_faces, config.locate_tolerance)
        start_face = locator.locate(start_vec)
        if start_face is None:
            return PlanResult([], PlannerOutcome.INVALID_START,
                              message="Start is not located on the mesh")
        goal_face = locator.locate(goal_vec)
        if goal_face is None:
            return PlanResult([], PlannerOutcome.INVALID_GOAL,
                              message="Goal is not located on the mesh")

        start_vec = project_onto_plane(start_vec, mesh.vertex_position(mesh.faces[start_face][0]),
                                       mesh.face_normal(start_face))
        goal_vec = project_onto_plane(goal_vec, mesh.vertex_position(mesh.faces[goal_face][0]),
                                      mesh.face_normal(goal_face))

        if start_face == goal_face:
            self._last_context = PropagationContext.fresh(mesh.num_vertices)
            samples = [(start_vec, start_face), (goal_vec, goal_face)]
            plan = samples_to_poses(mesh, samples, fallback=np.asarray(goal.orientation))
            logger.info("Start and goal share one face, planned a direct segment")
            return PlanResult(plan, PlannerOutcome.SUCCESS, cost=path_length([start_vec, goal_vec]))

        labels = mesh.component_labels
        start_labels = {labels[vh] for vh in mesh.vertices_of_face(start_face)}
        goal_labels = {labels[vh] for vh in mesh.vertices_of_face(goal_face)}
        if start_labels.isdisjoint(goal_labels):
            self._last_context = PropagationContext.fresh(mesh.num_vertices)
            logger.warning("Start and goal lie on disconnected parts of the mesh")
            return PlanResult([], PlannerOutcome.NO_PATH_FOUND,
                              message="Start and goal are not connected")

        logger.info("start wave front propagation.")
        propagation = WavefrontPropagation(mesh, config)
        outcome, ctx = propagation.propagate(
            goal_vec, goal_face, start_face, self._cancel_requested.is_set
        )
        self._last_context = ctx
        if outcome is not PlannerOutcome.SUCCESS:
            return PlanResult([], outcome, message=_MESSAGES[outcome])

        compute_vector_field(mesh, ctx)

        tracer = VectorFieldTracer(
            mesh,
            step_width=config.step_width,
            max_steps=config.max_trace_steps,
            max_faces=config.max_neighbour_faces,
        )
        outcome, samples = tracer.trace(
            ctx.vector_field,
            (start_vec, start_face),
            (goal_vec, goal_face),
            self._cancel_requested.is_set,
        )
        if outcome is not PlannerOutcome.SUCCESS:
            return PlanResult([], outcome, message=_MESSAGES[outcome])

        plan = samples_to_poses(mesh, samples, fallback=np.asarray(start.orientation))
        cost = path_length([pose.position for pose in plan])
        logger.info(f"Planned a path of {len(plan)} poses and {cost:.3f} m")
        return PlanResult(plan, PlannerOutcome.SUCCESS, cost=cost)


_MESSAGES = {
    PlannerOutcome.NO_PATH_FOUND: "No path found",
    PlannerOutcome.CANCELED: "Planning has been canceled",
}
