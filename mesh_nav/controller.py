# mesh_nav/controller.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .config import ControllerConfig
from .dtypes import (
    ControllerOutcome,
    ControlResult,
    LookAheadResult,
    Pose,
    TrackingState,
    Twist,
    Vector3,
    VectorField,
)
from .geometry import angle_between, heading_of, turn_direction
from .locator import FaceLocator
from .mesh import TriangleMesh
from .steering import SteeringInput, SteeringLaw, lin_value, make_steering_law


logger = logging.getLogger(__name__)


@dataclass
class ControllerState:
    """Progress of the controller along the accepted plan."""
    current_face: Optional[int] = None
    plan_index: int = 0
    # last commanded linear velocity, sets the reach of the plan-index search
    last_linear_velocity: float = 0.0
    last_stamp: Optional[float] = None
    heading_error: float = 0.0
    # Arc length from the first pose to each pose, computed on first use
    arc_lengths: Optional[np.ndarray] = None


class MeshController:
    """
    Follows a planned pose sequence on a triangle mesh.

    Every cycle the robot is re-localized on the mesh, the tracked plan
    index is moved to the closest waypoint the robot could have reached,
    and the active steering law turns the heading error, the local cost and
    the look-ahead into a velocity command.

    Usage:
        controller = MeshController(ControllerConfig(steering_law="pid"))
        controller.initialize(mesh)
        controller.set_plan(result.plan, planner.vector_field)

        # In control loop (10 Hz):
        result = controller.compute_velocity(pose, current_twist, elapsed=0.1)
        if result.outcome is ControllerOutcome.OFF_PLAN:
            replan()
    """

    def __init__(self, config: Optional[ControllerConfig] = None):
        self._config = config or ControllerConfig()
        self._config.validate()
        self._law: SteeringLaw = make_steering_law(self._config.steering_law)
        self._mesh: Optional[TriangleMesh] = None
        self._plan: List[Pose] = []
        self._vector_field: Optional[VectorField] = None
        self._goal: Optional[Pose] = None
        self.state = ControllerState()
        self.status = TrackingState.UNINITIALIZED

    def initialize(self, mesh: TriangleMesh) -> bool:
        self._mesh = mesh
        self.state = ControllerState()
        logger.info(f"Controller initialized on a mesh with {mesh.num_faces} faces")
        return True

    def reconfigure(self, config: ControllerConfig) -> None:
        """Swap in a new parameter snapshot; the next control cycle picks it up."""
        config.validate()
        self._config = config
        logger.info(f"New controller config: {config}")

    @property
    def config(self) -> ControllerConfig:
        return self._config

    @property
    def plan(self) -> List[Pose]:
        return self._plan

    @property
    def goal(self) -> Optional[Pose]:
        return self._goal

    @property
    def reference(self) -> Optional[Pose]:
        if not self._plan:
            return None
        return self._plan[self.state.plan_index]

    def cancel(self) -> bool:
        # a control cycle always runs to completion
        return False

    def set_plan(self, plan: Sequence[Pose], vector_field: Optional[VectorField] = None) -> bool:
        """
        Accept a new plan. Its first pose repeats the robot's start pose and
        is dropped; plans with fewer than two poses are rejected.
        """
        if len(plan) < 2:
            logger.warning(f"Rejected a plan with {len(plan)} poses")
            return False

        self._plan = list(plan[1:])
        self._goal = self._plan[-1]
        self._vector_field = vector_field
        self.state = ControllerState()
        self._law.reset()
        self.status = TrackingState.TRACKING
        logger.info(f"Accepted a plan with {len(self._plan)} poses")
        return True

    # Plan bookkeeping

    def _arc_lengths(self) -> np.ndarray:
        if self.state.arc_lengths is None:
            positions = np.array([pose.position for pose in self._plan], dtype=np.float64)
            steps = np.linalg.norm(np.diff(positions, axis=0), axis=1)
            self.state.arc_lengths = np.concatenate([[0.0], np.cumsum(steps)])
        return self.state.arc_lengths

    @staticmethod
    def _walk(dists: np.ndarray, start: int, reach: float, step: int) -> int:
        # waypoint distances in walking order, starting at the tracked index
        span = dists[start:] if step > 0 else dists[start::-1]
        within = np.flatnonzero(span <= reach)
        stop = int(within[0]) if within.size else len(span) - 1
        while stop + 1 < len(span) and span[stop + 1] < span[stop]:
            stop += 1
        return start + step * int(np.argmin(span[:stop + 1]))

    def update_plan_position(self, position: Vector3, speed: float, elapsed: Optional[float]) -> int:
        """
        Move the tracked index to the waypoint closest to ``position``.

        From the tracked index the plan is walked forward and backward until
        a waypoint lies within ``speed * elapsed`` of the robot, and on while
        the waypoints keep getting closer. The closest waypoint visited
        wins; on a tie the forward one.
        """
        index = self.state.plan_index
        if elapsed is None:
            return index

        reach = max(speed, 0.0) * max(elapsed, 0.0)
        positions = np.array([pose.position for pose in self._plan], dtype=np.float64)
        dists = np.linalg.norm(positions - position, axis=1)

        forward = self._walk(dists, index, reach, 1)
        backward = self._walk(dists, index, reach, -1)
        self.state.plan_index = forward if dists[forward] <= dists[backward] else backward
        return self.state.plan_index

    def fading_factor(self, config: Optional[ControllerConfig] = None) -> float:
        """
        Speed scale easing in over the first and out over the last
        ``fading_distance`` metres of the plan.
        """
        config = config or self._config
        arc = self._arc_lengths()
        total = float(arc[-1])
        travelled = float(arc[self.state.plan_index])
        fading = config.fading_distance

        if travelled < fading:
            if travelled == 0.0:
                # still allow the first move off the start
                return config.max_linear_velocity / 10
            return travelled / fading
        if total - travelled < fading:
            return (total - travelled) / fading
        return 1.0

    def off_plan(self, position: Vector3, config: Optional[ControllerConfig] = None) -> bool:
        """True when the robot is strictly further than the threshold from the reference."""
        config = config or self._config
        distance = float(np.linalg.norm(position - self.reference.position))
        return distance > config.off_plan_threshold

    def is_goal_reached(self, dist_tolerance: float, angle_tolerance: Optional[float] = None) -> bool:
        reference = self.reference
        if reference is None or self._goal is None:
            return False
        dist = float(np.linalg.norm(reference.position - self._goal.position))
        reached = dist <= dist_tolerance and (
            angle_tolerance is None or self.state.heading_error <= angle_tolerance
        )
        if reached:
            self.status = TrackingState.GOAL_REACHED
        return reached

    # Control cycle

    def _localize(self, position: Vector3, config: ControllerConfig) -> Optional[int]:
        locator = FaceLocator(self._mesh, config.max_neighbour_faces, config.locate_tolerance)
        face = locator.locate(position, hint=self.state.current_face)
        if face is None:
            logger.error("searched through mesh - no current face")
            return None
        self.state.current_face = face
        return face

    def look_ahead(
        self,
        pose: Pose,
        speed: float,
        elapsed: Optional[float],
        config: Optional[ControllerConfig] = None,
    ) -> Optional[LookAheadResult]:
        """
        Average heading delta and cost over the next waypoints. The number
        of waypoints grows with speed; none are sampled at standstill.
        Waypoints whose cost cannot be resolved are left out of the average.
        """
        config = config or self._config
        if elapsed is None or elapsed <= 0.0:
            return None

        max_dist_by_max_vel = config.max_linear_velocity * elapsed
        steps = int(lin_value(float(config.max_lookahead_steps), 0.0,
                              2 * max_dist_by_max_vel, max(speed, 0.0) * elapsed))
        if steps == 0:
            return None

        mesh = self._mesh
        locator = FaceLocator(mesh, config.max_neighbour_faces, config.locate_tolerance)
        robot_heading = heading_of(pose)
        future_face = self.state.current_face

        accum_cost = 0.0
        accum_turn = 0.0
        sampled = 0
        missed = 0
        lethal_step: Optional[int] = None

        for i in range(steps):
            index = self.state.plan_index + i
            if index >= len(self._plan):
                break
            pose_ahead = self._plan[index]

            future_face = locator.locate(pose_ahead.position, hint=future_face)
            if future_face is None:
                missed += 1
                continue

            cost = mesh.cost_at_position(future_face, pose_ahead.position)
            if cost is None:
                logger.debug("cost could not be accessed")
                missed += 1
                continue
            if cost >= config.cost_limit:
                if lethal_step is None:
                    logger.info(f"lethal vertex {i}")
                    lethal_step = i
                cost = config.cost_limit

            future_heading = heading_of(pose_ahead)
            turn = angle_between(robot_heading, future_heading)
            sign = turn_direction(robot_heading, future_heading, mesh.face_normal(future_face))
            accum_cost += cost
            accum_turn += sign * turn
            sampled += 1

        if sampled == 0:
            logger.debug(f"No look-ahead step could be sampled ({missed} missed)")
            return None

        return LookAheadResult(
            heading=accum_turn / sampled,
            cost=accum_cost / sampled,
            sampled_steps=sampled,
            lethal_step=lethal_step,
        )

    def _reference_direction(self, face: int, position: Vector3, config: ControllerConfig) -> Vector3:
        if config.use_mesh_gradient and self._vector_field is not None:
            direction = self._mesh.direction_at_position(self._vector_field, face, position)
            if direction is not None:
                return direction
            logger.debug("No mesh gradient at the robot position, using the plan heading")
        return heading_of(self.reference)

    def compute_velocity(
        self,
        pose: Pose,
        velocity: Twist,
        elapsed: Optional[float] = None,
    ) -> ControlResult:
        """
        Run one control cycle.

        ``elapsed`` is the time since the previous cycle in seconds; when
        omitted it is measured with a monotonic clock.
        """
        config = self._config

        if self._mesh is None:
            return ControlResult(Twist(), ControllerOutcome.NOT_INITIALIZED,
                                 "Controller is not initialized")
        if not self._plan:
            return ControlResult(Twist(), ControllerOutcome.EMPTY_PATH, "No plan to follow")

        if self._law.name != config.steering_law:
            self._law = make_steering_law(config.steering_law)

        now = time.monotonic()
        if elapsed is None and self.state.last_stamp is not None:
            elapsed = now - self.state.last_stamp
        self.state.last_stamp = now

        position = np.asarray(pose.position, dtype=np.float64)
        face = self._localize(position, config)
        if face is None:
            self.status = TrackingState.FAILED
            return ControlResult(Twist(), ControllerOutcome.FAILURE,
                                 "Robot is not located on the mesh")

        speed = abs(velocity.linear)
        # odometry can lag behind the command right after a start
        self.update_plan_position(position, max(speed, self.state.last_linear_velocity), elapsed)
        reference = self.reference

        if self.off_plan(position, config):
            self.status = TrackingState.FAILED
            logger.warning(
                f"Robot is off the plan by {np.linalg.norm(position - reference.position):.3f} m"
            )
            return ControlResult(Twist(), ControllerOutcome.OFF_PLAN, "Robot is off the plan")

        robot_heading = heading_of(pose)
        plan_heading = self._reference_direction(face, position, config)
        heading_error = angle_between(robot_heading, plan_heading)
        self.state.heading_error = heading_error

        cost = self._mesh.cost_at_position(face, position)
        if cost is not None:
            cost = min(cost, config.cost_limit)

        ahead = self.look_ahead(pose, speed, elapsed, config)

        inputs = SteeringInput(
            heading_error=heading_error,
            turn_sign=turn_direction(robot_heading, plan_heading, self._mesh.face_normal(face)),
            distance_error=float(np.linalg.norm(position - reference.position)),
            cost=cost,
            lookahead=ahead,
        )
        cmd = self._law.compute(inputs, config)
        linear = cmd.linear * self.fading_factor(config)
        self.state.last_linear_velocity = linear

        logger.debug(
            f"index={self.state.plan_index} heading_error={heading_error:.3f} "
            f"ahead={ahead} cmd=({linear:.3f}, {cmd.angular:.3f})"
        )

        return ControlResult(
            cmd=Twist(linear=linear, angular=cmd.angular),
            outcome=ControllerOutcome.SUCCESS,
            heading_error=heading_error,
            lookahead_heading=None if ahead is None else ahead.heading,
            lookahead_cost=None if ahead is None else ahead.cost,
            lethal_step=None if ahead is None else ahead.lethal_step,
        )
