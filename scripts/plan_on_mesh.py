# scripts/plan_on_mesh.py
from __future__ import annotations

import argparse
import logging
import os
from typing import List, Optional

import numpy as np
from tqdm import tqdm

from mesh_nav import (
    ControllerConfig,
    ControllerOutcome,
    MeshController,
    MeshPlanner,
    PlannerConfig,
    PlannerOutcome,
    Pose,
    TriangleMesh,
    Twist,
    load_config,
)
from mesh_nav.geometry import (
    heading_of,
    make_pose,
    orientation_from_direction,
    project_onto_plane,
    rotate_about_axis,
)
from mesh_nav.locator import FaceLocator

# Configure logging
logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

# Constants
_CONTROL_PERIOD: float = 0.1   # s, 10 Hz control loop
_MAX_CYCLES: int = 5000


def simulate(
    mesh: TriangleMesh,
    controller: MeshController,
    start: Pose,
    goal_tolerance: float,
    show_progress: bool = True,
) -> List[Pose]:
    """
    Drive a unicycle along the surface with the controller's commands until
    the goal is reached, the controller gives up or the cycle budget runs out.
    """
    config = controller.config
    locator = FaceLocator(mesh, config.max_neighbour_faces, config.locate_tolerance)
    pose = start
    velocity = Twist()
    face: Optional[int] = None
    trajectory = [pose]

    iterator = range(_MAX_CYCLES)
    if show_progress:
        iterator = tqdm(iterator, desc="Simulating")

    for cycle in iterator:
        elapsed = None if cycle == 0 else _CONTROL_PERIOD
        result = controller.compute_velocity(pose, velocity, elapsed=elapsed)
        if result.outcome is not ControllerOutcome.SUCCESS:
            logger.warning(f"Controller stopped at cycle {cycle}: {result.message}")
            break

        face = locator.locate(pose.position, hint=face)
        if face is None:
            logger.warning(f"Robot left the mesh at cycle {cycle}")
            break
        normal = mesh.face_normal(face)

        heading = rotate_about_axis(heading_of(pose), normal, result.cmd.angular * _CONTROL_PERIOD)
        position = pose.position + heading * result.cmd.linear * _CONTROL_PERIOD
        position = project_onto_plane(position, mesh.vertex_position(mesh.faces[face][0]), normal)
        orientation = orientation_from_direction(heading, normal)
        if orientation is None:
            orientation = pose.orientation

        pose = Pose(position, orientation)
        velocity = result.cmd
        trajectory.append(pose)

        if controller.is_goal_reached(goal_tolerance):
            logger.info(f"Goal reached after {cycle + 1} cycles")
            break

    return trajectory


def run(args: argparse.Namespace) -> int:
    planner_config = PlannerConfig()
    if args.planner_config is not None:
        planner_config = load_config(args.planner_config, PlannerConfig)
    controller_config = ControllerConfig()
    if args.controller_config is not None:
        controller_config = load_config(args.controller_config, ControllerConfig)

    mesh = TriangleMesh.from_file(args.mesh)
    logger.info(f"Loaded {args.mesh}: {mesh.num_vertices} vertices, {mesh.num_faces} faces")

    start = make_pose(args.start, yaw=args.start_yaw)
    goal = make_pose(args.goal)

    planner = MeshPlanner(planner_config)
    planner.initialize(mesh)
    result = planner.make_plan(start, goal)
    if result.outcome is not PlannerOutcome.SUCCESS:
        logger.error(f"Planning failed ({result.outcome.name}): {result.message}")
        return 1

    save_dict = {
        "path": np.array([pose.position for pose in result.plan]),
        "orientations": np.array([pose.orientation for pose in result.plan]),
    }
    if planner.potential is not None:
        save_dict["potential"] = planner.potential
        save_dict["vector_field"] = planner.vector_field

    if args.simulate:
        controller = MeshController(controller_config)
        controller.initialize(mesh)
        controller.set_plan(result.plan, planner.vector_field)
        trajectory = simulate(
            mesh,
            controller,
            result.plan[0],
            goal_tolerance=planner_config.step_width * 2,
            show_progress=not args.no_progress,
        )
        save_dict["trajectory"] = np.array([pose.position for pose in trajectory])

    if args.output is not None:
        output_dir = os.path.dirname(args.output)
        if output_dir:
            os.makedirs(output_dir, exist_ok=True)
        np.savez_compressed(args.output, **save_dict)
        logger.info(f"Saved {', '.join(save_dict)} to {args.output}")

    return 0


def main() -> None:
    """Command-line interface for planning on a mesh file."""
    parser = argparse.ArgumentParser(
        description="Plan a path over a triangle mesh and optionally follow it",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
        Examples:
        python scripts/plan_on_mesh.py --mesh terrain.ply \\
            --start 0.5 0.5 0.0 --goal 8.0 6.5 0.4

        python scripts/plan_on_mesh.py --mesh terrain.obj \\
            --start 0.5 0.5 0.0 --goal 8.0 6.5 0.4 \\
            --controller_config config/controller.yaml \\
            --simulate --output out/plan.npz
                """,
    )
    parser.add_argument("--mesh", type=str, required=True, help="Mesh file (.ply, .obj, ...)")
    parser.add_argument("--start", type=float, nargs=3, required=True, metavar=("X", "Y", "Z"))
    parser.add_argument("--goal", type=float, nargs=3, required=True, metavar=("X", "Y", "Z"))
    parser.add_argument(
        "--start_yaw",
        type=float,
        default=0.0,
        help="Initial heading of the robot in radians (default: 0.0)",
    )
    parser.add_argument("--planner_config", type=str, default=None, help="Planner YAML file")
    parser.add_argument("--controller_config", type=str, default=None, help="Controller YAML file")
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Follow the plan with the controller on a simulated unicycle",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output .npz for path, potential and vector field",
    )
    parser.add_argument(
        "--no_progress",
        action="store_true",
        help="Disable progress bar",
    )

    args = parser.parse_args()
    raise SystemExit(run(args))


if __name__ == "__main__":
    main()
