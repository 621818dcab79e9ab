import unittest
from unittest import mock

import numpy as np
from numpy.testing import assert_allclose

from mesh_nav.config import ControllerConfig
from mesh_nav.controller import MeshController
from mesh_nav.dtypes import ControllerOutcome, TrackingState, Twist
from mesh_nav.geometry import make_pose
from mesh_nav.interfaces import Controller
from mesh_nav.mesh import TriangleMesh
from mesh_nav.steering import PidSteering


PLAN_Y = 0.75


def corridor(costs=None):
    """Flat 7 m x 2 m strip."""
    return TriangleMesh.from_height_grid(np.zeros((3, 8)), costs=costs)


def straight_plan():
    # 0.1 m spacing; the first pose is dropped by set_plan
    xs = np.linspace(0.4, 6.5, 62)
    return [make_pose([x, PLAN_Y, 0.0]) for x in xs]


class ControllerTestCase(unittest.TestCase):

    config = ControllerConfig()
    costs = None

    def setUp(self):
        self.mesh = corridor(self.costs)
        self.raw_plan = straight_plan()
        self.controller = MeshController(self.config)
        self.controller.initialize(self.mesh)
        self.controller.set_plan(self.raw_plan)


class TestLifecycle(unittest.TestCase):

    def test_implements_protocol(self):
        self.assertIsInstance(MeshController(), Controller)

    def test_not_initialized(self):
        controller = MeshController()
        result = controller.compute_velocity(make_pose([0.5, PLAN_Y, 0.0]), Twist())
        self.assertIs(result.outcome, ControllerOutcome.NOT_INITIALIZED)

    def test_empty_path(self):
        controller = MeshController()
        controller.initialize(corridor())
        result = controller.compute_velocity(make_pose([0.5, PLAN_Y, 0.0]), Twist())
        self.assertIs(result.outcome, ControllerOutcome.EMPTY_PATH)
        self.assertEqual(result.cmd, Twist())

    def test_rejects_single_pose(self):
        controller = MeshController()
        controller.initialize(corridor())
        self.assertFalse(controller.set_plan([make_pose([0.5, PLAN_Y, 0.0])]))
        self.assertEqual(controller.plan, [])

    def test_cancel_is_a_no_op(self):
        self.assertFalse(MeshController().cancel())


class TestSetPlan(ControllerTestCase):

    def test_first_pose_dropped(self):
        self.assertEqual(len(self.controller.plan), len(self.raw_plan) - 1)
        self.assertIs(self.controller.plan[0], self.raw_plan[1])
        self.assertIs(self.controller.goal, self.raw_plan[-1])
        self.assertIs(self.controller.status, TrackingState.TRACKING)

    def test_new_plan_resets_progress(self):
        self.controller.state.plan_index = 30
        self.controller.set_plan(self.raw_plan)
        self.assertEqual(self.controller.state.plan_index, 0)


class TestFading(ControllerTestCase):

    def test_start_of_plan(self):
        self.assertAlmostEqual(self.controller.fading_factor(), self.config.max_linear_velocity / 10)

    def test_ramp_up(self):
        self.controller.state.plan_index = 2
        self.assertAlmostEqual(self.controller.fading_factor(), 0.2 / self.config.fading_distance)

    def test_interior(self):
        self.controller.state.plan_index = 30
        self.assertEqual(self.controller.fading_factor(), 1.0)

    def test_ramp_down(self):
        last = len(self.controller.plan) - 1
        self.controller.state.plan_index = last - 3
        self.assertAlmostEqual(self.controller.fading_factor(), 0.3 / self.config.fading_distance)
        self.controller.state.plan_index = last
        self.assertAlmostEqual(self.controller.fading_factor(), 0.0)


class TestPlanPosition(ControllerTestCase):

    def test_first_cycle_keeps_index(self):
        self.controller.update_plan_position(np.array([2.0, PLAN_Y, 0.0]), 0.5, None)
        self.assertEqual(self.controller.state.plan_index, 0)

    def test_search_anchored_on_robot(self):
        self.controller.update_plan_position(np.array([2.0, PLAN_Y, 0.0]), 0.5, 0.1)
        self.assertEqual(self.controller.state.plan_index, 15)

    def test_forward_search(self):
        self.controller.update_plan_position(np.array([1.0, PLAN_Y, 0.0]), 0.5, 2.0)
        self.assertEqual(self.controller.state.plan_index, 5)

    def test_backward_search(self):
        self.controller.state.plan_index = 20
        self.controller.update_plan_position(np.array([1.0, PLAN_Y, 0.0]), 0.5, 0.1)
        self.assertEqual(self.controller.state.plan_index, 5)

    def test_robot_between_waypoints(self):
        self.controller.state.plan_index = 10
        self.controller.update_plan_position(np.array([1.62, PLAN_Y + 0.1, 0.0]), 0.5, 0.1)
        self.assertEqual(self.controller.state.plan_index, 11)


class TestFastRobot(unittest.TestCase):
    """Robot moving further per cycle than the waypoint spacing."""

    def setUp(self):
        # 0.03 m spacing, 0.05 m of travel per cycle at 0.5 m/s and 10 Hz
        self.raw_plan = [make_pose([x, PLAN_Y, 0.0]) for x in np.arange(0.47, 6.0, 0.03)]
        self.controller = MeshController()
        self.controller.initialize(corridor())
        self.controller.set_plan(self.raw_plan)

    def test_reference_keeps_up(self):
        for k in range(1, 41):
            x = 0.5 + 0.05 * k
            self.controller.update_plan_position(np.array([x, PLAN_Y, 0.0]), 0.5, 0.1)
            lag = abs(self.controller.reference.position[0] - x)
            self.assertLessEqual(lag, 0.0151)

    def test_stays_on_plan_at_full_speed(self):
        self.controller.compute_velocity(make_pose([0.5, PLAN_Y, 0.0]), Twist())
        for k in range(1, 41):
            pose = make_pose([0.5 + 0.05 * k, PLAN_Y, 0.0])
            result = self.controller.compute_velocity(pose, Twist(linear=0.5), elapsed=0.1)
            self.assertIs(result.outcome, ControllerOutcome.SUCCESS)
        self.assertGreater(self.controller.reference.position[0], 2.45)


class TestOffPlan(ControllerTestCase):

    config = ControllerConfig(off_plan_threshold=0.25)

    def test_threshold_is_on_plan(self):
        x = self.controller.plan[0].position[0]
        result = self.controller.compute_velocity(make_pose([x, PLAN_Y + 0.25, 0.0]), Twist())
        self.assertIs(result.outcome, ControllerOutcome.SUCCESS)

    def test_beyond_threshold(self):
        x = self.controller.plan[0].position[0]
        result = self.controller.compute_velocity(make_pose([x, PLAN_Y + 0.26, 0.0]), Twist())
        self.assertIs(result.outcome, ControllerOutcome.OFF_PLAN)
        self.assertIs(self.controller.status, TrackingState.FAILED)

    def test_off_mesh(self):
        result = self.controller.compute_velocity(make_pose([20.0, 20.0, 0.0]), Twist())
        self.assertIs(result.outcome, ControllerOutcome.FAILURE)


class TestLookAhead(ControllerTestCase):

    # cost grows 0.05 per metre along x
    costs = np.tile(0.05 * np.arange(8, dtype=np.float64), (3, 1))

    def test_average_of_sampled_steps(self):
        pose = make_pose([0.5, PLAN_Y, 0.0])
        ahead = self.controller.look_ahead(pose, 0.25, 0.1)
        self.assertIsNotNone(ahead)
        self.assertGreaterEqual(ahead.sampled_steps, 20)
        xs = [p.position[0] for p in self.controller.plan[:ahead.sampled_steps]]
        self.assertAlmostEqual(ahead.cost, 0.05 * float(np.mean(xs)), places=9)
        self.assertAlmostEqual(ahead.heading, 0.0)
        self.assertIsNone(ahead.lethal_step)

    def test_signed_heading(self):
        pose = make_pose([0.5, PLAN_Y, 0.0], yaw=0.1)
        ahead = self.controller.look_ahead(pose, 0.25, 0.1)
        self.assertAlmostEqual(ahead.heading, -0.1)

    def test_more_steps_at_higher_speed(self):
        pose = make_pose([0.5, PLAN_Y, 0.0])
        slow = self.controller.look_ahead(pose, 0.1, 0.1)
        fast = self.controller.look_ahead(pose, 0.4, 0.1)
        self.assertLess(slow.sampled_steps, fast.sampled_steps)

    def test_standstill(self):
        pose = make_pose([0.5, PLAN_Y, 0.0])
        self.assertIsNone(self.controller.look_ahead(pose, 0.0, 0.1))
        self.assertIsNone(self.controller.look_ahead(pose, 0.5, None))

    def test_missed_steps_left_out(self):
        # every other waypoint lies beside the mesh
        xs = np.linspace(0.4, 2.4, 21)
        self.controller.set_plan([make_pose([x, PLAN_Y if i % 2 else 2.5, 0.0]) for i, x in enumerate(xs)])
        ahead = self.controller.look_ahead(make_pose([0.5, PLAN_Y, 0.0]), 0.5, 0.1)
        on_mesh = [p.position[0] for p in self.controller.plan if p.position[1] == PLAN_Y]
        self.assertEqual(len(on_mesh), 10)
        self.assertEqual(ahead.sampled_steps, 10)
        self.assertAlmostEqual(ahead.cost, 0.05 * float(np.mean(on_mesh)), places=9)
        self.assertAlmostEqual(ahead.heading, 0.0)

    def test_all_steps_missed(self):
        self.controller.set_plan([make_pose([x, 2.5, 0.0]) for x in np.linspace(0.4, 2.4, 21)])
        self.assertIsNone(self.controller.look_ahead(make_pose([0.5, PLAN_Y, 0.0]), 0.5, 0.1))


class TestLethalLookAhead(ControllerTestCase):

    costs = np.zeros((3, 8))
    costs[:, 3:] = 5.0

    def test_lethal_step_reported_and_clamped(self):
        pose = make_pose([0.5, PLAN_Y, 0.0])
        ahead = self.controller.look_ahead(pose, 0.5, 0.1)
        self.assertIn(ahead.lethal_step, (17, 18))
        self.assertLessEqual(ahead.cost, self.config.cost_limit)


class TestComputeVelocity(ControllerTestCase):

    def test_aligned_start(self):
        pose = make_pose(self.controller.plan[0].position)
        result = self.controller.compute_velocity(pose, Twist())
        self.assertIs(result.outcome, ControllerOutcome.SUCCESS)
        self.assertAlmostEqual(result.cmd.angular, 0.0)
        # full speed scaled by the start fading factor
        self.assertAlmostEqual(result.cmd.linear, 0.5 * 0.05)
        self.assertIsNone(result.lookahead_heading)

    def test_turns_towards_plan(self):
        pose = make_pose(self.controller.plan[0].position, yaw=0.5)
        result = self.controller.compute_velocity(pose, Twist())
        self.assertAlmostEqual(result.heading_error, 0.5)
        self.assertLess(result.cmd.angular, 0.0)

    def test_following_cycles_advance(self):
        self.controller.compute_velocity(make_pose([0.5, PLAN_Y, 0.0]), Twist())
        result = self.controller.compute_velocity(
            make_pose([0.62, PLAN_Y, 0.0]), Twist(linear=0.5), elapsed=0.1
        )
        self.assertIs(result.outcome, ControllerOutcome.SUCCESS)
        self.assertEqual(self.controller.state.plan_index, 1)
        self.assertIsNotNone(result.lookahead_heading)
        self.assertGreaterEqual(result.cmd.linear, 0.0)
        self.assertLessEqual(result.cmd.linear, self.config.max_linear_velocity)

    def test_mesh_gradient_reference(self):
        field = np.tile([0.0, 1.0, 0.0], (self.mesh.num_vertices, 1))
        self.controller.reconfigure(ControllerConfig(use_mesh_gradient=True))
        self.controller.set_plan(self.raw_plan, field)
        result = self.controller.compute_velocity(make_pose([0.5, PLAN_Y, 0.0]), Twist())
        self.assertAlmostEqual(result.heading_error, np.pi / 2)
        self.assertGreater(result.cmd.angular, 0.0)

    def test_reconfigure_switches_law(self):
        self.controller.reconfigure(ControllerConfig(steering_law="pid"))
        result = self.controller.compute_velocity(make_pose([0.5, PLAN_Y, 0.0]), Twist())
        self.assertIs(result.outcome, ControllerOutcome.SUCCESS)
        self.assertIsInstance(self.controller._law, PidSteering)

    def test_lookahead_beside_mesh_not_blended(self):
        # the plan runs 0.3 m beside the mesh edge, within the off-plan threshold
        self.controller.set_plan([make_pose([x, 2.2, 0.0]) for x in np.linspace(0.4, 6.5, 62)])
        self.controller.state.plan_index = 5
        result = self.controller.compute_velocity(
            make_pose([1.0, 1.9, 0.0]), Twist(linear=0.5), elapsed=0.1
        )
        self.assertIs(result.outcome, ControllerOutcome.SUCCESS)
        self.assertEqual(self.controller.state.plan_index, 5)
        self.assertIsNone(result.lookahead_heading)
        self.assertIsNone(result.lookahead_cost)

    def test_commanded_speed_sets_search_reach(self):
        self.controller.state.last_linear_velocity = 0.4
        with mock.patch.object(self.controller, "update_plan_position",
                               wraps=self.controller.update_plan_position) as search:
            result = self.controller.compute_velocity(
                make_pose([0.5, PLAN_Y, 0.0]), Twist(), elapsed=0.1
            )
        self.assertEqual(search.call_args[0][1], 0.4)
        self.assertEqual(self.controller.state.last_linear_velocity, result.cmd.linear)


class TestGoalReached(ControllerTestCase):

    def test_not_at_start(self):
        self.assertFalse(self.controller.is_goal_reached(0.05))

    def test_at_last_waypoint(self):
        self.controller.state.plan_index = len(self.controller.plan) - 1
        self.assertTrue(self.controller.is_goal_reached(0.05))
        self.assertIs(self.controller.status, TrackingState.GOAL_REACHED)

    def test_angle_tolerance(self):
        self.controller.state.plan_index = len(self.controller.plan) - 1
        self.controller.state.heading_error = 0.5
        self.assertFalse(self.controller.is_goal_reached(0.05, angle_tolerance=0.1))
        self.assertTrue(self.controller.is_goal_reached(0.05, angle_tolerance=1.0))


if __name__ == "__main__":
    unittest.main()
