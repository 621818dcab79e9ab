# mesh_nav/steering.py
"""
Velocity shaping for the mesh controller.

Two interchangeable laws turn heading error and local traversal cost into
a velocity command:
- NonlinearSteering: ramp for the yaw rate, bell curve for the speed
- PidSteering: separate distance and heading loops
Both blend in the averaged look-ahead (heading, cost) pair with the
configured weight. Fading near the path ends is applied by the controller.
"""

from __future__ import annotations

import math
from typing import NamedTuple, Optional

from .config import ControllerConfig
from .dtypes import LookAheadResult, Twist


# Shaping curves

def lin_value(max_height: float, x_offset: float, max_width: float, value: float) -> float:
    """V-shaped ramp through ``-x_offset`` reaching ``max_height`` at ``max_width / 2``."""
    half = max_width / 2
    if value > half:
        return max_height
    if value < -half:
        return -max_height
    if half <= 0:
        return 0.0
    incline = max_height / half
    return abs(incline * (value + x_offset))


def gauss_value(max_height: float, max_width: float, value: float) -> float:
    """Bell curve peaking at ``max_height`` for zero, vanishing outside ``max_width``."""
    half = max_width / 2
    if abs(value) > half or half <= 0:
        return 0.0
    # 99.7% of the area lies within three standard deviations
    std_dev = max_width / 6
    return max_height * math.exp(-(value * value) / (2 * std_dev * std_dev))


def tan_value(max_height: float, max_width: float, value: float) -> float:
    """Tangent-shaped curve, flat near zero and steep towards the width borders."""
    half = max_width / 2
    if value >= half:
        return max_height
    if value <= -half:
        return -max_height
    # tan reaches 1 at pi/4, scale so the borders map there
    result = max_height * math.tan(value / half * math.pi / 4)
    return max(-max_height, min(max_height, result))


def par_value(max_height: float, max_width: float, value: float) -> float:
    """Parabola from zero reaching ``max_height`` at ``max_width / 2``."""
    half = max_width / 2
    if abs(value) > half or half <= 0:
        return max_height
    return max_height / (half * half) * value * value


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class SteeringInput(NamedTuple):
    """Errors of one control cycle."""
    heading_error: float            # unsigned angle to the reference heading
    turn_sign: float                # +1 turn left, -1 turn right
    distance_error: float           # distance to the reference waypoint
    cost: Optional[float] = None    # traversal cost under the robot
    lookahead: Optional[LookAheadResult] = None


class SteeringLaw:
    """Base class of the velocity shaping strategies."""

    name = "base"

    def compute(self, inputs: SteeringInput, config: ControllerConfig) -> Twist:
        raise NotImplementedError

    def reset(self) -> None:
        pass

    @staticmethod
    def blend(immediate: float, ahead: float, weight: float) -> float:
        return (1.0 - weight) * immediate + weight * ahead

    @staticmethod
    def cost_penalty(cost: Optional[float], config: ControllerConfig) -> float:
        """Speed reduction for the cost under the robot, saturating at the cost limit."""
        if cost is None:
            return 0.0
        return lin_value(config.max_linear_velocity / 10, 0.0, 2 * config.cost_limit, cost)


class NonlinearSteering(SteeringLaw):
    """
    Yaw rate ramps linearly with heading error up to the max angular speed;
    speed follows a bell curve of heading error and is reduced by the local
    cost while the robot is roughly aligned.
    """

    name = "nonlinear"

    def _angular(self, signed_error: float, config: ControllerConfig) -> float:
        magnitude = lin_value(config.max_angular_velocity, 0.0, config.turn_angle_width,
                              abs(signed_error))
        return math.copysign(magnitude, signed_error)

    def _linear(self, error: float, cost: Optional[float], config: ControllerConfig) -> float:
        linear = gauss_value(config.max_linear_velocity, config.turn_angle_width, error)
        if error < config.cost_penalty_angle:
            linear -= self.cost_penalty(cost, config)
        return _clamp(linear, 0.0, config.max_linear_velocity)

    def compute(self, inputs: SteeringInput, config: ControllerConfig) -> Twist:
        angular = self._angular(inputs.turn_sign * inputs.heading_error, config)
        linear = self._linear(inputs.heading_error, inputs.cost, config)

        ahead = inputs.lookahead
        if ahead is not None:
            ahead_angular = self._angular(ahead.heading, config)
            ahead_linear = self._linear(abs(ahead.heading), ahead.cost, config)
            weight = config.lookahead_blend_weight
            angular = self.blend(angular, ahead_angular, weight)
            linear = self.blend(linear, ahead_linear, weight)

        return Twist(linear=linear, angular=angular)


class PidSteering(SteeringLaw):
    """
    Distance loop drives the speed, heading loop drives the yaw rate.
    The speed is attenuated by the share of the max yaw rate in use.

    The look-ahead yaw rate is proportional only: ``prop_dir_gain`` times
    the averaged look-ahead heading. The integral and derivative heading
    gains act on the immediate heading error alone, so they do not change
    the look-ahead share of the blend.
    """

    name = "pid"

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.int_dis_error = 0.0
        self.int_dir_error = 0.0
        self.prev_dis_error = 0.0
        self.prev_dir_error = 0.0

    def _distance_loop(self, error: float, config: ControllerConfig) -> float:
        dt = config.integral_time_step
        self.int_dis_error = _clamp(self.int_dis_error + error * dt,
                                    -config.integral_limit, config.integral_limit)
        output = (
            config.prop_dis_gain * error
            + config.int_dis_gain * self.int_dis_error
            + config.deriv_dis_gain * (error - self.prev_dis_error) / dt
        )
        self.prev_dis_error = error
        return output

    def _heading_loop(self, error: float, config: ControllerConfig) -> float:
        dt = config.integral_time_step
        self.int_dir_error = _clamp(self.int_dir_error + error * dt,
                                    -config.integral_limit, config.integral_limit)
        output = (
            config.prop_dir_gain * error
            + config.int_dir_gain * self.int_dir_error
            + config.deriv_dir_gain * (error - self.prev_dir_error) / dt
        )
        self.prev_dir_error = error
        return output

    @staticmethod
    def _attenuate(linear: float, angular: float, config: ControllerConfig) -> float:
        if config.max_angular_velocity <= 0:
            return linear
        return linear - (abs(angular) / config.max_angular_velocity) * linear

    def compute(self, inputs: SteeringInput, config: ControllerConfig) -> Twist:
        max_ang = config.max_angular_velocity
        max_lin = config.max_linear_velocity

        base_linear = self._distance_loop(inputs.distance_error, config)
        angular = _clamp(inputs.turn_sign * self._heading_loop(inputs.heading_error, config),
                         -max_ang, max_ang)
        linear = _clamp(self._attenuate(base_linear, angular, config), 0.0, max_lin)

        ahead = inputs.lookahead
        if ahead is not None:
            ahead_angular = _clamp(config.prop_dir_gain * ahead.heading, -max_ang, max_ang)
            ahead_linear = self._attenuate(base_linear, ahead_angular, config)
            ahead_linear = _clamp(ahead_linear - self.cost_penalty(ahead.cost, config), 0.0, max_lin)
            weight = config.lookahead_blend_weight
            angular = self.blend(angular, ahead_angular, weight)
            linear = self.blend(linear, ahead_linear, weight)

        return Twist(linear=linear, angular=angular)


def make_steering_law(name: str) -> SteeringLaw:
    if name == NonlinearSteering.name:
        return NonlinearSteering()
    if name == PidSteering.name:
        return PidSteering()
    raise ValueError(f"Unsupported steering law: {name!r}")
