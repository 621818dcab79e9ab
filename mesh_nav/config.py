# mesh_nav/config.py
from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Type, TypeVar

from omegaconf import OmegaConf


STEERING_LAWS = ("nonlinear", "pid")

ConfigT = TypeVar("ConfigT", "PlannerConfig", "ControllerConfig")


@dataclass(frozen=True)
class PlannerConfig:
    """Planner parameters. Replaced as a whole, never mutated."""
    cost_limit: float = 1.0             # vertices above this cost are not expanded
    locate_tolerance: float = 0.2       # max height of start/goal above their face (m)
    step_width: float = 0.03            # arc length of one tracing step (m)
    max_trace_steps: int = 100000
    max_neighbour_faces: int = 40

    def validate(self) -> None:
        if self.cost_limit <= 0:
            raise ValueError(f"cost_limit must be positive, got {self.cost_limit}")
        if self.locate_tolerance < 0:
            raise ValueError(f"locate_tolerance must be >= 0, got {self.locate_tolerance}")
        if self.step_width <= 0:
            raise ValueError(f"step_width must be positive, got {self.step_width}")
        if self.max_trace_steps < 1:
            raise ValueError(f"max_trace_steps must be >= 1, got {self.max_trace_steps}")
        if self.max_neighbour_faces < 1:
            raise ValueError(
                f"max_neighbour_faces must be >= 1, got {self.max_neighbour_faces}"
            )


@dataclass(frozen=True)
class ControllerConfig:
    """Controller parameters. Replaced as a whole between control cycles."""
    # Limits
    cost_limit: float = 1.0
    max_linear_velocity: float = 0.5    # m/s
    max_angular_velocity: float = 1.0   # rad/s
    off_plan_threshold: float = 0.5     # m, inclusive
    fading_distance: float = 0.5        # m

    # Steering
    steering_law: str = "nonlinear"
    use_mesh_gradient: bool = False
    lookahead_blend_weight: float = 0.5
    max_lookahead_steps: int = 50
    turn_angle_width: float = 2 * math.pi
    cost_penalty_angle: float = 0.6     # rad, below this cost slows the robot

    # PID gains
    prop_dis_gain: float = 1.0
    int_dis_gain: float = 0.0
    deriv_dis_gain: float = 0.0
    prop_dir_gain: float = 1.0
    int_dir_gain: float = 0.0
    deriv_dir_gain: float = 0.0
    integral_time_step: float = 0.1
    integral_limit: float = 1.0

    # Localization
    max_neighbour_faces: int = 40
    locate_tolerance: float = 0.2

    def validate(self) -> None:
        if self.steering_law not in STEERING_LAWS:
            raise ValueError(
                f"Unsupported steering_law={self.steering_law!r}. "
                f"Supported: {', '.join(STEERING_LAWS)}."
            )
        if not 0.0 <= self.lookahead_blend_weight <= 1.0:
            raise ValueError(
                f"lookahead_blend_weight must be in [0, 1], got {self.lookahead_blend_weight}"
            )
        for name in ("cost_limit", "turn_angle_width", "integral_time_step"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        for name in (
            "max_linear_velocity",
            "max_angular_velocity",
            "off_plan_threshold",
            "fading_distance",
            "integral_limit",
            "max_lookahead_steps",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")
        if self.max_neighbour_faces < 1:
            raise ValueError(
                f"max_neighbour_faces must be >= 1, got {self.max_neighbour_faces}"
            )


def load_config(path: str, cls: Type[ConfigT]) -> ConfigT:
    """
    Load a YAML parameter file on top of the defaults of ``cls``.

    Unknown keys and values of the wrong type are rejected by OmegaConf.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Config file not found: {path}")

    schema = OmegaConf.structured(cls)
    OmegaConf.set_readonly(schema, False)
    merged = OmegaConf.merge(schema, OmegaConf.load(path))
    config = OmegaConf.to_object(merged)
    config.validate()
    return config
