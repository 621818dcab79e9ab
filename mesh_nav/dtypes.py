# mesh_nav/dtypes.py
from __future__ import annotations

from enum import Enum
from typing import List, NamedTuple, Optional, TypeAlias

import numpy as np
from numpy.typing import NDArray


# Type Aliases
Vector3: TypeAlias = NDArray[np.float64]
"""Point or direction in 3D. Shape: (3,)."""

Quaternion: TypeAlias = NDArray[np.float64]
"""Orientation as scalar-last quaternion (x, y, z, w). Shape: (4,)."""

ScalarField: TypeAlias = NDArray[np.float64]
"""Per-vertex scalar values. Shape: (N,). ``inf`` marks unset entries."""

VectorField: TypeAlias = NDArray[np.float64]
"""Per-vertex steering directions. Shape: (N, 3). Zero rows are unset."""

HandleField: TypeAlias = NDArray[np.int64]
"""Per-vertex handle values (predecessor vertex, cutting face). ``-1`` is unset."""


class PlannerOutcome(Enum):
    """Outcome codes of a planning call."""
    SUCCESS = 0
    INVALID_START = 1
    INVALID_GOAL = 2
    NO_PATH_FOUND = 3
    CANCELED = 4


class ControllerOutcome(Enum):
    """Outcome codes of a control cycle."""
    SUCCESS = 0
    EMPTY_PATH = 1
    OFF_PLAN = 2
    FAILURE = 3
    NOT_INITIALIZED = 4


class TrackingState(Enum):
    UNINITIALIZED = "uninitialized"
    TRACKING = "tracking"
    GOAL_REACHED = "goal_reached"
    FAILED = "failed"


# Data Containers
class Pose(NamedTuple):
    """Position plus orientation; the heading is the local x-axis."""
    position: Vector3
    orientation: Quaternion


class Twist(NamedTuple):
    """Planar velocity command: forward speed (m/s) and yaw rate (rad/s)."""
    linear: float = 0.0
    angular: float = 0.0


class PlanResult(NamedTuple):
    """Container for planner outputs."""
    plan: List[Pose]
    outcome: PlannerOutcome
    cost: float = 0.0
    message: str = ""


class LookAheadResult(NamedTuple):
    """Averaged heading delta and traversal cost of the upcoming waypoints."""
    heading: float
    cost: float
    sampled_steps: int
    lethal_step: Optional[int] = None


class ControlResult(NamedTuple):
    """Container for controller outputs of one cycle."""
    cmd: Twist
    outcome: ControllerOutcome
    message: str = ""
    heading_error: float = 0.0
    lookahead_heading: Optional[float] = None
    lookahead_cost: Optional[float] = None
    lethal_step: Optional[int] = None
