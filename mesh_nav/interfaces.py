# mesh_nav/interfaces.py
"""Capability protocols a navigation host binds against."""

from __future__ import annotations

from typing import Optional, Protocol, Sequence, runtime_checkable

from .dtypes import ControlResult, PlanResult, Pose, Twist, VectorField
from .mesh import TriangleMesh


@runtime_checkable
class Planner(Protocol):
    """Global planning protocol."""

    def initialize(self, mesh: TriangleMesh) -> bool:
        ...

    def make_plan(self, start: Pose, goal: Pose, tolerance: float = 0.0) -> PlanResult:
        """Return the outcome and, on success, poses from start to goal."""
        ...

    def cancel(self) -> bool:
        """Request that a running ``make_plan`` stops at its next check."""
        ...


@runtime_checkable
class Controller(Protocol):
    """Local trajectory-tracking protocol."""

    def initialize(self, mesh: TriangleMesh) -> bool:
        ...

    def set_plan(self, plan: Sequence[Pose], vector_field: Optional[VectorField] = None) -> bool:
        ...

    def compute_velocity(
        self,
        pose: Pose,
        velocity: Twist,
        elapsed: Optional[float] = None,
    ) -> ControlResult:
        """Return the velocity command for the current cycle."""
        ...

    def cancel(self) -> bool:
        ...
