# mesh_nav/__init__.py

from mesh_nav.dtypes import (
    Vector3,
    Quaternion,
    ScalarField,
    VectorField,
    HandleField,
    PlannerOutcome,
    ControllerOutcome,
    TrackingState,
    Pose,
    Twist,
    PlanResult,
    LookAheadResult,
    ControlResult,
)
from mesh_nav.config import ControllerConfig, PlannerConfig, load_config
from mesh_nav.mesh import TriangleMesh
from mesh_nav.locator import FaceLocator
from mesh_nav.propagation import PropagationContext, WavefrontPropagation
from mesh_nav.tracer import VectorFieldTracer, compute_vector_field
from mesh_nav.planner import MeshPlanner
from mesh_nav.steering import NonlinearSteering, PidSteering, make_steering_law
from mesh_nav.controller import MeshController
from mesh_nav.interfaces import Controller, Planner


__version__ = "1.0.0"

__all__ = [
    # Type aliases
    "Vector3",
    "Quaternion",
    "ScalarField",
    "VectorField",
    "HandleField",
    # Outcomes and states
    "PlannerOutcome",
    "ControllerOutcome",
    "TrackingState",
    # Data containers
    "Pose",
    "Twist",
    "PlanResult",
    "LookAheadResult",
    "ControlResult",
    # Configuration
    "PlannerConfig",
    "ControllerConfig",
    "load_config",
    # Mesh
    "TriangleMesh",
    "FaceLocator",
    # Planning
    "PropagationContext",
    "WavefrontPropagation",
    "VectorFieldTracer",
    "compute_vector_field",
    "MeshPlanner",
    # Control
    "NonlinearSteering",
    "PidSteering",
    "make_steering_law",
    "MeshController",
    # Protocols
    "Planner",
    "Controller",
]
