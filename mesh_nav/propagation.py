# mesh_nav/propagation.py
from __future__ import annotations

import heapq
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import numpy as np

from .config import PlannerConfig
from .dtypes import HandleField, PlannerOutcome, ScalarField, Vector3, VectorField
from .mesh import TriangleMesh


logger = logging.getLogger(__name__)


@dataclass
class PropagationContext:
    """
    All per-call state of one wavefront sweep.

    A fresh context is built for every planning call, so nothing computed
    by an earlier call can leak into a later one.
    """
    distances: ScalarField
    predecessors: HandleField
    cutting_faces: HandleField
    turn_angles: ScalarField
    fixed: np.ndarray
    vector_field: VectorField
    pop_order: List[float] = field(default_factory=list)

    @classmethod
    def fresh(cls, num_vertices: int) -> "PropagationContext":
        return cls(
            distances=np.full(num_vertices, np.inf, dtype=np.float64),
            predecessors=np.arange(num_vertices, dtype=np.int64),
            cutting_faces=np.full(num_vertices, -1, dtype=np.int64),
            turn_angles=np.zeros(num_vertices, dtype=np.float64),
            fixed=np.zeros(num_vertices, dtype=bool),
            vector_field=np.zeros((num_vertices, 3), dtype=np.float64),
        )

    def has_predecessor(self, vh: int) -> bool:
        return int(self.predecessors[vh]) != vh


class WavefrontPropagation:
    """
    Continuous Dijkstra over a triangle mesh.

    Distances grow outward from a source point. Each step fixes the closest
    open vertex and updates the free corner of every face that now has two
    fixed corners, using the planar unfolding of that face.
    """

    def __init__(self, mesh: TriangleMesh, config: PlannerConfig):
        self.mesh = mesh
        self.config = config

    def propagate(
        self,
        source_point: Vector3,
        source_face: int,
        target_face: int,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> Tuple[PlannerOutcome, PropagationContext]:
        """
        Sweep from ``source_point`` (inside ``source_face``) until all corners
        of ``target_face`` are fixed, the queue runs dry or ``should_cancel``
        returns True. ``should_cancel`` is polled once before every pop.
        """
        mesh = self.mesh
        ctx = PropagationContext.fresh(mesh.num_vertices)
        target_vertices = mesh.vertices_of_face(target_face)

        pq: List[Tuple[float, int]] = []
        for vh in mesh.vertices_of_face(source_face):
            diff = source_point - mesh.vertex_position(vh)
            dist = float(np.linalg.norm(diff))
            ctx.distances[vh] = dist
            ctx.cutting_faces[vh] = source_face
            # unscaled, so the barycentric blend inside the source face
            # points exactly at the source point
            ctx.vector_field[vh] = diff
            ctx.fixed[vh] = True
            heapq.heappush(pq, (dist, vh))

        t_start = time.perf_counter()
        target_fixed = False
        canceled = False

        while pq:
            if should_cancel is not None and should_cancel():
                canceled = True
                break

            key, current = heapq.heappop(pq)
            if key > ctx.distances[current]:
                # stale duplicate of a since-improved entry
                continue

            ctx.fixed[current] = True
            ctx.pop_order.append(key)

            if all(ctx.fixed[vh] for vh in target_vertices):
                logger.info("Wave front reached the goal!")
                target_fixed = True
                break

            self._expand(ctx, pq, current, key)

        execution_time = (time.perf_counter() - t_start) * 1e3
        logger.info(
            f"Execution time (ms): {execution_time:.2f} for "
            f"{mesh.num_vertices} num vertices in the mesh."
        )

        if canceled:
            logger.warning("Wave front propagation has been canceled!")
            return PlannerOutcome.CANCELED, ctx

        if not target_fixed or not any(ctx.has_predecessor(vh) for vh in target_vertices):
            logger.warning("Predecessor of the goal is not set! No path found!")
            return PlannerOutcome.NO_PATH_FOUND, ctx

        logger.info("Finished wave front propagation.")
        return PlannerOutcome.SUCCESS, ctx

    def _expand(
        self,
        ctx: PropagationContext,
        pq: List[Tuple[float, int]],
        current: int,
        frontier: float,
    ) -> None:
        mesh = self.mesh
        fixed = ctx.fixed

        for nh in mesh.neighbours_of_vertex(current):
            if mesh.is_invalid(nh):
                continue

            for fh in mesh.faces_of_vertex(nh):
                a, b, c = mesh.vertices_of_face(fh)
                if mesh.is_invalid(a) or mesh.is_invalid(b) or mesh.is_invalid(c):
                    continue

                # Keep the corners in face winding order: (v1, v2) fixed, v3 free
                if fixed[a] and fixed[b] and not fixed[c]:
                    v1, v2, v3 = a, b, c
                elif fixed[c] and fixed[a] and not fixed[b]:
                    v1, v2, v3 = c, a, b
                elif fixed[b] and fixed[c] and not fixed[a]:
                    v1, v2, v3 = b, c, a
                else:
                    # zero or two free corners
                    continue

                if self.triangle_update(ctx, v1, v2, v3, fh, frontier):
                    heapq.heappush(pq, (float(ctx.distances[v3]), v3))

    def triangle_update(
        self,
        ctx: PropagationContext,
        v1: int,
        v2: int,
        v3: int,
        face: int,
        frontier: float = 0.0,
    ) -> bool:
        """
        Update the distance of ``v3`` from the fixed corners ``v1`` and ``v2``.

        The face is unfolded into the plane with ``v1`` at the origin and
        ``v2`` on the positive x-axis; ``v3`` lies above the axis. The virtual
        source sits below the axis at distances (u1, u2) from (v1, v2), and
        the candidate distance of ``v3`` is its distance to that source.

        Returns True when the distance improved and ``v3`` may be expanded,
        i.e. its cost does not exceed the configured limit.
        """
        mesh = self.mesh
        distances = ctx.distances

        u1 = float(distances[v1])
        u2 = float(distances[v2])
        u3 = float(distances[v3])

        c = mesh.edge_weight(mesh.edge_between(v1, v2))
        b = mesh.edge_weight(mesh.edge_between(v1, v3))
        a = mesh.edge_weight(mesh.edge_between(v2, v3))
        if c <= 0.0 or a <= 0.0 or b <= 0.0:
            return False

        a_sq, b_sq, c_sq = a * a, b * b, c * c

        # Heron products, clamped against round-off on slivers
        A = math.sqrt(max((-u1 + u2 + c) * (u1 - u2 + c) * (u1 + u2 - c) * (u1 + u2 + c), 0.0))
        B = math.sqrt(max((-a + b + c) * (a - b + c) * (a + b - c) * (a + b + c), 0.0))

        # Virtual source (sx, sy) and free corner (p, hc) in the unfolded frame
        sx = (c_sq + u1 * u1 - u2 * u2) / (2 * c)
        sy = -A / (2 * c)
        p = (-a_sq + b_sq + c_sq) / (2 * c)
        hc = B / (2 * c)

        dx = p - sx
        dy = (A + B) / (2 * c)
        candidate = math.sqrt(dx * dx + dy * dy)

        if not math.isfinite(candidate):
            return False

        # No open vertex can be closer than the vertex that reached it
        updated = max(candidate, frontier)
        if updated >= u3:
            return False
        distances[v3] = updated

        if u1 < u2:
            predecessor = v1
            side = sy * p - sx * hc
            cos_gamma = (candidate * candidate + b_sq - sx * sx - sy * sy) / (2 * candidate * b) \
                if candidate > 0.0 else 1.0
            gamma = -math.acos(min(max(cos_gamma, -1.0), 1.0))
        else:
            predecessor = v2
            side = sx * hc - hc * c + sy * c - sy * p
            cos_gamma = (a_sq + candidate * candidate + 2 * sx * c - sx * sx - c_sq - sy * sy) \
                / (2 * a * candidate) if candidate > 0.0 else 1.0
            gamma = math.acos(min(max(cos_gamma, -1.0), 1.0))

        ctx.predecessors[v3] = predecessor

        if side > 0:
            # The face across the predecessor edge, if that edge is interior
            adjacent = [fh for fh in mesh.faces_of_edge(mesh.edge_between(predecessor, v3)) if fh != face]
            if len(adjacent) == 1:
                ctx.cutting_faces[v3] = adjacent[0]
                ctx.turn_angles[v3] = gamma
            else:
                # contour edge: the direction would leave the mesh, run along the edge
                ctx.cutting_faces[v3] = face
                ctx.turn_angles[v3] = 0.0
        elif side < 0:
            ctx.cutting_faces[v3] = face
            ctx.turn_angles[v3] = -gamma
        else:
            # direction lies on one of the face edges
            ctx.cutting_faces[v3] = face
            ctx.turn_angles[v3] = 0.0

        return mesh.vertex_cost(v3) <= self.config.cost_limit
