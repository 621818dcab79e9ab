# mesh_nav/mesh.py
from __future__ import annotations

import os
import warnings
from functools import cached_property
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import potpourri3d as pp3d
from numpy.typing import NDArray
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components

from .dtypes import Vector3, VectorField
from .geometry import barycentric_coords, is_inside, normalized


# Constants

# Faces whose doubled area falls below this are flagged degenerate
_DEGENERATE_AREA_ABS_TOL: float = 1e-20


class TriangleMesh:
    """
    Read-only triangle mesh with per-vertex cost and per-edge weight layers.

    Handles are plain integer indices: vertex ``i`` is row ``i`` of
    ``vertices``, face ``j`` is row ``j`` of ``faces`` and edge ``k`` is row
    ``k`` of ``edges`` (vertex pairs sorted ascending).
    """

    def __init__(
        self,
        vertices: NDArray[np.float64],
        faces: NDArray[np.int32],
        vertex_costs: Optional[NDArray[np.float64]] = None,
        edge_weights: Optional[NDArray[np.float64]] = None,
        invalid: Optional[NDArray[np.bool_]] = None,
    ):
        vertices = np.array(vertices, dtype=np.float64)
        faces = np.array(faces, dtype=np.int64)

        if vertices.ndim != 2 or vertices.shape[1] != 3:
            raise ValueError(f"vertices must have shape (N, 3), got {vertices.shape}")
        if faces.ndim != 2 or faces.shape[1] != 3:
            raise ValueError(f"faces must have shape (M, 3), got {faces.shape}")
        if len(faces) and (faces.min() < 0 or faces.max() >= len(vertices)):
            raise ValueError("faces reference vertex indices outside the vertex array")

        self.vertices = vertices
        self.faces = faces
        self.vertices.setflags(write=False)
        self.faces.setflags(write=False)

        n = len(vertices)
        if vertex_costs is None:
            vertex_costs = np.zeros(n, dtype=np.float64)
        vertex_costs = np.asarray(vertex_costs, dtype=np.float64)
        if vertex_costs.shape != (n,):
            raise ValueError(f"vertex_costs must have shape ({n},), got {vertex_costs.shape}")
        self.vertex_costs = vertex_costs

        if invalid is None:
            invalid = np.zeros(n, dtype=bool)
        invalid = np.asarray(invalid, dtype=bool)
        if invalid.shape != (n,):
            raise ValueError(f"invalid must have shape ({n},), got {invalid.shape}")
        self.invalid = invalid

        self._build_topology()

        if edge_weights is None:
            edge_weights = self.edge_lengths
        edge_weights = np.asarray(edge_weights, dtype=np.float64)
        if edge_weights.shape != (len(self.edges),):
            raise ValueError(
                f"edge_weights must have shape ({len(self.edges)},), got {edge_weights.shape}"
            )
        self.edge_weights = edge_weights

        self.face_normals = self._compute_face_normals()

    # Construction

    def _build_topology(self) -> None:
        F = self.faces
        # Each face contributes its three edges (v0,v1), (v1,v2), (v2,v0)
        face_edges = np.stack([F[:, [0, 1]], F[:, [1, 2]], F[:, [2, 0]]], axis=1)
        sorted_pairs = np.sort(face_edges.reshape(-1, 2), axis=1)

        if len(sorted_pairs):
            edges, inverse = np.unique(sorted_pairs, axis=0, return_inverse=True)
        else:
            edges = np.zeros((0, 2), dtype=np.int64)
            inverse = np.zeros(0, dtype=np.int64)
        inverse = inverse.reshape(-1)

        self.edges = edges
        self._edge_index: Dict[Tuple[int, int], int] = {
            (int(i), int(j)): k for k, (i, j) in enumerate(edges)
        }

        self._edge_faces: List[List[int]] = [[] for _ in range(len(edges))]
        for flat, edge_id in enumerate(inverse):
            self._edge_faces[edge_id].append(flat // 3)

        self._vertex_faces: List[List[int]] = [[] for _ in range(len(self.vertices))]
        for face_id, face in enumerate(F):
            for vh in face:
                self._vertex_faces[vh].append(face_id)

        self._vertex_neighbours: List[List[int]] = [[] for _ in range(len(self.vertices))]
        for i, j in edges:
            self._vertex_neighbours[i].append(int(j))
            self._vertex_neighbours[j].append(int(i))

        self._face_neighbours: List[List[int]] = [[] for _ in range(len(F))]
        for incident in self._edge_faces:
            for fh in incident:
                self._face_neighbours[fh].extend(other for other in incident if other != fh)

    def _compute_face_normals(self) -> NDArray[np.float64]:
        V, F = self.vertices, self.faces
        if len(F) == 0:
            return np.zeros((0, 3), dtype=np.float64)
        cross = np.cross(V[F[:, 1]] - V[F[:, 0]], V[F[:, 2]] - V[F[:, 0]])
        lengths = np.linalg.norm(cross, axis=1)
        valid = lengths > _DEGENERATE_AREA_ABS_TOL
        if not np.all(valid):
            warnings.warn(
                f"[TriangleMesh] {int(np.sum(~valid))} degenerate faces have no normal"
            )
        normals = np.zeros_like(cross)
        normals[valid] = cross[valid] / lengths[valid, None]
        return normals

    @classmethod
    def from_file(cls, path: str, **layers) -> "TriangleMesh":
        """Load vertices and faces from any format potpourri3d can read."""
        if not os.path.exists(path):
            raise FileNotFoundError(f"Mesh file not found: {path}")
        V, F = pp3d.read_mesh(path)
        return cls(V, F, **layers)

    @classmethod
    def from_height_grid(
        cls,
        heights: NDArray[np.float64],
        spacing: float = 1.0,
        costs: Optional[NDArray[np.float64]] = None,
        valid: Optional[NDArray[np.bool_]] = None,
    ) -> "TriangleMesh":
        """
        Triangulate a height grid: cell (row, col) becomes a vertex at
        (col * spacing, row * spacing, height). Each 2x2 block yields two
        counter-clockwise triangles; blocks touching an invalid cell only
        keep the triangles whose corners all exist.
        """
        heights = np.asarray(heights, dtype=np.float64)
        H, W = heights.shape
        valid_mask = np.isfinite(heights)
        if valid is not None:
            valid_mask &= np.asarray(valid, dtype=bool)

        num_vertices = int(np.sum(valid_mask))
        vertex_ids = np.full((H, W), -1, dtype=np.int64)
        vertex_ids[valid_mask] = np.arange(num_vertices, dtype=np.int64)

        rows, cols = np.nonzero(valid_mask)
        vertices = np.column_stack([
            cols.astype(np.float64) * spacing,
            rows.astype(np.float64) * spacing,
            heights[valid_mask],
        ])

        # Vertex IDs for all 2x2 block corners
        tl = vertex_ids[:-1, :-1]
        tr = vertex_ids[:-1, 1:]
        bl = vertex_ids[1:, :-1]
        br = vertex_ids[1:, 1:]

        # Triangle 1: TL-TR-BL, Triangle 2: TR-BR-BL (CCW viewed from +Z)
        mask_t1 = (tl >= 0) & (tr >= 0) & (bl >= 0)
        mask_t2 = (tr >= 0) & (br >= 0) & (bl >= 0)

        faces = np.concatenate([
            np.column_stack([tl[mask_t1], tr[mask_t1], bl[mask_t1]]),
            np.column_stack([tr[mask_t2], br[mask_t2], bl[mask_t2]]),
        ]).astype(np.int64).reshape(-1, 3)

        vertex_costs = None
        if costs is not None:
            vertex_costs = np.asarray(costs, dtype=np.float64)[valid_mask]

        # Remove unreferenced vertices (isolated cells without triangles)
        referenced = np.unique(faces.flatten())
        if len(referenced) < len(vertices):
            old_to_new = np.full(len(vertices), -1, dtype=np.int64)
            old_to_new[referenced] = np.arange(len(referenced), dtype=np.int64)
            vertices = vertices[referenced]
            faces = old_to_new[faces]
            if vertex_costs is not None:
                vertex_costs = vertex_costs[referenced]

        return cls(vertices, faces, vertex_costs=vertex_costs)

    def with_layers(self, **layers) -> "TriangleMesh":
        """Copy of this mesh with some of the cost/weight/validity layers replaced."""
        kwargs = {
            "vertex_costs": self.vertex_costs,
            "edge_weights": self.edge_weights,
            "invalid": self.invalid,
        }
        kwargs.update(layers)
        return TriangleMesh(self.vertices, self.faces, **kwargs)

    # Topology queries

    @property
    def num_vertices(self) -> int:
        return len(self.vertices)

    @property
    def num_faces(self) -> int:
        return len(self.faces)

    def vertices_of_face(self, fh: int) -> Tuple[int, int, int]:
        a, b, c = self.faces[fh]
        return int(a), int(b), int(c)

    def faces_of_vertex(self, vh: int) -> Sequence[int]:
        return self._vertex_faces[vh]

    def neighbours_of_vertex(self, vh: int) -> Sequence[int]:
        return self._vertex_neighbours[vh]

    def neighbours_of_face(self, fh: int) -> Sequence[int]:
        return self._face_neighbours[fh]

    def edge_between(self, v1: int, v2: int) -> Optional[int]:
        key = (v1, v2) if v1 < v2 else (v2, v1)
        return self._edge_index.get(key)

    def faces_of_edge(self, eh: int) -> Sequence[int]:
        return self._edge_faces[eh]

    # Geometry and layers

    def vertex_position(self, vh: int) -> Vector3:
        return self.vertices[vh]

    def face_normal(self, fh: int) -> Vector3:
        return self.face_normals[fh]

    def face_positions(self, fh: int) -> NDArray[np.float64]:
        return self.vertices[self.faces[fh]]

    def edge_weight(self, eh: int) -> float:
        return float(self.edge_weights[eh])

    def vertex_cost(self, vh: int) -> float:
        return float(self.vertex_costs[vh])

    def is_invalid(self, vh: int) -> bool:
        return bool(self.invalid[vh])

    @cached_property
    def edge_lengths(self) -> NDArray[np.float64]:
        if len(self.edges) == 0:
            return np.zeros(0, dtype=np.float64)
        diff = self.vertices[self.edges[:, 0]] - self.vertices[self.edges[:, 1]]
        return np.linalg.norm(diff, axis=1)

    @cached_property
    def component_labels(self) -> NDArray[np.int32]:
        """Connected-component label per vertex over edges joining valid vertices."""
        n = self.num_vertices
        keep = ~(self.invalid[self.edges[:, 0]] | self.invalid[self.edges[:, 1]])
        rows = self.edges[keep, 0]
        cols = self.edges[keep, 1]
        graph = coo_matrix((np.ones(len(rows)), (rows, cols)), shape=(n, n))
        _, labels = connected_components(graph, directed=False)
        return labels

    # Position queries

    def containing_face(self, point: Vector3, tolerance: Optional[float] = None) -> Optional[int]:
        """Global search for the face containing ``point`` within ``tolerance`` height."""
        from .locator import global_search

        return global_search(self, point, tolerance)

    def barycentric_in_face(self, fh: int, point: Vector3) -> Optional[Tuple[float, float]]:
        a, b, c = self.face_positions(fh)
        return barycentric_coords(point, a, b, c)

    def cost_at_position(self, fh: int, point: Vector3) -> Optional[float]:
        """
        Interpolated vertex cost at ``point`` inside face ``fh``.

        None when the point does not lie in the face; ``inf`` when any
        corner carries a non-finite cost.
        """
        coords = self.barycentric_in_face(fh, point)
        if coords is None or not is_inside(*coords):
            return None
        u, v = coords
        ca, cb, cc = self.vertex_costs[self.faces[fh]]
        if not (np.isfinite(ca) and np.isfinite(cb) and np.isfinite(cc)):
            return float("inf")
        return float(u * ca + v * cb + (1.0 - u - v) * cc)

    def direction_at_position(
        self,
        vector_field: VectorField,
        fh: int,
        point: Vector3,
    ) -> Optional[Vector3]:
        """Barycentric blend of the face corners' steering vectors, normalized."""
        coords = self.barycentric_in_face(fh, point)
        if coords is None:
            return None
        u, v = coords
        va, vb, vc = vector_field[self.faces[fh]]
        return normalized(va * u + vb * v + vc * (1.0 - u - v))
