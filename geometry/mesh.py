"""Triangle mesh with a shared vertex buffer.

A mesh owns one vertex array and one face index array. It is NOT handed to
the BVH as a single object: ``primitives()`` expands it into one
lightweight ``MeshTriangle`` view per face, each referencing the shared
buffers by index, so every face becomes its own BVH leaf candidate without
copying vertex data.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Notes
-----
Mesh file parsing (OBJ, PLY, ...) lives outside this package. Loaders hand
over already-parsed arrays:

    vertices       (num_vertices, 3) float
    faces          (num_faces, 3)    int, zero-based indices into vertices
    vertex_normals (num_vertices, 3) float, optional

Face winding is counter-clockwise when seen from outside; the outward
face normal is (v1 - v0) × (v2 - v0).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from geometry.aabb import AABB
from geometry.kernels import moller_trumbore
from geometry.primitives import (
    _DEFAULT_EPSILON,
    Intersection,
    _face_forward,
    interpolate_normal,
)
from geometry.ray import Ray
from geometry.vectors import dot

if TYPE_CHECKING:
    from render_engine.material import Material

logger = logging.getLogger(__name__)


@dataclass
class TriangleMesh:
    """Indexed triangle mesh.

    Attributes
    ----------
    vertices : np.ndarray
        Vertex positions. Shape: (num_vertices, 3), dtype: float64.
    faces : np.ndarray
        Triangle vertex indices. Shape: (num_faces, 3), dtype: int64.
    material : Material
        Material shared by every face.
    vertex_normals : np.ndarray or None
        Optional per-vertex normals for smooth shading. Shape: (num_vertices, 3).
    face_normals : np.ndarray
        Unit outward normal of each face (zero for degenerate faces).
        Shape: (num_faces, 3).
    face_areas : np.ndarray
        Area of each face. Shape: (num_faces,).
    face_centroids : np.ndarray
        Centroid of each face. Shape: (num_faces, 3).
    metadata : dict
        Mesh statistics.
    """

    vertices: np.ndarray
    faces: np.ndarray
    material: Material
    vertex_normals: np.ndarray | None = None
    face_normals: np.ndarray = field(init=False, repr=False)
    face_areas: np.ndarray = field(init=False, repr=False)
    face_centroids: np.ndarray = field(init=False, repr=False)
    metadata: dict = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        self.vertices = np.ascontiguousarray(self.vertices, dtype=np.float64)
        self.faces = np.ascontiguousarray(self.faces, dtype=np.int64)
        if self.vertex_normals is not None:
            self.vertex_normals = np.ascontiguousarray(self.vertex_normals, dtype=np.float64)

        _validate_mesh_arrays(self.vertices, self.faces, self.vertex_normals)

        self.face_normals, self.face_areas, self.face_centroids = _compute_face_properties(
            self.vertices, self.faces
        )

        # Check for degenerate triangles (zero area)
        degenerate_count = int(np.sum(self.face_areas < 1e-20))
        if degenerate_count > 0:
            logger.warning(
                "  %d degenerate triangles detected (area < 1e-20); they are never hit",
                degenerate_count,
            )

        self.metadata = {
            "num_vertices": self.vertices.shape[0],
            "num_faces": self.faces.shape[0],
            "degenerate_faces": degenerate_count,
            "total_surface_area": float(self.face_areas.sum()),
            "smooth_normals": self.vertex_normals is not None,
        }

        logger.debug(
            "Mesh created: %d vertices, %d faces, %.3f surface area",
            self.metadata["num_vertices"],
            self.metadata["num_faces"],
            self.metadata["total_surface_area"],
        )

    @property
    def num_faces(self) -> int:
        return int(self.faces.shape[0])

    def triangles(self) -> list[MeshTriangle]:
        """One view per face, referencing this mesh's buffers."""
        return [MeshTriangle(self, i) for i in range(self.num_faces)]

    def primitives(self) -> list[MeshTriangle]:
        """Objects to register with the BVH in place of the mesh itself."""
        return self.triangles()

    def bounding_box(self) -> AABB | None:
        if self.num_faces == 0:
            return None
        used = self.vertices[np.unique(self.faces)]
        return AABB.from_points(used)

    def intersect(
        self, ray: Ray, t_min: float = _DEFAULT_EPSILON, t_max: float = np.inf
    ) -> Intersection | None:
        """Brute-force nearest hit over all faces.

        The renderer never calls this; it registers the faces with the BVH.
        Useful for standalone queries and as a reference in tests.
        """
        nearest: Intersection | None = None
        best = t_max
        for tri in self.triangles():
            hit = tri.intersect(ray, t_min, best)
            if hit is not None:
                nearest = hit
                best = hit.t
        return nearest

    def transformed(self, matrix: np.ndarray) -> TriangleMesh:
        """Copy of this mesh with an affine 4x4 transform applied."""
        from geometry.transforms import transform_normals, transform_points

        normals = None
        if self.vertex_normals is not None:
            normals = transform_normals(matrix, self.vertex_normals)
        return TriangleMesh(
            vertices=transform_points(matrix, self.vertices),
            faces=self.faces.copy(),
            material=self.material,
            vertex_normals=normals,
        )


class MeshTriangle:
    """A single face of a ``TriangleMesh``, exposed as a BVH leaf object."""

    __slots__ = ("mesh", "index")

    def __init__(self, mesh: TriangleMesh, index: int) -> None:
        self.mesh = mesh
        self.index = index

    @property
    def material(self) -> Material:
        return self.mesh.material

    @property
    def centroid(self) -> np.ndarray:
        return self.mesh.face_centroids[self.index]

    def intersect(
        self, ray: Ray, t_min: float = _DEFAULT_EPSILON, t_max: float = np.inf
    ) -> Intersection | None:
        mesh = self.mesh
        i, j, k = mesh.faces[self.index]
        t, u, v = moller_trumbore(
            ray.origin, ray.direction,
            mesh.vertices[i], mesh.vertices[j], mesh.vertices[k],
            float(t_min), float(t_max),
        )
        if t < 0.0:
            return None
        bary = (1.0 - u - v, u, v)
        face_normal = mesh.face_normals[self.index]
        normal, front_face = _face_forward(face_normal, ray.direction)
        if mesh.vertex_normals is not None:
            corners = mesh.vertex_normals[[i, j, k]]
            smooth = interpolate_normal(corners, bary, face_normal)
            normal = smooth if dot(smooth, ray.direction) < 0.0 else -smooth
        return Intersection(t, ray.at(t), normal, mesh.material, front_face, bary)

    def bounding_box(self) -> AABB:
        corners = self.mesh.vertices[self.mesh.faces[self.index]]
        return AABB(corners.min(axis=0), corners.max(axis=0))

    def __repr__(self) -> str:
        return f"MeshTriangle(index={self.index})"


def _validate_mesh_arrays(
    vertices: np.ndarray,
    faces: np.ndarray,
    vertex_normals: np.ndarray | None,
) -> None:
    """Reject malformed mesh arrays before any geometry is derived.

    Raises
    ------
    ValueError
        On wrong shapes, non-finite coordinates or out-of-range indices.
    """
    if vertices.ndim != 2 or vertices.shape[1] != 3:
        raise ValueError(f"Vertices must have shape (N, 3), got {vertices.shape}")
    if faces.ndim != 2 or faces.shape[1] != 3:
        raise ValueError(f"Faces must have shape (M, 3), got {faces.shape}")
    if not np.all(np.isfinite(vertices)):
        raise ValueError("Vertices contain non-finite coordinates")
    if faces.size > 0 and (faces.min() < 0 or faces.max() >= vertices.shape[0]):
        raise ValueError(
            f"Face indices must lie in [0, {vertices.shape[0] - 1}], "
            f"got range [{faces.min()}, {faces.max()}]"
        )
    if vertex_normals is not None and vertex_normals.shape != vertices.shape:
        raise ValueError(
            f"Vertex normals must match vertices {vertices.shape}, got {vertex_normals.shape}"
        )


def _compute_face_properties(
    vertices: np.ndarray,
    faces: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Compute face normals, areas, and centroids for all triangles.

    Parameters
    ----------
    vertices : np.ndarray
        Vertex positions, shape (num_vertices, 3).
    faces : np.ndarray
        Triangle vertex indices, shape (num_faces, 3).

    Returns
    -------
    normals : np.ndarray
        Unit outward normals, shape (num_faces, 3). Zero for degenerate faces.
    areas : np.ndarray
        Triangle areas, shape (num_faces,).
    centroids : np.ndarray
        Triangle centroids, shape (num_faces, 3).
    """
    v0 = vertices[faces[:, 0]]  # (N, 3)
    v1 = vertices[faces[:, 1]]  # (N, 3)
    v2 = vertices[faces[:, 2]]  # (N, 3)

    # Cross product gives normal direction with magnitude = 2 * area
    cross = np.cross(v1 - v0, v2 - v0)  # (N, 3)
    norms = np.linalg.norm(cross, axis=1, keepdims=True)  # (N, 1)

    # Avoid division by zero for degenerate triangles
    safe_norms = np.where(norms > 1e-30, norms, 1.0)
    normals = np.where(norms > 1e-30, cross / safe_norms, 0.0)

    areas = 0.5 * norms.ravel()
    centroids = (v0 + v1 + v2) / 3.0

    return normals, areas, centroids
