"""Scene primitives: sphere, triangle and plane.

Every primitive satisfies the two-method ``Surface`` capability used by the
BVH and the tracer:

- ``intersect(ray, t_min, t_max) -> Intersection | None``
- ``bounding_box() -> AABB | None`` (None means unbounded)

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Notes
-----
The normal stored in an ``Intersection`` always opposes the incoming ray
(``normal · ray.direction ≤ 0``), so shadow, reflection and refraction
rays can be offset along it without knowing which side was struck.
Whether the ray hit the geometric outside is kept separately in
``front_face``; the refraction stage needs it to tell entering rays from
exiting ones.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import numpy as np

from geometry.aabb import AABB
from geometry.kernels import (
    moller_trumbore,
    ray_plane_intersect,
    ray_sphere_intersect,
    sphere_quadratic_roots,
)
from geometry.ray import Ray
from geometry.vectors import as_vec3, cross, dot, length, normalize

if TYPE_CHECKING:
    from render_engine.material import Material

# Default self-intersection guard for callers that do not pass one.
_DEFAULT_EPSILON: float = 1e-6


# ---------------------------------------------------------------------------
# Hit Record
# ---------------------------------------------------------------------------


@dataclass
class Intersection:
    """Information about a ray-surface hit.

    Attributes
    ----------
    t : float
        Parametric hit distance along the ray.
    point : np.ndarray
        Hit point. Shape: (3,).
    normal : np.ndarray
        Unit shading normal, oriented against the incoming ray. Shape: (3,).
    material : Material
        Optical properties of the surface that was hit.
    front_face : bool
        True if the ray struck the outward-facing side of the surface.
    barycentric : tuple[float, float, float] or None
        Weights (w, u, v) of the three triangle vertices, for triangles only.
    """

    t: float
    point: np.ndarray
    normal: np.ndarray
    material: Material
    front_face: bool = True
    barycentric: tuple[float, float, float] | None = None


@runtime_checkable
class Surface(Protocol):
    """Capability pair every renderable object provides."""

    def intersect(
        self, ray: Ray, t_min: float = _DEFAULT_EPSILON, t_max: float = np.inf
    ) -> Intersection | None: ...

    def bounding_box(self) -> AABB | None: ...


def _face_forward(outward: np.ndarray, ray_dir: np.ndarray) -> tuple[np.ndarray, bool]:
    """Orient ``outward`` against the ray and report which side was hit."""
    front_face = dot(outward, ray_dir) < 0.0
    return (outward if front_face else -outward), front_face


# ---------------------------------------------------------------------------
# Sphere
# ---------------------------------------------------------------------------


class Sphere:
    """Sphere given by center and radius.

    A zero radius is accepted and never intersects; a negative radius
    raises ``ValueError``.
    """

    def __init__(self, center, radius: float, material: Material) -> None:
        self.center = as_vec3(center)
        self.radius = float(radius)
        if self.radius < 0.0:
            raise ValueError(f"Sphere radius must be non-negative, got {radius}")
        self.material = material

    @property
    def centroid(self) -> np.ndarray:
        return self.center

    def roots(self, ray: Ray) -> tuple[float, ...]:
        """Real roots of the ray-sphere quadratic in ascending order."""
        count, t0, t1 = sphere_quadratic_roots(
            ray.origin, ray.direction, self.center, self.radius
        )
        if count == 0:
            return ()
        if count == 1:
            return (t0,)
        return (t0, t1)

    def intersect(
        self, ray: Ray, t_min: float = _DEFAULT_EPSILON, t_max: float = np.inf
    ) -> Intersection | None:
        t = ray_sphere_intersect(
            ray.origin, ray.direction, self.center, self.radius,
            float(t_min), float(t_max),
        )
        if t < 0.0:
            return None
        point = ray.at(t)
        outward = (point - self.center) / self.radius
        normal, front_face = _face_forward(outward, ray.direction)
        return Intersection(t, point, normal, self.material, front_face)

    def bounding_box(self) -> AABB:
        r = np.full(3, self.radius)
        return AABB(self.center - r, self.center + r)

    def __repr__(self) -> str:
        return f"Sphere(center={self.center.tolist()}, radius={self.radius})"


# ---------------------------------------------------------------------------
# Triangle
# ---------------------------------------------------------------------------


def interpolate_normal(
    normals: np.ndarray,
    barycentric: tuple[float, float, float],
    fallback: np.ndarray,
) -> np.ndarray:
    """Blend per-vertex normals with barycentric weights and renormalize.

    Falls back to ``fallback`` when the blend cancels out.
    """
    w, u, v = barycentric
    blended = normalize(w * normals[0] + u * normals[1] + v * normals[2])
    if length(blended) == 0.0:
        return fallback
    return blended


class Triangle:
    """Standalone triangle with optional per-vertex normals.

    Parameters
    ----------
    v0, v1, v2 : array_like
        Vertex positions. Counter-clockwise winding (seen from outside)
        defines the outward face normal.
    material : Material
        Surface material.
    normals : array_like, optional
        Per-vertex normals, shape (3, 3). Interpolated for smooth shading.
    """

    def __init__(self, v0, v1, v2, material: Material, normals=None) -> None:
        self.vertices = np.stack([as_vec3(v0), as_vec3(v1), as_vec3(v2)])
        self.material = material
        if normals is not None:
            normals = np.asarray(normals, dtype=np.float64)
            if normals.shape != (3, 3):
                raise ValueError(f"Vertex normals must have shape (3, 3), got {normals.shape}")
        self.normals = normals
        self.face_normal = normalize(
            cross(self.vertices[1] - self.vertices[0], self.vertices[2] - self.vertices[0])
        )

    @property
    def centroid(self) -> np.ndarray:
        return self.vertices.mean(axis=0)

    def intersect(
        self, ray: Ray, t_min: float = _DEFAULT_EPSILON, t_max: float = np.inf
    ) -> Intersection | None:
        t, u, v = moller_trumbore(
            ray.origin, ray.direction,
            self.vertices[0], self.vertices[1], self.vertices[2],
            float(t_min), float(t_max),
        )
        if t < 0.0:
            return None
        bary = (1.0 - u - v, u, v)
        face_normal, front_face = _face_forward(self.face_normal, ray.direction)
        normal = face_normal
        if self.normals is not None:
            smooth = interpolate_normal(self.normals, bary, self.face_normal)
            normal = smooth if dot(smooth, ray.direction) < 0.0 else -smooth
        return Intersection(t, ray.at(t), normal, self.material, front_face, bary)

    def bounding_box(self) -> AABB:
        return AABB(self.vertices.min(axis=0), self.vertices.max(axis=0))

    def __repr__(self) -> str:
        return f"Triangle(vertices={self.vertices.tolist()})"


# ---------------------------------------------------------------------------
# Plane
# ---------------------------------------------------------------------------


class Plane:
    """Infinite plane through ``point`` with unit ``normal``.

    Planes are unbounded: ``bounding_box()`` returns None and the BVH keeps
    them in a separate list that is tested for every ray.
    """

    def __init__(self, point, normal, material: Material) -> None:
        self.point = as_vec3(point)
        n = as_vec3(normal)
        if length(n) == 0.0:
            raise ValueError("Plane normal must be non-zero")
        self.normal = normalize(n)
        self.material = material

    def intersect(
        self, ray: Ray, t_min: float = _DEFAULT_EPSILON, t_max: float = np.inf
    ) -> Intersection | None:
        t = ray_plane_intersect(
            ray.origin, ray.direction, self.point, self.normal,
            float(t_min), float(t_max),
        )
        if t < 0.0:
            return None
        normal, front_face = _face_forward(self.normal, ray.direction)
        return Intersection(t, ray.at(t), normal, self.material, front_face)

    def bounding_box(self) -> None:
        return None

    def __repr__(self) -> str:
        return f"Plane(point={self.point.tolist()}, normal={self.normal.tolist()})"
