"""Closed-form ray intersection kernels compiled with Numba.

Every function here works on float64 NumPy arrays of shape (3,) and plain
floats, so they can be JIT-compiled with ``@njit(cache=True)`` and called
from the Python-level primitives and the BVH traversal.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Design Notes
------------
- **Miss encoding**: kernels return ``-1.0`` as the distance for "no hit"
  (``t_near > t_far`` for the slab test). No exceptions are raised from
  compiled code; degenerate input simply misses.
- **Hit window**: a hit is accepted only for ``t_min < t < t_max``.
  ``t_min`` is the self-intersection epsilon, ``t_max`` is infinity for
  ordinary rays and the light distance for shadow rays.
- **Precision**: float64 throughout; ``fastmath=False`` keeps the
  epsilon comparisons in source order.

References
----------
- Möller, T. & Trumbore, B. (1997). "Fast, Minimum Storage Ray-Triangle
  Intersection." J. Graphics Tools, 2(1), 21-28.
- Williams, A. et al. (2005). "An Efficient and Robust Ray-Box
  Intersection Algorithm." J. Graphics Tools, 10(1), 49-54.
"""

from __future__ import annotations

import numpy as np
from numba import njit

# Determinant / denominator magnitude below which a ray is considered
# parallel to a triangle or plane.
_PARALLEL_EPSILON: float = 1e-12


# ===================================================================
# RAY-SPHERE: Quadratic Solver
# ===================================================================


@njit(cache=True, fastmath=False)
def sphere_quadratic_roots(
    ray_origin: np.ndarray,
    ray_dir: np.ndarray,
    center: np.ndarray,
    radius: float,
) -> tuple[int, float, float]:
    """Solve |O + tD - C|² = r² for t.

    Parameters
    ----------
    ray_origin, ray_dir : np.ndarray
        Ray origin and direction. Shape: (3,) each.
    center : np.ndarray
        Sphere center. Shape: (3,).
    radius : float
        Sphere radius.

    Returns
    -------
    count : int
        Number of distinct real roots (0, 1 or 2). Degenerate spheres
        (radius ≤ 0) and zero directions report 0.
    t0, t1 : float
        Roots in ascending order (equal when ``count == 1``).
    """
    if radius <= 0.0:
        return 0, -1.0, -1.0

    ox = ray_origin[0] - center[0]
    oy = ray_origin[1] - center[1]
    oz = ray_origin[2] - center[2]

    a = ray_dir[0] * ray_dir[0] + ray_dir[1] * ray_dir[1] + ray_dir[2] * ray_dir[2]
    if a == 0.0:
        return 0, -1.0, -1.0

    half_b = ox * ray_dir[0] + oy * ray_dir[1] + oz * ray_dir[2]
    c = ox * ox + oy * oy + oz * oz - radius * radius

    disc = half_b * half_b - a * c
    if disc < 0.0:
        return 0, -1.0, -1.0

    sq = np.sqrt(disc)
    t0 = (-half_b - sq) / a
    t1 = (-half_b + sq) / a
    if disc == 0.0:
        return 1, t0, t1
    return 2, t0, t1


@njit(cache=True, fastmath=False)
def ray_sphere_intersect(
    ray_origin: np.ndarray,
    ray_dir: np.ndarray,
    center: np.ndarray,
    radius: float,
    t_min: float,
    t_max: float,
) -> float:
    """Nearest ray-sphere hit distance inside (t_min, t_max), or -1.0.

    Roots at or below ``t_min`` are discarded, so a ray that starts on or
    inside the surface reports the far intersection.
    """
    count, t0, t1 = sphere_quadratic_roots(ray_origin, ray_dir, center, radius)
    if count == 0:
        return -1.0
    if t0 > t_min and t0 < t_max:
        return t0
    if t1 > t_min and t1 < t_max:
        return t1
    return -1.0


# ===================================================================
# MÖLLER-TRUMBORE RAY-TRIANGLE INTERSECTION
# ===================================================================


@njit(cache=True, fastmath=False)
def moller_trumbore(
    ray_origin: np.ndarray,
    ray_dir: np.ndarray,
    v0: np.ndarray,
    v1: np.ndarray,
    v2: np.ndarray,
    t_min: float,
    t_max: float,
) -> tuple[float, float, float]:
    """Möller-Trumbore ray-triangle intersection test.

    Parameters
    ----------
    ray_origin : np.ndarray
        Ray origin point [x, y, z]. Shape: (3,).
    ray_dir : np.ndarray
        Ray direction vector [dx, dy, dz]. Shape: (3,).
    v0, v1, v2 : np.ndarray
        Triangle vertex positions. Shape: (3,) each.
    t_min, t_max : float
        Accepted hit window (exclusive).

    Returns
    -------
    t : float
        Parametric distance if hit, -1.0 on a miss.
    u, v : float
        Barycentric weights of v1 and v2 (v0 gets 1 - u - v). Zero on a miss.

    Notes
    -----
    Zero-area triangles have a zero determinant for every ray and are
    rejected by the same test that rejects parallel rays.
    """
    # Edge vectors
    e1_x = v1[0] - v0[0]
    e1_y = v1[1] - v0[1]
    e1_z = v1[2] - v0[2]

    e2_x = v2[0] - v0[0]
    e2_y = v2[1] - v0[1]
    e2_z = v2[2] - v0[2]

    # P = ray_dir × e2
    p_x = ray_dir[1] * e2_z - ray_dir[2] * e2_y
    p_y = ray_dir[2] * e2_x - ray_dir[0] * e2_z
    p_z = ray_dir[0] * e2_y - ray_dir[1] * e2_x

    det = e1_x * p_x + e1_y * p_y + e1_z * p_z

    if det > -_PARALLEL_EPSILON and det < _PARALLEL_EPSILON:
        return -1.0, 0.0, 0.0

    inv_det = 1.0 / det

    # T = ray_origin - v0
    t_x = ray_origin[0] - v0[0]
    t_y = ray_origin[1] - v0[1]
    t_z = ray_origin[2] - v0[2]

    u = (t_x * p_x + t_y * p_y + t_z * p_z) * inv_det
    if u < 0.0 or u > 1.0:
        return -1.0, 0.0, 0.0

    # Q = T × e1
    q_x = t_y * e1_z - t_z * e1_y
    q_y = t_z * e1_x - t_x * e1_z
    q_z = t_x * e1_y - t_y * e1_x

    v = (ray_dir[0] * q_x + ray_dir[1] * q_y + ray_dir[2] * q_z) * inv_det
    if v < 0.0 or u + v > 1.0:
        return -1.0, 0.0, 0.0

    t_dist = (e2_x * q_x + e2_y * q_y + e2_z * q_z) * inv_det
    if t_dist > t_min and t_dist < t_max:
        return t_dist, u, v

    return -1.0, 0.0, 0.0


# ===================================================================
# RAY-PLANE
# ===================================================================


@njit(cache=True, fastmath=False)
def ray_plane_intersect(
    ray_origin: np.ndarray,
    ray_dir: np.ndarray,
    point: np.ndarray,
    normal: np.ndarray,
    t_min: float,
    t_max: float,
) -> float:
    """Ray-plane hit distance inside (t_min, t_max), or -1.0.

    Rays parallel to the plane (|n·d| below tolerance) miss, including
    rays lying inside the plane.
    """
    denom = normal[0] * ray_dir[0] + normal[1] * ray_dir[1] + normal[2] * ray_dir[2]
    if denom > -_PARALLEL_EPSILON and denom < _PARALLEL_EPSILON:
        return -1.0

    num = (
        normal[0] * (point[0] - ray_origin[0])
        + normal[1] * (point[1] - ray_origin[1])
        + normal[2] * (point[2] - ray_origin[2])
    )
    t_dist = num / denom
    if t_dist > t_min and t_dist < t_max:
        return t_dist
    return -1.0


# ===================================================================
# RAY-AABB INTERSECTION: Slab Method
# ===================================================================


@njit(cache=True, fastmath=False)
def ray_aabb_interval(
    ray_origin: np.ndarray,
    inv_dir: np.ndarray,
    bbox_min: np.ndarray,
    bbox_max: np.ndarray,
    t_min: float,
    t_max: float,
) -> tuple[float, float]:
    """Overlap of a ray with an axis-aligned bounding box.

    Uses the slab method with a precomputed inverse direction. Zero
    direction components are expected to be replaced by a large finite
    value (see ``geometry.ray.Ray``), which keeps boxes of zero extent
    and axis-parallel rays free of NaN.

    Parameters
    ----------
    ray_origin : np.ndarray
        Ray origin [x, y, z]. Shape: (3,).
    inv_dir : np.ndarray
        Precomputed 1.0 / ray_dir for each axis. Shape: (3,).
    bbox_min, bbox_max : np.ndarray
        AABB corners. Shape: (3,) each.
    t_min, t_max : float
        Parametric window the overlap is clipped to.

    Returns
    -------
    t_near, t_far : float
        Clipped overlap interval. The box is missed iff ``t_near > t_far``.
    """
    t_near = t_min
    t_far = t_max

    for axis in range(3):
        t1 = (bbox_min[axis] - ray_origin[axis]) * inv_dir[axis]
        t2 = (bbox_max[axis] - ray_origin[axis]) * inv_dir[axis]

        # Swap so t1 <= t2
        if t1 > t2:
            t1, t2 = t2, t1

        if t1 > t_near:
            t_near = t1
        if t2 < t_far:
            t_far = t2

        if t_near > t_far:
            return t_near, t_far

    return t_near, t_far
