"""Affine transforms as 4x4 homogeneous matrices.

Used to place externally loaded meshes in the scene (scale, rotate,
translate) without touching the loader.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Notes
-----
Points transform with the full matrix; normals transform with the inverse
transpose of the upper-left 3x3 block and are renormalized, which keeps
them perpendicular to the surface under non-uniform scaling.
"""

from __future__ import annotations

import numpy as np

from geometry.vectors import as_vec3, length

# Determinants below this magnitude are treated as singular.
_SINGULAR_EPSILON: float = 1e-12


def identity() -> np.ndarray:
    return np.eye(4, dtype=np.float64)


def translation(offset) -> np.ndarray:
    m = identity()
    m[:3, 3] = as_vec3(offset)
    return m


def scaling(factors) -> np.ndarray:
    """Scale matrix; a scalar scales uniformly."""
    f = np.broadcast_to(np.asarray(factors, dtype=np.float64), (3,))
    m = identity()
    m[0, 0], m[1, 1], m[2, 2] = f
    return m


def rotation(axis, angle_deg: float) -> np.ndarray:
    """Right-handed rotation of ``angle_deg`` degrees about ``axis`` (Rodrigues).

    Raises
    ------
    ValueError
        If the axis has zero length.
    """
    a = as_vec3(axis)
    n = length(a)
    if n == 0.0:
        raise ValueError("Rotation axis must be non-zero")
    x, y, z = a / n
    theta = np.radians(angle_deg)
    c = np.cos(theta)
    s = np.sin(theta)
    t = 1.0 - c

    m = identity()
    m[:3, :3] = [
        [t * x * x + c, t * x * y - s * z, t * x * z + s * y],
        [t * x * y + s * z, t * y * y + c, t * y * z - s * x],
        [t * x * z - s * y, t * y * z + s * x, t * z * z + c],
    ]
    return m


def compose(*matrices: np.ndarray) -> np.ndarray:
    """Compose transforms applied left to right: compose(A, B) applies A first."""
    result = identity()
    for m in matrices:
        result = m @ result
    return result


def transform_points(matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Apply an affine transform to a (N, 3) array of points."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    return pts @ matrix[:3, :3].T + matrix[:3, 3]


def transform_normals(matrix: np.ndarray, normals: np.ndarray) -> np.ndarray:
    """Apply the inverse transpose of an affine transform to (N, 3) normals.

    Raises
    ------
    ValueError
        If the linear part of ``matrix`` is singular.
    """
    linear = matrix[:3, :3]
    if abs(np.linalg.det(linear)) < _SINGULAR_EPSILON:
        raise ValueError("Cannot transform normals with a singular matrix")
    normal_matrix = np.linalg.inv(linear).T
    out = np.asarray(normals, dtype=np.float64).reshape(-1, 3) @ normal_matrix.T
    norms = np.linalg.norm(out, axis=1, keepdims=True)
    return np.where(norms > 0.0, out / np.where(norms > 0.0, norms, 1.0), 0.0)
