"""Axis-aligned bounding boxes.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

import numpy as np

from geometry.kernels import ray_aabb_interval
from geometry.ray import Ray
from geometry.vectors import as_vec3


@dataclass(frozen=True)
class AABB:
    """Axis-aligned bounding box.

    Attributes
    ----------
    minimum : np.ndarray
        Corner with the smallest coordinates. Shape: (3,).
    maximum : np.ndarray
        Corner with the largest coordinates. Shape: (3,).

    Raises
    ------
    ValueError
        If ``minimum > maximum`` on any axis.
    """

    minimum: np.ndarray
    maximum: np.ndarray

    def __post_init__(self) -> None:
        lo = as_vec3(self.minimum)
        hi = as_vec3(self.maximum)
        if np.any(lo > hi):
            raise ValueError(f"AABB minimum {lo} exceeds maximum {hi}")
        lo.setflags(write=False)
        hi.setflags(write=False)
        object.__setattr__(self, "minimum", lo)
        object.__setattr__(self, "maximum", hi)

    @classmethod
    def from_points(cls, points: np.ndarray) -> AABB:
        """Tightest box around a (N, 3) array of points."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if pts.shape[0] == 0:
            raise ValueError("Cannot bound an empty point set")
        return cls(pts.min(axis=0), pts.max(axis=0))

    @classmethod
    def empty(cls) -> AABB:
        """Zero-extent box at the origin, used for nodes that bound nothing."""
        return cls(np.zeros(3), np.zeros(3))

    @staticmethod
    def union_all(boxes: Iterable[AABB]) -> AABB | None:
        """Union of any number of boxes; None for an empty iterable."""
        result: AABB | None = None
        for box in boxes:
            result = box if result is None else result.union(box)
        return result

    def union(self, other: AABB) -> AABB:
        return AABB(
            np.minimum(self.minimum, other.minimum),
            np.maximum(self.maximum, other.maximum),
        )

    @property
    def centroid(self) -> np.ndarray:
        return 0.5 * (self.minimum + self.maximum)

    @property
    def extent(self) -> np.ndarray:
        return self.maximum - self.minimum

    @property
    def longest_axis(self) -> int:
        """Index (0, 1, 2) of the axis with the greatest extent."""
        return int(np.argmax(self.extent))

    @property
    def surface_area(self) -> float:
        d = self.extent
        return float(2.0 * (d[0] * d[1] + d[1] * d[2] + d[2] * d[0]))

    def contains(self, other: AABB, tolerance: float = 0.0) -> bool:
        """True if ``other`` lies entirely inside this box."""
        return bool(
            np.all(self.minimum <= other.minimum + tolerance)
            and np.all(self.maximum >= other.maximum - tolerance)
        )

    def intersect(
        self,
        ray: Ray,
        t_min: float = 0.0,
        t_max: float = np.inf,
    ) -> tuple[float, float] | None:
        """Clip the ray's [t_min, t_max] window to this box.

        Returns
        -------
        tuple[float, float] or None
            ``(t_near, t_far)`` overlap, or None if the box is missed.
        """
        t_near, t_far = ray_aabb_interval(
            ray.origin, ray.inv_direction, self.minimum, self.maximum,
            float(t_min), float(t_max),
        )
        if t_near > t_far:
            return None
        return t_near, t_far
