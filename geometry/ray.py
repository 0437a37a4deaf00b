"""Ray representation.

A ray is the half-line R(t) = origin + t · direction, t ≥ 0, with a unit
direction. The reciprocal direction is precomputed once per ray because
every BVH node visit needs it for the slab test.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from geometry.vectors import as_vec3, length

# Stand-in for 1/0 in the reciprocal direction. Finite so that
# 0 * _INV_INF stays 0 instead of turning into NaN in the slab test.
_INV_INF: float = 1e30


class Ray:
    """A directed half-line used to query scene geometry.

    Parameters
    ----------
    origin : array_like
        Start point [x, y, z].
    direction : array_like
        Travel direction. Normalized on construction.

    Raises
    ------
    ValueError
        If the direction has zero length.
    """

    __slots__ = ("origin", "direction", "inv_direction")

    def __init__(
        self,
        origin: Sequence[float] | np.ndarray,
        direction: Sequence[float] | np.ndarray,
    ) -> None:
        self.origin = as_vec3(origin)
        d = as_vec3(direction)
        n = length(d)
        if n == 0.0 or not np.isfinite(n):
            raise ValueError(f"Ray direction must be a finite non-zero vector, got {d}")
        self.direction = d / n

        inv = np.empty(3, dtype=np.float64)
        for axis in range(3):
            if self.direction[axis] == 0.0:
                inv[axis] = _INV_INF
            else:
                inv[axis] = 1.0 / self.direction[axis]
        self.inv_direction = inv

    def at(self, t: float) -> np.ndarray:
        """Point at parametric distance ``t`` along the ray."""
        return self.origin + t * self.direction

    def __repr__(self) -> str:
        return f"Ray(origin={self.origin.tolist()}, direction={self.direction.tolist()})"
