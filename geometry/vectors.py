"""3D vector and RGB color algebra on NumPy arrays.

Vectors, points and colors are plain ``np.ndarray`` objects of dtype
float64 and shape (3,); RGBA pixels have shape (4,). Addition, subtraction,
scaling and component-wise color multiplication are the native NumPy
operators, so this module only provides construction helpers and the
handful of operations NumPy does not spell directly.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Notes
-----
Colors are NOT clamped here. Channel values may exceed 1.0 while light
contributions accumulate; clamping happens only when the pixel buffer is
handed off for encoding (see ``visualization.image_output``).
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

# Lengths below this are treated as zero by ``normalize``.
_ZERO_LENGTH: float = 1e-300


def vec3(x: float, y: float, z: float) -> np.ndarray:
    """Build a float64 3-vector."""
    return np.array([x, y, z], dtype=np.float64)


def as_vec3(v: Sequence[float] | np.ndarray) -> np.ndarray:
    """Coerce any 3-element sequence into a float64 3-vector.

    Raises
    ------
    ValueError
        If ``v`` does not hold exactly three components.
    """
    arr = np.asarray(v, dtype=np.float64)
    if arr.shape != (3,):
        raise ValueError(f"Expected a 3-vector, got shape {arr.shape}")
    return arr.copy()


def dot(a: np.ndarray, b: np.ndarray) -> float:
    return float(a[0] * b[0] + a[1] * b[1] + a[2] * b[2])


def cross(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return np.array(
        [
            a[1] * b[2] - a[2] * b[1],
            a[2] * b[0] - a[0] * b[2],
            a[0] * b[1] - a[1] * b[0],
        ],
        dtype=np.float64,
    )


def length(v: np.ndarray) -> float:
    return float(np.sqrt(dot(v, v)))


def normalize(v: np.ndarray) -> np.ndarray:
    """Return ``v`` scaled to unit length.

    A zero-length input yields the zero vector. This is the only case in
    which the result is not a unit vector, and callers that need a
    direction must guard against it.
    """
    n = length(v)
    if n < _ZERO_LENGTH:
        return np.zeros(3, dtype=np.float64)
    return np.asarray(v, dtype=np.float64) / n


def reflect(d: np.ndarray, n: np.ndarray) -> np.ndarray:
    """Mirror direction ``d`` about the unit normal ``n``: d - 2(d·n)n."""
    return d - 2.0 * dot(d, n) * n


# ---------------------------------------------------------------------------
# Colors
# ---------------------------------------------------------------------------


def rgb(r: float, g: float, b: float) -> np.ndarray:
    """Build a float64 RGB color."""
    return np.array([r, g, b], dtype=np.float64)


def rgba(r: float, g: float, b: float, a: float) -> np.ndarray:
    """Build a float64 RGBA color (alpha = opacity, 1.0 is opaque)."""
    return np.array([r, g, b, a], dtype=np.float64)


def as_color(c: Sequence[float] | np.ndarray, channels: int = 3) -> np.ndarray:
    """Coerce a sequence into a color with the given channel count.

    Raises
    ------
    ValueError
        If the channel count does not match or a channel is negative.
    """
    arr = np.asarray(c, dtype=np.float64)
    if arr.shape != (channels,):
        raise ValueError(f"Expected {channels} color channels, got shape {arr.shape}")
    if np.any(arr < 0.0):
        raise ValueError(f"Color channels must be non-negative, got {arr.tolist()}")
    return arr.copy()


BLACK: np.ndarray = rgb(0.0, 0.0, 0.0)
WHITE: np.ndarray = rgb(1.0, 1.0, 1.0)

for _constant in (BLACK, WHITE):
    _constant.setflags(write=False)
