"""Scene model: camera, point lights and the object list.

A scene is assembled once from a static description and treated as
immutable while rendering. Nothing here is mutated by the tracer.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Camera Model
------------
Pinhole camera with a horizontal field of view. The orthonormal basis is
derived once on construction:

    forward  = normalize(look_at - position)
    right    = normalize(forward × up)
    up'      = right × forward

Pixel (px, py), with py growing downwards, maps to the screen point

    sx = (2 · (px + 0.5) / width  - 1) · tan(fov / 2)
    sy = (1 - 2 · (py + 0.5) / height) · tan(fov / 2) / aspect

and the primary ray direction is normalize(forward + sx · right + sy · up').
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from geometry.primitives import Surface
from geometry.ray import Ray
from geometry.vectors import as_color, as_vec3, cross, length, normalize

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Light Source
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LightSource:
    """Point light.

    Attributes
    ----------
    position : np.ndarray
        Light position. Shape: (3,).
    color : np.ndarray
        Light RGB color / intensity. Shape: (3,).
    """

    position: np.ndarray
    color: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "position", as_vec3(self.position))
        object.__setattr__(self, "color", as_color(self.color))


# ---------------------------------------------------------------------------
# Camera
# ---------------------------------------------------------------------------


@dataclass
class Camera:
    """Pinhole camera.

    Attributes
    ----------
    position : np.ndarray
        Eye position. Shape: (3,).
    look_at : np.ndarray
        Point the camera looks at. Shape: (3,).
    up : np.ndarray
        Approximate up direction of the image. Shape: (3,).
    horizontal_fov_deg : float
        Horizontal field of view, strictly between 0 and 180 degrees.
    width, height : int
        Output image size in pixels.
    aspect_ratio : float or None
        width / height of the image plane. Defaults to the pixel aspect.

    Raises
    ------
    ValueError
        On a non-positive image size, an out-of-range field of view,
        ``look_at == position`` or ``up`` parallel to the view direction.
    """

    position: np.ndarray
    look_at: np.ndarray
    up: np.ndarray
    horizontal_fov_deg: float
    width: int
    height: int
    aspect_ratio: float | None = None
    forward: np.ndarray = field(init=False, repr=False)
    right: np.ndarray = field(init=False, repr=False)
    up_vector: np.ndarray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.position = as_vec3(self.position)
        self.look_at = as_vec3(self.look_at)
        self.up = as_vec3(self.up)
        self.width = int(self.width)
        self.height = int(self.height)

        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"Image size must be positive, got {self.width} x {self.height}"
            )
        if not (0.0 < self.horizontal_fov_deg < 180.0):
            raise ValueError(
                f"horizontal_fov_deg must be in (0, 180), got {self.horizontal_fov_deg}"
            )
        if self.aspect_ratio is None:
            self.aspect_ratio = self.width / self.height
        if self.aspect_ratio <= 0.0:
            raise ValueError(f"aspect_ratio must be positive, got {self.aspect_ratio}")

        view = self.look_at - self.position
        if length(view) == 0.0:
            raise ValueError("Camera look_at must differ from its position")
        self.forward = normalize(view)

        right = cross(self.forward, self.up)
        if length(right) < 1e-12:
            raise ValueError("Camera up vector must not be parallel to the view direction")
        self.right = normalize(right)
        self.up_vector = cross(self.right, self.forward)

        tan_half = float(np.tan(np.radians(self.horizontal_fov_deg) / 2.0))
        self._half_width = tan_half
        self._half_height = tan_half / self.aspect_ratio

    def generate_ray(self, px: float, py: float) -> Ray:
        """Primary ray through the center of pixel (px, py).

        Pure function of the pixel coordinates and camera parameters.
        Fractional coordinates address sub-pixel positions.
        """
        sx = (2.0 * (px + 0.5) / self.width - 1.0) * self._half_width
        sy = (1.0 - 2.0 * (py + 0.5) / self.height) * self._half_height
        direction = self.forward + sx * self.right + sy * self.up_vector
        return Ray(self.position, direction)


# ---------------------------------------------------------------------------
# Scene
# ---------------------------------------------------------------------------


@dataclass
class Scene:
    """Everything the renderer needs.

    Attributes
    ----------
    camera : Camera
        The viewpoint.
    objects : list
        Renderable objects (``Surface`` implementations or meshes).
    lights : list[LightSource]
        Point lights.
    ambient_color : np.ndarray
        Color of the ambient light. Shape: (3,).
    """

    camera: Camera
    objects: list = field(default_factory=list)
    lights: list[LightSource] = field(default_factory=list)
    ambient_color: np.ndarray = field(default_factory=lambda: np.full(3, 0.1))

    def __post_init__(self) -> None:
        self.ambient_color = as_color(self.ambient_color)
        for obj in self.objects:
            if not isinstance(obj, Surface):
                raise ValueError(
                    f"Scene object {obj!r} lacks the intersect/bounding_box capability"
                )

    def primitives(self) -> list:
        """Flatten the object list into BVH leaf candidates.

        Meshes (anything with a ``primitives()`` method) expand into their
        individual faces; every other object is registered as is.
        """
        result: list = []
        for obj in self.objects:
            expand = getattr(obj, "primitives", None)
            if callable(expand):
                result.extend(expand())
            else:
                result.append(obj)
        return result

    def summary(self) -> dict[str, Any]:
        counts: dict[str, int] = {}
        for obj in self.objects:
            name = type(obj).__name__
            counts[name] = counts.get(name, 0) + 1
        return {
            "objects": counts,
            "num_lights": len(self.lights),
            "resolution": (self.camera.width, self.camera.height),
        }
