"""Recursive Whitted-style tracer: the orchestrator of the render pipeline.

This module connects the scene model, the BVH and the optics helpers to
produce an RGBA float image. It owns no geometry of its own.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Pipeline
--------
1. Build the BVH once over the flattened scene objects.
2. For each pixel, generate a primary ray from the camera.
3. ``trace_ray``: nearest hit, Phong local illumination with shadow rays,
   then reflected and refracted rays traced with one less depth.
4. Composite the traced color over the background using the fraction of
   light that escaped the scene (the transmittance).

Notes
-----
A ray that hits nothing returns zero color and transmittance 1; the
background is applied only once, at the pixel. A hit with no depth left
returns the ambient term and transmittance 0, so recursion always ends
with a well-defined color. Colors are accumulated unclamped; clamping
happens in ``visualization.image_output``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

import numpy as np

from geometry.primitives import Intersection
from geometry.ray import Ray
from geometry.vectors import BLACK, dot, length, reflect, rgba
from render_engine.bvh import BVH
from render_engine.config import TracerConfig, default_config
from render_engine.optics import (
    blinn_phong_specular,
    fresnel_reflectance,
    phong_specular,
    refract,
)
from render_engine.scene import Scene

logger = logging.getLogger(__name__)

_RAY_KINDS = ("primary", "shadow", "reflection", "refraction")


def new_ray_counts() -> dict[str, int]:
    """Zeroed per-kind ray counters for one render call."""
    return dict.fromkeys(_RAY_KINDS, 0)


# ---------------------------------------------------------------------------
# Result Containers
# ---------------------------------------------------------------------------


@dataclass
class TraceSample:
    """Radiance carried back along one ray.

    Attributes
    ----------
    color : np.ndarray
        Accumulated RGB, unclamped. Shape: (3,).
    transmittance : float
        Fraction of the background visible along this ray (1 = miss).
    hit : bool
        True if the ray struck an object.
    """

    color: np.ndarray
    transmittance: float
    hit: bool = False


@dataclass
class RenderResult:
    """Result of a full-frame render.

    Attributes
    ----------
    pixels : np.ndarray
        Float RGBA image, row 0 at the top. Shape: (height, width, 4).
    stats : dict[str, Any]
        Ray counts by kind, hit pixel fraction and wall time.
    metadata : dict[str, Any]
        Configuration, scene summary and BVH statistics of the run.
    """

    pixels: np.ndarray
    stats: dict[str, Any]
    metadata: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Renderer
# ---------------------------------------------------------------------------


class Renderer:
    """Renders a scene with recursive ray tracing.

    Parameters
    ----------
    scene : Scene
        Scene to render. Not modified.
    config : TracerConfig, optional
        Tracer configuration. Defaults to ``default_config()``.
    bvh : BVH, optional
        Pre-built hierarchy over ``scene.primitives()``. Built if None.
    """

    def __init__(
        self,
        scene: Scene,
        config: TracerConfig | None = None,
        bvh: BVH | None = None,
    ) -> None:
        self._scene = scene
        self._config = config if config is not None else default_config()
        self._render_cfg = self._config.render
        self._epsilon = float(self._render_cfg.epsilon)
        self._background = self._render_cfg.background

        if bvh is None:
            bvh = BVH.build(
                scene.primitives(),
                max_leaf_objects=self._config.bvh.max_leaf_objects,
            )
        self._bvh = bvh

        if self._render_cfg.specular_model == "blinn_phong":
            self._specular = blinn_phong_specular
        else:
            self._specular = phong_specular

        logger.info(
            "Renderer initialized: %dx%d, %d lights, max_depth=%d, specular=%s",
            scene.camera.width,
            scene.camera.height,
            len(scene.lights),
            self._render_cfg.max_recursion_depth,
            self._render_cfg.specular_model,
        )

    @property
    def bvh(self) -> BVH:
        return self._bvh

    # ------------------------------------------------------------------
    # Ray tracing
    # ------------------------------------------------------------------

    def trace_ray(
        self,
        ray: Ray,
        depth: int,
        weight: float = 1.0,
        counts: dict[str, int] | None = None,
    ) -> TraceSample:
        """Trace one ray through the scene.

        Parameters
        ----------
        ray : Ray
            Ray to follow.
        depth : int
            Remaining recursion budget. At 0 a hit returns the ambient
            term only and spawns no further rays.
        weight : float
            Product of the coefficients along the path that led here.
            Secondary rays whose weight drops below ``min_contribution``
            are not traced.
        counts : dict, optional
            Per-kind ray counters to increment, as from ``new_ray_counts``.
            The renderer keeps no counters of its own, so concurrent calls
            never share mutable state.

        Returns
        -------
        TraceSample
            Color and transmittance seen along ``ray``.
        """
        if counts is None:
            counts = new_ray_counts()
        hit = self._bvh.intersect(ray, self._epsilon, np.inf)
        if hit is None:
            return TraceSample(BLACK.copy(), 1.0, hit=False)

        m = hit.material
        ambient = m.ambient * m.color * self._scene.ambient_color
        if depth <= 0:
            return TraceSample(ambient, 0.0, hit=True)

        color = ambient + self._local_illumination(ray, hit, counts)
        transmittance = 0.0

        if m.reflectivity > 0.0:
            c, t = self._spawn(
                self._reflected_ray(ray, hit), "reflection", depth, weight, m.reflectivity,
                counts,
            )
            color = color + c
            transmittance += t

        if m.is_transparent:
            c, t = self._transmitted(ray, hit, depth, weight, counts)
            color = color + c
            transmittance += t

        return TraceSample(color, transmittance, hit=True)

    def _local_illumination(
        self, ray: Ray, hit: Intersection, counts: dict[str, int]
    ) -> np.ndarray:
        """Diffuse and specular contribution of every unshadowed light."""
        m = hit.material
        n = hit.normal
        view_dir = -ray.direction
        shadow_origin = hit.point + self._epsilon * n
        color = np.zeros(3, dtype=np.float64)

        for light in self._scene.lights:
            to_light = light.position - shadow_origin
            distance = length(to_light)
            if distance == 0.0:
                continue
            light_dir = to_light / distance

            n_dot_l = dot(n, light_dir)
            if n_dot_l <= 0.0:
                continue

            counts["shadow"] += 1
            shadow_ray = Ray(shadow_origin, light_dir)
            if self._bvh.occluded(shadow_ray, self._epsilon, distance):
                continue

            color += m.diffuse * n_dot_l * m.color * light.color
            if m.specular > 0.0:
                lobe = self._specular(light_dir, n, view_dir, m.shininess)
                color += m.specular * lobe * light.color

        return color

    def _reflected_ray(self, ray: Ray, hit: Intersection) -> Ray:
        return Ray(hit.point + self._epsilon * hit.normal, reflect(ray.direction, hit.normal))

    def _transmitted(
        self,
        ray: Ray,
        hit: Intersection,
        depth: int,
        weight: float,
        counts: dict[str, int],
    ) -> tuple[np.ndarray, float]:
        """Refracted (or totally reflected) contribution of a transparent hit."""
        m = hit.material
        ior = float(m.refractive_index)
        eta_ratio = 1.0 / ior if hit.front_face else ior

        k_refract = m.transmission_weight
        k_reflect = 0.0
        if self._render_cfg.use_fresnel:
            fr = fresnel_reflectance(ray.direction, hit.normal, eta_ratio)
            k_reflect, k_refract = k_refract * fr, k_refract * (1.0 - fr)

        direction = refract(ray.direction, hit.normal, eta_ratio)
        if direction is None:
            # Total internal reflection
            k_reflect, k_refract = k_reflect + k_refract, 0.0

        color = np.zeros(3, dtype=np.float64)
        transmittance = 0.0
        if k_refract > 0.0:
            refracted = Ray(hit.point - self._epsilon * hit.normal, direction)
            c, t = self._spawn(refracted, "refraction", depth, weight, k_refract, counts)
            color += c
            transmittance += t
        if k_reflect > 0.0:
            c, t = self._spawn(
                self._reflected_ray(ray, hit), "reflection", depth, weight, k_reflect, counts
            )
            color += c
            transmittance += t
        return color, transmittance

    def _spawn(
        self,
        ray: Ray,
        kind: str,
        depth: int,
        weight: float,
        coefficient: float,
        counts: dict[str, int],
    ) -> tuple[np.ndarray, float]:
        """Trace a secondary ray and scale its result by ``coefficient``."""
        path_weight = weight * coefficient
        if path_weight < self._render_cfg.min_contribution:
            return np.zeros(3, dtype=np.float64), 0.0
        counts[kind] += 1
        sample = self.trace_ray(ray, depth - 1, path_weight, counts)
        return coefficient * sample.color, coefficient * sample.transmittance

    # ------------------------------------------------------------------
    # Pixels and images
    # ------------------------------------------------------------------

    def _shade_pixel(
        self, px: float, py: float, counts: dict[str, int]
    ) -> tuple[np.ndarray, bool]:
        ray = self._scene.camera.generate_ray(px, py)
        counts["primary"] += 1
        sample = self.trace_ray(ray, self._render_cfg.max_recursion_depth, counts=counts)

        bg = self._background
        t = sample.transmittance
        r, g, b = sample.color + t * bg[:3]
        return rgba(r, g, b, (1.0 - t) + t * bg[3]), sample.hit

    def render_pixel(
        self, px: float, py: float, counts: dict[str, int] | None = None
    ) -> np.ndarray:
        """Float RGBA of pixel (px, py), composited over the background."""
        if counts is None:
            counts = new_ray_counts()
        pixel, _ = self._shade_pixel(px, py, counts)
        return pixel

    def render_region(
        self,
        x0: int,
        y0: int,
        x1: int,
        y1: int,
        counts: dict[str, int] | None = None,
    ) -> np.ndarray:
        """Render the pixel block ``[y0, y1) × [x0, x1)``.

        Regions share no mutable state, so disjoint blocks may be rendered
        by separate workers and stitched together. Pass ``counts`` to
        collect the rays traced for this block.

        Returns
        -------
        np.ndarray
            Float RGBA block. Shape: (y1 - y0, x1 - x0, 4).

        Raises
        ------
        ValueError
            If the region is empty or leaves the image.
        """
        if counts is None:
            counts = new_ray_counts()
        pixels, _ = self._render_block(x0, y0, x1, y1, counts)
        return pixels

    def _render_block(
        self, x0: int, y0: int, x1: int, y1: int, counts: dict[str, int]
    ) -> tuple[np.ndarray, int]:
        cam = self._scene.camera
        if not (0 <= x0 < x1 <= cam.width and 0 <= y0 < y1 <= cam.height):
            raise ValueError(
                f"Region [{x0}, {x1}) x [{y0}, {y1}) is empty or outside the "
                f"{cam.width}x{cam.height} image"
            )

        pixels = np.empty((y1 - y0, x1 - x0, 4), dtype=np.float64)
        hits = 0
        for row, py in enumerate(range(y0, y1)):
            for col, px in enumerate(range(x0, x1)):
                pixels[row, col], was_hit = self._shade_pixel(px, py, counts)
                hits += int(was_hit)
            logger.debug("Row %d/%d done", py + 1, y1)
        return pixels, hits

    def render(self) -> RenderResult:
        """Render the full frame.

        Returns
        -------
        RenderResult
            Float RGBA pixels plus statistics and run metadata.
        """
        cam = self._scene.camera
        logger.info("Rendering %dx%d frame...", cam.width, cam.height)
        counts = new_ray_counts()

        start = time.perf_counter()
        pixels, hits = self._render_block(0, 0, cam.width, cam.height, counts)
        elapsed = time.perf_counter() - start

        num_pixels = cam.width * cam.height
        stats: dict[str, Any] = {
            "rays": counts,
            "total_rays": int(sum(counts.values())),
            "hit_fraction": hits / num_pixels,
            "wall_time_s": elapsed,
        }

        logger.info(
            "Render complete in %.2f s: %d rays (primary=%d, shadow=%d, "
            "reflection=%d, refraction=%d), hit=%.1f%%",
            elapsed,
            stats["total_rays"],
            counts["primary"],
            counts["shadow"],
            counts["reflection"],
            counts["refraction"],
            stats["hit_fraction"] * 100.0,
        )

        metadata = {
            "timestamp": datetime.now().isoformat(),
            "resolution": [cam.width, cam.height],
            "config": asdict(self._config),
            "scene": self._scene.summary(),
            "bvh": self._bvh.stats(),
        }
        return RenderResult(pixels=pixels, stats=stats, metadata=metadata)


def render(scene: Scene, config: TracerConfig | None = None) -> np.ndarray:
    """Render ``scene`` and return the float RGBA image (H × W × 4)."""
    return Renderer(scene, config).render().pixels
