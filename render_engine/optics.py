"""Geometric optics: reflection, refraction, Fresnel and specular lobes.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Conventions
-----------
- All directions are unit vectors.
- ``n`` is the normal facing the incoming ray (``dot(d, n) <= 0``), as
  stored in ``Intersection.normal``.
- ``eta_ratio`` is n_incident / n_transmitted: ``1 / ior`` when a ray enters
  a material from vacuum and ``ior`` when it leaves.

References
----------
- Hecht, E. (2017). Optics, 5th ed., §4.6 (Fresnel equations).
- Blinn, J. F. (1977). Models of light reflection for computer synthesized
  pictures. SIGGRAPH '77.
"""

from __future__ import annotations

import numpy as np

from geometry.vectors import dot, normalize, reflect

__all__ = [
    "reflect",
    "refract",
    "fresnel_reflectance",
    "phong_specular",
    "blinn_phong_specular",
]


def refract(d: np.ndarray, n: np.ndarray, eta_ratio: float) -> np.ndarray | None:
    """Transmitted direction by Snell's law.

    Parameters
    ----------
    d : np.ndarray
        Incident unit direction. Shape: (3,).
    n : np.ndarray
        Unit normal facing the incident ray. Shape: (3,).
    eta_ratio : float
        n_incident / n_transmitted.

    Returns
    -------
    np.ndarray or None
        Unit transmitted direction, or None on total internal reflection.
    """
    cos_i = min(-dot(d, n), 1.0)
    sin2_t = eta_ratio * eta_ratio * (1.0 - cos_i * cos_i)
    if sin2_t > 1.0:
        return None
    cos_t = np.sqrt(1.0 - sin2_t)
    return normalize(eta_ratio * d + (eta_ratio * cos_i - cos_t) * n)


def fresnel_reflectance(d: np.ndarray, n: np.ndarray, eta_ratio: float) -> float:
    """Fraction of unpolarized light reflected at a dielectric interface.

    Average of the s- and p-polarized Fresnel reflectances. Returns 1.0
    under total internal reflection.
    """
    cos_i = min(-dot(d, n), 1.0)
    sin2_t = eta_ratio * eta_ratio * (1.0 - cos_i * cos_i)
    if sin2_t > 1.0:
        return 1.0
    cos_t = np.sqrt(1.0 - sin2_t)

    r_s = (eta_ratio * cos_i - cos_t) / (eta_ratio * cos_i + cos_t)
    r_p = (cos_i - eta_ratio * cos_t) / (cos_i + eta_ratio * cos_t)
    return float(0.5 * (r_s * r_s + r_p * r_p))


def phong_specular(
    light_dir: np.ndarray,
    normal: np.ndarray,
    view_dir: np.ndarray,
    shininess: float,
) -> float:
    """Phong lobe ``max(0, R·V) ** shininess`` with R = reflect(-L, N).

    ``light_dir`` points from the surface to the light, ``view_dir`` from
    the surface to the viewer.
    """
    r = reflect(-light_dir, normal)
    r_dot_v = dot(r, view_dir)
    if r_dot_v <= 0.0:
        return 0.0
    return float(r_dot_v ** shininess)


def blinn_phong_specular(
    light_dir: np.ndarray,
    normal: np.ndarray,
    view_dir: np.ndarray,
    shininess: float,
) -> float:
    """Blinn-Phong lobe ``max(0, N·H) ** shininess`` with H the half vector."""
    h = normalize(light_dir + view_dir)
    n_dot_h = dot(normal, h)
    if n_dot_h <= 0.0:
        return 0.0
    return float(n_dot_h ** shininess)
