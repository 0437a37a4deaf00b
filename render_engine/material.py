"""Surface materials for Phong shading, reflection and refraction.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from geometry.vectors import WHITE, as_color, rgb


@dataclass(frozen=True)
class Material:
    """Optical properties of a surface.

    Attributes
    ----------
    color : np.ndarray
        Base RGB color. Shape: (3,).
    ambient : float
        Ambient reflection coefficient [0, 1].
    diffuse : float
        Diffuse (Lambertian) reflection coefficient [0, 1].
    specular : float
        Specular highlight coefficient [0, 1].
    shininess : float
        Specular exponent (> 0). Larger values give smaller highlights.
    reflectivity : float
        Mirror reflectance [0, 1]. 0 = no reflection, 1 = perfect mirror.
    refractive_index : float or None
        Index of refraction. None means the material is opaque.
    transmission : float or None
        Weight of the transmitted ray [0, 1]. None means ``1 - reflectivity``.

    Raises
    ------
    ValueError
        If any coefficient lies outside its valid range.
    """

    color: np.ndarray = field(default_factory=lambda: WHITE.copy())
    ambient: float = 0.1
    diffuse: float = 0.7
    specular: float = 0.2
    shininess: float = 10.0
    reflectivity: float = 0.0
    refractive_index: float | None = None
    transmission: float | None = None

    def __post_init__(self) -> None:
        color = as_color(self.color)
        color.setflags(write=False)
        object.__setattr__(self, "color", color)

        for name in ("ambient", "diffuse", "specular", "reflectivity"):
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0):
                raise ValueError(f"Material {name} must be in [0, 1], got {value}")
        if self.shininess <= 0.0:
            raise ValueError(f"Material shininess must be positive, got {self.shininess}")
        if self.refractive_index is not None and self.refractive_index <= 0.0:
            raise ValueError(
                f"Refractive index must be positive, got {self.refractive_index}"
            )
        if self.transmission is not None and not (0.0 <= self.transmission <= 1.0):
            raise ValueError(f"Material transmission must be in [0, 1], got {self.transmission}")
        if self.reflectivity + self.transmission_weight > 1.0 + 1e-12:
            raise ValueError(
                "Material reflectivity + transmission must not exceed 1, got "
                f"{self.reflectivity} + {self.transmission_weight}"
            )

    @property
    def is_transparent(self) -> bool:
        return self.refractive_index is not None and self.transmission_weight > 0.0

    @property
    def transmission_weight(self) -> float:
        """Weight applied to the refracted (or totally reflected) ray."""
        if self.refractive_index is None:
            return 0.0
        if self.transmission is not None:
            return self.transmission
        return 1.0 - self.reflectivity

    # ------------------------------------------------------------------
    # Presets
    # ------------------------------------------------------------------

    @classmethod
    def matte(cls, color=(0.0, 0.0, 0.0)) -> Material:
        """Diffuse material of the given color."""
        return cls(
            color=rgb(*color),
            ambient=0.2,
            diffuse=0.6,
            specular=0.2,
            shininess=10.0,
        )

    @classmethod
    def mirror(cls, reflectivity: float = 0.8, color=(1.0, 1.0, 1.0)) -> Material:
        """Mirror-like material; the remaining energy goes to diffuse."""
        return cls(
            color=rgb(*color),
            ambient=0.0,
            diffuse=max(0.0, 0.9 - reflectivity),
            specular=0.1,
            shininess=50.0,
            reflectivity=reflectivity,
        )

    @classmethod
    def glass(cls, refractive_index: float = 1.5) -> Material:
        """Clear glass: mostly transmission with a sharp highlight."""
        return cls(
            color=WHITE.copy(),
            ambient=0.0,
            diffuse=0.0,
            specular=0.1,
            shininess=200.0,
            refractive_index=refractive_index,
            transmission=0.9,
        )
