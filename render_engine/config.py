"""Renderer configuration loader.

All tunable constants of the tracer (recursion depth, self-intersection
epsilon, background color, BVH leaf size, ...) live in a YAML file and
are parsed into frozen, validated dataclasses here.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Configuration Layout
--------------------
.. code-block:: yaml

    render:
      max_recursion_depth: 5
      epsilon: 1.0e-6
      background_color: [0.0, 0.0, 0.0, 0.0]
      min_contribution: 0.00390625
      specular_model: phong        # or blinn_phong
      use_fresnel: false
    bvh:
      max_leaf_objects: 4
"""

from __future__ import annotations

import hashlib
import logging
import platform
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numba
import numpy as np
import yaml

logger = logging.getLogger(__name__)

_SPECULAR_MODELS = ("phong", "blinn_phong")

# ---------------------------------------------------------------------------
# Configuration Data Classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RenderConfig:
    """Shading and recursion settings.

    Attributes
    ----------
    max_recursion_depth : int
        Remaining-depth budget of primary rays. Rays with no depth left
        return the ambient term only.
    epsilon : float
        Self-intersection guard: minimum hit distance and offset of
        secondary ray origins along the normal.
    background_color : tuple[float, float, float, float]
        RGBA seen by rays that hit nothing (alpha = opacity).
    min_contribution : float
        Secondary rays whose accumulated weight falls below this are skipped.
    specular_model : str
        'phong' (R·V) or 'blinn_phong' (N·H).
    use_fresnel : bool
        Split transmitted energy between reflection and refraction with the
        Fresnel equations.
    """

    max_recursion_depth: int = 5
    epsilon: float = 1e-6
    background_color: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)
    min_contribution: float = 1.0 / 256.0
    specular_model: str = "phong"
    use_fresnel: bool = False

    @property
    def background(self) -> np.ndarray:
        """Background color as a float64 RGBA array."""
        return np.array(self.background_color, dtype=np.float64)


@dataclass(frozen=True)
class BVHConfig:
    """Bounding volume hierarchy settings.

    Attributes
    ----------
    max_leaf_objects : int
        Nodes holding at most this many objects become leaves.
    """

    max_leaf_objects: int = 4


@dataclass(frozen=True)
class TracerConfig:
    """Top-level tracer configuration."""

    render: RenderConfig = field(default_factory=RenderConfig)
    bvh: BVHConfig = field(default_factory=BVHConfig)


# ---------------------------------------------------------------------------
# Configuration Loader
# ---------------------------------------------------------------------------


def default_config() -> TracerConfig:
    """Built-in defaults, validated, without touching the filesystem."""
    config = TracerConfig()
    _validate_config(config)
    return config


def load_config(config_path: str | Path) -> TracerConfig:
    """Load and validate a tracer configuration from a YAML file.

    Parameters
    ----------
    config_path : str or Path
        Path to the YAML configuration file.

    Returns
    -------
    TracerConfig
        Fully populated, typed configuration object.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    ValueError
        If required configuration keys are missing or values are invalid.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}

    logger.info("Loading configuration from: %s", config_path)

    config = parse_config(raw)
    logger.info(
        "Configuration loaded: max_depth=%d, epsilon=%.1e, leaf_size=%d",
        config.render.max_recursion_depth,
        config.render.epsilon,
        config.bvh.max_leaf_objects,
    )
    return config


def parse_config(raw: dict[str, Any]) -> TracerConfig:
    """Build a validated ``TracerConfig`` from an already parsed mapping.

    Raises
    ------
    ValueError
        If a section or key is missing or a value has the wrong type.
    """
    try:
        rnd = raw["render"]
        bvh_cfg = raw["bvh"]

        background = tuple(float(c) for c in rnd["background_color"])
        if len(background) != 4:
            raise ValueError(
                f"background_color must have 4 channels (RGBA), got {len(background)}"
            )

        render = RenderConfig(
            max_recursion_depth=_as_int(rnd["max_recursion_depth"], "max_recursion_depth"),
            epsilon=float(rnd["epsilon"]),
            background_color=background,
            min_contribution=float(rnd.get("min_contribution", 1.0 / 256.0)),
            specular_model=str(rnd.get("specular_model", "phong")),
            use_fresnel=bool(rnd.get("use_fresnel", False)),
        )
        bvh = BVHConfig(
            max_leaf_objects=_as_int(bvh_cfg["max_leaf_objects"], "max_leaf_objects")
        )
    except KeyError as exc:
        raise ValueError(f"Missing configuration key: {exc.args[0]}") from exc
    except TypeError as exc:
        raise ValueError(f"Malformed configuration: {exc}") from exc

    config = TracerConfig(render=render, bvh=bvh)
    _validate_config(config)
    return config


def _as_int(value: Any, name: str) -> int:
    """Convert an integral YAML value to int; fractional values are rejected."""
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    return int(value)


def _validate_config(config: TracerConfig) -> None:
    """Validate value ranges.

    Raises
    ------
    ValueError
        If any value is invalid.
    """
    r = config.render
    if not isinstance(r.max_recursion_depth, int) or isinstance(r.max_recursion_depth, bool):
        raise ValueError(
            f"max_recursion_depth must be an integer, got {r.max_recursion_depth!r}"
        )
    if r.max_recursion_depth < 0:
        raise ValueError(
            f"max_recursion_depth must be >= 0, got {r.max_recursion_depth}"
        )
    if r.epsilon <= 0.0:
        raise ValueError("Raytracer epsilon must be positive.")
    if any(c < 0.0 for c in r.background_color):
        raise ValueError(f"Background color channels must be >= 0, got {r.background_color}")
    if r.min_contribution < 0.0:
        raise ValueError("min_contribution cannot be negative.")
    if r.specular_model not in _SPECULAR_MODELS:
        raise ValueError(
            f"specular_model must be one of {_SPECULAR_MODELS}, got {r.specular_model!r}"
        )
    if config.bvh.max_leaf_objects < 1:
        raise ValueError("BVH max_leaf_objects must be >= 1.")

    logger.debug("Configuration validation passed.")


def log_platform_info() -> None:
    """Log platform and library version information for reproducibility."""
    logger.info("=" * 70)
    logger.info("PLATFORM INFORMATION (for reproducibility)")
    logger.info("=" * 70)
    logger.info("  Python:    %s", sys.version)
    logger.info("  Platform:  %s", platform.platform())
    logger.info("  Processor: %s", platform.processor())
    logger.info("  NumPy:     %s", np.__version__)
    logger.info("  Numba:     %s", numba.__version__)
    logger.info("  Float64 eps: %e", np.finfo(np.float64).eps)
    logger.info("=" * 70)


def hash_array(arr: np.ndarray) -> str:
    """Compute SHA-256 hash of a NumPy array for reproducibility verification.

    Parameters
    ----------
    arr : np.ndarray
        Array to hash.

    Returns
    -------
    str
        Hex digest of the SHA-256 hash.
    """
    return hashlib.sha256(np.ascontiguousarray(arr).tobytes()).hexdigest()
