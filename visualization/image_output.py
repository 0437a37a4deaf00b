"""Image output — convert and persist rendered frames.

Turns the tracer's unclamped float RGBA buffer into 8-bit RGBA, writes
PNG files through matplotlib and saves raw frames as NumPy arrays so a
render can be re-encoded without tracing it again.

File layout under output_dir/:
    pixels.npy     — Float RGBA image, shape (height, width, 4)
    render.png     — Gamma-corrected 8-bit RGBA preview
    metadata.json  — Render statistics and configuration (JSON)

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import matplotlib

matplotlib.use("Agg")  # Non-interactive backend for headless rendering

import matplotlib.pyplot as plt
import numpy as np

from render_engine.tracer import RenderResult

logger = logging.getLogger(__name__)

DEFAULT_GAMMA: float = 2.2


def to_rgba8(pixels: np.ndarray, gamma: float = DEFAULT_GAMMA) -> np.ndarray:
    """Clamp, gamma-encode and quantize a float RGBA image.

    Parameters
    ----------
    pixels : np.ndarray
        Float RGBA image. Shape: (..., 4).
    gamma : float
        Display gamma. Color channels are raised to ``1 / gamma``; alpha is
        kept linear. Use 1.0 for no correction.

    Returns
    -------
    np.ndarray
        uint8 RGBA image of the same shape.

    Raises
    ------
    ValueError
        If the last axis is not 4 channels or ``gamma <= 0``.
    """
    pixels = np.asarray(pixels, dtype=np.float64)
    if pixels.ndim == 0 or pixels.shape[-1] != 4:
        raise ValueError(f"Expected RGBA pixels with shape (..., 4), got {pixels.shape}")
    if gamma <= 0.0:
        raise ValueError(f"gamma must be positive, got {gamma}")

    clamped = np.clip(np.nan_to_num(pixels, nan=0.0), 0.0, 1.0)
    clamped[..., :3] = clamped[..., :3] ** (1.0 / gamma)
    return np.round(clamped * 255.0).astype(np.uint8)


def save_png(
    pixels: np.ndarray,
    output_path: Path | str,
    gamma: float = DEFAULT_GAMMA,
) -> Path:
    """Write a float RGBA image as an 8-bit RGBA PNG.

    Parameters
    ----------
    pixels : np.ndarray
        Float RGBA image. Shape: (height, width, 4).
    output_path : Path or str
        Target file; parent directories are created.
    gamma : float
        Display gamma passed to ``to_rgba8``.

    Returns
    -------
    Path
        The written file.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    image = to_rgba8(pixels, gamma)
    plt.imsave(output_path, image)
    logger.debug("Saved %s: %dx%d", output_path.name, image.shape[1], image.shape[0])
    return output_path


def plot_render(
    pixels: np.ndarray,
    title: str = "Render",
    output_path: Path | str | None = None,
    gamma: float = DEFAULT_GAMMA,
    dpi: int = 150,
) -> matplotlib.figure.Figure:
    """Show a frame in a figure with pixel axes, optionally saving it.

    Returns
    -------
    matplotlib.figure.Figure
    """
    image = to_rgba8(pixels, gamma)
    fig, ax = plt.subplots(figsize=(8, 8 * image.shape[0] / max(image.shape[1], 1)))
    ax.imshow(image, origin="upper", interpolation="nearest")
    ax.set_title(title)
    ax.set_xlabel("x [px]")
    ax.set_ylabel("y [px]")
    fig.tight_layout()

    if output_path is not None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=dpi)
        logger.info("Figure saved: %s", output_path)

    return fig


def save_render(
    output_dir: Path | str,
    result: RenderResult,
    gamma: float = DEFAULT_GAMMA,
) -> list[Path]:
    """Persist a render: raw pixels, PNG preview and metadata.

    Parameters
    ----------
    output_dir : Path or str
        Output directory (created if needed).
    result : RenderResult
        Output of ``Renderer.render()``.
    gamma : float
        Display gamma of the PNG preview.

    Returns
    -------
    list[Path]
        Paths to all saved files.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    saved: list[Path] = []

    pixels_path = output_dir / "pixels.npy"
    np.save(pixels_path, result.pixels)
    saved.append(pixels_path)
    logger.debug(
        "Saved pixels.npy: shape=%s, dtype=%s", result.pixels.shape, result.pixels.dtype
    )

    saved.append(save_png(result.pixels, output_dir / "render.png", gamma))

    meta_path = output_dir / "metadata.json"
    safe_meta = _sanitize_for_json({"stats": result.stats, **result.metadata})
    with open(meta_path, "w", encoding="utf-8") as f:
        json.dump(safe_meta, f, indent=2, ensure_ascii=False)
    saved.append(meta_path)

    logger.info("Saved %d files to %s (pixels: %s)", len(saved), output_dir, result.pixels.shape)
    return saved


def load_render(output_dir: Path | str) -> dict[str, Any]:
    """Load a render saved by ``save_render``.

    Returns
    -------
    dict
        Keys: 'pixels' (float RGBA array) and 'metadata' (dict).

    Raises
    ------
    FileNotFoundError
        If the directory or its ``pixels.npy`` does not exist.
    """
    output_dir = Path(output_dir)
    if not output_dir.exists():
        raise FileNotFoundError(f"Output directory not found: {output_dir}")

    pixels_path = output_dir / "pixels.npy"
    if not pixels_path.exists():
        raise FileNotFoundError(f"No pixels.npy in {output_dir}")

    data: dict[str, Any] = {"pixels": np.load(pixels_path)}

    meta_path = output_dir / "metadata.json"
    if meta_path.exists():
        with open(meta_path, "r", encoding="utf-8") as f:
            data["metadata"] = json.load(f)
    else:
        logger.warning("Missing file: %s", meta_path)
        data["metadata"] = {}

    logger.info("Loaded render from %s: shape=%s", output_dir, data["pixels"].shape)
    return data


def _sanitize_for_json(obj: object) -> object:
    """Recursively convert NumPy types and other non-JSON types to Python natives."""
    if isinstance(obj, dict):
        return {str(k): _sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitize_for_json(v) for v in obj]
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.bool_):
        return bool(obj)
    return obj
