"""PNG export and image comparison.

Example:
    >>> from forged.preview.export import save_png
    >>> save_png(buffer, "output.png", tone_map="reinhard")
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import numpy.typing as npt
from PIL import Image as PILImage

from forged.core.renderbuffer import RenderBuffer

from .display import ToneMapMethod, process_image_for_display


def image_to_uint8(
    image: npt.NDArray[np.float32],
    *,
    tone_map: ToneMapMethod = "none",
    gamma: float = 2.2,
    exposure: float = 1.0,
) -> npt.NDArray[np.uint8]:
    """Convert a linear float image to 8 bits through the display pipeline.

    Args:
        image: Array of shape (H, W, 3) or (H, W, 4).
        tone_map: Tone curve name.
        gamma: Gamma value.
        exposure: Exposure for the ``exposure`` curve.

    Returns:
        Array of the same shape with dtype uint8.
    """
    processed = process_image_for_display(image, tone_map=tone_map, gamma=gamma, exposure=exposure)
    return (processed * 255).astype(np.uint8)


def save_png(
    buffer: RenderBuffer,
    filepath: str | Path,
    *,
    tone_map: ToneMapMethod = "none",
    gamma: float = 2.2,
    exposure: float = 1.0,
    alpha: bool = False,
) -> None:
    """Save a render buffer as an 8-bit PNG.

    Args:
        buffer: The buffer to save.
        filepath: Output path.
        tone_map: Tone curve name.
        gamma: Gamma value.
        exposure: Exposure for the ``exposure`` curve.
        alpha: Write RGBA instead of RGB.
    """
    pixels = buffer.pixels if alpha else buffer.pixels[..., :3]
    save_png_from_array(pixels, filepath, tone_map=tone_map, gamma=gamma, exposure=exposure)


def save_png_from_array(
    image: npt.NDArray[np.float32],
    filepath: str | Path,
    *,
    tone_map: ToneMapMethod = "none",
    gamma: float = 2.2,
    exposure: float = 1.0,
) -> None:
    """Save a linear float image of shape (H, W, 3) or (H, W, 4) as a PNG."""
    PILImage.fromarray(image_to_uint8(image, tone_map=tone_map, gamma=gamma, exposure=exposure)).save(filepath)


def load_png(filepath: str | Path) -> npt.NDArray[np.float32]:
    """Load a PNG as a float image in [0, 1], keeping its channel count."""
    with PILImage.open(filepath) as image:
        return np.asarray(image, dtype=np.float32) / 255.0


def compute_rmse(image_a: npt.NDArray[np.floating], image_b: npt.NDArray[np.floating]) -> float:
    """Root mean squared error between two images.

    Raises:
        ValueError: If the shapes differ.
    """
    if image_a.shape != image_b.shape:
        raise ValueError(f"Image shapes must match: {image_a.shape} vs {image_b.shape}")
    diff = image_a.astype(np.float64) - image_b.astype(np.float64)
    return float(np.sqrt(np.mean(diff**2)))
