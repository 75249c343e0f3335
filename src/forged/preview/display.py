"""Tone mapping and gamma for turning render buffers into displayable images.

Render buffers hold linear, unbounded color. Before 8-bit export the color
channels go through an optional tone curve, then gamma encoding, then a
final clamp to [0, 1]. Alpha is never tone mapped.

Tone curves:
    none:     c
    reinhard: c / (1 + c)
    exposure: 1 - exp(-c * exposure)
    film:     ACES-style fit (c(2.51c + 0.03)) / (c(2.43c + 0.59) + 0.14)
"""

from __future__ import annotations

from typing import Literal

import numpy as np
import numpy.typing as npt

ToneMapMethod = Literal["none", "reinhard", "exposure", "film"]

Image = npt.NDArray[np.float32]


def tone_map_reinhard(image: Image) -> Image:
    """Reinhard global operator ``c / (1 + c)``."""
    image = np.maximum(image, 0.0)
    return (image / (1.0 + image)).astype(np.float32)


def tone_map_exposure(image: Image, exposure: float = 1.0) -> Image:
    """Exposure curve ``1 - exp(-c * exposure)``; higher exposure is brighter."""
    image = np.maximum(image, 0.0)
    return (1.0 - np.exp(-image * exposure)).astype(np.float32)


def tone_map_film(image: Image) -> Image:
    """Filmic curve fitted to the ACES reference transform."""
    x = np.maximum(image, 0.0)
    return ((x * (2.51 * x + 0.03)) / (x * (2.43 * x + 0.59) + 0.14)).astype(np.float32)


def apply_gamma(image: Image, gamma: float = 2.2) -> Image:
    """Gamma encode ``c^(1/gamma)`` after clamping to [0, 1]."""
    if gamma == 1.0:
        return image
    return np.power(np.clip(image, 0.0, 1.0), 1.0 / gamma).astype(np.float32)


def process_image_for_display(
    image: Image,
    tone_map: ToneMapMethod = "none",
    gamma: float = 2.2,
    exposure: float = 1.0,
) -> Image:
    """Run the display pipeline on an image of shape (H, W, 3) or (H, W, 4).

    Args:
        image: Linear image; a fourth channel is treated as alpha and only
            clamped.
        tone_map: Tone curve name.
        gamma: Gamma value (2.2 for sRGB, 1.0 to skip).
        exposure: Exposure for the ``exposure`` curve.

    Returns:
        Image of the same shape in [0, 1].

    Raises:
        ValueError: If ``tone_map`` is not a known curve.
    """
    result = np.array(image, dtype=np.float32)
    color = result[..., :3]

    if tone_map == "reinhard":
        color = tone_map_reinhard(color)
    elif tone_map == "exposure":
        color = tone_map_exposure(color, exposure)
    elif tone_map == "film":
        color = tone_map_film(color)
    elif tone_map != "none":
        raise ValueError(f"Unknown tone mapping method: {tone_map}")

    result[..., :3] = apply_gamma(color, gamma)
    return np.clip(result, 0.0, 1.0).astype(np.float32)
