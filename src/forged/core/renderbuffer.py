"""Float RGBA pixel storage with tile merging and 8-bit export.

The RenderBuffer is the destination of every render. Tiles are rendered into
small private RenderBuffers and merged into the destination either by copy
(``copy_from``) or by running-average accumulation (``accum_from``), which is
what progressive and path-traced renders use:

    new = old * (1 - 1/n) + sample * (1/n)

Pixels are stored as a NumPy array of shape (height, width, 4), row 0 being
the top image row.

Example:
    >>> from forged.core.renderbuffer import RenderBuffer
    >>> buffer = RenderBuffer(4, 4)
    >>> buffer.set(1, 2, (1.0, 0.5, 0.25, 1.0))
    >>> buffer.at(1, 2)
    (1.0, 0.5, 0.25, 1.0)
    >>> buffer.to_u8_vec()[:4]
    array([0, 0, 0, 0], dtype=uint8)
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import numpy.typing as npt
from PIL import Image as PILImage

# Exponent used by the gamma export (approximately 1/2.2)
GAMMA_CORRECTION = 0.4545

# Film curve coefficients (ACES fitted)
_FILM_A = 2.51
_FILM_B = 0.03
_FILM_C = 2.43
_FILM_D = 0.59
_FILM_E = 0.14


def _to_u8(values: npt.NDArray[np.floating]) -> npt.NDArray[np.uint8]:
    """Convert [0, 1] floats to bytes by truncation, saturating out-of-range values."""
    clipped = np.clip(np.nan_to_num(values, nan=0.0), 0.0, 1.0)
    return (clipped * 255.0).astype(np.uint8)


class RenderBuffer:
    """A buffer holding an array of float RGBA pixels.

    Attributes:
        width: Buffer width in pixels.
        height: Buffer height in pixels.
        pixels: Float array of shape (height, width, 4).
        frames: Number of frames accumulated into this buffer.
        file_path: Optional destination for checkpoints written during a render.
    """

    def __init__(self, width: int, height: int, file_path: str | Path | None = None) -> None:
        if width < 0 or height < 0:
            raise ValueError(f"Buffer size must be non-negative, got {width}x{height}")
        self.width = width
        self.height = height
        self.pixels: npt.NDArray[np.float32] = np.zeros((height, width, 4), dtype=np.float32)
        self.frames = 0
        self.file_path = Path(file_path) if file_path is not None else None

    def at(self, x: int, y: int) -> tuple[float, float, float, float]:
        """Get the color of a pixel."""
        r, g, b, a = self.pixels[y, x]
        return float(r), float(g), float(b), float(a)

    def set(self, x: int, y: int, color: npt.ArrayLike) -> None:
        """Set the color of a pixel."""
        self.pixels[y, x] = color

    def clear(self) -> None:
        """Reset all pixels to zero and the frame counter."""
        self.pixels.fill(0.0)
        self.frames = 0

    def _overlap(self, x: int, y: int, other: RenderBuffer) -> tuple[slice, slice, int, int]:
        # Region of `other` placed at (x, y), clipped to this buffer.
        w = max(0, min(other.width, self.width - x))
        h = max(0, min(other.height, self.height - y))
        return slice(y, y + h), slice(x, x + w), w, h

    def copy_from(self, x: int, y: int, other: RenderBuffer) -> None:
        """Copy the pixels of another buffer into this buffer at (x, y).

        Pixels of ``other`` that fall outside this buffer are dropped.
        """
        rows, cols, w, h = self._overlap(x, y, other)
        self.pixels[rows, cols] = other.pixels[:h, :w]

    def accum_from(self, x: int, y: int, other: RenderBuffer, iteration: int) -> None:
        """Blend the pixels of another buffer into this buffer at (x, y).

        Uses the running average ``old * (1 - 1/n) + new * (1/n)`` with
        ``n = iteration``, applied to all four channels. Iteration 1 is a copy.

        Raises:
            ValueError: If iteration is smaller than 1.
        """
        if iteration < 1:
            raise ValueError(f"Accumulation iteration must be >= 1, got {iteration}")
        rows, cols, w, h = self._overlap(x, y, other)
        factor = 1.0 / iteration
        old = self.pixels[rows, cols]
        self.pixels[rows, cols] = old * (1.0 - factor) + other.pixels[:h, :w] * factor

    def to_u8_vec(self) -> npt.NDArray[np.uint8]:
        """Convert the frame to a flat RGBA byte array (``c * 255``)."""
        return _to_u8(self.pixels).reshape(-1)

    def to_u8_vec_gamma(self) -> npt.NDArray[np.uint8]:
        """Convert the frame to a flat RGBA byte array, gamma correcting color.

        Color channels are raised to the power 0.4545; alpha is exported as is.
        """
        out = self.pixels.copy()
        out[..., :3] = np.power(np.maximum(out[..., :3], 0.0), GAMMA_CORRECTION)
        return _to_u8(out).reshape(-1)

    def to_image(self, gamma: bool = False) -> PILImage.Image:
        """Convert the buffer to an RGBA Pillow image."""
        data = self.to_u8_vec_gamma() if gamma else self.to_u8_vec()
        return PILImage.fromarray(data.reshape(self.height, self.width, 4))

    # =========================================================================
    # File Output
    # =========================================================================

    def save(self, path: str | Path) -> None:
        """Save the buffer as an RGBA PNG without any color conversion."""
        self.to_image(gamma=False).save(path)

    def save_gamma(self, path: str | Path) -> None:
        """Save the buffer as an RGBA PNG with the 0.4545 gamma export."""
        self.to_image(gamma=True).save(path)

    def save_srgb(self, path: str | Path) -> None:
        """Save the color channels as an RGB PNG with a 1/2.2 gamma curve."""
        rgb = np.power(np.maximum(self.pixels[..., :3], 0.0), 1.0 / 2.2)
        PILImage.fromarray(_to_u8(rgb)).save(path)

    def save_film(self, path: str | Path) -> None:
        """Save the color channels as an RGB PNG through a filmic tone curve."""
        x = np.maximum(self.pixels[..., :3], 0.0)
        mapped = (x * (_FILM_A * x + _FILM_B)) / (x * (_FILM_C * x + _FILM_D) + _FILM_E)
        PILImage.fromarray(_to_u8(mapped)).save(path)

    def snapshot(self) -> npt.NDArray[np.float32]:
        """Return a copy of the pixel data."""
        return self.pixels.copy()

    @staticmethod
    def write_snapshot(pixels: npt.NDArray[np.float32], path: str | Path) -> None:
        """Write pixel data captured with ``snapshot()`` as an RGBA PNG."""
        PILImage.fromarray(_to_u8(pixels)).save(path)

    def __repr__(self) -> str:
        return f"RenderBuffer(width={self.width}, height={self.height}, frames={self.frames})"
