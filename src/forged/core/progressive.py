"""Progressive renderer for iterative pass accumulation.

This module provides a wrapper around the integrator that supports:
- Progressive rendering that refines over time
- Batch rendering (several passes per call)
- Progress callbacks and a generator interface for UI updates
- Easy reset and re-render functionality

Every pass renders the whole image through the tile scheduler and blends it
into the accumulation buffer with ``RenderBuffer.accum_from``. Passes are
seeded by their number, so the path tracer converges as passes are added.

Example:
    >>> from forged.core.progressive import ProgressiveRenderer
    >>> renderer = ProgressiveRenderer(ctx)
    >>> renderer.render(16)  # Accumulate 16 passes
    >>> image = renderer.get_image_numpy()
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Generator
from pathlib import Path

import numpy as np
import numpy.typing as npt
from PIL import Image as PILImage

from .integrator import RenderContext, render_tile
from .renderbuffer import RenderBuffer
from .tiles import Tile, TileScheduler

logger = logging.getLogger(__name__)

# Callback receives (current_passes, total_target_passes)
ProgressCallback = Callable[[int, int], None]


class ProgressiveRenderer:
    """A renderer that accumulates passes over time.

    Attributes:
        ctx: Render context.
        buffer: Accumulation buffer of the settings' size.
        scheduler: Tile scheduler used for every pass.
    """

    def __init__(self, ctx: RenderContext, scheduler: TileScheduler | None = None) -> None:
        self.ctx = ctx
        self.buffer = RenderBuffer(ctx.settings.width, ctx.settings.height)
        self.scheduler = scheduler or TileScheduler(ctx.settings.tile_size, cancel=ctx.cancel)
        if ctx.model is not None and not ctx.model.frozen:
            ctx.model.freeze()

    @property
    def width(self) -> int:
        return self.buffer.width

    @property
    def height(self) -> int:
        return self.buffer.height

    @property
    def sample_count(self) -> int:
        """Number of passes accumulated so far."""
        return self.buffer.frames

    def reset(self) -> None:
        """Clear the accumulation buffer for a fresh render."""
        self.buffer.clear()

    def _render_pass(self) -> None:
        iteration = self.buffer.frames + 1

        def tile_fn(tile: Tile) -> RenderBuffer:
            return render_tile(self.ctx, tile, iteration)

        self.scheduler.run(self.buffer, tile_fn, iteration)
        self.buffer.frames = iteration

    def render(
        self,
        num_passes: int = 1,
        batch_size: int = 1,
        callback: ProgressCallback | None = None,
    ) -> None:
        """Render passes with an optional progress callback.

        Can be called repeatedly to continue refining the image.

        Args:
            num_passes: Number of passes to add.
            batch_size: Passes rendered between callbacks.
            callback: Called after each batch with (current, target) passes.
        """
        for current, target in self.render_progressive(num_passes, batch_size):
            if callback is not None:
                callback(current, target)

    def render_progressive(
        self,
        num_passes: int = 1,
        batch_size: int = 1,
    ) -> Generator[tuple[int, int], None, None]:
        """Render passes, yielding progress after each batch.

        Yields:
            Tuple of (current_passes, target_passes).

        Example:
            >>> for current, target in renderer.render_progressive(64, batch_size=8):
            ...     print(f"Progress: {current}/{target} passes")
        """
        if num_passes <= 0:
            return

        target = self.sample_count + num_passes
        remaining = num_passes
        while remaining > 0:
            batch = min(batch_size, remaining)
            for _ in range(batch):
                self._render_pass()
            remaining -= batch
            logger.debug("Accumulated %d/%d passes", self.sample_count, target)
            yield self.sample_count, target

    def get_image_numpy(self, gamma: float = 1.0) -> npt.NDArray[np.float32]:
        """Get the color channels clamped to [0, 1], shape (height, width, 3).

        Args:
            gamma: Gamma correction value. Default 1.0 (linear).
        """
        image = np.clip(self.buffer.pixels[..., :3], 0.0, 1.0)
        if gamma != 1.0:
            image = np.power(image, 1.0 / gamma)
        return image.astype(np.float32)

    def get_image_uint8(self, gamma: float = 2.2) -> npt.NDArray[np.uint8]:
        """Get the image as an 8-bit RGB array with gamma correction."""
        return (self.get_image_numpy(gamma=gamma) * 255).astype(np.uint8)

    def save_image(self, filepath: str | Path, gamma: float = 2.2) -> None:
        """Save the image as an RGB file (format from the extension)."""
        PILImage.fromarray(self.get_image_uint8(gamma=gamma)).save(filepath)

    def __repr__(self) -> str:
        return f"ProgressiveRenderer(width={self.width}, height={self.height}, samples={self.sample_count})"
