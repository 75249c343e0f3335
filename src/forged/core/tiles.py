"""Tile generation and the tile-parallel render scheduler.

An image is split into fixed-size tiles in row-major order (top to bottom,
left to right). Tiles on the right and bottom edges may extend past the
image; the pixels outside it are dropped when the tile is rendered and
merged, not when the tiles are generated.

The scheduler pushes all tiles onto a shared stack and starts one worker per
CPU core. Each worker pops a tile under the stack lock, renders it into a
private tile-sized RenderBuffer and merges the result into the destination
under the buffer lock. Optionally the whole destination is written to its
``file_path`` after each merge; the pixels are copied out under the lock and
written to disk outside of it, and a snapshot older than the one already on
disk is dropped.

The first failing tile stops all workers from taking new tiles and is
reported as a TileRenderError once every worker has joined. A cancel event
is polled before each tile.

Example:
    >>> from forged.core.renderbuffer import RenderBuffer
    >>> from forged.core.tiles import TileScheduler
    >>> def render_tile(tile):
    ...     out = RenderBuffer(tile.width, tile.height)
    ...     out.pixels[...] = 1.0
    ...     return out
    >>> buffer = RenderBuffer(100, 60)
    >>> TileScheduler(tile_size=(32, 32)).run(buffer, render_tile)
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import numpy.typing as npt

from .renderbuffer import RenderBuffer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tile:
    """A rectangular region of the image, in pixels.

    Attributes:
        x: Left edge.
        y: Top edge.
        width: Tile width.
        height: Tile height.
    """

    x: int
    y: int
    width: int
    height: int

    def pixels(self, image_width: int, image_height: int) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.int64]]:
        """Image coordinates of the tile's pixels that lie inside the image.

        Returns:
            Arrays ``(xs, ys)`` in row-major order within the tile.
        """
        xs = np.arange(self.x, min(self.x + self.width, image_width))
        ys = np.arange(self.y, min(self.y + self.height, image_height))
        grid_y, grid_x = np.meshgrid(ys, xs, indexing="ij")
        return grid_x.reshape(-1), grid_y.reshape(-1)


class TileRenderError(RuntimeError):
    """Rendering a tile failed; the render is incomplete.

    Attributes:
        tile: The tile whose rendering raised.
    """

    def __init__(self, message: str, tile: Tile) -> None:
        super().__init__(message)
        self.tile = tile


class RenderCancelled(RuntimeError):
    """The render was cancelled before every tile was rendered."""


def generate_tiles(width: int, height: int, tile_width: int, tile_height: int) -> list[Tile]:
    """Cover a ``width`` x ``height`` image with fixed-size tiles.

    Raises:
        ValueError: If the tile size is not positive.
    """
    if tile_width <= 0 or tile_height <= 0:
        raise ValueError(f"Tile size must be positive, got {tile_width}x{tile_height}")
    return [
        Tile(x, y, tile_width, tile_height)
        for y in range(0, height, tile_height)
        for x in range(0, width, tile_width)
    ]


RenderTileFn = Callable[[Tile], RenderBuffer]


class CheckpointWriter:
    """Writes progress snapshots of one render to disk in merge order.

    ``take`` is called under the buffer lock, so its generation numbers follow
    the order in which tiles were merged. ``write`` runs outside that lock; a
    snapshot older than the last one written is dropped.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._generation = 0
        self._written = 0

    def take(self, buffer: RenderBuffer) -> tuple[int, npt.NDArray[np.float32]]:
        self._generation += 1
        return self._generation, buffer.snapshot()

    def write(self, generation: int, snapshot: npt.NDArray[np.float32]) -> bool:
        """Write ``snapshot`` unless a newer one is already on disk.

        Returns:
            True if the snapshot was written.
        """
        with self._lock:
            if generation <= self._written:
                return False
            try:
                RenderBuffer.write_snapshot(snapshot, self.path)
            except OSError as e:
                logger.warning("Could not write checkpoint to %s: %s", self.path, e)
                return False
            self._written = generation
            return True


class TileScheduler:
    """Renders an image tile by tile on a thread pool.

    A scheduler holds no per-render state between calls to ``run``; a new
    pool is created for every render.

    Attributes:
        tile_size: (width, height) of a tile.
        workers: Number of worker threads.
        cancel: Optional event; once set, workers stop taking tiles.
        checkpoint: Write the destination to its ``file_path`` after each merge.
    """

    def __init__(
        self,
        tile_size: tuple[int, int] = (80, 80),
        workers: int | None = None,
        cancel: threading.Event | None = None,
        checkpoint: bool = False,
    ) -> None:
        if tile_size[0] <= 0 or tile_size[1] <= 0:
            raise ValueError(f"Tile size must be positive, got {tile_size[0]}x{tile_size[1]}")
        self.tile_size = tile_size
        self.workers = workers or os.cpu_count() or 1
        self.cancel = cancel
        self.checkpoint = checkpoint

    def run(self, buffer: RenderBuffer, render_tile: RenderTileFn, iteration: int | None = None) -> None:
        """Render every tile of ``buffer`` and merge it in.

        Args:
            buffer: Destination buffer.
            render_tile: Renders one tile into a new buffer of the tile's size.
            iteration: None to copy tiles into the buffer, otherwise the
                1-based pass number used to accumulate them.

        Raises:
            TileRenderError: If rendering any tile raised.
            RenderCancelled: If the cancel event was set before all tiles
                were rendered.
        """
        tiles = generate_tiles(buffer.width, buffer.height, *self.tile_size)
        queue_lock = threading.Lock()
        buffer_lock = threading.Lock()
        failed = threading.Event()
        failures: list[tuple[Tile, BaseException]] = []
        checkpoints = CheckpointWriter(buffer.file_path) if self.checkpoint and buffer.file_path is not None else None

        def stopped() -> bool:
            return failed.is_set() or (self.cancel is not None and self.cancel.is_set())

        def worker() -> None:
            while not stopped():
                with queue_lock:
                    if not tiles:
                        return
                    tile = tiles.pop()

                try:
                    result = render_tile(tile)
                except Exception as e:
                    with queue_lock:
                        failures.append((tile, e))
                    failed.set()
                    return

                with buffer_lock:
                    if iteration is None:
                        buffer.copy_from(tile.x, tile.y, result)
                    else:
                        buffer.accum_from(tile.x, tile.y, result, iteration)
                    snapshot = checkpoints.take(buffer) if checkpoints is not None else None

                if snapshot is not None:
                    checkpoints.write(*snapshot)

        workers = min(self.workers, len(tiles)) or 1
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(worker) for _ in range(workers)]
        for future in futures:
            future.result()

        if failures:
            tile, error = failures[0]
            raise TileRenderError(f"Rendering tile at ({tile.x}, {tile.y}) failed: {error}", tile) from error
        if tiles:
            raise RenderCancelled(f"Render cancelled with {len(tiles)} tile(s) left")
