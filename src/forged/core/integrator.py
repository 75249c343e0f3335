"""Render context and the per-pixel sampling loop.

A render needs a camera, settings and something to intersect: either the
scene (its analytic objects and SDFs are marched directly) or a populated
ModelBuffer (rays are marched through the cached voxel field and materials
are looked up through the material source). All of it travels in one
RenderContext; there is no global render state.

For every pixel of a tile the integrator shoots an ``antialias`` x
``antialias`` grid of camera rays, lets the renderer policy shade the rays
that hit, fills the misses with the background and averages the samples.
Whole tiles are processed as arrays of rays.

Normalized image coordinates follow the camera convention, v growing upward:
pixel (x, y) of a buffer whose row 0 is the top maps to
``uv = (x / w, (h - 1 - y) / h)``.

Example:
    >>> from forged.camera import Pinhole
    >>> from forged.core.integrator import RenderContext, render
    >>> from forged.core.renderbuffer import RenderBuffer
    >>> ctx = RenderContext(settings, Pinhole(), scene=scene)
    >>> buffer = render(ctx, RenderBuffer(settings.width, settings.height))
    >>> buffer.save_gamma("out.png")
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, NamedTuple

import numpy as np
import numpy.typing as npt

from forged.camera.pinhole import Pinhole
from forged.materials.material import Material
from forged.nodes.graph import Graph, GraphError
from forged.scene.scene import Scene
from forged.scene.settings import Settings
from forged.volume.modelbuffer import ModelBuffer

from .ray import HitRecord, Ray, length
from .renderbuffer import RenderBuffer
from .tiles import Tile, TileScheduler

if TYPE_CHECKING:
    from forged.renderer.base import Renderer, Shader

logger = logging.getLogger(__name__)

# Offset of secondary ray origins along the normal to avoid self-intersection
SECONDARY_RAY_EPSILON = 1e-3


class SurfaceHits(NamedTuple):
    """Surface hits of a batch of rays, whatever was intersected.

    Materials are stored once in ``materials``; ``material_index`` maps each
    ray to its entry. Rays that missed point at a default material.

    Attributes:
        hit: Hit mask, shape (N,).
        distance: Distance along the ray, ``+inf`` for misses.
        positions: Hit positions, shape (N, 3).
        normals: Outward normals, shape (N, 3).
        material_index: Index into ``materials`` per ray.
        materials: Finalized materials.
        shaders: Custom shading callbacks parallel to ``materials``.
    """

    hit: npt.NDArray[np.bool_]
    distance: npt.NDArray[np.float64]
    positions: npt.NDArray[np.float64]
    normals: npt.NDArray[np.float64]
    material_index: npt.NDArray[np.int64]
    materials: list[Material]
    shaders: list[Shader | None]

    def _gather(self, values: list[npt.ArrayLike]) -> npt.NDArray[np.float64]:
        return np.asarray(values, dtype=np.float64)[self.material_index]

    def albedo(self) -> npt.NDArray[np.float64]:
        """Albedo per ray, shape (N, 3)."""
        return self._gather([m.rgb for m in self.materials])

    def emission(self) -> npt.NDArray[np.float64]:
        """Emission per ray, shape (N, 3)."""
        return self._gather([m.emission for m in self.materials])

    def shader(self, index: int) -> Shader | None:
        return self.shaders[self.material_index[index]]

    def hit_record(self, index: int, ray: Ray) -> HitRecord:
        """HitRecord of ray ``index``."""
        slot = self.material_index[index]
        return HitRecord(
            distance=float(self.distance[index]),
            position=self.positions[index].copy(),
            normal=self.normals[index].copy(),
            material=self.materials[slot],
            ray=ray,
            shader=self.shaders[slot],
        )


@dataclass
class RenderContext:
    """Everything a render reads.

    The context is shared read-only by all render workers.

    Attributes:
        settings: Image, marching and renderer settings.
        camera: Camera producing the primary rays.
        scene: Scene with objects and lights. Lights are always taken from here.
        model: Optional populated model buffer; when given, rays are marched
            through it instead of through the scene.
        graph: Optional node graph; when given it supplies the materials of
            model buffer hits.
        renderer: Shading policy; created from ``settings.renderer`` if None.
        cancel: Optional event that cancels the render between tiles.
    """

    settings: Settings
    camera: Pinhole = field(default_factory=Pinhole)
    scene: Scene = field(default_factory=Scene)
    model: ModelBuffer | None = None
    graph: Graph | None = None
    renderer: Renderer | None = None
    cancel: threading.Event | None = None

    def __post_init__(self) -> None:
        if self.renderer is None:
            from forged.renderer.base import create_renderer

            self.renderer = create_renderer(self.settings.renderer)

    @property
    def surface_offset(self) -> float:
        """Distance secondary rays start off a surface, along its normal."""
        if self.model is not None:
            return float(2.0 * np.max(self.model.voxel_size))
        return SECONDARY_RAY_EPSILON

    @property
    def material_source(self) -> Graph | Scene:
        """Where model buffer material ids are resolved."""
        return self.graph if self.graph is not None else self.scene

    def intersect(
        self, origins: npt.ArrayLike, directions: npt.ArrayLike
    ) -> SurfaceHits:
        """Intersect a batch of rays with the model buffer, or the scene."""
        o = np.asarray(origins, dtype=np.float64).reshape(-1, 3)
        d = np.asarray(directions, dtype=np.float64).reshape(-1, 3)

        if self.model is not None:
            hits = self.model.raymarch_batch(o, d)
            ids, index = np.unique(hits.materials, return_inverse=True)
            source = self.material_source
            materials = [source.evaluate_material(int(i)) for i in ids]
            positions = hits.positions.astype(np.float64)
            distance = np.where(hits.hit, length(positions - o), np.inf)
            return SurfaceHits(
                hits.hit,
                distance,
                positions,
                hits.normals.astype(np.float64),
                index.reshape(-1),
                materials,
                [None] * len(materials),
            )

        hits = self.scene.raymarch_batch(o, d, self.settings)
        surfaces = self.scene.surfaces
        fallback = len(surfaces)
        materials = [self.scene.material_of(i) for i in range(fallback)] + [Material().finalized()]
        shaders = [s.shader for s in surfaces] + [None]
        index = np.where(hits.owners >= 0, hits.owners, fallback)
        return SurfaceHits(hits.hit, hits.distance, hits.positions, hits.normals, index, materials, shaders)

    def occluded(
        self,
        origins: npt.ArrayLike,
        directions: npt.ArrayLike,
        max_distance: npt.ArrayLike | None = None,
    ) -> npt.NDArray[np.bool_]:
        """Shadow test for a batch of rays; True where the ray is blocked."""
        if self.model is not None:
            hits = self.model.raymarch_batch(origins, directions)
            blocked = hits.hit
            if max_distance is not None:
                o = np.asarray(origins, dtype=np.float64).reshape(-1, 3)
                blocked = blocked & (length(hits.positions - o) < max_distance)
            return blocked
        return self.scene.shadow_march_batch(origins, directions, self.settings, max_distance)


# =============================================================================
# Sampling Loop
# =============================================================================


def pixel_uv(
    xs: npt.NDArray[np.int64], ys: npt.NDArray[np.int64], width: int, height: int
) -> npt.NDArray[np.float64]:
    """Normalized image coordinates of pixels, shape (N, 2)."""
    return np.stack([xs / width, (height - 1 - ys) / height], axis=-1).astype(np.float64)


def background(settings: Settings, uv: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """Background RGBA for rays that miss, shape (N, 4)."""
    n = uv.shape[0]
    if settings.background_fn is not None:
        rgb = np.broadcast_to(np.asarray(settings.background_fn(uv), dtype=np.float64), (n, 3))
    else:
        rgb = np.broadcast_to(np.asarray(settings.background, dtype=np.float64), (n, 3))
    return np.concatenate([rgb, np.full((n, 1), settings.opacity)], axis=-1)


def sample_offsets(antialias: int) -> list[tuple[float, float]]:
    """Sub-pixel offsets of the antialias grid, in pixels."""
    return [(m / antialias - 0.5, n / antialias - 0.5) for m in range(antialias) for n in range(antialias)]


def render_tile(ctx: RenderContext, tile: Tile, iteration: int = 1) -> RenderBuffer:
    """Render one tile into a new tile-sized buffer.

    Pixels of the tile outside the image are left at zero.

    Args:
        ctx: Render context.
        tile: Tile to render.
        iteration: 1-based pass number; seeds the tile's random generator.

    Returns:
        The tile's pixels.
    """
    settings = ctx.settings
    out = RenderBuffer(tile.width, tile.height)
    xs, ys = tile.pixels(settings.width, settings.height)
    if xs.size == 0:
        return out

    rng = np.random.default_rng([settings.renderer.seed, iteration, tile.x, tile.y])
    uv = pixel_uv(xs, ys, settings.width, settings.height)
    screen = (settings.width, settings.height)
    bg = background(settings, uv)

    offsets = sample_offsets(settings.antialias)
    total = np.zeros((xs.size, 4))
    for offset in offsets:
        origins, directions = ctx.camera.create_rays(uv, screen, offset)
        colors, hit = ctx.renderer.trace_batch(ctx, origins, directions, rng)
        total += np.where(hit[:, None], colors, bg)
    total /= len(offsets)

    out.pixels[ys - tile.y, xs - tile.x] = total
    return out


def render(ctx: RenderContext, buffer: RenderBuffer, scheduler: TileScheduler | None = None) -> RenderBuffer:
    """Render the context into ``buffer``.

    A model buffer in the context is frozen first. With more than one
    iteration each pass is blended into the buffer with ``accum_from``.

    Raises:
        ValueError: If the buffer size does not match the settings.
        TileRenderError: If rendering a tile failed.
        RenderCancelled: If the context's cancel event was set.
    """
    settings = ctx.settings
    if (buffer.width, buffer.height) != (settings.width, settings.height):
        raise ValueError(
            f"Buffer is {buffer.width}x{buffer.height} but settings ask for {settings.width}x{settings.height}"
        )
    if ctx.model is not None and not ctx.model.frozen:
        ctx.model.freeze()

    scheduler = scheduler or TileScheduler(settings.tile_size, cancel=ctx.cancel)
    iterations = settings.renderer.iterations
    logger.info(
        "Rendering %dx%d with the %s renderer, %d iteration(s)",
        settings.width,
        settings.height,
        settings.renderer.renderer_type,
        iterations,
    )

    start = time.perf_counter()
    for iteration in range(1, iterations + 1):

        def tile_fn(tile: Tile, iteration: int = iteration) -> RenderBuffer:
            return render_tile(ctx, tile, iteration)

        scheduler.run(buffer, tile_fn, iteration if iterations > 1 else None)
        buffer.frames += 1

    logger.info("Rendered in %.1f ms", (time.perf_counter() - start) * 1000.0)
    return buffer


def render_graph(
    graph: Graph,
    buffer: RenderBuffer,
    scheduler: TileScheduler | None = None,
) -> RenderBuffer:
    """Render a node graph as a procedural image.

    Every pixel is the output of the graph's Output node, executed with
    ``uv = (x / w, (h - y) / h)``.

    Raises:
        GraphError: If the graph has no Output node.
    """
    if graph.output_index is None:
        raise GraphError("Node graph has no Output node")

    size = (buffer.width, buffer.height)

    def tile_fn(tile: Tile) -> RenderBuffer:
        out = RenderBuffer(tile.width, tile.height)
        xs, ys = tile.pixels(*size)
        if xs.size:
            out.pixels[ys - tile.y, xs - tile.x] = graph.execute_batch(xs, ys, size)
        return out

    scheduler = scheduler or TileScheduler()
    start = time.perf_counter()
    scheduler.run(buffer, tile_fn)
    buffer.frames += 1
    logger.info("Rendered node graph in %.1f ms", (time.perf_counter() - start) * 1000.0)
    return buffer
