"""Renderer policy interface.

A renderer turns the primary rays of a tile into colors. It intersects them
through the RenderContext (scene or model buffer) and shades the hits;
pixels whose rays miss are filled with the background by the integrator.

Surfaces may carry a custom ``shader(hit) -> RGBA`` callback. Where one is
set it replaces the policy's shading for that hit.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, ClassVar

import numpy as np
import numpy.typing as npt

from forged.core.ray import HitRecord, Ray
from forged.scene.settings import RendererSettings

if TYPE_CHECKING:
    from forged.core.integrator import RenderContext, SurfaceHits

Shader = Callable[[HitRecord], npt.ArrayLike]


class Renderer(ABC):
    """Base class of the shading policies."""

    name: ClassVar[str] = ""

    def __init__(self, settings: RendererSettings | None = None) -> None:
        self.settings = settings or RendererSettings(renderer_type=self.name)

    @abstractmethod
    def shade(
        self,
        ctx: RenderContext,
        hits: SurfaceHits,
        directions: npt.NDArray[np.float64],
        rng: np.random.Generator,
    ) -> npt.NDArray[np.float64]:
        """Shade the rays of a batch; rows of rays that missed are ignored.

        Returns:
            RGBA colors of shape (N, 4).
        """

    def trace_batch(
        self,
        ctx: RenderContext,
        origins: npt.ArrayLike,
        directions: npt.ArrayLike,
        rng: np.random.Generator,
    ) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.bool_]]:
        """Intersect and shade a batch of rays.

        Returns:
            RGBA colors of shape (N, 4) and the hit mask of shape (N,).
        """
        o = np.asarray(origins, dtype=np.float64).reshape(-1, 3)
        d = np.asarray(directions, dtype=np.float64).reshape(-1, 3)
        hits = ctx.intersect(o, d)
        colors = np.zeros((o.shape[0], 4))
        if hits.hit.any():
            colors = self.shade(ctx, hits, d, rng)
            apply_shaders(hits, o, d, colors)
        return colors, hits.hit

    def trace(self, ctx: RenderContext, ray: Ray, rng: np.random.Generator) -> npt.NDArray[np.float64] | None:
        """Color of a single ray, or None if it misses."""
        colors, hit = self.trace_batch(ctx, ray.origin[None], ray.direction[None], rng)
        return colors[0] if hit[0] else None


def apply_shaders(
    hits: SurfaceHits,
    origins: npt.NDArray[np.float64],
    directions: npt.NDArray[np.float64],
    colors: npt.NDArray[np.float64],
) -> None:
    """Replace the colors of hits on surfaces with a custom shader, in place."""
    if not any(s is not None for s in hits.shaders):
        return
    for index in np.flatnonzero(hits.hit):
        shader = hits.shader(index)
        if shader is not None:
            record = hits.hit_record(index, Ray(origins[index], directions[index]))
            colors[index] = np.asarray(shader(record), dtype=np.float64)


def create_renderer(settings: RendererSettings) -> Renderer:
    """Create the renderer policy named by ``settings.renderer_type``.

    Raises:
        ValueError: If the renderer type is unknown.
    """
    from .pathtracer import PathTracer
    from .pbr import PBR
    from .phong import Phong

    renderers: dict[str, type[Renderer]] = {
        Phong.name: Phong,
        PBR.name: PBR,
        PathTracer.name: PathTracer,
    }
    cls = renderers.get(settings.renderer_type)
    if cls is None:
        raise ValueError(f"Unknown renderer type '{settings.renderer_type}'")
    return cls(settings)
