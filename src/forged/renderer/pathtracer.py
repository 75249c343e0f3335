"""Spherical-light path tracer.

Each pass traces one path per sample ray. At every surface vertex the path
collects the surface emission plus Lambert direct lighting from all lights:
one point is sampled uniformly on every light's sphere and a shadow ray is
marched toward it. With ``depth > 1`` the path continues along a
cosine-weighted diffuse bounce; the throughput is multiplied by the albedo
(the Lambert BRDF over the cosine pdf).

A single pass is noisy. The integrator blends ``iterations`` passes with
``RenderBuffer.accum_from``; every tile of every pass draws from its own
seeded generator, so renders are reproducible.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import numpy.typing as npt

from forged.core.ray import cross, dot, length, normalize

from .base import Renderer

if TYPE_CHECKING:
    from forged.core.integrator import RenderContext, SurfaceHits


def build_onb(normal: npt.NDArray[np.float64]) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """Tangent and bitangent completing a stack of normals to orthonormal bases."""
    a = np.where(np.abs(normal[:, :1]) > 0.9, (0.0, 1.0, 0.0), (1.0, 0.0, 0.0))
    tangent = normalize(cross(a, normal))
    bitangent = cross(normal, tangent)
    return tangent, bitangent


def sample_cosine_hemisphere(normal: npt.NDArray[np.float64], rng: np.random.Generator) -> npt.NDArray[np.float64]:
    """Cosine-weighted directions around a stack of normals, shape (N, 3)."""
    n = normal.shape[0]
    r1 = rng.random(n)
    r2 = rng.random(n)
    phi = 2.0 * np.pi * r1
    sqrt_r2 = np.sqrt(r2)
    x = (np.cos(phi) * sqrt_r2)[:, None]
    y = (np.sin(phi) * sqrt_r2)[:, None]
    z = np.sqrt(1.0 - r2)[:, None]
    tangent, bitangent = build_onb(normal)
    return normalize(x * tangent + y * bitangent + z * normal)


class PathTracer(Renderer):
    """Direct lighting from spherical lights with optional diffuse bounces."""

    name = "pathtracer"

    def direct_light(
        self, ctx: RenderContext, hits: SurfaceHits, rng: np.random.Generator
    ) -> npt.NDArray[np.float64]:
        """Lambert direct lighting at the hits of a batch, shape (N, 3)."""
        p = hits.positions
        n = hits.normals
        albedo = hits.albedo()
        radiance = np.zeros_like(p)
        origins = p + n * ctx.surface_offset

        for light in ctx.scene.lights:
            targets = light.sample_points(rng, p.shape[0])
            to_light = targets - origins
            distance = length(to_light)
            direction = normalize(to_light)
            cos_theta = np.clip(dot(n, direction), 0.0, None)

            lit = cos_theta > 0.0
            if lit.any():
                blocked = ctx.occluded(origins[lit], direction[lit], distance[lit])
                lit[np.flatnonzero(lit)[blocked]] = False
            radiance += albedo * light.rgb * (light.intensity * cos_theta * lit)[:, None]
        return radiance

    def shade(
        self,
        ctx: RenderContext,
        hits: SurfaceHits,
        directions: npt.NDArray[np.float64],
        rng: np.random.Generator,
    ) -> npt.NDArray[np.float64]:
        count = hits.hit.shape[0]
        radiance = np.zeros((count, 3))
        throughput = np.ones((count, 3))

        rays = np.flatnonzero(hits.hit)
        vertex = _select(hits, hits.hit)
        for bounce in range(self.settings.depth):
            radiance[rays] += throughput[rays] * (vertex.emission() + self.direct_light(ctx, vertex, rng))
            if bounce + 1 == self.settings.depth:
                break

            throughput[rays] *= vertex.albedo()
            bounce_dirs = sample_cosine_hemisphere(vertex.normals, rng)
            following = ctx.intersect(vertex.positions + vertex.normals * ctx.surface_offset, bounce_dirs)
            rays = rays[following.hit]
            if rays.size == 0:
                break
            vertex = _select(following, following.hit)

        color = np.ones((count, 4))
        color[:, :3] = radiance
        return color


def _select(hits: SurfaceHits, mask: npt.NDArray[np.bool_]) -> SurfaceHits:
    return hits._replace(
        hit=hits.hit[mask],
        distance=hits.distance[mask],
        positions=hits.positions[mask],
        normals=hits.normals[mask],
        material_index=hits.material_index[mask],
    )
