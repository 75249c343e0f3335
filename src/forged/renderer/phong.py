"""Phong shading policy.

Per light the color accumulates three terms, each weighted by a cheap fake
sky occlusion ``occ = 0.5 + 0.5 * n.y``:

    ambient:  ambient * clamp(occ, 0, 1) * occ
    diffuse:  albedo * max(dot(n, l), 0) * intensity * occ
    specular: specular * max(dot(n, l), 0) * max(dot(h, n), 0)^64 * occ

where ``l`` is the unit direction to the light and ``h`` the Blinn half
vector between ``l`` and the direction back to the viewer.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import numpy.typing as npt

from forged.core.ray import dot, normalize

from .base import Renderer

if TYPE_CHECKING:
    from forged.core.integrator import RenderContext, SurfaceHits

SPECULAR_POWER = 64.0


class Phong(Renderer):
    """Ambient, diffuse and Blinn specular shading of every light."""

    name = "phong"

    def shade(
        self,
        ctx: RenderContext,
        hits: SurfaceHits,
        directions: npt.NDArray[np.float64],
        rng: np.random.Generator,
    ) -> npt.NDArray[np.float64]:
        n = hits.normals
        p = hits.positions
        albedo = hits.albedo()
        ambient = np.asarray(self.settings.ambient)
        specular = np.asarray(self.settings.specular)

        occ = (0.5 + 0.5 * n[:, 1])[:, None]
        amb = np.clip(occ, 0.0, 1.0)

        color = np.zeros((n.shape[0], 4))
        color[:, 3] = 1.0
        for light in ctx.scene.lights:
            l = normalize(light.position - p)
            dif = np.clip(dot(n, l), 0.0, 1.0)[:, None]
            h = normalize(l - directions)
            spe = np.power(np.clip(dot(h, n), 0.0, 1.0), SPECULAR_POWER)[:, None]

            color[:, :3] += ambient * amb * occ
            color[:, :3] += albedo * dif * light.intensity * occ
            color[:, :3] += specular * dif * spe * occ
        return color
