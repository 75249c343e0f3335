"""Minimal PBR policy: the albedo of the material at the hit.

The policy is meant for model buffer renders. The material id stored in the
hit voxel is resolved through the context's material source (the node graph
if there is one, else the scene) and its albedo is returned as an opaque
color. There is no lighting and no BSDF.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import numpy.typing as npt

from .base import Renderer

if TYPE_CHECKING:
    from forged.core.integrator import RenderContext, SurfaceHits


class PBR(Renderer):
    """Opaque material albedo."""

    name = "pbr"

    def shade(
        self,
        ctx: RenderContext,
        hits: SurfaceHits,
        directions: npt.NDArray[np.float64],
        rng: np.random.Generator,
    ) -> npt.NDArray[np.float64]:
        color = np.ones((hits.hit.shape[0], 4))
        color[:, :3] = hits.albedo()
        return color
