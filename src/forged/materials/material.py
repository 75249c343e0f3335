"""Surface material description shared by every renderer policy.

A Material is plain data: scene construction (or the node graph) fills in
its fields, ``finalize()`` derives the anisotropic roughness axes, and the
renderers read it from hit records. Materials are copied into hits, never
shared mutably between them.

Example:
    >>> from forged.materials.material import Material
    >>> mat = Material(rgb=(0.8, 0.2, 0.2), roughness=0.0)
    >>> mat.finalize()
    >>> mat.roughness
    0.01
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum

import numpy as np
import numpy.typing as npt

from forged.core.ray import as_vec3


class MediumType(Enum):
    """Kind of participating medium inside a volumetric object."""

    NONE = "none"
    ABSORB = "absorb"
    SCATTER = "scatter"
    EMISSIVE = "emissive"


class AlphaMode(Enum):
    """How the material's opacity is interpreted."""

    OPAQUE = "opaque"
    BLEND = "blend"
    MASK = "mask"


@dataclass
class Medium:
    """A homogeneous participating medium.

    Attributes:
        medium_type: The kind of medium.
        density: Extinction density.
        color: Medium color.
        anisotropy: Henyey-Greenstein phase anisotropy, clamped to
            [-0.9, 0.9] by ``Material.finalize()``.
    """

    medium_type: MediumType = MediumType.NONE
    density: float = 0.0
    color: tuple[float, float, float] = (0.0, 0.0, 0.0)
    anisotropy: float = 0.0


def _srgb_to_linear(c: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    return np.where(c <= 0.04045, c / 12.92, np.power((c + 0.055) / 1.055, 2.4))


@dataclass
class Material:
    """Principled surface material.

    All colors are RGB triples. ``ax``/``ay`` and ``clearcoat_roughness`` are
    derived values written by ``finalize()``; do not set them directly.
    """

    rgb: tuple[float, float, float] = (0.5, 0.5, 0.5)
    emission: tuple[float, float, float] = (0.0, 0.0, 0.0)
    anisotropic: float = 0.0
    metallic: float = 0.0
    roughness: float = 0.5
    subsurface: float = 0.0
    specular_tint: float = 0.0
    sheen: float = 0.0
    sheen_tint: float = 0.0
    clearcoat: float = 0.0
    clearcoat_gloss: float = 0.0
    clearcoat_roughness: float = 0.0
    spec_trans: float = 0.0
    ior: float = 1.5
    opacity: float = 1.0
    alpha_mode: AlphaMode = AlphaMode.OPAQUE
    alpha_cutoff: float = 0.0
    ax: float = 0.0
    ay: float = 0.0
    medium: Medium = field(default_factory=Medium)

    def __post_init__(self) -> None:
        self.rgb = tuple(float(c) for c in as_vec3(self.rgb))
        self.emission = tuple(float(c) for c in as_vec3(self.emission))

    @property
    def albedo(self) -> npt.NDArray[np.float64]:
        """The surface color as a vector."""
        return np.array(self.rgb, dtype=np.float64)

    def albedo_linear(self) -> npt.NDArray[np.float64]:
        """Return the albedo converted from sRGB to linear space."""
        return _srgb_to_linear(self.albedo)

    def finalize(self) -> None:
        """Derive the values the renderers depend on.

        Must run once after all mutations and before shading:

        - roughness is clamped to at least 0.01,
        - clearcoat gloss is remapped to a roughness ``mix(0.1, 0.001, gloss)``,
        - the medium anisotropy is clamped to [-0.9, 0.9],
        - the anisotropic roughness axes ``ax``/``ay`` are computed.
        """
        self.roughness = max(self.roughness, 0.01)
        self.clearcoat_roughness = (1.0 - self.clearcoat_gloss) * 0.1 + 0.001 * self.clearcoat_gloss
        self.medium.anisotropy = min(max(self.medium.anisotropy, -0.9), 0.9)

        aspect = float(np.sqrt(1.0 - self.anisotropic * 0.9))
        self.ax = max(self.roughness / aspect, 0.001)
        self.ay = max(self.roughness * aspect, 0.001)

    def finalized(self) -> Material:
        """Return a finalized copy, leaving this material untouched."""
        mat = copy.deepcopy(self)
        mat.finalize()
        return mat
