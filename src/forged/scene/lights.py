"""Scene lights."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
import numpy.typing as npt

from forged.core.ray import as_vec3


@dataclass
class Light:
    """A point light with a spherical extent.

    Phong shading treats the light as a point at ``position``; the path
    tracer samples points on the sphere of ``radius`` around it.

    Attributes:
        position: World position.
        rgb: Light color.
        radius: Radius of the emitting sphere.
        intensity: Scale of the diffuse contribution.
    """

    position: npt.NDArray[np.float64] = field(default_factory=lambda: np.zeros(3))
    rgb: npt.NDArray[np.float64] = field(default_factory=lambda: np.ones(3))
    radius: float = 1.0
    intensity: float = 1.0

    def __post_init__(self) -> None:
        self.position = as_vec3(self.position)
        self.rgb = as_vec3(self.rgb)
        if self.radius < 0.0:
            raise ValueError(f"Light radius must be non-negative, got {self.radius}")

    def sample_points(self, rng: np.random.Generator, count: int) -> npt.NDArray[np.float64]:
        """Uniformly sample ``count`` points on the light's sphere."""
        v = rng.normal(size=(count, 3))
        norms = np.linalg.norm(v, axis=-1, keepdims=True)
        v = v / np.where(norms > 0.0, norms, 1.0)
        return self.position + v * self.radius
