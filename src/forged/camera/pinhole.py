"""Pinhole camera model for perspective projection ray generation.

The camera looks from ``origin`` toward ``center`` with a horizontal field of
view ``fov`` in degrees. It builds an orthonormal basis (u, v, w) with world
up (0, 1, 0):

- w: points from center toward origin (opposite view direction)
- u: points right in the image plane
- v: points up in the image plane

Rays pass through a virtual image plane at unit distance. Image coordinates
are normalized, ``uv = (0, 0)`` being the lower-left corner and ``(1, 1)``
the upper-right. A sub-pixel ``offset`` (in pixels) shifts the ray inside
its pixel for antialiasing.

Example:
    >>> from forged.camera.pinhole import Pinhole
    >>> camera = Pinhole(origin=(0.0, 1.0, 3.0), center=(0.0, 0.0, 0.0), fov=70.0)
    >>> ray = camera.create_ray((0.5, 0.5), (64, 64))
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np
import numpy.typing as npt

from forged.core.ray import Ray, as_vec3, normalize

WORLD_UP = np.array([0.0, 1.0, 0.0])


@dataclass
class Pinhole:
    """A pinhole (perspective) camera.

    Attributes:
        origin: Camera position in world space.
        center: Point the camera is looking at.
        fov: Field of view in degrees.
    """

    origin: npt.NDArray[np.float64] = field(default_factory=lambda: np.array([0.0, 1.0, 3.0]))
    center: npt.NDArray[np.float64] = field(default_factory=lambda: np.zeros(3))
    fov: float = 70.0

    def __post_init__(self) -> None:
        self.origin = as_vec3(self.origin)
        self.center = as_vec3(self.center)
        if not 0.0 < self.fov < 180.0:
            raise ValueError(f"Field of view must be in (0, 180) degrees, got {self.fov}")

    def basis(self) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """Return the camera basis ``(u, v, w)``."""
        w = normalize(self.origin - self.center)
        u = normalize(np.cross(WORLD_UP, w))
        v = np.cross(w, u)
        return u, v, w

    def _viewport(
        self, screen_size: tuple[float, float]
    ) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        width, height = (float(s) for s in screen_size)
        ratio = width / height
        half_width = math.tan(math.radians(self.fov) * 0.5)
        half_height = half_width / ratio

        u, v, w = self.basis()
        lower_left = self.origin - half_width * u - half_height * v - w
        horizontal = u * half_width * 2.0
        vertical = v * half_height * 2.0
        return lower_left, horizontal, vertical

    def create_rays(
        self,
        uv: npt.ArrayLike,
        screen_size: tuple[float, float],
        offset: npt.ArrayLike = (0.0, 0.0),
    ) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """Generate a batch of primary rays.

        Args:
            uv: Normalized image coordinates of shape (N, 2).
            screen_size: (width, height) of the image in pixels.
            offset: Sub-pixel offset in pixels, shape (2,) or (N, 2).

        Returns:
            Origins and normalized directions, each of shape (N, 3).
        """
        uv = np.asarray(uv, dtype=np.float64).reshape(-1, 2)
        offset = np.asarray(offset, dtype=np.float64)
        width, height = (float(s) for s in screen_size)
        lower_left, horizontal, vertical = self._viewport(screen_size)

        sx = offset[..., 0] / width + uv[:, 0]
        sy = offset[..., 1] / height + uv[:, 1]
        rd = (lower_left - self.origin) + horizontal * sx[:, None] + vertical * sy[:, None]

        origins = np.broadcast_to(self.origin, rd.shape).copy()
        return origins, normalize(rd)

    def create_ray(
        self,
        uv: npt.ArrayLike,
        screen_size: tuple[float, float],
        offset: npt.ArrayLike = (0.0, 0.0),
    ) -> Ray:
        """Generate the ray through normalized image coordinates ``uv``."""
        origins, directions = self.create_rays(np.asarray(uv, dtype=np.float64)[None], screen_size, offset)
        return Ray(origins[0], directions[0])
