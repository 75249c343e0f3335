"""Ray data structure and vector utilities for SDF ray marching.

This module provides the fundamental Ray dataclass, the axis-aligned
bounding box used to clip rays against voxel volumes, and the small set of
vector helpers shared by the SDF algebra, the camera and the renderers.

All vectors are NumPy arrays of shape ``(3,)`` (``float64``). The helpers
also accept stacked vectors of shape ``(..., 3)`` and operate along the
last axis, which lets the same code serve one ray and a whole tile.

Example:
    >>> import numpy as np
    >>> from forged.core.ray import Aabb, Ray, vec3
    >>> ray = Ray(vec3(0.0, 0.0, 5.0), vec3(0.0, 0.0, -1.0))
    >>> ray.at(2.0)
    array([0., 0., 3.])
    >>> ray.intersect_aabb(Aabb(vec3(-1, -1, -1), vec3(1, 1, 1)))
    (4.0, 6.0)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
import numpy.typing as npt

if TYPE_CHECKING:
    from forged.materials.material import Material
    from forged.renderer.base import Shader

Vec3 = npt.NDArray[np.float64]


def vec3(x: float, y: float, z: float) -> Vec3:
    """Create a 3D vector.

    Args:
        x: X component.
        y: Y component.
        z: Z component.

    Returns:
        A ``float64`` array of shape (3,).
    """
    return np.array((x, y, z), dtype=np.float64)


def as_vec3(value: npt.ArrayLike) -> Vec3:
    """Convert a sequence (tuple, list or array) to a 3D vector."""
    v = np.asarray(value, dtype=np.float64)
    if v.shape != (3,):
        raise ValueError(f"Expected a 3-component vector, got shape {v.shape}")
    return v.copy()


# =============================================================================
# Vector Utility Functions
# =============================================================================


def dot(a: npt.ArrayLike, b: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Compute the dot product along the last axis.

    Args:
        a: First vector (or stack of vectors).
        b: Second vector (or stack of vectors).

    Returns:
        The dot product a . b, a scalar for single vectors.
    """
    return np.sum(np.multiply(a, b), axis=-1)


def length(v: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Compute the Euclidean length along the last axis."""
    return np.sqrt(dot(v, v))


def normalize(v: npt.ArrayLike) -> Vec3:
    """Normalize a vector (or stack of vectors) to unit length.

    Zero-length vectors are returned unchanged (as zero vectors) instead of
    producing NaN.

    Args:
        v: The input vector.

    Returns:
        A unit vector in the same direction as v, or a zero vector.
    """
    v = np.asarray(v, dtype=np.float64)
    n = length(v)
    n = np.where(n > 0.0, n, 1.0)
    return v / np.expand_dims(n, -1)


def cross(a: npt.ArrayLike, b: npt.ArrayLike) -> Vec3:
    """Compute the cross product of two vectors."""
    return np.cross(a, b)


def mix(a: npt.ArrayLike, b: npt.ArrayLike, t: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Linear interpolation ``a*(1-t) + b*t`` (GLSL ``mix``)."""
    return np.multiply(a, np.subtract(1.0, t)) + np.multiply(b, t)


# =============================================================================
# Bounding Boxes and Rays
# =============================================================================


@dataclass(frozen=True)
class Aabb:
    """An axis-aligned bounding box.

    Attributes:
        min: The minimum corner.
        max: The maximum corner.
    """

    min: Vec3
    max: Vec3

    def center(self) -> Vec3:
        return (self.min + self.max) * 0.5

    def contains(self, point: npt.ArrayLike) -> bool:
        p = np.asarray(point, dtype=np.float64)
        return bool(np.all(p >= self.min) and np.all(p <= self.max))


@dataclass
class Ray:
    """A ray with an origin point and direction vector.

    The inverse direction and its sign bits are cached on construction for
    the slab test. Components of the direction may be zero; the inverse is
    then infinite, which the slab test handles.

    Attributes:
        origin: The starting point of the ray.
        direction: The direction of the ray. Should be normalized for
            marching, but this is not enforced.
    """

    origin: Vec3
    direction: Vec3
    inv_direction: Vec3 = field(init=False, repr=False)
    sign: tuple[int, int, int] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.origin = np.asarray(self.origin, dtype=np.float64)
        self.direction = np.asarray(self.direction, dtype=np.float64)
        with np.errstate(divide="ignore"):
            self.inv_direction = np.divide(1.0, self.direction)
        self.sign = tuple(int(c < 0.0) for c in self.direction)

    def at(self, t: float) -> Vec3:
        """Return the point ``origin + t * direction``."""
        return self.origin + t * self.direction

    def advanced(self, t: float) -> Ray:
        """Return a new ray whose origin is moved ``t`` units along the ray."""
        return Ray(self.at(t), self.direction)

    def intersect_aabb(self, aabb: Aabb) -> tuple[float, float] | None:
        """Intersect this ray with an axis-aligned box (slab method).

        Args:
            aabb: The box to clip against.

        Returns:
            ``(t_min, t_max)`` of the overlap if the ray hits the box in front
            of (or around) its origin, otherwise None. ``t_min`` may be
            negative when the origin is inside the box.
        """
        bounds = (aabb.min, aabb.max)
        t_near = []
        t_far = []
        with np.errstate(invalid="ignore"):
            for axis in range(3):
                s = self.sign[axis]
                inv = self.inv_direction[axis]
                lo = (bounds[s][axis] - self.origin[axis]) * inv
                hi = (bounds[1 - s][axis] - self.origin[axis]) * inv
                t_near.append(lo)
                t_far.append(hi)

        # fmax/fmin ignore NaN from 0 * inf on a slab plane
        t_min = float(np.fmax(np.fmax(t_near[0], t_near[1]), t_near[2]))
        t_max = float(np.fmin(np.fmin(t_far[0], t_far[1]), t_far[2]))

        if t_max >= max(t_min, 0.0):
            return t_min, t_max
        return None

    def intersect_sphere(self, center: npt.ArrayLike, radius: float) -> float | None:
        """Intersect the ray with a sphere.

        Args:
            center: The sphere center.
            radius: The sphere radius.

        Returns:
            The distance along the ray to the first intersection further than
            ``1e-3``, or None if there is no such hit.
        """
        oc = np.asarray(center, dtype=np.float64) - self.origin
        b = float(dot(oc, self.direction))
        det = b * b - float(dot(oc, oc)) + radius * radius
        if det < 0.0:
            return None

        sqrt_det = np.sqrt(det)
        epsilon = 1e-3
        t1 = b - sqrt_det
        t2 = b + sqrt_det
        if t1 > epsilon:
            return float(t1)
        if t2 > epsilon:
            return float(t2)
        return None


@dataclass
class HitRecord:
    """A shading hit consumed by the renderer policies.

    Attributes:
        distance: Distance along the ray to the hit.
        position: World-space hit position.
        normal: Outward-facing unit surface normal.
        material: The (finalized) material at the hit.
        ray: The ray that produced the hit.
        shader: Optional custom shading callback of the object that was hit.
    """

    distance: float
    position: Vec3
    normal: Vec3
    material: Material
    ray: Ray
    shader: Shader | None = None
