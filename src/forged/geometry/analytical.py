"""Closed-form ray intersection for analytic scene objects.

Analytic objects (spheres and planes) are intersected directly instead of
being ray marched. The scene tests them before marching and uses the nearest
analytic hit to bound the marching distance.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np
import numpy.typing as npt

from forged.core.ray import Ray, as_vec3, dot, normalize
from forged.materials.material import Material

if TYPE_CHECKING:
    from forged.core.ray import HitRecord

# Rays whose direction is this close to parallel with a plane miss it
PARALLEL_EPSILON = 1e-4


class AnalyticalType(Enum):
    SPHERE = "sphere"
    PLANE = "plane"


@dataclass(frozen=True)
class AnalyticHit:
    """Result of an analytic intersection.

    Attributes:
        t: Distance along the ray.
        material: Material of the object that was hit.
        normal: Outward-facing unit normal at the hit point.
    """

    t: float
    material: Material
    normal: npt.NDArray[np.float64]


def hit_sphere(ray: Ray, center: npt.ArrayLike, radius: float) -> float | None:
    """Geometric ray-sphere intersection.

    Args:
        ray: The ray (direction should be normalized).
        center: Sphere center.
        radius: Sphere radius.

    Returns:
        The nearest non-negative ``t``, or None when the ray misses or the
        sphere lies entirely behind the ray origin.
    """
    l = np.asarray(center, dtype=np.float64) - ray.origin
    tca = float(dot(l, ray.direction))
    d2 = float(dot(l, l)) - tca * tca
    radius2 = radius * radius
    if d2 > radius2:
        return None

    thc = float(np.sqrt(radius2 - d2))
    t0, t1 = sorted((tca - thc, tca + thc))
    if t0 < 0.0:
        t0 = t1
        if t0 < 0.0:
            return None
    return t0


def hit_plane(ray: Ray, normal: npt.ArrayLike, offset: float) -> float | None:
    """Ray-plane intersection for the plane ``dot(p, normal) + offset = 0``.

    Returns:
        ``t >= 0`` of the hit, or None when the ray is (nearly) parallel to the
        plane, ``|dot(normal, dir)| <= 1e-4``, or the plane is behind it.
    """
    denom = float(dot(normal, ray.direction))
    if abs(denom) <= PARALLEL_EPSILON:
        return None
    t = -(float(dot(ray.origin, normal)) + offset) / denom
    if t >= 0.0:
        return t
    return None


@dataclass(eq=False)
class Analytical:
    """An analytic scene object.

    Attributes:
        analytical_type: Sphere or plane.
        position: Sphere center.
        radius: Sphere radius.
        normal: Plane normal.
        offset: Plane offset.
        material: Surface material.
        visible: Invisible objects are skipped by the scene.
        shader: Optional custom shading callback.
    """

    analytical_type: AnalyticalType = AnalyticalType.SPHERE
    position: npt.NDArray[np.float64] = field(default_factory=lambda: np.zeros(3))
    radius: float = 1.0
    normal: npt.NDArray[np.float64] = field(default_factory=lambda: np.array([0.0, 1.0, 0.0]))
    offset: float = 0.0
    material: Material = field(default_factory=Material)
    visible: bool = True
    shader: Callable[[HitRecord], npt.ArrayLike] | None = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    def __post_init__(self) -> None:
        self.position = as_vec3(self.position)
        self.normal = normalize(as_vec3(self.normal))

    @classmethod
    def sphere(cls, position=(0.0, 0.0, 0.0), radius: float = 1.0, material: Material | None = None) -> Analytical:
        return cls(AnalyticalType.SPHERE, position=position, radius=radius, material=material or Material())

    @classmethod
    def plane(cls, normal=(0.0, 1.0, 0.0), offset: float = 0.0, material: Material | None = None) -> Analytical:
        return cls(AnalyticalType.PLANE, normal=normal, offset=offset, material=material or Material())

    def distance(self, ray: Ray) -> AnalyticHit | None:
        """Intersect the ray with this object.

        The sphere normal is the negated, normalized hit-to-center vector, so
        it faces outward.
        """
        if self.analytical_type is AnalyticalType.SPHERE:
            t = hit_sphere(ray, self.position, self.radius)
            if t is None:
                return None
            normal = -normalize(self.position - ray.at(t))
            return AnalyticHit(t, self.material, normal)

        t = hit_plane(ray, self.normal, self.offset)
        if t is None:
            return None
        return AnalyticHit(t, self.material, self.normal.copy())

    def distance_batch(
        self, origins: npt.ArrayLike, directions: npt.ArrayLike
    ) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """Intersect many rays at once.

        Args:
            origins: Ray origins of shape (N, 3).
            directions: Normalized ray directions of shape (N, 3).

        Returns:
            Hit distances of shape (N,), ``+inf`` for misses, and outward
            normals of shape (N, 3).
        """
        o = np.asarray(origins, dtype=np.float64)
        d = np.asarray(directions, dtype=np.float64)

        if self.analytical_type is AnalyticalType.SPHERE:
            l = self.position - o
            tca = dot(l, d)
            d2 = dot(l, l) - tca * tca
            radius2 = self.radius * self.radius
            thc = np.sqrt(np.maximum(radius2 - d2, 0.0))
            t0 = tca - thc
            t1 = tca + thc
            t = np.where(t0 < 0.0, t1, t0)
            t = np.where((d2 > radius2) | (t < 0.0), np.inf, t)
            hit_points = o + d * np.where(np.isfinite(t), t, 0.0)[:, None]
            normals = -normalize(self.position - hit_points)
            return t, normals

        denom = dot(d, self.normal)
        parallel = np.abs(denom) <= PARALLEL_EPSILON
        with np.errstate(divide="ignore", invalid="ignore"):
            t = -(dot(o, self.normal) + self.offset) / np.where(parallel, 1.0, denom)
        t = np.where(parallel | (t < 0.0), np.inf, t)
        return t, np.broadcast_to(self.normal, o.shape).copy()
