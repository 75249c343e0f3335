"""Scene construction and ray queries.

A front end describes a scene by adding named objects to a SceneBuilder:

    >>> from forged.geometry import SDF
    >>> from forged.scene import Light, SceneBuilder
    >>> builder = SceneBuilder()
    >>> body = builder.add_sdf("body", SDF.sphere(radius=1.0))
    >>> hole = builder.add_sdf("hole", SDF.box(size=(0.5, 0.5, 2.0)))
    >>> body.subtract(hole)
    >>> builder.add_light("key", Light(position=(2.0, 4.0, 3.0)))
    >>> scene = builder.build()
    >>> len(scene.sdfs)
    1

Building partitions the objects by kind. SDFs that are used as boolean
operands by another SDF, and invisible objects, are left out of the render
list: the operand is drawn through the SDF that consumes it.

The Scene answers ray queries. Analytic objects are intersected first; the
nearest analytic hit bounds the ray march over the SDFs. Every query has a
batch form working on (N, 3) arrays of rays, which is what the renderers use.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from enum import Enum
from typing import NamedTuple, Union

import numpy as np
import numpy.typing as npt

from forged.core.ray import HitRecord, Ray
from forged.geometry.analytical import Analytical
from forged.geometry.sdf import SDF
from forged.materials.material import Material

from .lights import Light
from .settings import Settings

logger = logging.getLogger(__name__)

# Start of the march along a primary ray
MARCH_START = 0.00001
# Start of the march along a shadow ray
SHADOW_START = 0.0001

SceneObject = Union[SDF, Analytical, Light]


class ObjectKind(Enum):
    SDF = "sdf"
    ANALYTICAL = "analytical"
    LIGHT = "light"


class SceneHits(NamedTuple):
    """Result of marching a batch of rays.

    Attributes:
        hit: Whether each ray hit a surface, shape (N,).
        distance: Distance along the ray, ``+inf`` for misses.
        positions: Hit positions, shape (N, 3).
        normals: Outward normals, shape (N, 3), zero for misses.
        owners: Index into ``Scene.surfaces`` of the surface hit, -1 for misses.
    """

    hit: npt.NDArray[np.bool_]
    distance: npt.NDArray[np.float64]
    positions: npt.NDArray[np.float64]
    normals: npt.NDArray[np.float64]
    owners: npt.NDArray[np.int64]


# =============================================================================
# Scene Builder
# =============================================================================


class SceneBuilder:
    """Collects named scene objects and builds a Scene from them.

    Objects keep their insertion order; it decides the order of the render
    lists and the material ids used by the model buffer.
    """

    def __init__(self) -> None:
        self._objects: dict[str, tuple[ObjectKind, SceneObject]] = {}

    def _add(self, name: str, kind: ObjectKind, value: SceneObject) -> None:
        if name in self._objects:
            raise ValueError(f"Scene object '{name}' is already defined")
        self._objects[name] = (kind, value)

    def add_sdf(self, name: str, sdf: SDF) -> SDF:
        """Add a signed distance shape and return it for further setup."""
        self._add(name, ObjectKind.SDF, sdf)
        return sdf

    def add_analytical(self, name: str, obj: Analytical) -> Analytical:
        """Add an analytic object and return it."""
        self._add(name, ObjectKind.ANALYTICAL, obj)
        return obj

    def add_light(self, name: str, light: Light) -> Light:
        """Add a light and return it."""
        self._add(name, ObjectKind.LIGHT, light)
        return light

    def get(self, name: str) -> SceneObject | None:
        """Fetch an object by name."""
        entry = self._objects.get(name)
        return entry[1] if entry else None

    def names(self) -> list[str]:
        return list(self._objects)

    def items(self) -> Iterator[tuple[str, ObjectKind, SceneObject]]:
        """Iterate ``(name, kind, value)`` triples in insertion order."""
        for name, (kind, value) in self._objects.items():
            yield name, kind, value

    def __len__(self) -> int:
        return len(self._objects)

    def build(self) -> Scene:
        """Partition the objects into the render lists of a Scene."""
        used_up = set()
        for _, kind, value in self.items():
            if kind is ObjectKind.SDF:
                used_up.update(operand.id for operand in value.operands())
                if not value.visible:
                    used_up.add(value.id)

        sdfs = []
        analytical = []
        lights = []
        for _, kind, value in self.items():
            if kind is ObjectKind.SDF:
                if value.id not in used_up:
                    sdfs.append(value)
            elif kind is ObjectKind.ANALYTICAL:
                if value.visible:
                    analytical.append(value)
            else:
                lights.append(value)

        scene = Scene(sdfs, analytical, lights)
        logger.info("Scene contains %d top level object(s)", len(sdfs) + len(analytical))
        return scene


# =============================================================================
# Scene
# =============================================================================


class Scene:
    """Render lists of a built scene.

    A scene is read-only once built and is shared by all render workers.

    Attributes:
        sdfs: Top-level signed distance shapes.
        analytical: Analytic objects.
        lights: Lights.
    """

    def __init__(
        self,
        sdfs: list[SDF] | None = None,
        analytical: list[Analytical] | None = None,
        lights: list[Light] | None = None,
    ) -> None:
        self.sdfs = list(sdfs or [])
        self.analytical = list(analytical or [])
        self.lights = list(lights or [])
        self._materials = [s.material.finalized() for s in self.surfaces]

    @property
    def surfaces(self) -> list[SDF | Analytical]:
        """All shaded surfaces: SDFs followed by analytic objects."""
        return [*self.sdfs, *self.analytical]

    def material_of(self, owner: int) -> Material:
        """Finalized material of the surface with index ``owner``."""
        return self._materials[owner]

    def shader_of(self, owner: int) -> Callable[[HitRecord], npt.ArrayLike] | None:
        return self.surfaces[owner].shader

    def is_empty(self) -> bool:
        return not self.sdfs and not self.analytical

    # =========================================================================
    # Ray Marching
    # =========================================================================

    def _analytic_batch(
        self, origins: npt.NDArray[np.float64], directions: npt.NDArray[np.float64]
    ) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.int64], npt.NDArray[np.float64]]:
        n = origins.shape[0]
        best_t = np.full(n, np.inf)
        owners = np.full(n, -1, dtype=np.int64)
        normals = np.zeros((n, 3))
        for k, obj in enumerate(self.analytical):
            t, obj_normals = obj.distance_batch(origins, directions)
            closer = t < best_t
            best_t = np.where(closer, t, best_t)
            owners[closer] = len(self.sdfs) + k
            normals[closer] = obj_normals[closer]
        return best_t, owners, normals

    def _nearest_sdf(self, points: npt.NDArray[np.float64]) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.float64]]:
        dist = np.abs(np.stack([np.broadcast_to(s.distance(points), points.shape[:1]) for s in self.sdfs]))
        nearest = np.argmin(dist, axis=0)
        return nearest, dist[nearest, np.arange(points.shape[0])]

    def raymarch_batch(
        self, origins: npt.ArrayLike, directions: npt.ArrayLike, settings: Settings
    ) -> SceneHits:
        """March a batch of rays through the scene.

        Each ray takes at most ``settings.steps`` steps, advancing by the
        smallest absolute SDF distance times ``settings.step_size``. A ray hits
        the nearest SDF once that distance drops below ``settings.iso_value``;
        it gives up beyond ``settings.max_distance`` or the nearest analytic
        hit, whichever is closer.

        Args:
            origins: Ray origins of shape (N, 3).
            directions: Normalized ray directions of shape (N, 3).
            settings: Marching parameters.

        Returns:
            The hits of all rays.
        """
        o = np.asarray(origins, dtype=np.float64).reshape(-1, 3)
        d = np.asarray(directions, dtype=np.float64).reshape(-1, 3)
        n = o.shape[0]

        best_t, owners, normals = self._analytic_batch(o, d)

        if self.sdfs:
            t_max = np.minimum(settings.max_distance, best_t)
            t = np.full(n, MARCH_START)
            active = np.ones(n, dtype=bool)
            marched = np.zeros(n, dtype=bool)
            nearest = np.zeros(n, dtype=np.int64)

            for _ in range(settings.steps):
                idx = np.flatnonzero(active)
                if idx.size == 0:
                    break
                points = o[idx] + d[idx] * t[idx, None]
                nearest_now, d_min = self._nearest_sdf(points)

                hit_now = d_min < settings.iso_value
                marched[idx[hit_now]] = True
                nearest[idx[hit_now]] = nearest_now[hit_now]

                t[idx] += np.where(hit_now, 0.0, d_min * settings.step_size)
                active[idx[hit_now | (t[idx] > t_max[idx])]] = False

            best_t = np.where(marched, t, best_t)
            owners = np.where(marched, nearest, owners)
            for index, sdf in enumerate(self.sdfs):
                mask = marched & (nearest == index)
                if mask.any():
                    normals[mask] = sdf.surface_normal(o[mask] + d[mask] * t[mask, None])

        hit = owners >= 0
        positions = o + d * np.where(hit, best_t, 0.0)[:, None]
        normals[~hit] = 0.0
        return SceneHits(hit, np.where(hit, best_t, np.inf), positions, normals, owners)

    def hit_record(self, hits: SceneHits, index: int, ray: Ray) -> HitRecord:
        """Build the HitRecord of ray ``index`` of a batch that hit."""
        owner = int(hits.owners[index])
        return HitRecord(
            distance=float(hits.distance[index]),
            position=hits.positions[index].copy(),
            normal=hits.normals[index].copy(),
            material=self.material_of(owner),
            ray=ray,
            shader=self.shader_of(owner),
        )

    def raymarch(self, ray: Ray, settings: Settings) -> HitRecord | None:
        """March a single ray; returns the hit or None."""
        hits = self.raymarch_batch(ray.origin[None], ray.direction[None], settings)
        if not hits.hit[0]:
            return None
        return self.hit_record(hits, 0, ray)

    def shadow_march_batch(
        self,
        origins: npt.ArrayLike,
        directions: npt.ArrayLike,
        settings: Settings,
        max_distance: npt.ArrayLike | None = None,
    ) -> npt.NDArray[np.bool_]:
        """Test whether shadow rays are blocked.

        Args:
            origins: Ray origins of shape (N, 3), usually offset off the surface.
            directions: Normalized directions of shape (N, 3).
            settings: Marching parameters.
            max_distance: Optional per-ray distance to the light; occluders
                beyond it do not count. Defaults to ``settings.max_distance``.

        Returns:
            Boolean array of shape (N,), True where something blocks the ray.
        """
        o = np.asarray(origins, dtype=np.float64).reshape(-1, 3)
        d = np.asarray(directions, dtype=np.float64).reshape(-1, 3)
        n = o.shape[0]
        limit = np.full(n, settings.max_distance)
        if max_distance is not None:
            limit = np.minimum(limit, np.broadcast_to(np.asarray(max_distance, dtype=np.float64), (n,)))

        analytic_t, _, _ = self._analytic_batch(o, d)
        blocked = analytic_t < limit
        if not self.sdfs:
            return blocked

        t_max = np.minimum(limit, analytic_t)
        t = np.full(n, SHADOW_START)
        active = ~blocked
        for _ in range(settings.steps):
            idx = np.flatnonzero(active)
            if idx.size == 0:
                break
            _, d_min = self._nearest_sdf(o[idx] + d[idx] * t[idx, None])
            hit_now = d_min < settings.iso_value
            blocked[idx[hit_now]] = True
            t[idx] += d_min * settings.step_size
            active[idx[hit_now | (t[idx] > t_max[idx])]] = False
        return blocked

    def shadow_march(self, ray: Ray, settings: Settings, max_distance: float | None = None) -> bool:
        """Return True if the shadow ray is blocked."""
        blocked = self.shadow_march_batch(ray.origin[None], ray.direction[None], settings, max_distance)
        return bool(blocked[0])

    # =========================================================================
    # Model Source
    # =========================================================================

    def model_distance(
        self, points: npt.ArrayLike
    ) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.int32]]:
        """Signed union of the top-level SDFs at the given points.

        Args:
            points: World positions of shape (N, 3).

        Returns:
            The minimum signed distance (``+inf`` without SDFs) and the
            1-based index of the nearest SDF as material id, each of shape (N,).
        """
        pos = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        n = pos.shape[0]
        distances = np.full(n, np.inf)
        materials = np.zeros(n, dtype=np.int32)
        for index, sdf in enumerate(self.sdfs, start=1):
            d = np.broadcast_to(sdf.distance(pos), (n,))
            closer = d < distances
            distances = np.where(closer, d, distances)
            materials[closer] = index
        return distances, materials

    def evaluate_material(self, material_id: int) -> Material:
        """Material of the ``material_id``-th SDF (1-based); default otherwise."""
        if 1 <= material_id <= len(self.sdfs):
            return self._materials[material_id - 1]
        return Material().finalized()

    def __repr__(self) -> str:
        return f"Scene(sdfs={len(self.sdfs)}, analytical={len(self.analytical)}, lights={len(self.lights)})"
