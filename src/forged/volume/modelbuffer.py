"""Voxelized signed distance volume with ray marching.

The ModelBuffer caches a signed distance field on a dense 3D grid. It is
populated once by sampling an external distance source (the node graph or
the scene) and then ray marched by the renderers without re-evaluating the
source.

Storage lives in Taichi fields, one flat array per voxel attribute, indexed

    index(x, y, z) = z * size_y * size_x + y * size_x + x

Bulk work runs in Taichi kernels: folding a sampled Z-slice into the grid,
seeding analytic spheres and marching a whole batch of rays. The scalar
query methods (``sample``, ``compute_normal``, ``raymarch``) read a NumPy
snapshot of the grid that is refreshed after every population pass.

World mapping: voxel (0, 0, 0) sits at (-bounds_x/2, 0, -bounds_z/2). The
volume is centered on the origin in X and Z and rests on the Y = 0 plane.

Ownership model: populate with ``model()``/``add_sphere()`` from a single
thread, call ``freeze()``, then share the buffer read-only with any number of
render workers.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from forged.volume.modelbuffer import ModelBuffer
    >>> buffer = ModelBuffer((2.0, 2.0, 2.0), density=32)
    >>> buffer.add_sphere((0.0, 1.0, 0.0), 0.5, material=1)
    >>> buffer.sample((0.0, 1.0, 0.0)) < 0.0
    True
"""

import logging
import math
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import NamedTuple, Protocol

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from forged.core.ray import Aabb, Ray, normalize, vec3

logger = logging.getLogger(__name__)

# Raymarch constants
EPSILON = 0.001
MAX_STEPS = 512
MAX_DISTANCE = 1000.0

# Bytes stored per voxel: f32 distance, f32 density, i32 material
_VOXEL_BYTES = 12

# Taichi kernel launches are serialized across worker threads
_TAICHI_LOCK = threading.Lock()


@dataclass(frozen=True)
class Voxel:
    """One cell of the model buffer.

    Attributes:
        distance: Nearest signed distance seen at the voxel.
        density: Free per-voxel density channel.
        material: Material id of the surface that produced ``distance``.
    """

    distance: float
    density: float
    material: int


@dataclass
class Hit:
    """Result of marching a ray against a model buffer.

    Attributes:
        position: World-space hit position.
        normal: Normal estimated from the cached distance field.
        voxel: The voxel the hit position falls into.
    """

    position: npt.NDArray[np.float64]
    normal: npt.NDArray[np.float64]
    voxel: Voxel


class BatchHits(NamedTuple):
    """Per-ray results of ``ModelBuffer.raymarch_batch``."""

    hit: npt.NDArray[np.bool_]
    positions: npt.NDArray[np.float32]
    normals: npt.NDArray[np.float32]
    materials: npt.NDArray[np.int32]


class DistanceSource(Protocol):
    """Anything the model buffer can sample.

    ``model_distance`` receives world positions of shape (N, 3) and returns
    the signed distances (N,) and material ids (N,) at those positions.
    """

    def model_distance(
        self, points: npt.NDArray[np.float64]
    ) -> tuple[npt.NDArray[np.floating], npt.NDArray[np.integer]]: ...


# =============================================================================
# Taichi Functions
# =============================================================================


@ti.func
def _voxel_index(p: tm.vec3, size: tm.ivec3, bounds: tm.vec3) -> ti.i32:
    """Flat index of the voxel containing ``p``, or -1 outside the grid."""
    idx = -1
    gx = ti.floor((p.x + bounds.x * 0.5) * size.x / bounds.x)
    gy = ti.floor(p.y * size.y / bounds.y)
    gz = ti.floor((p.z + bounds.z * 0.5) * size.z / bounds.z)
    if gx >= 0 and gy >= 0 and gz >= 0 and gx < size.x and gy < size.y and gz < size.z:
        idx = ti.cast(gz, ti.i32) * size.y * size.x + ti.cast(gy, ti.i32) * size.x + ti.cast(gx, ti.i32)
    return idx


@ti.func
def _sample(distance: ti.template(), p: tm.vec3, size: tm.ivec3, bounds: tm.vec3) -> ti.f32:
    result = tm.inf
    idx = _voxel_index(p, size, bounds)
    if idx >= 0:
        result = distance[idx]
    return result


@ti.func
def _sample_clamped(distance: ti.template(), p: tm.vec3, size: tm.ivec3, bounds: tm.vec3) -> ti.f32:
    # Positions outside the grid read the nearest border voxel.
    gx = ti.math.clamp(ti.cast(ti.floor((p.x + bounds.x * 0.5) * size.x / bounds.x), ti.i32), 0, size.x - 1)
    gy = ti.math.clamp(ti.cast(ti.floor(p.y * size.y / bounds.y), ti.i32), 0, size.y - 1)
    gz = ti.math.clamp(ti.cast(ti.floor((p.z + bounds.z * 0.5) * size.z / bounds.z), ti.i32), 0, size.z - 1)
    return distance[gz * size.y * size.x + gy * size.x + gx]


@ti.func
def _normal(distance: ti.template(), p: tm.vec3, size: tm.ivec3, bounds: tm.vec3) -> tm.vec3:
    voxel_size = bounds / ti.cast(size, ti.f32)
    eps = (voxel_size.x + voxel_size.y + voxel_size.z) / 3.0
    ex = tm.vec3(eps, 0.0, 0.0)
    ey = tm.vec3(0.0, eps, 0.0)
    ez = tm.vec3(0.0, 0.0, eps)
    n = tm.vec3(
        _sample_clamped(distance, p + ex, size, bounds) - _sample_clamped(distance, p - ex, size, bounds),
        _sample_clamped(distance, p + ey, size, bounds) - _sample_clamped(distance, p - ey, size, bounds),
        _sample_clamped(distance, p + ez, size, bounds) - _sample_clamped(distance, p - ez, size, bounds),
    )
    result = tm.vec3(0.0)
    if n.norm() > 0.0:
        result = n.normalized()
    return result


@ti.func
def _clip_aabb(o: tm.vec3, d: tm.vec3, lo: tm.vec3, hi: tm.vec3) -> tm.vec3:
    """Slab test. Returns (t_min, t_max, 1) on overlap, (.., .., 0) on a miss."""
    t0 = -tm.inf
    t1 = tm.inf
    ok = 1.0
    for i in ti.static(range(3)):
        if ti.abs(d[i]) < 1e-12:
            if o[i] < lo[i] or o[i] > hi[i]:
                ok = 0.0
        else:
            inv = 1.0 / d[i]
            ta = (lo[i] - o[i]) * inv
            tb = (hi[i] - o[i]) * inv
            t0 = ti.max(t0, ti.min(ta, tb))
            t1 = ti.min(t1, ti.max(ta, tb))
    if t1 < ti.max(t0, 0.0):
        ok = 0.0
    return tm.vec3(t0, t1, ok)


# =============================================================================
# Taichi Kernels
# =============================================================================


@ti.kernel
def _fill(distance: ti.template(), density: ti.template(), material: ti.template()):
    for i in distance:
        distance[i] = tm.inf
        density[i] = 0.0
        material[i] = 0


@ti.kernel
def _fold_slice(
    distance: ti.template(),
    material: ti.template(),
    start: ti.i32,
    slice_distance: ti.types.ndarray(dtype=ti.f32, ndim=1),
    slice_material: ti.types.ndarray(dtype=ti.i32, ndim=1),
):
    for i in range(slice_distance.shape[0]):
        d = slice_distance[i]
        if d < distance[start + i]:
            distance[start + i] = d
            material[start + i] = slice_material[i]


@ti.kernel
def _add_sphere(
    distance: ti.template(),
    material: ti.template(),
    sx: ti.i32,
    sy: ti.i32,
    sz: ti.i32,
    bx: ti.f32,
    by: ti.f32,
    bz: ti.f32,
    cx: ti.f32,
    cy: ti.f32,
    cz: ti.f32,
    radius: ti.f32,
    mat: ti.i32,
):
    center = tm.vec3(cx, cy, cz)
    for x, y, z in ti.ndrange(sx, sy, sz):
        world = tm.vec3(x * bx / sx - bx * 0.5, y * by / sy, z * bz / sz - bz * 0.5)
        d = tm.length(world - center) - radius
        i = z * sy * sx + y * sx + x
        if d < distance[i]:
            distance[i] = d
            material[i] = mat


@ti.kernel
def _raymarch(
    distance: ti.template(),
    material: ti.template(),
    sx: ti.i32,
    sy: ti.i32,
    sz: ti.i32,
    bx: ti.f32,
    by: ti.f32,
    bz: ti.f32,
    origins: ti.types.ndarray(dtype=ti.f32, ndim=2),
    directions: ti.types.ndarray(dtype=ti.f32, ndim=2),
    hit: ti.types.ndarray(dtype=ti.i32, ndim=1),
    positions: ti.types.ndarray(dtype=ti.f32, ndim=2),
    normals: ti.types.ndarray(dtype=ti.f32, ndim=2),
    materials: ti.types.ndarray(dtype=ti.i32, ndim=1),
):
    size = tm.ivec3(sx, sy, sz)
    bounds = tm.vec3(bx, by, bz)
    lo = tm.vec3(-bx * 0.5, 0.0, -bz * 0.5)
    hi = tm.vec3(bx * 0.5, by, bz * 0.5)
    for r in range(origins.shape[0]):
        o = tm.vec3(origins[r, 0], origins[r, 1], origins[r, 2])
        d = tm.vec3(directions[r, 0], directions[r, 1], directions[r, 2])
        hit[r] = 0
        materials[r] = 0
        clip = _clip_aabb(o, d, lo, hi)
        if clip.z > 0.5:
            t = ti.max(clip.x, 0.0) + EPSILON
            max_distance = ti.min(clip.y, MAX_DISTANCE)
            for _ in range(MAX_STEPS):
                p = o + t * d
                dist = _sample(distance, p, size, bounds)
                if dist < EPSILON:
                    idx = _voxel_index(p, size, bounds)
                    if idx >= 0:
                        n = _normal(distance, p, size, bounds)
                        hit[r] = 1
                        materials[r] = material[idx]
                        for k in ti.static(range(3)):
                            positions[r, k] = p[k]
                            normals[r, k] = n[k]
                    break
                t += dist * 0.5
                if t > max_distance:
                    break


# =============================================================================
# Model Buffer
# =============================================================================


class ModelBuffer:
    """A dense voxel grid caching nearest-surface distance and material.

    Attributes:
        bounds: World-space extent along X, Y and Z.
        density: Voxels per world unit.
        size: Voxel counts ``ceil(bounds * density)`` along X, Y and Z.
    """

    def __init__(self, bounds: tuple[float, float, float], density: float) -> None:
        """Allocate the grid and reset every voxel to ``distance = +inf``.

        Args:
            bounds: World-space extents (x, y, z), all positive.
            density: Voxels per unit, positive.

        Raises:
            ValueError: If a bound or the density is not positive.
        """
        if density <= 0:
            raise ValueError(f"Model buffer density must be positive, got {density}")
        if len(bounds) != 3 or any(b <= 0 for b in bounds):
            raise ValueError(f"Model buffer bounds must be three positive extents, got {bounds}")

        self.bounds = tuple(float(b) for b in bounds)
        self.density = density
        self.size = tuple(int(math.ceil(b * density)) for b in self.bounds)
        self._frozen = False

        count = self.voxel_count
        self._distance = ti.field(dtype=ti.f32, shape=count)
        self._density = ti.field(dtype=ti.f32, shape=count)
        self._material = ti.field(dtype=ti.i32, shape=count)
        with _TAICHI_LOCK:
            _fill(self._distance, self._density, self._material)
        self._sync()

        logger.info(
            "Allocated model buffer %dx%dx%d (%s)", *self.size, self.memory_usage()
        )

    # =========================================================================
    # Geometry
    # =========================================================================

    @property
    def voxel_count(self) -> int:
        return self.size[0] * self.size[1] * self.size[2]

    @property
    def voxel_size(self) -> npt.NDArray[np.float64]:
        """Edge length of one voxel along each axis, in world units."""
        return np.array(self.bounds) / np.array(self.size, dtype=np.float64)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def index(self, x: int, y: int, z: int) -> int:
        """Flat index of voxel (x, y, z)."""
        return z * self.size[1] * self.size[0] + y * self.size[0] + x

    def index_to_world(self, x: int, y: int, z: int) -> npt.NDArray[np.float64]:
        """World position of voxel (x, y, z)."""
        bx, _, bz = self.bounds
        return np.array((x, y, z), dtype=np.float64) * self.voxel_size - vec3(bx / 2.0, 0.0, bz / 2.0)

    def world_to_index(self, pos: npt.ArrayLike) -> tuple[int, int, int] | None:
        """Voxel containing a world position, or None outside the grid."""
        bx, _, bz = self.bounds
        local = np.asarray(pos, dtype=np.float64) + vec3(bx / 2.0, 0.0, bz / 2.0)
        grid = np.floor(local / self.voxel_size)
        if not np.all(np.isfinite(grid)):
            return None
        x, y, z = (int(g) for g in grid)
        if 0 <= x < self.size[0] and 0 <= y < self.size[1] and 0 <= z < self.size[2]:
            return x, y, z
        return None

    def bbox(self) -> Aabb:
        """Bounding box: centered on the origin in X/Z, resting on Y = 0."""
        bx, by, bz = self.bounds
        return Aabb(vec3(-bx / 2.0, 0.0, -bz / 2.0), vec3(bx / 2.0, by, bz / 2.0))

    def memory_usage(self) -> str:
        """Memory used by the voxel data as a human readable string."""
        total = self.voxel_count * _VOXEL_BYTES
        if total >= 1024**3:
            return f"{total / 1024**3:.2f} GB"
        if total >= 1024**2:
            return f"{total / 1024**2:.2f} MB"
        return f"{total / 1024:.2f} KB"

    # =========================================================================
    # Population
    # =========================================================================

    def _check_writable(self) -> None:
        if self._frozen:
            raise RuntimeError("Model buffer is frozen and can no longer be modified")

    def _sync(self) -> None:
        """Refresh the NumPy snapshot used by the scalar queries."""
        self._distance_np = self._distance.to_numpy()
        self._density_np = self._density.to_numpy()
        self._material_np = self._material.to_numpy()

    def _slice_points(self, z: int) -> npt.NDArray[np.float64]:
        sx, sy, _ = self.size
        bx, _, bz = self.bounds
        vs = self.voxel_size
        ys, xs = np.meshgrid(np.arange(sy) * vs[1], np.arange(sx) * vs[0] - bx / 2.0, indexing="ij")
        points = np.empty((sy * sx, 3), dtype=np.float64)
        points[:, 0] = xs.ravel()
        points[:, 1] = ys.ravel()
        points[:, 2] = z * vs[2] - bz / 2.0
        return points

    def model(self, source: DistanceSource, workers: int | None = None) -> None:
        """Sample ``source`` at every voxel and keep the minimum distance.

        Z-slices are evaluated concurrently; each finished slice is folded
        into its own contiguous range of the grid, so no voxel is written by
        more than one slice. A voxel's distance only ever decreases, and its
        material follows the source that produced the new minimum.

        Args:
            source: Distance source sampled at voxel world positions.
            workers: Worker thread count, defaults to the CPU count.

        Raises:
            RuntimeError: If the buffer has been frozen.
        """
        self._check_writable()
        start = time.perf_counter()
        sx, sy, sz = self.size
        slice_len = sx * sy

        def evaluate(z: int) -> tuple[int, npt.NDArray[np.float32], npt.NDArray[np.int32]]:
            distances, materials = source.model_distance(self._slice_points(z))
            return (
                z,
                np.ascontiguousarray(distances, dtype=np.float32),
                np.ascontiguousarray(materials, dtype=np.int32),
            )

        with ThreadPoolExecutor(max_workers=workers or os.cpu_count() or 1) as pool:
            for z, distances, materials in pool.map(evaluate, range(sz)):
                with _TAICHI_LOCK:
                    _fold_slice(self._distance, self._material, z * slice_len, distances, materials)

        self._sync()
        logger.info("Modelled %d voxels in %.1f ms", self.voxel_count, (time.perf_counter() - start) * 1000.0)

    def add_sphere(self, center: npt.ArrayLike, radius: float, material: int = 0) -> None:
        """Fold an analytic sphere into the grid (minimum distance rule)."""
        self._check_writable()
        cx, cy, cz = (float(c) for c in center)
        with _TAICHI_LOCK:
            _add_sphere(
                self._distance, self._material, *self.size, *self.bounds, cx, cy, cz, float(radius), int(material)
            )
        self._sync()

    def get(self, x: int, y: int, z: int) -> Voxel | None:
        """Voxel at (x, y, z), or None if out of range."""
        if not (0 <= x < self.size[0] and 0 <= y < self.size[1] and 0 <= z < self.size[2]):
            return None
        i = self.index(x, y, z)
        return Voxel(float(self._distance_np[i]), float(self._density_np[i]), int(self._material_np[i]))

    def set(self, x: int, y: int, z: int, voxel: Voxel) -> None:
        """Overwrite voxel (x, y, z); out-of-range coordinates are ignored."""
        self._check_writable()
        if self.get(x, y, z) is None:
            return
        i = self.index(x, y, z)
        self._distance[i] = voxel.distance
        self._density[i] = voxel.density
        self._material[i] = voxel.material
        self._distance_np[i] = voxel.distance
        self._density_np[i] = voxel.density
        self._material_np[i] = voxel.material

    def freeze(self) -> None:
        """End population; the buffer is read-only from now on."""
        self._frozen = True

    def distances(self) -> npt.NDArray[np.float32]:
        """Copy of the distance grid with shape (size_z, size_y, size_x)."""
        sx, sy, sz = self.size
        return self._distance_np.reshape(sz, sy, sx).copy()

    def materials(self) -> npt.NDArray[np.int32]:
        """Copy of the material grid with shape (size_z, size_y, size_x)."""
        sx, sy, sz = self.size
        return self._material_np.reshape(sz, sy, sx).copy()

    # =========================================================================
    # Queries
    # =========================================================================

    def sample(self, pos: npt.ArrayLike) -> float:
        """Cached distance of the voxel containing ``pos`` (``+inf`` outside)."""
        idx = self.world_to_index(pos)
        if idx is None:
            return math.inf
        return float(self._distance_np[self.index(*idx)])

    def _sample_clamped(self, pos: npt.NDArray[np.float64]) -> float:
        bx, _, bz = self.bounds
        grid = np.floor((pos + vec3(bx / 2.0, 0.0, bz / 2.0)) / self.voxel_size)
        x, y, z = (int(np.clip(g, 0, s - 1)) for g, s in zip(grid, self.size))
        return float(self._distance_np[self.index(x, y, z)])

    def compute_normal(self, pos: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """Central-difference gradient of the cached field at ``pos``.

        The difference step is the average voxel edge length. Samples that
        fall outside the grid read the nearest border voxel.
        """
        p = np.asarray(pos, dtype=np.float64)
        eps = float(np.mean(self.voxel_size))
        grad = np.empty(3)
        for axis in range(3):
            e = np.zeros(3)
            e[axis] = eps
            grad[axis] = self._sample_clamped(p + e) - self._sample_clamped(p - e)
        return normalize(grad)

    def raymarch(self, ray: Ray) -> Hit | None:
        """March a ray against the cached field.

        The ray is clipped to the buffer's box first. Marching starts 0.001
        past the entry point, advances by half the sampled distance and
        gives up after 512 steps or beyond ``min(t_max, 1000)``.

        Returns:
            The hit, or None if the ray leaves the volume without hitting.
        """
        clip = ray.intersect_aabb(self.bbox())
        if clip is None:
            return None
        t_min, t_max = clip

        t = max(t_min, 0.0) + EPSILON
        max_distance = min(t_max, MAX_DISTANCE)
        for _ in range(MAX_STEPS):
            p = ray.at(t)
            d = self.sample(p)
            if d < EPSILON:
                idx = self.world_to_index(p)
                if idx is None:
                    return None
                return Hit(position=p, normal=self.compute_normal(p), voxel=self.get(*idx))
            t += d * 0.5
            if t > max_distance:
                break
        return None

    def raymarch_batch(self, origins: npt.ArrayLike, directions: npt.ArrayLike) -> BatchHits:
        """March many rays at once in a Taichi kernel.

        Same algorithm as ``raymarch`` in single precision.

        Args:
            origins: Ray origins, shape (N, 3).
            directions: Ray directions, shape (N, 3).

        Returns:
            Hit mask, positions, normals and material ids for every ray.
        """
        o = np.ascontiguousarray(origins, dtype=np.float32).reshape(-1, 3)
        d = np.ascontiguousarray(directions, dtype=np.float32).reshape(-1, 3)
        if o.shape != d.shape:
            raise ValueError(f"origins and directions must have the same shape, got {o.shape} and {d.shape}")
        n = o.shape[0]
        hit = np.zeros(n, dtype=np.int32)
        positions = np.zeros((n, 3), dtype=np.float32)
        normals = np.zeros((n, 3), dtype=np.float32)
        materials = np.zeros(n, dtype=np.int32)
        if n:
            with _TAICHI_LOCK:
                _raymarch(
                    self._distance,
                    self._material,
                    *self.size,
                    *self.bounds,
                    o,
                    d,
                    hit,
                    positions,
                    normals,
                    materials,
                )
        return BatchHits(hit.astype(bool), positions, normals, materials)

    def __repr__(self) -> str:
        return f"ModelBuffer(bounds={self.bounds}, density={self.density}, size={self.size})"
