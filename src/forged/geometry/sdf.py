"""Signed distance field primitives and boolean combinators.

This module implements the SDF algebra used by the scene ray marcher and by
the model buffer:

- Primitive distance functions: sphere, plane, rounded box, capped cone.
- Boolean operators folded over a primitive in insertion order:
  subtraction and polynomial smooth-min.
- Tetrahedron-sampled surface normals.

Every distance function accepts a single point of shape (3,) or a stack of
points of shape (..., 3) and broadcasts, so the same code evaluates one ray
step or a whole voxel slice.

The distance is negative inside a shape, zero on its surface and positive
outside. Degenerate input never raises: a smooth-min with ``k <= 0`` is a
hard minimum and zero-length normals come back as zero vectors.

Example:
    >>> from forged.geometry.sdf import SDF
    >>> a = SDF.sphere(position=(-0.5, 0.0, 0.0), radius=1.0)
    >>> b = SDF.sphere(position=(0.5, 0.0, 0.0), radius=1.0)
    >>> a.smin(b, k=0.3)
    >>> a.distance((0.0, 0.0, 0.0)) < -0.5
    True
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np
import numpy.typing as npt

from forged.core.ray import as_vec3, length, mix, normalize
from forged.materials.material import Material

if TYPE_CHECKING:
    from forged.core.ray import HitRecord

Points = npt.ArrayLike
Distances = npt.NDArray[np.float64]

# Offset scale of the tetrahedron normal estimator
NORMAL_SCALE = 0.5773 * 0.0005

_E = np.array([1.0, -1.0]) * NORMAL_SCALE
_TETRAHEDRON = np.array(
    [
        (_E[0], _E[1], _E[1]),  # xyy
        (_E[1], _E[1], _E[0]),  # yyx
        (_E[1], _E[0], _E[1]),  # yxy
        (_E[0], _E[0], _E[0]),  # xxx
    ]
)


# =============================================================================
# Primitive Distance Functions
# =============================================================================


def sd_sphere(p: Points, center: npt.ArrayLike, radius: float) -> Distances:
    """Distance to a sphere: ``|p - center| - radius``."""
    return length(np.subtract(p, center)) - radius


def sd_plane(p: Points, normal: npt.ArrayLike, offset: float) -> Distances:
    """Distance to a plane: ``dot(p, normal) + offset``."""
    return np.sum(np.multiply(p, normal), axis=-1) + offset


def sd_box(p: Points, center: npt.ArrayLike, size: npt.ArrayLike, rounding: float = 0.0) -> Distances:
    """Distance to a rounded box with half-extents ``size``.

    Args:
        p: Query point(s).
        center: Box center.
        size: Half-extent along each axis.
        rounding: Edge rounding radius, taken from inside the half-extents.

    Returns:
        ``|max(q, 0)| + min(max(qx, qy, qz), 0) - rounding`` with
        ``q = |p - center| - size + rounding``.
    """
    q = np.abs(np.subtract(p, center)) - np.asarray(size, dtype=np.float64) + rounding
    outside = length(np.maximum(q, 0.0))
    inside = np.minimum(np.max(q, axis=-1), 0.0)
    return outside + inside - rounding


def sd_capped_cone(p: Points, center: npt.ArrayLike, h: float, r1: float, r2: float) -> Distances:
    """Exact distance to a cone capped at both ends, axis along +Y.

    Args:
        p: Query point(s).
        center: Cone center (midpoint of the axis).
        h: Half height.
        r1: Radius of the bottom cap (y = -h).
        r2: Radius of the top cap (y = +h).
    """
    local = np.subtract(p, center)
    qx = np.hypot(local[..., 0], local[..., 2])
    qy = local[..., 1]

    k1x, k1y = r2, h
    k2x, k2y = r2 - r1, 2.0 * h
    k2_dot = k2x * k2x + k2y * k2y

    cap_r = np.where(qy < 0.0, r1, r2)
    ca_x = qx - np.minimum(qx, cap_r)
    ca_y = np.abs(qy) - h

    if k2_dot > 0.0:
        t = np.clip(((k1x - qx) * k2x + (k1y - qy) * k2y) / k2_dot, 0.0, 1.0)
    else:
        t = np.zeros_like(qx)
    cb_x = qx - k1x + k2x * t
    cb_y = qy - k1y + k2y * t

    s = np.where((cb_x < 0.0) & (ca_y < 0.0), -1.0, 1.0)
    return s * np.sqrt(np.minimum(ca_x * ca_x + ca_y * ca_y, cb_x * cb_x + cb_y * cb_y))


# =============================================================================
# Boolean Operators
# =============================================================================


def op_subtract(dist: npt.ArrayLike, other: npt.ArrayLike) -> Distances:
    """Remove the ``other`` shape from ``dist``: ``max(dist, -other)``."""
    return np.maximum(dist, np.negative(other))


def op_smin(a: npt.ArrayLike, b: npt.ArrayLike, k: float) -> Distances:
    """Polynomial smooth minimum of two distances.

    ``h = clamp(0.5 + 0.5*(b - a)/k, 0, 1)``, result ``mix(b, a, h) - k*h*(1 - h)``.
    A blend radius ``k <= 0`` degrades to the hard minimum.
    """
    if k <= 0.0:
        return np.minimum(a, b)
    h = np.clip(0.5 + 0.5 * np.subtract(b, a) / k, 0.0, 1.0)
    return mix(b, a, h) - k * h * (1.0 - h)


class SdfType(Enum):
    """Primitive shape of an SDF."""

    SPHERE = "sphere"
    PLANE = "plane"
    BOX = "box"
    CAPPED_CONE = "capped_cone"


@dataclass
class Subtract:
    """Boolean subtraction of ``other`` from the running distance."""

    other: SDF


@dataclass
class SMin:
    """Smooth union of ``other`` with the running distance, blend radius ``k``."""

    other: SDF
    k: float


BooleanOp = Subtract | SMin


@dataclass(eq=False)
class SDF:
    """A primitive signed distance function with boolean modifiers.

    Fields that do not apply to a primitive are ignored by it. The capped
    cone reuses ``normal`` for its radii (x = bottom, y = top) and ``offset``
    for its half height.

    Attributes:
        sdf_type: The primitive shape.
        position: Center of sphere, box and cone.
        size: Box half-extents.
        radius: Sphere radius.
        normal: Plane normal, or cone radii.
        offset: Plane offset, or cone half height.
        rounding: Box and cone edge rounding.
        material: Surface material of the shape.
        visible: Invisible shapes are skipped by the scene render list.
        shader: Optional callback ``shader(hit) -> RGBA`` replacing the
            renderer's shading for hits on this shape.
        boolean_ops: Boolean operators applied in insertion order.
    """

    sdf_type: SdfType = SdfType.SPHERE
    position: npt.NDArray[np.float64] = field(default_factory=lambda: np.zeros(3))
    size: npt.NDArray[np.float64] = field(default_factory=lambda: np.ones(3))
    radius: float = 1.0
    normal: npt.NDArray[np.float64] = field(default_factory=lambda: np.array([0.0, 1.0, 0.0]))
    offset: float = 0.0
    rounding: float = 0.0
    material: Material = field(default_factory=Material)
    visible: bool = True
    shader: Callable[[HitRecord], npt.ArrayLike] | None = None
    boolean_ops: list[BooleanOp] = field(default_factory=list)
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    def __post_init__(self) -> None:
        self.position = as_vec3(self.position)
        self.size = as_vec3(self.size)
        self.normal = as_vec3(self.normal)

    # =========================================================================
    # Constructors
    # =========================================================================

    @classmethod
    def sphere(
        cls,
        position: npt.ArrayLike = (0.0, 0.0, 0.0),
        radius: float = 1.0,
        material: Material | None = None,
    ) -> SDF:
        """Create a sphere."""
        return cls(
            sdf_type=SdfType.SPHERE,
            position=position,
            radius=radius,
            material=material or Material(),
        )

    @classmethod
    def plane(
        cls,
        normal: npt.ArrayLike = (0.0, 1.0, 0.0),
        offset: float = 0.0,
        material: Material | None = None,
    ) -> SDF:
        """Create an infinite plane ``dot(p, normal) + offset = 0``."""
        return cls(
            sdf_type=SdfType.PLANE,
            normal=normalize(as_vec3(normal)),
            offset=offset,
            material=material or Material(),
        )

    @classmethod
    def box(
        cls,
        position: npt.ArrayLike = (0.0, 0.0, 0.0),
        size: npt.ArrayLike = (1.0, 1.0, 1.0),
        rounding: float = 0.0,
        material: Material | None = None,
    ) -> SDF:
        """Create a box with half-extents ``size``."""
        return cls(
            sdf_type=SdfType.BOX,
            position=position,
            size=size,
            rounding=rounding,
            material=material or Material(),
        )

    @classmethod
    def capped_cone(
        cls,
        position: npt.ArrayLike = (0.0, 0.0, 0.0),
        height: float = 1.0,
        bottom_radius: float = 1.0,
        top_radius: float = 0.5,
        rounding: float = 0.0,
        material: Material | None = None,
    ) -> SDF:
        """Create a capped cone of half height ``height`` along +Y."""
        return cls(
            sdf_type=SdfType.CAPPED_CONE,
            position=position,
            normal=(bottom_radius, top_radius, 0.0),
            offset=height,
            rounding=rounding,
            material=material or Material(),
        )

    # =========================================================================
    # Boolean Operators
    # =========================================================================

    def subtract(self, other: SDF) -> None:
        """Carve ``other`` out of this shape."""
        self.boolean_ops.append(Subtract(other))

    def smin(self, other: SDF, k: float) -> None:
        """Smoothly blend ``other`` into this shape with blend radius ``k``."""
        self.boolean_ops.append(SMin(other, float(k)))

    def operands(self) -> list[SDF]:
        """Return the SDFs directly used as boolean operands by this one."""
        return [op.other for op in self.boolean_ops]

    # =========================================================================
    # Evaluation
    # =========================================================================

    def primitive_distance(self, p: Points) -> Distances:
        """Distance to the bare primitive, ignoring boolean operators."""
        if self.sdf_type is SdfType.SPHERE:
            return sd_sphere(p, self.position, self.radius)
        if self.sdf_type is SdfType.PLANE:
            return sd_plane(p, self.normal, self.offset)
        if self.sdf_type is SdfType.BOX:
            return sd_box(p, self.position, self.size, self.rounding)

        h = self.offset - self.rounding
        r1 = max(self.normal[0] - self.rounding, 0.0)
        r2 = max(self.normal[1] - self.rounding, 0.0)
        return sd_capped_cone(p, self.position, h, r1, r2) - self.rounding

    def distance(self, p: Points) -> float | Distances:
        """Evaluate the composed signed distance at ``p``.

        Boolean operators are folded over the primitive distance in the order
        they were added; each operand contributes its own composed distance.

        Args:
            p: A point of shape (3,) or points of shape (..., 3).

        Returns:
            A float for a single point, otherwise an array of shape (...).
        """
        p = np.asarray(p, dtype=np.float64)
        dist = self.primitive_distance(p)
        for op in self.boolean_ops:
            other = op.other.distance(p)
            if isinstance(op, Subtract):
                dist = op_subtract(dist, other)
            else:
                dist = op_smin(dist, other, op.k)
        if np.ndim(dist) == 0:
            return float(dist)
        return dist

    def surface_normal(self, p: Points) -> npt.NDArray[np.float64]:
        """Estimate the outward surface normal at ``p``.

        Samples the distance at the four vertices of a tetrahedron of scale
        ``0.5773 * 0.0005`` around ``p`` and normalizes the weighted sum.
        """
        p = np.asarray(p, dtype=np.float64)
        n = np.zeros(p.shape, dtype=np.float64)
        for offset in _TETRAHEDRON:
            d = np.asarray(self.distance(p + offset))
            n = n + offset * d[..., None]
        return normalize(n)
