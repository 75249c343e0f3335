"""Built-in node types.

Procedural nodes:
    ValueNoise2D, ValueNoise3D, Mul, Point3D, Output

Material nodes:
    Material (albedo, emission, roughness, metallic)

Shape nodes (3D, distance broadcast to all four components):
    Sphere, Box (oriented between two points), Line (capsule)

Every shape has a ``material`` input selecting the material id written to
the model buffer.
"""

from __future__ import annotations

import math

import numpy as np
import numpy.typing as npt

from .base import Node, NodeDomain, NodeRegistry, NodeRole, Vec4Array
from .terminal import NodeTerminal, NodeTerminalRole

Role = NodeTerminalRole


def _fract(x: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Fractional part keeping the sign of ``x`` (``x - trunc(x)``)."""
    return np.subtract(x, np.trunc(x))


def _broadcast4(value: npt.ArrayLike) -> Vec4Array:
    return np.repeat(np.asarray(value, dtype=np.float64)[..., None], 4, axis=-1)


def _octaves(value: Vec4Array) -> int:
    return int(np.ravel(value[..., 0])[0])


# =============================================================================
# Procedural Nodes
# =============================================================================


def _hash_2d(p: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    p3 = _fract(np.stack([p[..., 0], p[..., 1], p[..., 0]], axis=-1) * 0.13)
    p3 = p3 + np.sum(p3 * (p3[..., [1, 2, 0]] + 3.333), axis=-1, keepdims=True)
    return _fract((p3[..., 0] + p3[..., 1]) * p3[..., 2])


def _noise_2d(x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    i = np.floor(x)
    f = _fract(x)

    a = _hash_2d(i)
    b = _hash_2d(i + (1.0, 0.0))
    c = _hash_2d(i + (0.0, 1.0))
    d = _hash_2d(i + (1.0, 1.0))

    u = f * f * (3.0 - 2.0 * f)
    ux, uy = u[..., 0], u[..., 1]
    return a + (b - a) * ux + (c - a) * uy * (1.0 - ux) + (d - b) * ux * uy


class ValueNoise2D(Node):
    """Fractal value noise over screen coordinates."""

    name = "ValueNoise2D"

    _ANGLE = 0.5
    _ROT = np.array(
        [[math.cos(_ANGLE), math.sin(_ANGLE)], [-math.sin(_ANGLE), math.cos(_ANGLE)]]
    )

    def inputs(self) -> list[NodeTerminal]:
        return [
            NodeTerminal("scale", Role.vec2(1.0, 1.0)),
            NodeTerminal("octaves", Role.vec1(3.0)),
            NodeTerminal("offset", Role.vec2(0.0, 0.0)),
        ]

    def outputs(self) -> list[NodeTerminal]:
        return [NodeTerminal("output", Role.vec4(0.0, 0.0, 0.0, 0.0), "x")]

    def evaluate_2d(self, uv, resolution, inputs):
        octaves = _octaves(inputs[1])
        x = np.asarray(uv, dtype=np.float64) * 20.0 / inputs[0][..., :2] + inputs[2][..., :2]

        if octaves == 0:
            return _broadcast4(_noise_2d(x))

        v = 0.0
        a = 0.5
        for _ in range(octaves):
            v = v + a * _noise_2d(x)
            x = (x @ self._ROT.T) * 2.0 + 100.0
            a *= 0.5
        return _broadcast4(v)


def _hash_1d(n: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    n = _fract(n) * 0.011
    n = n * (n + 7.5)
    n = n * (n + n)
    return _fract(n)


_NOISE_STEP = np.array([110.0, 241.0, 171.0])


def _noise_3d(x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    i = np.floor(x)
    f = _fract(x)
    n = np.sum(i * _NOISE_STEP, axis=-1)
    u = f * f * (3.0 - 2.0 * f)
    ux, uy, uz = u[..., 0], u[..., 1], u[..., 2]

    def corner(dx: float, dy: float, dz: float) -> npt.NDArray[np.float64]:
        return _hash_1d(n + float(np.dot(_NOISE_STEP, (dx, dy, dz))))

    def lerp(a, b, t):
        return a * (1.0 - t) + b * t

    return lerp(
        lerp(lerp(corner(0, 0, 0), corner(1, 0, 0), ux), lerp(corner(0, 1, 0), corner(1, 1, 0), ux), uy),
        lerp(lerp(corner(0, 0, 1), corner(1, 0, 1), ux), lerp(corner(0, 1, 1), corner(1, 1, 1), ux), uy),
        uz,
    )


class ValueNoise3D(Node):
    """Fractal value noise over world positions."""

    name = "ValueNoise3D"
    domain = NodeDomain.D3

    def inputs(self) -> list[NodeTerminal]:
        return [
            NodeTerminal("scale", Role.vec3(1.0, 1.0, 1.0)),
            NodeTerminal("octaves", Role.vec1(3.0)),
            NodeTerminal("offset", Role.vec3(0.0, 0.0, 0.0)),
        ]

    def outputs(self) -> list[NodeTerminal]:
        return [NodeTerminal("output", Role.vec4(0.0, 0.0, 0.0, 0.0), "x")]

    def evaluate_3d(self, pos, inputs):
        octaves = _octaves(inputs[1])
        x = np.asarray(pos, dtype=np.float64) / inputs[0][..., :3] + inputs[2][..., :3]

        if octaves <= 0:
            return _broadcast4(_noise_3d(x))

        v = 0.0
        a = 0.5
        for _ in range(octaves):
            v = v + a * _noise_3d(x)
            x = x * 2.0 + 100.0
            a *= 0.5
        return _broadcast4(v)


class Mul(Node):
    """Component-wise product of two values."""

    name = "Mul"

    def inputs(self) -> list[NodeTerminal]:
        return [
            NodeTerminal("input", Role.vec4(1.0, 1.0, 1.0, 1.0)),
            NodeTerminal("value", Role.vec4(1.0, 1.0, 1.0, 1.0)),
        ]

    def outputs(self) -> list[NodeTerminal]:
        return [NodeTerminal("output", Role.vec4(0.0, 0.0, 0.0, 0.0), "xyzw")]

    def evaluate_2d(self, uv, resolution, inputs):
        return inputs[0] * inputs[1]


class Point3D(Node):
    """A constant 3D point."""

    name = "Point3D"

    def inputs(self) -> list[NodeTerminal]:
        return [NodeTerminal("position", Role.vec3(1.0, 1.0, 1.0))]

    def outputs(self) -> list[NodeTerminal]:
        return [NodeTerminal("position", Role.vec3(0.0, 0.0, 0.0), "xyz")]

    def evaluate_2d(self, uv, resolution, inputs):
        return inputs[0]


class Output(Node):
    """The designated result of a graph."""

    name = "Output"

    def inputs(self) -> list[NodeTerminal]:
        return [NodeTerminal("input", Role.vec4(1.0, 1.0, 1.0, 1.0))]

    def outputs(self) -> list[NodeTerminal]:
        return [NodeTerminal("output", Role.vec4(0.0, 0.0, 0.0, 0.0), "xyzw")]

    def evaluate_2d(self, uv, resolution, inputs):
        return inputs[0]


class MaterialNode(Node):
    """Surface material. Numbered 1, 2, ... in declaration order."""

    name = "Material"
    role = NodeRole.MATERIAL

    def inputs(self) -> list[NodeTerminal]:
        return [
            NodeTerminal("albedo", Role.vec3(1.0, 1.0, 1.0)),
            NodeTerminal("emission", Role.vec3(0.0, 0.0, 0.0)),
            NodeTerminal("roughness", Role.vec1(0.5)),
            NodeTerminal("metallic", Role.vec1(0.0)),
        ]

    def outputs(self) -> list[NodeTerminal]:
        return [NodeTerminal("output", Role.vec1(0.0), "x")]

    def evaluate_2d(self, uv, resolution, inputs):
        return inputs[0]


# =============================================================================
# Shape Nodes
# =============================================================================


class SphereNode(Node):
    """Sphere: ``|p - center| - radius - modifier/2``."""

    name = "Sphere"
    role = NodeRole.SHAPE
    domain = NodeDomain.D3

    def inputs(self) -> list[NodeTerminal]:
        return [
            NodeTerminal("center", Role.vec3(0.0, 0.0, 0.0)),
            NodeTerminal("radius", Role.vec1(1.0)),
            NodeTerminal("modifier", Role.vec1(0.0)),
            NodeTerminal("material", Role.vec1(1.0)),
        ]

    def outputs(self) -> list[NodeTerminal]:
        return [NodeTerminal("output", Role.vec4(0.0, 0.0, 0.0, 0.0), "x")]

    def evaluate_3d(self, pos, inputs):
        center, radius, modifier = inputs[0][..., :3], inputs[1][..., 0], inputs[2][..., 0]
        d = np.linalg.norm(np.subtract(pos, center), axis=-1) - radius - modifier * 0.5
        return _broadcast4(d)


def _sd_box_origin(p: npt.NDArray[np.float64], size: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    q = np.abs(p) - size
    outside = np.linalg.norm(np.maximum(q, 0.0), axis=-1)
    inside = np.minimum(np.max(q, axis=-1), 0.0)
    return outside + inside


class BoxNode(Node):
    """Box spanning from ``pointA`` to ``pointB`` with cross-section half-size ``size``."""

    name = "Box"
    role = NodeRole.SHAPE
    domain = NodeDomain.D3

    def inputs(self) -> list[NodeTerminal]:
        return [
            NodeTerminal("pointA", Role.vec3(0.0, 0.0, 0.0)),
            NodeTerminal("pointB", Role.vec3(0.0, 1.0, 0.0)),
            NodeTerminal("size", Role.vec3(0.1, 0.1, 0.1)),
            NodeTerminal("modifier", Role.vec1(0.0)),
            NodeTerminal("material", Role.vec1(1.0)),
        ]

    def outputs(self) -> list[NodeTerminal]:
        return [NodeTerminal("output", Role.vec4(0.0, 0.0, 0.0, 0.0), "x")]

    def evaluate_3d(self, pos, inputs):
        a = inputs[0][..., :3]
        b = inputs[1][..., :3]
        size = np.array(np.broadcast_to(inputs[2][..., :3], np.broadcast_shapes(a.shape, b.shape, inputs[2][..., :3].shape)))
        modifier = inputs[3][..., 0]

        ab = b - a
        ab_len = np.linalg.norm(ab, axis=-1, keepdims=True)
        center = a + ab * 0.5
        # Degenerate boxes (A == B) fall back to the world Z axis
        z = np.where(ab_len > 0.0, ab / np.where(ab_len > 0.0, ab_len, 1.0), (0.0, 0.0, 1.0))
        helper = np.where(np.abs(z[..., :1]) < 0.99, (1.0, 0.0, 0.0), (0.0, 1.0, 0.0))
        x = np.cross(z, helper)
        x = x / np.linalg.norm(x, axis=-1, keepdims=True)
        y = np.cross(z, x)

        rel = np.subtract(pos, center)
        local = np.stack([np.sum(rel * x, axis=-1), np.sum(rel * y, axis=-1), np.sum(rel * z, axis=-1)], axis=-1)
        size[..., 2] = ab_len[..., 0] * 0.5
        d = _sd_box_origin(local, size) - modifier * 0.5
        return _broadcast4(d)


class LineNode(Node):
    """Capsule around the segment ``pointA``-``pointB``."""

    name = "Line"
    role = NodeRole.SHAPE
    domain = NodeDomain.D3

    def inputs(self) -> list[NodeTerminal]:
        return [
            NodeTerminal("pointA", Role.vec3(0.0, 0.0, 0.0)),
            NodeTerminal("pointB", Role.vec3(1.0, 0.0, 0.0)),
            NodeTerminal("radius", Role.vec1(0.1)),
            NodeTerminal("modifier", Role.vec1(0.0)),
            NodeTerminal("material", Role.vec1(0.0)),
        ]

    def outputs(self) -> list[NodeTerminal]:
        return [NodeTerminal("output", Role.vec4(0.0, 0.0, 0.0, 0.0), "x")]

    def evaluate_3d(self, pos, inputs):
        a = inputs[0][..., :3]
        b = inputs[1][..., :3]
        radius, modifier = inputs[2][..., 0], inputs[3][..., 0]

        pa = np.subtract(pos, a)
        ba = b - a
        ba_dot = np.sum(ba * ba, axis=-1)
        h = np.sum(pa * ba, axis=-1) / np.where(ba_dot > 0.0, ba_dot, 1.0)
        h = np.clip(h, 0.0, 1.0)
        d = np.linalg.norm(pa - ba * h[..., None], axis=-1) - radius
        return _broadcast4(d - modifier * 0.5)


def install(registry: NodeRegistry) -> None:
    """Register every built-in node type."""
    for node in (
        ValueNoise2D(),
        ValueNoise3D(),
        Mul(),
        Point3D(),
        Output(),
        MaterialNode(),
        SphereNode(),
        BoxNode(),
        LineNode(),
    ):
        registry.register(node)
