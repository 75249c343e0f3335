"""Typed node terminals and the swizzle rules between them.

Nodes exchange canonical 4-component values. A terminal declares how many
components it really carries (its role: Vec1 to Vec4) together with a
default value, and a swizzle string telling which of the four canonical
components it occupies.

Values may be a single vector of shape (n,) or a stack of shape (..., n);
all conversions operate on the last axis, so a whole tile of pixels or a
slice of voxels flows through the same code.

Example:
    >>> import numpy as np
    >>> from forged.nodes.terminal import NodeTerminalRole
    >>> role = NodeTerminalRole.vec2(0.0, 0.0)
    >>> role.extract_from_vec4(np.array([1.0, 2.0, 3.0, 4.0]), "zw").value
    array([3., 4.])
"""

from __future__ import annotations

from dataclasses import dataclass
from itertools import cycle, islice

import numpy as np
import numpy.typing as npt

_COMPONENTS = "xyzw"
_TYPE_NAMES = {1: "float", 2: "vec2", 3: "vec3", 4: "vec4"}


class NodeTerminalRole:
    """A typed value with 1 to 4 components.

    Attributes:
        value: Array of shape (..., n), n being the role's length.
    """

    __slots__ = ("value",)

    def __init__(self, value: npt.ArrayLike) -> None:
        v = np.asarray(value, dtype=np.float64)
        if v.ndim == 0:
            v = v.reshape(1)
        if not 1 <= v.shape[-1] <= 4:
            raise ValueError(f"A terminal carries 1 to 4 components, got {v.shape[-1]}")
        self.value = v

    @classmethod
    def vec1(cls, x: float) -> NodeTerminalRole:
        return cls((x,))

    @classmethod
    def vec2(cls, x: float, y: float) -> NodeTerminalRole:
        return cls((x, y))

    @classmethod
    def vec3(cls, x: float, y: float, z: float) -> NodeTerminalRole:
        return cls((x, y, z))

    @classmethod
    def vec4(cls, x: float, y: float, z: float, w: float) -> NodeTerminalRole:
        return cls((x, y, z, w))

    def __len__(self) -> int:
        return self.value.shape[-1]

    def __repr__(self) -> str:
        return f"NodeTerminalRole({self.type_name()}, {self.value.tolist()})"

    def type_name(self) -> str:
        """Shading language type name of the role."""
        return _TYPE_NAMES[len(self)]

    def to_vec4(self) -> npt.NDArray[np.float64]:
        """Widen to 4 components: Vec1 broadcasts, the others are zero padded."""
        n = len(self)
        if n == 1:
            return np.repeat(self.value, 4, axis=-1)
        if n == 4:
            return self.value
        pad = [(0, 0)] * (self.value.ndim - 1) + [(0, 4 - n)]
        return np.pad(self.value, pad)

    def coerce_to(self, target_len: int) -> NodeTerminalRole:
        """Convert to a role with ``target_len`` components via ``to_vec4``."""
        if not 1 <= target_len <= 4:
            return NodeTerminalRole.vec1(0.0)
        return NodeTerminalRole(self.to_vec4()[..., :target_len])

    def extract_from_vec4(self, vec: npt.ArrayLike, swizzle: str) -> NodeTerminalRole:
        """Read a value of this role out of a canonical 4-component value.

        Swizzle characters select components; missing characters default
        positionally to x, then y, then z. A Vec4 role takes the whole value.
        Unknown characters read as 0.
        """
        v = np.asarray(vec, dtype=np.float64)
        n = len(self)
        if n == 4:
            return NodeTerminalRole(v)

        parts = []
        for i in range(n):
            ch = swizzle[i] if i < len(swizzle) else _COMPONENTS[i]
            if ch in _COMPONENTS:
                parts.append(v[..., _COMPONENTS.index(ch)])
            else:
                parts.append(np.zeros(v.shape[:-1]))
        return NodeTerminalRole(np.stack(parts, axis=-1))


@dataclass(frozen=True)
class NodeTerminal:
    """A named input or output slot of a node.

    Attributes:
        name: Terminal name used in the graph source.
        role: Role and default value.
        swizzle: Position of the terminal inside the canonical vec4.
    """

    name: str
    role: NodeTerminalRole
    swizzle: str = ""

    @classmethod
    def with_swizzle_offset(cls, name: str, role: NodeTerminalRole, offset: int) -> NodeTerminal:
        """Create a terminal occupying ``len(role)`` components starting at ``offset``."""
        swizzle = "".join(islice(cycle(_COMPONENTS), offset, offset + len(role)))
        return cls(name, role, swizzle)
