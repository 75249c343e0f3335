"""Node interface and the registry of known node types.

A node type declares its input and output terminals and evaluates its
canonical 4-component output from 4-component inputs. 2D nodes are driven
by normalized screen coordinates (procedural images), 3D nodes by a world
position (shapes).

Inputs, ``uv`` and ``pos`` may be stacked along leading axes; a node must
broadcast over them and return an array of shape (..., 4).
"""

from __future__ import annotations

from enum import Enum
from typing import ClassVar

import numpy as np
import numpy.typing as npt

from .terminal import NodeTerminal

Vec4Array = npt.NDArray[np.float64]


class NodeRole(Enum):
    """What a node contributes to the graph."""

    NODE = "node"
    SHAPE = "shape"
    MATERIAL = "material"


class NodeDomain(Enum):
    """Which evaluation entry point a node uses."""

    D2 = "2d"
    D3 = "3d"


class Node:
    """Base class of all node types.

    Subclasses set ``name`` (the type name used in graph headers), ``role``
    and ``domain``, declare their terminals and override the matching
    ``evaluate_*`` method.
    """

    name: ClassVar[str] = ""
    role: ClassVar[NodeRole] = NodeRole.NODE
    domain: ClassVar[NodeDomain] = NodeDomain.D2

    def inputs(self) -> list[NodeTerminal]:
        return []

    def outputs(self) -> list[NodeTerminal]:
        return []

    def output(self, name: str) -> NodeTerminal | None:
        """Output terminal called ``name``, if the node has one."""
        for terminal in self.outputs():
            if terminal.name == name:
                return terminal
        return None

    def evaluate_2d(
        self, uv: npt.NDArray[np.float64], resolution: npt.NDArray[np.float64], inputs: list[Vec4Array]
    ) -> Vec4Array:
        """Evaluate a procedural (screen-space) node. Returns zeros by default."""
        return np.zeros(np.shape(uv)[:-1] + (4,))

    def evaluate_3d(self, pos: npt.NDArray[np.float64], inputs: list[Vec4Array]) -> Vec4Array:
        """Evaluate a position-driven node. Returns ``+inf`` by default."""
        return np.full(np.shape(pos)[:-1] + (4,), np.inf)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class NodeRegistry:
    """Maps node type names to node instances.

    Example:
        >>> registry = NodeRegistry.default()
        >>> "Sphere" in registry
        True
    """

    def __init__(self) -> None:
        self._nodes: dict[str, Node] = {}

    @classmethod
    def default(cls) -> NodeRegistry:
        """Registry with the built-in node library installed."""
        from .library import install

        registry = cls()
        install(registry)
        return registry

    def register(self, node: Node) -> None:
        """Add a node type, replacing any type of the same name."""
        if not node.name:
            raise ValueError(f"Node type {type(node).__name__} has no name")
        self._nodes[node.name] = node

    def get(self, name: str) -> Node | None:
        return self._nodes.get(name)

    def names(self) -> list[str]:
        return list(self._nodes)

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)
