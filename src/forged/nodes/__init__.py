"""Node graph module.

A text-defined graph of typed nodes that either produces a procedural image
(2D nodes ending in an Output node) or describes a model (shape and material
nodes) that can be voxelized into a ModelBuffer.

Components:
    terminal: Typed terminals and swizzle conversion
    base: Node interface and registry
    library: Built-in node types
    graph: Parser, topological sort and interpreter
"""

from .base import Node, NodeDomain, NodeRegistry, NodeRole
from .graph import Graph, GraphError, ParsedNode, Reference, Value
from .terminal import NodeTerminal, NodeTerminalRole

__all__ = [
    "Graph",
    "GraphError",
    "Node",
    "NodeDomain",
    "NodeRegistry",
    "NodeRole",
    "NodeTerminal",
    "NodeTerminalRole",
    "ParsedNode",
    "Reference",
    "Value",
]
