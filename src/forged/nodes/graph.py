"""Node graph compiler and interpreter.

A node graph is written in a small line-oriented text format:

    // comments start with '//' or '#'
    [noise: ValueNoise2D]
    scale = vec2(2.0, 2.0)
    octaves = 4

    [tint: Mul]
    input = noise.output
    value = vec4(1.0, 0.5, 0.2, 1.0)

    [result: Output]
    input = tint.output

Each ``[name: Type]`` header opens a node; ``key = value`` lines set its
inputs. A value is a vector literal (``vec2``/``vec3``/``vec4``), a number,
or a ``node.output`` reference to an output of another node in the graph.

Compilation validates the source, resolves references and orders the nodes
with Kahn's algorithm (referenced node before referencing node); cyclic
graphs are rejected. Every error is a GraphError carrying the 1-based source
line.

Execution evaluates the nodes in dependency order. Each input is resolved to
the literal given in the source, to the referenced node's output (swizzled
and re-typed to the input's role) or to the input's default. The result of a
2D execution is the output of the graph's single ``Output`` node.

The graph also serves as a model source: ``model_distance`` evaluates all
shape nodes at a batch of world positions, and ``evaluate_material`` turns
the n-th ``Material`` node into a Material.

Example:
    >>> from forged.nodes.graph import Graph
    >>> graph = Graph()
    >>> graph.compile(source)
    >>> color = graph.execute(10, 20, (64, 64))
"""

from __future__ import annotations

import logging
import re
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
import numpy.typing as npt

from forged.materials.material import Material

from .base import Node, NodeDomain, NodeRegistry, NodeRole, Vec4Array
from .terminal import NodeTerminal, NodeTerminalRole

logger = logging.getLogger(__name__)

_VECTOR_LITERAL = re.compile(r"^vec([234])\s*\((.*)\)$")


class GraphError(ValueError):
    """A node graph failed to compile or execute.

    Attributes:
        line: 1-based source line of the error, or None for errors that
            concern the whole graph (cycles, missing output).
    """

    def __init__(self, message: str, line: int | None = None) -> None:
        super().__init__(message)
        self.line = line


@dataclass(frozen=True)
class Value:
    """A literal input value."""

    role: NodeTerminalRole


@dataclass(frozen=True)
class Reference:
    """An input wired to an output terminal of another node."""

    node_index: int
    terminal: NodeTerminal


TerminalInput = Value | Reference


@dataclass
class ParsedNode:
    """One node declaration of the source.

    Attributes:
        name: Node name from the header.
        node_type: Node type name from the header.
        node: The node type implementation.
        params: Input name to literal value or reference.
        line_number: 1-based line of the header.
        is_output: Whether this is the graph's Output node.
    """

    name: str
    node_type: str
    node: Node
    params: dict[str, TerminalInput] = field(default_factory=dict)
    line_number: int = 0
    is_output: bool = False

    @property
    def role(self) -> NodeRole:
        return self.node.role

    @property
    def domain(self) -> NodeDomain:
        return self.node.domain


@dataclass
class _PendingReference:
    node_index: int
    key: str
    target: str
    output: str
    text: str
    line: int


def _parse_number(text: str) -> float | None:
    try:
        return float(text)
    except ValueError:
        return None


class Graph:
    """A compiled node graph.

    Attributes:
        registry: Known node types.
        parsed_nodes: Node declarations in source order.
        sorted_nodes: Indices into ``parsed_nodes`` in dependency order.
        output_index: Index of the Output node, if the graph has one.
        shapes: Indices of shape nodes in source order.
        materials: Indices of Material nodes in source order.
    """

    def __init__(self, registry: NodeRegistry | None = None) -> None:
        self.registry = registry or NodeRegistry.default()
        self.parsed_nodes: list[ParsedNode] = []
        self.sorted_nodes: list[int] = []
        self.output_index: int | None = None
        self.shapes: list[int] = []
        self.materials: list[int] = []
        self._plans: dict[tuple[int, ...], list[int]] = {}
        self._material_cache: dict[int, Material] = {}

    # =========================================================================
    # Compilation
    # =========================================================================

    def compile(self, source: str) -> None:
        """Parse, validate and sort a graph source.

        On failure the graph keeps its previous state.

        Raises:
            GraphError: On any syntax, reference or structural error.
        """
        parsed = self.parse(source)
        order = self.sort(parsed)

        self.parsed_nodes = parsed
        self.sorted_nodes = order
        self.output_index = next((i for i, n in enumerate(parsed) if n.is_output), None)
        self.shapes = [i for i, n in enumerate(parsed) if n.role is NodeRole.SHAPE]
        self.materials = [i for i, n in enumerate(parsed) if n.role is NodeRole.MATERIAL]
        self._plans = {}
        self._material_cache = {}

        logger.info(
            "Compiled node graph: %d nodes, %d shapes, %d materials",
            len(parsed),
            len(self.shapes),
            len(self.materials),
        )

    def compile_file(self, path: str | Path) -> None:
        """Compile the graph stored in a text file.

        Raises:
            GraphError: If the file cannot be read or fails to compile.
        """
        try:
            source = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise GraphError(f"could not read file '{path}'") from e
        self.compile(source)

    def parse(self, source: str) -> list[ParsedNode]:
        """Parse a graph source into node declarations with resolved references."""
        nodes: list[ParsedNode] = []
        names: dict[str, int] = {}
        pending: list[_PendingReference] = []
        current: ParsedNode | None = None

        for line_number, line in enumerate(source.splitlines(), start=1):
            trimmed = line.strip()
            if not trimmed or trimmed.startswith("//") or trimmed.startswith("#"):
                continue

            if trimmed.startswith("[") and trimmed.endswith("]"):
                current = self._parse_header(trimmed, line_number, nodes, names)
                continue

            if "=" in trimmed:
                if current is None:
                    raise GraphError(
                        f"Parameter found outside of a node definition at line {line_number}: '{trimmed}'",
                        line_number,
                    )
                key, _, value = trimmed.partition("=")
                key = key.strip()
                value = value.strip()
                if not any(t.name == key for t in current.node.inputs()):
                    raise GraphError(
                        f"Unknown input '{key}' for node type '{current.node_type}' at line {line_number}",
                        line_number,
                    )
                literal = self._parse_literal(value, line_number)
                if literal is not None:
                    current.params[key] = literal
                else:
                    target, output = self._split_reference(value, line_number)
                    pending.append(_PendingReference(len(nodes) - 1, key, target, output, value, line_number))
                continue

            raise GraphError(f"Unrecognized line format at line {line_number}: '{trimmed}'", line_number)

        for ref in pending:
            nodes[ref.node_index].params[ref.key] = self._resolve(ref, nodes, names)

        return nodes

    def _parse_header(
        self, trimmed: str, line_number: int, nodes: list[ParsedNode], names: dict[str, int]
    ) -> ParsedNode:
        name, sep, node_type = trimmed[1:-1].partition(":")
        name = name.strip()
        node_type = node_type.strip()
        if not sep or not name or not node_type:
            raise GraphError(f"Malformed node header at line {line_number}: '{trimmed}'", line_number)

        node = self.registry.get(node_type)
        if node is None:
            raise GraphError(f"Unknown node type '{node_type}' at line {line_number}", line_number)
        if name in names:
            raise GraphError(f"Duplicate node name '{name}' at line {line_number}", line_number)

        is_output = node_type == "Output"
        if is_output and any(n.is_output for n in nodes):
            raise GraphError(f"Graph declares more than one Output node at line {line_number}", line_number)

        parsed = ParsedNode(name, node_type, node, line_number=line_number, is_output=is_output)
        names[name] = len(nodes)
        nodes.append(parsed)
        return parsed

    @staticmethod
    def _parse_literal(value: str, line_number: int) -> Value | None:
        match = _VECTOR_LITERAL.match(value)
        if match:
            count = int(match.group(1))
            parts = [p.strip() for p in match.group(2).split(",")]
            numbers = [_parse_number(p) for p in parts]
            if len(numbers) != count or any(n is None for n in numbers):
                raise GraphError(f"Malformed vec{count} literal '{value}' at line {line_number}", line_number)
            return Value(NodeTerminalRole(numbers))

        number = _parse_number(value)
        if number is not None:
            return Value(NodeTerminalRole.vec1(number))
        return None

    @staticmethod
    def _split_reference(value: str, line_number: int) -> tuple[str, str]:
        if "." not in value:
            raise GraphError(f"Invalid parameter value '{value}' at line {line_number}", line_number)
        parts = value.split(".")
        if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
            raise GraphError(
                f"Invalid reference format '{value}' at line {line_number} (expected format: node.output)",
                line_number,
            )
        return parts[0].strip(), parts[1].strip()

    @staticmethod
    def _resolve(ref: _PendingReference, nodes: list[ParsedNode], names: dict[str, int]) -> Reference:
        index = names.get(ref.target)
        if index is None:
            raise GraphError(
                f"Invalid reference '{ref.text}': node '{ref.target}' not found at line {ref.line}", ref.line
            )
        target = nodes[index]
        terminal = target.node.output(ref.output)
        if terminal is None:
            raise GraphError(
                f"Invalid reference '{ref.text}': output '{ref.output}' not found in node type "
                f"'{target.node_type}' at line {ref.line}",
                ref.line,
            )
        return Reference(index, terminal)

    @staticmethod
    def sort(nodes: list[ParsedNode]) -> list[int]:
        """Order nodes so that every referenced node precedes its users.

        Kahn's algorithm; ties are broken by source order.

        Raises:
            GraphError: If the references form a cycle.
        """
        successors: list[list[int]] = [[] for _ in nodes]
        in_degree = [0] * len(nodes)
        for index, node in enumerate(nodes):
            for param in node.params.values():
                if isinstance(param, Reference):
                    successors[param.node_index].append(index)
                    in_degree[index] += 1

        queue = deque(i for i, d in enumerate(in_degree) if d == 0)
        order: list[int] = []
        while queue:
            index = queue.popleft()
            order.append(index)
            for succ in successors[index]:
                in_degree[succ] -= 1
                if in_degree[succ] == 0:
                    queue.append(succ)

        if len(order) < len(nodes):
            cyclic = [nodes[i].name for i, d in enumerate(in_degree) if d > 0]
            raise GraphError(f"Node graph contains a cycle involving: {', '.join(cyclic)}")
        return order

    # =========================================================================
    # Execution
    # =========================================================================

    def _plan(self, targets: tuple[int, ...]) -> list[int]:
        """Sorted indices of ``targets`` and everything they depend on."""
        plan = self._plans.get(targets)
        if plan is None:
            needed = set()
            stack = list(targets)
            while stack:
                index = stack.pop()
                if index in needed:
                    continue
                needed.add(index)
                stack.extend(
                    p.node_index for p in self.parsed_nodes[index].params.values() if isinstance(p, Reference)
                )
            plan = [i for i in self.sorted_nodes if i in needed]
            self._plans[targets] = plan
        return plan

    def _resolve_inputs(self, parsed: ParsedNode, outputs: dict[int, Vec4Array]) -> list[Vec4Array]:
        args = []
        for terminal in parsed.node.inputs():
            param = parsed.params.get(terminal.name)
            if isinstance(param, Value):
                role = param.role
            elif isinstance(param, Reference):
                extracted = param.terminal.role.extract_from_vec4(outputs[param.node_index], param.terminal.swizzle)
                role = extracted.coerce_to(len(terminal.role))
            else:
                role = terminal.role
            args.append(role.to_vec4())
        return args

    def _run(
        self,
        plan: list[int],
        uv: npt.NDArray[np.float64],
        resolution: npt.NDArray[np.float64],
        pos: npt.NDArray[np.float64],
    ) -> tuple[dict[int, Vec4Array], dict[int, list[Vec4Array]]]:
        outputs: dict[int, Vec4Array] = {}
        arguments: dict[int, list[Vec4Array]] = {}
        for index in plan:
            parsed = self.parsed_nodes[index]
            args = self._resolve_inputs(parsed, outputs)
            if parsed.domain is NodeDomain.D3:
                outputs[index] = parsed.node.evaluate_3d(pos, args)
            else:
                outputs[index] = parsed.node.evaluate_2d(uv, resolution, args)
            arguments[index] = args
        return outputs, arguments

    def execute_batch(
        self, xs: npt.ArrayLike, ys: npt.ArrayLike, screen_size: tuple[float, float]
    ) -> npt.NDArray[np.float64]:
        """Execute the graph for many pixels at once.

        Args:
            xs: Pixel x coordinates, shape (N,).
            ys: Pixel y coordinates, shape (N,).
            screen_size: (width, height) of the image.

        Returns:
            Colors of shape (N, 4).

        Raises:
            GraphError: If the graph has no Output node.
        """
        if self.output_index is None:
            raise GraphError("Node graph has no Output node")
        w, h = (float(s) for s in screen_size)
        xs = np.asarray(xs, dtype=np.float64)
        ys = np.asarray(ys, dtype=np.float64)
        uv = np.stack([xs / w, (h - ys) / h], axis=-1)
        resolution = np.array((w, h))
        outputs, _ = self._run(self._plan((self.output_index,)), uv, resolution, np.zeros(3))
        return np.array(np.broadcast_to(outputs[self.output_index], uv.shape[:-1] + (4,)))

    def execute(self, x: int, y: int, screen_size: tuple[float, float]) -> npt.NDArray[np.float64]:
        """Execute the graph for pixel (x, y); uv = (x / w, (h - y) / h).

        Returns:
            The RGBA output of the Output node.
        """
        return self.execute_batch([x], [y], screen_size)[0]

    # =========================================================================
    # Model Source
    # =========================================================================

    def model_distance(
        self, points: npt.ArrayLike
    ) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.int32]]:
        """Union of all shape nodes at the given world positions.

        Args:
            points: World positions of shape (N, 3).

        Returns:
            Minimum distance over all shapes (``+inf`` without shapes) and the
            material id of the nearest shape, each of shape (N,).
        """
        pos = np.asarray(points, dtype=np.float64)
        n = pos.shape[0]
        distances = np.full(n, np.inf)
        materials = np.zeros(n, dtype=np.int32)
        if not self.shapes:
            return distances, materials

        outputs, arguments = self._run(self._plan(tuple(self.shapes)), np.zeros(2), np.zeros(2), pos)
        for index in self.shapes:
            d = np.broadcast_to(outputs[index][..., 0], (n,))
            material_input = [t.name for t in self.parsed_nodes[index].node.inputs()].index("material")
            mat = np.broadcast_to(np.rint(arguments[index][material_input][..., 0]).astype(np.int32), (n,))
            closer = d < distances
            distances = np.where(closer, d, distances)
            materials = np.where(closer, mat, materials)
        return distances, materials

    def evaluate_material(self, material_id: int) -> Material:
        """Material of the ``material_id``-th Material node (1-based).

        Unknown ids, including 0, give the default material.
        """
        cached = self._material_cache.get(material_id)
        if cached is not None:
            return cached

        if 1 <= material_id <= len(self.materials):
            index = self.materials[material_id - 1]
            _, arguments = self._run(self._plan((index,)), np.zeros(2), np.zeros(2), np.zeros(3))
            albedo, emission, roughness, metallic = arguments[index]
            material = Material(
                rgb=tuple(albedo[:3]),
                emission=tuple(emission[:3]),
                roughness=float(roughness[0]),
                metallic=float(metallic[0]),
            )
        else:
            material = Material()
        material.finalize()
        self._material_cache[material_id] = material
        return material

    def __len__(self) -> int:
        return len(self.parsed_nodes)
