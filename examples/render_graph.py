#!/usr/bin/env python3
"""Render a node graph as a procedural image.

Every pixel of the image is the output of the graph's Output node.

Usage:
    python -m examples.render_graph [graph] [options]

Options:
    --width WIDTH       Image width in pixels (default: 512)
    --height HEIGHT     Image height in pixels (default: 512)
    --output OUTPUT     Output file path (default: graph.png)

Example:
    python -m examples.render_graph examples/graphs/clouds.graph --width 256
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

DEFAULT_GRAPH = Path(__file__).parent / "graphs" / "clouds.graph"


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Render a node graph as a procedural image.")
    parser.add_argument("graph", nargs="?", type=Path, default=DEFAULT_GRAPH, help="Graph source file")
    parser.add_argument("--width", type=int, default=512, help="Image width in pixels (default: 512)")
    parser.add_argument("--height", type=int, default=512, help="Image height in pixels (default: 512)")
    parser.add_argument("--output", type=str, default="graph.png", help="Output file path (default: graph.png)")
    return parser.parse_args()


def main() -> int:
    """Main entry point."""
    from forged.core.integrator import render_graph
    from forged.core.renderbuffer import RenderBuffer
    from forged.nodes import Graph, GraphError

    args = parse_args()
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    graph = Graph()
    try:
        graph.compile_file(args.graph)
    except GraphError as e:
        print(f"Error in {args.graph}: {e}", file=sys.stderr)
        return 1

    print(f"Rendering {args.graph.name} ({len(graph)} nodes) at {args.width}x{args.height}...")
    start_time = time.time()
    buffer = render_graph(graph, RenderBuffer(args.width, args.height))
    buffer.save(args.output)
    print(f"Saved to: {Path(args.output).absolute()} in {time.time() - start_time:.2f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
