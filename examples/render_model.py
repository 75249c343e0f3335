#!/usr/bin/env python3
"""Voxelize a node graph model and render it.

The shape nodes of the graph are sampled into a ModelBuffer, then the
buffer is ray marched and shaded with the graph's Material nodes. The PBR
renderer shows the plain albedo; the path tracer lights the model with one
spherical light.

Usage:
    python -m examples.render_model [graph] [options]

Options:
    --density N         Voxels per world unit (default: 48)
    --renderer TYPE     pbr or pathtracer (default: pbr)
    --passes PASSES     Path tracer passes (default: 8)
    --size SIZE         Image width and height (default: 320)
    --output OUTPUT     Output file path (default: model.png)

Example:
    python -m examples.render_model examples/graphs/table.graph --renderer pathtracer
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

import taichi as ti

DEFAULT_GRAPH = Path(__file__).parent / "graphs" / "table.graph"


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Voxelize a node graph model and render it.")
    parser.add_argument("graph", nargs="?", type=Path, default=DEFAULT_GRAPH, help="Graph source file")
    parser.add_argument("--density", type=float, default=48.0, help="Voxels per world unit (default: 48)")
    parser.add_argument("--renderer", choices=("pbr", "pathtracer"), default="pbr", help="Shading policy")
    parser.add_argument("--passes", type=int, default=8, help="Path tracer passes (default: 8)")
    parser.add_argument("--size", type=int, default=320, help="Image width and height (default: 320)")
    parser.add_argument("--output", type=str, default="model.png", help="Output file path (default: model.png)")
    return parser.parse_args()


def main() -> int:
    """Main entry point."""
    args = parse_args()
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")
    ti.init(arch=ti.cpu)

    from forged.camera import Pinhole
    from forged.core.integrator import RenderContext
    from forged.core.progressive import ProgressiveRenderer
    from forged.nodes import Graph, GraphError
    from forged.scene import Light, RendererSettings, Scene, Settings
    from forged.volume import ModelBuffer

    graph = Graph()
    try:
        graph.compile_file(args.graph)
    except GraphError as e:
        print(f"Error in {args.graph}: {e}", file=sys.stderr)
        return 1

    start_time = time.time()
    model = ModelBuffer((2.0, 2.0, 2.0), density=args.density)
    print(f"Modelling {args.graph.name} into {model!r}...")
    model.model(graph)

    settings = Settings(
        width=args.size,
        height=args.size,
        background=(0.2, 0.2, 0.25),
        renderer=RendererSettings(renderer_type=args.renderer),
    )
    scene = Scene(lights=[Light(position=(2.0, 4.0, 3.0), radius=0.5)])
    camera = Pinhole(origin=(1.2, 1.6, 2.4), center=(0.0, 0.6, 0.0), fov=45.0)
    renderer = ProgressiveRenderer(RenderContext(settings, camera, scene=scene, model=model, graph=graph))

    passes = args.passes if args.renderer == "pathtracer" else 1
    for current, target in renderer.render_progressive(passes):
        print(f"\r  Progress: {current}/{target} passes", end="", flush=True)
    print()

    renderer.save_image(args.output)
    print(f"Saved to: {Path(args.output).absolute()} in {time.time() - start_time:.2f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
