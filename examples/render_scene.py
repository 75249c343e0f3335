#!/usr/bin/env python3
"""Render a small SDF scene.

This script builds a scene from signed distance primitives (a sphere with a
box carved out of it, smoothly blended with a capped cone), puts it on an
analytic floor under one light and renders it through the tile scheduler.
The path tracer refines the image progressively.

Usage:
    python -m examples.render_scene [options]

Options:
    --width WIDTH        Image width in pixels (default: 400)
    --height HEIGHT      Image height in pixels (default: 300)
    --renderer TYPE      phong or pathtracer (default: phong)
    --passes PASSES      Path tracer passes (default: 16)
    --antialias N        N x N samples per pixel (default: 2)
    --output OUTPUT      Output file path (default: scene.png)
    --quiet              Suppress progress output

Example:
    python -m examples.render_scene --renderer pathtracer --passes 32
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

import taichi as ti


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Render a small SDF scene.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--width", type=int, default=400, help="Image width in pixels (default: 400)")
    parser.add_argument("--height", type=int, default=300, help="Image height in pixels (default: 300)")
    parser.add_argument(
        "--renderer",
        choices=("phong", "pathtracer"),
        default="phong",
        help="Shading policy (default: phong)",
    )
    parser.add_argument("--passes", type=int, default=16, help="Path tracer passes (default: 16)")
    parser.add_argument("--antialias", type=int, default=2, help="N x N samples per pixel (default: 2)")
    parser.add_argument("--output", type=str, default="scene.png", help="Output file path (default: scene.png)")
    parser.add_argument("--quiet", action="store_true", help="Suppress progress output")
    return parser.parse_args()


def build_scene():
    """Create the demo scene."""
    from forged.geometry import SDF, Analytical
    from forged.materials import Material
    from forged.scene import Light, SceneBuilder

    builder = SceneBuilder()
    body = builder.add_sdf("body", SDF.sphere((0.0, 0.8, 0.0), 0.8, Material(rgb=(0.8, 0.3, 0.2))))
    notch = builder.add_sdf("notch", SDF.box((0.5, 1.2, 0.5), (0.45, 0.45, 0.45), rounding=0.05))
    cone = builder.add_sdf("cone", SDF.capped_cone((1.3, 0.5, -0.4), 0.5, 0.4, 0.1))
    body.subtract(notch)
    body.smin(cone, 0.3)

    builder.add_analytical("floor", Analytical.plane((0.0, 1.0, 0.0), 0.0, Material(rgb=(0.7, 0.7, 0.7))))
    builder.add_light("key", Light(position=(3.0, 5.0, 4.0), radius=0.5))
    return builder.build()


def render_scene(
    width: int = 400,
    height: int = 300,
    renderer_type: str = "phong",
    passes: int = 16,
    antialias: int = 2,
    output_path: str = "scene.png",
    quiet: bool = False,
) -> Path:
    """Render the demo scene and save it.

    Returns:
        Path to the saved image file.
    """
    from forged.camera import Pinhole
    from forged.core.integrator import RenderContext
    from forged.core.progressive import ProgressiveRenderer
    from forged.preview.export import save_png
    from forged.scene import RendererSettings, Settings

    if not quiet:
        print(f"Building scene ({width}x{height})...")

    settings = Settings(
        width=width,
        height=height,
        antialias=antialias,
        background=(0.6, 0.7, 0.9),
        max_distance=30.0,
        renderer=RendererSettings(renderer_type=renderer_type, depth=2),
    )
    camera = Pinhole(origin=(0.5, 2.0, 5.0), center=(0.3, 0.6, 0.0), fov=50.0)
    ctx = RenderContext(settings, camera, scene=build_scene())
    renderer = ProgressiveRenderer(ctx)

    num_passes = passes if renderer_type == "pathtracer" else 1
    start_time = time.time()

    def progress_callback(current: int, target: int) -> None:
        if not quiet:
            elapsed = time.time() - start_time
            print(f"\r  Progress: {current}/{target} passes ({elapsed:.1f}s)", end="", flush=True)

    renderer.render(num_passes, callback=progress_callback)
    if not quiet:
        print()

    output_file = Path(output_path)
    save_png(renderer.buffer, output_file, tone_map="reinhard", gamma=2.2)

    if not quiet:
        print(f"Saved to: {output_file.absolute()}")
        print(f"Total time: {time.time() - start_time:.2f}s")
    return output_file


def main() -> int:
    """Main entry point."""
    args = parse_args()
    logging.basicConfig(level=logging.WARNING if args.quiet else logging.INFO, format="%(name)s: %(message)s")

    ti.init(arch=ti.cpu)

    try:
        render_scene(
            width=args.width,
            height=args.height,
            renderer_type=args.renderer,
            passes=args.passes,
            antialias=args.antialias,
            output_path=args.output,
            quiet=args.quiet,
        )
        return 0
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
