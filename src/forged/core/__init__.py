"""Core rendering module.

This module contains the fundamental building blocks of the renderer:

Components:
    ray: Ray and bounding box types, hit records and vector utilities
    renderbuffer: Float RGBA pixel storage with tile merge and 8-bit export
    tiles: Tile generation and the thread-pool tile scheduler
    integrator: Render context and the per-pixel sampling loop
    progressive: Iterative accumulation wrapper around the integrator

Vector math uses NumPy arrays of shape (3,) or stacks of shape (..., 3).
"""

from .ray import (
    Aabb,
    HitRecord,
    Ray,
    as_vec3,
    cross,
    dot,
    length,
    mix,
    normalize,
    vec3,
)
from .renderbuffer import RenderBuffer
from .tiles import RenderCancelled, Tile, TileRenderError, TileScheduler, generate_tiles

# Note: integrator and progressive are NOT imported here to avoid circular imports.
# Import directly from forged.core.integrator or forged.core.progressive when needed.

__all__ = [
    "Aabb",
    "HitRecord",
    "Ray",
    "RenderBuffer",
    "RenderCancelled",
    "Tile",
    "TileRenderError",
    "TileScheduler",
    "as_vec3",
    "cross",
    "dot",
    "generate_tiles",
    "length",
    "mix",
    "normalize",
    "vec3",
]
