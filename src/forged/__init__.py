"""Signed distance field scene evaluation and rendering.

This package ray marches scenes built from signed distance functions, with
voxelized model buffers, a small shading node graph and tile-parallel
rendering. It supports:
- SDF primitives with subtract and smooth-min composition
- Analytic spheres and planes
- A Taichi-backed voxel model buffer with batch ray marching
- A text-defined node graph for procedural images and models
- Phong, PBR and spherical-light path-traced shading
- Progressive accumulation and PNG export

Subpackages:
    core: Rays, render buffers, tiles, the integrator and progressive rendering
    geometry: SDF primitives and analytic objects
    materials: Material model
    volume: Voxelized model buffer
    nodes: Node terminals, node library and the graph interpreter
    scene: Settings, lights and the scene builder
    camera: Pinhole camera
    renderer: Shading policies
    preview: Tone mapping and export utilities

Taichi must be initialized by the host (``ti.init``) before a model buffer
is created.
"""

__version__ = "0.1.0"
