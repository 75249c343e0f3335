"""Renderer policies.

Components:
    base: Renderer interface, custom shader callbacks and the factory
    phong: Ambient, diffuse and Blinn specular shading with fake sky occlusion
    pbr: Opaque material albedo of model buffer hits
    pathtracer: Spherical-light direct lighting with diffuse bounces
"""

from .base import Renderer, Shader, create_renderer
from .pathtracer import PathTracer
from .pbr import PBR
from .phong import Phong

__all__ = [
    "PBR",
    "PathTracer",
    "Phong",
    "Renderer",
    "Shader",
    "create_renderer",
]
