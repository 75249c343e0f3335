"""Scene module.

Components:
    settings: Image, marching and renderer settings
    lights: Point lights with a spherical extent
    scene: Typed scene builder and the built Scene with its ray queries

A front end fills a SceneBuilder with named SDFs, analytic objects and
lights, then calls ``build()``. The resulting Scene is read-only and is
shared by all render workers.
"""

from .lights import Light
from .scene import ObjectKind, Scene, SceneBuilder, SceneHits
from .settings import RENDERER_TYPES, RendererSettings, Settings

__all__ = [
    "RENDERER_TYPES",
    "Light",
    "ObjectKind",
    "RendererSettings",
    "Scene",
    "SceneBuilder",
    "SceneHits",
    "Settings",
]
