"""Pytest configuration for forged tests.

This module provides shared fixtures for all test modules, including
Taichi initialization which must happen once per session.
"""

import pytest
import taichi as ti


@pytest.fixture(scope="session", autouse=True)
def init_taichi_session():
    """Initialize Taichi once for the entire test session.

    Model buffers allocate Taichi fields, which requires an initialized
    runtime; calling ti.init() again mid-session would invalidate them.
    """
    ti.init(arch=ti.cpu, random_seed=42)
    yield


@pytest.fixture
def sphere_scene():
    """Scene with a unit sphere at the origin and one light above the camera."""
    from forged.geometry import SDF
    from forged.materials import Material
    from forged.scene import Light, SceneBuilder

    builder = SceneBuilder()
    builder.add_sdf("ball", SDF.sphere((0.0, 0.0, 0.0), 1.0, Material(rgb=(0.8, 0.2, 0.2))))
    builder.add_light("key", Light(position=(2.0, 4.0, 3.0)))
    return builder.build()


@pytest.fixture
def small_settings():
    """64x64 single-sample settings with a recognizable background."""
    from forged.scene import Settings

    return Settings(width=64, height=64, background=(0.1, 0.2, 0.3), tile_size=(16, 16))
