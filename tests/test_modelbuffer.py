"""Tests for the voxel model buffer.

This module tests:
- Grid sizing, indexing and the world mapping
- Population with the minimum-distance rule
- Freezing
- Sampling, normals and ray marching (scalar and batch)

Note: Imports are done inside test methods to avoid Taichi initialization issues.
The conftest.py fixture initializes Taichi before tests run.
"""

import math

import numpy as np
import pytest


class ConstantSource:
    """Distance source returning the same distance and material everywhere."""

    def __init__(self, distance, material):
        self.distance = distance
        self.material = material

    def model_distance(self, points):
        n = len(points)
        return np.full(n, self.distance), np.full(n, self.material, dtype=np.int32)


class TestModelBufferGrid:
    """Sizing, indexing and world mapping."""

    def test_size_rounds_up(self):
        """Test that the voxel counts are ceil(bounds * density)."""
        from forged.volume import ModelBuffer

        buffer = ModelBuffer((1.0, 0.5, 0.25), density=10)
        assert buffer.size == (10, 5, 3)
        assert buffer.voxel_count == 150

    def test_index_formula(self):
        """Test index = z * sy * sx + y * sx + x."""
        from forged.volume import ModelBuffer

        buffer = ModelBuffer((2.0, 2.0, 2.0), density=4)
        assert buffer.size == (8, 8, 8)
        assert buffer.index(1, 2, 3) == 3 * 64 + 2 * 8 + 1
        assert buffer.index(0, 0, 0) == 0
        assert buffer.index(7, 7, 7) == buffer.voxel_count - 1

    def test_world_mapping_round_trip(self):
        """Test that a voxel's world position maps back to the voxel."""
        from forged.volume import ModelBuffer

        buffer = ModelBuffer((2.0, 2.0, 2.0), density=4)
        np.testing.assert_allclose(buffer.index_to_world(0, 0, 0), [-1.0, 0.0, -1.0])
        for coords in [(0, 0, 0), (3, 4, 5), (7, 7, 7)]:
            assert buffer.world_to_index(buffer.index_to_world(*coords)) == coords

    def test_world_to_index_outside(self):
        """Test that positions outside the volume map to None."""
        from forged.volume import ModelBuffer

        buffer = ModelBuffer((2.0, 2.0, 2.0), density=4)
        assert buffer.world_to_index((0.0, -0.1, 0.0)) is None
        assert buffer.world_to_index((1.5, 1.0, 0.0)) is None

    def test_bbox_rests_on_ground(self):
        """Test that the volume is centered in X/Z and starts at Y = 0."""
        from forged.volume import ModelBuffer

        box = ModelBuffer((2.0, 3.0, 4.0), density=2).bbox()
        np.testing.assert_allclose(box.min, [-1.0, 0.0, -2.0])
        np.testing.assert_allclose(box.max, [1.0, 3.0, 2.0])

    def test_memory_usage(self):
        """Test the human readable memory estimate."""
        from forged.volume import ModelBuffer

        assert ModelBuffer((2.0, 2.0, 2.0), density=4).memory_usage() == "6.00 KB"

    @pytest.mark.parametrize(
        "bounds,density",
        [((0.0, 1.0, 1.0), 4), ((1.0, -1.0, 1.0), 4), ((1.0, 1.0), 4), ((1.0, 1.0, 1.0), 0)],
    )
    def test_invalid_configuration(self, bounds, density):
        """Test that non-positive bounds or density are rejected."""
        from forged.volume import ModelBuffer

        with pytest.raises(ValueError):
            ModelBuffer(bounds, density)


class TestModelBufferPopulation:
    """Filling the grid."""

    def test_new_buffer_is_empty(self):
        """Test that every voxel starts at +inf with material 0."""
        from forged.volume import ModelBuffer

        buffer = ModelBuffer((1.0, 1.0, 1.0), density=4)
        assert np.all(np.isinf(buffer.distances()))
        assert not buffer.materials().any()
        voxel = buffer.get(0, 0, 0)
        assert math.isinf(voxel.distance)
        assert voxel.material == 0

    def test_get_out_of_range(self):
        """Test that get returns None outside the grid."""
        from forged.volume import ModelBuffer

        buffer = ModelBuffer((1.0, 1.0, 1.0), density=4)
        assert buffer.get(4, 0, 0) is None
        assert buffer.get(-1, 0, 0) is None

    def test_model_keeps_minimum(self):
        """Test that modelling twice keeps the smaller distance and its material."""
        from forged.volume import ModelBuffer

        buffer = ModelBuffer((1.0, 1.0, 1.0), density=4)
        buffer.model(ConstantSource(0.5, 1))
        buffer.model(ConstantSource(0.8, 2))
        np.testing.assert_allclose(buffer.distances(), 0.5)
        assert np.all(buffer.materials() == 1)

        buffer.model(ConstantSource(0.2, 3))
        np.testing.assert_allclose(buffer.distances(), 0.2, rtol=1e-6)
        assert np.all(buffer.materials() == 3)

    def test_model_equals_union_of_sources(self):
        """Test that two sources give the voxel-wise minimum of both."""
        from forged.geometry import SDF
        from forged.scene import Scene
        from forged.volume import ModelBuffer

        buffer = ModelBuffer((2.0, 2.0, 2.0), density=8)
        sphere = Scene([SDF.sphere((0.0, 1.0, 0.0), 0.5)])
        buffer.model(ConstantSource(0.25, 7), workers=2)
        buffer.model(sphere, workers=3)

        sx, sy, sz = buffer.size
        zs, ys, xs = np.meshgrid(np.arange(sz), np.arange(sy), np.arange(sx), indexing="ij")
        world = np.stack([xs, ys, zs], axis=-1) * buffer.voxel_size - (1.0, 0.0, 1.0)
        expected = np.minimum(np.linalg.norm(world - (0.0, 1.0, 0.0), axis=-1) - 0.5, 0.25)

        np.testing.assert_allclose(buffer.distances(), expected, atol=1e-5)
        inside = buffer.distances() < 0.25
        assert np.all(buffer.materials()[inside] == 1)
        assert np.all(buffer.materials()[~inside] == 7)

    def test_add_sphere(self):
        """Test that an analytic sphere is folded in with its material."""
        from forged.volume import ModelBuffer

        buffer = ModelBuffer((2.0, 2.0, 2.0), density=16)
        buffer.add_sphere((0.0, 1.0, 0.0), 0.5, material=3)

        assert buffer.sample((0.0, 1.0, 0.0)) == pytest.approx(-0.5)
        voxel = buffer.get(*buffer.world_to_index((0.0, 1.0, 0.0)))
        assert voxel.material == 3

    def test_set_and_get(self):
        """Test that set overwrites a voxel and ignores bad coordinates."""
        from forged.volume import ModelBuffer, Voxel

        buffer = ModelBuffer((1.0, 1.0, 1.0), density=4)
        buffer.set(1, 2, 3, Voxel(distance=-0.25, density=0.5, material=4))
        buffer.set(10, 0, 0, Voxel(distance=0.0, density=0.0, material=1))

        assert buffer.get(1, 2, 3) == Voxel(-0.25, 0.5, 4)
        assert buffer.distances()[3, 2, 1] == pytest.approx(-0.25)

    def test_frozen_buffer_rejects_writes(self):
        """Test that population after freeze raises."""
        from forged.volume import ModelBuffer, Voxel

        buffer = ModelBuffer((1.0, 1.0, 1.0), density=4)
        buffer.freeze()
        assert buffer.frozen

        with pytest.raises(RuntimeError, match="frozen"):
            buffer.model(ConstantSource(0.1, 1))
        with pytest.raises(RuntimeError, match="frozen"):
            buffer.add_sphere((0.0, 0.5, 0.0), 0.1)
        with pytest.raises(RuntimeError, match="frozen"):
            buffer.set(0, 0, 0, Voxel(0.0, 0.0, 0))


class TestModelBufferQueries:
    """Sampling, normals and marching."""

    @pytest.fixture
    def sphere_buffer(self):
        from forged.volume import ModelBuffer

        buffer = ModelBuffer((2.0, 2.0, 2.0), density=16)
        buffer.add_sphere((0.0, 1.0, 0.0), 0.5, material=3)
        buffer.freeze()
        return buffer

    def test_sample_outside_is_inf(self, sphere_buffer):
        """Test that sampling outside the volume returns +inf."""
        assert math.isinf(sphere_buffer.sample((5.0, 5.0, 5.0)))
        assert math.isinf(sphere_buffer.sample((0.0, -0.5, 0.0)))

    def test_compute_normal(self, sphere_buffer):
        """Test that the gradient points away from the sphere center."""
        normal = sphere_buffer.compute_normal((0.0, 1.0, 0.5))
        np.testing.assert_allclose(normal, [0.0, 0.0, 1.0], atol=1e-6)

    def test_raymarch_hits_sphere(self, sphere_buffer):
        """Test a ray hitting the sphere head on."""
        from forged.core.ray import Ray, vec3

        hit = sphere_buffer.raymarch(Ray(vec3(0.0, 1.0, 5.0), vec3(0.0, 0.0, -1.0)))

        assert hit is not None
        voxel_size = float(sphere_buffer.voxel_size[2])
        assert abs(hit.position[2] - 0.5) < 2.0 * voxel_size
        np.testing.assert_allclose(hit.normal, [0.0, 0.0, 1.0], atol=1e-6)
        assert hit.voxel.material == 3

    def test_raymarch_misses(self, sphere_buffer):
        """Test rays missing the volume and missing the sphere inside it."""
        from forged.core.ray import Ray, vec3

        assert sphere_buffer.raymarch(Ray(vec3(5.0, 1.0, 5.0), vec3(0.0, 0.0, -1.0))) is None
        assert sphere_buffer.raymarch(Ray(vec3(0.9, 1.9, 5.0), vec3(0.0, 0.0, -1.0))) is None

    def test_batch_agrees_with_scalar(self, sphere_buffer):
        """Test that the Taichi batch march matches the scalar march."""
        from forged.core.ray import Ray, normalize

        origins = np.array([[0.0, 1.0, 5.0], [0.2, 1.1, 5.0], [5.0, 1.0, 5.0], [0.0, 3.0, 0.0]])
        directions = normalize(np.array([[0.0, 0.0, -1.0], [0.0, 0.0, -1.0], [0.0, 0.0, -1.0], [0.0, -1.0, 0.0]]))

        batch = sphere_buffer.raymarch_batch(origins, directions)
        assert batch.hit.tolist() == [True, True, False, True]

        voxel_size = float(np.max(sphere_buffer.voxel_size))
        for i in range(len(origins)):
            hit = sphere_buffer.raymarch(Ray(origins[i], directions[i]))
            assert (hit is not None) == batch.hit[i]
            if hit is not None:
                np.testing.assert_allclose(batch.positions[i], hit.position, atol=voxel_size)
                assert batch.materials[i] == 3

    def test_batch_shape_mismatch(self, sphere_buffer):
        """Test that mismatched origins and directions are rejected."""
        with pytest.raises(ValueError, match="same shape"):
            sphere_buffer.raymarch_batch(np.zeros((2, 3)), np.zeros((3, 3)))

    def test_batch_empty(self, sphere_buffer):
        """Test that an empty batch returns empty results."""
        hits = sphere_buffer.raymarch_batch(np.zeros((0, 3)), np.zeros((0, 3)))
        assert hits.hit.shape == (0,)

    def test_kernels_compile_from_fresh_buffer(self):
        """Test that the Taichi functions compile with live type annotations."""
        import forged.volume.modelbuffer as modelbuffer
        from forged.core.ray import Ray, vec3

        # Postponed annotations turn tm.vec3 into a string Taichi cannot resolve.
        assert "annotations" not in vars(modelbuffer)

        buffer = modelbuffer.ModelBuffer((2.0, 2.0, 2.0), 16)
        buffer.add_sphere((0.0, 1.0, 0.0), 0.5)
        hit = buffer.raymarch(Ray(vec3(0.0, 1.0, 3.0), vec3(0.0, 0.0, -1.0)))
        assert hit is not None
        batch = buffer.raymarch_batch(np.array([[0.0, 1.0, 3.0]]), np.array([[0.0, 0.0, -1.0]]))
        assert batch.hit.tolist() == [True]
