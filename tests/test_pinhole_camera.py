"""Unit tests for the pinhole camera module.

Tests cover:
- Orthonormal basis computation
- Ray generation for center and corner coordinates
- Sub-pixel offsets for antialiasing
- Aspect ratio handling and field of view validation
"""

import math

import numpy as np
import pytest


class TestCameraSetup:
    """Tests for camera setup and basis computation."""

    def test_orthonormal_basis(self):
        """Test that u, v, w form an orthonormal basis."""
        from forged.camera import Pinhole

        u, v, w = Pinhole(origin=(2.0, 3.0, 4.0), center=(0.0, 0.5, 0.0)).basis()

        for a, b in [(u, v), (u, w), (v, w)]:
            assert abs(np.dot(a, b)) < 1e-9
        for axis in (u, v, w):
            assert np.linalg.norm(axis) == pytest.approx(1.0)

    def test_basis_looking_down_negative_z(self):
        """Test basis directions for a camera looking down -z."""
        from forged.camera import Pinhole

        u, v, w = Pinhole(origin=(0.0, 0.0, 0.0), center=(0.0, 0.0, -1.0)).basis()

        np.testing.assert_allclose(w, [0.0, 0.0, 1.0], atol=1e-12)
        np.testing.assert_allclose(u, [1.0, 0.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(v, [0.0, 1.0, 0.0], atol=1e-12)

    @pytest.mark.parametrize("fov", [0.0, -10.0, 180.0, 270.0])
    def test_invalid_fov(self, fov):
        """Test that a field of view outside (0, 180) is rejected."""
        from forged.camera import Pinhole

        with pytest.raises(ValueError, match="Field of view"):
            Pinhole(fov=fov)


class TestRayGeneration:
    """Tests for primary rays."""

    def test_center_ray_points_at_target(self):
        """Test that the image center looks straight at the target."""
        from forged.camera import Pinhole

        camera = Pinhole(origin=(0.0, 1.0, 3.0), center=(0.0, 0.0, 0.0), fov=70.0)
        ray = camera.create_ray((0.5, 0.5), (64, 64))

        expected = np.array([0.0, -1.0, -3.0]) / math.sqrt(10.0)
        np.testing.assert_allclose(ray.origin, [0.0, 1.0, 3.0])
        np.testing.assert_allclose(ray.direction, expected, atol=1e-12)

    def test_corner_rays(self):
        """Test the corners of a square image with a 90 degree field of view."""
        from forged.camera import Pinhole

        camera = Pinhole(origin=(0.0, 0.0, 3.0), center=(0.0, 0.0, 0.0), fov=90.0)
        _, directions = camera.create_rays([(0.0, 0.0), (1.0, 1.0), (1.0, 0.5)], (100, 100))

        s = 1.0 / math.sqrt(3.0)
        np.testing.assert_allclose(directions[0], [-s, -s, -s], atol=1e-12)
        np.testing.assert_allclose(directions[1], [s, s, -s], atol=1e-12)
        np.testing.assert_allclose(directions[2], [1.0 / math.sqrt(2.0), 0.0, -1.0 / math.sqrt(2.0)], atol=1e-12)

    def test_aspect_ratio_shrinks_vertical_extent(self):
        """Test that a wide image keeps the horizontal field of view."""
        from forged.camera import Pinhole

        camera = Pinhole(origin=(0.0, 0.0, 0.0), center=(0.0, 0.0, -1.0), fov=90.0)
        _, directions = camera.create_rays([(0.5, 1.0), (1.0, 0.5)], (200, 100))

        top = directions[0] / -directions[0][2]
        right = directions[1] / -directions[1][2]
        assert top[1] == pytest.approx(0.5)
        assert right[0] == pytest.approx(1.0)

    def test_offset_is_in_pixels(self):
        """Test that an offset of half the width moves by half the image."""
        from forged.camera import Pinhole

        camera = Pinhole(origin=(0.0, 0.0, 3.0), center=(0.0, 0.0, 0.0), fov=90.0)
        shifted = camera.create_ray((0.5, 0.5), (100, 100), offset=(50.0, 0.0))
        edge = camera.create_ray((1.0, 0.5), (100, 100))

        np.testing.assert_allclose(shifted.direction, edge.direction, atol=1e-12)

    def test_batch_shapes_and_normalization(self):
        """Test ray batch shapes and unit directions."""
        from forged.camera import Pinhole

        camera = Pinhole()
        uv = np.random.default_rng(3).random((25, 2))
        origins, directions = camera.create_rays(uv, (64, 48), offset=np.zeros((25, 2)))

        assert origins.shape == (25, 3)
        assert directions.shape == (25, 3)
        np.testing.assert_allclose(np.linalg.norm(directions, axis=-1), 1.0)
        np.testing.assert_allclose(origins, np.broadcast_to(camera.origin, (25, 3)))

    def test_batch_matches_single(self):
        """Test that batched rays equal rays generated one at a time."""
        from forged.camera import Pinhole

        camera = Pinhole(origin=(1.0, 2.0, 3.0), center=(0.0, 0.5, 0.0), fov=50.0)
        uv = [(0.1, 0.2), (0.7, 0.9)]
        _, directions = camera.create_rays(uv, (80, 60))
        for i, coords in enumerate(uv):
            np.testing.assert_allclose(camera.create_ray(coords, (80, 60)).direction, directions[i])
