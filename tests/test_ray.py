"""Unit tests for the ray module.

Tests cover:
- Ray dataclass: at, advanced, box and sphere intersection
- Vector utility functions (dot, cross, normalize, length, mix)
- Stacked (N, 3) operation of the helpers
"""

import numpy as np
import pytest


class TestVectorUtilities:
    """Tests for the vector helpers."""

    def test_as_vec3_rejects_wrong_shape(self):
        """Test that as_vec3 refuses anything that is not a 3-vector."""
        from forged.core.ray import as_vec3

        with pytest.raises(ValueError, match="3-component"):
            as_vec3((1.0, 2.0))

    def test_as_vec3_copies(self):
        """Test that as_vec3 never aliases its input."""
        from forged.core.ray import as_vec3

        source = np.array([1.0, 2.0, 3.0])
        v = as_vec3(source)
        v[0] = 10.0
        assert source[0] == 1.0

    def test_dot_and_length(self):
        """Test dot product and length of single vectors."""
        from forged.core.ray import dot, length, vec3

        assert dot(vec3(1, 2, 3), vec3(4, 5, 6)) == pytest.approx(32.0)
        assert length(vec3(3, 4, 0)) == pytest.approx(5.0)

    def test_helpers_work_on_stacks(self):
        """Test that the helpers operate along the last axis."""
        from forged.core.ray import length, normalize

        v = np.array([[3.0, 4.0, 0.0], [0.0, 0.0, 2.0]])
        np.testing.assert_allclose(length(v), [5.0, 2.0])
        np.testing.assert_allclose(normalize(v), [[0.6, 0.8, 0.0], [0.0, 0.0, 1.0]])

    def test_normalize_zero_vector(self):
        """Test that normalizing a zero vector returns zeros instead of NaN."""
        from forged.core.ray import normalize, vec3

        result = normalize(vec3(0, 0, 0))
        assert not np.any(np.isnan(result))
        np.testing.assert_array_equal(result, [0.0, 0.0, 0.0])

    def test_cross_product(self):
        """Test x cross y = z."""
        from forged.core.ray import cross, vec3

        np.testing.assert_allclose(cross(vec3(1, 0, 0), vec3(0, 1, 0)), [0.0, 0.0, 1.0])

    def test_mix(self):
        """Test linear interpolation end points and midpoint."""
        from forged.core.ray import mix

        assert mix(2.0, 4.0, 0.0) == pytest.approx(2.0)
        assert mix(2.0, 4.0, 1.0) == pytest.approx(4.0)
        assert mix(2.0, 4.0, 0.5) == pytest.approx(3.0)

    def test_core_exports(self):
        """Test that the core package exports only helpers the renderers use."""
        import forged.core
        import forged.core.ray

        assert set(forged.core.__all__) >= {"as_vec3", "cross", "dot", "length", "mix", "normalize", "vec3"}
        for name in ("reflect", "refract"):
            assert name not in forged.core.__all__
            assert not hasattr(forged.core.ray, name)


class TestRay:
    """Tests for the Ray dataclass."""

    def test_at(self):
        """Test point evaluation along the ray."""
        from forged.core.ray import Ray, vec3

        ray = Ray(vec3(1, 2, 3), vec3(0, 0, -1))
        np.testing.assert_allclose(ray.at(0.0), [1.0, 2.0, 3.0])
        np.testing.assert_allclose(ray.at(2.5), [1.0, 2.0, 0.5])

    def test_advanced_moves_origin(self):
        """Test that advanced returns a new ray with a moved origin."""
        from forged.core.ray import Ray, vec3

        ray = Ray(vec3(0, 0, 0), vec3(1, 0, 0))
        moved = ray.advanced(2.0)
        np.testing.assert_allclose(moved.origin, [2.0, 0.0, 0.0])
        np.testing.assert_allclose(ray.origin, [0.0, 0.0, 0.0])

    def test_zero_direction_component(self):
        """Test that zero direction components do not raise."""
        from forged.core.ray import Ray, vec3

        ray = Ray(vec3(0, 0, 0), vec3(0, 0, 1))
        assert np.isinf(ray.inv_direction[0])
        assert ray.sign == (0, 0, 0)


class TestRayBoxIntersection:
    """Tests for the slab test."""

    def test_hit_from_outside(self):
        """Test entry and exit distances of a ray through a unit box."""
        from forged.core.ray import Aabb, Ray, vec3

        ray = Ray(vec3(0, 0, 5), vec3(0, 0, -1))
        box = Aabb(vec3(-1, -1, -1), vec3(1, 1, 1))
        t_min, t_max = ray.intersect_aabb(box)
        assert t_min == pytest.approx(4.0)
        assert t_max == pytest.approx(6.0)

    def test_origin_inside(self):
        """Test that an origin inside the box yields a negative t_min."""
        from forged.core.ray import Aabb, Ray, vec3

        ray = Ray(vec3(0, 0, 0), vec3(1, 0, 0))
        t_min, t_max = ray.intersect_aabb(Aabb(vec3(-1, -1, -1), vec3(1, 1, 1)))
        assert t_min == pytest.approx(-1.0)
        assert t_max == pytest.approx(1.0)

    def test_miss(self):
        """Test a ray passing beside the box."""
        from forged.core.ray import Aabb, Ray, vec3

        ray = Ray(vec3(5, 0, 5), vec3(0, 0, -1))
        assert ray.intersect_aabb(Aabb(vec3(-1, -1, -1), vec3(1, 1, 1))) is None

    def test_box_behind(self):
        """Test that a box behind the origin is not hit."""
        from forged.core.ray import Aabb, Ray, vec3

        ray = Ray(vec3(0, 0, 5), vec3(0, 0, 1))
        assert ray.intersect_aabb(Aabb(vec3(-1, -1, -1), vec3(1, 1, 1))) is None

    def test_aabb_helpers(self):
        """Test box center and containment."""
        from forged.core.ray import Aabb, vec3

        box = Aabb(vec3(0, 0, 0), vec3(2, 4, 6))
        np.testing.assert_allclose(box.center(), [1.0, 2.0, 3.0])
        assert box.contains((1.0, 1.0, 1.0))
        assert not box.contains((3.0, 1.0, 1.0))


class TestRaySphereIntersection:
    """Tests for Ray.intersect_sphere."""

    def test_hit_front(self):
        """Test the near intersection of a sphere in front of the ray."""
        from forged.core.ray import Ray, vec3

        ray = Ray(vec3(0, 0, 5), vec3(0, 0, -1))
        assert ray.intersect_sphere(vec3(0, 0, 0), 1.0) == pytest.approx(4.0)

    def test_inside_returns_far_hit(self):
        """Test that a ray from the center hits the far side."""
        from forged.core.ray import Ray, vec3

        ray = Ray(vec3(0, 0, 0), vec3(0, 0, -1))
        assert ray.intersect_sphere(vec3(0, 0, 0), 2.0) == pytest.approx(2.0)

    def test_miss(self):
        """Test a ray passing beside the sphere."""
        from forged.core.ray import Ray, vec3

        ray = Ray(vec3(0, 3, 5), vec3(0, 0, -1))
        assert ray.intersect_sphere(vec3(0, 0, 0), 1.0) is None
