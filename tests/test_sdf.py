"""Tests for the SDF algebra.

This module tests:
- Primitive distance functions (sphere, plane, box, capped cone)
- Subtraction and smooth-min operators and their fold order
- Tetrahedron normals
- Scalar and vectorized evaluation
"""

import numpy as np
import pytest


class TestPrimitives:
    """Distances of the bare primitives."""

    def test_sphere_distance(self):
        """Test center, surface and outside distances of a sphere."""
        from forged.geometry import SDF

        sphere = SDF.sphere((1.0, 0.0, 0.0), 0.5)
        assert sphere.distance((1.0, 0.0, 0.0)) == pytest.approx(-0.5)
        assert sphere.distance((1.5, 0.0, 0.0)) == pytest.approx(0.0)
        assert sphere.distance((3.0, 0.0, 0.0)) == pytest.approx(1.5)

    def test_plane_distance(self):
        """Test that the plane distance is dot(p, n) + offset."""
        from forged.geometry import SDF

        plane = SDF.plane((0.0, 1.0, 0.0), 0.5)
        assert plane.distance((0.0, 0.0, 0.0)) == pytest.approx(0.5)
        assert plane.distance((3.0, -0.5, 7.0)) == pytest.approx(0.0)

    def test_plane_normal_is_normalized(self):
        """Test that the plane constructor normalizes its normal."""
        from forged.geometry import SDF

        plane = SDF.plane((0.0, 2.0, 0.0), 0.0)
        np.testing.assert_allclose(plane.normal, [0.0, 1.0, 0.0])

    def test_box_center_distance(self):
        """Test that the box center lies min(size) inside the surface."""
        from forged.geometry import SDF

        box = SDF.box((0.0, 0.0, 0.0), (1.0, 2.0, 3.0))
        assert box.distance((0.0, 0.0, 0.0)) == pytest.approx(-1.0)

    def test_box_outside_distances(self):
        """Test face and corner distances of a box."""
        from forged.geometry import SDF

        box = SDF.box((0.0, 0.0, 0.0), (1.0, 1.0, 1.0))
        assert box.distance((3.0, 0.0, 0.0)) == pytest.approx(2.0)
        assert box.distance((2.0, 2.0, 2.0)) == pytest.approx(np.sqrt(3.0))

    def test_rounded_box_keeps_face_distance(self):
        """Test that rounding only changes the corners."""
        from forged.geometry import SDF

        sharp = SDF.box(size=(1.0, 1.0, 1.0))
        rounded = SDF.box(size=(1.0, 1.0, 1.0), rounding=0.2)
        assert rounded.distance((2.0, 0.0, 0.0)) == pytest.approx(sharp.distance((2.0, 0.0, 0.0)))
        assert rounded.distance((2.0, 2.0, 2.0)) > sharp.distance((2.0, 2.0, 2.0))

    def test_capped_cone_distances(self):
        """Test points inside, above and beside a capped cone."""
        from forged.geometry import SDF

        cone = SDF.capped_cone(height=1.0, bottom_radius=1.0, top_radius=0.5)
        assert cone.distance((0.0, 0.0, 0.0)) < 0.0
        assert cone.distance((0.0, 2.0, 0.0)) == pytest.approx(1.0)
        assert cone.distance((0.0, -2.0, 0.0)) == pytest.approx(1.0)
        assert cone.distance((3.0, -1.0, 0.0)) == pytest.approx(2.0)

    def test_distance_returns_float_for_single_point(self):
        """Test that a single point gives a Python float."""
        from forged.geometry import SDF

        assert isinstance(SDF.sphere().distance((0.0, 2.0, 0.0)), float)

    def test_vectorized_matches_scalar(self):
        """Test that batch evaluation equals point-by-point evaluation."""
        from forged.geometry import SDF

        box = SDF.box((0.2, 0.0, -0.1), (0.5, 0.7, 0.3), rounding=0.05)
        rng = np.random.default_rng(7)
        points = rng.uniform(-2.0, 2.0, size=(32, 3))

        batch = box.distance(points)
        assert batch.shape == (32,)
        np.testing.assert_allclose(batch, [box.distance(p) for p in points])


class TestBooleanOperators:
    """Subtraction and smooth minimum."""

    def test_op_smin_hard_min_for_non_positive_k(self):
        """Test that k <= 0 degrades to min(a, b)."""
        from forged.geometry import op_smin

        assert op_smin(0.3, 0.7, 0.0) == pytest.approx(0.3)
        assert op_smin(0.3, 0.7, -1.0) == pytest.approx(0.3)

    def test_op_smin_below_min_at_midpoint(self):
        """Test that equal distances blend below their minimum."""
        from forged.geometry import op_smin

        assert op_smin(1.0, 1.0, 0.5) == pytest.approx(0.875)

    def test_op_smin_converges_to_min(self):
        """Test that a shrinking blend radius approaches the hard minimum."""
        from forged.geometry import op_smin

        errors = [abs(float(op_smin(0.5, 0.6, k)) - 0.5) for k in (0.5, 0.1, 0.01)]
        assert errors[0] > errors[1] >= errors[2]
        assert errors[2] == pytest.approx(0.0, abs=1e-9)

    def test_op_smin_far_apart_is_min(self):
        """Test that distances further apart than k are not blended."""
        from forged.geometry import op_smin

        assert op_smin(0.0, 2.0, 0.5) == pytest.approx(0.0)

    def test_op_subtract(self):
        """Test max(d, -other)."""
        from forged.geometry import op_subtract

        assert op_subtract(-1.0, -0.5) == pytest.approx(0.5)
        assert op_subtract(1.0, 1.5) == pytest.approx(1.0)

    def test_subtract_hollows_sphere(self):
        """Test that subtracting a small sphere removes the center."""
        from forged.geometry import SDF

        outer = SDF.sphere(radius=1.0)
        outer.subtract(SDF.sphere(radius=0.5))

        assert outer.distance((0.0, 0.0, 0.0)) == pytest.approx(0.5)
        assert outer.distance((0.75, 0.0, 0.0)) < 0.0
        assert outer.distance((2.0, 0.0, 0.0)) == pytest.approx(1.0)

    def test_smin_merges_spheres(self):
        """Test that the blend of two spheres is inside both shapes' union."""
        from forged.geometry import SDF

        a = SDF.sphere((-0.5, 0.0, 0.0), 1.0)
        b = SDF.sphere((0.5, 0.0, 0.0), 1.0)
        a.smin(b, 0.3)

        hard = min(SDF.sphere((-0.5, 0.0, 0.0), 1.0).distance((0.0, 0.0, 0.0)), b.distance((0.0, 0.0, 0.0)))
        assert a.distance((0.0, 0.0, 0.0)) < hard

    def test_operators_fold_in_insertion_order(self):
        """Test that subtract-then-union differs from union-then-subtract."""
        from forged.geometry import SDF

        def build(order):
            base = SDF.sphere(radius=1.0)
            for op in order:
                if op == "subtract":
                    base.subtract(SDF.sphere(radius=0.5))
                else:
                    base.smin(SDF.sphere(radius=0.25), 0.0)
            return base

        origin = (0.0, 0.0, 0.0)
        assert build(["subtract", "smin"]).distance(origin) == pytest.approx(-0.25)
        assert build(["smin", "subtract"]).distance(origin) == pytest.approx(0.5)

    def test_operand_composes_its_own_operators(self):
        """Test that an operand contributes its composed distance."""
        from forged.geometry import SDF

        hole = SDF.sphere(radius=0.5)
        hole.subtract(SDF.sphere(radius=0.25))
        body = SDF.sphere(radius=1.0)
        body.subtract(hole)

        # The operand's own hollow leaves a core of the body in place
        assert body.distance((0.0, 0.0, 0.0)) < 0.0
        assert body.distance((0.375, 0.0, 0.0)) > 0.0

    def test_operands(self):
        """Test that operands lists the direct boolean operands."""
        from forged.geometry import SDF

        a, b, c = SDF.sphere(), SDF.sphere(), SDF.sphere()
        a.subtract(b)
        a.smin(c, 0.1)
        assert a.operands() == [b, c]


class TestNormals:
    """Tetrahedron surface normals."""

    def test_sphere_normal(self):
        """Test that the sphere normal points away from the center."""
        from forged.geometry import SDF

        sphere = SDF.sphere((0.0, 1.0, 0.0), 1.0)
        np.testing.assert_allclose(sphere.surface_normal((1.0, 1.0, 0.0)), [1.0, 0.0, 0.0], atol=1e-4)
        np.testing.assert_allclose(sphere.surface_normal((0.0, 2.0, 0.0)), [0.0, 1.0, 0.0], atol=1e-4)

    def test_normals_are_unit_length(self):
        """Test unit length of normals for a batch of surface points."""
        from forged.geometry import SDF

        box = SDF.box(size=(1.0, 0.5, 0.25))
        points = np.array([[1.0, 0.0, 0.0], [0.0, 0.5, 0.0], [0.0, 0.0, -0.25]])
        normals = box.surface_normal(points)
        np.testing.assert_allclose(np.linalg.norm(normals, axis=-1), 1.0)
        np.testing.assert_allclose(normals, [[1, 0, 0], [0, 1, 0], [0, 0, -1]], atol=1e-4)

    def test_plane_normal(self):
        """Test that a plane's estimated normal is its own normal."""
        from forged.geometry import SDF

        plane = SDF.plane((0.0, 1.0, 0.0), 1.0)
        np.testing.assert_allclose(plane.surface_normal((0.3, -1.0, 2.0)), [0.0, 1.0, 0.0], atol=1e-6)
