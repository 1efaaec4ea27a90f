"""
Tests for crown geometry
=========================
Test classes:
    TestConvexHull          Monotone-chain hull properties.
    TestCrownMeasurements   Caliper length / width / orientation.
    TestCrownVolume         3-D hull volume and surface area.
"""

from __future__ import annotations

import math

import numpy as np
import pytest
from scipy.spatial import ConvexHull
from shapely.geometry import MultiPoint

from shared.python.exceptions import GeometryError
from urban_tree_inventory.geometry import CrownGeometry, CrownVolumeEstimator


def _rotate(points: np.ndarray, degrees: float) -> np.ndarray:
    t = math.radians(degrees)
    rot = np.array([[math.cos(t), -math.sin(t)], [math.sin(t), math.cos(t)]])
    return points @ rot.T


class TestConvexHull:
    def test_interior_and_collinear_points_dropped(self) -> None:
        pts = [(0, 0), (1, 0), (2, 0), (2, 1), (0, 1), (1, 0.5)]
        hull = CrownGeometry.convex_hull(pts)
        assert len(hull) == 4
        assert {tuple(p) for p in hull.tolist()} == {(0, 0), (2, 0), (2, 1), (0, 1)}

    def test_counter_clockwise(self) -> None:
        hull = CrownGeometry.convex_hull([(0, 0), (3, 0), (3, 3), (0, 3), (1, 2)])
        x, y = hull[:, 0], hull[:, 1]
        signed = 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1)))
        assert signed > 0

    def test_idempotent(self) -> None:
        rng = np.random.default_rng(7)
        pts = rng.uniform(0, 10, size=(200, 2))
        hull = CrownGeometry.convex_hull(pts)
        np.testing.assert_allclose(CrownGeometry.convex_hull(hull), hull)

    def test_area_bound_and_reference(self) -> None:
        rng = np.random.default_rng(11)
        pts = rng.uniform(0, 1, size=(500, 2))
        hull = CrownGeometry.convex_hull(pts)
        area = CrownGeometry.polygon_area(hull)
        assert area <= 1.0
        assert area == pytest.approx(MultiPoint([tuple(p) for p in pts]).convex_hull.area)

    def test_area_bounds_inscribed_triangles(self) -> None:
        rng = np.random.default_rng(17)
        pts = rng.uniform(0, 10, size=(60, 2))
        hull_area = CrownGeometry.polygon_area(CrownGeometry.convex_hull(pts))
        for i, j, k in rng.integers(0, len(pts), size=(500, 3)):
            tri = CrownGeometry.polygon_area(pts[[i, j, k]])
            assert hull_area >= tri - 1e-12

    def test_duplicates_only(self) -> None:
        assert len(CrownGeometry.convex_hull([(1, 1), (1, 1), (1, 1)])) == 1


class TestCrownMeasurements:
    RHOMBUS = np.array([(0.0, 0.0), (10.0, 0.0), (5.0, 1.0), (5.0, -1.0), (5.0, 0.0)])

    def test_square(self) -> None:
        shape = CrownGeometry().measure([(0, 0), (2, 0), (2, 2), (0, 2), (1, 1)])
        assert shape.area == pytest.approx(4.0)
        assert shape.width == pytest.approx(2.0)
        assert shape.length == pytest.approx(2 * math.sqrt(2))

    def test_rectangle_width_and_length(self) -> None:
        pts = np.array([(0, 0), (4, 0), (4, 1), (0, 1)], dtype=float)
        shape = CrownGeometry().measure(_rotate(pts, 33.0))
        assert shape.width == pytest.approx(1.0)
        assert shape.length == pytest.approx(math.sqrt(17))
        assert shape.area == pytest.approx(4.0)

    def test_rhombus(self) -> None:
        shape = CrownGeometry().measure(self.RHOMBUS)
        assert shape.length == pytest.approx(10.0)
        assert shape.width == pytest.approx(10.0 / math.sqrt(26))
        assert shape.orientation == pytest.approx(0.0, abs=1e-9)

    @pytest.mark.parametrize("angle", [30.0, 90.0, 135.0, 200.0])
    def test_orientation_follows_rotation(self, angle: float) -> None:
        shape = CrownGeometry().measure(_rotate(self.RHOMBUS, angle))
        assert shape.orientation == pytest.approx(angle % 180.0, abs=1e-6)
        assert 0.0 <= shape.orientation < 180.0

    def test_width_never_exceeds_length(self) -> None:
        rng = np.random.default_rng(3)
        for _ in range(20):
            shape = CrownGeometry().measure(rng.normal(size=(30, 2)) * (3.0, 1.0))
            assert shape.width <= shape.length + 1e-12

    @pytest.mark.parametrize(
        "points",
        [
            [(0, 0), (1, 1)],
            [(0, 0), (1, 1), (2, 2), (3, 3)],
        ],
    )
    def test_degenerate(self, points: list) -> None:
        with pytest.raises(GeometryError):
            CrownGeometry().measure(points)


class TestCrownVolume:
    BOX = np.array(
        [(x, y, z) for x in (0.0, 2.0) for y in (0.0, 3.0) for z in (0.0, 4.0)]
    )

    def test_box(self) -> None:
        result = CrownVolumeEstimator().estimate(self.BOX)
        assert result.volume == pytest.approx(24.0, abs=1e-3)
        assert result.surface == pytest.approx(52.0, abs=1e-3)
        assert result.vertex_count == 8

    def test_translation_invariant(self) -> None:
        moved = CrownVolumeEstimator().estimate(self.BOX + (350000.0, 5800000.0, 40.0))
        assert moved.volume == pytest.approx(24.0, abs=1e-3)

    def test_matches_qhull_reference(self) -> None:
        rng = np.random.default_rng(5)
        pts = rng.normal(size=(300, 3)) * (4.0, 3.0, 2.0)
        result = CrownVolumeEstimator().estimate(pts)
        ref = ConvexHull(pts)
        assert result.volume == pytest.approx(ref.volume)
        assert result.surface == pytest.approx(ref.area)

    def test_too_few_points(self) -> None:
        with pytest.raises(GeometryError, match="fewer than 4"):
            CrownVolumeEstimator().estimate(self.BOX[:3])

    def test_coplanar(self) -> None:
        flat = self.BOX[self.BOX[:, 2] == 0.0]
        with pytest.raises(GeometryError, match="coplanar"):
            CrownVolumeEstimator().estimate(flat)
