"""
Tests for CrownDetector
========================
Test classes:
    TestCrownDetector   Variable-window treetop detection.
    TestTwoTreeScene    Detector + seeded watershed on two isolated bumps.
"""

from __future__ import annotations

import numpy as np
import pytest
from shapely.geometry import Point

from urban_tree_inventory.config import RadiusFunction
from urban_tree_inventory.detection import CrownDetector
from urban_tree_inventory.model import RasterGrid
from urban_tree_inventory.segmentation import RegionSegmenter


def _bumps(
    peaks: list[tuple[int, int, float]],
    shape: tuple[int, int] = (40, 40),
    sigma: float = 4.0,
) -> RasterGrid:
    rr, cc = np.mgrid[0:shape[0], 0:shape[1]]
    values = np.zeros(shape)
    for r, c, h in peaks:
        values += h * np.exp(-((rr - r) ** 2 + (cc - c) ** 2) / (2 * sigma ** 2))
    return RasterGrid(values, origin_x=0.0, origin_y=float(shape[0]), cell_size=1.0)


class TestCrownDetector:
    def test_sorted_by_height(self) -> None:
        surface = _bumps([(10, 10, 10.0), (10, 30, 15.0)])
        markers = CrownDetector(RadiusFunction(), min_height=2.0).detect(surface)
        assert [m.height for m in markers] == pytest.approx([15.0, 10.0], abs=1e-3)
        assert (markers[0].row, markers[0].col) == (10, 30)
        assert (markers[0].x, markers[0].y) == (30.5, 29.5)

    def test_below_min_height_ignored(self) -> None:
        surface = _bumps([(10, 10, 10.0), (10, 30, 1.5)])
        markers = CrownDetector(RadiusFunction(), min_height=2.0).detect(surface)
        assert len(markers) == 1

    def test_shorter_neighbour_suppressed(self) -> None:
        surface = _bumps([(20, 20, 10.0), (20, 24, 9.0)], sigma=1.0)
        wide = RadiusFunction(intercept=1.0, slope=0.5, min_radius=1.0, max_radius=10.0)
        narrow = RadiusFunction(intercept=0.5, slope=0.0, min_radius=0.5, max_radius=0.5)
        assert len(CrownDetector(wide, 2.0).detect(surface)) == 1
        assert len(CrownDetector(narrow, 2.0).detect(surface)) == 2

    def test_equal_heights_keep_scan_order(self) -> None:
        surface = _bumps([(30, 10, 12.0), (10, 30, 12.0)])
        markers = CrownDetector(RadiusFunction(), 2.0).detect(surface)
        assert [(m.row, m.col) for m in markers] == [(10, 30), (30, 10)]

    def test_nodata_surface(self) -> None:
        surface = RasterGrid(np.full((5, 5), np.nan), 0.0, 5.0, 1.0)
        assert CrownDetector(RadiusFunction()).detect(surface) == []

    def test_cell_size_scales_window(self) -> None:
        values = _bumps([(20, 20, 10.0), (20, 24, 9.0)], sigma=1.0).values
        coarse = RasterGrid(values, 0.0, 80.0, 2.0)
        # A 2 m radius reaches only the adjacent cells at 2 m resolution.
        fn = RadiusFunction(intercept=2.0, slope=0.0, min_radius=2.0, max_radius=2.0)
        assert len(CrownDetector(fn, 2.0).detect(coarse)) == 2


class TestTwoTreeScene:
    """Flat ground, a 10 m and a 15 m tree more than 20 cells apart."""

    def test_two_markers_two_disjoint_crowns(self) -> None:
        surface = _bumps([(10, 8, 10.0), (28, 32, 15.0)])
        markers = CrownDetector(RadiusFunction(), min_height=2.0).detect(surface)
        assert len(markers) == 2

        seg = RegionSegmenter()
        labels = seg.segment_seeded(surface, markers, min_height=2.0)
        regions = seg.regions(labels)
        assert len(regions) == 2
        assert regions[0].polygon.intersection(regions[1].polygon).area == pytest.approx(0.0)

        for marker in markers:
            containing = [r for r in regions if r.polygon.contains(Point(marker.x, marker.y))]
            assert len(containing) == 1
