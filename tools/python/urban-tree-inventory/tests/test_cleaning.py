"""
Tests for RegionCleaner
========================
Regions are hand-built rectangles so shared boundary lengths are exact.

Test classes:
    TestMerging        Target choice and tie-breaking.
    TestCleanupProperties  Area preservation, ordering and idempotence.
    TestHoleFilling    Interior hole handling.
"""

from __future__ import annotations

import pytest
from shapely.geometry import Polygon, box

from shared.python.exceptions import InputValidationError
from urban_tree_inventory.cleaning import RegionCleaner
from urban_tree_inventory.model import Region


def _region(region_id: int, *bounds: float) -> Region:
    return Region.from_polygon(region_id, box(*bounds))


def _summary(segments: list) -> list[tuple[int, tuple[int, ...], float]]:
    return [(s.segment_id, s.region_ids, round(s.area, 9)) for s in segments]


class TestMerging:
    def test_small_region_joins_longest_boundary(self) -> None:
        regions = [
            _region(1, 0, 0, 4, 4),    # 16 m², shares 2 m with #2
            _region(2, 4, 0, 5, 2),    # 2 m²
            _region(3, 4, 2, 8, 4),    # 8 m², shares 1 m with #2
        ]
        segments = RegionCleaner(min_area=5.0).clean(regions)
        assert _summary(segments) == [(1, (1, 2), 18.0), (3, (3,), 8.0)]

    def test_tie_prefers_larger_neighbour(self) -> None:
        regions = [
            _region(1, 0, 0, 4, 4),    # 16 m²
            _region(2, 4, 0, 5, 1),    # 1 m², 1 m shared with both sides
            _region(3, 5, 0, 9, 1),    # 4 m²
        ]
        segments = RegionCleaner(min_area=2.0).clean(regions)
        assert _summary(segments) == [(1, (1, 2), 17.0), (3, (3,), 4.0)]

    def test_tie_on_area_prefers_lower_id(self) -> None:
        regions = [
            _region(5, 0, 0, 2, 2),
            _region(7, 2, 0, 3, 1),
            _region(6, 3, 0, 5, 2),
        ]
        segments = RegionCleaner(min_area=2.0).clean(regions)
        assert _summary(segments) == [(5, (5, 7), 5.0), (6, (6,), 4.0)]

    def test_chain_of_slivers_collapses(self) -> None:
        regions = [
            _region(1, 0, 0, 1, 1),
            _region(2, 1, 0, 2, 1),
            _region(3, 2, 0, 12, 1),
        ]
        segments = RegionCleaner(min_area=3.0).clean(regions)
        assert _summary(segments) == [(1, (1, 2, 3), 12.0)]

    def test_isolated_sliver_dropped(self) -> None:
        regions = [_region(1, 0, 0, 4, 4), _region(2, 20, 20, 21, 21)]
        segments = RegionCleaner(min_area=2.0).clean(regions)
        assert [s.segment_id for s in segments] == [1]

    def test_corner_contact_is_not_adjacency(self) -> None:
        regions = [_region(1, 0, 0, 4, 4), _region(2, 4, 4, 5, 5)]
        segments = RegionCleaner(min_area=2.0).clean(regions)
        assert _summary(segments) == [(1, (1,), 16.0)]

    def test_duplicate_ids_rejected(self) -> None:
        with pytest.raises(InputValidationError, match="unique"):
            RegionCleaner(1.0).clean([_region(1, 0, 0, 1, 1), _region(1, 1, 0, 2, 1)])

    def test_empty_input(self) -> None:
        assert RegionCleaner(1.0).clean([]) == []


class TestCleanupProperties:
    REGIONS = [
        _region(1, 0, 0, 3, 3),
        _region(2, 3, 0, 4, 1),
        _region(3, 3, 1, 4, 3),
        _region(4, 4, 0, 8, 3),
        _region(5, 0, 3, 8, 4),
        _region(6, 8, 0, 8.5, 4),
    ]

    def test_area_lossless(self) -> None:
        segments = RegionCleaner(min_area=3.0).clean(self.REGIONS)
        total_in = sum(r.area for r in self.REGIONS)
        assert sum(s.area - s.filled_area for s in segments) == pytest.approx(total_in)
        for seg in segments:
            members = [r for r in self.REGIONS if r.region_id in seg.region_ids]
            assert seg.area == pytest.approx(sum(r.area for r in members) + seg.filled_area)

    def test_every_segment_meets_min_area(self) -> None:
        segments = RegionCleaner(min_area=3.0).clean(self.REGIONS)
        assert all(s.area >= 3.0 for s in segments)

    def test_order_independent(self) -> None:
        cleaner = RegionCleaner(min_area=3.0)
        forward = cleaner.clean(self.REGIONS)
        backward = cleaner.clean(list(reversed(self.REGIONS)))
        assert _summary(forward) == _summary(backward)

    def test_idempotent(self) -> None:
        cleaner = RegionCleaner(min_area=3.0)
        once = cleaner.clean(self.REGIONS)
        twice = cleaner.clean(RegionCleaner.as_regions(once))
        assert [(s.segment_id, round(s.area, 9)) for s in twice] == [
            (s.segment_id, round(s.area, 9)) for s in once
        ]

    def test_perimeter_recomputed(self) -> None:
        segments = RegionCleaner(min_area=3.0).clean(self.REGIONS)
        for seg in segments:
            assert seg.perimeter == pytest.approx(seg.polygon.length)

    def test_invalid_min_area(self) -> None:
        with pytest.raises(InputValidationError, match="min_area"):
            RegionCleaner(min_area=0.0)


class TestHoleFilling:
    RING = Polygon(
        [(0, 0), (5, 0), (5, 5), (0, 5)],
        [[(2, 2), (3, 2), (3, 3), (2, 3)]],
    )

    def test_small_hole_filled(self) -> None:
        (seg,) = RegionCleaner(min_area=4.0).clean([Region.from_polygon(1, self.RING)])
        assert seg.filled_area == pytest.approx(1.0)
        assert seg.area == pytest.approx(25.0)
        assert len(seg.polygon.interiors) == 0

    def test_large_hole_kept(self) -> None:
        (seg,) = RegionCleaner(min_area=0.5).clean([Region.from_polygon(1, self.RING)])
        assert seg.filled_area == 0.0
        assert seg.area == pytest.approx(24.0)
        assert len(seg.polygon.interiors) == 1

    def test_fill_disabled(self) -> None:
        (seg,) = RegionCleaner(min_area=4.0, fill_holes=False).clean(
            [Region.from_polygon(1, self.RING)]
        )
        assert seg.area == pytest.approx(24.0)
        assert len(seg.polygon.interiors) == 1
