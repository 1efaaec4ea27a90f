"""
Tests for ZonalAggregator
==========================
Test classes:
    TestRasterZonal   Cell-centre sampling from RasterGrid sources.
    TestPointZonal    Attribute sampling from point clouds.
    TestReduceAll     Parallel fan-out and argument validation.
"""

from __future__ import annotations

import numpy as np
import pytest
from shapely.geometry import box

from shared.python.exceptions import InputValidationError
from urban_tree_inventory.model import AggregatedSegment, PointCloud, RasterGrid
from urban_tree_inventory.zonal import ZonalAggregator


def _segment(segment_id: int, *bounds: float) -> AggregatedSegment:
    poly = box(*bounds)
    return AggregatedSegment(segment_id, (segment_id,), poly, poly.area, poly.length)


def _grid(values: np.ndarray) -> RasterGrid:
    return RasterGrid(values, origin_x=0.0, origin_y=float(values.shape[0]), cell_size=1.0)


class TestRasterZonal:
    def test_constant_raster(self) -> None:
        grid = _grid(np.full((4, 4), 7.0))
        seg = _segment(1, 0, 0, 4, 4)
        zonal = ZonalAggregator()
        assert zonal.reduce(seg, grid, "mean") == pytest.approx(7.0)
        assert zonal.reduce(seg, grid, "max") == pytest.approx(7.0)
        assert zonal.reduce(seg, grid, "count") == 16.0
        assert zonal.reduce(seg, grid, "sum") == pytest.approx(112.0)

    @pytest.mark.parametrize("bounds", [(0, 0, 3, 1), (0, 0, 4, 3)])
    def test_constant_mean_is_exact(self, bounds: tuple[float, ...]) -> None:
        seg = _segment(1, *bounds)
        assert ZonalAggregator().reduce(seg, _grid(np.full((4, 4), 0.1)), "mean") == 0.1

    def test_cell_centre_inclusion(self) -> None:
        values = np.arange(16, dtype=float).reshape(4, 4)
        # Covers the centres of rows 0-1, cols 1-2 only.
        seg = _segment(1, 0.9, 1.9, 3.1, 4.0)
        samples = ZonalAggregator().samples(seg, _grid(values))
        assert sorted(samples.tolist()) == [1.0, 2.0, 5.0, 6.0]

    def test_nodata_ignored(self) -> None:
        values = np.full((2, 2), 3.0)
        values[0, 0] = np.nan
        seg = _segment(1, 0, 0, 2, 2)
        zonal = ZonalAggregator()
        assert zonal.reduce(seg, _grid(values), "count") == 3.0
        assert zonal.reduce(seg, _grid(values), "mean") == pytest.approx(3.0)

    def test_outside_grid_is_none(self) -> None:
        seg = _segment(1, 10, 10, 12, 12)
        assert ZonalAggregator().reduce(seg, _grid(np.ones((4, 4)))) is None

    def test_all_nodata_is_none(self) -> None:
        seg = _segment(1, 0, 0, 2, 2)
        assert ZonalAggregator().reduce(seg, _grid(np.full((2, 2), np.nan)), "max") is None


class TestPointZonal:
    def test_single_sample_max(self) -> None:
        cloud = PointCloud.from_arrays(
            [[1.0, 1.0, 0.0], [9.0, 9.0, 0.0]], ndvi=[0.42, 0.9],
        )
        seg = _segment(1, 0, 0, 2, 2)
        assert ZonalAggregator().reduce(seg, (cloud, "ndvi"), "max") == pytest.approx(0.42)

    def test_constant_attribute_mean_is_exact(self) -> None:
        cloud = PointCloud.from_arrays(
            [[0.5, 0.5, 1.0], [1.5, 0.5, 2.0], [1.5, 1.5, 3.0]], ndvi=[0.1, 0.1, 0.1],
        )
        assert ZonalAggregator().reduce(_segment(1, 0, 0, 2, 2), (cloud, "ndvi")) == 0.1

    def test_no_points_inside(self) -> None:
        cloud = PointCloud.from_arrays([[9.0, 9.0, 0.0]], number_of_returns=[3])
        seg = _segment(1, 0, 0, 2, 2)
        assert ZonalAggregator().reduce(seg, (cloud, "number_of_returns")) is None

    def test_mean_returns(self) -> None:
        cloud = PointCloud.from_arrays(
            [[0.5, 0.5, 1.0], [1.5, 0.5, 2.0], [1.5, 1.5, 3.0]],
            number_of_returns=[1, 2, 3],
        )
        seg = _segment(1, 0, 0, 2, 2)
        assert ZonalAggregator().reduce(seg, (cloud, "number_of_returns")) == pytest.approx(2.0)

    def test_unknown_attribute(self) -> None:
        cloud = PointCloud.from_arrays([[0.5, 0.5, 1.0]])
        with pytest.raises(InputValidationError):
            ZonalAggregator().reduce(_segment(1, 0, 0, 1, 1), (cloud, "intensity"))


class TestReduceAll:
    def test_keyed_by_segment_id(self) -> None:
        values = np.zeros((4, 4))
        values[:, 2:] = 5.0
        segments = [_segment(3, 0, 0, 2, 4), _segment(8, 2, 0, 4, 4), _segment(9, 20, 20, 21, 21)]
        out = ZonalAggregator(max_workers=3).reduce_all(segments, _grid(values), "mean")
        assert out == {3: pytest.approx(0.0), 8: pytest.approx(5.0), 9: None}

    def test_single_worker_matches_pool(self) -> None:
        values = np.arange(36, dtype=float).reshape(6, 6)
        segments = [_segment(i + 1, i, 0, i + 1, 6) for i in range(6)]
        serial = ZonalAggregator(max_workers=1).reduce_all(segments, _grid(values), "sum")
        pooled = ZonalAggregator(max_workers=4).reduce_all(segments, _grid(values), "sum")
        assert serial == pooled

    def test_unknown_reducer(self) -> None:
        with pytest.raises(InputValidationError, match="reducer"):
            ZonalAggregator().reduce_all([_segment(1, 0, 0, 1, 1)], _grid(np.ones((2, 2))), "median")  # type: ignore[arg-type]

    def test_unknown_source(self) -> None:
        with pytest.raises(InputValidationError, match="source"):
            ZonalAggregator().reduce(_segment(1, 0, 0, 1, 1), np.ones((2, 2)))  # type: ignore[arg-type]
