"""
zonal.py
========
Zonal statistics over aggregated segments.

A source is either a :class:`~urban_tree_inventory.model.RasterGrid`
(cells whose centre lies inside the segment polygon) or a
``(PointCloud, attribute)`` pair (points inside or on the polygon boundary).
No-data samples are ignored.  A segment without any valid sample yields
``None`` instead of raising, and downstream consumers treat ``None`` as a
failed test.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Literal, Sequence, Tuple, Union

import numpy as np
import numpy.typing as npt
from rasterio.features import geometry_mask
from rasterio.transform import Affine
from shapely.geometry import mapping

from shared.python.exceptions import InputValidationError

from .model import AggregatedSegment, PointCloud, RasterGrid

logger = logging.getLogger("urbanforest.urban_tree_inventory.zonal")

Reducer = Literal["mean", "max", "sum", "count"]
ZonalSource = Union[RasterGrid, Tuple[PointCloud, str]]


def _mean(v: npt.NDArray[np.float64]) -> float:
    # Offset by the first sample so a constant zone returns its value exactly.
    v0 = v[0]
    return float(v0 + np.mean(v - v0))


_REDUCERS: dict[str, Callable[[npt.NDArray[np.float64]], float]] = {
    "mean": _mean,
    "max": lambda v: float(np.max(v)),
    "sum": lambda v: float(np.sum(v)),
    "count": lambda v: float(v.size),
}


class ZonalAggregator:
    """Reduce raster or point-attribute values over segments.

    Parameters
    ----------
    max_workers : thread pool size used by :meth:`reduce_all`.
    """

    def __init__(self, max_workers: int = 4) -> None:
        self.max_workers = max(int(max_workers), 1)

    # ==================================================================
    # Public API
    # ==================================================================

    def reduce(
        self,
        segment: AggregatedSegment,
        source: ZonalSource,
        reducer: Reducer = "mean",
    ) -> float | None:
        """Scalar summary of *source* inside *segment*, or ``None`` if empty."""
        fn = self._reducer(reducer)
        samples = self.samples(segment, source)
        if samples.size == 0:
            return None
        return fn(samples)

    def reduce_all(
        self,
        segments: Sequence[AggregatedSegment],
        source: ZonalSource,
        reducer: Reducer = "mean",
    ) -> dict[int, float | None]:
        """:meth:`reduce` for every segment, keyed by ``segment_id``.

        Segments are independent, so they are dispatched to a thread pool;
        results are gathered before returning.
        """
        self._reducer(reducer)
        if len(segments) <= 1 or self.max_workers == 1:
            return {s.segment_id: self.reduce(s, source, reducer) for s in segments}

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            values = list(pool.map(lambda s: self.reduce(s, source, reducer), segments))
        return {s.segment_id: v for s, v in zip(segments, values)}

    def samples(
        self, segment: AggregatedSegment, source: ZonalSource,
    ) -> npt.NDArray[np.float64]:
        """Valid values of *source* falling inside *segment*."""
        if isinstance(source, RasterGrid):
            values = self._raster_samples(source, segment)
        elif isinstance(source, tuple) and len(source) == 2 and isinstance(source[0], PointCloud):
            cloud, attribute = source
            if len(cloud) == 0:
                return np.empty(0)
            values = cloud.column(attribute)[cloud.within(segment.polygon)]
        else:
            raise InputValidationError(
                f"expected a RasterGrid or (PointCloud, attribute), got {type(source).__name__}",
                parameter="source",
            )
        return values[np.isfinite(values)]

    # ==================================================================
    # Helpers
    # ==================================================================

    @staticmethod
    def _reducer(name: str) -> Callable[[npt.NDArray[np.float64]], float]:
        try:
            return _REDUCERS[name]
        except KeyError:
            raise InputValidationError(
                f"unknown reducer {name!r}; expected one of {', '.join(_REDUCERS)}",
                parameter="reducer",
            ) from None

    @staticmethod
    def _raster_samples(grid: RasterGrid, segment: AggregatedSegment) -> npt.NDArray[np.float64]:
        """Cells of *grid* whose centre falls inside the segment polygon.

        The grid is clipped to the polygon bounding box first so that no
        full-size mask is built per segment.
        """
        rows, cols = grid.shape
        minx, miny, maxx, maxy = segment.polygon.bounds
        t = grid.transform
        col0 = max(int(np.floor((minx - t.c) / t.a)), 0)
        col1 = min(int(np.ceil((maxx - t.c) / t.a)), cols)
        row0 = max(int(np.floor((maxy - t.f) / t.e)), 0)
        row1 = min(int(np.ceil((miny - t.f) / t.e)), rows)
        if col0 >= col1 or row0 >= row1:
            return np.empty(0)

        window = grid.values[row0:row1, col0:col1]
        win_transform = Affine(
            t.a, t.b, t.c + col0 * t.a,
            t.d, t.e, t.f + row0 * t.e,
        )
        inside = ~geometry_mask(
            [mapping(segment.polygon)],
            out_shape=window.shape,
            transform=win_transform,
            all_touched=False,
        )
        return window[inside]
