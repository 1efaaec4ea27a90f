"""
classification.py
=================
Rule-based vegetation / built-structure separation of segments.

Composite score
---------------
.. math::
    S = r + c \\cdot w(A) + v

* ``r``: normalised returns ratio (mean number of returns / max returns,
  clamped to [0, 1]); vegetation scatters pulses into multiple returns.
* ``c``: isoperimetric quotient ``4πA / P²``.
* ``w(A)``: 1 for segments of at least 30 m², otherwise a linear ramp from
  one cell up to 30 m², rounded to two decimals, so tiny fragments cannot
  earn a high compactness bonus.
* ``v``: mean spectral vegetation index (e.g. NDVI).

A segment is vegetation iff ``S >= threshold``.  A missing metric makes the
score ``None`` and the segment fails the test.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from typing import Mapping, Sequence

from shared.python.validators import Validators

from .model import AggregatedSegment

logger = logging.getLogger("urbanforest.urban_tree_inventory.classification")

DEFAULT_THRESHOLD = 0.55
FULL_WEIGHT_AREA = 30.0


def _missing(value: float | None) -> bool:
    return value is None or not math.isfinite(value)


@dataclass(frozen=True)
class MaskScore:
    """Per-segment classification metrics."""

    returns_ratio: float | None
    vegetation_index: float | None
    compactness: float
    weighted_compactness: float
    score: float | None
    is_vegetation: bool


class TreeMaskClassifier:
    """Threshold a composite of returns, shape and spectral metrics.

    Parameters
    ----------
    threshold : composite score at or above which a segment is vegetation.
    cell_area : raster cell area, the lower end of the area-weight ramp.
    """

    def __init__(self, threshold: float = DEFAULT_THRESHOLD, cell_area: float = 1.0) -> None:
        Validators.assert_positive(cell_area, "cell_area")
        self.threshold = float(threshold)
        self.cell_area = float(cell_area)

    # ------------------------------------------------------------------
    # Metric helpers
    # ------------------------------------------------------------------

    @staticmethod
    def compactness(area: float, perimeter: float) -> float:
        """Isoperimetric quotient; 0 for a zero-length perimeter."""
        if perimeter <= 0:
            return 0.0
        return 4.0 * math.pi * area / (perimeter ** 2)

    @staticmethod
    def returns_ratio(mean_returns: float | None, max_returns: float) -> float | None:
        """``mean_returns / max_returns`` clamped to [0, 1]."""
        if _missing(mean_returns) or max_returns <= 0:
            return None
        return min(max(mean_returns / max_returns, 0.0), 1.0)  # type: ignore[operator]

    def area_weight(self, area: float) -> float:
        if area >= FULL_WEIGHT_AREA:
            return 1.0
        span = FULL_WEIGHT_AREA - self.cell_area
        if span <= 0:
            return 0.0
        return round(min(max((area - self.cell_area) / span, 0.0), 1.0), 2)

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def score(
        self,
        returns_ratio: float | None,
        vegetation_index: float | None,
        area: float,
        perimeter: float,
    ) -> MaskScore:
        c = self.compactness(area, perimeter)
        c_weighted = c * self.area_weight(area)
        if _missing(returns_ratio) or _missing(vegetation_index):
            return MaskScore(returns_ratio, vegetation_index, c, c_weighted, None, False)

        s = returns_ratio + c_weighted + vegetation_index  # type: ignore[operator]
        return MaskScore(returns_ratio, vegetation_index, c, c_weighted, s, s >= self.threshold)

    def classify(
        self,
        segments: Sequence[AggregatedSegment],
        returns_ratio: Mapping[int, float | None],
        vegetation_index: Mapping[int, float | None],
    ) -> list[AggregatedSegment]:
        """Return copies of *segments* carrying the :class:`MaskScore` fields."""
        out: list[AggregatedSegment] = []
        for seg in segments:
            result = self.score(
                returns_ratio.get(seg.segment_id),
                vegetation_index.get(seg.segment_id),
                seg.area,
                seg.perimeter,
            )
            out.append(seg.with_attributes(**asdict(result)))

        n_veg = sum(1 for s in out if s.attributes["is_vegetation"])
        logger.info(
            "Classified %d segment(s): %d vegetation, %d other (threshold %.2f).",
            len(out), n_veg, len(out) - n_veg, self.threshold,
        )
        return out
