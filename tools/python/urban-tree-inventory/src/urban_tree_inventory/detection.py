"""
detection.py
============
Treetop detection with a variable-radius circular window.

Candidates are the 3×3 local maxima of a (smoothed) canopy height surface
at or above a minimum height.  They are visited in descending height with
a stable order for equal heights.  A candidate becomes a marker when

1. no cell inside its own circular window of radius ``radius_fn(h)`` is
   higher, and
2. no already accepted marker lies within ``radius_fn(max(h_i, h_j))``.

Because accepted markers are never shorter than the current candidate and
the radius function is monotonic, a taller tree is never suppressed by a
shorter one found later.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable

import numpy as np
from scipy.ndimage import maximum_filter

from .model import RasterGrid

logger = logging.getLogger("urbanforest.urban_tree_inventory.detection")


@dataclass(frozen=True)
class Marker:
    """A detected treetop (map coordinates of the cell centre)."""

    x: float
    y: float
    height: float
    row: int
    col: int


class CrownDetector:
    """Variable-window local-maximum treetop detector.

    Parameters
    ----------
    radius_fn : monotonic height → radius (map units) function.
    min_height : treetops below this height are ignored.
    """

    def __init__(self, radius_fn: Callable[[float], float], min_height: float = 2.0) -> None:
        self.radius_fn = radius_fn
        self.min_height = float(min_height)

    def detect(self, surface: RasterGrid) -> list[Marker]:
        """Return markers sorted by descending height."""
        values = surface.values
        valid = surface.valid
        if not valid.any():
            return []

        work = np.where(valid, values, -np.inf)
        local_max = (work == maximum_filter(work, size=3, mode="nearest"))
        candidates = local_max & valid & (values >= self.min_height)
        rows, cols = np.nonzero(candidates)
        if rows.size == 0:
            return []

        heights = values[rows, cols]
        order = np.argsort(-heights, kind="stable")

        accepted: list[Marker] = []
        for idx in order:
            r, c, h = int(rows[idx]), int(cols[idx]), float(heights[idx])
            radius = self.radius_fn(h)
            if not self._is_window_max(work, r, c, h, radius / surface.cell_size):
                continue

            x, y = surface.xy(r, c)
            if any(
                math.hypot(m.x - x, m.y - y) < self.radius_fn(max(m.height, h))
                for m in accepted
            ):
                continue
            accepted.append(Marker(float(x), float(y), h, r, c))

        logger.info("Detected %d treetop(s) from %d candidate(s).", len(accepted), rows.size)
        return accepted

    @staticmethod
    def _is_window_max(
        work: np.ndarray, r: int, c: int, h: float, radius_cells: float,
    ) -> bool:
        """True if no cell within *radius_cells* of ``(r, c)`` exceeds *h*."""
        n_rows, n_cols = work.shape
        k = int(math.floor(radius_cells))
        r0, r1 = max(r - k, 0), min(r + k + 1, n_rows)
        c0, c1 = max(c - k, 0), min(c + k + 1, n_cols)
        window = work[r0:r1, c0:c1]
        rr, cc = np.ogrid[r0 - r:r1 - r, c0 - c:c1 - c]
        disk = rr ** 2 + cc ** 2 <= radius_cells ** 2
        return not bool((window[disk] > h).any())
