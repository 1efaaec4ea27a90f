"""
prototypes.py
=============
Assign a reconstruction prototype from the crown/trunk height ratio.

``N - 1`` increasing boundaries split the positive reals into ``N``
half-open intervals ``[b_{i-1}, b_i)`` with ``b_{-1} = 0`` and the last
interval unbounded.  A ratio equal to a boundary belongs to the interval
that starts there.
"""

from __future__ import annotations

import math
from bisect import bisect_right
from typing import Sequence

from shared.python.exceptions import InputValidationError


class PrototypeAssigner:
    """Sorted boundary table lookup.

    Parameters
    ----------
    boundaries : strictly increasing positive ratio boundaries.
    names : optional labels, one per interval (``len(boundaries) + 1``).
    """

    def __init__(self, boundaries: Sequence[float], names: Sequence[str] | None = None) -> None:
        bounds = [float(b) for b in boundaries]
        if any(not math.isfinite(b) or b <= 0 for b in bounds) or any(
            nxt <= prev for prev, nxt in zip(bounds, bounds[1:])
        ):
            raise InputValidationError(
                f"must be finite, positive and strictly increasing, got {bounds}",
                parameter="boundaries",
            )
        if names is not None and len(names) != len(bounds) + 1:
            raise InputValidationError(
                f"expected {len(bounds) + 1} names, got {len(names)}", parameter="names",
            )
        self.boundaries: tuple[float, ...] = tuple(bounds)
        self.names: tuple[str, ...] | None = tuple(names) if names is not None else None

    @property
    def count(self) -> int:
        return len(self.boundaries) + 1

    def assign(self, ratio: float | None) -> int | None:
        """Index of the interval containing *ratio*; ``None`` if it is missing."""
        if ratio is None or not math.isfinite(ratio) or ratio < 0:
            return None
        return bisect_right(self.boundaries, ratio)

    def assign_tree(self, crown_height: float, trunk_height: float) -> int | None:
        if trunk_height <= 0:
            return None
        return self.assign(crown_height / trunk_height)

    def name(self, index: int | None) -> str | None:
        if index is None or self.names is None:
            return None
        return self.names[index]
