"""
cleaning.py
===========
Merge fragmented watershed regions into stable aggregated segments.

Regions smaller than an absolute minimum area are merged into the
neighbour sharing the longest boundary (ties: larger neighbour, then lower
id).  Merging runs in rounds: every undersized group picks its target from
the state at the start of the round, then all picks are applied through a
union-find keyed by region id.  Union is associative and the group root is
always the smallest member id, so the final partition and the segment ids
do not depend on the order regions are supplied in.

Groups that stay undersized without any neighbour are discarded; small
interior holes of the surviving polygons are filled.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable, Sequence

from shapely.geometry import Polygon
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union
from shapely.strtree import STRtree

from shared.python.exceptions import InputValidationError
from shared.python.validators import Validators

from .model import AggregatedSegment, Region

logger = logging.getLogger("urbanforest.urban_tree_inventory.cleaning")

# Shared-boundary lengths are compared at this precision when breaking ties.
_LENGTH_DIGITS = 9


class _UnionFind:
    """Disjoint sets over integer ids; the root is the smallest member."""

    def __init__(self, ids: Iterable[int]) -> None:
        self._parent = {i: i for i in ids}

    def find(self, i: int) -> int:
        root = i
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[i] != root:
            self._parent[i], i = root, self._parent[i]
        return root

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            lo, hi = sorted((ra, rb))
            self._parent[hi] = lo

    def groups(self) -> dict[int, list[int]]:
        out: dict[int, list[int]] = defaultdict(list)
        for i in self._parent:
            out[self.find(i)].append(i)
        return {root: sorted(members) for root, members in out.items()}


class RegionCleaner:
    """Aggregate raw regions into segments of at least ``min_area``.

    Parameters
    ----------
    min_area : absolute minimum segment area (map units²).
    fill_holes : close interior holes smaller than ``min_area``.
    """

    def __init__(self, min_area: float, *, fill_holes: bool = True) -> None:
        Validators.assert_positive(min_area, "min_area")
        self.min_area = float(min_area)
        self.fill_holes = fill_holes

    # ==================================================================
    # Public API
    # ==================================================================

    def clean(self, regions: Sequence[Region]) -> list[AggregatedSegment]:
        """Merge, filter and fill *regions*; returns segments sorted by id."""
        if not regions:
            return []

        by_id = {r.region_id: r for r in regions}
        if len(by_id) != len(regions):
            raise InputValidationError("region ids must be unique", parameter="regions")

        area = {rid: r.area for rid, r in by_id.items()}
        shared = self._shared_boundaries(list(by_id.values()))
        uf = _UnionFind(by_id)

        rounds = 0
        while True:
            groups = uf.groups()
            group_area = {root: sum(area[m] for m in members) for root, members in groups.items()}
            neighbours: dict[int, dict[int, float]] = defaultdict(lambda: defaultdict(float))
            for (a, b), length in shared.items():
                ra, rb = uf.find(a), uf.find(b)
                if ra != rb:
                    neighbours[ra][rb] += length
                    neighbours[rb][ra] += length

            picks: dict[int, int] = {}
            for root in sorted(groups):
                if group_area[root] >= self.min_area or root not in neighbours:
                    continue
                picks[root] = max(
                    neighbours[root].items(),
                    key=lambda kv: (round(kv[1], _LENGTH_DIGITS), group_area[kv[0]], -kv[0]),
                )[0]

            if not picks:
                break
            for root, target in picks.items():
                uf.union(root, target)
            rounds += 1

        segments: list[AggregatedSegment] = []
        dropped = 0
        for root, members in sorted(uf.groups().items()):
            total = sum(area[m] for m in members)
            if total < self.min_area:
                dropped += 1
                continue
            segments.append(self._build_segment(root, [by_id[m] for m in members], total))

        logger.debug(
            "Cleaned %d region(s) into %d segment(s) in %d merge round(s); %d sliver(s) dropped.",
            len(regions), len(segments), rounds, dropped,
        )
        return segments

    @staticmethod
    def as_regions(segments: Sequence[AggregatedSegment]) -> list[Region]:
        """View segments as regions, e.g. to re-run cleanup on a result."""
        return [Region.from_polygon(s.segment_id, s.polygon) for s in segments]

    # ==================================================================
    # Helpers
    # ==================================================================

    @staticmethod
    def _shared_boundaries(regions: list[Region]) -> dict[tuple[int, int], float]:
        """Length of common boundary for every pair of touching regions."""
        polygons = [r.polygon for r in regions]
        tree = STRtree(polygons)
        out: dict[tuple[int, int], float] = {}
        for i, poly in enumerate(polygons):
            for j in tree.query(poly, predicate="intersects"):
                j = int(j)
                if j <= i:
                    continue
                length = poly.boundary.intersection(polygons[j].boundary).length
                if length > 0:
                    a, b = regions[i].region_id, regions[j].region_id
                    out[(min(a, b), max(a, b))] = float(length)
        return out

    def _build_segment(
        self, segment_id: int, members: list[Region], member_area: float,
    ) -> AggregatedSegment:
        geom: BaseGeometry = unary_union([m.polygon for m in members])
        filled = 0.0
        if self.fill_holes and isinstance(geom, Polygon) and geom.interiors:
            keep = []
            for ring in geom.interiors:
                hole_area = Polygon(ring).area
                if hole_area < self.min_area:
                    filled += hole_area
                else:
                    keep.append(ring)
            geom = Polygon(geom.exterior, keep)

        return AggregatedSegment(
            segment_id=segment_id,
            region_ids=tuple(m.region_id for m in members),
            polygon=geom,
            area=member_area + filled,
            perimeter=float(geom.length),
            filled_area=filled,
        )
