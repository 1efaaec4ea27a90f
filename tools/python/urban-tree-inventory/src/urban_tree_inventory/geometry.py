"""
geometry.py
===========
Crown geometry from point subsets.

Algorithms
----------
* **2-D convex hull**: Andrew's monotone chain, O(n log n).  Vertices are
  returned counter-clockwise starting at the lowest-x (then lowest-y)
  point; collinear points are dropped, which makes the hull idempotent.
* **Rotating calipers**: one sweep over the hull edges visits every
  antipodal vertex pair.  The longest pair is the crown *length* (hull
  diameter) and gives the crown *orientation*; the smallest edge-to-vertex
  height is the crown *width* (minimum caliper width).
* **Shoelace formula** for the hull area.
* **3-D convex hull** through Qhull (:class:`scipy.spatial.ConvexHull`).
  Volume is the sum of tetrahedra from the hull centroid to each facet
  triangle, oriented by the facet's outward normal; surface area is the
  sum of triangle areas.

Degenerate input raises :class:`~shared.python.exceptions.GeometryError`,
which callers treat as "drop this segment".
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
import numpy.typing as npt
from scipy.spatial import ConvexHull, QhullError

from shared.python.exceptions import GeometryError

# Cross products below this magnitude count as collinear / coplanar.
_EPS = 1e-12


# ---------------------------------------------------------------------------
# 2-D
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class CrownShape:
    """Planar crown measurements.

    Attributes:
        hull: ``(k, 2)`` counter-clockwise hull vertices.
        area: Hull area.
        length: Hull diameter.
        width: Minimum caliper width.
        orientation: Direction of the diameter in degrees, counter-clockwise
                     from the +x axis, in ``[0, 180)``.
    """

    hull: npt.NDArray[np.float64]
    area: float
    length: float
    width: float
    orientation: float


def _cross(o: npt.NDArray[np.float64], a: npt.NDArray[np.float64], b: npt.NDArray[np.float64]) -> float:
    return float((a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0]))


class CrownGeometry:
    """Convex hull, caliper width/length and area of planar point sets."""

    @staticmethod
    def convex_hull(points: npt.ArrayLike) -> npt.NDArray[np.float64]:
        pts = np.unique(np.asarray(points, dtype=np.float64).reshape(-1, 2), axis=0)
        if len(pts) < 3:
            return pts

        # np.unique sorts lexicographically by (x, y).
        lower: list[npt.NDArray[np.float64]] = []
        for p in pts:
            while len(lower) >= 2 and _cross(lower[-2], lower[-1], p) <= _EPS:
                lower.pop()
            lower.append(p)
        upper: list[npt.NDArray[np.float64]] = []
        for p in pts[::-1]:
            while len(upper) >= 2 and _cross(upper[-2], upper[-1], p) <= _EPS:
                upper.pop()
            upper.append(p)
        return np.array(lower[:-1] + upper[:-1])

    @staticmethod
    def polygon_area(ring: npt.ArrayLike) -> float:
        """Shoelace area of an open ring (absolute value)."""
        xy = np.asarray(ring, dtype=np.float64).reshape(-1, 2)
        if len(xy) < 3:
            return 0.0
        x, y = xy[:, 0], xy[:, 1]
        return 0.5 * abs(float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))))

    def measure(self, points: npt.ArrayLike) -> CrownShape:
        """Hull and caliper measurements of a crown footprint.

        Raises:
            GeometryError: If fewer than 3 non-collinear points are given.
        """
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        hull = self.convex_hull(pts)
        if len(hull) < 3:
            raise GeometryError("fewer than 3 non-collinear points", point_count=len(pts))

        length, (i, j), width = self._calipers(hull)
        dx, dy = hull[j] - hull[i]
        orientation = math.degrees(math.atan2(dy, dx)) % 180.0
        return CrownShape(
            hull=hull,
            area=self.polygon_area(hull),
            length=length,
            width=width,
            orientation=orientation,
        )

    @staticmethod
    def _calipers(hull: npt.NDArray[np.float64]) -> tuple[float, tuple[int, int], float]:
        """Diameter, its vertex pair, and minimum width of a CCW hull."""
        n = len(hull)
        best_d2 = -1.0
        best_pair = (0, 1)
        min_width = math.inf

        j = 1
        for i in range(n):
            a, b = hull[i], hull[(i + 1) % n]
            # Advance j while the triangle area (height above edge a-b) grows.
            while _cross(a, b, hull[(j + 1) % n]) > _cross(a, b, hull[j]) + _EPS:
                j = (j + 1) % n

            edge = math.hypot(b[0] - a[0], b[1] - a[1])
            min_width = min(min_width, _cross(a, b, hull[j]) / edge)

            for k in (i, (i + 1) % n):
                d2 = float(np.sum((hull[k] - hull[j]) ** 2))
                if d2 > best_d2:
                    best_d2 = d2
                    best_pair = (k, j)

        return math.sqrt(best_d2), best_pair, min_width


# ---------------------------------------------------------------------------
# 3-D
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CrownVolume:
    volume: float
    surface: float
    vertex_count: int


class CrownVolumeEstimator:
    """Volume and surface area of a crown's 3-D convex hull."""

    def estimate(self, points: npt.ArrayLike) -> CrownVolume:
        """Raises GeometryError for fewer than 4 or coplanar points."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if len(pts) < 4:
            raise GeometryError("fewer than 4 points for a 3-D hull", point_count=len(pts))
        centred = pts - pts.mean(axis=0)
        if np.linalg.matrix_rank(centred, tol=1e-9) < 3:
            raise GeometryError("points are coplanar", point_count=len(pts))

        try:
            hull = ConvexHull(pts)
        except QhullError as exc:
            raise GeometryError(f"qhull failed: {exc}", point_count=len(pts)) from exc

        tri = pts[hull.simplices]                      # (F, 3, 3)
        ref = pts[hull.vertices].mean(axis=0)
        a, b, c = tri[:, 0] - ref, tri[:, 1] - ref, tri[:, 2] - ref
        normals = np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])

        # Flip triangles whose winding disagrees with Qhull's outward normal.
        outward = np.sign(np.einsum("ij,ij->i", normals, hull.equations[:, :3]))
        signed = np.einsum("ij,ij->i", a, np.cross(b, c)) / 6.0 * outward

        return CrownVolume(
            volume=float(signed.sum()),
            surface=float(0.5 * np.linalg.norm(normals, axis=1).sum()),
            vertex_count=int(len(hull.vertices)),
        )
