"""
model.py
========
Typed data structures threaded through the inventory pipeline.

Classes:
    RasterGrid          Regular 2-D grid, NaN = no-data, with focal filters.
    PointCloud          Columnar point table keyed by a stable row index.
    Region              One connected watershed label as a single-part polygon.
    AggregatedSegment   Union of one or more Regions after cleanup.
    TreeRecord          Final per-tree inventory entry.

Every structure is treated as a value: operations that add information
(``with_column``, ``with_attributes``, ``with_values``) return a new object
and never edit the receiver in place, so concurrent readers of a stage's
inputs never observe partial writes.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Literal, Mapping

import numpy as np
import numpy.typing as npt
import pandas as pd
import rasterio
import shapely
from rasterio.errors import RasterioError
from rasterio.transform import Affine, from_origin
from scipy.ndimage import (
    gaussian_filter,
    generic_filter,
    maximum_filter,
    uniform_filter,
)
from shapely.geometry import Polygon

from shared.python.exceptions import InputValidationError, RasterError
from shared.python.validators import Validators

logger = logging.getLogger("urbanforest.urban_tree_inventory.model")

FocalKind = Literal["gaussian", "mean", "max", "median"]

POINT_COLUMNS: tuple[str, ...] = ("x", "y", "z", "classification", "number_of_returns")


# ---------------------------------------------------------------------------
# Raster grid
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class RasterGrid:
    """Regular north-up grid of float values.

    Attributes:
        values: ``(rows, cols)`` float64 array; ``NaN`` marks no-data.
        origin_x: X coordinate of the upper-left corner.
        origin_y: Y coordinate of the upper-left corner.
        cell_size: Edge length of a (square) cell in map units.
        crs: Optional CRS identifier carried along for persistence.
    """

    values: npt.NDArray[np.float64]
    origin_x: float
    origin_y: float
    cell_size: float
    crs: str | None = None

    def __post_init__(self) -> None:
        Validators.assert_positive(self.cell_size, "cell_size")
        arr = np.asarray(self.values, dtype=np.float64)
        if arr.ndim != 2:
            raise InputValidationError(
                f"expected a 2-D array, got {arr.ndim} dimension(s)",
                parameter="values",
            )
        object.__setattr__(self, "values", arr)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_file(cls, path: Path, band: int = 1) -> RasterGrid:
        """Read one band of a GeoTIFF, mapping the nodata value to ``NaN``.

        Raises:
            RasterError: If the file cannot be read or has non-square cells.
        """
        try:
            with rasterio.open(path) as src:
                data = src.read(band).astype(np.float64)
                nodata = src.nodata
                transform = src.transform
                crs = src.crs.to_string() if src.crs else None
        except RasterioError as exc:
            raise RasterError(f"Cannot read raster '{path}': {exc}") from exc

        if not math.isclose(abs(transform.a), abs(transform.e)):
            raise RasterError(
                f"Raster '{path}' has non-square cells "
                f"({transform.a} × {abs(transform.e)})."
            )
        if nodata is not None:
            data[data == nodata] = np.nan
        return cls(data, transform.c, transform.f, abs(transform.a), crs)

    def with_values(self, values: npt.ArrayLike) -> RasterGrid:
        """Return a grid on the same georeference holding *values*."""
        arr = np.asarray(values, dtype=np.float64)
        Validators.assert_raster_shapes_match(self.shape, arr.shape, "grid", "values")
        return replace(self, values=arr)

    def masked(self, mask: npt.NDArray[np.bool_]) -> RasterGrid:
        """Return a copy with cells outside *mask* set to no-data."""
        Validators.assert_raster_shapes_match(self.shape, mask.shape, "grid", "mask")
        return self.with_values(np.where(mask, self.values, np.nan))

    # ------------------------------------------------------------------
    # Georeference
    # ------------------------------------------------------------------

    @property
    def shape(self) -> tuple[int, int]:
        return self.values.shape  # type: ignore[return-value]

    @property
    def transform(self) -> Affine:
        return from_origin(self.origin_x, self.origin_y, self.cell_size, self.cell_size)

    @property
    def cell_area(self) -> float:
        return self.cell_size * self.cell_size

    @property
    def extent(self) -> tuple[float, float, float, float]:
        """``(minx, miny, maxx, maxy)``."""
        rows, cols = self.shape
        return (
            self.origin_x,
            self.origin_y - rows * self.cell_size,
            self.origin_x + cols * self.cell_size,
            self.origin_y,
        )

    @property
    def valid(self) -> npt.NDArray[np.bool_]:
        return np.isfinite(self.values)

    @property
    def is_empty(self) -> bool:
        return not bool(self.valid.any())

    def rowcol(
        self, x: npt.ArrayLike, y: npt.ArrayLike
    ) -> tuple[npt.NDArray[np.intp], npt.NDArray[np.intp]]:
        """Indices of the cells containing ``(x, y)``; may fall outside the grid."""
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        cols = np.floor((x - self.origin_x) / self.cell_size).astype(np.intp)
        rows = np.floor((self.origin_y - y) / self.cell_size).astype(np.intp)
        return rows, cols

    def xy(
        self, row: npt.ArrayLike, col: npt.ArrayLike
    ) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """Map coordinates of cell centres."""
        row = np.asarray(row, dtype=np.float64)
        col = np.asarray(col, dtype=np.float64)
        return (
            self.origin_x + (col + 0.5) * self.cell_size,
            self.origin_y - (row + 0.5) * self.cell_size,
        )

    def value_at(self, x: npt.ArrayLike, y: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """Nearest-cell lookup; ``NaN`` outside the grid or on no-data."""
        rows, cols = self.rowcol(x, y)
        rows = np.atleast_1d(rows)
        cols = np.atleast_1d(cols)
        n_rows, n_cols = self.shape
        inside = (rows >= 0) & (rows < n_rows) & (cols >= 0) & (cols < n_cols)
        out = np.full(rows.shape, np.nan)
        out[inside] = self.values[rows[inside], cols[inside]]
        return out

    # ------------------------------------------------------------------
    # Focal filtering
    # ------------------------------------------------------------------

    def focal(
        self,
        kind: FocalKind = "gaussian",
        *,
        sigma: float = 1.0,
        size: int = 3,
    ) -> RasterGrid:
        """Windowed filter that ignores and preserves no-data cells.

        ``gaussian`` and ``mean`` use normalised convolution so no-data
        neighbours do not drag values toward zero.
        """
        valid = self.valid
        filled = np.where(valid, self.values, 0.0)
        weight = valid.astype(np.float64)

        if kind == "gaussian":
            Validators.assert_positive(sigma, "sigma", allow_zero=True)
            if sigma == 0:
                return self.with_values(self.values.copy())
            num = gaussian_filter(filled, sigma=sigma, mode="constant")
            den = gaussian_filter(weight, sigma=sigma, mode="constant")
        elif kind == "mean":
            num = uniform_filter(filled, size=size, mode="constant")
            den = uniform_filter(weight, size=size, mode="constant")
        elif kind == "max":
            out = maximum_filter(
                np.where(valid, self.values, -np.inf), size=size, mode="nearest"
            )
            return self.with_values(np.where(valid, out, np.nan))
        elif kind == "median":
            out = generic_filter(
                self.values, np.nanmedian, size=size, mode="constant", cval=np.nan
            )
            return self.with_values(np.where(valid, out, np.nan))
        else:
            raise InputValidationError(f"unknown focal filter {kind!r}", parameter="kind")

        with np.errstate(invalid="ignore", divide="ignore"):
            out = num / den
        return self.with_values(np.where(valid, out, np.nan))


# ---------------------------------------------------------------------------
# Point cloud
# ---------------------------------------------------------------------------


class PointCloud:
    """Columnar point table.

    Rows are keyed by the DataFrame index, which stays stable through
    :meth:`subset` so attributes computed on a subset can be joined back.
    The required columns are ``x, y, z, classification, number_of_returns``;
    any further float column is a per-point attribute.
    """

    def __init__(self, frame: pd.DataFrame) -> None:
        Validators.assert_columns_exist(frame, POINT_COLUMNS)
        self._frame = frame

    @classmethod
    def from_dataframe(cls, frame: pd.DataFrame) -> PointCloud:
        """Validate and copy *frame* into a new cloud."""
        return cls(frame.copy())

    @classmethod
    def from_arrays(
        cls,
        xyz: npt.ArrayLike,
        classification: npt.ArrayLike | None = None,
        number_of_returns: npt.ArrayLike | None = None,
        **attributes: npt.ArrayLike,
    ) -> PointCloud:
        xyz = np.asarray(xyz, dtype=np.float64).reshape(-1, 3)
        n = len(xyz)
        data: dict[str, Any] = {
            "x": xyz[:, 0],
            "y": xyz[:, 1],
            "z": xyz[:, 2],
            "classification": (
                np.zeros(n, dtype=np.int64) if classification is None
                else np.asarray(classification, dtype=np.int64)
            ),
            "number_of_returns": (
                np.ones(n, dtype=np.int64) if number_of_returns is None
                else np.asarray(number_of_returns, dtype=np.int64)
            ),
        }
        for name, values in attributes.items():
            data[name] = np.asarray(values, dtype=np.float64)
        return cls(pd.DataFrame(data))

    @classmethod
    def from_csv(cls, path: Path) -> PointCloud:
        """Load a delimited point table exported from a LAS reader."""
        frame = pd.read_csv(path)
        frame.columns = [str(c).strip().lower() for c in frame.columns]
        frame = frame.rename(columns={"numberofreturns": "number_of_returns"})
        return cls(frame)

    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._frame)

    def __repr__(self) -> str:
        return f"PointCloud(n={len(self)}, columns={list(self._frame.columns)})"

    @property
    def frame(self) -> pd.DataFrame:
        """Read-only view of the underlying table (do not mutate)."""
        return self._frame

    @property
    def index(self) -> pd.Index:
        return self._frame.index

    @property
    def xyz(self) -> npt.NDArray[np.float64]:
        return self._frame[["x", "y", "z"]].to_numpy(dtype=np.float64)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        f = self._frame
        return (f["x"].min(), f["y"].min(), f["x"].max(), f["y"].max())

    def column(self, name: str) -> npt.NDArray[np.float64]:
        Validators.assert_columns_exist(self._frame, [name])
        return self._frame[name].to_numpy(dtype=np.float64)

    def has_column(self, name: str) -> bool:
        return name in self._frame.columns

    # ------------------------------------------------------------------
    # Append-only derivations
    # ------------------------------------------------------------------

    def with_column(self, name: str, values: npt.ArrayLike) -> PointCloud:
        """Return a new cloud with column *name* added (or replaced)."""
        values = np.asarray(values)
        if values.shape[0] != len(self):
            raise InputValidationError(
                f"expected {len(self)} values, got {values.shape[0]}", parameter=name,
            )
        return PointCloud(self._frame.assign(**{name: values}))

    def subset(self, mask: npt.ArrayLike) -> PointCloud:
        """Rows where *mask* is true, keeping their original row ids."""
        return PointCloud(self._frame.loc[np.asarray(mask, dtype=bool)])

    def sample_raster(self, grid: RasterGrid) -> npt.NDArray[np.float64]:
        """Nearest-cell value of *grid* under each point."""
        return grid.value_at(self._frame["x"].to_numpy(), self._frame["y"].to_numpy())

    def within(self, polygon: Polygon) -> npt.NDArray[np.bool_]:
        """Boolean membership mask of points inside or on the boundary of *polygon*."""
        return shapely.intersects_xy(
            polygon, self._frame["x"].to_numpy(), self._frame["y"].to_numpy()
        )


# ---------------------------------------------------------------------------
# Regions and segments
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class Region:
    """A connected watershed label.

    Attributes:
        region_id: Unique id within a segmentation run.
        rows / cols: Member cell indices on the label grid.
        polygon: Single-part outline (outer ring, possibly holes).
        area: Polygon area in map units².
        perimeter: Length of all rings.
    """

    region_id: int
    rows: npt.NDArray[np.intp]
    cols: npt.NDArray[np.intp]
    polygon: Polygon
    area: float
    perimeter: float

    @classmethod
    def from_polygon(
        cls,
        region_id: int,
        polygon: Polygon,
        rows: npt.ArrayLike = (),
        cols: npt.ArrayLike = (),
    ) -> Region:
        return cls(
            region_id=int(region_id),
            rows=np.asarray(rows, dtype=np.intp),
            cols=np.asarray(cols, dtype=np.intp),
            polygon=polygon,
            area=float(polygon.area),
            perimeter=float(polygon.length),
        )

    @property
    def cell_count(self) -> int:
        return int(self.rows.size)


@dataclass(frozen=True, eq=False)
class AggregatedSegment:
    """Externally visible unit after region cleanup.

    ``area`` is the sum of the member regions' areas plus ``filled_area``
    (the area of small interior holes closed by the cleaner).
    """

    segment_id: int
    region_ids: tuple[int, ...]
    polygon: Polygon
    area: float
    perimeter: float
    filled_area: float = 0.0
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.region_ids:
            raise InputValidationError(
                "a segment needs at least one region", parameter="region_ids",
            )

    @property
    def compactness(self) -> float:
        """Isoperimetric quotient ``4πA / P²`` (1 for a circle)."""
        if self.perimeter <= 0:
            return 0.0
        return 4.0 * math.pi * self.area / (self.perimeter ** 2)

    def with_attributes(self, **attributes: Any) -> AggregatedSegment:
        return replace(self, attributes={**self.attributes, **attributes})


# ---------------------------------------------------------------------------
# Tree record
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TreeRecord:
    """Final inventory entry for one tree."""

    tree_id: int
    tile_tree_id: str
    x: float
    y: float
    z: float
    height: float
    crown_height: float
    crown_diameter: float
    trunk_height: float
    crown_width: float
    crown_length: float
    crown_orientation: float
    crown_area: float
    crown_volume: float
    crown_surface: float
    prototype: int | None
    returns_ratio: float | None
    vegetation_index: float | None
    point_count: int
    polygon: Polygon | None = field(default=None, repr=False, compare=False)

    def as_dict(self) -> dict[str, Any]:
        """Tabular attributes (everything except the crown polygon)."""
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name != "polygon"}


__all__ = [
    "AggregatedSegment",
    "POINT_COLUMNS",
    "PointCloud",
    "RasterGrid",
    "Region",
    "TreeRecord",
]
