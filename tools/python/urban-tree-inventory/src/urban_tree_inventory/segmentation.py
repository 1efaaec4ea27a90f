"""
segmentation.py
===============
Surface-based region segmentation.

Algorithms
----------
* **Unseeded watershed**: basins start at the regional maxima of a height
  surface that rise above ``min_height``.  Maxima whose dynamic (drop to the
  saddle toward a taller basin) is at most ``tolerance`` are absorbed by an
  h-maxima transform, and the flooding mask is dilated by ``extension``
  cells around the ``min_height`` footprint.
* **Seeded (marker-controlled) watershed**: flooding starts from supplied
  marker points and is restricted to a minimum-height mask.  Cells that no
  marker reaches keep the no-data label.
* **Vectorisation**: each connected part of every label becomes one
  single-part :class:`~urban_tree_inventory.model.Region` with a unique id.

Flooding is done by :func:`skimage.segmentation.watershed`, whose priority
queue breaks equal-elevation ties by insertion order, so repeated runs on
the same input produce identical labels.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import numpy as np
import numpy.typing as npt
from rasterio.features import shapes
from scipy.ndimage import binary_dilation, generate_binary_structure
from scipy.ndimage import label as ndi_label
from shapely.geometry import shape
from skimage.measure import label as sk_label
from skimage.measure import regionprops
from skimage.morphology import h_maxima, local_maxima
from skimage.segmentation import watershed

from shared.python.exceptions import InputValidationError
from shared.python.validators import Validators

from .model import RasterGrid, Region

logger = logging.getLogger("urbanforest.urban_tree_inventory.segmentation")

# h_maxima keeps maxima whose depth equals h; pad so depth == tolerance merges.
_TOLERANCE_PAD = 1e-9


class RegionSegmenter:
    """Watershed segmentation of height surfaces.

    Parameters
    ----------
    connectivity : 1 for 4-neighbour, 2 for 8-neighbour flooding.
    """

    def __init__(self, connectivity: int = 1) -> None:
        if connectivity not in (1, 2):
            raise InputValidationError(
                f"must be 1 or 2, got {connectivity}", parameter="connectivity",
            )
        self.connectivity = connectivity
        self._structure = generate_binary_structure(2, connectivity)

    # ==================================================================
    # Unseeded
    # ==================================================================

    def segment_unseeded(
        self,
        surface: RasterGrid,
        min_height: float,
        tolerance: float,
        extension: int = 0,
    ) -> RasterGrid:
        """Label basins grown from local maxima above *min_height*."""
        valid = surface.valid
        if not valid.any():
            logger.debug("Unseeded watershed on an empty grid.")
            return self._empty_labels(surface)

        values = surface.values
        core = valid & (values > min_height)
        if not core.any():
            return self._empty_labels(surface)

        growth = core
        if extension > 0:
            growth = binary_dilation(
                core, structure=self._structure, iterations=int(extension),
            ) & valid

        filled = self._fill_nodata(values, valid, margin=tolerance)
        if tolerance > 0:
            peaks = h_maxima(filled, tolerance + _TOLERANCE_PAD).astype(bool)
        else:
            peaks = local_maxima(filled, connectivity=self.connectivity).astype(bool)

        markers, n_markers = ndi_label(peaks & core, structure=self._structure)
        logger.debug("Unseeded watershed: %d basin seed(s).", n_markers)

        labels = watershed(
            -filled, markers, mask=growth, connectivity=self.connectivity,
        ).astype(np.int64)
        labels = self._label_orphans(labels, growth)
        return self._to_grid(surface, labels)

    # ==================================================================
    # Seeded
    # ==================================================================

    def segment_seeded(
        self,
        surface: RasterGrid,
        markers: Sequence[Any] | npt.ArrayLike,
        *,
        min_height: float | None = None,
        mask: npt.NDArray[np.bool_] | None = None,
    ) -> RasterGrid:
        """Marker-controlled watershed.

        Args:
            surface: Height surface; flooding follows steepest ascent.
            markers: Objects with ``x`` / ``y`` attributes or an ``(N, 2)``
                     array of map coordinates.  Label ``i + 1`` is given
                     to the basin of ``markers[i]``.
            min_height: Growable cells are those with height ≥ this value.
            mask: Explicit growable-cell mask; overrides *min_height*.
        """
        valid = surface.valid
        if not valid.any():
            return self._empty_labels(surface)

        values = surface.values
        if mask is not None:
            Validators.assert_raster_shapes_match(surface.shape, mask.shape, "surface", "mask")
            growth = np.asarray(mask, dtype=bool) & valid
        elif min_height is not None:
            growth = valid & (values >= min_height)
        else:
            growth = valid

        xy = self._marker_xy(markers)
        marker_img = np.zeros(surface.shape, dtype=np.int64)
        if len(xy):
            rows, cols = surface.rowcol(xy[:, 0], xy[:, 1])
            n_rows, n_cols = surface.shape
            for i, (r, c) in enumerate(zip(rows, cols), start=1):
                if not (0 <= r < n_rows and 0 <= c < n_cols) or not growth[r, c]:
                    logger.debug("Marker %d at cell (%d, %d) is not growable; skipped.", i, r, c)
                    continue
                if marker_img[r, c] == 0:
                    marker_img[r, c] = i

        if not marker_img.any():
            return self._empty_labels(surface)

        filled = self._fill_nodata(values, valid, margin=1.0)
        labels = watershed(
            -filled, marker_img, mask=growth, connectivity=self.connectivity,
        ).astype(np.int64)
        return self._to_grid(surface, labels)

    # ==================================================================
    # Vectorisation
    # ==================================================================

    def regions(self, labels: RasterGrid) -> list[Region]:
        """Split a label grid into single-part polygons with unique ids."""
        lab = np.nan_to_num(labels.values, nan=0.0).astype(np.int64)
        if not lab.any():
            return []

        parts = sk_label(lab, background=0, connectivity=1).astype(np.int32)
        coords = {int(p.label): p.coords for p in regionprops(parts)}

        regions: list[Region] = []
        for geom, value in shapes(
            parts, mask=parts > 0, transform=labels.transform, connectivity=4,
        ):
            rid = int(value)
            cells = coords[rid]
            regions.append(
                Region.from_polygon(rid, shape(geom), cells[:, 0], cells[:, 1])
            )
        regions.sort(key=lambda r: r.region_id)
        logger.debug("Vectorised %d region(s).", len(regions))
        return regions

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _marker_xy(markers: Sequence[Any] | npt.ArrayLike) -> npt.NDArray[np.float64]:
        if isinstance(markers, np.ndarray):
            return markers.reshape(-1, markers.shape[-1])[:, :2].astype(np.float64)
        items = list(markers)  # type: ignore[arg-type]
        if not items:
            return np.empty((0, 2))
        if hasattr(items[0], "x"):
            return np.array([(m.x, m.y) for m in items], dtype=np.float64)
        return np.asarray(items, dtype=np.float64).reshape(len(items), -1)[:, :2]

    @staticmethod
    def _fill_nodata(
        values: npt.NDArray[np.float64], valid: npt.NDArray[np.bool_], margin: float,
    ) -> npt.NDArray[np.float64]:
        """Replace no-data with a floor well below every valid value."""
        floor = float(np.min(values[valid])) - abs(margin) - 1.0
        return np.where(valid, values, floor)

    def _label_orphans(
        self, labels: npt.NDArray[np.int64], growth: npt.NDArray[np.bool_],
    ) -> npt.NDArray[np.int64]:
        """Give growable components that received no seed their own label."""
        orphans = growth & (labels == 0)
        if not orphans.any():
            return labels
        extra, n_extra = ndi_label(orphans, structure=self._structure)
        logger.debug("Labelled %d seedless component(s).", n_extra)
        out = labels.copy()
        out[orphans] = extra[orphans] + labels.max()
        return out

    @staticmethod
    def _to_grid(surface: RasterGrid, labels: npt.NDArray[np.int64]) -> RasterGrid:
        return surface.with_values(np.where(labels > 0, labels.astype(np.float64), np.nan))

    @staticmethod
    def _empty_labels(surface: RasterGrid) -> RasterGrid:
        return surface.with_values(np.full(surface.shape, np.nan))
