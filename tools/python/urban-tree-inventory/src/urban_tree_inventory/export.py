"""
export.py
=========
Persist an :class:`~urban_tree_inventory.pipeline.InventoryResult`:
classified canopy height raster (GeoTIFF), filtered point cloud (CSV),
tree positions and crown polygons (GeoPackage), and the tree table (CSV).
"""

from __future__ import annotations

import logging
from pathlib import Path

import geopandas as gpd
import numpy as np
import rasterio
from rasterio.errors import RasterioError

from shared.python.exceptions import OutputWriteError
from shared.python.validators import Validators

from .model import RasterGrid
from .pipeline import InventoryResult

logger = logging.getLogger("urbanforest.urban_tree_inventory.export")

NODATA = -9999.0


class InventoryWriter:
    """Write every inventory output into one directory.

    Parameters
    ----------
    result : the completed tile result.
    output_dir : target directory (created if missing).
    prefix : file name prefix, e.g. the tile id.
    """

    def __init__(self, result: InventoryResult, output_dir: str | Path, prefix: str = "") -> None:
        self.r = result
        self.out = Path(output_dir)
        self.prefix = f"{prefix}_" if prefix else ""
        Validators.assert_output_dir_writable(self.out)

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    def write_all(self) -> list[Path]:
        """Write every output type and return the paths actually written."""
        logger.info("Writing outputs to %s …", self.out)
        written = [
            self.write_chm(),
            self.write_points(),
            self.write_positions(),
            self.write_crowns(),
            self.write_mask_segments(),
            self.write_table(),
        ]
        return [p for p in written if p is not None]

    # ==================================================================
    # Raster
    # ==================================================================

    def write_chm(self) -> Path:
        """Canopy height restricted to vegetation cells, float32 GeoTIFF."""
        path = self._path("chm.tif")
        self._write_tiff(path, self.r.chm)
        return path

    def _write_tiff(self, path: Path, grid: RasterGrid) -> None:
        rows, cols = grid.shape
        profile = {
            "driver": "GTiff",
            "height": rows,
            "width": cols,
            "count": 1,
            "dtype": "float32",
            "crs": self.r.crs,
            "transform": grid.transform,
            "nodata": NODATA,
            "compress": "deflate",
        }
        data = np.where(grid.valid, grid.values, NODATA).astype(np.float32)
        try:
            with rasterio.open(path, "w", **profile) as dst:
                dst.write(data, 1)
        except RasterioError as exc:
            raise OutputWriteError(str(path), str(exc)) from exc
        logger.info("  GeoTIFF : %s", path.name)

    # ==================================================================
    # Tables and vectors
    # ==================================================================

    def write_points(self) -> Path:
        """Points that fall on vegetation cells, with height and crown id."""
        path = self._path("points.csv")
        try:
            self.r.points.frame.to_csv(path, index_label="point_id")
        except OSError as exc:
            raise OutputWriteError(str(path), str(exc)) from exc
        logger.info("  CSV     : %s  (%d points)", path.name, len(self.r.points))
        return path

    def write_table(self) -> Path:
        path = self._path("trees.csv")
        frame = self.r.trees_frame().drop(columns="geometry")
        try:
            frame.to_csv(path, index=False)
        except OSError as exc:
            raise OutputWriteError(str(path), str(exc)) from exc
        logger.info("  CSV     : %s  (%d trees)", path.name, len(frame))
        return path

    def write_positions(self) -> Path | None:
        return self._write_vector(self._path("tree_positions.gpkg"), self.r.trees_frame(), "trees")

    def write_crowns(self) -> Path | None:
        return self._write_vector(self._path("crowns.gpkg"), self.r.crowns_frame(), "crowns")

    def write_mask_segments(self) -> Path | None:
        """Mask-pass segments with their score attributes."""
        return self._write_vector(
            self._path("mask_segments.gpkg"), self.r.mask_frame(), "mask_segments",
        )

    def _write_vector(self, path: Path, gdf: gpd.GeoDataFrame, layer: str) -> Path | None:
        # Empty frames carry no geometry type and cannot be written.
        if gdf.empty:
            logger.info("  Vector  : %s skipped (no features)", path.name)
            return None
        try:
            gdf.to_file(path, layer=layer, driver="GPKG")
        except Exception as exc:  # noqa: BLE001
            raise OutputWriteError(str(path), str(exc)) from exc
        logger.info("  Vector  : %s  (%d features)", path.name, len(gdf))
        return path

    def _path(self, name: str) -> Path:
        return self.out / f"{self.prefix}{name}"
