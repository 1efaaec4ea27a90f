"""
pipeline.py
===========
Tile-level orchestration of the inventory components.

Stages (each runs to completion before the next starts):

1. **Mask pass**: unseeded watershed on the nDSM → region cleanup →
   zonal returns / vegetation-index means → composite classification →
   vegetation mask and CHM.
2. **Crown pass**: Gaussian-smoothed CHM → variable-window treetops →
   seeded watershed → region cleanup → per-crown point subsets.
3. **Measurement**: 2-D caliper geometry, 3-D hull volume and prototype
   assignment per crown, dispatched to a thread pool keyed by segment id.

:class:`TileInventory` works on in-memory structures;
:class:`TreeInventoryTool` wraps it with file input and output.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Sequence

import geopandas as gpd
import numpy as np
import numpy.typing as npt
import pandas as pd
from rasterio.features import rasterize

from shared.python.base_tool import GeoTool
from shared.python.exceptions import GeometryError, InputValidationError
from shared.python.validators import Validators

from .classification import TreeMaskClassifier
from .cleaning import RegionCleaner
from .config import InventoryConfig
from .detection import CrownDetector, Marker
from .geometry import CrownGeometry, CrownVolumeEstimator
from .model import AggregatedSegment, PointCloud, RasterGrid, TreeRecord
from .prototypes import PrototypeAssigner
from .segmentation import RegionSegmenter
from .zonal import ZonalAggregator

logger = logging.getLogger("urbanforest.urban_tree_inventory.pipeline")

# A crown subset must span more than this in x, y and z.
MIN_AXIS_SPAN = 0.1
MIN_CROWN_POINTS = 4

_TREE_COLUMNS = [
    "tree_id", "tile_tree_id", "x", "y", "z", "height", "crown_height",
    "crown_diameter", "trunk_height", "crown_width", "crown_length",
    "crown_orientation", "crown_area", "crown_volume", "crown_surface",
    "prototype", "returns_ratio", "vegetation_index", "point_count",
]
_MASK_COLUMNS = [
    "segment_id", "area", "perimeter", "returns_ratio", "vegetation_index",
    "compactness", "weighted_compactness", "score", "is_vegetation",
]


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------


@dataclass
class InventoryResult:
    """Everything one tile run produces."""

    mask_segments: list[AggregatedSegment]
    vegetation_mask: npt.NDArray[np.bool_]
    chm: RasterGrid
    markers: list[Marker]
    crown_segments: list[AggregatedSegment]
    trees: list[TreeRecord]
    points: PointCloud
    crs: str | None = None
    dropped: dict[str, int] = field(default_factory=dict)

    def _tree_table(self) -> pd.DataFrame:
        frame = pd.DataFrame([t.as_dict() for t in self.trees], columns=_TREE_COLUMNS)
        # Missing metrics become NaN so the columns stay numeric.
        for col in ("prototype", "returns_ratio", "vegetation_index"):
            frame[col] = frame[col].astype(np.float64)
        return frame

    def trees_frame(self) -> gpd.GeoDataFrame:
        """Tree positions as a point GeoDataFrame."""
        frame = self._tree_table()
        return gpd.GeoDataFrame(
            frame,
            geometry=gpd.points_from_xy(frame["x"], frame["y"]),
            crs=self.crs,
        )

    def crowns_frame(self) -> gpd.GeoDataFrame:
        """Crown polygons with the tree attributes."""
        frame = self._tree_table()
        return gpd.GeoDataFrame(
            frame, geometry=[t.polygon for t in self.trees], crs=self.crs,
        )

    def mask_frame(self) -> gpd.GeoDataFrame:
        """Mask-pass segments with their classification metrics."""
        records = [
            {"segment_id": s.segment_id, "area": s.area, "perimeter": s.perimeter, **s.attributes}
            for s in self.mask_segments
        ]
        frame = pd.DataFrame(records, columns=_MASK_COLUMNS)
        for col in ("returns_ratio", "vegetation_index", "score"):
            frame[col] = frame[col].astype(np.float64)
        return gpd.GeoDataFrame(
            frame,
            geometry=[s.polygon for s in self.mask_segments],
            crs=self.crs,
        )

    def summary(self) -> None:
        """Log a human-readable tile summary."""
        n_veg = sum(1 for s in self.mask_segments if s.attributes.get("is_vegetation"))
        logger.info("=== Tile inventory summary ============================")
        logger.info("  Mask segments   : %d (%d vegetation)", len(self.mask_segments), n_veg)
        logger.info("  Canopy cells    : %d", int(self.vegetation_mask.sum()))
        logger.info("  Treetops        : %d", len(self.markers))
        logger.info("  Crown segments  : %d", len(self.crown_segments))
        logger.info("  Trees           : %d", len(self.trees))
        for reason, count in sorted(self.dropped.items()):
            logger.info("    dropped (%s): %d", reason, count)
        logger.info("=======================================================")


# ---------------------------------------------------------------------------
# In-memory pipeline
# ---------------------------------------------------------------------------


class TileInventory:
    """Run both classification stages on one tile.

    The configuration is validated on construction, before any component
    runs.
    """

    def __init__(self, config: InventoryConfig | None = None) -> None:
        self.config = config or InventoryConfig()
        self.config.validate()

        c = self.config
        self.segmenter = RegionSegmenter()
        self.cleaner = RegionCleaner(c.min_segment_area)
        self.zonal = ZonalAggregator(max_workers=c.max_workers)
        self.detector = CrownDetector(c.window, min_height=c.min_tree_height)
        self.geometry = CrownGeometry()
        self.volume = CrownVolumeEstimator()
        self.prototypes = PrototypeAssigner(c.prototype_boundaries)

    # ==================================================================
    # Entry point
    # ==================================================================

    def run(
        self,
        points: PointCloud,
        ndsm: RasterGrid,
        vegetation_index: RasterGrid,
        dtm: RasterGrid | None = None,
    ) -> InventoryResult:
        self._validate(points, ndsm, vegetation_index, dtm)
        c = self.config
        points = self._with_heights(points, dtm)

        # ---- Mask pass ------------------------------------------------
        logger.info("Mask pass: unseeded watershed …")
        labels = self.segmenter.segment_unseeded(
            ndsm, c.watershed.min_height, c.watershed.tolerance, c.watershed.extension,
        )
        segments = self.cleaner.clean(self.segmenter.regions(labels))
        classified = self._classify(segments, points, vegetation_index, ndsm.cell_area)

        vegetation = [s for s in classified if s.attributes["is_vegetation"]]
        veg_mask = self._burn(ndsm, vegetation).astype(bool)
        chm = ndsm.masked(veg_mask & (ndsm.values >= c.watershed.min_height))

        # ---- Crown pass -----------------------------------------------
        logger.info("Crown pass: treetops and seeded watershed …")
        smoothed = chm.focal("gaussian", sigma=c.smoothing_sigma)
        markers = self.detector.detect(smoothed)
        crown_labels = self.segmenter.segment_seeded(smoothed, markers, mask=chm.valid)
        crowns = self.cleaner.clean(self.segmenter.regions(crown_labels))

        crown_ids = self._burn(ndsm, crowns, values=[s.segment_id for s in crowns])
        in_canopy = points.sample_raster(chm.with_values(veg_mask.astype(np.float64))) == 1.0
        point_crown = points.sample_raster(chm.with_values(crown_ids))
        points = points.with_column("crown_id", np.nan_to_num(point_crown, nan=0.0).astype(np.int64))
        canopy_points = points.subset(in_canopy)

        # ---- Measurement ----------------------------------------------
        logger.info("Measuring %d crown(s) …", len(crowns))
        max_returns = self._max_returns(points)
        trees, dropped = self._measure_all(crowns, canopy_points, vegetation_index, dtm, max_returns)

        result = InventoryResult(
            mask_segments=classified,
            vegetation_mask=veg_mask,
            chm=chm,
            markers=markers,
            crown_segments=crowns,
            trees=trees,
            points=canopy_points,
            crs=c.crs or ndsm.crs,
            dropped=dropped,
        )
        result.summary()
        return result

    # ==================================================================
    # Stages
    # ==================================================================

    def _classify(
        self,
        segments: list[AggregatedSegment],
        points: PointCloud,
        vegetation_index: RasterGrid,
        cell_area: float,
    ) -> list[AggregatedSegment]:
        max_returns = self._max_returns(points)
        mean_returns = self.zonal.reduce_all(segments, (points, "number_of_returns"), "mean")
        ratios = {
            sid: TreeMaskClassifier.returns_ratio(v, max_returns) for sid, v in mean_returns.items()
        }
        spectral = self.zonal.reduce_all(segments, vegetation_index, "mean")
        classifier = TreeMaskClassifier(self.config.score_threshold, cell_area=cell_area)
        return classifier.classify(segments, ratios, spectral)

    def _measure_all(
        self,
        crowns: list[AggregatedSegment],
        points: PointCloud,
        vegetation_index: RasterGrid,
        dtm: RasterGrid | None,
        max_returns: float,
    ) -> tuple[list[TreeRecord], dict[str, int]]:
        crown_col = points.column("crown_id")

        def work(seg: AggregatedSegment) -> TreeRecord | str:
            subset = points.subset(crown_col == seg.segment_id)
            return self._measure(seg, subset, vegetation_index, dtm, max_returns)

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            outcomes = list(pool.map(work, crowns))

        trees: list[TreeRecord] = []
        dropped: dict[str, int] = {}
        for outcome in outcomes:
            if isinstance(outcome, str):
                dropped[outcome] = dropped.get(outcome, 0) + 1
                continue
            tree_id = len(trees) + 1
            trees.append(
                replace(outcome, tree_id=tree_id, tile_tree_id=f"{self.config.tile_id}_{tree_id}")
            )
        return trees, dropped

    def _measure(
        self,
        seg: AggregatedSegment,
        subset: PointCloud,
        vegetation_index: RasterGrid,
        dtm: RasterGrid | None,
        max_returns: float,
    ) -> TreeRecord | str:
        """Build one record, or return the reason the crown was dropped."""
        c = self.config
        heights = subset.column("height")
        keep = heights >= c.min_trunk_height
        subset = subset.subset(keep)
        heights = heights[keep]

        if len(subset) < MIN_CROWN_POINTS:
            logger.debug("Crown %d: %d point(s), dropped.", seg.segment_id, len(subset))
            return "too few points"
        xyz = subset.xyz
        if np.any(np.ptp(xyz, axis=0) <= MIN_AXIS_SPAN):
            logger.debug("Crown %d: flat point subset, dropped.", seg.segment_id)
            return "flat subset"

        top = int(np.argmax(heights))
        height = float(heights[top])
        if not c.min_tree_height <= height <= c.max_tree_height:
            logger.debug("Crown %d: height %.2f outside the accepted range.", seg.segment_id, height)
            return "height out of range"

        try:
            planar = self.geometry.measure(xyz[:, :2])
            hull3d = self.volume.estimate(xyz)
        except GeometryError as exc:
            logger.debug("Crown %d: %s", seg.segment_id, exc)
            return "degenerate geometry"
        if hull3d.volume <= 0:
            logger.debug("Crown %d: zero hull volume.", seg.segment_id)
            return "zero volume"

        x, y = float(xyz[top, 0]), float(xyz[top, 1])
        ground = float(dtm.value_at(x, y)[0]) if dtm is not None else math.nan
        if not math.isfinite(ground):
            ground = float(xyz[top, 2]) - height

        trunk_height = float(heights.min())
        crown_height = height - trunk_height
        mean_returns = float(subset.column("number_of_returns").mean())

        return TreeRecord(
            tree_id=seg.segment_id,
            tile_tree_id="",
            x=x,
            y=y,
            z=ground,
            height=height,
            crown_height=crown_height,
            crown_diameter=(planar.width + planar.length) / 2.0,
            trunk_height=trunk_height,
            crown_width=planar.width,
            crown_length=planar.length,
            crown_orientation=planar.orientation,
            crown_area=planar.area,
            crown_volume=hull3d.volume,
            crown_surface=hull3d.surface,
            prototype=self.prototypes.assign_tree(crown_height, trunk_height),
            returns_ratio=TreeMaskClassifier.returns_ratio(mean_returns, max_returns),
            vegetation_index=self.zonal.reduce(seg, vegetation_index, "mean"),
            point_count=len(subset),
            polygon=seg.polygon,
        )

    # ==================================================================
    # Helpers
    # ==================================================================

    def _validate(
        self,
        points: PointCloud,
        ndsm: RasterGrid,
        vegetation_index: RasterGrid,
        dtm: RasterGrid | None,
    ) -> None:
        if ndsm.is_empty:
            raise InputValidationError("height raster has no valid cells", parameter="ndsm")
        if len(points) == 0:
            raise InputValidationError("point cloud is empty", parameter="points")
        Validators.assert_raster_shapes_match(
            ndsm.shape, vegetation_index.shape, "ndsm", "vegetation_index",
        )
        if not math.isclose(ndsm.cell_size, self.config.cell_size):
            raise InputValidationError(
                f"cell size {ndsm.cell_size} differs from the configured {self.config.cell_size}",
                parameter="ndsm",
            )
        if not math.isclose(ndsm.cell_size, vegetation_index.cell_size):
            raise InputValidationError(
                f"cell size {vegetation_index.cell_size} differs from ndsm {ndsm.cell_size}",
                parameter="vegetation_index",
            )
        if dtm is None and not points.has_column("height"):
            raise InputValidationError(
                "a terrain model or a 'height' column is required", parameter="dtm",
            )

    @staticmethod
    def _with_heights(points: PointCloud, dtm: RasterGrid | None) -> PointCloud:
        if points.has_column("height"):
            return points
        ground = points.sample_raster(dtm)  # type: ignore[arg-type]
        return points.with_column("height", points.column("z") - ground)

    def _max_returns(self, points: PointCloud) -> float:
        if self.config.max_returns is not None:
            return float(self.config.max_returns)
        return float(np.nanmax(points.column("number_of_returns")))

    @staticmethod
    def _burn(
        grid: RasterGrid,
        segments: Sequence[AggregatedSegment],
        values: Sequence[int] | None = None,
    ) -> npt.NDArray[np.float64]:
        """Rasterise segment polygons onto *grid* (0 where none)."""
        if not segments:
            return np.zeros(grid.shape)
        burn = values if values is not None else [1] * len(segments)
        return rasterize(
            [(s.polygon, int(v)) for s, v in zip(segments, burn)],
            out_shape=grid.shape,
            transform=grid.transform,
            fill=0,
            dtype="int32",
        ).astype(np.float64)


# ---------------------------------------------------------------------------
# File-based tool
# ---------------------------------------------------------------------------


class TreeInventoryTool(GeoTool):
    """Read a tile from disk, run :class:`TileInventory`, persist the outputs.

    Args:
        points_path: CSV point table (``x, y, z, classification,
                     number_of_returns`` plus optional ``height``).
        ndsm_path: Normalised height GeoTIFF.
        vegetation_index_path: Vegetation index GeoTIFF on the same grid.
        output_dir: Directory for all outputs.
        dtm_path: Optional terrain GeoTIFF used to normalise point heights.
        config: Inventory configuration; defaults if omitted.
        verbose: Enable DEBUG-level logging.
    """

    def __init__(
        self,
        points_path: Path,
        ndsm_path: Path,
        vegetation_index_path: Path,
        output_dir: Path,
        dtm_path: Path | None = None,
        config: InventoryConfig | None = None,
        *,
        verbose: bool = False,
    ) -> None:
        super().__init__(Path(points_path), Path(output_dir), verbose=verbose)
        self.ndsm_path = Path(ndsm_path)
        self.vegetation_index_path = Path(vegetation_index_path)
        self.dtm_path = Path(dtm_path) if dtm_path else None
        self.config = config or InventoryConfig()
        self._result: InventoryResult | None = None

    def validate_inputs(self) -> None:
        self.config.validate()
        Validators.assert_file_exists(self.input_path)
        Validators.assert_supported_extension(self.input_path, [".csv", ".txt"])
        rasters = [self.ndsm_path, self.vegetation_index_path]
        if self.dtm_path:
            rasters.append(self.dtm_path)
        for path in rasters:
            Validators.assert_file_exists(path)
            Validators.assert_supported_extension(path, [".tif", ".tiff"])
        Validators.assert_output_dir_writable(self.output_path)
        logger.debug("Inputs validated: %s", self)

    def process(self) -> None:
        from .export import InventoryWriter  # noqa: PLC0415

        points = PointCloud.from_csv(self.input_path)
        ndsm = RasterGrid.from_file(self.ndsm_path)
        vegetation_index = RasterGrid.from_file(self.vegetation_index_path)
        dtm = RasterGrid.from_file(self.dtm_path) if self.dtm_path else None
        logger.info("Loaded %d point(s) and a %d × %d grid.", len(points), *ndsm.shape)

        self._result = TileInventory(self.config).run(points, ndsm, vegetation_index, dtm)
        InventoryWriter(self._result, self.output_path, prefix=self.config.tile_id).write_all()

    def summary(self) -> str:
        if self._result is None:
            return ""
        return f"{len(self._result.trees)} tree(s)"

    @property
    def result(self) -> InventoryResult | None:
        """Result of the last run, or ``None``."""
        return self._result
