"""
Urban Tree Inventory
====================
Individual tree detection and crown measurement from airborne laser
scanning points, height rasters and a vegetation index.
"""

from urban_tree_inventory.classification import MaskScore, TreeMaskClassifier
from urban_tree_inventory.cleaning import RegionCleaner
from urban_tree_inventory.config import (
    InventoryConfig,
    RadiusFunction,
    WatershedParams,
    config_from_dict,
    load_config,
)
from urban_tree_inventory.detection import CrownDetector, Marker
from urban_tree_inventory.geometry import (
    CrownGeometry,
    CrownShape,
    CrownVolume,
    CrownVolumeEstimator,
)
from urban_tree_inventory.model import (
    AggregatedSegment,
    PointCloud,
    RasterGrid,
    Region,
    TreeRecord,
)
from urban_tree_inventory.pipeline import InventoryResult, TileInventory, TreeInventoryTool
from urban_tree_inventory.prototypes import PrototypeAssigner
from urban_tree_inventory.segmentation import RegionSegmenter
from urban_tree_inventory.zonal import ZonalAggregator

__version__ = "1.0.0"

__all__ = [
    "AggregatedSegment",
    "CrownDetector",
    "CrownGeometry",
    "CrownShape",
    "CrownVolume",
    "CrownVolumeEstimator",
    "InventoryConfig",
    "InventoryResult",
    "Marker",
    "MaskScore",
    "PointCloud",
    "PrototypeAssigner",
    "RadiusFunction",
    "RasterGrid",
    "Region",
    "RegionCleaner",
    "RegionSegmenter",
    "TileInventory",
    "TreeInventoryTool",
    "TreeMaskClassifier",
    "TreeRecord",
    "WatershedParams",
    "ZonalAggregator",
    "config_from_dict",
    "load_config",
]
