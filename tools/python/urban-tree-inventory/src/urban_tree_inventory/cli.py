"""
Urban Tree Inventory — CLI Entry Point
=======================================
Exposes :class:`~urban_tree_inventory.pipeline.TreeInventoryTool` as the
``geo-trees`` command.

Usage::

    geo-trees \\
        --points tile_points.csv \\
        --ndsm   tile_ndsm.tif \\
        --ndvi   tile_ndvi.tif \\
        --dtm    tile_dtm.tif \\
        --config tile_config.json \\
        --output-dir output/trees

Run ``geo-trees --help`` for the full option list.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import replace
from pathlib import Path

import click

from shared.python.exceptions import UrbanForestError
from urban_tree_inventory.config import InventoryConfig, load_config
from urban_tree_inventory.pipeline import TreeInventoryTool

logger = logging.getLogger("urbanforest.urban_tree_inventory.cli")


@click.command("geo-trees")
@click.option(
    "--points",
    "points_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="CSV point table with x, y, z, classification, number_of_returns.",
)
@click.option(
    "--ndsm",
    "ndsm_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Normalised surface height GeoTIFF.",
)
@click.option(
    "--ndvi",
    "ndvi_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Vegetation index GeoTIFF on the nDSM grid.",
)
@click.option(
    "--dtm",
    "dtm_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="Terrain GeoTIFF; required unless the points carry a 'height' column.",
)
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="JSON configuration file (defaults are used when omitted).",
)
@click.option(
    "--tile-id",
    default=None,
    help="Tile identifier used in tree ids and file names (overrides config).",
)
@click.option(
    "--output-dir",
    "output_dir",
    default="output",
    show_default=True,
    help="Directory for the raster, vector and table outputs.",
)
@click.option(
    "--verbose",
    is_flag=True,
    default=False,
    help="Enable DEBUG-level logging.",
)
def cli(
    points_path: str,
    ndsm_path: str,
    ndvi_path: str,
    dtm_path: str | None,
    config_path: str | None,
    tile_id: str | None,
    output_dir: str,
    verbose: bool,
) -> None:
    """Detect and measure individual trees on one airborne survey tile.

    Writes the classified canopy height raster, the filtered point cloud,
    tree positions, crown polygons and the tree table into OUTPUT_DIR.

    \b
    Examples:
        # Points already carry normalised heights
        geo-trees --points pts.csv --ndsm ndsm.tif --ndvi ndvi.tif

        # Normalise with a terrain model and a custom config
        geo-trees --points pts.csv --ndsm ndsm.tif --ndvi ndvi.tif \\
                  --dtm dtm.tif --config city.json --tile-id 4711
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        config = load_config(Path(config_path)) if config_path else InventoryConfig()
        if tile_id:
            config = replace(config, tile_id=tile_id)

        tool = TreeInventoryTool(
            points_path=Path(points_path),
            ndsm_path=Path(ndsm_path),
            vegetation_index_path=Path(ndvi_path),
            output_dir=Path(output_dir),
            dtm_path=Path(dtm_path) if dtm_path else None,
            config=config,
            verbose=verbose,
        )
        tool.run()
    except UrbanForestError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    result = tool.result
    n_trees = len(result.trees) if result else 0
    click.echo(f"\n{n_trees} tree(s) written to: {output_dir}")


if __name__ == "__main__":
    cli()
