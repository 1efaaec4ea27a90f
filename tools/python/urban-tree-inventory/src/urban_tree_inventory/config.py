"""
config.py
=========
Configuration consumed by the inventory components.

All values are validated once, by :meth:`InventoryConfig.validate`, before
any component executes.  Components themselves trust the values they are
given.

Usage::

    config = load_config(Path("tile_config.json"))
    config.validate()
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from shared.python.exceptions import ConfigurationError, InputValidationError
from shared.python.validators import Validators

logger = logging.getLogger("urbanforest.urban_tree_inventory.config")


# ---------------------------------------------------------------------------
# Parameter groups
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WatershedParams:
    """Unseeded watershed parameters.

    Attributes:
        min_height: Basins only start from maxima above this height (m).
        tolerance: Maxima whose saddle depth to a taller basin is at most
                   this value (m) are merged into that basin.
        extension: Number of cells basins may grow beyond the
                   ``min_height`` footprint.
    """

    min_height: float = 2.0
    tolerance: float = 1.0
    extension: int = 1


@dataclass(frozen=True)
class RadiusFunction:
    """Monotonic height → search-radius function for treetop detection.

    ``radius(h) = clamp(intercept + slope * h, min_radius, max_radius)``
    in map units.  With ``slope >= 0`` the function never decreases,
    which the detector relies on.
    """

    intercept: float = 1.0
    slope: float = 0.1
    min_radius: float = 1.0
    max_radius: float = 6.0

    def __call__(self, height: float) -> float:
        radius = self.intercept + self.slope * height
        return float(min(max(radius, self.min_radius), self.max_radius))


# Crown/trunk ratio boundaries → prototypes 0..3 (columnar, ovoid,
# spherical, spreading).
DEFAULT_PROTOTYPE_BOUNDARIES: tuple[float, ...] = (1.0, 2.0, 4.0)


@dataclass
class InventoryConfig:
    """Full set of tile-level parameters.

    Attributes:
        cell_size: Raster cell size in map units.
        crs: Tile CRS identifier (validated with pyproj, then carried only).
        tile_id: Prefix for tile-qualified tree ids.
        min_tree_height / max_tree_height: Accepted tree height range (m).
        watershed: Unseeded watershed parameters for the mask pass.
        min_segment_area: Absolute minimum segment area for cleanup (m²).
        score_threshold: Composite score at/above which a segment is vegetation.
        max_returns: Returns normaliser; ``None`` uses the tile maximum.
        smoothing_sigma: Gaussian sigma (cells) applied to the CHM.
        window: Variable-window radius function.
        prototype_boundaries: Sorted crown/trunk ratio boundaries.
        min_trunk_height: Points below this height are ignored when
                          estimating the crown base (m).
        max_workers: Thread pool size for per-segment work.
    """

    cell_size: float = 1.0
    crs: str | None = None
    tile_id: str = "tile"
    min_tree_height: float = 3.0
    max_tree_height: float = 60.0
    watershed: WatershedParams = field(default_factory=WatershedParams)
    min_segment_area: float = 4.0
    score_threshold: float = 0.55
    max_returns: int | None = None
    smoothing_sigma: float = 1.0
    window: RadiusFunction = field(default_factory=RadiusFunction)
    prototype_boundaries: tuple[float, ...] = DEFAULT_PROTOTYPE_BOUNDARIES
    min_trunk_height: float = 0.5
    max_workers: int = 4

    def validate(self) -> None:
        """Reject invalid values, naming the offending parameter.

        Raises:
            ConfigurationError: On the first invalid value.
            CRSError: If ``crs`` is set but not a recognised CRS.
        """
        positive = {
            "cell_size": self.cell_size,
            "min_segment_area": self.min_segment_area,
            "max_tree_height": self.max_tree_height,
            "max_workers": self.max_workers,
            "window.max_radius": self.window.max_radius,
        }
        for name, value in positive.items():
            Validators.assert_positive(value, name, error=ConfigurationError)

        non_negative = {
            "min_tree_height": self.min_tree_height,
            "watershed.min_height": self.watershed.min_height,
            "watershed.tolerance": self.watershed.tolerance,
            "watershed.extension": self.watershed.extension,
            "score_threshold": self.score_threshold,
            "smoothing_sigma": self.smoothing_sigma,
            "window.slope": self.window.slope,
            "window.min_radius": self.window.min_radius,
            "min_trunk_height": self.min_trunk_height,
        }
        for name, value in non_negative.items():
            Validators.assert_positive(value, name, allow_zero=True, error=ConfigurationError)

        if self.min_tree_height >= self.max_tree_height:
            raise ConfigurationError(
                f"must be below max_tree_height ({self.max_tree_height}), "
                f"got {self.min_tree_height}",
                parameter="min_tree_height",
            )
        if int(self.watershed.extension) != self.watershed.extension:
            raise ConfigurationError(
                f"must be a whole number of cells, got {self.watershed.extension}",
                parameter="watershed.extension",
            )
        if self.window.min_radius > self.window.max_radius:
            raise ConfigurationError(
                "min_radius exceeds max_radius", parameter="window.min_radius",
            )
        if self.max_returns is not None:
            Validators.assert_positive(self.max_returns, "max_returns", error=ConfigurationError)

        bounds = list(self.prototype_boundaries)
        if any(not math.isfinite(b) or b <= 0 for b in bounds):
            raise ConfigurationError(
                f"boundaries must be finite and > 0, got {bounds}",
                parameter="prototype_boundaries",
            )
        if any(nxt <= prev for prev, nxt in zip(bounds, bounds[1:])):
            raise ConfigurationError(
                f"boundaries must be strictly increasing, got {bounds}",
                parameter="prototype_boundaries",
            )

        if self.crs:
            Validators.assert_crs_valid(self.crs)

        logger.debug("Configuration validated: %s", self)


# ---------------------------------------------------------------------------
# Config parser
# ---------------------------------------------------------------------------


def config_from_dict(raw: dict[str, Any]) -> InventoryConfig:
    """Build an :class:`InventoryConfig` from a plain mapping.

    Unknown keys are rejected so typos do not silently fall back to
    defaults.

    Raises:
        ConfigurationError: On unknown keys or malformed groups.
    """
    known = set(InventoryConfig.__dataclass_fields__)
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigurationError(f"unknown key(s): {', '.join(unknown)}", parameter="config")

    values = dict(raw)
    try:
        if "watershed" in values:
            values["watershed"] = WatershedParams(**values["watershed"])
        if "window" in values:
            values["window"] = RadiusFunction(**values["window"])
    except TypeError as exc:
        raise ConfigurationError(str(exc), parameter="config") from exc
    if "prototype_boundaries" in values:
        values["prototype_boundaries"] = tuple(float(b) for b in values["prototype_boundaries"])
    return InventoryConfig(**values)


def load_config(config_path: Path) -> InventoryConfig:
    """Parse a JSON configuration file into an :class:`InventoryConfig`.

    The returned object is not yet validated; call
    :meth:`InventoryConfig.validate` before use.

    Raises:
        InputValidationError: If the file cannot be read or parsed.
    """
    try:
        raw: dict[str, Any] = json.loads(Path(config_path).read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        raise InputValidationError(
            f"Failed to read config file '{config_path}': {exc}"
        ) from exc
    if not isinstance(raw, dict):
        raise InputValidationError(
            f"Config file '{config_path}' must hold a JSON object."
        )
    return config_from_dict(raw)
