"""
Urban Forest — Custom Exception Hierarchy
==========================================
All urban-forest tools raise exceptions from this module so callers can
catch them at the right level of granularity.

Hierarchy::

    UrbanForestError                     ← catch-all base
    ├── InputValidationError             ← bad rasters, point clouds, files
    │   ├── ColumnNotFoundError          ← point table column missing
    │   └── ConfigurationError           ← rejected configuration value
    ├── CRSError                         ← invalid / unknown CRS string
    ├── RasterError                      ← rasterio / numpy raster issues
    ├── GeometryError                    ← degenerate hull input (per segment)
    └── OutputWriteError                 ← cannot write to output path

Usage::

    from shared.python.exceptions import GeometryError

    raise GeometryError("fewer than 3 non-collinear points", point_count=2)
"""

from __future__ import annotations


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


class UrbanForestError(Exception):
    """Base exception for all urban-forest tools.

    Catch this to handle any tool-specific error without caring about
    the exact subtype.

    Args:
        message: Human-readable description of the error.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class InputValidationError(UrbanForestError):
    """Raised when a component's inputs fail boundary validation.

    Non-retriable.  ``parameter`` names the offending argument when the
    failure can be pinned to one.

    Args:
        message: Human-readable description of the error.
        parameter: Name of the offending parameter, if known.
    """

    def __init__(self, message: str, parameter: str | None = None) -> None:
        if parameter:
            message = f"{parameter}: {message}"
        super().__init__(message)
        self.parameter: str | None = parameter


class ColumnNotFoundError(InputValidationError):
    """Raised when an expected column is absent from a point table.

    Args:
        column: The name of the missing column.
        available: List of column names that ARE present, used to
                   generate a helpful error message.

    Example::

        raise ColumnNotFoundError("z", df.columns.tolist())
    """

    def __init__(self, column: str, available: list[str]) -> None:
        available_str = ", ".join(f"'{c}'" for c in available)
        super().__init__(
            f"Column '{column}' not found. Available columns: {available_str}",
            parameter=column,
        )
        self.column: str = column
        self.available: list[str] = available


class ConfigurationError(InputValidationError):
    """Raised when a configuration value is rejected.

    Configuration is validated once at the boundary, before any
    component executes.

    Example::

        raise ConfigurationError("must be > 0, got -1.0", parameter="cell_size")
    """


# ---------------------------------------------------------------------------
# CRS
# ---------------------------------------------------------------------------


class CRSError(UrbanForestError):
    """Raised when a coordinate reference system string cannot be parsed.

    Args:
        crs_string: The raw CRS string that caused the error
                    (e.g. ``"EPSG:99999"``).
    """

    def __init__(self, crs_string: str) -> None:
        super().__init__(
            f"Invalid or unrecognised CRS: '{crs_string}'. "
            "Use an EPSG code (e.g. 'EPSG:25832') or a valid WKT/PROJ string."
        )
        self.crs_string: str = crs_string


# ---------------------------------------------------------------------------
# Raster
# ---------------------------------------------------------------------------


class RasterError(UrbanForestError):
    """Raised for raster read failures (rasterio / numpy)."""


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


class GeometryError(UrbanForestError):
    """Raised when hull geometry cannot be computed for a point set.

    Scoped to a single segment: the pipeline drops that segment and
    continues with the rest of the tile.

    Args:
        reason: Short explanation of the degeneracy.
        point_count: Number of points that were supplied.
    """

    def __init__(self, reason: str, point_count: int | None = None) -> None:
        suffix = f" ({point_count} point(s))" if point_count is not None else ""
        super().__init__(f"Degenerate geometry: {reason}{suffix}")
        self.reason: str = reason
        self.point_count: int | None = point_count


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class OutputWriteError(UrbanForestError):
    """Raised when the tool cannot write its output to disk.

    Args:
        output_path: String representation of the path that failed.
        reason: Underlying OS or library error message.
    """

    def __init__(self, output_path: str, reason: str) -> None:
        super().__init__(
            f"Failed to write output to '{output_path}': {reason}"
        )
        self.output_path: str = output_path
        self.reason: str = reason
