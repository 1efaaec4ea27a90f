"""
Urban Forest — Shared Python Package
=====================================
Re-exports the shared base class, exception hierarchy, and validator
utilities so individual tools can import from a single location::

    from shared.python import GeoTool, Validators
    from shared.python.exceptions import GeometryError
"""

from shared.python.base_tool import GeoTool
from shared.python.exceptions import (
    ColumnNotFoundError,
    ConfigurationError,
    CRSError,
    GeometryError,
    InputValidationError,
    OutputWriteError,
    RasterError,
    UrbanForestError,
)
from shared.python.validators import Validators

__all__ = [
    "GeoTool",
    "Validators",
    "UrbanForestError",
    "InputValidationError",
    "ColumnNotFoundError",
    "ConfigurationError",
    "CRSError",
    "RasterError",
    "GeometryError",
    "OutputWriteError",
]
