"""
Urban Forest — Shared Input Validators
=======================================
Static precondition checks used at component and tool boundaries.

All methods raise an appropriate exception from
:mod:`shared.python.exceptions` rather than returning booleans, so
``validate_inputs`` implementations stay flat and readable::

    class MyTool(GeoTool):
        def validate_inputs(self) -> None:
            Validators.assert_file_exists(self.input_path)
            Validators.assert_supported_extension(self.input_path, [".csv"])
            Validators.assert_crs_valid(self.crs)
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Sequence

# Lazy imports for heavy libraries:
#   pyproj → assert_crs_valid

from shared.python.exceptions import (
    ColumnNotFoundError,
    CRSError,
    InputValidationError,
    OutputWriteError,
)


class Validators:
    """Collection of static precondition checks.

    All methods are ``@staticmethod``; the class is a namespace only.
    """

    # ------------------------------------------------------------------
    # File-system checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_file_exists(path: Path) -> None:
        """Assert that *path* points to an existing regular file.

        Raises:
            InputValidationError: If *path* does not exist or is a directory.
        """
        path = Path(path)
        if not path.exists():
            raise InputValidationError(
                f"Input file not found: '{path}'. "
                "Check that the path is correct and the file exists."
            )
        if path.is_dir():
            raise InputValidationError(
                f"Expected a file but got a directory: '{path}'."
            )

    @staticmethod
    def assert_output_dir_writable(output_dir: Path) -> None:
        """Create *output_dir* (and parents) if needed.

        Raises:
            OutputWriteError: If the directory cannot be created.
        """
        try:
            Path(output_dir).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OutputWriteError(str(output_dir), str(exc)) from exc

    @staticmethod
    def assert_supported_extension(path: Path, extensions: Sequence[str]) -> None:
        """Assert that *path* has one of the allowed file extensions.

        Args:
            path: File path to check.
            extensions: Allowed extensions, each starting with a dot
                        (e.g. ``[".tif", ".tiff"]``).

        Raises:
            InputValidationError: If the extension is not allowed.
        """
        path = Path(path)
        suffix = path.suffix.lower()
        allowed = [ext.lower() for ext in extensions]
        if suffix not in allowed:
            raise InputValidationError(
                f"Unsupported file extension '{suffix}' for '{path.name}'. "
                f"Accepted extensions: {', '.join(allowed)}"
            )

    # ------------------------------------------------------------------
    # CRS checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_crs_valid(crs_string: str) -> None:
        """Assert that *crs_string* can be parsed by :mod:`pyproj`.

        Raises:
            CRSError: If the string is not a recognised CRS.
        """
        try:
            from pyproj import CRS  # noqa: PLC0415

            CRS.from_user_input(crs_string)
        except Exception as exc:
            raise CRSError(crs_string) from exc

    # ------------------------------------------------------------------
    # Numeric checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_positive(
        value: float,
        parameter: str,
        *,
        allow_zero: bool = False,
        error: type[InputValidationError] = InputValidationError,
    ) -> None:
        """Assert that *value* is a finite number above zero.

        Args:
            value: Number to check.
            parameter: Name reported in the error message.
            allow_zero: Accept ``0`` as well.
            error: Exception class to raise, e.g.
                   :class:`~shared.python.exceptions.ConfigurationError`.

        Raises:
            InputValidationError: (or *error*) if the check fails.
        """
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise error(f"must be a number, got {value!r}", parameter=parameter) from None
        if not math.isfinite(number):
            raise error(f"must be finite, got {value!r}", parameter=parameter)
        if number < 0 or (number == 0 and not allow_zero):
            bound = ">= 0" if allow_zero else "> 0"
            raise error(f"must be {bound}, got {value!r}", parameter=parameter)

    # ------------------------------------------------------------------
    # Tabular data checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_columns_exist(
        df: object,  # pandas DataFrame, typed loosely to avoid hard dep
        required_columns: Sequence[str],
    ) -> None:
        """Assert that all *required_columns* are present in *df*.

        Raises:
            ColumnNotFoundError: On the first missing column found.
        """
        available = list(df.columns)  # type: ignore[union-attr]
        for col in required_columns:
            if col not in available:
                raise ColumnNotFoundError(col, available)

    # ------------------------------------------------------------------
    # Raster checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_raster_shapes_match(
        shape_a: tuple[int, ...],
        shape_b: tuple[int, ...],
        label_a: str = "Raster A",
        label_b: str = "Raster B",
    ) -> None:
        """Assert that two raster arrays have identical ``(rows, cols)`` shapes.

        Raises:
            InputValidationError: If the shapes differ.
        """
        if tuple(shape_a) != tuple(shape_b):
            raise InputValidationError(
                f"Raster shape mismatch: {label_a} is {tuple(shape_a)} but "
                f"{label_b} is {tuple(shape_b)}. "
                "All rasters of a tile must share one grid.",
                parameter=label_b,
            )
