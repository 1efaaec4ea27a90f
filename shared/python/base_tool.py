"""
Urban Forest — Shared Base Tool
================================
Abstract base class that every urban-forest tool inherits from.

Design Pattern:
    Template Method — the public ``run()`` method defines a fixed
    pipeline (validate → process → report) that subclasses fill in
    by implementing the abstract methods ``validate_inputs`` and
    ``process``.

Usage::

    from shared.python.base_tool import GeoTool

    class MyTool(GeoTool):
        def validate_inputs(self) -> None:
            ...
        def process(self) -> None:
            ...
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path

# ---------------------------------------------------------------------------
# Namespace logger — each module takes a child via
#   logging.getLogger("urbanforest.<tool>.<module>").
# ---------------------------------------------------------------------------
logger = logging.getLogger("urbanforest")


class GeoTool(ABC):
    """Abstract base class for file-driven tools.

    Concrete tools implement :meth:`validate_inputs` and :meth:`process`;
    calling :meth:`run` executes both in order and reports the elapsed
    time.  Subclasses may override :meth:`summary` to add a one-line
    result description to the success message.

    Attributes:
        input_path: Primary input file (used for logging / repr).
        output_path: File or directory the tool writes to.
        verbose: Log DEBUG-level messages when ``True``.
    """

    def __init__(
        self,
        input_path: Path,
        output_path: Path,
        *,
        verbose: bool = False,
    ) -> None:
        self.input_path: Path = Path(input_path)
        self.output_path: Path = Path(output_path)
        self.verbose: bool = verbose

        self._configure_logging()

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abstractmethod
    def validate_inputs(self) -> None:
        """Validate all inputs before processing begins.

        Raises:
            InputValidationError: If a required file is missing, a
                column does not exist, or a configuration value is invalid.
        """

    @abstractmethod
    def process(self) -> None:
        """Execute the processing logic after validation succeeded."""

    # ------------------------------------------------------------------
    # Template method
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Validate, process and report.

        Exceptions from either step propagate unchanged.
        """
        logger.info("Starting %s", self.__class__.__name__)
        start = time.perf_counter()

        self.validate_inputs()
        self.process()

        self._report_success(time.perf_counter() - start)

    def summary(self) -> str:
        """Short description of the last run's result; empty by default."""
        return ""

    # ------------------------------------------------------------------
    # Protected helpers
    # ------------------------------------------------------------------

    def _report_success(self, elapsed: float) -> None:
        detail = self.summary()
        logger.info(
            "%s completed in %.2fs → %s%s",
            self.__class__.__name__,
            elapsed,
            self.output_path,
            f" ({detail})" if detail else "",
        )

    def _configure_logging(self) -> None:
        """Attach a console handler to the ``urbanforest`` logger once."""
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                fmt="[%(asctime)s] %(levelname)-8s %(name)s — %(message)s",
                datefmt="%H:%M:%S",
            )
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        logger.setLevel(logging.DEBUG if self.verbose else logging.INFO)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"input_path={self.input_path!r}, "
            f"output_path={self.output_path!r})"
        )
