"""
Tests for PrototypeAssigner
============================
"""

from __future__ import annotations

import math

import pytest

from shared.python.exceptions import InputValidationError
from urban_tree_inventory.prototypes import PrototypeAssigner


class TestPrototypeAssigner:
    BOUNDS = (1.0, 2.0, 4.0)

    def test_interval_count(self) -> None:
        assert PrototypeAssigner(self.BOUNDS).count == 4

    @pytest.mark.parametrize(
        ("ratio", "expected"),
        [(0.0, 0), (0.5, 0), (1.0, 1), (1.999, 1), (2.0, 2), (4.0, 3), (50.0, 3)],
    )
    def test_assign(self, ratio: float, expected: int) -> None:
        assert PrototypeAssigner(self.BOUNDS).assign(ratio) == expected

    @pytest.mark.parametrize("b", [1.0, 2.0, 4.0])
    def test_boundary_belongs_to_upper_interval(self, b: float) -> None:
        assigner = PrototypeAssigner(self.BOUNDS)
        below = assigner.assign(math.nextafter(b, 0.0))
        assert assigner.assign(b) == below + 1  # type: ignore[operator]

    @pytest.mark.parametrize("ratio", [None, float("nan"), -0.1])
    def test_missing_ratio(self, ratio: float | None) -> None:
        assert PrototypeAssigner(self.BOUNDS).assign(ratio) is None

    def test_assign_tree(self) -> None:
        assigner = PrototypeAssigner(self.BOUNDS)
        assert assigner.assign_tree(crown_height=6.0, trunk_height=2.0) == 2
        assert assigner.assign_tree(crown_height=6.0, trunk_height=0.0) is None

    def test_names(self) -> None:
        assigner = PrototypeAssigner((1.0,), names=("columnar", "spreading"))
        assert assigner.name(assigner.assign(3.0)) == "spreading"
        assert assigner.name(None) is None

    @pytest.mark.parametrize("bounds", [(2.0, 1.0), (1.0, 1.0), (0.0, 1.0), (1.0, math.inf)])
    def test_invalid_boundaries(self, bounds: tuple[float, ...]) -> None:
        with pytest.raises(InputValidationError, match="boundaries"):
            PrototypeAssigner(bounds)

    def test_wrong_name_count(self) -> None:
        with pytest.raises(InputValidationError, match="names"):
            PrototypeAssigner((1.0, 2.0), names=("a", "b"))
