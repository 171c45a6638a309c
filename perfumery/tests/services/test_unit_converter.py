"""
Tests for unit_converter.

Covers:
- Volume share of a formula line
- ml passthrough and g weighing with density fallback
- Rejection of units a volume share cannot be converted into
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from perfumery.models import FormulaKind
from perfumery.services.exceptions import UnsupportedUnitError, ValidationError
from perfumery.services.unit_converter import (
    describe_unit,
    effective_density,
    format_quantity,
    is_formula_unit,
    line_volume_ml,
    resolve_quantity,
)


def make_line(percentage, density=None, kind=FormulaKind.AROMA_OIL, material_id=7):
    return SimpleNamespace(
        percentage=Decimal(str(percentage)),
        density=Decimal(str(density)) if density is not None else None,
        kind=kind.value,
        material_id=material_id,
    )


# =============================================================================
# Volume share
# =============================================================================


class TestLineVolume:
    def test_forty_percent_of_batch(self):
        assert line_volume_ml(40, Decimal("4752.3")) == Decimal("1900.92")

    def test_zero_percent(self):
        assert line_volume_ml(0, Decimal("5000")) == 0

    def test_full_batch(self):
        assert line_volume_ml(100, Decimal("5000")) == Decimal("5000")


# =============================================================================
# resolve_quantity
# =============================================================================


class TestResolveQuantity:
    def test_ml_material_takes_volume(self):
        line = make_line(40)
        assert resolve_quantity(line, Decimal("4752.3"), "ml") == Decimal("1900.92")

    def test_ml_material_ignores_density(self):
        line = make_line(40, density="0.9")
        assert resolve_quantity(line, Decimal("4752.3"), "ml", Decimal("0.8")) == Decimal("1900.92")

    def test_gram_material_uses_line_density(self):
        line = make_line(40, density="0.9")
        assert resolve_quantity(line, Decimal("4752.3"), "g") == Decimal("1710.828")

    def test_gram_material_falls_back_to_material_density(self):
        line = make_line(40)
        assert resolve_quantity(line, Decimal("4752.3"), "g", Decimal("0.9")) == Decimal("1710.828")

    def test_line_density_overrides_material_density(self):
        line = make_line(50, density="0.8")
        assert resolve_quantity(line, Decimal("1000"), "g", Decimal("1.2")) == Decimal("400")

    def test_gram_material_without_any_density_uses_one(self):
        line = make_line(25)
        assert resolve_quantity(line, Decimal("1000"), "g") == Decimal("250")

    def test_kind_does_not_change_result(self):
        volume = Decimal("2000")
        results = {
            resolve_quantity(make_line(10, density="0.95", kind=kind), volume, "g")
            for kind in FormulaKind
        }
        assert results == {Decimal("190")}

    def test_piece_unit_rejected(self):
        line = make_line(10, material_id=99)
        with pytest.raises(UnsupportedUnitError) as exc_info:
            resolve_quantity(line, Decimal("1000"), "pcs")
        assert exc_info.value.unit == "pcs"
        assert exc_info.value.product_id == 99

    def test_unsupported_unit_is_validation_error(self):
        with pytest.raises(ValidationError):
            resolve_quantity(make_line(10), Decimal("1000"), "kg")


# =============================================================================
# Helpers
# =============================================================================


class TestHelpers:
    def test_formula_units(self):
        assert is_formula_unit("ml")
        assert is_formula_unit("g")
        assert not is_formula_unit("pcs")

    def test_effective_density_order(self):
        assert effective_density("0.7", "0.9") == Decimal("0.7")
        assert effective_density(None, "0.9") == Decimal("0.9")
        assert effective_density(None, None) == Decimal("1.0")

    def test_format_quantity(self):
        assert format_quantity(Decimal("1710.828"), "g") == "1710.83 g"
        assert format_quantity(Decimal("5"), "pcs", precision=0) == "5 pcs"

    def test_describe_unit(self):
        assert describe_unit("g") == "grams"
        assert describe_unit("oz") == "oz"
