"""Tests for DTO utility functions."""

from decimal import Decimal

import pytest

from perfumery.models import AdjustmentReason, OrderStatus
from perfumery.services.dto_utils import (
    optional_decimal,
    parse_enum,
    quantize_cost,
    quantize_quantity,
    to_decimal,
    to_int,
)
from perfumery.services.exceptions import ValidationError


class TestToDecimal:
    """Tests for to_decimal."""

    def test_float_has_no_binary_artifacts(self):
        """Floats convert through their printed value."""
        assert to_decimal(0.1) == Decimal("0.1")
        assert to_decimal(4802.49) == Decimal("4802.49")

    def test_string_is_stripped(self):
        assert to_decimal(" 12.5 ") == Decimal("12.5")

    def test_decimal_passes_through(self):
        value = Decimal("1.2345")
        assert to_decimal(value) is value

    @pytest.mark.parametrize(
        "value", [None, True, "", "abc", "1,5", "NaN", "sNaN", "Infinity", float("inf")]
    )
    def test_rejects_non_numeric_and_non_finite(self, value):
        with pytest.raises(ValidationError) as exc_info:
            to_decimal(value, "unit_cost")
        assert "unit_cost" in exc_info.value.errors[0]

    def test_optional_passes_none(self):
        assert optional_decimal(None) is None
        assert optional_decimal("2") == Decimal("2")


class TestToInt:
    """Tests for to_int."""

    @pytest.mark.parametrize("value", [12, "12", " 12 ", Decimal("12.000"), 12.0])
    def test_whole_numbers_accepted(self, value):
        assert to_int(value) == 12

    @pytest.mark.parametrize("value", ["2.5", Decimal("0.1"), "ten", None, False])
    def test_rejects_fractions_and_non_numbers(self, value):
        with pytest.raises(ValidationError):
            to_int(value, "units_requested")


class TestParseEnum:
    """Tests for parse_enum."""

    def test_value_and_member_accepted(self):
        assert parse_enum(OrderStatus, "done", "status") is OrderStatus.DONE
        assert parse_enum(OrderStatus, OrderStatus.QC, "status") is OrderStatus.QC

    def test_unknown_value_lists_allowed(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_enum(AdjustmentReason, "misplaced", "adjustment reason")
        message = exc_info.value.errors[0]
        assert "misplaced" in message
        assert "damaged_goods" in message


class TestQuantize:
    """Tests for quantize_quantity and quantize_cost."""

    def test_quantity_rounds_half_up_to_four_places(self):
        assert quantize_quantity("1710.82805") == Decimal("1710.8281")
        assert str(quantize_quantity(3)) == "3.0000"

    def test_cost_rounds_half_up(self):
        assert quantize_cost("2.123456") == Decimal("2.1235")
