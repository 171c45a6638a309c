"""
Unit conversion for perfume formulas.

This module provides:
- Volume share of a formula line within a batch
- Resolution of that share into the material's stock base unit
- Quantity display helpers

Conversion Strategy:
- Every formula line is a percentage of the batch volume (ml)
- Materials stocked in ml take the volume as-is
- Materials stocked in g are weighed: volume x density, where density is
  the line's override, else the material's default, else 1.0 g/ml
- Any other stock unit cannot be derived from a volume share and is
  rejected with UnsupportedUnitError

All functions are pure.
"""

from decimal import Decimal
from typing import Optional

from perfumery.utils.constants import (
    DEFAULT_DENSITY,
    FORMULA_BASE_UNITS,
    UNIT_GRAM,
    UNIT_LABELS,
    UNIT_MILLILITER,
)
from .dto_utils import Number, optional_decimal, to_decimal
from .exceptions import UnsupportedUnitError

HUNDRED = Decimal("100")


def is_formula_unit(unit: str) -> bool:
    """
    Check whether a formula line can be resolved into this base unit.

    Args:
        unit: Stock base unit

    Returns:
        True for "ml" and "g"
    """
    return unit in FORMULA_BASE_UNITS


def line_volume_ml(percentage: Number, total_batch_volume_ml: Number) -> Decimal:
    """
    Volume of one formula line within the batch.

    Args:
        percentage: Line share, 0-100
        total_batch_volume_ml: Batch volume the share applies to

    Returns:
        (percentage / 100) * total_batch_volume_ml

    Example:
        >>> line_volume_ml(40, Decimal("4752.3"))
        Decimal('1900.92')
    """
    return to_decimal(percentage, "percentage") / HUNDRED * to_decimal(
        total_batch_volume_ml, "total_batch_volume_ml"
    )


def effective_density(
    line_density: Optional[Number], material_default_density: Optional[Number]
) -> Decimal:
    """Density to weigh a line with: line override, material default, then 1.0."""
    density = optional_decimal(line_density, "density")
    if density is None:
        density = optional_decimal(material_default_density, "material_default_density")
    if density is None:
        density = DEFAULT_DENSITY
    return density


def resolve_quantity(
    formula_line,
    total_batch_volume_ml: Number,
    material_base_unit: str,
    material_default_density: Optional[Number] = None,
) -> Decimal:
    """
    Quantity of a formula line's material, in the material's base unit.

    The formula line's kind never influences the result.

    Args:
        formula_line: Object with `percentage`, optional `density` and
            optional `material_id` attributes (a FormulaLine or equivalent)
        total_batch_volume_ml: Batch volume the percentage applies to
        material_base_unit: Stock base unit of the material ("ml" or "g")
        material_default_density: Material's default density in g/ml

    Returns:
        Unrounded Decimal quantity

    Raises:
        UnsupportedUnitError: If the base unit is neither ml nor g

    Example:
        40% of 4752.3 ml, stocked in g at 0.9 g/ml -> Decimal('1710.828')
    """
    if not is_formula_unit(material_base_unit):
        raise UnsupportedUnitError(material_base_unit, getattr(formula_line, "material_id", None))

    volume_ml = line_volume_ml(formula_line.percentage, total_batch_volume_ml)

    if material_base_unit == UNIT_MILLILITER:
        return volume_ml

    # UNIT_GRAM
    density = effective_density(getattr(formula_line, "density", None), material_default_density)
    return volume_ml * density


def format_quantity(value: Number, unit: str, precision: int = 2) -> str:
    """
    Format a quantity with its unit for display.

    Examples:
        >>> format_quantity(Decimal("1710.828"), "g")
        '1710.83 g'
    """
    return f"{to_decimal(value):.{precision}f} {unit}"


def describe_unit(unit: str) -> str:
    """Human-readable name of a base unit ("g" -> "grams")."""
    return UNIT_LABELS.get(unit, unit)


__all__ = [
    "UNIT_GRAM",
    "UNIT_MILLILITER",
    "is_formula_unit",
    "line_volume_ml",
    "effective_density",
    "resolve_quantity",
    "format_quantity",
    "describe_unit",
]
