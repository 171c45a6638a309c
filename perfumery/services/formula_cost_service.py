"""
Formula Cost Service - yield and cost rollup for manufacturing orders.

This module provides pure calculations (no database writes):
- validate_formula(): percentages must sum to 100 within tolerance
- compute_yield(): theoretical / expected / actual volume and units
- resolve_formula_quantities(): per-material quantities in stock units
- compute_yield_and_cost(): both snapshots for an order

Yield:
    theoretical_ml = bottle_size_ml * units_requested
    expected_ml    = theoretical_ml * (1 - mixing/100)
                                    * (1 - filtration/100)
                                    * (1 - filling/100)
    expected_units = floor(expected_ml / bottle_size_ml)
    yield_pct      = actual_ml / theoretical_ml * 100   (only with actual_ml)

Cost (planning basis = expected volume and units; process loss is a real
cost, so materials are costed on the volume actually mixed):
    materials = sum(resolve_quantity(line, basis_ml) * unit_cost(material))
    packaging = sum(qty_per_unit * basis_units * unit_cost(item))
    total     = materials + labor + overhead + packaging + other
    per_ml    = total / basis_ml
    per_bottle = per_ml * bottle_size_ml
    suggested_retail = per_bottle * markup_factor

With finalize=True (order completion) the basis switches to the measured
actual_ml / actual_units where they were recorded.

The `order` argument is duck-typed: a ManufacturingOrder or any object with
the same attributes. Catalogs need get_product() / get_unit_cost(); see
product_catalog_service.ProductCatalog.
"""

from dataclasses import asdict, dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import Iterable, List, Optional, Tuple

from perfumery.utils.config import get_config
from perfumery.utils.constants import (
    FORMULA_PERCENT_TOLERANCE,
    FORMULA_TOTAL_PERCENT,
    PERCENT_PRECISION,
)
from .dto_utils import (
    Number,
    optional_decimal,
    quantize_cost,
    quantize_quantity,
    to_decimal,
    to_int,
)
from .exceptions import DivisionByZeroError, FormulaPercentageError, ValidationError
from .logging_utils import get_service_logger
from .unit_converter import HUNDRED, resolve_quantity

logger = get_service_logger(__name__)


@dataclass(frozen=True)
class YieldSnapshot:
    """Planned and measured output volume of a batch."""

    theoretical_ml: Decimal
    expected_ml: Decimal
    expected_units: int
    actual_ml: Optional[Decimal] = None
    actual_units: Optional[int] = None
    yield_percentage: Optional[Decimal] = None

    @property
    def produced_ml(self) -> Decimal:
        """Measured volume if recorded, else the expected volume."""
        return self.actual_ml if self.actual_ml is not None else self.expected_ml

    @property
    def produced_units(self) -> int:
        """Measured bottle count if recorded, else the expected count."""
        return self.actual_units if self.actual_units is not None else self.expected_units

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CostSnapshot:
    """Cost rollup of a batch. Monetary values are quantized to 4 places."""

    materials_cost: Decimal
    labor_cost: Decimal
    overhead_cost: Decimal
    packaging_cost: Decimal
    other_cost: Decimal
    total_cost: Decimal
    cost_per_ml: Decimal
    cost_per_bottle: Decimal
    suggested_retail: Decimal

    def to_dict(self) -> dict:
        return asdict(self)


# =============================================================================
# Formula validation
# =============================================================================


def formula_total(lines: Iterable) -> Decimal:
    """Sum of the percentages of formula lines."""
    return sum((to_decimal(line.percentage, "percentage") for line in lines), Decimal("0"))


def validate_formula(lines) -> Decimal:
    """
    Check that a formula may leave DRAFT.

    Args:
        lines: Formula lines (objects with `percentage`)

    Returns:
        The percentage total

    Raises:
        ValidationError: If there are no lines or a percentage is outside 0-100
        FormulaPercentageError: If the total differs from 100 by more than 0.01
    """
    lines = list(lines)
    if not lines:
        raise ValidationError(["Formula must contain at least one line"])

    errors = []
    for index, line in enumerate(lines, start=1):
        percentage = to_decimal(line.percentage, "percentage")
        if percentage < 0 or percentage > HUNDRED:
            errors.append(f"Line {index}: percentage must be between 0 and 100, got {percentage}")
    if errors:
        raise ValidationError(errors)

    total = formula_total(lines)
    if abs(total - FORMULA_TOTAL_PERCENT) > FORMULA_PERCENT_TOLERANCE:
        raise FormulaPercentageError(total)
    return total


def validate_process_loss(mixing: Number, filtration: Number, filling: Number) -> None:
    """
    Raises:
        ValidationError: If any loss percentage is outside 0-100
    """
    errors = []
    for name, value in (("mixing", mixing), ("filtration", filtration), ("filling", filling)):
        pct = to_decimal(value, f"{name}_loss_pct")
        if pct < 0 or pct > HUNDRED:
            errors.append(f"{name} loss must be between 0 and 100, got {pct}")
    if errors:
        raise ValidationError(errors)


# =============================================================================
# Yield
# =============================================================================


def compute_yield(
    bottle_size_ml: Number,
    units_requested: int,
    mixing_loss_pct: Number = 0,
    filtration_loss_pct: Number = 0,
    filling_loss_pct: Number = 0,
    actual_ml: Optional[Number] = None,
    actual_units: Optional[int] = None,
) -> YieldSnapshot:
    """
    Compute the yield snapshot of a batch.

    Example:
        >>> snap = compute_yield(50, 100, 2, 1, 1)
        >>> snap.theoretical_ml, snap.expected_ml, snap.expected_units
        (Decimal('5000.0000'), Decimal('4802.4900'), 96)

    Raises:
        ValidationError: If a value is not numeric, a size is not positive or
            a loss is out of range
    """
    bottle = to_decimal(bottle_size_ml, "bottle_size_ml")
    if bottle <= 0:
        raise ValidationError([f"Bottle size must be positive, got {bottle_size_ml}"])
    units = to_int(units_requested, "units_requested")
    if units <= 0:
        raise ValidationError([f"Units requested must be positive, got {units_requested}"])
    validate_process_loss(mixing_loss_pct, filtration_loss_pct, filling_loss_pct)

    theoretical = bottle * units
    expected = theoretical
    for pct in (mixing_loss_pct, filtration_loss_pct, filling_loss_pct):
        expected = expected * (1 - to_decimal(pct) / HUNDRED)

    expected_units = int((expected / bottle).to_integral_value(rounding=ROUND_FLOOR))

    actual = optional_decimal(actual_ml, "actual_ml")
    yield_percentage = None
    if actual is not None:
        if actual < 0:
            raise ValidationError([f"Actual volume cannot be negative, got {actual_ml}"])
        yield_percentage = (actual / theoretical * HUNDRED).quantize(PERCENT_PRECISION)
        actual = quantize_quantity(actual)

    units_made = to_int(actual_units, "actual_units") if actual_units is not None else None
    if units_made is not None and units_made < 0:
        raise ValidationError([f"Actual units cannot be negative, got {actual_units}"])

    return YieldSnapshot(
        theoretical_ml=quantize_quantity(theoretical),
        expected_ml=quantize_quantity(expected),
        expected_units=expected_units,
        actual_ml=actual,
        actual_units=units_made,
        yield_percentage=yield_percentage,
    )


def yield_for_order(order) -> YieldSnapshot:
    """compute_yield() fed from an order's attributes."""
    return compute_yield(
        order.bottle_size_ml,
        order.units_requested,
        order.mixing_loss_pct or 0,
        order.filtration_loss_pct or 0,
        order.filling_loss_pct or 0,
        actual_ml=order.actual_ml,
        actual_units=order.actual_units,
    )


# =============================================================================
# Quantities and cost
# =============================================================================


def resolve_formula_quantities(
    lines, volume_ml: Number, product_catalog
) -> List[Tuple[int, Decimal]]:
    """
    Quantity of each formula line's material for a batch volume.

    Args:
        lines: Formula lines (material_id, percentage, optional density)
        volume_ml: Batch volume the percentages apply to
        product_catalog: Object with get_product(product_id)

    Returns:
        [(material_id, unrounded quantity in the material's base unit)]
        in formula order

    Raises:
        UnsupportedUnitError: If a material is stocked in neither ml nor g
        ProductNotFoundInCatalog: If a material does not exist
    """
    quantities = []
    for line in lines:
        material = product_catalog.get_product(line.material_id)
        quantity = resolve_quantity(
            line, volume_ml, material.base_unit, material.default_density
        )
        quantities.append((line.material_id, quantity))
    return quantities


def resolve_packaging_quantities(items, units: int) -> List[Tuple[int, Decimal]]:
    """[(product_id, quantity_per_unit * units)] for packaging items."""
    return [
        (item.product_id, to_decimal(item.quantity_per_unit, "quantity_per_unit") * units)
        for item in items
    ]


def compute_yield_and_cost(
    order,
    cost_catalog,
    product_catalog=None,
    markup_factor: Optional[Number] = None,
    finalize: bool = False,
) -> Tuple[YieldSnapshot, CostSnapshot]:
    """
    Compute the yield and cost snapshots of an order.

    Args:
        order: ManufacturingOrder (or equivalent object)
        cost_catalog: Object with get_unit_cost(product_id)
        product_catalog: Object with get_product(product_id); defaults to
            cost_catalog (ProductCatalog implements both)
        markup_factor: Retail markup; defaults to Config.markup_factor
        finalize: If True, cost on the measured actual volume/units where
            recorded (order completion); otherwise on the expected ones

    Returns:
        (YieldSnapshot, CostSnapshot)

    Raises:
        DivisionByZeroError: If the costing volume is zero
        UnsupportedUnitError: If a formula material has an unsupported unit
        ValidationError: If order sizes or losses are invalid
        ProductNotFoundInCatalog: If a material or packaging item is unknown
    """
    if product_catalog is None:
        product_catalog = cost_catalog
    markup = (
        to_decimal(markup_factor, "markup_factor")
        if markup_factor is not None
        else get_config().markup_factor
    )

    yield_snapshot = yield_for_order(order)
    if finalize:
        basis_ml = yield_snapshot.produced_ml
        basis_units = yield_snapshot.produced_units
    else:
        basis_ml = yield_snapshot.expected_ml
        basis_units = yield_snapshot.expected_units

    materials = Decimal("0")
    for material_id, quantity in resolve_formula_quantities(
        order.formula_lines, basis_ml, product_catalog
    ):
        materials += quantity * cost_catalog.get_unit_cost(material_id)

    packaging = Decimal("0")
    for product_id, quantity in resolve_packaging_quantities(order.packaging_items, basis_units):
        packaging += quantity * cost_catalog.get_unit_cost(product_id)

    labor = to_decimal(order.labor_cost or 0, "labor_cost")
    overhead = to_decimal(order.overhead_cost or 0, "overhead_cost")
    other = to_decimal(order.other_cost or 0, "other_cost")
    total = materials + labor + overhead + packaging + other

    if basis_ml == 0:
        measured = finalize and yield_snapshot.actual_ml is not None
        raise DivisionByZeroError("actual volume" if measured else "expected volume")

    per_ml = total / basis_ml
    per_bottle = per_ml * to_decimal(order.bottle_size_ml)

    cost_snapshot = CostSnapshot(
        materials_cost=quantize_cost(materials),
        labor_cost=quantize_cost(labor),
        overhead_cost=quantize_cost(overhead),
        packaging_cost=quantize_cost(packaging),
        other_cost=quantize_cost(other),
        total_cost=quantize_cost(total),
        cost_per_ml=quantize_cost(per_ml),
        cost_per_bottle=quantize_cost(per_bottle),
        suggested_retail=quantize_cost(per_bottle * markup),
    )

    logger.debug(
        f"Costed order {getattr(order, 'id', None)}: basis {basis_ml} ml / {basis_units} units, "
        f"total {cost_snapshot.total_cost}"
    )
    return yield_snapshot, cost_snapshot
