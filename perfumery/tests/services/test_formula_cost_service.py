"""
Tests for formula_cost_service.

Covers yield (theoretical / expected / actual), formula validation and the
cost rollup on the expected basis and on the finalized (actual) basis.
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from perfumery.services import formula_cost_service as engine
from perfumery.services.exceptions import (
    DivisionByZeroError,
    FormulaPercentageError,
    ProductNotFoundInCatalog,
    UnsupportedUnitError,
    ValidationError,
)
from perfumery.services.product_catalog_service import ProductInfo

ETHANOL, OUD, BOTTLE, CAP = 1, 2, 3, 4


class FakeCatalog:
    """In-memory product and cost catalog."""

    def __init__(self, *products):
        self.products = {product.id: product for product in products}

    def get_product(self, product_id):
        try:
            return self.products[product_id]
        except KeyError:
            raise ProductNotFoundInCatalog(product_id)

    def get_unit_cost(self, product_id):
        return self.get_product(product_id).unit_cost


@pytest.fixture
def catalog():
    return FakeCatalog(
        ProductInfo(ETHANOL, "ETH", "Ethanol", "ml", None, Decimal("0.02")),
        ProductInfo(OUD, "OUD", "Oud oil", "g", Decimal("0.9"), Decimal("2.5")),
        ProductInfo(BOTTLE, "BTL", "Bottle", "pcs", None, Decimal("1.2")),
        ProductInfo(CAP, "CAP", "Cap", "pcs", None, Decimal("0.3")),
    )


def make_order(**overrides):
    order = dict(
        id=1,
        bottle_size_ml=Decimal("50"),
        units_requested=100,
        mixing_loss_pct=Decimal("0"),
        filtration_loss_pct=Decimal("0"),
        filling_loss_pct=Decimal("0"),
        actual_ml=None,
        actual_units=None,
        formula_lines=[
            SimpleNamespace(material_id=ETHANOL, percentage=Decimal("80"), density=None),
            SimpleNamespace(material_id=OUD, percentage=Decimal("20"), density=None),
        ],
        packaging_items=[
            SimpleNamespace(product_id=BOTTLE, quantity_per_unit=Decimal("1")),
            SimpleNamespace(product_id=CAP, quantity_per_unit=Decimal("1")),
        ],
        labor_cost=Decimal("100"),
        overhead_cost=Decimal("50"),
        other_cost=Decimal("20"),
    )
    order.update(overrides)
    return SimpleNamespace(**order)


# =============================================================================
# Yield
# =============================================================================


class TestComputeYield:
    def test_losses_applied_multiplicatively(self):
        snap = engine.compute_yield(50, 100, 2, 1, 1)
        assert snap.theoretical_ml == Decimal("5000")
        # 5000 * 0.98 * 0.99 * 0.99
        assert snap.expected_ml == Decimal("4802.49")
        assert snap.expected_units == 96

    def test_expected_units_rounds_down(self):
        snap = engine.compute_yield(50, 10, 1, 0, 0)
        assert snap.expected_ml == Decimal("495")
        assert snap.expected_units == 9

    def test_no_loss(self):
        snap = engine.compute_yield(50, 100)
        assert snap.expected_ml == Decimal("5000")
        assert snap.expected_units == 100

    def test_actual_fields_unset_without_measurement(self):
        snap = engine.compute_yield(50, 100, 2, 1, 1)
        assert snap.actual_ml is None
        assert snap.actual_units is None
        assert snap.yield_percentage is None
        assert snap.produced_ml == snap.expected_ml
        assert snap.produced_units == 96

    def test_yield_percentage_from_actual(self):
        snap = engine.compute_yield(50, 100, actual_ml=4500, actual_units=90)
        assert snap.yield_percentage == Decimal("90")
        assert snap.produced_ml == Decimal("4500")
        assert snap.produced_units == 90

    @pytest.mark.parametrize("loss", [-1, "100.01", 150])
    def test_loss_out_of_range(self, loss):
        with pytest.raises(ValidationError):
            engine.compute_yield(50, 100, mixing_loss_pct=loss)

    def test_non_positive_bottle_size(self):
        with pytest.raises(ValidationError):
            engine.compute_yield(0, 100)

    def test_non_positive_units(self):
        with pytest.raises(ValidationError):
            engine.compute_yield(50, 0)

    @pytest.mark.parametrize(
        "args, kwargs",
        [
            (("abc", 100), {}),
            ((50, "ten"), {}),
            ((50, "2.5"), {}),
            ((50, 100), {"filtration_loss_pct": "x"}),
            ((50, 100), {"actual_ml": "Infinity"}),
            ((50, 100), {"actual_ml": 4500, "actual_units": "many"}),
        ],
    )
    def test_non_numeric_input(self, args, kwargs):
        with pytest.raises(ValidationError):
            engine.compute_yield(*args, **kwargs)

    def test_integral_unit_strings_accepted(self):
        assert engine.compute_yield(50, "100").theoretical_ml == Decimal("5000")


# =============================================================================
# Formula validation
# =============================================================================


class TestValidateFormula:
    def lines(self, *percentages):
        return [SimpleNamespace(percentage=Decimal(str(p))) for p in percentages]

    def test_exact_hundred(self):
        assert engine.validate_formula(self.lines(15, 80, 5)) == Decimal("100")

    def test_within_tolerance(self):
        engine.validate_formula(self.lines("33.333", "33.333", "33.333"))
        engine.validate_formula(self.lines("50.005", "50"))

    def test_outside_tolerance(self):
        with pytest.raises(FormulaPercentageError) as exc_info:
            engine.validate_formula(self.lines("78.5", "20"))
        assert exc_info.value.total == Decimal("98.5")

    def test_empty_formula(self):
        with pytest.raises(ValidationError):
            engine.validate_formula([])

    def test_percentage_above_hundred(self):
        with pytest.raises(ValidationError):
            engine.validate_formula(self.lines(120, -20))


# =============================================================================
# Cost rollup
# =============================================================================


class TestComputeYieldAndCost:
    def test_full_rollup_without_loss(self, catalog):
        yield_snap, cost = engine.compute_yield_and_cost(make_order(), catalog, markup_factor=3)

        assert yield_snap.expected_ml == Decimal("5000")
        # ethanol 4000 ml * 0.02 + oud 1000 ml * 0.9 g/ml * 2.5
        assert cost.materials_cost == Decimal("2330")
        # (1.2 + 0.3) per bottle * 100 bottles
        assert cost.packaging_cost == Decimal("150")
        assert cost.total_cost == Decimal("2650")
        assert cost.cost_per_ml == Decimal("0.53")
        assert cost.cost_per_bottle == Decimal("26.5")
        assert cost.suggested_retail == Decimal("79.5")

    def test_materials_costed_on_expected_volume(self, catalog):
        order = make_order(
            mixing_loss_pct=Decimal("2"),
            filtration_loss_pct=Decimal("1"),
            filling_loss_pct=Decimal("1"),
        )
        _, cost = engine.compute_yield_and_cost(order, catalog, markup_factor=3)
        # 3841.992 ml ethanol * 0.02 + 864.4482 g oud * 2.5
        assert cost.materials_cost == Decimal("2237.9603")
        # 96 expected bottles
        assert cost.packaging_cost == Decimal("144")

    def test_line_density_override_used_for_cost(self, catalog):
        order = make_order(
            formula_lines=[
                SimpleNamespace(material_id=OUD, percentage=Decimal("100"), density=Decimal("0.8")),
            ],
            packaging_items=[],
            labor_cost=0,
            overhead_cost=0,
            other_cost=0,
        )
        _, cost = engine.compute_yield_and_cost(order, catalog, markup_factor=1)
        # 5000 ml * 0.8 g/ml * 2.5
        assert cost.materials_cost == Decimal("10000")

    def test_finalize_uses_actual_output(self, catalog):
        order = make_order(
            actual_ml=Decimal("4000"),
            actual_units=80,
            labor_cost=0,
            overhead_cost=0,
            other_cost=0,
        )
        yield_snap, cost = engine.compute_yield_and_cost(
            order, catalog, markup_factor=2, finalize=True
        )
        assert yield_snap.yield_percentage == Decimal("80")
        # ethanol 3200 * 0.02 + oud 800 * 0.9 * 2.5
        assert cost.materials_cost == Decimal("1864")
        assert cost.packaging_cost == Decimal("120")
        assert cost.cost_per_ml == Decimal("0.496")
        assert cost.cost_per_bottle == Decimal("24.8")
        assert cost.suggested_retail == Decimal("49.6")

    def test_without_finalize_actual_is_ignored_for_cost(self, catalog):
        order = make_order(actual_ml=Decimal("4000"), actual_units=80)
        _, cost = engine.compute_yield_and_cost(order, catalog, markup_factor=3)
        assert cost.materials_cost == Decimal("2330")

    def test_zero_expected_volume(self, catalog):
        order = make_order(mixing_loss_pct=Decimal("100"))
        with pytest.raises(DivisionByZeroError) as exc_info:
            engine.compute_yield_and_cost(order, catalog, markup_factor=3)
        assert isinstance(exc_info.value, ValidationError)

    def test_zero_actual_volume_on_finalize(self, catalog):
        order = make_order(actual_ml=Decimal("0"), actual_units=0)
        with pytest.raises(DivisionByZeroError):
            engine.compute_yield_and_cost(order, catalog, markup_factor=3, finalize=True)

    def test_unsupported_material_unit(self, catalog):
        order = make_order(
            formula_lines=[
                SimpleNamespace(material_id=BOTTLE, percentage=Decimal("100"), density=None)
            ]
        )
        with pytest.raises(UnsupportedUnitError):
            engine.compute_yield_and_cost(order, catalog, markup_factor=3)

    def test_unknown_material_propagates(self, catalog):
        order = make_order(
            formula_lines=[SimpleNamespace(material_id=404, percentage=Decimal("100"), density=None)]
        )
        with pytest.raises(ProductNotFoundInCatalog):
            engine.compute_yield_and_cost(order, catalog, markup_factor=3)

    def test_markup_from_configuration(self, catalog, monkeypatch):
        monkeypatch.setenv("PERFUMERY_MARKUP_FACTOR", "2.5")
        _, cost = engine.compute_yield_and_cost(make_order(), catalog)
        assert cost.suggested_retail == Decimal("66.25")

    def test_default_markup(self, catalog, monkeypatch):
        monkeypatch.delenv("PERFUMERY_MARKUP_FACTOR", raising=False)
        _, cost = engine.compute_yield_and_cost(make_order(), catalog)
        assert cost.suggested_retail == Decimal("79.5")
