"""Tests for product_catalog_service."""

from decimal import Decimal

import pytest

from perfumery.services import product_catalog_service as catalog
from perfumery.services.database import session_scope
from perfumery.services.exceptions import ProductNotFoundInCatalog, ValidationError


class TestCreateProduct:
    def test_create_simple_product(self, test_db):
        result = catalog.create_product(
            " ETH-96 ", "Ethanol 96%", "ml", unit_cost="0.021", category="solvent"
        )

        assert result["sku"] == "ETH-96"
        info = catalog.get_product(result["id"])
        assert info.base_unit == "ml"
        assert info.unit_cost == Decimal("0.021")
        assert info.default_density is None
        assert not info.is_composite

    def test_create_kit(self, products, kit):
        info = catalog.get_product(kit)
        assert info.is_composite
        assert info.components == ((products.bottle, Decimal("2")), (products.cap, Decimal("1")))

    @pytest.mark.parametrize(
        "sku, name, unit, kwargs",
        [
            ("", "No SKU", "pcs", {}),
            ("X-1", "", "pcs", {}),
            ("X-1", "Litres", "l", {}),
            ("X-1", "Negative", "g", {"density": 0}),
            ("X-1", "Negative", "g", {"unit_cost": -1}),
            ("X-1", "Priced", "g", {"unit_cost": "abc"}),
            ("X-1", "Heavy", "g", {"density": "heavy"}),
            ("X-1", "N" * 201, "pcs", {}),
            ("X-1", "Noted", "pcs", {"notes": "x" * 2001}),
        ],
    )
    def test_invalid(self, test_db, sku, name, unit, kwargs):
        with pytest.raises(ValidationError):
            catalog.create_product(sku, name, unit, **kwargs)

    def test_duplicate_sku(self, products):
        with pytest.raises(ValidationError):
            catalog.create_product("ETH-96", "Again", "ml")

    def test_unknown_component(self, products):
        with pytest.raises(ProductNotFoundInCatalog):
            catalog.create_product("KIT-X", "Kit", "pcs", components=[(9999, 1)])

    def test_list_products_ordered_by_sku(self, products):
        skus = [p["sku"] for p in catalog.list_products()]
        assert skus == sorted(skus)
        assert len(skus) == 5


class TestMaintenance:
    def test_set_components_replaces(self, products, kit):
        catalog.set_components(kit, [(products.bottle, 1)])
        assert catalog.get_product(kit).components == ((products.bottle, Decimal("1")),)

    def test_clear_components(self, products, kit):
        catalog.set_components(kit, [])
        assert not catalog.get_product(kit).is_composite

    def test_self_component_rejected(self, kit):
        with pytest.raises(ValidationError):
            catalog.set_components(kit, [(kit, 1)])

    def test_update_unit_cost(self, products):
        assert catalog.update_unit_cost(products.oud, "2.123456") == Decimal("2.1235")
        assert catalog.get_product(products.oud).unit_cost == Decimal("2.1235")

    @pytest.mark.parametrize("unit_cost", [-1, "abc", None, "Infinity"])
    def test_update_unit_cost_invalid(self, products, unit_cost):
        with pytest.raises(ValidationError):
            catalog.update_unit_cost(products.oud, unit_cost)
        assert catalog.get_product(products.oud).unit_cost == Decimal("2.5")


class TestProductCatalog:
    def test_missing_product(self, test_db):
        with pytest.raises(ProductNotFoundInCatalog):
            catalog.ProductCatalog().get_product(1)

    def test_lookups_cached_per_instance(self, products):
        lookup = catalog.ProductCatalog()
        first = lookup.get_product(products.musk)
        catalog.update_unit_cost(products.musk, 9)

        assert lookup.get_product(products.musk) is first
        assert catalog.ProductCatalog().get_unit_cost(products.musk) == Decimal("9")

    def test_bound_session_sees_uncommitted_changes(self, products):
        with session_scope() as session:
            catalog.update_unit_cost(products.musk, 4, session=session)
            assert catalog.ProductCatalog(session).get_unit_cost(products.musk) == Decimal("4")
