"""
BOM Service - explodes sold products into the stocked items they consume.

A product without declared components is stocked as itself. A composite
(kit) product is a billing construct: selling it consumes its components,
never the kit's own stock record. Components that are themselves composite
are exploded in turn.
"""

from collections import OrderedDict
from decimal import Decimal
from typing import List, Tuple, Union

from .dto_utils import Number, to_decimal
from .exceptions import CircularComponentError, ValidationError
from .product_catalog_service import ProductCatalog, ProductInfo


def explode(
    product: Union[ProductInfo, int],
    quantity_sold: Number,
    catalog=None,
) -> List[Tuple[int, Decimal]]:
    """
    Expand a sold quantity into (product_id, quantity) pairs to deduct.

    Args:
        product: ProductInfo, or a product ID to look up in the catalog
        quantity_sold: Quantity of the product sold (must be > 0)
        catalog: Object with get_product(product_id); defaults to a
            database-backed ProductCatalog

    Returns:
        [(product.id, quantity_sold)] for a simple product, otherwise one
        entry per stocked component with declared_qty * quantity_sold.
        Components reached more than once are merged, in first-seen order.

    Raises:
        ValidationError: If quantity_sold or a declared quantity is not positive
        CircularComponentError: If a product contains itself
        ProductNotFoundInCatalog: If a product or component is unknown

    Example:
        Kit with components [(P1, 2), (P2, 1)] sold 3 times ->
        [(P1, Decimal('6')), (P2, Decimal('3'))]
    """
    quantity = to_decimal(quantity_sold, "quantity_sold")
    if quantity <= 0:
        raise ValidationError([f"Quantity sold must be positive, got {quantity_sold}"])

    if catalog is None:
        catalog = ProductCatalog()
    if not isinstance(product, ProductInfo):
        product = catalog.get_product(product)

    totals: "OrderedDict[int, Decimal]" = OrderedDict()
    _explode_into(product, quantity, catalog, [], totals)
    return list(totals.items())


def _explode_into(product: ProductInfo, quantity: Decimal, catalog, path: List[int], totals) -> None:
    if product.id in path:
        raise CircularComponentError(product.id, path)

    if not product.is_composite:
        totals[product.id] = totals.get(product.id, Decimal("0")) + quantity
        return

    path = path + [product.id]
    for component_id, declared in product.components:
        declared_qty = to_decimal(declared, "component quantity")
        if declared_qty <= 0:
            raise ValidationError(
                [f"Component {component_id} of product {product.id} has non-positive quantity"]
            )
        component = catalog.get_product(component_id)
        _explode_into(component, declared_qty * quantity, catalog, path, totals)


def explode_items(items, catalog=None) -> List[Tuple[int, Decimal]]:
    """
    Explode several (product_id, quantity) lines and merge the result.

    Args:
        items: [(product_id, quantity_sold)]
        catalog: Optional catalog shared across lines

    Returns:
        Merged [(product_id, quantity)] in first-seen order
    """
    if catalog is None:
        catalog = ProductCatalog()
    totals: "OrderedDict[int, Decimal]" = OrderedDict()
    for product_id, quantity in items:
        for component_id, component_qty in explode(product_id, quantity, catalog):
            totals[component_id] = totals.get(component_id, Decimal("0")) + component_qty
    return list(totals.items())


__all__ = ["explode", "explode_items"]
