"""
Product Catalog Service - read-only product and cost lookups for the core.

The ledger, BOM resolver and cost engine only see the catalog through two
calls:

- get_product(product_id) -> ProductInfo (base unit, default density,
  bill-of-materials components)
- get_unit_cost(product_id) -> Decimal (latest purchase/standard cost)

ProductCatalog implements both against the database. Anything with the
same two methods can stand in for it (tests, a remote catalog).

Catalog maintenance functions (create_product, set_components,
update_unit_cost) live here too; they are used by purchase receipt and by
setup code, never by the ledger itself.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from perfumery.models import Product, ProductComponent
from perfumery.utils.constants import MAX_NAME_LENGTH, MAX_NOTES_LENGTH, STOCK_BASE_UNITS
from .database import session_scope
from .dto_utils import Number, optional_decimal, quantize_cost, to_decimal
from .exceptions import ProductNotFoundInCatalog, ValidationError
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)


@dataclass(frozen=True)
class ProductInfo:
    """Catalog view of a product as seen by the ledger core.

    Attributes:
        id: Product ID
        sku: Stock keeping unit
        name: Display name
        base_unit: "pcs", "g" or "ml"
        default_density: g/ml, or None when not declared
        unit_cost: Latest unit cost
        components: ((component_product_id, quantity_per_unit), ...); empty
            for simple products
    """

    id: int
    sku: str
    name: str
    base_unit: str
    default_density: Optional[Decimal] = None
    unit_cost: Decimal = Decimal("0")
    components: Tuple[Tuple[int, Decimal], ...] = field(default_factory=tuple)

    @property
    def is_composite(self) -> bool:
        return len(self.components) > 0


def _to_info(product: Product) -> ProductInfo:
    return ProductInfo(
        id=product.id,
        sku=product.sku,
        name=product.name,
        base_unit=product.base_unit,
        default_density=product.density,
        unit_cost=product.unit_cost if product.unit_cost is not None else Decimal("0"),
        components=tuple(
            (component.component_product_id, component.quantity)
            for component in product.components
        ),
    )


class ProductCatalog:
    """
    Database-backed product and cost catalog.

    Bound to a session when constructed inside a transaction, so lookups see
    the caller's uncommitted state; otherwise each lookup opens its own
    short read-only session.

    Lookups are cached per catalog instance; create a new instance per
    operation.
    """

    def __init__(self, session=None):
        self._session = session
        self._cache: Dict[int, ProductInfo] = {}

    def get_product(self, product_id: int) -> ProductInfo:
        """
        Look up a product.

        Raises:
            ProductNotFoundInCatalog: If no product has this ID
        """
        cached = self._cache.get(product_id)
        if cached is not None:
            return cached

        if self._session is not None:
            info = self._load(product_id, self._session)
        else:
            with session_scope() as session:
                info = self._load(product_id, session)

        self._cache[product_id] = info
        return info

    def get_unit_cost(self, product_id: int) -> Decimal:
        """
        Latest unit cost of a product in its base unit.

        Raises:
            ProductNotFoundInCatalog: If no product has this ID
        """
        return self.get_product(product_id).unit_cost

    @staticmethod
    def _load(product_id: int, session) -> ProductInfo:
        product = session.query(Product).filter_by(id=product_id).first()
        if product is None:
            raise ProductNotFoundInCatalog(product_id)
        return _to_info(product)


# =============================================================================
# Query Functions
# =============================================================================


def get_product(product_id: int, session=None) -> ProductInfo:
    """
    Look up one product.

    Raises:
        ProductNotFoundInCatalog: If no product has this ID
    """
    return ProductCatalog(session).get_product(product_id)


def list_products(category: Optional[str] = None, session=None) -> List[dict]:
    """
    List catalog products ordered by SKU.

    Args:
        category: Optional category filter
        session: Optional database session

    Returns:
        List of product dicts
    """
    if session is not None:
        return _list_products_impl(category, session)
    with session_scope() as session:
        return _list_products_impl(category, session)


def _list_products_impl(category: Optional[str], session) -> List[dict]:
    query = session.query(Product)
    if category is not None:
        query = query.filter(Product.category == category)
    return [product.to_dict() for product in query.order_by(Product.sku).all()]


# =============================================================================
# Maintenance Functions
# =============================================================================


def create_product(
    sku: str,
    name: str,
    base_unit: str,
    *,
    density: Optional[Number] = None,
    unit_cost: Number = 0,
    category: Optional[str] = None,
    components: Optional[Sequence[Tuple[int, Number]]] = None,
    notes: Optional[str] = None,
    session=None,
) -> dict:
    """
    Create a catalog product.

    Args:
        sku: Unique stock keeping unit
        name: Display name
        base_unit: "pcs", "g" or "ml"
        density: Optional default density (g/ml)
        unit_cost: Initial unit cost
        category: Optional grouping
        components: Optional [(component_product_id, quantity_per_unit)]
            making this a composite (kit) product
        notes: Optional notes
        session: Optional database session

    Returns:
        Dict of the created product

    Raises:
        ValidationError: If any field is invalid
        ProductNotFoundInCatalog: If a component does not exist
    """
    if session is not None:
        return _create_product_impl(
            sku, name, base_unit, density, unit_cost, category, components, notes, session
        )
    with session_scope() as session:
        return _create_product_impl(
            sku, name, base_unit, density, unit_cost, category, components, notes, session
        )


def _create_product_impl(sku, name, base_unit, density, unit_cost, category, components, notes, session):
    errors = []
    if not sku or not sku.strip():
        errors.append("SKU is required")
    if not name or not name.strip():
        errors.append("Name is required")
    elif len(name.strip()) > MAX_NAME_LENGTH:
        errors.append(f"Name cannot exceed {MAX_NAME_LENGTH} characters")
    if notes is not None and len(notes) > MAX_NOTES_LENGTH:
        errors.append(f"Notes cannot exceed {MAX_NOTES_LENGTH} characters")
    if base_unit not in STOCK_BASE_UNITS:
        errors.append(f"Base unit must be one of {STOCK_BASE_UNITS}")
    density_value = optional_decimal(density, "density")
    if density_value is not None and density_value <= 0:
        errors.append("Density must be positive")
    cost_value = to_decimal(unit_cost, "unit_cost")
    if cost_value < 0:
        errors.append("Unit cost cannot be negative")
    if sku and session.query(Product).filter_by(sku=sku.strip()).first() is not None:
        errors.append(f"SKU '{sku}' already exists")
    if errors:
        raise ValidationError(errors)

    product = Product(
        sku=sku.strip(),
        name=name.strip(),
        base_unit=base_unit,
        density=density_value,
        unit_cost=quantize_cost(cost_value),
        category=category,
        notes=notes,
    )
    session.add(product)
    session.flush()

    if components:
        _replace_components(product, components, session)

    log_operation(logger, operation="create_product", outcome="success", product_id=product.id, sku=product.sku)
    return product.to_dict()


def set_components(
    product_id: int,
    components: Sequence[Tuple[int, Number]],
    session=None,
) -> dict:
    """
    Replace the bill of materials of a product.

    Passing an empty list turns a composite product back into a simple one.

    Raises:
        ProductNotFoundInCatalog: If the product or a component does not exist
        ValidationError: If a quantity is not positive or a product lists itself
    """
    if session is not None:
        return _set_components_impl(product_id, components, session)
    with session_scope() as session:
        return _set_components_impl(product_id, components, session)


def _set_components_impl(product_id, components, session) -> dict:
    product = session.query(Product).filter_by(id=product_id).first()
    if product is None:
        raise ProductNotFoundInCatalog(product_id)
    _replace_components(product, components, session)
    log_operation(
        logger,
        operation="set_components",
        outcome="success",
        product_id=product_id,
        component_count=len(components),
    )
    return product.to_dict(include_relationships=True)


def _replace_components(product: Product, components, session) -> None:
    errors = []
    parsed = []
    for component_id, quantity in components:
        qty = to_decimal(quantity, "component quantity")
        if qty <= 0:
            errors.append(f"Component {component_id} quantity must be positive")
        if component_id == product.id:
            errors.append(f"Product {product.id} cannot be its own component")
        parsed.append((component_id, qty))
    if errors:
        raise ValidationError(errors)

    for component_id, _qty in parsed:
        if session.query(Product.id).filter_by(id=component_id).first() is None:
            raise ProductNotFoundInCatalog(component_id)

    product.components.clear()
    session.flush()
    for component_id, qty in parsed:
        product.components.append(
            ProductComponent(component_product_id=component_id, quantity=qty)
        )
    session.flush()


def update_unit_cost(product_id: int, unit_cost: Number, session=None) -> Decimal:
    """
    Record the latest unit cost of a product (e.g. from a purchase receipt).

    Returns:
        The stored (quantized) cost

    Raises:
        ProductNotFoundInCatalog: If the product does not exist
        ValidationError: If the cost is negative or not a finite number
    """
    if session is not None:
        return _update_unit_cost_impl(product_id, unit_cost, session)
    with session_scope() as session:
        return _update_unit_cost_impl(product_id, unit_cost, session)


def _update_unit_cost_impl(product_id, unit_cost, session) -> Decimal:
    cost = to_decimal(unit_cost, "unit_cost")
    if cost < 0:
        raise ValidationError(["Unit cost cannot be negative"])
    product = session.query(Product).filter_by(id=product_id).first()
    if product is None:
        raise ProductNotFoundInCatalog(product_id)
    product.unit_cost = quantize_cost(cost)
    session.flush()
    return product.unit_cost
