"""
Product catalog models.

This module contains:
- Product: A stocked (or billed) item with its base unit, optional density
  and latest unit cost
- ProductComponent: Bill-of-materials line declaring that one unit of a
  composite product consists of `quantity` units of another product

Composite (kit) products are a billing construct: selling one deducts its
components, never the kit itself.
"""

from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, validates

from .base import BaseModel
from perfumery.utils.constants import STOCK_BASE_UNITS


class Product(BaseModel):
    """
    Product model.

    Attributes:
        sku: Unique stock keeping unit
        name: Display name
        category: Free-form grouping (raw material, packaging, finished...)
        base_unit: Unit stock is counted in ("pcs", "g" or "ml")
        density: Default density in g/ml, used when a formula line has none
        unit_cost: Latest purchase/standard cost per base unit
        notes: Optional internal notes
    """

    __tablename__ = "products"

    sku = Column(String(64), nullable=False, unique=True, index=True)
    name = Column(String(200), nullable=False)
    category = Column(String(100), nullable=True)
    base_unit = Column(String(10), nullable=False, default="pcs")
    density = Column(Numeric(10, 4), nullable=True)
    unit_cost = Column(Numeric(12, 4), nullable=False, default=Decimal("0.0000"))
    notes = Column(Text, nullable=True)

    components = relationship(
        "ProductComponent",
        foreign_keys="ProductComponent.product_id",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductComponent.id",
    )

    __table_args__ = (
        CheckConstraint("unit_cost >= 0", name="ck_product_unit_cost_non_negative"),
        CheckConstraint("density IS NULL OR density > 0", name="ck_product_density_positive"),
    )

    @validates("base_unit")
    def _validate_base_unit(self, _key, value):
        if value not in STOCK_BASE_UNITS:
            raise ValueError(f"Invalid base_unit '{value}'. Must be one of: {STOCK_BASE_UNITS}")
        return value

    @property
    def is_composite(self) -> bool:
        """True when the product declares bill-of-materials components."""
        return len(self.components) > 0

    def __repr__(self) -> str:
        return f"Product(id={self.id}, sku='{self.sku}', base_unit='{self.base_unit}')"


class ProductComponent(BaseModel):
    """
    One bill-of-materials line of a composite product.

    Attributes:
        product_id: The composite (kit) product
        component_product_id: The stocked component
        quantity: Component units per one unit of the composite
    """

    __tablename__ = "product_components"

    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    component_product_id = Column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    quantity = Column(Numeric(12, 4), nullable=False)
    note = Column(String(200), nullable=True)

    product = relationship(
        "Product", foreign_keys=[product_id], back_populates="components"
    )
    component = relationship("Product", foreign_keys=[component_product_id])

    __table_args__ = (
        UniqueConstraint(
            "product_id", "component_product_id", name="uq_product_component"
        ),
        Index("idx_product_component_component", "component_product_id"),
        CheckConstraint("quantity > 0", name="ck_product_component_quantity_positive"),
        CheckConstraint(
            "product_id != component_product_id", name="ck_product_component_not_self"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"ProductComponent(product_id={self.product_id}, "
            f"component_product_id={self.component_product_id}, quantity={self.quantity})"
        )
