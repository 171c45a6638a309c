"""
Manufacturing order models.

This module contains:
- ManufacturingOrder: Aggregate root for one perfume batch, holding the
  requested bottle size and count, process loss, yield and cost snapshots
  and the lifecycle status
- FormulaLine: One ingredient's percentage share of the batch
- OrderPackagingItem: Packaging consumed once per produced bottle
- QCCheck: Quality control result recorded against the order

Yield and cost snapshot columns are written only by
manufacturing_order_service (via formula_cost_service); they are never
edited by hand.
"""

from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import OrderStatus
from perfumery.utils.datetime_utils import utc_now


class ManufacturingOrder(BaseModel):
    """
    ManufacturingOrder model.

    Attributes:
        order_number: Human-readable id, MO-YYYYMMDD-SEQ
        batch_code: Code printed on the produced bottles
        product_name: Name of the perfume being produced
        manufacturing_type / concentration: Order descriptors
        branch_id: Branch (lab/factory) whose stock is consumed
        bottle_size_ml / units_requested: What the planner asked for
        maceration_days: Planned maceration period
        mixing_loss_pct / filtration_loss_pct / filling_loss_pct: Process loss
        theoretical_ml ... yield_percentage: Yield snapshot
        materials_cost ... suggested_retail: Cost snapshot
        labor_cost / overhead_cost / other_cost: Cost inputs entered by planners
        status: OrderStatus value
        completed_at: Set exactly once, in the transaction that consumes stock
    """

    __tablename__ = "manufacturing_orders"

    order_number = Column(String(32), nullable=False, unique=True, index=True)
    batch_code = Column(String(32), nullable=False)
    product_name = Column(String(200), nullable=False)
    manufacturing_type = Column(String(20), nullable=False, default="internal")
    concentration = Column(String(20), nullable=True)
    responsible_employee_id = Column(Integer, nullable=True)
    branch_id = Column(Integer, nullable=False)

    bottle_size_ml = Column(Numeric(10, 4), nullable=False)
    units_requested = Column(Integer, nullable=False)
    maceration_days = Column(Integer, nullable=False, default=0)

    # Process loss (percent)
    mixing_loss_pct = Column(Numeric(7, 4), nullable=False, default=Decimal("0"))
    filtration_loss_pct = Column(Numeric(7, 4), nullable=False, default=Decimal("0"))
    filling_loss_pct = Column(Numeric(7, 4), nullable=False, default=Decimal("0"))

    # Yield snapshot
    theoretical_ml = Column(Numeric(14, 4), nullable=False, default=Decimal("0"))
    expected_ml = Column(Numeric(14, 4), nullable=False, default=Decimal("0"))
    actual_ml = Column(Numeric(14, 4), nullable=True)
    expected_units = Column(Integer, nullable=False, default=0)
    actual_units = Column(Integer, nullable=True)
    yield_percentage = Column(Numeric(8, 4), nullable=True)

    # Cost inputs
    labor_cost = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    overhead_cost = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    other_cost = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))

    # Cost snapshot
    materials_cost = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    packaging_cost = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    total_cost = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    cost_per_ml = Column(Numeric(12, 4), nullable=True)
    cost_per_bottle = Column(Numeric(12, 4), nullable=True)
    suggested_retail = Column(Numeric(12, 4), nullable=True)

    status = Column(String(20), nullable=False, default=OrderStatus.DRAFT.value)
    manufacturing_date = Column(DateTime, nullable=True)
    expiry_date = Column(Date, nullable=True)
    due_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    formula_lines = relationship(
        "FormulaLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="FormulaLine.sort_order",
    )
    packaging_items = relationship(
        "OrderPackagingItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderPackagingItem.id",
    )
    qc_checks = relationship(
        "QCCheck",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="QCCheck.id",
    )

    __table_args__ = (
        Index("idx_manufacturing_order_status", "status"),
        Index("idx_manufacturing_order_branch", "branch_id"),
        CheckConstraint("bottle_size_ml > 0", name="ck_order_bottle_size_positive"),
        CheckConstraint("units_requested > 0", name="ck_order_units_positive"),
        CheckConstraint("maceration_days >= 0", name="ck_order_maceration_non_negative"),
        CheckConstraint(
            "mixing_loss_pct >= 0 AND mixing_loss_pct <= 100", name="ck_order_mixing_loss_range"
        ),
        CheckConstraint(
            "filtration_loss_pct >= 0 AND filtration_loss_pct <= 100",
            name="ck_order_filtration_loss_range",
        ),
        CheckConstraint(
            "filling_loss_pct >= 0 AND filling_loss_pct <= 100",
            name="ck_order_filling_loss_range",
        ),
    )

    @property
    def order_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    @property
    def latest_qc_check(self):
        """Most recently recorded QC check, or None."""
        return self.qc_checks[-1] if self.qc_checks else None

    def __repr__(self) -> str:
        return (
            f"ManufacturingOrder(id={self.id}, order_number='{self.order_number}', "
            f"status='{self.status}')"
        )

    def to_dict(self, include_relationships: bool = False) -> dict:
        """
        Convert order to dictionary.

        Formula lines and packaging items are always included since the
        order is meaningless without them.
        """
        result = super().to_dict(False)
        result["formula_lines"] = [line.to_dict() for line in self.formula_lines]
        result["packaging_items"] = [item.to_dict() for item in self.packaging_items]
        if include_relationships:
            result["qc_checks"] = [check.to_dict() for check in self.qc_checks]
        return result


class FormulaLine(BaseModel):
    """
    One ingredient of an order's formula.

    Attributes:
        order_id: FK to ManufacturingOrder
        material_id: FK to the Product consumed
        kind: FormulaKind value (classification only)
        percentage: Share of the batch volume, 0-100
        density: Optional g/ml override for this line
        sort_order: Display order
    """

    __tablename__ = "formula_lines"

    order_id = Column(
        Integer, ForeignKey("manufacturing_orders.id", ondelete="CASCADE"), nullable=False
    )
    material_id = Column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    kind = Column(String(20), nullable=False)
    percentage = Column(Numeric(7, 4), nullable=False)
    density = Column(Numeric(10, 4), nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)

    order = relationship("ManufacturingOrder", back_populates="formula_lines")
    material = relationship("Product")

    __table_args__ = (
        Index("idx_formula_line_order", "order_id"),
        CheckConstraint(
            "percentage >= 0 AND percentage <= 100", name="ck_formula_line_percentage_range"
        ),
        CheckConstraint("density IS NULL OR density > 0", name="ck_formula_line_density_positive"),
    )


class OrderPackagingItem(BaseModel):
    """Packaging product consumed `quantity_per_unit` times per produced bottle."""

    __tablename__ = "order_packaging_items"

    order_id = Column(
        Integer, ForeignKey("manufacturing_orders.id", ondelete="CASCADE"), nullable=False
    )
    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    quantity_per_unit = Column(Numeric(10, 4), nullable=False)

    order = relationship("ManufacturingOrder", back_populates="packaging_items")
    product = relationship("Product")

    __table_args__ = (
        Index("idx_packaging_item_order", "order_id"),
        CheckConstraint("quantity_per_unit > 0", name="ck_packaging_item_quantity_positive"),
    )


class QCCheck(BaseModel):
    """Quality control check recorded while an order is in QC."""

    __tablename__ = "qc_checks"

    order_id = Column(
        Integer, ForeignKey("manufacturing_orders.id", ondelete="CASCADE"), nullable=False
    )
    appearance = Column(String(200), nullable=True)
    clarity = Column(String(20), nullable=False)
    density = Column(Numeric(10, 4), nullable=True)
    refractive_index = Column(Numeric(10, 6), nullable=True)
    odor_match = Column(String(20), nullable=False)
    stability_notes = Column(Text, nullable=True)
    result = Column(String(20), nullable=False)
    checked_by_user_id = Column(Integer, nullable=True)
    checked_at = Column(DateTime, nullable=False, default=utc_now)

    order = relationship("ManufacturingOrder", back_populates="qc_checks")

    __table_args__ = (Index("idx_qc_check_order", "order_id"),)
