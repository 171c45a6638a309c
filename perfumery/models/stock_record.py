"""
StockRecord model: the per-(branch, product) quantity held by the ledger.

A record is created lazily on the first receipt, transfer-in or adjustment
into a branch and is never deleted; its quantity may settle at zero.
Only inventory_ledger_service mutates it.
"""

from decimal import Decimal

from sqlalchemy import (
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class StockRecord(BaseModel):
    """
    Current stock of one product at one branch.

    Attributes:
        branch_id: Branch (store, warehouse or lab) holding the stock
        product_id: FK to Product
        quantity: Signed quantity in the product's base unit
        min_stock: Reorder threshold; 0 disables low-stock reporting
        lot_number: Optional lot of the most recent receipt
        expiry_date: Optional expiry of the most recent receipt
    """

    __tablename__ = "stock_records"

    branch_id = Column(Integer, nullable=False)
    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    quantity = Column(Numeric(14, 4), nullable=False, default=Decimal("0.0000"))
    min_stock = Column(Numeric(14, 4), nullable=False, default=Decimal("0.0000"))
    lot_number = Column(String(64), nullable=True)
    expiry_date = Column(Date, nullable=True)

    product = relationship("Product")

    __table_args__ = (
        UniqueConstraint("branch_id", "product_id", name="uq_stock_record_key"),
        Index("idx_stock_record_product", "product_id"),
    )

    @property
    def key(self) -> tuple:
        """Ledger key (branch_id, product_id)."""
        return (self.branch_id, self.product_id)

    @property
    def is_low_stock(self) -> bool:
        """True when a threshold is set and quantity has reached it."""
        return self.min_stock > 0 and self.quantity <= self.min_stock

    def __repr__(self) -> str:
        return (
            f"StockRecord(branch_id={self.branch_id}, product_id={self.product_id}, "
            f"quantity={self.quantity})"
        )
