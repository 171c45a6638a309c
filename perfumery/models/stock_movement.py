"""
StockMovement model: the signed-delta event log behind every StockRecord.

Each ledger mutation appends one movement per affected key. Folding the
movements of a key in id order reproduces its stored quantity.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text

from .base import BaseModel
from perfumery.utils.datetime_utils import utc_now


class StockMovement(BaseModel):
    """
    One signed quantity change applied to a ledger key.

    Attributes:
        branch_id / product_id: Ledger key
        quantity_change: Signed delta in the product's base unit
        balance_after: Stock quantity right after this movement
        source_type: MovementSource value
        source_reference: Document the movement belongs to (sale no., order no.)
        user_id: User who triggered the mutation, when known
        moved_at: Timestamp of the mutation
        notes: Optional context
    """

    __tablename__ = "stock_movements"

    branch_id = Column(Integer, nullable=False)
    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    quantity_change = Column(Numeric(14, 4), nullable=False)
    balance_after = Column(Numeric(14, 4), nullable=False)
    source_type = Column(String(30), nullable=False)
    source_reference = Column(String(100), nullable=True)
    user_id = Column(Integer, nullable=True)
    moved_at = Column(DateTime, nullable=False, default=utc_now)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_stock_movement_key", "branch_id", "product_id"),
        Index("idx_stock_movement_source", "source_type", "source_reference"),
        Index("idx_stock_movement_moved_at", "moved_at"),
    )

    def __repr__(self) -> str:
        return (
            f"StockMovement(id={self.id}, key=({self.branch_id}, {self.product_id}), "
            f"change={self.quantity_change}, source='{self.source_type}')"
        )
