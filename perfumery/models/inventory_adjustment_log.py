"""
InventoryAdjustmentLog model for auditing non-trade stock mutations.

Manual corrections, both legs of a transfer and manufacturing consumption
each write one entry. Entries are append-only: the ORM refuses to update
or delete a persisted row (see the mapper listeners below).
"""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, event
from sqlalchemy.orm import relationship

from .base import BaseModel
from perfumery.utils.datetime_utils import utc_now


class InventoryAdjustmentLog(BaseModel):
    """
    Immutable audit record of one stock mutation.

    Attributes:
        branch_id / product_id: Ledger key that changed
        adjusted_by_user_id: User responsible (None for system actions)
        adjusted_at: When the mutation happened
        old_quantity: Quantity before the mutation
        new_quantity: Quantity after the mutation
        reason: AdjustmentReason value
        notes: Free-text context
        source_document_type: MovementSource value of the triggering path
        source_document_id: Reference of the triggering document, if any
    """

    __tablename__ = "inventory_adjustment_logs"

    branch_id = Column(Integer, nullable=False)
    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    adjusted_by_user_id = Column(Integer, nullable=True)
    adjusted_at = Column(DateTime, nullable=False, default=utc_now)
    old_quantity = Column(Numeric(14, 4), nullable=False)
    new_quantity = Column(Numeric(14, 4), nullable=False)
    reason = Column(String(40), nullable=False)
    notes = Column(Text, nullable=True)
    source_document_type = Column(String(30), nullable=False)
    source_document_id = Column(String(100), nullable=True)

    product = relationship("Product")

    __table_args__ = (
        Index("idx_adjustment_log_key", "branch_id", "product_id"),
        Index("idx_adjustment_log_adjusted_at", "adjusted_at"),
    )

    @property
    def quantity_change(self):
        return self.new_quantity - self.old_quantity

    def __repr__(self) -> str:
        return (
            f"InventoryAdjustmentLog(id={self.id}, key=({self.branch_id}, {self.product_id}), "
            f"{self.old_quantity} -> {self.new_quantity}, reason='{self.reason}')"
        )


@event.listens_for(InventoryAdjustmentLog, "before_update")
def _reject_update(mapper, connection, target):
    from perfumery.services.exceptions import AuditLogImmutableError

    raise AuditLogImmutableError(target.id, "update")


@event.listens_for(InventoryAdjustmentLog, "before_delete")
def _reject_delete(mapper, connection, target):
    from perfumery.services.exceptions import AuditLogImmutableError

    raise AuditLogImmutableError(target.id, "delete")
