"""
Database models package.

This package contains all SQLAlchemy ORM models for the ledger.
"""

from .base import Base, BaseModel
from .product import Product, ProductComponent
from .stock_record import StockRecord
from .stock_movement import StockMovement
from .inventory_adjustment_log import InventoryAdjustmentLog
from .manufacturing_order import (
    ManufacturingOrder,
    FormulaLine,
    OrderPackagingItem,
    QCCheck,
)
from .enums import (
    OrderStatus,
    FormulaKind,
    AdjustmentReason,
    MovementSource,
    Concentration,
    ManufacturingType,
    QCResult,
    Clarity,
    OdorMatch,
)

__all__ = [
    "Base",
    "BaseModel",
    # Catalog
    "Product",
    "ProductComponent",
    # Ledger
    "StockRecord",
    "StockMovement",
    "InventoryAdjustmentLog",
    # Manufacturing
    "ManufacturingOrder",
    "FormulaLine",
    "OrderPackagingItem",
    "QCCheck",
    # Enums
    "OrderStatus",
    "FormulaKind",
    "AdjustmentReason",
    "MovementSource",
    "Concentration",
    "ManufacturingType",
    "QCResult",
    "Clarity",
    "OdorMatch",
]
