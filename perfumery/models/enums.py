"""
Enumerations for the inventory and manufacturing ledger.

This module contains enums used across models and services:
- OrderStatus: Manufacturing order lifecycle
- FormulaKind: Classification of a formula ingredient (display only)
- AdjustmentReason: Why a non-trade stock mutation happened
- MovementSource: Which mutation path produced a stock movement
- Concentration / ManufacturingType: Order descriptors
- QCResult / Clarity / OdorMatch: Quality control outcomes
"""

from enum import Enum


class OrderStatus(str, Enum):
    """
    Manufacturing order lifecycle.

    Values advance DRAFT -> IN_PROGRESS -> MACERATING -> QC -> PACKAGING ->
    DONE -> CLOSED. Entering DONE consumes inventory exactly once; CLOSED
    is terminal.
    """

    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    MACERATING = "macerating"
    QC = "qc"
    PACKAGING = "packaging"
    DONE = "done"
    CLOSED = "closed"

    @property
    def is_execution_stage(self) -> bool:
        """True once the order has left DRAFT."""
        return self is not OrderStatus.DRAFT

    @property
    def is_completed(self) -> bool:
        """True for DONE and CLOSED."""
        return self in (OrderStatus.DONE, OrderStatus.CLOSED)


class FormulaKind(str, Enum):
    """
    Ingredient classification for a formula line.

    Purely descriptive; never changes how quantities are computed.
    """

    AROMA_OIL = "aroma_oil"
    ETHANOL = "ethanol"
    DILUENT = "diluent"
    FIXATIVE = "fixative"
    COLORANT = "colorant"
    ADDITIVE = "additive"


class AdjustmentReason(str, Enum):
    """
    Reasons recorded on inventory adjustment log entries.

    The first five come from the manual stock-adjustment screen; the rest
    tag audit entries written by transfers and manufacturing completion.
    """

    DAMAGED_GOODS = "damaged_goods"
    STOCK_COUNT_CORRECTION = "stock_count_correction"
    INITIAL_STOCK = "initial_stock"
    RETURN_TO_SUPPLIER = "return_to_supplier"
    OTHER = "other"
    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"
    MANUFACTURING_CONSUMPTION = "manufacturing_consumption"


class MovementSource(str, Enum):
    """Mutation path that produced a stock movement."""

    PURCHASE = "purchase"
    RECEIPT = "receipt"
    SALE = "sale"
    ISSUE = "issue"
    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"
    MANUFACTURING = "manufacturing"
    ADJUSTMENT = "adjustment"


class Concentration(str, Enum):
    """Fragrance concentration of a manufacturing order."""

    EDT_15 = "edt_15"
    EDP_20 = "edp_20"
    EXTRAIT_30 = "extrait_30"
    OIL_100 = "oil_100"


class ManufacturingType(str, Enum):
    """Whether an order is produced for own stock or under contract."""

    INTERNAL = "internal"
    CONTRACT = "contract"


class QCResult(str, Enum):
    """Outcome of a quality control check."""

    APPROVED = "approved"
    REJECTED = "rejected"
    REWORK = "rework"


class Clarity(str, Enum):
    CLEAR = "clear"
    SLIGHT_HAZE = "slight_haze"
    HAZY = "hazy"


class OdorMatch(str, Enum):
    PASS = "pass"
    BORDERLINE = "borderline"
    FAIL = "fail"
