"""
Trade Document Service - applies submitted sales and purchase receipts.

This module provides:
- submit_sale(): explode every sold item through the BOM and deduct the
  stocked components from the selling branch
- submit_purchase(): receive every line into the branch, optionally
  recording the latest purchase cost in the catalog

Each document is one transaction: either every line is applied or none
is. Trade documents write stock movements (source "sale" / "purchase")
but no adjustment log entries.
"""

from typing import Optional, Sequence, Tuple

from perfumery.models import MovementSource
from perfumery.utils.config import get_config
from . import bom_service, inventory_ledger_service, product_catalog_service
from .database import run_in_transaction
from .dto_utils import Number, to_decimal
from .exceptions import ValidationError
from .ledger_locks import ledger_locks
from .logging_utils import get_service_logger, log_operation
from .product_catalog_service import ProductCatalog

logger = get_service_logger(__name__)


def submit_sale(
    branch_id: int,
    sold_items: Sequence[Tuple[int, Number]],
    allow_negative: Optional[bool] = None,
    reference: Optional[str] = None,
    user_id: Optional[int] = None,
    session=None,
) -> dict:
    """
    Apply a sales document to the ledger.

    Args:
        branch_id: Selling branch
        sold_items: [(product_id, quantity)] as billed; kits are exploded
        allow_negative: Override for negative stock; None uses
            Config.allow_negative_on_sale
        reference: Sale document number, stored on the movements
        user_id: Cashier or system user
        session: Optional database session

    Returns:
        Dict with branch_id, reference, allow_negative and "deductions"
        (one ledger result per stocked product)

    Raises:
        ValidationError: If the document has no lines or a quantity is invalid
        InsufficientStockError: If stock would go negative without override;
            nothing is applied
        CircularComponentError / ProductNotFoundInCatalog: From BOM explosion
    """
    if not sold_items:
        raise ValidationError(["Sale must contain at least one item"])
    if allow_negative is None:
        allow_negative = get_config().allow_negative_on_sale

    deductions = bom_service.explode_items(sold_items, ProductCatalog(session))
    results = inventory_ledger_service.apply_deductions(
        branch_id,
        deductions,
        allow_negative=allow_negative,
        source=MovementSource.SALE,
        reference=reference,
        user_id=user_id,
        session=session,
        operation="submit_sale",
    )
    return {
        "branch_id": branch_id,
        "reference": reference,
        "allow_negative": allow_negative,
        "deductions": results,
    }


def submit_purchase(
    branch_id: int,
    received_items: Sequence,
    reference: Optional[str] = None,
    user_id: Optional[int] = None,
    session=None,
) -> dict:
    """
    Apply a purchase receipt to the ledger.

    Args:
        branch_id: Receiving branch
        received_items: Lines as (product_id, quantity) tuples or dicts with
            product_id, quantity and optional unit_cost, lot_number,
            expiry_date
        reference: Purchase document number
        user_id: Receiving user
        session: Optional database session

    Returns:
        Dict with branch_id, reference and "receipts" (one ledger result
        per line)

    Raises:
        ValidationError: If the document has no lines or a line is invalid
        ProductNotFoundInCatalog: If a product is unknown
    """
    if not received_items:
        raise ValidationError(["Purchase must contain at least one item"])
    lines = [_normalize_purchase_line(item) for item in received_items]
    keys = [(branch_id, line["product_id"]) for line in lines]

    def work(session):
        receipts = []
        for line in lines:
            receipts.append(
                inventory_ledger_service.receive(
                    branch_id,
                    line["product_id"],
                    line["quantity"],
                    lot_number=line.get("lot_number"),
                    expiry_date=line.get("expiry_date"),
                    source=MovementSource.PURCHASE,
                    reference=reference,
                    user_id=user_id,
                    session=session,
                )
            )
            if line.get("unit_cost") is not None:
                product_catalog_service.update_unit_cost(
                    line["product_id"], line["unit_cost"], session=session
                )
        return receipts

    with ledger_locks.hold(*keys):
        receipts = run_in_transaction("submit_purchase", work, session)

    log_operation(
        logger,
        operation="submit_purchase",
        outcome="success",
        branch_id=branch_id,
        reference=reference,
        line_count=len(receipts),
    )
    return {"branch_id": branch_id, "reference": reference, "receipts": receipts}


def _normalize_purchase_line(item) -> dict:
    if isinstance(item, dict):
        if "product_id" not in item or "quantity" not in item:
            raise ValidationError(["Purchase line requires product_id and quantity"])
        line = dict(item)
        if line.get("unit_cost") is not None:
            cost = to_decimal(line["unit_cost"], "unit_cost")
            if cost < 0:
                raise ValidationError(["Unit cost cannot be negative"])
            line["unit_cost"] = cost
        return line
    try:
        product_id, quantity = item
    except (TypeError, ValueError):
        raise ValidationError([f"Invalid purchase line: {item!r}"])
    return {"product_id": product_id, "quantity": quantity}

