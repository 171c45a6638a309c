"""
Inventory Ledger Service - the authoritative per-(branch, product) stock.

This module provides:
- Mutations: receive, deduct, transfer, set_absolute, apply_deductions
- Queries: read, read_all, get_stock_record, get_low_stock, get_movements
- Integrity: replay_quantity, verify_ledger
- Settings: set_min_stock

Every mutation:
- validates its inputs and stock availability before touching any row
- holds the per-key locks of every ledger key it touches (fixed global
  order) until its transaction commits
- appends one StockMovement per key it changes, so a record's quantity is
  always the fold of its movements
- runs as a single transaction: any error rolls back the whole call

Non-trade mutations (set_absolute, transfer, manufacturing consumption via
apply_deductions) also write InventoryAdjustmentLog entries.

Session Pattern:
All functions accept an optional `session` parameter. If provided, the
function joins the caller's transaction; otherwise it runs in its own
(see database.run_in_transaction).
"""

import logging
from collections import OrderedDict
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy import func

from perfumery.models import AdjustmentReason, MovementSource, StockMovement, StockRecord
from perfumery.utils.datetime_utils import utc_now
from . import adjustment_audit_service
from .database import run_in_transaction, session_scope
from .dto_utils import Number, parse_enum, quantize_quantity, to_decimal
from .exceptions import InsufficientStockError, ValidationError
from .ledger_locks import ledger_locks
from .logging_utils import get_service_logger, log_operation
from .product_catalog_service import ProductCatalog

logger = get_service_logger(__name__)

ZERO = Decimal("0.0000")

# Reasons a caller may give for a manual stock-count correction
MANUAL_ADJUSTMENT_REASONS = (
    AdjustmentReason.DAMAGED_GOODS,
    AdjustmentReason.STOCK_COUNT_CORRECTION,
    AdjustmentReason.INITIAL_STOCK,
    AdjustmentReason.RETURN_TO_SUPPLIER,
    AdjustmentReason.OTHER,
)


# =============================================================================
# Internal helpers
# =============================================================================


def _positive_quantity(quantity: Number, field_name: str = "quantity") -> Decimal:
    value = quantize_quantity(to_decimal(quantity, field_name))
    if value <= 0:
        raise ValidationError([f"{field_name} must be greater than zero, got {quantity}"])
    return value


def _get_record(session, branch_id: int, product_id: int) -> Optional[StockRecord]:
    return (
        session.query(StockRecord)
        .filter_by(branch_id=branch_id, product_id=product_id)
        .with_for_update()
        .first()
    )


def _get_or_create_record(
    session, branch_id: int, product_id: int, min_stock: Decimal = ZERO
) -> StockRecord:
    record = _get_record(session, branch_id, product_id)
    if record is None:
        record = StockRecord(
            branch_id=branch_id,
            product_id=product_id,
            quantity=ZERO,
            min_stock=min_stock,
        )
        session.add(record)
        session.flush()
    return record


def _apply_delta(
    session,
    record: StockRecord,
    delta: Decimal,
    source: MovementSource,
    reference: Optional[str],
    user_id: Optional[int],
    notes: Optional[str],
) -> StockMovement:
    """Apply a signed delta to a record and append the matching movement."""
    new_quantity = quantize_quantity(record.quantity + delta)
    record.quantity = new_quantity
    movement = StockMovement(
        branch_id=record.branch_id,
        product_id=record.product_id,
        quantity_change=delta,
        balance_after=new_quantity,
        source_type=parse_enum(MovementSource, source, "source type").value,
        source_reference=reference,
        user_id=user_id,
        moved_at=utc_now(),
        notes=notes,
    )
    session.add(movement)
    session.flush()
    return movement


def _result(record: StockRecord, previous: Decimal, movement: Optional[StockMovement]) -> dict:
    return {
        "branch_id": record.branch_id,
        "product_id": record.product_id,
        "previous_quantity": previous,
        "new_quantity": record.quantity,
        "quantity_change": record.quantity - previous,
        "movement_id": movement.id if movement is not None else None,
    }


def _merge_lines(lines: Sequence[Tuple[int, Number]]) -> "OrderedDict[int, Decimal]":
    """Sum quantities per product, keeping first-seen order."""
    merged: "OrderedDict[int, Decimal]" = OrderedDict()
    for product_id, quantity in lines:
        value = _positive_quantity(quantity, f"quantity for product {product_id}")
        merged[product_id] = merged.get(product_id, ZERO) + value
    return merged


# =============================================================================
# Mutations
# =============================================================================


def receive(
    branch_id: int,
    product_id: int,
    quantity: Number,
    *,
    lot_number: Optional[str] = None,
    expiry_date: Optional[date] = None,
    source: MovementSource = MovementSource.RECEIPT,
    reference: Optional[str] = None,
    user_id: Optional[int] = None,
    notes: Optional[str] = None,
    session=None,
) -> dict:
    """
    Add stock to a branch, creating the stock record if absent.

    Args:
        branch_id: Receiving branch
        product_id: Product received
        quantity: Amount in the product's base unit (must be > 0)
        lot_number: Optional lot to record on the stock record
        expiry_date: Optional expiry to record on the stock record
        source: Mutation path, PURCHASE for purchase documents
        reference: Optional source document reference
        user_id: Optional user performing the receipt
        notes: Optional notes
        session: Optional database session

    Returns:
        Dict with branch_id, product_id, previous_quantity, new_quantity,
        quantity_change, movement_id

    Raises:
        ValidationError: If quantity is not positive
        ProductNotFoundInCatalog: If the product does not exist
    """
    amount = _positive_quantity(quantity)

    def work(session):
        ProductCatalog(session).get_product(product_id)
        record = _get_or_create_record(session, branch_id, product_id)
        previous = record.quantity
        if lot_number is not None:
            record.lot_number = lot_number
        if expiry_date is not None:
            record.expiry_date = expiry_date
        movement = _apply_delta(session, record, amount, source, reference, user_id, notes)
        return _result(record, previous, movement)

    with ledger_locks.hold((branch_id, product_id)):
        result = run_in_transaction("receive", work, session)

    log_operation(
        logger,
        operation="receive",
        outcome="success",
        branch_id=branch_id,
        product_id=product_id,
        quantity=str(amount),
        source_type=MovementSource(source).value,
    )
    return result


def deduct(
    branch_id: int,
    product_id: int,
    quantity: Number,
    allow_negative: bool = False,
    *,
    source: MovementSource = MovementSource.ISSUE,
    reference: Optional[str] = None,
    user_id: Optional[int] = None,
    notes: Optional[str] = None,
    session=None,
) -> dict:
    """
    Remove stock from a branch.

    Args:
        branch_id: Branch to deduct from
        product_id: Product to deduct
        quantity: Amount in the product's base unit (must be > 0)
        allow_negative: Explicit override letting stock go below zero; the
            override is logged at WARNING when it takes effect
        source: Mutation path (SALE for point of sale)
        reference / user_id / notes: Movement context
        session: Optional database session

    Returns:
        Same shape as receive()

    Raises:
        ValidationError: If quantity is not positive
        InsufficientStockError: If the result would be negative and
            allow_negative is False; stock is left unchanged
        ProductNotFoundInCatalog: If the product does not exist
    """
    results = apply_deductions(
        branch_id,
        [(product_id, quantity)],
        allow_negative=allow_negative,
        source=source,
        reference=reference,
        user_id=user_id,
        notes=notes,
        session=session,
        operation="deduct",
    )
    return results[0]


def apply_deductions(
    branch_id: int,
    lines: Sequence[Tuple[int, Number]],
    *,
    allow_negative: bool = False,
    source: MovementSource = MovementSource.ISSUE,
    reference: Optional[str] = None,
    user_id: Optional[int] = None,
    notes: Optional[str] = None,
    audit_reason: Optional[AdjustmentReason] = None,
    session=None,
    operation: str = "apply_deductions",
) -> List[dict]:
    """
    Deduct several products from one branch as a single all-or-nothing batch.

    Lines for the same product are merged. Availability of every line is
    checked before any record changes, so an InsufficientStockError leaves
    the whole batch unapplied.

    Args:
        branch_id: Branch to deduct from
        lines: [(product_id, quantity)]
        allow_negative: Explicit override letting stock go below zero
        source / reference / user_id / notes: Movement context
        audit_reason: When given, one adjustment log entry is written per
            product with this reason (used by manufacturing consumption)
        session: Optional database session
        operation: Name used in logs

    Returns:
        One result dict per merged product, in first-seen order

    Raises:
        ValidationError, InsufficientStockError, ProductNotFoundInCatalog
    """
    if not lines:
        raise ValidationError(["At least one line is required"])
    merged = _merge_lines(lines)
    keys = [(branch_id, product_id) for product_id in merged]

    def work(session):
        catalog = ProductCatalog(session)
        for product_id in merged:
            catalog.get_product(product_id)

        # Check everything first
        records: Dict[int, Optional[StockRecord]] = {}
        for product_id, amount in merged.items():
            record = _get_record(session, branch_id, product_id)
            available = record.quantity if record is not None else ZERO
            if available - amount < 0 and not allow_negative:
                log_operation(
                    logger,
                    operation=operation,
                    outcome="insufficient_stock",
                    level=logging.WARNING,
                    branch_id=branch_id,
                    product_id=product_id,
                    requested=str(amount),
                    available=str(available),
                )
                raise InsufficientStockError(branch_id, product_id, amount, available)
            records[product_id] = record

        results = []
        for product_id, amount in merged.items():
            record = records[product_id]
            if record is None:
                record = _get_or_create_record(session, branch_id, product_id)
            previous = record.quantity
            movement = _apply_delta(session, record, -amount, source, reference, user_id, notes)
            if record.quantity < 0:
                log_operation(
                    logger,
                    operation=operation,
                    outcome="negative_stock_override",
                    level=logging.WARNING,
                    branch_id=branch_id,
                    product_id=product_id,
                    new_quantity=str(record.quantity),
                    reference=reference,
                )
            if audit_reason is not None:
                adjustment_audit_service.record_entry(
                    branch_id=branch_id,
                    product_id=product_id,
                    old_quantity=previous,
                    new_quantity=record.quantity,
                    reason=audit_reason,
                    adjusted_by_user_id=user_id,
                    notes=notes,
                    source_document_type=source,
                    source_document_id=reference,
                    session=session,
                )
            results.append(_result(record, previous, movement))
        return results

    with ledger_locks.hold(*keys):
        results = run_in_transaction(operation, work, session)

    log_operation(
        logger,
        operation=operation,
        outcome="success",
        branch_id=branch_id,
        product_count=len(results),
        source_type=MovementSource(source).value,
        reference=reference,
    )
    return results


def transfer(
    source_branch_id: int,
    dest_branch_id: int,
    product_id: int,
    quantity: Number,
    *,
    user_id: Optional[int] = None,
    notes: Optional[str] = None,
    reference: Optional[str] = None,
    session=None,
) -> dict:
    """
    Move stock between branches as one all-or-nothing transaction.

    Both ledger keys are locked in global order before either is read. The
    destination record is created on demand with the source's min_stock.
    Each leg writes a movement and an adjustment log entry.

    Args:
        source_branch_id: Branch giving stock
        dest_branch_id: Branch receiving stock
        product_id: Product moved
        quantity: Amount (must be > 0)
        user_id: Optional user performing the transfer
        notes / reference: Optional context
        session: Optional database session

    Returns:
        Dict with "source" and "destination" result dicts

    Raises:
        ValidationError: If quantity is not positive or branches are equal
        InsufficientStockError: If the source lacks stock; neither side changes
        ProductNotFoundInCatalog: If the product does not exist
    """
    amount = _positive_quantity(quantity)
    if source_branch_id == dest_branch_id:
        raise ValidationError(["Source and destination branches must differ"])

    source_key = (source_branch_id, product_id)
    dest_key = (dest_branch_id, product_id)

    def work(session):
        ProductCatalog(session).get_product(product_id)

        source_record = _get_record(session, source_branch_id, product_id)
        available = source_record.quantity if source_record is not None else ZERO
        if available < amount:
            log_operation(
                logger,
                operation="transfer",
                outcome="insufficient_stock",
                level=logging.WARNING,
                source_branch_id=source_branch_id,
                dest_branch_id=dest_branch_id,
                product_id=product_id,
                requested=str(amount),
                available=str(available),
            )
            raise InsufficientStockError(source_branch_id, product_id, amount, available)

        dest_record = _get_or_create_record(
            session, dest_branch_id, product_id, min_stock=source_record.min_stock
        )

        source_previous = source_record.quantity
        out_movement = _apply_delta(
            session, source_record, -amount, MovementSource.TRANSFER_OUT, reference, user_id, notes
        )
        dest_previous = dest_record.quantity
        in_movement = _apply_delta(
            session, dest_record, amount, MovementSource.TRANSFER_IN, reference, user_id, notes
        )

        for record, previous, reason, source in (
            (source_record, source_previous, AdjustmentReason.TRANSFER_OUT, MovementSource.TRANSFER_OUT),
            (dest_record, dest_previous, AdjustmentReason.TRANSFER_IN, MovementSource.TRANSFER_IN),
        ):
            adjustment_audit_service.record_entry(
                branch_id=record.branch_id,
                product_id=product_id,
                old_quantity=previous,
                new_quantity=record.quantity,
                reason=reason,
                adjusted_by_user_id=user_id,
                notes=notes,
                source_document_type=source,
                source_document_id=reference,
                session=session,
            )

        return {
            "source": _result(source_record, source_previous, out_movement),
            "destination": _result(dest_record, dest_previous, in_movement),
        }

    with ledger_locks.hold(source_key, dest_key):
        result = run_in_transaction("transfer", work, session)

    log_operation(
        logger,
        operation="transfer",
        outcome="success",
        source_branch_id=source_branch_id,
        dest_branch_id=dest_branch_id,
        product_id=product_id,
        quantity=str(amount),
    )
    return result


def set_absolute(
    branch_id: int,
    product_id: int,
    new_quantity: Number,
    reason: Union[AdjustmentReason, str],
    user_id: Optional[int],
    notes: Optional[str] = None,
    session=None,
) -> dict:
    """
    Overwrite a stock quantity after a physical count (admin override).

    Never subject to availability checks. Always writes an adjustment log
    entry, even when the quantity does not change; writes a movement only
    when it does.

    Args:
        branch_id / product_id: Ledger key
        new_quantity: Counted quantity (must be >= 0)
        reason: One of the manual AdjustmentReason values
        user_id: User performing the correction
        notes: Optional explanation
        session: Optional database session

    Returns:
        Result dict plus "adjustment_id"

    Raises:
        ValidationError: If new_quantity is negative or reason is not a
            manual adjustment reason
        ProductNotFoundInCatalog: If the product does not exist
    """
    target = quantize_quantity(to_decimal(new_quantity, "new_quantity"))
    if target < 0:
        raise ValidationError([f"new_quantity cannot be negative, got {new_quantity}"])
    reason_value = parse_enum(AdjustmentReason, reason, "adjustment reason")
    if reason_value not in MANUAL_ADJUSTMENT_REASONS:
        raise ValidationError([f"Reason '{reason_value.value}' is reserved for system adjustments"])

    def work(session):
        ProductCatalog(session).get_product(product_id)
        record = _get_or_create_record(session, branch_id, product_id)
        previous = record.quantity
        delta = target - previous
        movement = None
        if delta != 0:
            movement = _apply_delta(
                session, record, delta, MovementSource.ADJUSTMENT, None, user_id, notes
            )
        entry = adjustment_audit_service.record_entry(
            branch_id=branch_id,
            product_id=product_id,
            old_quantity=previous,
            new_quantity=record.quantity,
            reason=reason_value,
            adjusted_by_user_id=user_id,
            notes=notes,
            source_document_type=MovementSource.ADJUSTMENT,
            session=session,
        )
        result = _result(record, previous, movement)
        result["adjustment_id"] = entry["id"]
        return result

    with ledger_locks.hold((branch_id, product_id)):
        result = run_in_transaction("set_absolute", work, session)

    log_operation(
        logger,
        operation="set_absolute",
        outcome="success",
        branch_id=branch_id,
        product_id=product_id,
        old_quantity=str(result["previous_quantity"]),
        new_quantity=str(result["new_quantity"]),
        reason=reason_value.value,
        user_id=user_id,
    )
    return result


def set_min_stock(branch_id: int, product_id: int, min_stock: Number, session=None) -> dict:
    """
    Set the low-stock threshold of a ledger key (creating the record if needed).

    Raises:
        ValidationError: If min_stock is negative
        ProductNotFoundInCatalog: If the product does not exist
    """
    threshold = quantize_quantity(to_decimal(min_stock, "min_stock"))
    if threshold < 0:
        raise ValidationError(["min_stock cannot be negative"])

    def work(session):
        ProductCatalog(session).get_product(product_id)
        record = _get_or_create_record(session, branch_id, product_id)
        record.min_stock = threshold
        session.flush()
        return _record_to_dict(record)

    with ledger_locks.hold((branch_id, product_id)):
        return run_in_transaction("set_min_stock", work, session)


# =============================================================================
# Queries
# =============================================================================


def _record_to_dict(record: StockRecord) -> dict:
    return {
        "branch_id": record.branch_id,
        "product_id": record.product_id,
        "quantity": record.quantity,
        "min_stock": record.min_stock,
        "lot_number": record.lot_number,
        "expiry_date": record.expiry_date,
        "is_low_stock": record.is_low_stock,
    }


def read(branch_id: int, product_id: int, session=None) -> Decimal:
    """
    Current quantity of a ledger key; 0 when no record exists yet.

    Transaction boundary: Read-only operation.
    """
    if session is not None:
        return _read_impl(branch_id, product_id, session)
    with session_scope() as session:
        return _read_impl(branch_id, product_id, session)


def _read_impl(branch_id: int, product_id: int, session) -> Decimal:
    quantity = (
        session.query(StockRecord.quantity)
        .filter_by(branch_id=branch_id, product_id=product_id)
        .scalar()
    )
    return quantity if quantity is not None else ZERO


def get_stock_record(branch_id: int, product_id: int, session=None) -> Optional[dict]:
    """Full stock record of a ledger key as a dict, or None if absent."""
    if session is not None:
        return _get_stock_record_impl(branch_id, product_id, session)
    with session_scope() as session:
        return _get_stock_record_impl(branch_id, product_id, session)


def _get_stock_record_impl(branch_id, product_id, session) -> Optional[dict]:
    record = session.query(StockRecord).filter_by(branch_id=branch_id, product_id=product_id).first()
    return _record_to_dict(record) if record is not None else None


def read_all(
    branch_id: Optional[int] = None,
    product_id: Optional[int] = None,
    exclude_zero: bool = False,
    session=None,
) -> List[dict]:
    """
    Stock records matching a filter, ordered by branch then product.

    Served from a single query, i.e. one consistent snapshot.

    Args:
        branch_id: Optional branch filter
        product_id: Optional product filter
        exclude_zero: If True, omit records whose quantity is exactly 0
        session: Optional database session

    Returns:
        List of stock record dicts
    """
    if session is not None:
        return _read_all_impl(branch_id, product_id, exclude_zero, session)
    with session_scope() as session:
        return _read_all_impl(branch_id, product_id, exclude_zero, session)


def _read_all_impl(branch_id, product_id, exclude_zero, session) -> List[dict]:
    query = session.query(StockRecord)
    if branch_id is not None:
        query = query.filter(StockRecord.branch_id == branch_id)
    if product_id is not None:
        query = query.filter(StockRecord.product_id == product_id)
    if exclude_zero:
        query = query.filter(StockRecord.quantity != 0)
    records = query.order_by(StockRecord.branch_id, StockRecord.product_id).all()
    return [_record_to_dict(record) for record in records]


def get_low_stock(branch_id: Optional[int] = None, session=None) -> List[dict]:
    """
    Records at or below their threshold (threshold > 0), lowest quantity first.
    """
    if session is not None:
        return _get_low_stock_impl(branch_id, session)
    with session_scope() as session:
        return _get_low_stock_impl(branch_id, session)


def _get_low_stock_impl(branch_id, session) -> List[dict]:
    query = session.query(StockRecord).filter(
        StockRecord.min_stock > 0, StockRecord.quantity <= StockRecord.min_stock
    )
    if branch_id is not None:
        query = query.filter(StockRecord.branch_id == branch_id)
    records = query.order_by(StockRecord.quantity.asc(), StockRecord.branch_id).all()
    return [_record_to_dict(record) for record in records]


def get_movements(branch_id: int, product_id: int, session=None) -> List[dict]:
    """Movements of one ledger key, oldest first."""
    if session is not None:
        return _get_movements_impl(branch_id, product_id, session)
    with session_scope() as session:
        return _get_movements_impl(branch_id, product_id, session)


def _get_movements_impl(branch_id, product_id, session) -> List[dict]:
    movements = (
        session.query(StockMovement)
        .filter_by(branch_id=branch_id, product_id=product_id)
        .order_by(StockMovement.id)
        .all()
    )
    return [movement.to_dict() for movement in movements]


# =============================================================================
# Integrity
# =============================================================================


def replay_quantity(branch_id: int, product_id: int, session=None) -> Decimal:
    """Fold the movements of a ledger key into a quantity."""
    if session is not None:
        return _replay_quantity_impl(branch_id, product_id, session)
    with session_scope() as session:
        return _replay_quantity_impl(branch_id, product_id, session)


def _replay_quantity_impl(branch_id, product_id, session) -> Decimal:
    total = ZERO
    deltas = (
        session.query(StockMovement.quantity_change)
        .filter_by(branch_id=branch_id, product_id=product_id)
        .order_by(StockMovement.id)
        .all()
    )
    for (delta,) in deltas:
        total += delta
    return quantize_quantity(total)


def verify_ledger(session=None) -> List[dict]:
    """
    Compare every stock record with the fold of its movements.

    Returns:
        One dict (branch_id, product_id, stored, replayed) per mismatch;
        empty when the ledger is consistent
    """
    if session is not None:
        return _verify_ledger_impl(session)
    with session_scope() as session:
        return _verify_ledger_impl(session)


def _verify_ledger_impl(session) -> List[dict]:
    folded = {
        (branch_id, product_id): quantize_quantity(total)
        for branch_id, product_id, total in session.query(
            StockMovement.branch_id,
            StockMovement.product_id,
            func.sum(StockMovement.quantity_change),
        )
        .group_by(StockMovement.branch_id, StockMovement.product_id)
        .all()
    }

    mismatches = []
    for record in session.query(StockRecord).order_by(StockRecord.branch_id, StockRecord.product_id):
        replayed = folded.get(record.key, ZERO)
        if replayed != record.quantity:
            mismatches.append(
                {
                    "branch_id": record.branch_id,
                    "product_id": record.product_id,
                    "stored": record.quantity,
                    "replayed": replayed,
                }
            )

    if mismatches:
        log_operation(
            logger,
            operation="verify_ledger",
            outcome="mismatch",
            level=logging.ERROR,
            mismatch_count=len(mismatches),
        )
    return mismatches
