"""
Adjustment Audit Service - append-only log of non-trade stock mutations.

Entries are written by the inventory ledger inside the same transaction as
the mutation they describe (set_absolute, both legs of a transfer,
manufacturing consumption), so an entry exists if and only if its
mutation committed. Entries are never updated or deleted; the model's
mapper listeners raise AuditLogImmutableError on any attempt.

Sales and purchase receipts are trade documents and are not audited here;
their movements are in the stock movement log.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Union

from perfumery.models import AdjustmentReason, InventoryAdjustmentLog, MovementSource
from perfumery.utils.datetime_utils import as_utc, utc_now
from .database import session_scope
from .dto_utils import parse_enum
from .logging_utils import get_service_logger

logger = get_service_logger(__name__)


def _entry_to_dict(entry: InventoryAdjustmentLog) -> dict:
    return {
        "id": entry.id,
        "branch_id": entry.branch_id,
        "product_id": entry.product_id,
        "adjusted_by_user_id": entry.adjusted_by_user_id,
        "adjusted_at": as_utc(entry.adjusted_at),
        "old_quantity": entry.old_quantity,
        "new_quantity": entry.new_quantity,
        "quantity_change": entry.quantity_change,
        "reason": entry.reason,
        "notes": entry.notes,
        "source_document_type": entry.source_document_type,
        "source_document_id": entry.source_document_id,
    }


def _db_timestamp(value: datetime) -> datetime:
    # SQLite keeps DateTime columns as naive UTC
    return as_utc(value).replace(tzinfo=None)


def record_entry(
    *,
    branch_id: int,
    product_id: int,
    old_quantity: Decimal,
    new_quantity: Decimal,
    reason: Union[AdjustmentReason, str],
    adjusted_by_user_id: Optional[int] = None,
    notes: Optional[str] = None,
    source_document_type: Union[MovementSource, str] = MovementSource.ADJUSTMENT,
    source_document_id: Optional[str] = None,
    adjusted_at: Optional[datetime] = None,
    session=None,
) -> dict:
    """
    Append one adjustment log entry.

    Called by the inventory ledger with its own session so the entry
    commits or rolls back together with the mutation.

    Args:
        branch_id / product_id: Ledger key that changed
        old_quantity / new_quantity: Quantity before and after
        reason: AdjustmentReason value
        adjusted_by_user_id: User responsible, None for system actions
        notes: Optional context
        source_document_type: Mutation path (MovementSource value)
        source_document_id: Reference of the triggering document
        adjusted_at: Timestamp; defaults to now (UTC)
        session: Optional database session

    Returns:
        Dict of the stored entry
    """
    if session is not None:
        return _record_entry_impl(
            branch_id, product_id, old_quantity, new_quantity, reason, adjusted_by_user_id,
            notes, source_document_type, source_document_id, adjusted_at, session,
        )
    with session_scope() as session:
        return _record_entry_impl(
            branch_id, product_id, old_quantity, new_quantity, reason, adjusted_by_user_id,
            notes, source_document_type, source_document_id, adjusted_at, session,
        )


def _record_entry_impl(
    branch_id, product_id, old_quantity, new_quantity, reason, adjusted_by_user_id,
    notes, source_document_type, source_document_id, adjusted_at, session,
) -> dict:
    reason_value = parse_enum(AdjustmentReason, reason, "adjustment reason").value
    entry = InventoryAdjustmentLog(
        branch_id=branch_id,
        product_id=product_id,
        adjusted_by_user_id=adjusted_by_user_id,
        adjusted_at=adjusted_at or utc_now(),
        old_quantity=old_quantity,
        new_quantity=new_quantity,
        reason=reason_value,
        notes=notes,
        source_document_type=parse_enum(MovementSource, source_document_type, "source type").value,
        source_document_id=source_document_id,
    )
    session.add(entry)
    session.flush()
    logger.debug(
        f"Adjustment logged: key=({branch_id}, {product_id}) "
        f"{old_quantity} -> {new_quantity} reason={entry.reason}"
    )
    return _entry_to_dict(entry)


def query(
    branch_id: Optional[int] = None,
    product_id: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    reason: Optional[Union[AdjustmentReason, str]] = None,
    session=None,
) -> List[dict]:
    """
    Return adjustment entries matching the filter, oldest first.

    Args:
        branch_id: Optional branch filter
        product_id: Optional product filter
        start: Optional inclusive lower bound on adjusted_at
        end: Optional inclusive upper bound on adjusted_at
        reason: Optional AdjustmentReason filter
        session: Optional database session

    Returns:
        List of entry dicts ordered by adjusted_at, then id

    Raises:
        ValidationError: If reason is not an AdjustmentReason

    Transaction boundary: Read-only operation.
    """
    if session is not None:
        return _query_impl(branch_id, product_id, start, end, reason, session)
    with session_scope() as session:
        return _query_impl(branch_id, product_id, start, end, reason, session)


def _query_impl(branch_id, product_id, start, end, reason, session) -> List[dict]:
    q = session.query(InventoryAdjustmentLog)
    if branch_id is not None:
        q = q.filter(InventoryAdjustmentLog.branch_id == branch_id)
    if product_id is not None:
        q = q.filter(InventoryAdjustmentLog.product_id == product_id)
    if start is not None:
        q = q.filter(InventoryAdjustmentLog.adjusted_at >= _db_timestamp(start))
    if end is not None:
        q = q.filter(InventoryAdjustmentLog.adjusted_at <= _db_timestamp(end))
    if reason is not None:
        reason_value = parse_enum(AdjustmentReason, reason, "adjustment reason")
        q = q.filter(InventoryAdjustmentLog.reason == reason_value.value)
    entries = q.order_by(InventoryAdjustmentLog.adjusted_at, InventoryAdjustmentLog.id).all()
    return [_entry_to_dict(entry) for entry in entries]
