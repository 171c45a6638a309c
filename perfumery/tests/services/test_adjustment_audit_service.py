"""Tests for adjustment_audit_service: querying and append-only entries."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from perfumery.models import AdjustmentReason, InventoryAdjustmentLog, MovementSource
from perfumery.services import adjustment_audit_service as audit
from perfumery.services.database import session_scope
from perfumery.services.exceptions import AuditLogImmutableError, ValidationError

JAN_1 = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def entries(products):
    """Three entries across two days, written out of chronological order."""
    audit.record_entry(
        branch_id=1,
        product_id=products.bottle,
        old_quantity=Decimal("10"),
        new_quantity=Decimal("8"),
        reason=AdjustmentReason.DAMAGED_GOODS,
        adjusted_by_user_id=5,
        adjusted_at=JAN_1 + timedelta(days=1),
    )
    audit.record_entry(
        branch_id=1,
        product_id=products.cap,
        old_quantity=Decimal("0"),
        new_quantity=Decimal("40"),
        reason=AdjustmentReason.INITIAL_STOCK,
        adjusted_by_user_id=5,
        adjusted_at=JAN_1,
    )
    audit.record_entry(
        branch_id=2,
        product_id=products.bottle,
        old_quantity=Decimal("3"),
        new_quantity=Decimal("5"),
        reason=AdjustmentReason.TRANSFER_IN,
        source_document_type=MovementSource.TRANSFER_IN,
        source_document_id="TR-9",
        adjusted_at=JAN_1 + timedelta(days=1, hours=2),
    )
    return products


class TestRecordEntry:
    def test_returns_stored_entry(self, products):
        entry = audit.record_entry(
            branch_id=1,
            product_id=products.oud,
            old_quantity=Decimal("2"),
            new_quantity=Decimal("1.5"),
            reason="stock_count_correction",
            notes="recount",
        )

        assert entry["id"] is not None
        assert entry["reason"] == "stock_count_correction"
        assert entry["source_document_type"] == "adjustment"
        assert entry["quantity_change"] == Decimal("-0.5")
        assert entry["adjusted_at"].tzinfo is not None

    def test_unknown_reason(self, products):
        with pytest.raises(ValidationError):
            audit.record_entry(
                branch_id=1,
                product_id=products.oud,
                old_quantity=Decimal("0"),
                new_quantity=Decimal("1"),
                reason="misplaced",
            )


class TestQuery:
    def test_ordered_by_time(self, entries):
        result = audit.query()
        assert [e["adjusted_at"] for e in result] == sorted(e["adjusted_at"] for e in result)
        assert result[0]["product_id"] == entries.cap
        assert result[0]["adjusted_at"] == JAN_1

    def test_filter_by_key(self, entries):
        result = audit.query(branch_id=1, product_id=entries.bottle)
        assert len(result) == 1
        assert result[0]["new_quantity"] == Decimal("8")
        assert result[0]["adjusted_by_user_id"] == 5

    def test_filter_by_reason(self, entries):
        result = audit.query(reason=AdjustmentReason.TRANSFER_IN)
        assert [e["source_document_id"] for e in result] == ["TR-9"]

    def test_date_range_inclusive(self, entries):
        result = audit.query(start=JAN_1, end=JAN_1 + timedelta(days=1))
        assert [e["product_id"] for e in result] == [entries.cap, entries.bottle]

    def test_date_range_with_other_timezone(self, entries):
        plus_two = timezone(timedelta(hours=2))
        # 2026-01-02 12:00 +02:00 is 10:00 UTC
        start = datetime(2026, 1, 2, 12, 0, tzinfo=plus_two)
        result = audit.query(start=start)
        assert [e["branch_id"] for e in result] == [2]

    def test_no_match(self, entries):
        assert audit.query(branch_id=3) == []

    @pytest.mark.parametrize("reason", ["bogus", "", 42])
    def test_unknown_reason_filter(self, entries, reason):
        with pytest.raises(ValidationError):
            audit.query(reason=reason)


class TestImmutability:
    def test_update_refused(self, entries, test_db):
        with pytest.raises(AuditLogImmutableError):
            with session_scope() as session:
                entry = session.query(InventoryAdjustmentLog).first()
                entry.notes = "edited"
                session.flush()

        assert all(e["notes"] is None for e in audit.query())

    def test_delete_refused(self, entries, test_db):
        with pytest.raises(AuditLogImmutableError):
            with session_scope() as session:
                entry = session.query(InventoryAdjustmentLog).first()
                session.delete(entry)
                session.flush()

        assert len(audit.query()) == 3
