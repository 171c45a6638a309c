"""Tests for run_in_transaction retry and failure behavior."""

import pytest
from sqlalchemy.exc import OperationalError

from perfumery.models import Product
from perfumery.services.database import run_in_transaction, session_scope
from perfumery.services.exceptions import InsufficientStockError, LedgerUnavailableError


def locked():
    return OperationalError("UPDATE stock_records", {}, Exception("database is locked"))


class TestRunInTransaction:
    def test_returns_work_result(self, test_db):
        assert run_in_transaction("noop", lambda session: 42) == 42

    def test_retries_transient_error_once(self, test_db):
        attempts = []

        def work(session):
            attempts.append(1)
            if len(attempts) == 1:
                raise locked()
            return "ok"

        assert run_in_transaction("flaky", work) == "ok"
        assert len(attempts) == 2

    def test_second_failure_raises_ledger_unavailable(self, test_db):
        attempts = []

        def work(session):
            attempts.append(1)
            raise locked()

        with pytest.raises(LedgerUnavailableError) as exc_info:
            run_in_transaction("stuck", work)

        assert len(attempts) == 2
        assert exc_info.value.operation == "stuck"
        assert isinstance(exc_info.value.original_error, OperationalError)

    def test_failed_attempt_rolled_back(self, test_db):
        attempts = []

        def work(session):
            attempts.append(1)
            session.add(Product(sku=f"TMP-{len(attempts)}", name="Temp", base_unit="pcs"))
            session.flush()
            if len(attempts) == 1:
                raise locked()

        run_in_transaction("flaky", work)

        with session_scope() as session:
            assert [p.sku for p in session.query(Product).all()] == ["TMP-2"]

    def test_domain_errors_not_retried(self, test_db):
        attempts = []

        def work(session):
            attempts.append(1)
            raise InsufficientStockError(1, 2, 3, 0)

        with pytest.raises(InsufficientStockError):
            run_in_transaction("deduct", work)
        assert len(attempts) == 1

    def test_joins_caller_session_without_retry(self, test_db):
        attempts = []

        def work(session):
            attempts.append(session)
            raise locked()

        with pytest.raises(OperationalError):
            with session_scope() as session:
                run_in_transaction("joined", work, session)
        assert len(attempts) == 1
