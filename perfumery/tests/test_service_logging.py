"""Tests for structured service logging."""

import logging

from perfumery.services.logging_utils import get_service_logger, log_operation


class TestGetServiceLogger:
    def test_prefixes_module_name(self):
        logger = get_service_logger("perfumery.services.inventory_ledger_service")
        assert logger.name == "perfumery.services.inventory_ledger_service"

    def test_plain_name(self):
        assert get_service_logger("bom_service").name == "perfumery.services.bom_service"


class TestLogOperation:
    def test_message_and_context(self, caplog):
        logger = get_service_logger("test_logging")
        with caplog.at_level(logging.INFO, logger="perfumery.services"):
            log_operation(logger, operation="deduct", outcome="success", branch_id=1, product_id=42)

        record = caplog.records[-1]
        assert record.getMessage() == "deduct: success"
        assert record.levelno == logging.INFO
        assert record.operation == "deduct"
        assert record.outcome == "success"
        assert record.branch_id == 1
        assert record.product_id == 42

    def test_level(self, caplog):
        logger = get_service_logger("test_logging")
        with caplog.at_level(logging.WARNING, logger="perfumery.services"):
            log_operation(logger, operation="deduct", outcome="ignored")
            log_operation(
                logger, operation="deduct", outcome="negative_stock_override", level=logging.WARNING
            )

        assert [r.outcome for r in caplog.records] == ["negative_stock_override"]
