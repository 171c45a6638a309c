"""Service layer logging utilities.

Provides structured logging functions for service operations so every
ledger mutation, cost computation and order transition is logged with the
same shape.

Usage:
    from perfumery.services.logging_utils import get_service_logger, log_operation

    logger = get_service_logger(__name__)

    log_operation(
        logger,
        operation="deduct",
        outcome="success",
        branch_id=1,
        product_id=42,
        quantity="10.0000",
    )
"""

import logging
from typing import Any

LOGGER_PREFIX = "perfumery.services"


def get_service_logger(name: str) -> logging.Logger:
    """
    Get a logger configured for service operations.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger named 'perfumery.services.<module>'.

    Example:
        >>> get_service_logger("perfumery.services.inventory_ledger_service").name
        'perfumery.services.inventory_ledger_service'
    """
    if "." in name:
        name = name.split(".")[-1]
    return logging.getLogger(f"{LOGGER_PREFIX}.{name}")


def log_operation(
    logger: logging.Logger,
    operation: str,
    outcome: str,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    """
    Log a service operation with structured context.

    The message is "<operation>: <outcome>"; the context is attached to the
    record through `extra` so handlers can render or index it.

    Args:
        logger: Logger instance to use
        operation: Operation name (e.g., "transfer", "complete_order")
        outcome: Outcome description (e.g., "success", "insufficient_stock")
        level: Log level (default: INFO)
        **context: Additional context fields (ledger keys, quantities, order ids)

    Example:
        >>> log_operation(
        ...     logger,
        ...     operation="deduct",
        ...     outcome="negative_stock_override",
        ...     level=logging.WARNING,
        ...     branch_id=1,
        ...     product_id=42,
        ... )
    """
    extra = {
        "operation": operation,
        "outcome": outcome,
        **context,
    }
    logger.log(level, f"{operation}: {outcome}", extra=extra)
