"""Services package - ledger and manufacturing logic for the perfumery ledger.

Architecture:
- Services: Stateless functions organized by component
- Transactions: Managed via session_scope() / run_in_transaction()
- Exceptions: Consistent error handling via the ServiceError hierarchy
- Validation: Input validation before any stock is touched

Service Modules:
- unit_converter: Formula percentage -> material quantity
- formula_cost_service: Yield and cost snapshots
- inventory_ledger_service: Per-(branch, product) stock and movements
- bom_service: Kit explosion into stocked components
- manufacturing_order_service: Order lifecycle and completion
- adjustment_audit_service: Append-only adjustment log
- product_catalog_service: Product and unit cost lookups
- trade_document_service: Sales and purchase submission

Infrastructure:
- exceptions: Service layer exception classes
- database: Session management and database utilities
- ledger_locks: Per-key locks for ledger writers
- logging_utils: Structured operation logging
"""

from . import (
    database,
    unit_converter,
    product_catalog_service,
    adjustment_audit_service,
    inventory_ledger_service,
    formula_cost_service,
    bom_service,
    manufacturing_order_service,
    trade_document_service,
)
from .exceptions import (
    ServiceError,
    ValidationError,
    ResourceError,
    LedgerIntegrityError,
    CollaboratorError,
    FormulaPercentageError,
    UnsupportedUnitError,
    DivisionByZeroError,
    CircularComponentError,
    InvalidStatusTransitionError,
    QCNotApprovedError,
    InsufficientStockError,
    OrderAlreadyCompletedError,
    OrderClosedError,
    AuditLogImmutableError,
    ProductNotFoundInCatalog,
    OrderNotFoundError,
    LedgerUnavailableError,
)

__all__ = [
    "database",
    "unit_converter",
    "product_catalog_service",
    "adjustment_audit_service",
    "inventory_ledger_service",
    "formula_cost_service",
    "bom_service",
    "manufacturing_order_service",
    "trade_document_service",
    "ServiceError",
    "ValidationError",
    "ResourceError",
    "LedgerIntegrityError",
    "CollaboratorError",
    "FormulaPercentageError",
    "UnsupportedUnitError",
    "DivisionByZeroError",
    "CircularComponentError",
    "InvalidStatusTransitionError",
    "QCNotApprovedError",
    "InsufficientStockError",
    "OrderAlreadyCompletedError",
    "OrderClosedError",
    "AuditLogImmutableError",
    "ProductNotFoundInCatalog",
    "OrderNotFoundError",
    "LedgerUnavailableError",
]
