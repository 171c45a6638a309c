"""Service layer exception classes for the perfumery ledger.

Every exception a service raises derives from ServiceError. The category
base classes let callers tell "fix your input" from "confirm an override"
from "this should not happen".

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError                 fix the input and resubmit
    │   ├── FormulaPercentageError
    │   ├── UnsupportedUnitError
    │   ├── DivisionByZeroError
    │   ├── CircularComponentError
    │   ├── InvalidStatusTransitionError
    │   └── QCNotApprovedError
    ├── ResourceError                   recoverable, caller decides
    │   └── InsufficientStockError
    ├── LedgerIntegrityError            caller bug or race, always rejected
    │   ├── OrderAlreadyCompletedError
    │   ├── OrderClosedError
    │   └── AuditLogImmutableError
    ├── CollaboratorError               propagated from the catalog
    │   └── ProductNotFoundInCatalog
    ├── OrderNotFoundError
    └── LedgerUnavailableError          infrastructure failure after retry
"""

from decimal import Decimal
from typing import List, Optional


class ServiceError(Exception):
    """Base exception for all service layer errors."""

    pass


# =============================================================================
# Validation
# =============================================================================


class ValidationError(ServiceError):
    """Raised when input validation fails before any state is mutated.

    Args:
        errors: List of human-readable problems
    """

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__(f"Validation failed: {'; '.join(errors)}")


class FormulaPercentageError(ValidationError):
    """Raised when formula percentages do not sum to 100 within tolerance.

    Example:
        >>> raise FormulaPercentageError(Decimal("98.5"))
        FormulaPercentageError: Validation failed: Formula percentages must sum to 100 (currently 98.5)
    """

    def __init__(self, total: Decimal):
        self.total = total
        super().__init__([f"Formula percentages must sum to 100 (currently {total})"])


class UnsupportedUnitError(ValidationError):
    """Raised when a formula material is stocked in a unit that cannot be
    derived from a volume share (anything but ml or g)."""

    def __init__(self, unit: str, product_id: Optional[int] = None):
        self.unit = unit
        self.product_id = product_id
        subject = f"Material {product_id}" if product_id is not None else "Material"
        super().__init__(
            [f"{subject} has unsupported base unit '{unit}' for formula conversion"]
        )


class DivisionByZeroError(ValidationError):
    """Raised when a per-unit figure would divide by a zero quantity."""

    def __init__(self, quantity_name: str):
        self.quantity_name = quantity_name
        super().__init__([f"Cannot compute per-unit cost: {quantity_name} is zero"])


class CircularComponentError(ValidationError):
    """Raised when a composite product contains itself, directly or not."""

    def __init__(self, product_id: int, path: List[int]):
        self.product_id = product_id
        self.path = path
        chain = " -> ".join(str(p) for p in path + [product_id])
        super().__init__([f"Circular component reference: {chain}"])


class InvalidStatusTransitionError(ValidationError):
    """Raised when a manufacturing order cannot move to the requested status."""

    def __init__(self, current: str, requested: str, detail: str = ""):
        self.current = current
        self.requested = requested
        message = f"Cannot move order from {current} to {requested}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__([message])


class QCNotApprovedError(ValidationError):
    """Raised when an order with a failing latest QC check tries to move on."""

    def __init__(self, order_id: int, result: str):
        self.order_id = order_id
        self.result = result
        super().__init__([f"Order {order_id} latest QC result is '{result}', not approved"])


# =============================================================================
# Resources
# =============================================================================


class ResourceError(ServiceError):
    """Base for recoverable resource shortages."""

    pass


class InsufficientStockError(ResourceError):
    """Raised when a deduction would drive stock below zero without override.

    Example:
        >>> raise InsufficientStockError(1, 42, Decimal("10"), Decimal("5"))
        InsufficientStockError: Insufficient stock for product 42 at branch 1: requested 10, available 5
    """

    def __init__(self, branch_id: int, product_id: int, requested: Decimal, available: Decimal):
        self.branch_id = branch_id
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id} at branch {branch_id}: "
            f"requested {requested}, available {available}"
        )


# =============================================================================
# Integrity
# =============================================================================


class LedgerIntegrityError(ServiceError):
    """Base for integrity violations: a caller bug or a lost race."""

    pass


class OrderAlreadyCompletedError(LedgerIntegrityError):
    """Raised when an order that already consumed inventory is completed again."""

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Manufacturing order {order_id} is already completed")


class OrderClosedError(LedgerIntegrityError):
    """Raised on any attempt to mutate a CLOSED order."""

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Manufacturing order {order_id} is closed and cannot be changed")


class AuditLogImmutableError(LedgerIntegrityError):
    """Raised when code tries to update or delete an adjustment log entry."""

    def __init__(self, entry_id: Optional[int], action: str):
        self.entry_id = entry_id
        self.action = action
        super().__init__(f"Adjustment log entry {entry_id} is append-only; {action} refused")


# =============================================================================
# Collaborators
# =============================================================================


class CollaboratorError(ServiceError):
    """Base for errors propagated from external collaborators."""

    pass


class ProductNotFoundInCatalog(CollaboratorError):
    """Raised when the product catalog has no product with the given ID."""

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product with ID {product_id} not found in catalog")


# =============================================================================
# Lookup / infrastructure
# =============================================================================


class OrderNotFoundError(ServiceError):
    """Raised when a manufacturing order cannot be found by ID."""

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Manufacturing order with ID {order_id} not found")


class LedgerUnavailableError(ServiceError):
    """Raised when the backing store keeps failing after the single retry."""

    def __init__(self, operation: str, original_error: Exception = None):
        self.operation = operation
        self.original_error = original_error
        super().__init__(f"Ledger unavailable during {operation}: {original_error}")
