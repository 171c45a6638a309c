"""
Manufacturing Order Service - perfume batch lifecycle and completion.

This module provides functions for:
- Creating orders in DRAFT with formula, packaging and process loss
- Editing formula (DRAFT only), process loss, packaging, cost inputs and
  actual yield (until DONE), with the yield/cost snapshot recomputed on
  every change
- Recording QC checks
- Checking material availability before completion (dry run)
- Advancing the status machine:
  DRAFT -> IN_PROGRESS -> MACERATING -> QC -> PACKAGING -> DONE -> CLOSED

Completion (entering DONE) happens exactly once per order. In a single
transaction it:
1. claims the order with a compare-and-set UPDATE on completed_at IS NULL
2. finalizes the snapshot on actual volume/units where recorded
3. deducts every formula material and packaging item from the order's
   branch, with one adjustment log entry per consumed product

A repeated completion raises OrderAlreadyCompletedError and changes
nothing. Completion attempts for one order are serialized by an order
lock, and the ledger keys it consumes are locked before its transaction
starts and released after it commits.

The service integrates with:
- formula_cost_service for yield and cost snapshots
- inventory_ledger_service.apply_deductions() for consumption
- product_catalog_service.ProductCatalog for material lookups
"""

import logging
from collections import OrderedDict
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy import func

from perfumery.models import (
    AdjustmentReason,
    Clarity,
    Concentration,
    FormulaKind,
    FormulaLine,
    ManufacturingOrder,
    ManufacturingType,
    MovementSource,
    OdorMatch,
    OrderPackagingItem,
    OrderStatus,
    QCCheck,
    QCResult,
)
from perfumery.utils.constants import (
    BATCH_CODE_PREFIX,
    MAX_NAME_LENGTH,
    MAX_NOTES_LENGTH,
    ORDER_NUMBER_PREFIX,
)
from perfumery.utils.datetime_utils import utc_now
from . import formula_cost_service, inventory_ledger_service
from .database import run_in_transaction, session_scope
from .dto_utils import (
    Number,
    optional_decimal,
    parse_enum,
    quantize_cost,
    quantize_quantity,
    to_decimal,
    to_int,
)
from .exceptions import (
    InvalidStatusTransitionError,
    OrderAlreadyCompletedError,
    OrderClosedError,
    OrderNotFoundError,
    QCNotApprovedError,
    ValidationError,
)
from .ledger_locks import ledger_locks, order_locks, order_number_locks
from .logging_utils import get_service_logger, log_operation
from .product_catalog_service import ProductCatalog

logger = get_service_logger(__name__)

PRE_COMPLETION_STATUSES = (
    OrderStatus.DRAFT,
    OrderStatus.IN_PROGRESS,
    OrderStatus.MACERATING,
    OrderStatus.QC,
    OrderStatus.PACKAGING,
)

# Statuses that require the latest QC check (if any) to be approved
QC_GATED_STATUSES = (OrderStatus.PACKAGING, OrderStatus.DONE)
FAILING_QC_RESULTS = (QCResult.REJECTED.value, QCResult.REWORK.value)


# =============================================================================
# Internal helpers
# =============================================================================


def _run_order_operation(order_id: int, work, session):
    with order_locks.hold(order_id):
        if session is not None:
            return work(session)
        with session_scope() as session:
            return work(session)


def _load_order(session, order_id: int, for_update: bool = False) -> ManufacturingOrder:
    query = session.query(ManufacturingOrder).filter_by(id=order_id)
    if for_update:
        query = query.with_for_update()
    order = query.first()
    if order is None:
        raise OrderNotFoundError(order_id)
    return order


def _ensure_editable(order: ManufacturingOrder, what: str, draft_only: bool = False) -> None:
    """
    Raises:
        OrderClosedError: If the order is CLOSED
        OrderAlreadyCompletedError: If the order is DONE (snapshot is frozen)
        ValidationError: If draft_only and the order has left DRAFT
    """
    status = order.order_status
    if status is OrderStatus.CLOSED:
        raise OrderClosedError(order.id)
    if status is OrderStatus.DONE:
        raise OrderAlreadyCompletedError(order.id)
    if draft_only and status is not OrderStatus.DRAFT:
        raise ValidationError(
            [f"{what} can only be changed while the order is in draft (currently {status.value})"]
        )


def _build_formula_lines(lines: Sequence, catalog: ProductCatalog) -> List[FormulaLine]:
    errors = []
    built = []
    for index, line in enumerate(lines, start=1):
        data = line if isinstance(line, dict) else vars(line)
        material_id = data.get("material_id")
        if material_id is None:
            errors.append(f"Line {index}: material_id is required")
            continue
        percentage = optional_decimal(data.get("percentage"), "percentage")
        if percentage is None or percentage < 0 or percentage > 100:
            errors.append(f"Line {index}: percentage must be between 0 and 100")
            continue
        density = optional_decimal(data.get("density"), "density")
        if density is not None and density <= 0:
            errors.append(f"Line {index}: density must be positive")
            continue
        kind = parse_enum(FormulaKind, data.get("kind"), "formula kind")
        catalog.get_product(material_id)
        built.append(
            FormulaLine(
                material_id=material_id,
                kind=kind.value,
                percentage=percentage,
                density=density,
                sort_order=data.get("sort_order", index),
            )
        )
    if errors:
        raise ValidationError(errors)
    return built


def _build_packaging_items(items: Sequence, catalog: ProductCatalog) -> List[OrderPackagingItem]:
    built = []
    for item in items:
        if isinstance(item, dict):
            product_id, per_unit = item.get("product_id"), item.get("quantity_per_unit")
        else:
            product_id, per_unit = item
        quantity = optional_decimal(per_unit, "quantity_per_unit")
        if quantity is None or quantity <= 0:
            raise ValidationError([f"Packaging item {product_id}: quantity per unit must be positive"])
        catalog.get_product(product_id)
        built.append(OrderPackagingItem(product_id=product_id, quantity_per_unit=quantity))
    return built


def _store_snapshot(order: ManufacturingOrder, yield_snapshot, cost_snapshot) -> None:
    order.theoretical_ml = yield_snapshot.theoretical_ml
    order.expected_ml = yield_snapshot.expected_ml
    order.expected_units = yield_snapshot.expected_units
    order.yield_percentage = yield_snapshot.yield_percentage
    order.materials_cost = cost_snapshot.materials_cost
    order.packaging_cost = cost_snapshot.packaging_cost
    order.total_cost = cost_snapshot.total_cost
    order.cost_per_ml = cost_snapshot.cost_per_ml
    order.cost_per_bottle = cost_snapshot.cost_per_bottle
    order.suggested_retail = cost_snapshot.suggested_retail


def _refresh_snapshot(order: ManufacturingOrder, session, finalize: bool = False):
    yield_snapshot, cost_snapshot = formula_cost_service.compute_yield_and_cost(
        order, ProductCatalog(session), finalize=finalize
    )
    _store_snapshot(order, yield_snapshot, cost_snapshot)
    session.flush()
    return yield_snapshot, cost_snapshot


def _next_order_number(session, on: date) -> str:
    prefix = f"{ORDER_NUMBER_PREFIX}-{on:%Y%m%d}-"
    last = (
        session.query(ManufacturingOrder.order_number)
        .filter(ManufacturingOrder.order_number.like(f"{prefix}%"))
        # Longer suffix first so -1000 outranks -999
        .order_by(
            func.length(ManufacturingOrder.order_number).desc(),
            ManufacturingOrder.order_number.desc(),
        )
        .first()
    )
    sequence = int(last[0].rsplit("-", 1)[1]) + 1 if last else 1
    return f"{prefix}{sequence:03d}"


def _batch_code(order_number: str) -> str:
    # MO-20261018-004 -> B261018-004
    _prefix, day, sequence = order_number.split("-")
    return f"{BATCH_CODE_PREFIX}{day[2:]}-{sequence}"


def _order_result(order: ManufacturingOrder) -> Dict[str, Any]:
    return order.to_dict(include_relationships=True)


# =============================================================================
# Creation and queries
# =============================================================================


def create_order(
    product_name: str,
    branch_id: int,
    bottle_size_ml: Number,
    units_requested: int,
    *,
    formula_lines: Optional[Sequence] = None,
    packaging_items: Optional[Sequence] = None,
    mixing_loss_pct: Number = 0,
    filtration_loss_pct: Number = 0,
    filling_loss_pct: Number = 0,
    maceration_days: int = 0,
    manufacturing_type: Union[ManufacturingType, str] = ManufacturingType.INTERNAL,
    concentration: Optional[Union[Concentration, str]] = None,
    responsible_employee_id: Optional[int] = None,
    expiry_date: Optional[date] = None,
    due_at: Optional[datetime] = None,
    labor_cost: Number = 0,
    overhead_cost: Number = 0,
    other_cost: Number = 0,
    notes: Optional[str] = None,
    session=None,
) -> Dict[str, Any]:
    """
    Create a manufacturing order in DRAFT.

    Args:
        product_name: Perfume being produced
        branch_id: Branch whose stock the order will consume
        bottle_size_ml: Bottle size (ml, > 0)
        units_requested: Bottles requested (> 0)
        formula_lines: [{"material_id", "percentage", "kind", "density"?}]
        packaging_items: [{"product_id", "quantity_per_unit"}] or tuples
        mixing_loss_pct / filtration_loss_pct / filling_loss_pct: 0-100
        maceration_days: Planned maceration period
        manufacturing_type: "internal" or "contract"
        concentration: Optional Concentration value
        responsible_employee_id: Optional responsible employee
        expiry_date: Optional expiry of the produced batch
        due_at: Optional due date
        labor_cost / overhead_cost / other_cost: Cost inputs
        notes: Optional notes
        session: Optional database session

    Returns:
        Dict of the created order, including its yield/cost snapshot

    Raises:
        ValidationError: If any input is invalid
        UnsupportedUnitError: If a formula material is not stocked in ml or g
        ProductNotFoundInCatalog: If a material or packaging item is unknown
    """

    day = utc_now().date()

    def work(session):
        errors = []
        if not product_name or not product_name.strip():
            errors.append("Product name is required")
        elif len(product_name.strip()) > MAX_NAME_LENGTH:
            errors.append(f"Product name cannot exceed {MAX_NAME_LENGTH} characters")
        if notes is not None and len(notes) > MAX_NOTES_LENGTH:
            errors.append(f"Notes cannot exceed {MAX_NOTES_LENGTH} characters")
        days = to_int(maceration_days, "maceration_days")
        if days < 0:
            errors.append("Maceration days cannot be negative")
        costs = {}
        for name, value in (
            ("labor_cost", labor_cost),
            ("overhead_cost", overhead_cost),
            ("other_cost", other_cost),
        ):
            amount = optional_decimal(value, name)
            if amount is None or amount < 0:
                errors.append(f"{name} cannot be negative")
            else:
                costs[name] = quantize_cost(amount)
        if errors:
            raise ValidationError(errors)

        # Raises ValidationError for sizes and losses
        formula_cost_service.compute_yield(
            bottle_size_ml, units_requested, mixing_loss_pct, filtration_loss_pct, filling_loss_pct
        )

        mtype = parse_enum(ManufacturingType, manufacturing_type, "manufacturing type")
        conc = (
            parse_enum(Concentration, concentration, "concentration")
            if concentration is not None
            else None
        )

        catalog = ProductCatalog(session)
        order_number = _next_order_number(session, day)
        order = ManufacturingOrder(
            order_number=order_number,
            batch_code=_batch_code(order_number),
            product_name=product_name.strip(),
            manufacturing_type=mtype.value,
            concentration=conc.value if conc is not None else None,
            responsible_employee_id=responsible_employee_id,
            branch_id=branch_id,
            bottle_size_ml=to_decimal(bottle_size_ml),
            units_requested=to_int(units_requested, "units_requested"),
            maceration_days=days,
            mixing_loss_pct=to_decimal(mixing_loss_pct),
            filtration_loss_pct=to_decimal(filtration_loss_pct),
            filling_loss_pct=to_decimal(filling_loss_pct),
            status=OrderStatus.DRAFT.value,
            expiry_date=expiry_date,
            due_at=due_at,
            notes=notes,
            **costs,
        )
        order.formula_lines = _build_formula_lines(formula_lines or [], catalog)
        order.packaging_items = _build_packaging_items(packaging_items or [], catalog)
        session.add(order)
        session.flush()

        _refresh_snapshot(order, session)

        log_operation(
            logger,
            operation="create_order",
            outcome="success",
            order_id=order.id,
            order_number=order.order_number,
            branch_id=branch_id,
        )
        return _order_result(order)

    # Held until commit; allocation reads the day's highest number
    with order_number_locks.hold(day):
        if session is not None:
            return work(session)
        with session_scope() as session:
            return work(session)


def get_order(order_id: int, session=None) -> Dict[str, Any]:
    """
    Get an order with its formula, packaging and QC checks.

    Raises:
        OrderNotFoundError: If the order does not exist
    """
    if session is not None:
        return _order_result(_load_order(session, order_id))
    with session_scope() as session:
        return _order_result(_load_order(session, order_id))


def list_orders(
    status: Optional[Union[OrderStatus, str]] = None,
    branch_id: Optional[int] = None,
    session=None,
) -> List[Dict[str, Any]]:
    """List orders, newest first, optionally filtered by status and branch."""
    if session is not None:
        return _list_orders_impl(status, branch_id, session)
    with session_scope() as session:
        return _list_orders_impl(status, branch_id, session)


def _list_orders_impl(status, branch_id, session) -> List[Dict[str, Any]]:
    query = session.query(ManufacturingOrder)
    if status is not None:
        status_value = parse_enum(OrderStatus, status, "status").value
        query = query.filter(ManufacturingOrder.status == status_value)
    if branch_id is not None:
        query = query.filter(ManufacturingOrder.branch_id == branch_id)
    orders = query.order_by(ManufacturingOrder.id.desc()).all()
    return [order.to_dict() for order in orders]


# =============================================================================
# Editing (snapshot recomputed on every change)
# =============================================================================


def update_formula(order_id: int, formula_lines: Sequence, session=None) -> Dict[str, Any]:
    """
    Replace the formula of a DRAFT order.

    Raises:
        OrderNotFoundError, OrderClosedError, OrderAlreadyCompletedError
        ValidationError: If the order has left DRAFT or a line is invalid
        UnsupportedUnitError / ProductNotFoundInCatalog: For bad materials
    """

    def work(session):
        order = _load_order(session, order_id, for_update=True)
        _ensure_editable(order, "Formula", draft_only=True)
        order.formula_lines = _build_formula_lines(formula_lines, ProductCatalog(session))
        session.flush()
        _refresh_snapshot(order, session)
        log_operation(
            logger,
            operation="update_formula",
            outcome="success",
            order_id=order_id,
            line_count=len(formula_lines),
        )
        return _order_result(order)

    return _run_order_operation(order_id, work, session)


def update_process_loss(
    order_id: int,
    mixing_loss_pct: Number,
    filtration_loss_pct: Number,
    filling_loss_pct: Number,
    session=None,
) -> Dict[str, Any]:
    """
    Change the process loss of an order that has not reached DONE.

    Raises:
        OrderNotFoundError, OrderClosedError, OrderAlreadyCompletedError
        ValidationError: If a loss is outside 0-100
    """

    def work(session):
        order = _load_order(session, order_id, for_update=True)
        _ensure_editable(order, "Process loss")
        formula_cost_service.validate_process_loss(
            mixing_loss_pct, filtration_loss_pct, filling_loss_pct
        )
        order.mixing_loss_pct = to_decimal(mixing_loss_pct)
        order.filtration_loss_pct = to_decimal(filtration_loss_pct)
        order.filling_loss_pct = to_decimal(filling_loss_pct)
        _refresh_snapshot(order, session)
        log_operation(logger, operation="update_process_loss", outcome="success", order_id=order_id)
        return _order_result(order)

    return _run_order_operation(order_id, work, session)


def update_packaging(order_id: int, packaging_items: Sequence, session=None) -> Dict[str, Any]:
    """
    Replace the packaging items of an order that has not reached DONE.

    Raises:
        OrderNotFoundError, OrderClosedError, OrderAlreadyCompletedError
        ValidationError: If a quantity per unit is not positive
        ProductNotFoundInCatalog: If a packaging product is unknown
    """

    def work(session):
        order = _load_order(session, order_id, for_update=True)
        _ensure_editable(order, "Packaging")
        order.packaging_items = _build_packaging_items(packaging_items, ProductCatalog(session))
        session.flush()
        _refresh_snapshot(order, session)
        log_operation(
            logger,
            operation="update_packaging",
            outcome="success",
            order_id=order_id,
            item_count=len(packaging_items),
        )
        return _order_result(order)

    return _run_order_operation(order_id, work, session)


def set_cost_inputs(
    order_id: int,
    *,
    labor_cost: Optional[Number] = None,
    overhead_cost: Optional[Number] = None,
    other_cost: Optional[Number] = None,
    session=None,
) -> Dict[str, Any]:
    """
    Set labor, overhead and other costs (None leaves a value unchanged).

    Raises:
        OrderNotFoundError, OrderClosedError, OrderAlreadyCompletedError
        ValidationError: If a cost is negative
    """

    def work(session):
        order = _load_order(session, order_id, for_update=True)
        _ensure_editable(order, "Cost inputs")
        for name, value in (
            ("labor_cost", labor_cost),
            ("overhead_cost", overhead_cost),
            ("other_cost", other_cost),
        ):
            amount = optional_decimal(value, name)
            if amount is None:
                continue
            if amount < 0:
                raise ValidationError([f"{name} cannot be negative"])
            setattr(order, name, quantize_cost(amount))
        _refresh_snapshot(order, session)
        log_operation(logger, operation="set_cost_inputs", outcome="success", order_id=order_id)
        return _order_result(order)

    return _run_order_operation(order_id, work, session)


def record_actual_yield(
    order_id: int,
    actual_ml: Number,
    actual_units: Optional[int] = None,
    session=None,
) -> Dict[str, Any]:
    """
    Record the measured output of an order that has not reached DONE.

    Sets yield_percentage = actual_ml / theoretical_ml * 100. Completion
    then deducts and costs on these figures instead of the expected ones.

    Raises:
        OrderNotFoundError, OrderClosedError, OrderAlreadyCompletedError
        ValidationError: If a value is negative
    """

    def work(session):
        order = _load_order(session, order_id, for_update=True)
        _ensure_editable(order, "Actual yield")
        volume = optional_decimal(actual_ml, "actual_ml")
        if volume is None or volume < 0:
            raise ValidationError(["Actual volume must be zero or positive"])
        units = to_int(actual_units, "actual_units") if actual_units is not None else None
        if units is not None and units < 0:
            raise ValidationError(["Actual units cannot be negative"])
        order.actual_ml = quantize_quantity(volume)
        order.actual_units = units
        _refresh_snapshot(order, session)
        log_operation(
            logger,
            operation="record_actual_yield",
            outcome="success",
            order_id=order_id,
            actual_ml=str(order.actual_ml),
            yield_percentage=str(order.yield_percentage),
        )
        return _order_result(order)

    return _run_order_operation(order_id, work, session)


def recompute_snapshot(order_id: int, session=None) -> Dict[str, Any]:
    """
    Recompute the snapshot of an open order, e.g. after catalog costs changed.

    Raises:
        OrderNotFoundError, OrderClosedError, OrderAlreadyCompletedError
    """

    def work(session):
        order = _load_order(session, order_id, for_update=True)
        _ensure_editable(order, "Snapshot")
        _refresh_snapshot(order, session)
        return _order_result(order)

    return _run_order_operation(order_id, work, session)


# =============================================================================
# Quality control
# =============================================================================


def record_qc_check(
    order_id: int,
    *,
    clarity: Union[Clarity, str],
    odor_match: Union[OdorMatch, str],
    result: Union[QCResult, str],
    appearance: Optional[str] = None,
    density: Optional[Number] = None,
    refractive_index: Optional[Number] = None,
    stability_notes: Optional[str] = None,
    checked_by_user_id: Optional[int] = None,
    session=None,
) -> Dict[str, Any]:
    """
    Record a QC check for an order in QC.

    The latest check decides whether the order may move on: a "rejected"
    or "rework" result blocks PACKAGING and DONE until a later check is
    approved.

    Raises:
        OrderNotFoundError, OrderClosedError, OrderAlreadyCompletedError
        ValidationError: If the order is not in QC or a value is invalid
    """

    def work(session):
        order = _load_order(session, order_id, for_update=True)
        _ensure_editable(order, "QC checks")
        if order.order_status is not OrderStatus.QC:
            raise ValidationError(
                [f"QC checks can only be recorded in qc (currently {order.status})"]
            )
        qc_result = parse_enum(QCResult, result, "QC result")
        check = QCCheck(
            appearance=appearance,
            clarity=parse_enum(Clarity, clarity, "clarity").value,
            density=optional_decimal(density, "density"),
            refractive_index=optional_decimal(refractive_index, "refractive_index"),
            odor_match=parse_enum(OdorMatch, odor_match, "odor match").value,
            stability_notes=stability_notes,
            result=qc_result.value,
            checked_by_user_id=checked_by_user_id,
            checked_at=utc_now(),
        )
        order.qc_checks.append(check)
        session.flush()
        log_operation(
            logger,
            operation="record_qc_check",
            outcome=qc_result.value,
            level=logging.INFO if qc_result is QCResult.APPROVED else logging.WARNING,
            order_id=order_id,
        )
        return check.to_dict()

    return _run_order_operation(order_id, work, session)


# =============================================================================
# Availability
# =============================================================================


def _consumption_plan(order: ManufacturingOrder, catalog: ProductCatalog):
    """
    Quantities the order consumes on completion, merged per product.

    Uses the measured output where recorded, else the expected output.

    Returns:
        OrderedDict product_id -> {"needed", "sources"}
    """
    yield_snapshot = formula_cost_service.yield_for_order(order)
    plan: "OrderedDict[int, Dict[str, Any]]" = OrderedDict()

    def add(product_id, quantity, source):
        quantity = quantize_quantity(quantity)
        if quantity <= 0:
            return
        entry = plan.setdefault(product_id, {"needed": Decimal("0"), "sources": []})
        entry["needed"] += quantity
        if source not in entry["sources"]:
            entry["sources"].append(source)

    for product_id, quantity in formula_cost_service.resolve_formula_quantities(
        order.formula_lines, yield_snapshot.produced_ml, catalog
    ):
        add(product_id, quantity, "formula")
    for product_id, quantity in formula_cost_service.resolve_packaging_quantities(
        order.packaging_items, yield_snapshot.produced_units
    ):
        add(product_id, quantity, "packaging")
    return plan


def check_materials_availability(order_id: int, session=None) -> Dict[str, Any]:
    """
    Dry run of completion: what the order needs against current stock.

    Args:
        order_id: Order to check
        session: Optional database session

    Returns:
        Dict with keys:
            - "order_id" (int)
            - "can_complete" (bool): True if no requirement is short
            - "requirements" (List[Dict]): product_id, sources, needed,
              available, shortage

    Raises:
        OrderNotFoundError: If the order does not exist
        UnsupportedUnitError / ProductNotFoundInCatalog: For bad materials
    """
    if session is not None:
        return _check_materials_availability_impl(order_id, session)
    with session_scope() as session:
        return _check_materials_availability_impl(order_id, session)


def _check_materials_availability_impl(order_id: int, session) -> Dict[str, Any]:
    order = _load_order(session, order_id)
    plan = _consumption_plan(order, ProductCatalog(session))

    requirements = []
    for product_id, entry in plan.items():
        available = inventory_ledger_service.read(order.branch_id, product_id, session=session)
        shortage = max(entry["needed"] - available, Decimal("0"))
        requirements.append(
            {
                "product_id": product_id,
                "sources": entry["sources"],
                "needed": entry["needed"],
                "available": available,
                "shortage": shortage,
            }
        )

    return {
        "order_id": order_id,
        "can_complete": all(r["shortage"] == 0 for r in requirements),
        "requirements": requirements,
    }


# =============================================================================
# Status machine
# =============================================================================


def _validate_transition(order: ManufacturingOrder, target: OrderStatus, catalog) -> None:
    current = order.order_status

    if current is OrderStatus.CLOSED:
        raise OrderClosedError(order.id)
    if current is OrderStatus.DONE:
        if target is OrderStatus.DONE:
            raise OrderAlreadyCompletedError(order.id)
        if target is not OrderStatus.CLOSED:
            raise InvalidStatusTransitionError(
                current.value, target.value, "a completed order can only be closed"
            )
        return

    if target is current:
        raise InvalidStatusTransitionError(current.value, target.value, "order is already there")
    if target is OrderStatus.DRAFT:
        raise InvalidStatusTransitionError(
            current.value, target.value, "an order cannot return to draft"
        )
    if target is OrderStatus.CLOSED:
        raise InvalidStatusTransitionError(
            current.value, target.value, "only completed orders can be closed"
        )

    if current is OrderStatus.DRAFT:
        formula_cost_service.validate_formula(order.formula_lines)
        # Every material must exist and be stocked in a convertible unit
        formula_cost_service.resolve_formula_quantities(
            order.formula_lines, order.expected_ml or Decimal("0"), catalog
        )

    if target in QC_GATED_STATUSES:
        latest = order.latest_qc_check
        if latest is not None and latest.result in FAILING_QC_RESULTS:
            raise QCNotApprovedError(order.id, latest.result)


def advance_status(
    order_id: int,
    new_status: Union[OrderStatus, str],
    *,
    user_id: Optional[int] = None,
    allow_negative: bool = False,
    session=None,
) -> Dict[str, Any]:
    """
    Move an order to another status.

    Rules:
    - any status before DONE may move to any other status before DONE,
      except back to DRAFT
    - leaving DRAFT validates the formula (sum 100 +/- 0.01, materials
      convertible)
    - PACKAGING and DONE require the latest QC check, if any, to be approved
    - entering DONE completes the order (see complete_order)
    - DONE may only move to CLOSED; CLOSED is terminal

    Args:
        order_id: Order to move
        new_status: Target OrderStatus
        user_id: User performing the transition (recorded on completion)
        allow_negative: Completion only; allow stock to go negative
        session: Optional database session

    Returns:
        Dict of the updated order; for DONE, the completion result

    Raises:
        OrderNotFoundError, InvalidStatusTransitionError, QCNotApprovedError,
        FormulaPercentageError, OrderClosedError, OrderAlreadyCompletedError,
        InsufficientStockError (DONE)
    """
    target = parse_enum(OrderStatus, new_status, "status")
    if target is OrderStatus.DONE:
        return complete_order(
            order_id, user_id=user_id, allow_negative=allow_negative, session=session
        )

    def work(session):
        order = _load_order(session, order_id, for_update=True)
        previous = order.order_status
        _validate_transition(order, target, ProductCatalog(session))

        order.status = target.value
        if previous is OrderStatus.DRAFT and order.manufacturing_date is None:
            order.manufacturing_date = utc_now()
        if target is OrderStatus.CLOSED:
            order.closed_at = utc_now()
        session.flush()

        log_operation(
            logger,
            operation="advance_status",
            outcome="success",
            order_id=order_id,
            from_status=previous.value,
            to_status=target.value,
        )
        return _order_result(order)

    return _run_order_operation(order_id, work, session)


def _consumption_keys(order_id: int, session) -> List[tuple]:
    def read_keys(session):
        order = _load_order(session, order_id)
        product_ids = [line.material_id for line in order.formula_lines]
        product_ids += [item.product_id for item in order.packaging_items]
        return [(order.branch_id, product_id) for product_id in product_ids]

    if session is not None:
        return read_keys(session)
    with session_scope() as session:
        return read_keys(session)


def complete_order(
    order_id: int,
    *,
    user_id: Optional[int] = None,
    allow_negative: bool = False,
    session=None,
) -> Dict[str, Any]:
    """
    Move an order to DONE, consuming its materials exactly once.

    All of the following happen in one transaction; any failure rolls
    back every part:
    - claim: UPDATE ... SET completed_at WHERE completed_at IS NULL; if no
      row was claimed another attempt already completed the order
    - finalize the yield/cost snapshot on actual_ml/actual_units where
      recorded, else on the expected figures
    - deduct formula materials and packaging (qty per unit x units
      produced) from the order's branch, one adjustment log entry per
      consumed product

    Args:
        order_id: Order to complete
        user_id: User completing the order
        allow_negative: Explicit override letting consumption drive stock
            below zero (logged as a warning)
        session: Optional database session

    Returns:
        Dict with "order", "yield", "cost" and "deductions"

    Raises:
        OrderAlreadyCompletedError: If the order was already completed
        OrderClosedError: If the order is CLOSED
        OrderNotFoundError, InvalidStatusTransitionError, QCNotApprovedError,
        FormulaPercentageError, UnsupportedUnitError, DivisionByZeroError
        InsufficientStockError: If a material is short and allow_negative
            is False; nothing is deducted
    """

    def work(session):
        order = _load_order(session, order_id, for_update=True)
        if order.order_status is OrderStatus.CLOSED:
            raise OrderClosedError(order_id)
        if order.completed_at is not None:
            raise OrderAlreadyCompletedError(order_id)

        catalog = ProductCatalog(session)
        _validate_transition(order, OrderStatus.DONE, catalog)

        completed_at = utc_now()
        claimed = (
            session.query(ManufacturingOrder)
            .filter(
                ManufacturingOrder.id == order_id,
                ManufacturingOrder.completed_at.is_(None),
            )
            .update(
                {"completed_at": completed_at, "status": OrderStatus.DONE.value},
                synchronize_session=False,
            )
        )
        if claimed != 1:
            log_operation(
                logger,
                operation="complete_order",
                outcome="already_completed",
                level=logging.WARNING,
                order_id=order_id,
            )
            raise OrderAlreadyCompletedError(order_id)
        session.refresh(order)

        yield_snapshot, cost_snapshot = _refresh_snapshot(order, session, finalize=True)
        if order.manufacturing_date is None:
            order.manufacturing_date = completed_at

        plan = _consumption_plan(order, catalog)
        deductions = []
        if plan:
            deductions = inventory_ledger_service.apply_deductions(
                order.branch_id,
                [(product_id, entry["needed"]) for product_id, entry in plan.items()],
                allow_negative=allow_negative,
                source=MovementSource.MANUFACTURING,
                reference=order.order_number,
                user_id=user_id,
                notes=f"Manufacturing order {order.order_number}",
                audit_reason=AdjustmentReason.MANUFACTURING_CONSUMPTION,
                session=session,
                operation="complete_order",
            )
        session.flush()

        return {
            "order": _order_result(order),
            "yield": yield_snapshot.to_dict(),
            "cost": cost_snapshot.to_dict(),
            "deductions": deductions,
        }

    with order_locks.hold(order_id):
        keys = _consumption_keys(order_id, session)
        with ledger_locks.hold(*keys):
            result = run_in_transaction("complete_order", work, session)

    log_operation(
        logger,
        operation="complete_order",
        outcome="success",
        order_id=order_id,
        order_number=result["order"]["order_number"],
        deduction_count=len(result["deductions"]),
        allow_negative=allow_negative,
    )
    return result
