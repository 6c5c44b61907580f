# Overview: Stock ledger (append-only movements) and derived warehouse snapshots.

"""
Inventory Ledger Service

WHY: Stock must be explainable. Every change to a warehouse's stock count is
one signed StockMovement row; WarehouseInventory.stock_count is a derived
snapshot that always equals the sum of those rows for its
(warehouse, product, variant) key.

DESIGN PRINCIPLES:
- apply_movement() is the ONLY code that changes stock_count
- Movements are never updated or deleted; corrections are new movements
- The negative-stock guard is explicit: a movement that would take
  stock_count below zero raises InsufficientStockError before anything
  is written (the CHECK constraint is only a backstop)
- reserved_stock is a hold on part of stock_count. reserve_stock() and
  release_stock() change only the hold; outbound movements may use
  available = stock_count - reserved_stock and no more
- Composite operations (transfer batch, GRN completion, order placement)
  call apply_movement() several times inside ONE run_atomic() unit, so a
  failing line leaves zero movements behind

SIGN CONVENTION:
- ADJUSTMENT_IN, TRANSFER_IN, RECEIPT, RETURN       quantity > 0
- ADJUSTMENT_OUT, TRANSFER_OUT                      quantity < 0
- SALE                                              quantity < 0, or > 0 when
                                                    reversing a sale
                                                    (reference_type="order_cancellation")
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time as dt_time, timedelta

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import AuthorizationError, InsufficientStockError, ValidationError
from ..extensions import db
from ..models import StockMovement, WarehouseInventory
from ..models.auth import ROLE_WAREHOUSE_MANAGER, STAFF_ROLES
from ..validation import parse_items, parse_non_negative_int, parse_optional_int, parse_positive_int
from .catalog_service import get_active_warehouse, managed_warehouse_ids, resolve_variant
from .concurrency import lock_for_update, run_atomic
from .tenant_service import scoped_query


MOVEMENT_ADJUSTMENT_IN = "ADJUSTMENT_IN"
MOVEMENT_ADJUSTMENT_OUT = "ADJUSTMENT_OUT"
MOVEMENT_TRANSFER_IN = "TRANSFER_IN"
MOVEMENT_TRANSFER_OUT = "TRANSFER_OUT"
MOVEMENT_SALE = "SALE"
MOVEMENT_RETURN = "RETURN"
MOVEMENT_RECEIPT = "RECEIPT"

MOVEMENT_TYPES = (
    MOVEMENT_ADJUSTMENT_IN,
    MOVEMENT_ADJUSTMENT_OUT,
    MOVEMENT_TRANSFER_IN,
    MOVEMENT_TRANSFER_OUT,
    MOVEMENT_SALE,
    MOVEMENT_RETURN,
    MOVEMENT_RECEIPT,
)

INBOUND_TYPES = {MOVEMENT_ADJUSTMENT_IN, MOVEMENT_TRANSFER_IN, MOVEMENT_RECEIPT, MOVEMENT_RETURN}
OUTBOUND_TYPES = {MOVEMENT_ADJUSTMENT_OUT, MOVEMENT_TRANSFER_OUT}

REF_ADJUSTMENT = "adjustment"
REF_TRANSFER = "transfer"
REF_GOODS_RECEIPT = "goods_receipt"
REF_ORDER = "order"
REF_ORDER_CANCELLATION = "order_cancellation"
REF_RETURN_ORDER = "return_order"

NO_CHANGE_MESSAGE = "Stock already matches physical count"

MAX_PAGE_SIZE = 500


# =============================================================================
# AUTHORIZATION
# =============================================================================

def check_warehouse_scope(user, *warehouse_ids: int) -> None:
    """
    Warehouse managers may only mutate stock in warehouses assigned to them.

    Applies when warehouse_manager is the user's ONLY staff role; admins and
    other staff are not warehouse-scoped. user=None (CLI, internal jobs)
    is not checked.
    """
    if user is None:
        return
    staff_roles = {r for r in user.role_names if r in STAFF_ROLES}
    if staff_roles != {ROLE_WAREHOUSE_MANAGER}:
        return
    allowed = managed_warehouse_ids(user.id)
    denied = sorted({w for w in warehouse_ids if w not in allowed})
    if denied:
        raise AuthorizationError(
            f"Not authorized to modify stock in warehouse(s): {', '.join(str(w) for w in denied)}"
        )


# =============================================================================
# CORE MUTATOR
# =============================================================================

def _check_sign(movement_type: str, quantity: int, reference_type: str | None) -> None:
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown movement_type: {movement_type}")
    if quantity == 0:
        raise ValidationError("Stock movement quantity cannot be zero")

    if movement_type in INBOUND_TYPES and quantity < 0:
        raise ValidationError(f"{movement_type} movements must be positive")
    if movement_type in OUTBOUND_TYPES and quantity > 0:
        raise ValidationError(f"{movement_type} movements must be negative")
    if movement_type == MOVEMENT_SALE:
        reversal = reference_type == REF_ORDER_CANCELLATION
        if reversal and quantity < 0:
            raise ValidationError("Sale reversals must be positive")
        if not reversal and quantity > 0:
            raise ValidationError("SALE movements must be negative")


def _snapshot_query(company_id: int, warehouse_id: int, product_id: int, variant_id: int):
    return scoped_query(WarehouseInventory, company_id).filter(
        WarehouseInventory.warehouse_id == warehouse_id,
        WarehouseInventory.product_id == product_id,
        WarehouseInventory.variant_id == variant_id,
    )


def _get_or_create_snapshot(company_id: int, warehouse_id: int, product_id: int, variant_id: int) -> WarehouseInventory:
    query = _snapshot_query(company_id, warehouse_id, product_id, variant_id)
    snapshot = lock_for_update(query).first()
    if snapshot is not None:
        return snapshot

    try:
        with db.session.begin_nested():
            snapshot = WarehouseInventory(
                company_id=company_id,
                warehouse_id=warehouse_id,
                product_id=product_id,
                variant_id=variant_id,
                stock_count=0,
                reserved_stock=0,
            )
            db.session.add(snapshot)
    except IntegrityError:
        # Created concurrently; use the winner's row
        snapshot = lock_for_update(query).one()
    return snapshot


def get_stock_count(company_id: int, warehouse_id: int, product_id: int, variant_id: int) -> int:
    snapshot = _snapshot_query(company_id, warehouse_id, product_id, variant_id).first()
    return snapshot.stock_count if snapshot else 0


def get_available_stock(company_id: int, warehouse_id: int, product_id: int, variant_id: int) -> int:
    snapshot = _snapshot_query(company_id, warehouse_id, product_id, variant_id).first()
    return snapshot.available_stock if snapshot else 0


def apply_movement(
    company_id: int,
    warehouse_id: int,
    product_id: int,
    variant_id: int,
    movement_type: str,
    quantity: int,
    *,
    reference_type: str | None = None,
    reference_id=None,
    notes: str | None = None,
    user_id: int | None = None,
) -> StockMovement:
    """
    Append one StockMovement and update the matching snapshot.

    Must run inside the caller's unit of work (run_atomic); flushes only.

    Raises:
        ValidationError: unknown type, zero quantity, or wrong sign
        InsufficientStockError: the movement would make stock_count negative
            or take it below reserved_stock
    """
    _check_sign(movement_type, quantity, reference_type)

    snapshot = _get_or_create_snapshot(company_id, warehouse_id, product_id, variant_id)
    new_count = snapshot.stock_count + quantity
    # Outbound movements may not dip into reserved stock
    if new_count < 0 or (quantity < 0 and new_count < snapshot.reserved_stock):
        raise InsufficientStockError(
            warehouse_id=warehouse_id,
            product_id=product_id,
            variant_id=variant_id,
            available=snapshot.available_stock,
            requested=-quantity,
        )

    movement = StockMovement(
        company_id=company_id,
        warehouse_id=warehouse_id,
        product_id=product_id,
        variant_id=variant_id,
        movement_type=movement_type,
        quantity=quantity,
        reference_type=reference_type,
        reference_id=str(reference_id) if reference_id is not None else None,
        notes=notes,
        created_by_user_id=user_id,
    )
    db.session.add(movement)
    snapshot.stock_count = new_count
    db.session.flush()
    return movement


# =============================================================================
# ADJUSTMENTS
# =============================================================================

def adjust_stock(
    company_id: int,
    *,
    warehouse_id,
    product_id,
    variant_id=None,
    physical_quantity,
    reason: str | None = None,
    user=None,
) -> dict:
    """
    Set stock to a physically counted quantity.

    difference = physical - system. One ADJUSTMENT_IN/OUT movement of
    |difference| is appended; difference 0 is a no-op that writes nothing.

    Returns {movement_id, difference, new_stock_count[, message]}.
    """
    physical_quantity = parse_non_negative_int(physical_quantity, "physical_quantity")
    warehouse_id = parse_positive_int(warehouse_id, "warehouse_id")
    product_id = parse_positive_int(product_id, "product_id")
    variant_id = parse_optional_int(variant_id, "variant_id")
    check_warehouse_scope(user, warehouse_id)

    def _op():
        warehouse = get_active_warehouse(company_id, warehouse_id)
        variant = resolve_variant(company_id, product_id, variant_id)

        current = get_stock_count(company_id, warehouse.id, variant.product_id, variant.id)
        difference = physical_quantity - current
        if difference == 0:
            return {
                "movement_id": None,
                "difference": 0,
                "new_stock_count": current,
                "message": NO_CHANGE_MESSAGE,
            }

        movement = apply_movement(
            company_id,
            warehouse.id,
            variant.product_id,
            variant.id,
            MOVEMENT_ADJUSTMENT_IN if difference > 0 else MOVEMENT_ADJUSTMENT_OUT,
            difference,
            reference_type=REF_ADJUSTMENT,
            notes=reason or "Stock adjustment",
            user_id=user.id if user else None,
        )
        return {
            "movement_id": movement.id,
            "difference": difference,
            "new_stock_count": physical_quantity,
        }

    result = run_atomic(_op)
    if result["movement_id"]:
        current_app.logger.info(
            "Stock adjusted: company_id=%s warehouse_id=%s product_id=%s difference=%s",
            company_id, warehouse_id, product_id, result["difference"],
        )
    return result


# =============================================================================
# RESERVATIONS
# =============================================================================

def _parse_hold(warehouse_id, product_id, variant_id, quantity):
    return (
        parse_positive_int(warehouse_id, "warehouse_id"),
        parse_positive_int(product_id, "product_id"),
        parse_optional_int(variant_id, "variant_id"),
        parse_positive_int(quantity, "quantity"),
    )


def reserve_stock(
    company_id: int,
    *,
    warehouse_id,
    product_id,
    variant_id=None,
    quantity,
    user=None,
) -> WarehouseInventory:
    """
    Put a hold on available stock.

    No movement is written: stock_count is unchanged, reserved_stock grows
    by quantity. Outbound movements can no longer use the held units until
    they are released.

    Raises:
        InsufficientStockError: quantity > stock_count - reserved_stock
    """
    warehouse_id, product_id, variant_id, quantity = _parse_hold(warehouse_id, product_id, variant_id, quantity)
    check_warehouse_scope(user, warehouse_id)

    def _op():
        warehouse = get_active_warehouse(company_id, warehouse_id)
        variant = resolve_variant(company_id, product_id, variant_id)
        snapshot = _get_or_create_snapshot(company_id, warehouse.id, variant.product_id, variant.id)
        if quantity > snapshot.available_stock:
            raise InsufficientStockError(
                warehouse_id=warehouse.id,
                product_id=variant.product_id,
                variant_id=variant.id,
                available=snapshot.available_stock,
                requested=quantity,
            )
        snapshot.reserved_stock += quantity
        db.session.flush()
        return snapshot

    snapshot = run_atomic(_op)
    current_app.logger.info(
        "Stock reserved: company_id=%s warehouse_id=%s variant_id=%s quantity=%s reserved=%s",
        company_id, snapshot.warehouse_id, snapshot.variant_id, quantity, snapshot.reserved_stock,
    )
    return snapshot


def release_stock(
    company_id: int,
    *,
    warehouse_id,
    product_id,
    variant_id=None,
    quantity,
    user=None,
) -> WarehouseInventory:
    """
    Release a hold. Releasing more than is reserved clears the hold.
    """
    warehouse_id, product_id, variant_id, quantity = _parse_hold(warehouse_id, product_id, variant_id, quantity)
    check_warehouse_scope(user, warehouse_id)

    def _op():
        warehouse = get_active_warehouse(company_id, warehouse_id)
        variant = resolve_variant(company_id, product_id, variant_id)
        snapshot = _get_or_create_snapshot(company_id, warehouse.id, variant.product_id, variant.id)
        snapshot.reserved_stock = max(0, snapshot.reserved_stock - quantity)
        db.session.flush()
        return snapshot

    snapshot = run_atomic(_op)
    current_app.logger.info(
        "Stock released: company_id=%s warehouse_id=%s variant_id=%s quantity=%s reserved=%s",
        company_id, snapshot.warehouse_id, snapshot.variant_id, quantity, snapshot.reserved_stock,
    )
    return snapshot


# =============================================================================
# TRANSFERS
# =============================================================================

def transfer_stock(
    company_id: int,
    *,
    source_warehouse_id,
    destination_warehouse_id,
    items,
    notes: str | None = None,
    user=None,
) -> dict:
    """
    Move stock between two warehouses of the same company.

    All-or-nothing: every line gets a TRANSFER_OUT at the source and a
    TRANSFER_IN at the destination sharing one transfer_id (reference_id).
    If any line lacks source stock, nothing is written for the batch.
    """
    source_id = parse_positive_int(source_warehouse_id, "source_warehouse_id")
    destination_id = parse_positive_int(destination_warehouse_id, "destination_warehouse_id")
    if source_id == destination_id:
        raise ValidationError("Source and destination warehouses must be different")

    lines = []
    for index, raw in enumerate(parse_items(items)):
        lines.append((
            parse_positive_int(raw.get("product_id"), f"items[{index}].product_id"),
            parse_optional_int(raw.get("variant_id"), f"items[{index}].variant_id"),
            parse_positive_int(raw.get("quantity"), f"items[{index}].quantity"),
        ))
    check_warehouse_scope(user, source_id, destination_id)

    transfer_id = str(uuid.uuid4())

    def _op():
        source = get_active_warehouse(company_id, source_id, field="source_warehouse_id")
        destination = get_active_warehouse(company_id, destination_id, field="destination_warehouse_id")
        user_id = user.id if user else None
        note = notes or f"Transfer {source.code} -> {destination.code}"

        results = []
        for index, (product_id, variant_id, quantity) in enumerate(lines):
            variant = resolve_variant(company_id, product_id, variant_id, field=f"items[{index}]")

            available = get_available_stock(company_id, source.id, variant.product_id, variant.id)
            if available < quantity:
                raise InsufficientStockError(
                    warehouse_id=source.id,
                    product_id=variant.product_id,
                    variant_id=variant.id,
                    available=available,
                    requested=quantity,
                )

            out_movement = apply_movement(
                company_id, source.id, variant.product_id, variant.id,
                MOVEMENT_TRANSFER_OUT, -quantity,
                reference_type=REF_TRANSFER, reference_id=transfer_id,
                notes=note, user_id=user_id,
            )
            in_movement = apply_movement(
                company_id, destination.id, variant.product_id, variant.id,
                MOVEMENT_TRANSFER_IN, quantity,
                reference_type=REF_TRANSFER, reference_id=transfer_id,
                notes=note, user_id=user_id,
            )
            results.append({
                "product_id": variant.product_id,
                "variant_id": variant.id,
                "quantity": quantity,
                "transfer_out_id": out_movement.id,
                "transfer_in_id": in_movement.id,
            })
        return results

    movements = run_atomic(_op)
    current_app.logger.info(
        "Stock transferred: company_id=%s transfer_id=%s lines=%d",
        company_id, transfer_id, len(movements),
    )
    return {
        "transfer_id": transfer_id,
        "source_warehouse_id": source_id,
        "destination_warehouse_id": destination_id,
        "movements": movements,
    }


# =============================================================================
# READ SIDE
# =============================================================================

def _as_datetime(value, *, end_of_day: bool = False) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        if end_of_day:
            return datetime.combine(value, dt_time.min) + timedelta(days=1)
        return datetime.combine(value, dt_time.min)
    raise ValidationError("Invalid date filter")


def list_movements(
    company_id: int,
    *,
    warehouse_id: int | None = None,
    product_id: int | None = None,
    variant_id: int | None = None,
    movement_type: str | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
    date_from=None,
    date_to=None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[StockMovement], int]:
    """
    Tenant-scoped ledger listing, newest first.

    date_to given as a date is inclusive of that whole day.
    Returns (movements, total_matching).
    """
    if movement_type is not None and movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"movement_type must be one of: {', '.join(MOVEMENT_TYPES)}")

    query = scoped_query(StockMovement, company_id)
    if warehouse_id is not None:
        query = query.filter(StockMovement.warehouse_id == warehouse_id)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if variant_id is not None:
        query = query.filter(StockMovement.variant_id == variant_id)
    if movement_type:
        query = query.filter(StockMovement.movement_type == movement_type)
    if reference_type:
        query = query.filter(StockMovement.reference_type == reference_type)
    if reference_id is not None:
        query = query.filter(StockMovement.reference_id == str(reference_id))

    start = _as_datetime(date_from)
    end = _as_datetime(date_to, end_of_day=True)
    if start is not None:
        query = query.filter(StockMovement.created_at >= start)
    if end is not None:
        if isinstance(date_to, datetime):
            query = query.filter(StockMovement.created_at <= end)
        else:
            query = query.filter(StockMovement.created_at < end)

    total = query.count()
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    offset = max(0, offset)
    rows = (
        query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rows, total


def get_stock_levels(
    company_id: int,
    *,
    warehouse_id: int | None = None,
    product_id: int | None = None,
) -> list[WarehouseInventory]:
    query = scoped_query(WarehouseInventory, company_id)
    if warehouse_id is not None:
        query = query.filter(WarehouseInventory.warehouse_id == warehouse_id)
    if product_id is not None:
        query = query.filter(WarehouseInventory.product_id == product_id)
    return query.order_by(
        WarehouseInventory.warehouse_id,
        WarehouseInventory.product_id,
        WarehouseInventory.variant_id,
    ).all()


def ledger_sum(company_id: int, warehouse_id: int, product_id: int, variant_id: int) -> int:
    """Sum of signed movement quantities for one key (0 if none)."""
    total = (
        db.session.query(func.coalesce(func.sum(StockMovement.quantity), 0))
        .filter(
            StockMovement.company_id == company_id,
            StockMovement.warehouse_id == warehouse_id,
            StockMovement.product_id == product_id,
            StockMovement.variant_id == variant_id,
        )
        .scalar()
    )
    return int(total or 0)


def _ledger_totals(company_id: int) -> dict[tuple[int, int, int], int]:
    rows = (
        db.session.query(
            StockMovement.warehouse_id,
            StockMovement.product_id,
            StockMovement.variant_id,
            func.sum(StockMovement.quantity),
        )
        .filter(StockMovement.company_id == company_id)
        .group_by(StockMovement.warehouse_id, StockMovement.product_id, StockMovement.variant_id)
        .all()
    )
    return {(w, p, v): int(total or 0) for w, p, v, total in rows}


def verify_ledger(company_id: int) -> list[dict]:
    """
    Compare every snapshot with its ledger sum.

    Returns one entry per mismatching key (empty list = consistent).
    Keys with movements but no snapshot row are reported too.
    """
    totals = _ledger_totals(company_id)
    snapshots = {
        (s.warehouse_id, s.product_id, s.variant_id): s.stock_count
        for s in scoped_query(WarehouseInventory, company_id).all()
    }

    mismatches = []
    for key in sorted(set(totals) | set(snapshots)):
        expected = totals.get(key, 0)
        actual = snapshots.get(key, 0)
        if expected != actual:
            warehouse_id, product_id, variant_id = key
            mismatches.append({
                "warehouse_id": warehouse_id,
                "product_id": product_id,
                "variant_id": variant_id,
                "stock_count": actual,
                "ledger_sum": expected,
                "difference": actual - expected,
            })
    return mismatches


def rebuild_snapshots(company_id: int) -> int:
    """
    Recompute every snapshot from the ledger. Returns the number of rows changed.

    The ledger is authoritative; this never writes movements.
    """
    def _op():
        totals = _ledger_totals(company_id)
        changed = 0
        for snapshot in lock_for_update(scoped_query(WarehouseInventory, company_id)).all():
            key = (snapshot.warehouse_id, snapshot.product_id, snapshot.variant_id)
            expected = totals.pop(key, 0)
            if snapshot.stock_count != expected:
                snapshot.stock_count = expected
                changed += 1
        for (warehouse_id, product_id, variant_id), expected in totals.items():
            db.session.add(WarehouseInventory(
                company_id=company_id,
                warehouse_id=warehouse_id,
                product_id=product_id,
                variant_id=variant_id,
                stock_count=expected,
                reserved_stock=0,
            ))
            changed += 1
        db.session.flush()
        return changed

    changed = run_atomic(_op)
    if changed:
        current_app.logger.warning("Rebuilt %d inventory snapshot(s) for company_id=%s", changed, company_id)
    return changed
