# Overview: Sales order placement, lazy grace-window status, transitions and cancellation.

"""
Sales Order Service

LIFECYCLE:
1. pending     order placed; stock already decremented (SALE per line)
2. processing  automatically once the grace window has elapsed
3. shipped
4. delivered
   cancelled   only from pending/processing AND inside the grace window;
               emits a compensating SALE(+qty) per line

GRACE WINDOW: there is no background job. effective_status() compares
created_at with now; reads and transitions persist the pending ->
processing change lazily, and `flask orders advance` persists it in bulk.

DESIGN PRINCIPLES:
- Placing an order is ONE unit: order + items + every SALE movement.
  A single short line aborts the whole order
- ecommerce orders must claim a succeeded payment intent for the exact total
- Return orders (order_type="return") never go through these transitions
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from ..errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Order, OrderItem
from ..models.auth import ROLE_ADMIN, ROLE_SALES, STAFF_ROLES
from ..models.orders import ORDER_SOURCES, ORDER_TYPE_RETURN, ORDER_TYPE_SALES, ORDER_TYPES
from ..time_utils import elapsed_since, utcnow
from ..validation import (
    parse_choice,
    parse_items,
    parse_money_cents,
    parse_optional_int,
    parse_optional_str,
    parse_positive_int,
)
from .catalog_service import get_active_warehouse, resolve_variant
from .concurrency import run_atomic
from .document_service import DOC_SALES_ORDER, next_document_number
from .inventory_service import (
    MOVEMENT_SALE,
    REF_ORDER,
    REF_ORDER_CANCELLATION,
    apply_movement,
    check_warehouse_scope,
)
from .payment_service import claim_intent_for_order
from .tenant_service import get_scoped_or_404, scoped_query


ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_PROCESSING = "processing"
ORDER_STATUS_SHIPPED = "shipped"
ORDER_STATUS_DELIVERED = "delivered"
ORDER_STATUS_CANCELLED = "cancelled"

ORDER_STATUSES = (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_CANCELLED,
)

STATUS_TRANSITIONS = {
    ORDER_STATUS_PENDING: {ORDER_STATUS_PROCESSING},
    ORDER_STATUS_PROCESSING: {ORDER_STATUS_SHIPPED},
    ORDER_STATUS_SHIPPED: {ORDER_STATUS_DELIVERED},
}

CANCELLABLE_STATUSES = {ORDER_STATUS_PENDING, ORDER_STATUS_PROCESSING}
CANCEL_STAFF_ROLES = (ROLE_ADMIN, ROLE_SALES)

SOURCE_ECOMMERCE = "ecommerce"


def grace_window() -> timedelta:
    return timedelta(minutes=current_app.config.get("ORDER_CANCEL_GRACE_MINUTES", 5))


def is_staff(user) -> bool:
    return user is not None and user.has_any_role(*STAFF_ROLES)


def effective_status(order: Order, now: datetime | None = None) -> str:
    """A pending sales order older than the grace window reads as processing."""
    if (
        order.order_type == ORDER_TYPE_SALES
        and order.status == ORDER_STATUS_PENDING
        and elapsed_since(order.created_at, now) > grace_window()
    ):
        return ORDER_STATUS_PROCESSING
    return order.status


def _sync_status(order: Order, now: datetime | None = None) -> bool:
    status = effective_status(order, now)
    if status != order.status:
        order.status = status
        return True
    return False


def _visible_to(order: Order, user) -> bool:
    return user is None or is_staff(user) or order.user_id == user.id


# =============================================================================
# PLACEMENT
# =============================================================================

def place_order(
    company_id: int,
    *,
    warehouse_id,
    items,
    order_source: str = "sales",
    customer_name: str | None = None,
    customer_email: str | None = None,
    customer_phone: str | None = None,
    shipping_address: str | None = None,
    notes: str | None = None,
    payment_intent_id: str | None = None,
    user=None,
) -> Order:
    """
    Place a sales order and decrement stock.

    items: [{product_id, variant_id?, quantity > 0, unit_price_cents?}]
    unit_price_cents defaults to the variant price; only staff may
    override it.
    """
    warehouse_id = parse_positive_int(warehouse_id, "warehouse_id")
    order_source = parse_choice(order_source or "sales", "order_source", ORDER_SOURCES)
    staff = is_staff(user)
    if user is not None and not staff and order_source != SOURCE_ECOMMERCE:
        raise AuthorizationError("Customers can only place ecommerce orders")
    if order_source == SOURCE_ECOMMERCE and not payment_intent_id:
        raise ValidationError("payment_intent_id is required for ecommerce orders")

    lines = []
    for index, raw in enumerate(parse_items(items)):
        price = raw.get("unit_price_cents")
        lines.append((
            parse_positive_int(raw.get("product_id"), f"items[{index}].product_id"),
            parse_optional_int(raw.get("variant_id"), f"items[{index}].variant_id"),
            parse_positive_int(raw.get("quantity"), f"items[{index}].quantity"),
            parse_money_cents(price, f"items[{index}].unit_price_cents") if (price is not None and staff) else None,
        ))
    check_warehouse_scope(user, warehouse_id)

    def _op():
        warehouse = get_active_warehouse(company_id, warehouse_id)
        user_id = user.id if user else None

        order = Order(
            company_id=company_id,
            order_number=next_document_number(company_id, DOC_SALES_ORDER),
            order_type=ORDER_TYPE_SALES,
            order_source=order_source,
            status=ORDER_STATUS_PENDING,
            warehouse_id=warehouse.id,
            user_id=user_id,
            customer_name=parse_optional_str(customer_name, "customer_name"),
            customer_email=parse_optional_str(customer_email, "customer_email"),
            customer_phone=parse_optional_str(customer_phone, "customer_phone", max_length=64),
            shipping_address=parse_optional_str(shipping_address, "shipping_address", max_length=2000),
            notes=parse_optional_str(notes, "notes", max_length=2000),
            created_by_user_id=user_id,
            created_at=utcnow(),
        )
        db.session.add(order)
        db.session.flush()

        total = 0
        for index, (product_id, variant_id, quantity, unit_price) in enumerate(lines):
            variant = resolve_variant(company_id, product_id, variant_id, field=f"items[{index}]")
            if not variant.is_active or not variant.product.is_active:
                raise ValidationError(f"items[{index}]: product is not available")
            price = variant.price_cents if unit_price is None else unit_price
            subtotal = quantity * price
            total += subtotal

            movement = apply_movement(
                company_id,
                warehouse.id,
                variant.product_id,
                variant.id,
                MOVEMENT_SALE,
                -quantity,
                reference_type=REF_ORDER,
                reference_id=order.id,
                notes=f"Order {order.order_number}",
                user_id=user_id,
            )
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=variant.product_id,
                variant_id=variant.id,
                quantity=quantity,
                unit_price_cents=price,
                subtotal_cents=subtotal,
                stock_movement_id=movement.id,
            ))

        order.total_cents = total
        if order_source == SOURCE_ECOMMERCE:
            intent = claim_intent_for_order(company_id, payment_intent_id, amount_cents=total, user_id=user_id)
            intent.order_id = order.id
        db.session.flush()
        return order

    order = run_atomic(_op)
    current_app.logger.info(
        "Order %s placed (company_id=%s, source=%s, total=%s)",
        order.order_number, company_id, order.order_source, order.total_cents,
    )
    return order


# =============================================================================
# READ SIDE
# =============================================================================

def _persist_lazy_statuses(orders: list[Order], now: datetime | None = None) -> None:
    changed = [o for o in orders if _sync_status(o, now)]
    if changed:
        db.session.commit()


def get_order(company_id: int, order_id, *, user=None) -> Order:
    """Tenant-scoped order; customers only see their own orders."""
    order = get_scoped_or_404(Order, order_id, company_id, label="Order")
    if not _visible_to(order, user):
        raise NotFoundError("Order not found")
    _persist_lazy_statuses([order])
    return order


def list_orders(
    company_id: int,
    *,
    user=None,
    status: str | None = None,
    order_type: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Order], int]:
    query = scoped_query(Order, company_id)
    if user is not None and not is_staff(user):
        query = query.filter(Order.user_id == user.id)
    if order_type:
        query = query.filter(Order.order_type == parse_choice(order_type, "order_type", ORDER_TYPES))

    orders_needing_sync = query.filter(Order.status == ORDER_STATUS_PENDING).all()
    _persist_lazy_statuses(orders_needing_sync)

    if status:
        query = query.filter(Order.status == parse_choice(status, "status", ORDER_STATUSES))
    total = query.count()
    rows = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset(max(0, offset))
        .limit(max(1, min(limit, 500)))
        .all()
    )
    return rows, total


# =============================================================================
# TRANSITIONS
# =============================================================================

def update_order_status(company_id: int, order_id, status, *, user=None) -> Order:
    """
    Forward-only fulfilment transitions: pending -> processing -> shipped -> delivered.

    Cancellation is not accepted here (see cancel_order).
    """
    status = parse_choice(status, "status", ORDER_STATUSES)
    if status == ORDER_STATUS_CANCELLED:
        raise ConflictError("Orders are cancelled through the cancel endpoint")

    def _op():
        order = get_scoped_or_404(Order, order_id, company_id, label="Order", lock=True)
        if order.order_type != ORDER_TYPE_SALES:
            raise ConflictError(f"Cannot change the status of a {order.order_type} order here")

        now = utcnow()
        _sync_status(order, now)
        previous = order.status
        if status not in STATUS_TRANSITIONS.get(order.status, set()):
            raise ConflictError(f"Cannot change order from {order.status} to {status}")

        order.status = status
        if status == ORDER_STATUS_SHIPPED:
            order.shipped_at = now
        elif status == ORDER_STATUS_DELIVERED:
            order.delivered_at = now
        db.session.flush()
        return order, previous

    order, previous = run_atomic(_op)
    current_app.logger.info("Order %s: %s -> %s", order.order_number, previous, order.status)
    return order


def cancel_order(company_id: int, order_id, *, user=None, reason: str | None = None, now: datetime | None = None) -> Order:
    """
    Cancel a sales order inside the grace window and release its stock.

    Allowed for the order's owner and for admin/sales staff, only while the
    effective status is pending/processing and elapsed <= grace window.
    An order with a non-cancelled return filed against it cannot be
    cancelled: the return already owns that stock.
    """
    reason = parse_optional_str(reason, "reason", max_length=2000)

    def _op():
        order = get_scoped_or_404(Order, order_id, company_id, label="Order", lock=True)
        if user is not None and not _visible_to(order, user):
            raise NotFoundError("Order not found")
        if user is not None and order.user_id != user.id and not user.has_any_role(*CANCEL_STAFF_ROLES):
            raise AuthorizationError("Only the order owner or sales staff can cancel this order")
        if order.order_type != ORDER_TYPE_SALES:
            raise ConflictError(f"Cannot cancel a {order.order_type} order here")

        current = now or utcnow()
        _sync_status(order, current)
        if order.status not in CANCELLABLE_STATUSES:
            raise ConflictError(f"Cannot cancel an order in {order.status} status")
        if elapsed_since(order.created_at, current) > grace_window():
            raise ConflictError("The cancellation window for this order has passed")

        open_returns = (
            db.session.query(Order.id)
            .filter(
                Order.company_id == company_id,
                Order.original_order_id == order.id,
                Order.order_type == ORDER_TYPE_RETURN,
                Order.status != ORDER_STATUS_CANCELLED,
            )
            .count()
        )
        if open_returns:
            raise ConflictError("Cannot cancel an order that has return orders filed against it")

        user_id = user.id if user else None
        for item in order.items:
            apply_movement(
                company_id,
                order.warehouse_id,
                item.product_id,
                item.variant_id,
                MOVEMENT_SALE,
                item.quantity,
                reference_type=REF_ORDER_CANCELLATION,
                reference_id=order.id,
                notes=f"Cancellation of {order.order_number}",
                user_id=user_id,
            )

        order.status = ORDER_STATUS_CANCELLED
        order.cancelled_at = current
        if reason:
            order.notes = f"{order.notes}\n{reason}" if order.notes else reason
        db.session.flush()
        return order

    order = run_atomic(_op)
    current_app.logger.info("Order %s cancelled; stock released", order.order_number)
    return order


def advance_expired_orders(company_id: int, now: datetime | None = None) -> int:
    """Persist pending -> processing for every order past the grace window."""
    now = now or utcnow()
    cutoff = now - grace_window()

    def _op():
        orders = (
            scoped_query(Order, company_id)
            .filter(
                Order.order_type == ORDER_TYPE_SALES,
                Order.status == ORDER_STATUS_PENDING,
                Order.created_at < cutoff,
            )
            .all()
        )
        for order in orders:
            order.status = ORDER_STATUS_PROCESSING
        db.session.flush()
        return len(orders)

    count = run_atomic(_op)
    if count:
        current_app.logger.info("Advanced %d order(s) to processing (company_id=%s)", count, company_id)
    return count
