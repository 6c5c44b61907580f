# Overview: Return orders against sales orders, capped by what is still returnable.

"""
Return Order Service

WHY: A customer may return part of an order in several goes, but the total
returned per (product, variant) can never exceed what was sold on the
original order.

RETURNABLE QUANTITY:
    remaining(product, variant) = sold on the original
                                  - sum over its non-cancelled return orders

DESIGN PRINCIPLES:
- Only sales orders can be returned (no returns of returns or of purchase
  orders), and not once they are cancelled
- Creating a return NEVER touches stock: goods are inspected first
- Restocking is an explicit, separate step (RETURN movement per line);
  restocked_at makes it happen at most once
- Creating a return bumps the original order's version, so two concurrent
  returns against the same order cannot both consume the same remainder
"""

from __future__ import annotations

from collections import defaultdict

from flask import current_app

from ..errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Order, OrderItem
from ..models.auth import ROLE_ADMIN, ROLE_SALES
from ..models.orders import ORDER_TYPE_RETURN, ORDER_TYPE_SALES
from ..time_utils import utcnow
from ..validation import parse_items, parse_optional_int, parse_optional_str, parse_positive_int
from .catalog_service import get_active_warehouse
from .concurrency import run_atomic
from .document_service import DOC_RETURN_ORDER, next_document_number
from .inventory_service import MOVEMENT_RETURN, REF_RETURN_ORDER, apply_movement, check_warehouse_scope
from .order_service import ORDER_STATUS_CANCELLED, ORDER_STATUS_PENDING, is_staff
from .tenant_service import get_scoped_or_404


RETURN_STAFF_ROLES = (ROLE_ADMIN, ROLE_SALES)


def returnable_quantities(original: Order) -> dict[tuple[int, int], int]:
    """
    Remaining returnable quantity per (product_id, variant_id).

    Cancelled return orders do not consume quantity.
    """
    remaining: dict[tuple[int, int], int] = defaultdict(int)
    for item in original.items:
        remaining[(item.product_id, item.variant_id)] += item.quantity

    returns = (
        db.session.query(Order)
        .filter(
            Order.company_id == original.company_id,
            Order.original_order_id == original.id,
            Order.order_type == ORDER_TYPE_RETURN,
            Order.status != ORDER_STATUS_CANCELLED,
        )
        .all()
    )
    for return_order in returns:
        for item in return_order.items:
            key = (item.product_id, item.variant_id)
            remaining[key] = remaining.get(key, 0) - item.quantity
    return dict(remaining)


def _resolve_key(remaining: dict, product_id: int, variant_id: int | None, index: int) -> tuple[int, int]:
    if variant_id is not None:
        key = (product_id, variant_id)
        if key not in remaining:
            raise ValidationError(
                f"items[{index}]: product {product_id} variant {variant_id} is not on the original order"
            )
        return key

    matches = [k for k in remaining if k[0] == product_id]
    if not matches:
        raise ValidationError(f"items[{index}]: product {product_id} is not on the original order")
    if len(matches) > 1:
        raise ValidationError(f"items[{index}]: variant_id is required (several variants of product {product_id} were sold)")
    return matches[0]


def create_return_order(
    company_id: int,
    original_order_id,
    *,
    items,
    reason: str | None = None,
    user=None,
) -> Order:
    """
    File a return against a sales order.

    items: [{product_id, variant_id?, quantity > 0}]

    Raises:
        ConflictError: original is not a sales order / is cancelled, or a
                       quantity exceeds what is still returnable
        ValidationError: a line that was not on the original order
    """
    reason = parse_optional_str(reason, "reason", max_length=2000)
    lines = []
    for index, raw in enumerate(parse_items(items)):
        lines.append((
            parse_positive_int(raw.get("product_id"), f"items[{index}].product_id"),
            parse_optional_int(raw.get("variant_id"), f"items[{index}].variant_id"),
            parse_positive_int(raw.get("quantity"), f"items[{index}].quantity"),
        ))

    def _op():
        original = get_scoped_or_404(Order, original_order_id, company_id, label="Order", lock=True)
        if user is not None and not is_staff(user) and original.user_id != user.id:
            raise NotFoundError("Order not found")
        if user is not None and original.user_id != user.id and not user.has_any_role(*RETURN_STAFF_ROLES):
            raise AuthorizationError("Only the order owner or sales staff can file a return")
        if original.order_type != ORDER_TYPE_SALES:
            raise ConflictError(f"Only sales orders can be returned (this is a {original.order_type} order)")
        if original.status == ORDER_STATUS_CANCELLED:
            raise ConflictError("Cannot return a cancelled order")

        remaining = returnable_quantities(original)
        unit_prices = {}
        for item in original.items:
            unit_prices.setdefault((item.product_id, item.variant_id), item.unit_price_cents)

        requested: dict[tuple[int, int], int] = defaultdict(int)
        for index, (product_id, variant_id, quantity) in enumerate(lines):
            key = _resolve_key(remaining, product_id, variant_id, index)
            requested[key] += quantity

        for key, quantity in requested.items():
            if quantity > remaining[key]:
                raise ConflictError(
                    f"Return quantity {quantity} for product {key[0]} variant {key[1]} exceeds "
                    f"returnable quantity {max(remaining[key], 0)}",
                    details={
                        "product_id": key[0],
                        "variant_id": key[1],
                        "returnable": max(remaining[key], 0),
                        "requested": quantity,
                    },
                )

        return_order = Order(
            company_id=company_id,
            order_number=next_document_number(company_id, DOC_RETURN_ORDER),
            order_type=ORDER_TYPE_RETURN,
            order_source="internal",
            status=ORDER_STATUS_PENDING,
            warehouse_id=original.warehouse_id,
            user_id=original.user_id,
            original_order_id=original.id,
            customer_name=original.customer_name,
            customer_email=original.customer_email,
            customer_phone=original.customer_phone,
            return_reason=reason,
            created_by_user_id=user.id if user else None,
            created_at=utcnow(),
        )
        db.session.add(return_order)
        db.session.flush()

        total = 0
        for (product_id, variant_id), quantity in requested.items():
            price = unit_prices[(product_id, variant_id)]
            total += quantity * price
            db.session.add(OrderItem(
                order_id=return_order.id,
                product_id=product_id,
                variant_id=variant_id,
                quantity=quantity,
                unit_price_cents=price,
                subtotal_cents=quantity * price,
            ))
        return_order.total_cents = total

        # Serializes concurrent returns on the same original (version bump)
        original.updated_at = utcnow()
        db.session.flush()
        return return_order

    return_order = run_atomic(_op)
    current_app.logger.info(
        "Return order %s filed against order id=%s", return_order.order_number, return_order.original_order_id,
    )
    return return_order


def _find_return_order(company_id: int, original_order_id, return_order_id) -> Order:
    original = get_scoped_or_404(Order, original_order_id, company_id, label="Order")
    query = db.session.query(Order).filter(
        Order.company_id == company_id,
        Order.original_order_id == original.id,
        Order.order_type == ORDER_TYPE_RETURN,
    )
    if return_order_id is not None:
        query = query.filter(Order.id == return_order_id)
        return_order = query.with_for_update().first()
    else:
        candidates = query.filter(Order.restocked_at.is_(None), Order.status != ORDER_STATUS_CANCELLED).all()
        if len(candidates) > 1:
            raise ValidationError("return_order_id is required (several open returns exist for this order)")
        return_order = candidates[0] if candidates else None
    if return_order is None:
        raise NotFoundError("Return order not found")
    return return_order


def restock_return_order(
    company_id: int,
    original_order_id,
    *,
    return_order_id=None,
    warehouse_id=None,
    user=None,
) -> Order:
    """
    Put returned goods back into stock: one RETURN movement per line.

    The warehouse defaults to the original order's warehouse. Restocking
    twice is a ConflictError.
    """
    return_order_id = parse_optional_int(return_order_id, "return_order_id")
    warehouse_id = parse_optional_int(warehouse_id, "warehouse_id")

    def _op():
        return_order = _find_return_order(company_id, original_order_id, return_order_id)
        if return_order.status == ORDER_STATUS_CANCELLED:
            raise ConflictError("Cannot restock a cancelled return")
        if return_order.restocked_at is not None:
            raise ConflictError(f"Return order {return_order.order_number} has already been restocked")

        target_id = warehouse_id or return_order.warehouse_id
        if target_id is None:
            raise ValidationError("warehouse_id is required")
        check_warehouse_scope(user, target_id)
        warehouse = get_active_warehouse(company_id, target_id)

        user_id = user.id if user else None
        for item in return_order.items:
            movement = apply_movement(
                company_id,
                warehouse.id,
                item.product_id,
                item.variant_id,
                MOVEMENT_RETURN,
                item.quantity,
                reference_type=REF_RETURN_ORDER,
                reference_id=return_order.id,
                notes=f"Restock of {return_order.order_number}",
                user_id=user_id,
            )
            item.stock_movement_id = movement.id

        return_order.restocked_at = utcnow()
        return_order.warehouse_id = warehouse.id
        db.session.flush()
        return return_order

    return_order = run_atomic(_op)
    current_app.logger.info(
        "Return order %s restocked into warehouse id=%s", return_order.order_number, return_order.warehouse_id,
    )
    return return_order
