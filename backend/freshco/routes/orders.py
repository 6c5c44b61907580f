# Overview: Flask API routes for sales orders and returns; parses input and returns JSON responses.

"""
Order Routes

SECURITY: All routes require authentication.
- Anyone signed in may place, list, read and cancel orders; customers only
  ever see their own (others are 404) and may only place ecommerce orders
- Fulfilment status changes require admin, sales or warehouse_manager
- Restocking a return requires admin, sales or warehouse_manager

LIFECYCLE:
pending -(grace window elapses)-> processing -> shipped -> delivered
pending/processing -(owner or admin/sales, inside the window)-> cancelled
"""

from flask import Blueprint, request, g

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_SALES, ROLE_WAREHOUSE_MANAGER
from ..responses import created, ok
from ..services import order_service
from ..services import return_service
from ..validation import require_fields


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

FULFILMENT_ROLES = (ROLE_ADMIN, ROLE_SALES, ROLE_WAREHOUSE_MANAGER)


@orders_bp.post("")
@require_auth
def place_order_route():
    """
    Place a sales order. Stock is deducted for every line in one transaction.

    Request body:
    {
        "warehouse_id": 1,                 // required
        "order_source": "sales",           // ecommerce | pos | sales | internal
        "items": [                         // required, non-empty
            {"product_id": 5, "variant_id": 9, "quantity": 2, "unit_price_cents": 199}
        ],
        "customer_name": "...",            // optional
        "customer_email": "...",           // optional
        "customer_phone": "...",           // optional
        "shipping_address": "...",         // optional
        "notes": "...",                    // optional
        "payment_intent_id": "pi_..."      // required for ecommerce
    }

    unit_price_cents is staff-only; otherwise the variant price applies.
    """
    data = request.get_json(silent=True) or {}
    order = order_service.place_order(
        g.company_id,
        warehouse_id=data.get("warehouse_id"),
        items=data.get("items"),
        order_source=data.get("order_source") or "sales",
        customer_name=data.get("customer_name"),
        customer_email=data.get("customer_email"),
        customer_phone=data.get("customer_phone"),
        shipping_address=data.get("shipping_address"),
        notes=data.get("notes"),
        payment_intent_id=data.get("payment_intent_id"),
        user=g.current_user,
    )
    return created(order.to_dict())


@orders_bp.get("")
@require_auth
def list_orders_route():
    """
    Query parameters:
    - status, order_type
    - limit: Maximum results (default: 50)
    - offset: Pagination offset (default: 0)

    Returns:
        {items: Order[], count: int, limit: int, offset: int}
    """
    limit = request.args.get("limit", 50, type=int)
    offset = request.args.get("offset", 0, type=int)

    orders, total = order_service.list_orders(
        g.company_id,
        user=g.current_user,
        status=request.args.get("status") or None,
        order_type=request.args.get("order_type") or None,
        limit=limit,
        offset=offset,
    )
    return ok({
        "items": [o.to_dict(include_items=False) for o in orders],
        "count": total,
        "limit": limit,
        "offset": offset,
    })


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    order = order_service.get_order(g.company_id, order_id, user=g.current_user)
    return ok(order.to_dict())


@orders_bp.put("/<int:order_id>/status")
@require_auth
@require_role(*FULFILMENT_ROLES)
def update_order_status_route(order_id: int):
    """
    Request body:
    {
        "status": "shipped"   // processing | shipped | delivered
    }
    """
    data = require_fields(request.get_json(silent=True) or {}, "status")
    order = order_service.update_order_status(g.company_id, order_id, data["status"], user=g.current_user)
    return ok(order.to_dict())


@orders_bp.put("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    """
    Cancel inside the grace window; stock is put back.

    Request body (optional):
    {
        "reason": "Changed my mind"
    }
    """
    data = request.get_json(silent=True) or {}
    order = order_service.cancel_order(
        g.company_id, order_id, user=g.current_user, reason=data.get("reason"),
    )
    return ok(order.to_dict())


@orders_bp.post("/<int:order_id>/return")
@require_auth
def create_return_route(order_id: int):
    """
    File a return against this sales order. No stock is moved yet.

    Request body:
    {
        "items": [{"product_id": 5, "variant_id": 9, "quantity": 1}],
        "reason": "Damaged"   // optional
    }
    """
    data = request.get_json(silent=True) or {}
    return_order = return_service.create_return_order(
        g.company_id,
        order_id,
        items=data.get("items"),
        reason=data.get("reason"),
        user=g.current_user,
    )
    return created(return_order.to_dict())


@orders_bp.post("/<int:order_id>/return/restock")
@require_auth
@require_role(*FULFILMENT_ROLES)
def restock_return_route(order_id: int):
    """
    Put returned goods back into stock (one RETURN movement per line).

    Request body (optional):
    {
        "return_order_id": 12,   // required when several returns are open
        "warehouse_id": 1        // defaults to the original order's warehouse
    }
    """
    data = request.get_json(silent=True) or {}
    return_order = return_service.restock_return_order(
        g.company_id,
        order_id,
        return_order_id=data.get("return_order_id"),
        warehouse_id=data.get("warehouse_id"),
        user=g.current_user,
    )
    return ok(return_order.to_dict())
