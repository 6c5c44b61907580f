# Overview: Flask API routes for purchase orders; parses input and returns JSON responses.

"""
Purchase Order Routes

SECURITY: All routes require authentication.
- Reads are open to staff
- Create and status changes require admin or procurement

LIFECYCLE (manual part):
pending -> approved -> ordered, or -> cancelled while nothing is received.
partially_received / received are set by goods receipts only.
"""

from flask import Blueprint, request, g

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_PROCUREMENT, STAFF_ROLES
from ..responses import created, ok
from ..services import procurement_service
from ..validation import require_fields


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


@purchase_orders_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_PROCUREMENT)
def create_purchase_order_route():
    """
    Create a purchase order in pending status.

    Request body:
    {
        "supplier_id": 1,                       // required
        "warehouse_id": 2,                      // optional
        "order_date": "2024-05-01",             // optional, today by default
        "expected_delivery_date": "2024-05-10", // optional
        "notes": "...",                         // optional
        "items": [                              // required, non-empty
            {"product_id": 5, "variant_id": 9, "quantity": 100, "unit_price_cents": 250}
        ]
    }
    """
    data = request.get_json(silent=True) or {}
    po = procurement_service.create_purchase_order(
        g.company_id,
        supplier_id=data.get("supplier_id"),
        items=data.get("items"),
        warehouse_id=data.get("warehouse_id"),
        order_date=data.get("order_date"),
        expected_delivery_date=data.get("expected_delivery_date"),
        notes=data.get("notes"),
        user=g.current_user,
    )
    return created(po.to_dict())


@purchase_orders_bp.get("")
@require_auth
@require_role(*STAFF_ROLES)
def list_purchase_orders_route():
    """
    Query parameters:
    - status: Filter by PO status
    - supplier_id: Filter by supplier
    """
    orders = procurement_service.list_purchase_orders(
        g.company_id,
        status=request.args.get("status") or None,
        supplier_id=request.args.get("supplier_id", type=int),
    )
    return ok([po.to_dict(include_items=False) for po in orders])


@purchase_orders_bp.get("/<int:po_id>")
@require_auth
@require_role(*STAFF_ROLES)
def get_purchase_order_route(po_id: int):
    """PO with items (incl. outstanding quantity), receipts and invoices."""
    return ok(procurement_service.get_purchase_order_detail(g.company_id, po_id))


@purchase_orders_bp.put("/<int:po_id>/status")
@require_auth
@require_role(ROLE_ADMIN, ROLE_PROCUREMENT)
def update_purchase_order_status_route(po_id: int):
    """
    Request body:
    {
        "status": "approved"   // approved | ordered | cancelled
    }
    """
    data = require_fields(request.get_json(silent=True) or {}, "status")
    po = procurement_service.update_purchase_order_status(
        g.company_id, po_id, data["status"], user=g.current_user,
    )
    return ok(po.to_dict())
