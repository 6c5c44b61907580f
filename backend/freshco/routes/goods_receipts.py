# Overview: Flask API routes for goods receipts (GRN); parses input and returns JSON responses.

"""
Goods Receipt Routes

SECURITY: All routes require authentication.
- Reads are open to staff
- Create, status changes and completion require admin, procurement or
  warehouse_manager (warehouse managers only for their warehouses)

Creating a GRN books the accepted quantities on the PO immediately.
Stock is credited only when the GRN is completed.
"""

from flask import Blueprint, request, g

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_PROCUREMENT, ROLE_WAREHOUSE_MANAGER, STAFF_ROLES
from ..responses import created, ok
from ..services import procurement_service
from ..validation import require_fields


goods_receipts_bp = Blueprint("goods_receipts", __name__, url_prefix="/api/goods-receipts")

RECEIVING_ROLES = (ROLE_ADMIN, ROLE_PROCUREMENT, ROLE_WAREHOUSE_MANAGER)


@goods_receipts_bp.post("")
@require_auth
@require_role(*RECEIVING_ROLES)
def create_goods_receipt_route():
    """
    Receive goods against a purchase order.

    Request body:
    {
        "purchase_order_id": 1,      // required
        "warehouse_id": 2,           // required
        "receipt_date": "2024-05-10",// optional
        "notes": "...",              // optional
        "items": [                   // required, non-empty
            {
                "purchase_order_item_id": 3,
                "quantity_received": 60,
                "quantity_accepted": 58,    // optional, defaults to received - rejected
                "quantity_rejected": 2,     // optional, defaults to received - accepted
                "batch_number": "B-17",     // optional
                "expiry_date": "2024-06-01",// optional
                "condition_notes": "..."    // optional
            }
        ]
    }
    """
    data = request.get_json(silent=True) or {}
    grn = procurement_service.create_goods_receipt(
        g.company_id,
        purchase_order_id=data.get("purchase_order_id"),
        warehouse_id=data.get("warehouse_id"),
        items=data.get("items"),
        receipt_date=data.get("receipt_date"),
        notes=data.get("notes"),
        user=g.current_user,
    )
    return created(grn.to_dict())


@goods_receipts_bp.get("")
@require_auth
@require_role(*STAFF_ROLES)
def list_goods_receipts_route():
    """
    Query parameters:
    - status, purchase_order_id, warehouse_id
    """
    receipts = procurement_service.list_goods_receipts(
        g.company_id,
        status=request.args.get("status") or None,
        purchase_order_id=request.args.get("purchase_order_id", type=int),
        warehouse_id=request.args.get("warehouse_id", type=int),
    )
    return ok([grn.to_dict(include_items=False) for grn in receipts])


@goods_receipts_bp.get("/<int:grn_id>")
@require_auth
@require_role(*STAFF_ROLES)
def get_goods_receipt_route(grn_id: int):
    return ok(procurement_service.get_goods_receipt_detail(g.company_id, grn_id))


@goods_receipts_bp.put("/<int:grn_id>/status")
@require_auth
@require_role(*RECEIVING_ROLES)
def update_goods_receipt_status_route(grn_id: int):
    """
    Request body:
    {
        "status": "inspected",      // inspected | approved | rejected | completed
        "inspection_notes": "...",  // optional
        "items": [                  // optional, inspected | approved only
            {"goods_receipt_item_id": 4, "quantity_accepted": 55, "quantity_rejected": 5}
        ]
    }

    Rejecting releases the accepted quantities back to the PO.
    """
    data = require_fields(request.get_json(silent=True) or {}, "status")
    grn = procurement_service.update_goods_receipt_status(
        g.company_id,
        grn_id,
        data["status"],
        inspection_notes=data.get("inspection_notes"),
        items=data.get("items"),
        user=g.current_user,
    )
    return ok(grn.to_dict())


@goods_receipts_bp.post("/<int:grn_id>/complete")
@require_auth
@require_role(*RECEIVING_ROLES)
def complete_goods_receipt_route(grn_id: int):
    """
    Complete the GRN and credit stock (one RECEIPT movement per line).

    A second completion is a 409 and credits nothing.
    """
    grn = procurement_service.complete_goods_receipt(g.company_id, grn_id, user=g.current_user)
    return ok(grn.to_dict())
