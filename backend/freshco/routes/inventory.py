# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

# backend/freshco/routes/inventory.py
"""
Inventory Routes

SECURITY: All routes require authentication.
- Adjust and transfer require admin or warehouse_manager (warehouse
  managers only for their assigned warehouses)
- Reserve/release also allow sales staff
- Ledger reads are open to staff

Every stock change goes through the ledger (StockMovement); the snapshot
table is never written directly from here.
"""

from flask import Blueprint, request, g

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_SALES, ROLE_WAREHOUSE_MANAGER, STAFF_ROLES
from ..responses import created, ok
from ..services import inventory_service
from ..validation import parse_optional_date


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/adjust")
@require_auth
@require_role(ROLE_ADMIN, ROLE_WAREHOUSE_MANAGER)
def adjust_stock_route():
    """
    Set stock to a physically counted quantity.

    Request body:
    {
        "warehouse_id": 1,         // required
        "product_id": 2,           // required
        "variant_id": 3,           // optional, default variant if omitted
        "physical_quantity": 40,   // required, >= 0
        "reason": "Cycle count"    // optional
    }

    Returns:
        {movement_id, difference, new_stock_count, message?}
        movement_id is null when the count already matched.
    """
    data = request.get_json(silent=True) or {}
    result = inventory_service.adjust_stock(
        g.company_id,
        warehouse_id=data.get("warehouse_id"),
        product_id=data.get("product_id"),
        variant_id=data.get("variant_id"),
        physical_quantity=data.get("physical_quantity"),
        reason=data.get("reason"),
        user=g.current_user,
    )
    if result["movement_id"] is None:
        return ok(result)
    return created(result)


@inventory_bp.post("/transfer")
@require_auth
@require_role(ROLE_ADMIN, ROLE_WAREHOUSE_MANAGER)
def transfer_stock_route():
    """
    Move stock between two warehouses (all-or-nothing).

    Request body:
    {
        "source_warehouse_id": 1,
        "destination_warehouse_id": 2,
        "items": [{"product_id": 5, "variant_id": 9, "quantity": 10}],
        "notes": "..."   // optional
    }

    Returns:
        {transfer_id, source_warehouse_id, destination_warehouse_id, movements[]}
    """
    data = request.get_json(silent=True) or {}
    result = inventory_service.transfer_stock(
        g.company_id,
        source_warehouse_id=data.get("source_warehouse_id"),
        destination_warehouse_id=data.get("destination_warehouse_id"),
        items=data.get("items"),
        notes=data.get("notes"),
        user=g.current_user,
    )
    return created(result)


@inventory_bp.get("/movements")
@require_auth
@require_role(*STAFF_ROLES)
def list_movements_route():
    """
    Ledger listing, newest first.

    Query parameters:
    - warehouse_id, product_id, variant_id
    - movement_type, reference_type, reference_id
    - date_from, date_to: YYYY-MM-DD (date_to inclusive)
    - limit: Maximum results (default: 50)
    - offset: Pagination offset (default: 0)

    Returns:
        {items: StockMovement[], count: int, limit: int, offset: int}
    """
    limit = request.args.get("limit", 50, type=int)
    offset = request.args.get("offset", 0, type=int)

    movements, total = inventory_service.list_movements(
        g.company_id,
        warehouse_id=request.args.get("warehouse_id", type=int),
        product_id=request.args.get("product_id", type=int),
        variant_id=request.args.get("variant_id", type=int),
        movement_type=request.args.get("movement_type") or None,
        reference_type=request.args.get("reference_type") or None,
        reference_id=request.args.get("reference_id") or None,
        date_from=parse_optional_date(request.args.get("date_from"), "date_from"),
        date_to=parse_optional_date(request.args.get("date_to"), "date_to"),
        limit=limit,
        offset=offset,
    )
    return ok({
        "items": [m.to_dict() for m in movements],
        "count": total,
        "limit": limit,
        "offset": offset,
    })


def _hold_args(data: dict) -> dict:
    return {
        "warehouse_id": data.get("warehouse_id"),
        "product_id": data.get("product_id"),
        "variant_id": data.get("variant_id"),
        "quantity": data.get("quantity"),
        "user": g.current_user,
    }


@inventory_bp.post("/reserve")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SALES, ROLE_WAREHOUSE_MANAGER)
def reserve_stock_route():
    """
    Hold available stock so outbound movements cannot use it.

    Request body:
    {
        "warehouse_id": 1,   // required
        "product_id": 2,     // required
        "variant_id": 3,     // optional, default variant if omitted
        "quantity": 5        // required, > 0
    }

    Returns the snapshot; 409 when quantity exceeds available stock.
    """
    data = request.get_json(silent=True) or {}
    snapshot = inventory_service.reserve_stock(g.company_id, **_hold_args(data))
    return ok(snapshot.to_dict())


@inventory_bp.post("/release")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SALES, ROLE_WAREHOUSE_MANAGER)
def release_stock_route():
    """
    Release held stock. Same body as /reserve.
    """
    data = request.get_json(silent=True) or {}
    snapshot = inventory_service.release_stock(g.company_id, **_hold_args(data))
    return ok(snapshot.to_dict())


@inventory_bp.get("/stock")
@require_auth
@require_role(*STAFF_ROLES)
def stock_levels_route():
    """
    Current snapshot per (warehouse, product, variant).

    Query parameters:
    - warehouse_id, product_id
    """
    rows = inventory_service.get_stock_levels(
        g.company_id,
        warehouse_id=request.args.get("warehouse_id", type=int),
        product_id=request.args.get("product_id", type=int),
    )
    return ok([r.to_dict() for r in rows])


@inventory_bp.get("/verify")
@require_auth
@require_role(ROLE_ADMIN)
def verify_ledger_route():
    """
    Compare every snapshot with the sum of its movements.

    Returns:
        {consistent: bool, mismatches: [...]}
    """
    mismatches = inventory_service.verify_ledger(g.company_id)
    return ok({"consistent": not mismatches, "mismatches": mismatches})
