# Overview: Flask API routes for master data (warehouses, products, suppliers).

"""
Catalog Routes

SECURITY: All routes require authentication.
- Reads are open to staff
- Warehouses and manager assignments require admin
- Products require admin
- Suppliers require admin or procurement
"""

from flask import Blueprint, request, g

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_PROCUREMENT, STAFF_ROLES
from ..responses import created, ok
from ..services import catalog_service
from ..validation import parse_money_cents, require_fields


warehouses_bp = Blueprint("warehouses", __name__, url_prefix="/api/warehouses")
products_bp = Blueprint("products", __name__, url_prefix="/api/products")
suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


def _include_inactive() -> bool:
    return request.args.get("include_inactive", "false").lower() == "true"


# =============================================================================
# WAREHOUSES
# =============================================================================

@warehouses_bp.get("")
@require_auth
@require_role(*STAFF_ROLES)
def list_warehouses_route():
    warehouses = catalog_service.list_warehouses(g.company_id, include_inactive=_include_inactive())
    return ok([w.to_dict() for w in warehouses])


@warehouses_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_warehouse_route():
    """
    Create a warehouse.

    Request body:
    {
        "name": "Main DC",   // required
        "code": "MAIN",      // required, unique within company
        "address": "..."     // optional
    }
    """
    data = request.get_json(silent=True) or {}
    warehouse = catalog_service.create_warehouse(
        g.company_id,
        name=data.get("name"),
        code=data.get("code"),
        address=data.get("address"),
    )
    return created(warehouse.to_dict())


@warehouses_bp.post("/<int:warehouse_id>/managers")
@require_auth
@require_role(ROLE_ADMIN)
def assign_manager_route(warehouse_id: int):
    """
    Assign a warehouse_manager user to this warehouse.

    Request body:
    {
        "user_id": 7   // required
    }
    """
    data = require_fields(request.get_json(silent=True) or {}, "user_id")
    assignment = catalog_service.assign_warehouse_manager(g.company_id, warehouse_id, data["user_id"])
    return created(assignment.to_dict())


# =============================================================================
# PRODUCTS
# =============================================================================

@products_bp.get("")
@require_auth
@require_role(*STAFF_ROLES)
def list_products_route():
    """List products with their variants."""
    products = catalog_service.list_products(g.company_id, include_inactive=_include_inactive())
    return ok([p.to_dict(include_variants=True) for p in products])


@products_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_product_route():
    """
    Create a product. A default variant is always created.

    Request body:
    {
        "sku": "APL-1",          // required, unique within company
        "name": "Apples",        // required
        "description": "...",    // optional
        "price_cents": 199,      // default variant price
        "variants": [            // optional extra variants
            {"name": "1kg bag", "sku": "APL-1KG", "price_cents": 399}
        ]
    }
    """
    data = request.get_json(silent=True) or {}
    require_fields(data, "sku", "name")
    product = catalog_service.create_product(
        g.company_id,
        sku=data.get("sku"),
        name=data.get("name"),
        description=data.get("description"),
        price_cents=parse_money_cents(data.get("price_cents", 0), "price_cents"),
        variants=data.get("variants"),
    )
    return created(product.to_dict(include_variants=True))


# =============================================================================
# SUPPLIERS
# =============================================================================

@suppliers_bp.get("")
@require_auth
@require_role(*STAFF_ROLES)
def list_suppliers_route():
    suppliers = catalog_service.list_suppliers(g.company_id, include_inactive=_include_inactive())
    return ok([s.to_dict() for s in suppliers])


@suppliers_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_PROCUREMENT)
def create_supplier_route():
    """
    Create a supplier with optional bank accounts.

    Request body:
    {
        "name": "Green Farms",        // required
        "code": "GF",                 // optional, unique within company
        "contact_name": "...",        // optional
        "contact_email": "...",       // optional
        "contact_phone": "...",       // optional
        "address": "...",             // optional
        "payment_terms_days": 30,     // optional
        "bank_accounts": [            // optional, saved best-effort
            {"bank_name": "...", "account_number": "...", "account_name": "...", "routing_code": "..."}
        ]
    }

    Returns:
        {supplier, effects: EffectResult[]}
    """
    data = request.get_json(silent=True) or {}
    supplier, effects = catalog_service.create_supplier(
        g.company_id,
        name=data.get("name"),
        code=data.get("code"),
        contact_name=data.get("contact_name"),
        contact_email=data.get("contact_email"),
        contact_phone=data.get("contact_phone"),
        address=data.get("address"),
        payment_terms_days=data.get("payment_terms_days"),
        bank_accounts=data.get("bank_accounts"),
    )
    return created({
        "supplier": supplier.to_dict(),
        "effects": [e.to_dict() for e in effects],
    })
