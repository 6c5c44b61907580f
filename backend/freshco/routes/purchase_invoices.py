# Overview: Flask API routes for purchase invoices and supplier payments.

"""
Purchase Invoice / Supplier Payment Routes

SECURITY: All routes require authentication.
- Reads are open to staff
- Mutations require admin or procurement

Invoice status is always derived from (total, paid, due date); clients
never set it directly.
"""

from flask import Blueprint, request, g

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_PROCUREMENT, STAFF_ROLES
from ..responses import created, ok
from ..services import invoice_service


purchase_invoices_bp = Blueprint("purchase_invoices", __name__, url_prefix="/api/purchase-invoices")
supplier_payments_bp = Blueprint("supplier_payments", __name__, url_prefix="/api/supplier-payments")

FINANCE_ROLES = (ROLE_ADMIN, ROLE_PROCUREMENT)


# =============================================================================
# PURCHASE INVOICES
# =============================================================================

@purchase_invoices_bp.post("")
@require_auth
@require_role(*FINANCE_ROLES)
def create_purchase_invoice_route():
    """
    Invoice a completed goods receipt. Lines are copied from the GRN.

    Request body:
    {
        "goods_receipt_id": 4,              // required
        "supplier_invoice_number": "INV-9", // optional, unique per supplier
        "invoice_date": "2024-05-11",       // optional, today by default
        "due_date": "2024-06-10",           // optional, from payment terms
        "notes": "..."                      // optional
    }
    """
    data = request.get_json(silent=True) or {}
    invoice = invoice_service.create_purchase_invoice(
        g.company_id,
        goods_receipt_id=data.get("goods_receipt_id"),
        supplier_invoice_number=data.get("supplier_invoice_number"),
        invoice_date=data.get("invoice_date"),
        due_date=data.get("due_date"),
        notes=data.get("notes"),
        user=g.current_user,
    )
    return created(invoice.to_dict())


@purchase_invoices_bp.get("")
@require_auth
@require_role(*STAFF_ROLES)
def list_purchase_invoices_route():
    """
    Query parameters:
    - status: pending | partial | paid | overdue | cancelled
    - supplier_id
    """
    invoices = invoice_service.list_purchase_invoices(
        g.company_id,
        status=request.args.get("status") or None,
        supplier_id=request.args.get("supplier_id", type=int),
    )
    return ok([inv.to_dict(include_items=False) for inv in invoices])


@purchase_invoices_bp.get("/<int:invoice_id>")
@require_auth
@require_role(*STAFF_ROLES)
def get_purchase_invoice_route(invoice_id: int):
    """Invoice with items and payments."""
    return ok(invoice_service.get_purchase_invoice_detail(g.company_id, invoice_id))


@purchase_invoices_bp.post("/<int:invoice_id>/cancel")
@require_auth
@require_role(*FINANCE_ROLES)
def cancel_purchase_invoice_route(invoice_id: int):
    """Cancel an invoice. Only allowed while nothing has been paid."""
    invoice = invoice_service.cancel_purchase_invoice(g.company_id, invoice_id, user=g.current_user)
    return ok(invoice.to_dict())


# =============================================================================
# SUPPLIER PAYMENTS
# =============================================================================

@supplier_payments_bp.post("")
@require_auth
@require_role(*FINANCE_ROLES)
def record_supplier_payment_route():
    """
    Record a payment against an invoice.

    Request body:
    {
        "purchase_invoice_id": 4,             // required
        "amount_cents": 30000,                // required, <= balance due
        "payment_method": "bank_transfer",    // optional
        "reference_number": "TX-1",           // optional
        "payment_date": "2024-05-20",         // optional
        "status": "completed",                // completed (default) | pending
        "notes": "..."                        // optional
    }

    Returns:
        {payment, invoice}
    """
    data = request.get_json(silent=True) or {}
    payment = invoice_service.record_supplier_payment(
        g.company_id,
        purchase_invoice_id=data.get("purchase_invoice_id"),
        amount_cents=data.get("amount_cents"),
        payment_method=data.get("payment_method") or "bank_transfer",
        reference_number=data.get("reference_number"),
        payment_date=data.get("payment_date"),
        notes=data.get("notes"),
        status=data.get("status") or invoice_service.PAYMENT_STATUS_COMPLETED,
        user=g.current_user,
    )
    return created({
        "payment": payment.to_dict(),
        "invoice": payment.invoice.to_dict(include_items=False),
    })


@supplier_payments_bp.get("")
@require_auth
@require_role(*STAFF_ROLES)
def list_supplier_payments_route():
    """
    Query parameters:
    - purchase_invoice_id, status
    """
    payments = invoice_service.list_supplier_payments(
        g.company_id,
        purchase_invoice_id=request.args.get("purchase_invoice_id", type=int),
        status=request.args.get("status") or None,
    )
    return ok([p.to_dict() for p in payments])


@supplier_payments_bp.post("/<int:payment_id>/complete")
@require_auth
@require_role(*FINANCE_ROLES)
def complete_supplier_payment_route(payment_id: int):
    """Complete a pending payment; the invoice balance is re-checked."""
    payment = invoice_service.complete_supplier_payment(g.company_id, payment_id, user=g.current_user)
    return ok({
        "payment": payment.to_dict(),
        "invoice": payment.invoice.to_dict(include_items=False),
    })
