# Overview: Purchase invoices, supplier payments and the single invoice-status rule.

"""
Invoice Service: Purchase Invoices and Supplier Payments

WHY: Invoice status used to be computed inline wherever money moved, and
the copies drifted. Here it is ONE pure function, derive_invoice_status(),
and every path that changes paid_amount_cents or reads an open invoice's
due date goes through it.

LIFECYCLE:
- Invoice: created from a COMPLETED GRN (lines copied), starts `pending`;
  pending/partial/paid/overdue are derived; `cancelled` is explicit and
  only allowed while nothing has been paid.
- Payment: pending -> processing -> completed. Only completed payments
  count towards paid_amount_cents; the cap (total - paid) is checked when
  the payment is recorded AND again when a pending payment completes.
"""

from __future__ import annotations

from datetime import date, timedelta

from flask import current_app

from ..errors import ConflictError, ValidationError
from ..extensions import db
from ..models import GoodsReceipt, PurchaseInvoice, PurchaseInvoiceItem, SupplierPayment
from ..time_utils import utcnow
from ..validation import parse_choice, parse_money_cents, parse_optional_date, parse_optional_str, parse_positive_int
from .concurrency import run_atomic
from .document_service import DOC_PURCHASE_INVOICE, DOC_SUPPLIER_PAYMENT, next_document_number
from .tenant_service import get_scoped_or_404, scoped_query


INVOICE_STATUS_PENDING = "pending"
INVOICE_STATUS_PARTIAL = "partial"
INVOICE_STATUS_PAID = "paid"
INVOICE_STATUS_OVERDUE = "overdue"
INVOICE_STATUS_CANCELLED = "cancelled"

INVOICE_STATUSES = (
    INVOICE_STATUS_PENDING,
    INVOICE_STATUS_PARTIAL,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_OVERDUE,
    INVOICE_STATUS_CANCELLED,
)
OPEN_INVOICE_STATUSES = (INVOICE_STATUS_PENDING, INVOICE_STATUS_PARTIAL, INVOICE_STATUS_OVERDUE)

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PROCESSING = "processing"
PAYMENT_STATUS_COMPLETED = "completed"
PAYMENT_STATUSES = (PAYMENT_STATUS_PENDING, PAYMENT_STATUS_PROCESSING, PAYMENT_STATUS_COMPLETED)

PAYMENT_METHODS = ("bank_transfer", "cheque", "cash", "card", "other")


def derive_invoice_status(
    total_cents: int,
    paid_cents: int,
    due_date: date | None = None,
    today: date | None = None,
) -> str:
    """
    Pure status rule for a non-cancelled invoice.

    paid >= total (total > 0)            -> paid
    unpaid remainder and due_date passed -> overdue
    paid > 0                             -> partial
    otherwise                            -> pending
    """
    if total_cents > 0 and paid_cents >= total_cents:
        return INVOICE_STATUS_PAID
    if due_date is not None and paid_cents < total_cents:
        if due_date < (today or utcnow().date()):
            return INVOICE_STATUS_OVERDUE
    if paid_cents > 0:
        return INVOICE_STATUS_PARTIAL
    return INVOICE_STATUS_PENDING


def _restatus(invoice: PurchaseInvoice, today: date | None = None) -> str:
    if invoice.status == INVOICE_STATUS_CANCELLED:
        return invoice.status
    invoice.status = derive_invoice_status(
        invoice.total_amount_cents,
        invoice.paid_amount_cents,
        invoice.due_date,
        today,
    )
    return invoice.status


# =============================================================================
# INVOICES
# =============================================================================

def create_purchase_invoice(
    company_id: int,
    *,
    goods_receipt_id,
    supplier_invoice_number: str | None = None,
    invoice_date=None,
    due_date=None,
    notes: str | None = None,
    user=None,
) -> PurchaseInvoice:
    """
    Raise an invoice for a completed GRN, copying its lines.

    due_date defaults to invoice_date + the supplier's payment terms.
    """
    goods_receipt_id = parse_positive_int(goods_receipt_id, "goods_receipt_id")
    supplier_invoice_number = parse_optional_str(supplier_invoice_number, "supplier_invoice_number", max_length=128)
    invoice_date = parse_optional_date(invoice_date, "invoice_date") or utcnow().date()
    due_date = parse_optional_date(due_date, "due_date")
    if due_date is not None and due_date < invoice_date:
        raise ValidationError("due_date cannot be before invoice_date")

    def _op():
        grn = get_scoped_or_404(GoodsReceipt, goods_receipt_id, company_id, label="Goods receipt", lock=True)
        if grn.status != "completed":
            raise ConflictError(f"Invoices can only be created for completed goods receipts (status: {grn.status})")

        existing = (
            scoped_query(PurchaseInvoice, company_id)
            .filter(
                PurchaseInvoice.goods_receipt_id == grn.id,
                PurchaseInvoice.status != INVOICE_STATUS_CANCELLED,
            )
            .first()
        )
        if existing:
            raise ConflictError(f"Goods receipt {grn.grn_number} is already invoiced ({existing.invoice_number})")

        po = grn.purchase_order
        if supplier_invoice_number:
            duplicate = (
                scoped_query(PurchaseInvoice, company_id)
                .filter(
                    PurchaseInvoice.supplier_id == po.supplier_id,
                    PurchaseInvoice.supplier_invoice_number == supplier_invoice_number,
                    PurchaseInvoice.status != INVOICE_STATUS_CANCELLED,
                )
                .first()
            )
            if duplicate:
                raise ConflictError(f"Supplier invoice number '{supplier_invoice_number}' already recorded")

        effective_due = due_date
        if effective_due is None and po.supplier and po.supplier.payment_terms_days:
            effective_due = invoice_date + timedelta(days=po.supplier.payment_terms_days)

        invoice = PurchaseInvoice(
            company_id=company_id,
            supplier_id=po.supplier_id,
            purchase_order_id=po.id,
            goods_receipt_id=grn.id,
            invoice_number=next_document_number(company_id, DOC_PURCHASE_INVOICE),
            supplier_invoice_number=supplier_invoice_number,
            invoice_date=invoice_date,
            due_date=effective_due,
            paid_amount_cents=0,
            notes=parse_optional_str(notes, "notes", max_length=2000),
            created_by_user_id=user.id if user else None,
        )
        db.session.add(invoice)
        db.session.flush()

        total = 0
        for item in grn.items:
            # Rejected goods are not billed
            if item.quantity_accepted <= 0:
                continue
            total += item.line_total_cents
            db.session.add(PurchaseInvoiceItem(
                purchase_invoice_id=invoice.id,
                goods_receipt_item_id=item.id,
                product_id=item.product_id,
                variant_id=item.variant_id,
                quantity=item.quantity_accepted,
                unit_price_cents=item.unit_price_cents,
                line_total_cents=item.line_total_cents,
            ))
        invoice.total_amount_cents = total
        # Starts pending; a back-dated due date can already make it overdue
        _restatus(invoice)
        db.session.flush()
        return invoice

    invoice = run_atomic(_op)
    current_app.logger.info("Purchase invoice %s created for GRN id=%s", invoice.invoice_number, goods_receipt_id)
    return invoice


def cancel_purchase_invoice(company_id: int, invoice_id, *, user=None) -> PurchaseInvoice:
    def _op():
        invoice = get_scoped_or_404(PurchaseInvoice, invoice_id, company_id, label="Purchase invoice", lock=True)
        if invoice.status == INVOICE_STATUS_CANCELLED:
            raise ConflictError("Invoice is already cancelled")
        if invoice.paid_amount_cents > 0:
            raise ConflictError("Cannot cancel an invoice with recorded payments")
        open_payments = [
            p for p in invoice.payments
            if p.status in (PAYMENT_STATUS_PENDING, PAYMENT_STATUS_PROCESSING)
        ]
        if open_payments:
            raise ConflictError("Cannot cancel an invoice with pending payments")

        invoice.status = INVOICE_STATUS_CANCELLED
        invoice.cancelled_at = utcnow()
        db.session.flush()
        return invoice

    invoice = run_atomic(_op)
    current_app.logger.info("Purchase invoice %s cancelled", invoice.invoice_number)
    return invoice


def refresh_overdue(company_id: int, today: date | None = None) -> int:
    """Re-derive the status of every open invoice. Returns how many changed."""
    def _op():
        changed = 0
        for invoice in (
            scoped_query(PurchaseInvoice, company_id)
            .filter(PurchaseInvoice.status.in_(OPEN_INVOICE_STATUSES))
            .all()
        ):
            before = invoice.status
            if _restatus(invoice, today) != before:
                changed += 1
        db.session.flush()
        return changed

    return run_atomic(_op)


def list_purchase_invoices(
    company_id: int,
    *,
    status: str | None = None,
    supplier_id: int | None = None,
) -> list[PurchaseInvoice]:
    refresh_overdue(company_id)
    query = scoped_query(PurchaseInvoice, company_id)
    if status:
        query = query.filter(PurchaseInvoice.status == parse_choice(status, "status", INVOICE_STATUSES))
    if supplier_id is not None:
        query = query.filter(PurchaseInvoice.supplier_id == supplier_id)
    return query.order_by(PurchaseInvoice.id.desc()).all()


def get_purchase_invoice_detail(company_id: int, invoice_id) -> dict:
    invoice = get_scoped_or_404(PurchaseInvoice, invoice_id, company_id, label="Purchase invoice")
    data = invoice.to_dict()
    data["supplier"] = {"id": invoice.supplier.id, "name": invoice.supplier.name} if invoice.supplier else None
    data["grn_number"] = invoice.goods_receipt.grn_number
    data["po_number"] = invoice.purchase_order.po_number
    data["payments"] = [p.to_dict() for p in sorted(invoice.payments, key=lambda p: p.id)]
    return data


# =============================================================================
# SUPPLIER PAYMENTS
# =============================================================================

def _check_payable(invoice: PurchaseInvoice, amount_cents: int) -> None:
    if invoice.status == INVOICE_STATUS_CANCELLED:
        raise ConflictError("Cannot pay a cancelled invoice")
    balance = invoice.total_amount_cents - invoice.paid_amount_cents
    if balance <= 0:
        raise ConflictError("Invoice is already fully paid")
    if amount_cents > balance:
        raise ConflictError(
            f"Payment amount {amount_cents} exceeds outstanding balance {balance}",
            details={"balance_due_cents": balance, "requested_cents": amount_cents},
        )


def _apply_completed_payment(invoice: PurchaseInvoice, payment: SupplierPayment) -> None:
    payment.status = PAYMENT_STATUS_COMPLETED
    payment.completed_at = utcnow()
    invoice.paid_amount_cents += payment.amount_cents
    _restatus(invoice)


def record_supplier_payment(
    company_id: int,
    *,
    purchase_invoice_id,
    amount_cents,
    payment_method: str = "bank_transfer",
    reference_number: str | None = None,
    payment_date=None,
    notes: str | None = None,
    status: str = PAYMENT_STATUS_COMPLETED,
    user=None,
) -> SupplierPayment:
    """
    Record a payment against an invoice.

    completed (default): paid_amount and invoice status update in the same
    transaction. pending: stored only; counts after complete_supplier_payment().
    """
    purchase_invoice_id = parse_positive_int(purchase_invoice_id, "purchase_invoice_id")
    amount_cents = parse_money_cents(amount_cents, "amount_cents", allow_zero=False)
    payment_method = parse_choice(payment_method or "bank_transfer", "payment_method", PAYMENT_METHODS)
    status = parse_choice(status or PAYMENT_STATUS_COMPLETED, "status", (PAYMENT_STATUS_PENDING, PAYMENT_STATUS_COMPLETED))
    payment_date = parse_optional_date(payment_date, "payment_date")

    def _op():
        invoice = get_scoped_or_404(
            PurchaseInvoice, purchase_invoice_id, company_id, label="Purchase invoice", lock=True,
        )
        _check_payable(invoice, amount_cents)

        payment = SupplierPayment(
            company_id=company_id,
            purchase_invoice_id=invoice.id,
            supplier_id=invoice.supplier_id,
            payment_number=next_document_number(company_id, DOC_SUPPLIER_PAYMENT),
            amount_cents=amount_cents,
            payment_method=payment_method,
            reference_number=parse_optional_str(reference_number, "reference_number", max_length=128),
            status=PAYMENT_STATUS_PENDING,
            payment_date=payment_date or utcnow().date(),
            notes=parse_optional_str(notes, "notes", max_length=2000),
            created_by_user_id=user.id if user else None,
        )
        db.session.add(payment)
        if status == PAYMENT_STATUS_COMPLETED:
            _apply_completed_payment(invoice, payment)
        db.session.flush()
        return payment, invoice

    payment, invoice = run_atomic(_op)
    current_app.logger.info(
        "Supplier payment %s (%s cents, %s) on invoice %s; invoice now %s",
        payment.payment_number, payment.amount_cents, payment.status, invoice.invoice_number, invoice.status,
    )
    return payment


def complete_supplier_payment(company_id: int, payment_id, *, user=None) -> SupplierPayment:
    """pending -> processing -> completed, re-checking the invoice balance."""
    def _op():
        payment = get_scoped_or_404(SupplierPayment, payment_id, company_id, label="Supplier payment", lock=True)
        if payment.status != PAYMENT_STATUS_PENDING:
            raise ConflictError(f"Cannot complete a payment in {payment.status} status")

        payment.status = PAYMENT_STATUS_PROCESSING
        db.session.flush()

        invoice = get_scoped_or_404(
            PurchaseInvoice, payment.purchase_invoice_id, company_id, label="Purchase invoice", lock=True,
        )
        _check_payable(invoice, payment.amount_cents)
        _apply_completed_payment(invoice, payment)
        db.session.flush()
        return payment, invoice

    payment, invoice = run_atomic(_op)
    current_app.logger.info(
        "Supplier payment %s completed; invoice %s now %s",
        payment.payment_number, invoice.invoice_number, invoice.status,
    )
    return payment


def list_supplier_payments(
    company_id: int,
    *,
    purchase_invoice_id: int | None = None,
    status: str | None = None,
) -> list[SupplierPayment]:
    query = scoped_query(SupplierPayment, company_id)
    if purchase_invoice_id is not None:
        query = query.filter(SupplierPayment.purchase_invoice_id == purchase_invoice_id)
    if status:
        query = query.filter(SupplierPayment.status == parse_choice(status, "status", PAYMENT_STATUSES))
    return query.order_by(SupplierPayment.id.desc()).all()
