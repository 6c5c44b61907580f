# Overview: Purchase order and goods receipt (GRN) state machines.

"""
Procurement Service: Purchase Orders and Goods Receipts

WHY: The supply side is a chain of linked documents. Quantities booked on a
GRN must never exceed what is still outstanding on the PO, and stock is
credited exactly once, when the GRN is completed.

PURCHASE ORDER LIFECYCLE:
1. pending             created by procurement staff
2. approved            manager sign-off
3. ordered             sent to the supplier
4. partially_received  set by GRN creation while lines are outstanding
5. received            set by GRN creation once every line is covered
   cancelled           from pending/approved, or ordered with nothing received

GOODS RECEIPT LIFECYCLE:
pending -> inspected -> approved -> completed
pending/inspected -> rejected (quantities are released back to the PO)
pending/inspected -> completed

ACCEPTANCE: each GRN line splits quantity_received into quantity_accepted
and quantity_rejected (accepted + rejected == received). Only the accepted
part counts against the PO and reaches stock; rejected goods go back to the
supplier and stay outstanding. Inspection may re-split a line.

DESIGN PRINCIPLES:
- Accepted quantity is booked on the PO line when the GRN is CREATED, so
  two concurrent GRNs cannot both claim the same outstanding quantity
- Stock moves only on completion (one RECEIPT movement per accepted line)
- completed_at is the idempotency marker; a second completion is a
  ConflictError and credits nothing
- Every transition runs in one run_atomic() unit; the PO and GRN version
  columns turn lost updates into retries that re-check the guards
"""

from __future__ import annotations

from flask import current_app

from ..errors import ConflictError, ValidationError
from ..extensions import db
from ..models import (
    GoodsReceipt,
    GoodsReceiptItem,
    PurchaseOrder,
    PurchaseOrderItem,
    Supplier,
)
from ..time_utils import utcnow
from ..validation import (
    parse_choice,
    parse_items,
    parse_money_cents,
    parse_optional_date,
    parse_optional_int,
    parse_optional_str,
    parse_positive_int,
)
from .catalog_service import get_active_warehouse, resolve_variant
from .concurrency import lock_for_update, run_atomic
from .document_service import DOC_GOODS_RECEIPT, DOC_PURCHASE_ORDER, next_document_number
from .inventory_service import (
    MOVEMENT_RECEIPT,
    REF_GOODS_RECEIPT,
    apply_movement,
    check_warehouse_scope,
)
from .tenant_service import get_scoped_or_404, scoped_query


# Purchase order status constants
PO_STATUS_PENDING = "pending"
PO_STATUS_APPROVED = "approved"
PO_STATUS_ORDERED = "ordered"
PO_STATUS_PARTIALLY_RECEIVED = "partially_received"
PO_STATUS_RECEIVED = "received"
PO_STATUS_CANCELLED = "cancelled"

PO_STATUSES = (
    PO_STATUS_PENDING,
    PO_STATUS_APPROVED,
    PO_STATUS_ORDERED,
    PO_STATUS_PARTIALLY_RECEIVED,
    PO_STATUS_RECEIVED,
    PO_STATUS_CANCELLED,
)

# Transitions a user may request directly; receiving states are set by GRNs
PO_MANUAL_TRANSITIONS = {
    PO_STATUS_PENDING: {PO_STATUS_APPROVED, PO_STATUS_CANCELLED},
    PO_STATUS_APPROVED: {PO_STATUS_ORDERED, PO_STATUS_CANCELLED},
    PO_STATUS_ORDERED: {PO_STATUS_CANCELLED},
}

PO_RECEIVABLE_STATUSES = {PO_STATUS_APPROVED, PO_STATUS_ORDERED, PO_STATUS_PARTIALLY_RECEIVED}

# Goods receipt status constants
GRN_STATUS_PENDING = "pending"
GRN_STATUS_INSPECTED = "inspected"
GRN_STATUS_APPROVED = "approved"
GRN_STATUS_REJECTED = "rejected"
GRN_STATUS_COMPLETED = "completed"

GRN_STATUSES = (
    GRN_STATUS_PENDING,
    GRN_STATUS_INSPECTED,
    GRN_STATUS_APPROVED,
    GRN_STATUS_REJECTED,
    GRN_STATUS_COMPLETED,
)

GRN_TRANSITIONS = {
    GRN_STATUS_PENDING: {GRN_STATUS_INSPECTED, GRN_STATUS_APPROVED, GRN_STATUS_REJECTED, GRN_STATUS_COMPLETED},
    GRN_STATUS_INSPECTED: {GRN_STATUS_APPROVED, GRN_STATUS_REJECTED, GRN_STATUS_COMPLETED},
    GRN_STATUS_APPROVED: {GRN_STATUS_COMPLETED},
}


# =============================================================================
# PURCHASE ORDERS
# =============================================================================

def create_purchase_order(
    company_id: int,
    *,
    supplier_id,
    items,
    warehouse_id=None,
    order_date=None,
    expected_delivery_date=None,
    notes: str | None = None,
    user=None,
) -> PurchaseOrder:
    """
    Create a PO in `pending` with its lines.

    items: [{product_id, variant_id?, quantity > 0, unit_price_cents >= 0}]
    """
    supplier_id = parse_positive_int(supplier_id, "supplier_id")
    warehouse_id = parse_optional_int(warehouse_id, "warehouse_id")
    order_date = parse_optional_date(order_date, "order_date")
    expected_delivery_date = parse_optional_date(expected_delivery_date, "expected_delivery_date")

    lines = []
    for index, raw in enumerate(parse_items(items)):
        lines.append((
            parse_positive_int(raw.get("product_id"), f"items[{index}].product_id"),
            parse_optional_int(raw.get("variant_id"), f"items[{index}].variant_id"),
            parse_positive_int(raw.get("quantity"), f"items[{index}].quantity"),
            parse_money_cents(raw.get("unit_price_cents"), f"items[{index}].unit_price_cents"),
        ))

    def _op():
        supplier = get_scoped_or_404(Supplier, supplier_id, company_id, label="Supplier")
        if not supplier.is_active:
            raise ValidationError("Supplier is inactive")
        if warehouse_id is not None:
            get_active_warehouse(company_id, warehouse_id)

        po = PurchaseOrder(
            company_id=company_id,
            supplier_id=supplier.id,
            warehouse_id=warehouse_id,
            po_number=next_document_number(company_id, DOC_PURCHASE_ORDER),
            status=PO_STATUS_PENDING,
            order_date=order_date or utcnow().date(),
            expected_delivery_date=expected_delivery_date,
            notes=parse_optional_str(notes, "notes", max_length=2000),
            created_by_user_id=user.id if user else None,
        )
        db.session.add(po)
        db.session.flush()

        total = 0
        for index, (product_id, variant_id, quantity, unit_price_cents) in enumerate(lines):
            variant = resolve_variant(company_id, product_id, variant_id, field=f"items[{index}]")
            line_total = quantity * unit_price_cents
            total += line_total
            db.session.add(PurchaseOrderItem(
                purchase_order_id=po.id,
                product_id=variant.product_id,
                variant_id=variant.id,
                quantity=quantity,
                received_quantity=0,
                unit_price_cents=unit_price_cents,
                line_total_cents=line_total,
            ))

        po.total_amount_cents = total
        db.session.flush()
        return po

    po = run_atomic(_op)
    current_app.logger.info("Purchase order %s created (company_id=%s)", po.po_number, company_id)
    return po


def list_purchase_orders(
    company_id: int,
    *,
    status: str | None = None,
    supplier_id: int | None = None,
) -> list[PurchaseOrder]:
    query = scoped_query(PurchaseOrder, company_id)
    if status:
        query = query.filter(PurchaseOrder.status == parse_choice(status, "status", PO_STATUSES))
    if supplier_id is not None:
        query = query.filter(PurchaseOrder.supplier_id == supplier_id)
    return query.order_by(PurchaseOrder.id.desc()).all()


def get_purchase_order(company_id: int, po_id) -> PurchaseOrder:
    return get_scoped_or_404(PurchaseOrder, po_id, company_id, label="Purchase order")


def get_purchase_order_detail(company_id: int, po_id) -> dict:
    """PO with items (incl. outstanding quantity), its receipts and invoices."""
    po = get_purchase_order(company_id, po_id)
    data = po.to_dict()
    data["supplier"] = {"id": po.supplier.id, "name": po.supplier.name} if po.supplier else None
    for item_data, item in zip(data["items"], po.items):
        item_data["product_name"] = item.product.name if item.product else None
        item_data["variant_name"] = item.variant.name if item.variant else None
    data["goods_receipts"] = [
        {
            "id": grn.id,
            "grn_number": grn.grn_number,
            "status": grn.status,
            "warehouse_id": grn.warehouse_id,
            "total_received_amount_cents": grn.total_received_amount_cents,
        }
        for grn in sorted(po.goods_receipts, key=lambda g: g.id)
    ]
    data["invoices"] = [
        {
            "id": inv.id,
            "invoice_number": inv.invoice_number,
            "status": inv.status,
            "total_amount_cents": inv.total_amount_cents,
            "paid_amount_cents": inv.paid_amount_cents,
        }
        for inv in sorted(po.invoices, key=lambda i: i.id)
    ]
    return data


def update_purchase_order_status(company_id: int, po_id, status, *, user=None) -> PurchaseOrder:
    """
    Apply a manual PO transition (approve, mark ordered, cancel).

    partially_received/received are only reachable through GRNs.
    """
    status = parse_choice(status, "status", PO_STATUSES)

    def _op():
        po = get_scoped_or_404(PurchaseOrder, po_id, company_id, label="Purchase order", lock=True)
        allowed = PO_MANUAL_TRANSITIONS.get(po.status, set())
        if status not in allowed:
            raise ConflictError(f"Cannot change purchase order from {po.status} to {status}")

        if status == PO_STATUS_CANCELLED and any(i.received_quantity for i in po.items):
            raise ConflictError("Cannot cancel a purchase order that has received quantities")

        previous = po.status
        po.status = status
        if status == PO_STATUS_APPROVED:
            po.approved_at = utcnow()
            po.approved_by_user_id = user.id if user else None
        elif status == PO_STATUS_ORDERED:
            po.ordered_at = utcnow()
        db.session.flush()
        return po, previous

    po, previous = run_atomic(_op)
    current_app.logger.info("Purchase order %s: %s -> %s", po.po_number, previous, po.status)
    return po


def _recompute_po_status(po: PurchaseOrder) -> None:
    if all(item.received_quantity >= item.quantity for item in po.items):
        po.status = PO_STATUS_RECEIVED
    elif any(item.received_quantity > 0 for item in po.items):
        po.status = PO_STATUS_PARTIALLY_RECEIVED
    elif po.status in (PO_STATUS_PARTIALLY_RECEIVED, PO_STATUS_RECEIVED):
        # Everything released again; back to where receiving started
        po.status = PO_STATUS_ORDERED if po.ordered_at is not None else PO_STATUS_APPROVED


def _split_received(received: int, accepted, rejected, field: str) -> tuple[int, int]:
    """Resolve (accepted, rejected) for a received quantity; a missing part is derived."""
    accepted = parse_optional_int(accepted, f"{field}.quantity_accepted")
    rejected = parse_optional_int(rejected, f"{field}.quantity_rejected")
    if accepted is None:
        accepted = received - (rejected or 0)
    if rejected is None:
        rejected = received - accepted
    if accepted < 0 or rejected < 0 or accepted + rejected != received:
        raise ValidationError(
            f"{field}: quantity_accepted + quantity_rejected must equal quantity_received ({received})"
        )
    return accepted, rejected


def _book_on_po_item(po_item: PurchaseOrderItem, delta: int, field: str) -> None:
    outstanding = po_item.quantity - po_item.received_quantity
    if delta > outstanding:
        raise ConflictError(
            f"{field}: accepted quantity {delta} exceeds outstanding "
            f"quantity {outstanding} for purchase order item {po_item.id}",
            details={
                "purchase_order_item_id": po_item.id,
                "outstanding": outstanding,
                "requested": delta,
            },
        )
    po_item.received_quantity = max(0, po_item.received_quantity + delta)


# =============================================================================
# GOODS RECEIPTS
# =============================================================================

def create_goods_receipt(
    company_id: int,
    *,
    purchase_order_id,
    warehouse_id,
    items,
    receipt_date=None,
    notes: str | None = None,
    user=None,
) -> GoodsReceipt:
    """
    Record goods received against a PO.

    items: [{purchase_order_item_id, quantity_received > 0,
             quantity_accepted?, quantity_rejected?,
             batch_number?, expiry_date?, condition_notes?}]

    quantity_accepted defaults to everything not rejected. Each accepted
    quantity must fit inside (ordered - already received) for its PO line.
    Accepted quantities are booked on the PO immediately and the PO advances
    to partially_received or received. No stock moves until completion.
    """
    purchase_order_id = parse_positive_int(purchase_order_id, "purchase_order_id")
    warehouse_id = parse_positive_int(warehouse_id, "warehouse_id")
    receipt_date = parse_optional_date(receipt_date, "receipt_date")

    lines = []
    for index, raw in enumerate(parse_items(items)):
        field = f"items[{index}]"
        received = parse_positive_int(raw.get("quantity_received"), f"{field}.quantity_received")
        accepted, rejected = _split_received(
            received, raw.get("quantity_accepted"), raw.get("quantity_rejected"), field,
        )
        lines.append({
            "po_item_id": parse_positive_int(raw.get("purchase_order_item_id"), f"{field}.purchase_order_item_id"),
            "received": received,
            "accepted": accepted,
            "rejected": rejected,
            "batch_number": parse_optional_str(raw.get("batch_number"), f"{field}.batch_number", max_length=64),
            "expiry_date": parse_optional_date(raw.get("expiry_date"), f"{field}.expiry_date"),
            "condition_notes": parse_optional_str(raw.get("condition_notes"), f"{field}.condition_notes"),
        })
    check_warehouse_scope(user, warehouse_id)

    def _op():
        po = get_scoped_or_404(PurchaseOrder, purchase_order_id, company_id, label="Purchase order", lock=True)
        if po.status not in PO_RECEIVABLE_STATUSES:
            raise ConflictError(f"Cannot receive against a purchase order in {po.status} status")
        warehouse = get_active_warehouse(company_id, warehouse_id)

        po_items = {
            item.id: item
            for item in lock_for_update(
                db.session.query(PurchaseOrderItem).filter(PurchaseOrderItem.purchase_order_id == po.id)
            ).all()
        }

        grn = GoodsReceipt(
            company_id=company_id,
            purchase_order_id=po.id,
            warehouse_id=warehouse.id,
            grn_number=next_document_number(company_id, DOC_GOODS_RECEIPT),
            status=GRN_STATUS_PENDING,
            receipt_date=receipt_date or utcnow().date(),
            notes=parse_optional_str(notes, "notes", max_length=2000),
            received_by_user_id=user.id if user else None,
        )
        db.session.add(grn)
        db.session.flush()

        total = 0
        for index, line in enumerate(lines):
            po_item = po_items.get(line["po_item_id"])
            if po_item is None:
                raise ValidationError(
                    f"items[{index}]: purchase order item {line['po_item_id']} does not belong to {po.po_number}"
                )
            _book_on_po_item(po_item, line["accepted"], f"items[{index}]")

            line_total = line["accepted"] * po_item.unit_price_cents
            total += line_total
            db.session.add(GoodsReceiptItem(
                goods_receipt_id=grn.id,
                purchase_order_item_id=po_item.id,
                product_id=po_item.product_id,
                variant_id=po_item.variant_id,
                quantity_received=line["received"],
                quantity_accepted=line["accepted"],
                quantity_rejected=line["rejected"],
                unit_price_cents=po_item.unit_price_cents,
                line_total_cents=line_total,
                batch_number=line["batch_number"],
                expiry_date=line["expiry_date"],
                condition_notes=line["condition_notes"],
            ))

        grn.total_received_amount_cents = total
        _recompute_po_status(po)
        db.session.flush()
        return grn, po

    grn, po = run_atomic(_op)
    current_app.logger.info(
        "Goods receipt %s created for %s (PO now %s)", grn.grn_number, po.po_number, po.status,
    )
    return grn


def list_goods_receipts(
    company_id: int,
    *,
    status: str | None = None,
    purchase_order_id: int | None = None,
    warehouse_id: int | None = None,
) -> list[GoodsReceipt]:
    query = scoped_query(GoodsReceipt, company_id)
    if status:
        query = query.filter(GoodsReceipt.status == parse_choice(status, "status", GRN_STATUSES))
    if purchase_order_id is not None:
        query = query.filter(GoodsReceipt.purchase_order_id == purchase_order_id)
    if warehouse_id is not None:
        query = query.filter(GoodsReceipt.warehouse_id == warehouse_id)
    return query.order_by(GoodsReceipt.id.desc()).all()


def get_goods_receipt(company_id: int, grn_id) -> GoodsReceipt:
    return get_scoped_or_404(GoodsReceipt, grn_id, company_id, label="Goods receipt")


def get_goods_receipt_detail(company_id: int, grn_id) -> dict:
    """GRN with its PO, warehouse and items (with product names)."""
    grn = get_goods_receipt(company_id, grn_id)
    data = grn.to_dict()
    po = grn.purchase_order
    data["purchase_order"] = {
        "id": po.id,
        "po_number": po.po_number,
        "status": po.status,
        "supplier_id": po.supplier_id,
        "supplier_name": po.supplier.name if po.supplier else None,
    }
    data["warehouse"] = {"id": grn.warehouse.id, "name": grn.warehouse.name, "code": grn.warehouse.code}
    for item_data, item in zip(data["items"], grn.items):
        item_data["product_name"] = item.product.name if item.product else None
        item_data["ordered_quantity"] = item.purchase_order_item.quantity
    return data


def _lock_po(grn: GoodsReceipt) -> PurchaseOrder:
    return lock_for_update(
        db.session.query(PurchaseOrder).filter(PurchaseOrder.id == grn.purchase_order_id)
    ).one()


def _release_to_po(grn: GoodsReceipt) -> PurchaseOrder:
    po = _lock_po(grn)
    for item in grn.items:
        po_item = item.purchase_order_item
        po_item.received_quantity = max(0, po_item.received_quantity - item.quantity_accepted)
    _recompute_po_status(po)
    return po


def _apply_inspection(grn: GoodsReceipt, splits: dict[int, tuple]) -> None:
    """Re-split GRN lines into accepted/rejected and move the PO booking by the difference."""
    items = {item.id: item for item in grn.items}
    unknown = sorted(set(splits) - set(items))
    if unknown:
        raise ValidationError(f"Goods receipt items {unknown} do not belong to {grn.grn_number}")

    po = _lock_po(grn)
    total = 0
    for item in grn.items:
        if item.id in splits:
            field, accepted, rejected = splits[item.id]
            accepted, rejected = _split_received(item.quantity_received, accepted, rejected, field)
            _book_on_po_item(item.purchase_order_item, accepted - item.quantity_accepted, field)
            item.quantity_accepted = accepted
            item.quantity_rejected = rejected
            item.line_total_cents = accepted * item.unit_price_cents
        total += item.line_total_cents
    grn.total_received_amount_cents = total
    _recompute_po_status(po)


def update_goods_receipt_status(
    company_id: int,
    grn_id,
    status,
    *,
    inspection_notes: str | None = None,
    items=None,
    user=None,
) -> GoodsReceipt:
    """
    Move a GRN through inspection/approval/rejection.

    completed is delegated to complete_goods_receipt() (stock credit).
    Rejecting releases the GRN's accepted quantities back to the PO.

    items (inspected/approved only):
        [{goods_receipt_item_id, quantity_accepted?, quantity_rejected?}]
    re-splits those lines; the PO booking follows the accepted quantity.
    """
    status = parse_choice(status, "status", GRN_STATUSES)
    if status == GRN_STATUS_COMPLETED:
        return complete_goods_receipt(company_id, grn_id, user=user)
    inspection_notes = parse_optional_str(inspection_notes, "inspection_notes", max_length=2000)

    splits = {}
    if items is not None:
        if status not in (GRN_STATUS_INSPECTED, GRN_STATUS_APPROVED):
            raise ValidationError("items can only be given when inspecting or approving a goods receipt")
        for index, raw in enumerate(parse_items(items)):
            field = f"items[{index}]"
            item_id = parse_positive_int(raw.get("goods_receipt_item_id"), f"{field}.goods_receipt_item_id")
            splits[item_id] = (field, raw.get("quantity_accepted"), raw.get("quantity_rejected"))

    def _op():
        grn = get_scoped_or_404(GoodsReceipt, grn_id, company_id, label="Goods receipt", lock=True)
        allowed = GRN_TRANSITIONS.get(grn.status, set())
        if status not in allowed:
            raise ConflictError(f"Cannot change goods receipt from {grn.status} to {status}")
        check_warehouse_scope(user, grn.warehouse_id)

        previous = grn.status
        grn.status = status
        if inspection_notes:
            grn.inspection_notes = inspection_notes
        if status in (GRN_STATUS_INSPECTED, GRN_STATUS_REJECTED):
            grn.inspected_by_user_id = user.id if user else None
        if splits:
            _apply_inspection(grn, splits)
        if status == GRN_STATUS_REJECTED:
            _release_to_po(grn)
        db.session.flush()
        return grn, previous

    grn, previous = run_atomic(_op)
    current_app.logger.info("Goods receipt %s: %s -> %s", grn.grn_number, previous, grn.status)
    return grn


def complete_goods_receipt(company_id: int, grn_id, *, user=None) -> GoodsReceipt:
    """
    Complete a GRN and credit stock: one RECEIPT movement per line with an
    accepted quantity. Fully rejected lines move nothing.

    IDEMPOTENCY: completing twice is a ConflictError and credits nothing.
    A concurrent second completion loses the version check, is re-run,
    and then sees the completed status.
    """
    def _op():
        grn = get_scoped_or_404(GoodsReceipt, grn_id, company_id, label="Goods receipt", lock=True)
        if grn.status == GRN_STATUS_COMPLETED or grn.completed_at is not None:
            raise ConflictError(f"Goods receipt {grn.grn_number} is already completed")
        if GRN_STATUS_COMPLETED not in GRN_TRANSITIONS.get(grn.status, set()):
            raise ConflictError(f"Cannot complete a goods receipt in {grn.status} status")
        check_warehouse_scope(user, grn.warehouse_id)
        get_active_warehouse(company_id, grn.warehouse_id)

        user_id = user.id if user else None
        for item in grn.items:
            if item.quantity_accepted <= 0:
                continue
            movement = apply_movement(
                company_id,
                grn.warehouse_id,
                item.product_id,
                item.variant_id,
                MOVEMENT_RECEIPT,
                item.quantity_accepted,
                reference_type=REF_GOODS_RECEIPT,
                reference_id=grn.id,
                notes=f"GRN {grn.grn_number}",
                user_id=user_id,
            )
            item.stock_movement_id = movement.id

        grn.status = GRN_STATUS_COMPLETED
        grn.completed_at = utcnow()
        grn.completed_by_user_id = user_id
        db.session.flush()
        return grn

    grn = run_atomic(_op)
    current_app.logger.info("Goods receipt %s completed; stock credited", grn.grn_number)
    return grn
