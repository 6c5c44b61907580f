from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z, utcnow


# =============================================================================
# PURCHASE ORDER
# =============================================================================

class PurchaseOrder(db.Model):
    """
    Commitment to buy quantities from a supplier.

    LIFECYCLE:
    pending -> approved -> ordered -> partially_received -> received
    (cancelled from pending/approved, or from ordered while nothing received)

    IMMUTABLE: once received, the PO and its lines are never modified.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.UniqueConstraint("company_id", "po_number", name="uq_purchase_orders_company_number"),
        db.Index("ix_purchase_orders_company_status", "company_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)

    po_number = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(32), nullable=False, default="pending", index=True)

    order_date = db.Column(db.Date, nullable=True)
    expected_delivery_date = db.Column(db.Date, nullable=True)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    # Set when marked ordered; a PO whose receipts are all released falls back on it
    ordered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("Supplier")
    warehouse = db.relationship("Warehouse")
    items = db.relationship(
        "PurchaseOrderItem",
        backref="purchase_order",
        lazy=True,
        order_by="PurchaseOrderItem.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<PurchaseOrder id={self.id} po_number={self.po_number!r} status={self.status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "company_id": self.company_id,
            "supplier_id": self.supplier_id,
            "warehouse_id": self.warehouse_id,
            "po_number": self.po_number,
            "status": self.status,
            "order_date": to_iso_date(self.order_date),
            "expected_delivery_date": to_iso_date(self.expected_delivery_date),
            "total_amount_cents": self.total_amount_cents,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "approved_at": to_utc_z(self.approved_at),
            "ordered_at": to_utc_z(self.ordered_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PurchaseOrderItem(db.Model):
    __tablename__ = "purchase_order_items"
    __table_args__ = (
        db.CheckConstraint("received_quantity <= quantity", name="ck_po_items_not_over_received"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    received_quantity = db.Column(db.Integer, nullable=False, default=0)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")

    @property
    def outstanding_quantity(self) -> int:
        return self.quantity - (self.received_quantity or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "received_quantity": self.received_quantity,
            "outstanding_quantity": self.outstanding_quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


# =============================================================================
# GOODS RECEIPT (GRN)
# =============================================================================

class GoodsReceipt(db.Model):
    """
    Physical receipt of a purchase order's goods at a warehouse.

    Quantities are booked against the PO when the GRN is created; stock is
    only credited when the GRN is completed (RECEIPT movements). completed_at
    is the idempotency marker for the stock credit.
    """
    __tablename__ = "goods_receipts"
    __table_args__ = (
        db.UniqueConstraint("company_id", "grn_number", name="uq_goods_receipts_company_number"),
        db.Index("ix_goods_receipts_company_status", "company_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    grn_number = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(32), nullable=False, default="pending", index=True)

    receipt_date = db.Column(db.Date, nullable=True)
    total_received_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    inspection_notes = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    inspected_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    completed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    purchase_order = db.relationship("PurchaseOrder", backref=db.backref("goods_receipts", lazy=True))
    warehouse = db.relationship("Warehouse")
    items = db.relationship(
        "GoodsReceiptItem",
        backref="goods_receipt",
        lazy=True,
        order_by="GoodsReceiptItem.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<GoodsReceipt id={self.id} grn_number={self.grn_number!r} status={self.status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "company_id": self.company_id,
            "purchase_order_id": self.purchase_order_id,
            "warehouse_id": self.warehouse_id,
            "grn_number": self.grn_number,
            "status": self.status,
            "receipt_date": to_iso_date(self.receipt_date),
            "total_received_amount_cents": self.total_received_amount_cents,
            "inspection_notes": self.inspection_notes,
            "notes": self.notes,
            "received_by_user_id": self.received_by_user_id,
            "inspected_by_user_id": self.inspected_by_user_id,
            "completed_by_user_id": self.completed_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class GoodsReceiptItem(db.Model):
    __tablename__ = "goods_receipt_items"
    __table_args__ = (
        db.CheckConstraint(
            "quantity_accepted + quantity_rejected = quantity_received",
            name="ck_grn_items_accepted_plus_rejected",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    goods_receipt_id = db.Column(db.Integer, db.ForeignKey("goods_receipts.id"), nullable=False, index=True)
    purchase_order_item_id = db.Column(db.Integer, db.ForeignKey("purchase_order_items.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)

    quantity_received = db.Column(db.Integer, nullable=False)
    # accepted + rejected == received; only accepted is booked and stocked
    quantity_accepted = db.Column(db.Integer, nullable=False)
    quantity_rejected = db.Column(db.Integer, nullable=False, default=0)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    batch_number = db.Column(db.String(64), nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)
    condition_notes = db.Column(db.String(255), nullable=True)

    # Set when the GRN is completed
    stock_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    purchase_order_item = db.relationship("PurchaseOrderItem")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "goods_receipt_id": self.goods_receipt_id,
            "purchase_order_item_id": self.purchase_order_item_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity_received": self.quantity_received,
            "quantity_accepted": self.quantity_accepted,
            "quantity_rejected": self.quantity_rejected,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "batch_number": self.batch_number,
            "expiry_date": to_iso_date(self.expiry_date),
            "condition_notes": self.condition_notes,
            "stock_movement_id": self.stock_movement_id,
        }


# =============================================================================
# PURCHASE INVOICE
# =============================================================================

class PurchaseInvoice(db.Model):
    """
    Supplier invoice raised against a completed GRN.

    status is never written directly by callers; it is always recomputed
    with invoice_service.derive_invoice_status(total, paid, due_date).
    Only cancelled invoices free their GRN (and supplier invoice number)
    for re-invoicing.
    """
    __tablename__ = "purchase_invoices"
    __table_args__ = (
        db.UniqueConstraint("company_id", "invoice_number", name="uq_purchase_invoices_company_number"),
        db.Index("ix_purchase_invoices_supplier_ref", "company_id", "supplier_id", "supplier_invoice_number"),
        db.CheckConstraint("paid_amount_cents <= total_amount_cents", name="ck_purchase_invoices_not_overpaid"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    goods_receipt_id = db.Column(db.Integer, db.ForeignKey("goods_receipts.id"), nullable=False, index=True)

    invoice_number = db.Column(db.String(64), nullable=False)
    supplier_invoice_number = db.Column(db.String(128), nullable=True)

    status = db.Column(db.String(32), nullable=False, default="pending", index=True)
    invoice_date = db.Column(db.Date, nullable=True)
    due_date = db.Column(db.Date, nullable=True)

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("Supplier")
    goods_receipt = db.relationship("GoodsReceipt", backref=db.backref("invoices", lazy=True))
    purchase_order = db.relationship("PurchaseOrder", backref=db.backref("invoices", lazy=True))
    items = db.relationship(
        "PurchaseInvoiceItem",
        backref="invoice",
        lazy=True,
        order_by="PurchaseInvoiceItem.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def balance_due_cents(self) -> int:
        return self.total_amount_cents - self.paid_amount_cents

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "company_id": self.company_id,
            "supplier_id": self.supplier_id,
            "purchase_order_id": self.purchase_order_id,
            "goods_receipt_id": self.goods_receipt_id,
            "invoice_number": self.invoice_number,
            "supplier_invoice_number": self.supplier_invoice_number,
            "status": self.status,
            "invoice_date": to_iso_date(self.invoice_date),
            "due_date": to_iso_date(self.due_date),
            "total_amount_cents": self.total_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "balance_due_cents": self.balance_due_cents,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PurchaseInvoiceItem(db.Model):
    __tablename__ = "purchase_invoice_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_invoice_id = db.Column(db.Integer, db.ForeignKey("purchase_invoices.id"), nullable=False, index=True)
    goods_receipt_item_id = db.Column(db.Integer, db.ForeignKey("goods_receipt_items.id"), nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_invoice_id": self.purchase_invoice_id,
            "goods_receipt_item_id": self.goods_receipt_item_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


# =============================================================================
# SUPPLIER PAYMENT
# =============================================================================

class SupplierPayment(db.Model):
    __tablename__ = "supplier_payments"
    __table_args__ = (
        db.UniqueConstraint("company_id", "payment_number", name="uq_supplier_payments_company_number"),
        db.Index("ix_supplier_payments_invoice_status", "purchase_invoice_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    purchase_invoice_id = db.Column(db.Integer, db.ForeignKey("purchase_invoices.id"), nullable=False)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)

    payment_number = db.Column(db.String(64), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False, default="bank_transfer")
    reference_number = db.Column(db.String(128), nullable=True)
    status = db.Column(db.String(32), nullable=False, default="pending", index=True)
    payment_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    invoice = db.relationship("PurchaseInvoice", backref=db.backref("payments", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "purchase_invoice_id": self.purchase_invoice_id,
            "supplier_id": self.supplier_id,
            "payment_number": self.payment_number,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "reference_number": self.reference_number,
            "status": self.status,
            "payment_date": to_iso_date(self.payment_date),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
        }
