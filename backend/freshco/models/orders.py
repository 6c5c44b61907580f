from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


ORDER_TYPE_SALES = "sales"
ORDER_TYPE_PURCHASE = "purchase"
ORDER_TYPE_RETURN = "return"
ORDER_TYPES = (ORDER_TYPE_SALES, ORDER_TYPE_PURCHASE, ORDER_TYPE_RETURN)

ORDER_SOURCES = ("ecommerce", "pos", "sales", "internal")


class Order(db.Model):
    """
    Sales, purchase or return order.

    LIFECYCLE (sales):
    pending -> processing (lazily, once the grace window has elapsed)
            -> shipped -> delivered
    pending/processing -> cancelled (only inside the grace window)

    Stock is decremented when the order is placed (one SALE movement per
    line), so cancelling emits compensating movements.

    RETURNS: order_type="return" rows point at the sales order they reverse
    through original_order_id. Creating a return never touches stock;
    restocking is a separate step recorded by restocked_at.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("company_id", "order_number", name="uq_orders_company_number"),
        db.Index("ix_orders_company_type_status", "company_id", "order_type", "status"),
        db.Index("ix_orders_company_created", "company_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)

    order_number = db.Column(db.String(64), nullable=False)
    order_type = db.Column(db.String(16), nullable=False, default=ORDER_TYPE_SALES)
    order_source = db.Column(db.String(16), nullable=False, default="sales")
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    original_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(64), nullable=True)
    shipping_address = db.Column(db.Text, nullable=True)

    total_cents = db.Column(db.Integer, nullable=False, default=0)
    return_reason = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    restocked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.id",
    )
    original_order = db.relationship(
        "Order",
        remote_side=[id],
        backref=db.backref("return_orders", lazy=True),
    )
    warehouse = db.relationship("Warehouse")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} type={self.order_type} status={self.status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "company_id": self.company_id,
            "order_number": self.order_number,
            "order_type": self.order_type,
            "order_source": self.order_source,
            "status": self.status,
            "warehouse_id": self.warehouse_id,
            "user_id": self.user_id,
            "original_order_id": self.original_order_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "shipping_address": self.shipping_address,
            "total_cents": self.total_cents,
            "return_reason": self.return_reason,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "restocked_at": to_utc_z(self.restocked_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_positive_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    # quantity * unit_price_cents, fixed at creation
    subtotal_cents = db.Column(db.Integer, nullable=False)

    # SALE / RETURN movement that moved the stock for this line
    stock_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "variant_id": self.variant_id,
            "variant_name": self.variant.name if self.variant else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
            "stock_movement_id": self.stock_movement_id,
        }
