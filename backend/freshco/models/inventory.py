from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class WarehouseInventory(db.Model):
    """
    Current stock snapshot per (warehouse, product, variant).

    The snapshot is DERIVED: stock_count always equals the sum of signed
    StockMovement quantities for the same key and can be rebuilt from the
    ledger at any time. It exists so reads and the negative-stock guard do
    not need to aggregate the whole ledger.

    CONCURRENCY: version_id is SQLAlchemy's optimistic version column.
    A writer holding a stale snapshot gets StaleDataError at flush and its
    whole unit of work is re-run (services.concurrency.run_atomic).
    """
    __tablename__ = "warehouse_inventory"
    __table_args__ = (
        db.UniqueConstraint("warehouse_id", "product_id", "variant_id", name="uq_warehouse_inventory_key"),
        db.CheckConstraint("stock_count >= 0", name="ck_warehouse_inventory_non_negative"),
        db.CheckConstraint("reserved_stock >= 0", name="ck_warehouse_inventory_reserved_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    stock_count = db.Column(db.Integer, nullable=False, default=0)
    reserved_stock = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    warehouse = db.relationship("Warehouse")
    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_stock(self) -> int:
        return self.stock_count - self.reserved_stock

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "warehouse_id": self.warehouse_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "stock_count": self.stock_count,
            "reserved_stock": self.reserved_stock,
            "available_stock": self.available_stock,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only inventory ledger entry.

    One row per stock mutation; rows are never updated or deleted.
    quantity is signed (positive = into the warehouse).
    reference_type/reference_id link back to the originating document
    (goods_receipt, order, order_cancellation, return_order, transfer,
    adjustment).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_key", "warehouse_id", "product_id", "variant_id"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        db.Index("ix_stock_movements_company_created", "company_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)

    movement_type = db.Column(db.String(32), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(32), nullable=True)
    # String so UUID transfer ids and integer document ids share one column
    reference_id = db.Column(db.String(64), nullable=True)

    notes = db.Column(db.String(255), nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "warehouse_id": self.warehouse_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
