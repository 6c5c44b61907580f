# Overview: Master data (warehouses, products/variants, suppliers) scoped by company.

"""
Catalog Service

MULTI-TENANT: every row is created with the caller's company_id and every
lookup goes through tenant_service.scoped_query / get_scoped_or_404, so an
id from another company behaves exactly like an unknown id.

VARIANTS: stock, prices and document lines always name a variant. Creating
a product creates its default variant; callers that omit variant_id get
the default variant via resolve_variant().
"""

from __future__ import annotations

from flask import current_app

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    Product,
    ProductVariant,
    Supplier,
    SupplierBankAccount,
    User,
    Warehouse,
    WarehouseManager,
)
from ..models.auth import ROLE_WAREHOUSE_MANAGER
from ..validation import parse_money_cents, parse_optional_int, parse_optional_str
from .concurrency import run_atomic
from .effects import EffectResult, run_best_effort
from .tenant_service import get_scoped_or_404, scoped_query


# =============================================================================
# WAREHOUSES
# =============================================================================

def create_warehouse(company_id: int, *, name: str, code: str, address: str | None = None) -> Warehouse:
    name = parse_optional_str(name, "name")
    code = parse_optional_str(code, "code", max_length=32)
    if not name or not code:
        raise ValidationError("name and code are required")

    def _op():
        if scoped_query(Warehouse, company_id).filter(Warehouse.code == code.upper()).first():
            raise ConflictError(f"Warehouse code '{code.upper()}' already exists")
        warehouse = Warehouse(
            company_id=company_id,
            name=name,
            code=code.upper(),
            address=address,
            is_active=True,
        )
        db.session.add(warehouse)
        db.session.flush()
        return warehouse

    return run_atomic(_op)


def list_warehouses(company_id: int, *, include_inactive: bool = False) -> list[Warehouse]:
    query = scoped_query(Warehouse, company_id)
    if not include_inactive:
        query = query.filter(Warehouse.is_active.is_(True))
    return query.order_by(Warehouse.name).all()


def get_active_warehouse(company_id: int, warehouse_id, *, field: str = "warehouse_id") -> Warehouse:
    """Tenant-scoped warehouse lookup; inactive warehouses cannot move stock."""
    warehouse = get_scoped_or_404(Warehouse, warehouse_id, company_id, label="Warehouse")
    if not warehouse.is_active:
        raise ValidationError(f"{field}: warehouse {warehouse.code} is inactive")
    return warehouse


def assign_warehouse_manager(company_id: int, warehouse_id: int, user_id: int) -> WarehouseManager:
    """Grant a warehouse_manager user access to one warehouse."""
    def _op():
        warehouse = get_scoped_or_404(Warehouse, warehouse_id, company_id, label="Warehouse")
        user = get_scoped_or_404(User, user_id, company_id, label="User")
        if not user.has_any_role(ROLE_WAREHOUSE_MANAGER):
            raise ValidationError("User does not have the warehouse_manager role")

        existing = (
            db.session.query(WarehouseManager)
            .filter_by(user_id=user.id, warehouse_id=warehouse.id)
            .first()
        )
        if existing:
            return existing
        assignment = WarehouseManager(company_id=company_id, user_id=user.id, warehouse_id=warehouse.id)
        db.session.add(assignment)
        db.session.flush()
        return assignment

    return run_atomic(_op)


def managed_warehouse_ids(user_id: int) -> set[int]:
    rows = db.session.query(WarehouseManager.warehouse_id).filter_by(user_id=user_id).all()
    return {r.warehouse_id for r in rows}


# =============================================================================
# PRODUCTS / VARIANTS
# =============================================================================

def _variant_rows(product_sku: str, price_cents: int, variants) -> list[dict]:
    if not variants:
        return [{"name": "Default", "sku": product_sku, "price_cents": price_cents, "is_default": True}]

    if not isinstance(variants, list):
        raise ValidationError("variants must be an array")

    rows = []
    for index, raw in enumerate(variants):
        if not isinstance(raw, dict):
            raise ValidationError(f"variants[{index}] must be an object")
        name = parse_optional_str(raw.get("name"), f"variants[{index}].name")
        sku = parse_optional_str(raw.get("sku"), f"variants[{index}].sku", max_length=64)
        if not name or not sku:
            raise ValidationError(f"variants[{index}] requires name and sku")
        rows.append({
            "name": name,
            "sku": sku,
            "price_cents": parse_money_cents(raw.get("price_cents", price_cents), f"variants[{index}].price_cents"),
            "is_default": bool(raw.get("is_default", False)),
        })

    if not any(s["is_default"] for s in rows):
        rows[0]["is_default"] = True
    if sum(1 for s in rows if s["is_default"]) > 1:
        raise ValidationError("Only one variant can be the default")
    if len({s["sku"] for s in rows}) != len(rows):
        raise ValidationError("Variant SKUs must be unique")
    return rows


def create_product(
    company_id: int,
    *,
    sku: str,
    name: str,
    description: str | None = None,
    price_cents: int = 0,
    variants: list[dict] | None = None,
) -> Product:
    """
    Create a product and its variants (a single default variant if none given).
    """
    sku = parse_optional_str(sku, "sku", max_length=64)
    name = parse_optional_str(name, "name")
    if not sku or not name:
        raise ValidationError("sku and name are required")
    price_cents = parse_money_cents(price_cents, "price_cents")
    rows = _variant_rows(sku, price_cents, variants)

    def _op():
        if scoped_query(Product, company_id).filter(Product.sku == sku).first():
            raise ConflictError(f"Product SKU '{sku}' already exists")
        taken = {
            row.sku for row in scoped_query(ProductVariant, company_id)
            .filter(ProductVariant.sku.in_([s["sku"] for s in rows]))
            .all()
        }
        if taken:
            raise ConflictError(f"Variant SKU(s) already exist: {', '.join(sorted(taken))}")

        product = Product(company_id=company_id, sku=sku, name=name, description=description, is_active=True)
        db.session.add(product)
        db.session.flush()

        for fields in rows:
            db.session.add(ProductVariant(company_id=company_id, product_id=product.id, is_active=True, **fields))
        db.session.flush()
        return product

    return run_atomic(_op)


def list_products(company_id: int, *, include_inactive: bool = False) -> list[Product]:
    query = scoped_query(Product, company_id)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    return query.order_by(Product.name).all()


def resolve_variant(company_id: int, product_id, variant_id=None, *, field: str = "item") -> ProductVariant:
    """
    Resolve the (product, variant) pair named by a document line.

    variant_id None -> the product's default variant. A variant that
    belongs to a different product is a ValidationError; ids outside the
    tenant are NotFound.
    """
    product = get_scoped_or_404(Product, product_id, company_id, label="Product")

    if variant_id is None:
        variant = (
            scoped_query(ProductVariant, company_id)
            .filter(ProductVariant.product_id == product.id, ProductVariant.is_default.is_(True))
            .first()
        )
        if variant is None:
            raise NotFoundError(f"{field}: product {product.id} has no default variant")
        return variant

    variant = get_scoped_or_404(ProductVariant, variant_id, company_id, label="Product variant")
    if variant.product_id != product.id:
        raise ValidationError(f"{field}: variant {variant.id} does not belong to product {product.id}")
    return variant


# =============================================================================
# SUPPLIERS
# =============================================================================

def _bank_account_effect(company_id: int, supplier_id: int, raw: dict, index: int):
    def _effect():
        if not isinstance(raw, dict):
            raise ValidationError(f"bank_accounts[{index}] must be an object")
        account_number = parse_optional_str(raw.get("account_number"), "account_number", max_length=64)
        bank_name = parse_optional_str(raw.get("bank_name"), "bank_name")
        if not account_number or not bank_name:
            raise ValidationError("bank_name and account_number are required")
        db.session.add(SupplierBankAccount(
            company_id=company_id,
            supplier_id=supplier_id,
            bank_name=bank_name,
            account_name=parse_optional_str(raw.get("account_name"), "account_name"),
            account_number=account_number,
            routing_code=parse_optional_str(raw.get("routing_code"), "routing_code", max_length=64),
            is_primary=bool(raw.get("is_primary", index == 0)),
        ))
        db.session.flush()
    return _effect


def create_supplier(
    company_id: int,
    *,
    name: str,
    code: str | None = None,
    contact_name: str | None = None,
    contact_email: str | None = None,
    contact_phone: str | None = None,
    address: str | None = None,
    payment_terms_days=None,
    bank_accounts: list[dict] | None = None,
) -> tuple[Supplier, list[EffectResult]]:
    """
    Create a supplier; bank accounts are best-effort secondary writes.

    Returns (supplier, effect_results). A bank account that fails to save
    is reported in effect_results and does not undo the supplier.
    """
    name = parse_optional_str(name, "name")
    if not name:
        raise ValidationError("name is required")
    code = parse_optional_str(code, "code", max_length=64)
    payment_terms_days = parse_optional_int(payment_terms_days, "payment_terms_days")
    if bank_accounts is not None and not isinstance(bank_accounts, list):
        raise ValidationError("bank_accounts must be an array")

    def _op():
        if code and scoped_query(Supplier, company_id).filter(Supplier.code == code).first():
            raise ConflictError(f"Supplier code '{code}' already exists")

        supplier = Supplier(
            company_id=company_id,
            name=name,
            code=code,
            contact_name=parse_optional_str(contact_name, "contact_name"),
            contact_email=parse_optional_str(contact_email, "contact_email"),
            contact_phone=parse_optional_str(contact_phone, "contact_phone", max_length=64),
            address=address,
            payment_terms_days=payment_terms_days,
            is_active=True,
        )
        db.session.add(supplier)
        db.session.flush()

        effects = [
            run_best_effort(
                f"supplier_bank_account[{index}]",
                _bank_account_effect(company_id, supplier.id, raw, index),
            )
            for index, raw in enumerate(bank_accounts or [])
        ]
        return supplier, effects

    supplier, effects = run_atomic(_op)
    failed = [e.name for e in effects if not e.succeeded]
    if failed:
        current_app.logger.warning("Supplier id=%s created without %s", supplier.id, ", ".join(failed))
    return supplier, effects


def list_suppliers(company_id: int, *, include_inactive: bool = False) -> list[Supplier]:
    query = scoped_query(Supplier, company_id)
    if not include_inactive:
        query = query.filter(Supplier.is_active.is_(True))
    return query.order_by(Supplier.name).all()
