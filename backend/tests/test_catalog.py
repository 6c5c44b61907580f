# Overview: Pytest coverage for warehouses, products/variants, suppliers and stock levels.

import pytest

from freshco.errors import ConflictError, ValidationError
from freshco.services import catalog_service

from conftest import auth_headers, set_stock


class TestProducts:

    def test_product_gets_default_variant(self, client, admin_headers):
        resp = client.post("/api/products", json={"sku": "KIWI", "name": "Kiwi", "price_cents": 75}, headers=admin_headers)
        assert resp.status_code == 201
        variants = resp.get_json()["data"]["variants"]
        assert [(v["sku"], v["price_cents"], v["is_default"]) for v in variants] == [("KIWI", 75, True)]

    def test_explicit_variants(self, company_a):
        product = catalog_service.create_product(
            company_a.id,
            sku="GRAPE",
            name="Grapes",
            price_cents=300,
            variants=[
                {"name": "500g", "sku": "GRAPE-500"},
                {"name": "1kg", "sku": "GRAPE-1K", "price_cents": 550, "is_default": True},
            ],
        )
        by_sku = {v.sku: v for v in product.variants}
        assert by_sku["GRAPE-500"].price_cents == 300
        assert by_sku["GRAPE-1K"].is_default is True
        assert by_sku["GRAPE-500"].is_default is False

    @pytest.mark.parametrize(
        "variants",
        [
            [{"name": "a", "sku": "X"}, {"name": "b", "sku": "X"}],
            [{"name": "a", "sku": "X", "is_default": True}, {"name": "b", "sku": "Y", "is_default": True}],
            [{"name": "no sku"}],
            "not-a-list",
        ],
    )
    def test_bad_variants(self, company_a, variants):
        with pytest.raises(ValidationError):
            catalog_service.create_product(company_a.id, sku="BAD", name="Bad", price_cents=1, variants=variants)

    def test_duplicate_sku(self, company_a, product_a):
        with pytest.raises(ConflictError):
            catalog_service.create_product(company_a.id, sku="APPLE", name="Apple again", price_cents=1)

    def test_same_sku_in_other_company(self, company_b, product_a):
        product = catalog_service.create_product(company_b.id, sku="APPLE", name="Apple", price_cents=1)
        assert product.company_id == company_b.id


class TestSuppliers:

    def test_bank_account_failure_is_reported(self, client, procurement_a):
        resp = client.post("/api/suppliers", json={
            "name": "Hillside Dairy",
            "code": "HILL",
            "bank_accounts": [
                {"bank_name": "First Bank", "account_number": "0001"},
                {"bank_name": "Broken Bank"},
            ],
        }, headers=auth_headers(procurement_a))

        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert [e["succeeded"] for e in data["effects"]] == [True, False]
        assert data["effects"][1]["name"] == "supplier_bank_account[1]"
        assert [b["bank_name"] for b in data["supplier"]["bank_accounts"]] == ["First Bank"]

    def test_duplicate_code(self, company_a, supplier_a):
        with pytest.raises(ConflictError):
            catalog_service.create_supplier(company_a.id, name="Other", code="ORCH")

    def test_sales_cannot_create_supplier(self, client, sales_a):
        resp = client.post("/api/suppliers", json={"name": "Nope"}, headers=auth_headers(sales_a))
        assert resp.status_code == 403


class TestWarehouses:

    def test_assign_manager_requires_role(self, client, admin_headers, sales_a, warehouse_a):
        resp = client.post(
            f"/api/warehouses/{warehouse_a.id}/managers",
            json={"user_id": sales_a.id},
            headers=admin_headers,
        )
        assert resp.status_code == 400

    def test_assign_manager(self, client, admin_headers, manager_a, warehouse_a):
        resp = client.post(
            f"/api/warehouses/{warehouse_a.id}/managers",
            json={"user_id": manager_a.id},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert catalog_service.managed_warehouse_ids(manager_a.id) == {warehouse_a.id}

    def test_stock_levels(self, client, admin_headers, company_a, warehouse_a, warehouse_a2, product_a):
        set_stock(company_a, warehouse_a, product_a, 8)
        set_stock(company_a, warehouse_a2, product_a, 2)

        resp = client.get(f"/api/inventory/stock?warehouse_id={warehouse_a.id}", headers=admin_headers)
        rows = resp.get_json()["data"]
        assert len(rows) == 1
        assert rows[0]["stock_count"] == 8
        assert rows[0]["available_stock"] == 8
