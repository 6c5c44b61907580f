# Overview: Pytest coverage for the append-only stock ledger, adjustments and transfers.

"""
Inventory Ledger Tests

Verifies:
- Every stock change is one StockMovement and the snapshot follows it
- stock_count never goes negative (InsufficientStockError, nothing written)
- Reserved stock is held back from outbound movements and transfers
- Adjust with no difference is a no-op that writes nothing
- Transfers are all-or-nothing with a shared transfer_id
- verify_ledger / rebuild_snapshots detect and repair drift
- Warehouse managers are limited to their assigned warehouses
"""

import pytest

from freshco.errors import InsufficientStockError, ValidationError
from freshco.extensions import db
from freshco.models import StockMovement, WarehouseInventory
from freshco.services import catalog_service, inventory_service
from freshco.services.concurrency import run_atomic
from freshco.services.inventory_service import (
    MOVEMENT_ADJUSTMENT_OUT,
    MOVEMENT_RECEIPT,
    MOVEMENT_SALE,
    apply_movement,
)

from conftest import auth_headers, default_variant, set_stock, stock_of


def _movements(company):
    return (
        db.session.query(StockMovement)
        .filter_by(company_id=company.id)
        .order_by(StockMovement.id)
        .all()
    )


class TestApplyMovement:

    def test_movement_updates_snapshot(self, company_a, warehouse_a, product_a):
        variant = default_variant(product_a)
        run_atomic(lambda: apply_movement(
            company_a.id, warehouse_a.id, product_a.id, variant.id, MOVEMENT_RECEIPT, 12,
        ))
        assert stock_of(company_a, warehouse_a, product_a) == 12
        assert inventory_service.ledger_sum(company_a.id, warehouse_a.id, product_a.id, variant.id) == 12

    def test_negative_stock_is_rejected(self, company_a, warehouse_a, product_a):
        set_stock(company_a, warehouse_a, product_a, 3)
        variant = default_variant(product_a)
        with pytest.raises(InsufficientStockError) as exc:
            run_atomic(lambda: apply_movement(
                company_a.id, warehouse_a.id, product_a.id, variant.id, MOVEMENT_ADJUSTMENT_OUT, -4,
            ))
        assert exc.value.available == 3
        assert exc.value.requested == 4
        assert stock_of(company_a, warehouse_a, product_a) == 3
        assert len(_movements(company_a)) == 1

    @pytest.mark.parametrize(
        "movement_type,quantity",
        [
            (MOVEMENT_RECEIPT, -1),
            (MOVEMENT_ADJUSTMENT_OUT, 5),
            (MOVEMENT_SALE, 2),
            (MOVEMENT_RECEIPT, 0),
            ("TELEPORT", 1),
        ],
    )
    def test_wrong_sign_or_type_is_rejected(self, company_a, warehouse_a, product_a, movement_type, quantity):
        variant = default_variant(product_a)
        with pytest.raises(ValidationError):
            run_atomic(lambda: apply_movement(
                company_a.id, warehouse_a.id, product_a.id, variant.id, movement_type, quantity,
            ))
        assert _movements(company_a) == []


class TestAdjustStock:

    def test_adjust_writes_difference(self, company_a, warehouse_a, product_a):
        set_stock(company_a, warehouse_a, product_a, 50)
        result = set_stock(company_a, warehouse_a, product_a, 42)

        assert result["difference"] == -8
        assert result["new_stock_count"] == 42
        movements = _movements(company_a)
        assert [(m.movement_type, m.quantity) for m in movements] == [
            ("ADJUSTMENT_IN", 50),
            ("ADJUSTMENT_OUT", -8),
        ]

    def test_adjust_without_difference_is_noop(self, company_a, warehouse_a, product_a):
        set_stock(company_a, warehouse_a, product_a, 20)
        result = set_stock(company_a, warehouse_a, product_a, 20)

        assert result["movement_id"] is None
        assert result["difference"] == 0
        assert result["message"] == "Stock already matches physical count"
        assert len(_movements(company_a)) == 1

    def test_adjust_route_status_codes(self, client, admin_headers, warehouse_a, product_a):
        payload = {"warehouse_id": warehouse_a.id, "product_id": product_a.id, "physical_quantity": 7}
        resp = client.post("/api/inventory/adjust", json=payload, headers=admin_headers)
        assert resp.status_code == 201
        assert resp.get_json()["data"]["difference"] == 7

        resp = client.post("/api/inventory/adjust", json=payload, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["data"]["movement_id"] is None

    @pytest.mark.parametrize("quantity", [-1, "2.5", "1e3", True])
    def test_adjust_rejects_bad_quantity(self, client, admin_headers, warehouse_a, product_a, quantity):
        resp = client.post(
            "/api/inventory/adjust",
            json={"warehouse_id": warehouse_a.id, "product_id": product_a.id, "physical_quantity": quantity},
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "VALIDATION_ERROR"

    def test_sales_role_cannot_adjust(self, client, sales_a, warehouse_a, product_a):
        resp = client.post(
            "/api/inventory/adjust",
            json={"warehouse_id": warehouse_a.id, "product_id": product_a.id, "physical_quantity": 3},
            headers=auth_headers(sales_a),
        )
        assert resp.status_code == 403


class TestTransferStock:

    def test_transfer_moves_stock(self, company_a, warehouse_a, warehouse_a2, product_a):
        set_stock(company_a, warehouse_a, product_a, 30)
        result = inventory_service.transfer_stock(
            company_a.id,
            source_warehouse_id=warehouse_a.id,
            destination_warehouse_id=warehouse_a2.id,
            items=[{"product_id": product_a.id, "quantity": 12}],
        )

        assert stock_of(company_a, warehouse_a, product_a) == 18
        assert stock_of(company_a, warehouse_a2, product_a) == 12

        pair = [m for m in _movements(company_a) if m.reference_type == "transfer"]
        assert [(m.movement_type, m.quantity) for m in pair] == [("TRANSFER_OUT", -12), ("TRANSFER_IN", 12)]
        assert {m.reference_id for m in pair} == {result["transfer_id"]}

    def test_transfer_is_all_or_nothing(self, company_a, warehouse_a, warehouse_a2, product_a, product_a2):
        set_stock(company_a, warehouse_a, product_a, 30)
        set_stock(company_a, warehouse_a, product_a2, 2)

        with pytest.raises(InsufficientStockError):
            inventory_service.transfer_stock(
                company_a.id,
                source_warehouse_id=warehouse_a.id,
                destination_warehouse_id=warehouse_a2.id,
                items=[
                    {"product_id": product_a.id, "quantity": 10},
                    {"product_id": product_a2.id, "quantity": 5},
                ],
            )

        assert stock_of(company_a, warehouse_a, product_a) == 30
        assert stock_of(company_a, warehouse_a2, product_a) == 0
        assert not [m for m in _movements(company_a) if m.reference_type == "transfer"]

    def test_transfer_to_same_warehouse_is_rejected(self, company_a, warehouse_a, product_a):
        with pytest.raises(ValidationError):
            inventory_service.transfer_stock(
                company_a.id,
                source_warehouse_id=warehouse_a.id,
                destination_warehouse_id=warehouse_a.id,
                items=[{"product_id": product_a.id, "quantity": 1}],
            )


class TestReservations:

    def _reserve(self, company, warehouse, product, quantity):
        return inventory_service.reserve_stock(
            company.id, warehouse_id=warehouse.id, product_id=product.id, quantity=quantity,
        )

    def test_reserve_holds_without_moving_stock(self, company_a, warehouse_a, product_a):
        set_stock(company_a, warehouse_a, product_a, 10)
        before = len(_movements(company_a))

        snapshot = self._reserve(company_a, warehouse_a, product_a, 4)

        assert (snapshot.stock_count, snapshot.reserved_stock, snapshot.available_stock) == (10, 4, 6)
        assert len(_movements(company_a)) == before

    def test_cannot_reserve_more_than_available(self, company_a, warehouse_a, product_a):
        set_stock(company_a, warehouse_a, product_a, 10)
        self._reserve(company_a, warehouse_a, product_a, 7)

        with pytest.raises(InsufficientStockError) as exc:
            self._reserve(company_a, warehouse_a, product_a, 4)
        assert exc.value.details["available"] == 3

    def test_outbound_movement_respects_reservation(self, company_a, warehouse_a, product_a):
        set_stock(company_a, warehouse_a, product_a, 10)
        self._reserve(company_a, warehouse_a, product_a, 8)
        variant = default_variant(product_a)

        with pytest.raises(InsufficientStockError):
            run_atomic(lambda: apply_movement(
                company_a.id, warehouse_a.id, product_a.id, variant.id, MOVEMENT_SALE, -3,
            ))
        assert stock_of(company_a, warehouse_a, product_a) == 10

        run_atomic(lambda: apply_movement(
            company_a.id, warehouse_a.id, product_a.id, variant.id, MOVEMENT_SALE, -2,
        ))
        assert stock_of(company_a, warehouse_a, product_a) == 8

    def test_transfer_cannot_take_reserved_stock(self, company_a, warehouse_a, warehouse_a2, product_a):
        set_stock(company_a, warehouse_a, product_a, 5)
        self._reserve(company_a, warehouse_a, product_a, 5)

        with pytest.raises(InsufficientStockError):
            inventory_service.transfer_stock(
                company_a.id,
                source_warehouse_id=warehouse_a.id,
                destination_warehouse_id=warehouse_a2.id,
                items=[{"product_id": product_a.id, "quantity": 1}],
            )
        assert stock_of(company_a, warehouse_a2, product_a) == 0

    def test_release_clamps_at_zero(self, company_a, warehouse_a, product_a):
        set_stock(company_a, warehouse_a, product_a, 10)
        self._reserve(company_a, warehouse_a, product_a, 3)

        snapshot = inventory_service.release_stock(
            company_a.id, warehouse_id=warehouse_a.id, product_id=product_a.id, quantity=5,
        )
        assert snapshot.reserved_stock == 0
        assert snapshot.available_stock == 10

    def test_reserve_and_release_routes(self, client, sales_a, company_a, warehouse_a, product_a):
        set_stock(company_a, warehouse_a, product_a, 6)
        headers = auth_headers(sales_a)
        body = {"warehouse_id": warehouse_a.id, "product_id": product_a.id, "quantity": 2}

        resp = client.post("/api/inventory/reserve", json=body, headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["data"]["available_stock"] == 4

        resp = client.post("/api/inventory/reserve", json={**body, "quantity": 5}, headers=headers)
        assert resp.status_code == 409

        resp = client.post("/api/inventory/release", json=body, headers=headers)
        assert resp.get_json()["data"]["reserved_stock"] == 0


class TestWarehouseScope:

    def test_manager_limited_to_assigned_warehouses(
        self, client, company_a, manager_a, warehouse_a, warehouse_a2, product_a,
    ):
        catalog_service.assign_warehouse_manager(company_a.id, warehouse_a.id, manager_a.id)
        headers = auth_headers(manager_a)

        resp = client.post(
            "/api/inventory/adjust",
            json={"warehouse_id": warehouse_a.id, "product_id": product_a.id, "physical_quantity": 9},
            headers=headers,
        )
        assert resp.status_code == 201

        resp = client.post(
            "/api/inventory/adjust",
            json={"warehouse_id": warehouse_a2.id, "product_id": product_a.id, "physical_quantity": 9},
            headers=headers,
        )
        assert resp.status_code == 403

        # Transfers need scope on both ends
        resp = client.post(
            "/api/inventory/transfer",
            json={
                "source_warehouse_id": warehouse_a.id,
                "destination_warehouse_id": warehouse_a2.id,
                "items": [{"product_id": product_a.id, "quantity": 1}],
            },
            headers=headers,
        )
        assert resp.status_code == 403
        assert stock_of(company_a, warehouse_a, product_a) == 9


class TestLedgerVerification:

    def test_consistent_ledger(self, company_a, warehouse_a, warehouse_a2, product_a):
        set_stock(company_a, warehouse_a, product_a, 25)
        inventory_service.transfer_stock(
            company_a.id,
            source_warehouse_id=warehouse_a.id,
            destination_warehouse_id=warehouse_a2.id,
            items=[{"product_id": product_a.id, "quantity": 5}],
        )
        assert inventory_service.verify_ledger(company_a.id) == []

    def test_drift_is_reported_and_rebuilt(self, db_session, company_a, warehouse_a, product_a):
        set_stock(company_a, warehouse_a, product_a, 25)
        snapshot = db_session.query(WarehouseInventory).filter_by(company_id=company_a.id).one()
        snapshot.stock_count = 40
        db_session.commit()

        mismatches = inventory_service.verify_ledger(company_a.id)
        assert mismatches == [{
            "warehouse_id": warehouse_a.id,
            "product_id": product_a.id,
            "variant_id": default_variant(product_a).id,
            "stock_count": 40,
            "ledger_sum": 25,
            "difference": 15,
        }]

        assert inventory_service.rebuild_snapshots(company_a.id) == 1
        assert stock_of(company_a, warehouse_a, product_a) == 25
        assert inventory_service.verify_ledger(company_a.id) == []

    def test_verify_route(self, client, admin_headers, company_a, warehouse_a, product_a):
        set_stock(company_a, warehouse_a, product_a, 4)
        resp = client.get("/api/inventory/verify", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["data"] == {"consistent": True, "mismatches": []}

    def test_movement_listing_filters(self, client, admin_headers, company_a, warehouse_a, warehouse_a2, product_a):
        set_stock(company_a, warehouse_a, product_a, 10)
        set_stock(company_a, warehouse_a2, product_a, 3)

        resp = client.get(
            f"/api/inventory/movements?warehouse_id={warehouse_a2.id}",
            headers=admin_headers,
        )
        data = resp.get_json()["data"]
        assert data["count"] == 1
        assert data["items"][0]["quantity"] == 3

        resp = client.get("/api/inventory/movements?date_from=not-a-date", headers=admin_headers)
        assert resp.status_code == 400
