# Overview: Pytest coverage for sales order placement, grace window and cancellation.

"""
Sales Order Tests

Verifies:
- Placing an order decrements stock with one SALE movement per line
- A single short line aborts the whole order (nothing written)
- Pending orders read as processing once the grace window has elapsed
- Cancellation inside the window releases stock (compensating SALE +qty)
- Forward-only fulfilment transitions
- Customers: ecommerce only, own orders only, no price overrides
"""

from datetime import timedelta

import pytest

from freshco.errors import AuthorizationError, ConflictError, InsufficientStockError, ValidationError
from freshco.extensions import db
from freshco.models import Order, StockMovement
from freshco.services import order_service
from freshco.time_utils import utcnow

from conftest import auth_headers, set_stock, stock_of


@pytest.fixture
def stocked(company_a, warehouse_a, product_a, product_a2):
    set_stock(company_a, warehouse_a, product_a, 10)
    set_stock(company_a, warehouse_a, product_a2, 3)


def _place(company, warehouse, items, user=None, **kwargs):
    return order_service.place_order(company.id, warehouse_id=warehouse.id, items=items, user=user, **kwargs)


def _age(order, minutes):
    order.created_at = utcnow() - timedelta(minutes=minutes)
    db.session.commit()


class TestPlaceOrder:

    def test_sale_decrements_stock(self, company_a, warehouse_a, product_a, product_a2, sales_a, stocked):
        order = _place(company_a, warehouse_a, [
            {"product_id": product_a.id, "quantity": 4},
            {"product_id": product_a2.id, "quantity": 1},
        ], user=sales_a)

        assert order.status == "pending"
        assert order.order_type == "sales"
        assert order.order_number == f"SO-{utcnow().year}-0001"
        assert order.total_cents == 4 * 199 + 250
        assert stock_of(company_a, warehouse_a, product_a) == 6
        assert stock_of(company_a, warehouse_a, product_a2) == 2

        sales = (
            db.session.query(StockMovement)
            .filter_by(company_id=company_a.id, movement_type="SALE")
            .order_by(StockMovement.id)
            .all()
        )
        assert [m.quantity for m in sales] == [-4, -1]
        assert {m.reference_id for m in sales} == {str(order.id)}
        assert [i.stock_movement_id for i in order.items] == [m.id for m in sales]

    def test_short_line_aborts_whole_order(self, company_a, warehouse_a, product_a, product_a2, sales_a, stocked):
        with pytest.raises(InsufficientStockError) as exc:
            _place(company_a, warehouse_a, [
                {"product_id": product_a.id, "quantity": 2},
                {"product_id": product_a2.id, "quantity": 4},
            ], user=sales_a)

        assert exc.value.available == 3
        assert stock_of(company_a, warehouse_a, product_a) == 10
        assert db.session.query(Order).filter_by(company_id=company_a.id).count() == 0

    def test_staff_may_override_price(self, company_a, warehouse_a, product_a, sales_a, stocked):
        order = _place(company_a, warehouse_a, [
            {"product_id": product_a.id, "quantity": 2, "unit_price_cents": 150},
        ], user=sales_a)
        assert order.items[0].unit_price_cents == 150
        assert order.total_cents == 300

    def test_customer_cannot_place_sales_order(self, company_a, warehouse_a, product_a, customer_a, stocked):
        with pytest.raises(AuthorizationError):
            _place(company_a, warehouse_a, [{"product_id": product_a.id, "quantity": 1}], user=customer_a)

    def test_ecommerce_requires_payment_intent(self, company_a, warehouse_a, product_a, customer_a, stocked):
        with pytest.raises(ValidationError):
            _place(
                company_a, warehouse_a, [{"product_id": product_a.id, "quantity": 1}],
                user=customer_a, order_source="ecommerce",
            )

    def test_empty_items_rejected(self, client, admin_headers, warehouse_a):
        resp = client.post("/api/orders", json={"warehouse_id": warehouse_a.id, "items": []}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "VALIDATION_ERROR"

    def test_insufficient_stock_envelope(self, client, admin_headers, warehouse_a, product_a, stocked):
        resp = client.post("/api/orders", json={
            "warehouse_id": warehouse_a.id,
            "items": [{"product_id": product_a.id, "quantity": 11}],
        }, headers=admin_headers)
        assert resp.status_code == 409
        error = resp.get_json()["error"]
        assert error["code"] == "INSUFFICIENT_STOCK"
        assert error["details"]["available"] == 10
        assert error["details"]["requested"] == 11


class TestGraceWindow:

    def test_effective_status_flips_after_window(self, company_a, warehouse_a, product_a, sales_a, stocked):
        order = _place(company_a, warehouse_a, [{"product_id": product_a.id, "quantity": 1}], user=sales_a)
        created = order.created_at

        assert order_service.effective_status(order, created + timedelta(minutes=5)) == "pending"
        assert order_service.effective_status(order, created + timedelta(minutes=5, seconds=1)) == "processing"

    def test_cancel_at_window_boundary(self, company_a, warehouse_a, product_a, sales_a, stocked):
        order = _place(company_a, warehouse_a, [{"product_id": product_a.id, "quantity": 4}], user=sales_a)
        boundary = order.created_at + timedelta(minutes=5)

        order_service.cancel_order(company_a.id, order.id, user=sales_a, now=boundary)

        assert order.status == "cancelled"
        assert order.cancelled_at is not None
        assert stock_of(company_a, warehouse_a, product_a) == 10

        reversal = (
            db.session.query(StockMovement)
            .filter_by(company_id=company_a.id, reference_type="order_cancellation")
            .one()
        )
        assert (reversal.movement_type, reversal.quantity) == ("SALE", 4)

    def test_cancel_after_window_is_rejected(self, company_a, warehouse_a, product_a, sales_a, stocked):
        order = _place(company_a, warehouse_a, [{"product_id": product_a.id, "quantity": 4}], user=sales_a)
        late = order.created_at + timedelta(minutes=5, seconds=1)

        with pytest.raises(ConflictError):
            order_service.cancel_order(company_a.id, order.id, user=sales_a, now=late)
        assert stock_of(company_a, warehouse_a, product_a) == 6

    def test_cancel_twice_is_rejected(self, company_a, warehouse_a, product_a, sales_a, stocked):
        order = _place(company_a, warehouse_a, [{"product_id": product_a.id, "quantity": 1}], user=sales_a)
        order_service.cancel_order(company_a.id, order.id, user=sales_a)
        with pytest.raises(ConflictError):
            order_service.cancel_order(company_a.id, order.id, user=sales_a)
        assert stock_of(company_a, warehouse_a, product_a) == 10

    def test_read_persists_processing(self, client, company_a, warehouse_a, product_a, sales_a, stocked):
        order = _place(company_a, warehouse_a, [{"product_id": product_a.id, "quantity": 1}], user=sales_a)
        _age(order, 6)
        headers = auth_headers(sales_a)

        resp = client.get(f"/api/orders/{order.id}", headers=headers)
        assert resp.get_json()["data"]["status"] == "processing"

        resp = client.put(f"/api/orders/{order.id}/cancel", json={"reason": "Too late"}, headers=headers)
        assert resp.status_code == 409

    def test_advance_expired_orders(self, company_a, warehouse_a, product_a, sales_a, stocked):
        old = _place(company_a, warehouse_a, [{"product_id": product_a.id, "quantity": 1}], user=sales_a)
        fresh = _place(company_a, warehouse_a, [{"product_id": product_a.id, "quantity": 1}], user=sales_a)
        _age(old, 10)

        assert order_service.advance_expired_orders(company_a.id) == 1
        assert old.status == "processing"
        assert fresh.status == "pending"


class TestTransitions:

    def test_forward_only(self, company_a, warehouse_a, product_a, sales_a, stocked):
        order = _place(company_a, warehouse_a, [{"product_id": product_a.id, "quantity": 1}], user=sales_a)

        with pytest.raises(ConflictError):
            order_service.update_order_status(company_a.id, order.id, "shipped")

        for status in ("processing", "shipped", "delivered"):
            order_service.update_order_status(company_a.id, order.id, status)
        assert order.status == "delivered"
        assert order.shipped_at is not None
        assert order.delivered_at is not None

        with pytest.raises(ConflictError):
            order_service.update_order_status(company_a.id, order.id, "processing")

    def test_status_endpoint_cannot_cancel(self, client, admin_headers, company_a, warehouse_a, product_a, stocked):
        order = _place(company_a, warehouse_a, [{"product_id": product_a.id, "quantity": 1}])
        resp = client.put(f"/api/orders/{order.id}/status", json={"status": "cancelled"}, headers=admin_headers)
        assert resp.status_code == 409

    def test_shipped_order_cannot_be_cancelled(self, company_a, warehouse_a, product_a, sales_a, stocked):
        order = _place(company_a, warehouse_a, [{"product_id": product_a.id, "quantity": 1}], user=sales_a)
        order_service.update_order_status(company_a.id, order.id, "processing")
        order_service.update_order_status(company_a.id, order.id, "shipped")
        with pytest.raises(ConflictError):
            order_service.cancel_order(company_a.id, order.id, user=sales_a)


class TestOrderVisibility:

    def test_customer_sees_only_own_orders(self, client, company_a, warehouse_a, product_a, sales_a, customer_a, stocked):
        staff_order = _place(company_a, warehouse_a, [{"product_id": product_a.id, "quantity": 1}], user=sales_a)

        resp = client.get("/api/orders", headers=auth_headers(customer_a))
        assert resp.get_json()["data"]["count"] == 0

        resp = client.get(f"/api/orders/{staff_order.id}", headers=auth_headers(customer_a))
        assert resp.status_code == 404

        resp = client.get("/api/orders", headers=auth_headers(sales_a))
        assert resp.get_json()["data"]["count"] == 1

    def test_list_pagination(self, client, company_a, warehouse_a, product_a, sales_a, stocked):
        for _ in range(3):
            _place(company_a, warehouse_a, [{"product_id": product_a.id, "quantity": 1}], user=sales_a)

        resp = client.get("/api/orders?limit=2&offset=0", headers=auth_headers(sales_a))
        data = resp.get_json()["data"]
        assert data["count"] == 3
        assert len(data["items"]) == 2
        assert data["limit"] == 2
