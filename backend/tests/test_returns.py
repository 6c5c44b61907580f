# Overview: Pytest coverage for return orders and restocking.

"""
Return Order Tests

Scenario: 4 apples sold, returned as 3 + 1. Verifies:
- Returned quantity per (product, variant) never exceeds what was sold
- Filing a return moves no stock; restocking does (RETURN movements)
- Restocking happens at most once
- Only non-cancelled sales orders can be returned
- An order with a return filed against it can no longer be cancelled
"""

import pytest

from freshco.errors import ConflictError, NotFoundError, ValidationError
from freshco.extensions import db
from freshco.models import StockMovement
from freshco.services import order_service, return_service
from freshco.time_utils import utcnow

from conftest import auth_headers, default_variant, set_stock, stock_of


@pytest.fixture
def sold_order(company_a, warehouse_a, product_a, product_a2, sales_a):
    """4 apples + 1 pear sold from the main warehouse (6 apples left)."""
    set_stock(company_a, warehouse_a, product_a, 10)
    set_stock(company_a, warehouse_a, product_a2, 5)
    return order_service.place_order(
        company_a.id,
        warehouse_id=warehouse_a.id,
        items=[
            {"product_id": product_a.id, "quantity": 4},
            {"product_id": product_a2.id, "quantity": 1},
        ],
        user=sales_a,
    )


def _return(company, order, items, user=None):
    return return_service.create_return_order(company.id, order.id, items=items, reason="Bruised", user=user)


class TestCreateReturn:

    def test_return_creates_order_without_moving_stock(self, company_a, warehouse_a, product_a, sold_order):
        return_order = _return(company_a, sold_order, [{"product_id": product_a.id, "quantity": 3}])

        assert return_order.order_type == "return"
        assert return_order.original_order_id == sold_order.id
        assert return_order.order_number == f"RO-{utcnow().year}-0001"
        assert return_order.return_reason == "Bruised"
        assert return_order.total_cents == 3 * 199
        assert stock_of(company_a, warehouse_a, product_a) == 6

    def test_cumulative_returns_are_capped(self, company_a, product_a, sold_order):
        _return(company_a, sold_order, [{"product_id": product_a.id, "quantity": 3}])

        with pytest.raises(ConflictError) as exc:
            _return(company_a, sold_order, [{"product_id": product_a.id, "quantity": 2}])
        assert exc.value.details["returnable"] == 1

        _return(company_a, sold_order, [{"product_id": product_a.id, "quantity": 1}])
        remaining = return_service.returnable_quantities(sold_order)
        assert remaining[(product_a.id, default_variant(product_a).id)] == 0

    def test_split_lines_are_summed(self, company_a, product_a, sold_order):
        with pytest.raises(ConflictError):
            _return(company_a, sold_order, [
                {"product_id": product_a.id, "quantity": 3},
                {"product_id": product_a.id, "quantity": 2},
            ])

    def test_product_not_on_order(self, company_a, sold_order):
        from freshco.services import catalog_service

        other = catalog_service.create_product(company_a.id, sku="PLUM", name="Plum", price_cents=90)
        with pytest.raises(ValidationError):
            _return(company_a, sold_order, [{"product_id": other.id, "quantity": 1}])

    def test_cancelled_order_cannot_be_returned(self, company_a, product_a, sales_a, sold_order):
        order_service.cancel_order(company_a.id, sold_order.id, user=sales_a)
        with pytest.raises(ConflictError):
            _return(company_a, sold_order, [{"product_id": product_a.id, "quantity": 1}])

    def test_return_of_return_is_rejected(self, company_a, product_a, sold_order):
        return_order = _return(company_a, sold_order, [{"product_id": product_a.id, "quantity": 1}])
        with pytest.raises(ConflictError):
            _return(company_a, return_order, [{"product_id": product_a.id, "quantity": 1}])

    def test_other_customer_cannot_return(self, make_user, company_a, warehouse_a, product_a, sold_order):
        stranger = make_user(company_a, "stranger@fresh.test", "customer")
        with pytest.raises(NotFoundError):
            _return(company_a, sold_order, [{"product_id": product_a.id, "quantity": 1}], user=stranger)


class TestRestock:

    def test_restock_credits_stock_once(self, company_a, warehouse_a, product_a, sold_order):
        return_order = _return(company_a, sold_order, [{"product_id": product_a.id, "quantity": 3}])

        return_service.restock_return_order(company_a.id, sold_order.id)
        assert stock_of(company_a, warehouse_a, product_a) == 9
        assert return_order.restocked_at is not None

        movement = (
            db.session.query(StockMovement)
            .filter_by(company_id=company_a.id, movement_type="RETURN")
            .one()
        )
        assert movement.quantity == 3
        assert movement.reference_id == str(return_order.id)

        with pytest.raises(ConflictError):
            return_service.restock_return_order(
                company_a.id, sold_order.id, return_order_id=return_order.id,
            )
        assert stock_of(company_a, warehouse_a, product_a) == 9

    def test_restock_into_other_warehouse(self, company_a, warehouse_a, warehouse_a2, product_a, sold_order):
        _return(company_a, sold_order, [{"product_id": product_a.id, "quantity": 2}])
        return_service.restock_return_order(company_a.id, sold_order.id, warehouse_id=warehouse_a2.id)
        assert stock_of(company_a, warehouse_a, product_a) == 6
        assert stock_of(company_a, warehouse_a2, product_a) == 2

    def test_several_open_returns_need_an_id(self, company_a, product_a, sold_order):
        _return(company_a, sold_order, [{"product_id": product_a.id, "quantity": 1}])
        second = _return(company_a, sold_order, [{"product_id": product_a.id, "quantity": 1}])

        with pytest.raises(ValidationError):
            return_service.restock_return_order(company_a.id, sold_order.id)

        restocked = return_service.restock_return_order(company_a.id, sold_order.id, return_order_id=second.id)
        assert restocked.id == second.id


class TestCancelAfterReturn:

    def test_restocked_order_cannot_be_cancelled(self, company_a, warehouse_a, product_a, sales_a, sold_order):
        _return(company_a, sold_order, [{"product_id": product_a.id, "quantity": 4}])
        return_service.restock_return_order(company_a.id, sold_order.id)
        assert stock_of(company_a, warehouse_a, product_a) == 10

        with pytest.raises(ConflictError):
            order_service.cancel_order(company_a.id, sold_order.id, user=sales_a)
        assert stock_of(company_a, warehouse_a, product_a) == 10
        assert sold_order.status == "pending"

    def test_filed_return_blocks_cancellation(self, company_a, warehouse_a, product_a, sales_a, sold_order):
        _return(company_a, sold_order, [{"product_id": product_a.id, "quantity": 1}])

        with pytest.raises(ConflictError):
            order_service.cancel_order(company_a.id, sold_order.id, user=sales_a)
        assert stock_of(company_a, warehouse_a, product_a) == 6


class TestReturnApi:

    def test_return_and_restock_over_http(self, client, sales_a, company_a, warehouse_a, product_a, sold_order):
        headers = auth_headers(sales_a)

        resp = client.post(f"/api/orders/{sold_order.id}/return", json={
            "items": [{"product_id": product_a.id, "quantity": 2}],
            "reason": "Damaged",
        }, headers=headers)
        assert resp.status_code == 201
        return_order = resp.get_json()["data"]
        assert return_order["order_type"] == "return"

        resp = client.post(f"/api/orders/{sold_order.id}/return/restock", json={}, headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["data"]["restocked_at"] is not None
        assert stock_of(company_a, warehouse_a, product_a) == 8

        resp = client.post(f"/api/orders/{sold_order.id}/return", json={
            "items": [{"product_id": product_a.id, "quantity": 3}],
        }, headers=headers)
        assert resp.status_code == 409

        # Return orders never go through the sales transitions
        resp = client.put(f"/api/orders/{return_order['id']}/status", json={"status": "processing"}, headers=headers)
        assert resp.status_code == 409
