# Overview: Pytest coverage for purchase invoices, supplier payments and invoice status.

"""
Purchase Invoice Tests

Scenario: a completed GRN worth 500 cents is invoiced and paid 300 + 200.
Verifies:
- derive_invoice_status() is the single status rule
- Payments can never exceed the outstanding balance
- Pending payments only count once completed (cap re-checked then)
- An invoice with payments cannot be cancelled
"""

from datetime import date, timedelta

import pytest

from freshco.errors import ConflictError, ValidationError
from freshco.services import invoice_service as inv
from freshco.services import procurement_service as ps
from freshco.services.invoice_service import derive_invoice_status
from freshco.time_utils import utcnow

from conftest import auth_headers


@pytest.fixture
def completed_grn(company_a, supplier_a, warehouse_a, product_a):
    """Completed GRN: 5 units at 100 cents = 500 cents."""
    po = ps.create_purchase_order(
        company_a.id,
        supplier_id=supplier_a.id,
        warehouse_id=warehouse_a.id,
        items=[{"product_id": product_a.id, "quantity": 5, "unit_price_cents": 100}],
    )
    ps.update_purchase_order_status(company_a.id, po.id, "approved")
    grn = ps.create_goods_receipt(
        company_a.id,
        purchase_order_id=po.id,
        warehouse_id=warehouse_a.id,
        items=[{"purchase_order_item_id": po.items[0].id, "quantity_received": 5}],
    )
    return ps.complete_goods_receipt(company_a.id, grn.id)


@pytest.fixture
def invoice(company_a, completed_grn):
    return inv.create_purchase_invoice(
        company_a.id, goods_receipt_id=completed_grn.id, supplier_invoice_number="OF-77",
    )


def _pay(company, invoice, amount, **kwargs):
    return inv.record_supplier_payment(
        company.id, purchase_invoice_id=invoice.id, amount_cents=amount, **kwargs,
    )


class TestDeriveInvoiceStatus:

    TODAY = date(2024, 6, 15)

    @pytest.mark.parametrize(
        "total,paid,due,expected",
        [
            (500, 0, None, "pending"),
            (500, 300, None, "partial"),
            (500, 500, None, "paid"),
            (500, 0, date(2024, 6, 14), "overdue"),
            (500, 300, date(2024, 6, 14), "overdue"),
            (500, 500, date(2024, 6, 14), "paid"),
            (500, 0, date(2024, 6, 15), "pending"),
            (0, 0, None, "pending"),
        ],
    )
    def test_rule(self, total, paid, due, expected):
        assert derive_invoice_status(total, paid, due, today=self.TODAY) == expected


class TestInvoices:

    def test_invoice_copies_grn_lines(self, invoice, completed_grn, supplier_a):
        assert invoice.status == "pending"
        assert invoice.total_amount_cents == 500
        assert invoice.paid_amount_cents == 0
        assert invoice.supplier_id == supplier_a.id
        assert invoice.invoice_number == f"PINV-{utcnow().year}-0001"
        assert [(i.quantity, i.unit_price_cents) for i in invoice.items] == [(5, 100)]
        # 30-day supplier terms
        assert invoice.due_date == invoice.invoice_date + timedelta(days=30)

    def test_grn_must_be_completed(self, company_a, supplier_a, warehouse_a, product_a):
        po = ps.create_purchase_order(
            company_a.id,
            supplier_id=supplier_a.id,
            items=[{"product_id": product_a.id, "quantity": 2, "unit_price_cents": 10}],
        )
        ps.update_purchase_order_status(company_a.id, po.id, "approved")
        grn = ps.create_goods_receipt(
            company_a.id,
            purchase_order_id=po.id,
            warehouse_id=warehouse_a.id,
            items=[{"purchase_order_item_id": po.items[0].id, "quantity_received": 2}],
        )
        with pytest.raises(ConflictError):
            inv.create_purchase_invoice(company_a.id, goods_receipt_id=grn.id)

    def test_grn_is_invoiced_once(self, company_a, invoice, completed_grn):
        with pytest.raises(ConflictError):
            inv.create_purchase_invoice(company_a.id, goods_receipt_id=completed_grn.id)

    def test_due_date_before_invoice_date_is_rejected(self, company_a, completed_grn):
        with pytest.raises(ValidationError):
            inv.create_purchase_invoice(
                company_a.id,
                goods_receipt_id=completed_grn.id,
                invoice_date="2024-06-10",
                due_date="2024-06-01",
            )

    def test_overdue_is_refreshed_on_list(self, company_a, completed_grn):
        past = utcnow().date() - timedelta(days=40)
        invoice = inv.create_purchase_invoice(
            company_a.id,
            goods_receipt_id=completed_grn.id,
            invoice_date=past.isoformat(),
            due_date=(past + timedelta(days=10)).isoformat(),
        )
        assert invoice.status == "overdue"

        listed = inv.list_purchase_invoices(company_a.id, status="overdue")
        assert [i.id for i in listed] == [invoice.id]


class TestSupplierPayments:

    def test_partial_then_full_payment(self, company_a, invoice):
        first = _pay(company_a, invoice, 300)
        assert first.status == "completed"
        assert first.payment_number == f"PAY-{utcnow().year}-0001"
        assert invoice.paid_amount_cents == 300
        assert invoice.status == "partial"
        assert invoice.balance_due_cents == 200

        _pay(company_a, invoice, 200)
        assert invoice.paid_amount_cents == 500
        assert invoice.status == "paid"

        with pytest.raises(ConflictError):
            _pay(company_a, invoice, 1)
        assert invoice.paid_amount_cents == 500

    def test_overpayment_is_rejected(self, company_a, invoice):
        _pay(company_a, invoice, 300)
        with pytest.raises(ConflictError) as exc:
            _pay(company_a, invoice, 201)
        assert exc.value.details == {"balance_due_cents": 200, "requested_cents": 201}
        assert invoice.paid_amount_cents == 300
        assert invoice.status == "partial"

    @pytest.mark.parametrize("amount", [0, -5, "12.5"])
    def test_invalid_amount(self, company_a, invoice, amount):
        with pytest.raises(ValidationError):
            _pay(company_a, invoice, amount)

    def test_pending_payment_counts_on_completion(self, company_a, invoice):
        pending = _pay(company_a, invoice, 400, status="pending")
        assert pending.status == "pending"
        assert invoice.paid_amount_cents == 0

        # A pending payment does not reserve balance; the cap is re-checked on completion
        _pay(company_a, invoice, 300)
        with pytest.raises(ConflictError):
            inv.complete_supplier_payment(company_a.id, pending.id)
        assert pending.status == "pending"
        assert invoice.paid_amount_cents == 300

    def test_complete_pending_payment(self, company_a, invoice):
        pending = _pay(company_a, invoice, 500, status="pending")
        completed = inv.complete_supplier_payment(company_a.id, pending.id)
        assert completed.status == "completed"
        assert completed.completed_at is not None
        assert invoice.status == "paid"

        with pytest.raises(ConflictError):
            inv.complete_supplier_payment(company_a.id, pending.id)

    def test_cannot_cancel_paid_invoice(self, company_a, invoice):
        _pay(company_a, invoice, 100)
        with pytest.raises(ConflictError):
            inv.cancel_purchase_invoice(company_a.id, invoice.id)

    def test_cancel_unpaid_invoice_frees_grn(self, company_a, invoice, completed_grn):
        inv.cancel_purchase_invoice(company_a.id, invoice.id)
        assert invoice.status == "cancelled"

        with pytest.raises(ConflictError):
            _pay(company_a, invoice, 10)

        replacement = inv.create_purchase_invoice(company_a.id, goods_receipt_id=completed_grn.id)
        assert replacement.status == "pending"


class TestInvoiceApi:

    def test_payment_flow_over_http(self, client, procurement_a, invoice):
        headers = auth_headers(procurement_a)

        resp = client.post("/api/supplier-payments", json={
            "purchase_invoice_id": invoice.id,
            "amount_cents": 300,
            "payment_method": "bank_transfer",
            "reference_number": "TX-1",
        }, headers=headers)
        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["payment"]["amount_cents"] == 300
        assert data["invoice"]["status"] == "partial"

        resp = client.post("/api/supplier-payments", json={
            "purchase_invoice_id": invoice.id,
            "amount_cents": 250,
        }, headers=headers)
        assert resp.status_code == 409
        assert resp.get_json()["error"]["details"]["balance_due_cents"] == 200

        resp = client.get(f"/api/purchase-invoices/{invoice.id}", headers=headers)
        detail = resp.get_json()["data"]
        assert detail["paid_amount_cents"] == 300
        assert len(detail["payments"]) == 1

    def test_warehouse_manager_cannot_pay(self, client, manager_a, invoice):
        resp = client.post("/api/supplier-payments", json={
            "purchase_invoice_id": invoice.id,
            "amount_cents": 100,
        }, headers=auth_headers(manager_a))
        assert resp.status_code == 403
