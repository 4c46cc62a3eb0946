# Overview: Pytest coverage for refunds/returns (stock credit, sale marking, customer reconciliation, idempotence).

import pytest

from posledger.errors import AlreadyRefunded, CrossTenantAccess, InvalidAmount, InvalidTransition, ValidationFailed
from posledger.extensions import db
from posledger.models import AuditLog, Customer, Refund, RefundLine, Sale, SaleLine, StockMovement
from posledger.patching import patch_from_payload
from posledger.services import stock_ledger_service
from posledger.services.refund_service import refund_sale
from posledger.services.sales_service import SalePatch, update_sale
from posledger.validation import RefundItemRequest

from conftest import ACTOR_ID, quick_sale


def _quantity(org, product, store):
    db.session.expire_all()
    return stock_ledger_service.get_stock_level(org_id=org.id, product_id=product.id, store_id=store.id).quantity


class TestFullRefund:

    def test_full_refund_restores_stock(self, db_session, org_a, store_a, product_a, stocked):
        sale = quick_sale(org_a, store_a, [(product_a.id, 5)], paid_cents=5750, tax_rate_bps=1500)
        assert _quantity(org_a, product_a, store_a) == 15

        refund = refund_sale(org_id=org_a.id, sale_id=sale.id, reason="customer return", actor_id=ACTOR_ID)

        assert refund.refund_number == "RF-000001"
        assert refund.amount_cents == 5750
        assert refund.is_full is True

        db_session.expire_all()
        sale = db_session.get(Sale, sale.id)
        assert sale.is_refunded is True
        assert sale.status == "refunded"
        assert sale.payment_status == "refunded"
        assert sale.refund_reason == "customer return"
        assert sale.refund_amount_cents == 5750
        assert sale.refunded_at is not None
        assert sale.refunded_by_user_id == ACTOR_ID

        assert _quantity(org_a, product_a, store_a) == 20
        returns = db_session.query(StockMovement).filter_by(reference_type="return").all()
        assert len(returns) == 1
        assert returns[0].kind == "in"
        assert returns[0].quantity_delta == 5
        assert returns[0].reference_id == refund.refund_number

        line = db_session.query(SaleLine).filter_by(sale_id=sale.id).one()
        assert line.returned_quantity == 5
        assert line.is_returned is True

    def test_second_refund_rejected_without_stock_mutation(self, db_session, org_a, store_a, product_a, stocked):
        sale = quick_sale(org_a, store_a, [(product_a.id, 5)])
        refund_sale(org_id=org_a.id, sale_id=sale.id, reason="customer return")
        movements = db_session.query(StockMovement).count()

        with pytest.raises(AlreadyRefunded):
            refund_sale(org_id=org_a.id, sale_id=sale.id, reason="again")

        assert db_session.query(StockMovement).count() == movements
        assert _quantity(org_a, product_a, store_a) == 20
        assert db_session.query(Refund).count() == 1

    def test_refund_reconciles_customer(self, db_session, org_a, store_a, product_a, customer_a, stocked):
        sale = quick_sale(
            org_a, store_a, [(product_a.id, 5)],
            paid_cents=2000, tax_rate_bps=1500, customer_id=customer_a.id,
        )
        refund_sale(org_id=org_a.id, sale_id=sale.id, reason="customer return")

        db_session.expire_all()
        customer = db_session.get(Customer, customer_a.id)
        assert customer.total_spent_cents == 0
        assert customer.total_orders == 0
        assert customer.current_balance_cents == 0

    def test_refund_audit_and_refund_document(self, db_session, org_a, store_a, product_a, stocked):
        sale = quick_sale(org_a, store_a, [(product_a.id, 2)])
        refund = refund_sale(org_id=org_a.id, sale_id=sale.id, reason="customer return", actor_id=ACTOR_ID)

        audit = db_session.query(AuditLog).filter_by(action="SALE_REFUNDED").one()
        assert audit.before["is_refunded"] is False
        assert audit.after["refund"]["refund_number"] == refund.refund_number

        data = refund.to_dict()
        assert len(data["lines"]) == 1
        assert data["lines"][0]["quantity"] == 2
        assert data["lines"][0]["stock_movement_id"] is not None


class TestPartialRefund:

    def test_partial_items_and_amount(self, db_session, org_a, store_a, product_a, product_a2, customer_a, stocked):
        sale = quick_sale(
            org_a, store_a, [(product_a.id, 4), (product_a2.id, 2)],
            paid_cents=0, customer_id=customer_a.id,
        )
        lines = db_session.query(SaleLine).filter_by(sale_id=sale.id).order_by(SaleLine.line_no).all()

        refund = refund_sale(
            org_id=org_a.id,
            sale_id=sale.id,
            reason="one was broken",
            items=[RefundItemRequest(sale_line_id=lines[0].id, quantity=1)],
            amount_cents=1150,
        )

        assert refund.is_full is False
        assert refund.amount_cents == 1150
        assert _quantity(org_a, product_a, store_a) == 17
        assert _quantity(org_a, product_a2, store_a) == 8
        assert db_session.query(RefundLine).count() == 1

        db_session.expire_all()
        line = db_session.get(SaleLine, lines[0].id)
        assert line.returned_quantity == 1
        assert line.is_returned is False

        customer = db_session.get(Customer, customer_a.id)
        assert customer.total_orders == 1
        assert customer.total_spent_cents == sale.total_cents - 1150
        assert customer.current_balance_cents == 0

    def test_quantity_above_sold_rejected(self, db_session, org_a, store_a, product_a, stocked):
        sale = quick_sale(org_a, store_a, [(product_a.id, 2)])
        line = db_session.query(SaleLine).filter_by(sale_id=sale.id).one()

        with pytest.raises(ValidationFailed):
            refund_sale(
                org_id=org_a.id, sale_id=sale.id, reason="too many",
                items=[RefundItemRequest(sale_line_id=line.id, quantity=3)],
            )
        assert db_session.get(Sale, sale.id).is_refunded is False
        assert _quantity(org_a, product_a, store_a) == 18

    def test_line_from_other_sale_rejected(self, db_session, org_a, store_a, product_a, stocked):
        first = quick_sale(org_a, store_a, [(product_a.id, 1)])
        second = quick_sale(org_a, store_a, [(product_a.id, 1)])
        other_line = db_session.query(SaleLine).filter_by(sale_id=second.id).one()

        with pytest.raises(ValidationFailed):
            refund_sale(
                org_id=org_a.id, sale_id=first.id, reason="wrong line",
                items=[RefundItemRequest(sale_line_id=other_line.id, quantity=1)],
            )

    @pytest.mark.parametrize("amount", [0, -1, 10_000_000])
    def test_amount_out_of_range(self, db_session, org_a, store_a, product_a, stocked, amount):
        sale = quick_sale(org_a, store_a, [(product_a.id, 1)])
        with pytest.raises(InvalidAmount):
            refund_sale(org_id=org_a.id, sale_id=sale.id, reason="x", amount_cents=amount)
        db_session.expire_all()
        assert db_session.get(Sale, sale.id).is_refunded is False
        assert db_session.query(Refund).count() == 0


class TestRefundPreconditions:

    def test_reason_required(self, db_session, org_a, store_a, product_a, stocked):
        sale = quick_sale(org_a, store_a, [(product_a.id, 1)])
        with pytest.raises(ValidationFailed):
            refund_sale(org_id=org_a.id, sale_id=sale.id, reason="   ")

    def test_cross_tenant_refund_denied(self, db_session, org_a, org_b, store_a, product_a, stocked):
        sale = quick_sale(org_a, store_a, [(product_a.id, 1)])
        with pytest.raises(CrossTenantAccess):
            refund_sale(org_id=org_b.id, sale_id=sale.id, reason="customer return")
        assert _quantity(org_a, product_a, store_a) == 19

    def test_cancelled_sale_cannot_be_refunded(self, db_session, org_a, store_a, product_a, stocked):
        sale = quick_sale(org_a, store_a, [(product_a.id, 1)])
        sale_row = db_session.get(Sale, sale.id)
        sale_row.status = "delivered"
        db_session.commit()
        update_sale(org_id=org_a.id, sale_id=sale.id, patch=patch_from_payload(SalePatch, {"status": "cancelled"}))

        with pytest.raises(InvalidTransition):
            refund_sale(org_id=org_a.id, sale_id=sale.id, reason="customer return")


class TestReturnCosting:

    def test_returned_units_credited_at_sale_cost(self, db_session, org_a, store_a, product_a, stocked):
        sale = quick_sale(org_a, store_a, [(product_a.id, 5)])
        line = db_session.query(SaleLine).filter_by(sale_id=sale.id).one()
        assert line.unit_cost_cents == 600

        # Cost moves between the sale and the return: 15 @ 600 + 10 @ 900
        stock_ledger_service.receive_stock(
            org_id=org_a.id, product_id=product_a.id, store_id=store_a.id, quantity=10, unit_cost_cents=900,
        )
        db_session.expire_all()
        level = stock_ledger_service.get_stock_level(org_id=org_a.id, product_id=product_a.id, store_id=store_a.id)
        assert level.average_cost_cents == 720

        refund = refund_sale(org_id=org_a.id, sale_id=sale.id, reason="customer return")

        movement = db_session.query(StockMovement).filter_by(reference_id=refund.refund_number).one()
        assert movement.unit_cost_cents == 600
        assert movement.total_cost_cents == 3000

        db_session.expire_all()
        level = stock_ledger_service.get_stock_level(org_id=org_a.id, product_id=product_a.id, store_id=store_a.id)
        assert level.quantity == 30
        assert level.average_cost_cents == 700
        assert level.total_value_cents == 30 * 700
