# Overview: Service-layer operations for payments; keeps sale payment fields and customer balance reconciled.

"""
Payment & Balance Reconciler

RECONCILIATION INVARIANTS:
- Each Payment row's amount equals the delta applied to Sale.paid_cents,
  so sum(payments) == Sale.paid_cents at all times.
- remaining_cents = max(0, total - paid); change_due_cents = max(0, paid - total)
- Overpayment resolves to "paid"; "overpaid" is never produced.
- The customer's current_balance_cents moves by the part of a payment that
  was applied to the outstanding amount (never below what was owed).
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..errors import InvalidAmount, ValidationFailed
from ..models import Payment, Sale
from ..validation import validate_payment_method
from posledger.time_utils import utcnow
from .audit_service import record_audit
from .concurrency import begin_write, run_with_retry
from .customer_service import apply_customer_delta
from .pricing import PAYMENT_STATUS_PAID, PAYMENT_STATUS_PARTIAL, settle
from .sales_service import STATUS_CANCELLED, STATUS_REFUNDED, load_sale


@dataclass(frozen=True)
class PaymentResult:
    payment: Payment
    sale: Sale
    paid_cents: int
    remaining_cents: int
    payment_status: str

    def to_dict(self) -> dict:
        return {
            "payment": self.payment.to_dict(),
            "paid_cents": self.paid_cents,
            "remaining_cents": self.remaining_cents,
            "payment_status": self.payment_status,
            "change_due_cents": self.sale.change_due_cents,
        }


def add_payment(
    *,
    org_id: int,
    sale_id: int,
    amount_cents: int,
    method: str,
    reference: str | None = None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> PaymentResult:
    """
    AddPayment: book a payment against a sale.

    Raises:
        InvalidAmount: amount_cents <= 0
        SaleNotFound / CrossTenantAccess: sale lookup
        ValidationFailed: bad method, or sale refunded/cancelled
    """
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise InvalidAmount("Payment amount must be a positive number of cents", details={"amount_cents": amount_cents})
    validate_payment_method(method)

    def _op():
        begin_write()
        sale = load_sale(org_id, sale_id, lock=True)
        if sale.is_refunded or sale.status in (STATUS_REFUNDED, STATUS_CANCELLED):
            raise ValidationFailed(
                f"Cannot add payment to a {sale.status} sale",
                details={"sale_id": sale.id, "status": sale.status},
            )

        previous_remaining = sale.remaining_cents
        new_paid = sale.paid_cents + amount_cents
        new_remaining, change_due = settle(new_paid, sale.total_cents)
        new_status = PAYMENT_STATUS_PAID if new_remaining == 0 else PAYMENT_STATUS_PARTIAL

        payment = Payment(
            org_id=org_id,
            sale_id=sale.id,
            amount_cents=amount_cents,
            method=method,
            reference=reference,
            notes=notes,
            created_by_user_id=actor_id,
            created_at=utcnow(),
        )
        db.session.add(payment)

        sale.paid_cents = new_paid
        sale.remaining_cents = new_remaining
        sale.change_due_cents = change_due
        sale.payment_status = new_status

        applied = min(amount_cents, previous_remaining)
        if sale.customer is not None and applied:
            apply_customer_delta(sale.customer, balance_delta=-applied)

        db.session.commit()
        return PaymentResult(
            payment=payment,
            sale=sale,
            paid_cents=new_paid,
            remaining_cents=new_remaining,
            payment_status=new_status,
        )

    result = run_with_retry(_op)

    current_app.logger.info(
        "Payment added: sale=%s amount_cents=%s method=%s status=%s",
        result.sale.invoice_number, amount_cents, method, result.payment_status,
    )
    record_audit(
        org_id=org_id,
        actor_id=actor_id,
        action="PAYMENT_ADDED",
        resource_type="sale",
        resource_id=result.sale.id,
        after={
            "payment_id": result.payment.id,
            "amount_cents": amount_cents,
            "paid_cents": result.paid_cents,
            "remaining_cents": result.remaining_cents,
            "payment_status": result.payment_status,
        },
    )
    return result


def get_payment_summary(*, org_id: int, sale_id: int) -> dict:
    sale = load_sale(org_id, sale_id)
    return {
        "sale_id": sale.id,
        "invoice_number": sale.invoice_number,
        "total_cents": sale.total_cents,
        "paid_cents": sale.paid_cents,
        "remaining_cents": sale.remaining_cents,
        "change_due_cents": sale.change_due_cents,
        "payment_status": sale.payment_status,
        "payments": [payment.to_dict() for payment in sale.payments],
    }
