"""
Sales Service - Sale Commit Engine and order-management updates

WHY: Committing a sale moves four aggregates together: the sale document,
per-product stock levels, the movement ledger and customer/payment
accounting. commit_sale() does all of it in ONE database transaction.

COMMIT PIPELINE (single unit of work):
1. Validate the request shape (no side effects on failure)
2. Resolve tenant settings, store, customer and every product; price every
   line and the sale totals. ProductNotFound / CrossTenantAccess /
   ValidationFailed are raised here, before anything is written.
3. Allocate the invoice number from the tenant sequence
4. Debit stock for each line through the stock ledger
5. Persist sale + lines + initial payment, bump customer aggregates
6. Commit

InsufficientStock on any line rolls back the whole unit of work: earlier
lines' debits and movements, the sale and the invoice number are all
released. Audit log and notification are written after the commit and can
never fail the sale.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..errors import CrossTenantAccess, InvalidTransition, SaleNotFound, ValidationFailed
from ..models import PAYMENT_STATUSES, Payment, Sale, SaleLine, SALE_STATUSES
from ..patching import Maybe, UNSET, apply_patch, is_set
from ..validation import SaleRequest, validate_sale_request
from posledger.time_utils import utcnow
from . import stock_ledger_service
from .audit_service import notify, record_audit
from .concurrency import begin_write, lock_for_update, run_with_retry
from .customer_service import apply_customer_delta
from .pricing import derive_payment_status, price_line, price_sale, settle
from .sequence_service import SEQUENCE_INVOICE, next_document_number
from .tenant_service import (
    get_tenant_settings,
    require_customer_in_org,
    require_product_in_org,
    require_store_in_org,
)


STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUS_REFUNDED = "refunded"

# Order-management state machine. "refunded" is only entered through
# refund_service.refund_sale().
SALE_TRANSITIONS = {
    "draft": {"pending", STATUS_CANCELLED},
    "pending": {"confirmed", STATUS_CANCELLED},
    "confirmed": {"processing", STATUS_CANCELLED},
    "processing": {"shipped", STATUS_CANCELLED},
    "shipped": {"delivered", STATUS_CANCELLED},
    "delivered": {STATUS_COMPLETED, STATUS_CANCELLED},
    STATUS_COMPLETED: set(),
    STATUS_CANCELLED: set(),
    STATUS_REFUNDED: set(),
}


@dataclass
class SalePatch:
    notes: Maybe[str | None] = UNSET
    internal_notes: Maybe[str | None] = UNSET
    status: Maybe[str] = UNSET


def load_sale(org_id: int, sale_id: int, *, lock: bool = False) -> Sale:
    """
    Load a sale for a tenant.

    Raises:
        SaleNotFound: no such sale
        CrossTenantAccess: the sale belongs to another organization
    """
    query = db.session.query(Sale).filter_by(id=sale_id)
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if sale is None:
        raise SaleNotFound(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    if sale.org_id != org_id:
        current_app.logger.warning("Cross-tenant sale access denied: sale_id=%s org_id=%s", sale_id, org_id)
        raise CrossTenantAccess("Sale belongs to another organization", details={"sale_id": sale_id})
    return sale


def check_transition(current: str, target: str) -> None:
    if target not in SALE_STATUSES:
        raise ValidationFailed(f"Unknown sale status: {target}", details={"allowed": list(SALE_STATUSES)})
    if target == current:
        return
    if target == STATUS_REFUNDED:
        raise InvalidTransition(
            "Sales are refunded through the refund endpoint",
            details={"from": current, "to": target},
        )
    if target not in SALE_TRANSITIONS.get(current, set()):
        raise InvalidTransition(
            f"Cannot move sale from {current} to {target}",
            details={"from": current, "to": target},
        )


def commit_sale(*, org_id: int, store_id: int, actor_id: int | None, request: SaleRequest) -> Sale:
    """
    CommitSale: turn a validated request into a persisted, completed sale.

    Raises:
        ValidationFailed, ProductNotFound, CrossTenantAccess: before any write
        InsufficientStock: a line would take stock negative (nothing persists)
        TransientStoreConflict: store conflicts persisted after retries
    """
    validate_sale_request(request)

    def _op():
        begin_write()
        settings = get_tenant_settings(org_id)
        store = require_store_in_org(store_id, org_id)
        customer = None
        if request.customer_id is not None:
            customer = require_customer_in_org(request.customer_id, org_id)
            if not customer.is_active:
                raise ValidationFailed("Customer is inactive", details={"customer_id": customer.id})

        tax_rate_bps = request.tax_rate_bps
        if tax_rate_bps is None:
            tax_rate_bps = settings.default_tax_rate_bps

        # Resolve and price everything before the first mutation
        priced = []
        for index, line_req in enumerate(request.lines):
            product = require_product_in_org(line_req.product_id, org_id)
            if not product.is_active:
                raise ValidationFailed("Product is inactive", details={"line": index, "product_id": product.id})
            unit_price = line_req.unit_price_cents
            if unit_price is None:
                unit_price = product.price_cents
            if unit_price is None:
                raise ValidationFailed("Product has no price", details={"line": index, "product_id": product.id})
            priced.append((
                product,
                price_line(
                    unit_price_cents=unit_price,
                    quantity=line_req.quantity,
                    discount_bps=line_req.discount_bps,
                    discount_cents=line_req.discount_cents,
                    tax_rate_bps=tax_rate_bps,
                ),
            ))

        totals = price_sale(
            [pricing for _product, pricing in priced],
            discount_bps=request.discount_bps,
            discount_cents=request.discount_cents,
            tax_rate_bps=tax_rate_bps,
            shipping_cents=request.shipping_cents,
        )
        remaining, change_due = settle(request.paid_cents, totals.total_cents)
        now = utcnow()

        invoice_number = next_document_number(
            org_id=org_id,
            document_type=SEQUENCE_INVOICE,
            prefix=settings.invoice_prefix,
        )

        sale = Sale(
            org_id=org_id,
            store_id=store.id,
            invoice_number=invoice_number,
            status=STATUS_COMPLETED,
            source=request.source,
            is_pos_sale=request.source == "pos",
            currency=request.currency or settings.default_currency,
            customer_id=customer.id if customer else None,
            customer_name=request.customer_name or (customer.name if customer else None),
            customer_email=customer.email if customer else None,
            customer_phone=customer.phone if customer else None,
            created_by_user_id=actor_id,
            sales_rep_user_id=request.sales_rep_user_id or actor_id,
            total_items=totals.total_items,
            subtotal_cents=totals.subtotal_cents,
            discount_bps=totals.discount_bps,
            discount_amount_cents=totals.discount_amount_cents,
            discount_total_cents=totals.discount_total_cents,
            tax_rate_bps=totals.tax_rate_bps,
            tax_cents=totals.tax_cents,
            shipping_cents=totals.shipping_cents,
            total_cents=totals.total_cents,
            payment_method=request.payment_method,
            payment_status=derive_payment_status(request.paid_cents, totals.total_cents),
            paid_cents=request.paid_cents,
            remaining_cents=remaining,
            change_due_cents=change_due,
            notes=request.notes,
            internal_notes=request.internal_notes,
            completed_at=now,
        )
        db.session.add(sale)
        db.session.flush()

        for line_no, (product, pricing) in enumerate(priced, start=1):
            change = stock_ledger_service.debit(
                org_id=org_id,
                product=product,
                store_id=store.id,
                quantity=pricing.quantity,
                allow_negative=settings.allow_negative_stock,
                reference_type="sale",
                reference_id=invoice_number,
                actor_id=actor_id,
            )
            db.session.add(SaleLine(
                sale_id=sale.id,
                line_no=line_no,
                product_id=product.id,
                product_name=product.name,
                product_sku=product.sku,
                unit_cost_cents=change.movement.unit_cost_cents or 0,
                quantity=pricing.quantity,
                unit_price_cents=pricing.unit_price_cents,
                discount_bps=pricing.discount_bps,
                discount_cents=pricing.discount_cents,
                tax_rate_bps=pricing.tax_rate_bps,
                tax_cents=pricing.tax_cents,
                line_total_cents=pricing.line_total_cents,
                stock_movement_id=change.movement.id,
            ))

        if request.paid_cents > 0:
            db.session.add(Payment(
                org_id=org_id,
                sale_id=sale.id,
                amount_cents=request.paid_cents,
                method=request.payment_method,
                reference=request.payment_reference,
                created_by_user_id=actor_id,
                created_at=now,
            ))

        if customer is not None:
            apply_customer_delta(
                customer,
                spent_delta=totals.total_cents,
                orders_delta=1,
                balance_delta=remaining,
                last_order_at=now,
            )

        db.session.commit()
        return sale

    sale = run_with_retry(_op)

    current_app.logger.info(
        "Sale committed: %s org=%s store=%s total_cents=%s payment_status=%s",
        sale.invoice_number, org_id, store_id, sale.total_cents, sale.payment_status,
    )
    record_audit(
        org_id=org_id,
        actor_id=actor_id,
        action="SALE_CREATED",
        resource_type="sale",
        resource_id=sale.id,
        after=sale.to_dict(),
    )
    notify(
        org_id=org_id,
        type="sale",
        title="New sale",
        message=f"Sale {sale.invoice_number} created",
        data={"sale_id": sale.id, "invoice_number": sale.invoice_number, "total_cents": sale.total_cents},
    )
    return sale


def update_sale(*, org_id: int, sale_id: int, patch: SalePatch, actor_id: int | None = None) -> Sale:
    """
    UpdateSale: notes and lifecycle status.

    Money, lines and payment fields are not patchable.
    """
    for name in ("notes", "internal_notes"):
        value = getattr(patch, name)
        if is_set(value) and value is not None and not isinstance(value, str):
            raise ValidationFailed(f"{name} must be a string", details={"field": name})
    if is_set(patch.status) and not isinstance(patch.status, str):
        raise ValidationFailed("status must be a string")

    def _op():
        begin_write()
        sale = load_sale(org_id, sale_id, lock=True)
        before_status = sale.status
        if is_set(patch.status):
            check_transition(sale.status, patch.status)

        changes = apply_patch(sale, patch, nullable={"notes", "internal_notes"})
        if "status" in changes and sale.status == STATUS_COMPLETED:
            sale.completed_at = utcnow()
        db.session.commit()
        return sale, before_status, changes

    sale, before_status, changes = run_with_retry(_op)

    if changes:
        current_app.logger.info("Sale updated: %s fields=%s", sale.invoice_number, sorted(changes))
        record_audit(
            org_id=org_id,
            actor_id=actor_id,
            action="SALE_STATUS_CHANGED" if "status" in changes else "SALE_UPDATED",
            resource_type="sale",
            resource_id=sale.id,
            before={name: before for name, (before, _after) in changes.items()},
            after={name: after for name, (_before, after) in changes.items()},
        )
        if "status" in changes:
            notify(
                org_id=org_id,
                type="sale",
                title="Sale status changed",
                message=f"Sale {sale.invoice_number}: {before_status} -> {sale.status}",
                data={"sale_id": sale.id, "from": before_status, "to": sale.status},
            )
    return sale


def get_sale(*, org_id: int, sale_id: int) -> Sale:
    return load_sale(org_id, sale_id)


def verify_sale_payments(sale: Sale) -> list[str]:
    """Return a list of money invariant violations for one sale (empty when consistent)."""
    problems = []
    payments_total = sum(payment.amount_cents for payment in sale.payments)
    if payments_total != sale.paid_cents:
        problems.append(f"payments sum {payments_total} != paid_cents {sale.paid_cents}")
    if sale.paid_cents - sale.change_due_cents + sale.remaining_cents != sale.total_cents:
        problems.append("paid - change_due + remaining != total")
    if sale.payment_status not in PAYMENT_STATUSES:
        problems.append(f"unknown payment_status {sale.payment_status!r}")

    lines_total = sum(line.line_total_cents for line in sale.lines)
    if lines_total != sale.subtotal_cents:
        problems.append(f"line totals {lines_total} != subtotal_cents {sale.subtotal_cents}")
    expected_total = (
        sale.subtotal_cents - sale.discount_total_cents + sale.tax_cents + sale.shipping_cents
    )
    if expected_total != sale.total_cents:
        problems.append(f"subtotal - discount + tax + shipping {expected_total} != total {sale.total_cents}")
    return problems
