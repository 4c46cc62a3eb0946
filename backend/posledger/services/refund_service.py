# Overview: Service-layer operations for refunds/returns; reverses part or all of a completed sale.

"""
Refund/Return Processor

WHY: A refund must put returned goods back through the stock ledger, mark
the affected lines and record an immutable refund document, all at once.

LIFECYCLE:
- Only a completed, not-yet-refunded sale can be refunded, and only once.
- The is_refunded flag is flipped with an atomic compare-and-set
  (UPDATE ... WHERE is_refunded = false); the loser of a double-refund race
  gets AlreadyRefunded and performs no stock mutation.

COSTING:
- Returned units go back at the unit cost recorded on the sale line, not at
  the current average.

CUSTOMER RECONCILIATION:
- total_spent_cents -= refund amount
- total_orders -= 1 for a full refund
- current_balance_cents -= the sale's outstanding remaining amount
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..errors import AlreadyRefunded, InvalidAmount, InvalidTransition, ValidationFailed
from ..models import Refund, RefundLine, Sale
from ..validation import MAX_REASON_LENGTH, RefundItemRequest
from posledger.time_utils import utcnow
from . import stock_ledger_service
from .audit_service import notify, record_audit
from .concurrency import begin_write, run_with_retry
from .customer_service import apply_customer_delta
from .pricing import PAYMENT_STATUS_REFUNDED
from .sales_service import STATUS_COMPLETED, STATUS_REFUNDED, load_sale
from .sequence_service import REFUND_PREFIX, SEQUENCE_REFUND, next_document_number
from .tenant_service import require_product_in_org


def _claim_refund(sale: Sale) -> None:
    """Atomically flip is_refunded; AlreadyRefunded when another writer got there first."""
    stmt = (
        update(Sale)
        .where(Sale.id == sale.id, Sale.is_refunded.is_(False))
        .values(is_refunded=True, version_id=Sale.version_id + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise AlreadyRefunded(f"Sale {sale.invoice_number} is already refunded", details={"sale_id": sale.id})
    db.session.refresh(sale)


def _resolve_items(sale: Sale, items: list[RefundItemRequest] | None) -> list[tuple]:
    """Return [(sale_line, quantity)]; all remaining quantities when items is None."""
    lines_by_id = {line.id: line for line in sale.lines}

    if items is None:
        return [(line, line.returnable_quantity) for line in sale.lines if line.returnable_quantity > 0]

    requested: dict[int, int] = {}
    for item in items:
        if item.sale_line_id not in lines_by_id:
            raise ValidationFailed(
                "Refund item does not belong to this sale",
                details={"sale_line_id": item.sale_line_id},
            )
        if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity <= 0:
            raise ValidationFailed("Refund quantity must be a positive integer", details={"sale_line_id": item.sale_line_id})
        requested[item.sale_line_id] = requested.get(item.sale_line_id, 0) + item.quantity

    resolved = []
    for line_id, quantity in requested.items():
        line = lines_by_id[line_id]
        if quantity > line.returnable_quantity:
            raise ValidationFailed(
                "Refund quantity exceeds quantity sold",
                details={"sale_line_id": line_id, "requested": quantity, "returnable": line.returnable_quantity},
            )
        resolved.append((line, quantity))
    return resolved


def refund_sale(
    *,
    org_id: int,
    sale_id: int,
    reason: str,
    items: list[RefundItemRequest] | None = None,
    amount_cents: int | None = None,
    actor_id: int | None = None,
) -> Refund:
    """
    RefundSale: credit returned stock, mark lines and the sale, record a refund.

    items=None refunds every line; amount_cents=None refunds the sale total.

    Raises:
        SaleNotFound / CrossTenantAccess: sale lookup
        AlreadyRefunded: the sale was refunded before (no stock mutation)
        InvalidAmount: amount <= 0 or above the sale total
        ValidationFailed: missing reason or bad items
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationFailed("Refund reason is required")
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationFailed(f"reason exceeds max length {MAX_REASON_LENGTH}")

    def _op():
        begin_write()
        sale = load_sale(org_id, sale_id, lock=True)
        if sale.is_refunded:
            raise AlreadyRefunded(f"Sale {sale.invoice_number} is already refunded", details={"sale_id": sale.id})
        if sale.status != STATUS_COMPLETED:
            raise InvalidTransition(
                f"Cannot refund a {sale.status} sale",
                details={"from": sale.status, "to": STATUS_REFUNDED},
            )

        targets = _resolve_items(sale, items)
        if not targets:
            raise ValidationFailed("Nothing left to refund on this sale")

        refund_amount = sale.total_cents if amount_cents is None else amount_cents
        if refund_amount <= 0 or refund_amount > sale.total_cents:
            raise InvalidAmount(
                "Refund amount must be positive and not exceed the sale total",
                details={"amount_cents": refund_amount, "total_cents": sale.total_cents},
            )

        _claim_refund(sale)

        refund_number = next_document_number(org_id=org_id, document_type=SEQUENCE_REFUND, prefix=REFUND_PREFIX)
        now = utcnow()
        is_full = all(quantity == line.quantity for line, quantity in targets) and len(targets) == len(sale.lines)

        refund = Refund(
            org_id=org_id,
            sale_id=sale.id,
            refund_number=refund_number,
            amount_cents=refund_amount,
            reason=reason,
            is_full=is_full,
            created_by_user_id=actor_id,
            created_at=now,
        )
        db.session.add(refund)
        db.session.flush()

        for line, quantity in targets:
            product = require_product_in_org(line.product_id, org_id)
            change = stock_ledger_service.credit(
                org_id=org_id,
                product=product,
                store_id=sale.store_id,
                quantity=quantity,
                reference_type="return",
                reference_id=refund_number,
                reason=reason,
                unit_cost_cents=line.unit_cost_cents,
                actor_id=actor_id,
            )
            line.returned_quantity += quantity
            line.is_returned = line.returned_quantity >= line.quantity
            db.session.add(RefundLine(
                refund_id=refund.id,
                sale_line_id=line.id,
                product_id=line.product_id,
                quantity=quantity,
                stock_movement_id=change.movement.id,
            ))

        outstanding = sale.remaining_cents
        sale.status = STATUS_REFUNDED
        sale.payment_status = PAYMENT_STATUS_REFUNDED
        sale.refund_amount_cents = refund_amount
        sale.refund_reason = reason
        sale.refunded_at = now
        sale.refunded_by_user_id = actor_id

        if sale.customer is not None:
            apply_customer_delta(
                sale.customer,
                spent_delta=-refund_amount,
                orders_delta=-1 if is_full else 0,
                balance_delta=-outstanding,
            )

        db.session.commit()
        return refund

    refund = run_with_retry(_op)

    current_app.logger.info(
        "Sale refunded: sale_id=%s refund=%s amount_cents=%s",
        sale_id, refund.refund_number, refund.amount_cents,
    )
    record_audit(
        org_id=org_id,
        actor_id=actor_id,
        action="SALE_REFUNDED",
        resource_type="sale",
        resource_id=sale_id,
        before={"status": STATUS_COMPLETED, "is_refunded": False},
        after={"status": STATUS_REFUNDED, "is_refunded": True, "refund": refund.to_dict()},
    )
    notify(
        org_id=org_id,
        type="refund",
        title="Sale refunded",
        message=f"Refund {refund.refund_number} issued for sale {sale_id}",
        data={"sale_id": sale_id, "refund_id": refund.id, "amount_cents": refund.amount_cents},
    )
    return refund
