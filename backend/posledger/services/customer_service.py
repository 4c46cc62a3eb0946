# Overview: Service-layer operations for customers; contact CRUD plus the increment-only aggregate writer.

"""
Customer aggregates (total_orders, total_spent_cents, current_balance_cents)
are counters moved by sale commit, payments and refunds through
apply_customer_delta(). It issues a single SQL-side increment
(UPDATE ... SET col = col + :delta) so concurrent sales for the same
customer never lose an update. CustomerPatch carries contact fields only.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..errors import ValidationFailed
from ..models import Customer
from ..patching import Maybe, UNSET, apply_patch, supplied_fields
from .concurrency import begin_write, run_with_retry
from .sequence_service import CUSTOMER_PREFIX, SEQUENCE_CUSTOMER, next_document_number
from .tenant_service import require_customer_in_org, require_org
from .audit_service import record_audit


AGGREGATE_FIELDS = ("total_orders", "total_spent_cents", "current_balance_cents", "last_order_at")


@dataclass
class CustomerPatch:
    name: Maybe[str] = UNSET
    email: Maybe[str | None] = UNSET
    phone: Maybe[str | None] = UNSET
    notes: Maybe[str | None] = UNSET
    is_active: Maybe[bool] = UNSET


def _clean_contact(name: str | None, email: str | None, phone: str | None) -> None:
    if name is not None and not name.strip():
        raise ValidationFailed("Customer name cannot be blank")
    if email is not None and "@" not in email:
        raise ValidationFailed("Invalid email address", details={"email": email})
    if phone is not None and len(phone) > 32:
        raise ValidationFailed("phone exceeds max length 32")


def apply_customer_delta(
    customer: Customer,
    *,
    spent_delta: int = 0,
    orders_delta: int = 0,
    balance_delta: int = 0,
    last_order_at: datetime | None = None,
) -> None:
    """
    ApplyCustomerDelta: adjust aggregates relative to their stored value.

    Joins the caller's transaction. The in-memory customer is expired so the
    next attribute access reads the committed counters.
    """
    values = {}
    if orders_delta:
        values["total_orders"] = Customer.total_orders + orders_delta
    if spent_delta:
        values["total_spent_cents"] = Customer.total_spent_cents + spent_delta
    if balance_delta:
        values["current_balance_cents"] = Customer.current_balance_cents + balance_delta
    if last_order_at is not None:
        values["last_order_at"] = last_order_at
    if not values:
        return

    stmt = (
        update(Customer)
        .where(Customer.id == customer.id, Customer.org_id == customer.org_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.session.execute(stmt)
    db.session.expire(customer, list(AGGREGATE_FIELDS))


def create_customer(
    *,
    org_id: int,
    name: str,
    email: str | None = None,
    phone: str | None = None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> Customer:
    name = (name or "").strip()
    if not name:
        raise ValidationFailed("Customer name is required")
    _clean_contact(name, email, phone)

    def _op():
        begin_write()
        require_org(org_id)
        code = next_document_number(
            org_id=org_id,
            document_type=SEQUENCE_CUSTOMER,
            prefix=CUSTOMER_PREFIX,
        )
        customer = Customer(org_id=org_id, code=code, name=name, email=email, phone=phone, notes=notes)
        db.session.add(customer)
        db.session.commit()
        return customer

    customer = run_with_retry(_op)
    current_app.logger.info("Customer created: %s (org %s)", customer.code, org_id)
    record_audit(
        org_id=org_id,
        actor_id=actor_id,
        action="CUSTOMER_CREATED",
        resource_type="customer",
        resource_id=customer.id,
        after={"code": customer.code, "name": customer.name},
    )
    return customer


def update_customer(
    *,
    org_id: int,
    customer_id: int,
    patch: CustomerPatch,
    actor_id: int | None = None,
) -> Customer:
    """UpdateCustomer: contact fields only; aggregates are not reachable."""
    for name, value in supplied_fields(patch).items():
        expected = bool if name == "is_active" else str
        if value is not None and not isinstance(value, expected):
            raise ValidationFailed(f"{name} has an invalid type", details={"field": name})
    _clean_contact(
        patch.name if isinstance(patch.name, str) else None,
        patch.email if isinstance(patch.email, str) else None,
        patch.phone if isinstance(patch.phone, str) else None,
    )

    def _op():
        begin_write()
        customer = require_customer_in_org(customer_id, org_id)
        changes = apply_patch(customer, patch, nullable={"email", "phone", "notes"})
        db.session.commit()
        return customer, changes

    customer, changes = run_with_retry(_op)
    if changes:
        record_audit(
            org_id=org_id,
            actor_id=actor_id,
            action="CUSTOMER_UPDATED",
            resource_type="customer",
            resource_id=customer.id,
            before={name: before for name, (before, _after) in changes.items()},
            after={name: after for name, (_before, after) in changes.items()},
        )
    return customer
