# Overview: Service-layer operations for per-tenant document sequences (invoice, refund and customer numbers).

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ValidationFailed
from ..models import DocumentSequence


SEQUENCE_INVOICE = "invoice"
SEQUENCE_REFUND = "refund"
SEQUENCE_CUSTOMER = "customer"

REFUND_PREFIX = "RF"
CUSTOMER_PREFIX = "CUST"


def _current_next_number(org_id: int, document_type: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(org_id=org_id, document_type=document_type)
        .scalar()
    )


def next_sequence_value(org_id: int, document_type: str) -> int:
    """
    Atomically allocate the next value of an (org, document_type) sequence.

    Runs inside the caller's transaction and does not commit: if the caller
    rolls back, the value is released and handed out again, so committed
    values form a gap-free increasing sequence.
    """
    if not org_id:
        raise ValidationFailed("org_id is required")
    if not document_type:
        raise ValidationFailed("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.org_id == org_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        return _current_next_number(org_id, document_type) - 1

    # First allocation for this counter. A concurrent first allocation
    # loses on the unique constraint and falls back to the increment.
    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(org_id=org_id, document_type=document_type, next_number=2))
        return 1
    except IntegrityError:
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        return _current_next_number(org_id, document_type) - 1


def format_document_number(prefix: str, value: int, pad: int | None = None) -> str:
    if pad is None:
        pad = current_app.config.get("INVOICE_NUMBER_PAD", 6)
    return f"{prefix}-{value:0{pad}d}"


def next_document_number(
    *,
    org_id: int,
    document_type: str,
    prefix: str,
    pad: int | None = None,
) -> str:
    """Allocate the next value and format it as "{prefix}-{zero padded value}"."""
    return format_document_number(prefix, next_sequence_value(org_id, document_type), pad)


def peek_next_value(org_id: int, document_type: str) -> int:
    """Value the next allocation would return (read only)."""
    current = _current_next_number(org_id, document_type)
    return current if current is not None else 1
