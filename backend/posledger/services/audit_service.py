# Overview: Fire-and-forget audit-log and notification side effects, written after the business transaction commits.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditLog, Notification


def _write_side_effect(row, description: str) -> bool:
    """
    Persist one side-effect row in its own small transaction.

    Failures are logged and rolled back; they never propagate to the
    caller, whose own transaction has already committed.
    """
    try:
        db.session.add(row)
        db.session.commit()
        return True
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to write %s", description)
        return False


def record_audit(
    *,
    org_id: int,
    actor_id: int | None,
    action: str,
    resource_type: str,
    resource_id,
    before: dict | None = None,
    after: dict | None = None,
) -> bool:
    return _write_side_effect(
        AuditLog(
            org_id=org_id,
            actor_user_id=actor_id,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            before=before,
            after=after,
        ),
        f"audit log {action} for {resource_type} {resource_id}",
    )


def notify(
    *,
    org_id: int,
    type: str,
    title: str,
    message: str,
    data: dict | None = None,
) -> bool:
    return _write_side_effect(
        Notification(org_id=org_id, type=type, title=title, message=message, data=data),
        f"{type} notification",
    )


def list_audit_logs(org_id: int, *, resource_type: str | None = None, resource_id=None) -> list[AuditLog]:
    query = db.session.query(AuditLog).filter_by(org_id=org_id)
    if resource_type is not None:
        query = query.filter_by(resource_type=resource_type)
    if resource_id is not None:
        query = query.filter_by(resource_id=str(resource_id))
    return query.order_by(AuditLog.id.asc()).all()
