# Overview: Flask API routes for sales, payments and refunds; parses input and returns JSON responses.

# backend/posledger/routes/sales.py
"""Sales API routes (tenant context from gateway headers)"""

from flask import Blueprint, request, jsonify, g

from ..errors import LedgerError, ValidationFailed
from ..patching import patch_from_payload
from ..services import payment_service, refund_service, sales_service
from ..services.audit_service import list_audit_logs
from ..services.sales_service import SalePatch
from ..validation import coerce_int, optional_str, parse_refund_request, parse_sale_request, require_dict
from ..decorators import require_tenant_context
from . import error_response, internal_error


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/")
@require_tenant_context
def commit_sale_route():
    """
    Commit a sale: price lines, allocate the invoice number, debit stock,
    record the initial payment.

    store_id comes from the body or, when absent, from X-Store-Id.
    """
    try:
        data = require_dict(request.get_json(silent=True))
        store_id = data.pop("store_id", None)
        if store_id is None:
            store_id = g.store_id
        if store_id is None:
            raise ValidationFailed("store_id required")
        store_id = coerce_int(store_id, "store_id", minimum=1)

        sale_request = parse_sale_request(data)
        sale = sales_service.commit_sale(
            org_id=g.org_id,
            store_id=store_id,
            actor_id=g.user_id,
            request=sale_request,
        )
        return jsonify({"sale": sale.to_dict(include_lines=True)}), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to commit sale")


@sales_bp.get("/<int:sale_id>")
@require_tenant_context
def get_sale_route(sale_id: int):
    """Get sale with lines, payments and refunds."""
    try:
        sale = sales_service.get_sale(org_id=g.org_id, sale_id=sale_id)
        return jsonify({"sale": sale.to_dict(include_lines=True)}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to load sale")


@sales_bp.patch("/<int:sale_id>")
@require_tenant_context
def update_sale_route(sale_id: int):
    """Update notes / lifecycle status. Absent fields are left untouched, null clears."""
    try:
        patch = patch_from_payload(SalePatch, require_dict(request.get_json(silent=True)))
        sale = sales_service.update_sale(
            org_id=g.org_id,
            sale_id=sale_id,
            patch=patch,
            actor_id=g.user_id,
        )
        return jsonify({"sale": sale.to_dict()}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update sale")


@sales_bp.post("/<int:sale_id>/payments")
@require_tenant_context
def add_payment_route(sale_id: int):
    try:
        data = require_dict(request.get_json(silent=True))
        if data.get("amount_cents") is None:
            raise ValidationFailed("amount_cents required")

        result = payment_service.add_payment(
            org_id=g.org_id,
            sale_id=sale_id,
            amount_cents=coerce_int(data["amount_cents"], "amount_cents"),
            method=data.get("method"),
            reference=optional_str(data, "reference", max_length=128),
            notes=optional_str(data, "notes"),
            actor_id=g.user_id,
        )
        return jsonify(result.to_dict()), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to add payment")


@sales_bp.get("/<int:sale_id>/payments")
@require_tenant_context
def payment_summary_route(sale_id: int):
    try:
        summary = payment_service.get_payment_summary(org_id=g.org_id, sale_id=sale_id)
        return jsonify(summary), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to load payment summary")


@sales_bp.post("/<int:sale_id>/refund")
@require_tenant_context
def refund_sale_route(sale_id: int):
    """Refund all of a sale, or the listed items."""
    try:
        refund_request = parse_refund_request(request.get_json(silent=True))
        refund = refund_service.refund_sale(
            org_id=g.org_id,
            sale_id=sale_id,
            reason=refund_request.reason,
            items=refund_request.items,
            amount_cents=refund_request.amount_cents,
            actor_id=g.user_id,
        )
        sale = sales_service.get_sale(org_id=g.org_id, sale_id=sale_id)
        return jsonify({"refund": refund.to_dict(), "sale": sale.to_dict()}), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to refund sale")


@sales_bp.get("/<int:sale_id>/audit")
@require_tenant_context
def sale_audit_route(sale_id: int):
    """Audit trail of a sale, oldest first."""
    try:
        sale = sales_service.get_sale(org_id=g.org_id, sale_id=sale_id)
        entries = list_audit_logs(g.org_id, resource_type="sale", resource_id=sale.id)
        return jsonify({"sale_id": sale.id, "entries": [entry.to_dict() for entry in entries]}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to load sale audit trail")
