# Overview: Flask API routes for customers; parses input and returns JSON responses.

# backend/posledger/routes/customers.py
from flask import Blueprint, request, jsonify, g

from ..errors import LedgerError
from ..patching import patch_from_payload
from ..services import customer_service
from ..services.customer_service import CustomerPatch
from ..services.tenant_service import require_customer_in_org
from ..validation import optional_str, require_dict, require_str
from ..decorators import require_tenant_context
from . import error_response, internal_error


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.post("/")
@require_tenant_context
def create_customer_route():
    try:
        data = require_dict(request.get_json(silent=True))
        customer = customer_service.create_customer(
            org_id=g.org_id,
            name=require_str(data, "name", max_length=255),
            email=optional_str(data, "email", max_length=255),
            phone=optional_str(data, "phone", max_length=32),
            notes=optional_str(data, "notes"),
            actor_id=g.user_id,
        )
        return jsonify({"customer": customer.to_dict()}), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create customer")


@customers_bp.get("/<int:customer_id>")
@require_tenant_context
def get_customer_route(customer_id: int):
    try:
        customer = require_customer_in_org(customer_id, g.org_id)
        return jsonify({"customer": customer.to_dict()}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to load customer")


@customers_bp.patch("/<int:customer_id>")
@require_tenant_context
def update_customer_route(customer_id: int):
    """
    Update contact fields.

    Aggregate fields (total_orders, total_spent_cents, current_balance_cents,
    last_order_at) are rejected as not updatable.
    """
    try:
        patch = patch_from_payload(CustomerPatch, require_dict(request.get_json(silent=True)))
        customer = customer_service.update_customer(
            org_id=g.org_id,
            customer_id=customer_id,
            patch=patch,
            actor_id=g.user_id,
        )
        return jsonify({"customer": customer.to_dict()}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update customer")
