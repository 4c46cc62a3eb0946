# Overview: Flask API routes for stock levels and movements; parses input and returns JSON responses.

# backend/posledger/routes/inventory.py
from flask import Blueprint, request, jsonify, g

from ..errors import LedgerError, ValidationFailed
from ..models import MOVEMENT_KINDS, STOCK_STATUSES
from ..patching import patch_from_payload
from ..services import stock_ledger_service
from ..services.stock_ledger_service import StockLevelPatch
from ..validation import coerce_int, optional_int, optional_str, require_dict, require_str
from ..decorators import require_tenant_context
from . import error_response, internal_error


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _store_id(data: dict) -> int:
    store_id = data.get("store_id")
    if store_id is None:
        store_id = g.store_id
    if store_id is None:
        raise ValidationFailed("store_id required")
    return coerce_int(store_id, "store_id", minimum=1)


def _query_int(name: str, **kwargs):
    return optional_int(request.args, name, **kwargs)


@inventory_bp.post("/adjust")
@require_tenant_context
def adjust_route():
    """
    Manual stock correction.

    Body: product_id, delta (signed, non-zero), reason, store_id (or X-Store-Id)
    """
    try:
        data = require_dict(request.get_json(silent=True))
        if data.get("product_id") is None or data.get("delta") is None:
            raise ValidationFailed("product_id and delta required")

        change = stock_ledger_service.adjust_stock(
            org_id=g.org_id,
            product_id=coerce_int(data["product_id"], "product_id", minimum=1),
            store_id=_store_id(data),
            delta=coerce_int(data["delta"], "delta"),
            reason=require_str(data, "reason", max_length=255),
            actor_id=g.user_id,
        )
        return jsonify(change.to_dict()), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to adjust stock")


@inventory_bp.post("/receive")
@require_tenant_context
def receive_route():
    """
    Receive goods.

    Body: product_id, quantity (> 0), optional unit_cost_cents, reference_id, reason
    """
    try:
        data = require_dict(request.get_json(silent=True))
        if data.get("product_id") is None or data.get("quantity") is None:
            raise ValidationFailed("product_id and quantity required")

        change = stock_ledger_service.receive_stock(
            org_id=g.org_id,
            product_id=coerce_int(data["product_id"], "product_id", minimum=1),
            store_id=_store_id(data),
            quantity=coerce_int(data["quantity"], "quantity", minimum=1),
            unit_cost_cents=optional_int(data, "unit_cost_cents", minimum=0),
            reference_id=optional_str(data, "reference_id", max_length=64),
            reason=optional_str(data, "reason", max_length=255),
            actor_id=g.user_id,
        )
        return jsonify(change.to_dict()), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to receive stock")


@inventory_bp.post("/transfer")
@require_tenant_context
def transfer_route():
    try:
        data = require_dict(request.get_json(silent=True))
        for key in ("product_id", "from_store_id", "to_store_id", "quantity"):
            if data.get(key) is None:
                raise ValidationFailed(f"{key} required")

        outbound, inbound = stock_ledger_service.transfer_stock(
            org_id=g.org_id,
            product_id=coerce_int(data["product_id"], "product_id", minimum=1),
            from_store_id=coerce_int(data["from_store_id"], "from_store_id", minimum=1),
            to_store_id=coerce_int(data["to_store_id"], "to_store_id", minimum=1),
            quantity=coerce_int(data["quantity"], "quantity", minimum=1),
            reason=optional_str(data, "reason", max_length=255),
            actor_id=g.user_id,
        )
        return jsonify({"outbound": outbound.to_dict(), "inbound": inbound.to_dict()}), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to transfer stock")


@inventory_bp.get("/levels")
@require_tenant_context
def list_levels_route():
    try:
        status = request.args.get("status")
        if status is not None and status not in STOCK_STATUSES:
            raise ValidationFailed(f"Invalid status: {status}", details={"allowed": list(STOCK_STATUSES)})
        product_id = _query_int("product_id", minimum=1)
        store_id = _query_int("store_id", minimum=1)

        levels = stock_ledger_service.list_stock_levels(
            org_id=g.org_id, product_id=product_id, store_id=store_id, status=status,
        )
        return jsonify({"levels": [level.to_dict() for level in levels]}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to list stock levels")


@inventory_bp.patch("/levels/<int:product_id>/<int:store_id>")
@require_tenant_context
def update_thresholds_route(product_id: int, store_id: int):
    """Update min_quantity / max_quantity / reorder_point (null clears max and reorder point)."""
    try:
        patch = patch_from_payload(StockLevelPatch, require_dict(request.get_json(silent=True)))
        level = stock_ledger_service.update_stock_thresholds(
            org_id=g.org_id,
            product_id=product_id,
            store_id=store_id,
            patch=patch,
            actor_id=g.user_id,
        )
        return jsonify({"level": level.to_dict()}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update stock thresholds")


@inventory_bp.get("/movements")
@require_tenant_context
def list_movements_route():
    try:
        kind = request.args.get("kind")
        if kind is not None and kind not in MOVEMENT_KINDS:
            raise ValidationFailed(f"Invalid kind: {kind}", details={"allowed": list(MOVEMENT_KINDS)})

        movements = stock_ledger_service.list_movements(
            org_id=g.org_id,
            product_id=_query_int("product_id", minimum=1),
            store_id=_query_int("store_id", minimum=1),
            kind=kind,
            limit=_query_int("limit", default=100, minimum=1, maximum=500),
            offset=_query_int("offset", default=0, minimum=0),
        )
        return jsonify({"movements": [movement.to_dict() for movement in movements]}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to list stock movements")
