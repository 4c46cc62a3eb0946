from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .errors import ValidationFailed
from .models import ADDITIONAL_PAYMENT_METHODS, SALE_PAYMENT_METHODS, SALE_SOURCES


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

MAX_BPS = 10_000
MAX_REASON_LENGTH = 255


def coerce_int(
    value: Any,
    name: str,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int:
    """
    Strict integer coercion for JSON input.

    Accepts ints and plain digit strings. Rejects bools, floats, decimals and
    scientific notation so "12.5" or 1e3 never silently become a quantity.
    """
    if isinstance(value, bool):
        raise ValidationFailed(f"{name} must be an integer", details={"field": name})
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationFailed(f"{name} must be an integer", details={"field": name})
        if "e" in stripped.lower():
            raise ValidationFailed(
                f"{name} must be a plain integer (scientific notation not allowed)",
                details={"field": name},
            )
        if "." in stripped:
            raise ValidationFailed(f"{name} must be an integer (no decimals)", details={"field": name})
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationFailed(f"{name} must be an integer", details={"field": name})
    elif isinstance(value, float):
        raise ValidationFailed(f"{name} must be an integer, not a decimal", details={"field": name})
    else:
        raise ValidationFailed(f"{name} must be an integer", details={"field": name})

    if minimum is not None and result < minimum:
        raise ValidationFailed(f"{name} must be >= {minimum}", details={"field": name, "value": result})
    if maximum is not None and result > maximum:
        raise ValidationFailed(f"{name} must be <= {maximum}", details={"field": name, "value": result})
    return result


def optional_int(payload: dict, key: str, *, default=None, minimum=None, maximum=None):
    raw = payload.get(key)
    if raw is None:
        return default
    return coerce_int(raw, key, minimum=minimum, maximum=maximum)


def optional_str(payload: dict, key: str, *, max_length: int | None = None) -> str | None:
    raw = payload.get(key)
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise ValidationFailed(f"{key} must be a string", details={"field": key})
    value = raw.strip()
    if max_length is not None and len(value) > max_length:
        raise ValidationFailed(f"{key} exceeds max length {max_length}", details={"field": key})
    return value or None


def require_str(payload: dict, key: str, *, max_length: int | None = None) -> str:
    value = optional_str(payload, key, max_length=max_length)
    if not value:
        raise ValidationFailed(f"{key} is required", details={"field": key})
    return value


def require_dict(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid JSON payload")
    return payload


# =============================================================================
# SALE REQUEST
# =============================================================================

@dataclass
class SaleLineRequest:
    product_id: int
    quantity: int
    unit_price_cents: int | None = None  # None -> catalog price
    discount_bps: int = 0
    discount_cents: int = 0


@dataclass
class SaleRequest:
    lines: list[SaleLineRequest]
    payment_method: str
    paid_cents: int = 0
    discount_bps: int = 0
    discount_cents: int = 0
    tax_rate_bps: int | None = None  # None -> tenant default
    shipping_cents: int = 0
    customer_id: int | None = None
    customer_name: str | None = None
    payment_reference: str | None = None
    notes: str | None = None
    internal_notes: str | None = None
    source: str = "pos"
    sales_rep_user_id: int | None = None
    currency: str | None = None


def validate_sale_request(req: SaleRequest) -> None:
    """
    Semantic checks on a sale request. Raises ValidationFailed before any
    side effect.
    """
    if not req.lines:
        raise ValidationFailed("Sale must contain at least one line")

    for index, line in enumerate(req.lines):
        where = {"line": index}
        if not isinstance(line.quantity, int) or isinstance(line.quantity, bool) or line.quantity <= 0:
            raise ValidationFailed("Line quantity must be a positive integer", details=where)
        if line.unit_price_cents is not None and not 0 <= line.unit_price_cents <= MAX_PRICE_CENTS:
            raise ValidationFailed("Line unit price out of range", details=where)
        if not 0 <= line.discount_bps <= MAX_BPS:
            raise ValidationFailed("Line discount percentage out of range", details=where)
        if line.discount_cents < 0:
            raise ValidationFailed("Line discount amount must be >= 0", details=where)

    if req.payment_method not in SALE_PAYMENT_METHODS:
        raise ValidationFailed(
            f"Invalid payment method: {req.payment_method}",
            details={"allowed": list(SALE_PAYMENT_METHODS)},
        )
    if req.paid_cents < 0:
        raise ValidationFailed("Paid amount must be >= 0")
    if not 0 <= req.discount_bps <= MAX_BPS:
        raise ValidationFailed("Discount percentage out of range")
    if req.discount_cents < 0:
        raise ValidationFailed("Discount amount must be >= 0")
    if req.tax_rate_bps is not None and not 0 <= req.tax_rate_bps <= MAX_BPS:
        raise ValidationFailed("Tax rate out of range")
    if req.shipping_cents < 0:
        raise ValidationFailed("Shipping cost must be >= 0")
    if req.source not in SALE_SOURCES:
        raise ValidationFailed(f"Invalid sale source: {req.source}", details={"allowed": list(SALE_SOURCES)})


def parse_sale_request(payload: Any) -> SaleRequest:
    payload = require_dict(payload)

    raw_lines = payload.get("lines")
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationFailed("lines must be a non-empty list")

    lines = []
    for index, raw in enumerate(raw_lines):
        if not isinstance(raw, dict):
            raise ValidationFailed("Each line must be an object", details={"line": index})
        if raw.get("product_id") is None or raw.get("quantity") is None:
            raise ValidationFailed("product_id and quantity are required", details={"line": index})
        lines.append(
            SaleLineRequest(
                product_id=coerce_int(raw["product_id"], "product_id", minimum=1),
                quantity=coerce_int(raw["quantity"], "quantity", minimum=1),
                unit_price_cents=optional_int(raw, "unit_price_cents", minimum=0, maximum=MAX_PRICE_CENTS),
                discount_bps=optional_int(raw, "discount_bps", default=0, minimum=0, maximum=MAX_BPS),
                discount_cents=optional_int(raw, "discount_cents", default=0, minimum=0),
            )
        )

    req = SaleRequest(
        lines=lines,
        payment_method=require_str(payload, "payment_method", max_length=32),
        paid_cents=optional_int(payload, "paid_cents", default=0, minimum=0),
        discount_bps=optional_int(payload, "discount_bps", default=0, minimum=0, maximum=MAX_BPS),
        discount_cents=optional_int(payload, "discount_cents", default=0, minimum=0),
        tax_rate_bps=optional_int(payload, "tax_rate_bps", minimum=0, maximum=MAX_BPS),
        shipping_cents=optional_int(payload, "shipping_cents", default=0, minimum=0),
        customer_id=optional_int(payload, "customer_id", minimum=1),
        customer_name=optional_str(payload, "customer_name", max_length=255),
        payment_reference=optional_str(payload, "payment_reference", max_length=128),
        notes=optional_str(payload, "notes"),
        internal_notes=optional_str(payload, "internal_notes"),
        source=optional_str(payload, "source", max_length=16) or "pos",
        sales_rep_user_id=optional_int(payload, "sales_rep_user_id", minimum=1),
        currency=optional_str(payload, "currency", max_length=3),
    )
    validate_sale_request(req)
    return req


# =============================================================================
# PAYMENT / REFUND REQUESTS
# =============================================================================

def validate_payment_method(method: str | None) -> str:
    if method not in ADDITIONAL_PAYMENT_METHODS:
        raise ValidationFailed(
            f"Invalid payment method: {method}",
            details={"allowed": list(ADDITIONAL_PAYMENT_METHODS)},
        )
    return method


@dataclass
class RefundItemRequest:
    sale_line_id: int
    quantity: int


@dataclass
class RefundRequest:
    reason: str
    items: list[RefundItemRequest] | None = None  # None -> whole sale
    amount_cents: int | None = None  # None -> sale total


def parse_refund_request(payload: Any) -> RefundRequest:
    payload = require_dict(payload)
    reason = require_str(payload, "reason", max_length=MAX_REASON_LENGTH)

    items = None
    raw_items = payload.get("items")
    if raw_items is not None:
        if not isinstance(raw_items, list) or not raw_items:
            raise ValidationFailed("items must be a non-empty list when supplied")
        items = []
        for index, raw in enumerate(raw_items):
            if not isinstance(raw, dict) or raw.get("sale_line_id") is None or raw.get("quantity") is None:
                raise ValidationFailed("Each item needs sale_line_id and quantity", details={"item": index})
            items.append(
                RefundItemRequest(
                    sale_line_id=coerce_int(raw["sale_line_id"], "sale_line_id", minimum=1),
                    quantity=coerce_int(raw["quantity"], "quantity", minimum=1),
                )
            )

    return RefundRequest(
        reason=reason,
        items=items,
        amount_cents=optional_int(payload, "amount_cents"),
    )
