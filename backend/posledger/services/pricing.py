# Overview: Pure pricing arithmetic for sale lines, sale totals and payment status.

"""
All amounts are integer cents, all rates integer basis points (1500 = 15%).
Percentages round half-up to the nearest cent.

LINE:
    gross      = unit_price * quantity
    discount   = gross * discount_bps + discount_cents   (percentage first,
                 computed on the gross, then the fixed amount)
    line_total = gross - discount                        (before tax)
    tax        = line_total * tax_rate_bps

SALE:
    subtotal       = sum(line_total)
    discount_total = subtotal * discount_bps + discount_cents
    tax            = (subtotal - discount_total) * tax_rate_bps
    total          = subtotal - discount_total + tax + shipping
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ValidationFailed


BPS_DENOMINATOR = 10_000

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_REFUNDED = "refunded"


def apply_bps(amount_cents: int, bps: int) -> int:
    """amount * bps / 10000, nearest cent (half-up)."""
    if amount_cents < 0:
        return -apply_bps(-amount_cents, bps)
    return (amount_cents * bps + BPS_DENOMINATOR // 2) // BPS_DENOMINATOR


@dataclass(frozen=True)
class LinePricing:
    quantity: int
    unit_price_cents: int
    gross_cents: int
    discount_bps: int
    discount_cents: int
    line_discount_total_cents: int
    line_total_cents: int
    tax_rate_bps: int
    tax_cents: int


@dataclass(frozen=True)
class SaleTotals:
    total_items: int
    subtotal_cents: int
    discount_bps: int
    discount_amount_cents: int
    discount_total_cents: int
    tax_rate_bps: int
    tax_cents: int
    shipping_cents: int
    total_cents: int


def price_line(
    *,
    unit_price_cents: int,
    quantity: int,
    discount_bps: int = 0,
    discount_cents: int = 0,
    tax_rate_bps: int = 0,
) -> LinePricing:
    gross = unit_price_cents * quantity
    discount_total = apply_bps(gross, discount_bps) + discount_cents
    line_total = gross - discount_total
    if line_total < 0:
        raise ValidationFailed(
            "Line discount exceeds line amount",
            details={"gross_cents": gross, "discount_cents": discount_total},
        )
    return LinePricing(
        quantity=quantity,
        unit_price_cents=unit_price_cents,
        gross_cents=gross,
        discount_bps=discount_bps,
        discount_cents=discount_cents,
        line_discount_total_cents=discount_total,
        line_total_cents=line_total,
        tax_rate_bps=tax_rate_bps,
        tax_cents=apply_bps(line_total, tax_rate_bps),
    )


def price_sale(
    lines: list[LinePricing],
    *,
    discount_bps: int = 0,
    discount_cents: int = 0,
    tax_rate_bps: int = 0,
    shipping_cents: int = 0,
) -> SaleTotals:
    subtotal = sum(line.line_total_cents for line in lines)
    discount_total = apply_bps(subtotal, discount_bps) + discount_cents
    taxable = subtotal - discount_total
    if taxable < 0:
        raise ValidationFailed(
            "Sale discount exceeds subtotal",
            details={"subtotal_cents": subtotal, "discount_total_cents": discount_total},
        )
    tax = apply_bps(taxable, tax_rate_bps)
    return SaleTotals(
        total_items=sum(line.quantity for line in lines),
        subtotal_cents=subtotal,
        discount_bps=discount_bps,
        discount_amount_cents=discount_cents,
        discount_total_cents=discount_total,
        tax_rate_bps=tax_rate_bps,
        tax_cents=tax,
        shipping_cents=shipping_cents,
        total_cents=taxable + tax + shipping_cents,
    )


def derive_payment_status(paid_cents: int, total_cents: int) -> str:
    if paid_cents >= total_cents:
        return PAYMENT_STATUS_PAID
    if paid_cents > 0:
        return PAYMENT_STATUS_PARTIAL
    return PAYMENT_STATUS_PENDING


def settle(paid_cents: int, total_cents: int) -> tuple[int, int]:
    """Return (remaining_cents, change_due_cents) for a paid amount."""
    return max(0, total_cents - paid_cents), max(0, paid_cents - total_cents)
