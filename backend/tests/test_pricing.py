# Overview: Pytest coverage for line/sale pricing arithmetic and payment status derivation.

import pytest

from posledger.errors import ValidationFailed
from posledger.services.pricing import (
    apply_bps,
    derive_payment_status,
    price_line,
    price_sale,
    settle,
)


class TestApplyBps:

    def test_exact(self):
        assert apply_bps(5000, 1500) == 750

    def test_rounds_half_up(self):
        # 333 * 15% = 49.95 -> 50
        assert apply_bps(333, 1500) == 50
        # 10 * 5% = 0.5 -> 1
        assert apply_bps(10, 500) == 1
        # 10 * 4% = 0.4 -> 0
        assert apply_bps(10, 400) == 0

    def test_negative_amount_is_symmetric(self):
        assert apply_bps(-10, 500) == -1

    def test_zero_rate(self):
        assert apply_bps(123456, 0) == 0


class TestPriceLine:

    def test_plain_line(self):
        line = price_line(unit_price_cents=1000, quantity=5, tax_rate_bps=1500)
        assert line.gross_cents == 5000
        assert line.line_total_cents == 5000
        assert line.tax_cents == 750

    def test_percentage_discount_applies_before_fixed_amount(self):
        """10% of the gross (1000), then 500 off: 10000 - 1000 - 500."""
        line = price_line(unit_price_cents=2000, quantity=5, discount_bps=1000, discount_cents=500)
        assert line.line_discount_total_cents == 1500
        assert line.line_total_cents == 8500

    def test_tax_is_computed_on_discounted_amount(self):
        line = price_line(unit_price_cents=1000, quantity=2, discount_bps=5000, tax_rate_bps=1000)
        assert line.line_total_cents == 1000
        assert line.tax_cents == 100

    def test_discount_larger_than_line_rejected(self):
        with pytest.raises(ValidationFailed):
            price_line(unit_price_cents=100, quantity=1, discount_cents=101)


class TestPriceSale:

    def test_scenario_one_line_fifteen_percent_tax(self):
        lines = [price_line(unit_price_cents=1000, quantity=5, tax_rate_bps=1500)]
        totals = price_sale(lines, tax_rate_bps=1500)

        assert totals.subtotal_cents == 5000
        assert totals.discount_total_cents == 0
        assert totals.tax_cents == 750
        assert totals.total_cents == 5750
        assert totals.total_items == 5

    def test_sale_discount_and_shipping(self):
        lines = [
            price_line(unit_price_cents=1000, quantity=2),
            price_line(unit_price_cents=500, quantity=4),
        ]
        totals = price_sale(lines, discount_bps=1000, discount_cents=100, tax_rate_bps=1500, shipping_cents=300)

        # subtotal 4000, discount 400 + 100, taxable 3500, tax 525
        assert totals.subtotal_cents == 4000
        assert totals.discount_total_cents == 500
        assert totals.tax_cents == 525
        assert totals.total_cents == 3500 + 525 + 300
        assert totals.total_cents == (
            totals.subtotal_cents - totals.discount_total_cents + totals.tax_cents + totals.shipping_cents
        )

    def test_sale_discount_larger_than_subtotal_rejected(self):
        lines = [price_line(unit_price_cents=100, quantity=1)]
        with pytest.raises(ValidationFailed):
            price_sale(lines, discount_cents=500)


class TestPaymentStatus:

    @pytest.mark.parametrize("paid,total,expected", [
        (5750, 5750, "paid"),
        (6000, 5750, "paid"),
        (2000, 5750, "partial"),
        (0, 5750, "pending"),
        (0, 0, "paid"),
    ])
    def test_derive_payment_status(self, paid, total, expected):
        assert derive_payment_status(paid, total) == expected

    def test_settle_partial(self):
        assert settle(2000, 5750) == (3750, 0)

    def test_settle_overpayment_becomes_change(self):
        assert settle(6000, 5750) == (0, 250)
