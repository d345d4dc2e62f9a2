"""
Sale pricing arithmetic: integer cents, basis points, half-up rounding.
"""

import pytest

from lpg.services.pricing import (
    apply_bps,
    compute_totals,
    discount_amount,
    loyalty_points_for,
    payment_status,
)


class TestApplyBps:

    def test_whole_percentage(self):
        assert apply_bps(100000, 500) == 5000

    def test_rounds_half_up(self):
        # 333 * 15% = 49.95 -> 50
        assert apply_bps(333, 1500) == 50
        # 10 * 5% = 0.5 -> 1
        assert apply_bps(10, 500) == 1

    def test_rounds_down_below_half(self):
        # 7 * 5% = 0.35 -> 0
        assert apply_bps(7, 500) == 0


class TestDiscount:

    def test_percentage(self):
        assert discount_amount(200000, "PERCENTAGE", rate_bps=1000) == 20000

    def test_fixed_capped_at_subtotal(self):
        assert discount_amount(5000, "FIXED", amount_cents=9000) == 5000

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            discount_amount(100, "BOGO")


class TestComputeTotals:

    def test_reference_sale(self):
        """Two 11.8kg refills at 900.00 with 5% off and 18% tax plus 50.00 delivery."""
        totals = compute_totals(
            [(2, 90000)],
            discount_type="PERCENTAGE",
            discount_rate_bps=500,
            tax_rate_bps=1800,
            delivery_charges_cents=5000,
        )
        assert totals.subtotal_cents == 180000
        assert totals.discount_cents == 9000
        assert totals.tax_cents == 30780
        assert totals.total_cents == 180000 - 9000 + 30780 + 5000

    def test_tax_applies_after_discount(self):
        totals = compute_totals([(1, 10000)], discount_type="FIXED", discount_cents=2000, tax_rate_bps=1000)
        assert totals.tax_cents == 800
        assert totals.total_cents == 8800

    def test_multiple_lines(self):
        totals = compute_totals([(1, 90000), (2, 35000)])
        assert totals.subtotal_cents == 160000
        assert totals.total_cents == 160000

    def test_full_fixed_discount_leaves_only_delivery(self):
        totals = compute_totals([(1, 500)], discount_type="FIXED", discount_cents=500,
                                tax_rate_bps=1800, delivery_charges_cents=300)
        assert totals.tax_cents == 0
        assert totals.total_cents == 300


class TestPaymentStatus:

    @pytest.mark.parametrize(
        "paid,total,expected",
        [
            (1000, 1000, "PAID"),
            (1500, 1000, "PAID"),
            (1, 1000, "PARTIAL"),
            (0, 1000, "PENDING"),
            (0, 0, "PAID"),
        ],
    )
    def test_status(self, paid, total, expected):
        assert payment_status(paid, total) == expected


class TestLoyalty:

    def test_one_point_per_hundred_units(self):
        assert loyalty_points_for(206780) == 20

    def test_below_threshold(self):
        assert loyalty_points_for(9999) == 0
