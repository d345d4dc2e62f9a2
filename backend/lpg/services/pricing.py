# Overview: Pure sale-total arithmetic in integer cents and basis points.

"""
Sale pricing.

All money is integer cents; rates are basis points (100 bps = 1%).
Percentage amounts round half up to the nearest cent.

    discount = subtotal * rate / 100          (PERCENTAGE)
             = min(amount, subtotal)          (FIXED)
    tax      = (subtotal - discount) * tax_rate / 100
    total    = subtotal - discount + tax + delivery_charges
"""

from __future__ import annotations

from dataclasses import dataclass

BPS_DENOMINATOR = 10_000

# One loyalty point per 100 currency units (10,000 cents) of sale total
CENTS_PER_LOYALTY_POINT = 10_000


@dataclass(frozen=True)
class SaleTotals:
    subtotal_cents: int
    discount_cents: int
    tax_cents: int
    delivery_charges_cents: int
    total_cents: int


def apply_bps(amount_cents: int, rate_bps: int) -> int:
    """amount * rate, rounded half up to whole cents."""
    return (amount_cents * rate_bps + BPS_DENOMINATOR // 2) // BPS_DENOMINATOR


def line_total(quantity: int, unit_price_cents: int) -> int:
    return quantity * unit_price_cents


def discount_amount(subtotal_cents: int, discount_type: str, *, rate_bps: int = 0, amount_cents: int = 0) -> int:
    if discount_type == "PERCENTAGE":
        return min(apply_bps(subtotal_cents, rate_bps), subtotal_cents)
    if discount_type == "FIXED":
        # Capped so the taxable base never goes negative
        return min(max(amount_cents, 0), subtotal_cents)
    raise ValueError(f"Unknown discount type: {discount_type}")


def compute_totals(
    lines: list[tuple[int, int]],
    *,
    discount_type: str = "PERCENTAGE",
    discount_rate_bps: int = 0,
    discount_cents: int = 0,
    tax_rate_bps: int = 0,
    delivery_charges_cents: int = 0,
) -> SaleTotals:
    """`lines` is a list of (quantity, unit_price_cents)."""
    subtotal = sum(line_total(q, p) for q, p in lines)
    discount = discount_amount(subtotal, discount_type, rate_bps=discount_rate_bps, amount_cents=discount_cents)
    tax = apply_bps(subtotal - discount, tax_rate_bps)
    total = subtotal - discount + tax + delivery_charges_cents
    return SaleTotals(
        subtotal_cents=subtotal,
        discount_cents=discount,
        tax_cents=tax,
        delivery_charges_cents=delivery_charges_cents,
        total_cents=total,
    )


def payment_status(paid_cents: int, total_cents: int) -> str:
    if paid_cents >= total_cents:
        return "PAID"
    if paid_cents > 0:
        return "PARTIAL"
    return "PENDING"


def loyalty_points_for(total_cents: int) -> int:
    return max(total_cents, 0) // CENTS_PER_LOYALTY_POINT
