# Overview: Sale arithmetic in integer cents; per-unit discounts, tax and totals.

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from ..constants import DiscountType


def round_half_up_cents(value: Decimal) -> int:
    """Round a cent amount to the nearest whole cent, halves away from zero."""
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    quantity: int
    unit_price_cents: int
    discount_type: DiscountType
    discount_value: Decimal
    unit_discount_cents: int

    @property
    def discounted_unit_price_cents(self) -> int:
        return self.unit_price_cents - self.unit_discount_cents

    @property
    def gross_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    @property
    def line_discount_cents(self) -> int:
        return self.unit_discount_cents * self.quantity

    @property
    def line_total_cents(self) -> int:
        return self.discounted_unit_price_cents * self.quantity


@dataclass(frozen=True)
class SaleTotals:
    subtotal_cents: int
    discount_total_cents: int
    tax_rate_bps: int
    tax_cents: int

    @property
    def taxable_cents(self) -> int:
        return self.subtotal_cents - self.discount_total_cents

    @property
    def total_cents(self) -> int:
        return self.taxable_cents + self.tax_cents


def unit_discount_cents(unit_price_cents: int, discount_type: DiscountType, discount_value) -> int:
    """
    Discount taken off ONE unit.

    - percentage: discount_value in 0..100, rounded half-up to the cent
    - fixed_amount: discount_value in cents, at most the unit price
    Bounds are checked by the caller's validation.
    """
    value = Decimal(discount_value or 0)
    if discount_type == DiscountType.PERCENTAGE:
        return round_half_up_cents(Decimal(unit_price_cents) * value / Decimal(100))
    if discount_type == DiscountType.FIXED_AMOUNT:
        return round_half_up_cents(value)
    return 0


def price_line(product_id: int, quantity: int, unit_price_cents: int, discount_type: DiscountType, discount_value) -> PricedLine:
    return PricedLine(
        product_id=product_id,
        quantity=quantity,
        unit_price_cents=unit_price_cents,
        discount_type=discount_type,
        discount_value=Decimal(discount_value or 0),
        unit_discount_cents=unit_discount_cents(unit_price_cents, discount_type, discount_value),
    )


def compute_tax_cents(taxable_cents: int, tax_rate_bps: int) -> int:
    # nearest-cent rounding (half-up)
    return round_half_up_cents(Decimal(taxable_cents) * Decimal(tax_rate_bps) / Decimal(10000))


def compute_totals(lines: list[PricedLine], tax_rate_bps: int) -> SaleTotals:
    """
    subtotal = sum of gross line amounts
    discount_total = sum of line discounts
    tax = round((subtotal - discount_total) * rate)
    total = subtotal - discount_total + tax
    """
    subtotal = sum(line.gross_cents for line in lines)
    discount_total = sum(line.line_discount_cents for line in lines)
    return SaleTotals(
        subtotal_cents=subtotal,
        discount_total_cents=discount_total,
        tax_rate_bps=tax_rate_bps,
        tax_cents=compute_tax_cents(subtotal - discount_total, tax_rate_bps),
    )


def percent_to_bps(percent) -> int:
    """Convert a tax rate in percent ("15", 15.5) to basis points."""
    return round_half_up_cents(Decimal(str(percent)) * Decimal(100))
