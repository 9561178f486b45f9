"""
Pricing Calculations

Pure money math shared by discounts, bundles and proration.
All amounts are integers in minor currency units; fractional cents are
resolved with round-half-up (floor(x + 0.5)) everywhere.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_FLOOR
from typing import Iterable, Optional, Union

from storefront_billing.domain.promotions import Coupon, DiscountType


SECONDS_PER_DAY = 24 * 60 * 60

Number = Union[int, float, Decimal]


def round_half_up(value: Number) -> int:
    """Round to the nearest integer, halves going towards +infinity."""
    return int((Decimal(str(value)) + Decimal("0.5")).to_integral_value(rounding=ROUND_FLOOR))


# =============================================================================
# Discounts
# =============================================================================

def calculate_discount(coupon: Coupon, order_amount: int) -> int:
    """
    Discount a coupon takes off an order.

    Percentage coupons take ``round(amount * value / 100)``; fixed-amount
    coupons never take more than the order total.
    """
    if coupon.discount_type == DiscountType.PERCENTAGE:
        return round_half_up(Decimal(order_amount) * Decimal(coupon.discount_value) / 100)
    return min(coupon.discount_value, order_amount)


# =============================================================================
# Bundles
# =============================================================================

@dataclass(frozen=True)
class BundleSavings:
    total_individual: int
    savings_amount: int
    savings_percentage: int


def calculate_bundle_savings(plan_prices: Iterable[int], bundle_price: int) -> BundleSavings:
    """Savings of a bundle against buying its plans one by one. Never negative."""
    total_individual = sum(plan_prices)
    savings_amount = max(0, total_individual - bundle_price)

    if total_individual == 0:
        savings_percentage = 0
    else:
        savings_percentage = round_half_up(
            Decimal(savings_amount) / Decimal(total_individual) * 100
        )

    return BundleSavings(
        total_individual=total_individual,
        savings_amount=savings_amount,
        savings_percentage=savings_percentage,
    )


# =============================================================================
# Proration
# =============================================================================

@dataclass
class ProrationLine:
    """One line of a gateway invoice preview."""
    amount: int
    proration: bool
    description: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None


@dataclass
class ProrationPreview:
    """
    Result of a plan-change preview.

    ``is_estimate`` is True when the figures come from the local day-based
    approximation instead of the gateway; such figures must not be shown as
    the amount that will be billed.
    """
    prorated_amount: int
    credit_amount: int
    immediate_charge: int
    next_billing_amount: int
    currency: str
    is_estimate: bool
    next_billing_date: Optional[datetime] = None
    message: Optional[str] = None
    line_items: list[ProrationLine] = field(default_factory=list)


def summarize_proration_lines(
    lines: Iterable[ProrationLine],
    next_billing_amount: int,
    currency: str,
    next_billing_date: Optional[datetime] = None,
) -> ProrationPreview:
    """Fold gateway preview lines into charge/credit totals."""
    lines = list(lines)
    prorated_amount = 0
    credit_amount = 0

    for line in lines:
        if not line.proration:
            continue
        if line.amount > 0:
            prorated_amount += line.amount
        else:
            credit_amount += abs(line.amount)

    return ProrationPreview(
        prorated_amount=prorated_amount,
        credit_amount=credit_amount,
        immediate_charge=max(0, prorated_amount - credit_amount),
        next_billing_amount=next_billing_amount,
        currency=currency.upper(),
        is_estimate=False,
        next_billing_date=next_billing_date,
        line_items=lines,
    )


def _days_between(start: datetime, end: datetime) -> int:
    """Whole days from start to end, partial days counting as a full day."""
    return math.ceil((end - start).total_seconds() / SECONDS_PER_DAY)


def estimate_proration(
    current_price: int,
    new_price: int,
    period_start: datetime,
    period_end: datetime,
    now: datetime,
) -> int:
    """
    Linear day-based proration for the rest of the current period.

    Positive result is a charge, negative a credit; 0 for an empty period.
    """
    total_days = _days_between(period_start, period_end)
    if total_days <= 0:
        return 0

    days_remaining = max(0, _days_between(now, period_end))
    price_diff = new_price - current_price
    return round_half_up(Decimal(price_diff * days_remaining) / Decimal(total_days))


def build_estimated_preview(
    current_price: int,
    new_price: int,
    currency: str,
    period_start: Optional[datetime],
    period_end: Optional[datetime],
    now: datetime,
    message: Optional[str] = None,
) -> ProrationPreview:
    """Fallback preview used when the gateway cannot price the change."""
    start = period_start or now
    end = period_end or now
    prorated = estimate_proration(current_price, new_price, start, end, now)

    return ProrationPreview(
        prorated_amount=max(0, prorated),
        credit_amount=max(0, -prorated),
        immediate_charge=max(0, prorated),
        next_billing_amount=new_price,
        currency=currency.upper(),
        is_estimate=True,
        next_billing_date=period_end,
        message=message or "Exact proration not available; showing an estimate",
    )
