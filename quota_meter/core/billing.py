"""
Billing arithmetic.

Billing-month bucketing and overage pricing with conservative rounding.
"""

from datetime import datetime, timezone
from decimal import Decimal, ROUND_CEILING
from typing import Optional


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def billing_month(moment: Optional[datetime] = None) -> str:
    """Return the ``YYYY-MM`` bucket for a moment, in UTC.

    Naive datetimes are taken to already be UTC.
    """
    if moment is None:
        moment = utc_now()
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m")


def calculate_overage_cost(overage_characters: int, rate_per_1k: Decimal) -> int:
    """Price overage characters in whole cents, always rounding UP.

    Args:
        overage_characters: Characters beyond the monthly quota
        rate_per_1k: Overage rate in cents per 1000 characters

    Returns:
        ceil(overage_characters * rate / 1000) in cents

    Raises:
        ValueError: If either argument is negative
    """
    if overage_characters < 0:
        raise ValueError("overage_characters cannot be negative")
    if rate_per_1k < 0:
        raise ValueError("rate_per_1k cannot be negative")

    cost = (Decimal(overage_characters) * Decimal(rate_per_1k)) / Decimal("1000")
    return int(cost.to_integral_value(rounding=ROUND_CEILING))
