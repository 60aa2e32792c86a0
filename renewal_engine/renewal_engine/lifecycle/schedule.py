"""Billing schedule arithmetic.

Month and year steps clamp to the last day of the target month, so a
subscription billed on Jan 31 renews on Feb 28 (or 29), then Mar 28.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta

from renewal_engine.models.subscription import BillingPeriod


def add_months(value: datetime, months: int) -> datetime:
    """Return *value* shifted by *months* calendar months, clamping the day."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def add_billing_interval(value: datetime, interval: int, period: BillingPeriod) -> datetime:
    """Advance *value* by ``interval`` billing periods.

    Raises
    ------
    ValueError
        If *interval* is not a positive integer.
    """
    if interval < 1:
        raise ValueError(f"Billing interval must be positive, got {interval}")

    if period == BillingPeriod.DAY:
        return value + timedelta(days=interval)
    if period == BillingPeriod.WEEK:
        return value + timedelta(weeks=interval)
    if period == BillingPeriod.MONTH:
        return add_months(value, interval)
    return add_months(value, 12 * interval)


def is_payment_due(next_payment_at: datetime | None, now: datetime) -> bool:
    """Whether a payment scheduled at *next_payment_at* is due at *now*."""
    return next_payment_at is not None and next_payment_at <= now
