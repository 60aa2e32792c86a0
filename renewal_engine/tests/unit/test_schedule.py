"""Tests for billing schedule arithmetic."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from renewal_engine.lifecycle.schedule import add_billing_interval, add_months, is_payment_due
from renewal_engine.models import BillingPeriod


class TestAddMonths:
    def test_simple_step(self) -> None:
        assert add_months(datetime(2024, 3, 10, tzinfo=UTC), 1) == datetime(2024, 4, 10, tzinfo=UTC)

    def test_clamps_to_end_of_short_month(self) -> None:
        assert add_months(datetime(2024, 1, 31, tzinfo=UTC), 1) == datetime(2024, 2, 29, tzinfo=UTC)
        assert add_months(datetime(2023, 1, 31, tzinfo=UTC), 1) == datetime(2023, 2, 28, tzinfo=UTC)

    def test_rolls_over_year(self) -> None:
        assert add_months(datetime(2024, 11, 15, tzinfo=UTC), 3) == datetime(2025, 2, 15, tzinfo=UTC)

    def test_keeps_time_of_day(self) -> None:
        result = add_months(datetime(2024, 6, 1, 9, 30, 15, tzinfo=UTC), 1)
        assert (result.hour, result.minute, result.second) == (9, 30, 15)


class TestAddBillingInterval:
    @pytest.mark.parametrize(
        ("interval", "period", "expected"),
        [
            (1, BillingPeriod.DAY, datetime(2024, 6, 2, tzinfo=UTC)),
            (2, BillingPeriod.WEEK, datetime(2024, 6, 15, tzinfo=UTC)),
            (1, BillingPeriod.MONTH, datetime(2024, 7, 1, tzinfo=UTC)),
            (3, BillingPeriod.MONTH, datetime(2024, 9, 1, tzinfo=UTC)),
            (1, BillingPeriod.YEAR, datetime(2025, 6, 1, tzinfo=UTC)),
        ],
    )
    def test_periods(self, interval: int, period: BillingPeriod, expected: datetime) -> None:
        assert add_billing_interval(datetime(2024, 6, 1, tzinfo=UTC), interval, period) == expected

    def test_leap_day_yearly_clamps(self) -> None:
        result = add_billing_interval(datetime(2024, 2, 29, tzinfo=UTC), 1, BillingPeriod.YEAR)
        assert result == datetime(2025, 2, 28, tzinfo=UTC)

    def test_zero_interval_rejected(self) -> None:
        with pytest.raises(ValueError, match="positive"):
            add_billing_interval(datetime(2024, 6, 1, tzinfo=UTC), 0, BillingPeriod.MONTH)


def test_is_payment_due() -> None:
    now = datetime(2024, 6, 15, tzinfo=UTC)
    assert is_payment_due(datetime(2024, 6, 15, tzinfo=UTC), now)
    assert is_payment_due(datetime(2024, 6, 1, tzinfo=UTC), now)
    assert not is_payment_due(datetime(2024, 6, 16, tzinfo=UTC), now)
    assert not is_payment_due(None, now)
