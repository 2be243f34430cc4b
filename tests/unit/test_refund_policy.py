"""Cancellation refund policy, measured in whole hours before the appointment."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from clinipay.core.enums import RefundType
from clinipay.services.refund_service import calculate_refund, whole_hours_between

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class TestWholeHoursBetween:
    def test_partial_hours_are_floored(self):
        assert whole_hours_between(NOW + timedelta(hours=23, minutes=59), NOW) == 23

    def test_past_start_is_negative(self):
        assert whole_hours_between(NOW - timedelta(minutes=30), NOW) == -1

    def test_naive_values_are_treated_as_utc(self):
        naive_start = (NOW + timedelta(hours=5)).replace(tzinfo=None)
        assert whole_hours_between(naive_start, NOW) == 5


class TestCalculateRefund:
    def test_full_refund_at_exactly_24_hours(self):
        calc = calculate_refund(Decimal("100.00"), Decimal("5.00"), NOW + timedelta(hours=24), NOW)

        assert calc.refund_type == RefundType.FULL
        assert calc.refund_amount == Decimal("100.00")
        assert calc.commission_refund == Decimal("5.00")
        assert calc.hours_before_appointment == 24

    def test_partial_refund_just_under_24_hours(self):
        calc = calculate_refund(
            Decimal("100.00"), Decimal("5.00"), NOW + timedelta(hours=23, minutes=59), NOW
        )

        assert calc.refund_type == RefundType.PARTIAL
        assert calc.refund_amount == Decimal("50.00")
        assert calc.commission_refund == Decimal("2.50")

    def test_partial_refund_halves_are_truncated(self):
        calc = calculate_refund(Decimal("99.99"), Decimal("4.99"), NOW + timedelta(hours=3), NOW)

        assert calc.refund_amount == Decimal("49.99")
        assert calc.commission_refund == Decimal("2.49")

    def test_partial_refund_at_exactly_one_hour(self):
        calc = calculate_refund("60.00", "3.00", NOW + timedelta(hours=1), NOW)
        assert calc.refund_type == RefundType.PARTIAL

    @pytest.mark.parametrize(
        "start_offset", [timedelta(minutes=59), timedelta(0), timedelta(hours=-2)]
    )
    def test_no_refund_inside_the_last_hour_or_after_start(self, start_offset):
        calc = calculate_refund("60.00", "3.00", NOW + start_offset, NOW)

        assert calc.refund_type == RefundType.NO_REFUND
        assert calc.refund_amount == Decimal("0.00")
        assert calc.commission_refund == Decimal("0.00")
