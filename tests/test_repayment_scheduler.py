"""
PayAdvance - Repayment Scheduler Tests

Unit tests for installment schedules.
"""

import pytest
from datetime import date
from decimal import Decimal

from payadvance.services.repayment_scheduler import (
    RepaymentScheduler,
    ScheduledInstallment,
    calculate_remaining_balance,
)


class TestBuildSchedule:
    """Test cases for RepaymentScheduler.build_schedule."""

    def test_rounding_remainder_goes_to_last_installment(self):
        """100000 over 3 months: 33334, 33334, 33332."""
        scheduler = RepaymentScheduler(rounding_unit=Decimal("1"))

        schedule = scheduler.build_schedule(Decimal("100000"), 3, date(2026, 3, 10))

        assert schedule.monthly_deduction == Decimal("33334")
        assert [i.amount for i in schedule.installments] == [
            Decimal("33334"), Decimal("33334"), Decimal("33332"),
        ]
        assert sum(i.amount for i in schedule.installments) == Decimal("100000")

    def test_first_deduction_is_first_of_next_month(self):
        scheduler = RepaymentScheduler()

        for anchor in (date(2026, 3, 1), date(2026, 3, 15), date(2026, 3, 31)):
            schedule = scheduler.build_schedule(Decimal("30000"), 2, anchor)
            assert schedule.first_deduction_month == date(2026, 4, 1)

    def test_due_months_cross_year_boundary(self):
        scheduler = RepaymentScheduler()

        schedule = scheduler.build_schedule(Decimal("30000"), 3, date(2026, 11, 20))

        assert [i.due_month for i in schedule.installments] == [
            date(2026, 12, 1), date(2027, 1, 1), date(2027, 2, 1),
        ]
        assert schedule.last_deduction_month == date(2027, 2, 1)

    def test_installments_numbered_from_one(self):
        scheduler = RepaymentScheduler()

        schedule = scheduler.build_schedule(Decimal("50000"), 4, date(2026, 1, 5))

        assert [i.installment_number for i in schedule.installments] == [1, 2, 3, 4]

    @pytest.mark.parametrize("amount,months", [
        (Decimal("10000"), 1),
        (Decimal("25000"), 3),
        (Decimal("99999"), 7),
        (Decimal("123456.78"), 12),
        (Decimal("10001"), 2),
    ])
    def test_sum_equals_amount_and_only_last_differs(self, amount, months):
        scheduler = RepaymentScheduler()

        schedule = scheduler.build_schedule(amount, months, date(2026, 6, 1))

        assert len(schedule.installments) == months
        assert sum(i.amount for i in schedule.installments) == amount
        for installment in schedule.installments[:-1]:
            assert installment.amount == schedule.monthly_deduction
        assert schedule.final_installment_amount <= schedule.monthly_deduction

    def test_cent_rounding_unit(self):
        scheduler = RepaymentScheduler(rounding_unit=Decimal("0.01"))

        schedule = scheduler.build_schedule(Decimal("100.00"), 3, date(2026, 1, 1))

        assert schedule.monthly_deduction == Decimal("33.34")
        assert schedule.installments[-1].amount == Decimal("33.32")

    def test_deterministic(self):
        scheduler = RepaymentScheduler()

        first = scheduler.build_schedule(Decimal("77777"), 3, date(2026, 2, 14))
        second = scheduler.build_schedule(Decimal("77777"), 3, date(2026, 2, 14))

        assert first == second

    def test_rejects_non_positive_amount(self):
        scheduler = RepaymentScheduler()

        with pytest.raises(ValueError):
            scheduler.build_schedule(Decimal("0"), 3, date(2026, 1, 1))

    def test_rejects_amount_too_small_for_period(self):
        """Rounding up would leave nothing for the last installment."""
        scheduler = RepaymentScheduler(rounding_unit=Decimal("1"))

        with pytest.raises(ValueError):
            scheduler.build_schedule(Decimal("2"), 3, date(2026, 1, 1))

    def test_rejects_zero_months(self):
        scheduler = RepaymentScheduler()

        with pytest.raises(ValueError):
            scheduler.calculate_monthly_deduction(Decimal("1000"), 0)


class TestValidateSchedule:
    """Test cases for RepaymentScheduler.validate_schedule."""

    def test_built_schedule_is_valid(self):
        scheduler = RepaymentScheduler()
        schedule = scheduler.build_schedule(Decimal("100000"), 3, date(2026, 1, 1))

        result = scheduler.validate_schedule(schedule.installments, Decimal("100000"), 3)

        assert result.is_valid
        assert result.errors == []

    def test_detects_wrong_sum(self):
        scheduler = RepaymentScheduler()
        installments = [
            ScheduledInstallment(1, date(2026, 2, 1), Decimal("500")),
            ScheduledInstallment(2, date(2026, 3, 1), Decimal("400")),
        ]

        result = scheduler.validate_schedule(installments, Decimal("1000"), 2)

        assert not result.is_valid
        assert any("sum" in e for e in result.errors)

    def test_detects_wrong_count_and_gap(self):
        scheduler = RepaymentScheduler()
        installments = [
            ScheduledInstallment(1, date(2026, 2, 1), Decimal("500")),
            ScheduledInstallment(3, date(2026, 3, 1), Decimal("500")),
        ]

        result = scheduler.validate_schedule(installments, Decimal("1000"), 3)

        assert not result.is_valid
        assert len(result.errors) >= 2

    def test_detects_skipped_month(self):
        scheduler = RepaymentScheduler()
        installments = [
            ScheduledInstallment(1, date(2026, 2, 1), Decimal("500")),
            ScheduledInstallment(2, date(2026, 4, 1), Decimal("500")),
        ]

        result = scheduler.validate_schedule(installments, Decimal("1000"), 2)

        assert not result.is_valid
        assert len(result.errors) == 1


class TestRecalculate:
    """Test cases for mid-lifecycle rescheduling."""

    def test_first_installment_on_next_due_month(self):
        scheduler = RepaymentScheduler()

        schedule = scheduler.recalculate(Decimal("20000"), 3, date(2026, 5, 1))

        assert schedule.first_deduction_month == date(2026, 5, 1)
        assert sum(i.amount for i in schedule.installments) == Decimal("20000")
        assert [i.amount for i in schedule.installments] == [
            Decimal("6667"), Decimal("6667"), Decimal("6666"),
        ]

    def test_remaining_balance_never_negative(self):
        assert calculate_remaining_balance(Decimal("1000"), [Decimal("600"), Decimal("500")]) == Decimal("0")
        assert calculate_remaining_balance(Decimal("1000"), [Decimal("600")]) == Decimal("400")
        assert calculate_remaining_balance(Decimal("1000"), []) == Decimal("1000")
