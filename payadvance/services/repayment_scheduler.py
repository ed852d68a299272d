"""
PayAdvance - Repayment Scheduler

Turns an approved amount into an installment schedule deducted from future
payroll runs.

Rules:
- monthly deduction = amount / months rounded UP to the rounding unit
- installments 1..N-1 carry the monthly deduction, installment N carries
  the remainder, so the installments always sum to the amount exactly
- the first deduction falls on the 1st of the month after the anchor
  (disbursement) date, later ones one calendar month apart
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_CEILING
from typing import List, Optional, Sequence, Tuple

from dateutil.relativedelta import relativedelta

from payadvance.config import settings


@dataclass(frozen=True)
class ScheduledInstallment:
    """One planned deduction."""
    installment_number: int
    due_month: date
    amount: Decimal


@dataclass(frozen=True)
class RepaymentSchedule:
    """Complete deduction plan for an amount."""
    total_amount: Decimal
    repayment_months: int
    monthly_deduction: Decimal
    first_deduction_month: date
    installments: Tuple[ScheduledInstallment, ...]

    @property
    def last_deduction_month(self) -> date:
        return self.installments[-1].due_month

    @property
    def final_installment_amount(self) -> Decimal:
        return self.installments[-1].amount


@dataclass
class ScheduleValidation:
    """Result of checking a schedule against its invariants."""
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.is_valid = False
        self.errors.append(message)


def first_of_month(value: date) -> date:
    return value.replace(day=1)


class RepaymentScheduler:
    """
    Builds, validates and recalculates repayment schedules.

    Pure computation: no database access, same inputs always give the
    same schedule.
    """

    def __init__(self, rounding_unit: Optional[Decimal] = None):
        unit = Decimal(rounding_unit if rounding_unit is not None else settings.deduction_rounding_unit)
        if unit <= 0:
            raise ValueError(f"Rounding unit must be positive, got {unit}")
        self.rounding_unit = unit

    def calculate_monthly_deduction(self, amount: Decimal, repayment_months: int) -> Decimal:
        """ceil(amount / months) to the rounding unit."""
        if repayment_months < 1:
            raise ValueError(f"Repayment months must be at least 1, got {repayment_months}")

        units = (Decimal(amount) / repayment_months / self.rounding_unit).to_integral_value(
            rounding=ROUND_CEILING
        )
        return units * self.rounding_unit

    def calculate_first_deduction_month(self, anchor_date: Optional[date] = None) -> date:
        """1st of the month following the anchor date's month."""
        anchor_date = anchor_date or date.today()
        return first_of_month(anchor_date) + relativedelta(months=1)

    def build_schedule(
        self,
        amount: Decimal,
        repayment_months: int,
        anchor_date: Optional[date] = None,
    ) -> RepaymentSchedule:
        """
        Build the installment schedule for an amount.

        Raises ValueError when the amount is not positive or when rounding
        would leave nothing for the final installment (amount too small for
        the number of months at this rounding unit).
        """
        amount = Decimal(amount)
        if amount <= 0:
            raise ValueError(f"Amount must be positive, got {amount}")

        monthly_deduction = self.calculate_monthly_deduction(amount, repayment_months)
        first_deduction_month = self.calculate_first_deduction_month(anchor_date)

        final_amount = amount - monthly_deduction * (repayment_months - 1)
        if final_amount <= 0:
            raise ValueError(
                f"Cannot spread {amount} over {repayment_months} months "
                f"with a rounding unit of {self.rounding_unit}"
            )

        installments = []
        for number in range(1, repayment_months + 1):
            installments.append(ScheduledInstallment(
                installment_number=number,
                due_month=first_deduction_month + relativedelta(months=number - 1),
                amount=final_amount if number == repayment_months else monthly_deduction,
            ))

        return RepaymentSchedule(
            total_amount=amount,
            repayment_months=repayment_months,
            monthly_deduction=monthly_deduction,
            first_deduction_month=first_deduction_month,
            installments=tuple(installments),
        )

    def validate_schedule(
        self,
        installments: Sequence[ScheduledInstallment],
        total_amount: Decimal,
        repayment_months: int,
    ) -> ScheduleValidation:
        """
        Check a schedule (freshly built or reloaded from storage).

        Verifies the installment sum, the installment count, contiguous
        numbering from 1 and one-month spacing between due months.
        """
        result = ScheduleValidation()

        total = sum((Decimal(i.amount) for i in installments), Decimal("0"))
        if total != Decimal(total_amount):
            result.add_error(
                f"Installments sum to {total}, expected {total_amount}"
            )

        if len(installments) != repayment_months:
            result.add_error(
                f"Schedule has {len(installments)} installments, expected {repayment_months}"
            )

        numbers = sorted(i.installment_number for i in installments)
        expected_numbers = list(range(1, len(installments) + 1))
        if numbers != expected_numbers:
            missing = sorted(set(range(1, repayment_months + 1)) - set(numbers))
            result.add_error(
                f"Installment numbers are not contiguous (missing: {missing})"
            )

        ordered = sorted(installments, key=lambda i: i.installment_number)
        for previous, current in zip(ordered, ordered[1:]):
            if previous.due_month + relativedelta(months=1) != current.due_month:
                result.add_error(
                    f"Installment {current.installment_number} is due {current.due_month}, "
                    f"expected one month after {previous.due_month}"
                )

        return result

    def recalculate(
        self,
        remaining_balance: Decimal,
        remaining_months: int,
        next_due_month: date,
    ) -> RepaymentSchedule:
        """
        Reschedule an outstanding balance, first installment due on
        next_due_month. Already settled installments are not touched.
        """
        anchor = first_of_month(next_due_month) - relativedelta(months=1)
        return self.build_schedule(remaining_balance, remaining_months, anchor)


def calculate_remaining_balance(approved_amount: Decimal, repaid_amounts: Sequence[Decimal]) -> Decimal:
    """max(0, approved - sum(repaid))"""
    total_repaid = sum((Decimal(a) for a in repaid_amounts), Decimal("0"))
    return max(Decimal("0"), Decimal(approved_amount) - total_repaid)
