"""
PayAdvance - Payroll Run Integration

Connects salary advances to payroll runs:
- approved advances are paid out with the employee's salary (adds to net pay)
- installments due in the payroll month are deducted (reduces net pay)

Net pay after advances = calculated net salary + disbursements - repayments.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payadvance.models.salary_advance import (
    OUTSTANDING_STATUSES,
    AdvanceStatus,
    RepaymentStatus,
    SalaryAdvance,
    SalaryAdvanceRepayment,
)
from payadvance.services.repayment_scheduler import first_of_month
from payadvance.services.salary_advance_service import SalaryAdvanceService

logger = logging.getLogger(__name__)


@dataclass
class AdvanceDisbursement:
    advance_id: uuid.UUID
    amount: Decimal


@dataclass
class AdvanceDeduction:
    advance_id: uuid.UUID
    installment_number: int
    amount: Decimal


@dataclass
class EmployeeAdvanceEffect:
    """What advances add to and take from one employee's pay for a period."""
    employee_id: uuid.UUID
    disbursements: List[AdvanceDisbursement] = field(default_factory=list)
    repayments: List[AdvanceDeduction] = field(default_factory=list)

    @property
    def disbursement_amount(self) -> Decimal:
        return sum((d.amount for d in self.disbursements), Decimal("0.00"))

    @property
    def repayment_amount(self) -> Decimal:
        return sum((r.amount for r in self.repayments), Decimal("0.00"))

    @property
    def net_effect(self) -> Decimal:
        return self.disbursement_amount - self.repayment_amount


class PayrollAdvanceProcessor:
    """Applies salary advances to a payroll run."""

    def __init__(self, db: AsyncSession, advance_service: SalaryAdvanceService):
        self.db = db
        self.advance_service = advance_service

    async def get_period_advances(
        self,
        tenant_id: uuid.UUID,
        payroll_month: date,
        employee_ids: Optional[Sequence[uuid.UUID]] = None,
    ) -> Dict[uuid.UUID, EmployeeAdvanceEffect]:
        """
        Disbursements and due deductions for a payroll month, per employee.

        Read-only preview: nothing is disbursed or settled.
        """
        due_month = first_of_month(payroll_month)
        effects: Dict[uuid.UUID, EmployeeAdvanceEffect] = {
            employee_id: EmployeeAdvanceEffect(employee_id=employee_id)
            for employee_id in (employee_ids or [])
        }

        def effect_for(employee_id: uuid.UUID) -> EmployeeAdvanceEffect:
            if employee_id not in effects:
                effects[employee_id] = EmployeeAdvanceEffect(employee_id=employee_id)
            return effects[employee_id]

        disbursable_query = select(SalaryAdvance).where(
            SalaryAdvance.tenant_id == tenant_id,
            SalaryAdvance.status == AdvanceStatus.APPROVED,
        )
        if employee_ids:
            disbursable_query = disbursable_query.where(SalaryAdvance.employee_id.in_(employee_ids))
        result = await self.db.execute(disbursable_query.order_by(SalaryAdvance.approved_at))
        for advance in result.scalars().all():
            effect_for(advance.employee_id).disbursements.append(
                AdvanceDisbursement(advance_id=advance.id, amount=advance.approved_amount)
            )

        due_query = (
            select(SalaryAdvance.employee_id, SalaryAdvanceRepayment)
            .join(SalaryAdvance, SalaryAdvanceRepayment.salary_advance_id == SalaryAdvance.id)
            .where(
                SalaryAdvanceRepayment.tenant_id == tenant_id,
                SalaryAdvanceRepayment.due_month == due_month,
                SalaryAdvanceRepayment.status == RepaymentStatus.PENDING,
                SalaryAdvance.status.in_(OUTSTANDING_STATUSES),
            )
        )
        if employee_ids:
            due_query = due_query.where(SalaryAdvance.employee_id.in_(employee_ids))
        result = await self.db.execute(
            due_query.order_by(SalaryAdvanceRepayment.salary_advance_id, SalaryAdvanceRepayment.installment_number)
        )
        for employee_id, installment in result.all():
            effect_for(employee_id).repayments.append(
                AdvanceDeduction(
                    advance_id=installment.salary_advance_id,
                    installment_number=installment.installment_number,
                    amount=installment.planned_amount,
                )
            )

        return effects

    async def process_employee_advances(
        self,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        payroll_run_id: uuid.UUID,
        payroll_month: date,
        disbursement_date: Optional[date] = None,
    ) -> EmployeeAdvanceEffect:
        """
        Apply one employee's advances to a payroll run.

        Approved advances are disbursed (first deduction the month after) and
        each installment due this month is settled for its planned amount.
        """
        effects = await self.get_period_advances(tenant_id, payroll_month, [employee_id])
        planned = effects[employee_id]
        applied = EmployeeAdvanceEffect(employee_id=employee_id)

        # Settle first so advances disbursed now are not picked up
        for deduction in planned.repayments:
            await self.advance_service.process_installment(
                advance_id=deduction.advance_id,
                tenant_id=tenant_id,
                installment_number=deduction.installment_number,
                actual_amount=deduction.amount,
                payroll_run_id=payroll_run_id,
            )
            applied.repayments.append(deduction)

        for disbursement in planned.disbursements:
            await self.advance_service.disburse(
                advance_id=disbursement.advance_id,
                tenant_id=tenant_id,
                payroll_run_id=payroll_run_id,
                disbursement_date=disbursement_date or first_of_month(payroll_month),
            )
            applied.disbursements.append(disbursement)

        if applied.disbursements or applied.repayments:
            logger.info(
                f"Payroll run {payroll_run_id}: employee {employee_id} advances "
                f"+{applied.disbursement_amount} -{applied.repayment_amount}"
            )
        return applied


def get_payroll_advance_processor(db: AsyncSession, advance_service: SalaryAdvanceService) -> PayrollAdvanceProcessor:
    """Factory function for PayrollAdvanceProcessor."""
    return PayrollAdvanceProcessor(db, advance_service)
