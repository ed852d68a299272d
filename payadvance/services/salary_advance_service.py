"""
PayAdvance - Salary Advance Service

Lifecycle state machine for salary advances:

    pending -> approved -> disbursed -> active -> completed
    pending -> rejected
    pending -> cancelled

Every transition reads the advance under a row lock and writes through the
mapper's version counter, so a concurrent change to the same advance fails
with CONCURRENT_MODIFICATION instead of being overwritten. Installments are
settled with a conditional UPDATE guarded by status = 'pending'.
"""

import logging
import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from payadvance.config import settings
from payadvance.models.employee import Employee
from payadvance.models.salary_advance import (
    OUTSTANDING_STATUSES,
    REPAID_STATUSES,
    SETTLED_STATUSES,
    AdvanceStatus,
    RepaymentStatus,
    SalaryAdvance,
    SalaryAdvanceRepayment,
    utcnow,
)
from payadvance.services.net_salary_provider import NetSalaryProvider
from payadvance.services.repayment_scheduler import (
    RepaymentScheduler,
    RepaymentSchedule,
    ScheduledInstallment,
    ScheduleValidation,
    calculate_remaining_balance,
)
from payadvance.services.salary_advance_errors import (
    AdvanceNotFoundError,
    AdvanceValidationError,
    AmountExceedsRequestedError,
    CannotCancelError,
    ConcurrentModificationError,
    InstallmentNotFoundError,
    InstallmentNotPendingError,
    InvalidStatusTransitionError,
    MissingRejectionReasonError,
    OutstandingLimitReachedError,
    ScheduleNotSpreadableError,
)
from payadvance.services.salary_advance_validator import (
    Blocked,
    SalaryAdvanceValidator,
    ValidationResult,
    employment_months_between,
    start_of_month,
)
from payadvance.utils.error_handling import ErrorCode, NotFoundException, ValidationException

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
DEFAULT_PAGE_SIZE = 50
RECENT_ACTIVITY_DAYS = 30


def _money(value: Any) -> Decimal:
    return Decimal(value) if value is not None else ZERO


class SalaryAdvanceService:
    """
    Orchestrates salary advance requests, decisions, disbursement and
    repayment.

    The validator, scheduler and net salary provider are injected so they
    can be replaced in tests.
    """

    def __init__(
        self,
        db: AsyncSession,
        validator: Optional[SalaryAdvanceValidator] = None,
        scheduler: Optional[RepaymentScheduler] = None,
        net_salary_provider: Optional[NetSalaryProvider] = None,
    ):
        self.db = db
        self.scheduler = scheduler or RepaymentScheduler()
        self.net_salary_provider = net_salary_provider or NetSalaryProvider()
        self.validator = validator or SalaryAdvanceValidator(
            db,
            net_salary_provider=self.net_salary_provider,
            scheduler=self.scheduler,
        )

    # ===========================================
    # INTERNAL HELPERS
    # ===========================================

    async def _get_for_update(self, advance_id: uuid.UUID, tenant_id: uuid.UUID) -> SalaryAdvance:
        """Load an advance under a row lock, refreshing any cached copy."""
        result = await self.db.execute(
            select(SalaryAdvance)
            .where(
                SalaryAdvance.id == advance_id,
                SalaryAdvance.tenant_id == tenant_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        advance = result.scalar_one_or_none()
        if advance is None:
            raise AdvanceNotFoundError(advance_id)
        return advance

    def _require_status(
        self,
        advance: SalaryAdvance,
        operation: str,
        *expected: AdvanceStatus,
    ) -> None:
        if advance.status not in expected:
            raise InvalidStatusTransitionError(
                operation=operation,
                current_status=advance.status.value,
                expected=[s.value for s in expected],
            )

    async def _commit(self, advance: SalaryAdvance) -> None:
        """Commit, turning lost races into CONCURRENT_MODIFICATION."""
        # Rollback expires the instance, read the key first
        advance_id = advance.id
        try:
            await self.db.commit()
        except (StaleDataError, IntegrityError) as e:
            await self.db.rollback()
            logger.warning(f"Concurrent modification of salary advance {advance_id}: {e}")
            raise ConcurrentModificationError("SalaryAdvance", advance_id) from e

    def _build_schedule(
        self,
        amount: Decimal,
        repayment_months: int,
        anchor_date: Optional[date] = None,
    ) -> RepaymentSchedule:
        try:
            return self.scheduler.build_schedule(amount, repayment_months, anchor_date)
        except ValueError as e:
            raise ScheduleNotSpreadableError(
                amount, repayment_months, self.scheduler.rounding_unit
            ) from e

    def _raise_if_blocked(self, validation: ValidationResult) -> ValidationResult:
        outcome = validation.outcome()
        if isinstance(outcome, Blocked):
            raise AdvanceValidationError(outcome.errors, outcome.warnings)
        return outcome.details

    async def get_repayments(self, advance_id: uuid.UUID) -> List[SalaryAdvanceRepayment]:
        """Installments of an advance in installment order, freshly loaded."""
        result = await self.db.execute(
            select(SalaryAdvanceRepayment)
            .where(SalaryAdvanceRepayment.salary_advance_id == advance_id)
            .order_by(SalaryAdvanceRepayment.installment_number)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # ===========================================
    # REQUEST
    # ===========================================

    async def create_request(
        self,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        requested_amount: Decimal,
        repayment_months: int,
        request_reason: str,
        request_notes: Optional[str] = None,
        created_by_id: Optional[uuid.UUID] = None,
    ) -> SalaryAdvance:
        """
        Create a pending advance request.

        The employee row stays locked from validation to commit, so two
        concurrent requests for the same employee cannot both pass the
        outstanding and monthly request limits.

        Raises:
            AdvanceValidationError: One or more policy rules are violated
        """
        validation = await self.validator.validate(
            tenant_id=tenant_id,
            employee_id=employee_id,
            requested_amount=requested_amount,
            repayment_months=repayment_months,
            lock_employee=True,
        )
        details = self._raise_if_blocked(validation)
        employee = details.employee

        advance = SalaryAdvance(
            tenant_id=tenant_id,
            employee_id=employee_id,
            requested_amount=Decimal(requested_amount),
            currency=employee.currency or settings.default_currency,
            repayment_months=repayment_months,
            request_date=utcnow(),
            request_reason=request_reason,
            request_notes=request_notes,
            status=AdvanceStatus.PENDING,
            employee_net_salary_at_request=details.net_salary,
            employee_name=employee.full_name,
            employee_number=employee.employee_number,
            created_by_id=created_by_id,
        )
        self.db.add(advance)
        await self.db.commit()
        await self.db.refresh(advance)

        logger.info(
            f"Salary advance {advance.id} requested by employee {employee.employee_number}: "
            f"{advance.requested_amount} over {repayment_months} month(s)"
        )
        return advance

    async def validate_only(
        self,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        requested_amount: Decimal,
        repayment_months: int,
    ) -> ValidationResult:
        """Full validation without creating anything."""
        return await self.validator.validate(
            tenant_id=tenant_id,
            employee_id=employee_id,
            requested_amount=requested_amount,
            repayment_months=repayment_months,
        )

    # ===========================================
    # DECISIONS
    # ===========================================

    async def approve(
        self,
        advance_id: uuid.UUID,
        tenant_id: uuid.UUID,
        approver_id: uuid.UUID,
        approved_amount: Optional[Decimal] = None,
    ) -> SalaryAdvance:
        """
        Approve a pending advance, optionally for less than requested.

        The approved amount is re-validated against the whole policy so that
        a reduced amount still honours the minimum wage floor.
        """
        advance = await self._get_for_update(advance_id, tenant_id)
        self._require_status(advance, "approve", AdvanceStatus.PENDING)

        amount = Decimal(approved_amount) if approved_amount is not None else advance.requested_amount
        if amount > advance.requested_amount:
            raise AmountExceedsRequestedError(amount, advance.requested_amount)

        validation = await self.validator.validate(
            tenant_id=tenant_id,
            employee_id=advance.employee_id,
            requested_amount=amount,
            repayment_months=advance.repayment_months,
            exclude_advance_id=advance.id,
        )
        self._raise_if_blocked(validation)
        schedule = self._build_schedule(amount, advance.repayment_months)

        now = utcnow()
        advance.approved_amount = amount
        advance.monthly_deduction = schedule.monthly_deduction
        advance.remaining_balance = amount
        advance.status = AdvanceStatus.APPROVED
        advance.approved_by_id = approver_id
        advance.approved_at = now
        advance.updated_by_id = approver_id

        await self._commit(advance)
        await self.db.refresh(advance)

        logger.info(f"Salary advance {advance.id} approved for {amount} by {approver_id}")
        return advance

    async def reject(
        self,
        advance_id: uuid.UUID,
        tenant_id: uuid.UUID,
        rejector_id: uuid.UUID,
        reason: str,
    ) -> SalaryAdvance:
        """Reject a pending advance. A reason is mandatory."""
        if not reason or not reason.strip():
            raise MissingRejectionReasonError()

        advance = await self._get_for_update(advance_id, tenant_id)
        self._require_status(advance, "reject", AdvanceStatus.PENDING)

        advance.status = AdvanceStatus.REJECTED
        advance.rejected_by_id = rejector_id
        advance.rejected_at = utcnow()
        advance.rejected_reason = reason.strip()
        advance.updated_by_id = rejector_id

        await self._commit(advance)
        await self.db.refresh(advance)

        logger.info(f"Salary advance {advance.id} rejected by {rejector_id}")
        return advance

    async def cancel(
        self,
        advance_id: uuid.UUID,
        tenant_id: uuid.UUID,
        cancelled_by_id: Optional[uuid.UUID] = None,
    ) -> SalaryAdvance:
        """Cancel a pending advance."""
        advance = await self._get_for_update(advance_id, tenant_id)
        if advance.status != AdvanceStatus.PENDING:
            raise CannotCancelError(advance.status.value)

        advance.status = AdvanceStatus.CANCELLED
        advance.cancelled_at = utcnow()
        advance.updated_by_id = cancelled_by_id

        await self._commit(advance)
        await self.db.refresh(advance)

        logger.info(f"Salary advance {advance.id} cancelled")
        return advance

    # ===========================================
    # DISBURSEMENT & REPAYMENT
    # ===========================================

    async def disburse(
        self,
        advance_id: uuid.UUID,
        tenant_id: uuid.UUID,
        payroll_run_id: uuid.UUID,
        disbursement_date: Optional[date] = None,
    ) -> SalaryAdvance:
        """
        Mark an approved advance as paid out and create its installments.

        The installments and the status change are committed together.
        Several advances may be approved in the same month, so the
        outstanding ceiling is checked again here under the employee lock.
        """
        advance = await self._get_for_update(advance_id, tenant_id)
        self._require_status(advance, "disburse", AdvanceStatus.APPROVED)

        await self.validator.lock_employee(tenant_id, advance.employee_id)
        policy = await self.validator.get_active_policy(tenant_id)
        if policy is not None:
            outstanding = await self.validator.count_outstanding_advances(
                tenant_id, advance.employee_id, exclude_advance_id=advance.id
            )
            if outstanding >= policy.max_outstanding_advances:
                raise OutstandingLimitReachedError(
                    advance.employee_id, outstanding, policy.max_outstanding_advances
                )

        disbursement_date = disbursement_date or date.today()
        schedule = self._build_schedule(
            advance.approved_amount,
            advance.repayment_months,
            disbursement_date,
        )

        for installment in schedule.installments:
            self.db.add(SalaryAdvanceRepayment(
                tenant_id=tenant_id,
                salary_advance_id=advance.id,
                installment_number=installment.installment_number,
                due_month=installment.due_month,
                planned_amount=installment.amount,
                status=RepaymentStatus.PENDING,
            ))

        advance.status = AdvanceStatus.DISBURSED
        advance.disbursement_date = disbursement_date
        advance.disbursement_payroll_run_id = payroll_run_id
        advance.first_deduction_month = schedule.first_deduction_month
        advance.monthly_deduction = schedule.monthly_deduction
        advance.remaining_balance = advance.approved_amount

        await self._commit(advance)
        await self.db.refresh(advance)

        logger.info(
            f"Salary advance {advance.id} disbursed in payroll run {payroll_run_id}: "
            f"{len(schedule.installments)} installment(s) from {schedule.first_deduction_month}"
        )
        return advance

    async def process_installment(
        self,
        advance_id: uuid.UUID,
        tenant_id: uuid.UUID,
        installment_number: int,
        actual_amount: Decimal,
        payroll_run_id: uuid.UUID,
    ) -> SalaryAdvanceRepayment:
        """
        Record a payroll deduction against a pending installment.

        The installment becomes paid when the deduction covers the planned
        amount and partial otherwise. Advance totals are then recomputed:
        the first settled installment activates the advance, and the advance
        completes once nothing is owed and every installment is settled.
        """
        actual_amount = Decimal(actual_amount)
        if actual_amount < 0:
            raise ValidationException(
                message="Deducted amount cannot be negative",
                field="actual_amount",
                code=ErrorCode.INVALID_AMOUNT,
            )

        advance = await self._get_for_update(advance_id, tenant_id)
        self._require_status(
            advance, "process an installment of",
            AdvanceStatus.DISBURSED, AdvanceStatus.ACTIVE,
        )

        result = await self.db.execute(
            select(SalaryAdvanceRepayment).where(
                SalaryAdvanceRepayment.salary_advance_id == advance.id,
                SalaryAdvanceRepayment.installment_number == installment_number,
            ).execution_options(populate_existing=True)
        )
        installment = result.scalar_one_or_none()
        if installment is None:
            raise InstallmentNotFoundError(advance.id, installment_number)
        if installment.status != RepaymentStatus.PENDING:
            raise InstallmentNotPendingError(installment_number, installment.status.value)

        new_status = (
            RepaymentStatus.PAID
            if actual_amount >= installment.planned_amount
            else RepaymentStatus.PARTIAL
        )
        updated = await self.db.execute(
            update(SalaryAdvanceRepayment)
            .where(
                SalaryAdvanceRepayment.id == installment.id,
                SalaryAdvanceRepayment.status == RepaymentStatus.PENDING,
            )
            .values(
                status=new_status,
                actual_amount=actual_amount,
                paid_date=utcnow(),
                payroll_run_id=payroll_run_id,
            )
            .execution_options(synchronize_session=False)
        )
        if updated.rowcount != 1:
            raise InstallmentNotPendingError(installment_number, "settled")

        await self._recompute_totals(advance)
        await self._commit(advance)
        await self.db.refresh(installment)
        await self.db.refresh(advance)

        logger.info(
            f"Installment {installment_number} of salary advance {advance.id} {new_status.value}: "
            f"{actual_amount} (remaining {advance.remaining_balance}, status {advance.status.value})"
        )
        return installment

    async def _recompute_totals(self, advance: SalaryAdvance) -> None:
        """
        Derive total repaid, remaining balance and status from the
        installments. Idempotent: replaying it changes nothing.
        """
        installments = await self.get_repayments(advance.id)
        repaid_amounts = [
            _money(i.actual_amount) for i in installments if i.status in REPAID_STATUSES
        ]
        approved_amount = _money(advance.approved_amount)

        advance.total_repaid = sum(repaid_amounts, ZERO)
        advance.remaining_balance = calculate_remaining_balance(approved_amount, repaid_amounts)

        if advance.status == AdvanceStatus.DISBURSED and repaid_amounts:
            advance.status = AdvanceStatus.ACTIVE

        fully_settled = bool(installments) and all(i.status in SETTLED_STATUSES for i in installments)
        if (
            advance.status == AdvanceStatus.ACTIVE
            and advance.remaining_balance == 0
            and fully_settled
        ):
            advance.status = AdvanceStatus.COMPLETED
            advance.completed_at = utcnow()

    async def reconcile_totals(self, advance_id: uuid.UUID, tenant_id: uuid.UUID) -> SalaryAdvance:
        """Re-run the totals recomputation, e.g. after a partial failure."""
        advance = await self._get_for_update(advance_id, tenant_id)
        if advance.status in OUTSTANDING_STATUSES or advance.status == AdvanceStatus.COMPLETED:
            await self._recompute_totals(advance)
            await self._commit(advance)
            await self.db.refresh(advance)
        return advance

    def validate_stored_schedule(
        self,
        advance: SalaryAdvance,
        repayments: Sequence[SalaryAdvanceRepayment],
    ) -> ScheduleValidation:
        """Check persisted installments against the schedule invariants."""
        return self.scheduler.validate_schedule(
            [
                ScheduledInstallment(
                    installment_number=r.installment_number,
                    due_month=r.due_month,
                    amount=r.planned_amount,
                )
                for r in repayments
            ],
            total_amount=_money(advance.approved_amount),
            repayment_months=advance.repayment_months,
        )

    # ===========================================
    # QUERIES
    # ===========================================

    async def get_by_id(self, advance_id: uuid.UUID, tenant_id: uuid.UUID) -> SalaryAdvance:
        result = await self.db.execute(
            select(SalaryAdvance)
            .options(selectinload(SalaryAdvance.repayments))
            .where(
                SalaryAdvance.id == advance_id,
                SalaryAdvance.tenant_id == tenant_id,
            )
        )
        advance = result.scalar_one_or_none()
        if advance is None:
            raise AdvanceNotFoundError(advance_id)
        return advance

    async def get_detail(self, advance_id: uuid.UUID, tenant_id: uuid.UUID) -> Dict[str, Any]:
        """Advance with employee, installments, schedule view, policy and allowed actions."""
        advance = await self.get_by_id(advance_id, tenant_id)
        repayments = await self.get_repayments(advance.id)

        employee_result = await self.db.execute(
            select(Employee).where(Employee.id == advance.employee_id)
        )
        employee = employee_result.scalar_one_or_none()
        policy = await self.validator.get_active_policy(tenant_id)

        schedule = None
        if advance.approved_amount is not None:
            schedule = {
                "advance_id": advance.id,
                "total_amount": advance.approved_amount,
                "repayment_months": advance.repayment_months,
                "monthly_deduction": advance.monthly_deduction,
                "first_deduction_month": advance.first_deduction_month,
                "installments": [
                    {
                        "installment_number": r.installment_number,
                        "due_month": r.due_month,
                        "amount": r.planned_amount,
                        "status": r.status,
                    }
                    for r in repayments
                ],
            }

        is_pending = advance.status == AdvanceStatus.PENDING
        return {
            "advance": advance,
            "employee": employee,
            "repayments": repayments,
            "repayment_schedule": schedule,
            "policy": policy,
            "can_edit": is_pending,
            "can_cancel": is_pending,
            "can_approve": is_pending,
        }

    async def list_advances(
        self,
        tenant_id: uuid.UUID,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[Union[AdvanceStatus, Sequence[AdvanceStatus]]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """
        Paginated advances, newest request first.

        `status` accepts a single status or several; the date range applies
        to the request date, both ends inclusive.
        """
        conditions = [SalaryAdvance.tenant_id == tenant_id]
        if employee_id:
            conditions.append(SalaryAdvance.employee_id == employee_id)
        if status:
            statuses = [status] if isinstance(status, AdvanceStatus) else list(status)
            conditions.append(SalaryAdvance.status.in_(statuses))
        if date_from:
            conditions.append(
                SalaryAdvance.request_date >= datetime.combine(date_from, time.min, tzinfo=timezone.utc)
            )
        if date_to:
            conditions.append(
                SalaryAdvance.request_date
                < datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=timezone.utc)
            )

        total_result = await self.db.execute(
            select(func.count(SalaryAdvance.id)).where(*conditions)
        )
        total = total_result.scalar() or 0

        result = await self.db.execute(
            select(SalaryAdvance)
            .where(*conditions)
            .order_by(SalaryAdvance.request_date.desc())
            .limit(limit)
            .offset(offset)
        )
        items = list(result.scalars().all())

        return {
            "items": items,
            "total": total,
            "has_more": offset + len(items) < total,
            "limit": limit,
            "offset": offset,
        }

    async def list_pending_approvals(
        self,
        tenant_id: uuid.UUID,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Dict[str, Any]:
        return await self.list_advances(
            tenant_id, status=AdvanceStatus.PENDING, limit=limit, offset=offset
        )

    async def list_for_disbursement(
        self,
        tenant_id: uuid.UUID,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Dict[str, Any]:
        return await self.list_advances(
            tenant_id, status=AdvanceStatus.APPROVED, limit=limit, offset=offset
        )

    async def get_statistics(
        self,
        tenant_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Dashboard aggregates for the tenant."""
        now = now or utcnow()
        recent_since = now - timedelta(days=RECENT_ACTIVITY_DAYS)
        month_start = start_of_month(now).date()

        # Count and amount by status
        by_status: Dict[str, Dict[str, Any]] = {
            s.value: {"count": 0, "total_amount": ZERO} for s in AdvanceStatus
        }
        result = await self.db.execute(
            select(
                SalaryAdvance.status,
                func.count(SalaryAdvance.id),
                func.sum(func.coalesce(SalaryAdvance.approved_amount, SalaryAdvance.requested_amount)),
            )
            .where(SalaryAdvance.tenant_id == tenant_id)
            .group_by(SalaryAdvance.status)
        )
        for advance_status, count, amount in result.all():
            by_status[AdvanceStatus(advance_status).value] = {
                "count": count,
                "total_amount": _money(amount),
            }

        pending_result = await self.db.execute(
            select(func.count(SalaryAdvance.id), func.sum(SalaryAdvance.requested_amount)).where(
                SalaryAdvance.tenant_id == tenant_id,
                SalaryAdvance.status == AdvanceStatus.PENDING,
            )
        )
        pending_count, pending_amount = pending_result.one()

        outstanding_result = await self.db.execute(
            select(func.count(SalaryAdvance.id), func.sum(SalaryAdvance.remaining_balance)).where(
                SalaryAdvance.tenant_id == tenant_id,
                SalaryAdvance.status.in_(OUTSTANDING_STATUSES),
            )
        )
        outstanding_count, outstanding_balance = outstanding_result.one()

        deductions_result = await self.db.execute(
            select(
                func.count(SalaryAdvanceRepayment.id),
                func.sum(SalaryAdvanceRepayment.planned_amount),
            ).where(
                SalaryAdvanceRepayment.tenant_id == tenant_id,
                SalaryAdvanceRepayment.due_month == month_start,
            )
        )
        deductions_count, deductions_amount = deductions_result.one()

        completed_result = await self.db.execute(
            select(func.count(SalaryAdvance.id)).where(
                SalaryAdvance.tenant_id == tenant_id,
                SalaryAdvance.status == AdvanceStatus.COMPLETED,
                SalaryAdvance.completed_at >= recent_since,
            )
        )
        rejected_result = await self.db.execute(
            select(func.count(SalaryAdvance.id)).where(
                SalaryAdvance.tenant_id == tenant_id,
                SalaryAdvance.status == AdvanceStatus.REJECTED,
                SalaryAdvance.rejected_at >= recent_since,
            )
        )

        return {
            "pending_count": pending_count or 0,
            "pending_total_amount": _money(pending_amount),
            "outstanding_count": outstanding_count or 0,
            "outstanding_total_balance": _money(outstanding_balance),
            "this_month_deductions_count": deductions_count or 0,
            "this_month_deductions_amount": _money(deductions_amount),
            "recently_completed_count": completed_result.scalar() or 0,
            "recently_rejected_count": rejected_result.scalar() or 0,
            "by_status": by_status,
        }

    async def get_employee_stats(
        self,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """An employee's advance position: balance, next deduction and headroom."""
        now = now or utcnow()
        employee = await self.validator.get_employee(tenant_id, employee_id)
        if employee is None:
            raise NotFoundException(
                resource_type="Employee",
                resource_id=employee_id,
                code=ErrorCode.EMPLOYEE_NOT_FOUND,
            )

        active_result = await self.db.execute(
            select(SalaryAdvance)
            .where(
                SalaryAdvance.tenant_id == tenant_id,
                SalaryAdvance.employee_id == employee_id,
                SalaryAdvance.status.in_(OUTSTANDING_STATUSES),
            )
            .order_by(SalaryAdvance.request_date.desc())
        )
        outstanding = list(active_result.scalars().all())
        active_balance = sum((_money(a.remaining_balance) for a in outstanding), ZERO)

        next_deduction = None
        if outstanding:
            next_result = await self.db.execute(
                select(SalaryAdvanceRepayment)
                .where(
                    SalaryAdvanceRepayment.salary_advance_id.in_([a.id for a in outstanding]),
                    SalaryAdvanceRepayment.status == RepaymentStatus.PENDING,
                )
                .order_by(SalaryAdvanceRepayment.due_month, SalaryAdvanceRepayment.installment_number)
                .limit(1)
            )
            next_installment = next_result.scalar_one_or_none()
            if next_installment is not None:
                next_deduction = {
                    "amount": next_installment.planned_amount,
                    "due_month": next_installment.due_month,
                }

        totals_result = await self.db.execute(
            select(
                func.count(SalaryAdvance.id),
                func.sum(SalaryAdvance.total_repaid),
            ).where(
                SalaryAdvance.tenant_id == tenant_id,
                SalaryAdvance.employee_id == employee_id,
            )
        )
        total_count, total_repaid = totals_result.one()

        borrowed_result = await self.db.execute(
            select(func.sum(SalaryAdvance.approved_amount)).where(
                SalaryAdvance.tenant_id == tenant_id,
                SalaryAdvance.employee_id == employee_id,
                SalaryAdvance.status.in_(OUTSTANDING_STATUSES + (AdvanceStatus.COMPLETED,)),
            )
        )
        completed_result = await self.db.execute(
            select(func.count(SalaryAdvance.id)).where(
                SalaryAdvance.tenant_id == tenant_id,
                SalaryAdvance.employee_id == employee_id,
                SalaryAdvance.status == AdvanceStatus.COMPLETED,
            )
        )

        requests_this_month = await self.validator.count_requests_since(
            tenant_id, employee_id, start_of_month(now)
        )
        max_allowed = await self.validator.get_max_allowed(tenant_id, employee_id)

        policy = await self.validator.get_active_policy(tenant_id)
        can_request = (
            policy is not None
            and len(outstanding) < policy.max_outstanding_advances
            and requests_this_month < policy.max_requests_per_month
            and employment_months_between(employee.hire_date, now.date()) >= policy.min_employment_months
            and max_allowed >= _money(policy.min_advance_amount)
        )

        return {
            "employee_id": employee_id,
            "outstanding_count": len(outstanding),
            "active_advance_balance": active_balance,
            "next_deduction": next_deduction,
            "max_allowed_amount": max_allowed,
            "can_request_new": can_request,
            "requests_this_month": requests_this_month,
            "total_advances_count": total_count or 0,
            "completed_advances_count": completed_result.scalar() or 0,
            "total_borrowed": _money(borrowed_result.scalar()),
            "total_repaid": _money(total_repaid),
        }


def get_salary_advance_service(
    db: AsyncSession,
    net_salary_provider: Optional[NetSalaryProvider] = None,
) -> SalaryAdvanceService:
    """Factory function for SalaryAdvanceService."""
    scheduler = RepaymentScheduler()
    provider = net_salary_provider or NetSalaryProvider()
    validator = SalaryAdvanceValidator(db, net_salary_provider=provider, scheduler=scheduler)
    return SalaryAdvanceService(
        db,
        validator=validator,
        scheduler=scheduler,
        net_salary_provider=provider,
    )
