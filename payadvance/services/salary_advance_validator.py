"""
PayAdvance - Salary Advance Policy Validator

Decides whether an employee may request an advance under the tenant's
active policy, and how much they may currently borrow.

Every rule is evaluated and every violation reported, so a caller can show
them all at once. Validation only stops early when the employee cannot be
found, or when no net salary or no active policy is available, since none
of the amount rules can be computed without them.

Rules:
1. Employee exists in the tenant
2. Net salary can be determined
3. An active policy exists
4. Employment duration >= policy minimum (whole calendar months)
5. Outstanding (disbursed or active) advances < policy maximum
6. Requests since the 1st of the month < policy maximum
7. Amount >= policy minimum
8. Amount <= min(net salary x percentage, absolute ceiling)
9. Repayment period is one the policy allows
10. Net salary - monthly deduction >= statutory minimum wage
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_DOWN, ROUND_FLOOR
from typing import Any, Dict, List, Optional, Tuple, Union

from dateutil.relativedelta import relativedelta
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from payadvance.config import settings
from payadvance.models.employee import Employee
from payadvance.models.salary_advance import (
    OUTSTANDING_STATUSES,
    SalaryAdvance,
    SalaryAdvancePolicy,
)
from payadvance.services.minimum_wage import MinimumWageTable
from payadvance.services.net_salary_provider import NetSalaryProvider
from payadvance.services.repayment_scheduler import RepaymentScheduler
from payadvance.services.salary_advance_errors import AdvanceErrorCode
from payadvance.services.salary_advance_policy_service import SalaryAdvancePolicyService
from payadvance.utils.error_handling import ErrorCode, NotFoundException

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")

# Warning thresholds
HIGH_AMOUNT_RATIO = Decimal("0.9")
SHORT_REPAYMENT_SALARY_RATIO = Decimal("0.2")


# ===========================================
# RESULT TYPES
# ===========================================

@dataclass
class ValidationIssue:
    """A single violated rule or warning."""
    code: str
    message: str
    field: Optional[str] = None
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.field is not None:
            data["field"] = self.field
        if self.value is not None:
            data["value"] = str(self.value) if isinstance(self.value, Decimal) else self.value
        return data


@dataclass
class ValidationResult:
    """Outcome of a full validation, with the context it was computed from."""
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    max_allowed_amount: Decimal = ZERO
    net_salary: Decimal = ZERO
    outstanding_count: int = 0
    requests_this_month: int = 0
    employment_months: int = 0
    policy: Optional[SalaryAdvancePolicy] = None
    employee: Optional[Employee] = None

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def error_codes(self) -> List[str]:
        return [e.code for e in self.errors]

    def add_error(self, code: str, message: str, field: Optional[str] = None, value: Any = None) -> None:
        self.errors.append(ValidationIssue(code=code, message=message, field=field, value=value))

    def add_warning(self, code: str, message: str) -> None:
        self.warnings.append(ValidationIssue(code=code, message=message))

    def outcome(self) -> "ValidationOutcome":
        if self.errors:
            return Blocked(errors=tuple(self.errors), warnings=tuple(self.warnings), result=self)
        return Admissible(details=self)


@dataclass(frozen=True)
class Admissible:
    """The request passes every rule."""
    details: ValidationResult


@dataclass(frozen=True)
class Blocked:
    """The request violates at least one rule."""
    errors: Tuple[ValidationIssue, ...]
    warnings: Tuple[ValidationIssue, ...] = ()
    result: Optional[ValidationResult] = None


ValidationOutcome = Union[Admissible, Blocked]


@dataclass
class QuickValidationResult:
    """Lightweight form feedback."""
    is_valid: bool
    max_allowed: Decimal
    message: Optional[str] = None


def employment_months_between(hire_date: Optional[date], as_of: date) -> int:
    """Whole calendar months from hire date to as_of (0 without a hire date)."""
    if hire_date is None or hire_date > as_of:
        return 0
    delta = relativedelta(as_of, hire_date)
    return delta.years * 12 + delta.months


def start_of_month(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


# ===========================================
# VALIDATOR
# ===========================================

class SalaryAdvanceValidator:
    """Policy validator for salary advance requests."""

    def __init__(
        self,
        db: AsyncSession,
        net_salary_provider: Optional[NetSalaryProvider] = None,
        scheduler: Optional[RepaymentScheduler] = None,
        minimum_wages: Optional[MinimumWageTable] = None,
    ):
        self.db = db
        self.net_salary_provider = net_salary_provider or NetSalaryProvider()
        self.policies = SalaryAdvancePolicyService(db)
        self.scheduler = scheduler or RepaymentScheduler()
        self.minimum_wages = minimum_wages or MinimumWageTable(settings.minimum_wage_overrides)

    # ===========================================
    # LOOKUPS
    # ===========================================

    async def get_employee(
        self,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        for_update: bool = False,
    ) -> Optional[Employee]:
        """Get an employee of the tenant, optionally locking the row."""
        query = select(Employee).where(
            Employee.id == employee_id,
            Employee.tenant_id == tenant_id,
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def lock_employee(self, tenant_id: uuid.UUID, employee_id: uuid.UUID) -> None:
        """
        Take a write lock on the employee row until the transaction ends.

        Rewriting the employee number onto itself works on every backend:
        PostgreSQL locks the row, and SQLite, which ignores FOR UPDATE,
        takes its database write lock. It must be the first write of the
        transaction.
        """
        await self.db.execute(
            update(Employee)
            .where(
                Employee.id == employee_id,
                Employee.tenant_id == tenant_id,
            )
            .values(employee_number=Employee.employee_number)
            .execution_options(synchronize_session=False)
        )

    async def get_active_policy(self, tenant_id: uuid.UUID) -> Optional[SalaryAdvancePolicy]:
        """Get the tenant's active policy."""
        return await self.policies.get_active_policy(tenant_id)

    async def count_outstanding_advances(
        self,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        exclude_advance_id: Optional[uuid.UUID] = None,
    ) -> int:
        query = select(func.count(SalaryAdvance.id)).where(
            SalaryAdvance.tenant_id == tenant_id,
            SalaryAdvance.employee_id == employee_id,
            SalaryAdvance.status.in_(OUTSTANDING_STATUSES),
        )
        if exclude_advance_id is not None:
            query = query.where(SalaryAdvance.id != exclude_advance_id)
        result = await self.db.execute(query)
        return result.scalar() or 0

    async def count_requests_since(
        self,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        since: datetime,
        exclude_advance_id: Optional[uuid.UUID] = None,
    ) -> int:
        """Requests of any status created on or after `since`."""
        query = select(func.count(SalaryAdvance.id)).where(
            SalaryAdvance.tenant_id == tenant_id,
            SalaryAdvance.employee_id == employee_id,
            SalaryAdvance.request_date >= since,
        )
        if exclude_advance_id is not None:
            query = query.where(SalaryAdvance.id != exclude_advance_id)
        result = await self.db.execute(query)
        return result.scalar() or 0

    # ===========================================
    # LIMITS
    # ===========================================

    def calculate_max_allowed_amount(
        self,
        policy: SalaryAdvancePolicy,
        net_salary: Decimal,
    ) -> Decimal:
        """min(net salary x percentage, absolute ceiling)."""
        by_percentage = (
            Decimal(net_salary) * Decimal(policy.max_percentage_of_net_salary) / 100
        ).quantize(TWO_PLACES, rounding=ROUND_DOWN)

        if policy.max_absolute_amount is not None:
            return min(by_percentage, Decimal(policy.max_absolute_amount))
        return by_percentage

    def monthly_headroom(self, net_salary: Decimal, minimum_wage: Decimal) -> Decimal:
        """
        Largest monthly deduction that keeps net pay at or above the minimum
        wage, rounded down to the deduction rounding unit.

        Deductions are rounded up to that unit, so any amount up to
        headroom x months is deducted at most `headroom` per month.
        """
        unit = self.scheduler.rounding_unit
        units = ((Decimal(net_salary) - minimum_wage) / unit).to_integral_value(rounding=ROUND_FLOOR)
        return max(ZERO, units * unit)

    def calculate_max_allowed_with_floor(
        self,
        policy: SalaryAdvancePolicy,
        net_salary: Decimal,
        repayment_months: int,
    ) -> Decimal:
        """Basic limit, further capped so net pay stays above the minimum wage."""
        basic_max = self.calculate_max_allowed_amount(policy, net_salary)

        minimum_wage = self.minimum_wages.get(policy.country_code)
        if minimum_wage <= 0:
            return basic_max

        max_with_floor = self.monthly_headroom(net_salary, minimum_wage) * repayment_months
        return max(ZERO, min(basic_max, max_with_floor))

    # ===========================================
    # VALIDATION
    # ===========================================

    async def validate(
        self,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        requested_amount: Decimal,
        repayment_months: int,
        exclude_advance_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
        lock_employee: bool = False,
    ) -> ValidationResult:
        """
        Validate an advance request against the tenant's active policy.

        Args:
            exclude_advance_id: Leave this advance out of the outstanding and
                monthly request counts (re-validation at approval time)
            now: Reference time, defaults to the current UTC time
            lock_employee: Lock the employee row so that concurrent requests
                for the same employee serialize on it until commit
        """
        now = now or datetime.now(timezone.utc)
        requested_amount = Decimal(requested_amount)
        result = ValidationResult()

        # 1. Employee
        if lock_employee:
            await self.lock_employee(tenant_id, employee_id)
        employee = await self.get_employee(tenant_id, employee_id, for_update=lock_employee)
        if employee is None:
            result.add_error(
                AdvanceErrorCode.EMPLOYEE_NOT_FOUND,
                "Employee not found",
                field="employee_id",
                value=str(employee_id),
            )
            return self._log_blocked(result, employee_id)
        result.employee = employee

        # 2. Net salary
        net_salary = await self.net_salary_provider.get_net_salary(employee, now.date())
        result.net_salary = net_salary
        if net_salary <= 0:
            result.add_error(
                AdvanceErrorCode.NO_ACTIVE_SALARY,
                "No active salary found for this employee",
                field="employee_id",
            )

        # 3. Policy
        policy = await self.get_active_policy(tenant_id)
        result.policy = policy
        if policy is None:
            result.add_error(
                AdvanceErrorCode.NO_POLICY,
                "No salary advance policy is configured",
            )

        result.outstanding_count = await self.count_outstanding_advances(
            tenant_id, employee_id, exclude_advance_id
        )
        result.requests_this_month = await self.count_requests_since(
            tenant_id, employee_id, start_of_month(now), exclude_advance_id
        )
        result.employment_months = employment_months_between(employee.hire_date, now.date())

        if result.errors:
            return self._log_blocked(result, employee_id)

        self._check_policy_rules(result, policy, requested_amount, repayment_months)

        if repayment_months >= 1:
            result.max_allowed_amount = self.calculate_max_allowed_with_floor(
                policy, net_salary, repayment_months
            )
        else:
            result.max_allowed_amount = self.calculate_max_allowed_amount(policy, net_salary)

        if result.errors:
            return self._log_blocked(result, employee_id)
        return result

    def _check_policy_rules(
        self,
        result: ValidationResult,
        policy: SalaryAdvancePolicy,
        requested_amount: Decimal,
        repayment_months: int,
    ) -> None:
        net_salary = result.net_salary

        # 4. Employment duration
        if result.employment_months < policy.min_employment_months:
            result.add_error(
                AdvanceErrorCode.INSUFFICIENT_EMPLOYMENT,
                f"Employee needs at least {policy.min_employment_months} months of employment "
                f"(currently {result.employment_months})",
                field="employee_id",
                value=result.employment_months,
            )

        # 5. Outstanding advances
        if result.outstanding_count >= policy.max_outstanding_advances:
            result.add_error(
                AdvanceErrorCode.TOO_MANY_OUTSTANDING,
                f"Employee already has {result.outstanding_count} outstanding advance(s) "
                f"(maximum {policy.max_outstanding_advances})",
                field="employee_id",
                value=result.outstanding_count,
            )

        # 6. Requests this month
        if result.requests_this_month >= policy.max_requests_per_month:
            result.add_error(
                AdvanceErrorCode.TOO_MANY_REQUESTS,
                f"Employee already made {result.requests_this_month} request(s) this month "
                f"(maximum {policy.max_requests_per_month})",
                field="employee_id",
                value=result.requests_this_month,
            )

        # 7. Minimum amount
        min_amount = Decimal(policy.min_advance_amount or 0)
        if requested_amount < min_amount:
            result.add_error(
                AdvanceErrorCode.AMOUNT_TOO_LOW,
                f"Minimum advance amount is {min_amount}",
                field="requested_amount",
                value=requested_amount,
            )

        # 8. Maximum amount
        basic_max = self.calculate_max_allowed_amount(policy, net_salary)
        if requested_amount > basic_max:
            result.add_error(
                AdvanceErrorCode.AMOUNT_TOO_HIGH,
                f"Maximum allowed amount is {basic_max} "
                f"({policy.max_percentage_of_net_salary}% of net salary)",
                field="requested_amount",
                value=requested_amount,
            )

        # 9. Repayment period
        allowed_months = list(policy.allowed_repayment_months or [])
        if repayment_months not in allowed_months:
            result.add_error(
                AdvanceErrorCode.INVALID_REPAYMENT_PERIOD,
                f"Allowed repayment periods: {', '.join(str(m) for m in allowed_months)} months",
                field="repayment_months",
                value=repayment_months,
            )

        # 10. Minimum wage floor
        minimum_wage = self.minimum_wages.get(policy.country_code)
        if minimum_wage > 0 and repayment_months >= 1:
            monthly_deduction = self.scheduler.calculate_monthly_deduction(
                requested_amount, repayment_months
            )
            net_after_deduction = net_salary - monthly_deduction
            if net_after_deduction < minimum_wage:
                max_safe_amount = self.monthly_headroom(net_salary, minimum_wage) * repayment_months
                result.add_error(
                    AdvanceErrorCode.MINIMUM_WAGE_VIOLATION,
                    f"Net salary after deduction ({net_after_deduction}) would fall below the "
                    f"{policy.country_code} minimum wage ({minimum_wage}). "
                    f"Maximum allowed amount: {max_safe_amount}",
                    field="requested_amount",
                    value=max_safe_amount,
                )

        # Warnings
        if basic_max > 0 and basic_max * HIGH_AMOUNT_RATIO < requested_amount <= basic_max:
            ratio = (requested_amount / basic_max * 100).quantize(Decimal("1"))
            result.add_warning(
                AdvanceErrorCode.HIGH_AMOUNT,
                f"This amount is {ratio}% of the maximum allowed",
            )

        if repayment_months == 1 and requested_amount > net_salary * SHORT_REPAYMENT_SALARY_RATIO:
            result.add_warning(
                AdvanceErrorCode.SHORT_REPAYMENT_HIGH_AMOUNT,
                "Repaying a large amount in a single month significantly reduces net pay",
            )

    def _log_blocked(self, result: ValidationResult, employee_id: uuid.UUID) -> ValidationResult:
        logger.info(
            f"Salary advance request blocked for employee {employee_id}: "
            f"{', '.join(result.error_codes)}"
        )
        return result

    async def quick_validate(
        self,
        tenant_id: uuid.UUID,
        requested_amount: Decimal,
        repayment_months: int,
        employee_id: Optional[uuid.UUID] = None,
    ) -> QuickValidationResult:
        """
        Minimum amount and period-aware maximum only, for live form
        feedback. Without an employee the maximum is zero.
        """
        requested_amount = Decimal(requested_amount)
        policy = await self.get_active_policy(tenant_id)
        if policy is None:
            return QuickValidationResult(
                is_valid=False,
                max_allowed=ZERO,
                message="No salary advance policy is configured",
            )

        max_allowed = ZERO
        if employee_id is not None:
            employee = await self.get_employee(tenant_id, employee_id)
            if employee is not None:
                net_salary = await self.net_salary_provider.get_net_salary(employee)
                if net_salary > 0:
                    max_allowed = self.calculate_max_allowed_with_floor(
                        policy, net_salary, repayment_months
                    )

        min_amount = Decimal(policy.min_advance_amount or 0)
        if requested_amount < min_amount:
            return QuickValidationResult(
                is_valid=False,
                max_allowed=max_allowed,
                message=f"Minimum advance amount is {min_amount}",
            )
        if requested_amount > max_allowed:
            return QuickValidationResult(
                is_valid=False,
                max_allowed=max_allowed,
                message=f"Maximum advance amount is {max_allowed}",
            )
        return QuickValidationResult(is_valid=True, max_allowed=max_allowed)

    async def get_max_allowed(
        self,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        repayment_months: Optional[int] = None,
    ) -> Decimal:
        """
        Maximum amount the employee may currently request.

        Without a repayment period the wage floor is applied at the longest
        period the policy allows. Zero when no policy or salary is available.
        """
        employee = await self.get_employee(tenant_id, employee_id)
        if employee is None:
            raise NotFoundException(
                resource_type="Employee",
                resource_id=employee_id,
                code=ErrorCode.EMPLOYEE_NOT_FOUND,
            )

        policy = await self.get_active_policy(tenant_id)
        if policy is None:
            return ZERO

        net_salary = await self.net_salary_provider.get_net_salary(employee)
        if net_salary <= 0:
            return ZERO

        if repayment_months is None:
            allowed_months = list(policy.allowed_repayment_months or [])
            if not allowed_months:
                return self.calculate_max_allowed_amount(policy, net_salary)
            repayment_months = max(allowed_months)

        return self.calculate_max_allowed_with_floor(policy, net_salary, repayment_months)


def get_salary_advance_validator(
    db: AsyncSession,
    net_salary_provider: Optional[NetSalaryProvider] = None,
) -> SalaryAdvanceValidator:
    """Factory function for SalaryAdvanceValidator."""
    return SalaryAdvanceValidator(db, net_salary_provider=net_salary_provider)
