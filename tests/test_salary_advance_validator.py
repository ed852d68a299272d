"""
PayAdvance - Salary Advance Validator Tests

Policy rules, the minimum wage floor and maximum amount calculations.
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from dateutil.relativedelta import relativedelta

from payadvance.models.salary_advance import AdvanceStatus, SalaryAdvance
from payadvance.services.minimum_wage import MinimumWageTable
from payadvance.services.net_salary_provider import NetSalaryProvider
from payadvance.services.salary_advance_errors import AdvanceErrorCode
from payadvance.services.salary_advance_validator import (
    Admissible,
    Blocked,
    SalaryAdvanceValidator,
    employment_months_between,
)
from payadvance.utils.error_handling import NotFoundException

from tests.conftest import create_employee, fixed_net_salary


async def add_advance(db_session, employee, status, amount=Decimal("15000")):
    advance = SalaryAdvance(
        tenant_id=employee.tenant_id,
        employee_id=employee.id,
        requested_amount=amount,
        approved_amount=amount if status != AdvanceStatus.PENDING else None,
        repayment_months=3,
        request_reason="Existing advance",
        status=status,
    )
    db_session.add(advance)
    await db_session.commit()
    return advance


class TestValidate:
    """Test cases for SalaryAdvanceValidator.validate."""

    @pytest.mark.asyncio
    async def test_admissible_request(self, validator, tenant_id, employee, policy):
        result = await validator.validate(tenant_id, employee.id, Decimal("15000"), 3)

        assert result.is_valid
        assert result.errors == []
        assert result.net_salary == Decimal("100000")
        assert result.outstanding_count == 0
        assert result.requests_this_month == 0
        assert isinstance(result.outcome(), Admissible)

    @pytest.mark.asyncio
    async def test_minimum_wage_violation_suggests_safe_amount(self, validator, tenant_id, employee, policy):
        """Net 100000, SMIG 75000: 30000 in one month leaves 70000."""
        result = await validator.validate(tenant_id, employee.id, Decimal("30000"), 1)

        assert not result.is_valid
        assert AdvanceErrorCode.MINIMUM_WAGE_VIOLATION in result.error_codes
        violation = next(e for e in result.errors if e.code == AdvanceErrorCode.MINIMUM_WAGE_VIOLATION)
        assert violation.value == Decimal("25000")
        assert "25000" in violation.message
        assert result.max_allowed_amount == Decimal("25000")

        outcome = result.outcome()
        assert isinstance(outcome, Blocked)
        assert outcome.errors[0].code == AdvanceErrorCode.MINIMUM_WAGE_VIOLATION

    @pytest.mark.asyncio
    async def test_suggested_amount_with_cents_is_admissible(self, db_session, scheduler, tenant_id, employee, policy):
        """Net 99999.95: the safe amount is rounded down to the deduction unit."""
        validator = SalaryAdvanceValidator(
            db_session,
            net_salary_provider=NetSalaryProvider(calculate_net_salary=fixed_net_salary("99999.95")),
            scheduler=scheduler,
        )

        blocked = await validator.validate(tenant_id, employee.id, Decimal("30000"), 1)
        violation = next(e for e in blocked.errors if e.code == AdvanceErrorCode.MINIMUM_WAGE_VIOLATION)
        assert violation.value == Decimal("24999")
        assert blocked.max_allowed_amount == Decimal("24999")

        resubmitted = await validator.validate(tenant_id, employee.id, blocked.max_allowed_amount, 1)
        assert resubmitted.is_valid
        assert Decimal("99999.95") - scheduler.calculate_monthly_deduction(Decimal("24999"), 1) >= Decimal("75000")

    @pytest.mark.asyncio
    async def test_insufficient_employment(self, db_session, validator, tenant_id, policy):
        """Hired two months ago under a three month minimum."""
        recent = await create_employee(
            db_session, tenant_id, "EMP-0100",
            hire_date=date.today() - relativedelta(months=2),
        )

        result = await validator.validate(tenant_id, recent.id, Decimal("15000"), 3)

        assert not result.is_valid
        assert result.error_codes == [AdvanceErrorCode.INSUFFICIENT_EMPLOYMENT]
        assert result.employment_months == 2

    @pytest.mark.asyncio
    async def test_errors_accumulate(self, validator, tenant_id, employee, policy):
        """Too low an amount and a disallowed period are both reported."""
        result = await validator.validate(tenant_id, employee.id, Decimal("5000"), 6)

        assert AdvanceErrorCode.AMOUNT_TOO_LOW in result.error_codes
        assert AdvanceErrorCode.INVALID_REPAYMENT_PERIOD in result.error_codes

    @pytest.mark.asyncio
    async def test_amount_above_percentage_cap(self, validator, tenant_id, employee, policy):
        result = await validator.validate(tenant_id, employee.id, Decimal("35000"), 3)

        assert AdvanceErrorCode.AMOUNT_TOO_HIGH in result.error_codes
        assert result.max_allowed_amount == Decimal("30000")

    @pytest.mark.asyncio
    async def test_absolute_ceiling_binds(self, db_session, validator, tenant_id, employee, policy):
        policy.max_absolute_amount = Decimal("20000.00")
        await db_session.commit()

        result = await validator.validate(tenant_id, employee.id, Decimal("25000"), 3)

        assert AdvanceErrorCode.AMOUNT_TOO_HIGH in result.error_codes
        assert result.max_allowed_amount == Decimal("20000")

    @pytest.mark.asyncio
    async def test_outstanding_advance_blocks(self, db_session, validator, tenant_id, employee, policy):
        await add_advance(db_session, employee, AdvanceStatus.ACTIVE)

        result = await validator.validate(tenant_id, employee.id, Decimal("15000"), 3)

        assert result.outstanding_count == 1
        assert AdvanceErrorCode.TOO_MANY_OUTSTANDING in result.error_codes

    @pytest.mark.asyncio
    async def test_completed_advance_is_not_outstanding(self, db_session, validator, tenant_id, employee, policy):
        await add_advance(db_session, employee, AdvanceStatus.COMPLETED)

        result = await validator.validate(tenant_id, employee.id, Decimal("15000"), 3)

        assert result.outstanding_count == 0
        assert AdvanceErrorCode.TOO_MANY_OUTSTANDING not in result.error_codes

    @pytest.mark.asyncio
    async def test_monthly_request_limit(self, db_session, validator, tenant_id, employee, policy):
        await add_advance(db_session, employee, AdvanceStatus.REJECTED)
        await add_advance(db_session, employee, AdvanceStatus.CANCELLED)

        result = await validator.validate(tenant_id, employee.id, Decimal("15000"), 3)

        assert result.requests_this_month == 2
        assert AdvanceErrorCode.TOO_MANY_REQUESTS in result.error_codes

    @pytest.mark.asyncio
    async def test_excluded_advance_not_counted(self, db_session, validator, tenant_id, employee, policy):
        first = await add_advance(db_session, employee, AdvanceStatus.REJECTED)
        second = await add_advance(db_session, employee, AdvanceStatus.PENDING)

        result = await validator.validate(
            tenant_id, employee.id, Decimal("15000"), 3, exclude_advance_id=second.id,
        )

        assert result.requests_this_month == 1
        assert result.is_valid
        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_employee_not_found_halts(self, validator, tenant_id, policy):
        result = await validator.validate(tenant_id, uuid4(), Decimal("15000"), 3)

        assert result.error_codes == [AdvanceErrorCode.EMPLOYEE_NOT_FOUND]
        assert result.max_allowed_amount == Decimal("0")

    @pytest.mark.asyncio
    async def test_employee_of_other_tenant_not_found(self, validator, employee, policy):
        result = await validator.validate(uuid4(), employee.id, Decimal("15000"), 3)

        assert result.error_codes == [AdvanceErrorCode.EMPLOYEE_NOT_FOUND]

    @pytest.mark.asyncio
    async def test_no_policy_halts(self, validator, tenant_id, employee):
        result = await validator.validate(tenant_id, employee.id, Decimal("15000"), 3)

        assert result.error_codes == [AdvanceErrorCode.NO_POLICY]
        assert result.max_allowed_amount == Decimal("0")

    @pytest.mark.asyncio
    async def test_no_salary_and_no_policy_both_reported(self, db_session, tenant_id):
        unpaid = await create_employee(db_session, tenant_id, "EMP-0200", base_salary=Decimal("0"))
        validator = SalaryAdvanceValidator(db_session, net_salary_provider=NetSalaryProvider())

        result = await validator.validate(tenant_id, unpaid.id, Decimal("15000"), 3)

        assert result.error_codes == [AdvanceErrorCode.NO_ACTIVE_SALARY, AdvanceErrorCode.NO_POLICY]

    @pytest.mark.asyncio
    async def test_high_amount_warning(self, validator, tenant_id, employee, policy):
        """28000 is above 90% of the 30000 cap; 3 months keeps the floor."""
        result = await validator.validate(tenant_id, employee.id, Decimal("28000"), 3)

        assert result.is_valid
        assert [w.code for w in result.warnings] == [AdvanceErrorCode.HIGH_AMOUNT]

    @pytest.mark.asyncio
    async def test_short_repayment_warning(self, validator, tenant_id, employee, policy):
        """21000 in one month is above 20% of net pay but within the floor."""
        result = await validator.validate(tenant_id, employee.id, Decimal("21000"), 1)

        assert result.is_valid
        assert AdvanceErrorCode.SHORT_REPAYMENT_HIGH_AMOUNT in [w.code for w in result.warnings]

    @pytest.mark.asyncio
    async def test_unknown_country_has_no_floor(self, db_session, validator, tenant_id, employee, policy):
        policy.country_code = "ML"
        await db_session.commit()

        result = await validator.validate(tenant_id, employee.id, Decimal("30000"), 1)

        assert AdvanceErrorCode.MINIMUM_WAGE_VIOLATION not in result.error_codes

    @pytest.mark.asyncio
    async def test_never_admits_below_floor(self, db_session, tenant_id, employee, policy):
        """Sweep amounts: anything admitted keeps net pay above the floor."""
        validator = SalaryAdvanceValidator(
            db_session,
            net_salary_provider=NetSalaryProvider(calculate_net_salary=fixed_net_salary("90000")),
        )
        for amount in range(10000, 30001, 2500):
            for months in (1, 2, 3):
                result = await validator.validate(tenant_id, employee.id, Decimal(amount), months)
                deduction = validator.scheduler.calculate_monthly_deduction(Decimal(amount), months)
                if result.is_valid:
                    assert Decimal("90000") - deduction >= Decimal("75000")


class TestMaxAllowed:
    """Test cases for maximum amount calculations."""

    @pytest.mark.asyncio
    async def test_basic_cap(self, validator, policy):
        assert validator.calculate_max_allowed_amount(policy, Decimal("100000")) == Decimal("30000")

    @pytest.mark.asyncio
    async def test_floor_cap_by_period(self, validator, policy):
        assert validator.calculate_max_allowed_with_floor(policy, Decimal("100000"), 1) == Decimal("25000")
        assert validator.calculate_max_allowed_with_floor(policy, Decimal("100000"), 3) == Decimal("30000")

    @pytest.mark.asyncio
    async def test_floor_cap_rounds_headroom_down(self, validator, policy):
        assert validator.monthly_headroom(Decimal("99999.95"), Decimal("75000")) == Decimal("24999")
        assert validator.calculate_max_allowed_with_floor(policy, Decimal("99999.95"), 1) == Decimal("24999")
        assert validator.calculate_max_allowed_with_floor(policy, Decimal("75000.50"), 2) == Decimal("0")

    @pytest.mark.asyncio
    async def test_floor_cap_never_negative(self, validator, policy):
        assert validator.calculate_max_allowed_with_floor(policy, Decimal("60000"), 2) == Decimal("0")

    @pytest.mark.asyncio
    async def test_get_max_allowed_uses_longest_period(self, validator, tenant_id, employee, policy):
        assert await validator.get_max_allowed(tenant_id, employee.id) == Decimal("30000")
        assert await validator.get_max_allowed(tenant_id, employee.id, 1) == Decimal("25000")

    @pytest.mark.asyncio
    async def test_get_max_allowed_without_policy(self, validator, tenant_id, employee):
        assert await validator.get_max_allowed(tenant_id, employee.id) == Decimal("0")

    @pytest.mark.asyncio
    async def test_get_max_allowed_unknown_employee(self, validator, tenant_id, policy):
        with pytest.raises(NotFoundException):
            await validator.get_max_allowed(tenant_id, uuid4())

    @pytest.mark.asyncio
    async def test_minimum_wage_override(self, db_session, net_salary_provider, tenant_id, employee, policy):
        validator = SalaryAdvanceValidator(
            db_session,
            net_salary_provider=net_salary_provider,
            minimum_wages=MinimumWageTable({"CI": Decimal("90000")}),
        )

        assert await validator.get_max_allowed(tenant_id, employee.id, 1) == Decimal("10000")


class TestQuickValidate:
    """Test cases for form feedback."""

    @pytest.mark.asyncio
    async def test_within_limits(self, validator, tenant_id, employee, policy):
        result = await validator.quick_validate(tenant_id, Decimal("20000"), 2, employee.id)

        assert result.is_valid
        assert result.max_allowed == Decimal("30000")

    @pytest.mark.asyncio
    async def test_below_minimum(self, validator, tenant_id, employee, policy):
        result = await validator.quick_validate(tenant_id, Decimal("5000"), 2, employee.id)

        assert not result.is_valid
        assert "Minimum" in result.message

    @pytest.mark.asyncio
    async def test_above_floor_cap(self, validator, tenant_id, employee, policy):
        result = await validator.quick_validate(tenant_id, Decimal("26000"), 1, employee.id)

        assert not result.is_valid
        assert result.max_allowed == Decimal("25000")

    @pytest.mark.asyncio
    async def test_without_policy(self, validator, tenant_id, employee):
        result = await validator.quick_validate(tenant_id, Decimal("20000"), 2, employee.id)

        assert not result.is_valid
        assert result.max_allowed == Decimal("0")


class TestEmploymentMonths:
    """Whole calendar months of employment."""

    def test_whole_months(self):
        assert employment_months_between(date(2026, 1, 15), date(2026, 4, 14)) == 2
        assert employment_months_between(date(2026, 1, 15), date(2026, 4, 15)) == 3
        assert employment_months_between(date(2024, 6, 1), date(2026, 6, 1)) == 24

    def test_missing_or_future_hire_date(self):
        assert employment_months_between(None, date(2026, 1, 1)) == 0
        assert employment_months_between(date(2027, 1, 1), date(2026, 1, 1)) == 0
