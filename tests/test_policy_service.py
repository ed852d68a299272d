"""
PayAdvance - Salary Advance Policy Service Tests
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from payadvance.services.salary_advance_policy_service import SalaryAdvancePolicyService
from payadvance.utils.error_handling import ErrorCode, NotFoundException, ValidationException


@pytest.fixture
def policy_service(db_session):
    return SalaryAdvancePolicyService(db_session)


class TestCreatePolicy:
    """Test cases for policy creation."""

    @pytest.mark.asyncio
    async def test_country_defaults(self, policy_service, tenant_id):
        policy = await policy_service.create_policy(tenant_id, "bf")

        assert policy.country_code == "BF"
        assert policy.max_percentage_of_net_salary == Decimal("25")
        assert policy.min_advance_amount == Decimal("5000")
        assert policy.max_requests_per_month == 1
        assert policy.min_employment_months == 6
        assert policy.allowed_repayment_months == [1, 2]
        assert policy.is_active

    @pytest.mark.asyncio
    async def test_explicit_values_override_defaults(self, policy_service, tenant_id):
        policy = await policy_service.create_policy(
            tenant_id, "CI",
            max_percentage_of_net_salary=Decimal("20"),
            max_absolute_amount=Decimal("50000"),
        )

        assert policy.max_percentage_of_net_salary == Decimal("20")
        assert policy.max_absolute_amount == Decimal("50000")
        assert policy.allowed_repayment_months == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_new_active_policy_replaces_current(self, db_session, policy_service, tenant_id):
        first = await policy_service.create_policy(tenant_id, "CI")
        second = await policy_service.create_policy(tenant_id, "SN")

        active = await policy_service.get_active_policy(tenant_id)
        await db_session.refresh(first)

        assert active.id == second.id
        assert first.is_active is False

    @pytest.mark.asyncio
    async def test_inactive_policy_leaves_current_alone(self, policy_service, tenant_id):
        current = await policy_service.create_policy(tenant_id, "CI")
        await policy_service.create_policy(tenant_id, "SN", is_active=False)

        active = await policy_service.get_active_policy(tenant_id)

        assert active.id == current.id
        assert len(await policy_service.list_policies(tenant_id)) == 2

    @pytest.mark.asyncio
    async def test_policies_are_tenant_scoped(self, policy_service, tenant_id):
        await policy_service.create_policy(tenant_id, "CI")

        assert await policy_service.get_active_policy(uuid4()) is None

    @pytest.mark.asyncio
    async def test_rejects_invalid_values(self, policy_service, tenant_id):
        with pytest.raises(ValidationException):
            await policy_service.create_policy(tenant_id, "CI", max_percentage_of_net_salary=Decimal("120"))
        with pytest.raises(ValidationException):
            await policy_service.create_policy(tenant_id, "CI", allowed_repayment_months=[0, 13])
        with pytest.raises(ValidationException):
            await policy_service.create_policy(tenant_id, "CI", interest_rate=Decimal("5"))


class TestUpdatePolicy:
    """Test cases for policy updates and activation."""

    @pytest.mark.asyncio
    async def test_update_fields(self, policy_service, tenant_id, user_id):
        policy = await policy_service.create_policy(tenant_id, "CI")

        updated = await policy_service.update_policy(
            policy.id, tenant_id, user_id,
            min_advance_amount=Decimal("15000"),
            allowed_repayment_months=[1, 2, 3, 4, 5, 6],
        )

        assert updated.min_advance_amount == Decimal("15000")
        assert updated.allowed_repayment_months == [1, 2, 3, 4, 5, 6]
        assert updated.max_percentage_of_net_salary == Decimal("30")
        assert updated.updated_by_id == user_id

    @pytest.mark.asyncio
    async def test_update_validates_merged_values(self, policy_service, tenant_id):
        policy = await policy_service.create_policy(tenant_id, "CI", effective_from=date(2026, 1, 1))

        with pytest.raises(ValidationException):
            await policy_service.update_policy(policy.id, tenant_id, effective_to=date(2025, 12, 31))
        with pytest.raises(ValidationException):
            await policy_service.update_policy(policy.id, tenant_id, max_requests_per_month=-1)
        with pytest.raises(ValidationException):
            await policy_service.update_policy(policy.id, tenant_id, allowed_repayment_months=[])

    @pytest.mark.asyncio
    async def test_update_missing_policy(self, policy_service, tenant_id):
        with pytest.raises(NotFoundException) as exc_info:
            await policy_service.update_policy(uuid4(), tenant_id, min_advance_amount=Decimal("1000"))

        assert exc_info.value.code == ErrorCode.POLICY_NOT_FOUND

    @pytest.mark.asyncio
    async def test_activate_switches_active_policy(self, db_session, policy_service, tenant_id):
        first = await policy_service.create_policy(tenant_id, "CI")
        second = await policy_service.create_policy(tenant_id, "SN")

        activated = await policy_service.activate_policy(first.id, tenant_id)
        await db_session.refresh(second)

        assert activated.is_active is True
        assert second.is_active is False
        assert (await policy_service.get_active_policy(tenant_id)).id == first.id
