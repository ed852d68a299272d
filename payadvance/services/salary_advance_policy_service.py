"""
PayAdvance - Salary Advance Policy Service

Tenant policies for salary advances. A tenant has at most one active
policy; activating one deactivates the others. New policies start from the
country defaults below when the country has them.
"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payadvance.models.salary_advance import SalaryAdvancePolicy
from payadvance.utils.error_handling import ErrorCode, NotFoundException, ValidationException

logger = logging.getLogger(__name__)


DEFAULT_POLICIES: Dict[str, Dict[str, Any]] = {
    "CI": {
        "max_percentage_of_net_salary": Decimal("30.00"),
        "min_advance_amount": Decimal("10000.00"),
        "max_outstanding_advances": 1,
        "max_requests_per_month": 2,
        "min_employment_months": 3,
        "allowed_repayment_months": [1, 2, 3],
    },
    "SN": {
        "max_percentage_of_net_salary": Decimal("30.00"),
        "min_advance_amount": Decimal("10000.00"),
        "max_outstanding_advances": 1,
        "max_requests_per_month": 2,
        "min_employment_months": 3,
        "allowed_repayment_months": [1, 2, 3],
    },
    "BF": {
        "max_percentage_of_net_salary": Decimal("25.00"),
        "min_advance_amount": Decimal("5000.00"),
        "max_outstanding_advances": 1,
        "max_requests_per_month": 1,
        "min_employment_months": 6,
        "allowed_repayment_months": [1, 2],
    },
}

UPDATABLE_FIELDS = (
    "max_percentage_of_net_salary",
    "max_absolute_amount",
    "min_advance_amount",
    "max_outstanding_advances",
    "max_requests_per_month",
    "min_employment_months",
    "allowed_repayment_months",
    "requires_manager_approval",
    "requires_hr_approval",
    "auto_approve_below_amount",
    "effective_from",
    "effective_to",
)


def _validate_policy_values(values: Dict[str, Any]) -> None:
    percentage = values.get("max_percentage_of_net_salary")
    if percentage is not None and not (0 <= Decimal(percentage) <= 100):
        raise ValidationException(
            message="Maximum percentage of net salary must be between 0 and 100",
            field="max_percentage_of_net_salary",
        )

    months = values.get("allowed_repayment_months")
    if months is not None:
        if not months or any(m < 1 or m > 12 for m in months):
            raise ValidationException(
                message="Allowed repayment periods must be between 1 and 12 months",
                field="allowed_repayment_months",
            )

    for field in ("max_outstanding_advances", "max_requests_per_month", "min_employment_months"):
        if values.get(field) is not None and values[field] < 0:
            raise ValidationException(message=f"{field} cannot be negative", field=field)

    effective_from = values.get("effective_from")
    effective_to = values.get("effective_to")
    if effective_from and effective_to and effective_to < effective_from:
        raise ValidationException(
            message="Policy cannot end before it starts",
            field="effective_to",
        )


class SalaryAdvancePolicyService:
    """Service for salary advance policy operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_active_policy(self, tenant_id: uuid.UUID) -> Optional[SalaryAdvancePolicy]:
        result = await self.db.execute(
            select(SalaryAdvancePolicy)
            .where(
                SalaryAdvancePolicy.tenant_id == tenant_id,
                SalaryAdvancePolicy.is_active == True,
            )
            .order_by(SalaryAdvancePolicy.effective_from.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_policy(self, policy_id: uuid.UUID, tenant_id: uuid.UUID) -> SalaryAdvancePolicy:
        result = await self.db.execute(
            select(SalaryAdvancePolicy).where(
                SalaryAdvancePolicy.id == policy_id,
                SalaryAdvancePolicy.tenant_id == tenant_id,
            )
        )
        policy = result.scalar_one_or_none()
        if policy is None:
            raise NotFoundException(
                resource_type="Salary advance policy",
                resource_id=policy_id,
                code=ErrorCode.POLICY_NOT_FOUND,
            )
        return policy

    async def list_policies(self, tenant_id: uuid.UUID) -> List[SalaryAdvancePolicy]:
        result = await self.db.execute(
            select(SalaryAdvancePolicy)
            .where(SalaryAdvancePolicy.tenant_id == tenant_id)
            .order_by(SalaryAdvancePolicy.effective_from.desc())
        )
        return list(result.scalars().all())

    async def _deactivate_others(self, tenant_id: uuid.UUID, keep_id: uuid.UUID) -> None:
        await self.db.execute(
            update(SalaryAdvancePolicy)
            .where(
                SalaryAdvancePolicy.tenant_id == tenant_id,
                SalaryAdvancePolicy.id != keep_id,
                SalaryAdvancePolicy.is_active == True,
            )
            .values(is_active=False)
            .execution_options(synchronize_session="fetch")
        )

    async def create_policy(
        self,
        tenant_id: uuid.UUID,
        country_code: str,
        created_by_id: Optional[uuid.UUID] = None,
        is_active: bool = True,
        **values: Any,
    ) -> SalaryAdvancePolicy:
        """
        Create a policy for the tenant.

        Country defaults (CI, SN, BF) are applied first and then overridden
        by any explicit values. A new active policy replaces the current one.
        """
        country_code = country_code.upper()
        unknown = set(values) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationException(message=f"Unknown policy fields: {', '.join(sorted(unknown))}")

        fields: Dict[str, Any] = dict(DEFAULT_POLICIES.get(country_code, {}))
        fields.update({k: v for k, v in values.items() if v is not None})
        fields.setdefault("effective_from", date.today())
        _validate_policy_values(fields)

        policy = SalaryAdvancePolicy(
            tenant_id=tenant_id,
            country_code=country_code,
            is_active=is_active,
            created_by_id=created_by_id,
            **fields,
        )
        self.db.add(policy)
        await self.db.flush()

        if is_active:
            await self._deactivate_others(tenant_id, policy.id)

        await self.db.commit()
        await self.db.refresh(policy)

        logger.info(f"Salary advance policy {policy.id} created for tenant {tenant_id} ({country_code})")
        return policy

    async def update_policy(
        self,
        policy_id: uuid.UUID,
        tenant_id: uuid.UUID,
        updated_by_id: Optional[uuid.UUID] = None,
        **changes: Any,
    ) -> SalaryAdvancePolicy:
        """Apply the given field changes. Fields left out are untouched."""
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationException(message=f"Unknown policy fields: {', '.join(sorted(unknown))}")

        policy = await self.get_policy(policy_id, tenant_id)

        merged = {field: getattr(policy, field) for field in UPDATABLE_FIELDS}
        merged.update(changes)
        _validate_policy_values(merged)

        for field, value in changes.items():
            setattr(policy, field, value)
        policy.updated_by_id = updated_by_id

        await self.db.commit()
        await self.db.refresh(policy)

        logger.info(f"Salary advance policy {policy.id} updated: {', '.join(sorted(changes))}")
        return policy

    async def activate_policy(
        self,
        policy_id: uuid.UUID,
        tenant_id: uuid.UUID,
        updated_by_id: Optional[uuid.UUID] = None,
    ) -> SalaryAdvancePolicy:
        """Make this the tenant's only active policy."""
        policy = await self.get_policy(policy_id, tenant_id)
        await self._deactivate_others(tenant_id, policy.id)

        policy.is_active = True
        policy.updated_by_id = updated_by_id

        await self.db.commit()
        await self.db.refresh(policy)

        logger.info(f"Salary advance policy {policy.id} activated for tenant {tenant_id}")
        return policy


def get_salary_advance_policy_service(db: AsyncSession) -> SalaryAdvancePolicyService:
    """Factory function for SalaryAdvancePolicyService."""
    return SalaryAdvancePolicyService(db)
