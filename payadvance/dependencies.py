"""
PayAdvance - FastAPI Dependencies

Shared dependencies for request context and service wiring:
1. Database sessions
2. Tenant and acting user, taken from request headers set by the platform
   gateway (authentication happens upstream)
3. Salary advance services with their collaborators injected
"""

import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from payadvance.database import get_async_session
from payadvance.services.net_salary_provider import NetSalaryProvider
from payadvance.services.payroll_advance_integration import PayrollAdvanceProcessor
from payadvance.services.repayment_scheduler import RepaymentScheduler
from payadvance.services.salary_advance_policy_service import SalaryAdvancePolicyService
from payadvance.services.salary_advance_service import SalaryAdvanceService
from payadvance.services.salary_advance_validator import SalaryAdvanceValidator


def _parse_uuid_header(value: Optional[str], header_name: str) -> uuid.UUID:
    if not value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Missing {header_name} header",
        )
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header_name} header",
        )


async def get_tenant_id(
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID"),
) -> uuid.UUID:
    """Tenant every operation is scoped to."""
    return _parse_uuid_header(x_tenant_id, "X-Tenant-ID")


async def get_current_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
) -> uuid.UUID:
    """Acting user, recorded as approver / rejector / creator."""
    return _parse_uuid_header(x_user_id, "X-User-ID")


def get_net_salary_provider() -> NetSalaryProvider:
    """
    Net salary provider for requests.

    No payroll engine is wired in this service, so net salary comes from
    the base salary fallback. Override this dependency to plug one in.
    """
    return NetSalaryProvider()


def get_repayment_scheduler() -> RepaymentScheduler:
    return RepaymentScheduler()


async def get_validator(
    db: AsyncSession = Depends(get_async_session),
    net_salary_provider: NetSalaryProvider = Depends(get_net_salary_provider),
    scheduler: RepaymentScheduler = Depends(get_repayment_scheduler),
) -> SalaryAdvanceValidator:
    return SalaryAdvanceValidator(db, net_salary_provider=net_salary_provider, scheduler=scheduler)


async def get_advance_service(
    db: AsyncSession = Depends(get_async_session),
    validator: SalaryAdvanceValidator = Depends(get_validator),
    scheduler: RepaymentScheduler = Depends(get_repayment_scheduler),
    net_salary_provider: NetSalaryProvider = Depends(get_net_salary_provider),
) -> SalaryAdvanceService:
    return SalaryAdvanceService(
        db,
        validator=validator,
        scheduler=scheduler,
        net_salary_provider=net_salary_provider,
    )


async def get_policy_service(
    db: AsyncSession = Depends(get_async_session),
) -> SalaryAdvancePolicyService:
    return SalaryAdvancePolicyService(db)


async def get_payroll_processor(
    db: AsyncSession = Depends(get_async_session),
    advance_service: SalaryAdvanceService = Depends(get_advance_service),
) -> PayrollAdvanceProcessor:
    return PayrollAdvanceProcessor(db, advance_service)
