"""
PayAdvance - Salary Advances Router

API endpoints for salary advance requests, decisions, disbursement,
repayment and tenant policy. Business errors are raised by the services
and rendered by the application's exception handlers.
"""

import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query

from payadvance.dependencies import (
    get_advance_service,
    get_current_user_id,
    get_payroll_processor,
    get_policy_service,
    get_repayment_scheduler,
    get_tenant_id,
    get_validator,
)
from payadvance.models.salary_advance import AdvanceStatus
from payadvance.schemas.salary_advance import (
    AdvanceApproveRequest,
    AdvanceDetailResponse,
    AdvanceDisburseRequest,
    AdvanceListResponse,
    AdvanceRejectRequest,
    AdvanceRequestCreate,
    AdvanceResponse,
    AdvanceStatisticsResponse,
    AdvanceValidateRequest,
    EmployeeAdvanceEffectResponse,
    EmployeeAdvanceStatsResponse,
    EmployeeSummary,
    InstallmentProcessRequest,
    MaxAllowedResponse,
    PayrollRunAdvancesRequest,
    PolicyCreate,
    PolicyResponse,
    PolicyUpdate,
    QuickValidateRequest,
    QuickValidationResponse,
    RepaymentResponse,
    RepaymentScheduleResponse,
    ScheduleRecalculateRequest,
    ScheduleValidationResponse,
    ValidationResultResponse,
)
from payadvance.services.payroll_advance_integration import (
    EmployeeAdvanceEffect,
    PayrollAdvanceProcessor,
)
from payadvance.services.repayment_scheduler import RepaymentScheduler
from payadvance.services.salary_advance_policy_service import SalaryAdvancePolicyService
from payadvance.services.salary_advance_service import SalaryAdvanceService
from payadvance.services.salary_advance_validator import SalaryAdvanceValidator, ValidationResult

router = APIRouter(prefix="/salary-advances", tags=["Salary Advances"])


# ===========================================
# RESPONSE HELPERS
# ===========================================

def _validation_to_response(result: ValidationResult) -> ValidationResultResponse:
    return ValidationResultResponse(
        is_valid=result.is_valid,
        errors=[issue.to_dict() for issue in result.errors],
        warnings=[issue.to_dict() for issue in result.warnings],
        max_allowed_amount=result.max_allowed_amount,
        net_salary=result.net_salary,
        outstanding_count=result.outstanding_count,
        requests_this_month=result.requests_this_month,
    )


def _list_to_response(page: dict) -> AdvanceListResponse:
    return AdvanceListResponse(
        items=[AdvanceResponse.model_validate(a) for a in page["items"]],
        total=page["total"],
        has_more=page["has_more"],
        limit=page["limit"],
        offset=page["offset"],
    )


def _effect_to_response(effect: EmployeeAdvanceEffect) -> EmployeeAdvanceEffectResponse:
    return EmployeeAdvanceEffectResponse(
        employee_id=effect.employee_id,
        disbursements=[
            {"advance_id": d.advance_id, "amount": d.amount} for d in effect.disbursements
        ],
        repayments=[
            {
                "advance_id": r.advance_id,
                "installment_number": r.installment_number,
                "amount": r.amount,
            }
            for r in effect.repayments
        ],
        disbursement_amount=effect.disbursement_amount,
        repayment_amount=effect.repayment_amount,
        net_effect=effect.net_effect,
    )


# ===========================================
# REQUESTS & VALIDATION
# ===========================================

@router.post(
    "",
    response_model=AdvanceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request a salary advance",
)
async def create_advance_request(
    request: AdvanceRequestCreate,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: SalaryAdvanceService = Depends(get_advance_service),
):
    """Create a pending request. Rejected with every violated rule when not admissible."""
    advance = await service.create_request(
        tenant_id=tenant_id,
        employee_id=request.employee_id,
        requested_amount=request.requested_amount,
        repayment_months=request.repayment_months,
        request_reason=request.request_reason,
        request_notes=request.request_notes,
        created_by_id=user_id,
    )
    return AdvanceResponse.model_validate(advance)


@router.post(
    "/validate",
    response_model=ValidationResultResponse,
    summary="Validate a request without submitting it",
)
async def validate_advance_request(
    request: AdvanceValidateRequest,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    service: SalaryAdvanceService = Depends(get_advance_service),
):
    result = await service.validate_only(
        tenant_id=tenant_id,
        employee_id=request.employee_id,
        requested_amount=request.requested_amount,
        repayment_months=request.repayment_months,
    )
    return _validation_to_response(result)


@router.post(
    "/quick-validate",
    response_model=QuickValidationResponse,
    summary="Quick amount check for form feedback",
)
async def quick_validate_amount(
    request: QuickValidateRequest,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    validator: SalaryAdvanceValidator = Depends(get_validator),
):
    result = await validator.quick_validate(
        tenant_id=tenant_id,
        requested_amount=request.requested_amount,
        repayment_months=request.repayment_months,
        employee_id=request.employee_id,
    )
    return QuickValidationResponse(
        is_valid=result.is_valid,
        max_allowed=result.max_allowed,
        message=result.message,
    )


@router.get(
    "/max-allowed",
    response_model=MaxAllowedResponse,
    summary="Maximum amount an employee may request",
)
async def get_max_allowed(
    employee_id: uuid.UUID,
    repayment_months: Optional[int] = Query(None, ge=1, le=12),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    validator: SalaryAdvanceValidator = Depends(get_validator),
):
    amount = await validator.get_max_allowed(tenant_id, employee_id, repayment_months)
    return MaxAllowedResponse(
        employee_id=employee_id,
        repayment_months=repayment_months,
        max_allowed_amount=amount,
    )


# ===========================================
# LISTS & STATISTICS
# ===========================================

@router.get(
    "",
    response_model=AdvanceListResponse,
    summary="List salary advances",
)
async def list_advances(
    employee_id: Optional[uuid.UUID] = None,
    status_filter: Optional[List[AdvanceStatus]] = Query(None, alias="status"),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    service: SalaryAdvanceService = Depends(get_advance_service),
):
    """List advances, newest first. `status` may be repeated."""
    page = await service.list_advances(
        tenant_id=tenant_id,
        employee_id=employee_id,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return _list_to_response(page)


@router.get(
    "/pending-approvals",
    response_model=AdvanceListResponse,
    summary="Advances awaiting a decision",
)
async def list_pending_approvals(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    service: SalaryAdvanceService = Depends(get_advance_service),
):
    page = await service.list_pending_approvals(tenant_id, limit=limit, offset=offset)
    return _list_to_response(page)


@router.get(
    "/for-disbursement",
    response_model=AdvanceListResponse,
    summary="Approved advances awaiting disbursement",
)
async def list_for_disbursement(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    service: SalaryAdvanceService = Depends(get_advance_service),
):
    page = await service.list_for_disbursement(tenant_id, limit=limit, offset=offset)
    return _list_to_response(page)


@router.get(
    "/statistics",
    response_model=AdvanceStatisticsResponse,
    summary="Salary advance dashboard statistics",
)
async def get_statistics(
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    service: SalaryAdvanceService = Depends(get_advance_service),
):
    return await service.get_statistics(tenant_id)


@router.get(
    "/employees/{employee_id}/stats",
    response_model=EmployeeAdvanceStatsResponse,
    summary="An employee's advance position",
)
async def get_employee_stats(
    employee_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    service: SalaryAdvanceService = Depends(get_advance_service),
):
    return await service.get_employee_stats(tenant_id, employee_id)


# ===========================================
# POLICY
# ===========================================

@router.get(
    "/policy",
    response_model=PolicyResponse,
    summary="Get the tenant's active policy",
)
async def get_active_policy(
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    policy_service: SalaryAdvancePolicyService = Depends(get_policy_service),
):
    policy = await policy_service.get_active_policy(tenant_id)
    if not policy:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active salary advance policy",
        )
    return PolicyResponse.model_validate(policy)


@router.post(
    "/policies",
    response_model=PolicyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a policy",
)
async def create_policy(
    request: PolicyCreate,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    user_id: uuid.UUID = Depends(get_current_user_id),
    policy_service: SalaryAdvancePolicyService = Depends(get_policy_service),
):
    """Unset fields take the defaults of the policy's country (CI, SN, BF)."""
    values = request.model_dump(exclude_unset=True, exclude={"country_code", "is_active"})
    policy = await policy_service.create_policy(
        tenant_id=tenant_id,
        country_code=request.country_code,
        created_by_id=user_id,
        is_active=request.is_active,
        **values,
    )
    return PolicyResponse.model_validate(policy)


@router.patch(
    "/policies/{policy_id}",
    response_model=PolicyResponse,
    summary="Update a policy",
)
async def update_policy(
    policy_id: uuid.UUID,
    request: PolicyUpdate,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    user_id: uuid.UUID = Depends(get_current_user_id),
    policy_service: SalaryAdvancePolicyService = Depends(get_policy_service),
):
    policy = await policy_service.update_policy(
        policy_id,
        tenant_id,
        updated_by_id=user_id,
        **request.model_dump(exclude_unset=True),
    )
    return PolicyResponse.model_validate(policy)


@router.post(
    "/policies/{policy_id}/activate",
    response_model=PolicyResponse,
    summary="Make a policy the tenant's active policy",
)
async def activate_policy(
    policy_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    user_id: uuid.UUID = Depends(get_current_user_id),
    policy_service: SalaryAdvancePolicyService = Depends(get_policy_service),
):
    policy = await policy_service.activate_policy(policy_id, tenant_id, updated_by_id=user_id)
    return PolicyResponse.model_validate(policy)


# ===========================================
# SCHEDULES
# ===========================================

@router.post(
    "/schedule/recalculate",
    response_model=RepaymentScheduleResponse,
    summary="Reschedule an outstanding balance",
)
async def recalculate_schedule(
    request: ScheduleRecalculateRequest,
    scheduler: RepaymentScheduler = Depends(get_repayment_scheduler),
):
    try:
        schedule = scheduler.recalculate(
            request.remaining_balance,
            request.remaining_months,
            request.next_due_month,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )
    return RepaymentScheduleResponse(
        total_amount=schedule.total_amount,
        repayment_months=schedule.repayment_months,
        monthly_deduction=schedule.monthly_deduction,
        first_deduction_month=schedule.first_deduction_month,
        installments=[
            {
                "installment_number": i.installment_number,
                "due_month": i.due_month,
                "amount": i.amount,
            }
            for i in schedule.installments
        ],
    )


# ===========================================
# PAYROLL INTEGRATION
# ===========================================

@router.get(
    "/payroll-period",
    response_model=List[EmployeeAdvanceEffectResponse],
    summary="Disbursements and deductions for a payroll month",
)
async def get_payroll_period_advances(
    payroll_month: date,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    processor: PayrollAdvanceProcessor = Depends(get_payroll_processor),
):
    effects = await processor.get_period_advances(tenant_id, payroll_month)
    return [_effect_to_response(e) for e in effects.values()]


@router.post(
    "/payroll-run",
    response_model=EmployeeAdvanceEffectResponse,
    summary="Apply an employee's advances to a payroll run",
)
async def process_payroll_run_advances(
    request: PayrollRunAdvancesRequest,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    processor: PayrollAdvanceProcessor = Depends(get_payroll_processor),
):
    effect = await processor.process_employee_advances(
        tenant_id=tenant_id,
        employee_id=request.employee_id,
        payroll_run_id=request.payroll_run_id,
        payroll_month=request.payroll_month,
        disbursement_date=request.disbursement_date,
    )
    return _effect_to_response(effect)


# ===========================================
# SINGLE ADVANCE
# ===========================================

@router.get(
    "/{advance_id}",
    response_model=AdvanceDetailResponse,
    summary="Get salary advance details",
)
async def get_advance(
    advance_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    service: SalaryAdvanceService = Depends(get_advance_service),
):
    detail = await service.get_detail(advance_id, tenant_id)
    employee = detail["employee"]
    policy = detail["policy"]
    schedule = detail["repayment_schedule"]

    return AdvanceDetailResponse(
        advance=AdvanceResponse.model_validate(detail["advance"]),
        employee=EmployeeSummary.model_validate(employee) if employee else None,
        repayments=[RepaymentResponse.model_validate(r) for r in detail["repayments"]],
        repayment_schedule=RepaymentScheduleResponse(**schedule) if schedule else None,
        policy=PolicyResponse.model_validate(policy) if policy else None,
        can_edit=detail["can_edit"],
        can_cancel=detail["can_cancel"],
        can_approve=detail["can_approve"],
    )


@router.get(
    "/{advance_id}/schedule/validate",
    response_model=ScheduleValidationResponse,
    summary="Check a disbursed advance's installments",
)
async def validate_advance_schedule(
    advance_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    service: SalaryAdvanceService = Depends(get_advance_service),
):
    advance = await service.get_by_id(advance_id, tenant_id)
    repayments = await service.get_repayments(advance.id)
    result = service.validate_stored_schedule(advance, repayments)
    return ScheduleValidationResponse(is_valid=result.is_valid, errors=result.errors)


@router.post(
    "/{advance_id}/approve",
    response_model=AdvanceResponse,
    summary="Approve a salary advance",
)
async def approve_advance(
    advance_id: uuid.UUID,
    request: AdvanceApproveRequest,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: SalaryAdvanceService = Depends(get_advance_service),
):
    advance = await service.approve(
        advance_id,
        tenant_id,
        approver_id=user_id,
        approved_amount=request.approved_amount,
    )
    return AdvanceResponse.model_validate(advance)


@router.post(
    "/{advance_id}/reject",
    response_model=AdvanceResponse,
    summary="Reject a salary advance",
)
async def reject_advance(
    advance_id: uuid.UUID,
    request: AdvanceRejectRequest,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: SalaryAdvanceService = Depends(get_advance_service),
):
    advance = await service.reject(advance_id, tenant_id, rejector_id=user_id, reason=request.reason)
    return AdvanceResponse.model_validate(advance)


@router.post(
    "/{advance_id}/disburse",
    response_model=AdvanceResponse,
    summary="Disburse an approved salary advance",
)
async def disburse_advance(
    advance_id: uuid.UUID,
    request: AdvanceDisburseRequest,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    service: SalaryAdvanceService = Depends(get_advance_service),
):
    advance = await service.disburse(
        advance_id,
        tenant_id,
        payroll_run_id=request.payroll_run_id,
        disbursement_date=request.disbursement_date,
    )
    return AdvanceResponse.model_validate(advance)


@router.post(
    "/{advance_id}/cancel",
    response_model=AdvanceResponse,
    summary="Cancel a pending salary advance",
)
async def cancel_advance(
    advance_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: SalaryAdvanceService = Depends(get_advance_service),
):
    advance = await service.cancel(advance_id, tenant_id, cancelled_by_id=user_id)
    return AdvanceResponse.model_validate(advance)


@router.post(
    "/{advance_id}/installments",
    response_model=RepaymentResponse,
    summary="Record a payroll deduction against an installment",
)
async def process_installment(
    advance_id: uuid.UUID,
    request: InstallmentProcessRequest,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    service: SalaryAdvanceService = Depends(get_advance_service),
):
    installment = await service.process_installment(
        advance_id,
        tenant_id,
        installment_number=request.installment_number,
        actual_amount=request.actual_amount,
        payroll_run_id=request.payroll_run_id,
    )
    return RepaymentResponse.model_validate(installment)
