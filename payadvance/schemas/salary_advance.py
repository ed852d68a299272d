"""
PayAdvance - Salary Advance Schemas

Pydantic schemas for salary advance requests and responses.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from payadvance.models.salary_advance import AdvanceStatus, RepaymentStatus


# ===========================================
# POLICY SCHEMAS
# ===========================================

class PolicyFields(BaseModel):
    """Editable policy fields."""
    max_percentage_of_net_salary: Optional[Decimal] = Field(None, ge=0, le=100)
    max_absolute_amount: Optional[Decimal] = Field(None, gt=0)
    min_advance_amount: Optional[Decimal] = Field(None, ge=0)
    max_outstanding_advances: Optional[int] = Field(None, ge=0)
    max_requests_per_month: Optional[int] = Field(None, ge=0)
    min_employment_months: Optional[int] = Field(None, ge=0)
    allowed_repayment_months: Optional[List[int]] = None
    requires_manager_approval: Optional[bool] = None
    requires_hr_approval: Optional[bool] = None
    auto_approve_below_amount: Optional[Decimal] = Field(None, ge=0)
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None

    @field_validator("allowed_repayment_months")
    @classmethod
    def validate_repayment_months(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        if v is None:
            return v
        if not v or any(m < 1 or m > 12 for m in v):
            raise ValueError("Repayment periods must be between 1 and 12 months")
        return sorted(set(v))


class PolicyCreate(PolicyFields):
    """Create policy request. Unset fields take the country defaults."""
    country_code: str = Field(..., min_length=2, max_length=2)
    is_active: bool = True


class PolicyUpdate(PolicyFields):
    """Update policy request. Only the fields sent are changed."""
    pass


class PolicyResponse(BaseModel):
    """Policy response."""
    id: UUID
    tenant_id: UUID
    country_code: str
    max_percentage_of_net_salary: Decimal
    max_absolute_amount: Optional[Decimal] = None
    min_advance_amount: Decimal
    max_outstanding_advances: int
    max_requests_per_month: int
    min_employment_months: int
    allowed_repayment_months: List[int]
    requires_manager_approval: bool
    requires_hr_approval: bool
    auto_approve_below_amount: Optional[Decimal] = None
    is_active: bool
    effective_from: date
    effective_to: Optional[date] = None

    class Config:
        from_attributes = True


# ===========================================
# REQUEST SCHEMAS
# ===========================================

class AdvanceRequestCreate(BaseModel):
    """Create a salary advance request."""
    employee_id: UUID
    requested_amount: Decimal = Field(..., gt=0, decimal_places=2)
    repayment_months: int = Field(..., ge=1, le=12)
    request_reason: str = Field(..., min_length=1, max_length=2000)
    request_notes: Optional[str] = Field(None, max_length=2000)


class AdvanceValidateRequest(BaseModel):
    """Validate a prospective request without creating it."""
    employee_id: UUID
    requested_amount: Decimal = Field(..., gt=0)
    repayment_months: int = Field(..., ge=1, le=12)


class QuickValidateRequest(BaseModel):
    """Live form check."""
    employee_id: Optional[UUID] = None
    requested_amount: Decimal = Field(..., gt=0)
    repayment_months: int = Field(..., ge=1, le=12)


class AdvanceApproveRequest(BaseModel):
    """Approve, optionally for a lower amount."""
    approved_amount: Optional[Decimal] = Field(None, gt=0, decimal_places=2)


class AdvanceRejectRequest(BaseModel):
    """Reject with a reason."""
    reason: str = Field(..., max_length=2000)


class AdvanceDisburseRequest(BaseModel):
    """Pay out an approved advance in a payroll run."""
    payroll_run_id: UUID
    disbursement_date: Optional[date] = None


class InstallmentProcessRequest(BaseModel):
    """Payroll deduction against one installment."""
    installment_number: int = Field(..., ge=1)
    actual_amount: Decimal = Field(..., ge=0, decimal_places=2)
    payroll_run_id: UUID


class ScheduleRecalculateRequest(BaseModel):
    """Reschedule an outstanding balance."""
    remaining_balance: Decimal = Field(..., gt=0)
    remaining_months: int = Field(..., ge=1, le=12)
    next_due_month: date


class PayrollRunAdvancesRequest(BaseModel):
    """Apply an employee's advances to a payroll run."""
    employee_id: UUID
    payroll_run_id: UUID
    payroll_month: date
    disbursement_date: Optional[date] = None


# ===========================================
# VALIDATION RESPONSES
# ===========================================

class ValidationIssueResponse(BaseModel):
    code: str
    message: str
    field: Optional[str] = None
    value: Optional[Any] = None


class ValidationResultResponse(BaseModel):
    """Full validation outcome."""
    is_valid: bool
    errors: List[ValidationIssueResponse] = []
    warnings: List[ValidationIssueResponse] = []
    max_allowed_amount: Decimal
    net_salary: Decimal
    outstanding_count: int
    requests_this_month: int


class QuickValidationResponse(BaseModel):
    is_valid: bool
    max_allowed: Decimal
    message: Optional[str] = None


class MaxAllowedResponse(BaseModel):
    employee_id: UUID
    repayment_months: Optional[int] = None
    max_allowed_amount: Decimal


# ===========================================
# ADVANCE RESPONSES
# ===========================================

class RepaymentResponse(BaseModel):
    """Repayment installment response."""
    id: UUID
    installment_number: int
    due_month: date
    planned_amount: Decimal
    actual_amount: Optional[Decimal] = None
    paid_date: Optional[datetime] = None
    payroll_run_id: Optional[UUID] = None
    status: RepaymentStatus
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class AdvanceResponse(BaseModel):
    """Salary advance response."""
    id: UUID
    tenant_id: UUID
    employee_id: UUID
    employee_name: Optional[str] = None
    employee_number: Optional[str] = None
    employee_net_salary_at_request: Optional[Decimal] = None
    requested_amount: Decimal
    approved_amount: Optional[Decimal] = None
    currency: str
    repayment_months: int
    monthly_deduction: Optional[Decimal] = None
    total_repaid: Decimal
    remaining_balance: Optional[Decimal] = None
    request_date: datetime
    request_reason: str
    request_notes: Optional[str] = None
    status: AdvanceStatus
    approved_by_id: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    rejected_by_id: Optional[UUID] = None
    rejected_at: Optional[datetime] = None
    rejected_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    first_deduction_month: Optional[date] = None
    disbursement_date: Optional[date] = None
    disbursement_payroll_run_id: Optional[UUID] = None

    class Config:
        from_attributes = True


class AdvanceListResponse(BaseModel):
    items: List[AdvanceResponse]
    total: int
    has_more: bool
    limit: int
    offset: int


class EmployeeSummary(BaseModel):
    id: UUID
    employee_number: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    job_title: Optional[str] = None

    class Config:
        from_attributes = True


class ScheduleInstallmentResponse(BaseModel):
    installment_number: int
    due_month: date
    amount: Decimal
    status: Optional[RepaymentStatus] = None


class RepaymentScheduleResponse(BaseModel):
    advance_id: Optional[UUID] = None
    total_amount: Decimal
    repayment_months: int
    monthly_deduction: Optional[Decimal] = None
    first_deduction_month: Optional[date] = None
    installments: List[ScheduleInstallmentResponse]


class AdvanceDetailResponse(BaseModel):
    """Advance with everything a reviewer needs."""
    advance: AdvanceResponse
    employee: Optional[EmployeeSummary] = None
    repayments: List[RepaymentResponse]
    repayment_schedule: Optional[RepaymentScheduleResponse] = None
    policy: Optional[PolicyResponse] = None
    can_edit: bool
    can_cancel: bool
    can_approve: bool


class ScheduleValidationResponse(BaseModel):
    is_valid: bool
    errors: List[str]


# ===========================================
# STATISTICS
# ===========================================

class StatusBreakdown(BaseModel):
    count: int
    total_amount: Decimal


class AdvanceStatisticsResponse(BaseModel):
    pending_count: int
    pending_total_amount: Decimal
    outstanding_count: int
    outstanding_total_balance: Decimal
    this_month_deductions_count: int
    this_month_deductions_amount: Decimal
    recently_completed_count: int
    recently_rejected_count: int
    by_status: Dict[str, StatusBreakdown]


class NextDeduction(BaseModel):
    amount: Decimal
    due_month: date


class EmployeeAdvanceStatsResponse(BaseModel):
    employee_id: UUID
    outstanding_count: int
    active_advance_balance: Decimal
    next_deduction: Optional[NextDeduction] = None
    max_allowed_amount: Decimal
    can_request_new: bool
    requests_this_month: int
    total_advances_count: int
    completed_advances_count: int
    total_borrowed: Decimal
    total_repaid: Decimal


# ===========================================
# PAYROLL INTEGRATION
# ===========================================

class AdvanceDisbursementItem(BaseModel):
    advance_id: UUID
    amount: Decimal


class AdvanceDeductionItem(BaseModel):
    advance_id: UUID
    installment_number: int
    amount: Decimal


class EmployeeAdvanceEffectResponse(BaseModel):
    employee_id: UUID
    disbursements: List[AdvanceDisbursementItem]
    repayments: List[AdvanceDeductionItem]
    disbursement_amount: Decimal
    repayment_amount: Decimal
    net_effect: Decimal

    class Config:
        from_attributes = True
