"""
PayAdvance - Schemas Package

Pydantic schemas for request/response validation.
"""

from payadvance.schemas.salary_advance import (
    # Policy
    PolicyCreate,
    PolicyUpdate,
    PolicyResponse,
    # Requests
    AdvanceRequestCreate,
    AdvanceValidateRequest,
    QuickValidateRequest,
    AdvanceApproveRequest,
    AdvanceRejectRequest,
    AdvanceDisburseRequest,
    InstallmentProcessRequest,
    ScheduleRecalculateRequest,
    PayrollRunAdvancesRequest,
    # Responses
    ValidationResultResponse,
    QuickValidationResponse,
    MaxAllowedResponse,
    RepaymentResponse,
    AdvanceResponse,
    AdvanceListResponse,
    AdvanceDetailResponse,
    RepaymentScheduleResponse,
    ScheduleValidationResponse,
    AdvanceStatisticsResponse,
    EmployeeAdvanceStatsResponse,
    EmployeeAdvanceEffectResponse,
)

__all__ = [
    "PolicyCreate",
    "PolicyUpdate",
    "PolicyResponse",
    "AdvanceRequestCreate",
    "AdvanceValidateRequest",
    "QuickValidateRequest",
    "AdvanceApproveRequest",
    "AdvanceRejectRequest",
    "AdvanceDisburseRequest",
    "InstallmentProcessRequest",
    "ScheduleRecalculateRequest",
    "PayrollRunAdvancesRequest",
    "ValidationResultResponse",
    "QuickValidationResponse",
    "MaxAllowedResponse",
    "RepaymentResponse",
    "AdvanceResponse",
    "AdvanceListResponse",
    "AdvanceDetailResponse",
    "RepaymentScheduleResponse",
    "ScheduleValidationResponse",
    "AdvanceStatisticsResponse",
    "EmployeeAdvanceStatsResponse",
    "EmployeeAdvanceEffectResponse",
]
