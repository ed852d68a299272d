"""
PayAdvance - Salary Advance Errors

Two disjoint families:
- AdvanceValidationError: the policy validator blocked a request; carries
  every violated rule so callers can render them all at once.
- AdvanceOperationError: an illegal lifecycle transition or a missing record.
"""

import uuid
from typing import Any, Dict, List, Optional, Sequence, TYPE_CHECKING

from fastapi import status

from payadvance.utils.error_handling import AppException, ErrorCode

if TYPE_CHECKING:
    from payadvance.services.salary_advance_validator import ValidationIssue


class AdvanceErrorCode:
    """Validator error and warning codes."""
    
    # Fatal: nothing else can be computed
    EMPLOYEE_NOT_FOUND = "EMPLOYEE_NOT_FOUND"
    NO_ACTIVE_SALARY = "NO_ACTIVE_SALARY"
    NO_POLICY = "NO_POLICY"
    
    # Policy rules
    INSUFFICIENT_EMPLOYMENT = "INSUFFICIENT_EMPLOYMENT"
    TOO_MANY_OUTSTANDING = "TOO_MANY_OUTSTANDING"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    AMOUNT_TOO_LOW = "AMOUNT_TOO_LOW"
    AMOUNT_TOO_HIGH = "AMOUNT_TOO_HIGH"
    INVALID_REPAYMENT_PERIOD = "INVALID_REPAYMENT_PERIOD"
    MINIMUM_WAGE_VIOLATION = "MINIMUM_WAGE_VIOLATION"
    
    # Warnings
    HIGH_AMOUNT = "HIGH_AMOUNT"
    SHORT_REPAYMENT_HIGH_AMOUNT = "SHORT_REPAYMENT_HIGH_AMOUNT"


class AdvanceValidationError(AppException):
    """Request blocked by one or more policy rules."""
    
    def __init__(
        self,
        errors: Sequence["ValidationIssue"],
        warnings: Optional[Sequence["ValidationIssue"]] = None,
        message: Optional[str] = None,
    ):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        if message is None:
            message = self.errors[0].message if self.errors else "Salary advance validation failed"
        super().__init__(
            code=ErrorCode.ADVANCE_VALIDATION_FAILED,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={
                "errors": [issue.to_dict() for issue in self.errors],
                "warnings": [issue.to_dict() for issue in self.warnings],
            },
        )
    
    @property
    def error_codes(self) -> List[str]:
        return [issue.code for issue in self.errors]


class AdvanceOperationError(AppException):
    """Base class for lifecycle operation errors."""
    
    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_409_CONFLICT,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status_code,
            details=details,
            field=field,
        )


class AdvanceNotFoundError(AdvanceOperationError):
    """No advance with this ID in the tenant."""
    
    def __init__(self, advance_id: uuid.UUID):
        super().__init__(
            code=ErrorCode.ADVANCE_NOT_FOUND,
            message=f"Salary advance with ID '{advance_id}' not found",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"advance_id": str(advance_id)},
        )


class InstallmentNotFoundError(AdvanceOperationError):
    """No installment with this number on the advance."""
    
    def __init__(self, advance_id: uuid.UUID, installment_number: int):
        super().__init__(
            code=ErrorCode.INSTALLMENT_NOT_FOUND,
            message=f"Installment {installment_number} not found for salary advance '{advance_id}'",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"advance_id": str(advance_id), "installment_number": installment_number},
        )


class InvalidStatusTransitionError(AdvanceOperationError):
    """The advance is not in the state the operation requires."""
    
    def __init__(self, operation: str, current_status: str, expected: Sequence[str]):
        super().__init__(
            code=ErrorCode.INVALID_STATUS_TRANSITION,
            message=(
                f"Cannot {operation} a salary advance in '{current_status}' status "
                f"(expected: {', '.join(expected)})"
            ),
            details={
                "operation": operation,
                "current_status": current_status,
                "expected_status": list(expected),
            },
        )


class InstallmentNotPendingError(AdvanceOperationError):
    """The installment has already been settled."""
    
    def __init__(self, installment_number: int, current_status: str):
        super().__init__(
            code=ErrorCode.INSTALLMENT_NOT_PENDING,
            message=f"Installment {installment_number} is already '{current_status}'",
            details={"installment_number": installment_number, "current_status": current_status},
        )


class AmountExceedsRequestedError(AdvanceOperationError):
    """Approver tried to approve more than was requested."""
    
    def __init__(self, approved_amount, requested_amount):
        super().__init__(
            code=ErrorCode.AMOUNT_EXCEEDS_REQUESTED,
            message=(
                f"Approved amount {approved_amount} cannot exceed "
                f"the requested amount {requested_amount}"
            ),
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={
                "approved_amount": str(approved_amount),
                "requested_amount": str(requested_amount),
            },
            field="approved_amount",
        )


class CannotCancelError(AdvanceOperationError):
    """Only pending advances can be cancelled."""
    
    def __init__(self, current_status: str):
        super().__init__(
            code=ErrorCode.CANNOT_CANCEL,
            message=f"Only pending salary advances can be cancelled (status: {current_status})",
            details={"current_status": current_status},
        )


class MissingRejectionReasonError(AdvanceOperationError):
    """Rejections must say why."""
    
    def __init__(self):
        super().__init__(
            code=ErrorCode.MISSING_REJECTION_REASON,
            message="A rejection reason is required",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            field="reason",
        )


class ConcurrentModificationError(AdvanceOperationError):
    """Another transaction changed the record between read and write."""
    
    def __init__(self, resource: str, resource_id: Any):
        super().__init__(
            code=ErrorCode.CONCURRENT_MODIFICATION,
            message=f"{resource} '{resource_id}' was modified concurrently; reload and retry",
            details={"resource": resource, "resource_id": str(resource_id)},
        )


class ScheduleNotSpreadableError(AdvanceOperationError):
    """Amount too small to spread over the repayment period."""
    
    def __init__(self, amount, repayment_months: int, rounding_unit):
        super().__init__(
            code=ErrorCode.SCHEDULE_NOT_SPREADABLE,
            message=(
                f"Cannot spread {amount} over {repayment_months} month(s) "
                f"with a rounding unit of {rounding_unit}"
            ),
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={
                "amount": str(amount),
                "repayment_months": repayment_months,
                "rounding_unit": str(rounding_unit),
            },
            field="approved_amount",
        )


class OutstandingLimitReachedError(AdvanceOperationError):
    """Paying out would exceed the outstanding advance ceiling."""
    
    def __init__(self, employee_id: uuid.UUID, outstanding_count: int, max_outstanding: int):
        super().__init__(
            code=ErrorCode.OUTSTANDING_LIMIT_REACHED,
            message=(
                f"Employee already has {outstanding_count} outstanding advance(s) "
                f"(maximum: {max_outstanding})"
            ),
            details={
                "employee_id": str(employee_id),
                "outstanding_count": outstanding_count,
                "max_outstanding_advances": max_outstanding,
            },
        )
