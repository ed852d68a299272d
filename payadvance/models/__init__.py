"""
PayAdvance - Database Models

All SQLAlchemy models are imported here for easy access.
"""

from payadvance.models.base import BaseModel, TimestampMixin, AuditMixin
from payadvance.models.employee import Employee
from payadvance.models.salary_advance import (
    AdvanceStatus,
    RepaymentStatus,
    OUTSTANDING_STATUSES,
    REPAID_STATUSES,
    SETTLED_STATUSES,
    SalaryAdvancePolicy,
    SalaryAdvance,
    SalaryAdvanceRepayment,
)

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "AuditMixin",
    "Employee",
    "AdvanceStatus",
    "RepaymentStatus",
    "OUTSTANDING_STATUSES",
    "REPAID_STATUSES",
    "SETTLED_STATUSES",
    "SalaryAdvancePolicy",
    "SalaryAdvance",
    "SalaryAdvanceRepayment",
]
