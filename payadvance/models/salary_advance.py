"""
PayAdvance - Salary Advance Models

Short-term, interest-free advances against future salary, repaid through
payroll deductions:
- SalaryAdvancePolicy: per-tenant limits, eligibility and repayment rules
- SalaryAdvance: one request through its whole lifecycle
- SalaryAdvanceRepayment: one scheduled installment of an advance

Lifecycle: pending -> approved -> disbursed -> active -> completed
           pending -> rejected | cancelled

Rows are never deleted; rejected and cancelled advances stay as history.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean, CheckConstraint, Date, DateTime, ForeignKey, Index, Integer,
    JSON, Numeric, String, Text, UniqueConstraint, Uuid,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payadvance.models.base import BaseModel, AuditMixin


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ===========================================
# ENUMS
# ===========================================

class AdvanceStatus(str, Enum):
    """Salary advance lifecycle status."""
    PENDING = "pending"        # Awaiting approval
    APPROVED = "approved"      # Approved, awaiting disbursement
    DISBURSED = "disbursed"    # Paid to employee in a payroll run
    ACTIVE = "active"          # Being repaid (first deduction processed)
    COMPLETED = "completed"    # Fully repaid
    REJECTED = "rejected"      # Request denied
    CANCELLED = "cancelled"    # Withdrawn before a decision


# Disbursed but not yet fully repaid
OUTSTANDING_STATUSES = (AdvanceStatus.DISBURSED, AdvanceStatus.ACTIVE)


class RepaymentStatus(str, Enum):
    """Repayment installment status."""
    PENDING = "pending"    # Not yet deducted
    PAID = "paid"          # Deducted in full
    PARTIAL = "partial"    # Deducted for less than the planned amount
    WAIVED = "waived"      # Waived by HR


# Installments whose actual amount counts toward total_repaid
REPAID_STATUSES = (RepaymentStatus.PAID, RepaymentStatus.PARTIAL)

# Installments that close out a schedule
SETTLED_STATUSES = (RepaymentStatus.PAID, RepaymentStatus.WAIVED)


# ===========================================
# POLICIES
# ===========================================

class SalaryAdvancePolicy(BaseModel, AuditMixin):
    """
    Tenant salary advance policy. At most one policy per tenant is active.
    """
    
    __tablename__ = "salary_advance_policies"
    
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
    )
    country_code: Mapped[str] = mapped_column(
        String(2), nullable=False,
        comment="ISO country code, resolves the statutory minimum wage",
    )
    
    # Amount Limits
    max_percentage_of_net_salary: Mapped[Decimal] = mapped_column(
        Numeric(precision=5, scale=2),
        default=Decimal("30.00"),
        nullable=False,
        comment="e.g., 30.00 = 30% of net salary",
    )
    max_absolute_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=True,
    )
    min_advance_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("10000.00"),
        nullable=False,
    )
    
    # Request Limits
    max_outstanding_advances: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    max_requests_per_month: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    
    # Eligibility Rules
    min_employment_months: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    allowed_repayment_months: Mapped[List[int]] = mapped_column(
        JSON,
        default=lambda: [1, 2, 3],
        nullable=False,
    )
    
    # Workflow Configuration
    requires_manager_approval: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    requires_hr_approval: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    auto_approve_below_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=True,
    )
    
    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, default=date.today, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    
    __table_args__ = (
        Index('ix_advance_policies_tenant_active', 'tenant_id', 'is_active'),
        CheckConstraint(
            'max_percentage_of_net_salary >= 0 AND max_percentage_of_net_salary <= 100',
            name='valid_percentage',
        ),
        CheckConstraint('min_employment_months >= 0', name='valid_employment_months'),
    )
    
    def __repr__(self) -> str:
        return f"<SalaryAdvancePolicy(tenant={self.tenant_id}, country={self.country_code}, active={self.is_active})>"


# ===========================================
# SALARY ADVANCES
# ===========================================

class SalaryAdvance(BaseModel, AuditMixin):
    """
    Salary advance request and its repayment state.
    
    Employee name, number and net salary are frozen at request time so that
    later master-data changes never rewrite past decisions.
    """
    
    __tablename__ = "salary_advances"
    
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employees.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    
    # Financial Details
    requested_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
    )
    approved_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=True,
    )
    currency: Mapped[str] = mapped_column(String(3), default="XOF", nullable=False)
    
    # Repayment Configuration
    repayment_months: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    monthly_deduction: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=True,
    )
    total_repaid: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    remaining_balance: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=True,
    )
    
    # Request Details
    request_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    request_reason: Mapped[str] = mapped_column(Text, nullable=False)
    request_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    
    # Status
    status: Mapped[AdvanceStatus] = mapped_column(
        SQLEnum(AdvanceStatus),
        default=AdvanceStatus.PENDING,
        nullable=False,
    )
    
    # Approval / Rejection
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    
    # Payroll Integration
    first_deduction_month: Mapped[Optional[date]] = mapped_column(
        Date, nullable=True,
        comment="First of the month of the first deduction",
    )
    disbursement_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    disbursement_payroll_run_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True,
    )
    
    # Employee Snapshot (audit trail)
    employee_net_salary_at_request: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=True,
    )
    employee_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    employee_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    
    # Optimistic concurrency counter
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    
    # Relationships
    repayments: Mapped[List["SalaryAdvanceRepayment"]] = relationship(
        "SalaryAdvanceRepayment",
        back_populates="advance",
        order_by="SalaryAdvanceRepayment.installment_number",
    )
    
    __mapper_args__ = {"version_id_col": version}
    
    __table_args__ = (
        Index('ix_salary_advances_tenant_employee', 'tenant_id', 'employee_id'),
        Index('ix_salary_advances_tenant_status', 'tenant_id', 'status'),
        CheckConstraint('requested_amount > 0', name='valid_amount'),
        CheckConstraint('repayment_months >= 1 AND repayment_months <= 12', name='valid_repayment_months'),
    )
    
    def __repr__(self) -> str:
        return f"<SalaryAdvance(employee={self.employee_number}, amount={self.requested_amount}, status={self.status})>"


# ===========================================
# REPAYMENT INSTALLMENTS
# ===========================================

class SalaryAdvanceRepayment(BaseModel):
    """
    One repayment installment, created in a batch at disbursement and
    settled by a payroll deduction.
    """
    
    __tablename__ = "salary_advance_repayments"
    
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
    )
    salary_advance_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("salary_advances.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    
    # Installment Details
    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    due_month: Mapped[date] = mapped_column(
        Date, nullable=False,
        comment="First of the month the deduction is due",
    )
    planned_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
    )
    
    # Payment Tracking
    actual_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=True,
    )
    paid_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payroll_run_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    status: Mapped[RepaymentStatus] = mapped_column(
        SQLEnum(RepaymentStatus),
        default=RepaymentStatus.PENDING,
        nullable=False,
    )
    
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    
    # Relationship
    advance: Mapped["SalaryAdvance"] = relationship(
        "SalaryAdvance", back_populates="repayments",
    )
    
    __table_args__ = (
        UniqueConstraint('salary_advance_id', 'installment_number', name='uq_advance_installment'),
        CheckConstraint('installment_number > 0', name='valid_installment_number'),
        CheckConstraint('planned_amount > 0', name='valid_planned_amount'),
    )
    
    def __repr__(self) -> str:
        return f"<SalaryAdvanceRepayment(advance_id={self.salary_advance_id}, number={self.installment_number}, status={self.status})>"
