"""
PayAdvance - Employee Master Data

Read-only view of the platform's employee records. Salary advances only
consume these rows (eligibility, salary fallback, display snapshot); they
are maintained by the HR module.
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Date, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from payadvance.models.base import BaseModel


class Employee(BaseModel):
    """
    Employee record scoped to a tenant.
    """
    
    __tablename__ = "employees"
    
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
    )
    
    employee_number: Mapped[str] = mapped_column(
        String(50), nullable=False,
        comment="Company-assigned employee number e.g., EMP-0042",
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    job_title: Mapped[Optional[str]] = mapped_column(String(150), nullable=True)
    
    hire_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    termination_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    
    base_salary: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Monthly base salary",
    )
    currency: Mapped[str] = mapped_column(String(3), default="XOF", nullable=False)
    
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    __table_args__ = (
        UniqueConstraint('tenant_id', 'employee_number', name='uq_employee_tenant_number'),
    )
    
    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
    
    def __repr__(self) -> str:
        return f"<Employee(number={self.employee_number}, name={self.full_name})>"
