"""
PayAdvance - Net Salary Provider

Wraps the payroll engine to obtain an employee's net salary for the current
monthly period. When the engine is unavailable or produces nothing usable,
the provider falls back to a fixed share of base salary so that advance
validation never blocks on a payroll outage.
"""

import logging
from calendar import monthrange
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Awaitable, Callable, Optional, Tuple

from payadvance.config import settings
from payadvance.models.employee import Employee

logger = logging.getLogger(__name__)


# (employee, period_start, period_end) -> net salary, or None if it cannot compute one
NetSalaryCalculator = Callable[[Employee, date, date], Awaitable[Optional[Decimal]]]

TWO_PLACES = Decimal("0.01")


def current_period(as_of: Optional[date] = None) -> Tuple[date, date]:
    """First and last day of the calendar month containing as_of."""
    as_of = as_of or date.today()
    last_day = monthrange(as_of.year, as_of.month)[1]
    return as_of.replace(day=1), as_of.replace(day=last_day)


class NetSalaryProvider:
    """Current net salary with a deterministic base-salary fallback."""
    
    def __init__(
        self,
        calculate_net_salary: Optional[NetSalaryCalculator] = None,
        fallback_rate: Optional[Decimal] = None,
    ):
        self.calculate_net_salary = calculate_net_salary
        self.fallback_rate = Decimal(
            fallback_rate if fallback_rate is not None else settings.net_salary_fallback_rate
        )
    
    def fallback_net_salary(self, employee: Employee) -> Decimal:
        """Approximate net salary as a fixed share of base salary."""
        base_salary = Decimal(employee.base_salary or 0)
        if base_salary <= 0:
            return Decimal("0.00")
        return (base_salary * self.fallback_rate).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    
    async def get_net_salary(self, employee: Employee, as_of: Optional[date] = None) -> Decimal:
        """
        Net salary for the period containing as_of.
        
        Never raises because of the payroll engine: any engine failure or
        empty result degrades to the fallback approximation.
        """
        if self.calculate_net_salary is None:
            return self.fallback_net_salary(employee)
        
        period_start, period_end = current_period(as_of)
        try:
            net_salary = await self.calculate_net_salary(employee, period_start, period_end)
        except Exception as e:
            logger.warning(
                f"Payroll engine failed for employee {employee.id} "
                f"({period_start} - {period_end}), using fallback: {e}"
            )
            return self.fallback_net_salary(employee)
        
        if net_salary is None or Decimal(net_salary) <= 0:
            logger.warning(
                f"Payroll engine returned no net salary for employee {employee.id}, using fallback"
            )
            return self.fallback_net_salary(employee)
        
        return Decimal(net_salary).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
